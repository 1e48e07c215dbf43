"""Per-project settings loaded from ``pmdash.yaml``."""
from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional

import yaml
from pydantic import BaseModel, Field, ValidationError

from pmdash import config
from pmdash.services.labels import DEFAULT_LABELS

logger = logging.getLogger("pmdash.config")


class ConfigError(ValueError):
    """Raised when a project config file exists but cannot be used."""


class GitHubSettings(BaseModel):
    owner: str = ""
    repo: str = ""
    token: Optional[str] = None
    defaultLabels: list[str] = Field(default_factory=lambda: list(DEFAULT_LABELS))
    issueTitlePrefix: Optional[str] = None


class ScanSettings(BaseModel):
    include: list[str] = Field(default_factory=list)
    exclude: list[str] = Field(default_factory=list)
    excludeArchives: bool = False
    useGitignore: bool = True


class ProjectConfig(BaseModel):
    github: GitHubSettings = Field(default_factory=GitHubSettings)
    stateFile: Optional[str] = None
    registryFile: Optional[str] = None
    labels: Optional[dict[str, list[str]]] = None
    scan: ScanSettings = Field(default_factory=ScanSettings)


def load_project_config(path: str | Path) -> ProjectConfig:
    """Load ``path``; a missing file yields defaults, a malformed one raises ConfigError."""
    target = Path(path)
    if not target.exists():
        logger.debug("No project config at %s, using defaults", target)
        return ProjectConfig()
    try:
        data = yaml.safe_load(target.read_text(encoding="utf-8"))
    except (OSError, yaml.YAMLError) as exc:
        raise ConfigError(f"Could not parse config file {target}: {exc}") from exc
    if data is None:
        return ProjectConfig()
    if not isinstance(data, dict):
        raise ConfigError(f"Config file {target} must contain a mapping at the top level")
    try:
        return ProjectConfig.model_validate(data)
    except ValidationError as exc:
        raise ConfigError(f"Invalid config file {target}: {exc}") from exc


def write_default_config(path: str | Path, owner: str = "", repo: str = "") -> Path:
    target = Path(path)
    if target.exists():
        raise FileExistsError(f"Config file already exists: {target}")
    payload = ProjectConfig(github=GitHubSettings(owner=owner, repo=repo)).model_dump(exclude_none=True)
    target.parent.mkdir(parents=True, exist_ok=True)
    target.write_text(yaml.safe_dump(payload, sort_keys=False), encoding="utf-8")
    return target


def state_file_for(root: str | Path, project: ProjectConfig, override: str | Path | None = None) -> Path:
    """Explicit path, then ``stateFile`` from the project config, then the environment default."""
    if override:
        return Path(override)
    if project.stateFile:
        return Path(root) / project.stateFile
    if Path(root).resolve() == config.ROOT_PATH.resolve():
        return config.STATE_FILE
    return Path(root) / ".pmdash" / "state.json"


def registry_file_for(root: str | Path, project: ProjectConfig, override: str | Path | None = None) -> Path:
    if override:
        return Path(override)
    if project.registryFile:
        return Path(root) / project.registryFile
    if Path(root).resolve() == config.ROOT_PATH.resolve():
        return config.REGISTRY_FILE
    return Path(root) / "features.csv"
