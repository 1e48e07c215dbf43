"""Gitignore-aware directory traversal for the scanner and code discovery."""
from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Callable, Iterable, Optional

import pathspec

from pmdash import config
from pmdash.models import FileInfo
from pmdash.parsers.patterns import file_extension, is_scannable

logger = logging.getLogger("pmdash.traversal")


BUILTIN_EXCLUDES = (
    "node_modules/",
    ".git/",
    "dist/",
    "build/",
    "coverage/",
    ".env",
    ".env.local",
    "*.log",
    ".DS_Store",
    "Thumbs.db",
    "*.pyc",
    "__pycache__/",
    ".venv/",
    ".vscode/",
    ".idea/",
    "*.iml",
    "vendor/",
    "target/",
    "*.class",
    "*.jar",
    "*.war",
    "*.ear",
    ".pmdash/",
)


def _normalize_rel_path(raw: str | None) -> str:
    value = str(raw or "").replace("\\", "/").strip()
    if value.startswith("./"):
        value = value[2:]
    return value.strip("/")


def _read_gitignore(root: Path) -> list[str]:
    gitignore = root / ".gitignore"
    if not gitignore.exists():
        return []
    try:
        lines = gitignore.read_text(encoding="utf-8", errors="ignore").splitlines()
    except OSError as exc:
        logger.warning("Could not read %s: %s", gitignore, exc)
        return []
    return [line.strip() for line in lines if line.strip() and not line.strip().startswith("#")]


class IgnoreMatcher:
    """Built-in excludes, the root ``.gitignore`` and caller excludes as one gitwildmatch spec."""

    def __init__(
        self,
        root: Path,
        use_gitignore: bool = True,
        exclude: Iterable[str] | None = None,
    ):
        patterns = list(BUILTIN_EXCLUDES)
        if use_gitignore:
            patterns.extend(_read_gitignore(root))
        patterns.extend(p for p in (exclude or []) if p)
        self._spec = pathspec.PathSpec.from_lines("gitwildmatch", patterns)

    def should_ignore(self, rel_path: str, is_dir: bool = False) -> bool:
        rel = _normalize_rel_path(rel_path)
        if not rel:
            return False
        if self._spec.match_file(rel):
            return True
        return is_dir and self._spec.match_file(f"{rel}/")


def build_include_spec(include: Iterable[str] | None) -> Optional[pathspec.PathSpec]:
    """Gitwildmatch spec for the include globs, or None when there are none."""
    patterns = [p for p in (include or []) if p]
    return pathspec.PathSpec.from_lines("gitwildmatch", patterns) if patterns else None


def list_files(
    root_path: str | Path,
    use_gitignore: bool = True,
    include: Iterable[str] | None = None,
    exclude: Iterable[str] | None = None,
    accept: Callable[[str], bool] = is_scannable,
) -> list[FileInfo]:
    """Return eligible files under ``root_path`` sorted by relative path.

    ``include`` narrows the result to files matching any of the glob patterns;
    ``accept`` decides eligibility from the relative path (scannable extensions
    by default).
    """
    root = Path(root_path)
    if not root.exists() or not root.is_dir():
        raise FileNotFoundError(f"Root path does not exist: {root_path}")

    matcher = IgnoreMatcher(root, use_gitignore=use_gitignore, exclude=exclude)
    include_spec = build_include_spec(include)

    files: list[FileInfo] = []
    for current, dirs, filenames in os.walk(root, followlinks=False):
        rel_root = _normalize_rel_path(os.path.relpath(current, root))
        if rel_root == ".":
            rel_root = ""

        dirs[:] = sorted(
            name for name in dirs
            if not matcher.should_ignore(f"{rel_root}/{name}".strip("/"), is_dir=True)
        )

        for filename in filenames:
            rel_path = f"{rel_root}/{filename}".strip("/")
            if matcher.should_ignore(rel_path):
                continue
            if include_spec is not None and not include_spec.match_file(rel_path):
                continue
            if not accept(rel_path):
                continue
            full_path = Path(current) / filename
            try:
                stat = full_path.stat()
            except OSError:
                # Filesystem can change while walking; skip vanished entries.
                continue
            if not full_path.is_file():
                continue
            files.append(
                FileInfo(
                    path=rel_path,
                    absolutePath=str(full_path),
                    size=int(stat.st_size),
                    extension=file_extension(rel_path),
                )
            )

    files.sort(key=lambda info: info.path)
    return files


def read_file_safely(path: str | Path, max_bytes: int | None = None) -> str | None:
    """Read a text file, or return None when it is too large or unreadable."""
    limit = config.MAX_FILE_BYTES if max_bytes is None else max_bytes
    target = Path(path)
    try:
        size = target.stat().st_size
        if size > limit:
            logger.warning("File too large, skipping: %s (%s bytes)", target, size)
            return None
        return target.read_text(encoding="utf-8", errors="replace")
    except OSError as exc:
        logger.warning("Error reading file %s: %s", target, exc)
        return None
