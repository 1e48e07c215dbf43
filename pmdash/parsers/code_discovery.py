"""Discover implemented features from routes, API handlers, components and package manifests."""
from __future__ import annotations

import json
import logging
import re
from pathlib import Path, PurePosixPath
from typing import Iterable, Optional

from pmdash.models import DiscoveredFeature, DiscoveryResult, FeatureCreate
from pmdash.services.file_traversal import list_files, read_file_safely

logger = logging.getLogger("pmdash.discovery")

SCRIPT_EXTENSIONS = frozenset({"js", "jsx", "ts", "tsx", "mjs", "cjs"})
PYTHON_EXTENSIONS = frozenset({"py"})
MANIFEST_NAMES = frozenset({"package.json"})
GENERIC_COMPONENT_NAMES = frozenset({"App", "Index", "Main"})

_REACT_ROUTE_RE = re.compile(r"<Route\s+path=[\"']([^\"']+)[\"']\s+(?:component|element)=\{([^}]+)\}")
_CONFIG_ROUTE_RE = re.compile(r"path:\s*[\"']([^\"']+)[\"']")
_EXPRESS_RE = re.compile(r"\b(app|router)\.(get|post|put|patch|delete)\(\s*[\"']([^\"']+)[\"']")
_PY_ROUTE_RE = re.compile(r"^\s*@(\w+)\.(get|post|put|patch|delete|route)\(\s*[\"']([^\"']*)[\"']")
_COMPONENT_RE = re.compile(r"export\s+(?:default\s+)?(?:function|const|class)\s+([A-Z][a-zA-Z0-9]*)")

NOTABLE_DEPENDENCIES = {
    "express": "REST API",
    "next": "Next.js App",
    "react-router": "Client-side Routing",
    "react-router-dom": "Client-side Routing",
    "graphql": "GraphQL API",
    "socket.io": "WebSocket Support",
    "passport": "Authentication",
    "stripe": "Payment Processing",
    "nodemailer": "Email Sending",
    "mongoose": "MongoDB Database",
    "sequelize": "SQL Database",
    "redis": "Redis Caching",
    "jest": "Testing",
    "typescript": "TypeScript",
}


def path_to_feature_name(route_path: str) -> str:
    """``/users/:id/edit`` -> ``Users Item Edit``; the root path is ``Home``."""
    name = re.sub(r":[^/]+|\{[^}/]+\}", "item", route_path.lstrip("/"))
    parts = [part for part in re.split(r"[-_/]", name) if part]
    return " ".join(part[:1].upper() + part[1:] for part in parts) or "Home"


def slugify(value: str) -> str:
    return re.sub(r"[^a-z0-9]+", "-", value.lower()).strip("-")


def comment_above(lines: list[str], index: int) -> str:
    """Text of the ``//``, ``#`` or ``/* */`` comment directly above ``lines[index]``."""
    if index == 0:
        return ""
    previous = lines[index - 1].strip()
    if previous.startswith("//"):
        return previous[2:].strip()
    if previous.startswith("#"):
        return previous.lstrip("#").strip()
    if "*/" in previous:
        collected: list[str] = []
        for i in range(index - 1, -1, -1):
            line = lines[i].strip()
            collected.insert(0, line)
            if "/*" in line:
                break
        text = " ".join(collected)
        text = re.sub(r"/\*+\s*", "", text)
        text = re.sub(r"\s*\*+/", "", text)
        text = re.sub(r"\s*\*\s*", " ", text)
        return text.strip()
    return ""


def analyze_script(text: str, rel_path: str) -> list[DiscoveredFeature]:
    lines = text.split("\n")
    found: list[DiscoveredFeature] = []
    for index, line in enumerate(lines):
        for match in _REACT_ROUTE_RE.finditer(line):
            found.append(
                DiscoveredFeature(
                    name=path_to_feature_name(match.group(1)),
                    type="route",
                    file=rel_path,
                    line=index + 1,
                    description=comment_above(lines, index),
                    confidence=90,
                    metadata={"path": match.group(1), "component": match.group(2).strip()},
                )
            )
        for match in _CONFIG_ROUTE_RE.finditer(line):
            found.append(
                DiscoveredFeature(
                    name=path_to_feature_name(match.group(1)),
                    type="route",
                    file=rel_path,
                    line=index + 1,
                    description=comment_above(lines, index),
                    confidence=80,
                    metadata={"path": match.group(1)},
                )
            )
        for match in _EXPRESS_RE.finditer(line):
            found.append(
                DiscoveredFeature(
                    name=path_to_feature_name(match.group(3)),
                    type="api",
                    file=rel_path,
                    line=index + 1,
                    description=comment_above(lines, index),
                    confidence=95,
                    metadata={"path": match.group(3), "method": match.group(2).upper()},
                )
            )
        for match in _COMPONENT_RE.finditer(line):
            name = match.group(1)
            if name in GENERIC_COMPONENT_NAMES:
                continue
            found.append(
                DiscoveredFeature(
                    name=name,
                    type="component",
                    file=rel_path,
                    line=index + 1,
                    description=comment_above(lines, index),
                    confidence=75,
                )
            )
    return found


def analyze_python(text: str, rel_path: str) -> list[DiscoveredFeature]:
    lines = text.split("\n")
    found: list[DiscoveredFeature] = []
    for index, line in enumerate(lines):
        match = _PY_ROUTE_RE.match(line)
        if not match:
            continue
        method = "GET" if match.group(2) == "route" else match.group(2).upper()
        found.append(
            DiscoveredFeature(
                name=path_to_feature_name(match.group(3)),
                type="api",
                file=rel_path,
                line=index + 1,
                description=comment_above(lines, index),
                confidence=95,
                metadata={"path": match.group(3), "method": method},
            )
        )
    return found


def analyze_manifest(text: str, rel_path: str) -> list[DiscoveredFeature]:
    try:
        manifest = json.loads(text)
    except json.JSONDecodeError as exc:
        logger.warning("Skipping unparseable manifest %s: %s", rel_path, exc)
        return []
    if not isinstance(manifest, dict):
        return []

    found: list[DiscoveredFeature] = []
    scripts = manifest.get("scripts") or {}
    if isinstance(scripts, dict):
        for name, command in scripts.items():
            found.append(
                DiscoveredFeature(
                    name=f"Script: {name}",
                    type="script",
                    file=rel_path,
                    description=f"NPM script: {command}",
                    confidence=100,
                )
            )

    dependencies: dict = {}
    for key in ("dependencies", "devDependencies"):
        if isinstance(manifest.get(key), dict):
            dependencies.update(manifest[key])
    seen: set[str] = set()
    for dependency, feature_name in NOTABLE_DEPENDENCIES.items():
        if dependency in dependencies and feature_name not in seen:
            seen.add(feature_name)
            found.append(
                DiscoveredFeature(
                    name=feature_name,
                    type="dependency",
                    file=rel_path,
                    description=f"Detected from dependency: {dependency}",
                    confidence=85,
                )
            )
    return found


def _is_discoverable(rel_path: str) -> bool:
    posix = PurePosixPath(rel_path)
    return posix.name in MANIFEST_NAMES or posix.suffix.lstrip(".").lower() in SCRIPT_EXTENSIONS | PYTHON_EXTENSIONS


def discover_features(
    root_path: str | Path,
    include: Optional[Iterable[str]] = None,
    exclude: Optional[Iterable[str]] = None,
    use_gitignore: bool = True,
) -> DiscoveryResult:
    files = list_files(root_path, use_gitignore=use_gitignore, include=include, exclude=exclude, accept=_is_discoverable)
    result = DiscoveryResult(filesScanned=len(files))
    for info in files:
        text = read_file_safely(info.absolutePath)
        if text is None:
            continue
        name = PurePosixPath(info.path).name
        if name in MANIFEST_NAMES:
            found = analyze_manifest(text, info.path)
        elif info.extension in PYTHON_EXTENSIONS:
            found = analyze_python(text, info.path)
        else:
            found = analyze_script(text, info.path)
        result.features.extend(found)

    for feature in result.features:
        result.byType[feature.type] = result.byType.get(feature.type, 0) + 1
    logger.info("Discovered %s candidate features in %s files", len(result.features), len(files))
    return result


def to_registry_features(result: DiscoveryResult, min_confidence: int = 80) -> list[FeatureCreate]:
    """Planned registry drafts for discoveries at or above ``min_confidence``, one per slug."""
    drafts: dict[str, FeatureCreate] = {}
    for item in result.features:
        if item.confidence < min_confidence:
            continue
        slug = slugify(f"{item.type}-{item.name}")
        if not slug or slug in drafts:
            continue
        location = f"{item.file}:{item.line}" if item.line else item.file
        drafts[slug] = FeatureCreate(
            id=slug,
            name=item.name,
            description=item.description or f"Discovered {item.type} in {location}",
            category=item.type,
            status="planned",
            tags=["discovered"],
            notes=f"Source: {location} (confidence {item.confidence})",
        )
    return list(drafts.values())
