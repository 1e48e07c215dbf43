"""CSV-backed feature registry with dependency queries.

The first data row of the CSV is a ``PROJECT_META`` record holding the project
name, code and description. Its ``number`` column keeps the highest feature
number ever issued so numbers are never reused after a delete.
"""
from __future__ import annotations

import csv
import io
import logging
import os
import tempfile
from pathlib import Path
from typing import Any, Iterable, Optional, Union

from pydantic import ValidationError

from pmdash.models import Feature, FeatureCreate, FeatureUpdate, ProjectInfo

logger = logging.getLogger("pmdash.registry")

PROJECT_META_ID = "PROJECT_META"
LIST_SEPARATOR = ";"

CSV_COLUMNS = [
    "id", "number", "name", "code", "description", "category", "phase",
    "priority", "status", "dependencies", "blocks", "value",
    "startDate", "completedDate", "notes", "tags",
]
REQUIRED_COLUMNS = {
    "id", "number", "name", "category", "phase", "status", "priority",
    "description", "dependencies", "blocks", "value", "tags",
}
IMMUTABLE_FIELDS = ("id", "number")
LIST_FIELDS = ("dependencies", "blocks", "tags")

STATUS_PLANNED = "planned"
STATUS_IN_PROGRESS = "in-progress"
STATUS_COMPLETED = "completed"
STATUS_BLOCKED = "blocked"
PRIORITIES = ("P0", "P1", "P2", "P3")


class RegistryFormatError(ValueError):
    """Raised when the registry CSV cannot be interpreted."""


class DuplicateFeatureError(ValueError):
    """Raised when adding a feature whose id is already registered."""


def _split_list(raw: str | None) -> list[str]:
    return [item.strip() for item in (raw or "").split(LIST_SEPARATOR) if item.strip()]


def _join_list(values: Iterable[str]) -> str:
    return LIST_SEPARATOR.join(values)


def _check_values(fields: dict[str, Any]) -> None:
    """Reject values the CSV encoding cannot round-trip, and unknown priorities."""
    for name in LIST_FIELDS:
        for item in fields.get(name) or []:
            if LIST_SEPARATOR in str(item):
                raise ValueError(f"{name} entries may not contain {LIST_SEPARATOR!r}: {item!r}")
    priority = fields.get("priority")
    if priority is not None and priority not in PRIORITIES:
        raise ValueError(f"Unknown priority {priority!r}; use one of {', '.join(PRIORITIES)}")


def _optional(raw: str | None) -> Optional[str]:
    value = (raw or "").strip()
    return value or None


class FeatureRegistry:
    """In-memory feature list persisted to a CSV file."""

    def __init__(
        self,
        file_path: Union[str, Path],
        auto_save: bool = True,
        create_if_missing: bool = False,
    ):
        self.file_path = Path(file_path)
        self.auto_save = auto_save
        self._features: list[Feature] = []
        self._project = ProjectInfo(name="New Project", code="NP")
        self._high_water = 0

        if self.file_path.exists():
            self._load()
        elif create_if_missing:
            self.save()
            logger.info("Created feature registry at %s", self.file_path)
        else:
            raise FileNotFoundError(f"Registry file not found: {self.file_path}")

    # ── persistence ────────────────────────────────────────────────

    def _load(self) -> None:
        text = self.file_path.read_text(encoding="utf-8-sig")
        reader = csv.DictReader(io.StringIO(text))
        columns = {name.strip() for name in (reader.fieldnames or [])}
        missing = REQUIRED_COLUMNS - columns
        if missing:
            raise RegistryFormatError(
                f"Registry {self.file_path} is missing columns: {', '.join(sorted(missing))}"
            )

        features: list[Feature] = []
        seen_ids: set[str] = set()
        seen_numbers: set[int] = set()
        project: Optional[ProjectInfo] = None
        high_water = 0

        for line_no, raw_row in enumerate(reader, start=2):
            row = {(key or "").strip(): (value or "").strip() for key, value in raw_row.items() if key}
            feature_id = row.get("id", "")
            if not feature_id:
                continue
            if feature_id == PROJECT_META_ID:
                project = ProjectInfo(
                    name=row.get("name") or "Unknown Project",
                    code=row.get("code") or "UP",
                    description=row.get("description", ""),
                )
                if row.get("number"):
                    high_water = self._parse_number(row["number"], line_no)
                continue

            number = self._parse_number(row.get("number", ""), line_no)
            if feature_id in seen_ids:
                raise RegistryFormatError(f"Duplicate feature id {feature_id!r} on line {line_no}")
            if number in seen_numbers:
                raise RegistryFormatError(f"Duplicate feature number {number} on line {line_no}")
            seen_ids.add(feature_id)
            seen_numbers.add(number)

            try:
                features.append(
                    Feature(
                        id=feature_id,
                        number=number,
                        name=row.get("name", ""),
                        description=row.get("description", ""),
                        category=row.get("category", ""),
                        phase=row.get("phase", ""),
                        priority=row.get("priority") or "P2",
                        status=row.get("status") or STATUS_PLANNED,
                        dependencies=_split_list(row.get("dependencies")),
                        blocks=_split_list(row.get("blocks")),
                        value=row.get("value", ""),
                        tags=_split_list(row.get("tags")),
                        code=row.get("code", ""),
                        startDate=_optional(row.get("startDate")),
                        completedDate=_optional(row.get("completedDate")),
                        notes=_optional(row.get("notes")),
                    )
                )
            except ValidationError as exc:
                raise RegistryFormatError(f"Invalid feature on line {line_no}: {exc}") from exc

        self._features = features
        self._project = project or ProjectInfo(name=self.file_path.stem, code="UP")
        self._high_water = max([high_water, *seen_numbers]) if seen_numbers else high_water
        logger.debug("Loaded %s features from %s", len(features), self.file_path)

    @staticmethod
    def _parse_number(raw: str, line_no: int) -> int:
        try:
            return int(raw)
        except (TypeError, ValueError) as exc:
            raise RegistryFormatError(f"Invalid feature number {raw!r} on line {line_no}") from exc

    def _rows(self) -> list[dict[str, str]]:
        rows = [
            {
                **{column: "" for column in CSV_COLUMNS},
                "id": PROJECT_META_ID,
                "number": str(self._high_water) if self._high_water else "",
                "name": self._project.name,
                "code": self._project.code,
                "description": self._project.description,
            }
        ]
        for feature in self._features:
            rows.append(
                {
                    "id": feature.id,
                    "number": str(feature.number),
                    "name": feature.name,
                    "code": feature.code,
                    "description": feature.description,
                    "category": feature.category,
                    "phase": feature.phase,
                    "priority": feature.priority,
                    "status": feature.status,
                    "dependencies": _join_list(feature.dependencies),
                    "blocks": _join_list(feature.blocks),
                    "value": feature.value,
                    "startDate": feature.startDate or "",
                    "completedDate": feature.completedDate or "",
                    "notes": feature.notes or "",
                    "tags": _join_list(feature.tags),
                }
            )
        return rows

    def save(self) -> None:
        """Write the registry atomically (temp file + rename in the same directory)."""
        self.file_path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(
            prefix=f".{self.file_path.name}.", suffix=".tmp", dir=str(self.file_path.parent)
        )
        try:
            with os.fdopen(fd, "w", encoding="utf-8", newline="") as handle:
                writer = csv.DictWriter(handle, fieldnames=CSV_COLUMNS)
                writer.writeheader()
                writer.writerows(self._rows())
            os.replace(tmp_name, self.file_path)
        except BaseException:
            if os.path.exists(tmp_name):
                os.unlink(tmp_name)
            raise

    def _changed(self) -> None:
        if self.auto_save:
            self.save()

    # ── project info ───────────────────────────────────────────────

    def set_project(self, name: str, code: str, description: str = "") -> ProjectInfo:
        self._project = ProjectInfo(name=name, code=code, description=description)
        self.save()
        return self.project_info()

    def project_info(self) -> ProjectInfo:
        return self._project.model_copy()

    # ── CRUD ───────────────────────────────────────────────────────

    def _find(self, feature_id: str) -> Optional[Feature]:
        for feature in self._features:
            if feature.id == feature_id:
                return feature
        return None

    def next_number(self) -> int:
        highest = max((feature.number for feature in self._features), default=0)
        return max(highest, self._high_water) + 1

    def add_feature(self, data: Union[FeatureCreate, dict[str, Any]]) -> Feature:
        payload = data.model_dump() if isinstance(data, FeatureCreate) else dict(data)
        payload.pop("number", None)
        feature_id = str(payload.get("id") or "").strip()
        if not feature_id:
            raise ValueError("Feature id is required")
        if feature_id == PROJECT_META_ID:
            raise ValueError(f"{PROJECT_META_ID} is a reserved id")
        if self._find(feature_id) is not None:
            raise DuplicateFeatureError(f"Feature already exists: {feature_id}")
        payload["id"] = feature_id
        _check_values(payload)

        number = self.next_number()
        feature = Feature.model_validate({**payload, "number": number})
        self._features.append(feature)
        self._high_water = number
        self._changed()
        logger.info("Added feature %s (#%s)", feature.id, feature.number)
        return feature.model_copy(deep=True)

    def get_feature(self, feature_id: str) -> Optional[Feature]:
        feature = self._find(feature_id)
        return feature.model_copy(deep=True) if feature else None

    def all_features(self) -> list[Feature]:
        return [feature.model_copy(deep=True) for feature in self._features]

    def update_feature(
        self,
        feature_id: str,
        patch: Union[FeatureUpdate, dict[str, Any]],
    ) -> Optional[Feature]:
        """Merge ``patch`` into the feature. ``id`` and ``number`` never change."""
        current = self._find(feature_id)
        if current is None:
            return None
        if isinstance(patch, FeatureUpdate):
            changes = patch.model_dump(exclude_unset=True)
        else:
            changes = dict(patch)
        for field in IMMUTABLE_FIELDS:
            changes.pop(field, None)
        unknown = set(changes) - set(Feature.model_fields)
        if unknown:
            raise ValueError(f"Unknown feature fields: {', '.join(sorted(unknown))}")
        _check_values(changes)

        merged = Feature.model_validate({**current.model_dump(), **changes})
        index = self._features.index(current)
        self._features[index] = merged
        self._changed()
        return merged.model_copy(deep=True)

    def delete_feature(self, feature_id: str) -> bool:
        feature = self._find(feature_id)
        if feature is None:
            return False
        self._features.remove(feature)
        self._changed()
        logger.info("Deleted feature %s (#%s)", feature.id, feature.number)
        return True

    # ── queries ────────────────────────────────────────────────────

    def filter_features(
        self,
        status: Optional[str] = None,
        priority: Optional[str] = None,
        category: Optional[str] = None,
        phase: Optional[str] = None,
        tags: Optional[Iterable[str]] = None,
        search_term: Optional[str] = None,
    ) -> list[Feature]:
        wanted_tags = [tag for tag in (tags or []) if tag]
        needle = (search_term or "").strip().lower()
        result = []
        for feature in self._features:
            if status and feature.status != status:
                continue
            if priority and feature.priority != priority:
                continue
            if category and feature.category != category:
                continue
            if phase and feature.phase != phase:
                continue
            if wanted_tags and not any(tag in feature.tags for tag in wanted_tags):
                continue
            if needle and needle not in f"{feature.name} {feature.description}".lower():
                continue
            result.append(feature.model_copy(deep=True))
        return result

    def by_status(self, status: str) -> list[Feature]:
        return self.filter_features(status=status)

    def get_dependency_graph(self) -> dict[str, list[str]]:
        return {feature.id: list(feature.dependencies) for feature in self._features}

    def dependents(self, feature_id: str) -> list[str]:
        return [feature.id for feature in self._features if feature_id in feature.dependencies]

    def has_circular_dependency(self, feature_id: str) -> bool:
        """True when a dependency cycle (including a self-reference) is reachable from ``feature_id``.

        Unknown dependency ids are dead ends.
        """
        graph = self.get_dependency_graph()
        if feature_id not in graph:
            return False

        on_path = {feature_id}
        visited: set[str] = set()
        stack = [(feature_id, iter(graph[feature_id]))]
        while stack:
            node, deps = stack[-1]
            for dep in deps:
                if dep in on_path:
                    return True
                if dep in visited or dep not in graph:
                    continue
                on_path.add(dep)
                stack.append((dep, iter(graph[dep])))
                break
            else:
                stack.pop()
                on_path.discard(node)
                visited.add(node)
        return False

    def find_cycles(self) -> list[str]:
        return [feature.id for feature in self._features if self.has_circular_dependency(feature.id)]

    def ready_features(self) -> list[Feature]:
        """Planned features whose known dependencies are all completed."""
        status_by_id = {feature.id: feature.status for feature in self._features}
        ready = []
        for feature in self._features:
            if feature.status != STATUS_PLANNED:
                continue
            if all(
                status_by_id[dep] == STATUS_COMPLETED
                for dep in feature.dependencies
                if dep in status_by_id
            ):
                ready.append(feature.model_copy(deep=True))
        return ready

    def __len__(self) -> int:
        return len(self._features)
