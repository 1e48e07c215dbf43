"""Roadmap views of the feature registry: JSON, markdown and HTML."""
from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional, Union

from jinja2 import Environment, PackageLoader, select_autoescape

from pmdash.models import (
    DependencyChain,
    Feature,
    ProjectInfo,
    RoadmapData,
    RoadmapFeatures,
    RoadmapStats,
)
from pmdash.observability import record_export, start_span
from pmdash.services.feature_registry import (
    STATUS_BLOCKED,
    STATUS_COMPLETED,
    STATUS_IN_PROGRESS,
    STATUS_PLANNED,
    FeatureRegistry,
)

logger = logging.getLogger("pmdash.roadmap")

EXPORT_FORMATS = ("json", "markdown", "html")
GROUP_BY_FIELDS = ("status", "phase", "category", "priority")
PROGRESS_BAR_CELLS = 20


class UnknownExportFormatError(ValueError):
    """Raised for an export format other than json, markdown or html."""


@dataclass
class FeatureGroup:
    name: Optional[str]
    features: list[Feature]


@dataclass
class RoadmapSection:
    key: str
    title: str
    icon: str
    groups: list[FeatureGroup] = field(default_factory=list)


_SECTION_ORDER = (
    ("inProgress", "In Progress", "🚧"),
    ("planned", "Planned", "📋"),
    ("completed", "Completed", "✅"),
    ("blocked", "Blocked", "🚫"),
)

_env = Environment(
    loader=PackageLoader("pmdash", "templates"),
    autoescape=select_autoescape(["html", "j2"]),
    trim_blocks=True,
    lstrip_blocks=True,
)


def completion_percentage(completed: int, total: int) -> int:
    """Whole-number percentage, rounding halves up."""
    if total <= 0:
        return 0
    return (completed * 200 + total) // (total * 2)


def progress_bar(percentage: int, cells: int = PROGRESS_BAR_CELLS) -> str:
    filled = (percentage * cells * 2 + 100) // 200
    filled = max(0, min(cells, filled))
    return "█" * filled + "░" * (cells - filled)


def build_roadmap_data(project: ProjectInfo, features: list[Feature]) -> RoadmapData:
    """Every per-status bucket is full; stats cover all features."""
    buckets = RoadmapFeatures(
        planned=[f for f in features if f.status == STATUS_PLANNED],
        inProgress=[f for f in features if f.status == STATUS_IN_PROGRESS],
        completed=[f for f in features if f.status == STATUS_COMPLETED],
        blocked=[f for f in features if f.status == STATUS_BLOCKED],
    )
    stats = RoadmapStats(
        total=len(features),
        completed=len(buckets.completed),
        inProgress=len(buckets.inProgress),
        planned=len(buckets.planned),
        blocked=len(buckets.blocked),
        completionPercentage=completion_percentage(len(buckets.completed), len(features)),
    )
    chains = [
        DependencyChain(feature=f.id, dependencies=list(f.dependencies), blocks=list(f.blocks))
        for f in features
    ]
    return RoadmapData(project=project, features=buckets, stats=stats, dependencyChains=chains)


def _group(features: list[Feature], group_by: str) -> list[FeatureGroup]:
    if group_by == "status":
        return [FeatureGroup(None, features)]
    groups: dict[str, list[Feature]] = {}
    for feature in features:
        key = getattr(feature, group_by) or "Unassigned"
        groups.setdefault(key, []).append(feature)
    return [FeatureGroup(name, items) for name, items in groups.items()]


def build_sections(
    data: RoadmapData,
    group_by: str = "status",
    include_completed: bool = False,
    include_blocked: bool = False,
) -> list[RoadmapSection]:
    sections = []
    for key, title, icon in _SECTION_ORDER:
        if key == "completed" and not include_completed:
            continue
        if key == "blocked" and not include_blocked:
            continue
        features = getattr(data.features, key)
        if not features:
            continue
        sections.append(RoadmapSection(key, title, icon, _group(features, group_by)))
    return sections


class RoadmapExporter:
    """Render the registry at ``registry_path`` as a roadmap."""

    def __init__(self, registry_path: Union[str, Path]):
        self.registry = FeatureRegistry(registry_path, create_if_missing=False)

    @classmethod
    def from_registry(cls, registry: FeatureRegistry) -> "RoadmapExporter":
        exporter = cls.__new__(cls)
        exporter.registry = registry
        return exporter

    def roadmap_data(self) -> RoadmapData:
        return build_roadmap_data(self.registry.project_info(), self.registry.all_features())

    def export(
        self,
        format: str,
        group_by: str = "status",
        include_completed: bool = False,
        include_blocked: bool = False,
        include_dependencies: bool = False,
    ) -> str:
        if format not in EXPORT_FORMATS:
            raise UnknownExportFormatError(f"Unknown export format: {format}")
        if group_by not in GROUP_BY_FIELDS:
            raise ValueError(f"Cannot group roadmap by {group_by!r}; use one of {', '.join(GROUP_BY_FIELDS)}")

        with start_span("pmdash.roadmap_export", {"format": format, "group_by": group_by}):
            data = self.roadmap_data()
            if format == "json":
                output = json.dumps(data.model_dump(), indent=2, ensure_ascii=False)
            else:
                sections = build_sections(data, group_by, include_completed, include_blocked)
                if format == "markdown":
                    output = render_markdown(data, sections, include_dependencies)
                else:
                    output = render_html(data, sections, include_dependencies)

        record_export(format)
        logger.info("Exported %s roadmap with %s features", format, data.stats.total)
        return output

    def export_to_file(self, format: str, output_path: Union[str, Path], **options) -> Path:
        content = self.export(format, **options)
        target = Path(output_path)
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_text(content, encoding="utf-8")
        return target


def _feature_markdown(lines: list[str], feature: Feature, project_code: str) -> None:
    lines.append(f"#### {feature.name} ({project_code}-{feature.number})")
    lines.append("")
    lines.append(f"**Category**: {feature.category} | **Phase**: {feature.phase} | **Priority**: {feature.priority}")
    lines.append("")
    if feature.description:
        lines.append(feature.description)
        lines.append("")
    if feature.value:
        lines.append(f"**Value**: {feature.value}")
        lines.append("")
    if feature.dependencies:
        lines.append(f"**Dependencies**: {', '.join(feature.dependencies)}")
        lines.append("")
    lines.append("---")
    lines.append("")


def render_markdown(data: RoadmapData, sections: list[RoadmapSection], include_dependencies: bool = False) -> str:
    stats = data.stats
    lines = [f"# {data.project.name} - Product Roadmap", ""]
    if data.project.description:
        lines.extend([data.project.description, ""])

    lines.extend(
        [
            "## Progress Overview",
            "",
            f"- **Total Features**: {stats.total}",
            f"- **Completed**: {stats.completed} ({stats.completionPercentage}%)",
            f"- **In Progress**: {stats.inProgress}",
            f"- **Planned**: {stats.planned}",
        ]
    )
    if stats.blocked:
        lines.append(f"- **Blocked**: {stats.blocked}")
    lines.append("")
    lines.append(f"**Progress**: {progress_bar(stats.completionPercentage)} {stats.completionPercentage}%")
    lines.append("")

    for section in sections:
        lines.extend([f"## {section.icon} {section.title}", ""])
        for group in section.groups:
            if group.name is not None:
                lines.extend([f"### {group.name}", ""])
            for feature in group.features:
                _feature_markdown(lines, feature, data.project.code)

    if include_dependencies:
        lines.extend(["## Dependencies", ""])
        chains = [c for c in data.dependencyChains if c.dependencies or c.blocks]
        if not chains:
            lines.extend(["_No dependencies_", ""])
        for chain in chains:
            lines.append(f"### {chain.feature}")
            if chain.dependencies:
                lines.append(f"**Depends on**: {', '.join(chain.dependencies)}")
            if chain.blocks:
                lines.append(f"**Blocks**: {', '.join(chain.blocks)}")
            lines.append("")

    return "\n".join(lines)


def render_html(data: RoadmapData, sections: list[RoadmapSection], include_dependencies: bool = False) -> str:
    template = _env.get_template("roadmap.html.j2")
    chains = [c for c in data.dependencyChains if c.dependencies or c.blocks]
    return template.render(
        project=data.project,
        stats=data.stats,
        sections=sections,
        include_dependencies=include_dependencies,
        chains=chains,
    )
