"""Label selection for issues created from findings."""
from __future__ import annotations

import re
from typing import Iterable, Mapping, Optional

from pmdash.models import Finding

DEFAULT_LABELS = ["auto-created"]

DEFAULT_LABEL_MAPPING: dict[str, list[str]] = {
    "TODO": ["feature", "priority-medium"],
    "FIXME": ["bug", "priority-high"],
    "BUG": ["bug", "priority-high"],
    "HACK": ["tech-debt", "priority-low"],
    "OPTIMIZE": ["enhancement", "priority-low"],
    "REFACTOR": ["refactor", "priority-medium"],
    "NOTE": ["documentation", "priority-low"],
    "XXX": ["needs-review", "priority-medium"],
    "Unchecked Task": ["task"],
    "TODO Section": ["feature"],
    "Action Item": ["action-item", "priority-high"],
    "Incomplete Note": ["incomplete"],
}

PRIORITY_LABELS = {
    "high": "priority-high",
    "medium": "priority-medium",
    "low": "priority-low",
}

SOURCE_LABEL = "from-todo"
CATEGORY_LABELS = {
    "markdown": "from-markdown",
    "code": "from-code",
}

LABEL_COLORS = {
    "priority-high": "d73a4a",
    "priority-medium": "fbca04",
    "priority-low": "0e8a16",
    "bug": "d73a4a",
    "feature": "0075ca",
    "enhancement": "a2eeef",
    "tech-debt": "f9d0c4",
    "refactor": "bfdadc",
    "documentation": "0075ca",
    "task": "7057ff",
    "action-item": "e99695",
    "needs-review": "fbca04",
    "incomplete": "ededed",
    "auto-created": "bfd4f2",
    "from-todo": "d4c5f9",
    "from-markdown": "f3ccff",
    "from-code": "c5def5",
}
DEFAULT_LABEL_COLOR = "ededed"

MAX_LABEL_LENGTH = 50


def determine_labels(
    finding: Finding,
    mapping: Optional[Mapping[str, list[str]]] = None,
    default_labels: Optional[Iterable[str]] = None,
) -> list[str]:
    """Labels for ``finding`` in a stable order, without duplicates.

    The priority label is only added when the type mapping did not already
    supply a ``priority-*`` label.
    """
    active_mapping = DEFAULT_LABEL_MAPPING if mapping is None else mapping
    labels: list[str] = []

    def add(label: str) -> None:
        if label and label not in labels:
            labels.append(label)

    for label in (DEFAULT_LABELS if default_labels is None else default_labels):
        add(label)
    for label in active_mapping.get(finding.type, []):
        add(label)

    priority_label = PRIORITY_LABELS.get(finding.priority)
    if priority_label and not any(label.startswith("priority-") for label in labels):
        add(priority_label)

    add(SOURCE_LABEL)
    add(CATEGORY_LABELS.get(finding.category, ""))
    return labels


def label_color(label: str) -> str:
    return LABEL_COLORS.get(label, DEFAULT_LABEL_COLOR)


def validate_label(label: str) -> bool:
    return 0 < len(label) <= MAX_LABEL_LENGTH and bool(label.strip())


def sanitize_label(label: str) -> str:
    value = re.sub(r"\s+", "-", label.strip().lower())
    value = re.sub(r"[^a-z0-9\-_]", "", value)
    return value[:MAX_LABEL_LENGTH]


def all_labels(
    findings: Iterable[Finding],
    mapping: Optional[Mapping[str, list[str]]] = None,
    default_labels: Optional[Iterable[str]] = None,
) -> list[str]:
    defaults = list(DEFAULT_LABELS if default_labels is None else default_labels)
    collected: set[str] = set()
    for finding in findings:
        collected.update(determine_labels(finding, mapping, defaults))
    return sorted(collected)
