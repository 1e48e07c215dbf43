"""Persistent record of processed findings, keyed by a stable content hash.

A hash present in the state file is never turned into an issue again. The
file is written atomically, so an interrupted run leaves the previous state
intact.
"""
from __future__ import annotations

import hashlib
import json
import logging
import os
import tempfile
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Iterable, Optional

from pydantic import ValidationError

from pmdash.models import Finding, ProcessedTodo, StateFile, StateStats

logger = logging.getLogger("pmdash.state")

STATUS_PENDING = "pending"
STATUS_SEEN = "seen"
STATUS_CREATED = "created"
STATUS_FAILED = "failed"
STATUS_SKIPPED = "skipped"
VALID_STATUSES = {STATUS_PENDING, STATUS_SEEN, STATUS_CREATED, STATUS_FAILED, STATUS_SKIPPED}


class StateFileError(ValueError):
    """Raised when a state file exists but is not a valid state document."""


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _iso(value: datetime) -> str:
    return value.isoformat().replace("+00:00", "Z")


def _parse_iso(value: str) -> Optional[datetime]:
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except (TypeError, ValueError):
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def finding_hash(finding: Finding) -> str:
    """SHA-256 over file, line, type and content. ``rawText`` does not contribute."""
    key = f"{finding.file}:{finding.line}:{finding.type}:{finding.content}"
    return hashlib.sha256(key.encode("utf-8")).hexdigest()


def _hash_of(finding: Finding) -> str:
    return finding.hash or finding_hash(finding)


def empty_state() -> StateFile:
    return StateFile(lastUpdated=_iso(_utc_now()))


def load_state(path: str | Path) -> StateFile:
    """Load the state file, or an empty state when it does not exist.

    A file that exists but is empty, not JSON, or not shaped like a state
    document raises StateFileError instead of silently resetting history.
    """
    target = Path(path)
    if not target.exists():
        return empty_state()
    try:
        raw = target.read_text(encoding="utf-8")
    except OSError as exc:
        raise StateFileError(f"Cannot read state file {target}: {exc}") from exc
    if not raw.strip():
        raise StateFileError(f"State file {target} is empty")
    try:
        data = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise StateFileError(f"State file {target} is not valid JSON: {exc}") from exc
    if not isinstance(data, dict) or not isinstance(data.get("processedTodos"), list):
        raise StateFileError(f"State file {target} is missing a processedTodos list")
    try:
        return StateFile.model_validate(data)
    except ValidationError as exc:
        raise StateFileError(f"State file {target} has an invalid structure: {exc}") from exc


def save_state(path: str | Path, state: StateFile) -> None:
    """Write ``state`` to ``path`` via a temp file in the same directory and ``os.replace``."""
    target = Path(path)
    target.parent.mkdir(parents=True, exist_ok=True)
    state.lastUpdated = _iso(_utc_now())
    payload = json.dumps(state.model_dump(exclude_none=True), indent=2)

    fd, tmp_name = tempfile.mkstemp(prefix=f".{target.name}.", suffix=".tmp", dir=str(target.parent))
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as handle:
            handle.write(payload)
            handle.flush()
            os.fsync(handle.fileno())
        os.replace(tmp_name, target)
    except BaseException:
        if os.path.exists(tmp_name):
            os.unlink(tmp_name)
        raise
    logger.debug("Saved state with %s entries to %s", len(state.processedTodos), target)


def processed_hashes(state: StateFile) -> set[str]:
    return {entry.hash for entry in state.processedTodos}


def issued_hashes(state: StateFile) -> set[str]:
    """Hashes that already went through issue creation. ``seen`` entries were only reported."""
    return {entry.hash for entry in state.processedTodos if entry.status != STATUS_SEEN}


def find_new(findings: Iterable[Finding], prior_hashes: set[str]) -> list[Finding]:
    """Findings whose hash is not in ``prior_hashes``; order is preserved."""
    return [finding for finding in findings if _hash_of(finding) not in prior_hashes]


def is_processed(state: StateFile, hash_value: str) -> bool:
    return any(entry.hash == hash_value for entry in state.processedTodos)


def get_processed(state: StateFile, hash_value: str) -> Optional[ProcessedTodo]:
    for entry in state.processedTodos:
        if entry.hash == hash_value:
            return entry
    return None


def _recount(state: StateFile) -> None:
    state.metadata.totalProcessed = len(state.processedTodos)
    state.metadata.totalIssuesCreated = sum(
        1 for entry in state.processedTodos if entry.status == STATUS_CREATED
    )


def add_processed(
    state: StateFile,
    finding: Finding,
    status: str = STATUS_PENDING,
    issue_url: Optional[str] = None,
    issue_number: Optional[int] = None,
    error: Optional[str] = None,
) -> ProcessedTodo:
    """Insert or replace the entry for ``finding`` and keep the metadata totals in step."""
    if status not in VALID_STATUSES:
        raise ValueError(f"Unknown processed status: {status}")
    entry = ProcessedTodo(
        hash=_hash_of(finding),
        content=finding.content,
        file=finding.file,
        line=finding.line,
        type=finding.type,
        priority=finding.priority,
        processedAt=_iso(_utc_now()),
        status=status,
        issueUrl=issue_url,
        issueNumber=issue_number,
        error=error,
    )
    state.processedTodos = [item for item in state.processedTodos if item.hash != entry.hash]
    state.processedTodos.append(entry)
    _recount(state)
    return entry


def record_findings(path: str | Path, findings: Iterable[Finding], status: str = STATUS_SEEN) -> StateFile:
    """Load, merge the hashes of ``findings`` not yet recorded, and save atomically."""
    state = load_state(path)
    known = processed_hashes(state)
    added = 0
    for finding in findings:
        hash_value = _hash_of(finding)
        if hash_value in known:
            continue
        add_processed(state, finding, status=status)
        known.add(hash_value)
        added += 1
    save_state(path, state)
    logger.info("Recorded %s new findings in %s", added, path)
    return state


def state_stats(state: StateFile, days_back: int = 7) -> StateStats:
    cutoff = _utc_now() - timedelta(days=days_back)
    stats = StateStats(
        totalProcessed=state.metadata.totalProcessed,
        totalIssuesCreated=state.metadata.totalIssuesCreated,
        lastUpdated=state.lastUpdated,
    )
    for entry in state.processedTodos:
        stats.byStatus[entry.status] = stats.byStatus.get(entry.status, 0) + 1
        stats.byType[entry.type] = stats.byType.get(entry.type, 0) + 1
        processed_at = _parse_iso(entry.processedAt)
        if processed_at is not None and processed_at >= cutoff:
            stats.recentlyProcessed += 1
    return stats


def cleanup_old_entries(state: StateFile, days_to_keep: int = 60) -> int:
    """Drop entries older than ``days_to_keep`` unless they produced an issue. Returns the count removed."""
    cutoff = _utc_now() - timedelta(days=days_to_keep)
    kept = []
    for entry in state.processedTodos:
        processed_at = _parse_iso(entry.processedAt)
        if entry.issueUrl or processed_at is None or processed_at >= cutoff:
            kept.append(entry)
    removed = len(state.processedTodos) - len(kept)
    state.processedTodos = kept
    _recount(state)
    return removed


def mark_report(state: StateFile) -> None:
    state.metadata.lastReportDate = _iso(_utc_now())

