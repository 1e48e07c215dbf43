"""Scanner orchestrator: traversal, marker extraction and summary statistics."""
from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

from pmdash import config
from pmdash.models import Finding, ScanResult, ScanSummary
from pmdash.observability import record_scan, start_span
from pmdash.parsers.completion import DEFAULT_COMPLETION_THRESHOLD, analyze_finding, is_archived_path
from pmdash.parsers.patterns import MarkerPattern, extract_findings, patterns_for_file
from pmdash.project_config import ScanSettings
from pmdash.services.file_traversal import list_files, read_file_safely
from pmdash.services.state_tracker import finding_hash

logger = logging.getLogger("pmdash.scanner")


@dataclass
class ScanOptions:
    include: list[str] = field(default_factory=list)
    exclude: list[str] = field(default_factory=list)
    use_gitignore: bool = True
    exclude_archives: bool = False
    exclude_completed: bool = False
    completion_threshold: int = DEFAULT_COMPLETION_THRESHOLD
    patterns: Optional[list[MarkerPattern]] = None
    max_file_bytes: Optional[int] = None


def _utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


def scan_file(rel_path: str, absolute_path: str | Path, options: ScanOptions) -> list[Finding]:
    """Findings in one file after the archive and completion filters. Unreadable files yield none."""
    if options.exclude_archives and is_archived_path(rel_path):
        return []
    text = read_file_safely(absolute_path, options.max_file_bytes)
    if text is None:
        return []
    patterns = options.patterns if options.patterns is not None else patterns_for_file(rel_path)
    findings = extract_findings(text, rel_path, patterns)
    if options.exclude_completed and findings:
        findings = [
            finding for finding in findings
            if analyze_finding(finding, text).confidence < options.completion_threshold
        ]
    return findings


def scan(root_path: str | Path, options: ScanOptions | None = None) -> ScanResult:
    """Scan ``root_path`` for findings.

    Raises FileNotFoundError when the root does not exist. Files that cannot be
    read, or exceed the size limit, are skipped with a warning.
    """
    opts = options or ScanOptions()
    started = time.perf_counter()
    root = Path(root_path)

    with start_span("pmdash.scan", {"root": str(root)}):
        files = list_files(
            root,
            use_gitignore=opts.use_gitignore,
            include=opts.include,
            exclude=opts.exclude,
        )

        findings: list[Finding] = []
        for info in files:
            findings.extend(scan_file(info.path, info.absolutePath, opts))

        summary = ScanSummary(filesScanned=len(files))
        for finding in findings:
            summary.byPriority[finding.priority] = summary.byPriority.get(finding.priority, 0) + 1
            summary.byType[finding.type] = summary.byType.get(finding.type, 0) + 1
            summary.byFile[finding.file] = summary.byFile.get(finding.file, 0) + 1
        summary.totalTodos = len(findings)
        summary.scanDuration = int((time.perf_counter() - started) * 1000)

    record_scan(len(files), len(findings), summary.scanDuration)
    logger.info(
        "Scanned %s files under %s: %s findings in %sms",
        len(files),
        root,
        len(findings),
        summary.scanDuration,
    )
    return ScanResult(
        todos=findings,
        summary=summary,
        scanDate=_utc_now_iso(),
        rootPath=str(root),
    )


def process_scan_results(result: ScanResult) -> ScanResult:
    """Return a copy of ``result`` whose findings carry a scan-local id and a stable hash."""
    processed = [
        finding.model_copy(update={"id": f"todo-{index}", "hash": finding_hash(finding)})
        for index, finding in enumerate(result.todos, start=1)
    ]
    return result.model_copy(update={"todos": processed})


def group_by_file(findings: list[Finding]) -> dict[str, list[Finding]]:
    grouped: dict[str, list[Finding]] = {}
    for finding in findings:
        grouped.setdefault(finding.file, []).append(finding)
    return grouped


def group_by_priority(findings: list[Finding]) -> dict[str, list[Finding]]:
    grouped: dict[str, list[Finding]] = {"high": [], "medium": [], "low": []}
    for finding in findings:
        grouped.setdefault(finding.priority, []).append(finding)
    return grouped


def group_by_type(findings: list[Finding]) -> dict[str, list[Finding]]:
    grouped: dict[str, list[Finding]] = {}
    for finding in findings:
        grouped.setdefault(finding.type, []).append(finding)
    return grouped


def filter_findings(
    findings: list[Finding],
    priority: str | None = None,
    type: str | None = None,
    file: str | None = None,
    search_term: str | None = None,
) -> list[Finding]:
    """AND together the supplied criteria; ``file`` and ``search_term`` are substring matches."""
    needle = (search_term or "").strip().lower()
    result = []
    for finding in findings:
        if priority and finding.priority != priority:
            continue
        if type and finding.type != type:
            continue
        if file and file not in finding.file:
            continue
        if needle and needle not in finding.content.lower():
            continue
        result.append(finding)
    return result


def default_options() -> ScanOptions:
    return ScanOptions(
        completion_threshold=config.COMPLETION_THRESHOLD,
        max_file_bytes=config.MAX_FILE_BYTES,
    )


def options_from_settings(settings: ScanSettings, **overrides) -> ScanOptions:
    """Scan options seeded from the project config's ``scan`` block; ``overrides`` win."""
    opts = default_options()
    opts.include = list(settings.include)
    opts.exclude = list(settings.exclude)
    opts.use_gitignore = settings.useGitignore
    opts.exclude_archives = settings.excludeArchives
    for name, value in overrides.items():
        if value is None:
            continue
        if not hasattr(opts, name):
            raise TypeError(f"Unknown scan option: {name}")
        setattr(opts, name, value)
    return opts
