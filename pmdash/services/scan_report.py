"""Human and machine readable renderings of scan results and completion reports."""
from __future__ import annotations

import csv
import io
import json
from datetime import datetime

from pmdash.models import CompletionReport, Finding, ScanResult
from pmdash.parsers.completion import top_cleanup_candidates
from pmdash.services.scanner import group_by_file, group_by_priority, group_by_type

SCAN_FORMATS = ("json", "markdown", "summary", "csv")
COMPLETION_FORMATS = ("json", "markdown", "summary")
GROUP_BY_CHOICES = ("file", "priority", "type", "none")

PRIORITY_ICONS = {"high": "🔴", "medium": "🟡", "low": "🟢"}


def _display_date(value: str) -> str:
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return value
    return parsed.strftime("%Y-%m-%d %H:%M:%S UTC")


def _finding_lines(findings: list[Finding], lines: list[str]) -> None:
    for finding in findings:
        icon = PRIORITY_ICONS.get(finding.priority, "⚪")
        lines.append(f"- {icon} **[{finding.type}]** {finding.content}")
        lines.append(f"  - 📁 {finding.file}:{finding.line}")


def format_markdown(result: ScanResult, group_by: str = "file") -> str:
    summary = result.summary
    lines = [
        "# TODO Scan Report",
        "",
        f"**Repository:** {result.rootPath}",
        f"**Scan Date:** {_display_date(result.scanDate)}",
        f"**Total TODOs:** {summary.totalTodos}",
        "",
        "## Summary",
        "",
        "### By Priority",
        f"- 🔴 High: {summary.byPriority.get('high', 0)}",
        f"- 🟡 Medium: {summary.byPriority.get('medium', 0)}",
        f"- 🟢 Low: {summary.byPriority.get('low', 0)}",
        "",
        "### By Type",
    ]
    lines.extend(f"- {name}: {count}" for name, count in summary.byType.items())
    lines.extend(
        [
            "",
            f"**Files Scanned:** {summary.filesScanned}",
            f"**Scan Duration:** {summary.scanDuration}ms",
            "",
            "## TODOs",
            "",
        ]
    )

    if not result.todos:
        lines.append("*No TODOs found*")
        return "\n".join(lines)

    if group_by == "priority":
        for priority, findings in group_by_priority(result.todos).items():
            if not findings:
                continue
            lines.extend([f"### {PRIORITY_ICONS.get(priority, '⚪')} {priority.capitalize()} Priority", ""])
            _finding_lines(findings, lines)
            lines.append("")
    elif group_by in ("file", "type"):
        grouped = group_by_file(result.todos) if group_by == "file" else group_by_type(result.todos)
        for heading, findings in grouped.items():
            lines.extend([f"### {heading}", ""])
            _finding_lines(findings, lines)
            lines.append("")
    else:
        _finding_lines(result.todos, lines)

    return "\n".join(lines)


def format_summary(result: ScanResult) -> str:
    summary = result.summary
    lines = [
        "TODO Scan Summary",
        "=================",
        f"Repository: {result.rootPath}",
        f"Scan Date: {_display_date(result.scanDate)}",
        f"Total TODOs: {summary.totalTodos}",
        "",
        "By Priority:",
        f"  High: {summary.byPriority.get('high', 0)}",
        f"  Medium: {summary.byPriority.get('medium', 0)}",
        f"  Low: {summary.byPriority.get('low', 0)}",
        "",
        "By Type:",
    ]
    lines.extend(f"  {name}: {count}" for name, count in summary.byType.items())
    lines.extend(["", f"Files Scanned: {summary.filesScanned}", f"Scan Duration: {summary.scanDuration}ms"])
    return "\n".join(lines)


def format_csv(result: ScanResult) -> str:
    buffer = io.StringIO()
    writer = csv.writer(buffer, lineterminator="\n")
    writer.writerow(["Type", "Priority", "Content", "File", "Line"])
    for finding in result.todos:
        writer.writerow([finding.type, finding.priority, finding.content, finding.file, finding.line])
    return buffer.getvalue()


def format_scan_result(result: ScanResult, format: str = "json", group_by: str = "file") -> str:
    if format not in SCAN_FORMATS:
        raise ValueError(f"Unknown report format: {format}; use one of {', '.join(SCAN_FORMATS)}")
    if group_by not in GROUP_BY_CHOICES:
        raise ValueError(f"Cannot group findings by {group_by!r}")
    if format == "json":
        return json.dumps(result.model_dump(exclude_none=True), indent=2, ensure_ascii=False)
    if format == "markdown":
        return format_markdown(result, group_by)
    if format == "csv":
        return format_csv(result)
    return format_summary(result)


def _rate(part: int, whole: int) -> str:
    return f"{(part / whole * 100) if whole else 0.0:.1f}%"


def format_completion_report(report: CompletionReport, format: str = "summary", candidates: int = 10) -> str:
    """Render a completion report; markdown lists at most 20 safe-to-close entries."""
    if format not in COMPLETION_FORMATS:
        raise ValueError(f"Unknown report format: {format}; use one of {', '.join(COMPLETION_FORMATS)}")
    if format == "json":
        return json.dumps(report.model_dump(exclude_none=True), indent=2, ensure_ascii=False)

    cleanup = report.likelyCompleted + report.probablyCompleted
    if format == "summary":
        return "\n".join(
            [
                "TODO Completion Analysis Summary",
                "================================",
                f"Total TODOs: {report.total}",
                f"Completion Rate: {_rate(cleanup, report.total)}",
                "",
                "Confidence Distribution:",
                f"  Very High (90-100%): {report.likelyCompleted}",
                f"  High (70-89%):       {report.probablyCompleted}",
                f"  Medium (50-69%):     {report.possiblyCompleted}",
                f"  Low (30-49%):        {report.lowConfidence}",
                f"  Active (<50%):       {report.active}",
                "",
                f"Potential Cleanup: {cleanup} TODOs ({_rate(cleanup, report.total)})",
            ]
        )

    lines = [
        "# TODO Completion Analysis Report",
        "",
        f"**Total TODOs Analyzed:** {report.total}",
        f"**Completion Rate:** {_rate(cleanup, report.total)}",
        "",
        "## 📊 Summary",
        "",
        f"- ✅ **Very High (90-100%)**: {report.likelyCompleted} TODOs",
        f"- ⚠️ **High (70-89%)**: {report.probablyCompleted} TODOs",
        f"- ❓ **Medium (50-69%)**: {report.possiblyCompleted} TODOs",
        f"- 📋 **Low (30-49%)**: {report.lowConfidence} TODOs",
        f"- 🔴 **Active (<50%)**: {report.active} TODOs",
        "",
    ]
    if report.safeToClose:
        lines.extend(["## ✅ Safe to Close (90%+ Confidence)", ""])
        for entry in report.safeToClose[:20]:
            lines.append(f"### {entry.finding.file}:{entry.finding.line}")
            lines.append(f"**Confidence:** {entry.analysis.confidence}%")
            lines.append(f"**TODO:** {entry.finding.content}")
            lines.append("")
            lines.extend(f"- {reason}" for reason in entry.analysis.reasons)
            lines.append("")
        if len(report.safeToClose) > 20:
            lines.extend([f"*... and {len(report.safeToClose) - 20} more*", ""])
    for title, entries in (
        ("## ⚠️ Needs Review (70-89% Confidence)", report.needsReview),
        ("## ❓ Possibly Completed (50-69% Confidence)", report.possiblyDone),
    ):
        if not entries:
            continue
        lines.extend([title, ""])
        for entry in entries:
            lines.append(
                f"- **{entry.finding.file}:{entry.finding.line}** - {entry.finding.content} "
                f"({entry.analysis.confidence}%)"
            )
        lines.append("")

    top = top_cleanup_candidates(report, candidates)
    if top:
        lines.extend(["## 📁 Top Files for Cleanup", ""])
        for item in top:
            lines.append(f"- **{item['file']}** - {item['count']} TODOs (avg confidence: {item['avgConfidence']}%)")
        lines.append("")
    return "\n".join(lines)
