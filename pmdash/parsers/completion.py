"""Heuristics that estimate whether a finding has already been completed.

Three independent signals feed a weighted mean:

* direct markers on the finding's own text (checked box, check glyph, strikethrough)
* keyword cues within a few lines of the finding
* whether the containing document looks archived or outdated

Scores are 0-100; the buckets below are the only thresholds callers should rely on.
"""
from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from pathlib import Path

from pmdash.models import CompletionAnalysis, CompletionReport, Finding, FindingCompletion

logger = logging.getLogger("pmdash.completion")

LIKELY_THRESHOLD = 90
PROBABLY_THRESHOLD = 70
POSSIBLY_THRESHOLD = 50
LOW_THRESHOLD = 30
DEFAULT_COMPLETION_THRESHOLD = PROBABLY_THRESHOLD
OLD_DOCUMENT_THRESHOLD = 50
DEFAULT_CONTEXT_LINES = 3

DIRECT_WEIGHT = 1.5
CONTEXT_WEIGHT = 1.2
OLD_DOCUMENT_WEIGHT = 0.8


@dataclass(frozen=True)
class CompletionIndicator:
    pattern: re.Pattern[str]
    confidence: int
    description: str
    context_required: bool


COMPLETION_INDICATORS: tuple[CompletionIndicator, ...] = (
    CompletionIndicator(
        re.compile(r"\[x\]|✓|✅|☑", re.IGNORECASE),
        95,
        "Task explicitly marked as completed",
        False,
    ),
    CompletionIndicator(
        re.compile(r"\b(completed|done|finished|implemented|resolved|fixed|merged)\b", re.IGNORECASE),
        80,
        "Contains completion keywords",
        True,
    ),
    CompletionIndicator(
        re.compile(r"\bstatus:\s*(done|complete|implemented|finished)\b", re.IGNORECASE),
        90,
        "Explicit status indicator",
        True,
    ),
    CompletionIndicator(
        re.compile(r"\b(as of|completed on|done on|finished on)\s+\d{1,2}[/\-]\d{1,2}[/\-]\d{2,4}", re.IGNORECASE),
        85,
        "Date-stamped completion",
        True,
    ),
    CompletionIndicator(
        re.compile(r"\b(deployed|shipped|released|live|in production)\b", re.IGNORECASE),
        75,
        "Deployment/release indicators",
        True,
    ),
    CompletionIndicator(
        re.compile(r"~~.+~~|<del>.+</del>|<strike>.+</strike>", re.IGNORECASE),
        90,
        "Strikethrough formatting",
        False,
    ),
    CompletionIndicator(
        re.compile(r"\b(archived|obsolete|deprecated|no longer needed|cancelled|not needed)\b", re.IGNORECASE),
        85,
        "Task is archived or obsolete",
        True,
    ),
    CompletionIndicator(
        re.compile(r"\bupdate:?\s*(done|complete|this is now (done|completed|working))", re.IGNORECASE),
        80,
        "Update notes indicating completion",
        True,
    ),
)

OUTDATED_HEADER_PATTERNS: tuple[re.Pattern[str], ...] = (
    re.compile(r"\b(old|legacy|archived|superseded|replaced by|migrated to)\b", re.IGNORECASE),
)

ARCHIVE_PATH_PATTERNS: tuple[re.Pattern[str], ...] = tuple(
    re.compile(pattern, re.IGNORECASE)
    for pattern in (
        r"_archive/",
        r"/archive/",
        r"/old/",
        r"/deprecated/",
        r"/legacy/",
        r"\.old\.",
        r"\.backup\.",
        r"_old_",
        r"_deprecated_",
    )
)

_VERSION_RE = re.compile(r"version\s*:?\s*([0-9]+\.[0-9]+)", re.IGNORECASE)
_PHASE_RE = re.compile(r"phase[_\s-]?([0-9]+)", re.IGNORECASE)
_OLD_YEAR_RE = re.compile(r"\b(2020|2021|2022|2023)\b")


@dataclass
class DirectCheck:
    is_completed: bool = False
    confidence: int = 0
    reason: str = ""


@dataclass
class ContextCheck:
    has_indicator: bool = False
    confidence: float = 0.0
    indicators: list[str] = field(default_factory=list)


@dataclass
class OldDocumentCheck:
    is_old: bool = False
    confidence: int = 0
    reasons: list[str] = field(default_factory=list)


def is_archived_path(path: str) -> bool:
    # Leading slash so a top-level "archive/" directory counts.
    normalized = "/" + path.replace("\\", "/").lstrip("/")
    return any(pattern.search(normalized) for pattern in ARCHIVE_PATH_PATTERNS)


def check_direct_completion(raw_text: str) -> DirectCheck:
    for indicator in COMPLETION_INDICATORS:
        if indicator.context_required:
            continue
        if indicator.pattern.search(raw_text or ""):
            return DirectCheck(True, indicator.confidence, indicator.description)
    return DirectCheck()


def analyze_context(text: str, line: int, context_lines: int = DEFAULT_CONTEXT_LINES) -> ContextCheck:
    """Average confidence of the keyword cues found within ``context_lines`` of ``line``."""
    lines = text.split("\n")
    start = max(0, line - context_lines - 1)
    end = min(len(lines), line + context_lines)
    window = "\n".join(lines[start:end])

    hits: list[CompletionIndicator] = [
        indicator
        for indicator in COMPLETION_INDICATORS
        if indicator.context_required and indicator.pattern.search(window)
    ]
    if not hits:
        return ContextCheck()
    return ContextCheck(
        has_indicator=True,
        confidence=sum(hit.confidence for hit in hits) / len(hits),
        indicators=[hit.description for hit in hits],
    )


def is_in_old_document(path: str, text: str) -> OldDocumentCheck:
    reasons: list[str] = []
    confidence = 0

    if is_archived_path(path):
        reasons.append("File is in archived directory")
        confidence += 70

    version_match = _VERSION_RE.search(text)
    if version_match and float(version_match.group(1)) < 1.0:
        reasons.append(f"Old version: {version_match.group(1)}")
        confidence += 30

    phase_match = _PHASE_RE.search(path)
    if phase_match and int(phase_match.group(1)) <= 2:
        reasons.append(f"Early phase document: Phase {int(phase_match.group(1))}")
        confidence += 40

    if len(_OLD_YEAR_RE.findall(text)) > 3:
        reasons.append("Document contains multiple old dates")
        confidence += 20

    header = text[:500]
    for pattern in OUTDATED_HEADER_PATTERNS:
        match = pattern.search(header)
        if match:
            reasons.append(f'Document header mentions: "{match.group(0)}"')
            confidence += 25

    return OldDocumentCheck(
        is_old=confidence >= OLD_DOCUMENT_THRESHOLD,
        confidence=min(confidence, 100),
        reasons=reasons,
    )


def calculate_completion_confidence(
    direct: DirectCheck,
    context: ContextCheck,
    old_document: OldDocumentCheck,
) -> float:
    total = 0.0
    weight = 0.0
    if direct.is_completed:
        total += direct.confidence * DIRECT_WEIGHT
        weight += DIRECT_WEIGHT
    if context.has_indicator:
        total += context.confidence * CONTEXT_WEIGHT
        weight += CONTEXT_WEIGHT
    if old_document.is_old:
        total += old_document.confidence * OLD_DOCUMENT_WEIGHT
        weight += OLD_DOCUMENT_WEIGHT
    if weight == 0:
        return 0.0
    return min(total / weight, 100.0)


def completion_status(confidence: float) -> str:
    if confidence >= LIKELY_THRESHOLD:
        return "likely-completed"
    if confidence >= PROBABLY_THRESHOLD:
        return "probably-completed"
    if confidence >= POSSIBLY_THRESHOLD:
        return "possibly-completed"
    return "active"


def _suggestions(confidence: float) -> list[str]:
    if confidence >= LIKELY_THRESHOLD:
        return ["Very likely completed - safe to close", "Consider marking as [x] or removing from active tasks"]
    if confidence >= PROBABLY_THRESHOLD:
        return ["Probably completed - recommend manual review", "Check git history or ask team to confirm"]
    if confidence >= POSSIBLY_THRESHOLD:
        return ["Possibly completed - needs verification", "Review recent commits or deployment history"]
    if confidence >= LOW_THRESHOLD:
        return ["May be completed - low confidence", "Keep in TODO list but flag for review"]
    return ["Appears active - no completion indicators"]


def analyze_finding(
    finding: Finding,
    text: str,
    threshold: int = DEFAULT_COMPLETION_THRESHOLD,
) -> CompletionAnalysis:
    direct = check_direct_completion(finding.rawText)
    context = analyze_context(text, finding.line)
    old_document = is_in_old_document(finding.file, text)

    reasons: list[str] = []
    if direct.is_completed:
        reasons.append(direct.reason)
    reasons.extend(context.indicators)
    if old_document.is_old:
        reasons.extend(old_document.reasons)

    score = int(calculate_completion_confidence(direct, context, old_document) + 0.5)
    return CompletionAnalysis(
        confidence=score,
        status=completion_status(score),
        reasons=reasons,
        suggestions=_suggestions(score),
        isLikelyCompleted=score >= threshold,
    )


def analyze_completions(
    findings: list[Finding],
    root_path: str | Path,
    threshold: int = DEFAULT_COMPLETION_THRESHOLD,
) -> CompletionReport:
    """Analyze every finding, reading each source file once.

    Findings whose file cannot be read are left out of the report.
    """
    root = Path(root_path)
    by_file: dict[str, list[Finding]] = {}
    for finding in findings:
        by_file.setdefault(finding.file, []).append(finding)

    report = CompletionReport()
    for rel_path, file_findings in by_file.items():
        try:
            text = (root / rel_path).read_text(encoding="utf-8", errors="replace")
        except OSError as exc:
            logger.warning("Could not read %s for completion analysis: %s", rel_path, exc)
            continue
        for finding in file_findings:
            entry = FindingCompletion(finding=finding, analysis=analyze_finding(finding, text, threshold))
            report.analyses.append(entry)
            report.total += 1

            score = entry.analysis.confidence
            if score >= LIKELY_THRESHOLD:
                report.likelyCompleted += 1
                report.safeToClose.append(entry)
            elif score >= PROBABLY_THRESHOLD:
                report.probablyCompleted += 1
                report.needsReview.append(entry)
            elif score >= POSSIBLY_THRESHOLD:
                report.possiblyCompleted += 1
                report.possiblyDone.append(entry)
            else:
                if score >= LOW_THRESHOLD:
                    report.lowConfidence += 1
                report.active += 1
    return report


def top_cleanup_candidates(report: CompletionReport, limit: int = 10) -> list[dict]:
    """Files ranked by how many of their findings are probably done."""
    stats: dict[str, list[int]] = {}
    for entry in report.analyses:
        if entry.analysis.confidence >= PROBABLY_THRESHOLD:
            stats.setdefault(entry.finding.file, []).append(entry.analysis.confidence)

    ranked = [
        {"file": file, "count": len(scores), "avgConfidence": round(sum(scores) / len(scores), 1)}
        for file, scores in stats.items()
    ]
    ranked.sort(key=lambda item: (-item["count"], item["file"]))
    return ranked[:limit]
