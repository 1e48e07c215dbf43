"""Marker definitions for TODO-style findings in code and markdown files.

The table is data: every marker is a ``MarkerPattern`` and a single routine
(``extract_findings``) applies whichever subset fits the file type.
"""
from __future__ import annotations

import re
from dataclasses import dataclass
from pathlib import PurePosixPath

from pmdash.models import Finding


@dataclass(frozen=True)
class MarkerPattern:
    name: str
    regex: re.Pattern[str]
    priority: str
    category: str


_COMMENT_OPENER = r"(?:\/\/|#|\/\*|\*|<!--)"


def _code_marker(token: str) -> re.Pattern[str]:
    return re.compile(
        rf"{_COMMENT_OPENER}[ \t]*{token}\b:?[ \t]*(.+?)[ \t]*(?:\*\/|-->)?[ \t]*$",
        re.MULTILINE | re.IGNORECASE,
    )


CODE_PATTERNS: tuple[MarkerPattern, ...] = (
    MarkerPattern("TODO", _code_marker("TODO"), "medium", "code"),
    MarkerPattern("FIXME", _code_marker("FIXME"), "high", "code"),
    MarkerPattern("HACK", _code_marker("HACK"), "low", "code"),
    MarkerPattern("BUG", _code_marker("BUG"), "high", "code"),
    MarkerPattern("OPTIMIZE", _code_marker("OPTIMIZE"), "low", "code"),
    MarkerPattern("REFACTOR", _code_marker("REFACTOR"), "medium", "code"),
    MarkerPattern("NOTE", _code_marker("NOTE"), "low", "code"),
    MarkerPattern("XXX", _code_marker("XXX"), "medium", "code"),
)

MARKDOWN_PATTERNS: tuple[MarkerPattern, ...] = (
    MarkerPattern(
        "Unchecked Task",
        re.compile(r"^[ \t]*-[ \t]+\[ \][ \t]+(.+?)[ \t]*$", re.MULTILINE),
        "medium",
        "markdown",
    ),
    MarkerPattern(
        "TODO Section",
        re.compile(
            r"^#+[ \t]*(?:TODO|To[ \t]*Do|Tasks?)[ \t]*:?[ \t]*\n+((?:.*(?:\n|\Z))*?)(?=^#|\Z)",
            re.MULTILINE | re.IGNORECASE,
        ),
        "medium",
        "markdown",
    ),
    MarkerPattern(
        "Action Item",
        re.compile(r"^(?:Action[ \t]*Item|AI)(?:[ \t]*\d+)?[ \t]*:[ \t]*(.+?)[ \t]*$", re.MULTILINE | re.IGNORECASE),
        "high",
        "markdown",
    ),
    MarkerPattern(
        "Incomplete Note",
        re.compile(r"^(.*\[(?:TBD|TBA|WIP|INCOMPLETE)\].*)$", re.MULTILINE | re.IGNORECASE),
        "medium",
        "markdown",
    ),
)

ALL_PATTERNS: tuple[MarkerPattern, ...] = CODE_PATTERNS + MARKDOWN_PATTERNS

MARKDOWN_EXTENSIONS = frozenset({"md", "mdx", "markdown"})
CODE_EXTENSIONS = frozenset({
    "js", "jsx", "ts", "tsx", "py", "java", "cpp", "c", "cs", "go", "rs",
    "rb", "php", "swift", "kt", "scala", "r", "sh", "bash",
})
SCANNABLE_EXTENSIONS = frozenset({
    "md", "mdx", "markdown", "txt", "rst",
    "js", "jsx", "ts", "tsx", "mjs", "cjs",
    "py", "pyw", "pyx",
    "java", "kt", "kts",
    "cpp", "c", "h", "hpp", "cc", "cxx",
    "cs", "vb",
    "go",
    "rs",
    "rb", "erb",
    "php", "phtml",
    "swift",
    "scala", "sc",
    "r", "rmd",
    "sh", "bash", "zsh", "fish",
    "yaml", "yml",
    "json", "jsonc",
    "xml", "html", "htm",
    "sql",
    "dart",
    "lua",
    "perl", "pl",
    "julia", "jl",
    "vue", "svelte",
})


def file_extension(path: str) -> str:
    return PurePosixPath(path.replace("\\", "/")).suffix.lstrip(".").lower()


def patterns_for_file(path: str) -> tuple[MarkerPattern, ...]:
    """Markdown gets markdown + code markers, code gets code markers, anything else gets all."""
    ext = file_extension(path)
    if ext in MARKDOWN_EXTENSIONS:
        return MARKDOWN_PATTERNS + CODE_PATTERNS
    if ext in CODE_EXTENSIONS:
        return CODE_PATTERNS
    return ALL_PATTERNS


def is_scannable(path: str) -> bool:
    return file_extension(path) in SCANNABLE_EXTENSIONS


def _line_for_offset(text: str, offset: int) -> int:
    return text.count("\n", 0, offset) + 1


def extract_findings(
    text: str,
    rel_path: str,
    patterns: tuple[MarkerPattern, ...] | list[MarkerPattern] | None = None,
) -> list[Finding]:
    """Apply every marker in ``patterns`` to ``text``.

    Results are ordered by line, then by the marker's position in the table.
    """
    active = tuple(patterns) if patterns is not None else patterns_for_file(rel_path)
    ranked: list[tuple[int, int, Finding]] = []
    for order, pattern in enumerate(active):
        for match in pattern.regex.finditer(text):
            raw = match.group(0)
            content = (match.group(1) if match.lastindex else "") or ""
            content = content.strip() or raw.strip()
            line = _line_for_offset(text, match.start())
            ranked.append(
                (
                    line,
                    order,
                    Finding(
                        type=pattern.name,
                        content=content,
                        file=rel_path,
                        line=line,
                        priority=pattern.priority,
                        category=pattern.category,
                        rawText=raw,
                    ),
                )
            )
    ranked.sort(key=lambda item: (item[0], item[1]))
    return [finding for _, _, finding in ranked]
