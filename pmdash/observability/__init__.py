"""Observability helpers."""

from pmdash.observability.otel import (
    initialize,
    shutdown,
    start_span,
    record_scan,
    record_issue_result,
    record_export,
)

__all__ = [
    "initialize",
    "shutdown",
    "start_span",
    "record_scan",
    "record_issue_result",
    "record_export",
]
