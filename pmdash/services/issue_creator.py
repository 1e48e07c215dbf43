"""Turn new findings into GitHub issues, recording each outcome in state."""
from __future__ import annotations

import logging
import time
from typing import Iterable, Mapping, Optional

import requests

from pmdash.models import Finding, IssueCreationResult, IssueOutcome, StateFile
from pmdash.observability import record_issue_result, start_span
from pmdash.services.github_client import GitHubClient, GitHubError, format_issue_body, format_issue_title
from pmdash.services.labels import determine_labels
from pmdash.services.state_tracker import (
    STATUS_CREATED,
    STATUS_FAILED,
    STATUS_SKIPPED,
    add_processed,
    finding_hash,
    issued_hashes,
)

logger = logging.getLogger("pmdash.issues")


def create_issues(
    findings: Iterable[Finding],
    state: StateFile,
    client: Optional[GitHubClient],
    label_mapping: Optional[Mapping[str, list[str]]] = None,
    default_labels: Optional[list[str]] = None,
    title_prefix: Optional[str] = None,
    check_duplicates: bool = True,
    dry_run: bool = False,
) -> IssueCreationResult:
    """Create one issue per finding that has not been through issue creation before.

    ``state`` is only mutated in memory; the caller persists it afterwards.
    A failure for one finding is recorded as ``failed`` and the batch
    continues. In dry-run mode nothing is sent and nothing is recorded.
    """
    if client is None and not dry_run:
        raise ValueError("A GitHub client is required unless dry_run is set")

    result = IssueCreationResult(dryRun=dry_run)
    known = issued_hashes(state)
    pending: list[tuple[str, Finding, list[str]]] = []
    for finding in findings:
        hash_value = finding.hash or finding_hash(finding)
        if hash_value in known:
            continue
        known.add(hash_value)
        pending.append((hash_value, finding, determine_labels(finding, label_mapping, default_labels)))

    if not pending:
        return result

    if not dry_run:
        wanted: list[str] = []
        for _, _, labels in pending:
            wanted.extend(label for label in labels if label not in wanted)
        try:
            client.ensure_labels(wanted)
        except GitHubError as exc:
            logger.warning("Could not ensure labels exist: %s", exc)

    with start_span("pmdash.create_issues", {"count": len(pending), "dry_run": dry_run}):
        for hash_value, finding, labels in pending:
            title = format_issue_title(finding.content, title_prefix)
            outcome = IssueOutcome(hash=hash_value, title=title, status="dry-run", labels=labels)

            if dry_run:
                logger.info("[DRY RUN] Would create issue: %s (%s:%s)", title, finding.file, finding.line)
                result.results.append(outcome)
                continue

            try:
                if check_duplicates:
                    existing = client.find_issue_by_title(title)
                    if existing is not None:
                        logger.info("Skipping duplicate issue #%s: %s", existing.number, title)
                        add_processed(
                            state,
                            finding,
                            status=STATUS_SKIPPED,
                            issue_url=existing.url,
                            issue_number=existing.number,
                        )
                        outcome.status = STATUS_SKIPPED
                        outcome.issueUrl = existing.url
                        outcome.issueNumber = existing.number
                        result.skipped += 1
                        result.results.append(outcome)
                        continue

                created = client.create_issue(title, format_issue_body(finding), labels)
            except (GitHubError, requests.RequestException) as exc:
                logger.error("Failed to create issue for %s:%s: %s", finding.file, finding.line, exc)
                add_processed(state, finding, status=STATUS_FAILED, error=str(exc))
                outcome.status = STATUS_FAILED
                outcome.error = str(exc)
                result.failed += 1
                result.results.append(outcome)
                continue

            logger.info("Created issue #%s: %s", created.number, title)
            add_processed(
                state,
                finding,
                status=STATUS_CREATED,
                issue_url=created.url,
                issue_number=created.number,
            )
            outcome.status = STATUS_CREATED
            outcome.issueUrl = created.url
            outcome.issueNumber = created.number
            result.created += 1
            result.results.append(outcome)

    record_issue_result(STATUS_CREATED, result.created)
    record_issue_result(STATUS_FAILED, result.failed)
    record_issue_result(STATUS_SKIPPED, result.skipped)
    return result


def batch_create_issues(
    findings: list[Finding],
    state: StateFile,
    client: Optional[GitHubClient],
    batch_size: int = 10,
    delay_seconds: float = 1.0,
    sleep=time.sleep,
    **kwargs,
) -> IssueCreationResult:
    """``create_issues`` in chunks of ``batch_size`` with a pause between chunks."""
    if batch_size < 1:
        raise ValueError("batch_size must be at least 1")

    combined = IssueCreationResult(dryRun=bool(kwargs.get("dry_run", False)))
    batches = [findings[i:i + batch_size] for i in range(0, len(findings), batch_size)]
    for index, batch in enumerate(batches, start=1):
        logger.info("Processing batch %s/%s (%s findings)", index, len(batches), len(batch))
        partial = create_issues(batch, state, client, **kwargs)
        combined.created += partial.created
        combined.failed += partial.failed
        combined.skipped += partial.skipped
        combined.results.extend(partial.results)
        if index < len(batches) and delay_seconds > 0:
            sleep(delay_seconds)
    return combined
