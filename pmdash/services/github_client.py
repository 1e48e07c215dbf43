"""Thin GitHub REST client for issue and label management."""
from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from typing import Iterable, Optional

import requests

from pmdash import config
from pmdash.models import Finding
from pmdash.services.labels import label_color

logger = logging.getLogger("pmdash.github")

ISSUE_FOOTER = "_This issue was automatically created by PMDash from a TODO comment._"


class GitHubError(RuntimeError):
    """Raised when the GitHub API rejects a request or cannot be reached."""


@dataclass
class IssueCreated:
    number: int
    url: str
    title: str = ""


class GitHubClient:
    """Issue and label operations for a single ``owner/repo``."""

    def __init__(
        self,
        owner: str,
        repo: str,
        token: Optional[str] = None,
        base_url: Optional[str] = None,
        timeout: Optional[int] = None,
        session: Optional[requests.Session] = None,
    ):
        resolved_token = token or os.getenv("GITHUB_TOKEN")
        if not resolved_token:
            raise GitHubError(
                "GitHub token not found. Set GITHUB_TOKEN or provide github.token in the project config."
            )
        if not owner or not repo:
            raise GitHubError("GitHub owner and repo are required")

        self.owner = owner
        self.repo = repo
        self.base_url = (base_url or config.GITHUB_API_URL).rstrip("/")
        self.timeout = timeout or config.GITHUB_TIMEOUT_SECONDS
        self.session = session or requests.Session()
        self.session.headers.update(
            {
                "Authorization": f"Bearer {resolved_token}",
                "Accept": "application/vnd.github+json",
                "X-GitHub-Api-Version": "2022-11-28",
            }
        )

    @property
    def _repo_url(self) -> str:
        return f"{self.base_url}/repos/{self.owner}/{self.repo}"

    def _request(self, method: str, path: str, **kwargs) -> requests.Response:
        url = f"{self._repo_url}{path}"
        try:
            response = self.session.request(method, url, timeout=self.timeout, **kwargs)
        except requests.RequestException as exc:
            raise GitHubError(f"{method} {path} failed: {exc}") from exc
        if response.status_code >= 400:
            raise GitHubError(f"{method} {path} returned {response.status_code}: {response.text[:300]}")
        return response

    @staticmethod
    def _json(response: requests.Response, method: str, path: str):
        try:
            return response.json()
        except ValueError as exc:
            raise GitHubError(f"{method} {path} returned a body that is not JSON: {exc}") from exc

    def create_issue(self, title: str, body: str, labels: Optional[list[str]] = None) -> IssueCreated:
        payload = {"title": title, "body": body, "labels": list(labels or [])}
        data = self._json(self._request("POST", "/issues", json=payload), "POST", "/issues")
        if not isinstance(data, dict) or "number" not in data or "html_url" not in data:
            raise GitHubError(f"POST /issues returned an unexpected body: {str(data)[:300]}")
        try:
            number = int(data["number"])
        except (TypeError, ValueError) as exc:
            raise GitHubError(f"POST /issues returned a non-numeric issue number: {data['number']!r}") from exc
        return IssueCreated(number=number, url=str(data["html_url"]), title=str(data.get("title", title)))

    def find_issue_by_title(self, title: str) -> Optional[IssueCreated]:
        """Exact-title lookup across the most recent 100 issues (open or closed).

        Lookup failures are logged and treated as "not found".
        """
        try:
            response = self._request("GET", "/issues", params={"state": "all", "per_page": 100})
        except GitHubError as exc:
            logger.warning("Could not check for existing issues: %s", exc)
            return None
        for issue in response.json():
            if issue.get("title") == title:
                return IssueCreated(number=int(issue["number"]), url=str(issue["html_url"]), title=title)
        return None

    def list_labels(self) -> list[str]:
        response = self._request("GET", "/labels", params={"per_page": 100})
        return [str(label.get("name", "")) for label in response.json()]

    def create_label(self, name: str, color: str = "ededed", description: str = "") -> bool:
        """Create a label; returns False when it already exists."""
        payload = {"name": name, "color": color}
        if description:
            payload["description"] = description
        try:
            self._request("POST", "/labels", json=payload)
        except GitHubError as exc:
            if "already_exists" in str(exc):
                return False
            raise
        return True

    def ensure_labels(self, labels: Iterable[str]) -> list[str]:
        """Create any of ``labels`` missing from the repository. Returns the names created."""
        existing = {name.lower() for name in self.list_labels()}
        created = []
        for label in labels:
            if label.lower() in existing:
                continue
            if self.create_label(label, label_color(label)):
                created.append(label)
            existing.add(label.lower())
        if created:
            logger.info("Created %s labels in %s/%s", len(created), self.owner, self.repo)
        return created


def format_issue_title(content: str, prefix: Optional[str] = None, max_length: int = 80) -> str:
    title = content.strip()
    if prefix:
        title = f"{prefix} {title}"
    if len(title) > max_length:
        title = title[: max_length - 3] + "..."
    return title


def format_issue_body(finding: Finding) -> str:
    lines = [
        finding.content,
        "",
        "---",
        "",
        "**Source Information:**",
        f"- File: `{finding.file}`",
        f"- Line: {finding.line}",
        f"- Type: {finding.type}",
        f"- Priority: {finding.priority}",
        "",
    ]
    if finding.rawText:
        lines.extend(["**Original TODO:**", "```", finding.rawText.rstrip("\n"), "```", ""])
    lines.extend(["---", "", ISSUE_FOOTER])
    return "\n".join(lines)
