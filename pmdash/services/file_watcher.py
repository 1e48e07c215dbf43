"""Watch mode: rescan changed files and report findings that are new against the state file.

Uses `watchfiles` for change notification. Deleted files are ignored; a
finding only disappears from view on the next full scan.
"""
from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Callable, Optional

from watchfiles import Change, awatch

from pmdash.models import Finding
from pmdash.parsers.patterns import is_scannable
from pmdash.services.file_traversal import IgnoreMatcher, build_include_spec
from pmdash.services.scanner import ScanOptions, scan_file
from pmdash.services.state_tracker import STATUS_SEEN, finding_hash, load_state, processed_hashes, record_findings

logger = logging.getLogger("pmdash.watcher")

ScanCallback = Callable[[list[Finding]], None]


class TodoWatcher:
    """Background watcher that rescans changed files under one root."""

    def __init__(self):
        self._task: Optional[asyncio.Task] = None
        self._running = False
        self._stop_event: Optional[asyncio.Event] = None
        self.root: Optional[Path] = None
        self.state_path: Optional[Path] = None
        self.options = ScanOptions()
        self.record = False
        self.on_scan: Optional[ScanCallback] = None
        self.last_new: list[Finding] = []
        self._matcher: Optional[IgnoreMatcher] = None
        self._include_spec = None

    def configure(
        self,
        root: str | Path,
        state_path: str | Path,
        options: Optional[ScanOptions] = None,
        on_scan: Optional[ScanCallback] = None,
        record: bool = False,
    ) -> None:
        self.root = Path(root).resolve()
        self.state_path = Path(state_path)
        self.options = options or ScanOptions()
        self.on_scan = on_scan
        self.record = record
        self._matcher = IgnoreMatcher(self.root, use_gitignore=self.options.use_gitignore, exclude=self.options.exclude)
        self._include_spec = build_include_spec(self.options.include)

    async def start(
        self,
        root: str | Path,
        state_path: str | Path,
        options: Optional[ScanOptions] = None,
        on_scan: Optional[ScanCallback] = None,
        record: bool = False,
    ) -> None:
        """Start watching ``root`` in a background task."""
        if self._running:
            logger.warning("Watcher already running")
            return
        self.configure(root, state_path, options, on_scan, record)
        if not self.root.is_dir():
            raise FileNotFoundError(f"Root path does not exist: {self.root}")

        self._running = True
        self._stop_event = asyncio.Event()
        self._task = asyncio.create_task(self._watch_loop())
        logger.info("Watcher started for %s", self.root)

    async def stop(self) -> None:
        self._running = False
        if self._stop_event is not None:
            self._stop_event.set()
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        logger.info("Watcher stopped")

    @property
    def is_running(self) -> bool:
        return self._running

    async def wait(self) -> None:
        """Block until the watch loop ends."""
        if self._task:
            await self._task

    async def _watch_loop(self) -> None:
        try:
            async for changes in awatch(self.root, stop_event=self._stop_event):
                if not self._running:
                    break
                changed = self._classify_changes(changes)
                if not changed:
                    continue
                logger.info("Detected %s changed files, rescanning", len(changed))
                try:
                    await asyncio.to_thread(self.process_changes, changed)
                except (OSError, ValueError) as exc:
                    logger.error("Error rescanning changed files: %s", exc)
        except asyncio.CancelledError:
            logger.info("Watcher task cancelled")
        finally:
            self._running = False

    def _classify_changes(self, changes: set[tuple[Change, str]]) -> list[str]:
        """Relative paths of added or modified files that a scan would read."""
        result = []
        for change_type, path_str in changes:
            if change_type == Change.deleted:
                continue
            try:
                rel_path = Path(path_str).resolve().relative_to(self.root).as_posix()
            except ValueError:
                continue
            if not is_scannable(rel_path):
                continue
            if self._matcher is not None and self._matcher.should_ignore(rel_path):
                continue
            if self._include_spec is not None and not self._include_spec.match_file(rel_path):
                continue
            result.append(rel_path)
        return sorted(set(result))

    def process_changes(self, rel_paths: list[str]) -> list[Finding]:
        """Rescan ``rel_paths`` and return findings whose hash is not yet in the state file."""
        findings: list[Finding] = []
        for rel_path in rel_paths:
            findings.extend(scan_file(rel_path, self.root / rel_path, self.options))

        known = processed_hashes(load_state(self.state_path))
        new = []
        for finding in findings:
            hash_value = finding_hash(finding)
            if hash_value in known:
                continue
            new.append(finding.model_copy(update={"hash": hash_value}))

        if new and self.record:
            record_findings(self.state_path, new, status=STATUS_SEEN)
        self.last_new = new
        if new:
            logger.info("%s new findings in %s changed files", len(new), len(rel_paths))
        if self.on_scan is not None:
            self.on_scan(new)
        return new


todo_watcher = TodoWatcher()
