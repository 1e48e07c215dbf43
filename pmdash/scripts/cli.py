#!/usr/bin/env python3
"""PMDash command line: scan TODOs, file issues, manage the feature registry and export roadmaps.

Usage:
  pmdash scan . --only-new --format markdown
  pmdash create-issues . --dry-run
  pmdash features add auth "User authentication" --priority P0
  pmdash roadmap --format html --output roadmap.html --include-completed
  pmdash serve --port 8000
"""
from __future__ import annotations

import argparse
import asyncio
import json
import logging
import os
import sys
from pathlib import Path
from typing import Optional

from pmdash import config
from pmdash.models import Finding, FeatureCreate, ScanResult
from pmdash.parsers.code_discovery import discover_features, to_registry_features
from pmdash.parsers.completion import analyze_completions
from pmdash.project_config import (
    ProjectConfig,
    load_project_config,
    registry_file_for,
    state_file_for,
    write_default_config,
)
from pmdash.services.feature_registry import DuplicateFeatureError, FeatureRegistry
from pmdash.services.file_watcher import TodoWatcher
from pmdash.services.github_client import GitHubClient, GitHubError
from pmdash.services.issue_creator import batch_create_issues
from pmdash.services.roadmap_exporter import EXPORT_FORMATS, GROUP_BY_FIELDS, RoadmapExporter
from pmdash.services.scan_report import (
    COMPLETION_FORMATS,
    GROUP_BY_CHOICES,
    SCAN_FORMATS,
    format_completion_report,
    format_scan_result,
)
from pmdash.services.scanner import filter_findings, options_from_settings, process_scan_results, scan
from pmdash.services.state_tracker import (
    cleanup_old_entries,
    find_new,
    load_state,
    mark_report,
    processed_hashes,
    record_findings,
    save_state,
    state_stats,
)

logger = logging.getLogger("pmdash.cli")


def _split(value: Optional[str]) -> list[str]:
    return [item.strip() for item in (value or "").split(",") if item.strip()]


def _emit(text: str, output: Optional[str]) -> None:
    if not output:
        print(text)
        return
    target = Path(output)
    target.parent.mkdir(parents=True, exist_ok=True)
    target.write_text(text, encoding="utf-8")
    print(f"Output written to: {target}")


def _project(args: argparse.Namespace, root: Path) -> ProjectConfig:
    if args.config:
        return load_project_config(args.config)
    local = root / "pmdash.yaml"
    return load_project_config(local if local.exists() else config.CONFIG_FILE)


def _registry_path(args: argparse.Namespace) -> Path:
    root = config.ROOT_PATH
    return registry_file_for(root, _project(args, root), args.registry)


def _scan_options(args: argparse.Namespace, project: ProjectConfig):
    return options_from_settings(
        project.scan,
        include=(project.scan.include + args.include) if args.include else None,
        exclude=(project.scan.exclude + args.exclude) if args.exclude else None,
        use_gitignore=False if args.no_gitignore else None,
        exclude_archives=True if getattr(args, "exclude_archives", False) else None,
        exclude_completed=True if getattr(args, "exclude_completed", False) else None,
        completion_threshold=getattr(args, "completion_threshold", None),
    )


# ── TODO commands ───────────────────────────────────────────────────

def cmd_scan(args: argparse.Namespace) -> int:
    root = Path(args.root)
    project = _project(args, root)
    result = process_scan_results(scan(root, _scan_options(args, project)))
    state_path = state_file_for(root, project, args.state_file)

    if args.only_new:
        new = find_new(result.todos, processed_hashes(load_state(state_path)))
        logger.info("%s of %s findings are new", len(new), len(result.todos))
        reported = result.model_copy(update={"todos": new})
    else:
        reported = result

    _emit(format_scan_result(reported, args.format, args.group_by), args.output)

    if not args.no_save_state:
        record_findings(state_path, result.todos)
        logger.info("State saved to %s", state_path)
    return 0


def cmd_completion(args: argparse.Namespace) -> int:
    root = Path(args.root)
    project = _project(args, root)
    result = scan(root, _scan_options(args, project))
    report = analyze_completions(result.todos, root, args.threshold)
    _emit(format_completion_report(report, args.format), args.output)
    return 0


def _load_input(path: str) -> list[Finding]:
    data = json.loads(Path(path).read_text(encoding="utf-8"))
    if isinstance(data, list):
        return [Finding.model_validate(item) for item in data]
    if isinstance(data, dict) and "todos" in data:
        return ScanResult.model_validate(data).todos
    raise ValueError(f"Input {path} must be a scan result or a list of findings")


def cmd_create_issues(args: argparse.Namespace) -> int:
    root = Path(args.root)
    project = _project(args, root)
    state_path = state_file_for(root, project, args.state_file)
    state = load_state(state_path)

    if args.input:
        findings = _load_input(args.input)
    else:
        findings = process_scan_results(scan(root, _scan_options(args, project))).todos
    findings = filter_findings(findings, priority=args.priority, type=args.type)

    client = None
    if not args.dry_run:
        client = GitHubClient(project.github.owner, project.github.repo, token=project.github.token)

    try:
        result = batch_create_issues(
            findings,
            state,
            client,
            batch_size=args.batch_size,
            delay_seconds=args.delay,
            label_mapping=project.labels,
            default_labels=project.github.defaultLabels,
            title_prefix=project.github.issueTitlePrefix,
            check_duplicates=not args.no_duplicates,
            dry_run=args.dry_run,
        )
    finally:
        # Outcomes recorded before an abort must still reach disk.
        if not args.dry_run:
            mark_report(state)
            save_state(state_path, state)

    if args.dry_run:
        for outcome in result.results:
            print(f"[DRY RUN] {outcome.title} ({', '.join(outcome.labels)})")
        print(f"Would create {len(result.results)} issues")
        return 0

    for outcome in result.results:
        if outcome.issueUrl:
            print(f"{outcome.status}: {outcome.title} -> {outcome.issueUrl}")
        elif outcome.error:
            print(f"{outcome.status}: {outcome.title} ({outcome.error})")
    print(f"Created: {result.created}  Failed: {result.failed}  Skipped: {result.skipped}")
    return 1 if result.failed else 0


def cmd_stats(args: argparse.Namespace) -> int:
    root = Path(args.root)
    state_path = state_file_for(root, _project(args, root), args.state_file)
    stats = state_stats(load_state(state_path), days_back=args.days)
    if args.json:
        print(json.dumps(stats.model_dump(), indent=2))
        return 0
    print(f"State file: {state_path}")
    print(f"Period: last {args.days} days")
    print(f"Total processed: {stats.totalProcessed}")
    print(f"Issues created: {stats.totalIssuesCreated}")
    print(f"Recently processed: {stats.recentlyProcessed}")
    print("By status:")
    for status, count in sorted(stats.byStatus.items()):
        print(f"  {status}: {count}")
    print("By type:")
    for marker, count in sorted(stats.byType.items()):
        print(f"  {marker}: {count}")
    return 0


def cmd_cleanup_state(args: argparse.Namespace) -> int:
    root = Path(args.root)
    state_path = state_file_for(root, _project(args, root), args.state_file)
    state = load_state(state_path)
    removed = cleanup_old_entries(state, days_to_keep=args.days)
    save_state(state_path, state)
    print(f"Removed {removed} entries older than {args.days} days")
    return 0


def cmd_discover(args: argparse.Namespace) -> int:
    root = Path(args.root)
    result = discover_features(root, include=args.include, exclude=args.exclude, use_gitignore=not args.no_gitignore)
    if args.json:
        print(json.dumps(result.model_dump(), indent=2))
    else:
        print(f"Files scanned: {result.filesScanned}")
        for kind, count in sorted(result.byType.items()):
            print(f"  {kind}: {count}")
        for item in result.features:
            location = f"{item.file}:{item.line}" if item.line else item.file
            print(f"- [{item.type}] {item.name} ({item.confidence}%) {location}")

    if args.add_to_registry:
        registry = FeatureRegistry(registry_file_for(root, _project(args, root), args.registry))
        added = 0
        for draft in to_registry_features(result, args.min_confidence):
            if registry.get_feature(draft.id) is not None:
                continue
            registry.add_feature(draft)
            added += 1
        print(f"Added {added} discovered features to {registry.file_path}")
    return 0


def cmd_watch(args: argparse.Namespace) -> int:
    root = Path(args.root)
    project = _project(args, root)
    state_path = state_file_for(root, project, args.state_file)
    watcher = TodoWatcher()

    def report(findings: list[Finding]) -> None:
        for finding in findings:
            print(f"[{finding.type}] {finding.file}:{finding.line} {finding.content}", flush=True)

    async def _run() -> None:
        await watcher.start(root, state_path, _scan_options(args, project), on_scan=report, record=args.record)
        try:
            await watcher.wait()
        finally:
            await watcher.stop()

    print(f"Watching {root.resolve()} (Ctrl+C to stop)")
    try:
        asyncio.run(_run())
    except KeyboardInterrupt:
        print("Stopped")
    return 0


def cmd_serve(args: argparse.Namespace) -> int:
    import uvicorn

    if args.root:
        os.environ["PMDASH_ROOT"] = str(Path(args.root).resolve())
    if args.watch:
        os.environ["PMDASH_WATCH_ENABLED"] = "true"
    uvicorn.run("pmdash.main:app", host=args.host, port=args.port, reload=args.reload)
    return 0


# ── Feature registry commands ──────────────────────────────────────

def cmd_features_init(args: argparse.Namespace) -> int:
    path = _registry_path(args)
    if path.exists() and not args.force:
        raise FileExistsError(f"Registry already exists: {path} (use --force to update project info)")
    registry = FeatureRegistry(path, create_if_missing=True)
    info = registry.set_project(args.name, args.code, args.description)
    print(f"Initialized registry for {info.name} ({info.code}) at {path}")
    if args.with_config:
        written = write_default_config(config.CONFIG_FILE)
        print(f"Wrote default config to {written}")
    return 0


def cmd_features_add(args: argparse.Namespace) -> int:
    registry = FeatureRegistry(_registry_path(args))
    try:
        feature = registry.add_feature(
            FeatureCreate(
                id=args.id,
                name=args.name,
                description=args.description,
                category=args.category,
                phase=args.phase,
                priority=args.priority,
                status=args.status,
                dependencies=_split(args.depends_on),
                blocks=_split(args.blocks),
                value=args.value,
                tags=_split(args.tags),
                code=args.code,
            )
        )
    except DuplicateFeatureError as exc:
        logger.error("%s", exc)
        return 1
    if registry.has_circular_dependency(feature.id):
        logger.warning("Feature %s is part of a dependency cycle", feature.id)
    print(f"Added {feature.id} as #{feature.number}")
    return 0


def cmd_features_update(args: argparse.Namespace) -> int:
    registry = FeatureRegistry(_registry_path(args))
    changes = {
        name: value
        for name, value in (
            ("name", args.name),
            ("description", args.description),
            ("category", args.category),
            ("phase", args.phase),
            ("priority", args.priority),
            ("status", args.status),
            ("value", args.value),
            ("startDate", args.start_date),
            ("completedDate", args.completed_date),
            ("notes", args.notes),
        )
        if value is not None
    }
    if args.depends_on is not None:
        changes["dependencies"] = _split(args.depends_on)
    if args.blocks is not None:
        changes["blocks"] = _split(args.blocks)
    if args.tags is not None:
        changes["tags"] = _split(args.tags)

    feature = registry.update_feature(args.id, changes)
    if feature is None:
        logger.error("Feature not found: %s", args.id)
        return 1
    if registry.has_circular_dependency(feature.id):
        logger.warning("Feature %s is part of a dependency cycle", feature.id)
    print(f"Updated {feature.id}")
    return 0


def cmd_features_delete(args: argparse.Namespace) -> int:
    if not FeatureRegistry(_registry_path(args)).delete_feature(args.id):
        logger.error("Feature not found: %s", args.id)
        return 1
    print(f"Deleted {args.id}")
    return 0


def cmd_features_list(args: argparse.Namespace) -> int:
    registry = FeatureRegistry(_registry_path(args))
    features = registry.filter_features(
        status=args.status,
        priority=args.priority,
        category=args.category,
        phase=args.phase,
        tags=_split(args.tag),
        search_term=args.search,
    )
    if args.json:
        print(json.dumps([feature.model_dump() for feature in features], indent=2))
        return 0
    code = registry.project_info().code
    for feature in features:
        print(f"{code}-{feature.number:<4} {feature.id:<24} {feature.status:<12} {feature.priority:<3} {feature.name}")
    print(f"{len(features)} features")
    return 0


def cmd_features_graph(args: argparse.Namespace) -> int:
    registry = FeatureRegistry(_registry_path(args))
    graph = registry.get_dependency_graph()
    if args.json:
        print(json.dumps(graph, indent=2))
        return 0
    for feature_id, deps in graph.items():
        print(f"{feature_id} -> {', '.join(deps) if deps else '(none)'}")
    return 0


def cmd_features_cycles(args: argparse.Namespace) -> int:
    cycles = FeatureRegistry(_registry_path(args)).find_cycles()
    if not cycles:
        print("No circular dependencies")
        return 0
    logger.warning("Circular dependencies involve %s features", len(cycles))
    for feature_id in cycles:
        print(feature_id)
    return 0


def cmd_features_ready(args: argparse.Namespace) -> int:
    for feature in FeatureRegistry(_registry_path(args)).ready_features():
        print(f"{feature.id}: {feature.name}")
    return 0


def cmd_roadmap(args: argparse.Namespace) -> int:
    exporter = RoadmapExporter(_registry_path(args))
    options = dict(
        group_by=args.group_by,
        include_completed=args.include_completed,
        include_blocked=args.include_blocked,
        include_dependencies=args.include_dependencies,
    )
    if args.output:
        target = exporter.export_to_file(args.format, args.output, **options)
        print(f"Roadmap written to: {target}")
    else:
        print(exporter.export(args.format, **options))
    return 0


# ── argument parsing ───────────────────────────────────────────────

def _add_root(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("root", nargs="?", default=str(config.ROOT_PATH), help="Repository root (default: PMDASH_ROOT or .)")
    parser.add_argument("--config", default=None, help="Project config file (default: <root>/pmdash.yaml)")


def _add_scan_filters(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--include", action="append", default=[], help="gitwildmatch pattern to include (repeatable)")
    parser.add_argument("--exclude", action="append", default=[], help="gitwildmatch pattern to exclude (repeatable)")
    parser.add_argument("--no-gitignore", action="store_true", help="Ignore the root .gitignore")


def _add_registry(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--registry", default=None, help="Feature registry CSV (default: PMDASH_REGISTRY_FILE)")
    parser.add_argument("--config", default=None, help="Project config file")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="pmdash", description=__doc__.splitlines()[0])
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    sub = parser.add_subparsers(dest="command", required=True)

    p = sub.add_parser("scan", help="Scan for TODO markers")
    _add_root(p)
    _add_scan_filters(p)
    p.add_argument("--format", choices=SCAN_FORMATS, default="summary")
    p.add_argument("--group-by", choices=GROUP_BY_CHOICES, default="file")
    p.add_argument("--exclude-archives", action="store_true", help="Drop findings under archive/old/legacy paths")
    p.add_argument("--exclude-completed", action="store_true", help="Drop findings that look already done")
    p.add_argument("--completion-threshold", type=int, default=None)
    p.add_argument("--state-file", default=None)
    p.add_argument("--only-new", action="store_true", help="Only report findings not in the state file")
    p.add_argument("--no-save-state", action="store_true")
    p.add_argument("--output", "-o", default=None)
    p.set_defaults(func=cmd_scan)

    p = sub.add_parser("completion", help="Estimate which TODOs are already done")
    _add_root(p)
    _add_scan_filters(p)
    p.add_argument("--format", choices=COMPLETION_FORMATS, default="summary")
    p.add_argument("--threshold", type=int, default=config.COMPLETION_THRESHOLD)
    p.add_argument("--output", "-o", default=None)
    p.set_defaults(func=cmd_completion)

    p = sub.add_parser("create-issues", help="Create GitHub issues for new TODOs")
    _add_root(p)
    _add_scan_filters(p)
    p.add_argument("--input", "-i", default=None, help="JSON scan result to read instead of scanning")
    p.add_argument("--state-file", default=None)
    p.add_argument("--dry-run", action="store_true", help="Show what would be created")
    p.add_argument("--no-duplicates", action="store_true", help="Skip the duplicate title check")
    p.add_argument("--priority", choices=("high", "medium", "low"), default=None)
    p.add_argument("--type", default=None, help="Only this marker type")
    p.add_argument("--batch-size", type=int, default=10)
    p.add_argument("--delay", type=float, default=1.0, help="Seconds between batches")
    p.set_defaults(func=cmd_create_issues)

    p = sub.add_parser("stats", help="Show state file statistics")
    _add_root(p)
    p.add_argument("--state-file", default=None)
    p.add_argument("--days", type=int, default=7)
    p.add_argument("--json", action="store_true")
    p.set_defaults(func=cmd_stats)

    p = sub.add_parser("cleanup-state", help="Drop old state entries that produced no issue")
    _add_root(p)
    p.add_argument("--state-file", default=None)
    p.add_argument("--days", type=int, default=config.STATE_RETENTION_DAYS)
    p.set_defaults(func=cmd_cleanup_state)

    p = sub.add_parser("discover", help="Discover features from routes, handlers and manifests")
    _add_root(p)
    _add_scan_filters(p)
    p.add_argument("--json", action="store_true")
    p.add_argument("--add-to-registry", action="store_true")
    p.add_argument("--registry", default=None)
    p.add_argument("--min-confidence", type=int, default=80)
    p.set_defaults(func=cmd_discover)

    p = sub.add_parser("watch", help="Rescan changed files and print new TODOs")
    _add_root(p)
    _add_scan_filters(p)
    p.add_argument("--state-file", default=None)
    p.add_argument("--record", action="store_true", help="Record reported findings in the state file")
    p.set_defaults(func=cmd_watch)

    p = sub.add_parser("serve", help="Run the dashboard API")
    p.add_argument("--root", default=None)
    p.add_argument("--host", default=config.HOST)
    p.add_argument("--port", type=int, default=config.PORT)
    p.add_argument("--reload", action="store_true")
    p.add_argument("--watch", action="store_true", help="Start the TODO watcher with the server")
    p.set_defaults(func=cmd_serve)

    p = sub.add_parser("roadmap", help="Export the roadmap")
    _add_registry(p)
    p.add_argument("--format", choices=EXPORT_FORMATS, default="markdown")
    p.add_argument("--group-by", choices=GROUP_BY_FIELDS, default="status")
    p.add_argument("--include-completed", action="store_true")
    p.add_argument("--include-blocked", action="store_true")
    p.add_argument("--include-dependencies", action="store_true")
    p.add_argument("--output", "-o", default=None)
    p.set_defaults(func=cmd_roadmap)

    features = sub.add_parser("features", help="Manage the feature registry")
    fsub = features.add_subparsers(dest="features_command", required=True)

    p = fsub.add_parser("init", help="Create the registry")
    _add_registry(p)
    p.add_argument("--name", required=True)
    p.add_argument("--code", required=True, help="Short project code used in feature numbers")
    p.add_argument("--description", default="")
    p.add_argument("--force", action="store_true")
    p.add_argument("--with-config", action="store_true", help="Also write a default pmdash.yaml")
    p.set_defaults(func=cmd_features_init)

    p = fsub.add_parser("add", help="Add a feature")
    _add_registry(p)
    p.add_argument("id")
    p.add_argument("name")
    p.add_argument("--description", default="")
    p.add_argument("--category", default="")
    p.add_argument("--phase", default="")
    p.add_argument("--priority", default="P2")
    p.add_argument("--status", default="planned")
    p.add_argument("--depends-on", default="", help="Comma-separated feature ids")
    p.add_argument("--blocks", default="")
    p.add_argument("--value", default="")
    p.add_argument("--tags", default="")
    p.add_argument("--code", default="")
    p.set_defaults(func=cmd_features_add)

    p = fsub.add_parser("update", help="Update a feature")
    _add_registry(p)
    p.add_argument("id")
    for flag in ("--name", "--description", "--category", "--phase", "--priority", "--status",
                 "--value", "--start-date", "--completed-date", "--notes",
                 "--depends-on", "--blocks", "--tags"):
        p.add_argument(flag, default=None)
    p.set_defaults(func=cmd_features_update)

    p = fsub.add_parser("delete", help="Delete a feature")
    _add_registry(p)
    p.add_argument("id")
    p.set_defaults(func=cmd_features_delete)

    p = fsub.add_parser("list", help="List features")
    _add_registry(p)
    p.add_argument("--status", default=None)
    p.add_argument("--priority", default=None)
    p.add_argument("--category", default=None)
    p.add_argument("--phase", default=None)
    p.add_argument("--tag", default=None, help="Comma-separated; matches any")
    p.add_argument("--search", default=None)
    p.add_argument("--json", action="store_true")
    p.set_defaults(func=cmd_features_list)

    p = fsub.add_parser("graph", help="Print the dependency graph")
    _add_registry(p)
    p.add_argument("--json", action="store_true")
    p.set_defaults(func=cmd_features_graph)

    p = fsub.add_parser("cycles", help="List features on a dependency cycle")
    _add_registry(p)
    p.set_defaults(func=cmd_features_cycles)

    p = fsub.add_parser("ready", help="Planned features whose dependencies are complete")
    _add_registry(p)
    p.set_defaults(func=cmd_features_ready)

    return parser


def main(argv: Optional[list[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else config.LOG_LEVEL,
        format="%(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
    )
    try:
        return args.func(args)
    except (FileNotFoundError, FileExistsError, ValueError, GitHubError) as exc:
        logger.error("%s", exc)
        return 1


def run() -> None:
    raise SystemExit(main())


if __name__ == "__main__":
    raise SystemExit(main())
