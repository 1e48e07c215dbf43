"""TODO scan, completion and state API router."""
from __future__ import annotations

import asyncio
import logging
from typing import Optional

from fastapi import APIRouter, HTTPException, Query

from pmdash import config
from pmdash.models import CompletionReport, ScanResult, StateStats
from pmdash.parsers.completion import analyze_completions
from pmdash.project_config import ConfigError, ProjectConfig, load_project_config, state_file_for
from pmdash.services.scanner import filter_findings, options_from_settings, process_scan_results, scan
from pmdash.services.state_tracker import StateFileError, find_new, load_state, processed_hashes, state_stats

todos_router = APIRouter(prefix="/api/todos", tags=["todos"])
logger = logging.getLogger("pmdash.todos")


def _project() -> ProjectConfig:
    try:
        return load_project_config(config.CONFIG_FILE)
    except ConfigError as exc:
        raise HTTPException(status_code=500, detail=str(exc)) from exc


def _scan(project: ProjectConfig) -> ScanResult:
    try:
        result = scan(config.ROOT_PATH, options_from_settings(project.scan))
    except FileNotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return process_scan_results(result)


def _load_state(project: ProjectConfig):
    path = state_file_for(config.ROOT_PATH, project)
    try:
        return load_state(path)
    except StateFileError as exc:
        logger.error("Cannot load state file %s: %s", path, exc)
        raise HTTPException(status_code=500, detail=str(exc)) from exc


@todos_router.get("", response_model=ScanResult)
async def list_todos(
    only_new: bool = Query(False, alias="onlyNew", description="Drop findings already recorded in state"),
    priority: Optional[str] = Query(None),
    type: Optional[str] = Query(None),
    file: Optional[str] = Query(None, description="Substring filter on the relative path"),
    search: Optional[str] = Query(None),
):
    project = _project()
    result = await asyncio.to_thread(_scan, project)
    todos = result.todos
    if only_new:
        todos = find_new(todos, processed_hashes(_load_state(project)))
    todos = filter_findings(todos, priority=priority, type=type, file=file, search_term=search)
    return result.model_copy(update={"todos": todos})


@todos_router.get("/completion", response_model=CompletionReport)
async def get_completion_report(
    threshold: int = Query(config.COMPLETION_THRESHOLD, ge=0, le=100),
):
    result = await asyncio.to_thread(_scan, _project())
    return await asyncio.to_thread(analyze_completions, result.todos, config.ROOT_PATH, threshold)


@todos_router.get("/state/stats", response_model=StateStats)
async def get_state_stats(
    days: int = Query(7, ge=1, le=365, description="Window for recentlyProcessed"),
):
    return state_stats(_load_state(_project()), days_back=days)
