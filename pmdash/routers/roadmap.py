"""Roadmap export API router."""
from __future__ import annotations

from fastapi import APIRouter, HTTPException, Query
from fastapi.responses import HTMLResponse, PlainTextResponse, Response

from pmdash.routers.features import open_registry
from pmdash.services.roadmap_exporter import RoadmapExporter

roadmap_router = APIRouter(prefix="/api/roadmap", tags=["roadmap"])


@roadmap_router.get("")
async def get_roadmap(
    format: str = Query("json", description="json | markdown | html"),
    group_by: str = Query("status", alias="groupBy"),
    include_completed: bool = Query(False, alias="includeCompleted"),
    include_blocked: bool = Query(False, alias="includeBlocked"),
    include_dependencies: bool = Query(False, alias="includeDependencies"),
):
    exporter = RoadmapExporter.from_registry(open_registry())
    try:
        content = exporter.export(
            format,
            group_by=group_by,
            include_completed=include_completed,
            include_blocked=include_blocked,
            include_dependencies=include_dependencies,
        )
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    if format == "json":
        return Response(content, media_type="application/json")
    if format == "html":
        return HTMLResponse(content)
    return PlainTextResponse(content, media_type="text/markdown")
