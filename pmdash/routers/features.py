"""Features API router."""
from __future__ import annotations

import logging
from typing import Optional

from fastapi import APIRouter, HTTPException, Query

from pmdash import config
from pmdash.models import Feature, FeatureCreate, FeatureUpdate
from pmdash.services.feature_registry import DuplicateFeatureError, FeatureRegistry, RegistryFormatError

features_router = APIRouter(prefix="/api/features", tags=["features"])
logger = logging.getLogger("pmdash.features")


def open_registry() -> FeatureRegistry:
    try:
        return FeatureRegistry(config.REGISTRY_FILE)
    except FileNotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except RegistryFormatError as exc:
        logger.error("Cannot load registry %s: %s", config.REGISTRY_FILE, exc)
        raise HTTPException(status_code=500, detail=str(exc)) from exc


@features_router.get("", response_model=list[Feature])
async def list_features(
    status: Optional[str] = Query(None),
    priority: Optional[str] = Query(None),
    category: Optional[str] = Query(None),
    phase: Optional[str] = Query(None),
    tag: Optional[list[str]] = Query(None, description="Match features carrying any of these tags"),
    search: Optional[str] = Query(None, description="Substring filter on name and description"),
):
    registry = open_registry()
    return registry.filter_features(
        status=status,
        priority=priority,
        category=category,
        phase=phase,
        tags=tag,
        search_term=search,
    )


@features_router.get("/graph")
async def get_dependency_graph():
    registry = open_registry()
    return {
        "graph": registry.get_dependency_graph(),
        "cycles": registry.find_cycles(),
    }


@features_router.get("/ready", response_model=list[Feature])
async def get_ready_features():
    return open_registry().ready_features()


@features_router.get("/{feature_id}", response_model=Feature)
async def get_feature(feature_id: str):
    feature = open_registry().get_feature(feature_id)
    if feature is None:
        raise HTTPException(status_code=404, detail=f"Feature '{feature_id}' not found")
    return feature


@features_router.get("/{feature_id}/cycle")
async def get_feature_cycle(feature_id: str):
    registry = open_registry()
    if registry.get_feature(feature_id) is None:
        raise HTTPException(status_code=404, detail=f"Feature '{feature_id}' not found")
    return {
        "featureId": feature_id,
        "hasCycle": registry.has_circular_dependency(feature_id),
        "dependents": registry.dependents(feature_id),
    }


@features_router.post("", response_model=Feature, status_code=201)
async def create_feature(payload: FeatureCreate):
    registry = open_registry()
    try:
        feature = registry.add_feature(payload)
    except DuplicateFeatureError as exc:
        raise HTTPException(status_code=409, detail=str(exc)) from exc
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    if registry.has_circular_dependency(feature.id):
        logger.warning("Feature %s introduces a dependency cycle", feature.id)
    return feature


@features_router.patch("/{feature_id}", response_model=Feature)
async def update_feature(feature_id: str, payload: FeatureUpdate):
    registry = open_registry()
    try:
        feature = registry.update_feature(feature_id, payload)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    if feature is None:
        raise HTTPException(status_code=404, detail=f"Feature '{feature_id}' not found")
    return feature


@features_router.delete("/{feature_id}")
async def delete_feature(feature_id: str):
    if not open_registry().delete_feature(feature_id):
        raise HTTPException(status_code=404, detail=f"Feature '{feature_id}' not found")
    return {"deleted": feature_id}
