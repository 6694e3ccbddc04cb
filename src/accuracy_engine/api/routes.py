"""REST API routes for message scoring and cached accuracy profiles."""

import re

import structlog
from fastapi import APIRouter, HTTPException, Request

from accuracy_engine.cache.realtime_cache import FastRealtimeCache
from accuracy_engine.coordinator.service import RequestCoordinator
from accuracy_engine.models.analysis import AnalysisRequest, AnalysisResponse

logger = structlog.get_logger()
router = APIRouter(prefix="/api")

_USER_ID_PATTERN = re.compile(r"^[A-Za-z0-9_.\-]{1,128}$")


def validate_user_id(user_id: str) -> str:
    if not _USER_ID_PATTERN.match(user_id):
        raise HTTPException(status_code=400, detail="Invalid user ID format")
    return user_id


def _coordinator(request: Request) -> RequestCoordinator:
    return request.app.state.coordinator


def _cache(request: Request) -> FastRealtimeCache:
    return request.app.state.cache


@router.post("/accuracy/analyze")
async def analyze_message(body: AnalysisRequest, request: Request) -> AnalysisResponse:
    """Score one message and fold it into the user's profile."""
    if body.user_id is not None:
        validate_user_id(body.user_id)
    return await _coordinator(request).handle(body)


@router.get("/accuracy/{user_id}")
async def get_accuracy(user_id: str, request: Request) -> dict:
    """Return the user's cached profile, loading it on first access."""
    user_id = validate_user_id(user_id)
    cache = _cache(request)
    was_cached = cache.has_user(user_id)
    profile = await cache.initialize_user(user_id)
    return {
        "user_id": user_id,
        "cached": was_cached,
        "profile": profile.model_dump(mode="json"),
    }


@router.post("/accuracy/{user_id}/save")
async def save_accuracy(user_id: str, request: Request) -> dict:
    """Flush the user's unsaved changes to durable storage."""
    user_id = validate_user_id(user_id)
    saved = await _cache(request).force_save(user_id)
    return {"user_id": user_id, "saved": saved}


@router.delete("/accuracy/{user_id}")
async def cleanup_accuracy(user_id: str, request: Request) -> dict:
    """Save and evict the user from the cache (e.g. on logout)."""
    user_id = validate_user_id(user_id)
    await _cache(request).cleanup(user_id)
    logger.info("accuracy_user_evicted", user_id=user_id)
    return {"user_id": user_id, "status": "cleaned"}


@router.get("/health")
async def health_check(request: Request) -> dict:
    """Health check endpoint."""
    coordinator = _coordinator(request)
    return {
        "status": "ok",
        "redis": coordinator.cache.redis_store.enabled,
        "in_flight": coordinator.admission.in_flight,
        "dirty_users": len(coordinator.cache.dirty_users()),
    }
