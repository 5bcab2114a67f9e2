"""FRESHROUTE — Analytics API Routes."""

from datetime import date, datetime
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ValidationError

from freshroute.core.errors import StoreError
from freshroute.core.logging import get_logger
from freshroute.models.enums import Platform, ResponseStatus
from freshroute.models.payload_models import (
    DateWindow,
    ErrorInfo,
    RouterRequest,
    RouterResponse,
)
from freshroute.router.freshness_router import FreshnessRouter
from freshroute.stores.cache_store import SmartCacheStore

logger = get_logger("api.analytics")

router = APIRouter(tags=["Analytics"])

UPSTREAM_ERROR_KINDS = frozenset(
    {"credential_invalid", "transport", "rate_limited", "provider_missing", "upstream"}
)


# ── Dependencies ──


def get_freshness_router(request: Request) -> FreshnessRouter:
    return request.app.state.freshness_router


def get_cache_store(request: Request) -> SmartCacheStore:
    return request.app.state.freshness_router.cache_store


# ── Request / Response Models ──


class AnalyticsFetchRequest(BaseModel):
    """Request body for POST /analytics/fetch."""

    entity_id: str
    start_date: date
    """Inclusive window start (YYYY-MM-DD)."""
    end_date: date
    """Inclusive window end (YYYY-MM-DD)."""
    platform: Platform = Platform.META
    force_fresh: bool = False
    """Skip the cache and refresh from upstream. Only honored for current periods."""
    hint: Optional[str] = None
    """Classification override, e.g. "all-time"."""

    model_config = {
        "json_schema_extra": {
            "examples": [
                {"entity_id": "client-42", "start_date": "2024-03-01", "end_date": "2024-03-31"},
                {
                    "entity_id": "client-42",
                    "start_date": "2024-03-11",
                    "end_date": "2024-03-17",
                    "force_fresh": True,
                },
            ]
        }
    }


class CacheStatusResponse(BaseModel):
    """Response for GET /cache/{entity_id}/{period_id}."""

    entity_id: str
    period_id: str
    platform: Platform
    exists: bool = True
    fresh: bool
    age_ms: float
    last_updated: datetime


def _status_code_for(response: RouterResponse) -> int:
    if response.status != ResponseStatus.ERROR or response.error is None:
        return 200
    if response.error.kind == "validation_error":
        return 400
    if response.error.kind in UPSTREAM_ERROR_KINDS:
        return 502
    return 500


# ── Endpoints ──


@router.post("/analytics/fetch", response_model=RouterResponse)
async def fetch_analytics(
    body: AnalyticsFetchRequest,
    freshness_router: FreshnessRouter = Depends(get_freshness_router),
):
    """Answer an analytics request from cache, database or upstream.

    Success, no-data and degraded answers return 200; the body's ``status``
    and ``provenance`` say which source served it.
    """
    try:
        window = DateWindow(start=body.start_date, end=body.end_date)
    except ValidationError as e:
        logger.warning(
            f"Rejected window {body.start_date} → {body.end_date}",
            extra={"endpoint": "/analytics/fetch", "entity_id": body.entity_id},
        )
        invalid = RouterResponse(
            success=False,
            status=ResponseStatus.ERROR,
            error=ErrorInfo(kind="validation_error", message=str(e.errors()[0]["msg"])),
        )
        return JSONResponse(status_code=400, content=invalid.model_dump(mode="json"))

    response = await freshness_router.route(
        RouterRequest(
            entity_id=body.entity_id,
            window=window,
            platform=body.platform,
            force_fresh=body.force_fresh,
            hint=body.hint,
        )
    )
    status_code = _status_code_for(response)
    if status_code != 200:
        logger.error(
            f"Analytics fetch failed: {response.error.kind}",
            extra={
                "endpoint": "/analytics/fetch",
                "entity_id": body.entity_id,
                "status_code": status_code,
            },
        )
    return JSONResponse(status_code=status_code, content=response.model_dump(mode="json"))


@router.get("/cache/{entity_id}/{period_id}", response_model=CacheStatusResponse)
async def get_cache_status(
    entity_id: str,
    period_id: str,
    platform: Platform = Query(Platform.META),
    cache_store: SmartCacheStore = Depends(get_cache_store),
):
    """Report whether a current-period cache entry exists and how old it is."""
    try:
        entry = cache_store.get(entity_id, period_id, platform)
    except StoreError as e:
        raise HTTPException(status_code=500, detail=f"Cache read failed: {str(e)}")

    if entry is None:
        raise HTTPException(
            status_code=404, detail=f"No cache entry for {entity_id} {period_id}"
        )

    now = cache_store.clock()
    return CacheStatusResponse(
        entity_id=entity_id,
        period_id=period_id,
        platform=platform,
        fresh=cache_store.is_fresh(entry, now),
        age_ms=cache_store.age(entry, now).total_seconds() * 1000,
        last_updated=entry.last_updated,
    )
