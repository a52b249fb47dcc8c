"""
Cache management endpoints.

POST   /cache/warm                        trigger a warm cycle (waits for it)
GET    /cache/warm                        current WarmingRun
DELETE /cache/content                     invalidate all content
DELETE /cache/content/{category}          invalidate a category
DELETE /cache/content/{category}/{slug}   invalidate one item

A warm trigger carrying `Authorization: Bearer <WARMING_CRON_SECRET>` is a
scheduled caller; no header is a manual caller; any other bearer token is
rejected. Invalidation requires `Bearer <CACHE_ADMIN_TOKEN>` when that
token is configured.
"""
import secrets
from datetime import datetime, timezone
from typing import Optional

from fastapi import APIRouter, Body, Header, HTTPException, Path
from fastapi.responses import JSONResponse

from catalog_cache.core.config import get_settings
from catalog_cache.core.logging import get_logger
from catalog_cache.models.content import MAX_SLUG_LENGTH, SLUG_PATTERN, Category
from catalog_cache.models.responses import InvalidationResponse, WarmRequest, WarmResponse
from catalog_cache.models.warming import WarmingTrigger
from catalog_cache.services.content.invalidation import get_cache_invalidator
from catalog_cache.services.warming.warmer import (
    MESSAGE_ALREADY_RUNNING,
    MESSAGE_LOCK_LOST,
    MESSAGE_STORE_UNAVAILABLE,
    get_cache_warmer,
)

logger = get_logger(__name__)

router = APIRouter()


def _bearer_token(authorization: Optional[str]) -> Optional[str]:
    if not authorization:
        return None
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        raise HTTPException(status_code=401, detail="Invalid authorization header")
    return token.strip()


def _token_matches(token: str, expected: Optional[str]) -> bool:
    return expected is not None and secrets.compare_digest(token.encode(), expected.encode())


def _warm_response(status_code: int, success: bool, message: str, run: Optional[dict] = None) -> JSONResponse:
    body = WarmResponse(
        success=success,
        message=message,
        timestamp=datetime.now(timezone.utc).isoformat(),
        run=run,
    )
    return JSONResponse(status_code=status_code, content=body.model_dump(exclude_none=True))


@router.post("/warm")
async def trigger_warming(
    request: Optional[WarmRequest] = Body(None),
    authorization: Optional[str] = Header(None),
):
    """
    Run a warm cycle and return its outcome.

    Returns:
        200 on completion, 429 if a run is already in progress, 409 if the
        run lost its lock and stopped, 503 if the cache store is
        unavailable, 500 on unexpected failure
    """
    token = _bearer_token(authorization)
    trigger = WarmingTrigger.MANUAL
    if token is not None:
        if not _token_matches(token, get_settings().warming_cron_secret):
            logger.warning("warming_trigger_unauthorized")
            raise HTTPException(status_code=401, detail="Unauthorized")
        trigger = WarmingTrigger.SCHEDULED

    request = request or WarmRequest()
    warmer = get_cache_warmer()

    try:
        result = await warmer.trigger_manual_warming(
            categories=request.categories,
            force=request.force,
            trigger=trigger,
        )
    except Exception as e:
        logger.error(
            "warming_trigger_error",
            trigger=trigger.value,
            error=str(e),
            error_type=type(e).__name__,
            exc_info=True,
        )
        return _warm_response(500, False, "Cache warming failed")

    if result.success:
        return _warm_response(200, True, result.message, result.run.to_wire() if result.run else None)
    if result.message == MESSAGE_ALREADY_RUNNING:
        return _warm_response(429, False, result.message)
    if result.message == MESSAGE_LOCK_LOST:
        return _warm_response(409, False, result.message, result.run.to_wire() if result.run else None)
    if result.message == MESSAGE_STORE_UNAVAILABLE:
        return _warm_response(503, False, result.message)
    return _warm_response(500, False, result.message)


@router.get("/warm")
async def get_warming_status():
    """Current WarmingRun snapshot (live counters while running)."""
    warmer = get_cache_warmer()
    status = await warmer.get_status()
    return status.to_wire()


def _require_admin(authorization: Optional[str]) -> None:
    expected = get_settings().cache_admin_token
    if expected is None:
        return
    token = _bearer_token(authorization)
    if token is None or not _token_matches(token, expected):
        logger.warning("cache_admin_unauthorized")
        raise HTTPException(status_code=401, detail="Unauthorized")


@router.delete("/content", response_model=InvalidationResponse)
async def invalidate_all(authorization: Optional[str] = Header(None)):
    """Drop every cached content entry. View and copy counters are kept."""
    _require_admin(authorization)
    count = await get_cache_invalidator().invalidate_all()
    return InvalidationResponse(pattern="content:*", keys_deleted=count)


@router.delete("/content/{category}", response_model=InvalidationResponse)
async def invalidate_category(
    category: Category,
    authorization: Optional[str] = Header(None),
):
    """Drop a category's cached listing and items, and the SEO bundle."""
    _require_admin(authorization)
    count = await get_cache_invalidator().invalidate_category(category)
    return InvalidationResponse(pattern=f"content:{category.value}:*", keys_deleted=count)


@router.delete("/content/{category}/{slug}", response_model=InvalidationResponse)
async def invalidate_item(
    category: Category,
    slug: str = Path(..., pattern=SLUG_PATTERN, max_length=MAX_SLUG_LENGTH),
    authorization: Optional[str] = Header(None),
):
    """Drop one cached item, its category listing and the SEO bundle."""
    _require_admin(authorization)
    count = await get_cache_invalidator().invalidate_item(category, slug)
    return InvalidationResponse(pattern=f"content:{category.value}:{slug}", keys_deleted=count)
