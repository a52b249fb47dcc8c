"""
View and copy tracking endpoints.

POST /views/{category}/{slug}                 record a page view (202, fire-and-forget)
POST /views/copy/{category}/{slug}            record a content copy (202, fire-and-forget)
GET  /views/popular/{category}?limit=         top items by lifetime views
GET  /views/trending/{category}?limit=&days=  top items by views over recent days
GET  /views/most-copied/{category}?limit=     top items by copies
GET  /views/copies/{category}/{slug}          copy count
GET  /views/{category}/{slug}                 total and today's views

Read endpoints return 503 when the cache store is disabled.
"""
from fastapi import APIRouter, BackgroundTasks, HTTPException, Path, Query

from catalog_cache.core.logging import get_logger
from catalog_cache.models.content import MAX_SLUG_LENGTH, SLUG_PATTERN, Category
from catalog_cache.models.responses import (
    CopiedItem,
    CopyCountResponse,
    MostCopiedResponse,
    PopularItem,
    PopularResponse,
    TrendingResponse,
    ViewCountResponse,
)
from catalog_cache.services.popularity.tracker import get_popularity_tracker

logger = get_logger(__name__)

router = APIRouter()


def _require_enabled(tracker) -> None:
    if not tracker.enabled:
        raise HTTPException(status_code=503, detail="View tracking unavailable")


@router.post("/copy/{category}/{slug}", status_code=202)
async def record_copy(
    background_tasks: BackgroundTasks,
    category: Category,
    slug: str = Path(..., pattern=SLUG_PATTERN, max_length=MAX_SLUG_LENGTH),
):
    """Accept a copy event; counting happens after the response is sent."""
    tracker = get_popularity_tracker()
    background_tasks.add_task(tracker.track_copy, category, slug)
    return {"accepted": True}


@router.post("/{category}/{slug}", status_code=202)
async def record_view(
    background_tasks: BackgroundTasks,
    category: Category,
    slug: str = Path(..., pattern=SLUG_PATTERN, max_length=MAX_SLUG_LENGTH),
):
    """Accept a view; counting happens after the response is sent."""
    tracker = get_popularity_tracker()
    background_tasks.add_task(tracker.record_view, category, slug)
    return {"accepted": True}


@router.get("/popular/{category}", response_model=PopularResponse)
async def get_popular(
    category: Category,
    limit: int = Query(10, ge=1, le=100, description="Number of items to return"),
):
    tracker = get_popularity_tracker()
    _require_enabled(tracker)
    ranked = await tracker.get_popular(category, limit)
    return PopularResponse(
        category=category,
        items=[PopularItem(slug=slug, views=views) for slug, views in ranked],
    )


@router.get("/trending/{category}", response_model=TrendingResponse)
async def get_trending(
    category: Category,
    limit: int = Query(10, ge=1, le=100, description="Number of items to return"),
    days: int = Query(7, ge=1, le=30, description="Window size in days, capped at counter retention"),
):
    tracker = get_popularity_tracker()
    _require_enabled(tracker)
    ranked = await tracker.get_trending(category, limit, days=days)
    return TrendingResponse(
        category=category,
        days=min(days, tracker.retention_days),
        items=[PopularItem(slug=slug, views=views) for slug, views in ranked],
    )


@router.get("/most-copied/{category}", response_model=MostCopiedResponse)
async def get_most_copied(
    category: Category,
    limit: int = Query(10, ge=1, le=100, description="Number of items to return"),
):
    tracker = get_popularity_tracker()
    _require_enabled(tracker)
    ranked = await tracker.get_most_copied(category, limit)
    return MostCopiedResponse(
        category=category,
        items=[CopiedItem(slug=slug, copies=copies) for slug, copies in ranked],
    )


@router.get("/copies/{category}/{slug}", response_model=CopyCountResponse)
async def get_copy_count(
    category: Category,
    slug: str = Path(..., pattern=SLUG_PATTERN, max_length=MAX_SLUG_LENGTH),
):
    tracker = get_popularity_tracker()
    _require_enabled(tracker)
    copies = await tracker.get_copy_count(category, slug)
    return CopyCountResponse(category=category, slug=slug, copies=copies)


@router.get("/{category}/{slug}", response_model=ViewCountResponse)
async def get_view_count(
    category: Category,
    slug: str = Path(..., pattern=SLUG_PATTERN, max_length=MAX_SLUG_LENGTH),
):
    tracker = get_popularity_tracker()
    _require_enabled(tracker)
    views = await tracker.get_view_count(category, slug)
    daily_views = await tracker.get_daily_view_count(category, slug)
    return ViewCountResponse(category=category, slug=slug, views=views, daily_views=daily_views)
