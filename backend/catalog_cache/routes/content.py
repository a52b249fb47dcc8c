"""
Content read endpoints.

GET /content/seo
GET /content/{category}?counts=
GET /content/{category}/{slug}

Every read goes through the content cache; a failure at both cache and
origin returns a generic 503 "Content unavailable".
"""
from fastapi import APIRouter, HTTPException, Path, Query

from catalog_cache.core.errors import OriginUnavailableError
from catalog_cache.core.logging import get_logger
from catalog_cache.models.content import MAX_SLUG_LENGTH, SLUG_PATTERN, Category
from catalog_cache.services.content.content_cache import get_content_cache_service
from catalog_cache.services.popularity.tracker import get_popularity_tracker

logger = get_logger(__name__)

router = APIRouter()

CONTENT_UNAVAILABLE = "Content unavailable"


def _unavailable(e: OriginUnavailableError) -> HTTPException:
    logger.error("content_unavailable", **e.to_log_fields())
    return HTTPException(status_code=503, detail=CONTENT_UNAVAILABLE)


@router.get("/seo")
async def get_seo_content():
    """SEO bundle: category -> item metadata."""
    service = get_content_cache_service()
    try:
        bundle = await service.get_seo_content()
    except OriginUnavailableError as e:
        raise _unavailable(e)
    return {category.value: [item.to_wire() for item in items] for category, items in bundle.items()}


@router.get("/{category}")
async def get_content_by_category(
    category: Category,
    counts: bool = Query(False, description="Add viewCount and copyCount to each item"),
):
    """Metadata of every item in a category."""
    service = get_content_cache_service()
    try:
        items = await service.get_content_by_category(category)
    except OriginUnavailableError as e:
        raise _unavailable(e)
    if counts:
        return await get_popularity_tracker().enrich_with_counts(items)
    return [item.to_wire() for item in items]


@router.get("/{category}/{slug}")
async def get_content_item(
    category: Category,
    slug: str = Path(..., pattern=SLUG_PATTERN, max_length=MAX_SLUG_LENGTH),
):
    """Full content item."""
    service = get_content_cache_service()
    try:
        item = await service.get_content_item_by_slug(category, slug)
    except OriginUnavailableError as e:
        raise _unavailable(e)

    if item is None:
        raise HTTPException(status_code=404, detail=f"{category.value}/{slug} not found")
    return item.to_wire()
