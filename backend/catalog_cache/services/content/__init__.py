"""
Content cache service and invalidation.
"""
from catalog_cache.services.content.content_cache import (
    ContentCacheService,
    ReadResult,
    SingleFlight,
    SEO_CACHE_KEY,
    generate_item_cache_key,
    generate_listing_cache_key,
    get_content_cache_service,
)
from catalog_cache.services.content.invalidation import CacheInvalidator, get_cache_invalidator

__all__ = [
    "ContentCacheService",
    "ReadResult",
    "SingleFlight",
    "SEO_CACHE_KEY",
    "generate_item_cache_key",
    "generate_listing_cache_key",
    "get_content_cache_service",
    "CacheInvalidator",
    "get_cache_invalidator",
]
