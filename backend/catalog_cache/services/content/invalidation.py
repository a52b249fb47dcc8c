"""
Content cache invalidation.

Rules:
- Item change: drop the item, its category listing and the SEO bundle
- Category change: drop `content:{category}:*` and the SEO bundle
- Everything: drop `content:*`

Invalidation is best-effort: if the store is unavailable nothing is
deleted and 0 is returned (entries still expire by TTL).
"""
from typing import List, Optional

from catalog_cache.core.cache import CacheStore, get_cache_store
from catalog_cache.core.errors import CacheUnavailableError
from catalog_cache.core.logging import get_logger
from catalog_cache.models.content import Category, parse_category, validate_slug
from catalog_cache.services.content.content_cache import (
    SEO_CACHE_KEY,
    generate_item_cache_key,
    generate_listing_cache_key,
)

logger = get_logger(__name__)


class CacheInvalidator:
    def __init__(self, store: Optional[CacheStore] = None):
        self._store = store

    @property
    def store(self) -> CacheStore:
        return self._store or get_cache_store()

    async def _delete_keys(self, keys: List[str], scope: str) -> int:
        count = 0
        for key in keys:
            try:
                count += await self.store.delete(key)
            except CacheUnavailableError as e:
                logger.warning("cache_invalidation_failed", scope=scope, **e.to_log_fields())
        return count

    async def _delete_pattern(self, pattern: str, scope: str) -> int:
        try:
            return await self.store.delete_matching(pattern)
        except CacheUnavailableError as e:
            logger.warning("cache_invalidation_failed", scope=scope, **e.to_log_fields())
            return 0

    async def invalidate_item(self, category: Category, slug: str) -> int:
        """
        Invalidate one item plus the aggregates that include it.

        Returns:
            Number of keys deleted
        """
        category = parse_category(category)
        validate_slug(slug)
        count = await self._delete_keys(
            [
                generate_item_cache_key(category, slug),
                generate_listing_cache_key(category),
                SEO_CACHE_KEY,
            ],
            scope="item",
        )
        logger.info("cache_invalidated", scope="item", category=category.value, slug=slug, count=count)
        return count

    async def invalidate_category(self, category: Category) -> int:
        category = parse_category(category)
        pattern = f"content:{category.value}:*"
        count = await self._delete_pattern(pattern, scope="category")
        count += await self._delete_keys([SEO_CACHE_KEY], scope="category")
        logger.info("cache_invalidated", scope="category", pattern=pattern, count=count)
        return count

    async def invalidate_all(self) -> int:
        count = await self._delete_pattern("content:*", scope="all")
        logger.info("cache_invalidated", scope="all", pattern="content:*", count=count)
        return count


_cache_invalidator: Optional[CacheInvalidator] = None


def get_cache_invalidator() -> CacheInvalidator:
    """Get global cache invalidator instance."""
    global _cache_invalidator
    if _cache_invalidator is None:
        _cache_invalidator = CacheInvalidator()
    return _cache_invalidator
