"""
View and copy tracking with popularity rankings on the cache store.

Key format:
- `views:total:{category}:{slug}`: lifetime view counter (no expiry)
- `views:daily:{category}:{slug}:{YYYY-MM-DD}`: per-day view counter (UTC),
  expires VIEWS_DAILY_TTL_SECONDS (default 7 days) after its first view
- `popular:{category}:all`: sorted set, slug -> lifetime views
- `trending:{category}:{YYYY-MM-DD}`: sorted set, slug -> views that day,
  same expiry as the per-day counters
- `copies:{category}:{slug}`: lifetime copy counter
- `copied:{category}:all`: sorted set, slug -> lifetime copies

Counters only ever go up, via atomic INCRBY/ZINCRBY; there is no
read-modify-write. Rankings read the sorted sets, never a key scan.
Tracking is an enhancement: with the store disabled every operation is a
no-op returning zero or empty, and store errors are logged, not raised.
"""
from datetime import date, datetime, timedelta, timezone
from typing import Callable, Dict, Iterable, List, Optional, Tuple, Union

from catalog_cache.core.cache import CacheStore, get_cache_store
from catalog_cache.core.config import get_settings
from catalog_cache.core.errors import CacheUnavailableError
from catalog_cache.core.logging import get_logger
from catalog_cache.core.metrics import record_content_copy, record_content_view
from catalog_cache.models.content import Category, ContentItem, parse_category, validate_slug

logger = get_logger(__name__)

ItemRef = Union[ContentItem, Tuple[Category, str]]

SECONDS_PER_DAY = 86400


def generate_total_views_key(category: Category, slug: str) -> str:
    return f"views:total:{category.value}:{slug}"


def generate_daily_views_key(category: Category, slug: str, day: date) -> str:
    return f"views:daily:{category.value}:{slug}:{day.isoformat()}"


def generate_popular_key(category: Category) -> str:
    return f"popular:{category.value}:all"


def generate_trending_key(category: Category, day: date) -> str:
    return f"trending:{category.value}:{day.isoformat()}"


def generate_copy_count_key(category: Category, slug: str) -> str:
    return f"copies:{category.value}:{slug}"


def generate_most_copied_key(category: Category) -> str:
    return f"copied:{category.value}:all"


def _today_utc() -> date:
    return datetime.now(timezone.utc).date()


def _parse_count(raw: Optional[str]) -> int:
    if raw is None:
        return 0
    try:
        return int(raw)
    except (TypeError, ValueError):
        return 0


def _ref(item: ItemRef) -> Tuple[Category, str]:
    if isinstance(item, ContentItem):
        return item.category, item.slug
    category, slug = item
    return parse_category(category), validate_slug(slug)


def _rank(scores: Dict[str, float], limit: int) -> List[Tuple[str, int]]:
    """Count descending, ties by slug ascending."""
    ranked = sorted(((slug, int(score)) for slug, score in scores.items()), key=lambda pair: (-pair[1], pair[0]))
    return ranked[:limit]


def view_count_map_key(category: Category, slug: str) -> str:
    """Key of a batch result map: `{category}:{slug}`."""
    return f"{category.value}:{slug}"


class PopularityTracker:
    def __init__(
        self,
        store: Optional[CacheStore] = None,
        daily_ttl_seconds: Optional[int] = None,
        today: Callable[[], date] = _today_utc,
    ):
        self._store = store
        self.daily_ttl_seconds = daily_ttl_seconds or get_settings().daily_views_ttl_seconds
        self._today = today

    @property
    def store(self) -> CacheStore:
        return self._store or get_cache_store()

    @property
    def enabled(self) -> bool:
        return self.store.enabled

    @property
    def retention_days(self) -> int:
        """Days of per-day data kept before it expires."""
        return max(1, self.daily_ttl_seconds // SECONDS_PER_DAY)

    async def record_view(self, category: Category, slug: str) -> bool:
        """
        Count one view of an item.

        Returns:
            True if every counter was incremented, False if tracking is
            disabled or the store failed
        """
        category = parse_category(category)
        validate_slug(slug)
        if not self.enabled:
            return False

        today = self._today()
        try:
            total = await self.store.increment(generate_total_views_key(category, slug))
            await self.store.sorted_set_increment(generate_popular_key(category), slug)
            await self.store.increment(
                generate_daily_views_key(category, slug, today),
                ttl_seconds=self.daily_ttl_seconds,
            )
            await self.store.sorted_set_increment(
                generate_trending_key(category, today),
                slug,
                ttl_seconds=self.daily_ttl_seconds,
            )
        except CacheUnavailableError as e:
            logger.warning("view_record_failed", category=category.value, slug=slug, **e.to_log_fields())
            return False

        record_content_view(category.value)
        logger.debug("view_recorded", category=category.value, slug=slug, total=total)
        return True

    async def track_copy(self, category: Category, slug: str) -> bool:
        """Count one copy of an item's content. Same contract as record_view."""
        category = parse_category(category)
        validate_slug(slug)
        if not self.enabled:
            return False

        try:
            total = await self.store.increment(generate_copy_count_key(category, slug))
            await self.store.sorted_set_increment(generate_most_copied_key(category), slug)
        except CacheUnavailableError as e:
            logger.warning("copy_record_failed", category=category.value, slug=slug, **e.to_log_fields())
            return False

        record_content_copy(category.value)
        logger.debug("copy_recorded", category=category.value, slug=slug, total=total)
        return True

    async def _get_count(self, key: str, operation: str, category: Category, slug: str) -> int:
        if not self.enabled:
            return 0
        try:
            return _parse_count(await self.store.get(key))
        except CacheUnavailableError as e:
            logger.warning(operation + "_failed", category=category.value, slug=slug, **e.to_log_fields())
            return 0

    async def get_view_count(self, category: Category, slug: str) -> int:
        category = parse_category(category)
        validate_slug(slug)
        return await self._get_count(generate_total_views_key(category, slug), "view_count", category, slug)

    async def get_copy_count(self, category: Category, slug: str) -> int:
        category = parse_category(category)
        validate_slug(slug)
        return await self._get_count(generate_copy_count_key(category, slug), "copy_count", category, slug)

    async def get_daily_view_count(self, category: Category, slug: str, day: Optional[date] = None) -> int:
        counts = await self.get_daily_view_counts([(category, slug)], day=day)
        return counts.get(view_count_map_key(parse_category(category), slug), 0)

    async def _top_ranked(self, key: str, limit: int, operation: str, category: Category) -> List[Tuple[str, int]]:
        """
        Top `limit` members of a sorted set, count descending, ties by slug.

        ZREVRANGE orders equal scores in reverse, so the members sharing the
        lowest returned score are re-read in slug order with ZRANGEBYSCORE.
        """
        if limit <= 0 or not self.enabled:
            return []
        try:
            top = await self.store.sorted_set_top(key, limit)
            if len(top) < limit:
                return _rank(dict(top), limit)
            cutoff = top[-1][1]
            ties = await self.store.sorted_set_range_by_score(key, cutoff, cutoff, limit)
        except CacheUnavailableError as e:
            logger.warning(operation + "_failed", category=category.value, **e.to_log_fields())
            return []

        scores = {slug: score for slug, score in top if score > cutoff}
        scores.update(ties)
        return _rank(scores, limit)

    async def get_popular(self, category: Category, limit: int = 10) -> List[Tuple[str, int]]:
        """
        Top items of a category by lifetime views.

        Returns:
            Up to `limit` (slug, views) pairs, views descending, ties by slug
        """
        category = parse_category(category)
        return await self._top_ranked(generate_popular_key(category), limit, "popular_items", category)

    async def get_most_copied(self, category: Category, limit: int = 10) -> List[Tuple[str, int]]:
        category = parse_category(category)
        return await self._top_ranked(generate_most_copied_key(category), limit, "most_copied_items", category)

    async def get_trending(self, category: Category, limit: int = 10, days: int = 7) -> List[Tuple[str, int]]:
        """
        Top items by views over the last `days` days (today included).

        The window is capped at retention_days, since older per-day data
        has expired.

        Returns:
            Up to `limit` (slug, views) pairs, views descending, ties by slug
        """
        category = parse_category(category)
        if days < 1:
            raise ValueError("days must be at least 1")
        if limit <= 0 or not self.enabled:
            return []

        today = self._today()
        window = min(days, self.retention_days)
        totals: Dict[str, float] = {}
        try:
            for offset in range(window):
                day_scores = await self.store.sorted_set_scores(
                    generate_trending_key(category, today - timedelta(days=offset))
                )
                for slug, score in day_scores.items():
                    totals[slug] = totals.get(slug, 0.0) + score
        except CacheUnavailableError as e:
            logger.warning("trending_items_failed", category=category.value, **e.to_log_fields())
            return []

        return _rank(totals, limit)

    async def _get_counts(self, refs: List[Tuple[Category, str]], keys: List[str], operation: str) -> Dict[str, int]:
        result = {view_count_map_key(category, slug): 0 for category, slug in refs}
        if not refs or not self.enabled:
            return result
        try:
            values = await self.store.get_many(keys)
        except CacheUnavailableError as e:
            logger.warning(operation + "_failed", items=len(refs), **e.to_log_fields())
            return result
        for (category, slug), value in zip(refs, values):
            result[view_count_map_key(category, slug)] = _parse_count(value)
        return result

    async def get_view_counts(self, items: Iterable[ItemRef]) -> Dict[str, int]:
        """Total views for many items via batched MGET, keyed `{category}:{slug}`."""
        refs = [_ref(item) for item in items]
        keys = [generate_total_views_key(category, slug) for category, slug in refs]
        return await self._get_counts(refs, keys, "view_counts")

    async def get_daily_view_counts(self, items: Iterable[ItemRef], day: Optional[date] = None) -> Dict[str, int]:
        """Views on `day` (default: today, UTC), keyed `{category}:{slug}`."""
        day = day or self._today()
        refs = [_ref(item) for item in items]
        keys = [generate_daily_views_key(category, slug, day) for category, slug in refs]
        return await self._get_counts(refs, keys, "daily_view_counts")

    async def get_copy_counts(self, items: Iterable[ItemRef]) -> Dict[str, int]:
        refs = [_ref(item) for item in items]
        keys = [generate_copy_count_key(category, slug) for category, slug in refs]
        return await self._get_counts(refs, keys, "copy_counts")

    async def enrich_with_counts(self, items: List[ContentItem]) -> List[dict]:
        """Wire dicts of items with added `viewCount` and `copyCount` (0 when unknown)."""
        view_counts = await self.get_view_counts(items)
        copy_counts = await self.get_copy_counts(items)
        enriched = []
        for item in items:
            key = view_count_map_key(item.category, item.slug)
            enriched.append(
                {**item.to_wire(), "viewCount": view_counts.get(key, 0), "copyCount": copy_counts.get(key, 0)}
            )
        return enriched


_popularity_tracker: Optional[PopularityTracker] = None


def get_popularity_tracker() -> PopularityTracker:
    """Get global popularity tracker instance."""
    global _popularity_tracker
    if _popularity_tracker is None:
        _popularity_tracker = PopularityTracker()
    return _popularity_tracker
