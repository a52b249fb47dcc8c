"""
Read-through / write-through content cache.

Key format:
- `content:{category}:{slug}`: one full item (CONTENT_ITEM_TTL_SECONDS, default 1h)
- `content:{category}:list`: category listing (CONTENT_LISTING_TTL_SECONDS, default 4h)
- `content:seo`: SEO bundle, category -> listing (CONTENT_SEO_TTL_SECONDS, default 6h)

Every value is stored in an envelope so readers know its age:
    {"value": ..., "writtenAt": "<ISO-8601 UTC>", "ttlSeconds": n}

Cache store failures never reach the caller: a failed read is a miss and a
failed write is logged and reported in ReadResult.cache_write_failed.
Origin errors propagate once the cache path is exhausted.
"""
import asyncio
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, Generic, List, Optional, TypeVar

from pydantic import ValidationError

from catalog_cache.core.cache import CacheStore, get_cache_store
from catalog_cache.core.config import get_settings
from catalog_cache.core.errors import CacheUnavailableError
from catalog_cache.core.logging import get_logger
from catalog_cache.core.metrics import record_cache_hit, record_cache_miss, record_cache_write_failure
from catalog_cache.models.content import Category, ContentItem, parse_category, validate_slug
from catalog_cache.services.origin import OriginLoader, get_origin_loader

logger = get_logger(__name__)

T = TypeVar("T")

CACHE_TYPE_ITEM = "item"
CACHE_TYPE_LISTING = "listing"
CACHE_TYPE_SEO = "seo"

SOURCE_CACHE = "cache"
SOURCE_ORIGIN = "origin"

SEO_CACHE_KEY = "content:seo"


def generate_item_cache_key(category: Category, slug: str) -> str:
    """Generate cache key for a full content item."""
    return f"content:{category.value}:{slug}"


def generate_listing_cache_key(category: Category) -> str:
    """Generate cache key for a category listing."""
    return f"content:{category.value}:list"


@dataclass(frozen=True)
class ReadResult(Generic[T]):
    """
    Outcome of a read-through lookup.

    `source` is "cache" or "origin". `cache_write_failed` is True when the
    value came from the origin but could not be written back.
    """
    value: T
    source: str
    cache_write_failed: bool = False

    @property
    def from_cache(self) -> bool:
        return self.source == SOURCE_CACHE


class SingleFlight:
    """Coalesces concurrent calls for the same key into one in-flight task."""

    def __init__(self):
        self._inflight: Dict[str, asyncio.Future] = {}

    def _forget(self, key: str, task: asyncio.Future) -> None:
        if self._inflight.get(key) is task:
            del self._inflight[key]
        # Mark the error retrieved: every waiter may have been cancelled
        if not task.cancelled() and task.exception() is not None:
            logger.debug("single_flight_load_failed", key=key, error_type=type(task.exception()).__name__)

    async def do(self, key: str, func: Callable[[], Awaitable[T]]) -> T:
        task = self._inflight.get(key)
        if task is None:
            task = asyncio.ensure_future(func())
            self._inflight[key] = task
            task.add_done_callback(lambda t: self._forget(key, t))
        # A cancelled waiter must not cancel the shared load
        return await asyncio.shield(task)

    def in_flight(self) -> int:
        return len(self._inflight)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _encode_items(items: List[ContentItem]) -> List[dict]:
    return [item.to_wire() for item in items]


def _decode_items(value: Any) -> List[ContentItem]:
    return [ContentItem.model_validate(record) for record in value]


def _encode_seo(bundle: Dict[Category, List[ContentItem]]) -> Dict[str, List[dict]]:
    return {parse_category(category).value: _encode_items(items) for category, items in bundle.items()}


def _decode_seo(value: Any) -> Dict[Category, List[ContentItem]]:
    return {parse_category(category): _decode_items(items) for category, items in value.items()}


class ContentCacheService:
    """Content reads for request handlers and the cache warmer."""

    def __init__(
        self,
        store: Optional[CacheStore] = None,
        origin: Optional[OriginLoader] = None,
        item_ttl_seconds: Optional[int] = None,
        listing_ttl_seconds: Optional[int] = None,
        seo_ttl_seconds: Optional[int] = None,
        clock: Callable[[], datetime] = _utcnow,
    ):
        settings = get_settings()
        self._store = store
        self._origin = origin
        self.item_ttl_seconds = item_ttl_seconds or settings.item_ttl_seconds
        self.listing_ttl_seconds = listing_ttl_seconds or settings.listing_ttl_seconds
        self.seo_ttl_seconds = seo_ttl_seconds or settings.seo_ttl_seconds
        self._clock = clock
        self._single_flight = SingleFlight()

    @property
    def store(self) -> CacheStore:
        return self._store or get_cache_store()

    @property
    def origin(self) -> OriginLoader:
        return self._origin or get_origin_loader()

    # ---- envelope I/O ----

    async def _read_entry(self, key: str, cache_type: str, max_age_seconds: Optional[float]) -> Optional[dict]:
        """Return a valid, fresh-enough envelope or None (miss)."""
        if max_age_seconds is not None and max_age_seconds <= 0:
            return None
        try:
            envelope = await self.store.get_json(key)
        except CacheUnavailableError as e:
            logger.warning("cache_read_failed", cache_type=cache_type, **e.to_log_fields())
            return None

        if envelope is None:
            return None
        if not isinstance(envelope, dict) or "value" not in envelope or "writtenAt" not in envelope:
            logger.warning("cache_envelope_invalid", cache_type=cache_type, key=key)
            return None

        if max_age_seconds is not None:
            age = self._entry_age_seconds(envelope)
            if age is None or age >= max_age_seconds:
                logger.debug("cache_entry_stale", cache_type=cache_type, key=key, age_seconds=age)
                return None
        return envelope

    def _entry_age_seconds(self, envelope: dict) -> Optional[float]:
        try:
            written_at = datetime.fromisoformat(envelope["writtenAt"])
        except (TypeError, ValueError):
            return None
        if written_at.tzinfo is None:
            written_at = written_at.replace(tzinfo=timezone.utc)
        return (self._clock() - written_at).total_seconds()

    async def _write_entry(self, key: str, cache_type: str, value: Any, ttl_seconds: int) -> bool:
        """Best-effort write. Returns False (and logs) on store failure."""
        envelope = {
            "value": value,
            "writtenAt": self._clock().isoformat(),
            "ttlSeconds": ttl_seconds,
        }
        try:
            await self.store.set_json(key, envelope, ttl_seconds)
        except CacheUnavailableError as e:
            record_cache_write_failure(cache_type)
            logger.warning("cache_write_failed", cache_type=cache_type, **e.to_log_fields())
            return False
        logger.debug("cache_set", cache_type=cache_type, key=key, ttl_seconds=ttl_seconds)
        return True

    async def _read_through(
        self,
        key: str,
        cache_type: str,
        load: Callable[[], Awaitable[Optional[T]]],
        encode: Callable[[T], Any],
        decode: Callable[[Any], T],
        ttl_seconds: int,
        max_age_seconds: Optional[float] = None,
    ) -> ReadResult:
        envelope = await self._read_entry(key, cache_type, max_age_seconds)
        if envelope is not None:
            try:
                value = decode(envelope["value"])
            except (ValidationError, ValueError, TypeError, AttributeError) as e:
                logger.warning(
                    "cache_payload_invalid",
                    cache_type=cache_type,
                    key=key,
                    error=str(e),
                    error_type=type(e).__name__,
                )
            else:
                record_cache_hit(cache_type)
                logger.debug("cache_hit", cache_type=cache_type, key=key)
                return ReadResult(value=value, source=SOURCE_CACHE)

        record_cache_miss(cache_type)
        logger.debug("cache_miss", cache_type=cache_type, key=key)

        async def load_and_store() -> ReadResult:
            value = await load()
            if value is None:
                return ReadResult(value=None, source=SOURCE_ORIGIN)
            written = await self._write_entry(key, cache_type, encode(value), ttl_seconds)
            return ReadResult(value=value, source=SOURCE_ORIGIN, cache_write_failed=not written)

        return await self._single_flight.do(key, load_and_store)

    # ---- lookups returning ReadResult ----

    async def lookup_content_by_category(
        self,
        category: Category,
        max_age_seconds: Optional[float] = None,
    ) -> ReadResult:
        category = parse_category(category)
        return await self._read_through(
            generate_listing_cache_key(category),
            CACHE_TYPE_LISTING,
            load=lambda: self.origin.load_category_metadata(category),
            encode=_encode_items,
            decode=_decode_items,
            ttl_seconds=self.listing_ttl_seconds,
            max_age_seconds=max_age_seconds,
        )

    async def lookup_content_item(
        self,
        category: Category,
        slug: str,
        max_age_seconds: Optional[float] = None,
    ) -> ReadResult:
        """
        Read-through lookup of one full item.

        Args:
            max_age_seconds: treat cached entries older than this as a miss
                (0 forces an origin fetch)
        """
        category = parse_category(category)
        validate_slug(slug)
        return await self._read_through(
            generate_item_cache_key(category, slug),
            CACHE_TYPE_ITEM,
            load=lambda: self.origin.load_full_content(category, slug),
            encode=lambda item: item.to_wire(),
            decode=ContentItem.model_validate,
            ttl_seconds=self.item_ttl_seconds,
            max_age_seconds=max_age_seconds,
        )

    async def lookup_seo_content(self, max_age_seconds: Optional[float] = None) -> ReadResult:
        return await self._read_through(
            SEO_CACHE_KEY,
            CACHE_TYPE_SEO,
            load=lambda: self.origin.load_seo_bundle(),
            encode=_encode_seo,
            decode=_decode_seo,
            ttl_seconds=self.seo_ttl_seconds,
            max_age_seconds=max_age_seconds,
        )

    # ---- read path ----

    async def get_content_by_category(self, category: Category) -> List[ContentItem]:
        return (await self.lookup_content_by_category(category)).value

    async def get_content_item_by_slug(self, category: Category, slug: str) -> Optional[ContentItem]:
        return (await self.lookup_content_item(category, slug)).value

    async def get_seo_content(self) -> Dict[Category, List[ContentItem]]:
        return (await self.lookup_seo_content()).value

    # ---- population hooks ----

    async def set_content_by_category(self, category: Category, items: List[ContentItem]) -> bool:
        category = parse_category(category)
        for item in items:
            if item.category != category:
                raise ValueError(f"item {item.slug!r} belongs to {item.category.value}, not {category.value}")
        return await self._write_entry(
            generate_listing_cache_key(category), CACHE_TYPE_LISTING, _encode_items(items), self.listing_ttl_seconds
        )

    async def set_content_item_by_slug(self, category: Category, slug: str, item: ContentItem) -> bool:
        category = parse_category(category)
        validate_slug(slug)
        if item.category != category or item.slug != slug:
            raise ValueError(
                f"item {item.category.value}/{item.slug} does not match key {category.value}/{slug}"
            )
        return await self._write_entry(
            generate_item_cache_key(category, slug), CACHE_TYPE_ITEM, item.to_wire(), self.item_ttl_seconds
        )

    async def set_seo_content(self, bundle: Dict[Category, List[ContentItem]]) -> bool:
        return await self._write_entry(SEO_CACHE_KEY, CACHE_TYPE_SEO, _encode_seo(bundle), self.seo_ttl_seconds)


# Global content cache service instance
_content_cache_service: Optional[ContentCacheService] = None


def get_content_cache_service() -> ContentCacheService:
    """Get global content cache service instance."""
    global _content_cache_service
    if _content_cache_service is None:
        _content_cache_service = ContentCacheService()
    return _content_cache_service
