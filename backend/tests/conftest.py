"""
Shared test doubles.

FakeCacheStore implements the CacheStore contract in memory (including
CacheUnavailableError on failure) so service behavior can be tested
without a Redis server. FakeOriginLoader is a real OriginLoader subclass
backed by dicts, so the shared validation/timeout policy is exercised.
"""
import asyncio
import fnmatch
import json
import time
from typing import Any, Dict, List, Optional, Tuple

import pytest

from catalog_cache.core.errors import CacheUnavailableError, OriginUnavailableError
from catalog_cache.services.content.content_cache import ContentCacheService
from catalog_cache.services.origin.base import OriginLoader
from catalog_cache.services.popularity.tracker import PopularityTracker
from catalog_cache.services.warming.warmer import CacheWarmer


class FakeCacheStore:
    """
    In-memory CacheStore. With `expiring=True` keys really expire after
    their TTL (monotonic clock), which lock-renewal tests rely on.
    """

    def __init__(self, enabled: bool = True, expiring: bool = False):
        self.data: Dict[str, str] = {}
        self.zsets: Dict[str, Dict[str, float]] = {}
        self.ttls: Dict[str, int] = {}
        self.deadlines: Dict[str, float] = {}
        self.expiring = expiring
        self._enabled = enabled
        self.fail = False
        self.fail_writes = False
        self.scan_batch_size = 100

    @property
    def enabled(self) -> bool:
        return self._enabled

    def _check(self, operation: str, key: Optional[str] = None, write: bool = False) -> None:
        if not self._enabled:
            raise CacheUnavailableError("cache store not configured", operation=operation, key=key)
        if self.fail or (write and self.fail_writes):
            raise CacheUnavailableError("connection refused", operation=operation, key=key)
        self._expire()

    def _expire(self) -> None:
        if not self.expiring:
            return
        now = time.monotonic()
        for key, deadline in list(self.deadlines.items()):
            if deadline <= now:
                self._drop(key)

    def _drop(self, key: str) -> bool:
        self.ttls.pop(key, None)
        self.deadlines.pop(key, None)
        found = self.data.pop(key, None) is not None
        return self.zsets.pop(key, None) is not None or found

    def _set_ttl(self, key: str, ttl_seconds: float) -> None:
        self.ttls[key] = ttl_seconds
        self.deadlines[key] = time.monotonic() + ttl_seconds

    def _keys(self) -> List[str]:
        return list(self.data) + list(self.zsets)

    async def get(self, key: str) -> Optional[str]:
        self._check("get", key)
        return self.data.get(key)

    async def get_many(self, keys: List[str]) -> List[Optional[str]]:
        self._check("mget")
        return [self.data.get(key) for key in keys]

    async def set(self, key: str, value: str, ttl_seconds: int) -> None:
        self._check("set", key, write=True)
        if ttl_seconds <= 0:
            raise ValueError("ttl_seconds must be positive")
        self.data[key] = value
        self._set_ttl(key, ttl_seconds)

    async def set_if_absent(self, key: str, value: str, ttl_seconds: int) -> bool:
        self._check("set_nx", key, write=True)
        if key in self.data:
            return False
        await self.set(key, value, ttl_seconds)
        return True

    async def release_if_equals(self, key: str, token: str) -> bool:
        self._check("release", key, write=True)
        if self.data.get(key) == token:
            await self.delete(key)
            return True
        return False

    async def extend_if_equals(self, key: str, token: str, ttl_seconds: int) -> bool:
        self._check("extend", key, write=True)
        if self.data.get(key) == token:
            self._set_ttl(key, ttl_seconds)
            return True
        return False

    async def delete(self, key: str) -> int:
        self._check("delete", key, write=True)
        return 1 if self._drop(key) else 0

    async def increment(self, key: str, amount: int = 1, ttl_seconds: Optional[int] = None) -> int:
        self._check("incrby", key, write=True)
        value = int(self.data.get(key, "0")) + amount
        self.data[key] = str(value)
        if ttl_seconds is not None and key not in self.ttls:
            self._set_ttl(key, ttl_seconds)
        return value

    async def sorted_set_increment(
        self, key: str, member: str, amount: float = 1, ttl_seconds: Optional[int] = None
    ) -> float:
        self._check("zincrby", key, write=True)
        scores = self.zsets.setdefault(key, {})
        scores[member] = scores.get(member, 0.0) + amount
        if ttl_seconds is not None and key not in self.ttls:
            self._set_ttl(key, ttl_seconds)
        return scores[member]

    async def sorted_set_top(self, key: str, count: int) -> List[Tuple[str, float]]:
        self._check("zrevrange", key)
        ordered = sorted(self.zsets.get(key, {}).items(), key=lambda pair: (pair[1], pair[0]), reverse=True)
        return ordered[:max(count, 0)]

    async def sorted_set_range_by_score(
        self, key: str, min_score: float, max_score: float, count: int
    ) -> List[Tuple[str, float]]:
        self._check("zrangebyscore", key)
        ordered = sorted(
            (pair for pair in self.zsets.get(key, {}).items() if min_score <= pair[1] <= max_score),
            key=lambda pair: (pair[1], pair[0]),
        )
        return ordered[:max(count, 0)]

    async def sorted_set_scores(self, key: str) -> Dict[str, float]:
        self._check("zscan", key)
        return dict(self.zsets.get(key, {}))

    async def scan_keys(self, pattern: str, limit: Optional[int] = None) -> List[str]:
        self._check("scan", pattern)
        found = [key for key in self._keys() if fnmatch.fnmatchcase(key, pattern)]
        return found[:limit] if limit is not None else found

    async def delete_matching(self, pattern: str) -> int:
        self._check("delete_matching", pattern, write=True)
        keys = [key for key in self._keys() if fnmatch.fnmatchcase(key, pattern)]
        for key in keys:
            await self.delete(key)
        return len(keys)

    async def ping(self) -> bool:
        self._check("ping")
        return True

    async def get_json(self, key: str) -> Optional[Any]:
        raw = await self.get(key)
        if raw is None:
            return None
        try:
            return json.loads(raw)
        except json.JSONDecodeError:
            return None

    async def set_json(self, key: str, value: Any, ttl_seconds: int) -> None:
        await self.set(key, json.dumps(value), ttl_seconds)

    def get_circuit_breaker_metrics(self) -> Optional[Dict]:
        return None


def make_record(category: str, slug: str, title: Optional[str] = None, **extra) -> dict:
    record = {
        "category": category,
        "slug": slug,
        "title": title or slug.replace("-", " ").title(),
        "description": f"{slug} description",
        "tags": ["test"],
        "author": "tester",
        "dateAdded": "2024-05-01",
        "fullContent": f"# {slug}\n\nFull body.",
    }
    record.update(extra)
    return record


class FakeOriginLoader(OriginLoader):
    backend = "fake"

    def __init__(self, records: Optional[Dict[str, List[dict]]] = None, timeout_seconds: float = 5.0):
        super().__init__(timeout_seconds=timeout_seconds)
        self.records: Dict[str, List[dict]] = records or {}
        self.calls: List[tuple] = []
        self.failing_categories = set()
        self.failing_slugs = set()
        self.delay = 0.0

    def call_count(self, operation: str, category: Optional[str] = None, slug: Optional[str] = None) -> int:
        return sum(
            1
            for op, c, s in self.calls
            if op == operation and (category is None or c == category) and (slug is None or s == slug)
        )

    async def _fetch_category(self, category):
        self.calls.append(("category", category.value, None))
        if self.delay:
            await asyncio.sleep(self.delay)
        if category.value in self.failing_categories:
            raise OriginUnavailableError("origin down", operation="load_category", category=category.value)
        return [
            {k: v for k, v in record.items() if k != "fullContent"}
            for record in self.records.get(category.value, [])
        ]

    async def _fetch_item(self, category, slug):
        self.calls.append(("item", category.value, slug))
        if self.delay:
            await asyncio.sleep(self.delay)
        if category.value in self.failing_categories or slug in self.failing_slugs:
            raise OriginUnavailableError("origin down", operation="load_item", category=category.value, slug=slug)
        for record in self.records.get(category.value, []):
            if record.get("slug") == slug:
                return dict(record)
        return None


@pytest.fixture
def store():
    return FakeCacheStore()


@pytest.fixture
def origin():
    return FakeOriginLoader(
        {
            "agents": [make_record("agents", s) for s in ("a", "b", "c")],
            "mcp": [make_record("mcp", s) for s in ("github", "postgres", "slack")],
        }
    )


@pytest.fixture
def content_cache(store, origin):
    return ContentCacheService(store=store, origin=origin)


@pytest.fixture
def tracker(store):
    return PopularityTracker(store=store)


@pytest.fixture
def warmer(store, content_cache, tracker):
    return CacheWarmer(store=store, content_cache=content_cache, tracker=tracker, top_n=10, fallback_items=5)
