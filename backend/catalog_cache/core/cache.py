"""
Redis cache store adapter with connection pooling and circuit breaker.

This is the only module that talks to the network cache. Every operation
either succeeds or raises CacheUnavailableError (store not configured,
unreachable, timed out, or circuit open); callers treat that as a miss.

Pool settings:
- Pool size: 20 connections
- Operation timeout: 2 seconds (REDIS_TIMEOUT_SECONDS)
- SCAN batch size: 100 keys
"""
import asyncio
import json
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple

import redis.asyncio as aioredis
from redis.asyncio import Redis
from redis.exceptions import RedisError

from catalog_cache.core.circuit_breaker import CircuitBreaker, CircuitBreakerOpenError
from catalog_cache.core.config import get_settings
from catalog_cache.core.errors import CacheUnavailableError
from catalog_cache.core.logging import get_logger
from catalog_cache.core.metrics import record_cache_store_error

logger = get_logger(__name__)

# Global Redis connection pool
_redis_client: Optional[Redis] = None
_cache_circuit_breaker: Optional[CircuitBreaker] = None

# Compare-and-delete: only the holder of a lock token may release it
_RELEASE_IF_EQUALS_SCRIPT = """
if redis.call("GET", KEYS[1]) == ARGV[1] then
    return redis.call("DEL", KEYS[1])
end
return 0
"""

# Compare-and-expire: only the holder of a lock token may extend it
_EXTEND_IF_EQUALS_SCRIPT = """
if redis.call("GET", KEYS[1]) == ARGV[1] then
    return redis.call("PEXPIRE", KEYS[1], ARGV[2])
end
return 0
"""

# INCRBY, then EXPIRE only when the key has no expiry yet (TTL -1).
# Same effect as EXPIRE NX, which needs Redis 7.
_INCREMENT_WITH_TTL_SCRIPT = """
local value = redis.call("INCRBY", KEYS[1], ARGV[1])
if redis.call("TTL", KEYS[1]) == -1 then
    redis.call("EXPIRE", KEYS[1], ARGV[2])
end
return value
"""

_SORTED_SET_INCREMENT_WITH_TTL_SCRIPT = """
local score = redis.call("ZINCRBY", KEYS[1], ARGV[1], ARGV[2])
if redis.call("TTL", KEYS[1]) == -1 then
    redis.call("EXPIRE", KEYS[1], ARGV[3])
end
return score
"""


async def initialize_redis() -> bool:
    """
    Initialize the Redis connection pool.

    Returns:
        True if the store is reachable, False if it is disabled or down
    """
    global _redis_client, _cache_circuit_breaker

    settings = get_settings()
    if not settings.redis_url:
        logger.info("redis_disabled", reason="REDIS_URL not set")
        return False

    try:
        logger.info("redis_initializing")
        client = aioredis.from_url(
            settings.redis_url,
            max_connections=settings.redis_max_connections,
            socket_connect_timeout=settings.redis_timeout_seconds,
            socket_timeout=settings.redis_timeout_seconds,
            retry_on_timeout=True,
            decode_responses=True,
        )
        await client.ping()

        _redis_client = client
        _cache_circuit_breaker = CircuitBreaker(
            name="redis_cache",
            failure_threshold=0.5,
            time_window_seconds=60,
            open_duration_seconds=30,
        )
        logger.info("redis_initialized")
        return True

    except Exception as e:
        logger.error(
            "redis_initialization_failed",
            error=str(e),
            error_type=type(e).__name__,
            exc_info=True,
        )
        _redis_client = None
        return False


async def close_redis() -> None:
    """Close the Redis connection pool."""
    global _redis_client

    if _redis_client:
        try:
            await _redis_client.aclose()
            logger.info("redis_closed")
        except Exception as e:
            logger.error("redis_close_failed", error=str(e), exc_info=True)
        finally:
            _redis_client = None


class CacheStore:
    """
    Thin wrapper over Redis exposing get/set-with-TTL/delete/scan/increment.

    The client defaults to the process-wide pool, resolved at call time so a
    store created before startup picks up the pool once it exists.
    """

    def __init__(
        self,
        client: Optional[Redis] = None,
        circuit_breaker: Optional[CircuitBreaker] = None,
        timeout_seconds: Optional[float] = None,
        scan_batch_size: Optional[int] = None,
    ):
        settings = get_settings()
        self._client = client
        self._circuit_breaker = circuit_breaker
        self.timeout_seconds = timeout_seconds or settings.redis_timeout_seconds
        self.scan_batch_size = scan_batch_size or settings.scan_batch_size

    @property
    def client(self) -> Optional[Redis]:
        return self._client if self._client is not None else _redis_client

    @property
    def circuit_breaker(self) -> Optional[CircuitBreaker]:
        if self._circuit_breaker is not None:
            return self._circuit_breaker
        return _cache_circuit_breaker if self._client is None else None

    @property
    def enabled(self) -> bool:
        return self.client is not None

    async def _execute(
        self,
        operation: str,
        func: Callable[[Redis], Awaitable[Any]],
        key: Optional[str] = None,
    ) -> Any:
        client = self.client
        if client is None:
            raise CacheUnavailableError("cache store not configured", operation=operation, key=key)

        async def run() -> Any:
            return await asyncio.wait_for(func(client), timeout=self.timeout_seconds)

        try:
            breaker = self.circuit_breaker
            if breaker:
                return await breaker.call_async(run)
            return await run()
        except CircuitBreakerOpenError as e:
            logger.debug("cache_circuit_breaker_open", operation=operation, key=key)
            raise CacheUnavailableError(str(e), operation=operation, key=key) from e
        except asyncio.TimeoutError as e:
            record_cache_store_error(operation)
            logger.warning("cache_timeout", operation=operation, key=key, timeout=self.timeout_seconds)
            raise CacheUnavailableError("cache store timed out", operation=operation, key=key) from e
        except (RedisError, OSError) as e:
            record_cache_store_error(operation)
            logger.warning(
                "cache_store_error",
                operation=operation,
                key=key,
                error=str(e),
                error_type=type(e).__name__,
            )
            raise CacheUnavailableError(str(e), operation=operation, key=key) from e

    async def get(self, key: str) -> Optional[str]:
        return await self._execute("get", lambda c: c.get(key), key=key)

    async def get_many(self, keys: List[str]) -> List[Optional[str]]:
        """
        MGET in batches of scan_batch_size; returns values aligned with keys
        (None for missing).
        """
        if not keys:
            return []

        async def mget_batches(client: Redis) -> List[Optional[str]]:
            values: List[Optional[str]] = []
            for start in range(0, len(keys), self.scan_batch_size):
                values.extend(await client.mget(keys[start:start + self.scan_batch_size]))
            return values

        return await self._execute("mget", mget_batches)

    async def set(self, key: str, value: str, ttl_seconds: int) -> None:
        if ttl_seconds <= 0:
            raise ValueError("ttl_seconds must be positive")
        await self._execute("set", lambda c: c.set(key, value, ex=ttl_seconds), key=key)

    async def set_if_absent(self, key: str, value: str, ttl_seconds: int) -> bool:
        """Atomic SET NX EX. Returns True if this call created the key."""
        if ttl_seconds <= 0:
            raise ValueError("ttl_seconds must be positive")
        result = await self._execute(
            "set_nx", lambda c: c.set(key, value, ex=ttl_seconds, nx=True), key=key
        )
        return bool(result)

    async def release_if_equals(self, key: str, token: str) -> bool:
        """Delete key only if it still holds token. Returns True if deleted."""
        result = await self._execute(
            "release", lambda c: c.eval(_RELEASE_IF_EQUALS_SCRIPT, 1, key, token), key=key
        )
        return bool(result)

    async def extend_if_equals(self, key: str, token: str, ttl_seconds: int) -> bool:
        """
        Reset the expiry of key to ttl_seconds only if it still holds token.

        Returns:
            True if extended, False if the key expired or another holder owns it
        """
        if ttl_seconds <= 0:
            raise ValueError("ttl_seconds must be positive")
        result = await self._execute(
            "extend",
            lambda c: c.eval(_EXTEND_IF_EQUALS_SCRIPT, 1, key, token, ttl_seconds * 1000),
            key=key,
        )
        return bool(result)

    async def delete(self, key: str) -> int:
        return await self._execute("delete", lambda c: c.delete(key), key=key)

    async def increment(self, key: str, amount: int = 1, ttl_seconds: Optional[int] = None) -> int:
        """
        Atomic INCRBY. When ttl_seconds is given the key also gets an expiry,
        but only if it has none yet, in the same script.
        """
        async def incr(client: Redis) -> int:
            if ttl_seconds is None:
                return await client.incrby(key, amount)
            return await client.eval(_INCREMENT_WITH_TTL_SCRIPT, 1, key, amount, ttl_seconds)

        return int(await self._execute("incrby", incr, key=key))

    async def sorted_set_increment(
        self,
        key: str,
        member: str,
        amount: float = 1,
        ttl_seconds: Optional[int] = None,
    ) -> float:
        """ZINCRBY; with ttl_seconds the set gets an expiry if it has none yet."""
        async def zincr(client: Redis) -> float:
            if ttl_seconds is None:
                return await client.zincrby(key, amount, member)
            return await client.eval(_SORTED_SET_INCREMENT_WITH_TTL_SCRIPT, 1, key, amount, member, ttl_seconds)

        return float(await self._execute("zincrby", zincr, key=key))

    async def sorted_set_top(self, key: str, count: int) -> List[Tuple[str, float]]:
        """Highest-scored `count` members as (member, score), score descending."""
        if count <= 0:
            return []
        result = await self._execute(
            "zrevrange", lambda c: c.zrevrange(key, 0, count - 1, withscores=True), key=key
        )
        return [(member, float(score)) for member, score in result]

    async def sorted_set_range_by_score(
        self,
        key: str,
        min_score: float,
        max_score: float,
        count: int,
    ) -> List[Tuple[str, float]]:
        """
        Up to `count` members with min_score <= score <= max_score, score
        ascending. Members of equal score come in lexicographic order.
        """
        if count <= 0:
            return []
        result = await self._execute(
            "zrangebyscore",
            lambda c: c.zrangebyscore(key, min_score, max_score, start=0, num=count, withscores=True),
            key=key,
        )
        return [(member, float(score)) for member, score in result]

    async def sorted_set_scores(self, key: str) -> Dict[str, float]:
        """Every member of a sorted set, read with ZSCAN in bounded batches."""
        async def zscan(client: Redis) -> Dict[str, float]:
            scores: Dict[str, float] = {}
            async for member, score in client.zscan_iter(key, count=self.scan_batch_size):
                scores[member] = float(score)
            return scores

        return await self._execute("zscan", zscan, key=key)

    async def scan_keys(self, pattern: str, limit: Optional[int] = None) -> List[str]:
        """
        Cursor-based SCAN for keys matching pattern, in batches of
        scan_batch_size. Never uses KEYS.
        """
        async def scan(client: Redis) -> List[str]:
            found: List[str] = []
            async for key in client.scan_iter(match=pattern, count=self.scan_batch_size):
                found.append(key)
                if limit is not None and len(found) >= limit:
                    break
            return found

        return await self._execute("scan", scan, key=pattern)

    async def delete_matching(self, pattern: str) -> int:
        """Delete every key matching pattern. Returns number deleted."""
        async def delete_batches(client: Redis) -> int:
            deleted = 0
            batch: List[str] = []
            async for key in client.scan_iter(match=pattern, count=self.scan_batch_size):
                batch.append(key)
                if len(batch) >= self.scan_batch_size:
                    deleted += await client.delete(*batch)
                    batch = []
            if batch:
                deleted += await client.delete(*batch)
            return deleted

        return await self._execute("delete_matching", delete_batches, key=pattern)

    async def ping(self) -> bool:
        return bool(await self._execute("ping", lambda c: c.ping()))

    async def get_json(self, key: str) -> Optional[Any]:
        """GET and JSON-decode. A corrupt payload is treated as a miss."""
        raw = await self.get(key)
        if raw is None:
            return None
        try:
            return json.loads(raw)
        except json.JSONDecodeError:
            logger.warning("cache_payload_corrupt", key=key)
            return None

    async def set_json(self, key: str, value: Any, ttl_seconds: int) -> None:
        await self.set(key, json.dumps(value), ttl_seconds)

    def get_circuit_breaker_metrics(self) -> Optional[Dict]:
        breaker = self.circuit_breaker
        if breaker:
            return breaker.get_metrics()
        return None


# Global cache store instance
_cache_store: Optional[CacheStore] = None


def get_cache_store() -> CacheStore:
    """Get global cache store instance."""
    global _cache_store
    if _cache_store is None:
        _cache_store = CacheStore()
    return _cache_store
