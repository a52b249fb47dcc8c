"""
Health check endpoints.
"""
from fastapi import APIRouter

from catalog_cache.core.cache import get_cache_store
from catalog_cache.core.errors import CacheUnavailableError
from catalog_cache.core.logging import get_logger
from catalog_cache.services.warming.warmer import get_cache_warmer

logger = get_logger(__name__)
router = APIRouter()


@router.get("/")
async def health_check():
    """
    Basic health check endpoint.
    """
    return {
        "status": "ok",
        "message": "API is running"
    }


@router.get("/cache")
async def cache_health():
    """
    Health of the cache store.

    Returns:
        - enabled: whether REDIS_URL is configured and the pool is up
        - reachable: result of a PING
        - circuit_breaker: breaker state and recent error rate
        - warming_in_progress: whether this process is running a warm cycle

    The cache is an optimization, so a down store reports "degraded",
    not an error status code.
    """
    store = get_cache_store()
    warmer = get_cache_warmer()

    response = {
        "enabled": store.enabled,
        "reachable": False,
        "circuit_breaker": store.get_circuit_breaker_metrics(),
        "warming_in_progress": warmer.is_running,
    }

    if not store.enabled:
        response["status"] = "disabled"
        response["message"] = "Cache store not configured. Content is served from the origin."
        return response

    try:
        response["reachable"] = await store.ping()
    except CacheUnavailableError as e:
        logger.warning("health_cache_ping_failed", **e.to_log_fields())

    response["status"] = "ok" if response["reachable"] else "degraded"
    return response
