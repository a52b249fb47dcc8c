"""
Service configuration loaded from environment variables.

A `.env` file at the repository root is loaded first (if present), then
values are read once into an immutable Settings object. Every TTL must be
positive: nothing in the cache layer is stored without an expiry.
"""
import os
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

from catalog_cache.core.logging import get_logger

logger = get_logger(__name__)

# Load environment variables from .env file in repository root
env_path = Path(__file__).parent.parent.parent.parent / ".env"

if env_path.exists():
    load_dotenv(env_path)
    logger.info("env_loaded", env_path=str(env_path))


ORIGIN_BACKENDS = ("database", "repository")


def _get_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError:
        raise ValueError(f"{name} must be an integer, got {raw!r}")


def _get_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return float(raw)
    except ValueError:
        raise ValueError(f"{name} must be a number, got {raw!r}")


def _get_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


def _get_str(name: str) -> Optional[str]:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return None
    return raw.strip()


@dataclass(frozen=True)
class Settings:
    """Runtime configuration for the cache layer."""

    # Cache store
    redis_url: Optional[str] = None
    redis_timeout_seconds: float = 2.0
    redis_max_connections: int = 20
    scan_batch_size: int = 100

    # TTL policy (seconds)
    item_ttl_seconds: int = 3600
    listing_ttl_seconds: int = 14400
    seo_ttl_seconds: int = 21600

    # Origin
    origin_backend: str = "database"
    origin_timeout_seconds: float = 10.0
    supabase_url: Optional[str] = None
    supabase_key: Optional[str] = None
    content_repository_url: Optional[str] = None
    content_repository_token: Optional[str] = None

    # View tracking
    daily_views_ttl_seconds: int = 604800

    # Warming
    warming_top_n: int = 10
    warming_fallback_items: int = 5
    warming_refresh_threshold_seconds: int = 1800
    warming_lock_ttl_seconds: int = 600
    warming_status_ttl_seconds: int = 86400
    warming_schedule_enabled: bool = False
    warming_interval_hours: float = 6.0
    warming_offpeak_start_hour: int = 0
    warming_offpeak_end_hour: int = 6
    warming_cron_secret: Optional[str] = None
    cache_admin_token: Optional[str] = None

    def __post_init__(self) -> None:
        for name in (
            "item_ttl_seconds",
            "listing_ttl_seconds",
            "seo_ttl_seconds",
            "daily_views_ttl_seconds",
            "warming_lock_ttl_seconds",
            "warming_status_ttl_seconds",
        ):
            if getattr(self, name) <= 0:
                raise ValueError(f"{name} must be positive")
        if self.listing_ttl_seconds < self.item_ttl_seconds:
            raise ValueError("listing_ttl_seconds must be >= item_ttl_seconds")
        if self.seo_ttl_seconds < self.item_ttl_seconds:
            raise ValueError("seo_ttl_seconds must be >= item_ttl_seconds")
        if self.origin_backend not in ORIGIN_BACKENDS:
            raise ValueError(
                f"origin_backend must be one of {', '.join(ORIGIN_BACKENDS)}, "
                f"got {self.origin_backend!r}"
            )
        if self.warming_top_n < 1:
            raise ValueError("warming_top_n must be at least 1")
        if not (0 <= self.warming_offpeak_start_hour <= 23 and 0 <= self.warming_offpeak_end_hour <= 24):
            raise ValueError("off-peak window hours must be within 0-24")


def load_settings() -> Settings:
    """Build Settings from the current environment."""
    return Settings(
        redis_url=_get_str("REDIS_URL"),
        redis_timeout_seconds=_get_float("REDIS_TIMEOUT_SECONDS", 2.0),
        redis_max_connections=_get_int("REDIS_MAX_CONNECTIONS", 20),
        scan_batch_size=_get_int("CACHE_SCAN_BATCH_SIZE", 100),
        item_ttl_seconds=_get_int("CONTENT_ITEM_TTL_SECONDS", 3600),
        listing_ttl_seconds=_get_int("CONTENT_LISTING_TTL_SECONDS", 14400),
        seo_ttl_seconds=_get_int("CONTENT_SEO_TTL_SECONDS", 21600),
        origin_backend=(_get_str("ORIGIN_BACKEND") or "database").lower(),
        origin_timeout_seconds=_get_float("ORIGIN_TIMEOUT_SECONDS", 10.0),
        supabase_url=_get_str("SUPABASE_URL"),
        supabase_key=_get_str("SUPABASE_SERVICE_KEY") or _get_str("SUPABASE_KEY"),
        content_repository_url=_get_str("CONTENT_REPOSITORY_URL"),
        content_repository_token=_get_str("CONTENT_REPOSITORY_TOKEN"),
        daily_views_ttl_seconds=_get_int("VIEWS_DAILY_TTL_SECONDS", 604800),
        warming_top_n=_get_int("WARMING_TOP_N", 10),
        warming_fallback_items=_get_int("WARMING_FALLBACK_ITEMS", 5),
        warming_refresh_threshold_seconds=_get_int("WARMING_REFRESH_THRESHOLD_SECONDS", 1800),
        warming_lock_ttl_seconds=_get_int("WARMING_LOCK_TTL_SECONDS", 600),
        warming_status_ttl_seconds=_get_int("WARMING_STATUS_TTL_SECONDS", 86400),
        warming_schedule_enabled=_get_bool("WARMING_SCHEDULE_ENABLED", False),
        warming_interval_hours=_get_float("WARMING_INTERVAL_HOURS", 6.0),
        warming_offpeak_start_hour=_get_int("WARMING_OFFPEAK_START_HOUR", 0),
        warming_offpeak_end_hour=_get_int("WARMING_OFFPEAK_END_HOUR", 6),
        warming_cron_secret=_get_str("WARMING_CRON_SECRET"),
        cache_admin_token=_get_str("CACHE_ADMIN_TOKEN"),
    )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Get process-wide settings (read once)."""
    return load_settings()
