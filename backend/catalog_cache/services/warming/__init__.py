"""
Cache warming job and its in-process schedule.
"""
from catalog_cache.services.warming.scheduler import WarmingScheduler, get_warming_scheduler, is_off_peak
from catalog_cache.services.warming.warmer import (
    WARMING_LOCK_KEY,
    WARMING_STATUS_KEY,
    CacheWarmer,
    get_cache_warmer,
)

__all__ = [
    "WARMING_LOCK_KEY",
    "WARMING_STATUS_KEY",
    "CacheWarmer",
    "WarmingScheduler",
    "get_cache_warmer",
    "get_warming_scheduler",
    "is_off_peak",
]
