"""
Core service modules.
Contains configuration, logging, metrics, the cache store adapter and
other infrastructure shared by the services.
"""
from .errors import (
    CacheUnavailableError,
    OriginNotFoundError,
    OriginUnavailableError,
    ValidationFailedError,
    WarmingAlreadyRunningError,
    WarmingLockLostError,
)

__all__ = [
    "CacheUnavailableError",
    "OriginNotFoundError",
    "OriginUnavailableError",
    "ValidationFailedError",
    "WarmingAlreadyRunningError",
    "WarmingLockLostError",
]
