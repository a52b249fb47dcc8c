"""
Error taxonomy for the content cache layer.

- CacheUnavailableError: store unreachable, timed out or circuit open.
  Callers degrade to the origin.
- OriginUnavailableError: origin failed transiently; retryable.
- OriginNotFoundError: the item does not exist at the origin.
- ValidationFailedError: a record from the origin does not match the
  ContentItem schema; dropped and logged, never shown to users.
- WarmingAlreadyRunningError: another warm run holds the lock. An expected
  concurrency outcome, not a failure.
- WarmingLockLostError: a running warm cycle no longer owns its lock and
  stops without touching shared state.
"""
from typing import Any, Dict, Optional


class CatalogCacheError(Exception):
    """Base class for cache layer errors."""

    retryable = False

    def __init__(self, message: str, **context: Any):
        super().__init__(message)
        self.message = message
        self.context: Dict[str, Any] = {k: v for k, v in context.items() if v is not None}

    def to_log_fields(self) -> Dict[str, Any]:
        return {"error": self.message, "error_type": type(self).__name__, **self.context}


class CacheUnavailableError(CatalogCacheError):
    """Raised by the cache store adapter for any network or store failure."""

    retryable = True

    def __init__(self, message: str, operation: Optional[str] = None, key: Optional[str] = None):
        super().__init__(message, operation=operation, key=key)
        self.operation = operation
        self.key = key


class OriginError(CatalogCacheError):
    """Base class for origin loader errors."""

    def __init__(
        self,
        message: str,
        operation: Optional[str] = None,
        category: Optional[str] = None,
        slug: Optional[str] = None,
    ):
        super().__init__(message, operation=operation, category=category, slug=slug)
        self.operation = operation
        self.category = category
        self.slug = slug


class OriginUnavailableError(OriginError):
    retryable = True


class OriginNotFoundError(OriginError):
    retryable = False


class ValidationFailedError(CatalogCacheError):
    """Raised when an origin record fails ContentItem validation."""

    def __init__(self, message: str, category: Optional[str] = None, slug: Optional[str] = None):
        super().__init__(message, category=category, slug=slug)
        self.category = category
        self.slug = slug


class WarmingAlreadyRunningError(CatalogCacheError):
    def __init__(self, message: str = "Cache warming already in progress"):
        super().__init__(message)


class WarmingLockLostError(CatalogCacheError):
    """The run's lock expired or another run took it; the run must stop."""

    def __init__(self, run_id: str, items_warmed: int = 0):
        super().__init__("warming lock lost", run_id=run_id)
        self.run_id = run_id
        self.items_warmed = items_warmed
