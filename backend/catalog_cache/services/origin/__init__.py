"""
Origin loaders and the configuration-driven factory.
"""
from typing import Optional

from catalog_cache.core.config import get_settings
from catalog_cache.core.logging import get_logger
from catalog_cache.services.origin.base import OriginLoader, validate_record, validate_records
from catalog_cache.services.origin.database import DatabaseOriginLoader
from catalog_cache.services.origin.repository import RepositoryOriginLoader

logger = get_logger(__name__)

_origin_loader: Optional[OriginLoader] = None


def create_origin_loader(backend: Optional[str] = None) -> OriginLoader:
    """Build the loader for `backend` (default: ORIGIN_BACKEND)."""
    backend = backend or get_settings().origin_backend
    if backend == "database":
        return DatabaseOriginLoader()
    if backend == "repository":
        return RepositoryOriginLoader()
    raise ValueError(f"unknown origin backend: {backend!r}")


def get_origin_loader() -> OriginLoader:
    """Get global origin loader instance."""
    global _origin_loader
    if _origin_loader is None:
        _origin_loader = create_origin_loader()
        logger.info("origin_loader_created", backend=_origin_loader.backend)
    return _origin_loader


async def close_origin_loader() -> None:
    global _origin_loader
    if _origin_loader is not None:
        await _origin_loader.close()
        _origin_loader = None


__all__ = [
    "OriginLoader",
    "DatabaseOriginLoader",
    "RepositoryOriginLoader",
    "create_origin_loader",
    "get_origin_loader",
    "close_origin_loader",
    "validate_record",
    "validate_records",
]
