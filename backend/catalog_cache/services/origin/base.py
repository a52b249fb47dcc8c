"""
Origin loader interface.

An origin is the authoritative (slow) source of catalog content. Concrete
loaders only implement the raw fetches (`_fetch_*`, returning plain dicts);
this base class applies the shared policy around them:

- per-call timeout (ORIGIN_TIMEOUT_SECONDS) → OriginUnavailableError
- schema validation: invalid records are dropped and logged, never raised
- metrics and tracing spans for every origin request
- SEO bundle assembly with partial results

Loaders never cache. Caching is the content cache service's job.
"""
import asyncio
import time
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

from pydantic import ValidationError

from catalog_cache.core.config import get_settings
from catalog_cache.core.errors import (
    OriginError,
    OriginNotFoundError,
    OriginUnavailableError,
    ValidationFailedError,
)
from catalog_cache.core.logging import get_logger
from catalog_cache.core.metrics import record_origin_record_dropped, record_origin_request
from catalog_cache.core.tracing import get_tracer
from catalog_cache.models.content import ALL_CATEGORIES, Category, ContentItem, validate_slug

logger = get_logger(__name__)


def validate_record(record: Any, category: Category) -> ContentItem:
    """
    Validate one raw origin record as a ContentItem of `category`.

    Raises:
        ValidationFailedError: record is not a mapping, belongs to another
            category, or fails the ContentItem schema
    """
    if not isinstance(record, dict):
        raise ValidationFailedError("record is not an object", category=category.value)

    data = dict(record)
    record_category = data.get("category")
    if record_category is None:
        data["category"] = category.value
    elif record_category != category.value:
        raise ValidationFailedError(
            f"record belongs to category {record_category!r}",
            category=category.value,
            slug=data.get("slug"),
        )

    try:
        return ContentItem.model_validate(data)
    except ValidationError as e:
        raise ValidationFailedError(
            f"{e.error_count()} validation error(s)",
            category=category.value,
            slug=data.get("slug"),
        ) from e


def validate_records(records: List[Any], category: Category) -> List[ContentItem]:
    """Validate a batch, dropping (and logging) the records that fail."""
    items: List[ContentItem] = []
    for record in records:
        try:
            items.append(validate_record(record, category))
        except ValidationFailedError as e:
            record_origin_record_dropped(category.value)
            logger.warning("origin_record_invalid", **e.to_log_fields())
    return items


class OriginLoader(ABC):
    """Polymorphic origin; subclasses are selected by configuration."""

    backend: str = "unknown"

    def __init__(self, timeout_seconds: Optional[float] = None):
        self.timeout_seconds = timeout_seconds or get_settings().origin_timeout_seconds

    @abstractmethod
    async def _fetch_category(self, category: Category) -> List[Dict[str, Any]]:
        """Raw metadata records of a category."""

    @abstractmethod
    async def _fetch_item(self, category: Category, slug: str) -> Optional[Dict[str, Any]]:
        """Raw full record, None (or OriginNotFoundError) if absent."""

    async def close(self) -> None:
        """Release backend resources. No-op by default."""

    async def _call(self, operation: str, coro, category: Optional[str] = None, slug: Optional[str] = None):
        """Run one origin request with timeout, metrics and a span."""
        start_time = time.time()
        outcome = "success"
        with get_tracer().start_as_current_span(f"origin.{operation}") as span:
            span.set_attribute("origin.backend", self.backend)
            if category:
                span.set_attribute("content.category", category)
            if slug:
                span.set_attribute("content.slug", slug)
            try:
                return await asyncio.wait_for(coro, timeout=self.timeout_seconds)
            except asyncio.TimeoutError as e:
                outcome = "timeout"
                span.record_exception(e)
                raise OriginUnavailableError(
                    f"origin timed out after {self.timeout_seconds}s",
                    operation=operation,
                    category=category,
                    slug=slug,
                ) from e
            except OriginNotFoundError:
                outcome = "not_found"
                raise
            except Exception as e:
                outcome = "error"
                span.record_exception(e)
                raise
            finally:
                record_origin_request(self.backend, operation, outcome, time.time() - start_time)

    async def load_category_metadata(self, category: Category) -> List[ContentItem]:
        """Metadata of every valid item in the category (fullContent stripped)."""
        records = await self._call("load_category", self._fetch_category(category), category=category.value)
        if not isinstance(records, list):
            raise OriginUnavailableError(
                "malformed category payload", operation="load_category", category=category.value
            )
        items = [item.metadata_only() for item in validate_records(records, category)]
        logger.debug(
            "origin_category_loaded",
            backend=self.backend,
            category=category.value,
            received=len(records),
            valid=len(items),
        )
        return items

    async def load_full_content(self, category: Category, slug: str) -> Optional[ContentItem]:
        """
        Full item including body.

        Returns:
            The item, or None if it does not exist (or its record is invalid)

        Raises:
            OriginUnavailableError: origin failed transiently
        """
        validate_slug(slug)
        try:
            record = await self._call(
                "load_item", self._fetch_item(category, slug), category=category.value, slug=slug
            )
        except OriginNotFoundError:
            return None
        if record is None:
            return None

        try:
            item = validate_record(record, category)
        except ValidationFailedError as e:
            record_origin_record_dropped(category.value)
            logger.warning("origin_record_invalid", **e.to_log_fields())
            return None

        if item.slug != slug:
            logger.warning(
                "origin_record_slug_mismatch", category=category.value, slug=slug, record_slug=item.slug
            )
            return None
        return item

    async def load_seo_bundle(self) -> Dict[Category, List[ContentItem]]:
        """
        Metadata lists for every category.

        A category that fails to load is omitted (partial bundle). If every
        category fails, OriginUnavailableError is raised.
        """
        results = await asyncio.gather(
            *(self.load_category_metadata(category) for category in ALL_CATEGORIES),
            return_exceptions=True,
        )

        bundle: Dict[Category, List[ContentItem]] = {}
        for category, result in zip(ALL_CATEGORIES, results):
            if isinstance(result, OriginError):
                logger.warning(
                    "origin_seo_category_failed", backend=self.backend, **result.to_log_fields()
                )
                continue
            if isinstance(result, BaseException):
                raise result
            bundle[category] = result

        if not bundle:
            raise OriginUnavailableError("all categories failed to load", operation="load_seo_bundle")
        return bundle
