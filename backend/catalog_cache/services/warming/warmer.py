"""
Cache warmer.

Walks the categories and pre-populates the content cache with the most
viewed items of each, ahead of traffic.

Single-flight across every process sharing the store:
- `warming:lock` is taken with SET NX EX (token = run id). The TTL is a
  safety net for a crashed run; a finished run deletes the lock only if it
  still holds its own token.
- The lock is renewed before each category and each item, and only while
  it still carries the run id. A run that finds its lock gone stops at once
  and leaves the status key to whichever run holds the lock now.
- `warming:status` holds the WarmingRun, rewritten after each category so
  status readers see live counters.

One category's failure never stops the run; it is recorded in
failedCategories and the next category is processed. Cancellation is
cooperative and checked between categories.
"""
import asyncio
import time
import uuid
from datetime import datetime, timezone
from typing import List, Optional, Sequence, Tuple

from catalog_cache.core.cache import CacheStore, get_cache_store
from catalog_cache.core.config import get_settings
from catalog_cache.core.errors import CacheUnavailableError, WarmingAlreadyRunningError, WarmingLockLostError
from catalog_cache.core.logging import get_logger
from catalog_cache.core.metrics import (
    record_items_warmed,
    record_warming_run,
    set_warming_in_progress,
)
from catalog_cache.core.tracing import get_tracer
from catalog_cache.models.content import ALL_CATEGORIES, Category, ContentItem, parse_category
from catalog_cache.models.warming import WarmingResult, WarmingRun, WarmingState, WarmingTrigger
from catalog_cache.services.content.content_cache import ContentCacheService, get_content_cache_service
from catalog_cache.services.popularity.tracker import PopularityTracker, get_popularity_tracker

logger = get_logger(__name__)

WARMING_LOCK_KEY = "warming:lock"
WARMING_STATUS_KEY = "warming:status"

MESSAGE_ALREADY_RUNNING = "Cache warming already in progress"
MESSAGE_STORE_UNAVAILABLE = "Cache store unavailable"
MESSAGE_LOCK_LOST = "Warming lock lost"


class CacheWarmer:
    def __init__(
        self,
        store: Optional[CacheStore] = None,
        content_cache: Optional[ContentCacheService] = None,
        tracker: Optional[PopularityTracker] = None,
        top_n: Optional[int] = None,
        fallback_items: Optional[int] = None,
        refresh_threshold_seconds: Optional[int] = None,
        lock_ttl_seconds: Optional[int] = None,
        status_ttl_seconds: Optional[int] = None,
    ):
        settings = get_settings()
        self._store = store
        self._content_cache = content_cache
        self._tracker = tracker
        self.top_n = top_n or settings.warming_top_n
        self.fallback_items = settings.warming_fallback_items if fallback_items is None else fallback_items
        self.refresh_threshold_seconds = (
            settings.warming_refresh_threshold_seconds
            if refresh_threshold_seconds is None
            else refresh_threshold_seconds
        )
        self.lock_ttl_seconds = lock_ttl_seconds or settings.warming_lock_ttl_seconds
        self.status_ttl_seconds = status_ttl_seconds or settings.warming_status_ttl_seconds
        self._cancel_event = asyncio.Event()
        self._current_run: Optional[WarmingRun] = None

    @property
    def store(self) -> CacheStore:
        return self._store or get_cache_store()

    @property
    def content_cache(self) -> ContentCacheService:
        return self._content_cache or get_content_cache_service()

    @property
    def tracker(self) -> PopularityTracker:
        return self._tracker or get_popularity_tracker()

    @property
    def is_running(self) -> bool:
        """True while this process is executing a run."""
        return self._current_run is not None

    def cancel(self) -> bool:
        """
        Ask the in-progress run to stop after its current category.

        Returns:
            True if a run was in progress in this process
        """
        if self._current_run is None:
            return False
        self._cancel_event.set()
        logger.info("warming_cancel_requested", run_id=self._current_run.run_id)
        return True

    async def get_status(self) -> WarmingRun:
        """Current WarmingRun snapshot. Never raises."""
        if self._current_run is not None:
            return self._current_run.model_copy(deep=True)

        try:
            payload = await self.store.get_json(WARMING_STATUS_KEY)
        except CacheUnavailableError as e:
            logger.warning("warming_status_read_failed", **e.to_log_fields())
            return WarmingRun()
        if payload is None:
            return WarmingRun()

        try:
            run = WarmingRun.model_validate(payload)
        except ValueError as e:
            logger.warning("warming_status_invalid", error=str(e), error_type=type(e).__name__)
            return WarmingRun()

        if run.status == WarmingState.RUNNING and not await self._lock_held():
            # The run's process died: no live lock, status never finalized
            run.status = WarmingState.IDLE
            run.last_error = run.last_error or "Run ended without completing"
        return run

    async def _lock_held(self) -> bool:
        try:
            return await self.store.get(WARMING_LOCK_KEY) is not None
        except CacheUnavailableError:
            return True

    async def trigger_manual_warming(
        self,
        categories: Optional[Sequence[Category]] = None,
        force: bool = False,
        trigger: WarmingTrigger = WarmingTrigger.MANUAL,
    ) -> WarmingResult:
        """
        Run a warm cycle now and wait for it.

        Returns success False (without queuing) when another run holds the
        lock or the store is unavailable.
        """
        if not self.store.enabled:
            return WarmingResult(success=False, message=MESSAGE_STORE_UNAVAILABLE)

        try:
            run = await self.run_warming_cycle(categories=categories, force=force, trigger=trigger)
        except WarmingAlreadyRunningError as e:
            logger.info("warming_trigger_rejected", trigger=trigger.value, reason=e.message)
            return WarmingResult(success=False, message=e.message)
        except CacheUnavailableError as e:
            logger.warning("warming_trigger_failed", trigger=trigger.value, **e.to_log_fields())
            return WarmingResult(success=False, message=MESSAGE_STORE_UNAVAILABLE)

        if run.last_error == MESSAGE_LOCK_LOST:
            return WarmingResult(success=False, message=MESSAGE_LOCK_LOST, run=run)

        message = (
            f"Cache warming completed: {run.items_warmed} items warmed "
            f"across {run.categories_processed} categories"
        )
        if run.failed_categories:
            message += f" ({len(run.failed_categories)} failed: {', '.join(run.failed_categories)})"
        return WarmingResult(success=True, message=message, run=run)

    async def run_warming_cycle(
        self,
        categories: Optional[Sequence[Category]] = None,
        force: bool = False,
        trigger: WarmingTrigger = WarmingTrigger.SCHEDULED,
    ) -> WarmingRun:
        """
        Execute one warm cycle under the store lock.

        Raises:
            WarmingAlreadyRunningError: another run holds the lock
            CacheUnavailableError: the lock could not be taken
        """
        targets: List[Category] = (
            [parse_category(c) for c in categories] if categories else list(ALL_CATEGORIES)
        )
        run_id = uuid.uuid4().hex

        acquired = await self.store.set_if_absent(WARMING_LOCK_KEY, run_id, self.lock_ttl_seconds)
        if not acquired:
            record_warming_run(trigger.value, "rejected")
            raise WarmingAlreadyRunningError(MESSAGE_ALREADY_RUNNING)

        run = WarmingRun(
            status=WarmingState.RUNNING,
            run_id=run_id,
            trigger=trigger,
            started_at=datetime.now(timezone.utc),
        )
        self._current_run = run
        self._cancel_event.clear()
        set_warming_in_progress(True)
        start_time = time.time()
        cancelled = False
        lock_lost = False

        logger.info(
            "warming_started",
            run_id=run_id,
            trigger=trigger.value,
            categories=[c.value for c in targets],
            force=force,
        )

        with get_tracer().start_as_current_span("warming.run") as span:
            span.set_attribute("warming.run_id", run_id)
            span.set_attribute("warming.trigger", trigger.value)
            try:
                await self._persist(run)

                try:
                    for category in targets:
                        if self._cancel_event.is_set():
                            cancelled = True
                            run.last_error = "Cancelled"
                            logger.info(
                                "warming_cancelled", run_id=run_id, categories_processed=run.categories_processed
                            )
                            break

                        await self._renew_lock(run_id)
                        warmed, error = await self._warm_category(category, force, run_id)
                        run.items_warmed += warmed
                        run.categories_processed += 1
                        record_items_warmed(category.value, warmed)
                        if error is not None:
                            run.failed_categories.append(category.value)
                            run.last_error = f"{category.value}: {error}"
                        await self._persist(run)

                    if not cancelled:
                        await self._renew_lock(run_id)
                        await self._warm_seo(run, force)
                except WarmingLockLostError as e:
                    lock_lost = True
                    run.items_warmed += e.items_warmed
                    run.last_error = MESSAGE_LOCK_LOST
                    logger.error(
                        "warming_lock_lost",
                        run_id=run_id,
                        categories_processed=run.categories_processed,
                        items_warmed=run.items_warmed,
                    )
            finally:
                run.status = WarmingState.IDLE
                run.finished_at = datetime.now(timezone.utc)
                run.duration_ms = int((time.time() - start_time) * 1000)
                outcome = "lock_lost" if lock_lost else self._outcome(run, len(targets), cancelled)

                # Without the lock the status key belongs to another run
                if not lock_lost:
                    await self._persist(run)
                    await self._release_lock(run_id)
                self._current_run = None
                set_warming_in_progress(False)
                record_warming_run(trigger.value, outcome)

                span.set_attribute("warming.items_warmed", run.items_warmed)
                span.set_attribute("warming.outcome", outcome)
                logger.info(
                    "warming_finished",
                    run_id=run_id,
                    outcome=outcome,
                    items_warmed=run.items_warmed,
                    categories_processed=run.categories_processed,
                    failed_categories=run.failed_categories,
                    duration_ms=run.duration_ms,
                )

        return run

    @staticmethod
    def _outcome(run: WarmingRun, target_count: int, cancelled: bool) -> str:
        if cancelled:
            return "cancelled"
        if run.failed_categories and len(run.failed_categories) >= target_count:
            return "failed"
        if run.failed_categories:
            return "partial"
        return "completed"

    async def _select_slugs(self, category: Category, listing: List[ContentItem]) -> List[str]:
        """Top-N by views, or the first items of the listing when no views exist."""
        popular = await self.tracker.get_popular(category, self.top_n)
        if popular:
            return [slug for slug, _ in popular]

        slugs = [item.slug for item in listing[: self.fallback_items]]
        logger.debug("warming_fallback_items", category=category.value, count=len(slugs))
        return slugs

    async def _warm_category(self, category: Category, force: bool, run_id: str) -> Tuple[int, Optional[str]]:
        """
        Warm a category's listing and its top items.

        Returns:
            (items warmed, error message or None). Items that failed do not
            count; any failure marks the category as failed.

        Raises:
            WarmingLockLostError: the run's lock is gone; carries the items
                warmed so far
        """
        max_age = 0 if force else self.refresh_threshold_seconds
        warmed = 0
        errors: List[str] = []

        try:
            listing = await self.content_cache.lookup_content_by_category(
                category, max_age_seconds=0 if force else None
            )
            slugs = await self._select_slugs(category, listing.value or [])
        except Exception as e:
            logger.error(
                "warming_category_failed",
                category=category.value,
                error=str(e),
                error_type=type(e).__name__,
            )
            return 0, str(e) or type(e).__name__

        for slug in slugs:
            await self._renew_lock(run_id, items_warmed=warmed)
            try:
                result = await self.content_cache.lookup_content_item(category, slug, max_age_seconds=max_age)
            except Exception as e:
                errors.append(f"{slug}: {e}")
                logger.warning(
                    "warming_item_failed",
                    category=category.value,
                    slug=slug,
                    error=str(e),
                    error_type=type(e).__name__,
                )
                continue
            if result.value is None:
                logger.debug("warming_item_missing", category=category.value, slug=slug)
                continue
            warmed += 1

        if errors:
            logger.error(
                "warming_category_failed",
                category=category.value,
                items_warmed=warmed,
                failed_items=len(errors),
            )
            return warmed, f"{len(errors)} item(s) failed"

        logger.info("warming_category_completed", category=category.value, items_warmed=warmed)
        return warmed, None

    async def _warm_seo(self, run: WarmingRun, force: bool) -> None:
        try:
            await self.content_cache.lookup_seo_content(max_age_seconds=0 if force else None)
        except Exception as e:
            run.last_error = f"seo: {e}"
            logger.warning("warming_seo_failed", error=str(e), error_type=type(e).__name__)

    async def _persist(self, run: WarmingRun) -> None:
        try:
            await self.store.set_json(WARMING_STATUS_KEY, run.to_wire(), self.status_ttl_seconds)
        except CacheUnavailableError as e:
            logger.warning("warming_status_write_failed", run_id=run.run_id, **e.to_log_fields())

    async def _renew_lock(self, run_id: str, items_warmed: int = 0) -> None:
        """
        Push the lock's expiry out by lock_ttl_seconds if this run still owns it.

        Raises:
            WarmingLockLostError: the lock expired or carries another run's id
        """
        try:
            renewed = await self.store.extend_if_equals(WARMING_LOCK_KEY, run_id, self.lock_ttl_seconds)
        except CacheUnavailableError as e:
            # Ownership is unknown; the next renewal decides
            logger.warning("warming_lock_renew_failed", run_id=run_id, **e.to_log_fields())
            return
        if not renewed:
            raise WarmingLockLostError(run_id, items_warmed=items_warmed)

    async def _release_lock(self, run_id: str) -> None:
        try:
            released = await self.store.release_if_equals(WARMING_LOCK_KEY, run_id)
        except CacheUnavailableError as e:
            # The lock TTL frees it eventually
            logger.error("warming_lock_release_failed", run_id=run_id, **e.to_log_fields())
            return
        if not released:
            logger.warning("warming_lock_not_owned", run_id=run_id)


_cache_warmer: Optional[CacheWarmer] = None


def get_cache_warmer() -> CacheWarmer:
    """Get global cache warmer instance."""
    global _cache_warmer
    if _cache_warmer is None:
        _cache_warmer = CacheWarmer()
    return _cache_warmer
