"""
In-process warming schedule.

Wakes every WARMING_INTERVAL_HOURS and runs a warm cycle when the current
UTC hour is inside the off-peak window [start, end). A window whose start is
after its end wraps around midnight. Runs started here use the scheduled
trigger and go through the same store lock as manual runs, so several
instances may run the scheduler safely.
"""
import asyncio
from datetime import datetime, timezone
from typing import Callable, Optional

from catalog_cache.core.config import get_settings
from catalog_cache.core.errors import CacheUnavailableError, WarmingAlreadyRunningError
from catalog_cache.core.logging import get_logger
from catalog_cache.models.warming import WarmingRun, WarmingTrigger
from catalog_cache.services.warming.warmer import CacheWarmer, get_cache_warmer

logger = get_logger(__name__)


def is_off_peak(now: datetime, start_hour: int, end_hour: int) -> bool:
    hour = now.astimezone(timezone.utc).hour if now.tzinfo else now.hour
    if start_hour == end_hour:
        return True
    if start_hour < end_hour:
        return start_hour <= hour < end_hour
    return hour >= start_hour or hour < end_hour


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class WarmingScheduler:
    def __init__(
        self,
        warmer: Optional[CacheWarmer] = None,
        interval_hours: Optional[float] = None,
        offpeak_start_hour: Optional[int] = None,
        offpeak_end_hour: Optional[int] = None,
        shutdown_timeout_seconds: float = 30.0,
        clock: Callable[[], datetime] = _utcnow,
    ):
        settings = get_settings()
        self._warmer = warmer
        self.interval_seconds = (interval_hours or settings.warming_interval_hours) * 3600
        self.offpeak_start_hour = (
            settings.warming_offpeak_start_hour if offpeak_start_hour is None else offpeak_start_hour
        )
        self.offpeak_end_hour = settings.warming_offpeak_end_hour if offpeak_end_hour is None else offpeak_end_hour
        self.shutdown_timeout_seconds = shutdown_timeout_seconds
        self._clock = clock
        self._task: Optional[asyncio.Task] = None
        self._stopping = asyncio.Event()

    @property
    def warmer(self) -> CacheWarmer:
        return self._warmer or get_cache_warmer()

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def run_once(self) -> Optional[WarmingRun]:
        """
        One scheduled tick.

        Returns:
            The finished run, or None if skipped (outside the window, another
            run in progress, or store unavailable)
        """
        now = self._clock()
        if not is_off_peak(now, self.offpeak_start_hour, self.offpeak_end_hour):
            logger.info(
                "warming_schedule_skipped",
                reason="outside_offpeak_window",
                hour=now.hour,
                window_start=self.offpeak_start_hour,
                window_end=self.offpeak_end_hour,
            )
            return None

        try:
            return await self.warmer.run_warming_cycle(trigger=WarmingTrigger.SCHEDULED)
        except WarmingAlreadyRunningError:
            logger.info("warming_schedule_skipped", reason="already_running")
        except CacheUnavailableError as e:
            logger.warning("warming_schedule_skipped", reason="cache_unavailable", **e.to_log_fields())
        return None

    async def _loop(self) -> None:
        logger.info("warming_scheduler_started", interval_seconds=self.interval_seconds)
        while not self._stopping.is_set():
            try:
                await asyncio.wait_for(self._stopping.wait(), timeout=self.interval_seconds)
                break
            except asyncio.TimeoutError:
                pass

            try:
                await self.run_once()
            except Exception as e:
                logger.error(
                    "warming_schedule_tick_failed",
                    error=str(e),
                    error_type=type(e).__name__,
                    exc_info=True,
                )
        logger.info("warming_scheduler_stopped")

    def start(self) -> None:
        if self.running:
            return
        self._stopping.clear()
        self._task = asyncio.create_task(self._loop())

    async def stop(self) -> None:
        """Stop the loop; an in-flight run is cancelled between categories."""
        if self._task is None:
            return
        self._stopping.set()
        self.warmer.cancel()
        try:
            await asyncio.wait_for(self._task, timeout=self.shutdown_timeout_seconds)
        except asyncio.TimeoutError:
            logger.warning("warming_scheduler_stop_timeout", timeout=self.shutdown_timeout_seconds)
        except asyncio.CancelledError:
            pass
        finally:
            self._task = None


_warming_scheduler: Optional[WarmingScheduler] = None


def get_warming_scheduler() -> WarmingScheduler:
    """Get global warming scheduler instance."""
    global _warming_scheduler
    if _warming_scheduler is None:
        _warming_scheduler = WarmingScheduler()
    return _warming_scheduler
