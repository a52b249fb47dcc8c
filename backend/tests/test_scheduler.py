"""
Unit tests for the in-process warming schedule.
"""
import asyncio
from datetime import datetime, timezone
from unittest.mock import AsyncMock, MagicMock

import pytest

from catalog_cache.core.errors import CacheUnavailableError, WarmingAlreadyRunningError
from catalog_cache.models.warming import WarmingRun, WarmingTrigger
from catalog_cache.services.warming.scheduler import WarmingScheduler, is_off_peak


def at_hour(hour):
    return datetime(2024, 5, 1, hour, 30, tzinfo=timezone.utc)


@pytest.mark.parametrize(
    "hour,start,end,expected",
    [
        (0, 0, 6, True),
        (5, 0, 6, True),
        (6, 0, 6, False),
        (12, 0, 6, False),
        (23, 22, 4, True),
        (3, 22, 4, True),
        (12, 22, 4, False),
        (12, 0, 0, True),
    ],
)
def test_is_off_peak(hour, start, end, expected):
    assert is_off_peak(at_hour(hour), start, end) is expected


def make_scheduler(warmer, hour):
    return WarmingScheduler(
        warmer=warmer,
        interval_hours=6,
        offpeak_start_hour=0,
        offpeak_end_hour=6,
        clock=lambda: at_hour(hour),
    )


@pytest.mark.asyncio
async def test_run_once_in_window_runs_scheduled_cycle():
    warmer = MagicMock()
    warmer.run_warming_cycle = AsyncMock(return_value=WarmingRun(items_warmed=4))

    run = await make_scheduler(warmer, hour=2).run_once()

    assert run.items_warmed == 4
    warmer.run_warming_cycle.assert_awaited_once_with(trigger=WarmingTrigger.SCHEDULED)


@pytest.mark.asyncio
async def test_run_once_outside_window_skips():
    warmer = MagicMock()
    warmer.run_warming_cycle = AsyncMock()

    assert await make_scheduler(warmer, hour=14).run_once() is None
    warmer.run_warming_cycle.assert_not_awaited()


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "error",
    [WarmingAlreadyRunningError(), CacheUnavailableError("down", operation="set_nx")],
)
async def test_run_once_swallows_expected_outcomes(error):
    warmer = MagicMock()
    warmer.run_warming_cycle = AsyncMock(side_effect=error)

    assert await make_scheduler(warmer, hour=1).run_once() is None


@pytest.mark.asyncio
async def test_loop_ticks_and_stops_cleanly():
    warmer = MagicMock()
    warmer.run_warming_cycle = AsyncMock(return_value=WarmingRun())
    scheduler = WarmingScheduler(
        warmer=warmer,
        interval_hours=0.01 / 3600,
        offpeak_start_hour=0,
        offpeak_end_hour=0,
        shutdown_timeout_seconds=1,
    )

    scheduler.start()
    assert scheduler.running
    await asyncio.sleep(0.05)
    await scheduler.stop()

    assert not scheduler.running
    assert warmer.run_warming_cycle.await_count >= 1
    warmer.cancel.assert_called_once()


@pytest.mark.asyncio
async def test_loop_survives_unexpected_errors():
    warmer = MagicMock()
    warmer.run_warming_cycle = AsyncMock(side_effect=RuntimeError("boom"))
    scheduler = WarmingScheduler(
        warmer=warmer,
        interval_hours=0.01 / 3600,
        offpeak_start_hour=0,
        offpeak_end_hour=0,
        shutdown_timeout_seconds=1,
    )

    scheduler.start()
    await asyncio.sleep(0.05)
    assert scheduler.running
    await scheduler.stop()

    assert warmer.run_warming_cycle.await_count >= 2
