"""
Unit tests for the cache store circuit breaker.
"""
import pytest

from catalog_cache.core.circuit_breaker import CircuitBreaker, CircuitState, CircuitBreakerOpenError


class FakeClock:
    def __init__(self):
        self.now = 1000.0

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


async def _ok():
    return "success"


async def _fail():
    raise RuntimeError("store down")


def make_breaker(clock, **kwargs):
    options = dict(
        failure_threshold=0.5,
        time_window_seconds=60,
        open_duration_seconds=30,
        half_open_probe_every=1,
        half_open_successes_to_close=2,
        min_requests_for_threshold=4,
        clock=clock,
    )
    options.update(kwargs)
    return CircuitBreaker("test", **options)


async def _fail_n(cb, n):
    for _ in range(n):
        with pytest.raises(RuntimeError):
            await cb.call_async(_fail)


@pytest.mark.asyncio
async def test_closed_state_passes_calls_through():
    cb = make_breaker(FakeClock())
    assert cb.state == CircuitState.CLOSED
    assert await cb.call_async(_ok) == "success"


@pytest.mark.asyncio
async def test_stays_closed_below_min_requests():
    cb = make_breaker(FakeClock())
    await _fail_n(cb, 3)
    assert cb.state == CircuitState.CLOSED


@pytest.mark.asyncio
async def test_opens_when_error_rate_exceeds_threshold():
    cb = make_breaker(FakeClock())
    await cb.call_async(_ok)
    await _fail_n(cb, 3)

    assert cb.state == CircuitState.OPEN
    with pytest.raises(CircuitBreakerOpenError):
        await cb.call_async(_ok)


@pytest.mark.asyncio
async def test_old_failures_leave_the_window():
    clock = FakeClock()
    cb = make_breaker(clock)
    await _fail_n(cb, 3)
    clock.advance(61)
    await cb.call_async(_ok)
    await cb.call_async(_ok)
    await cb.call_async(_ok)
    await _fail_n(cb, 1)

    assert cb.state == CircuitState.CLOSED


@pytest.mark.asyncio
async def test_half_open_probes_close_the_circuit():
    clock = FakeClock()
    cb = make_breaker(clock)
    await _fail_n(cb, 4)
    assert cb.state == CircuitState.OPEN

    clock.advance(30)
    assert cb.state == CircuitState.HALF_OPEN

    await cb.call_async(_ok)
    assert cb.state == CircuitState.HALF_OPEN
    await cb.call_async(_ok)
    assert cb.state == CircuitState.CLOSED


@pytest.mark.asyncio
async def test_failed_probe_reopens():
    clock = FakeClock()
    cb = make_breaker(clock)
    await _fail_n(cb, 4)
    clock.advance(30)

    await _fail_n(cb, 1)
    assert cb.state == CircuitState.OPEN


@pytest.mark.asyncio
async def test_half_open_only_admits_every_nth_call():
    clock = FakeClock()
    cb = make_breaker(clock, half_open_probe_every=3)
    await _fail_n(cb, 4)
    clock.advance(30)

    with pytest.raises(CircuitBreakerOpenError):
        await cb.call_async(_ok)
    with pytest.raises(CircuitBreakerOpenError):
        await cb.call_async(_ok)
    assert await cb.call_async(_ok) == "success"


@pytest.mark.asyncio
async def test_get_metrics():
    cb = make_breaker(FakeClock())
    await cb.call_async(_ok)
    await _fail_n(cb, 1)

    metrics = cb.get_metrics()
    assert metrics["name"] == "test"
    assert metrics["state"] == "closed"
    assert metrics["recent_requests"] == 2
    assert metrics["recent_failures"] == 1
    assert metrics["error_rate"] == 0.5
