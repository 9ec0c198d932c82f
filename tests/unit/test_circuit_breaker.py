"""Unit tests for CircuitBreaker, CircuitBreakerRegistry and RateLimiter."""

from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock

import pytest

from setlist_import.models.provider_config import CircuitBreakerConfig, RateLimitConfig
from setlist_import.pipeline.circuit_breaker import (
    CircuitBreaker,
    CircuitBreakerRegistry,
    CircuitState,
)
from setlist_import.pipeline.rate_limiter import RateLimiter
from setlist_import.utils.errors import (
    CircuitOpenError,
    TransientProviderError,
    ValidationError,
)


class FakeClock:
    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


async def _fail() -> None:
    raise TransientProviderError(message="upstream 503")


async def _ok() -> str:
    return "ok"


def _breaker(clock: FakeClock, threshold: int = 3, reset_ms: int = 30_000) -> CircuitBreaker:
    return CircuitBreaker(
        "spotify",
        CircuitBreakerConfig(failure_threshold=threshold, reset_timeout_ms=reset_ms),
        clock=clock,
    )


async def _trip(breaker: CircuitBreaker, times: int) -> None:
    for _ in range(times):
        with pytest.raises(TransientProviderError):
            await breaker.call(_fail)


# ======================================================================
# CircuitBreaker
# ======================================================================


class TestCircuitBreaker:
    @pytest.mark.asyncio
    async def test_opens_after_threshold(self) -> None:
        breaker = _breaker(FakeClock(), threshold=3)
        await _trip(breaker, 3)
        assert breaker.state is CircuitState.OPEN

    @pytest.mark.asyncio
    async def test_open_fails_fast_without_calling(self) -> None:
        breaker = _breaker(FakeClock(), threshold=1)
        await _trip(breaker, 1)

        fn = AsyncMock(return_value="never")
        with pytest.raises(CircuitOpenError) as exc_info:
            await breaker.call(fn)

        fn.assert_not_awaited()
        assert exc_info.value.provider_name == "spotify"
        assert exc_info.value.retry_after_ms > 0

    @pytest.mark.asyncio
    async def test_half_open_admits_exactly_one_probe(self) -> None:
        clock = FakeClock()
        breaker = _breaker(clock, threshold=1, reset_ms=1000)
        await _trip(breaker, 1)
        clock.advance(1.5)

        release = asyncio.Event()

        async def _slow_probe() -> str:
            await release.wait()
            return "recovered"

        probe = asyncio.create_task(breaker.call(_slow_probe))
        await asyncio.sleep(0)
        assert breaker.state is CircuitState.HALF_OPEN

        second = AsyncMock()
        with pytest.raises(CircuitOpenError):
            await breaker.call(second)
        second.assert_not_awaited()

        release.set()
        assert await probe == "recovered"
        assert breaker.state is CircuitState.CLOSED
        assert breaker.failure_count == 0

    @pytest.mark.asyncio
    async def test_failed_probe_reopens(self) -> None:
        clock = FakeClock()
        breaker = _breaker(clock, threshold=2, reset_ms=1000)
        await _trip(breaker, 2)
        clock.advance(2)

        with pytest.raises(TransientProviderError):
            await breaker.call(_fail)

        assert breaker.state is CircuitState.OPEN
        with pytest.raises(CircuitOpenError):
            await breaker.call(_ok)

    @pytest.mark.asyncio
    async def test_success_decays_failure_count(self) -> None:
        breaker = _breaker(FakeClock(), threshold=3)
        await _trip(breaker, 2)
        await breaker.call(_ok)
        await _trip(breaker, 1)

        assert breaker.failure_count == 2
        assert breaker.state is CircuitState.CLOSED

    @pytest.mark.asyncio
    async def test_validation_errors_are_not_failures(self) -> None:
        breaker = _breaker(FakeClock(), threshold=1)

        async def _missing() -> None:
            raise ValidationError(message="not found")

        with pytest.raises(ValidationError):
            await breaker.call(_missing)
        assert breaker.state is CircuitState.CLOSED
        assert breaker.failure_count == 0

    @pytest.mark.asyncio
    async def test_snapshot_reports_success_rate(self) -> None:
        breaker = _breaker(FakeClock(), threshold=5)
        await breaker.call(_ok)
        await _trip(breaker, 1)

        snap = breaker.snapshot().to_dict()
        assert snap["state"] == "CLOSED"
        assert snap["failure_count"] == 1
        assert snap["success_rate"] == 0.5
        assert snap["time_until_retry_ms"] == 0.0

    @pytest.mark.asyncio
    async def test_reset_forces_closed(self) -> None:
        breaker = _breaker(FakeClock(), threshold=1)
        await _trip(breaker, 1)
        breaker.reset()
        assert breaker.state is CircuitState.CLOSED
        assert await breaker.call(_ok) == "ok"


class TestCircuitBreakerRegistry:
    def test_get_returns_one_breaker_per_name(self) -> None:
        registry = CircuitBreakerRegistry(
            {"ticketmaster": CircuitBreakerConfig(failure_threshold=3)}
        )
        assert registry.get("ticketmaster") is registry.get("ticketmaster")
        assert registry.get("ticketmaster") is not registry.get("spotify")

    def test_snapshot_lists_created_breakers(self) -> None:
        registry = CircuitBreakerRegistry()
        registry.get("spotify")
        assert set(registry.snapshot()) == {"spotify"}


# ======================================================================
# RateLimiter
# ======================================================================


class TestRateLimiter:
    @pytest.mark.asyncio
    async def test_waits_for_window_reset_when_spent(self) -> None:
        clock = FakeClock()
        sleep = AsyncMock()
        limiter = RateLimiter(
            "setlistfm", RateLimitConfig(requests=2, window_ms=1000), clock=clock, sleep=sleep
        )

        await limiter.acquire()
        clock.advance(0.25)
        await limiter.acquire()
        sleep.assert_not_awaited()

        await limiter.acquire()
        sleep.assert_awaited_once()
        assert sleep.await_args.args[0] == pytest.approx(0.75)
        assert limiter.window.count == 1

    @pytest.mark.asyncio
    async def test_new_window_after_expiry(self) -> None:
        clock = FakeClock()
        sleep = AsyncMock()
        limiter = RateLimiter(
            "spotify", RateLimitConfig(requests=1, window_ms=1000), clock=clock, sleep=sleep
        )

        await limiter.acquire()
        clock.advance(1.0)
        await limiter.acquire()

        sleep.assert_not_awaited()
        snap = limiter.snapshot()
        assert snap["count"] == 1
        assert snap["limit"] == 1
