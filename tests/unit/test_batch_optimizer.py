"""Unit tests for BatchAPIOptimizer (batching, priority, retry, cache, breaker) and RateLimiter."""

from __future__ import annotations

import asyncio
from typing import Any
from unittest.mock import AsyncMock

import pytest

from setlist_import.models.provider_config import (
    BatchConfig,
    CircuitBreakerConfig,
    RateLimitConfig,
    RetryPolicyConfig,
)
from setlist_import.pipeline.batch_optimizer import BatchAPIOptimizer, build_cache_key
from setlist_import.pipeline.rate_limiter import RateLimiter
from setlist_import.providers.cache.memory_cache import MemoryCacheProvider
from setlist_import.utils.errors import (
    CircuitOpenError,
    ProviderError,
    SetlistImportError,
    TransientProviderError,
)


class RecordingExecutor:
    """Batch executor echoing ``id`` back and recording every batch it saw."""

    def __init__(self, error: Exception | None = None) -> None:
        self.batches: list[list[dict[str, Any]]] = []
        self.error = error

    async def __call__(self, _operation: str, params: list[dict[str, Any]]) -> list[Any]:
        self.batches.append(list(params))
        if self.error is not None:
            raise self.error
        return [f"value-{p['id']}" for p in params]


def _optimizer(
    max_batch_size: int = 10,
    max_wait_ms: int = 10,
    max_retries: int = 2,
    failure_threshold: int = 5,
    cache: MemoryCacheProvider | None = None,
) -> BatchAPIOptimizer:
    config = BatchConfig(
        max_batch_size=max_batch_size,
        max_wait_ms=max_wait_ms,
        retry_policy=RetryPolicyConfig(max_retries=max_retries, initial_delay_ms=0),
        circuit_breaker=CircuitBreakerConfig(failure_threshold=failure_threshold),
    )
    return BatchAPIOptimizer({"spotify": config}, cache=cache, sleep=AsyncMock())


class TestBuildCacheKey:
    def test_keys_are_sorted(self) -> None:
        assert build_cache_key("spotify", "track", {"b": 2, "a": 1}) == "spotify:track:a:1:b:2"

    def test_same_params_same_key(self) -> None:
        first = build_cache_key("spotify", "track", {"id": "x", "market": "US"})
        second = build_cache_key("spotify", "track", {"market": "US", "id": "x"})
        assert first == second


class TestBatching:
    @pytest.mark.asyncio
    async def test_flushes_when_batch_is_full(self) -> None:
        optimizer = _optimizer(max_batch_size=3, max_wait_ms=60_000)
        executor = RecordingExecutor()
        optimizer.register_executor("spotify", "track", executor)

        results = await asyncio.gather(
            *(optimizer.request("spotify", "track", {"id": i}) for i in ("a", "b", "c"))
        )

        assert results == ["value-a", "value-b", "value-c"]
        assert len(executor.batches) == 1
        assert len(executor.batches[0]) == 3

    @pytest.mark.asyncio
    async def test_flushes_partial_batch_after_wait(self) -> None:
        optimizer = _optimizer(max_batch_size=10, max_wait_ms=5)
        executor = RecordingExecutor()
        optimizer.register_executor("spotify", "track", executor)

        results = await asyncio.gather(
            optimizer.request("spotify", "track", {"id": "a"}),
            optimizer.request("spotify", "track", {"id": "b"}),
        )

        assert results == ["value-a", "value-b"]
        assert executor.batches == [[{"id": "a"}, {"id": "b"}]]

    @pytest.mark.asyncio
    async def test_higher_priority_goes_first_within_batch(self) -> None:
        optimizer = _optimizer(max_batch_size=3, max_wait_ms=60_000)
        executor = RecordingExecutor()
        optimizer.register_executor("spotify", "track", executor)

        await asyncio.gather(
            optimizer.request("spotify", "track", {"id": "low-1"}, priority=0),
            optimizer.request("spotify", "track", {"id": "low-2"}, priority=0),
            optimizer.request("spotify", "track", {"id": "high"}, priority=5),
        )

        assert [p["id"] for p in executor.batches[0]] == ["high", "low-1", "low-2"]

    @pytest.mark.asyncio
    async def test_overflow_is_split_into_several_batches(self) -> None:
        optimizer = _optimizer(max_batch_size=2, max_wait_ms=5)
        executor = RecordingExecutor()
        optimizer.register_executor("spotify", "track", executor)

        results = await asyncio.gather(
            *(optimizer.request("spotify", "track", {"id": str(i)}) for i in range(5))
        )

        assert results == [f"value-{i}" for i in range(5)]
        assert sorted(len(b) for b in executor.batches) == [1, 2, 2]


class TestFailures:
    @pytest.mark.asyncio
    async def test_batch_retried_as_unit_then_every_member_rejected(self) -> None:
        optimizer = _optimizer(max_batch_size=2, max_retries=2)
        executor = RecordingExecutor(error=TransientProviderError(message="503"))
        optimizer.register_executor("spotify", "track", executor)

        results = await asyncio.gather(
            optimizer.request("spotify", "track", {"id": "a"}),
            optimizer.request("spotify", "track", {"id": "b"}),
            return_exceptions=True,
        )

        assert all(isinstance(r, TransientProviderError) for r in results)
        assert len(executor.batches) == 3
        assert all(len(b) == 2 for b in executor.batches)
        stats = optimizer.get_statistics()["providers"]["spotify"]
        assert stats["failed_batches"] == 1

    @pytest.mark.asyncio
    async def test_result_count_mismatch_rejects_batch(self) -> None:
        optimizer = _optimizer(max_batch_size=2)

        async def _short(_operation: str, params: list[dict[str, Any]]) -> list[Any]:
            return ["only-one"]

        optimizer.register_executor("spotify", "track", _short)

        results = await asyncio.gather(
            optimizer.request("spotify", "track", {"id": "a"}),
            optimizer.request("spotify", "track", {"id": "b"}),
            return_exceptions=True,
        )
        assert all(isinstance(r, ProviderError) for r in results)

    @pytest.mark.asyncio
    async def test_open_breaker_rejects_without_calling_executor(self) -> None:
        optimizer = _optimizer(max_batch_size=1, max_retries=0, failure_threshold=1)
        executor = RecordingExecutor(error=TransientProviderError(message="503"))
        optimizer.register_executor("spotify", "track", executor)

        with pytest.raises(TransientProviderError):
            await optimizer.request("spotify", "track", {"id": "a"})
        with pytest.raises(CircuitOpenError):
            await optimizer.request("spotify", "track", {"id": "b"})

        assert len(executor.batches) == 1
        breaker = optimizer.get_statistics()["providers"]["spotify"]["circuit_breaker"]
        assert breaker["state"] == "OPEN"

    @pytest.mark.asyncio
    async def test_unregistered_operation_raises(self) -> None:
        optimizer = _optimizer()
        with pytest.raises(SetlistImportError, match="No executor"):
            await optimizer.request("spotify", "albums", {"id": "a"})


class TestCacheAndLifecycle:
    @pytest.mark.asyncio
    async def test_cached_result_skips_executor(self) -> None:
        cache = MemoryCacheProvider(max_size=10, ttl=60)
        optimizer = _optimizer(max_batch_size=1, cache=cache)
        executor = RecordingExecutor()
        optimizer.register_executor("spotify", "track", executor)

        first = await optimizer.request("spotify", "track", {"id": "a"})
        second = await optimizer.request("spotify", "track", {"id": "a"})

        assert first == second == "value-a"
        assert len(executor.batches) == 1
        stats = optimizer.get_statistics()
        assert stats["providers"]["spotify"]["cache_hits"] == 1
        assert stats["cache_size"] == 1

    @pytest.mark.asyncio
    async def test_clear_pending_rejects_queued_requests(self) -> None:
        optimizer = _optimizer(max_batch_size=10, max_wait_ms=60_000)
        optimizer.register_executor("spotify", "track", RecordingExecutor())

        pending = asyncio.create_task(optimizer.request("spotify", "track", {"id": "a"}))
        await asyncio.sleep(0)
        assert optimizer.get_statistics()["providers"]["spotify"]["pending_requests"] == 1

        assert optimizer.clear_pending("spotify") == 1
        with pytest.raises(SetlistImportError, match="cleared"):
            await pending

    @pytest.mark.asyncio
    async def test_statistics_track_batch_sizes(self) -> None:
        optimizer = _optimizer(max_batch_size=2, max_wait_ms=5)
        optimizer.register_executor("spotify", "track", RecordingExecutor())

        await asyncio.gather(
            *(optimizer.request("spotify", "track", {"id": str(i)}) for i in range(4))
        )
        await optimizer.aclose()

        stats = optimizer.get_statistics()["providers"]["spotify"]
        assert stats["batches_executed"] == 2
        assert stats["requests_executed"] == 4
        assert stats["average_batch_size"] == 2.0


# ======================================================================
# RateLimiter
# ======================================================================


class FakeClock:
    def __init__(self) -> None:
        self.now = 100.0

    def __call__(self) -> float:
        return self.now

    async def sleep(self, seconds: float) -> None:
        self.now += seconds


class TestRateLimiter:
    @pytest.mark.asyncio
    async def test_admits_up_to_limit_then_waits_for_reset(self) -> None:
        clock = FakeClock()
        sleep = AsyncMock(side_effect=clock.sleep)
        limiter = RateLimiter(
            "setlistfm", RateLimitConfig(requests=2, window_ms=1000), clock=clock, sleep=sleep
        )

        await limiter.acquire()
        await limiter.acquire()
        sleep.assert_not_awaited()

        clock.now += 0.25
        await limiter.acquire()

        sleep.assert_awaited_once()
        assert sleep.await_args.args[0] == pytest.approx(0.75)
        assert limiter.window.count == 1
        assert limiter.window.window_reset_at == pytest.approx(102.0)

    @pytest.mark.asyncio
    async def test_expired_window_starts_fresh(self) -> None:
        clock = FakeClock()
        limiter = RateLimiter("spotify", RateLimitConfig(requests=1, window_ms=500), clock=clock)

        await limiter.acquire()
        clock.now += 1.0
        await limiter.acquire()

        assert limiter.snapshot() == {"count": 1, "limit": 1, "window_reset_in_ms": 500.0}
