"""Batch API Optimizer: coalesces logical requests into provider-sized batches.

# ─── HOW A REQUEST FLOWS ──────────────────────────────────────────────
#
#   request(provider, operation, params, priority)
#        │
#        ├─ cache hit? ──────────────────────────────→ return cached value
#        │
#        ▼
#   queue[(provider, operation)]  (sorted by descending priority, stable)
#        │  flush when len == max_batch_size  OR  max_wait_ms elapsed
#        ▼
#   rate limiter ──→ circuit breaker ──→ executor(operation, [params...])
#        │                 ↑
#        └── retry_async ──┘  (whole batch, exponential backoff + jitter)
#        │
#        ├─ success: cache each value, resolve each member future
#        └─ exhausted: reject every member future with the last error
# ──────────────────────────────────────────────────────────────────────

Executors are registered per ``(provider, operation)`` and must return one
result per params dict, in order.  Nothing here knows about Spotify or
Ticketmaster; the metadata provider registers its own executors.
"""

from __future__ import annotations

import asyncio
import itertools
import random
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any

import structlog

from setlist_import.interfaces.cache_provider import ICacheProvider
from setlist_import.models.provider_config import BatchConfig
from setlist_import.pipeline.circuit_breaker import CircuitBreakerRegistry
from setlist_import.pipeline.rate_limiter import RateLimiter
from setlist_import.utils.errors import ProviderError, SetlistImportError, TransientProviderError
from setlist_import.utils.logging import get_logger
from setlist_import.utils.retry import retry_async

BatchExecutor = Callable[[str, list[dict[str, Any]]], Awaitable[list[Any]]]


def build_cache_key(provider: str, operation: str, params: dict[str, Any]) -> str:
    """Deterministic key: ``provider:operation:k1:v1:k2:v2`` over sorted keys."""
    parts = [provider, operation]
    for key in sorted(params):
        parts.extend((str(key), str(params[key])))
    return ":".join(parts)


@dataclass
class _PendingRequest:
    operation: str
    params: dict[str, Any]
    priority: int
    cache_key: str
    future: asyncio.Future[Any]
    seq: int = 0


@dataclass
class _ProviderStats:
    batches_executed: int = 0
    requests_executed: int = 0
    cache_hits: int = 0
    failed_batches: int = 0
    batch_sizes: list[int] = field(default_factory=list)


class BatchAPIOptimizer:
    """Queues, batches, rate-limits and circuit-breaks provider requests.

    Parameters
    ----------
    configs:
        One :class:`BatchConfig` per provider name.
    breakers:
        Registry supplying each provider's circuit breaker.
    cache:
        Result cache; ``None`` disables caching.
    sleep, clock, rng:
        Injectable for deterministic tests.
    """

    def __init__(
        self,
        configs: dict[str, BatchConfig],
        breakers: CircuitBreakerRegistry | None = None,
        cache: ICacheProvider | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
        rng: random.Random | None = None,
    ) -> None:
        self._configs = dict(configs)
        self._breakers = breakers or CircuitBreakerRegistry(
            {name: cfg.circuit_breaker for name, cfg in configs.items()}, clock=clock
        )
        self._cache = cache
        self._sleep = sleep
        self._clock = clock
        self._rng = rng
        self._executors: dict[tuple[str, str], BatchExecutor] = {}
        self._queues: dict[tuple[str, str], list[_PendingRequest]] = {}
        self._timers: dict[tuple[str, str], asyncio.TimerHandle] = {}
        self._in_flight: set[asyncio.Task[None]] = set()
        self._limiters: dict[str, RateLimiter] = {}
        self._stats: dict[str, _ProviderStats] = {}
        self._seq = itertools.count()
        self._logger: structlog.BoundLogger = get_logger(__name__)

    # ------------------------------------------------------------------
    # Registration
    # ------------------------------------------------------------------

    def register_executor(self, provider: str, operation: str, executor: BatchExecutor) -> None:
        """Route batches of ``(provider, operation)`` to *executor*."""
        self._executors[(provider, operation)] = executor

    def config_for(self, provider: str) -> BatchConfig:
        config = self._configs.get(provider)
        if config is None:
            config = BatchConfig()
            self._configs[provider] = config
        return config

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def request(
        self,
        provider: str,
        operation: str,
        params: dict[str, Any],
        priority: int = 0,
        cache_key: str | None = None,
    ) -> Any:
        """Queue one logical request and wait for its batched result.

        Raises
        ------
        CircuitOpenError
            When the provider's breaker rejected the batch.
        TransientProviderError
            When the batch still failed after every retry.
        """
        key = (provider, operation)
        if key not in self._executors:
            raise SetlistImportError(
                message=f"No executor registered for {provider}:{operation}",
                provider_name=provider,
            )

        resolved_key = cache_key or build_cache_key(provider, operation, params)
        if self._cache is not None:
            cached = await self._cache.get(resolved_key)
            if cached is not None:
                self._stats_for(provider).cache_hits += 1
                return cached

        loop = asyncio.get_running_loop()
        pending = _PendingRequest(
            operation=operation,
            params=params,
            priority=priority,
            cache_key=resolved_key,
            future=loop.create_future(),
            seq=next(self._seq),
        )
        queue = self._queues.setdefault(key, [])
        queue.append(pending)

        config = self.config_for(provider)
        if len(queue) >= config.max_batch_size:
            self._flush(key)
        elif key not in self._timers:
            self._timers[key] = loop.call_later(
                config.max_wait_ms / 1000.0, self._flush, key
            )

        return await pending.future

    def get_statistics(self) -> dict[str, Any]:
        """Pending counts, breaker and rate-limit state, per provider."""
        providers: dict[str, Any] = {}
        names = set(self._configs) | {p for p, _ in self._queues}
        for name in sorted(names):
            stats = self._stats_for(name)
            pending = sum(len(q) for (p, _), q in self._queues.items() if p == name)
            sizes = stats.batch_sizes
            providers[name] = {
                "pending_requests": pending,
                "batches_executed": stats.batches_executed,
                "requests_executed": stats.requests_executed,
                "failed_batches": stats.failed_batches,
                "cache_hits": stats.cache_hits,
                "average_batch_size": round(sum(sizes) / len(sizes), 2) if sizes else 0.0,
                "circuit_breaker": self._breakers.get(name).snapshot().to_dict(),
                "rate_limit": self._limiter_for(name).snapshot(),
            }
        return {
            "providers": providers,
            "in_flight_batches": len(self._in_flight),
            "cache_size": self._cache.size() if self._cache is not None else 0,
        }

    def clear_pending(self, provider: str | None = None) -> int:
        """Reject and drop queued (not yet flushed) requests.

        Returns
        -------
        int
            Number of requests rejected.
        """
        cleared = 0
        for key in list(self._queues):
            if provider is not None and key[0] != provider:
                continue
            timer = self._timers.pop(key, None)
            if timer is not None:
                timer.cancel()
            for pending in self._queues.pop(key):
                if not pending.future.done():
                    pending.future.set_exception(
                        SetlistImportError(
                            message="Pending request cleared", provider_name=key[0]
                        )
                    )
                    cleared += 1
        if cleared:
            self._logger.info("batch_pending_cleared", provider=provider, cleared=cleared)
        return cleared

    async def aclose(self) -> None:
        """Reject queued requests and wait for in-flight batches to settle."""
        self.clear_pending()
        if self._in_flight:
            await asyncio.gather(*self._in_flight, return_exceptions=True)

    # ------------------------------------------------------------------
    # Batching
    # ------------------------------------------------------------------

    def _flush(self, key: tuple[str, str]) -> None:
        timer = self._timers.pop(key, None)
        if timer is not None:
            timer.cancel()

        queue = self._queues.get(key)
        if not queue:
            return

        provider, operation = key
        config = self.config_for(provider)
        queue.sort(key=lambda r: (-r.priority, r.seq))
        batch = queue[: config.max_batch_size]
        rest = queue[config.max_batch_size :]
        if rest:
            self._queues[key] = rest
            if len(rest) >= config.max_batch_size:
                asyncio.get_running_loop().call_soon(self._flush, key)
            else:
                self._timers[key] = asyncio.get_running_loop().call_later(
                    config.max_wait_ms / 1000.0, self._flush, key
                )
        else:
            del self._queues[key]

        task = asyncio.ensure_future(self._execute_batch(provider, operation, batch))
        self._in_flight.add(task)
        task.add_done_callback(self._in_flight.discard)

    async def _execute_batch(
        self, provider: str, operation: str, batch: list[_PendingRequest]
    ) -> None:
        config = self.config_for(provider)
        breaker = self._breakers.get(provider)
        limiter = self._limiter_for(provider)
        executor = self._executors[(provider, operation)]
        params = [r.params for r in batch]
        stats = self._stats_for(provider)

        async def _attempt() -> list[Any]:
            await limiter.acquire()
            return await breaker.call(lambda: executor(operation, params))

        try:
            results = await retry_async(
                _attempt,
                config.retry_policy.to_policy(),
                operation=f"{provider}:{operation}",
                retry_on=(TransientProviderError,),
                sleep=self._sleep,
                rng=self._rng,
                logger=self._logger,
            )
            if len(results) != len(batch):
                raise ProviderError(
                    message=(
                        f"Executor returned {len(results)} results for {len(batch)} requests"
                    ),
                    provider_name=provider,
                )
        except Exception as exc:
            stats.failed_batches += 1
            self._logger.warning(
                "batch_failed",
                provider=provider,
                operation=operation,
                size=len(batch),
                error=str(exc),
            )
            for pending in batch:
                if not pending.future.done():
                    pending.future.set_exception(exc)
            return

        stats.batches_executed += 1
        stats.requests_executed += len(batch)
        stats.batch_sizes.append(len(batch))
        self._logger.debug(
            "batch_executed", provider=provider, operation=operation, size=len(batch)
        )

        for pending, value in zip(batch, results):
            if value is not None and self._cache is not None:
                await self._cache.set(pending.cache_key, value)
            if not pending.future.done():
                pending.future.set_result(value)

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    def _limiter_for(self, provider: str) -> RateLimiter:
        limiter = self._limiters.get(provider)
        if limiter is None:
            limiter = RateLimiter(
                provider,
                self.config_for(provider).rate_limit,
                clock=self._clock,
                sleep=self._sleep,
            )
            self._limiters[provider] = limiter
        return limiter

    def _stats_for(self, provider: str) -> _ProviderStats:
        return self._stats.setdefault(provider, _ProviderStats())
