"""Centralised retry with exponential backoff and jitter.

Every retrying call site (the batch optimizer flushing a batch, the
Spotify token exchange, Ticketmaster page fetches) goes through
:func:`retry_async` with a per-dependency :class:`RetryPolicy` instead of
hand-rolling its own loop.

Backoff for attempt *n* (1-indexed) is::

    base  = initial_delay_ms * backoff_multiplier ** (n - 1)   (capped)
    delay = base / 2 + uniform(0, base / 2)                    ("equal jitter")

A :class:`~setlist_import.utils.errors.RateLimitError` carrying
``retry_after`` raises the delay floor to the server's hint.
"""

from __future__ import annotations

import asyncio
import random
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import TypeVar

import structlog

from setlist_import.utils.errors import RateLimitError, TransientProviderError
from setlist_import.utils.logging import get_logger

_T = TypeVar("_T")

_logger: structlog.BoundLogger = get_logger(__name__)


@dataclass(frozen=True)
class RetryPolicy:
    """Retry parameters for one dependency.

    ``max_retries`` counts retries, so a call is attempted at most
    ``max_retries + 1`` times.
    """

    max_retries: int = 3
    backoff_multiplier: float = 2.0
    initial_delay_ms: float = 1000.0
    max_delay_ms: float = 30_000.0

    def delay_for(self, attempt: int, rng: random.Random | None = None) -> float:
        """Return the jittered delay in seconds before retry number *attempt*."""
        base = self.initial_delay_ms * (self.backoff_multiplier ** (attempt - 1))
        base = min(base, self.max_delay_ms)
        jitter = (rng or random).uniform(0, base / 2)
        return (base / 2 + jitter) / 1000.0


async def retry_async(
    fn: Callable[[], Awaitable[_T]],
    policy: RetryPolicy,
    *,
    operation: str = "call",
    retry_on: tuple[type[BaseException], ...] = (TransientProviderError,),
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    rng: random.Random | None = None,
    logger: structlog.BoundLogger | None = None,
) -> _T:
    """Invoke *fn* until it succeeds or the retry budget is spent.

    Parameters
    ----------
    fn:
        Zero-argument coroutine factory.  Called afresh on each attempt.
    policy:
        Retry budget and backoff curve.
    operation:
        Label used in log events.
    retry_on:
        Exception types considered retryable.  Anything else propagates
        immediately.
    sleep:
        Injected for tests so backoff does not slow the suite down.

    Returns
    -------
    The value returned by the first successful attempt.

    Raises
    ------
    The last retryable exception once ``max_retries`` is exhausted, or any
    non-retryable exception on first occurrence.
    """
    log = logger or _logger
    attempt = 0
    while True:
        try:
            return await fn()
        except retry_on as exc:
            attempt += 1
            if attempt > policy.max_retries:
                log.warning(
                    "retry_exhausted",
                    operation=operation,
                    attempts=attempt,
                    error=str(exc),
                )
                raise

            delay = policy.delay_for(attempt, rng)
            if isinstance(exc, RateLimitError) and exc.retry_after:
                delay = max(delay, exc.retry_after)

            log.info(
                "retry_scheduled",
                operation=operation,
                attempt=attempt,
                delay_s=round(delay, 3),
                error=str(exc),
            )
            await sleep(delay)
