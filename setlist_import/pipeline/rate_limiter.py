"""Fixed-window rate limiter, one window per dependency."""

from __future__ import annotations

import asyncio
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass

import structlog

from setlist_import.models.provider_config import RateLimitConfig
from setlist_import.utils.logging import get_logger


@dataclass
class RateLimitWindow:
    """Requests spent in the current window and when the window resets."""

    count: int = 0
    window_reset_at: float = 0.0


class RateLimiter:
    """Admits at most ``requests`` acquisitions per ``window_ms``.

    A caller arriving when the window is spent sleeps until it resets.
    Acquisitions are serialized so concurrent callers cannot overshoot.
    """

    def __init__(
        self,
        name: str,
        config: RateLimitConfig,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._name = name
        self._config = config
        self._clock = clock
        self._sleep = sleep
        self._window = RateLimitWindow()
        self._lock = asyncio.Lock()
        self._logger: structlog.BoundLogger = get_logger(__name__)

    @property
    def window(self) -> RateLimitWindow:
        return self._window

    async def acquire(self) -> None:
        async with self._lock:
            now = self._clock()
            if now >= self._window.window_reset_at:
                self._start_window(now)
            elif self._window.count >= self._config.requests:
                wait_s = self._window.window_reset_at - now
                self._logger.info(
                    "rate_limit_wait",
                    dependency=self._name,
                    wait_ms=round(wait_s * 1000, 1),
                )
                await self._sleep(wait_s)
                self._start_window(self._clock())
            self._window.count += 1

    def snapshot(self) -> dict[str, float]:
        remaining = max(0.0, self._window.window_reset_at - self._clock())
        return {
            "count": self._window.count,
            "limit": self._config.requests,
            "window_reset_in_ms": round(remaining * 1000, 1),
        }

    def _start_window(self, now: float) -> None:
        self._window = RateLimitWindow(
            count=0, window_reset_at=now + self._config.window_ms / 1000.0
        )
