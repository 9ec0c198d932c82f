"""Per-dependency circuit breaker.

# ─── STATE MACHINE ────────────────────────────────────────────────────
#
#            failures >= threshold
#   CLOSED ─────────────────────────→ OPEN ──(reset_timeout elapsed)──┐
#     ↑  ↖ success decays counter       ↑                              │
#     │                                 │ probe fails                  ↓
#     └──────── probe succeeds ──────── HALF_OPEN ←─────────────────────┘
#
#   - OPEN fails fast with CircuitOpenError; the wrapped call never runs.
#   - HALF_OPEN admits at most ``half_open_max_probes`` concurrent calls.
#   - In CLOSED a success decrements the failure counter by one instead of
#     zeroing it, so sporadic isolated failures never trip the breaker
#     while a sustained failure streak still does.
# ──────────────────────────────────────────────────────────────────────
"""

from __future__ import annotations

import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from enum import Enum
from typing import Any, TypeVar

import structlog

from setlist_import.models.provider_config import CircuitBreakerConfig
from setlist_import.utils.errors import CircuitOpenError, ValidationError
from setlist_import.utils.logging import get_logger

_T = TypeVar("_T")


class CircuitState(str, Enum):  # noqa: UP042
    CLOSED = "CLOSED"
    OPEN = "OPEN"
    HALF_OPEN = "HALF_OPEN"


@dataclass(frozen=True)
class CircuitBreakerState:
    """Observable snapshot of one breaker."""

    name: str
    state: CircuitState
    failure_count: int
    last_failure_time: float | None
    success_rate: float
    time_until_retry_ms: float

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "state": self.state.value,
            "failure_count": self.failure_count,
            "last_failure_time": self.last_failure_time,
            "success_rate": round(self.success_rate, 4),
            "time_until_retry_ms": round(self.time_until_retry_ms, 1),
        }


class CircuitBreaker:
    """Guards calls to one external dependency.

    Parameters
    ----------
    name:
        Dependency name used in errors and logs (e.g. ``"spotify"``).
    config:
        Threshold, reset timeout and probe budget.
    clock:
        Monotonic clock in seconds; injectable for tests.
    ignore:
        Exception types that pass through without counting as failures
        (a "not found" is the caller's problem, not the dependency's).
    """

    def __init__(
        self,
        name: str,
        config: CircuitBreakerConfig | None = None,
        clock: Callable[[], float] = time.monotonic,
        ignore: tuple[type[BaseException], ...] = (ValidationError,),
    ) -> None:
        self._name = name
        self._config = config or CircuitBreakerConfig()
        self._clock = clock
        self._ignore = ignore
        self._state = CircuitState.CLOSED
        self._failure_count = 0
        self._last_failure_time: float | None = None
        self._opened_at: float | None = None
        self._probes_in_flight = 0
        self._successes = 0
        self._failures = 0
        self._logger: structlog.BoundLogger = get_logger(__name__)

    @property
    def name(self) -> str:
        return self._name

    @property
    def state(self) -> CircuitState:
        return self._state

    @property
    def failure_count(self) -> int:
        return self._failure_count

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def call(self, fn: Callable[[], Awaitable[_T]]) -> _T:
        """Run *fn* through the breaker.

        Raises
        ------
        CircuitOpenError
            Without invoking *fn* when OPEN, or when HALF_OPEN and the
            probe budget is already in use.
        """
        self.before_call()
        try:
            result = await fn()
        except self._ignore:
            self._release_probe()
            raise
        except Exception:
            self.record_failure()
            raise
        except BaseException:
            # Cancelled mid-call: neither a success nor a failure.
            self._release_probe()
            raise
        self.record_success()
        return result

    def before_call(self) -> None:
        """Admit or reject a call, advancing OPEN -> HALF_OPEN when due."""
        if self._state is CircuitState.OPEN:
            remaining = self._time_until_retry_ms()
            if remaining > 0:
                raise CircuitOpenError(
                    message=f"Circuit open, retry in {remaining:.0f} ms",
                    provider_name=self._name,
                    retry_after_ms=remaining,
                )
            self._transition(CircuitState.HALF_OPEN)
            self._probes_in_flight = 0

        if self._state is CircuitState.HALF_OPEN:
            if self._probes_in_flight >= self._config.half_open_max_probes:
                raise CircuitOpenError(
                    message="Circuit half-open, probe already in flight",
                    provider_name=self._name,
                    retry_after_ms=0.0,
                )
            self._probes_in_flight += 1

    def record_success(self) -> None:
        self._successes += 1
        if self._state is CircuitState.HALF_OPEN:
            self._failure_count = 0
            self._probes_in_flight = 0
            self._opened_at = None
            self._transition(CircuitState.CLOSED)
        elif self._failure_count > 0:
            self._failure_count -= 1

    def record_failure(self) -> None:
        self._failures += 1
        self._last_failure_time = self._clock()
        if self._state is CircuitState.HALF_OPEN:
            self._probes_in_flight = 0
            self._open()
            return
        self._failure_count += 1
        if (
            self._state is CircuitState.CLOSED
            and self._failure_count >= self._config.failure_threshold
        ):
            self._open()

    def reset(self) -> None:
        """Force CLOSED with a zeroed failure counter."""
        self._failure_count = 0
        self._probes_in_flight = 0
        self._opened_at = None
        self._transition(CircuitState.CLOSED)

    def snapshot(self) -> CircuitBreakerState:
        total = self._successes + self._failures
        return CircuitBreakerState(
            name=self._name,
            state=self._state,
            failure_count=self._failure_count,
            last_failure_time=self._last_failure_time,
            success_rate=(self._successes / total) if total else 1.0,
            time_until_retry_ms=self._time_until_retry_ms(),
        )

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    def _open(self) -> None:
        self._opened_at = self._clock()
        self._transition(CircuitState.OPEN)

    def _release_probe(self) -> None:
        if self._state is CircuitState.HALF_OPEN and self._probes_in_flight > 0:
            self._probes_in_flight -= 1

    def _time_until_retry_ms(self) -> float:
        if self._state is not CircuitState.OPEN or self._opened_at is None:
            return 0.0
        elapsed_ms = (self._clock() - self._opened_at) * 1000.0
        return max(0.0, self._config.reset_timeout_ms - elapsed_ms)

    def _transition(self, new_state: CircuitState) -> None:
        if new_state is self._state:
            return
        self._logger.info(
            "circuit_state_change",
            dependency=self._name,
            from_state=self._state.value,
            to_state=new_state.value,
            failure_count=self._failure_count,
        )
        self._state = new_state


class CircuitBreakerRegistry:
    """Owns one :class:`CircuitBreaker` per dependency name."""

    def __init__(
        self,
        configs: dict[str, CircuitBreakerConfig] | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._configs = configs or {}
        self._clock = clock
        self._breakers: dict[str, CircuitBreaker] = {}

    def get(self, name: str) -> CircuitBreaker:
        breaker = self._breakers.get(name)
        if breaker is None:
            breaker = CircuitBreaker(name, self._configs.get(name), clock=self._clock)
            self._breakers[name] = breaker
        return breaker

    def snapshot(self) -> dict[str, dict[str, Any]]:
        return {name: b.snapshot().to_dict() for name, b in self._breakers.items()}
