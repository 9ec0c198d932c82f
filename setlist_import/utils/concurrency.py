"""Bounded-concurrency helpers shared by the ingest services.

Two patterns are exposed:

1. **throttled_gather** -- ``asyncio.gather`` with each awaitable wrapped
   in a semaphore acquire/release.  The orchestrator uses the
   un-throttled form of the same join for its two parallel phases.

2. **process_batch** -- the worker-pool pattern used for per-venue and
   per-album work: run ``fn(item)`` for every item with at most
   ``concurrency`` in flight, and split outcomes into results and errors.
   With ``continue_on_error`` one item's failure never halts the rest.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass
from typing import Generic, TypeVar

import structlog

from setlist_import.utils.logging import get_logger

_T = TypeVar("_T")
_R = TypeVar("_R")

_logger: structlog.BoundLogger = get_logger(__name__)


@dataclass
class BatchFailure(Generic[_T]):
    """One item that raised inside :func:`process_batch`."""

    item: _T
    error: BaseException


async def throttled_gather(
    coros: Sequence[Awaitable[_T]],
    semaphore: asyncio.Semaphore,
    return_exceptions: bool = True,
) -> list[_T | BaseException]:
    """Run awaitables concurrently, at most ``semaphore``'s value at once.

    Parameters
    ----------
    coros:
        Awaitable objects to execute concurrently.
    semaphore:
        Semaphore bounding how many run simultaneously.
    return_exceptions:
        Mirrors ``asyncio.gather``: exceptions land in the result list
        instead of propagating.

    Returns
    -------
    list
        Results in the same order as the input awaitables.
    """

    async def _wrapped(coro: Awaitable[_T]) -> _T:
        async with semaphore:
            return await coro

    return await asyncio.gather(
        *(_wrapped(c) for c in coros),
        return_exceptions=return_exceptions,
    )


async def process_batch(
    items: Sequence[_T],
    fn: Callable[[_T], Awaitable[_R]],
    concurrency: int = 5,
    continue_on_error: bool = True,
    logger: structlog.BoundLogger | None = None,
    label: str = "batch_item_failed",
) -> tuple[list[_R], list[BatchFailure[_T]]]:
    """Apply *fn* to every item through a bounded worker pool.

    Parameters
    ----------
    items:
        Work items, processed in input order (completion order may differ).
    fn:
        Async callable invoked once per item.
    concurrency:
        Maximum number of ``fn`` calls in flight.
    continue_on_error:
        When ``False`` the first failure is re-raised after in-flight work
        settles.
    label:
        Log event name for item failures.

    Returns
    -------
    tuple
        ``(results, failures)``; results keep input order among successes.
    """
    log = logger or _logger
    semaphore = asyncio.Semaphore(max(1, concurrency))
    outcomes = await throttled_gather(
        [fn(item) for item in items], semaphore, return_exceptions=True
    )

    results: list[_R] = []
    failures: list[BatchFailure[_T]] = []
    for item, outcome in zip(items, outcomes):
        if isinstance(outcome, BaseException):
            if not isinstance(outcome, Exception):
                raise outcome
            log.warning(label, error=str(outcome), error_type=type(outcome).__name__)
            failures.append(BatchFailure(item=item, error=outcome))
        else:
            results.append(outcome)

    if failures and not continue_on_error:
        raise failures[0].error

    return results, failures
