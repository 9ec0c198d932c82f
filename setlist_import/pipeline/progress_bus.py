"""Durable, subscribable import-progress ledger.

# ─── HOW PROGRESS FLOWS ───────────────────────────────────────────────
#
#   orchestrator ──report()──→ ProgressBus ──save_progress()──→ import_status row
#                                  │
#                                  ├──→ per-job channel   (subscribers of job_id)
#                                  └──→ global channel    (subscribers of "*")
#
#   Every subscriber owns a bounded asyncio.Queue.  report() only does
#   put_nowait; when a queue is full its OLDEST event is dropped to make
#   room.  Callback subscribers are drained by their own dispatcher task,
#   so a slow or failing callback can never block the reporting stage.
#   Callback exceptions are caught and logged.
#
#   get_status() reads the persisted row, so a subscriber that joins late
#   still sees the last known state.
# ──────────────────────────────────────────────────────────────────────

Phase timings: entering a timed stage closes the timer of the stage that
was open (``{stage}_end`` / ``{stage}_duration``) and opens one for the new
stage (``{stage}_start``).  Reaching ``completed`` or ``failed`` closes the
last timer, so final durations ride on the completion event.
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

import structlog

from setlist_import.interfaces.store_provider import IProgressStore
from setlist_import.models.import_job import TIMED_STAGES, ImportJob, ImportStage
from setlist_import.utils.logging import get_logger

GLOBAL_CHANNEL = "*"

ProgressCallback = Callable[[dict[str, Any]], Any]


@dataclass
class _Subscription:
    callback: ProgressCallback | None
    queue: asyncio.Queue[dict[str, Any]]
    task: asyncio.Task[None] | None = None
    dropped: int = 0


@dataclass
class _PhaseTimer:
    current: ImportStage | None = None
    timings: dict[str, float] = field(default_factory=dict)


def _utcnow() -> datetime:
    return datetime.now(tz=timezone.utc)  # noqa: UP017


class ProgressBus:
    """Persists and broadcasts :class:`ImportJob` snapshots.

    Parameters
    ----------
    store:
        Where snapshots are upserted (one row per ``job_id``).
    queue_size:
        Capacity of each subscriber queue before drop-oldest kicks in.
    clock:
        Wall-clock seconds used for phase timings; injectable for tests.
    """

    def __init__(
        self,
        store: IProgressStore,
        queue_size: int = 100,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._store = store
        self._queue_size = max(1, queue_size)
        self._clock = clock
        self._subscriptions: dict[str, list[_Subscription]] = {}
        self._jobs: dict[str, ImportJob] = {}
        self._timers: dict[str, _PhaseTimer] = {}
        self._logger: structlog.BoundLogger = get_logger(__name__)

    # ------------------------------------------------------------------
    # Reporting
    # ------------------------------------------------------------------

    async def report(
        self,
        job_id: str,
        stage: ImportStage,
        progress: float,
        message: str,
        error: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> ImportJob:
        """Persist a progress snapshot and publish it.

        Parameters
        ----------
        job_id:
            Import job key.
        stage:
            Stage the job is in now.
        progress:
            Completion percentage, clamped to 0-100.
        message:
            Human-readable status.
        error:
            Error text, for failure reports.
        metadata:
            Extra keys merged into the job's metadata.

        Returns
        -------
        ImportJob
            The snapshot that was persisted.
        """
        progress = max(0.0, min(100.0, progress))
        previous = self._jobs.get(job_id) or await self._store.load_progress(job_id)
        timings = self._advance_timer(job_id, stage)

        now = _utcnow()
        # A finished snapshot is never reopened; the next report starts a new run.
        if previous is None or previous.stage.is_terminal:
            merged_metadata = dict(metadata or {})
            job = ImportJob(
                job_id=job_id,
                stage=stage,
                progress=progress,
                message=message,
                error=error,
                phase_timings=timings,
                metadata=merged_metadata,
                started_at=now,
                updated_at=now,
                completed_at=now if stage.is_terminal else None,
            )
        else:
            merged_metadata = {**previous.metadata, **(metadata or {})}
            job = previous.model_copy(
                update={
                    "stage": stage,
                    "progress": progress,
                    "message": message,
                    "error": error,
                    "phase_timings": timings,
                    "metadata": merged_metadata,
                    "updated_at": now,
                    "completed_at": now if stage.is_terminal else None,
                }
            )

        await self._store.save_progress(job)
        self._jobs[job_id] = job
        if stage.is_terminal:
            self._timers.pop(job_id, None)
            self._jobs.pop(job_id, None)

        self._logger.debug(
            "progress_update",
            job_id=job_id,
            stage=stage.value,
            progress=round(progress, 1),
            message=message,
        )
        self._publish(job_id, job.to_event())
        return job

    async def report_error(
        self,
        job_id: str,
        error: BaseException | str,
        stage: ImportStage = ImportStage.FAILED,
        metadata: dict[str, Any] | None = None,
    ) -> ImportJob:
        """Record a failure with progress reset to 0."""
        text = str(error)
        self._logger.error("import_error_reported", job_id=job_id, stage=stage.value, error=text)
        return await self.report(
            job_id, stage, 0.0, f"Import failed: {text}", error=text, metadata=metadata
        )

    async def report_complete(
        self,
        job_id: str,
        message: str = "Import completed",
        metadata: dict[str, Any] | None = None,
    ) -> ImportJob:
        """Mark the job completed at 100% and release its phase timers."""
        return await self.report(job_id, ImportStage.COMPLETED, 100.0, message, metadata=metadata)

    def reporter(self, job_id: str, **metadata: Any) -> JobReporter:
        """Return a reporter bound to *job_id* that stamps *metadata* on every report."""
        return JobReporter(self, job_id, metadata)

    # ------------------------------------------------------------------
    # Reading
    # ------------------------------------------------------------------

    async def get_status(self, job_id: str) -> ImportJob | None:
        """Return the last persisted snapshot for *job_id*."""
        return await self._store.load_progress(job_id)

    async def get_active_imports(self) -> list[ImportJob]:
        return await self._store.list_active()

    # ------------------------------------------------------------------
    # Subscriptions
    # ------------------------------------------------------------------

    def subscribe(self, job_id: str, callback: ProgressCallback) -> None:
        """Deliver every event for *job_id* (or ``"*"`` for all jobs) to *callback*.

        *callback* receives the event dict and may be sync or async.  It
        runs on a dedicated dispatcher task, never inside :meth:`report`.
        Must be called from a running event loop.
        """
        subs = self._subscriptions.setdefault(job_id, [])
        if any(s.callback is callback for s in subs):
            return
        sub = _Subscription(callback=callback, queue=asyncio.Queue(maxsize=self._queue_size))
        sub.task = asyncio.get_running_loop().create_task(self._dispatch(job_id, sub))
        subs.append(sub)
        self._logger.debug("subscriber_added", job_id=job_id, total_subscribers=len(subs))

    def unsubscribe(self, job_id: str, callback: ProgressCallback) -> None:
        subs = self._subscriptions.get(job_id, [])
        for sub in list(subs):
            if sub.callback is callback:
                subs.remove(sub)
                if sub.task is not None:
                    sub.task.cancel()
                self._logger.debug(
                    "subscriber_removed", job_id=job_id, remaining_subscribers=len(subs)
                )
        if not subs:
            self._subscriptions.pop(job_id, None)

    def open_channel(self, job_id: str) -> asyncio.Queue[dict[str, Any]]:
        """Return a raw bounded queue receiving events for *job_id*.

        The caller consumes it directly (e.g. a websocket loop) and must
        hand it back to :meth:`close_channel`.
        """
        queue: asyncio.Queue[dict[str, Any]] = asyncio.Queue(maxsize=self._queue_size)
        self._subscriptions.setdefault(job_id, []).append(_Subscription(callback=None, queue=queue))
        return queue

    def close_channel(self, job_id: str, queue: asyncio.Queue[dict[str, Any]]) -> None:
        subs = self._subscriptions.get(job_id, [])
        self._subscriptions[job_id] = [s for s in subs if s.queue is not queue]
        if not self._subscriptions[job_id]:
            self._subscriptions.pop(job_id, None)

    async def wait_idle(self) -> None:
        """Wait until every callback subscriber has processed its queue."""
        queues = [
            s.queue
            for subs in self._subscriptions.values()
            for s in subs
            if s.callback is not None
        ]
        await asyncio.gather(*(q.join() for q in queues))

    def dropped_events(self, job_id: str) -> int:
        return sum(s.dropped for s in self._subscriptions.get(job_id, []))

    async def aclose(self) -> None:
        tasks = [
            s.task for subs in self._subscriptions.values() for s in subs if s.task is not None
        ]
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        self._subscriptions.clear()

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    def _advance_timer(self, job_id: str, stage: ImportStage) -> dict[str, float]:
        timer = self._timers.setdefault(job_id, _PhaseTimer())
        if stage is timer.current:
            return dict(timer.timings)

        now_ms = self._clock() * 1000.0
        if stage in TIMED_STAGES or stage.is_terminal:
            if timer.current is not None:
                name = timer.current.value
                timer.timings[f"{name}_end"] = now_ms
                start = timer.timings.get(f"{name}_start", now_ms)
                timer.timings[f"{name}_duration"] = now_ms - start
            timer.current = None
            if stage in TIMED_STAGES:
                timer.timings[f"{stage.value}_start"] = now_ms
                timer.current = stage
        return dict(timer.timings)

    def _publish(self, job_id: str, event: dict[str, Any]) -> None:
        targets = [
            *self._subscriptions.get(job_id, []),
            *self._subscriptions.get(GLOBAL_CHANNEL, []),
        ]
        for sub in targets:
            if sub.queue.full():
                try:
                    sub.queue.get_nowait()
                    if sub.callback is not None:
                        sub.queue.task_done()
                except asyncio.QueueEmpty:
                    pass
                sub.dropped += 1
                self._logger.debug("progress_event_dropped", job_id=job_id, dropped=sub.dropped)
            sub.queue.put_nowait(event)

    async def _dispatch(self, job_id: str, sub: _Subscription) -> None:
        while True:
            event = await sub.queue.get()
            try:
                result = sub.callback(event) if sub.callback is not None else None
                if asyncio.iscoroutine(result):
                    await result
            except Exception as exc:
                self._logger.warning(
                    "subscriber_callback_error",
                    job_id=job_id,
                    error=str(exc),
                    callback=getattr(sub.callback, "__name__", repr(sub.callback)),
                )
            finally:
                sub.queue.task_done()


class JobReporter:
    """Progress reporter scoped to one job."""

    def __init__(self, bus: ProgressBus, job_id: str, metadata: dict[str, Any]) -> None:
        self._bus = bus
        self._job_id = job_id
        self._metadata = metadata

    @property
    def job_id(self) -> str:
        return self._job_id

    async def report(
        self,
        stage: ImportStage,
        progress: float,
        message: str,
        **metadata: Any,
    ) -> ImportJob:
        return await self._bus.report(
            self._job_id, stage, progress, message, metadata={**self._metadata, **metadata}
        )

    async def report_error(
        self, error: BaseException | str, stage: ImportStage = ImportStage.FAILED
    ) -> ImportJob:
        return await self._bus.report_error(self._job_id, error, stage, metadata=self._metadata)

    async def report_complete(self, message: str, **metadata: Any) -> ImportJob:
        return await self._bus.report_complete(
            self._job_id, message, metadata={**self._metadata, **metadata}
        )
