"""Unit tests for ProgressBus and JobReporter."""

from __future__ import annotations

from typing import Any

import pytest

from setlist_import.interfaces.store_provider import IProgressStore
from setlist_import.models.import_job import ImportJob, ImportStage
from setlist_import.pipeline.progress_bus import GLOBAL_CHANNEL, ProgressBus


class MemoryProgressStore(IProgressStore):
    def __init__(self) -> None:
        self.jobs: dict[str, ImportJob] = {}
        self.saves = 0

    async def save_progress(self, job: ImportJob) -> None:
        self.saves += 1
        self.jobs[job.job_id] = job

    async def load_progress(self, job_id: str) -> ImportJob | None:
        return self.jobs.get(job_id)

    async def list_active(self) -> list[ImportJob]:
        return [j for j in self.jobs.values() if j.is_active]


class StepClock:
    """Wall clock in seconds that only moves when told to."""

    def __init__(self) -> None:
        self.now = 1_700_000_000.0

    def __call__(self) -> float:
        return self.now


@pytest.fixture()
def progress_store() -> MemoryProgressStore:
    return MemoryProgressStore()


@pytest.fixture()
def clock() -> StepClock:
    return StepClock()


@pytest.fixture()
def bus(progress_store: MemoryProgressStore, clock: StepClock) -> ProgressBus:
    return ProgressBus(progress_store, queue_size=2, clock=clock)


# ======================================================================
# Reporting & persistence
# ======================================================================


class TestReporting:
    @pytest.mark.asyncio
    async def test_report_persists_snapshot(
        self, bus: ProgressBus, progress_store: MemoryProgressStore
    ) -> None:
        job = await bus.report("42", ImportStage.INITIALIZING, 0.0, "Queued")

        assert progress_store.jobs["42"] == job
        status = await bus.get_status("42")
        assert status is not None
        assert status.stage is ImportStage.INITIALIZING
        assert status.message == "Queued"

    @pytest.mark.asyncio
    async def test_get_status_unknown_job(self, bus: ProgressBus) -> None:
        assert await bus.get_status("missing") is None

    @pytest.mark.asyncio
    async def test_progress_clamped_to_0_100(self, bus: ProgressBus) -> None:
        low = await bus.report("1", ImportStage.SYNCING_IDENTIFIERS, -5.0, "Low")
        high = await bus.report("1", ImportStage.WRAP_UP, 140.0, "High")
        assert low.progress == 0.0
        assert high.progress == 100.0

    @pytest.mark.asyncio
    async def test_metadata_accumulates_across_reports(self, bus: ProgressBus) -> None:
        await bus.report("1", ImportStage.INITIALIZING, 0, "a", metadata={"artist_name": "X"})
        job = await bus.report("1", ImportStage.SYNCING_IDENTIFIERS, 10, "b", metadata={"n": 1})
        assert job.metadata == {"artist_name": "X", "n": 1}

    @pytest.mark.asyncio
    async def test_report_error_marks_failed(self, bus: ProgressBus) -> None:
        await bus.report("7", ImportStage.IMPORTING_SHOWS, 20, "Working")
        job = await bus.report_error("7", RuntimeError("upstream down"))

        assert job.stage is ImportStage.FAILED
        assert job.progress == 0.0
        assert job.error == "upstream down"
        assert job.message == "Import failed: upstream down"
        assert job.completed_at is not None

    @pytest.mark.asyncio
    async def test_report_complete(self, bus: ProgressBus) -> None:
        await bus.report("7", ImportStage.WRAP_UP, 90, "Finishing")
        job = await bus.report_complete("7", "Imported 3 songs", metadata={"partial": False})

        assert job.stage is ImportStage.COMPLETED
        assert job.progress == 100.0
        assert job.metadata["partial"] is False
        assert not job.is_active

    @pytest.mark.asyncio
    async def test_new_run_after_terminal_starts_fresh(self, bus: ProgressBus) -> None:
        first = await bus.report_complete("7")
        again = await bus.report("7", ImportStage.INITIALIZING, 0, "Queued again")

        assert again.completed_at is None
        assert again.started_at >= first.started_at
        assert again.stage is ImportStage.INITIALIZING

    @pytest.mark.asyncio
    async def test_new_run_drops_previous_run_metadata(self, bus: ProgressBus) -> None:
        await bus.report_complete("7", metadata={"stats": {"songs": 12}, "partial": True})
        await bus.report("7", ImportStage.INITIALIZING, 0, "Queued again", metadata={"n": 2})
        rerun = await bus.report_error("7", "boom")

        assert rerun.metadata == {"n": 2}
        status = await bus.get_status("7")
        assert status is not None
        assert "stats" not in status.metadata

    @pytest.mark.asyncio
    async def test_failure_after_completion_is_a_new_run(self, bus: ProgressBus) -> None:
        await bus.report_complete("7", metadata={"partial": False})
        failed = await bus.report_error("7", "invalid id")

        assert failed.stage is ImportStage.FAILED
        assert failed.metadata == {}

    @pytest.mark.asyncio
    async def test_active_imports_exclude_terminal(self, bus: ProgressBus) -> None:
        await bus.report("1", ImportStage.IMPORTING_SHOWS, 20, "Running")
        await bus.report("2", ImportStage.INITIALIZING, 0, "Queued")
        await bus.report_complete("2")

        active = await bus.get_active_imports()
        assert [j.job_id for j in active] == ["1"]


# ======================================================================
# Phase timings
# ======================================================================


class TestPhaseTimings:
    @pytest.mark.asyncio
    async def test_entering_a_stage_closes_the_previous_timer(
        self, bus: ProgressBus, clock: StepClock
    ) -> None:
        await bus.report("1", ImportStage.INITIALIZING, 0, "a")
        clock.now += 1.5
        job = await bus.report("1", ImportStage.SYNCING_IDENTIFIERS, 10, "b")

        timings = job.phase_timings
        assert timings["initializing_duration"] == pytest.approx(1500.0)
        assert "syncing-identifiers_start" in timings
        assert "syncing-identifiers_end" not in timings

    @pytest.mark.asyncio
    async def test_completion_closes_last_timer(
        self, bus: ProgressBus, clock: StepClock
    ) -> None:
        await bus.report("1", ImportStage.WRAP_UP, 90, "a")
        clock.now += 0.25
        job = await bus.report_complete("1")

        assert job.phase_timings["wrap-up_duration"] == pytest.approx(250.0)

    @pytest.mark.asyncio
    async def test_repeated_stage_keeps_timer_running(
        self, bus: ProgressBus, clock: StepClock
    ) -> None:
        await bus.report("1", ImportStage.IMPORTING_SHOWS, 20, "a")
        clock.now += 1
        job = await bus.report("1", ImportStage.IMPORTING_SHOWS, 30, "b")
        assert "importing-shows_end" not in job.phase_timings


# ======================================================================
# Subscriptions
# ======================================================================


class TestSubscriptions:
    @pytest.mark.asyncio
    async def test_sync_and_async_callbacks_receive_events(self, bus: ProgressBus) -> None:
        sync_seen: list[dict[str, Any]] = []
        async_seen: list[dict[str, Any]] = []

        def on_sync(event: dict[str, Any]) -> None:
            sync_seen.append(event)

        async def on_async(event: dict[str, Any]) -> None:
            async_seen.append(event)

        bus.subscribe("5", on_sync)
        bus.subscribe("5", on_async)
        await bus.report("5", ImportStage.INITIALIZING, 0, "Queued")
        await bus.wait_idle()

        assert [e["stage"] for e in sync_seen] == ["initializing"]
        assert [e["stage"] for e in async_seen] == ["initializing"]
        await bus.aclose()

    @pytest.mark.asyncio
    async def test_failing_callback_is_isolated(self, bus: ProgressBus) -> None:
        seen: list[str] = []

        def broken(_: dict[str, Any]) -> None:
            raise RuntimeError("subscriber bug")

        def healthy(event: dict[str, Any]) -> None:
            seen.append(event["message"])

        bus.subscribe("5", broken)
        bus.subscribe("5", healthy)

        job = await bus.report("5", ImportStage.INITIALIZING, 0, "Queued")
        await bus.wait_idle()

        assert job.stage is ImportStage.INITIALIZING
        assert seen == ["Queued"]
        await bus.aclose()

    @pytest.mark.asyncio
    async def test_global_channel_sees_every_job(self, bus: ProgressBus) -> None:
        seen: list[str] = []
        bus.subscribe(GLOBAL_CHANNEL, lambda e: seen.append(e["job_id"]))

        await bus.report("1", ImportStage.INITIALIZING, 0, "a")
        await bus.report("2", ImportStage.INITIALIZING, 0, "b")
        await bus.wait_idle()

        assert seen == ["1", "2"]
        await bus.aclose()

    @pytest.mark.asyncio
    async def test_duplicate_subscribe_is_ignored(self, bus: ProgressBus) -> None:
        seen: list[dict[str, Any]] = []

        def callback(event: dict[str, Any]) -> None:
            seen.append(event)

        bus.subscribe("5", callback)
        bus.subscribe("5", callback)
        await bus.report("5", ImportStage.INITIALIZING, 0, "Queued")
        await bus.wait_idle()

        assert len(seen) == 1
        await bus.aclose()

    @pytest.mark.asyncio
    async def test_unsubscribe_stops_delivery(self, bus: ProgressBus) -> None:
        seen: list[dict[str, Any]] = []

        def callback(event: dict[str, Any]) -> None:
            seen.append(event)

        bus.subscribe("5", callback)
        bus.unsubscribe("5", callback)
        await bus.report("5", ImportStage.INITIALIZING, 0, "Queued")
        await bus.wait_idle()

        assert seen == []

    @pytest.mark.asyncio
    async def test_full_channel_drops_oldest(self, bus: ProgressBus) -> None:
        channel = bus.open_channel("9")

        await bus.report("9", ImportStage.INITIALIZING, 0, "one")
        await bus.report("9", ImportStage.SYNCING_IDENTIFIERS, 10, "two")
        await bus.report("9", ImportStage.IMPORTING_SHOWS, 20, "three")

        assert bus.dropped_events("9") == 1
        assert channel.get_nowait()["message"] == "two"
        assert channel.get_nowait()["message"] == "three"
        bus.close_channel("9", channel)
        assert bus.dropped_events("9") == 0

    @pytest.mark.asyncio
    async def test_reporter_stamps_metadata(self, bus: ProgressBus) -> None:
        reporter = bus.reporter("3", source="cli")
        job = await reporter.report(ImportStage.IMPORTING_SONGS, 50, "Songs", albums=4)

        assert reporter.job_id == "3"
        assert job.metadata == {"source": "cli", "albums": 4}
        failed = await reporter.report_error("boom")
        assert failed.stage is ImportStage.FAILED
        assert failed.metadata["source"] == "cli"
