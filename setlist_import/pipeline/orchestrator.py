"""Central orchestrator for the multi-phase artist import.

Coordinates identity bootstrap, the shows and catalog ingests, setlist
preseeding and wrap-up, and reports every transition through the injected
:class:`ProgressBus`.

ARCHITECTURE NOTE:
    The import is split into TWO entry points:
        - initiate()   -> resolve the artist and create its row (fast path,
                          meant to answer an HTTP request in ~200 ms)
        - run_full()   -> everything else (slow path, usually a background
                          task keyed by the artist id returned by initiate)

    run_full() walks these stages:

        initializing
            │
        syncing-identifiers        bootstrap: load the artist row and fill
            │                      in a missing catalog id; failure here
            │                      fails the job
            ├──────────────┐
        importing-shows  importing-songs     run concurrently, joined with
            │              │                 gather(return_exceptions=True)
            ├──────────────┘
        creating-setlists          predicted setlists for upcoming shows
            │
        wrap-up                    cache invalidation + trending score;
            │                      errors only ever produce a warning
        completed | failed

    A failing parallel branch never cancels its sibling.  Its error is
    recorded in ``ImportResult.phase_errors`` and its data counts as empty.
    Only a bootstrap failure, or both branches failing, fails the job;
    exactly one failing branch completes the job with ``partial=True``.

    While the branches run, the reported stage names the branch still
    outstanding: ``importing-shows`` at first, ``importing-songs`` once the
    shows branch has finished and the catalog has not.

    Every write is an idempotent upsert, so run_full() can simply be
    invoked again after a partial or failed run.
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Awaitable, Callable, Sequence
from typing import Any, TypeVar

import structlog

from setlist_import.interfaces.metadata_provider import IMetadataProvider
from setlist_import.interfaces.store_provider import ICanonicalStore
from setlist_import.interfaces.ticketing_provider import ITicketingProvider
from setlist_import.models.canonical import CanonicalArtist, StoredArtist
from setlist_import.models.external import ExternalArtistProfile, ExternalAttraction
from setlist_import.models.import_job import ImportStage
from setlist_import.models.results import (
    CatalogIngestResult,
    ImportResult,
    ImportStats,
    InitiateResult,
    PreseedResult,
    ShowsIngestResult,
)
from setlist_import.pipeline.progress_bus import JobReporter, ProgressBus
from setlist_import.services.catalog_ingest import CatalogIngestService
from setlist_import.services.setlist_preseeder import SetlistPreseeder
from setlist_import.services.shows_ingest import ShowsIngestService
from setlist_import.services.wrap_up import WrapUpService
from setlist_import.utils.errors import PipelineError, ValidationError, WrapUpError
from setlist_import.utils.logging import bound_job_context, get_logger
from setlist_import.utils.text import slugify

_T = TypeVar("_T")

# Progress checkpoints per stage
_PROGRESS_SYNCING = 10.0
_PROGRESS_IMPORTING = 20.0
_PROGRESS_BRANCH_DONE = 50.0
_PROGRESS_SETLISTS = 75.0
_PROGRESS_WRAP_UP = 90.0


class ArtistImportOrchestrator:
    """Runs artist imports end to end.

    Parameters
    ----------
    ticketing:
        Source of the artist identity (attraction) and its events.
    metadata:
        Source of the secondary artist profile.
    store:
        Canonical store.
    progress:
        Progress bus every stage transition is reported through.
    shows_service, catalog_service, preseeder, wrap_up:
        Phase services.
    identity_timeout_ms:
        Hard timeout on the secondary profile lookup in :meth:`initiate`.
    batch_group_size:
        Default number of artists :meth:`run_batch` imports at once.
    clock:
        Monotonic seconds for duration stats; injectable for tests.
    """

    def __init__(
        self,
        ticketing: ITicketingProvider,
        metadata: IMetadataProvider,
        store: ICanonicalStore,
        progress: ProgressBus,
        shows_service: ShowsIngestService,
        catalog_service: CatalogIngestService,
        preseeder: SetlistPreseeder,
        wrap_up: WrapUpService,
        identity_timeout_ms: int = 200,
        batch_group_size: int = 3,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._ticketing = ticketing
        self._metadata = metadata
        self._store = store
        self._progress = progress
        self._shows = shows_service
        self._catalog = catalog_service
        self._preseeder = preseeder
        self._wrap_up = wrap_up
        self._identity_timeout_s = identity_timeout_ms / 1000.0
        self._batch_group_size = max(1, batch_group_size)
        self._clock = clock
        self._logger: structlog.BoundLogger = get_logger(__name__)

    # ------------------------------------------------------------------
    # Fast path
    # ------------------------------------------------------------------

    async def initiate(self, artist_key: str) -> InitiateResult:
        """Resolve *artist_key* (a ticketing attraction id) and create the artist.

        Parameters
        ----------
        artist_key:
            Ticketmaster attraction id.

        Returns
        -------
        InitiateResult
            The artist's internal id (also the import job id) and slug,
            plus whatever secondary profile data arrived in time.

        Raises
        ------
        ValidationError
            If the attraction does not exist.
        """
        attraction = await self._ticketing.get_attraction(artist_key)
        if attraction is None:
            raise ValidationError(
                message=f"Artist {artist_key} not found",
                provider_name=self._ticketing.get_provider_name(),
            )

        profile = await self._lookup_profile(attraction)
        artist = CanonicalArtist(
            tm_attraction_id=attraction.attraction_id,
            name=attraction.name,
            slug=slugify(attraction.name),
            spotify_id=attraction.spotify_id,
            mbid=attraction.mbid,
            genres=list(profile.genres) if profile else [],
            image_url=profile.image_url if profile else None,
            large_image_url=attraction.large_image_url,
            followers=profile.followers if profile else None,
            popularity=profile.popularity if profile else None,
        )
        artist_id = await self._store.upsert_artist(artist)
        await self._store.update_artist_sync(
            artist_id, import_status=ImportStage.INITIALIZING.value
        )

        job_id = str(artist_id)
        await self._progress.report(
            job_id,
            ImportStage.INITIALIZING,
            0.0,
            f"Import queued for {artist.name}",
            metadata={"artist_name": artist.name, "tm_attraction_id": artist.tm_attraction_id},
        )
        self._logger.info(
            "import_initiated",
            job_id=job_id,
            artist_name=artist.name,
            slug=artist.slug,
            has_profile=profile is not None,
        )

        return InitiateResult(
            id=job_id,
            slug=artist.slug,
            name=artist.name,
            tm_attraction_id=artist.tm_attraction_id,
            spotify_id=artist.spotify_id,
            genres=artist.genres,
            followers=artist.followers,
            popularity=artist.popularity,
            image_url=artist.image_url,
        )

    # ------------------------------------------------------------------
    # Slow path
    # ------------------------------------------------------------------

    async def run_full(self, artist_id: str) -> ImportResult:
        """Run every import phase for an artist created by :meth:`initiate`.

        Never raises for phase failures; they are reported through the
        progress bus and reflected in the returned result.
        """
        job_id = str(artist_id)
        started = self._clock()
        reporter = self._progress.reporter(job_id)

        with bound_job_context(job_id):
            self._logger.info("import_run_start")

            # --- Bootstrap ---
            internal_id: int | None = None
            try:
                internal_id = _parse_artist_id(job_id)
                await reporter.report(
                    ImportStage.SYNCING_IDENTIFIERS, _PROGRESS_SYNCING, "Syncing identifiers"
                )
                artist = await self._sync_identifiers(internal_id)
            except Exception as exc:
                return await self._fail(
                    reporter, job_id, internal_id, ImportStage.SYNCING_IDENTIFIERS, exc, started
                )

            # --- Parallel ingest ---
            await reporter.report(
                ImportStage.IMPORTING_SHOWS,
                _PROGRESS_IMPORTING,
                "Importing shows, venues and song catalog",
            )
            shows_result, catalog_result, phase_errors, durations = await self._run_branches(
                reporter, artist
            )
            if len(phase_errors) == 2:
                error = PipelineError(
                    message="; ".join(f"{k}: {v}" for k, v in phase_errors.items()),
                    phase="parallel-import",
                )
                return await self._fail(
                    reporter, job_id, internal_id, None, error, started, phase_errors
                )
            partial = bool(phase_errors)

            try:
                # --- Setlists ---
                await reporter.report(
                    ImportStage.CREATING_SETLISTS,
                    _PROGRESS_SETLISTS,
                    "Creating predicted setlists",
                    branch_durations_ms=durations,
                )
                preseed_result = await self._preseed(internal_id, phase_errors)

                # --- Wrap-up ---
                await reporter.report(ImportStage.WRAP_UP, _PROGRESS_WRAP_UP, "Finishing up")
                try:
                    await self._wrap_up.run(internal_id)
                except WrapUpError as exc:
                    self._logger.warning("wrap_up_failed", error=str(exc))

                counts = await self._store.count_artist_rows(internal_id)
                status = (
                    f"{ImportStage.COMPLETED.value}-partial"
                    if partial
                    else ImportStage.COMPLETED.value
                )
                await self._store.update_artist_sync(
                    internal_id,
                    import_status=status,
                    full_sync=True,
                    total_songs=counts.get("songs", 0),
                )
            except Exception as exc:
                return await self._fail(
                    reporter, job_id, internal_id, None, exc, started, phase_errors
                )

            stats = ImportStats(
                songs=counts.get("songs", 0),
                shows=counts.get("shows", 0),
                venues=counts.get("venues", 0),
                duration_ms=self._elapsed_ms(started),
            )
            message = (
                f"Imported {stats.songs} songs and {stats.shows} shows"
                + (" (partial)" if partial else "")
            )
            await reporter.report_complete(
                message,
                stats=stats.model_dump(),
                partial=partial,
                phase_errors=phase_errors,
            )
            self._logger.info(
                "import_run_complete",
                songs=stats.songs,
                shows=stats.shows,
                venues=stats.venues,
                duration_ms=stats.duration_ms,
                partial=partial,
            )
            return ImportResult(
                artist_id=job_id,
                success=True,
                partial=partial,
                stats=stats,
                phase_errors=phase_errors,
                shows=shows_result,
                catalog=catalog_result,
                preseed=preseed_result,
            )

    async def import_artist(self, artist_key: str) -> ImportResult:
        """:meth:`initiate` then :meth:`run_full`."""
        initiated = await self.initiate(artist_key)
        return await self.run_full(initiated.id)

    async def run_batch(
        self, artist_keys: Sequence[str], group_size: int | None = None
    ) -> list[ImportResult]:
        """Import several artists, ``group_size`` at a time.

        Results are in input order.  An artist that fails to initiate gets
        a failed result keyed by its ``artist_key``.
        """
        size = max(1, group_size or self._batch_group_size)
        results: list[ImportResult] = []
        for offset in range(0, len(artist_keys), size):
            group = list(artist_keys[offset : offset + size])
            outcomes = await asyncio.gather(
                *(self.import_artist(key) for key in group), return_exceptions=True
            )
            for key, outcome in zip(group, outcomes):
                if isinstance(outcome, BaseException):
                    if not isinstance(outcome, Exception):
                        raise outcome
                    self._logger.error("batch_import_failed", artist_key=key, error=str(outcome))
                    results.append(ImportResult(artist_id=key, success=False, error=str(outcome)))
                else:
                    results.append(outcome)

        self._logger.info(
            "batch_import_complete",
            artists=len(artist_keys),
            succeeded=sum(1 for r in results if r.success),
        )
        return results

    # ------------------------------------------------------------------
    # Phase helpers
    # ------------------------------------------------------------------

    async def _lookup_profile(
        self, attraction: ExternalAttraction
    ) -> ExternalArtistProfile | None:
        if not attraction.spotify_id:
            return None
        try:
            return await asyncio.wait_for(
                self._metadata.get_artist(attraction.spotify_id),
                timeout=self._identity_timeout_s,
            )
        except asyncio.TimeoutError:
            self._logger.info(
                "identity_lookup_timed_out",
                spotify_id=attraction.spotify_id,
                timeout_ms=int(self._identity_timeout_s * 1000),
            )
        except Exception as exc:
            self._logger.warning(
                "identity_lookup_failed", spotify_id=attraction.spotify_id, error=str(exc)
            )
        return None

    async def _sync_identifiers(self, artist_id: int) -> StoredArtist:
        artist = await self._store.get_artist(artist_id)
        if artist is None:
            raise ValidationError(message=f"Artist {artist_id} does not exist")
        await self._store.update_artist_sync(
            artist_id, import_status=ImportStage.SYNCING_IDENTIFIERS.value
        )
        if artist.spotify_id:
            return artist

        # A catalog link may have been added upstream since initiate().
        try:
            attraction = await self._ticketing.get_attraction(artist.tm_attraction_id)
        except Exception as exc:
            self._logger.warning("identifier_refresh_failed", error=str(exc))
            return artist
        if attraction is None or not attraction.spotify_id:
            return artist

        await self._store.upsert_artist(
            CanonicalArtist(
                tm_attraction_id=artist.tm_attraction_id,
                name=artist.name,
                slug=artist.slug,
                spotify_id=attraction.spotify_id,
                mbid=attraction.mbid,
            )
        )
        self._logger.info("identifier_refreshed", spotify_id=attraction.spotify_id)
        return artist.model_copy(update={"spotify_id": attraction.spotify_id})

    async def _run_branches(
        self, reporter: JobReporter, artist: StoredArtist
    ) -> tuple[
        ShowsIngestResult | None, CatalogIngestResult | None, dict[str, str], dict[str, int]
    ]:
        durations: dict[str, int] = {}
        pending = {ImportStage.IMPORTING_SHOWS, ImportStage.IMPORTING_SONGS}

        async def _branch(stage: ImportStage, fn: Callable[[], Awaitable[_T]]) -> _T:
            started = self._clock()
            self._logger.info("import_phase_start", phase=stage.value)
            failed = True
            try:
                value = await fn()
                failed = False
                return value
            finally:
                durations[stage.value] = self._elapsed_ms(started)
                pending.discard(stage)
                if pending:
                    await self._report_branch_done(reporter, stage, failed)

        async def _shows() -> ShowsIngestResult:
            result = await self._shows.ingest(artist.id, artist.tm_attraction_id)
            await self._store.update_artist_sync(artist.id, shows_synced=True)
            return result

        async def _catalog() -> CatalogIngestResult:
            if not artist.spotify_id:
                raise ValidationError(message="Artist has no linked catalog id")
            result = await self._catalog.ingest(artist.id, artist.spotify_id)
            await self._store.update_artist_sync(artist.id, catalog_synced=True)
            return result

        outcomes = await asyncio.gather(
            _branch(ImportStage.IMPORTING_SHOWS, _shows),
            _branch(ImportStage.IMPORTING_SONGS, _catalog),
            return_exceptions=True,
        )

        phase_errors: dict[str, str] = {}
        values: list[Any] = []
        for stage, outcome in zip(
            (ImportStage.IMPORTING_SHOWS, ImportStage.IMPORTING_SONGS), outcomes
        ):
            if isinstance(outcome, BaseException):
                if not isinstance(outcome, Exception):
                    raise outcome
                phase_errors[stage.value] = str(outcome)
                self._logger.error(
                    "import_phase_failed",
                    phase=stage.value,
                    error=str(outcome),
                    error_type=type(outcome).__name__,
                )
                values.append(None)
            else:
                self._logger.info(
                    "import_phase_complete",
                    phase=stage.value,
                    duration_ms=durations.get(stage.value),
                )
                values.append(outcome)

        return values[0], values[1], phase_errors, durations

    async def _report_branch_done(
        self, reporter: JobReporter, stage: ImportStage, failed: bool
    ) -> None:
        """Report the first branch to finish; never raises into the branch."""
        if stage is ImportStage.IMPORTING_SHOWS:
            outstanding = ImportStage.IMPORTING_SONGS
            message = "Shows import failed" if failed else "Shows imported"
            message += "; importing song catalog"
        else:
            outstanding = ImportStage.IMPORTING_SHOWS
            message = "Song catalog import failed" if failed else "Song catalog imported"
            message += "; importing shows"
        try:
            await reporter.report(outstanding, _PROGRESS_BRANCH_DONE, message)
        except Exception as exc:
            self._logger.warning("branch_progress_report_failed", phase=stage.value, error=str(exc))

    async def _preseed(self, artist_id: int, phase_errors: dict[str, str]) -> PreseedResult | None:
        try:
            return await self._preseeder.preseed(artist_id)
        except Exception as exc:
            phase_errors[ImportStage.CREATING_SETLISTS.value] = str(exc)
            self._logger.warning("preseed_failed", error=str(exc))
            return None

    async def _fail(
        self,
        reporter: JobReporter,
        job_id: str,
        artist_id: int | None,
        stage: ImportStage | None,
        exc: Exception,
        started: float,
        phase_errors: dict[str, str] | None = None,
    ) -> ImportResult:
        """Persist ``failed`` for the job and build the failed result."""
        phase = stage.value if stage else getattr(exc, "phase", None)
        self._logger.error(
            "import_run_failed",
            phase=phase,
            error=str(exc),
            error_type=type(exc).__name__,
        )
        await reporter.report_error(exc)
        if artist_id is not None:
            await self._store.update_artist_sync(
                artist_id, import_status=ImportStage.FAILED.value
            )
        return ImportResult(
            artist_id=job_id,
            success=False,
            stats=ImportStats(duration_ms=self._elapsed_ms(started)),
            phase_errors=dict(phase_errors or {}),
            error=str(exc),
        )

    def _elapsed_ms(self, started: float) -> int:
        return int((self._clock() - started) * 1000)


def _parse_artist_id(job_id: str) -> int:
    try:
        return int(job_id)
    except ValueError:
        raise ValidationError(message=f"Invalid artist id: {job_id!r}") from None
