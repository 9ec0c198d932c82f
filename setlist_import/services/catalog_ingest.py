"""Catalog ingest: an artist's recorded catalog into canonical songs.

Pipeline for one artist:

  1. ALBUMS    -- page albums and singles; drop compilations and albums
                  whose name marks a live or tour record.
  2. TRACKS    -- page every album's tracks through a bounded pool.
  3. ENRICH    -- per-track details (ISRC, popularity) and audio features
                  (liveness), requested one id at a time through the
                  :class:`BatchAPIOptimizer`, which coalesces them into
                  provider-sized batches.
  4. FILTER    -- drop live performances: liveness above the threshold,
                  or a title carrying live markers.
  5. DEDUP     -- collapse re-releases across the whole catalog by ISRC
                  (or cleaned title + rounded duration), keeping the most
                  popular version.
  6. PERSIST   -- batch-upsert songs, then link them to the artist.

Dedup only runs once every track has been collected, so the kept version
never depends on which album finished first.
"""

from __future__ import annotations

import asyncio
from collections.abc import Sequence
from typing import Any

import structlog

from setlist_import.interfaces.cache_provider import artist_cache_key
from setlist_import.interfaces.metadata_provider import IMetadataProvider
from setlist_import.interfaces.store_provider import ICanonicalStore
from setlist_import.models.canonical import CanonicalSong
from setlist_import.models.external import AudioFeatures, ExternalAlbum, ExternalTrack
from setlist_import.models.results import CatalogIngestResult, IngestError
from setlist_import.pipeline.batch_optimizer import BatchAPIOptimizer
from setlist_import.utils.concurrency import process_batch
from setlist_import.utils.logging import get_logger
from setlist_import.utils.text import fallback_track_key, is_live_album, is_live_title

_EXCLUDED_ALBUM_TYPES = frozenset({"compilation"})
_DETAILS_PRIORITY = 1
_FEATURES_PRIORITY = 0


def dedup_key(track: ExternalTrack) -> str:
    """ISRC when present, else ``clean title:rounded seconds``."""
    if track.isrc:
        return f"isrc:{track.isrc.strip().upper()}"
    return f"title:{fallback_track_key(track.name, track.duration_ms)}"


def dedup_tracks(tracks: Sequence[ExternalTrack]) -> list[ExternalTrack]:
    """Keep the most popular track per dedup key.

    Ties keep the first one seen; output order is first-seen order of
    each key, so identical input always yields identical output.
    """
    kept: dict[str, ExternalTrack] = {}
    for track in tracks:
        key = dedup_key(track)
        current = kept.get(key)
        if current is None or track.popularity > current.popularity:
            kept[key] = track
    return list(kept.values())


def to_canonical_song(track: ExternalTrack) -> CanonicalSong:
    return CanonicalSong(
        spotify_id=track.track_id,
        name=track.name,
        isrc=track.isrc,
        artist=track.artist_name,
        album_name=track.album_name,
        album_id=track.album_id,
        track_number=track.track_number,
        disc_number=track.disc_number,
        album_art_url=track.album_art_url,
        release_date=track.release_date,
        duration_ms=track.duration_ms,
        popularity=track.popularity,
        preview_url=track.preview_url,
        uri=track.uri,
        explicit=track.explicit,
        is_playable=track.is_playable,
        is_live=False,
    )


def _merge_details(base: ExternalTrack, detail: ExternalTrack | None) -> ExternalTrack:
    if detail is None:
        return base
    fallbacks = {
        field: getattr(base, field)
        for field in ("album_id", "album_name", "album_art_url", "release_date", "artist_name")
        if getattr(detail, field) is None
    }
    return detail.model_copy(update=fallbacks) if fallbacks else detail


class CatalogIngestService:
    """Imports an artist's studio catalog.

    Parameters
    ----------
    metadata:
        Catalog source (albums, tracks).
    store:
        Canonical store.
    optimizer:
        Batches the per-track detail and audio-feature lookups; the
        metadata provider registers ``track`` and ``audio_features``
        executors on it.
    liveness_threshold:
        Liveness strictly above this marks a track live.
    album_concurrency:
        Maximum albums whose tracks are paged at once.
    """

    def __init__(
        self,
        metadata: IMetadataProvider,
        store: ICanonicalStore,
        optimizer: BatchAPIOptimizer,
        liveness_threshold: float = 0.8,
        album_concurrency: int = 10,
    ) -> None:
        self._metadata = metadata
        self._store = store
        self._optimizer = optimizer
        self._liveness_threshold = liveness_threshold
        self._album_concurrency = album_concurrency
        self._provider = metadata.get_provider_name()
        self._logger: structlog.BoundLogger = get_logger(__name__)

    async def ingest(self, artist_id: int, spotify_id: str) -> CatalogIngestResult:
        """Import the catalog of *spotify_id* and link it to *artist_id*.

        Raises
        ------
        SetlistImportError
            When albums cannot be listed or not a single track detail
            could be fetched.  Album, track and audio-feature failures
            are otherwise recorded in ``result.errors``.
        """
        result = CatalogIngestResult()
        await self._metadata.authenticate()

        albums = await self._eligible_albums(spotify_id)
        tracks = await self._collect_tracks(albums, result)
        result.tracks_processed = len(tracks)
        if not tracks:
            self._logger.info("catalog_ingest_empty", artist_id=artist_id, albums=len(albums))
            return result

        detailed, liveness = await self._enrich(artist_id, tracks, result)

        studio: list[ExternalTrack] = []
        for track in detailed:
            score = liveness.get(track.track_id)
            if score is not None and score > self._liveness_threshold:
                result.live_features_filtered += 1
            elif is_live_title(track.name):
                result.live_name_filtered += 1
            else:
                studio.append(track)

        unique = dedup_tracks(studio)
        result.duplicates_filtered = len(studio) - len(unique)

        if unique:
            song_ids = await self._store.upsert_songs([to_canonical_song(t) for t in unique])
            await self._store.link_artist_songs(artist_id, list(song_ids.values()))
        result.studio_tracks_ingested = len(unique)

        self._logger.info(
            "catalog_ingest_complete",
            artist_id=artist_id,
            albums_processed=result.albums_processed,
            tracks_processed=result.tracks_processed,
            studio_tracks_ingested=result.studio_tracks_ingested,
            live_features_filtered=result.live_features_filtered,
            live_name_filtered=result.live_name_filtered,
            duplicates_filtered=result.duplicates_filtered,
            errors=len(result.errors),
        )
        return result

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    async def _eligible_albums(self, spotify_id: str) -> list[ExternalAlbum]:
        albums = await self._metadata.get_artist_albums(spotify_id)
        eligible = [
            a
            for a in albums
            if a.album_type not in _EXCLUDED_ALBUM_TYPES
            and a.album_group not in _EXCLUDED_ALBUM_TYPES
            and not is_live_album(a.name)
        ]
        self._logger.debug(
            "catalog_albums_filtered", total=len(albums), eligible=len(eligible)
        )
        return eligible

    async def _collect_tracks(
        self, albums: list[ExternalAlbum], result: CatalogIngestResult
    ) -> list[ExternalTrack]:
        per_album, failures = await process_batch(
            albums,
            self._metadata.get_album_tracks,
            concurrency=self._album_concurrency,
            logger=self._logger,
            label="album_tracks_failed",
        )
        result.albums_processed = len(per_album)
        for failure in failures:
            result.errors.append(
                IngestError(
                    type="album",
                    message=str(failure.error),
                    item={"album_id": failure.item.album_id, "name": failure.item.name},
                )
            )

        seen: set[str] = set()
        tracks: list[ExternalTrack] = []
        for album_tracks in per_album:
            for track in album_tracks:
                if track.track_id not in seen:
                    seen.add(track.track_id)
                    tracks.append(track)
        return tracks

    async def _enrich(
        self, artist_id: int, tracks: list[ExternalTrack], result: CatalogIngestResult
    ) -> tuple[list[ExternalTrack], dict[str, float]]:
        """Return detailed tracks and a ``track_id -> liveness`` map.

        A track whose detail lookup failed is recorded in ``result.errors``
        and left out; its siblings carry on.
        """
        details_task = asyncio.gather(
            *(
                self._optimizer.request(
                    self._provider,
                    "track",
                    {"id": t.track_id},
                    priority=_DETAILS_PRIORITY,
                    cache_key=artist_cache_key(
                        str(artist_id), f"{self._provider}:track:{t.track_id}"
                    ),
                )
                for t in tracks
            ),
            return_exceptions=True,
        )
        features_task = asyncio.gather(
            *(
                self._optimizer.request(
                    self._provider,
                    "audio_features",
                    {"id": t.track_id},
                    priority=_FEATURES_PRIORITY,
                )
                for t in tracks
            ),
            return_exceptions=True,
        )
        details, features = await asyncio.gather(details_task, features_task)

        detailed: list[ExternalTrack] = []
        detail_errors: list[BaseException] = []
        for track, detail in zip(tracks, details):
            if isinstance(detail, BaseException):
                if not isinstance(detail, Exception):
                    raise detail
                detail_errors.append(detail)
                result.errors.append(
                    IngestError(
                        type="track",
                        message=str(detail),
                        item={"track_id": track.track_id, "name": track.name},
                    )
                )
            else:
                detailed.append(_merge_details(track, _as_track(detail)))
        if detail_errors:
            if not detailed:
                raise detail_errors[0]
            self._logger.warning(
                "track_details_unavailable",
                failed=len(detail_errors),
                resolved=len(detailed),
                error=str(detail_errors[0]),
            )

        liveness: dict[str, float] = {}
        feature_errors: list[BaseException] = []
        for track, feature in zip(tracks, features):
            if isinstance(feature, BaseException):
                feature_errors.append(feature)
            elif isinstance(feature, AudioFeatures):
                liveness[track.track_id] = feature.liveness
        if feature_errors:
            # Liveness unavailable for these tracks: titles alone decide.
            self._logger.warning(
                "audio_features_unavailable",
                failed=len(feature_errors),
                error=str(feature_errors[0]),
            )
            result.errors.append(
                IngestError(
                    type="audio_features",
                    message=str(feature_errors[0]),
                    item={"failed": len(feature_errors)},
                )
            )

        return detailed, liveness


def _as_track(value: Any) -> ExternalTrack | None:
    return value if isinstance(value, ExternalTrack) else None
