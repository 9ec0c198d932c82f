"""Shared pytest fixtures for the setlist-import test suite."""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator, Sequence
from datetime import date
from pathlib import Path
from typing import Any
from unittest.mock import AsyncMock

import pytest
import pytest_asyncio

from setlist_import.interfaces.metadata_provider import IMetadataProvider
from setlist_import.interfaces.ticketing_provider import ITicketingProvider
from setlist_import.models.external import (
    AudioFeatures,
    ExternalAlbum,
    ExternalArtistProfile,
    ExternalAttraction,
    ExternalEvent,
    ExternalTrack,
    ExternalVenue,
)
from setlist_import.models.provider_config import BatchConfig, RetryPolicyConfig
from setlist_import.pipeline.batch_optimizer import BatchAPIOptimizer
from setlist_import.providers.store.sqlite_store import SQLiteCanonicalStore

_COUNTED_TABLES = frozenset(
    {"artists", "venues", "shows", "songs", "artist_songs", "setlists"}
)

# ---------------------------------------------------------------------------
# Fake upstream providers
# ---------------------------------------------------------------------------


class FakeTicketing(ITicketingProvider):
    """In-memory ticketing provider.

    ``attractions`` maps attraction id to the attraction; ``pages`` maps
    attraction id to the event pages yielded, in order.  Set
    ``events_error`` to make paging raise.
    """

    def __init__(self) -> None:
        self.attractions: dict[str, ExternalAttraction] = {}
        self.pages: dict[str, list[list[ExternalEvent]]] = {}
        self.events_error: Exception | None = None
        self.attraction_lookups = 0

    async def get_attraction(self, attraction_id: str) -> ExternalAttraction | None:
        self.attraction_lookups += 1
        return self.attractions.get(attraction_id)

    async def iterate_events(self, attraction_id: str) -> AsyncIterator[list[ExternalEvent]]:
        if self.events_error is not None:
            raise self.events_error
        for page in self.pages.get(attraction_id, []):
            yield page

    def get_provider_name(self) -> str:
        return "ticketmaster"


class FakeMetadata(IMetadataProvider):
    """In-memory music-metadata provider.

    ``details`` holds the full track records returned by the batched
    ``track`` lookup and ``liveness`` the audio-feature scores; missing ids
    come back as ``None`` like the real executors.  ``details_error`` fails
    every ``track`` batch, or only batches holding one of
    ``failing_detail_ids`` when that is set.
    """

    def __init__(self) -> None:
        self.profiles: dict[str, ExternalArtistProfile] = {}
        self.profile_delay: float = 0.0
        self.albums: list[ExternalAlbum] = []
        self.albums_error: Exception | None = None
        self.album_tracks: dict[str, list[ExternalTrack]] = {}
        self.failing_albums: set[str] = set()
        self.details: dict[str, ExternalTrack] = {}
        self.liveness: dict[str, float] = {}
        self.features_error: Exception | None = None
        self.details_error: Exception | None = None
        self.failing_detail_ids: set[str] = set()
        self.album_track_calls: list[str] = []
        self.auth_calls = 0

    async def authenticate(self) -> None:
        self.auth_calls += 1

    async def get_artist(self, artist_id: str) -> ExternalArtistProfile | None:
        if self.profile_delay:
            await asyncio.sleep(self.profile_delay)
        return self.profiles.get(artist_id)

    async def get_artist_albums(self, artist_id: str) -> list[ExternalAlbum]:
        if self.albums_error is not None:
            raise self.albums_error
        return list(self.albums)

    async def get_album_tracks(self, album: ExternalAlbum) -> list[ExternalTrack]:
        self.album_track_calls.append(album.album_id)
        if album.album_id in self.failing_albums:
            raise RuntimeError(f"album {album.album_id} unavailable")
        return list(self.album_tracks.get(album.album_id, []))

    async def get_tracks_details(self, track_ids: Sequence[str]) -> list[ExternalTrack]:
        return [self.details[i] for i in track_ids if i in self.details]

    async def get_audio_features(self, track_ids: Sequence[str]) -> list[AudioFeatures]:
        return [
            AudioFeatures(track_id=i, liveness=self.liveness[i])
            for i in track_ids
            if i in self.liveness
        ]

    def get_provider_name(self) -> str:
        return "spotify"


def register_fake_executors(optimizer: BatchAPIOptimizer, metadata: FakeMetadata) -> None:
    """Route ``spotify:track`` / ``spotify:audio_features`` batches to *metadata*."""

    async def _tracks(_operation: str, params: list[dict[str, Any]]) -> list[Any]:
        ids = {p["id"] for p in params}
        if metadata.details_error is not None and (
            not metadata.failing_detail_ids or metadata.failing_detail_ids & ids
        ):
            raise metadata.details_error
        return [metadata.details.get(p["id"]) for p in params]

    async def _features(_operation: str, params: list[dict[str, Any]]) -> list[Any]:
        if metadata.features_error is not None:
            raise metadata.features_error
        return [
            AudioFeatures(track_id=p["id"], liveness=metadata.liveness[p["id"]])
            if p["id"] in metadata.liveness
            else None
            for p in params
        ]

    optimizer.register_executor("spotify", "track", _tracks)
    optimizer.register_executor("spotify", "audio_features", _features)


# ---------------------------------------------------------------------------
# Store
# ---------------------------------------------------------------------------


class CountingStore(SQLiteCanonicalStore):
    """SQLite store that can also report whole-table row counts."""

    async def count_rows(self, table: str) -> int:
        if table not in _COUNTED_TABLES:
            raise ValueError(f"Unknown table: {table}")
        cursor = await self._conn.execute(f"SELECT COUNT(*) FROM {table}")  # noqa: S608
        row = await cursor.fetchone()
        return int(row[0])


# ---------------------------------------------------------------------------
# Record factories
# ---------------------------------------------------------------------------


def make_venue(venue_id: str = "KovZpZA7AAEA", name: str = "Madison Square Garden") -> ExternalVenue:
    return ExternalVenue(venue_id=venue_id, name=name, city="New York", state="New York")


def make_event(
    event_id: str,
    venue: ExternalVenue | None,
    local_date: date = date(2030, 6, 1),
    name: str = "World Tour",
) -> ExternalEvent:
    return ExternalEvent(
        event_id=event_id,
        name=name,
        local_date=local_date,
        url=f"https://www.ticketmaster.com/event/{event_id}",
        min_price=49.5,
        max_price=129.99,
        venue=venue,
    )


def make_track(
    track_id: str,
    name: str,
    popularity: int = 50,
    isrc: str | None = None,
    duration_ms: int = 200_000,
    album_id: str = "album-1",
) -> ExternalTrack:
    return ExternalTrack(
        track_id=track_id,
        name=name,
        popularity=popularity,
        isrc=isrc,
        duration_ms=duration_ms,
        album_id=album_id,
        album_name=f"Album {album_id}",
        artist_name="The Testers",
    )


def make_album(album_id: str, name: str | None = None, album_type: str = "album") -> ExternalAlbum:
    return ExternalAlbum(album_id=album_id, name=name or f"Album {album_id}", album_type=album_type)


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def project_root() -> Path:
    """Return the project root directory."""
    return Path(__file__).parent.parent


@pytest_asyncio.fixture
async def store(tmp_path: Path) -> AsyncIterator[CountingStore]:
    """An initialized store backed by a temporary database file."""
    db = CountingStore(tmp_path / "canonical.db")
    await db.initialize()
    yield db
    await db.close()


@pytest.fixture
def fake_ticketing() -> FakeTicketing:
    return FakeTicketing()


@pytest.fixture
def fake_metadata() -> FakeMetadata:
    return FakeMetadata()


@pytest.fixture
def optimizer(fake_metadata: FakeMetadata) -> BatchAPIOptimizer:
    """Optimizer flushing immediately, retrying once without sleeping."""
    opt = BatchAPIOptimizer(
        {
            "spotify": BatchConfig(
                max_batch_size=50,
                max_wait_ms=0,
                retry_policy=RetryPolicyConfig(max_retries=1, initial_delay_ms=0),
            )
        },
        sleep=AsyncMock(),
    )
    register_fake_executors(opt, fake_metadata)
    return opt
