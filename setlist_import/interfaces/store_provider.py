"""Abstract base classes for the canonical store and the progress ledger.

The canonical store is the system of record for artists, venues, shows,
songs and setlists.  Every write is an upsert keyed by a stable external
provider id, so running an import twice refreshes mutable fields and never
duplicates rows.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Sequence
from contextlib import AbstractAsyncContextManager
from datetime import date

from setlist_import.models.canonical import (
    CanonicalArtist,
    CanonicalShow,
    CanonicalSong,
    CanonicalVenue,
    StoredArtist,
    StoredShow,
    StoredSong,
)
from setlist_import.models.import_job import ImportJob


class ICanonicalStore(ABC):
    """Contract for the relational system of record."""

    @abstractmethod
    async def initialize(self) -> None:
        """Create tables and indexes if they do not already exist."""

    @abstractmethod
    def transaction(self) -> AbstractAsyncContextManager[None]:
        """Return an async context manager making the enclosed writes atomic.

        Writes issued by the same task inside the block commit together on
        a clean exit and roll back if the block raises.
        """

    # -- Artists ---------------------------------------------------------

    @abstractmethod
    async def upsert_artist(self, artist: CanonicalArtist) -> int:
        """Insert or refresh an artist keyed by ``tm_attraction_id``.

        Returns
        -------
        int
            The internal artist id.
        """

    @abstractmethod
    async def get_artist(self, artist_id: int) -> StoredArtist | None:
        """Return the artist row, or ``None`` when unknown."""

    @abstractmethod
    async def update_artist_sync(
        self,
        artist_id: int,
        *,
        import_status: str | None = None,
        shows_synced: bool = False,
        catalog_synced: bool = False,
        full_sync: bool = False,
        total_songs: int | None = None,
    ) -> None:
        """Stamp import status and sync timestamps on an artist row."""

    @abstractmethod
    async def update_trending_score(self, artist_id: int, score: float) -> None:
        """Persist a recomputed trending score."""

    # -- Venues & shows --------------------------------------------------

    @abstractmethod
    async def upsert_venue(self, venue: CanonicalVenue) -> tuple[int, bool]:
        """Insert or refresh a venue keyed by ``tm_venue_id``.

        Returns
        -------
        tuple[int, bool]
            ``(internal_id, created)``.
        """

    @abstractmethod
    async def upsert_show(self, show: CanonicalShow) -> tuple[int, bool]:
        """Insert or refresh a show keyed by ``tm_event_id``.

        Returns
        -------
        tuple[int, bool]
            ``(internal_id, created)``.
        """

    @abstractmethod
    async def list_upcoming_shows_without_setlist(
        self, artist_id: int, today: date
    ) -> list[StoredShow]:
        """Return upcoming shows headlined by *artist_id* lacking a setlist."""

    @abstractmethod
    async def count_upcoming_shows(self, artist_id: int, today: date) -> int:
        """Return how many shows headlined by *artist_id* are on or after *today*."""

    # -- Songs -----------------------------------------------------------

    @abstractmethod
    async def upsert_songs(self, songs: Sequence[CanonicalSong]) -> dict[str, int]:
        """Batch upsert songs keyed by ``spotify_id``.

        On conflict only mutable fields (popularity, playability, art,
        preview) are updated.

        Returns
        -------
        dict[str, int]
            ``spotify_id -> internal song id`` for every input song.
        """

    @abstractmethod
    async def link_artist_songs(self, artist_id: int, song_ids: Sequence[int]) -> int:
        """Insert artist-song links, ignoring existing ones.

        Returns
        -------
        int
            Number of links newly inserted.
        """

    @abstractmethod
    async def list_top_songs(self, artist_id: int, limit: int = 100) -> list[StoredSong]:
        """Return the artist's linked songs by descending popularity."""

    # -- Setlists --------------------------------------------------------

    @abstractmethod
    async def create_setlist(
        self,
        show_id: int,
        artist_id: int,
        name: str,
        song_ids: Sequence[int],
        is_prediction: bool = True,
    ) -> int:
        """Create a setlist for a show with its ordered songs.

        Returns
        -------
        int
            The new setlist id.
        """

    # -- Stats -----------------------------------------------------------

    @abstractmethod
    async def count_artist_rows(self, artist_id: int) -> dict[str, int]:
        """Return ``{"songs", "shows", "venues"}`` row counts for an artist."""


class IProgressStore(ABC):
    """Persistence for :class:`ImportJob` snapshots (one row per job)."""

    @abstractmethod
    async def save_progress(self, job: ImportJob) -> None:
        """Upsert *job* by ``job_id``."""

    @abstractmethod
    async def load_progress(self, job_id: str) -> ImportJob | None:
        """Return the last persisted snapshot, or ``None``."""

    @abstractmethod
    async def list_active(self) -> list[ImportJob]:
        """Return every job not yet in a terminal stage."""
