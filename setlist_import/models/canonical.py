"""Canonical rows written to the system of record.

Every row is keyed by a stable external provider id (``tm_venue_id``,
``tm_event_id``, ``spotify_id``) that the store unique-constrains, so an
upsert keyed on it is idempotent.  Internal ids are assigned by the store.
"""

from __future__ import annotations

import datetime as dt

from pydantic import BaseModel, ConfigDict, Field


class CanonicalArtist(BaseModel):
    model_config = ConfigDict(frozen=True)

    tm_attraction_id: str
    name: str
    slug: str
    spotify_id: str | None = None
    mbid: str | None = None
    genres: list[str] = Field(default_factory=list)
    image_url: str | None = None
    large_image_url: str | None = None
    followers: int | None = None
    popularity: int | None = None


class CanonicalVenue(BaseModel):
    model_config = ConfigDict(frozen=True)

    tm_venue_id: str
    name: str
    slug: str
    address: str | None = None
    city: str = "Unknown"
    state: str | None = None
    country: str = "US"
    postal_code: str | None = None
    latitude: float | None = None
    longitude: float | None = None
    timezone: str = "America/New_York"


class CanonicalShow(BaseModel):
    """A show row.  ``venue_id`` is the store's internal venue id, never null."""

    model_config = ConfigDict(frozen=True)

    tm_event_id: str
    headliner_artist_id: int
    venue_id: int
    name: str | None = None
    slug: str | None = None
    date: dt.date | None = None
    start_time: dt.time | None = None
    status: str = "upcoming"
    ticket_url: str | None = None
    min_price: int | None = Field(default=None, description="Lowest price in cents.")
    max_price: int | None = Field(default=None, description="Highest price in cents.")
    currency: str = "USD"


class CanonicalSong(BaseModel):
    """A deduplicated studio recording.

    Mutable on re-ingest: ``popularity``, ``is_playable``, ``album_art_url``,
    ``preview_url``.  Everything else is fixed at first insert.
    """

    model_config = ConfigDict(frozen=True)

    spotify_id: str
    name: str
    isrc: str | None = None
    artist: str | None = None
    album_name: str | None = None
    album_id: str | None = None
    track_number: int | None = None
    disc_number: int | None = None
    album_art_url: str | None = None
    release_date: str | None = None
    duration_ms: int = 0
    popularity: int = 0
    preview_url: str | None = None
    uri: str | None = None
    explicit: bool = False
    is_playable: bool = True
    is_live: bool = False


class StoredShow(BaseModel):
    """Show as read back for setlist preseeding."""

    model_config = ConfigDict(frozen=True)

    id: int
    tm_event_id: str
    date: dt.date | None = None
    name: str | None = None


class StoredSong(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: int
    name: str
    popularity: int = 0
    is_live: bool = False


class StoredArtist(CanonicalArtist):
    """Artist row as read back, with store-assigned fields."""

    id: int
    import_status: str | None = None
    total_songs: int = 0
    trending_score: float = 0.0
