"""Result models returned by the ingest services and the orchestrator.

Ingest results are mutable dataclass-style accumulators while a phase runs
(counters are bumped from concurrent workers on one event loop), then
reported as-is.  The orchestrator's public results are frozen.
"""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class IngestError(BaseModel):
    """One item-level failure recorded instead of raised."""

    model_config = ConfigDict(frozen=True)

    type: str = Field(description="Item kind, e.g. 'venue', 'show', 'album', 'song'.")
    message: str
    item: dict[str, Any] = Field(default_factory=dict)


class ShowsIngestResult(BaseModel):
    venues_processed: int = 0
    shows_processed: int = 0
    new_venues: int = 0
    new_shows: int = 0
    errors: list[IngestError] = Field(default_factory=list)


class CatalogIngestResult(BaseModel):
    albums_processed: int = 0
    tracks_processed: int = 0
    studio_tracks_ingested: int = 0
    live_features_filtered: int = 0
    live_name_filtered: int = 0
    duplicates_filtered: int = 0
    errors: list[IngestError] = Field(default_factory=list)


class PreseedResult(BaseModel):
    shows_processed: int = 0
    setlists_created: int = 0
    songs_added: int = 0
    skipped_shows: int = 0


class ImportStats(BaseModel):
    model_config = ConfigDict(frozen=True)

    songs: int = 0
    shows: int = 0
    venues: int = 0
    duration_ms: int = 0


class ImportResult(BaseModel):
    """Outcome of ``run_full``.

    ``partial`` is True when exactly one parallel phase failed; its message
    is in ``phase_errors`` keyed by stage name.
    """

    model_config = ConfigDict(frozen=True)

    artist_id: str
    success: bool
    partial: bool = False
    stats: ImportStats = Field(default_factory=ImportStats)
    phase_errors: dict[str, str] = Field(default_factory=dict)
    shows: ShowsIngestResult | None = None
    catalog: CatalogIngestResult | None = None
    preseed: PreseedResult | None = None
    error: str | None = None


class InitiateResult(BaseModel):
    """Outcome of ``initiate``: enough to route the caller to the artist page."""

    model_config = ConfigDict(frozen=True)

    id: str
    slug: str
    name: str
    tm_attraction_id: str
    spotify_id: str | None = None
    genres: list[str] = Field(default_factory=list)
    followers: int | None = None
    popularity: int | None = None
    image_url: str | None = None
