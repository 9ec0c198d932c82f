"""Provider-shaped records validated at the ingestion boundary.

These are transient: they describe one upstream response item and are
normalized into canonical rows before anything is written.  Each model
offers a ``from_api`` classmethod that parses the provider's raw JSON and
raises (``KeyError``, ``ValueError``, ``pydantic.ValidationError``) on a
malformed item so that providers can skip it with a warning instead of
passing untyped data downstream.
"""

from __future__ import annotations

import re
from datetime import date, time
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

_SPOTIFY_ARTIST_URL = re.compile(r"open\.spotify\.com/artist/([A-Za-z0-9]+)")
_LARGE_IMAGE_MIN_WIDTH = 500


# ---------------------------------------------------------------------------
# Ticketing provider (Ticketmaster Discovery API)
# ---------------------------------------------------------------------------


class ExternalImage(BaseModel):
    model_config = ConfigDict(frozen=True)

    url: str
    width: int | None = None
    height: int | None = None


class ExternalAttraction(BaseModel):
    """An attraction (performer) from the ticketing provider."""

    model_config = ConfigDict(frozen=True)

    attraction_id: str = Field(description="Ticketmaster attraction id.")
    name: str
    genres: list[str] = Field(default_factory=list)
    images: list[ExternalImage] = Field(default_factory=list)
    spotify_id: str | None = Field(
        default=None, description="Spotify artist id parsed from externalLinks."
    )
    mbid: str | None = Field(default=None, description="MusicBrainz id, when linked.")

    @property
    def large_image_url(self) -> str | None:
        for image in self.images:
            if (image.width or 0) >= _LARGE_IMAGE_MIN_WIDTH:
                return image.url
        return self.images[0].url if self.images else None

    @classmethod
    def from_api(cls, payload: dict[str, Any]) -> ExternalAttraction:
        genres: list[str] = []
        for classification in payload.get("classifications") or []:
            for key in ("genre", "subGenre"):
                name = (classification.get(key) or {}).get("name")
                if name and name != "Undefined" and name not in genres:
                    genres.append(name)

        links = payload.get("externalLinks") or {}
        spotify_id = None
        for link in links.get("spotify") or []:
            match = _SPOTIFY_ARTIST_URL.search(link.get("url", ""))
            if match:
                spotify_id = match.group(1)
                break
        mbid = None
        for link in links.get("musicbrainz") or []:
            if link.get("id"):
                mbid = link["id"]
                break

        return cls(
            attraction_id=str(payload["id"]),
            name=payload["name"],
            genres=genres,
            images=[ExternalImage.model_validate(i) for i in payload.get("images") or []],
            spotify_id=spotify_id,
            mbid=mbid,
        )


class ExternalVenue(BaseModel):
    """A venue embedded in a ticketing event."""

    model_config = ConfigDict(frozen=True)

    venue_id: str
    name: str
    address: str | None = None
    city: str = "Unknown"
    state: str | None = None
    country: str = "US"
    postal_code: str | None = None
    latitude: float | None = None
    longitude: float | None = None
    timezone: str = "America/New_York"

    @classmethod
    def from_api(cls, payload: dict[str, Any]) -> ExternalVenue:
        location = payload.get("location") or {}
        lat = location.get("latitude")
        lng = location.get("longitude")
        return cls(
            venue_id=str(payload["id"]),
            name=payload["name"],
            address=(payload.get("address") or {}).get("line1"),
            city=(payload.get("city") or {}).get("name") or "Unknown",
            state=(payload.get("state") or {}).get("name"),
            country=(payload.get("country") or {}).get("name") or "US",
            postal_code=payload.get("postalCode"),
            latitude=float(lat) if lat not in (None, "") else None,
            longitude=float(lng) if lng not in (None, "") else None,
            timezone=payload.get("timezone") or "America/New_York",
        )


class ExternalEvent(BaseModel):
    """One ticketing event (a show), with its first embedded venue."""

    model_config = ConfigDict(frozen=True)

    event_id: str
    name: str | None = None
    local_date: date | None = None
    local_time: time | None = None
    url: str | None = None
    min_price: float | None = None
    max_price: float | None = None
    currency: str = "USD"
    venue: ExternalVenue | None = None

    @classmethod
    def from_api(cls, payload: dict[str, Any]) -> ExternalEvent:
        start = (payload.get("dates") or {}).get("start") or {}
        prices = (payload.get("priceRanges") or [{}])[0]
        venues = (payload.get("_embedded") or {}).get("venues") or []
        venue = None
        if venues and venues[0].get("id") and venues[0].get("name"):
            venue = ExternalVenue.from_api(venues[0])
        return cls(
            event_id=str(payload["id"]),
            name=payload.get("name"),
            local_date=start.get("localDate"),
            local_time=start.get("localTime"),
            url=payload.get("url"),
            min_price=prices.get("min"),
            max_price=prices.get("max"),
            currency=prices.get("currency") or "USD",
            venue=venue,
        )


# ---------------------------------------------------------------------------
# Metadata provider (Spotify Web API)
# ---------------------------------------------------------------------------


class ExternalArtistProfile(BaseModel):
    """Secondary artist metadata looked up during ``initiate``."""

    model_config = ConfigDict(frozen=True)

    spotify_id: str
    name: str
    genres: list[str] = Field(default_factory=list)
    followers: int = 0
    popularity: int = 0
    image_url: str | None = None

    @classmethod
    def from_api(cls, payload: dict[str, Any]) -> ExternalArtistProfile:
        images = payload.get("images") or []
        return cls(
            spotify_id=payload["id"],
            name=payload["name"],
            genres=list(payload.get("genres") or []),
            followers=int((payload.get("followers") or {}).get("total") or 0),
            popularity=int(payload.get("popularity") or 0),
            image_url=images[0]["url"] if images else None,
        )


class ExternalAlbum(BaseModel):
    model_config = ConfigDict(frozen=True)

    album_id: str
    name: str
    album_type: str = "album"
    album_group: str | None = None
    release_date: str | None = None
    image_url: str | None = None

    @classmethod
    def from_api(cls, payload: dict[str, Any]) -> ExternalAlbum:
        images = payload.get("images") or []
        return cls(
            album_id=payload["id"],
            name=payload["name"],
            album_type=payload.get("album_type") or "album",
            album_group=payload.get("album_group"),
            release_date=payload.get("release_date"),
            image_url=images[0]["url"] if images else None,
        )


class ExternalTrack(BaseModel):
    """A track, either simplified (album listing) or full (track details).

    Simplified tracks carry no ``isrc`` or ``popularity``; catalog ingest
    replaces them with the detailed version before filtering.
    """

    model_config = ConfigDict(frozen=True)

    track_id: str
    name: str
    duration_ms: int = 0
    popularity: int = 0
    isrc: str | None = None
    explicit: bool = False
    is_playable: bool = True
    preview_url: str | None = None
    uri: str | None = None
    track_number: int | None = None
    disc_number: int | None = None
    artist_name: str | None = None
    album_id: str | None = None
    album_name: str | None = None
    album_art_url: str | None = None
    release_date: str | None = None

    @classmethod
    def from_api(
        cls, payload: dict[str, Any], album: ExternalAlbum | None = None
    ) -> ExternalTrack:
        album_raw = payload.get("album") or {}
        album_images = album_raw.get("images") or []
        artists = payload.get("artists") or []
        return cls(
            track_id=payload["id"],
            name=payload["name"],
            duration_ms=int(payload.get("duration_ms") or 0),
            popularity=int(payload.get("popularity") or 0),
            isrc=(payload.get("external_ids") or {}).get("isrc"),
            explicit=bool(payload.get("explicit", False)),
            is_playable=payload.get("is_playable", True) is not False,
            preview_url=payload.get("preview_url"),
            uri=payload.get("uri"),
            track_number=payload.get("track_number"),
            disc_number=payload.get("disc_number"),
            artist_name=artists[0].get("name") if artists else None,
            album_id=album_raw.get("id") or (album.album_id if album else None),
            album_name=album_raw.get("name") or (album.name if album else None),
            album_art_url=(
                album_images[0]["url"] if album_images else (album.image_url if album else None)
            ),
            release_date=album_raw.get("release_date") or (album.release_date if album else None),
        )


class AudioFeatures(BaseModel):
    model_config = ConfigDict(frozen=True)

    track_id: str
    liveness: float = Field(ge=0.0, le=1.0)

    @classmethod
    def from_api(cls, payload: dict[str, Any]) -> AudioFeatures:
        return cls(track_id=payload["id"], liveness=float(payload["liveness"]))
