"""Abstract base class for music-metadata providers.

Paginated listings (albums, album tracks) are drained by the adapter;
batched lookups (track details, audio features) accept any number of ids
and split them into provider-sized requests.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Sequence

from setlist_import.models.external import (
    AudioFeatures,
    ExternalAlbum,
    ExternalArtistProfile,
    ExternalTrack,
)


class IMetadataProvider(ABC):
    """Contract for catalog lookups against a music-metadata service."""

    @abstractmethod
    async def authenticate(self) -> None:
        """Obtain (or refresh) credentials.  Idempotent while a token is valid.

        Raises
        ------
        ConfigurationError
            If credentials are not configured.
        TransientProviderError
            If the token endpoint is temporarily failing.
        """

    @abstractmethod
    async def get_artist(self, artist_id: str) -> ExternalArtistProfile | None:
        """Return the artist's profile, or ``None`` when unknown."""

    @abstractmethod
    async def get_artist_albums(self, artist_id: str) -> list[ExternalAlbum]:
        """Return every album and single by the artist (all pages)."""

    @abstractmethod
    async def get_album_tracks(self, album: ExternalAlbum) -> list[ExternalTrack]:
        """Return every simplified track on *album* (all pages)."""

    @abstractmethod
    async def get_tracks_details(self, track_ids: Sequence[str]) -> list[ExternalTrack]:
        """Return full track records (ISRC, popularity) for *track_ids*."""

    @abstractmethod
    async def get_audio_features(self, track_ids: Sequence[str]) -> list[AudioFeatures]:
        """Return audio features for *track_ids*.

        Batches the provider refuses (403) are skipped, so the result may
        cover only some of the ids.
        """

    @abstractmethod
    def get_provider_name(self) -> str:
        """Return a short identifier such as ``"spotify"``."""
