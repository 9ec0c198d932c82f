"""Music-metadata providers."""

from setlist_import.providers.metadata.spotify_provider import (
    SpotifyProvider,
    register_spotify_executors,
)

__all__ = ["SpotifyProvider", "register_spotify_executors"]
