"""Spotify Web API adapter (client-credentials flow).

Endpoints used:

* ``POST https://accounts.spotify.com/api/token``        -- app token
* ``GET /artists/{id}``                                  -- profile
* ``GET /artists/{id}/albums?include_groups=album,single&limit=50&market=US``
* ``GET /albums/{id}/tracks?limit=50``                   -- follows ``next``
* ``GET /tracks?ids=..``          (max 50 ids per call)
* ``GET /audio-features?ids=..``  (max 100 ids per call, 403 -> skipped)

The access token is cached until five minutes before it expires.  All
calls retry transient failures through :func:`retry_async` and, when a
breaker is supplied, pass through the ``spotify`` circuit breaker.

:func:`register_spotify_executors` wires the two batched lookups into the
:class:`BatchAPIOptimizer` so catalog ingest can request one track at a
time and still hit Spotify with full batches.
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Awaitable, Callable, Sequence
from typing import Any, TypeVar

import httpx

from setlist_import.interfaces.metadata_provider import IMetadataProvider
from setlist_import.models.external import (
    AudioFeatures,
    ExternalAlbum,
    ExternalArtistProfile,
    ExternalTrack,
)
from setlist_import.pipeline.batch_optimizer import BatchAPIOptimizer
from setlist_import.pipeline.circuit_breaker import CircuitBreaker
from setlist_import.providers.http import json_or_none, send
from setlist_import.utils.errors import ConfigurationError, ProviderError, TransientProviderError
from setlist_import.utils.logging import get_logger
from setlist_import.utils.retry import RetryPolicy, retry_async

_API_URL = "https://api.spotify.com/v1"
_TOKEN_URL = "https://accounts.spotify.com/api/token"
_TOKEN_EXPIRY_BUFFER_S = 300
_TRACKS_BATCH = 50
_FEATURES_BATCH = 100
_PROVIDER = "spotify"

_T = TypeVar("_T")


def _chunks(items: Sequence[str], size: int) -> list[list[str]]:
    return [list(items[i : i + size]) for i in range(0, len(items), size)]


class SpotifyProvider(IMetadataProvider):
    """Catalog lookups against the Spotify Web API.

    Parameters
    ----------
    http_client:
        Injected ``httpx.AsyncClient``.
    client_id, client_secret:
        App credentials for the client-credentials grant.
    retry_policy:
        Backoff parameters for transient failures.
    breaker:
        Optional circuit breaker shared with the batch optimizer.
    clock:
        Wall-clock seconds used for token expiry; injectable for tests.
    """

    def __init__(
        self,
        http_client: httpx.AsyncClient,
        client_id: str,
        client_secret: str,
        retry_policy: RetryPolicy | None = None,
        breaker: CircuitBreaker | None = None,
        api_url: str = _API_URL,
        token_url: str = _TOKEN_URL,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._http = http_client
        self._client_id = client_id
        self._client_secret = client_secret
        self._retry_policy = retry_policy or RetryPolicy(
            max_retries=3, backoff_multiplier=2, initial_delay_ms=1000
        )
        self._breaker = breaker
        self._api_url = api_url.rstrip("/")
        self._token_url = token_url
        self._clock = clock
        self._token: str | None = None
        self._token_expires_at: float = 0.0
        self._token_lock = asyncio.Lock()
        self._logger = get_logger(__name__)

    def get_provider_name(self) -> str:
        return _PROVIDER

    # ------------------------------------------------------------------
    # Authentication
    # ------------------------------------------------------------------

    async def authenticate(self) -> None:
        if self._token and self._clock() < self._token_expires_at:
            return
        if not self._client_id or not self._client_secret:
            raise ConfigurationError(
                message="SPOTIFY_CLIENT_ID / SPOTIFY_CLIENT_SECRET are not set",
                provider_name=_PROVIDER,
            )

        async with self._token_lock:
            if self._token and self._clock() < self._token_expires_at:
                return

            async def _exchange() -> dict[str, Any] | None:
                response = await send(
                    lambda: self._http.post(
                        self._token_url,
                        data={"grant_type": "client_credentials"},
                        auth=(self._client_id, self._client_secret),
                        timeout=30.0,
                    ),
                    _PROVIDER,
                )
                return json_or_none(response, _PROVIDER)

            data = await retry_async(
                _exchange, self._retry_policy, operation="spotify_token", logger=self._logger
            )
            if not data or "access_token" not in data:
                raise ProviderError(
                    message="Token endpoint returned no access_token", provider_name=_PROVIDER
                )
            self._token = data["access_token"]
            expires_in = float(data.get("expires_in") or 3600)
            self._token_expires_at = self._clock() + expires_in - _TOKEN_EXPIRY_BUFFER_S
            self._logger.info("spotify_token_refreshed", expires_in=expires_in)

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    async def _guarded(self, fn: Callable[[], Awaitable[_T]]) -> _T:
        if self._breaker is None:
            return await fn()
        return await self._breaker.call(fn)

    async def _get(
        self,
        path_or_url: str,
        params: dict[str, Any] | None = None,
        guarded: bool = True,
    ) -> dict[str, Any] | None:
        """GET a Spotify resource with auth.

        With ``guarded=False`` the request is attempted exactly once,
        bypassing retries and the breaker; the batch optimizer applies its
        own around each batch.
        """
        url = path_or_url if path_or_url.startswith("http") else f"{self._api_url}{path_or_url}"

        async def _once() -> dict[str, Any] | None:
            await self.authenticate()
            response = await send(
                lambda: self._http.get(
                    url,
                    params=params,
                    headers={"Authorization": f"Bearer {self._token}"},
                    timeout=30.0,
                ),
                _PROVIDER,
            )
            if response.status_code == 401:
                # Token revoked or expired early: refresh on the next attempt.
                self._token = None
                raise TransientProviderError(
                    message="Access token rejected", provider_name=_PROVIDER, status_code=401
                )
            return json_or_none(response, _PROVIDER)

        if not guarded:
            return await _once()
        return await retry_async(
            lambda: self._guarded(_once),
            self._retry_policy,
            operation=f"spotify_get:{path_or_url.split('?')[0]}",
            logger=self._logger,
        )

    async def _get_paged(self, path: str, params: dict[str, Any]) -> list[dict[str, Any]]:
        """Follow ``next`` links until the listing is exhausted."""
        items: list[dict[str, Any]] = []
        data = await self._get(path, params)
        while data:
            items.extend(i for i in data.get("items") or [] if i)
            next_url = data.get("next")
            if not next_url:
                break
            data = await self._get(next_url)
        return items

    # ------------------------------------------------------------------
    # IMetadataProvider implementation
    # ------------------------------------------------------------------

    async def get_artist(self, artist_id: str) -> ExternalArtistProfile | None:
        data = await self._get(f"/artists/{artist_id}")
        return ExternalArtistProfile.from_api(data) if data else None

    async def get_artist_albums(self, artist_id: str) -> list[ExternalAlbum]:
        raw = await self._get_paged(
            f"/artists/{artist_id}/albums",
            {"include_groups": "album,single", "limit": 50, "market": "US"},
        )
        albums: list[ExternalAlbum] = []
        for item in raw:
            try:
                albums.append(ExternalAlbum.from_api(item))
            except Exception:
                self._logger.warning("spotify_album_parse_failed", album_data=str(item)[:200])
        return albums

    async def get_album_tracks(self, album: ExternalAlbum) -> list[ExternalTrack]:
        raw = await self._get_paged(f"/albums/{album.album_id}/tracks", {"limit": 50})
        tracks: list[ExternalTrack] = []
        for item in raw:
            try:
                tracks.append(ExternalTrack.from_api(item, album=album))
            except Exception:
                self._logger.warning("spotify_track_parse_failed", track_data=str(item)[:200])
        return tracks

    async def get_tracks_details(self, track_ids: Sequence[str]) -> list[ExternalTrack]:
        return await self._tracks_details(track_ids, guarded=True)

    async def get_audio_features(self, track_ids: Sequence[str]) -> list[AudioFeatures]:
        return await self._audio_features(track_ids, guarded=True)

    # ------------------------------------------------------------------
    # Single-attempt batch fetchers (retry/breaker applied by the caller)
    # ------------------------------------------------------------------

    async def fetch_tracks_batch(self, track_ids: Sequence[str]) -> list[ExternalTrack]:
        return await self._tracks_details(track_ids, guarded=False)

    async def fetch_audio_features_batch(self, track_ids: Sequence[str]) -> list[AudioFeatures]:
        return await self._audio_features(track_ids, guarded=False)

    async def _tracks_details(
        self, track_ids: Sequence[str], guarded: bool
    ) -> list[ExternalTrack]:
        tracks: list[ExternalTrack] = []
        for chunk in _chunks(track_ids, _TRACKS_BATCH):
            data = await self._get("/tracks", {"ids": ",".join(chunk)}, guarded=guarded)
            for item in (data or {}).get("tracks") or []:
                if not item:
                    continue
                try:
                    tracks.append(ExternalTrack.from_api(item))
                except Exception:
                    self._logger.warning("spotify_track_parse_failed", track_data=str(item)[:200])
        return tracks

    async def _audio_features(
        self, track_ids: Sequence[str], guarded: bool
    ) -> list[AudioFeatures]:
        features: list[AudioFeatures] = []
        for chunk in _chunks(track_ids, _FEATURES_BATCH):
            try:
                data = await self._get(
                    "/audio-features", {"ids": ",".join(chunk)}, guarded=guarded
                )
            except ProviderError as exc:
                if exc.status_code != 403:
                    raise
                # Restricted for newer apps: liveness falls back to titles.
                self._logger.warning("spotify_audio_features_forbidden", batch_size=len(chunk))
                continue
            for item in (data or {}).get("audio_features") or []:
                if not item or item.get("liveness") is None:
                    continue
                try:
                    features.append(AudioFeatures.from_api(item))
                except Exception:
                    self._logger.warning("spotify_features_parse_failed", data=str(item)[:200])
        return features


def register_spotify_executors(optimizer: BatchAPIOptimizer, provider: SpotifyProvider) -> None:
    """Route ``spotify:track`` and ``spotify:audio_features`` batches to *provider*.

    Each logical request carries ``{"id": <track id>}``; the executor answers
    with one value (or ``None``) per request, in order.
    """

    async def _tracks(_operation: str, params: list[dict[str, Any]]) -> list[Any]:
        ids = [p["id"] for p in params]
        by_id = {t.track_id: t for t in await provider.fetch_tracks_batch(ids)}
        return [by_id.get(i) for i in ids]

    async def _features(_operation: str, params: list[dict[str, Any]]) -> list[Any]:
        ids = [p["id"] for p in params]
        by_id = {f.track_id: f for f in await provider.fetch_audio_features_batch(ids)}
        return [by_id.get(i) for i in ids]

    name = provider.get_provider_name()
    optimizer.register_executor(name, "track", _tracks)
    optimizer.register_executor(name, "audio_features", _features)
