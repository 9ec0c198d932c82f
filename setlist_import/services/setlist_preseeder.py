"""Predicted setlists for upcoming shows.

Every upcoming show that has no setlist yet gets a "Predicted Setlist" of
``songs_per_setlist`` songs drawn from the artist's most popular studio
songs, so show pages have something to vote on before anyone has reported
a real setlist.
"""

from __future__ import annotations

import random
from collections.abc import Callable
from datetime import date, datetime, timezone

import structlog

from setlist_import.interfaces.store_provider import ICanonicalStore
from setlist_import.models.canonical import StoredSong
from setlist_import.models.results import PreseedResult
from setlist_import.utils.logging import get_logger
from setlist_import.utils.text import is_live_title


def _utc_today() -> date:
    return datetime.now(tz=timezone.utc).date()  # noqa: UP017


class SetlistPreseeder:
    """Creates predicted setlists for an artist's upcoming shows.

    Parameters
    ----------
    store:
        Canonical store.
    songs_per_setlist:
        Songs placed in each predicted setlist.
    pool_size:
        Only the top ``pool_size`` songs by popularity are eligible.
    catalog_limit:
        How many top songs to read from the store before filtering.
    weight_by_popularity:
        Draw songs weighted by popularity instead of uniformly.
    exclude_live:
        Skip songs whose titles carry live markers.
    setlist_name:
        Name given to every predicted setlist.
    rng:
        Randomness source; seed it for reproducible picks.
    today:
        Returns the date shows are compared against.
    """

    def __init__(
        self,
        store: ICanonicalStore,
        songs_per_setlist: int = 5,
        pool_size: int = 25,
        catalog_limit: int = 100,
        weight_by_popularity: bool = False,
        exclude_live: bool = True,
        setlist_name: str = "Predicted Setlist",
        rng: random.Random | None = None,
        today: Callable[[], date] = _utc_today,
    ) -> None:
        self._store = store
        self._songs_per_setlist = songs_per_setlist
        self._pool_size = pool_size
        self._catalog_limit = catalog_limit
        self._weight_by_popularity = weight_by_popularity
        self._exclude_live = exclude_live
        self._setlist_name = setlist_name
        self._rng = rng or random.Random()
        self._today = today
        self._logger: structlog.BoundLogger = get_logger(__name__)

    async def preseed(self, artist_id: int) -> PreseedResult:
        result = PreseedResult()
        shows = await self._store.list_upcoming_shows_without_setlist(artist_id, self._today())
        if not shows:
            return result

        pool = await self._song_pool(artist_id)
        if not pool:
            result.skipped_shows = len(shows)
            self._logger.info(
                "preseed_skipped_no_songs", artist_id=artist_id, shows=len(shows)
            )
            return result

        for show in shows:
            result.shows_processed += 1
            picks = self._pick(pool)
            try:
                await self._store.create_setlist(
                    show.id,
                    artist_id,
                    self._setlist_name,
                    [song.id for song in picks],
                    is_prediction=True,
                )
            except Exception as exc:
                result.skipped_shows += 1
                self._logger.warning(
                    "preseed_setlist_failed", show_id=show.id, error=str(exc)
                )
                continue
            result.setlists_created += 1
            result.songs_added += len(picks)

        self._logger.info(
            "preseed_complete",
            artist_id=artist_id,
            shows_processed=result.shows_processed,
            setlists_created=result.setlists_created,
            songs_added=result.songs_added,
            skipped_shows=result.skipped_shows,
        )
        return result

    async def _song_pool(self, artist_id: int) -> list[StoredSong]:
        songs = await self._store.list_top_songs(artist_id, limit=self._catalog_limit)
        if self._exclude_live:
            songs = [s for s in songs if not s.is_live and not is_live_title(s.name)]
        return songs[: self._pool_size]

    def _pick(self, pool: list[StoredSong]) -> list[StoredSong]:
        count = min(self._songs_per_setlist, len(pool))
        if not self._weight_by_popularity:
            return self._rng.sample(pool, count)

        remaining = list(pool)
        picks: list[StoredSong] = []
        for _ in range(count):
            weights = [s.popularity + 1 for s in remaining]
            choice = self._rng.choices(range(len(remaining)), weights=weights)[0]
            picks.append(remaining.pop(choice))
        return picks
