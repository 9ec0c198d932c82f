"""Post-import wrap-up: cache invalidation and trending score."""

from __future__ import annotations

import math
from collections.abc import Callable
from datetime import date, datetime, timezone

import structlog

from setlist_import.interfaces.cache_provider import ICacheInvalidator
from setlist_import.interfaces.store_provider import ICanonicalStore
from setlist_import.utils.errors import WrapUpError
from setlist_import.utils.logging import get_logger


def _utc_today() -> date:
    return datetime.now(tz=timezone.utc).date()  # noqa: UP017


def trending_score(
    upcoming_shows: int, total_songs: int, followers: int | None, popularity: int | None
) -> float:
    """Score an artist for the trending list.

    Upcoming shows dominate; audience size and catalog depth contribute
    logarithmically so that very large artists do not swamp the list.
    """
    score = (
        upcoming_shows * 5.0
        + math.log1p(max(0, followers or 0)) * 1.5
        + (popularity or 0) * 0.5
        + math.log1p(max(0, total_songs))
    )
    return round(score, 2)


class WrapUpService:
    """Runs the best-effort steps after an import's data is written."""

    def __init__(
        self,
        invalidator: ICacheInvalidator,
        store: ICanonicalStore,
        recompute_trending: bool = True,
        today: Callable[[], date] = _utc_today,
    ) -> None:
        self._invalidator = invalidator
        self._store = store
        self._recompute_trending = recompute_trending
        self._today = today
        self._logger: structlog.BoundLogger = get_logger(__name__)

    async def run(self, artist_id: int) -> float | None:
        """Invalidate cached artist data and, when enabled, refresh trending.

        Returns
        -------
        float or None
            The new trending score, or ``None`` when recomputation is off.

        Raises
        ------
        WrapUpError
            Wrapping whatever failed.
        """
        try:
            await self._invalidator.invalidate(str(artist_id))
            if not self._recompute_trending:
                return None

            artist = await self._store.get_artist(artist_id)
            if artist is None:
                raise WrapUpError(message=f"Artist {artist_id} vanished before wrap-up")
            upcoming = await self._store.count_upcoming_shows(artist_id, self._today())
            counts = await self._store.count_artist_rows(artist_id)
            score = trending_score(
                upcoming, counts.get("songs", 0), artist.followers, artist.popularity
            )
            await self._store.update_trending_score(artist_id, score)
        except WrapUpError:
            raise
        except Exception as exc:
            raise WrapUpError(message=f"Wrap-up failed: {exc}") from exc

        self._logger.info(
            "trending_score_updated", artist_id=artist_id, score=score, upcoming_shows=upcoming
        )
        return score
