"""Unit tests for WrapUpService and the trending score."""

from __future__ import annotations

from datetime import date
from unittest.mock import AsyncMock, MagicMock

import pytest

from setlist_import.models.canonical import StoredArtist
from setlist_import.services.wrap_up import WrapUpService, trending_score
from setlist_import.utils.errors import WrapUpError

TODAY = date(2030, 1, 1)


def _mock_store(artist: StoredArtist | None) -> MagicMock:
    store = MagicMock()
    store.get_artist = AsyncMock(return_value=artist)
    store.count_upcoming_shows = AsyncMock(return_value=2)
    store.count_artist_rows = AsyncMock(return_value={"songs": 10, "shows": 2, "venues": 1})
    store.update_trending_score = AsyncMock()
    return store


def _artist(**overrides) -> StoredArtist:
    data = {
        "id": 42,
        "tm_attraction_id": "K8vZ917G1Y7",
        "name": "The Testers",
        "slug": "the-testers",
        "followers": 0,
        "popularity": 50,
    }
    data.update(overrides)
    return StoredArtist(**data)


class TestTrendingScore:
    def test_known_value(self) -> None:
        assert trending_score(2, 10, 0, 50) == 37.4

    def test_missing_audience_data_counts_as_zero(self) -> None:
        assert trending_score(0, 0, None, None) == 0.0

    def test_more_shows_rank_higher(self) -> None:
        assert trending_score(3, 10, 1000, 50) > trending_score(1, 10, 1000, 50)


class TestWrapUpService:
    @pytest.mark.asyncio
    async def test_invalidates_and_updates_score(self) -> None:
        invalidator = MagicMock()
        invalidator.invalidate = AsyncMock()
        store = _mock_store(_artist())
        service = WrapUpService(invalidator, store, today=lambda: TODAY)

        score = await service.run(42)

        assert score == 37.4
        invalidator.invalidate.assert_awaited_once_with("42")
        store.count_upcoming_shows.assert_awaited_once_with(42, TODAY)
        store.update_trending_score.assert_awaited_once_with(42, 37.4)

    @pytest.mark.asyncio
    async def test_recompute_disabled_returns_none(self) -> None:
        invalidator = MagicMock()
        invalidator.invalidate = AsyncMock()
        store = _mock_store(_artist())
        service = WrapUpService(invalidator, store, recompute_trending=False)

        assert await service.run(42) is None
        invalidator.invalidate.assert_awaited_once_with("42")
        store.update_trending_score.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_store_failure_wrapped(self) -> None:
        invalidator = MagicMock()
        invalidator.invalidate = AsyncMock()
        store = _mock_store(_artist())
        store.update_trending_score = AsyncMock(side_effect=RuntimeError("database is locked"))
        service = WrapUpService(invalidator, store, today=lambda: TODAY)

        with pytest.raises(WrapUpError, match="database is locked") as exc_info:
            await service.run(42)
        assert isinstance(exc_info.value.__cause__, RuntimeError)

    @pytest.mark.asyncio
    async def test_invalidation_failure_wrapped(self) -> None:
        invalidator = MagicMock()
        invalidator.invalidate = AsyncMock(side_effect=ConnectionError("cache offline"))
        service = WrapUpService(invalidator, _mock_store(_artist()))

        with pytest.raises(WrapUpError, match="cache offline"):
            await service.run(42)

    @pytest.mark.asyncio
    async def test_missing_artist_raises(self) -> None:
        invalidator = MagicMock()
        invalidator.invalidate = AsyncMock()
        service = WrapUpService(invalidator, _mock_store(None), today=lambda: TODAY)

        with pytest.raises(WrapUpError, match="vanished"):
            await service.run(42)
