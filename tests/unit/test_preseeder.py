"""Unit tests for SetlistPreseeder."""

from __future__ import annotations

import random
from datetime import date

import pytest

from setlist_import.models.canonical import (
    CanonicalArtist,
    CanonicalShow,
    CanonicalSong,
    CanonicalVenue,
)
from setlist_import.providers.store.sqlite_store import SQLiteCanonicalStore
from setlist_import.services.setlist_preseeder import SetlistPreseeder

TODAY = date(2030, 1, 1)


async def _seed(
    store: SQLiteCanonicalStore,
    shows: int = 2,
    songs: list[CanonicalSong] | None = None,
) -> int:
    artist_id = await store.upsert_artist(
        CanonicalArtist(tm_attraction_id="K8vZ917G1Y7", name="The Testers", slug="the-testers")
    )
    venue_id, _ = await store.upsert_venue(
        CanonicalVenue(tm_venue_id="V1", name="Madison Square Garden", slug="msg")
    )
    for i in range(shows):
        await store.upsert_show(
            CanonicalShow(
                tm_event_id=f"E{i}",
                headliner_artist_id=artist_id,
                venue_id=venue_id,
                date=date(2030, 6, i + 1),
            )
        )
    if songs:
        ids = await store.upsert_songs(songs)
        await store.link_artist_songs(artist_id, list(ids.values()))
    return artist_id


def _songs(count: int) -> list[CanonicalSong]:
    return [
        CanonicalSong(spotify_id=f"s{i}", name=f"Song {i}", popularity=100 - i)
        for i in range(count)
    ]


def _preseeder(store: SQLiteCanonicalStore, seed: int = 7, **kwargs) -> SetlistPreseeder:
    return SetlistPreseeder(store, rng=random.Random(seed), today=lambda: TODAY, **kwargs)


class FailingSetlistStore(SQLiteCanonicalStore):
    async def create_setlist(self, show_id, artist_id, name, song_ids, is_prediction=True):
        raise RuntimeError("setlists table locked")


class TestPreseed:
    @pytest.mark.asyncio
    async def test_creates_one_setlist_per_upcoming_show(
        self, store: SQLiteCanonicalStore
    ) -> None:
        artist_id = await _seed(store, shows=3, songs=_songs(10))

        result = await _preseeder(store).preseed(artist_id)

        assert result.shows_processed == 3
        assert result.setlists_created == 3
        assert result.songs_added == 15
        assert result.skipped_shows == 0
        assert await store.count_rows("setlists") == 3

    @pytest.mark.asyncio
    async def test_second_run_finds_nothing_to_do(self, store: SQLiteCanonicalStore) -> None:
        artist_id = await _seed(store, songs=_songs(10))
        await _preseeder(store).preseed(artist_id)

        again = await _preseeder(store).preseed(artist_id)

        assert again.shows_processed == 0
        assert await store.count_rows("setlists") == 2

    @pytest.mark.asyncio
    async def test_no_songs_skips_every_show(self, store: SQLiteCanonicalStore) -> None:
        artist_id = await _seed(store, shows=2)

        result = await _preseeder(store).preseed(artist_id)

        assert result.skipped_shows == 2
        assert result.setlists_created == 0
        assert await store.count_rows("setlists") == 0

    @pytest.mark.asyncio
    async def test_live_songs_excluded_from_pool(self, store: SQLiteCanonicalStore) -> None:
        songs = [
            CanonicalSong(spotify_id="s1", name="Yellow (Live)", popularity=99),
            CanonicalSong(spotify_id="s2", name="Encore Jam", popularity=98, is_live=True),
            CanonicalSong(spotify_id="s3", name="Clocks", popularity=50),
        ]
        artist_id = await _seed(store, shows=1, songs=songs)

        preseeder = _preseeder(store)
        pool = await preseeder._song_pool(artist_id)

        assert [s.name for s in pool] == ["Clocks"]

    @pytest.mark.asyncio
    async def test_pool_limited_to_most_popular(self, store: SQLiteCanonicalStore) -> None:
        artist_id = await _seed(store, shows=1, songs=_songs(10))

        pool = await _preseeder(store, pool_size=3)._song_pool(artist_id)

        assert [s.name for s in pool] == ["Song 0", "Song 1", "Song 2"]

    @pytest.mark.asyncio
    async def test_small_pool_uses_every_song(self, store: SQLiteCanonicalStore) -> None:
        artist_id = await _seed(store, shows=1, songs=_songs(2))

        result = await _preseeder(store, songs_per_setlist=5).preseed(artist_id)

        assert result.songs_added == 2

    @pytest.mark.asyncio
    async def test_create_failure_counts_as_skipped(self, tmp_path) -> None:
        store = FailingSetlistStore(tmp_path / "locked.db")
        await store.initialize()
        try:
            artist_id = await _seed(store, shows=2, songs=_songs(5))

            result = await _preseeder(store).preseed(artist_id)

            assert result.shows_processed == 2
            assert result.skipped_shows == 2
            assert result.setlists_created == 0
        finally:
            await store.close()


class TestPick:
    @pytest.mark.asyncio
    async def test_same_seed_same_picks(self, store: SQLiteCanonicalStore) -> None:
        artist_id = await _seed(store, shows=1, songs=_songs(20))
        pool = await _preseeder(store)._song_pool(artist_id)

        first = _preseeder(store, seed=11)._pick(pool)
        second = _preseeder(store, seed=11)._pick(pool)

        assert [s.id for s in first] == [s.id for s in second]
        assert len(first) == 5

    @pytest.mark.asyncio
    async def test_weighted_picks_are_distinct(self, store: SQLiteCanonicalStore) -> None:
        artist_id = await _seed(store, shows=1, songs=_songs(8))
        preseeder = _preseeder(store, weight_by_popularity=True, songs_per_setlist=6)
        pool = await preseeder._song_pool(artist_id)

        picks = preseeder._pick(pool)

        assert len(picks) == 6
        assert len({s.id for s in picks}) == 6
