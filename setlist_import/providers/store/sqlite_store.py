"""SQLite-backed canonical store and progress ledger.

Uses ``aiosqlite`` for async I/O over a single long-lived connection opened
in autocommit mode.  Every statement commits on its own unless it runs
inside :meth:`SQLiteCanonicalStore.transaction`, which takes the write lock
and wraps the block in ``BEGIN`` / ``COMMIT`` (``ROLLBACK`` on error).

All canonical writes are ``INSERT ... ON CONFLICT(<provider id>) DO UPDATE``
so re-running an import refreshes mutable columns and never duplicates a
row.  ``PRAGMA foreign_keys = ON`` makes the show -> venue reference a hard
constraint.
"""

from __future__ import annotations

import asyncio
import json
from collections.abc import AsyncIterator, Sequence
from contextlib import asynccontextmanager
from contextvars import ContextVar
from datetime import date, datetime
from pathlib import Path
from typing import Any

import aiosqlite
import structlog

from setlist_import.interfaces.store_provider import ICanonicalStore, IProgressStore
from setlist_import.models.canonical import (
    CanonicalArtist,
    CanonicalShow,
    CanonicalSong,
    CanonicalVenue,
    StoredArtist,
    StoredShow,
    StoredSong,
)
from setlist_import.models.import_job import ImportJob, ImportStage
from setlist_import.utils.errors import SetlistImportError

logger = structlog.get_logger(logger_name=__name__)

_DEFAULT_DB_PATH = Path("data/setlist_import.db")

_NOW_SQL = "strftime('%Y-%m-%dT%H:%M:%fZ', 'now')"

_CREATE_TABLES_SQL = [
    f"""\
CREATE TABLE IF NOT EXISTS artists (
    id                     INTEGER PRIMARY KEY AUTOINCREMENT,
    tm_attraction_id       TEXT    NOT NULL UNIQUE,
    name                   TEXT    NOT NULL,
    slug                   TEXT    NOT NULL,
    spotify_id             TEXT,
    mbid                   TEXT,
    genres                 TEXT    NOT NULL DEFAULT '[]',
    image_url              TEXT,
    large_image_url        TEXT,
    followers              INTEGER,
    popularity             INTEGER,
    import_status          TEXT,
    total_songs            INTEGER NOT NULL DEFAULT 0,
    trending_score         REAL    NOT NULL DEFAULT 0,
    shows_synced_at        TEXT,
    song_catalog_synced_at TEXT,
    last_full_sync_at      TEXT,
    created_at             TEXT    NOT NULL DEFAULT ({_NOW_SQL}),
    updated_at             TEXT    NOT NULL DEFAULT ({_NOW_SQL})
);""",
    f"""\
CREATE TABLE IF NOT EXISTS venues (
    id           INTEGER PRIMARY KEY AUTOINCREMENT,
    tm_venue_id  TEXT    NOT NULL UNIQUE,
    name         TEXT    NOT NULL,
    slug         TEXT    NOT NULL,
    address      TEXT,
    city         TEXT    NOT NULL,
    state        TEXT,
    country      TEXT    NOT NULL,
    postal_code  TEXT,
    latitude     REAL,
    longitude    REAL,
    timezone     TEXT    NOT NULL,
    created_at   TEXT    NOT NULL DEFAULT ({_NOW_SQL}),
    updated_at   TEXT    NOT NULL DEFAULT ({_NOW_SQL})
);""",
    f"""\
CREATE TABLE IF NOT EXISTS shows (
    id                  INTEGER PRIMARY KEY AUTOINCREMENT,
    tm_event_id         TEXT    NOT NULL UNIQUE,
    headliner_artist_id INTEGER NOT NULL REFERENCES artists(id),
    venue_id            INTEGER NOT NULL REFERENCES venues(id),
    name                TEXT,
    slug                TEXT,
    date                TEXT,
    start_time          TEXT,
    status              TEXT    NOT NULL DEFAULT 'upcoming',
    ticket_url          TEXT,
    min_price           INTEGER,
    max_price           INTEGER,
    currency            TEXT    NOT NULL DEFAULT 'USD',
    created_at          TEXT    NOT NULL DEFAULT ({_NOW_SQL}),
    updated_at          TEXT    NOT NULL DEFAULT ({_NOW_SQL})
);""",
    f"""\
CREATE TABLE IF NOT EXISTS songs (
    id            INTEGER PRIMARY KEY AUTOINCREMENT,
    spotify_id    TEXT    NOT NULL UNIQUE,
    isrc          TEXT,
    name          TEXT    NOT NULL,
    artist        TEXT,
    album_name    TEXT,
    album_id      TEXT,
    track_number  INTEGER,
    disc_number   INTEGER,
    album_art_url TEXT,
    release_date  TEXT,
    duration_ms   INTEGER NOT NULL DEFAULT 0,
    popularity    INTEGER NOT NULL DEFAULT 0,
    preview_url   TEXT,
    uri           TEXT,
    explicit      INTEGER NOT NULL DEFAULT 0,
    is_playable   INTEGER NOT NULL DEFAULT 1,
    is_live       INTEGER NOT NULL DEFAULT 0,
    created_at    TEXT    NOT NULL DEFAULT ({_NOW_SQL}),
    updated_at    TEXT    NOT NULL DEFAULT ({_NOW_SQL})
);""",
    """\
CREATE TABLE IF NOT EXISTS artist_songs (
    artist_id         INTEGER NOT NULL REFERENCES artists(id),
    song_id           INTEGER NOT NULL REFERENCES songs(id),
    is_primary_artist INTEGER NOT NULL DEFAULT 1,
    PRIMARY KEY (artist_id, song_id)
);""",
    f"""\
CREATE TABLE IF NOT EXISTS setlists (
    id           INTEGER PRIMARY KEY AUTOINCREMENT,
    show_id      INTEGER NOT NULL REFERENCES shows(id),
    artist_id    INTEGER NOT NULL REFERENCES artists(id),
    name         TEXT    NOT NULL,
    type         TEXT    NOT NULL DEFAULT 'predicted',
    is_locked    INTEGER NOT NULL DEFAULT 0,
    created_at   TEXT    NOT NULL DEFAULT ({_NOW_SQL})
);""",
    """\
CREATE TABLE IF NOT EXISTS setlist_songs (
    id          INTEGER PRIMARY KEY AUTOINCREMENT,
    setlist_id  INTEGER NOT NULL REFERENCES setlists(id),
    song_id     INTEGER NOT NULL REFERENCES songs(id),
    position    INTEGER NOT NULL,
    UNIQUE (setlist_id, position)
);""",
    """\
CREATE TABLE IF NOT EXISTS import_status (
    job_id        TEXT    PRIMARY KEY,
    stage         TEXT    NOT NULL,
    progress      REAL    NOT NULL,
    message       TEXT    NOT NULL DEFAULT '',
    error         TEXT,
    phase_timings TEXT    NOT NULL DEFAULT '{}',
    metadata      TEXT    NOT NULL DEFAULT '{}',
    started_at    TEXT    NOT NULL,
    updated_at    TEXT    NOT NULL,
    completed_at  TEXT
);""",
]

_CREATE_INDICES_SQL = [
    "CREATE INDEX IF NOT EXISTS idx_artists_slug ON artists(slug);",
    "CREATE INDEX IF NOT EXISTS idx_shows_artist_date ON shows(headliner_artist_id, date);",
    "CREATE INDEX IF NOT EXISTS idx_songs_isrc ON songs(isrc);",
    "CREATE INDEX IF NOT EXISTS idx_setlists_show ON setlists(show_id);",
    "CREATE INDEX IF NOT EXISTS idx_import_status_stage ON import_status(stage);",
]

_UPSERT_ARTIST_SQL = f"""\
INSERT INTO artists (tm_attraction_id, name, slug, spotify_id, mbid, genres,
                     image_url, large_image_url, followers, popularity)
VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
ON CONFLICT(tm_attraction_id)
DO UPDATE SET name            = excluded.name,
              slug            = excluded.slug,
              spotify_id      = COALESCE(excluded.spotify_id, artists.spotify_id),
              mbid            = COALESCE(excluded.mbid, artists.mbid),
              genres          = CASE WHEN excluded.genres = '[]'
                                     THEN artists.genres ELSE excluded.genres END,
              image_url       = COALESCE(excluded.image_url, artists.image_url),
              large_image_url = COALESCE(excluded.large_image_url, artists.large_image_url),
              followers       = COALESCE(excluded.followers, artists.followers),
              popularity      = COALESCE(excluded.popularity, artists.popularity),
              updated_at      = {_NOW_SQL};
"""

_UPSERT_VENUE_SQL = f"""\
INSERT INTO venues (tm_venue_id, name, slug, address, city, state, country,
                    postal_code, latitude, longitude, timezone)
VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
ON CONFLICT(tm_venue_id)
DO UPDATE SET name        = excluded.name,
              slug        = excluded.slug,
              address     = excluded.address,
              city        = excluded.city,
              state       = excluded.state,
              country     = excluded.country,
              postal_code = excluded.postal_code,
              latitude    = excluded.latitude,
              longitude   = excluded.longitude,
              timezone    = excluded.timezone,
              updated_at  = {_NOW_SQL};
"""

_UPSERT_SHOW_SQL = f"""\
INSERT INTO shows (tm_event_id, headliner_artist_id, venue_id, name, slug, date,
                   start_time, status, ticket_url, min_price, max_price, currency)
VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
ON CONFLICT(tm_event_id)
DO UPDATE SET venue_id   = excluded.venue_id,
              name       = excluded.name,
              slug       = excluded.slug,
              date       = excluded.date,
              start_time = excluded.start_time,
              status     = excluded.status,
              ticket_url = excluded.ticket_url,
              min_price  = excluded.min_price,
              max_price  = excluded.max_price,
              currency   = excluded.currency,
              updated_at = {_NOW_SQL};
"""

_UPSERT_SONG_SQL = f"""\
INSERT INTO songs (spotify_id, isrc, name, artist, album_name, album_id,
                   track_number, disc_number, album_art_url, release_date,
                   duration_ms, popularity, preview_url, uri, explicit,
                   is_playable, is_live)
VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
ON CONFLICT(spotify_id)
DO UPDATE SET popularity    = excluded.popularity,
              is_playable   = excluded.is_playable,
              album_art_url = excluded.album_art_url,
              preview_url   = excluded.preview_url,
              updated_at    = {_NOW_SQL};
"""

_LINK_SQL = """\
INSERT INTO artist_songs (artist_id, song_id, is_primary_artist)
VALUES (?, ?, 1)
ON CONFLICT(artist_id, song_id) DO NOTHING;
"""

_UPSERT_PROGRESS_SQL = """\
INSERT INTO import_status (job_id, stage, progress, message, error,
                           phase_timings, metadata, started_at, updated_at,
                           completed_at)
VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
ON CONFLICT(job_id)
DO UPDATE SET stage         = excluded.stage,
              progress      = excluded.progress,
              message       = excluded.message,
              error         = excluded.error,
              phase_timings = excluded.phase_timings,
              metadata      = excluded.metadata,
              updated_at    = excluded.updated_at,
              completed_at  = excluded.completed_at;
"""


def _iso(value: date | datetime | Any | None) -> str | None:
    return value.isoformat() if value is not None else None


class SQLiteCanonicalStore(ICanonicalStore, IProgressStore):
    """Canonical store and progress ledger in one SQLite database.

    Parameters
    ----------
    db_path:
        Database file path.  ``":memory:"`` keeps everything in the
        connection (useful for tests).
    """

    def __init__(self, db_path: str | Path = _DEFAULT_DB_PATH) -> None:
        self._db_path = str(db_path)
        self._db: aiosqlite.Connection | None = None
        self._write_lock = asyncio.Lock()
        self._in_transaction: ContextVar[bool] = ContextVar(
            f"sqlite_tx_{id(self)}", default=False
        )

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def initialize(self) -> None:
        """Open the connection and create tables/indices if missing."""
        if self._db is not None:
            return
        if self._db_path != ":memory:":
            Path(self._db_path).parent.mkdir(parents=True, exist_ok=True)
        self._db = await aiosqlite.connect(self._db_path, isolation_level=None)
        self._db.row_factory = aiosqlite.Row
        await self._db.execute("PRAGMA foreign_keys = ON;")
        for sql in _CREATE_TABLES_SQL:
            await self._db.execute(sql)
        for sql in _CREATE_INDICES_SQL:
            await self._db.execute(sql)
        logger.info("canonical_store_initialized", path=self._db_path)

    async def close(self) -> None:
        if self._db is not None:
            await self._db.close()
            self._db = None

    def get_provider_name(self) -> str:
        return "sqlite"

    @property
    def _conn(self) -> aiosqlite.Connection:
        if self._db is None:
            raise SetlistImportError(
                message="Store used before initialize()", provider_name="sqlite"
            )
        return self._db

    # ------------------------------------------------------------------
    # Transactions
    # ------------------------------------------------------------------

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[None]:
        """Run the enclosed writes atomically.

        Nested use inside an open transaction joins the outer one.
        """
        if self._in_transaction.get():
            yield
            return

        async with self._write_lock:
            token = self._in_transaction.set(True)
            await self._conn.execute("BEGIN")
            try:
                yield
            except BaseException:
                await self._conn.execute("ROLLBACK")
                raise
            else:
                await self._conn.execute("COMMIT")
            finally:
                self._in_transaction.reset(token)

    @asynccontextmanager
    async def _writing(self) -> AsyncIterator[aiosqlite.Connection]:
        """Serialize a standalone write, or join the caller's transaction."""
        if self._in_transaction.get():
            yield self._conn
            return
        async with self._write_lock:
            yield self._conn

    async def _fetch_id(self, sql: str, params: tuple[Any, ...]) -> int | None:
        cursor = await self._conn.execute(sql, params)
        row = await cursor.fetchone()
        return int(row[0]) if row else None

    # ------------------------------------------------------------------
    # Artists
    # ------------------------------------------------------------------

    async def upsert_artist(self, artist: CanonicalArtist) -> int:
        async with self._writing() as db:
            await db.execute(
                _UPSERT_ARTIST_SQL,
                (
                    artist.tm_attraction_id,
                    artist.name,
                    artist.slug,
                    artist.spotify_id,
                    artist.mbid,
                    json.dumps(artist.genres),
                    artist.image_url,
                    artist.large_image_url,
                    artist.followers,
                    artist.popularity,
                ),
            )
            artist_id = await self._fetch_id(
                "SELECT id FROM artists WHERE tm_attraction_id = ?",
                (artist.tm_attraction_id,),
            )
        if artist_id is None:
            raise SetlistImportError(
                message=f"Artist upsert returned no row: {artist.tm_attraction_id}",
                provider_name="sqlite",
            )
        return artist_id

    async def get_artist(self, artist_id: int) -> StoredArtist | None:
        cursor = await self._conn.execute("SELECT * FROM artists WHERE id = ?", (artist_id,))
        row = await cursor.fetchone()
        if row is None:
            return None
        data = dict(row)
        return StoredArtist(
            id=data["id"],
            tm_attraction_id=data["tm_attraction_id"],
            name=data["name"],
            slug=data["slug"],
            spotify_id=data["spotify_id"],
            mbid=data["mbid"],
            genres=json.loads(data["genres"] or "[]"),
            image_url=data["image_url"],
            large_image_url=data["large_image_url"],
            followers=data["followers"],
            popularity=data["popularity"],
            import_status=data["import_status"],
            total_songs=data["total_songs"],
            trending_score=data["trending_score"],
        )

    async def update_artist_sync(
        self,
        artist_id: int,
        *,
        import_status: str | None = None,
        shows_synced: bool = False,
        catalog_synced: bool = False,
        full_sync: bool = False,
        total_songs: int | None = None,
    ) -> None:
        assignments = [f"updated_at = {_NOW_SQL}"]
        params: list[Any] = []
        if import_status is not None:
            assignments.append("import_status = ?")
            params.append(import_status)
        if total_songs is not None:
            assignments.append("total_songs = ?")
            params.append(total_songs)
        if shows_synced:
            assignments.append(f"shows_synced_at = {_NOW_SQL}")
        if catalog_synced:
            assignments.append(f"song_catalog_synced_at = {_NOW_SQL}")
        if full_sync:
            assignments.append(f"last_full_sync_at = {_NOW_SQL}")
        params.append(artist_id)

        async with self._writing() as db:
            await db.execute(
                f"UPDATE artists SET {', '.join(assignments)} WHERE id = ?",  # noqa: S608
                tuple(params),
            )

    async def update_trending_score(self, artist_id: int, score: float) -> None:
        async with self._writing() as db:
            await db.execute(
                f"UPDATE artists SET trending_score = ?, updated_at = {_NOW_SQL} WHERE id = ?",
                (score, artist_id),
            )

    # ------------------------------------------------------------------
    # Venues & shows
    # ------------------------------------------------------------------

    async def upsert_venue(self, venue: CanonicalVenue) -> tuple[int, bool]:
        async with self._writing() as db:
            existing = await self._fetch_id(
                "SELECT id FROM venues WHERE tm_venue_id = ?", (venue.tm_venue_id,)
            )
            await db.execute(
                _UPSERT_VENUE_SQL,
                (
                    venue.tm_venue_id,
                    venue.name,
                    venue.slug,
                    venue.address,
                    venue.city,
                    venue.state,
                    venue.country,
                    venue.postal_code,
                    venue.latitude,
                    venue.longitude,
                    venue.timezone,
                ),
            )
            venue_id = existing or await self._fetch_id(
                "SELECT id FROM venues WHERE tm_venue_id = ?", (venue.tm_venue_id,)
            )
        if venue_id is None:
            raise SetlistImportError(
                message=f"Venue upsert returned no row: {venue.tm_venue_id}",
                provider_name="sqlite",
            )
        return venue_id, existing is None

    async def upsert_show(self, show: CanonicalShow) -> tuple[int, bool]:
        async with self._writing() as db:
            existing = await self._fetch_id(
                "SELECT id FROM shows WHERE tm_event_id = ?", (show.tm_event_id,)
            )
            await db.execute(
                _UPSERT_SHOW_SQL,
                (
                    show.tm_event_id,
                    show.headliner_artist_id,
                    show.venue_id,
                    show.name,
                    show.slug,
                    _iso(show.date),
                    _iso(show.start_time),
                    show.status,
                    show.ticket_url,
                    show.min_price,
                    show.max_price,
                    show.currency,
                ),
            )
            show_id = existing or await self._fetch_id(
                "SELECT id FROM shows WHERE tm_event_id = ?", (show.tm_event_id,)
            )
        if show_id is None:
            raise SetlistImportError(
                message=f"Show upsert returned no row: {show.tm_event_id}",
                provider_name="sqlite",
            )
        return show_id, existing is None

    async def list_upcoming_shows_without_setlist(
        self, artist_id: int, today: date
    ) -> list[StoredShow]:
        cursor = await self._conn.execute(
            "SELECT s.id, s.tm_event_id, s.date, s.name FROM shows s "
            "WHERE s.headliner_artist_id = ? AND s.status = 'upcoming' "
            "AND s.date >= ? "
            "AND NOT EXISTS (SELECT 1 FROM setlists sl WHERE sl.show_id = s.id) "
            "ORDER BY s.date, s.id",
            (artist_id, today.isoformat()),
        )
        rows = await cursor.fetchall()
        return [
            StoredShow(
                id=r["id"],
                tm_event_id=r["tm_event_id"],
                date=date.fromisoformat(r["date"]) if r["date"] else None,
                name=r["name"],
            )
            for r in rows
        ]

    async def count_upcoming_shows(self, artist_id: int, today: date) -> int:
        cursor = await self._conn.execute(
            "SELECT COUNT(*) FROM shows WHERE headliner_artist_id = ? AND date >= ?",
            (artist_id, today.isoformat()),
        )
        row = await cursor.fetchone()
        return int(row[0]) if row else 0

    # ------------------------------------------------------------------
    # Songs
    # ------------------------------------------------------------------

    async def upsert_songs(self, songs: Sequence[CanonicalSong]) -> dict[str, int]:
        if not songs:
            return {}
        async with self.transaction():
            await self._conn.executemany(
                _UPSERT_SONG_SQL,
                [
                    (
                        s.spotify_id,
                        s.isrc,
                        s.name,
                        s.artist,
                        s.album_name,
                        s.album_id,
                        s.track_number,
                        s.disc_number,
                        s.album_art_url,
                        s.release_date,
                        s.duration_ms,
                        s.popularity,
                        s.preview_url,
                        s.uri,
                        int(s.explicit),
                        int(s.is_playable),
                        int(s.is_live),
                    )
                    for s in songs
                ],
            )
            placeholders = ", ".join("?" for _ in songs)
            cursor = await self._conn.execute(
                f"SELECT spotify_id, id FROM songs WHERE spotify_id IN ({placeholders})",  # noqa: S608
                tuple(s.spotify_id for s in songs),
            )
            rows = await cursor.fetchall()
        return {r["spotify_id"]: r["id"] for r in rows}

    async def link_artist_songs(self, artist_id: int, song_ids: Sequence[int]) -> int:
        if not song_ids:
            return 0
        async with self.transaction():
            before = self._conn.total_changes
            await self._conn.executemany(_LINK_SQL, [(artist_id, sid) for sid in song_ids])
            inserted = self._conn.total_changes - before
        return inserted

    async def list_top_songs(self, artist_id: int, limit: int = 100) -> list[StoredSong]:
        cursor = await self._conn.execute(
            "SELECT s.id, s.name, s.popularity, s.is_live FROM songs s "
            "JOIN artist_songs a ON a.song_id = s.id "
            "WHERE a.artist_id = ? ORDER BY s.popularity DESC, s.id LIMIT ?",
            (artist_id, limit),
        )
        rows = await cursor.fetchall()
        return [
            StoredSong(
                id=r["id"], name=r["name"], popularity=r["popularity"], is_live=bool(r["is_live"])
            )
            for r in rows
        ]

    # ------------------------------------------------------------------
    # Setlists
    # ------------------------------------------------------------------

    async def create_setlist(
        self,
        show_id: int,
        artist_id: int,
        name: str,
        song_ids: Sequence[int],
        is_prediction: bool = True,
    ) -> int:
        async with self.transaction():
            cursor = await self._conn.execute(
                "INSERT INTO setlists (show_id, artist_id, name, type) VALUES (?, ?, ?, ?)",
                (show_id, artist_id, name, "predicted" if is_prediction else "actual"),
            )
            setlist_id = cursor.lastrowid
            await self._conn.executemany(
                "INSERT INTO setlist_songs (setlist_id, song_id, position) VALUES (?, ?, ?)",
                [(setlist_id, sid, pos) for pos, sid in enumerate(song_ids, start=1)],
            )
        return int(setlist_id)

    # ------------------------------------------------------------------
    # Stats
    # ------------------------------------------------------------------

    async def count_artist_rows(self, artist_id: int) -> dict[str, int]:
        cursor = await self._conn.execute(
            "SELECT "
            "(SELECT COUNT(*) FROM artist_songs WHERE artist_id = ?) AS songs, "
            "(SELECT COUNT(*) FROM shows WHERE headliner_artist_id = ?) AS shows, "
            "(SELECT COUNT(DISTINCT venue_id) FROM shows WHERE headliner_artist_id = ?) AS venues",
            (artist_id, artist_id, artist_id),
        )
        row = await cursor.fetchone()
        return {"songs": row["songs"], "shows": row["shows"], "venues": row["venues"]}

    # ------------------------------------------------------------------
    # IProgressStore implementation
    # ------------------------------------------------------------------

    async def save_progress(self, job: ImportJob) -> None:
        async with self._writing() as db:
            await db.execute(
                _UPSERT_PROGRESS_SQL,
                (
                    job.job_id,
                    job.stage.value,
                    job.progress,
                    job.message,
                    job.error,
                    json.dumps(job.phase_timings),
                    json.dumps(job.metadata, default=str),
                    job.started_at.isoformat(),
                    job.updated_at.isoformat(),
                    _iso(job.completed_at),
                ),
            )

    async def load_progress(self, job_id: str) -> ImportJob | None:
        cursor = await self._conn.execute(
            "SELECT * FROM import_status WHERE job_id = ?", (job_id,)
        )
        row = await cursor.fetchone()
        return self._row_to_job(row) if row else None

    async def list_active(self) -> list[ImportJob]:
        terminal = (ImportStage.COMPLETED.value, ImportStage.FAILED.value)
        cursor = await self._conn.execute(
            "SELECT * FROM import_status WHERE stage NOT IN (?, ?) ORDER BY updated_at DESC",
            terminal,
        )
        rows = await cursor.fetchall()
        return [self._row_to_job(r) for r in rows]

    @staticmethod
    def _row_to_job(row: aiosqlite.Row) -> ImportJob:
        data = dict(row)
        completed = data.get("completed_at")
        return ImportJob(
            job_id=data["job_id"],
            stage=ImportStage(data["stage"]),
            progress=data["progress"],
            message=data["message"],
            error=data["error"],
            phase_timings=json.loads(data["phase_timings"] or "{}"),
            metadata=json.loads(data["metadata"] or "{}"),
            started_at=datetime.fromisoformat(data["started_at"]),
            updated_at=datetime.fromisoformat(data["updated_at"]),
            completed_at=datetime.fromisoformat(completed) if completed else None,
        )
