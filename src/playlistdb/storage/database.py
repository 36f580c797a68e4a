"""Async SQLite database for the playlistdb storage layer."""

from __future__ import annotations

import asyncio
import sqlite3
from collections.abc import AsyncIterator, Iterable
from contextlib import asynccontextmanager
from functools import lru_cache
from pathlib import Path

import aiosqlite
import structlog

from playlistdb.errors import ConfigurationError, PlaylistDBError, TransientStoreError
from playlistdb.storage.models import TABLES, EntityTable

log = structlog.get_logger(__name__)

# No REFERENCES clauses: rows may arrive before the rows they point at
# (audio features for tracks that were never ingested, for instance).
_SCHEMA = """\
CREATE TABLE IF NOT EXISTS artists (
    id TEXT PRIMARY KEY,
    name TEXT NOT NULL,
    popularity INTEGER NOT NULL DEFAULT 0,
    followers INTEGER NOT NULL DEFAULT 0,
    created_at TEXT NOT NULL DEFAULT (datetime('now')),
    updated_at TEXT NOT NULL DEFAULT (datetime('now'))
);

CREATE TABLE IF NOT EXISTS albums (
    id TEXT PRIMARY KEY,
    name TEXT NOT NULL,
    release_date TEXT,
    album_type TEXT NOT NULL DEFAULT 'album',
    created_at TEXT NOT NULL DEFAULT (datetime('now')),
    updated_at TEXT NOT NULL DEFAULT (datetime('now'))
);

CREATE TABLE IF NOT EXISTS tracks (
    id TEXT PRIMARY KEY,
    name TEXT NOT NULL,
    duration_ms INTEGER NOT NULL,
    explicit INTEGER NOT NULL DEFAULT 0,
    popularity INTEGER NOT NULL DEFAULT 0,
    album_id TEXT,
    created_at TEXT NOT NULL DEFAULT (datetime('now')),
    updated_at TEXT NOT NULL DEFAULT (datetime('now'))
);

CREATE INDEX IF NOT EXISTS ix_tracks_album ON tracks(album_id);

CREATE TABLE IF NOT EXISTS playlists (
    id TEXT PRIMARY KEY,
    name TEXT NOT NULL,
    owner TEXT,
    snapshot TEXT,
    created_at TEXT NOT NULL DEFAULT (datetime('now')),
    updated_at TEXT NOT NULL DEFAULT (datetime('now'))
);

CREATE TABLE IF NOT EXISTS playlist_tracks (
    playlist_id TEXT NOT NULL,
    track_id TEXT NOT NULL,
    position INTEGER NOT NULL,
    added_at TEXT NOT NULL,
    added_by TEXT,
    created_at TEXT NOT NULL DEFAULT (datetime('now')),
    updated_at TEXT NOT NULL DEFAULT (datetime('now')),
    PRIMARY KEY (playlist_id, track_id)
);

CREATE INDEX IF NOT EXISTS ix_playlist_tracks_track ON playlist_tracks(track_id);

CREATE TABLE IF NOT EXISTS audio_features (
    track_id TEXT PRIMARY KEY,
    danceability REAL,
    energy REAL,
    valence REAL,
    tempo REAL,
    key_signature INTEGER,
    mode INTEGER,
    created_at TEXT NOT NULL DEFAULT (datetime('now')),
    updated_at TEXT NOT NULL DEFAULT (datetime('now'))
);
"""

_TRACK_COLUMNS = """
    t.id,
    t.name,
    t.duration_ms,
    t.explicit,
    t.popularity,
    al.id AS album_id,
    al.name AS album_name,
    al.release_date,
    al.album_type,
    af.track_id AS features_track_id,
    af.danceability,
    af.energy,
    af.valence,
    af.tempo,
    af.key_signature,
    af.mode
"""


@lru_cache(maxsize=None)
def build_upsert(table: EntityTable) -> str:
    """Return the insert-or-update statement for *table*.

    The statement is derived from the static declaration only, so every
    record of a kind binds the same parameter list in ``table.columns`` order.
    """
    columns = ", ".join(table.columns)
    placeholders = ", ".join("?" for _ in table.columns)
    assignments = []
    for col in table.update_columns:
        if col in table.keep_on_absent:
            assignments.append(f"{col} = COALESCE(excluded.{col}, {table.name}.{col})")
        else:
            assignments.append(f"{col} = excluded.{col}")
    assignments.append("updated_at = datetime('now')")
    return (
        f"INSERT INTO {table.name} ({columns}) VALUES ({placeholders}) "
        f"ON CONFLICT ({', '.join(table.conflict_keys)}) DO UPDATE SET {', '.join(assignments)}"
    )


class Database:
    """Async SQLite database wrapper for playlistdb."""

    def __init__(self, path: Path | str) -> None:
        self.path = path
        self._conn: aiosqlite.Connection | None = None
        self._lock = asyncio.Lock()

    @property
    def conn(self) -> aiosqlite.Connection:
        if self._conn is None:
            msg = "Database not connected. Call connect() first."
            raise ConfigurationError(msg)
        return self._conn

    @property
    def is_connected(self) -> bool:
        return self._conn is not None

    async def connect(self) -> None:
        # isolation_level=None: transactions are opened explicitly in transaction().
        self._conn = await aiosqlite.connect(self.path, isolation_level=None)
        self._conn.row_factory = aiosqlite.Row
        await self._conn.execute("PRAGMA journal_mode=WAL")
        await self._conn.executescript(_SCHEMA)
        await self._conn.execute("SELECT 1")
        log.info("database_connected", path=str(self.path))

    async def close(self) -> None:
        if self._conn is not None:
            await self._conn.close()
            self._conn = None
            log.info("database_closed", path=str(self.path))

    async def query(self, sql: str, params: Iterable = ()) -> list[aiosqlite.Row]:
        try:
            cur = await self.conn.execute(sql, tuple(params))
            return list(await cur.fetchall())
        except sqlite3.Error as exc:
            log.error("sql_query_error", sql=sql[:100], error=str(exc))
            raise

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[aiosqlite.Connection]:
        """Run the enclosed block in one transaction.

        Commits on normal exit and rolls back on any error. Errors raised in
        the block are re-raised as :class:`TransientStoreError` unless they are
        already playlistdb errors; cancellation propagates as-is.
        The connection is held only for the duration of the block.
        """
        conn = self.conn
        async with self._lock:
            try:
                await conn.execute("BEGIN")
                yield conn
                await conn.execute("COMMIT")
            except BaseException as exc:
                await self._rollback(conn)
                log.error("transaction_error", error=str(exc))
                if isinstance(exc, Exception) and not isinstance(exc, PlaylistDBError):
                    raise TransientStoreError(str(exc)) from exc
                raise

    @staticmethod
    async def _rollback(conn: aiosqlite.Connection) -> None:
        try:
            await conn.execute("ROLLBACK")
        except sqlite3.Error as exc:
            log.warning("rollback_failed", error=str(exc))

    # -- read queries ---------------------------------------------------------

    async def get_playlist(self, playlist_id: str) -> dict | None:
        rows = await self.query("SELECT * FROM playlists WHERE id = ?", (playlist_id,))
        return dict(rows[0]) if rows else None

    async def get_artist(self, artist_id: str) -> dict | None:
        rows = await self.query("SELECT * FROM artists WHERE id = ?", (artist_id,))
        return dict(rows[0]) if rows else None

    async def get_track(self, track_id: str) -> dict | None:
        rows = await self.query("SELECT * FROM tracks WHERE id = ?", (track_id,))
        return dict(rows[0]) if rows else None

    async def list_playlist_tracks(self, playlist_id: str, energy_min: float = 0.0) -> list[dict]:
        """Tracks of a playlist whose energy is unknown or at least *energy_min*."""
        rows = await self.query(
            f"""
            SELECT {_TRACK_COLUMNS},
                pt.position,
                pt.added_at,
                pt.added_by
            FROM playlist_tracks pt
            JOIN tracks t ON pt.track_id = t.id
            LEFT JOIN albums al ON t.album_id = al.id
            LEFT JOIN audio_features af ON t.id = af.track_id
            WHERE pt.playlist_id = ?
              AND (af.energy IS NULL OR af.energy >= ?)
            ORDER BY COALESCE(af.energy, 0) DESC, t.popularity DESC, pt.position
            """,  # noqa: S608
            (playlist_id, energy_min),
        )
        return [dict(r) for r in rows]

    async def list_top_tracks(self, limit: int = 5) -> list[dict]:
        """Most popular tracks that appear in at least one playlist."""
        rows = await self.query(
            f"""
            SELECT {_TRACK_COLUMNS}
            FROM tracks t
            LEFT JOIN albums al ON t.album_id = al.id
            LEFT JOIN audio_features af ON t.id = af.track_id
            WHERE t.id IN (SELECT DISTINCT track_id FROM playlist_tracks)
            ORDER BY t.popularity DESC, t.name
            LIMIT ?
            """,  # noqa: S608
            (limit,),
        )
        return [dict(r) for r in rows]

    async def count_rows(self) -> dict[str, int]:
        counts: dict[str, int] = {}
        for table in TABLES.values():
            rows = await self.query(f"SELECT COUNT(*) AS cnt FROM {table.name}")  # noqa: S608
            counts[table.name] = rows[0]["cnt"]
        return counts
