"""SQLite database operations for servers, Jellyfin mirrors and sessions."""

import json
import logging
from collections.abc import AsyncIterator
from datetime import UTC, datetime
from enum import Enum
from pathlib import Path
from typing import Any

import aiosqlite

from .models import Server, Session, SyncStatus

logger = logging.getLogger(__name__)

SESSION_COLUMNS: list[str] = list(Session.model_fields)

# Columns each mirror table accepts on upsert
MIRROR_COLUMNS: dict[str, tuple[str, ...]] = {
    "users": (
        "id",
        "server_id",
        "name",
        "last_login_date",
        "last_activity_date",
        "is_administrator",
        "is_hidden",
        "is_disabled",
    ),
    "libraries": ("id", "server_id", "name", "type"),
    "items": (
        "id",
        "server_id",
        "library_id",
        "name",
        "type",
        "series_id",
        "series_name",
        "season_id",
        "season_name",
        "index_number",
        "parent_index_number",
        "runtime_ticks",
        "production_year",
        "path",
        "genres",
        "raw_data",
    ),
    "activities": (
        "id",
        "server_id",
        "name",
        "short_overview",
        "type",
        "date",
        "severity",
        "user_id",
        "item_id",
    ),
}

# Tables a session may reference softly
REFERENCE_TABLES = ("users", "items")

# Server columns the sync bookkeeping is allowed to touch
SERVER_SYNC_COLUMNS = (
    "sync_status",
    "sync_progress",
    "sync_error",
    "last_sync_started",
    "last_sync_completed",
)


def _utcnow() -> str:
    return datetime.now(UTC).isoformat()


def _to_db_value(value: Any) -> Any:
    """Convert a Python value into something sqlite3 stores natively."""
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, (dict, list)):
        return json.dumps(value)
    return value


def _session_to_row(session: Session) -> dict[str, Any]:
    row = session.model_dump()
    row["raw_data"] = json.dumps(row["raw_data"], default=str)
    if row["transcode_reasons"] is not None:
        row["transcode_reasons"] = json.dumps(row["transcode_reasons"])
    return {key: _to_db_value(value) for key, value in row.items()}


def _row_to_session(row: aiosqlite.Row | dict[str, Any]) -> Session:
    data = dict(row)
    data["raw_data"] = json.loads(data["raw_data"]) if data["raw_data"] else {}
    if data["transcode_reasons"]:
        data["transcode_reasons"] = json.loads(data["transcode_reasons"])
    return Session.model_validate(data)


def _row_to_server(row: aiosqlite.Row) -> Server:
    return Server.model_validate(dict(row))


class Database:
    """Async SQLite database.

    The handle is created by the process entry point and passed to whatever
    needs it; nothing in this module keeps a global connection.
    """

    def __init__(self, db_path: str, journal_mode: str = "WAL"):
        self.db_path = str(db_path)
        self.journal_mode = journal_mode.upper()
        self._db: aiosqlite.Connection | None = None

    @property
    def connected(self) -> bool:
        return self._db is not None

    async def connect(self) -> None:
        """Connect to the database and create tables."""
        db_path = Path(self.db_path)
        db_path.parent.mkdir(parents=True, exist_ok=True)

        logger.info("Connecting to database: %s (journal_mode=%s)", db_path, self.journal_mode)
        self._db = await aiosqlite.connect(self.db_path)
        self._db.row_factory = aiosqlite.Row

        # WAL is default, use DELETE for NFS compatibility
        if self.journal_mode in ("WAL", "DELETE", "TRUNCATE", "MEMORY", "OFF"):
            await self._db.execute(f"PRAGMA journal_mode={self.journal_mode}")

        await self._create_tables()
        logger.info("Database connected successfully")

    async def close(self) -> None:
        """Close the database connection."""
        if self._db:
            logger.info("Closing database connection")
            await self._db.close()
            self._db = None

    async def commit(self) -> None:
        assert self._db is not None
        await self._db.commit()

    async def _create_tables(self) -> None:
        """Create database tables if they don't exist."""
        assert self._db is not None

        await self._db.execute(
            """
            CREATE TABLE IF NOT EXISTS servers (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                name TEXT NOT NULL,
                url TEXT NOT NULL UNIQUE,
                api_key TEXT NOT NULL,
                sync_status TEXT NOT NULL DEFAULT 'pending',
                sync_progress TEXT NOT NULL DEFAULT 'not_started',
                sync_error TEXT,
                last_sync_started TIMESTAMP,
                last_sync_completed TIMESTAMP,
                created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
            )
        """
        )

        await self._db.execute(
            """
            CREATE TABLE IF NOT EXISTS users (
                id TEXT PRIMARY KEY,
                server_id INTEGER NOT NULL,
                name TEXT NOT NULL,
                last_login_date TIMESTAMP,
                last_activity_date TIMESTAMP,
                is_administrator BOOLEAN NOT NULL DEFAULT 0,
                is_hidden BOOLEAN NOT NULL DEFAULT 0,
                is_disabled BOOLEAN NOT NULL DEFAULT 0,
                created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
            )
        """
        )

        await self._db.execute(
            """
            CREATE TABLE IF NOT EXISTS libraries (
                id TEXT PRIMARY KEY,
                server_id INTEGER NOT NULL,
                name TEXT NOT NULL,
                type TEXT NOT NULL,
                created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
            )
        """
        )

        await self._db.execute(
            """
            CREATE TABLE IF NOT EXISTS items (
                id TEXT PRIMARY KEY,
                server_id INTEGER NOT NULL,
                library_id TEXT,
                name TEXT NOT NULL,
                type TEXT NOT NULL,
                series_id TEXT,
                series_name TEXT,
                season_id TEXT,
                season_name TEXT,
                index_number INTEGER,
                parent_index_number INTEGER,
                runtime_ticks INTEGER,
                production_year INTEGER,
                path TEXT,
                genres TEXT,
                raw_data TEXT NOT NULL DEFAULT '{}',
                created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
            )
        """
        )

        await self._db.execute(
            """
            CREATE TABLE IF NOT EXISTS activities (
                id TEXT PRIMARY KEY,
                server_id INTEGER NOT NULL,
                name TEXT NOT NULL,
                short_overview TEXT,
                type TEXT,
                date TIMESTAMP,
                severity TEXT,
                user_id TEXT,
                item_id TEXT,
                created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
            )
        """
        )

        await self._db.execute(
            """
            CREATE TABLE IF NOT EXISTS sessions (
                id TEXT PRIMARY KEY,
                server_id INTEGER NOT NULL,
                user_id TEXT,
                item_id TEXT,
                user_name TEXT,
                user_server_id TEXT,
                item_name TEXT,
                series_id TEXT,
                series_name TEXT,
                season_id TEXT,
                client_name TEXT,
                device_name TEXT,
                device_id TEXT,
                application_version TEXT,
                remote_end_point TEXT,
                start_time TIMESTAMP,
                end_time TIMESTAMP,
                last_activity_date TIMESTAMP,
                last_playback_check_in TIMESTAMP,
                play_duration INTEGER NOT NULL DEFAULT 0,
                position_ticks INTEGER,
                runtime_ticks INTEGER,
                percent_complete REAL NOT NULL DEFAULT 0,
                completed BOOLEAN NOT NULL DEFAULT 0,
                is_paused BOOLEAN NOT NULL DEFAULT 0,
                is_muted BOOLEAN NOT NULL DEFAULT 0,
                is_active BOOLEAN NOT NULL DEFAULT 0,
                play_method TEXT,
                volume_level INTEGER,
                audio_stream_index INTEGER,
                subtitle_stream_index INTEGER,
                media_source_id TEXT,
                repeat_mode TEXT,
                playback_order TEXT,
                video_codec TEXT,
                audio_codec TEXT,
                resolution_width INTEGER,
                resolution_height INTEGER,
                video_bit_rate INTEGER,
                audio_bit_rate INTEGER,
                audio_channels INTEGER,
                audio_sample_rate INTEGER,
                video_range_type TEXT,
                is_transcoded BOOLEAN NOT NULL DEFAULT 0,
                transcoding_width INTEGER,
                transcoding_height INTEGER,
                transcoding_video_codec TEXT,
                transcoding_audio_codec TEXT,
                transcoding_container TEXT,
                transcoding_is_video_direct BOOLEAN,
                transcoding_is_audio_direct BOOLEAN,
                transcoding_bitrate INTEGER,
                transcoding_completion_percentage REAL,
                transcoding_audio_channels INTEGER,
                transcoding_hardware_acceleration_type TEXT,
                transcode_reasons TEXT,
                raw_data TEXT NOT NULL,
                created_at TIMESTAMP NOT NULL,
                updated_at TIMESTAMP NOT NULL
            )
        """
        )

        await self._db.execute(
            """
            CREATE INDEX IF NOT EXISTS idx_sessions_server
            ON sessions(server_id, start_time)
        """
        )

        await self._db.execute(
            """
            CREATE TABLE IF NOT EXISTS hidden_recommendations (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                server_id INTEGER NOT NULL,
                user_id TEXT NOT NULL,
                item_id TEXT NOT NULL,
                created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                UNIQUE(server_id, user_id, item_id)
            )
        """
        )

        await self._db.commit()

    # ========== Servers ==========

    async def upsert_server(self, name: str, url: str, api_key: str) -> Server:
        """Insert or update a server keyed by URL."""
        assert self._db is not None

        await self._db.execute(
            """
            INSERT INTO servers (name, url, api_key)
            VALUES (?, ?, ?)
            ON CONFLICT(url) DO UPDATE SET
                name = excluded.name,
                api_key = excluded.api_key,
                updated_at = CURRENT_TIMESTAMP
            """,
            (name, url, api_key),
        )
        await self._db.commit()

        async with self._db.execute("SELECT * FROM servers WHERE url = ?", (url,)) as cursor:
            row = await cursor.fetchone()
        assert row is not None
        server = _row_to_server(row)
        logger.debug("[%s] Registered server with id %d", name, server.id)
        return server

    async def get_server(self, server_id: int) -> Server | None:
        """Get a server by id."""
        assert self._db is not None

        async with self._db.execute("SELECT * FROM servers WHERE id = ?", (server_id,)) as cursor:
            row = await cursor.fetchone()
            return _row_to_server(row) if row else None

    async def list_servers(self) -> list[Server]:
        """Get all servers."""
        assert self._db is not None

        async with self._db.execute("SELECT * FROM servers ORDER BY id") as cursor:
            rows = await cursor.fetchall()
            return [_row_to_server(row) for row in rows]

    async def list_servers_by_status(self, status: SyncStatus) -> list[Server]:
        assert self._db is not None

        async with self._db.execute(
            "SELECT * FROM servers WHERE sync_status = ? ORDER BY id",
            (status.value,),
        ) as cursor:
            rows = await cursor.fetchall()
            return [_row_to_server(row) for row in rows]

    async def update_server_sync(self, server_id: int, **fields: Any) -> bool:
        """Write sync bookkeeping columns. Returns False if the server is unknown."""
        assert self._db is not None

        unknown = set(fields) - set(SERVER_SYNC_COLUMNS)
        if unknown:
            raise ValueError(f"Not a sync column: {', '.join(sorted(unknown))}")
        if not fields:
            return False

        assignments = ", ".join(f"{column} = ?" for column in fields)
        values = [_to_db_value(value) for value in fields.values()]
        cursor = await self._db.execute(
            f"UPDATE servers SET {assignments}, updated_at = ? WHERE id = ?",
            (*values, _utcnow(), server_id),
        )
        await self._db.commit()
        return cursor.rowcount > 0

    # ========== Jellyfin mirrors ==========

    async def upsert_mirror(self, table: str, row: dict[str, Any], commit: bool = True) -> None:
        """Insert or update a users/libraries/items/activities row keyed by id."""
        assert self._db is not None

        if table not in MIRROR_COLUMNS:
            raise ValueError(f"Unknown mirror table: {table}")
        columns = [column for column in MIRROR_COLUMNS[table] if column in row]
        placeholders = ", ".join("?" for _ in columns)
        updates = ", ".join(f"{column} = excluded.{column}" for column in columns if column != "id")

        await self._db.execute(
            f"""
            INSERT INTO {table} ({", ".join(columns)})
            VALUES ({placeholders})
            ON CONFLICT(id) DO UPDATE SET
                {updates},
                updated_at = CURRENT_TIMESTAMP
            """,
            [_to_db_value(row[column]) for column in columns],
        )
        if commit:
            await self._db.commit()

    async def list_libraries(self, server_id: int) -> list[dict[str, Any]]:
        """Get synced libraries for a server."""
        assert self._db is not None

        async with self._db.execute(
            "SELECT id, name, type FROM libraries WHERE server_id = ? ORDER BY name",
            (server_id,),
        ) as cursor:
            rows = await cursor.fetchall()
            return [dict(row) for row in rows]

    async def count_rows(self, table: str, server_id: int) -> int:
        assert self._db is not None

        if table not in MIRROR_COLUMNS and table != "sessions":
            raise ValueError(f"Unknown table: {table}")
        async with self._db.execute(f"SELECT COUNT(*) FROM {table} WHERE server_id = ?", (server_id,)) as cursor:
            row = await cursor.fetchone()
            return row[0] if row else 0

    async def exists(self, table: str, row_id: str) -> bool:
        """Check whether a referenced user or item exists."""
        assert self._db is not None

        if table not in REFERENCE_TABLES:
            raise ValueError(f"Not a reference table: {table}")
        async with self._db.execute(f"SELECT 1 FROM {table} WHERE id = ? LIMIT 1", (row_id,)) as cursor:
            return await cursor.fetchone() is not None

    # ========== Sessions ==========

    async def insert_session(self, session: Session, commit: bool = True) -> bool:
        """Insert a session, ignoring duplicates. Returns True if a row was written."""
        assert self._db is not None

        row = _session_to_row(session)
        placeholders = ", ".join("?" for _ in SESSION_COLUMNS)
        cursor = await self._db.execute(
            f"""
            INSERT INTO sessions ({", ".join(SESSION_COLUMNS)})
            VALUES ({placeholders})
            ON CONFLICT(id) DO NOTHING
            """,
            [row[column] for column in SESSION_COLUMNS],
        )
        if commit:
            await self._db.commit()
        return cursor.rowcount == 1

    async def get_session(self, session_id: str) -> Session | None:
        assert self._db is not None

        async with self._db.execute("SELECT * FROM sessions WHERE id = ?", (session_id,)) as cursor:
            row = await cursor.fetchone()
            return _row_to_session(row) if row else None

    async def count_sessions(self, server_id: int) -> int:
        return await self.count_rows("sessions", server_id)

    async def iter_sessions(self, server_id: int, batch_size: int = 500) -> AsyncIterator[Session]:
        """Yield every session of a server in insertion order, one batch in memory at a time."""
        assert self._db is not None

        last_rowid = 0
        while True:
            async with self._db.execute(
                """
                SELECT rowid AS _rowid, * FROM sessions
                WHERE server_id = ? AND rowid > ?
                ORDER BY rowid
                LIMIT ?
                """,
                (server_id, last_rowid, batch_size),
            ) as cursor:
                rows = await cursor.fetchall()
            if not rows:
                return
            for row in rows:
                last_rowid = row["_rowid"]
                data = {key: row[key] for key in row.keys() if key != "_rowid"}
                yield _row_to_session(data)
