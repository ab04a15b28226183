# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""SQLite-backed storage — persistent tickets, projects and update stamps.

Uses ``aiosqlite`` with a single long-lived connection.  WAL journal mode
enables concurrent reads with serialized writes.  Schema versioned via
``PRAGMA user_version``.  Entities are stored as JSON documents next to the
columns needed for lookup.

Every driver failure is re-raised as ``StorageError`` with the original
exception as ``__cause__``.

Dependencies: models.py, errors.py.
"""

from __future__ import annotations

import json
import sqlite3
from collections.abc import Mapping, Sequence
from contextlib import suppress
from pathlib import Path

import aiosqlite

from .errors import StorageError
from .models import StoredProject, StoredTicket

_SCHEMA_VERSION = 1


def _dumps(data: dict) -> str:
    return json.dumps(data, sort_keys=True, separators=(",", ":"), ensure_ascii=False)


# ---------------------------------------------------------------------------
# Schema DDL
# ---------------------------------------------------------------------------

_CREATE_TICKETS = """
CREATE TABLE IF NOT EXISTS tickets (
    project_key  TEXT NOT NULL,
    key          TEXT NOT NULL,
    version      INTEGER NOT NULL,
    hash         TEXT NOT NULL DEFAULT '',
    collected_at TEXT NOT NULL,
    updated_at   TEXT NOT NULL,
    sent         INTEGER NOT NULL DEFAULT 0,
    sent_at      TEXT,
    data         TEXT NOT NULL,
    PRIMARY KEY (project_key, key)
)
"""

_CREATE_PROJECTS = """
CREATE TABLE IF NOT EXISTS projects (
    key          TEXT PRIMARY KEY,
    version      INTEGER NOT NULL,
    collected_at TEXT NOT NULL,
    updated_at   TEXT NOT NULL,
    data         TEXT NOT NULL
)
"""

_CREATE_METADATA = """
CREATE TABLE IF NOT EXISTS metadata (
    project_key TEXT PRIMARY KEY,
    last_update TEXT NOT NULL
)
"""

_CREATE_INDEXES = [
    "CREATE INDEX IF NOT EXISTS idx_tickets_key ON tickets(key)",
    "CREATE INDEX IF NOT EXISTS idx_tickets_updated_at ON tickets(updated_at)",
]

_TICKET_COLUMNS = "key, version, collected_at, updated_at, sent, sent_at, data"


def _row_to_ticket(row: aiosqlite.Row) -> StoredTicket:
    return StoredTicket.from_dict(
        {
            "ticket": json.loads(row[6]),
            "collected_at": row[2],
            "updated_at": row[3],
            "version": row[1],
            "sent": bool(row[4]),
            "sent_at": row[5],
        }
    )


def _row_to_project(row: aiosqlite.Row) -> StoredProject:
    return StoredProject.from_dict(
        {
            "project": json.loads(row[4]),
            "version": row[1],
            "collected_at": row[2],
            "updated_at": row[3],
        }
    )


# ---------------------------------------------------------------------------
# SqliteStorage
# ---------------------------------------------------------------------------


class SqliteStorage:
    """SQLite-backed storage implementing ``StorageProtocol``.

    Use the ``create()`` async classmethod factory — never instantiate directly.
    """

    def __init__(self, db: aiosqlite.Connection) -> None:
        self._db = db

    @classmethod
    async def create(cls, db_path: str | Path) -> SqliteStorage:
        """Open (or create) a SQLite database and initialise the schema.

        Resolves ``~`` and creates parent directories automatically.
        ``":memory:"`` opens a private in-memory database.

        Raises:
            StorageError: the database cannot be opened, or has a newer schema version.
        """
        if str(db_path) == ":memory:":
            target = ":memory:"
        else:
            path = Path(db_path).expanduser().resolve()
            path.parent.mkdir(parents=True, exist_ok=True)
            target = str(path)

        try:
            db = await aiosqlite.connect(target)
        except (sqlite3.Error, OSError) as e:
            raise StorageError(f"Cannot open database {target}: {e}") from e

        try:
            await db.execute("PRAGMA journal_mode = WAL")

            cursor = await db.execute("PRAGMA user_version")
            row = await cursor.fetchone()
            current_version = row[0] if row else 0

            if current_version > _SCHEMA_VERSION:
                raise StorageError(
                    f"Database schema version {current_version} is newer than supported version {_SCHEMA_VERSION}"
                )

            if current_version < _SCHEMA_VERSION:
                await db.execute(_CREATE_TICKETS)
                await db.execute(_CREATE_PROJECTS)
                await db.execute(_CREATE_METADATA)
                for idx_sql in _CREATE_INDEXES:
                    await db.execute(idx_sql)
                await db.execute(f"PRAGMA user_version = {_SCHEMA_VERSION}")
                await db.commit()
        except sqlite3.Error as e:
            await db.close()
            raise StorageError(f"Schema initialisation failed: {e}") from e
        except BaseException:
            await db.close()
            raise

        return cls(db)

    # ── StorageProtocol methods ───────────────────────────────────

    async def save_tickets(self, project_key: str, tickets: Mapping[str, StoredTicket]) -> None:
        """Upsert ``tickets`` and stamp ``project_key`` in one transaction."""
        if not tickets:
            return
        rows = [
            (
                project_key,
                key,
                stored.version,
                stored.ticket.hash,
                stored.collected_at,
                stored.updated_at,
                int(stored.sent),
                stored.sent_at,
                _dumps(stored.ticket.to_dict()),
            )
            for key, stored in tickets.items()
        ]
        latest = max(t.updated_at for t in tickets.values())
        try:
            await self._db.executemany(
                "INSERT OR REPLACE INTO tickets "
                "(project_key, key, version, hash, collected_at, updated_at, sent, sent_at, data) "
                "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)",
                rows,
            )
            await self._db.execute(
                "INSERT OR REPLACE INTO metadata (project_key, last_update) VALUES (?, ?)",
                (project_key, latest),
            )
            await self._db.commit()
        except sqlite3.Error as e:
            with suppress(sqlite3.Error):
                await self._db.rollback()
            raise StorageError(f"Failed to save tickets for {project_key}: {e}") from e

    async def load_tickets(self, project_key: str) -> dict[str, StoredTicket]:
        try:
            cursor = await self._db.execute(
                f"SELECT {_TICKET_COLUMNS} FROM tickets WHERE project_key = ? ORDER BY key",
                (project_key,),
            )
            rows = await cursor.fetchall()
        except sqlite3.Error as e:
            raise StorageError(f"Failed to load tickets for {project_key}: {e}") from e
        return {r[0]: _row_to_ticket(r) for r in rows}

    async def load_all_tickets(self) -> dict[str, StoredTicket]:
        try:
            cursor = await self._db.execute(f"SELECT {_TICKET_COLUMNS} FROM tickets ORDER BY project_key, key")
            rows = await cursor.fetchall()
        except sqlite3.Error as e:
            raise StorageError(f"Failed to load tickets: {e}") from e
        return {r[0]: _row_to_ticket(r) for r in rows}

    async def clear_all_tickets(self) -> None:
        try:
            await self._db.execute("DELETE FROM tickets")
            await self._db.execute("DELETE FROM metadata")
            await self._db.commit()
        except sqlite3.Error as e:
            raise StorageError(f"Failed to clear tickets: {e}") from e

    async def save_projects(self, projects: Sequence[StoredProject]) -> None:
        if not projects:
            return
        rows = [(p.key, p.version, p.collected_at, p.updated_at, _dumps(p.project.to_dict())) for p in projects]
        try:
            await self._db.executemany(
                "INSERT OR REPLACE INTO projects (key, version, collected_at, updated_at, data) VALUES (?, ?, ?, ?, ?)",
                rows,
            )
            await self._db.commit()
        except sqlite3.Error as e:
            with suppress(sqlite3.Error):
                await self._db.rollback()
            raise StorageError(f"Failed to save projects: {e}") from e

    async def load_projects(self) -> list[StoredProject]:
        try:
            cursor = await self._db.execute(
                "SELECT key, version, collected_at, updated_at, data FROM projects ORDER BY key"
            )
            rows = await cursor.fetchall()
        except sqlite3.Error as e:
            raise StorageError(f"Failed to load projects: {e}") from e
        return [_row_to_project(r) for r in rows]

    async def clear_all_projects(self) -> None:
        try:
            await self._db.execute("DELETE FROM projects")
            await self._db.commit()
        except sqlite3.Error as e:
            raise StorageError(f"Failed to clear projects: {e}") from e

    async def get_last_update(self, project_key: str) -> str:
        try:
            cursor = await self._db.execute(
                "SELECT last_update FROM metadata WHERE project_key = ?",
                (project_key,),
            )
            row = await cursor.fetchone()
        except sqlite3.Error as e:
            raise StorageError(f"Failed to read last update for {project_key}: {e}") from e
        return row[0] if row else ""

    async def close(self) -> None:
        """Close the database connection. Idempotent."""
        with suppress(Exception):
            await self._db.close()
