"""
SQLite remote tiers.

Implements the generic fallback table and per-entity durable tables on
SQLite via aiosqlite. Used for single-host deployments, development and
tests; the schema mirrors the hosted ``user_storage`` table.
"""

from __future__ import annotations

import asyncio
import json
import logging
import re
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

import aiosqlite

from ..exceptions import StorageIOError, TransientNetworkError
from ..outcomes import FALLBACK_TIER, durable_tier_name
from .base import DurableStoreAdapter, RemoteFallbackStore, entity_rows, record_from_rows

logger = logging.getLogger(__name__)

_IDENTIFIER = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")
_TRANSIENT_MARKERS = ("locked", "busy", "unable to open", "disk i/o")


def _now() -> str:
    return datetime.now(UTC).isoformat()


def _translate(tier: str, operation: str, path: str, error: Exception) -> Exception:
    """Map an aiosqlite failure onto the persistence error taxonomy."""
    message = str(error).lower()
    if isinstance(error, aiosqlite.OperationalError) and any(
        marker in message for marker in _TRANSIENT_MARKERS
    ):
        return TransientNetworkError(tier, error)
    return StorageIOError(operation, path, error)


class _SQLiteConnection:
    """Lazily opened shared connection with one-time schema setup."""

    def __init__(self, path: Path | str, schema: list[str], tier: str) -> None:
        self.path = str(path)
        self._schema = schema
        self._tier = tier
        self._conn: aiosqlite.Connection | None = None
        self._lock = asyncio.Lock()
        self._statement_lock = asyncio.Lock()

    async def get(self) -> aiosqlite.Connection:
        async with self._lock:
            if self._conn is not None:
                return self._conn
            try:
                if self.path != ":memory:":
                    Path(self.path).parent.mkdir(parents=True, exist_ok=True)
                conn = await aiosqlite.connect(self.path)
                for statement in self._schema:
                    await conn.execute(statement)
                await conn.commit()
            except (aiosqlite.Error, OSError) as e:
                raise _translate(self._tier, "connect", self.path, e) from e
            self._conn = conn
            logger.info(f"Opened SQLite tier {self._tier} at {self.path}")
            return conn

    @asynccontextmanager
    async def session(self) -> AsyncIterator[aiosqlite.Connection]:
        """Exclusive use of the connection for a sequence of statements."""
        conn = await self.get()
        async with self._statement_lock:
            yield conn

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[aiosqlite.Connection]:
        """Exclusive use of the connection inside ``BEGIN IMMEDIATE``.

        Commits on success, rolls back on any failure. Only this caller's
        statements are in the transaction.
        """
        async with self.session() as conn:
            await conn.execute("BEGIN IMMEDIATE")
            try:
                yield conn
            except BaseException:
                await conn.rollback()
                raise
            await conn.commit()

    async def close(self) -> None:
        async with self._lock, self._statement_lock:
            if self._conn is not None:
                await self._conn.close()
                self._conn = None


class SQLiteFallbackStore(RemoteFallbackStore):
    """Generic key/value table on SQLite.

    Table schema:
        user_storage(user_id, storage_key, data, created_at, updated_at)
        UNIQUE(user_id, storage_key)
    """

    name = FALLBACK_TIER

    def __init__(self, path: Path | str, table: str = "user_storage") -> None:
        if not _IDENTIFIER.match(table):
            raise ValueError(f"Invalid table name: {table}")
        self.table = table
        self._db = _SQLiteConnection(
            path,
            [
                f"""
                CREATE TABLE IF NOT EXISTS {table} (
                    user_id TEXT NOT NULL,
                    storage_key TEXT NOT NULL,
                    data TEXT NOT NULL,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL,
                    PRIMARY KEY (user_id, storage_key)
                )
                """
            ],
            self.name,
        )

    @property
    def path(self) -> str:
        return self._db.path

    async def get(self, key: str, scope: str) -> Any | None:
        try:
            async with self._db.session() as conn:
                async with conn.execute(
                    f"SELECT data FROM {self.table} WHERE user_id = ? AND storage_key = ?",
                    (scope, key),
                ) as cursor:
                    row = await cursor.fetchone()
        except aiosqlite.Error as e:
            raise _translate(self.name, "get", self.path, e) from e
        if row is None:
            return None
        return json.loads(row[0])

    async def put(self, key: str, scope: str, record: Any) -> None:
        data = json.dumps(record)
        now = _now()
        try:
            async with self._db.transaction() as conn:
                await conn.execute(
                    f"""
                    INSERT INTO {self.table} (user_id, storage_key, data, created_at, updated_at)
                    VALUES (?, ?, ?, ?, ?)
                    ON CONFLICT (user_id, storage_key)
                    DO UPDATE SET data = excluded.data, updated_at = excluded.updated_at
                    """,
                    (scope, key, data, now, now),
                )
        except aiosqlite.Error as e:
            raise _translate(self.name, "put", self.path, e) from e

    async def delete(self, key: str, scope: str) -> None:
        try:
            async with self._db.transaction() as conn:
                await conn.execute(
                    f"DELETE FROM {self.table} WHERE user_id = ? AND storage_key = ?",
                    (scope, key),
                )
        except aiosqlite.Error as e:
            raise _translate(self.name, "delete", self.path, e) from e

    async def list_keys(self, scope: str) -> list[str]:
        """Storage keys that have a row for the scope."""
        try:
            async with self._db.session() as conn:
                async with conn.execute(
                    f"SELECT storage_key FROM {self.table} WHERE user_id = ? "
                    "ORDER BY storage_key",
                    (scope,),
                ) as cursor:
                    rows = await cursor.fetchall()
        except aiosqlite.Error as e:
            raise _translate(self.name, "list_keys", self.path, e) from e
        return [row[0] for row in rows]

    async def close(self) -> None:
        await self._db.close()


class SQLiteEntityAdapter(DurableStoreAdapter):
    """Entity table for one storage key on SQLite.

    A list record is stored one row per entity, in order; anything else is
    stored as a single row. A per-scope header row records the shape so an
    empty list is distinguishable from a scope that was never written.

    Table schema:
        {table}(scope, row_id, position, data, updated_at)
        {table}_sets(scope, shape, updated_at)
    """

    def __init__(self, path: Path | str, key: str, table: str | None = None) -> None:
        self.key = key
        self.table = table or key.replace("-", "_")
        if not _IDENTIFIER.match(self.table):
            raise ValueError(f"Invalid table name: {self.table}")
        self.name = durable_tier_name(key)
        self._db = _SQLiteConnection(
            path,
            [
                f"""
                CREATE TABLE IF NOT EXISTS {self.table} (
                    scope TEXT NOT NULL,
                    row_id TEXT NOT NULL,
                    position INTEGER NOT NULL,
                    data TEXT NOT NULL,
                    updated_at TEXT NOT NULL,
                    PRIMARY KEY (scope, row_id)
                )
                """,
                f"""
                CREATE TABLE IF NOT EXISTS {self.table}_sets (
                    scope TEXT PRIMARY KEY,
                    shape TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                )
                """,
            ],
            self.name,
        )

    @property
    def path(self) -> str:
        return self._db.path

    async def read(self, scope: str) -> Any | None:
        try:
            async with self._db.session() as conn:
                async with conn.execute(
                    f"SELECT shape FROM {self.table}_sets WHERE scope = ?", (scope,)
                ) as cursor:
                    header = await cursor.fetchone()
                if header is None:
                    return None
                async with conn.execute(
                    f"SELECT data FROM {self.table} WHERE scope = ? ORDER BY position",
                    (scope,),
                ) as cursor:
                    rows = await cursor.fetchall()
        except aiosqlite.Error as e:
            raise _translate(self.name, "read", self.path, e) from e
        return record_from_rows(header[0], [json.loads(row[0]) for row in rows])

    async def write(self, scope: str, record: Any) -> None:
        shape, rows = entity_rows(record)
        now = _now()
        values = [
            (scope, row_id, position, json.dumps(entity), now)
            for position, (row_id, entity) in enumerate(rows)
        ]
        try:
            async with self._db.transaction() as conn:
                await conn.execute(f"DELETE FROM {self.table} WHERE scope = ?", (scope,))
                await conn.executemany(
                    f"""
                    INSERT INTO {self.table} (scope, row_id, position, data, updated_at)
                    VALUES (?, ?, ?, ?, ?)
                    """,
                    values,
                )
                await conn.execute(
                    f"""
                    INSERT INTO {self.table}_sets (scope, shape, updated_at) VALUES (?, ?, ?)
                    ON CONFLICT (scope) DO UPDATE SET shape = excluded.shape,
                        updated_at = excluded.updated_at
                    """,
                    (scope, shape, now),
                )
        except aiosqlite.Error as e:
            raise _translate(self.name, "write", self.path, e) from e

    async def delete(self, scope: str) -> None:
        try:
            async with self._db.transaction() as conn:
                await conn.execute(f"DELETE FROM {self.table} WHERE scope = ?", (scope,))
                await conn.execute(f"DELETE FROM {self.table}_sets WHERE scope = ?", (scope,))
        except aiosqlite.Error as e:
            raise _translate(self.name, "delete", self.path, e) from e

    async def close(self) -> None:
        await self._db.close()
