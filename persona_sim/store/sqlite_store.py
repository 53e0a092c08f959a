from __future__ import annotations

import logging
import os
import time
from contextlib import asynccontextmanager
from pathlib import Path
from typing import AsyncIterator, Callable

import aiosqlite

logger = logging.getLogger("persona_sim.store")


def _sqlite_busy_timeout_ms() -> int:
    raw = os.getenv("STORE_SQLITE_BUSY_TIMEOUT_MS", "5000").strip()
    try:
        timeout = int(raw)
    except ValueError:
        timeout = 5000
    return max(0, min(timeout, 60000))


@asynccontextmanager
async def _sqlite_connection(db_path: str | Path) -> AsyncIterator[aiosqlite.Connection]:
    async with aiosqlite.connect(db_path) as db:
        timeout_ms = _sqlite_busy_timeout_ms()
        if timeout_ms > 0:
            await db.execute(f"PRAGMA busy_timeout={timeout_ms}")
        yield db


class SqliteStore:
    SCHEMA_VERSION = 1
    backend_name = "sqlite"

    def __init__(self, db_path: Path, clock: Callable[[], float] | None = None) -> None:
        self.db_path = Path(db_path)
        self._clock = clock or time.time
        self._initialized = False

    @staticmethod
    def _allow_destructive_reset_on_mismatch() -> bool:
        raw = os.getenv("STORE_SQLITE_RESET_ON_SCHEMA_MISMATCH", "")
        return raw.strip().lower() in {"1", "true", "yes", "y", "on"}

    async def _has_user_tables(self, db: aiosqlite.Connection) -> bool:
        async with db.execute(
            """
            SELECT 1
            FROM sqlite_master
            WHERE type = 'table'
              AND name NOT LIKE 'sqlite_%'
            LIMIT 1
            """
        ) as cursor:
            row = await cursor.fetchone()
        return bool(row)

    async def start(self) -> None:
        if self._initialized:
            return
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        async with _sqlite_connection(self.db_path) as db:
            await db.execute("PRAGMA journal_mode=WAL")
            async with db.execute("PRAGMA user_version") as cursor:
                row = await cursor.fetchone()
            version = int(row[0]) if row else 0
            has_tables = await self._has_user_tables(db)

            if has_tables and version != self.SCHEMA_VERSION:
                if not self._allow_destructive_reset_on_mismatch():
                    raise RuntimeError(
                        "SQLite schema version mismatch detected. "
                        f"Found user_version={version}, supported={self.SCHEMA_VERSION}. "
                        "Set STORE_SQLITE_RESET_ON_SCHEMA_MISMATCH=1 to allow destructive reset."
                    )
                logger.warning(
                    "Resetting SQLite store %s (user_version=%s, supported=%s)",
                    self.db_path,
                    version,
                    self.SCHEMA_VERSION,
                )
                await self._reset_schema(db)

            await self._create_schema(db)
            await db.execute(f"PRAGMA user_version = {self.SCHEMA_VERSION}")
            await db.commit()
        self._initialized = True
        logger.info("SQLite store ready: %s", self.db_path)

    async def _create_schema(self, db: aiosqlite.Connection) -> None:
        await db.executescript(
            """
            CREATE TABLE IF NOT EXISTS kv_records (
                key TEXT PRIMARY KEY,
                value BLOB NOT NULL,
                expires_at REAL NOT NULL,
                updated_at REAL NOT NULL
            );

            CREATE INDEX IF NOT EXISTS idx_kv_records_expires_at
            ON kv_records(expires_at);
            """
        )

    async def _reset_schema(self, db: aiosqlite.Connection) -> None:
        async with db.execute(
            "SELECT name FROM sqlite_master WHERE type = 'table' AND name NOT LIKE 'sqlite_%'"
        ) as cursor:
            rows = await cursor.fetchall()
        for (name,) in rows:
            await db.execute(f'DROP TABLE IF EXISTS "{name}"')

    async def close(self) -> None:
        self._initialized = False

    async def get(self, key: str) -> bytes | None:
        now = self._clock()
        async with _sqlite_connection(self.db_path) as db:
            async with db.execute(
                "SELECT value, expires_at FROM kv_records WHERE key = ?",
                (key,),
            ) as cursor:
                row = await cursor.fetchone()
            if row is None:
                return None
            if float(row[1]) <= now:
                await db.execute("DELETE FROM kv_records WHERE key = ? AND expires_at <= ?", (key, now))
                await db.commit()
                return None
        return bytes(row[0])

    async def set(self, key: str, value: bytes, ttl_seconds: int) -> None:
        if ttl_seconds <= 0:
            raise ValueError("ttl_seconds must be > 0")
        now = self._clock()
        async with _sqlite_connection(self.db_path) as db:
            await db.execute(
                """
                INSERT INTO kv_records (key, value, expires_at, updated_at)
                VALUES (?, ?, ?, ?)
                ON CONFLICT(key) DO UPDATE SET
                    value = excluded.value,
                    expires_at = excluded.expires_at,
                    updated_at = excluded.updated_at
                """,
                (key, bytes(value), now + ttl_seconds, now),
            )
            await db.commit()
