from __future__ import annotations

import asyncio
import logging

try:
    import asyncpg
except Exception:  # pragma: no cover - optional dependency at runtime
    asyncpg = None  # type: ignore[assignment]

logger = logging.getLogger("persona_sim.store")


class PostgresStore:
    """Shared key/value store for multi-replica deployments."""

    SCHEMA_VERSION = 1
    backend_name = "postgres"

    def __init__(self, dsn: str) -> None:
        self.dsn = dsn.strip()
        if not self.dsn:
            raise ValueError("STORE_POSTGRES_DSN cannot be empty")
        self._pool: "asyncpg.Pool | None" = None
        self._init_lock = asyncio.Lock()
        self._initialized = False

    async def _ensure_pool(self) -> "asyncpg.Pool":
        if asyncpg is None:
            raise RuntimeError("Postgres store backend requires asyncpg. Install with: pip install asyncpg")
        if self._pool is None:
            self._pool = await asyncpg.create_pool(
                dsn=self.dsn,
                min_size=1,
                max_size=6,
                command_timeout=30.0,
            )
        return self._pool

    async def close(self) -> None:
        if self._pool is not None:
            await self._pool.close()
            self._pool = None
            logger.info("Postgres store pool closed")
        self._initialized = False

    async def ping(self) -> None:
        pool = await self._ensure_pool()
        async with pool.acquire() as conn:
            await conn.execute("SELECT 1")

    async def start(self) -> None:
        async with self._init_lock:
            if self._initialized:
                return
            pool = await self._ensure_pool()
            async with pool.acquire() as conn:
                async with conn.transaction():
                    await conn.execute(
                        """
                        CREATE TABLE IF NOT EXISTS store_schema_meta (
                            id SMALLINT PRIMARY KEY CHECK (id = 1),
                            version INTEGER NOT NULL
                        )
                        """
                    )
                    version = await conn.fetchval("SELECT version FROM store_schema_meta WHERE id = 1")
                    version = int(version or 0)
                    if version > self.SCHEMA_VERSION:
                        raise RuntimeError(
                            f"Postgres store schema version {version} is newer than supported {self.SCHEMA_VERSION}. "
                            "Upgrade the service before starting."
                        )
                    await self._create_schema(conn)
                    if version != self.SCHEMA_VERSION:
                        await conn.execute(
                            """
                            INSERT INTO store_schema_meta (id, version) VALUES (1, $1)
                            ON CONFLICT(id) DO UPDATE SET version = EXCLUDED.version
                            """,
                            self.SCHEMA_VERSION,
                        )
            self._initialized = True
            logger.info("Postgres store ready (schema v%s)", self.SCHEMA_VERSION)

    async def _create_schema(self, conn: "asyncpg.Connection") -> None:
        await conn.execute(
            """
            CREATE TABLE IF NOT EXISTS kv_records (
                key TEXT PRIMARY KEY,
                value BYTEA NOT NULL,
                expires_at TIMESTAMPTZ NOT NULL,
                updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
            );

            CREATE INDEX IF NOT EXISTS idx_kv_records_expires_at
            ON kv_records(expires_at);
            """
        )

    async def get(self, key: str) -> bytes | None:
        pool = await self._ensure_pool()
        async with pool.acquire() as conn:
            value = await conn.fetchval(
                "SELECT value FROM kv_records WHERE key = $1 AND expires_at > NOW()",
                key,
            )
        return bytes(value) if value is not None else None

    async def set(self, key: str, value: bytes, ttl_seconds: int) -> None:
        if ttl_seconds <= 0:
            raise ValueError("ttl_seconds must be > 0")
        pool = await self._ensure_pool()
        async with pool.acquire() as conn:
            await conn.execute(
                """
                INSERT INTO kv_records (key, value, expires_at, updated_at)
                VALUES ($1, $2, NOW() + make_interval(secs => $3), NOW())
                ON CONFLICT(key) DO UPDATE SET
                    value = EXCLUDED.value,
                    expires_at = EXCLUDED.expires_at,
                    updated_at = NOW()
                """,
                key,
                bytes(value),
                float(ttl_seconds),
            )

    async def purge_expired(self) -> int:
        pool = await self._ensure_pool()
        async with pool.acquire() as conn:
            result = await conn.execute("DELETE FROM kv_records WHERE expires_at <= NOW()")
        try:
            return int(str(result).rsplit(" ", 1)[-1])
        except ValueError:
            return 0
