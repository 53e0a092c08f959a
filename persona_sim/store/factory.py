from __future__ import annotations

from typing import TYPE_CHECKING

from .base import KeyValueStore
from .memory_store import InMemoryStore
from .sqlite_store import SqliteStore

if TYPE_CHECKING:
    from ..config import Settings


def build_store(settings: "Settings") -> KeyValueStore:
    backend = settings.store_backend
    if backend == "memory":
        return InMemoryStore()
    if backend == "sqlite":
        return SqliteStore(settings.sqlite_path)
    if backend != "postgres":
        raise ValueError("STORE_BACKEND must be 'memory', 'sqlite' or 'postgres'")
    if not settings.postgres_dsn:
        raise ValueError("STORE_POSTGRES_DSN is required when STORE_BACKEND=postgres")

    from .postgres_store import PostgresStore

    return PostgresStore(settings.postgres_dsn)
