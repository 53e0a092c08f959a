
from .base import KeyValueStore, interaction_key, memory_key, session_key
from .factory import build_store
from .memory_store import InMemoryStore
from .postgres_store import PostgresStore
from .sqlite_store import SqliteStore

__all__ = [
    "InMemoryStore",
    "KeyValueStore",
    "PostgresStore",
    "SqliteStore",
    "build_store",
    "interaction_key",
    "memory_key",
    "session_key",
]
