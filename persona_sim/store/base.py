from __future__ import annotations

from typing import Protocol


class KeyValueStore(Protocol):
    """Durable byte store with per-key expiry.

    ``get`` and ``set`` must be idempotent and safe to retry.
    """

    backend_name: str

    async def start(self) -> None: ...

    async def close(self) -> None: ...

    async def get(self, key: str) -> bytes | None: ...

    async def set(self, key: str, value: bytes, ttl_seconds: int) -> None: ...


def session_key(session_id: str) -> str:
    return f"session:{session_id}"


def memory_key(persona_id: str, user_id: str) -> str:
    return f"memory:{persona_id}:{user_id}"


def interaction_key(session_id: str, turn: int) -> str:
    return f"interaction:{session_id}:{turn:05d}"
