from __future__ import annotations

import time
from typing import Callable


class InMemoryStore:
    """Process-local store for tests and single-process demos."""

    backend_name = "memory"

    def __init__(self, clock: Callable[[], float] | None = None) -> None:
        self._clock = clock or time.monotonic
        self._records: dict[str, tuple[bytes, float]] = {}
        self.writes = 0

    async def start(self) -> None:
        return None

    async def close(self) -> None:
        return None

    async def get(self, key: str) -> bytes | None:
        record = self._records.get(key)
        if record is None:
            return None
        value, expires_at = record
        if expires_at <= self._clock():
            self._records.pop(key, None)
            return None
        return value

    async def set(self, key: str, value: bytes, ttl_seconds: int) -> None:
        if ttl_seconds <= 0:
            raise ValueError("ttl_seconds must be > 0")
        self._records[key] = (bytes(value), self._clock() + ttl_seconds)
        self.writes += 1

    def keys(self) -> list[str]:
        now = self._clock()
        return sorted(key for key, (_, expires_at) in self._records.items() if expires_at > now)
