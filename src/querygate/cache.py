"""TTL cache for metadata discovery results (table lists, schemas, views, table info).

Query results are never cached. Entries expire lazily: an expired entry is
dropped by the read that finds it.
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Any

DEFAULT_TTL_SECONDS = 300.0


@dataclass
class CacheEntry:
    payload: Any
    created: float
    ttl: float

    def expired(self, now: float) -> bool:
        return now - self.created > self.ttl


@dataclass(frozen=True)
class CacheStats:
    enabled: bool
    size: int
    ttl_seconds: float


class MetadataCache:
    def __init__(
        self,
        *,
        enabled: bool = True,
        ttl: float = DEFAULT_TTL_SECONDS,
        clock: Any = time.monotonic,
    ) -> None:
        self.enabled = enabled
        self.ttl = ttl
        self._clock = clock
        self._entries: dict[str, CacheEntry] = {}

    def get(self, key: str) -> Any | None:
        if not self.enabled:
            return None
        entry = self._entries.get(key)
        if entry is None:
            return None
        if entry.expired(self._clock()):
            del self._entries[key]
            return None
        return entry.payload

    def set(self, key: str, value: Any, ttl: float | None = None) -> None:
        if not self.enabled:
            return
        self._entries[key] = CacheEntry(
            payload=value,
            created=self._clock(),
            ttl=self.ttl if ttl is None else ttl,
        )

    def clear(self) -> None:
        self._entries.clear()

    def stats(self) -> CacheStats:
        return CacheStats(enabled=self.enabled, size=len(self._entries), ttl_seconds=self.ttl)


def tables_key(schema: str | None, pattern: str | None) -> str:
    return f"tables:{schema or 'default'}:{pattern or '*'}"


def views_key(schema: str | None, pattern: str | None) -> str:
    return f"views:{schema or 'default'}:{pattern or '*'}"


def table_info_key(schema: str | None, table: str) -> str:
    return f"table-info:{schema or 'default'}:{table}"


SCHEMAS_KEY = "schemas"
