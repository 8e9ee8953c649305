"""In-memory query log: a bounded ring buffer with statistics derived on read."""

from __future__ import annotations

from collections import deque
from dataclasses import dataclass
from datetime import UTC, datetime

DEFAULT_CAPACITY = 100
MAX_SQL_LENGTH = 500


@dataclass(frozen=True)
class LogEntry:
    timestamp: datetime
    sql: str
    duration_ms: float
    success: bool
    error: str | None = None


@dataclass(frozen=True)
class SlowestQuery:
    sql: str
    duration_ms: float


@dataclass(frozen=True)
class QueryStats:
    total_queries: int
    success_rate: float  # percent, 0-100
    avg_execution_time_ms: float
    slowest_query: SlowestQuery | None


class QueryLogger:
    """Keeps the most recent ``capacity`` executions. Disabled loggers record nothing."""

    def __init__(self, *, enabled: bool = False, capacity: int = DEFAULT_CAPACITY) -> None:
        if capacity < 1:
            raise ValueError("capacity must be >= 1")
        self.enabled = enabled
        self.capacity = capacity
        self._entries: deque[LogEntry] = deque(maxlen=capacity)

    def log(
        self,
        sql: str,
        duration_ms: float,
        success: bool,
        error: str | None = None,
    ) -> None:
        if not self.enabled:
            return
        self._entries.append(
            LogEntry(
                timestamp=datetime.now(UTC),
                sql=sql[:MAX_SQL_LENGTH],
                duration_ms=duration_ms,
                success=success,
                error=error,
            )
        )

    def get_logs(self) -> list[LogEntry]:
        """Snapshot of retained entries, oldest first."""
        return list(self._entries)

    def recent(self, n: int) -> list[LogEntry]:
        if n <= 0:
            return []
        return list(self._entries)[-n:]

    def clear(self) -> None:
        self._entries.clear()

    def get_stats(self) -> QueryStats:
        entries = list(self._entries)
        total = len(entries)
        if total == 0:
            return QueryStats(
                total_queries=0,
                success_rate=0.0,
                avg_execution_time_ms=0.0,
                slowest_query=None,
            )

        successes = sum(1 for e in entries if e.success)
        slowest = max(entries, key=lambda e: e.duration_ms)
        return QueryStats(
            total_queries=total,
            success_rate=successes / total * 100,
            avg_execution_time_ms=round(sum(e.duration_ms for e in entries) / total, 2),
            slowest_query=SlowestQuery(sql=slowest.sql, duration_ms=slowest.duration_ms),
        )
