"""Shared pooled workflow for dialect adapters.

Subclasses provide the driver hooks (open/close a connection, fetch, stream,
transaction control) and their own catalog SQL. Everything that must behave
the same on every engine lives here: lazy pool creation under retry, the
fail-fast state after disconnect(), row capping, large-column exclusion,
stream and transaction lifetimes.
"""

from __future__ import annotations

import asyncio
import re
import time
from collections.abc import AsyncIterator, Mapping, Sequence
from dataclasses import dataclass, field
from typing import Any

import structlog

from querygate.adapters._base import QueryResult, Row, StreamingMode
from querygate.config import ConnectionConfig, DatabaseType, GatewaySettings
from querygate.errors import ConnectionFailedError, NotFoundError
from querygate.policy.enrich import apply_row_limit
from querygate.policy.safety import split_qualified
from querygate.pool import ConnectionPool, SemaphorePool
from querygate.retry import with_retry

Params = Sequence[Any] | Mapping[str, Any] | None

_TYPE_ARGS = re.compile(r"\(\s*(\d+)\s*(?:,\s*(\d+)\s*)?\)")


@dataclass
class Fetched:
    """Raw rows from one statement, before dict conversion."""

    columns: list[str]
    rows: list[Sequence[Any]]
    large_columns: frozenset[str] = field(default_factory=frozenset)


def parse_type_args(declared: str | None) -> tuple[int | None, int | None]:
    """Pull (n, m) out of a declared type such as VARCHAR(20) or DECIMAL(10,2)."""
    if not declared:
        return None, None
    match = _TYPE_ARGS.search(declared)
    if match is None:
        return None, None
    first, second = match.groups()
    return int(first), int(second) if second is not None else None


class PooledAdapter:
    streaming_mode = StreamingMode.NATIVE

    # Statement used by test_connection().
    ping_sql = "SELECT 1"

    def __init__(self, config: ConnectionConfig, settings: GatewaySettings | None = None) -> None:
        if config.db_type != self.db_type():
            raise ValueError(
                f"{type(self).__name__} cannot use a {config.db_type.value} configuration"
            )
        self._config = config
        self._settings = settings or GatewaySettings()
        self._pool: ConnectionPool[Any] | None = None
        self._pool_lock = asyncio.Lock()
        self._disconnected = False

    # -- Driver hooks --

    async def _create_pool(self) -> ConnectionPool[Any]:
        """Build and open the connection pool.

        Adapters whose driver ships a pool override this and wrap it; the
        default pools connections from _open_connection() itself.
        """
        s = self._settings
        pool: SemaphorePool[Any] = SemaphorePool(
            self._open_connection,
            self._close_connection,
            min_size=s.pool_min_size,
            max_size=s.pool_max_size,
            idle_timeout=s.pool_idle_timeout,
            acquire_timeout=s.pool_acquire_timeout,
            name=self.db_type().value,
        )
        await pool.open()
        return pool

    async def _open_connection(self) -> Any:
        raise NotImplementedError

    async def _close_connection(self, conn: Any) -> None:
        raise NotImplementedError

    async def _fetch(
        self,
        conn: Any,
        sql: str,
        limit: int | None,
        params: Params = None,
        *,
        detect_large: bool = False,
    ) -> Fetched:
        """Execute *sql* and return at most *limit* rows (all rows if None)."""
        raise NotImplementedError

    def _stream(self, conn: Any, sql: str, batch_size: int) -> AsyncIterator[Fetched]:
        raise NotImplementedError

    async def _begin_read_only(self, conn: Any) -> None:
        raise NotImplementedError

    async def _commit(self, conn: Any) -> None:
        raise NotImplementedError

    async def _rollback(self, conn: Any) -> None:
        raise NotImplementedError

    def _random_order(self) -> str:
        return "RANDOM()"

    def quote_identifier(self, name: str) -> str:
        return '"' + name.replace('"', '""') + '"'

    def normalize_identifier(self, name: str) -> str:
        return name

    async def default_schema(self) -> str | None:
        return None

    def db_type(self) -> DatabaseType:
        raise NotImplementedError

    def dialect(self) -> str:
        raise NotImplementedError

    # -- Lifecycle --

    async def connect(self) -> None:
        self._disconnected = False
        await self._ensure_pool()

    async def disconnect(self) -> None:
        self._disconnected = True
        pool, self._pool = self._pool, None
        if pool is not None:
            await pool.close()
            structlog.get_logger().info("pool_closed", db=self.db_type().value)

    @property
    def pool(self) -> ConnectionPool[Any] | None:
        return self._pool

    async def _ensure_pool(self) -> ConnectionPool[Any]:
        if self._disconnected:
            raise ConnectionFailedError("Not connected. Call connect() first.")
        if self._pool is not None:
            return self._pool
        async with self._pool_lock:
            if self._pool is None:
                s = self._settings
                self._pool = await with_retry(
                    self._open_pool, attempts=s.retry_attempts, base_delay=s.retry_base_delay
                )
                structlog.get_logger().info(
                    "pool_opened", db=self.db_type().value, pool=type(self._pool).__name__
                )
        return self._pool

    async def _open_pool(self) -> ConnectionPool[Any]:
        # Borrow one connection so bad credentials or an unreachable host fail here.
        pool = await self._create_pool()
        try:
            async with pool.connection():
                pass
        except BaseException:
            await pool.close()
            raise
        return pool

    async def test_connection(self) -> bool:
        try:
            await self._catalog(self.ping_sql)
        except Exception as e:
            structlog.get_logger().warning(
                "connection_test_failed", db=self.db_type().value, error=str(e)
            )
            return False
        return True

    # -- Execution --

    async def execute_query(
        self, sql: str, max_rows: int, *, exclude_large_columns: bool = False
    ) -> QueryResult:
        if max_rows <= 0:
            return QueryResult(columns=[], rows=[], row_count=0)

        # One extra row tells us whether the cap cut the result short.
        fetch_n = max_rows + 1
        effective = apply_row_limit(_strip_sql(sql), limit=fetch_n, dialect=self.dialect())
        pool = await self._ensure_pool()

        t0 = time.monotonic()
        async with pool.connection() as conn:
            fetched = await self._fetch(
                conn, effective, fetch_n, detect_large=exclude_large_columns
            )
        duration_ms = (time.monotonic() - t0) * 1000

        return self._to_result(fetched, max_rows, exclude_large_columns, duration_ms)

    async def execute_query_stream(self, sql: str, batch_size: int) -> AsyncIterator[list[Row]]:
        """Yield batches of at most *batch_size* rows.

        The connection stays reserved until the stream is exhausted, closed
        or cancelled.
        """
        if batch_size < 1:
            raise ValueError(f"batch_size must be >= 1, got {batch_size}")
        pool = await self._ensure_pool()
        async with pool.connection() as conn:
            batches = self._stream(conn, _strip_sql(sql), batch_size)
            try:
                async for batch in batches:
                    if batch.rows:
                        yield [dict(zip(batch.columns, row, strict=True)) for row in batch.rows]
            finally:
                await batches.aclose()

    async def execute_transaction(
        self, statements: list[str], max_rows: int, *, exclude_large_columns: bool = False
    ) -> list[QueryResult]:
        """Run *statements* in order inside one read-only transaction.

        Any failure rolls back and propagates; there are no partial results.
        """
        pool = await self._ensure_pool()
        results: list[QueryResult] = []
        fetch_n = max_rows + 1

        async with pool.connection() as conn:
            await self._begin_read_only(conn)
            try:
                for sql in statements:
                    effective = apply_row_limit(
                        _strip_sql(sql), limit=fetch_n, dialect=self.dialect()
                    )
                    t0 = time.monotonic()
                    fetched = await self._fetch(
                        conn, effective, fetch_n, detect_large=exclude_large_columns
                    )
                    duration_ms = (time.monotonic() - t0) * 1000
                    results.append(
                        self._to_result(fetched, max_rows, exclude_large_columns, duration_ms)
                    )
            except Exception:
                await self._safe_rollback(conn)
                raise
            await self._commit(conn)

        return results

    async def _safe_rollback(self, conn: Any) -> None:
        try:
            await self._rollback(conn)
        except Exception as e:
            structlog.get_logger().warning(
                "rollback_failed", db=self.db_type().value, error=str(e)
            )

    def _to_result(
        self, fetched: Fetched, max_rows: int, exclude_large: bool, duration_ms: float
    ) -> QueryResult:
        raw_rows = fetched.rows[:max_rows]
        truncated = len(fetched.rows) > max_rows
        excluded = [c for c in fetched.columns if c in fetched.large_columns] if exclude_large else []

        rows: list[Row] = []
        for raw in raw_rows:
            row = dict(zip(fetched.columns, raw, strict=True))
            for name in excluded:
                row.pop(name, None)
            rows.append(row)

        columns = [c for c in fetched.columns if c not in excluded]
        return QueryResult(
            columns=columns,
            rows=rows,
            row_count=len(rows),
            duration_ms=duration_ms,
            truncated=truncated,
            excluded_columns=excluded,
        )

    # -- Catalog helpers --

    async def _catalog(self, sql: str, params: Params = None) -> list[Row]:
        """Run a catalog query and return all rows keyed by lower-cased column name."""
        pool = await self._ensure_pool()
        async with pool.connection() as conn:
            fetched = await self._fetch(conn, sql, None, params)
        columns = [c.lower() for c in fetched.columns]
        return [dict(zip(columns, row, strict=True)) for row in fetched.rows]

    async def _schema(self, schema: str | None) -> str | None:
        if schema:
            return self.normalize_identifier(schema)
        return await self.default_schema()

    async def _target(self, name: str, schema: str | None) -> tuple[str | None, str]:
        """Resolve (schema, object name) for a catalog lookup; accepts ``schema.name``."""
        schema, name = split_qualified(name, schema)
        return await self._schema(schema), self.normalize_identifier(name)

    def qualified_name(self, table: str, schema: str | None = None) -> str:
        schema, table = split_qualified(table, schema)
        parts = [schema, table] if schema else [table]
        return ".".join(self.quote_identifier(self.normalize_identifier(p)) for p in parts)

    async def get_row_count(
        self, table: str, schema: str | None = None, where: str | None = None
    ) -> int:
        sql = f"SELECT COUNT(*) AS cnt FROM {self.qualified_name(table, schema)}"
        if where and where.strip():
            sql += f" WHERE {where}"
        rows = await self._catalog(sql)
        return int(rows[0]["cnt"]) if rows else 0

    async def sample_table_data(
        self, table: str, schema: str | None = None, limit: int = 10, random: bool = False
    ) -> QueryResult:
        sql = f"SELECT * FROM {self.qualified_name(table, schema)}"
        if random:
            sql += f" ORDER BY {self._random_order()}"
        return await self.execute_query(sql, limit)

    @staticmethod
    def _require(rows: list[Any], what: str) -> None:
        if not rows:
            raise NotFoundError(f"{what} not found")


def _strip_sql(sql: str) -> str:
    return sql.strip().rstrip(";").rstrip()
