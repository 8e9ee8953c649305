"""QueryGateway: the single entry point a dispatch layer calls.

Wraps one adapter with the gateway's cross-cutting behaviour:

    1. Validate (read-only gate, identifiers, filter fragments); no DB call on rejection
    2. Clamp row caps to the configured ceiling
    3. Serve metadata from the TTL cache when possible
    4. Race the call against the per-query timeout
    5. Map engine errors into the gateway taxonomy
    6. Record query executions in the query log
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import AsyncIterator, Awaitable, Callable, Mapping
from dataclasses import dataclass, field
from typing import Any, TypeVar

import sqlglot
from sqlglot.errors import SqlglotError

from querygate.adapters._base import (
    DatabaseAdapter,
    ExplainPlan,
    ForeignKeyInfo,
    IndexInfo,
    QueryResult,
    Row,
    SchemaInfo,
    StoredProcedureInfo,
    StreamingMode,
    TableInfo,
    TableListItem,
    TableStatistics,
    ViewDefinition,
    ViewInfo,
)
from querygate.adapters._registry import create_adapter
from querygate.cache import (
    SCHEMAS_KEY,
    CacheStats,
    MetadataCache,
    table_info_key,
    tables_key,
    views_key,
)
from querygate.compare import SchemaDiffResult, compare_tables
from querygate.config import ConnectionConfig, GatewaySettings
from querygate.errors import (
    GatewayError,
    NotFoundError,
    QueryTimeoutError,
    ValidationError,
    map_error,
)
from querygate.logging import get_logger, operation_context
from querygate.policy import (
    ensure_identifier,
    ensure_read_only,
    paginate,
    split_qualified,
    validate_filter_expression,
)
from querygate.querylog import LogEntry, QueryLogger, QueryStats
from querygate.templates import QueryTemplate, TemplateRegistry

T = TypeVar("T")

RECENT_LOG_COUNT = 10


def _detached(value: T) -> T:
    # Cached lists are copied on the way in and out; their items are frozen.
    if isinstance(value, list):
        return list(value)  # type: ignore[return-value]
    return value


@dataclass(frozen=True)
class MultiQueryItem:
    """Outcome of one statement in execute_multi_query()."""

    index: int
    sql: str
    success: bool
    result: QueryResult | None = None
    error: str | None = None
    error_code: str | None = None


@dataclass(frozen=True)
class ConnectionTestResult:
    success: bool
    response_time_ms: float
    db_type: str
    error: str | None = None


@dataclass(frozen=True)
class PerformanceMetrics:
    query_stats: QueryStats
    recent_queries: list[LogEntry]
    cache: CacheStats
    uptime_seconds: float
    logging_enabled: bool


@dataclass(frozen=True)
class HealthReport:
    status: str  # "healthy" or "degraded"
    db_type: str
    connected: bool
    response_time_ms: float
    uptime_seconds: float
    streaming_mode: str
    cache: CacheStats
    query_stats: QueryStats
    details: dict[str, Any] = field(default_factory=dict)


class QueryGateway:
    """Read-only query gateway over one database adapter."""

    def __init__(
        self,
        adapter: DatabaseAdapter,
        settings: GatewaySettings | None = None,
        *,
        cache: MetadataCache | None = None,
        query_logger: QueryLogger | None = None,
        templates: TemplateRegistry | None = None,
    ) -> None:
        self.adapter = adapter
        self.settings = settings or GatewaySettings()
        s = self.settings
        self.cache = cache if cache is not None else MetadataCache(
            enabled=s.cache_enabled, ttl=s.cache_ttl
        )
        self.query_logger = query_logger if query_logger is not None else QueryLogger(
            enabled=s.log_queries, capacity=s.log_capacity
        )
        self.templates = templates if templates is not None else TemplateRegistry()
        self._started = time.monotonic()

    @classmethod
    def from_config(
        cls, config: ConnectionConfig, settings: GatewaySettings | None = None, **kwargs: Any
    ) -> QueryGateway:
        settings = settings or GatewaySettings()
        return cls(create_adapter(config, settings), settings, **kwargs)

    # -- Internals --

    @property
    def uptime_seconds(self) -> float:
        return time.monotonic() - self._started

    def _db(self) -> str:
        return self.adapter.db_type().value

    def clamp_rows(self, max_rows: int | None) -> int:
        """Resolve a caller's row cap: default when unset, never above the ceiling."""
        if max_rows is None:
            return self.settings.default_max_rows
        return max(0, min(int(max_rows), self.settings.max_rows_ceiling))

    async def _timed(self, awaitable: Awaitable[T]) -> T:
        timeout = self.settings.query_timeout
        if timeout is None:
            return await awaitable
        try:
            async with asyncio.timeout(timeout):
                return await awaitable
        except TimeoutError as e:
            raise QueryTimeoutError(f"Query exceeded the {timeout}s timeout") from e

    def _mapped(self, exc: Exception) -> GatewayError:
        return map_error(exc, self.adapter.db_type())

    async def _call(self, op: str, make: Callable[[], Awaitable[T]]) -> T:
        """Run an adapter call under the timeout, raising mapped errors."""
        with operation_context(self._db(), op):
            try:
                return await self._timed(make())
            except Exception as e:
                mapped = self._mapped(e)
                get_logger("gateway").error(
                    "operation_failed", code=mapped.code, error=mapped.message
                )
                if mapped is e:
                    raise
                raise mapped from e

    async def _logged(self, op: str, sql: str, make: Callable[[], Awaitable[T]]) -> T:
        """Like _call(), also recording the execution in the query log."""
        with operation_context(self._db(), op):
            log = get_logger("gateway")
            log.debug("query_start", sql=sql)
            t0 = time.monotonic()
            try:
                result = await self._timed(make())
            except Exception as e:
                duration_ms = (time.monotonic() - t0) * 1000
                mapped = self._mapped(e)
                self.query_logger.log(sql, duration_ms, False, mapped.message)
                log.error("query_failed", code=mapped.code, error=mapped.message)
                if mapped is e:
                    raise
                raise mapped from e
            duration_ms = (time.monotonic() - t0) * 1000
            self.query_logger.log(sql, duration_ms, True)
            log.debug("query_complete", duration_ms=round(duration_ms, 2))
            return result

    async def _cached(self, key: str, op: str, make: Callable[[], Awaitable[T]]) -> T:
        hit = self.cache.get(key)
        if hit is not None:
            get_logger("gateway").debug("cache_hit", db=self._db(), op=op, key=key)
            return _detached(hit)
        value = await self._call(op, make)
        self.cache.set(key, _detached(value))
        return value

    @staticmethod
    def _resolve_table(table: str, schema: str | None) -> tuple[str, str | None]:
        """Validate a table (or view) reference and split ``schema.table``."""
        ensure_identifier(table, what="table name")
        if schema is not None:
            ensure_identifier(schema, what="schema name")
        schema, table = split_qualified(table, schema)
        return table, schema

    # -- Lifecycle --

    async def connect(self) -> None:
        await self._call("connect", self.adapter.connect)

    async def disconnect(self) -> None:
        self.cache.clear()
        await self.adapter.disconnect()

    async def test_connection(self) -> ConnectionTestResult:
        t0 = time.monotonic()
        try:
            ok = await self._call("test_connection", self.adapter.test_connection)
        except GatewayError as e:
            return ConnectionTestResult(
                success=False,
                response_time_ms=(time.monotonic() - t0) * 1000,
                db_type=self._db(),
                error=e.message,
            )
        return ConnectionTestResult(
            success=ok,
            response_time_ms=(time.monotonic() - t0) * 1000,
            db_type=self._db(),
            error=None if ok else "Connection test failed",
        )

    # -- Query execution --

    async def execute_query(
        self,
        sql: str,
        max_rows: int | None = None,
        *,
        page: int | None = None,
        page_size: int | None = None,
        exclude_large_columns: bool = False,
    ) -> QueryResult:
        ensure_read_only(sql)
        cap = self.clamp_rows(max_rows)
        effective = sql
        if page is not None or page_size is not None:
            size = self.clamp_rows(page_size)
            try:
                effective = paginate(
                    sql,
                    page=1 if page is None else page,
                    page_size=size,
                    dialect=self.adapter.dialect(),
                )
            except ValueError as e:
                raise ValidationError(str(e)) from e
            cap = size

        return await self._logged(
            "execute_query",
            sql,
            lambda: self.adapter.execute_query(
                effective, cap, exclude_large_columns=exclude_large_columns
            ),
        )

    async def execute_query_stream(
        self, sql: str, batch_size: int | None = None
    ) -> AsyncIterator[list[Row]]:
        """Yield row batches. Validation runs on the first request, before any adapter call."""
        ensure_read_only(sql)
        size = batch_size if batch_size is not None else self.settings.stream_batch_size
        if size < 1:
            raise ValidationError(f"batch_size must be >= 1, got {size}")
        size = min(size, self.settings.max_stream_batch_size)

        log = get_logger("gateway")
        if self.adapter.streaming_mode is StreamingMode.BUFFERED:
            log.debug("stream_buffered", db=self._db())

        stream = self.adapter.execute_query_stream(sql, size)
        t0 = time.monotonic()
        try:
            while True:
                try:
                    batch = await self._timed(anext(stream))
                except StopAsyncIteration:
                    break
                except Exception as e:
                    mapped = self._mapped(e)
                    elapsed = (time.monotonic() - t0) * 1000
                    self.query_logger.log(sql, elapsed, False, mapped.message)
                    if mapped is e:
                        raise
                    raise mapped from e
                yield batch
        finally:
            await stream.aclose()
        self.query_logger.log(sql, (time.monotonic() - t0) * 1000, True)

    async def execute_transaction(
        self,
        statements: list[str],
        max_rows: int | None = None,
        *,
        exclude_large_columns: bool = False,
    ) -> list[QueryResult]:
        """All statements are validated before any of them reaches the database."""
        if not statements:
            raise ValidationError("At least one query is required")
        for i, sql in enumerate(statements):
            try:
                ensure_read_only(sql)
            except ValidationError as e:
                raise ValidationError(f"Query {i + 1}: {e.message}") from e
        cap = self.clamp_rows(max_rows)
        return await self._logged(
            "execute_transaction",
            "; ".join(statements),
            lambda: self.adapter.execute_transaction(
                list(statements), cap, exclude_large_columns=exclude_large_columns
            ),
        )

    async def execute_multi_query(
        self, statements: list[str], max_rows: int | None = None
    ) -> list[MultiQueryItem]:
        """Run independent statements; one failure does not stop the rest."""
        if not statements:
            raise ValidationError("At least one query is required")
        for i, sql in enumerate(statements):
            try:
                ensure_read_only(sql)
            except ValidationError as e:
                raise ValidationError(f"Query {i + 1}: {e.message}") from e

        items: list[MultiQueryItem] = []
        for i, sql in enumerate(statements):
            try:
                result = await self.execute_query(sql, max_rows)
            except GatewayError as e:
                items.append(
                    MultiQueryItem(
                        index=i, sql=sql, success=False, error=e.message, error_code=e.code
                    )
                )
            else:
                items.append(MultiQueryItem(index=i, sql=sql, success=True, result=result))
        return items

    async def explain_query(self, sql: str) -> ExplainPlan:
        ensure_read_only(sql)
        stripped = sql.strip().rstrip(";")
        return await self._call("explain_query", lambda: self.adapter.explain_query(stripped))

    # -- Metadata --

    async def get_table_info(self, table: str, schema: str | None = None) -> TableInfo:
        table, schema = self._resolve_table(table, schema)
        return await self._cached(
            table_info_key(schema, table),
            "get_table_info",
            lambda: self.adapter.get_table_info(table, schema),
        )

    async def list_tables(
        self, schema: str | None = None, pattern: str | None = None
    ) -> list[TableListItem]:
        if schema is not None:
            ensure_identifier(schema, what="schema name")
        return await self._cached(
            tables_key(schema, pattern),
            "list_tables",
            lambda: self.adapter.list_tables(schema, pattern),
        )

    async def list_schemas(self) -> list[SchemaInfo]:
        return await self._cached(SCHEMAS_KEY, "list_schemas", self.adapter.list_schemas)

    async def list_views(
        self, schema: str | None = None, pattern: str | None = None
    ) -> list[ViewInfo]:
        if schema is not None:
            ensure_identifier(schema, what="schema name")
        return await self._cached(
            views_key(schema, pattern),
            "list_views",
            lambda: self.adapter.list_views(schema, pattern),
        )

    async def get_view_definition(self, view: str, schema: str | None = None) -> ViewDefinition:
        view, schema = self._resolve_table(view, schema)
        return await self._call(
            "get_view_definition", lambda: self.adapter.get_view_definition(view, schema)
        )

    async def get_row_count(
        self, table: str, schema: str | None = None, where: str | None = None
    ) -> int:
        table, schema = self._resolve_table(table, schema)
        check = validate_filter_expression(where)
        if not check.is_valid:
            raise ValidationError(check.error or "Invalid filter expression")
        return await self._call(
            "get_row_count", lambda: self.adapter.get_row_count(table, schema, where)
        )

    async def get_indexes(self, table: str, schema: str | None = None) -> list[IndexInfo]:
        table, schema = self._resolve_table(table, schema)
        return await self._call("get_indexes", lambda: self.adapter.get_indexes(table, schema))

    async def get_foreign_keys(self, table: str, schema: str | None = None) -> list[ForeignKeyInfo]:
        table, schema = self._resolve_table(table, schema)
        return await self._call(
            "get_foreign_keys", lambda: self.adapter.get_foreign_keys(table, schema)
        )

    async def list_stored_procedures(self, schema: str | None = None) -> list[StoredProcedureInfo]:
        if schema is not None:
            ensure_identifier(schema, what="schema name")
        return await self._call(
            "list_stored_procedures", lambda: self.adapter.list_stored_procedures(schema)
        )

    async def get_table_statistics(self, table: str, schema: str | None = None) -> TableStatistics:
        table, schema = self._resolve_table(table, schema)
        return await self._call(
            "get_table_statistics", lambda: self.adapter.get_table_statistics(table, schema)
        )

    async def sample_table_data(
        self,
        table: str,
        schema: str | None = None,
        limit: int = 10,
        random: bool = False,
    ) -> QueryResult:
        table, schema = self._resolve_table(table, schema)
        cap = self.clamp_rows(limit)
        return await self._call(
            "sample_table_data",
            lambda: self.adapter.sample_table_data(table, schema, cap, random),
        )

    def clear_cache(self) -> None:
        self.cache.clear()

    # -- Templates --

    def list_templates(self) -> list[QueryTemplate]:
        return self.templates.list_templates()

    def render_template(self, template_id: str, params: Mapping[str, object]) -> str:
        """Render a template and transpile it into the adapter's dialect."""
        sql = self.templates.render(template_id, params)
        try:
            return sqlglot.transpile(sql, write=self.adapter.dialect())[0]
        except SqlglotError as e:
            get_logger("gateway").debug(
                "template_transpile_skipped", template=template_id, error=str(e)
            )
            return sql

    async def execute_template(
        self,
        template_id: str,
        params: Mapping[str, object],
        max_rows: int | None = None,
    ) -> QueryResult:
        sql = self.render_template(template_id, params)
        return await self.execute_query(sql, max_rows)

    # -- Schema comparison --

    async def compare_schemas(
        self,
        table1: str,
        table2: str,
        schema1: str | None = None,
        schema2: str | None = None,
    ) -> SchemaDiffResult:
        """Diff table1 (before) against table2 (after). A missing side counts as added/removed."""
        before = await self._table_or_none(table1, schema1)
        after = await self._table_or_none(table2, schema2)
        if before is None and after is None:
            raise NotFoundError(f"Neither {table1} nor {table2} exists")
        return compare_tables(before, after)

    async def _table_or_none(self, table: str, schema: str | None) -> TableInfo | None:
        try:
            return await self.get_table_info(table, schema)
        except NotFoundError:
            return None

    # -- Observability --

    def get_performance_metrics(self) -> PerformanceMetrics:
        return PerformanceMetrics(
            query_stats=self.query_logger.get_stats(),
            recent_queries=self.query_logger.recent(RECENT_LOG_COUNT),
            cache=self.cache.stats(),
            uptime_seconds=self.uptime_seconds,
            logging_enabled=self.query_logger.enabled,
        )

    async def health_check(self) -> HealthReport:
        check = await self.test_connection()
        details: dict[str, Any] = {}
        if check.error:
            details["error"] = check.error
        return HealthReport(
            status="healthy" if check.success else "degraded",
            db_type=check.db_type,
            connected=check.success,
            response_time_ms=check.response_time_ms,
            uptime_seconds=self.uptime_seconds,
            streaming_mode=self.adapter.streaming_mode.value,
            cache=self.cache.stats(),
            query_stats=self.query_logger.get_stats(),
            details=details,
        )
