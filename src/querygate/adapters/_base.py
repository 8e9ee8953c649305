"""Database adapter protocol: the abstraction boundary between engines and drivers."""

from __future__ import annotations

import enum
from collections.abc import AsyncIterator
from dataclasses import dataclass, field
from datetime import datetime
from typing import Protocol, runtime_checkable

from querygate.config import ConnectionConfig, DatabaseType

Row = dict[str, object]


class StreamingMode(enum.Enum):
    NATIVE = "native"  # rows fetched incrementally from the server
    BUFFERED = "buffered"  # full result fetched once, then sliced into batches


@dataclass
class QueryResult:
    """Query execution result. ``row_count`` always equals ``len(rows)``."""

    columns: list[str]
    rows: list[Row]
    row_count: int
    duration_ms: float | None = None
    truncated: bool = False  # more rows were available beyond the cap
    excluded_columns: list[str] = field(default_factory=list)


@dataclass(frozen=True)
class ColumnInfo:
    name: str
    data_type: str
    nullable: bool = True
    length: int | None = None
    precision: int | None = None
    scale: int | None = None
    default: str | None = None
    is_primary_key: bool = False
    is_foreign_key: bool = False


@dataclass(frozen=True)
class TableInfo:
    name: str
    schema: str | None
    columns: tuple[ColumnInfo, ...] = ()
    row_count: int | None = None


@dataclass(frozen=True)
class TableListItem:
    name: str
    schema: str | None
    row_count: int | None = None  # catalog estimate where the engine keeps one
    last_analyzed: datetime | None = None


@dataclass(frozen=True)
class SchemaInfo:
    name: str
    table_count: int = 0
    view_count: int = 0


@dataclass(frozen=True)
class ViewInfo:
    name: str
    schema: str | None


@dataclass(frozen=True)
class ViewDefinition:
    name: str
    schema: str | None
    definition: str


@dataclass(frozen=True)
class IndexInfo:
    name: str
    table: str
    schema: str | None
    columns: tuple[str, ...]
    is_unique: bool = False
    index_type: str | None = None


@dataclass(frozen=True)
class ForeignKeyInfo:
    constraint_name: str
    table: str
    schema: str | None
    column: str
    referenced_table: str
    referenced_column: str
    referenced_schema: str | None = None
    on_delete: str | None = None
    on_update: str | None = None


@dataclass(frozen=True)
class StoredProcedureInfo:
    name: str
    schema: str | None
    kind: str  # PROCEDURE or FUNCTION
    return_type: str | None = None


@dataclass(frozen=True)
class TableStatistics:
    table: str
    schema: str | None
    row_count: int | None = None
    size_mb: float | None = None
    index_size_mb: float | None = None
    last_analyzed: datetime | None = None


@dataclass
class ExplainPlan:
    query: str
    plan: str
    estimated_cost: float | None = None
    estimated_rows: float | None = None
    plan_node: str | None = None  # e.g. "Seq Scan", "Index Scan"
    warnings: list[str] = field(default_factory=list)


@runtime_checkable
class DatabaseAdapter(Protocol):
    """Capability set every engine implements.

    Adapters run SQL as given. Read-only validation, caching, timeouts and
    error mapping live in the gateway in front of them.
    """

    streaming_mode: StreamingMode

    async def connect(self) -> None: ...
    async def disconnect(self) -> None: ...
    async def test_connection(self) -> bool: ...

    async def execute_query(
        self, sql: str, max_rows: int, *, exclude_large_columns: bool = False
    ) -> QueryResult: ...
    def execute_query_stream(self, sql: str, batch_size: int) -> AsyncIterator[list[Row]]: ...
    async def execute_transaction(
        self, statements: list[str], max_rows: int, *, exclude_large_columns: bool = False
    ) -> list[QueryResult]: ...

    async def get_table_info(self, table: str, schema: str | None = None) -> TableInfo: ...
    async def list_tables(
        self, schema: str | None = None, pattern: str | None = None
    ) -> list[TableListItem]: ...
    async def get_row_count(
        self, table: str, schema: str | None = None, where: str | None = None
    ) -> int: ...
    async def list_schemas(self) -> list[SchemaInfo]: ...
    async def list_views(
        self, schema: str | None = None, pattern: str | None = None
    ) -> list[ViewInfo]: ...
    async def get_view_definition(self, view: str, schema: str | None = None) -> ViewDefinition: ...
    async def get_indexes(self, table: str, schema: str | None = None) -> list[IndexInfo]: ...
    async def get_foreign_keys(self, table: str, schema: str | None = None) -> list[ForeignKeyInfo]: ...
    async def list_stored_procedures(self, schema: str | None = None) -> list[StoredProcedureInfo]: ...
    async def get_table_statistics(self, table: str, schema: str | None = None) -> TableStatistics: ...
    async def explain_query(self, sql: str) -> ExplainPlan: ...
    async def sample_table_data(
        self, table: str, schema: str | None = None, limit: int = 10, random: bool = False
    ) -> QueryResult: ...

    def db_type(self) -> DatabaseType: ...
    def dialect(self) -> str:
        """sqlglot dialect name used for row-limit injection and template transpiling."""
        ...


__all__ = [
    "ColumnInfo",
    "ConnectionConfig",
    "DatabaseAdapter",
    "DatabaseType",
    "ExplainPlan",
    "ForeignKeyInfo",
    "IndexInfo",
    "QueryResult",
    "Row",
    "SchemaInfo",
    "StoredProcedureInfo",
    "StreamingMode",
    "TableInfo",
    "TableListItem",
    "TableStatistics",
    "ViewDefinition",
    "ViewInfo",
]
