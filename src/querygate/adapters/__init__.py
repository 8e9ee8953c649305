"""Database adapters: implementations of the DatabaseAdapter protocol."""

from querygate.adapters._base import (
    ColumnInfo,
    DatabaseAdapter,
    DatabaseType,
    ExplainPlan,
    ForeignKeyInfo,
    IndexInfo,
    QueryResult,
    SchemaInfo,
    StoredProcedureInfo,
    StreamingMode,
    TableInfo,
    TableListItem,
    TableStatistics,
    ViewDefinition,
    ViewInfo,
)
from querygate.adapters._registry import create_adapter, get_adapter

__all__ = [
    "ColumnInfo",
    "DatabaseAdapter",
    "DatabaseType",
    "ExplainPlan",
    "ForeignKeyInfo",
    "IndexInfo",
    "QueryResult",
    "SchemaInfo",
    "StoredProcedureInfo",
    "StreamingMode",
    "TableInfo",
    "TableListItem",
    "TableStatistics",
    "ViewDefinition",
    "ViewInfo",
    "create_adapter",
    "get_adapter",
]
