"""SQL Server adapter: pymssql driven from worker threads.

pymssql is a blocking driver, so every driver call of one operation runs
inside a single asyncio.to_thread() call. That rules out holding an open
result set across awaits, which is why streaming here is BUFFERED: the full
result is fetched in one round trip and handed out in batches.
"""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator, Sequence
from typing import Any

import pymssql

from querygate.adapters._base import (
    ColumnInfo,
    DatabaseType,
    ExplainPlan,
    ForeignKeyInfo,
    IndexInfo,
    SchemaInfo,
    StoredProcedureInfo,
    StreamingMode,
    TableInfo,
    TableListItem,
    TableStatistics,
    ViewDefinition,
    ViewInfo,
)
from querygate.adapters._pooled import Fetched, Params, PooledAdapter

_LARGE_TYPE_NAMES = frozenset({"text", "ntext", "image", "xml"})

_SYSTEM_SCHEMAS = (
    "sys",
    "INFORMATION_SCHEMA",
    "guest",
    "db_owner",
    "db_accessadmin",
    "db_securityadmin",
    "db_ddladmin",
    "db_backupoperator",
    "db_datareader",
    "db_datawriter",
    "db_denydatareader",
    "db_denydatawriter",
)

_COLUMNS_SQL = """
SELECT c.COLUMN_NAME AS column_name, c.DATA_TYPE AS data_type,
       c.IS_NULLABLE AS is_nullable, c.COLUMN_DEFAULT AS column_default,
       c.CHARACTER_MAXIMUM_LENGTH AS length,
       c.NUMERIC_PRECISION AS num_precision, c.NUMERIC_SCALE AS num_scale,
       CASE WHEN EXISTS (
           SELECT 1 FROM INFORMATION_SCHEMA.TABLE_CONSTRAINTS tc
           JOIN INFORMATION_SCHEMA.KEY_COLUMN_USAGE k
             ON k.CONSTRAINT_NAME = tc.CONSTRAINT_NAME AND k.TABLE_SCHEMA = tc.TABLE_SCHEMA
           WHERE tc.CONSTRAINT_TYPE = 'PRIMARY KEY' AND tc.TABLE_SCHEMA = c.TABLE_SCHEMA
             AND tc.TABLE_NAME = c.TABLE_NAME AND k.COLUMN_NAME = c.COLUMN_NAME
       ) THEN 1 ELSE 0 END AS is_primary_key,
       CASE WHEN EXISTS (
           SELECT 1 FROM INFORMATION_SCHEMA.TABLE_CONSTRAINTS tc
           JOIN INFORMATION_SCHEMA.KEY_COLUMN_USAGE k
             ON k.CONSTRAINT_NAME = tc.CONSTRAINT_NAME AND k.TABLE_SCHEMA = tc.TABLE_SCHEMA
           WHERE tc.CONSTRAINT_TYPE = 'FOREIGN KEY' AND tc.TABLE_SCHEMA = c.TABLE_SCHEMA
             AND tc.TABLE_NAME = c.TABLE_NAME AND k.COLUMN_NAME = c.COLUMN_NAME
       ) THEN 1 ELSE 0 END AS is_foreign_key
FROM INFORMATION_SCHEMA.COLUMNS c
WHERE c.TABLE_SCHEMA = %s AND c.TABLE_NAME = %s
ORDER BY c.ORDINAL_POSITION
"""

_TABLES_SQL = """
SELECT t.name AS name,
       (SELECT SUM(p.rows) FROM sys.partitions p
         WHERE p.object_id = t.object_id AND p.index_id IN (0, 1)) AS row_count,
       (SELECT MAX(STATS_DATE(st.object_id, st.stats_id)) FROM sys.stats st
         WHERE st.object_id = t.object_id) AS last_analyzed
FROM sys.tables t
JOIN sys.schemas s ON s.schema_id = t.schema_id
WHERE s.name = %s
"""

_INDEXES_SQL = """
SELECT i.name AS index_name, i.is_unique, i.type_desc AS index_type,
       STRING_AGG(c.name, ',') WITHIN GROUP (ORDER BY ic.key_ordinal) AS columns
FROM sys.indexes i
JOIN sys.tables t ON t.object_id = i.object_id
JOIN sys.schemas s ON s.schema_id = t.schema_id
JOIN sys.index_columns ic ON ic.object_id = i.object_id AND ic.index_id = i.index_id
JOIN sys.columns c ON c.object_id = ic.object_id AND c.column_id = ic.column_id
WHERE s.name = %s AND t.name = %s AND i.name IS NOT NULL AND ic.is_included_column = 0
GROUP BY i.name, i.is_unique, i.type_desc
ORDER BY i.name
"""

_FOREIGN_KEYS_SQL = """
SELECT fk.name AS constraint_name, pc.name AS column_name,
       rs.name AS referenced_schema, rt.name AS referenced_table, rc.name AS referenced_column,
       fk.delete_referential_action_desc AS on_delete,
       fk.update_referential_action_desc AS on_update
FROM sys.foreign_keys fk
JOIN sys.foreign_key_columns fkc ON fkc.constraint_object_id = fk.object_id
JOIN sys.tables pt ON pt.object_id = fk.parent_object_id
JOIN sys.schemas ps ON ps.schema_id = pt.schema_id
JOIN sys.columns pc ON pc.object_id = fkc.parent_object_id AND pc.column_id = fkc.parent_column_id
JOIN sys.tables rt ON rt.object_id = fk.referenced_object_id
JOIN sys.schemas rs ON rs.schema_id = rt.schema_id
JOIN sys.columns rc
  ON rc.object_id = fkc.referenced_object_id AND rc.column_id = fkc.referenced_column_id
WHERE ps.name = %s AND pt.name = %s
ORDER BY fk.name, fkc.constraint_column_id
"""

_STATISTICS_SQL = """
SELECT SUM(CASE WHEN i.index_id IN (0, 1) THEN p.rows ELSE 0 END) AS row_count,
       SUM(a.total_pages) * 8 / 1024.0 AS total_mb,
       SUM(CASE WHEN i.index_id > 1 THEN a.total_pages ELSE 0 END) * 8 / 1024.0 AS index_mb,
       MAX(STATS_DATE(i.object_id, i.index_id)) AS last_analyzed
FROM sys.tables t
JOIN sys.schemas s ON s.schema_id = t.schema_id
JOIN sys.indexes i ON i.object_id = t.object_id
JOIN sys.partitions p ON p.object_id = i.object_id AND p.index_id = i.index_id
JOIN sys.allocation_units a ON a.container_id = p.partition_id
WHERE s.name = %s AND t.name = %s
HAVING COUNT(*) > 0
"""


def _run_sync(
    conn: Any,
    sql: str,
    limit: int | None,
    params: Params,
    detect_large: bool,
) -> Fetched:
    large: set[str] = set()
    cur = conn.cursor()
    try:
        if detect_large:
            cur.execute(
                "SELECT name, system_type_name, max_length "
                "FROM sys.dm_exec_describe_first_result_set(%s, NULL, 0)",
                (sql,),
            )
            for name, type_name, max_length in cur.fetchall():
                base = (type_name or "").split("(")[0].lower()
                if name and (base in _LARGE_TYPE_NAMES or max_length == -1):
                    large.add(name)

        if params:
            cur.execute(sql, params)
        else:
            cur.execute(sql)
        if cur.description is None:
            return Fetched(columns=[], rows=[])
        columns = [d[0] for d in cur.description]
        rows: Sequence[Any] = cur.fetchmany(limit) if limit is not None else cur.fetchall()
        # Pending rows block the next statement on this connection.
        for _ in cur:
            pass
        return Fetched(columns=columns, rows=list(rows), large_columns=frozenset(large))
    finally:
        cur.close()


def _execute_sync(conn: Any, *statements: str) -> None:
    cur = conn.cursor()
    try:
        for sql in statements:
            cur.execute(sql)
    finally:
        cur.close()


def _explain_sync(conn: Any, sql: str) -> list[str]:
    cur = conn.cursor()
    lines: list[str] = []
    try:
        cur.execute("SET SHOWPLAN_TEXT ON")
        try:
            cur.execute(sql)
            while True:
                if cur.description is not None:
                    lines.extend(str(row[0]) for row in cur.fetchall())
                if not cur.nextset():
                    break
        finally:
            cur.execute("SET SHOWPLAN_TEXT OFF")
    finally:
        cur.close()
    return lines


class SQLServerAdapter(PooledAdapter):
    """SQL Server adapter using pymssql (blocking, run via asyncio.to_thread)."""

    streaming_mode = StreamingMode.BUFFERED

    async def _open_connection(self) -> Any:
        cfg = self._config
        return await asyncio.to_thread(
            pymssql.connect,
            server=cfg.host,
            port=str(cfg.port),
            user=cfg.user,
            password=cfg.password or "",
            database=cfg.database,
            login_timeout=int(cfg.connect_timeout),
            appname=cfg.application_name,
            autocommit=True,
            **cfg.options,
        )

    async def _close_connection(self, conn: Any) -> None:
        await asyncio.to_thread(conn.close)

    async def _fetch(
        self,
        conn: Any,
        sql: str,
        limit: int | None,
        params: Params = None,
        *,
        detect_large: bool = False,
    ) -> Fetched:
        return await asyncio.to_thread(_run_sync, conn, sql, limit, params, detect_large)

    async def _stream(self, conn: Any, sql: str, batch_size: int) -> AsyncIterator[Fetched]:
        fetched = await asyncio.to_thread(_run_sync, conn, sql, None, None, False)
        for start in range(0, len(fetched.rows), batch_size):
            yield Fetched(columns=fetched.columns, rows=fetched.rows[start:start + batch_size])

    async def _begin_read_only(self, conn: Any) -> None:
        # SQL Server has no read-only transaction mode; REPEATABLE READ keeps reads consistent.
        await asyncio.to_thread(
            _execute_sync,
            conn,
            "SET TRANSACTION ISOLATION LEVEL REPEATABLE READ",
            "BEGIN TRANSACTION",
        )

    async def _commit(self, conn: Any) -> None:
        await asyncio.to_thread(
            _execute_sync,
            conn,
            "COMMIT TRANSACTION",
            "SET TRANSACTION ISOLATION LEVEL READ COMMITTED",
        )

    async def _rollback(self, conn: Any) -> None:
        await asyncio.to_thread(
            _execute_sync,
            conn,
            "IF @@TRANCOUNT > 0 ROLLBACK TRANSACTION",
            "SET TRANSACTION ISOLATION LEVEL READ COMMITTED",
        )

    def quote_identifier(self, name: str) -> str:
        return "[" + name.replace("]", "]]") + "]"

    def _random_order(self) -> str:
        return "NEWID()"

    async def default_schema(self) -> str | None:
        return "dbo"

    def db_type(self) -> DatabaseType:
        return DatabaseType.SQLSERVER

    def dialect(self) -> str:
        return "tsql"

    # -- Catalog --

    async def get_table_info(self, table: str, schema: str | None = None) -> TableInfo:
        schema, table = await self._target(table, schema)
        rows = await self._catalog(_COLUMNS_SQL, (schema, table))
        self._require(rows, f"Table {schema}.{table}")

        counts = await self._catalog(_TABLES_SQL + " AND t.name = %s", (schema, table))
        columns = tuple(
            ColumnInfo(
                name=r["column_name"],
                data_type=r["data_type"],
                nullable=r["is_nullable"] == "YES",
                length=r["length"],
                precision=r["num_precision"],
                scale=r["num_scale"],
                default=r["column_default"],
                is_primary_key=bool(r["is_primary_key"]),
                is_foreign_key=bool(r["is_foreign_key"]),
            )
            for r in rows
        )
        return TableInfo(
            name=table,
            schema=schema,
            columns=columns,
            row_count=counts[0]["row_count"] if counts else None,
        )

    async def list_tables(
        self, schema: str | None = None, pattern: str | None = None
    ) -> list[TableListItem]:
        schema = await self._schema(schema)
        sql = _TABLES_SQL
        params: list[str] = [schema]
        if pattern:
            sql += " AND t.name LIKE %s"
            params.append(pattern)
        rows = await self._catalog(sql + " ORDER BY t.name", tuple(params))
        return [
            TableListItem(
                name=r["name"],
                schema=schema,
                row_count=r["row_count"],
                last_analyzed=r["last_analyzed"],
            )
            for r in rows
        ]

    async def list_schemas(self) -> list[SchemaInfo]:
        placeholders = ", ".join(["%s"] * len(_SYSTEM_SCHEMAS))
        rows = await self._catalog(
            "SELECT s.name AS name, "
            "(SELECT COUNT(*) FROM sys.tables t WHERE t.schema_id = s.schema_id) AS table_count, "
            "(SELECT COUNT(*) FROM sys.views v WHERE v.schema_id = s.schema_id) AS view_count "
            f"FROM sys.schemas s WHERE s.name NOT IN ({placeholders}) ORDER BY s.name",
            _SYSTEM_SCHEMAS,
        )
        return [
            SchemaInfo(name=r["name"], table_count=r["table_count"], view_count=r["view_count"])
            for r in rows
        ]

    async def list_views(
        self, schema: str | None = None, pattern: str | None = None
    ) -> list[ViewInfo]:
        schema = await self._schema(schema)
        sql = (
            "SELECT v.name AS name FROM sys.views v "
            "JOIN sys.schemas s ON s.schema_id = v.schema_id WHERE s.name = %s"
        )
        params: list[str] = [schema]
        if pattern:
            sql += " AND v.name LIKE %s"
            params.append(pattern)
        rows = await self._catalog(sql + " ORDER BY v.name", tuple(params))
        return [ViewInfo(name=r["name"], schema=schema) for r in rows]

    async def get_view_definition(self, view: str, schema: str | None = None) -> ViewDefinition:
        schema, view = await self._target(view, schema)
        rows = await self._catalog(
            "SELECT m.definition AS definition FROM sys.views v "
            "JOIN sys.schemas s ON s.schema_id = v.schema_id "
            "JOIN sys.sql_modules m ON m.object_id = v.object_id "
            "WHERE s.name = %s AND v.name = %s",
            (schema, view),
        )
        self._require(rows, f"View {schema}.{view}")
        return ViewDefinition(name=view, schema=schema, definition=rows[0]["definition"] or "")

    async def get_indexes(self, table: str, schema: str | None = None) -> list[IndexInfo]:
        schema, table = await self._target(table, schema)
        rows = await self._catalog(_INDEXES_SQL, (schema, table))
        return [
            IndexInfo(
                name=r["index_name"],
                table=table,
                schema=schema,
                columns=tuple((r["columns"] or "").split(",")),
                is_unique=bool(r["is_unique"]),
                index_type=r["index_type"],
            )
            for r in rows
        ]

    async def get_foreign_keys(self, table: str, schema: str | None = None) -> list[ForeignKeyInfo]:
        schema, table = await self._target(table, schema)
        rows = await self._catalog(_FOREIGN_KEYS_SQL, (schema, table))
        return [
            ForeignKeyInfo(
                constraint_name=r["constraint_name"],
                table=table,
                schema=schema,
                column=r["column_name"],
                referenced_table=r["referenced_table"],
                referenced_column=r["referenced_column"],
                referenced_schema=r["referenced_schema"],
                on_delete=r["on_delete"],
                on_update=r["on_update"],
            )
            for r in rows
        ]

    async def list_stored_procedures(self, schema: str | None = None) -> list[StoredProcedureInfo]:
        schema = await self._schema(schema)
        rows = await self._catalog(
            "SELECT o.name AS name, "
            "CASE o.type WHEN 'P' THEN 'PROCEDURE' ELSE 'FUNCTION' END AS kind, "
            "o.type_desc AS type_desc "
            "FROM sys.objects o JOIN sys.schemas s ON s.schema_id = o.schema_id "
            "WHERE s.name = %s AND o.type IN ('P', 'FN', 'IF', 'TF') ORDER BY o.name",
            (schema,),
        )
        return [
            StoredProcedureInfo(
                name=r["name"],
                schema=schema,
                kind=r["kind"],
                return_type=None if r["kind"] == "PROCEDURE" else r["type_desc"],
            )
            for r in rows
        ]

    async def get_table_statistics(self, table: str, schema: str | None = None) -> TableStatistics:
        schema, table = await self._target(table, schema)
        rows = await self._catalog(_STATISTICS_SQL, (schema, table))
        self._require(rows, f"Table {schema}.{table}")
        r = rows[0]
        return TableStatistics(
            table=table,
            schema=schema,
            row_count=r["row_count"],
            size_mb=round(float(r["total_mb"]), 2) if r["total_mb"] is not None else None,
            index_size_mb=round(float(r["index_mb"]), 2) if r["index_mb"] is not None else None,
            last_analyzed=r["last_analyzed"],
        )

    async def explain_query(self, sql: str) -> ExplainPlan:
        pool = await self._ensure_pool()
        async with pool.connection() as conn:
            lines = await asyncio.to_thread(_explain_sync, conn, sql)
        return ExplainPlan(query=sql, plan="\n".join(lines))
