"""SQLite adapter: aiosqlite over a read-only URI connection."""

from __future__ import annotations

import sqlite3
from collections.abc import AsyncIterator
from pathlib import Path

import aiosqlite
import structlog

from querygate.adapters._base import (
    ColumnInfo,
    DatabaseType,
    ExplainPlan,
    ForeignKeyInfo,
    IndexInfo,
    SchemaInfo,
    StoredProcedureInfo,
    TableInfo,
    TableListItem,
    TableStatistics,
    ViewDefinition,
    ViewInfo,
)
from querygate.adapters._pooled import Fetched, Params, PooledAdapter, parse_type_args
from querygate.errors import ConnectionFailedError

_INDEX_ORIGINS = {"c": "INDEX", "u": "UNIQUE CONSTRAINT", "pk": "PRIMARY KEY"}


class SQLiteAdapter(PooledAdapter):
    """SQLite adapter using aiosqlite. The database file is opened read-only."""

    async def _open_connection(self) -> aiosqlite.Connection:
        path = Path(self._config.path).expanduser().resolve()
        if not path.exists():
            raise ConnectionFailedError(f"SQLite database file not found: {path}")
        return await aiosqlite.connect(
            f"{path.as_uri()}?mode=ro",
            uri=True,
            isolation_level=None,
            timeout=self._config.connect_timeout,
        )

    async def _close_connection(self, conn: aiosqlite.Connection) -> None:
        await conn.close()

    async def _fetch(
        self,
        conn: aiosqlite.Connection,
        sql: str,
        limit: int | None,
        params: Params = None,
        *,
        detect_large: bool = False,
    ) -> Fetched:
        async with conn.execute(sql, params or ()) as cur:
            if cur.description is None:
                return Fetched(columns=[], rows=[])
            columns = [d[0] for d in cur.description]
            rows = list(await cur.fetchmany(limit) if limit is not None else await cur.fetchall())

        large: frozenset[str] = frozenset()
        if detect_large:
            # Result sets carry no declared types; BLOB is a storage class of the value.
            large = frozenset(
                name
                for i, name in enumerate(columns)
                if any(isinstance(row[i], (bytes, memoryview)) for row in rows)
            )
        return Fetched(columns=columns, rows=rows, large_columns=large)

    async def _stream(
        self, conn: aiosqlite.Connection, sql: str, batch_size: int
    ) -> AsyncIterator[Fetched]:
        async with conn.execute(sql) as cur:
            columns = [d[0] for d in cur.description] if cur.description else []
            while True:
                rows = await cur.fetchmany(batch_size)
                if not rows:
                    break
                yield Fetched(columns=columns, rows=list(rows))

    async def _begin_read_only(self, conn: aiosqlite.Connection) -> None:
        await conn.execute("BEGIN")

    async def _commit(self, conn: aiosqlite.Connection) -> None:
        await conn.execute("COMMIT")

    async def _rollback(self, conn: aiosqlite.Connection) -> None:
        if conn.in_transaction:
            await conn.execute("ROLLBACK")

    async def default_schema(self) -> str | None:
        return "main"

    def db_type(self) -> DatabaseType:
        return DatabaseType.SQLITE

    def dialect(self) -> str:
        return "sqlite"

    # -- Catalog --

    def _pragma(self, schema: str, pragma: str, arg: str | None = None) -> str:
        sql = f"PRAGMA {self.quote_identifier(schema)}.{pragma}"
        if arg is not None:
            sql += f"({self.quote_identifier(arg)})"
        return sql

    async def _table_columns(self, table: str, schema: str) -> list[dict]:
        return await self._catalog(self._pragma(schema, "table_info", table))

    async def get_table_info(self, table: str, schema: str | None = None) -> TableInfo:
        schema, table = await self._target(table, schema)
        cols = await self._table_columns(table, schema)
        self._require(cols, f"Table {schema}.{table}")

        fks = await self._catalog(self._pragma(schema, "foreign_key_list", table))
        fk_columns = {r["from"] for r in fks}
        columns = []
        for c in cols:
            first, second = parse_type_args(c["type"])
            is_numeric = any(t in (c["type"] or "").upper() for t in ("DEC", "NUM"))
            columns.append(
                ColumnInfo(
                    name=c["name"],
                    data_type=c["type"] or "",
                    nullable=not c["notnull"] and not c["pk"],
                    length=None if is_numeric else first,
                    precision=first if is_numeric else None,
                    scale=second if is_numeric else None,
                    default=c["dflt_value"],
                    is_primary_key=bool(c["pk"]),
                    is_foreign_key=c["name"] in fk_columns,
                )
            )

        row_count = await self.get_row_count(table, schema)
        return TableInfo(name=table, schema=schema, columns=tuple(columns), row_count=row_count)

    async def list_tables(
        self, schema: str | None = None, pattern: str | None = None
    ) -> list[TableListItem]:
        schema = await self._schema(schema)
        sql = (
            f"SELECT name FROM {self.quote_identifier(schema)}.sqlite_master "
            "WHERE type = 'table' AND name NOT LIKE 'sqlite_%'"
        )
        params: list[str] = []
        if pattern:
            sql += " AND name LIKE ?"
            params.append(pattern)
        rows = await self._catalog(sql + " ORDER BY name", params)
        return [TableListItem(name=r["name"], schema=schema) for r in rows]

    async def list_schemas(self) -> list[SchemaInfo]:
        schemas = []
        for db in await self._catalog("PRAGMA database_list"):
            counts = await self._catalog(
                "SELECT "
                "SUM(CASE WHEN type = 'table' AND name NOT LIKE 'sqlite_%' THEN 1 ELSE 0 END) AS table_count, "
                "SUM(CASE WHEN type = 'view' THEN 1 ELSE 0 END) AS view_count "
                f"FROM {self.quote_identifier(db['name'])}.sqlite_master"
            )
            schemas.append(
                SchemaInfo(
                    name=db["name"],
                    table_count=int(counts[0]["table_count"] or 0),
                    view_count=int(counts[0]["view_count"] or 0),
                )
            )
        return schemas

    async def list_views(
        self, schema: str | None = None, pattern: str | None = None
    ) -> list[ViewInfo]:
        schema = await self._schema(schema)
        sql = f"SELECT name FROM {self.quote_identifier(schema)}.sqlite_master WHERE type = 'view'"
        params: list[str] = []
        if pattern:
            sql += " AND name LIKE ?"
            params.append(pattern)
        rows = await self._catalog(sql + " ORDER BY name", params)
        return [ViewInfo(name=r["name"], schema=schema) for r in rows]

    async def get_view_definition(self, view: str, schema: str | None = None) -> ViewDefinition:
        schema, view = await self._target(view, schema)
        rows = await self._catalog(
            f"SELECT sql FROM {self.quote_identifier(schema)}.sqlite_master "
            "WHERE type = 'view' AND name = ?",
            [view],
        )
        self._require(rows, f"View {schema}.{view}")
        return ViewDefinition(name=view, schema=schema, definition=rows[0]["sql"] or "")

    async def get_indexes(self, table: str, schema: str | None = None) -> list[IndexInfo]:
        schema, table = await self._target(table, schema)
        indexes = []
        for idx in await self._catalog(self._pragma(schema, "index_list", table)):
            cols = await self._catalog(self._pragma(schema, "index_info", idx["name"]))
            indexes.append(
                IndexInfo(
                    name=idx["name"],
                    table=table,
                    schema=schema,
                    columns=tuple(c["name"] for c in sorted(cols, key=lambda c: c["seqno"])),
                    is_unique=bool(idx["unique"]),
                    index_type=_INDEX_ORIGINS.get(idx.get("origin"), "INDEX"),
                )
            )
        return sorted(indexes, key=lambda i: i.name)

    async def get_foreign_keys(self, table: str, schema: str | None = None) -> list[ForeignKeyInfo]:
        schema, table = await self._target(table, schema)
        rows = await self._catalog(self._pragma(schema, "foreign_key_list", table))
        return [
            ForeignKeyInfo(
                constraint_name=f"fk_{table}_{r['id']}",
                table=table,
                schema=schema,
                column=r["from"],
                referenced_table=r["table"],
                referenced_column=r["to"],
                referenced_schema=schema,
                on_delete=r["on_delete"],
                on_update=r["on_update"],
            )
            for r in sorted(rows, key=lambda r: (r["id"], r["seq"]))
        ]

    async def list_stored_procedures(self, schema: str | None = None) -> list[StoredProcedureInfo]:
        return []

    async def get_table_statistics(self, table: str, schema: str | None = None) -> TableStatistics:
        schema, table = await self._target(table, schema)
        self._require(await self._table_columns(table, schema), f"Table {schema}.{table}")
        row_count = await self.get_row_count(table, schema)

        size_mb = None
        index_size_mb = None
        try:
            # dbstat is an optional compile-time extension.
            rows = await self._catalog(
                "SELECT "
                "SUM(CASE WHEN name = ? THEN pgsize ELSE 0 END) AS table_bytes, "
                "SUM(CASE WHEN name <> ? THEN pgsize ELSE 0 END) AS index_bytes "
                "FROM dbstat WHERE schema = ? AND (name = ? OR name IN "
                f"(SELECT name FROM {self.quote_identifier(schema)}.sqlite_master "
                "WHERE type = 'index' AND tbl_name = ?))",
                [table, table, schema, table, table],
            )
        except sqlite3.OperationalError as e:
            structlog.get_logger().debug("sqlite_dbstat_unavailable", error=str(e))
        else:
            if rows and rows[0]["table_bytes"] is not None:
                size_mb = round(rows[0]["table_bytes"] / (1024 * 1024), 4)
                index_size_mb = round((rows[0]["index_bytes"] or 0) / (1024 * 1024), 4)

        return TableStatistics(
            table=table,
            schema=schema,
            row_count=row_count,
            size_mb=size_mb,
            index_size_mb=index_size_mb,
        )

    async def explain_query(self, sql: str) -> ExplainPlan:
        rows = await self._catalog(f"EXPLAIN QUERY PLAN {sql}")
        depth: dict[int, int] = {0: -1}
        lines = []
        for r in rows:
            level = depth.get(r["parent"], -1) + 1
            depth[r["id"]] = level
            lines.append("  " * level + str(r["detail"]))
        return ExplainPlan(
            query=sql,
            plan="\n".join(lines),
            plan_node=str(rows[0]["detail"]) if rows else None,
        )
