"""PostgreSQL adapter: psycopg async connections, named cursors for streaming."""

from __future__ import annotations

import json
import uuid
from collections.abc import AsyncIterator

import psycopg
from psycopg_pool import AsyncConnectionPool

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
from querygate.adapters._pooled import Fetched, Params, PooledAdapter
from querygate.pool import ConnectionPool, PoolStats

# bytea, text, json, xml, jsonb
_LARGE_TYPE_OIDS = frozenset({17, 25, 114, 142, 3802})

_SYSTEM_SCHEMAS = ("information_schema", "pg_catalog", "pg_toast")


def _detect_plan_warnings(plan_node: dict) -> list[str]:
    """Walk the plan tree and flag risky operations."""
    warnings: list[str] = []
    _walk_plan(plan_node, warnings)
    return warnings


def _walk_plan(node: dict, warnings: list[str]) -> None:
    node_type = node.get("Node Type", "")
    rows = node.get("Plan Rows", 0)
    relation = node.get("Relation Name", "")

    if node_type == "Seq Scan" and rows > 100_000:
        warnings.append(f"Seq Scan on {relation} (~{_format_rows(rows)} rows)")
    if node_type == "Nested Loop" and rows > 1_000_000:
        warnings.append(f"Nested Loop producing ~{_format_rows(rows)} rows")

    for child in node.get("Plans", []):
        _walk_plan(child, warnings)


def _format_rows(n: float) -> str:
    if n >= 1_000_000_000:
        return f"{n / 1_000_000_000:.1f}B"
    if n >= 1_000_000:
        return f"{n / 1_000_000:.1f}M"
    if n >= 1_000:
        return f"{n / 1_000:.1f}K"
    return str(int(n))


def _estimate(reltuples: int | None) -> int | None:
    # reltuples is -1 for never-analyzed tables on PostgreSQL 14+.
    if reltuples is None or reltuples < 0:
        return None
    return reltuples


_COLUMNS_SQL = """
SELECT c.column_name, c.data_type, c.is_nullable, c.column_default,
       c.character_maximum_length, c.numeric_precision, c.numeric_scale,
       EXISTS (
           SELECT 1 FROM information_schema.table_constraints tc
           JOIN information_schema.key_column_usage kcu
             ON tc.constraint_name = kcu.constraint_name
            AND tc.table_schema = kcu.table_schema
           WHERE tc.constraint_type = 'PRIMARY KEY'
             AND tc.table_schema = c.table_schema
             AND tc.table_name = c.table_name
             AND kcu.column_name = c.column_name
       ) AS is_primary_key,
       EXISTS (
           SELECT 1 FROM information_schema.table_constraints tc
           JOIN information_schema.key_column_usage kcu
             ON tc.constraint_name = kcu.constraint_name
            AND tc.table_schema = kcu.table_schema
           WHERE tc.constraint_type = 'FOREIGN KEY'
             AND tc.table_schema = c.table_schema
             AND tc.table_name = c.table_name
             AND kcu.column_name = c.column_name
       ) AS is_foreign_key
FROM information_schema.columns c
WHERE c.table_schema = %s AND c.table_name = %s
ORDER BY c.ordinal_position
"""

_INDEXES_SQL = """
SELECT i.relname AS index_name,
       ix.indisunique AS is_unique,
       am.amname AS index_type,
       array_agg(a.attname ORDER BY array_position(ix.indkey::int2[], a.attnum)) AS columns
FROM pg_index ix
JOIN pg_class t ON t.oid = ix.indrelid
JOIN pg_class i ON i.oid = ix.indexrelid
JOIN pg_namespace n ON n.oid = t.relnamespace
JOIN pg_am am ON am.oid = i.relam
JOIN pg_attribute a ON a.attrelid = t.oid AND a.attnum = ANY(ix.indkey)
WHERE n.nspname = %s AND t.relname = %s
GROUP BY i.relname, ix.indisunique, am.amname
ORDER BY i.relname
"""

_FOREIGN_KEYS_SQL = """
SELECT tc.constraint_name, kcu.column_name,
       ccu.table_schema AS referenced_schema,
       ccu.table_name AS referenced_table,
       ccu.column_name AS referenced_column,
       rc.delete_rule, rc.update_rule
FROM information_schema.table_constraints tc
JOIN information_schema.key_column_usage kcu
  ON tc.constraint_name = kcu.constraint_name AND tc.table_schema = kcu.table_schema
JOIN information_schema.constraint_column_usage ccu
  ON ccu.constraint_name = tc.constraint_name AND ccu.constraint_schema = tc.table_schema
JOIN information_schema.referential_constraints rc
  ON rc.constraint_name = tc.constraint_name AND rc.constraint_schema = tc.table_schema
WHERE tc.constraint_type = 'FOREIGN KEY' AND tc.table_schema = %s AND tc.table_name = %s
ORDER BY tc.constraint_name, kcu.ordinal_position
"""

_PROCEDURES_SQL = """
SELECT p.proname AS name,
       CASE p.prokind WHEN 'p' THEN 'PROCEDURE' ELSE 'FUNCTION' END AS kind,
       pg_catalog.format_type(p.prorettype, NULL) AS return_type
FROM pg_proc p
JOIN pg_namespace n ON n.oid = p.pronamespace
WHERE n.nspname = %s AND p.prokind IN ('f', 'p')
ORDER BY p.proname
"""

_STATISTICS_SQL = """
SELECT s.n_live_tup AS row_count,
       pg_total_relation_size(s.relid) AS total_bytes,
       pg_indexes_size(s.relid) AS index_bytes,
       GREATEST(s.last_analyze, s.last_autoanalyze) AS last_analyzed
FROM pg_stat_user_tables s
WHERE s.schemaname = %s AND s.relname = %s
"""


class PsycopgPool(ConnectionPool[psycopg.AsyncConnection]):
    """ConnectionPool over psycopg_pool.AsyncConnectionPool."""

    def __init__(
        self, pool: AsyncConnectionPool, *, name: str = "postgres", acquire_timeout: float = 30.0
    ) -> None:
        super().__init__(name=name, acquire_timeout=acquire_timeout)
        self._pool = pool

    async def _acquire(self) -> psycopg.AsyncConnection:
        return await self._pool.getconn()

    async def _release(self, conn: psycopg.AsyncConnection, discard: bool) -> None:
        # The pool replaces connections that come back closed.
        if discard:
            await conn.close()
        await self._pool.putconn(conn)

    async def _close(self) -> None:
        await self._pool.close()

    def stats(self) -> PoolStats:
        s = self._pool.get_stats()
        size = s.get("pool_size", 0)
        idle = s.get("pool_available", 0)
        return PoolStats(
            size=size,
            idle=idle,
            in_use=size - idle,
            max_size=self._pool.max_size,
            closed=self.closed,
        )


class PostgresAdapter(PooledAdapter):
    """PostgreSQL adapter using psycopg (async). Connections run in autocommit."""

    async def _create_pool(self) -> ConnectionPool[psycopg.AsyncConnection]:
        cfg, s = self._config, self._settings
        raw = AsyncConnectionPool(
            kwargs={
                "host": cfg.host,
                "port": cfg.port,
                "user": cfg.user,
                "password": cfg.password,
                "dbname": cfg.database,
                "connect_timeout": max(1, int(cfg.connect_timeout)),
                "application_name": cfg.application_name,
                "autocommit": True,
                **cfg.options,
            },
            min_size=s.pool_min_size,
            max_size=s.pool_max_size,
            max_idle=s.pool_idle_timeout,
            timeout=s.pool_acquire_timeout,
            name="querygate-postgres",
            open=False,
        )
        await raw.open()
        return PsycopgPool(raw, acquire_timeout=s.pool_acquire_timeout)

    async def _fetch(
        self,
        conn: psycopg.AsyncConnection,
        sql: str,
        limit: int | None,
        params: Params = None,
        *,
        detect_large: bool = False,
    ) -> Fetched:
        async with conn.cursor() as cur:
            await cur.execute(sql, params)
            if cur.description is None:
                return Fetched(columns=[], rows=[])
            columns = [desc.name for desc in cur.description]
            large = frozenset(
                desc.name for desc in cur.description if desc.type_code in _LARGE_TYPE_OIDS
            )
            rows = await cur.fetchmany(limit) if limit is not None else await cur.fetchall()
        return Fetched(columns=columns, rows=rows, large_columns=large)

    async def _stream(
        self, conn: psycopg.AsyncConnection, sql: str, batch_size: int
    ) -> AsyncIterator[Fetched]:
        # Named (server-side) cursors only live inside a transaction.
        async with conn.transaction():
            async with conn.cursor(name=f"querygate_{uuid.uuid4().hex[:12]}") as cur:
                cur.itersize = batch_size
                await cur.execute(sql)
                columns = [desc.name for desc in cur.description] if cur.description else []
                while True:
                    rows = await cur.fetchmany(batch_size)
                    if not rows:
                        break
                    yield Fetched(columns=columns, rows=rows)

    async def _begin_read_only(self, conn: psycopg.AsyncConnection) -> None:
        await conn.execute("BEGIN ISOLATION LEVEL REPEATABLE READ, READ ONLY")

    async def _commit(self, conn: psycopg.AsyncConnection) -> None:
        await conn.execute("COMMIT")

    async def _rollback(self, conn: psycopg.AsyncConnection) -> None:
        await conn.execute("ROLLBACK")

    def normalize_identifier(self, name: str) -> str:
        return name.lower()

    async def default_schema(self) -> str | None:
        return "public"

    def db_type(self) -> DatabaseType:
        return DatabaseType.POSTGRES

    def dialect(self) -> str:
        return "postgres"

    # -- Catalog --

    async def get_table_info(self, table: str, schema: str | None = None) -> TableInfo:
        schema, table = await self._target(table, schema)
        rows = await self._catalog(_COLUMNS_SQL, (schema, table))
        self._require(rows, f"Table {schema}.{table}")

        estimate = await self._catalog(
            "SELECT c.reltuples::bigint AS row_count FROM pg_class c "
            "JOIN pg_namespace n ON n.oid = c.relnamespace "
            "WHERE n.nspname = %s AND c.relname = %s",
            (schema, table),
        )
        row_count = estimate[0]["row_count"] if estimate else None

        columns = tuple(
            ColumnInfo(
                name=r["column_name"],
                data_type=r["data_type"],
                nullable=r["is_nullable"] == "YES",
                length=r["character_maximum_length"],
                precision=r["numeric_precision"],
                scale=r["numeric_scale"],
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
            row_count=_estimate(row_count),
        )

    async def list_tables(
        self, schema: str | None = None, pattern: str | None = None
    ) -> list[TableListItem]:
        schema = await self._schema(schema)
        sql = (
            "SELECT c.relname AS name, c.reltuples::bigint AS row_count, "
            "GREATEST(s.last_analyze, s.last_autoanalyze) AS last_analyzed "
            "FROM pg_class c "
            "JOIN pg_namespace n ON n.oid = c.relnamespace "
            "LEFT JOIN pg_stat_user_tables s ON s.relid = c.oid "
            "WHERE n.nspname = %s AND c.relkind IN ('r', 'p')"
        )
        params: list[str] = [schema]
        if pattern:
            sql += " AND c.relname LIKE %s"
            params.append(pattern)
        rows = await self._catalog(sql + " ORDER BY c.relname", params)
        return [
            TableListItem(
                name=r["name"],
                schema=schema,
                row_count=_estimate(r["row_count"]),
                last_analyzed=r["last_analyzed"],
            )
            for r in rows
        ]

    async def list_schemas(self) -> list[SchemaInfo]:
        rows = await self._catalog(
            "SELECT s.schema_name AS name, "
            "(SELECT COUNT(*) FROM information_schema.tables t "
            " WHERE t.table_schema = s.schema_name AND t.table_type = 'BASE TABLE') AS table_count, "
            "(SELECT COUNT(*) FROM information_schema.views v "
            " WHERE v.table_schema = s.schema_name) AS view_count "
            "FROM information_schema.schemata s "
            "WHERE s.schema_name NOT IN (%s, %s, %s) AND s.schema_name NOT LIKE 'pg_temp%%' "
            "AND s.schema_name NOT LIKE 'pg_toast_temp%%' "
            "ORDER BY s.schema_name",
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
        sql = "SELECT table_name AS name FROM information_schema.views WHERE table_schema = %s"
        params: list[str] = [schema]
        if pattern:
            sql += " AND table_name LIKE %s"
            params.append(pattern)
        rows = await self._catalog(sql + " ORDER BY table_name", params)
        return [ViewInfo(name=r["name"], schema=schema) for r in rows]

    async def get_view_definition(self, view: str, schema: str | None = None) -> ViewDefinition:
        schema, view = await self._target(view, schema)
        rows = await self._catalog(
            "SELECT definition FROM pg_views WHERE schemaname = %s AND viewname = %s",
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
                columns=tuple(r["columns"] or ()),
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
                on_delete=r["delete_rule"],
                on_update=r["update_rule"],
            )
            for r in rows
        ]

    async def list_stored_procedures(self, schema: str | None = None) -> list[StoredProcedureInfo]:
        schema = await self._schema(schema)
        rows = await self._catalog(_PROCEDURES_SQL, (schema,))
        return [
            StoredProcedureInfo(
                name=r["name"],
                schema=schema,
                kind=r["kind"],
                return_type=None if r["kind"] == "PROCEDURE" else r["return_type"],
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
            size_mb=round(r["total_bytes"] / (1024 * 1024), 2),
            index_size_mb=round(r["index_bytes"] / (1024 * 1024), 2),
            last_analyzed=r["last_analyzed"],
        )

    async def explain_query(self, sql: str) -> ExplainPlan:
        rows = await self._catalog(f"EXPLAIN (FORMAT JSON) {sql}")
        if not rows:
            return ExplainPlan(query=sql, plan="no plan returned")

        plan = next(iter(rows[0].values()))
        if isinstance(plan, str):
            plan = json.loads(plan)

        root = plan[0]["Plan"] if plan else {}
        return ExplainPlan(
            query=sql,
            plan=json.dumps(plan, indent=2),
            estimated_cost=root.get("Total Cost"),
            estimated_rows=root.get("Plan Rows"),
            plan_node=root.get("Node Type"),
            warnings=_detect_plan_warnings(root),
        )
