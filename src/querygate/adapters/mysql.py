"""MySQL / MariaDB adapter: aiomysql, unbuffered SSCursor for streaming."""

from __future__ import annotations

import json
from collections.abc import AsyncIterator

import aiomysql
from pymysql.constants import FIELD_TYPE

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

# TEXT columns are reported with the BLOB field types.
_LARGE_FIELD_TYPES = frozenset({
    FIELD_TYPE.TINY_BLOB,
    FIELD_TYPE.MEDIUM_BLOB,
    FIELD_TYPE.LONG_BLOB,
    FIELD_TYPE.BLOB,
    FIELD_TYPE.JSON,
})

_SYSTEM_SCHEMAS = ("information_schema", "mysql", "performance_schema", "sys")

_COLUMNS_SQL = """
SELECT c.COLUMN_NAME AS column_name, c.DATA_TYPE AS data_type,
       c.COLUMN_TYPE AS column_type, c.IS_NULLABLE AS is_nullable,
       c.COLUMN_DEFAULT AS column_default,
       c.CHARACTER_MAXIMUM_LENGTH AS length,
       c.NUMERIC_PRECISION AS num_precision, c.NUMERIC_SCALE AS num_scale,
       c.COLUMN_KEY AS column_key,
       EXISTS (
           SELECT 1 FROM information_schema.KEY_COLUMN_USAGE k
           WHERE k.TABLE_SCHEMA = c.TABLE_SCHEMA AND k.TABLE_NAME = c.TABLE_NAME
             AND k.COLUMN_NAME = c.COLUMN_NAME AND k.REFERENCED_TABLE_NAME IS NOT NULL
       ) AS is_foreign_key
FROM information_schema.COLUMNS c
WHERE c.TABLE_SCHEMA = %s AND c.TABLE_NAME = %s
ORDER BY c.ORDINAL_POSITION
"""

_FOREIGN_KEYS_SQL = """
SELECT k.CONSTRAINT_NAME AS constraint_name, k.COLUMN_NAME AS column_name,
       k.REFERENCED_TABLE_SCHEMA AS referenced_schema,
       k.REFERENCED_TABLE_NAME AS referenced_table,
       k.REFERENCED_COLUMN_NAME AS referenced_column,
       r.DELETE_RULE AS delete_rule, r.UPDATE_RULE AS update_rule
FROM information_schema.KEY_COLUMN_USAGE k
JOIN information_schema.REFERENTIAL_CONSTRAINTS r
  ON r.CONSTRAINT_SCHEMA = k.CONSTRAINT_SCHEMA AND r.CONSTRAINT_NAME = k.CONSTRAINT_NAME
WHERE k.TABLE_SCHEMA = %s AND k.TABLE_NAME = %s AND k.REFERENCED_TABLE_NAME IS NOT NULL
ORDER BY k.CONSTRAINT_NAME, k.ORDINAL_POSITION
"""


class AiomysqlPool(ConnectionPool[aiomysql.Connection]):
    """ConnectionPool over aiomysql.Pool."""

    def __init__(
        self, pool: aiomysql.Pool, *, name: str = "mysql", acquire_timeout: float = 30.0
    ) -> None:
        super().__init__(name=name, acquire_timeout=acquire_timeout)
        self._pool = pool

    async def _acquire(self) -> aiomysql.Connection:
        return await self._pool.acquire()

    async def _release(self, conn: aiomysql.Connection, discard: bool) -> None:
        # aiomysql drops closed connections instead of putting them back.
        if discard:
            conn.close()
        await self._pool.release(conn)

    async def _close(self) -> None:
        # In-use connections are closed by the pool as they come back.
        self._pool.close()
        await self._pool.clear()

    def stats(self) -> PoolStats:
        return PoolStats(
            size=self._pool.size,
            idle=self._pool.freesize,
            in_use=self._pool.size - self._pool.freesize,
            max_size=self._pool.maxsize,
            closed=self.closed,
        )


class MySQLAdapter(PooledAdapter):
    """MySQL and MariaDB adapter using aiomysql in autocommit mode."""

    async def _create_pool(self) -> ConnectionPool[aiomysql.Connection]:
        cfg, s = self._config, self._settings
        raw = await aiomysql.create_pool(
            minsize=s.pool_min_size,
            maxsize=s.pool_max_size,
            pool_recycle=int(s.pool_idle_timeout),
            host=cfg.host,
            port=cfg.port,
            user=cfg.user,
            password=cfg.password or "",
            db=cfg.database,
            connect_timeout=cfg.connect_timeout,
            autocommit=True,
            **cfg.options,
        )
        return AiomysqlPool(raw, acquire_timeout=s.pool_acquire_timeout)

    async def _fetch(
        self,
        conn: aiomysql.Connection,
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
            columns = [d[0] for d in cur.description]
            large = frozenset(d[0] for d in cur.description if d[1] in _LARGE_FIELD_TYPES)
            rows = await cur.fetchmany(limit) if limit is not None else await cur.fetchall()
        return Fetched(columns=columns, rows=list(rows), large_columns=large)

    async def _stream(
        self, conn: aiomysql.Connection, sql: str, batch_size: int
    ) -> AsyncIterator[Fetched]:
        async with conn.cursor(aiomysql.SSCursor) as cur:
            await cur.execute(sql)
            columns = [d[0] for d in cur.description] if cur.description else []
            while True:
                rows = await cur.fetchmany(batch_size)
                if not rows:
                    break
                yield Fetched(columns=columns, rows=list(rows))

    async def _run(self, conn: aiomysql.Connection, sql: str) -> None:
        async with conn.cursor() as cur:
            await cur.execute(sql)

    async def _begin_read_only(self, conn: aiomysql.Connection) -> None:
        # Applies to the next transaction only.
        await self._run(conn, "SET TRANSACTION ISOLATION LEVEL REPEATABLE READ")
        await self._run(conn, "START TRANSACTION READ ONLY")

    async def _commit(self, conn: aiomysql.Connection) -> None:
        await conn.commit()

    async def _rollback(self, conn: aiomysql.Connection) -> None:
        await conn.rollback()

    def quote_identifier(self, name: str) -> str:
        return "`" + name.replace("`", "``") + "`"

    def _random_order(self) -> str:
        return "RAND()"

    async def default_schema(self) -> str | None:
        return self._config.database

    def db_type(self) -> DatabaseType:
        return DatabaseType.MYSQL

    def dialect(self) -> str:
        return "mysql"

    # -- Catalog --

    async def get_table_info(self, table: str, schema: str | None = None) -> TableInfo:
        schema, table = await self._target(table, schema)
        rows = await self._catalog(_COLUMNS_SQL, (schema, table))
        self._require(rows, f"Table {schema}.{table}")

        estimate = await self._catalog(
            "SELECT TABLE_ROWS AS row_count FROM information_schema.TABLES "
            "WHERE TABLE_SCHEMA = %s AND TABLE_NAME = %s",
            (schema, table),
        )
        columns = tuple(
            ColumnInfo(
                name=r["column_name"],
                data_type=r["column_type"] or r["data_type"],
                nullable=r["is_nullable"] == "YES",
                length=r["length"],
                precision=r["num_precision"],
                scale=r["num_scale"],
                default=None if r["column_default"] is None else str(r["column_default"]),
                is_primary_key=r["column_key"] == "PRI",
                is_foreign_key=bool(r["is_foreign_key"]),
            )
            for r in rows
        )
        return TableInfo(
            name=table,
            schema=schema,
            columns=columns,
            row_count=estimate[0]["row_count"] if estimate else None,
        )

    async def list_tables(
        self, schema: str | None = None, pattern: str | None = None
    ) -> list[TableListItem]:
        schema = await self._schema(schema)
        sql = (
            "SELECT TABLE_NAME AS name, TABLE_ROWS AS row_count, UPDATE_TIME AS last_analyzed "
            "FROM information_schema.TABLES "
            "WHERE TABLE_SCHEMA = %s AND TABLE_TYPE = 'BASE TABLE'"
        )
        params: list[str] = [schema]
        if pattern:
            sql += " AND TABLE_NAME LIKE %s"
            params.append(pattern)
        rows = await self._catalog(sql + " ORDER BY TABLE_NAME", params)
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
        rows = await self._catalog(
            "SELECT s.SCHEMA_NAME AS name, "
            "(SELECT COUNT(*) FROM information_schema.TABLES t "
            " WHERE t.TABLE_SCHEMA = s.SCHEMA_NAME AND t.TABLE_TYPE = 'BASE TABLE') AS table_count, "
            "(SELECT COUNT(*) FROM information_schema.VIEWS v "
            " WHERE v.TABLE_SCHEMA = s.SCHEMA_NAME) AS view_count "
            "FROM information_schema.SCHEMATA s "
            "WHERE s.SCHEMA_NAME NOT IN (%s, %s, %s, %s) "
            "ORDER BY s.SCHEMA_NAME",
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
        sql = "SELECT TABLE_NAME AS name FROM information_schema.VIEWS WHERE TABLE_SCHEMA = %s"
        params: list[str] = [schema]
        if pattern:
            sql += " AND TABLE_NAME LIKE %s"
            params.append(pattern)
        rows = await self._catalog(sql + " ORDER BY TABLE_NAME", params)
        return [ViewInfo(name=r["name"], schema=schema) for r in rows]

    async def get_view_definition(self, view: str, schema: str | None = None) -> ViewDefinition:
        schema, view = await self._target(view, schema)
        rows = await self._catalog(
            "SELECT VIEW_DEFINITION AS definition FROM information_schema.VIEWS "
            "WHERE TABLE_SCHEMA = %s AND TABLE_NAME = %s",
            (schema, view),
        )
        self._require(rows, f"View {schema}.{view}")
        return ViewDefinition(name=view, schema=schema, definition=rows[0]["definition"] or "")

    async def get_indexes(self, table: str, schema: str | None = None) -> list[IndexInfo]:
        schema, table = await self._target(table, schema)
        rows = await self._catalog(
            "SELECT INDEX_NAME AS index_name, NON_UNIQUE AS non_unique, "
            "INDEX_TYPE AS index_type, "
            "GROUP_CONCAT(COLUMN_NAME ORDER BY SEQ_IN_INDEX SEPARATOR ',') AS columns "
            "FROM information_schema.STATISTICS "
            "WHERE TABLE_SCHEMA = %s AND TABLE_NAME = %s "
            "GROUP BY INDEX_NAME, NON_UNIQUE, INDEX_TYPE ORDER BY INDEX_NAME",
            (schema, table),
        )
        return [
            IndexInfo(
                name=r["index_name"],
                table=table,
                schema=schema,
                columns=tuple((r["columns"] or "").split(",")),
                is_unique=not int(r["non_unique"]),
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
        rows = await self._catalog(
            "SELECT ROUTINE_NAME AS name, ROUTINE_TYPE AS kind, DTD_IDENTIFIER AS return_type "
            "FROM information_schema.ROUTINES WHERE ROUTINE_SCHEMA = %s "
            "ORDER BY ROUTINE_NAME",
            (schema,),
        )
        return [
            StoredProcedureInfo(
                name=r["name"], schema=schema, kind=r["kind"], return_type=r["return_type"]
            )
            for r in rows
        ]

    async def get_table_statistics(self, table: str, schema: str | None = None) -> TableStatistics:
        schema, table = await self._target(table, schema)
        rows = await self._catalog(
            "SELECT TABLE_ROWS AS row_count, DATA_LENGTH AS data_bytes, "
            "INDEX_LENGTH AS index_bytes, UPDATE_TIME AS last_analyzed "
            "FROM information_schema.TABLES WHERE TABLE_SCHEMA = %s AND TABLE_NAME = %s",
            (schema, table),
        )
        self._require(rows, f"Table {schema}.{table}")
        r = rows[0]
        return TableStatistics(
            table=table,
            schema=schema,
            row_count=r["row_count"],
            size_mb=round((r["data_bytes"] or 0) / (1024 * 1024), 2),
            index_size_mb=round((r["index_bytes"] or 0) / (1024 * 1024), 2),
            last_analyzed=r["last_analyzed"],
        )

    async def explain_query(self, sql: str) -> ExplainPlan:
        rows = await self._catalog(f"EXPLAIN FORMAT=JSON {sql}")
        if not rows:
            return ExplainPlan(query=sql, plan="no plan returned")
        raw = next(iter(rows[0].values()))
        plan = json.loads(raw) if isinstance(raw, (str, bytes)) else raw
        block = plan.get("query_block", {}) if isinstance(plan, dict) else {}
        cost = block.get("cost_info", {}).get("query_cost")
        table = block.get("table", {})
        return ExplainPlan(
            query=sql,
            plan=json.dumps(plan, indent=2),
            estimated_cost=float(cost) if cost is not None else None,
            estimated_rows=table.get("rows_examined_per_scan"),
            plan_node=table.get("access_type"),
            warnings=(
                [f"Full table scan on {table.get('table_name')}"]
                if table.get("access_type") == "ALL"
                else []
            ),
        )
