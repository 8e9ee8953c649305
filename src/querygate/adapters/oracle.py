"""Oracle adapter: python-oracledb in thin mode using its asyncio API.

Object names are resolved the way Oracle stores unquoted identifiers,
upper-cased, and catalog lookups are scoped to an owner (the connected
user unless a schema is given).
"""

from __future__ import annotations

from collections.abc import AsyncIterator
from typing import Any

import oracledb

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

_LARGE_TYPES = frozenset({
    oracledb.DB_TYPE_CLOB,
    oracledb.DB_TYPE_NCLOB,
    oracledb.DB_TYPE_BLOB,
    oracledb.DB_TYPE_BFILE,
    oracledb.DB_TYPE_LONG,
    oracledb.DB_TYPE_LONG_RAW,
})

_COLUMNS_SQL = """
SELECT c.COLUMN_NAME, c.DATA_TYPE, c.NULLABLE, c.DATA_DEFAULT,
       c.CHAR_LENGTH, c.DATA_PRECISION, c.DATA_SCALE,
       CASE WHEN EXISTS (
           SELECT 1 FROM ALL_CONSTRAINTS k
           JOIN ALL_CONS_COLUMNS kc
             ON kc.OWNER = k.OWNER AND kc.CONSTRAINT_NAME = k.CONSTRAINT_NAME
           WHERE k.CONSTRAINT_TYPE = 'P' AND k.OWNER = c.OWNER
             AND k.TABLE_NAME = c.TABLE_NAME AND kc.COLUMN_NAME = c.COLUMN_NAME
       ) THEN 1 ELSE 0 END AS IS_PRIMARY_KEY,
       CASE WHEN EXISTS (
           SELECT 1 FROM ALL_CONSTRAINTS k
           JOIN ALL_CONS_COLUMNS kc
             ON kc.OWNER = k.OWNER AND kc.CONSTRAINT_NAME = k.CONSTRAINT_NAME
           WHERE k.CONSTRAINT_TYPE = 'R' AND k.OWNER = c.OWNER
             AND k.TABLE_NAME = c.TABLE_NAME AND kc.COLUMN_NAME = c.COLUMN_NAME
       ) THEN 1 ELSE 0 END AS IS_FOREIGN_KEY
FROM ALL_TAB_COLUMNS c
WHERE c.OWNER = :owner AND c.TABLE_NAME = :tbl
ORDER BY c.COLUMN_ID
"""

_INDEXES_SQL = """
SELECT i.INDEX_NAME, i.UNIQUENESS, i.INDEX_TYPE,
       LISTAGG(ic.COLUMN_NAME, ',') WITHIN GROUP (ORDER BY ic.COLUMN_POSITION) AS COLUMNS
FROM ALL_INDEXES i
JOIN ALL_IND_COLUMNS ic ON ic.INDEX_OWNER = i.OWNER AND ic.INDEX_NAME = i.INDEX_NAME
WHERE i.TABLE_OWNER = :owner AND i.TABLE_NAME = :tbl
GROUP BY i.INDEX_NAME, i.UNIQUENESS, i.INDEX_TYPE
ORDER BY i.INDEX_NAME
"""

_FOREIGN_KEYS_SQL = """
SELECT c.CONSTRAINT_NAME, cc.COLUMN_NAME,
       r.OWNER AS REFERENCED_SCHEMA, r.TABLE_NAME AS REFERENCED_TABLE,
       rc.COLUMN_NAME AS REFERENCED_COLUMN, c.DELETE_RULE
FROM ALL_CONSTRAINTS c
JOIN ALL_CONS_COLUMNS cc ON cc.OWNER = c.OWNER AND cc.CONSTRAINT_NAME = c.CONSTRAINT_NAME
JOIN ALL_CONSTRAINTS r ON r.OWNER = c.R_OWNER AND r.CONSTRAINT_NAME = c.R_CONSTRAINT_NAME
JOIN ALL_CONS_COLUMNS rc
  ON rc.OWNER = r.OWNER AND rc.CONSTRAINT_NAME = r.CONSTRAINT_NAME
 AND rc.POSITION = cc.POSITION
WHERE c.CONSTRAINT_TYPE = 'R' AND c.OWNER = :owner AND c.TABLE_NAME = :tbl
ORDER BY c.CONSTRAINT_NAME, cc.POSITION
"""

_STATISTICS_SQL = """
SELECT t.NUM_ROWS, t.LAST_ANALYZED,
       (SELECT SUM(s.BYTES) FROM DBA_SEGMENTS s
         WHERE s.OWNER = t.OWNER AND s.SEGMENT_NAME = t.TABLE_NAME) AS TABLE_BYTES,
       (SELECT SUM(s.BYTES) FROM DBA_SEGMENTS s
         JOIN ALL_INDEXES i ON i.OWNER = s.OWNER AND i.INDEX_NAME = s.SEGMENT_NAME
         WHERE i.TABLE_OWNER = t.OWNER AND i.TABLE_NAME = t.TABLE_NAME) AS INDEX_BYTES
FROM ALL_TABLES t
WHERE t.OWNER = :owner AND t.TABLE_NAME = :tbl
"""


def _output_type_handler(cursor: Any, metadata: Any) -> Any:
    # Fetch LOBs inline so rows hold plain str/bytes instead of LOB locators.
    if metadata.type_code in (oracledb.DB_TYPE_CLOB, oracledb.DB_TYPE_NCLOB):
        return cursor.var(oracledb.DB_TYPE_LONG, arraysize=cursor.arraysize)
    if metadata.type_code is oracledb.DB_TYPE_BLOB:
        return cursor.var(oracledb.DB_TYPE_LONG_RAW, arraysize=cursor.arraysize)
    return None


class OraclePool(ConnectionPool[oracledb.AsyncConnection]):
    """ConnectionPool over python-oracledb's AsyncConnectionPool."""

    def __init__(
        self,
        pool: oracledb.AsyncConnectionPool,
        *,
        name: str = "oracle",
        acquire_timeout: float = 30.0,
    ) -> None:
        super().__init__(name=name, acquire_timeout=acquire_timeout)
        self._pool = pool

    async def _acquire(self) -> oracledb.AsyncConnection:
        conn = await self._pool.acquire()
        conn.outputtypehandler = _output_type_handler
        return conn

    async def _release(self, conn: oracledb.AsyncConnection, discard: bool) -> None:
        if discard:
            await self._pool.drop(conn)
        else:
            await self._pool.release(conn)

    async def _close(self) -> None:
        # force: python-oracledb refuses to close a pool with busy connections.
        await self._pool.close(force=True)

    def stats(self) -> PoolStats:
        return PoolStats(
            size=self._pool.opened,
            idle=self._pool.opened - self._pool.busy,
            in_use=self._pool.busy,
            max_size=self._pool.max,
            closed=self.closed,
        )


class OracleAdapter(PooledAdapter):
    """Oracle adapter using python-oracledb (thin mode, asyncio)."""

    ping_sql = "SELECT 1 FROM DUAL"

    def __init__(self, *args: Any, **kwargs: Any) -> None:
        super().__init__(*args, **kwargs)
        self._current_user: str | None = None

    async def _create_pool(self) -> ConnectionPool[oracledb.AsyncConnection]:
        cfg, s = self._config, self._settings
        raw = oracledb.create_pool_async(
            user=cfg.user,
            password=cfg.password,
            host=cfg.host,
            port=cfg.port,
            service_name=cfg.service_name or cfg.database,
            tcp_connect_timeout=cfg.connect_timeout,
            min=s.pool_min_size,
            max=s.pool_max_size,
            increment=1,
            timeout=int(s.pool_idle_timeout),
            getmode=oracledb.POOL_GETMODE_WAIT,
            **cfg.options,
        )
        return OraclePool(raw, acquire_timeout=s.pool_acquire_timeout)

    async def _fetch(
        self,
        conn: oracledb.AsyncConnection,
        sql: str,
        limit: int | None,
        params: Params = None,
        *,
        detect_large: bool = False,
    ) -> Fetched:
        with conn.cursor() as cur:
            await cur.execute(sql, params)
            if cur.description is None:
                return Fetched(columns=[], rows=[])
            columns = [d.name for d in cur.description]
            large = frozenset(d.name for d in cur.description if d.type_code in _LARGE_TYPES)
            rows = await cur.fetchmany(limit) if limit is not None else await cur.fetchall()
        return Fetched(columns=columns, rows=rows, large_columns=large)

    async def _stream(
        self, conn: oracledb.AsyncConnection, sql: str, batch_size: int
    ) -> AsyncIterator[Fetched]:
        with conn.cursor() as cur:
            cur.arraysize = batch_size
            await cur.execute(sql)
            columns = [d.name for d in cur.description] if cur.description else []
            while True:
                rows = await cur.fetchmany(batch_size)
                if not rows:
                    break
                yield Fetched(columns=columns, rows=rows)

    async def _begin_read_only(self, conn: oracledb.AsyncConnection) -> None:
        # SET TRANSACTION must be the first statement of a transaction.
        await conn.rollback()
        with conn.cursor() as cur:
            await cur.execute("SET TRANSACTION READ ONLY")

    async def _commit(self, conn: oracledb.AsyncConnection) -> None:
        await conn.commit()

    async def _rollback(self, conn: oracledb.AsyncConnection) -> None:
        await conn.rollback()

    def normalize_identifier(self, name: str) -> str:
        return name.upper()

    def _random_order(self) -> str:
        return "DBMS_RANDOM.VALUE"

    async def default_schema(self) -> str | None:
        if self._current_user is None:
            rows = await self._catalog("SELECT USER AS username FROM DUAL")
            self._current_user = rows[0]["username"]
        return self._current_user

    def db_type(self) -> DatabaseType:
        return DatabaseType.ORACLE

    def dialect(self) -> str:
        return "oracle"

    # -- Catalog --

    async def get_table_info(self, table: str, schema: str | None = None) -> TableInfo:
        owner, table = await self._target(table, schema)
        rows = await self._catalog(_COLUMNS_SQL, {"owner": owner, "tbl": table})
        self._require(rows, f"Table {owner}.{table}")

        stats = await self._catalog(
            "SELECT NUM_ROWS FROM ALL_TABLES WHERE OWNER = :owner AND TABLE_NAME = :tbl",
            {"owner": owner, "tbl": table},
        )
        columns = tuple(
            ColumnInfo(
                name=r["column_name"],
                data_type=r["data_type"],
                nullable=r["nullable"] == "Y",
                length=r["char_length"] or None,
                precision=r["data_precision"],
                scale=r["data_scale"],
                default=r["data_default"].strip() if r["data_default"] else None,
                is_primary_key=bool(r["is_primary_key"]),
                is_foreign_key=bool(r["is_foreign_key"]),
            )
            for r in rows
        )
        return TableInfo(
            name=table,
            schema=owner,
            columns=columns,
            row_count=stats[0]["num_rows"] if stats else None,
        )

    async def list_tables(
        self, schema: str | None = None, pattern: str | None = None
    ) -> list[TableListItem]:
        owner = await self._schema(schema)
        sql = "SELECT TABLE_NAME, NUM_ROWS, LAST_ANALYZED FROM ALL_TABLES WHERE OWNER = :owner"
        params: dict[str, str] = {"owner": owner}
        if pattern:
            sql += " AND TABLE_NAME LIKE :pattern"
            params["pattern"] = pattern.upper()
        rows = await self._catalog(sql + " ORDER BY TABLE_NAME", params)
        return [
            TableListItem(
                name=r["table_name"],
                schema=owner,
                row_count=r["num_rows"],
                last_analyzed=r["last_analyzed"],
            )
            for r in rows
        ]

    async def list_schemas(self) -> list[SchemaInfo]:
        rows = await self._catalog(
            "SELECT u.USERNAME AS NAME, "
            "(SELECT COUNT(*) FROM ALL_TABLES t WHERE t.OWNER = u.USERNAME) AS TABLE_COUNT, "
            "(SELECT COUNT(*) FROM ALL_VIEWS v WHERE v.OWNER = u.USERNAME) AS VIEW_COUNT "
            "FROM ALL_USERS u "
            "WHERE EXISTS (SELECT 1 FROM ALL_OBJECTS o WHERE o.OWNER = u.USERNAME) "
            "ORDER BY u.USERNAME"
        )
        return [
            SchemaInfo(name=r["name"], table_count=r["table_count"], view_count=r["view_count"])
            for r in rows
        ]

    async def list_views(
        self, schema: str | None = None, pattern: str | None = None
    ) -> list[ViewInfo]:
        owner = await self._schema(schema)
        sql = "SELECT VIEW_NAME FROM ALL_VIEWS WHERE OWNER = :owner"
        params: dict[str, str] = {"owner": owner}
        if pattern:
            sql += " AND VIEW_NAME LIKE :pattern"
            params["pattern"] = pattern.upper()
        rows = await self._catalog(sql + " ORDER BY VIEW_NAME", params)
        return [ViewInfo(name=r["view_name"], schema=owner) for r in rows]

    async def get_view_definition(self, view: str, schema: str | None = None) -> ViewDefinition:
        owner, view = await self._target(view, schema)
        rows = await self._catalog(
            "SELECT TEXT FROM ALL_VIEWS WHERE OWNER = :owner AND VIEW_NAME = :vw",
            {"owner": owner, "vw": view},
        )
        self._require(rows, f"View {owner}.{view}")
        return ViewDefinition(name=view, schema=owner, definition=rows[0]["text"] or "")

    async def get_indexes(self, table: str, schema: str | None = None) -> list[IndexInfo]:
        owner, table = await self._target(table, schema)
        rows = await self._catalog(_INDEXES_SQL, {"owner": owner, "tbl": table})
        return [
            IndexInfo(
                name=r["index_name"],
                table=table,
                schema=owner,
                columns=tuple((r["columns"] or "").split(",")),
                is_unique=r["uniqueness"] == "UNIQUE",
                index_type=r["index_type"],
            )
            for r in rows
        ]

    async def get_foreign_keys(self, table: str, schema: str | None = None) -> list[ForeignKeyInfo]:
        owner, table = await self._target(table, schema)
        rows = await self._catalog(_FOREIGN_KEYS_SQL, {"owner": owner, "tbl": table})
        return [
            ForeignKeyInfo(
                constraint_name=r["constraint_name"],
                table=table,
                schema=owner,
                column=r["column_name"],
                referenced_table=r["referenced_table"],
                referenced_column=r["referenced_column"],
                referenced_schema=r["referenced_schema"],
                on_delete=r["delete_rule"],
                # Oracle has no ON UPDATE referential actions.
                on_update="NO ACTION",
            )
            for r in rows
        ]

    async def list_stored_procedures(self, schema: str | None = None) -> list[StoredProcedureInfo]:
        owner = await self._schema(schema)
        rows = await self._catalog(
            "SELECT OBJECT_NAME, OBJECT_TYPE FROM ALL_OBJECTS "
            "WHERE OWNER = :owner AND OBJECT_TYPE IN ('PROCEDURE', 'FUNCTION') "
            "ORDER BY OBJECT_NAME",
            {"owner": owner},
        )
        return [
            StoredProcedureInfo(name=r["object_name"], schema=owner, kind=r["object_type"])
            for r in rows
        ]

    async def get_table_statistics(self, table: str, schema: str | None = None) -> TableStatistics:
        owner, table = await self._target(table, schema)
        rows = await self._catalog(_STATISTICS_SQL, {"owner": owner, "tbl": table})
        self._require(rows, f"Table {owner}.{table}")
        r = rows[0]
        return TableStatistics(
            table=table,
            schema=owner,
            row_count=r["num_rows"],
            size_mb=round(r["table_bytes"] / (1024 * 1024), 2) if r["table_bytes"] else None,
            index_size_mb=round(r["index_bytes"] / (1024 * 1024), 2) if r["index_bytes"] else None,
            last_analyzed=r["last_analyzed"],
        )

    async def explain_query(self, sql: str) -> ExplainPlan:
        pool = await self._ensure_pool()
        async with pool.connection() as conn:
            try:
                with conn.cursor() as cur:
                    await cur.execute(f"EXPLAIN PLAN FOR {sql}")
                    await cur.execute("SELECT PLAN_TABLE_OUTPUT FROM TABLE(DBMS_XPLAN.DISPLAY())")
                    rows = await cur.fetchall()
            finally:
                # EXPLAIN PLAN writes to PLAN_TABLE; leave no trace.
                await conn.rollback()
        return ExplainPlan(query=sql, plan="\n".join(str(r[0]) for r in rows))
