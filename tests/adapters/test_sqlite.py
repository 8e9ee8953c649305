"""Tests for SQLiteAdapter against a temporary database file."""

from __future__ import annotations

import pytest

pytest.importorskip("aiosqlite")

from querygate.adapters._base import StreamingMode  # noqa: E402
from querygate.config import ConnectionConfig, GatewaySettings  # noqa: E402
from querygate.errors import ConnectionFailedError, NotFoundError  # noqa: E402


# -- Connection lifecycle --


def test_connect_and_ping(run_sqlite):
    async def body(adapter):
        await adapter.connect()
        assert adapter.pool is not None
        return await adapter.test_connection()

    assert run_sqlite(body) is True


def test_missing_file(tmp_path):
    import asyncio

    from querygate.adapters.sqlite import SQLiteAdapter

    adapter = SQLiteAdapter(
        ConnectionConfig(db_type="sqlite", path=tmp_path / "absent.db"),
        GatewaySettings(retry_attempts=1),
    )
    with pytest.raises(ConnectionFailedError, match="not found"):
        asyncio.run(adapter.connect())


def test_disconnect_fails_fast_until_reconnect(run_sqlite):
    async def body(adapter):
        await adapter.connect()
        await adapter.disconnect()
        with pytest.raises(ConnectionFailedError, match="Not connected"):
            await adapter.execute_query("SELECT 1", 10)
        await adapter.connect()
        return await adapter.execute_query("SELECT 1 AS x", 10)

    result = run_sqlite(body)
    assert result.rows == [{"x": 1}]


def test_database_opened_read_only(run_sqlite):
    import sqlite3

    async def body(adapter):
        await adapter.execute_query("SELECT 1", 1)
        async with adapter.pool.connection() as conn:
            await conn.execute("DELETE FROM orders")

    with pytest.raises(sqlite3.OperationalError, match="readonly"):
        run_sqlite(body)


# -- execute_query() --


def test_row_cap_and_truncation(run_sqlite):
    async def body(adapter):
        return await adapter.execute_query("SELECT id, total FROM orders ORDER BY id", 10)

    result = run_sqlite(body)
    assert result.row_count == 10
    assert len(result.rows) == 10
    assert result.truncated is True
    assert result.columns == ["id", "total"]
    assert result.rows[0] == {"id": 1, "total": 1.0}
    assert result.duration_ms is not None


def test_under_cap_not_truncated(run_sqlite):
    async def body(adapter):
        return await adapter.execute_query("SELECT id FROM orders WHERE id <= 5;", 10)

    result = run_sqlite(body)
    assert result.row_count == 5
    assert result.truncated is False


def test_existing_limit_above_cap(run_sqlite):
    async def body(adapter):
        return await adapter.execute_query("SELECT id FROM orders LIMIT 50", 20)

    result = run_sqlite(body)
    assert result.row_count == 20
    assert result.truncated is True


def test_zero_cap(run_sqlite):
    async def body(adapter):
        return await adapter.execute_query("SELECT * FROM orders", 0)

    result = run_sqlite(body)
    assert result.rows == []
    assert result.row_count == 0


def test_blob_columns_excluded_on_request(run_sqlite):
    async def body(adapter):
        return await adapter.execute_query("SELECT * FROM orders", 3, exclude_large_columns=True)

    result = run_sqlite(body)
    assert "receipt" not in result.columns
    assert result.excluded_columns == ["receipt"]
    assert all("receipt" not in row for row in result.rows)


def test_blob_columns_kept_by_default(run_sqlite):
    async def body(adapter):
        return await adapter.execute_query("SELECT * FROM orders", 3)

    result = run_sqlite(body)
    assert "receipt" in result.columns
    assert isinstance(result.rows[0]["receipt"], bytes)
    assert result.excluded_columns == []


def test_missing_table_raises_driver_error(run_sqlite):
    import sqlite3

    async def body(adapter):
        await adapter.execute_query("SELECT * FROM nope", 10)

    with pytest.raises(sqlite3.OperationalError, match="no such table"):
        run_sqlite(body)


# -- Streaming --


def test_streaming_mode():
    from querygate.adapters.sqlite import SQLiteAdapter

    assert SQLiteAdapter.streaming_mode is StreamingMode.NATIVE


def test_stream_batches(run_sqlite):
    async def body(adapter):
        stream = adapter.execute_query_stream("SELECT id FROM orders ORDER BY id", 100)
        batches = [batch async for batch in stream]
        # An exhausted stream is not restartable.
        again = [batch async for batch in stream]
        return batches, again

    batches, again = run_sqlite(body)
    assert [len(b) for b in batches] == [100, 100, 50]
    assert batches[0][0] == {"id": 1}
    assert batches[-1][-1] == {"id": 250}
    assert again == []


def test_stream_empty_result(run_sqlite):
    async def body(adapter):
        stream = adapter.execute_query_stream("SELECT id FROM orders WHERE 0", 10)
        return [b async for b in stream]

    assert run_sqlite(body) == []


def test_stream_closed_early_frees_connection(run_sqlite):
    async def body(adapter):
        stream = adapter.execute_query_stream("SELECT id FROM orders", 10)
        first = await anext(stream)
        assert adapter.pool.stats().in_use == 1
        await stream.aclose()
        return first, adapter.pool.stats()

    first, stats = run_sqlite(body)
    assert len(first) == 10
    assert stats.in_use == 0


# -- Transactions --


def test_transaction_results(run_sqlite):
    async def body(adapter):
        return await adapter.execute_transaction(
            ["SELECT COUNT(*) AS n FROM orders", "SELECT name FROM customers WHERE id = 1"], 100
        )

    first, second = run_sqlite(body)
    assert first.rows == [{"n": 250}]
    assert second.rows == [{"name": "customer 1"}]


def test_transaction_large_columns(run_sqlite):
    async def body(adapter):
        sql = ["SELECT id, receipt FROM orders WHERE id = 1"]
        return (
            await adapter.execute_transaction(sql, 10),
            await adapter.execute_transaction(sql, 10, exclude_large_columns=True),
        )

    (kept,), (dropped,) = run_sqlite(body)
    assert kept.columns == ["id", "receipt"]
    assert dropped.columns == ["id"]
    assert dropped.excluded_columns == ["receipt"]


def test_transaction_failure_rolls_back(run_sqlite):
    import sqlite3

    async def body(adapter):
        try:
            await adapter.execute_transaction(["SELECT 1", "SELECT * FROM nope"], 10)
        except sqlite3.OperationalError:
            pass
        else:
            raise AssertionError("transaction should have failed")
        async with adapter.pool.connection() as conn:
            return conn.in_transaction

    assert run_sqlite(body) is False


# -- Catalog --


def test_get_table_info(run_sqlite):
    async def body(adapter):
        return await adapter.get_table_info("customers")

    info = run_sqlite(body)
    assert info.name == "customers"
    assert info.schema == "main"
    assert info.row_count == 10
    cols = {c.name: c for c in info.columns}
    assert [c.name for c in info.columns] == ["id", "name", "email", "balance"]
    assert cols["id"].is_primary_key
    assert not cols["id"].nullable
    assert not cols["name"].nullable
    assert cols["name"].length == 100
    assert cols["email"].nullable
    assert cols["balance"].precision == 10
    assert cols["balance"].scale == 2
    assert cols["balance"].default == "0"


def test_table_info_marks_foreign_keys(run_sqlite):
    async def body(adapter):
        return await adapter.get_table_info("orders")

    cols = {c.name: c for c in run_sqlite(body).columns}
    assert cols["customer_id"].is_foreign_key
    assert not cols["total"].is_foreign_key


def test_get_table_info_missing(run_sqlite):
    async def body(adapter):
        await adapter.get_table_info("nope")

    with pytest.raises(NotFoundError, match="nope not found"):
        run_sqlite(body)


def test_list_tables(run_sqlite):
    async def body(adapter):
        return await adapter.list_tables(), await adapter.list_tables(pattern="cust%")

    every, filtered = run_sqlite(body)
    assert [t.name for t in every] == ["customers", "orders"]
    assert [t.name for t in filtered] == ["customers"]


def test_list_schemas(run_sqlite):
    async def body(adapter):
        return await adapter.list_schemas()

    schemas = {s.name: s for s in run_sqlite(body)}
    assert schemas["main"].table_count == 2
    assert schemas["main"].view_count == 1


def test_views(run_sqlite):
    async def body(adapter):
        return await adapter.list_views(), await adapter.get_view_definition("big_orders")

    views, definition = run_sqlite(body)
    assert [v.name for v in views] == ["big_orders"]
    assert "total > 100" in definition.definition


def test_view_definition_missing(run_sqlite):
    async def body(adapter):
        await adapter.get_view_definition("nope")

    with pytest.raises(NotFoundError):
        run_sqlite(body)


def test_get_row_count(run_sqlite):
    async def body(adapter):
        return (
            await adapter.get_row_count("orders"),
            await adapter.get_row_count("orders", where="status = 'pending'"),
            await adapter.get_row_count("main.orders"),
        )

    assert run_sqlite(body) == (250, 125, 250)


def test_schema_qualified_names(run_sqlite):
    async def body(adapter):
        return (
            await adapter.get_table_info("main.orders"),
            await adapter.get_indexes("main.orders"),
            await adapter.get_foreign_keys("main.orders"),
            await adapter.get_table_statistics("main.orders"),
            await adapter.get_view_definition("main.big_orders"),
        )

    info, indexes, fks, stats, view = run_sqlite(body)
    assert (info.schema, info.name) == ("main", "orders")
    assert [i.name for i in indexes] == ["idx_orders_customer"]
    assert [fk.referenced_table for fk in fks] == ["customers"]
    assert stats.row_count == 250
    assert view.name == "big_orders"


def test_get_indexes(run_sqlite):
    async def body(adapter):
        return await adapter.get_indexes("customers"), await adapter.get_indexes("orders")

    customers, orders = run_sqlite(body)
    assert [(i.name, i.columns, i.is_unique) for i in customers] == [
        ("idx_customers_email", ("email",), True)
    ]
    assert [(i.name, i.columns, i.is_unique) for i in orders] == [
        ("idx_orders_customer", ("customer_id",), False)
    ]


def test_get_foreign_keys(run_sqlite):
    async def body(adapter):
        return await adapter.get_foreign_keys("orders")

    (fk,) = run_sqlite(body)
    assert fk.column == "customer_id"
    assert fk.referenced_table == "customers"
    assert fk.referenced_column == "id"
    assert fk.on_delete == "CASCADE"


def test_no_stored_procedures(run_sqlite):
    async def body(adapter):
        return await adapter.list_stored_procedures()

    assert run_sqlite(body) == []


def test_table_statistics(run_sqlite):
    async def body(adapter):
        return await adapter.get_table_statistics("orders")

    stats = run_sqlite(body)
    assert stats.table == "orders"
    assert stats.row_count == 250


def test_sample_table_data(run_sqlite):
    async def body(adapter):
        return (
            await adapter.sample_table_data("customers", limit=3),
            await adapter.sample_table_data("customers", limit=3, random=True),
        )

    ordered, shuffled = run_sqlite(body)
    assert ordered.row_count == 3
    assert shuffled.row_count == 3
    assert set(shuffled.columns) == {"id", "name", "email", "balance"}


def test_explain_query(run_sqlite):
    async def body(adapter):
        return await adapter.explain_query("SELECT * FROM orders WHERE customer_id = 3")

    plan = run_sqlite(body)
    assert "idx_orders_customer" in plan.plan
    assert plan.plan_node is not None
