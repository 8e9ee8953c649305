"""Adapter test fixtures."""

from __future__ import annotations

import asyncio
import os

import pytest

from querygate.config import ConnectionConfig, GatewaySettings


@pytest.fixture
def sqlite_config(sample_db):
    return ConnectionConfig(db_type="sqlite", path=sample_db)


@pytest.fixture
def run_sqlite(sqlite_config):
    """Run ``fn(adapter)`` against a fresh SQLiteAdapter inside one event loop."""
    pytest.importorskip("aiosqlite")
    from querygate.adapters.sqlite import SQLiteAdapter

    def run(fn, settings: GatewaySettings | None = None):
        adapter = SQLiteAdapter(sqlite_config, settings)

        async def go():
            try:
                return await fn(adapter)
            finally:
                await adapter.disconnect()

        return asyncio.run(go())

    return run


@pytest.fixture(scope="session")
def pg_config():
    return ConnectionConfig(
        db_type="postgres",
        host=os.environ.get("QUERYGATE_POSTGRES_HOST", "localhost"),
        port=int(os.environ.get("QUERYGATE_POSTGRES_PORT", "5432")),
        user=os.environ.get("QUERYGATE_POSTGRES_USER", "querygate"),
        password=os.environ.get("QUERYGATE_POSTGRES_PASSWORD", "querygate_test"),
        database=os.environ.get("QUERYGATE_POSTGRES_DB", "querygate_test"),
    )
