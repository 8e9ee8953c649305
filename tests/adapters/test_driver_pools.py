"""Test the ConnectionPool wrappers around driver pools, using stand-in driver objects."""

from __future__ import annotations

import asyncio

import pytest


class StubConn:
    def __init__(self) -> None:
        self.closed = False
        self.outputtypehandler = None


class StubPsycopgConn(StubConn):
    async def close(self) -> None:
        self.closed = True


class StubPsycopgPool:
    max_size = 4

    def __init__(self) -> None:
        self.free = [StubPsycopgConn()]
        self.returned: list[StubPsycopgConn] = []
        self.closed = False

    async def getconn(self):
        return self.free.pop()

    async def putconn(self, conn):
        self.returned.append(conn)
        if not conn.closed:
            self.free.append(conn)

    async def close(self):
        self.closed = True

    def get_stats(self):
        return {"pool_size": 3, "pool_available": 1}


class StubMySQLConn(StubConn):
    def close(self) -> None:
        self.closed = True


class StubAiomysqlPool:
    maxsize = 4

    def __init__(self) -> None:
        self.free = [StubMySQLConn()]
        self.size = 1
        self.closing = False
        self.cleared = False

    async def acquire(self):
        return self.free.pop()

    def release(self, conn):
        if not conn.closed:
            self.free.append(conn)
        else:
            self.size -= 1
        fut = asyncio.get_running_loop().create_future()
        fut.set_result(None)
        return fut

    def close(self):
        self.closing = True

    async def clear(self):
        self.cleared = True

    @property
    def freesize(self):
        return len(self.free)


class StubOraclePool:
    max = 4

    def __init__(self) -> None:
        self.free = [StubConn()]
        self.dropped: list[StubConn] = []
        self.busy = 0
        self.opened = 1
        self.close_args: dict | None = None

    async def acquire(self):
        self.busy += 1
        return self.free.pop()

    async def release(self, conn):
        self.busy -= 1
        self.free.append(conn)

    async def drop(self, conn):
        self.busy -= 1
        self.opened -= 1
        self.dropped.append(conn)

    async def close(self, force=False):
        self.close_args = {"force": force}


async def _cancel_while_held(pool):
    async def hold():
        async with pool.connection():
            await asyncio.sleep(10)

    task = asyncio.create_task(hold())
    await asyncio.sleep(0.01)
    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task


@pytest.mark.unit
class TestPsycopgPool:
    @pytest.fixture(autouse=True)
    def _driver(self):
        pytest.importorskip("psycopg_pool")

    def test_round_trip_returns_connection(self):
        from querygate.adapters.postgres import PsycopgPool

        raw = StubPsycopgPool()
        pool = PsycopgPool(raw)

        async def run():
            async with pool.connection() as conn:
                return conn

        conn = asyncio.run(run())
        assert raw.returned == [conn]
        assert not conn.closed

    def test_cancel_closes_before_putconn(self):
        from querygate.adapters.postgres import PsycopgPool

        raw = StubPsycopgPool()
        pool = PsycopgPool(raw)
        asyncio.run(_cancel_while_held(pool))
        assert raw.returned[0].closed
        assert raw.free == []

    def test_stats_and_close(self):
        from querygate.adapters.postgres import PsycopgPool

        raw = StubPsycopgPool()
        pool = PsycopgPool(raw)
        stats = pool.stats()
        assert (stats.size, stats.idle, stats.in_use, stats.max_size) == (3, 1, 2, 4)
        asyncio.run(pool.close())
        assert raw.closed
        assert pool.stats().closed


@pytest.mark.unit
class TestAiomysqlPool:
    @pytest.fixture(autouse=True)
    def _driver(self):
        pytest.importorskip("aiomysql")

    def test_round_trip_returns_connection(self):
        from querygate.adapters.mysql import AiomysqlPool

        raw = StubAiomysqlPool()
        pool = AiomysqlPool(raw)

        async def run():
            async with pool.connection():
                assert pool.stats().in_use == 1

        asyncio.run(run())
        assert pool.stats().idle == 1
        assert pool.stats().in_use == 0

    def test_cancel_drops_connection(self):
        from querygate.adapters.mysql import AiomysqlPool

        raw = StubAiomysqlPool()
        conn = raw.free[0]
        pool = AiomysqlPool(raw)
        asyncio.run(_cancel_while_held(pool))
        assert conn.closed
        assert raw.size == 0

    def test_close_clears_idle(self):
        from querygate.adapters.mysql import AiomysqlPool

        raw = StubAiomysqlPool()
        pool = AiomysqlPool(raw)
        asyncio.run(pool.close())
        assert raw.closing
        assert raw.cleared


@pytest.mark.unit
class TestOraclePool:
    @pytest.fixture(autouse=True)
    def _driver(self):
        pytest.importorskip("oracledb")

    def test_acquire_installs_lob_handler(self):
        from querygate.adapters.oracle import OraclePool, _output_type_handler

        raw = StubOraclePool()
        pool = OraclePool(raw)

        async def run():
            async with pool.connection() as conn:
                return conn, pool.stats()

        conn, held = asyncio.run(run())
        assert conn.outputtypehandler is _output_type_handler
        assert held.in_use == 1
        assert raw.free == [conn]

    def test_cancel_drops_connection(self):
        from querygate.adapters.oracle import OraclePool

        raw = StubOraclePool()
        conn = raw.free[0]
        pool = OraclePool(raw)
        asyncio.run(_cancel_while_held(pool))
        assert raw.dropped == [conn]
        assert pool.stats().size == 0

    def test_close_forces(self):
        from querygate.adapters.oracle import OraclePool

        raw = StubOraclePool()
        asyncio.run(OraclePool(raw).close())
        assert raw.close_args == {"force": True}
