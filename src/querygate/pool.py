"""Connection pools behind one interface.

Adapters hold a :class:`ConnectionPool`. Drivers that ship a pool
(psycopg_pool, aiomysql, python-oracledb) are wrapped by a subclass in their
adapter module; drivers without one (aiosqlite, pymssql) use
:class:`SemaphorePool`. The base class owns what must behave the same
everywhere: the acquire timeout, in-use tracking, discarding a connection
whose holder was cancelled, and the closed state.
"""

from __future__ import annotations

import asyncio
import contextlib
import time
from abc import ABC, abstractmethod
from collections import deque
from collections.abc import AsyncIterator, Awaitable, Callable
from dataclasses import dataclass
from typing import Generic, TypeVar

import structlog

from querygate.errors import ConnectionFailedError

C = TypeVar("C")


@dataclass(frozen=True)
class PoolStats:
    size: int
    idle: int
    in_use: int
    max_size: int
    closed: bool


class ConnectionPool(ABC, Generic[C]):
    """Common pool interface. Subclasses implement the driver-specific hooks."""

    def __init__(self, *, name: str = "pool", acquire_timeout: float = 30.0) -> None:
        self._name = name
        self._acquire_timeout = acquire_timeout
        self._in_use: set[int] = set()
        self._closed = False

    # -- Driver hooks --

    @abstractmethod
    async def _acquire(self) -> C:
        """Take a connection from the underlying pool, waiting if necessary."""

    @abstractmethod
    async def _release(self, conn: C, discard: bool) -> None:
        """Hand *conn* back; close it instead when *discard* is set."""

    @abstractmethod
    async def _close(self) -> None:
        """Close the underlying pool's idle connections."""

    @abstractmethod
    def stats(self) -> PoolStats: ...

    # -- Shared behaviour --

    @property
    def name(self) -> str:
        return self._name

    @property
    def closed(self) -> bool:
        return self._closed

    async def acquire(self) -> C:
        if self._closed:
            raise ConnectionFailedError(f"Connection pool '{self._name}' is closed")
        try:
            async with asyncio.timeout(self._acquire_timeout):
                conn = await self._acquire()
        except TimeoutError as e:
            raise ConnectionFailedError(
                f"Timed out after {self._acquire_timeout}s waiting for a connection "
                f"from pool '{self._name}'",
                retryable=True,
            ) from e
        self._in_use.add(id(conn))
        return conn

    async def release(self, conn: C, *, discard: bool = False) -> None:
        """Return *conn* to the pool, or close it if discarded or the pool is closed."""
        if id(conn) not in self._in_use:
            return
        self._in_use.discard(id(conn))
        try:
            await self._release(conn, discard or self._closed)
        except Exception as e:
            structlog.get_logger().warning("pool_release_failed", pool=self._name, error=str(e))

    @contextlib.asynccontextmanager
    async def connection(self) -> AsyncIterator[C]:
        """Hold one connection for the duration of the block.

        A block interrupted by cancellation discards the connection: the
        driver may be mid-protocol and unsafe to reuse.
        """
        conn = await self.acquire()
        try:
            yield conn
        except Exception:
            await self.release(conn)
            raise
        except BaseException:
            await self.release(conn, discard=True)
            raise
        else:
            await self.release(conn)

    async def close(self) -> None:
        """Close idle connections now; in-use ones close when released."""
        if self._closed:
            return
        self._closed = True
        await self._close()
        structlog.get_logger().debug("pool_closed", pool=self._name)


class SemaphorePool(ConnectionPool[C]):
    """Pool for drivers without one of their own.

    A semaphore bounds live connections, idle connections wait in a LIFO
    stack with their last-used time, and anything idle past ``idle_timeout``
    is closed the next time someone acquires.
    """

    def __init__(
        self,
        factory: Callable[[], Awaitable[C]],
        closer: Callable[[C], Awaitable[None]],
        *,
        min_size: int = 1,
        max_size: int = 10,
        idle_timeout: float = 300.0,
        acquire_timeout: float = 30.0,
        name: str = "pool",
    ) -> None:
        if max_size < 1:
            raise ValueError("max_size must be >= 1")
        super().__init__(name=name, acquire_timeout=acquire_timeout)
        self._factory = factory
        self._closer = closer
        self._min_size = min(min_size, max_size)
        self._max_size = max_size
        self._idle_timeout = idle_timeout

        self._slots = asyncio.Semaphore(max_size)
        self._idle: deque[tuple[C, float]] = deque()

    async def open(self) -> None:
        """Create ``min_size`` connections up front. Failures propagate."""
        created: list[C] = []
        try:
            for _ in range(self._min_size):
                created.append(await self._factory())
        except BaseException:
            for conn in created:
                await self._close_quietly(conn)
            raise
        now = time.monotonic()
        self._idle.extend((conn, now) for conn in created)
        structlog.get_logger().debug(
            "pool_opened", pool=self._name, size=len(created), max_size=self._max_size
        )

    async def _acquire(self) -> C:
        await self._slots.acquire()
        try:
            conn = await self._take_idle()
            if conn is None:
                conn = await self._factory()
        except BaseException:
            self._slots.release()
            raise
        return conn

    async def _release(self, conn: C, discard: bool) -> None:
        try:
            if discard:
                await self._close_quietly(conn)
            else:
                self._idle.append((conn, time.monotonic()))
        finally:
            self._slots.release()

    async def _close(self) -> None:
        while self._idle:
            conn, _ = self._idle.pop()
            await self._close_quietly(conn)

    def stats(self) -> PoolStats:
        return PoolStats(
            size=len(self._idle) + len(self._in_use),
            idle=len(self._idle),
            in_use=len(self._in_use),
            max_size=self._max_size,
            closed=self._closed,
        )

    async def _take_idle(self) -> C | None:
        now = time.monotonic()
        while self._idle:
            conn, last_used = self._idle.pop()
            if now - last_used > self._idle_timeout:
                await self._close_quietly(conn)
                continue
            return conn
        return None

    async def _close_quietly(self, conn: C) -> None:
        try:
            await self._closer(conn)
        except Exception as e:
            structlog.get_logger().warning("pool_close_failed", pool=self._name, error=str(e))
