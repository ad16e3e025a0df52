"""
SQLite Connection Pool
======================
Bounded pool of aiosqlite connections.

- At most `pool_size` connections are checked out at once; callers wait up
  to `acquire_timeout` seconds before PoolExhaustedError.
- Every operation is bounded by `statement_timeout` seconds; a timed-out
  connection is interrupted and discarded (StorageTimeoutError).
- A connection-level failure discards the connection and the operation is
  retried once on a fresh one.
- ":memory:" databases are private to their connection, so they get a
  pool of exactly one connection that is never discarded.
"""

import asyncio
import time
from typing import Any, Awaitable, Callable, List, TypeVar

import aiosqlite
from loguru import logger

from mcp_memory.core._utils import safe_ensure_future
from mcp_memory.core.exceptions import (
    PoolExhaustedError,
    StorageConnectionError,
    StorageError,
    StorageTimeoutError,
    wrap_storage_exception,
)
from mcp_memory.core.metrics import POOL_CONNECTIONS, STORAGE_LATENCY, STORAGE_OPERATION_COUNT

T = TypeVar("T")


def is_memory_path(path: str) -> bool:
    return path == ":memory:" or path.startswith("file::memory:")


class ConnectionPool:
    def __init__(
        self,
        path: str,
        pool_size: int = 5,
        acquire_timeout: float = 2.0,
        statement_timeout: float = 5.0,
        backend: str = "sqlite",
    ):
        self.path = path
        self.in_memory = is_memory_path(path)
        self.pool_size = 1 if self.in_memory else pool_size
        self.acquire_timeout = acquire_timeout
        self.statement_timeout = statement_timeout
        self.backend = backend
        self._semaphore = asyncio.Semaphore(self.pool_size)
        self._idle: List[aiosqlite.Connection] = []
        self._connections: set = set()
        self._in_use = 0
        self._closed = False

    async def _connect(self) -> aiosqlite.Connection:
        try:
            conn = await aiosqlite.connect(self.path, timeout=self.statement_timeout)
            conn.row_factory = aiosqlite.Row
            await conn.execute("PRAGMA foreign_keys=ON")
            if not self.in_memory:
                await conn.execute("PRAGMA journal_mode=WAL")
                await conn.execute("PRAGMA synchronous=NORMAL")
        except Exception as e:
            logger.error(f"Failed to open SQLite database {self.path}: {e}")
            raise StorageConnectionError(self.backend, f"cannot open {self.path}: {e}") from e
        self._connections.add(conn)
        POOL_CONNECTIONS.labels(backend=self.backend, state="open").inc()
        return conn

    async def open(self) -> None:
        """Open the first connection so startup fails fast on a bad path."""
        self._closed = False
        if not self._idle:
            self._idle.append(await self._connect())
        logger.info(f"SQLite pool opened: path={self.path}, size={self.pool_size}")

    async def _checkout(self) -> aiosqlite.Connection:
        if self._closed:
            raise StorageConnectionError(self.backend, "connection pool is closed")
        try:
            await asyncio.wait_for(self._semaphore.acquire(), timeout=self.acquire_timeout)
        except asyncio.TimeoutError:
            logger.error(
                f"Connection pool exhausted: {self.pool_size} in use after {self.acquire_timeout}s"
            )
            raise PoolExhaustedError(self.backend, self.pool_size, self.acquire_timeout)
        try:
            conn = self._idle.pop() if self._idle else await self._connect()
        except BaseException:
            self._semaphore.release()
            raise
        self._in_use += 1
        POOL_CONNECTIONS.labels(backend=self.backend, state="in_use").inc()
        return conn

    def _checkin(self, conn: aiosqlite.Connection, discard: bool) -> None:
        self._in_use -= 1
        POOL_CONNECTIONS.labels(backend=self.backend, state="in_use").dec()
        if self._closed or (discard and not self.in_memory):
            if conn in self._connections:
                self._connections.discard(conn)
                POOL_CONNECTIONS.labels(backend=self.backend, state="open").dec()
            safe_ensure_future(conn.close(), name="sqlite-close")
        else:
            self._idle.append(conn)
        self._semaphore.release()

    async def _interrupt(self, conn: aiosqlite.Connection) -> None:
        try:
            await conn.interrupt()
        except Exception as e:
            logger.warning(f"Could not interrupt SQLite connection: {e}")

    async def run(self, operation: str, fn: Callable[[aiosqlite.Connection], Awaitable[T]]) -> T:
        """
        Run `fn(conn)` on a pooled connection, recording its outcome and
        latency under `operation`.

        Raises:
            PoolExhaustedError: No connection became free in time.
            StorageTimeoutError: `fn` exceeded the statement timeout.
            StorageConnectionError: The connection failed twice.
            StorageError: Any other driver failure.
        """
        start_time = time.perf_counter()
        status = "failure"
        try:
            result = await self._run(operation, fn)
            status = "success"
            return result
        finally:
            STORAGE_OPERATION_COUNT.labels(
                backend=self.backend, operation=operation, status=status
            ).inc()
            STORAGE_LATENCY.labels(backend=self.backend, operation=operation).observe(
                time.perf_counter() - start_time
            )

    async def _run(self, operation: str, fn: Callable[[aiosqlite.Connection], Awaitable[T]]) -> T:
        attempts = 2
        for attempt in range(1, attempts + 1):
            conn = await self._checkout()
            discard = False
            try:
                return await asyncio.wait_for(fn(conn), timeout=self.statement_timeout)
            except asyncio.TimeoutError:
                discard = True
                await self._interrupt(conn)
                logger.error(f"SQLite {operation} exceeded {self.statement_timeout}s")
                raise StorageTimeoutError(
                    self.backend, operation, int(self.statement_timeout * 1000)
                )
            except StorageError:
                raise
            except Exception as e:
                error = wrap_storage_exception(self.backend, operation, e)
                if isinstance(error, StorageConnectionError):
                    discard = True
                    if attempt < attempts:
                        logger.warning(f"SQLite {operation}: connection failed ({e}), retrying once")
                        continue
                logger.error(f"SQLite {operation} failed: {e}")
                raise error from e
            finally:
                self._checkin(conn, discard)
        raise StorageConnectionError(self.backend, f"{operation} failed after {attempts} attempts")

    async def close(self) -> None:
        self._closed = True
        connections, self._connections = list(self._connections), set()
        self._idle.clear()
        POOL_CONNECTIONS.labels(backend=self.backend, state="open").dec(len(connections))
        for conn in connections:
            try:
                await conn.close()
            except Exception as e:
                logger.warning(f"Error closing SQLite connection: {e}")
        logger.info("SQLite pool closed")

    def stats(self) -> dict[str, Any]:
        return {
            "size": self.pool_size,
            "open": len(self._connections),
            "idle": len(self._idle),
            "in_use": self._in_use,
        }

    @property
    def closed(self) -> bool:
        return self._closed

    def __repr__(self) -> str:
        return f"ConnectionPool(path={self.path!r}, size={self.pool_size})"
