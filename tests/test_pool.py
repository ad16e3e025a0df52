"""
Connection pool tests: bounded acquisition, statement timeouts and the
single reconnect attempt.
"""

import asyncio
import sqlite3

import pytest
import pytest_asyncio

from mcp_memory.core.exceptions import (
    PoolExhaustedError,
    StorageConnectionError,
    StorageError,
    StorageTimeoutError,
)
from mcp_memory.storage.pool import ConnectionPool, is_memory_path


async def _select_one(conn):
    async with conn.execute("SELECT 1") as cursor:
        row = await cursor.fetchone()
    return row[0]


@pytest_asyncio.fixture
async def pool(tmp_path):
    p = ConnectionPool(str(tmp_path / "pool.db"), pool_size=2, acquire_timeout=0.1, statement_timeout=0.5)
    await p.open()
    yield p
    await p.close()


class TestPool:
    def test_memory_paths(self):
        assert is_memory_path(":memory:")
        assert is_memory_path("file::memory:?cache=shared")
        assert not is_memory_path("/tmp/memory.db")
        assert ConnectionPool(":memory:", pool_size=8).pool_size == 1

    @pytest.mark.asyncio
    async def test_run(self, pool):
        assert await pool.run("select", _select_one) == 1
        assert pool.stats() == {"size": 2, "open": 1, "idle": 1, "in_use": 0}

    @pytest.mark.asyncio
    async def test_connections_capped(self, pool):
        async def hold(conn):
            await asyncio.sleep(0.05)
            return await _select_one(conn)

        results = await asyncio.gather(*(pool.run("hold", hold) for _ in range(2)))
        assert results == [1, 1]
        assert pool.stats()["open"] <= 2

    @pytest.mark.asyncio
    async def test_excess_callers_queue(self, tmp_path):
        p = ConnectionPool(str(tmp_path / "queue.db"), pool_size=1, acquire_timeout=2.0)
        await p.open()
        order = []

        async def work(conn, n=0):
            order.append(("start", n))
            await asyncio.sleep(0.02)
            order.append(("end", n))
            return n

        try:
            results = await asyncio.gather(*(p.run("work", lambda c, n=n: work(c, n)) for n in range(3)))
        finally:
            await p.close()
        assert results == [0, 1, 2]
        # One connection: each operation finishes before the next starts.
        for i in range(0, len(order), 2):
            assert order[i][0] == "start" and order[i + 1] == ("end", order[i][1])

    @pytest.mark.asyncio
    async def test_pool_exhausted(self, tmp_path):
        p = ConnectionPool(str(tmp_path / "busy.db"), pool_size=1, acquire_timeout=0.05)
        await p.open()

        async def slow(conn):
            await asyncio.sleep(0.3)
            return 1

        try:
            holder = asyncio.ensure_future(p.run("slow", slow))
            await asyncio.sleep(0.01)
            with pytest.raises(PoolExhaustedError) as exc_info:
                await p.run("fast", _select_one)
            assert exc_info.value.recoverable is True
            assert await holder == 1
        finally:
            await p.close()

    @pytest.mark.asyncio
    async def test_statement_timeout_discards_connection(self, tmp_path):
        p = ConnectionPool(str(tmp_path / "slow.db"), pool_size=1, statement_timeout=0.05)
        await p.open()

        async def too_slow(conn):
            await asyncio.sleep(1.0)

        try:
            with pytest.raises(StorageTimeoutError) as exc_info:
                await p.run("too_slow", too_slow)
            assert exc_info.value.context["timeout_ms"] == 50
            # The pool recovers with a fresh connection.
            assert await p.run("select", _select_one) == 1
        finally:
            await p.close()

    @pytest.mark.asyncio
    async def test_reconnects_once(self, pool):
        calls = []

        async def flaky(conn):
            calls.append(conn)
            if len(calls) == 1:
                raise sqlite3.OperationalError("unable to open database file")
            return await _select_one(conn)

        assert await pool.run("flaky", flaky) == 1
        assert len(calls) == 2
        assert calls[0] is not calls[1]

    @pytest.mark.asyncio
    async def test_gives_up_after_second_connection_failure(self, pool):
        async def broken(conn):
            raise sqlite3.OperationalError("disk I/O error")

        with pytest.raises(StorageConnectionError):
            await pool.run("broken", broken)

    @pytest.mark.asyncio
    async def test_other_errors_not_retried(self, pool):
        calls = []

        async def bad_sql(conn):
            calls.append(1)
            await conn.execute("SELECT * FROM no_such_table")

        with pytest.raises(StorageError) as exc_info:
            await pool.run("bad_sql", bad_sql)
        assert not isinstance(exc_info.value, StorageConnectionError)
        assert len(calls) == 1

    @pytest.mark.asyncio
    async def test_closed_pool(self, pool):
        await pool.close()
        assert pool.closed
        with pytest.raises(StorageConnectionError):
            await pool.run("select", _select_one)

    @pytest.mark.asyncio
    async def test_open_fails_fast(self, tmp_path):
        p = ConnectionPool(str(tmp_path / "missing-dir" / "x.db"))
        with pytest.raises(StorageConnectionError):
            await p.open()
