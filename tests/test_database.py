"""Tests for safetube.database module."""

import asyncio
import sqlite3

import pytest

from safetube.database import Database


@pytest.mark.asyncio
async def test_open_creates_parent_directory(tmp_path):
    """open() should create missing parent directories."""
    nested = tmp_path / "a" / "b" / "test.db"
    db = Database(nested)
    await db.open()
    try:
        assert nested.parent.is_dir()
        assert db.is_open
    finally:
        await db.close()
    assert not db.is_open


@pytest.mark.asyncio
async def test_session_pragmas(db):
    """Foreign keys and WAL are enabled for every opened handle."""
    assert await db.foreign_keys_enabled() is True
    assert (await db.fetchval("PRAGMA journal_mode")).lower() == "wal"
    assert await db.fetchval("PRAGMA recursive_triggers") == 1
    assert await db.fetchval("PRAGMA busy_timeout") == 1000


def test_conn_requires_open(tmp_path):
    db = Database(tmp_path / "closed.db")
    with pytest.raises(RuntimeError):
        _ = db.conn


@pytest.mark.asyncio
async def test_rows_are_dicts(db):
    await db.execute("CREATE TABLE t (id INTEGER PRIMARY KEY, name TEXT)")
    await db.execute("INSERT INTO t (name) VALUES (?)", ("a",))
    row = await db.fetchone("SELECT id, name FROM t")
    assert row == {"id": 1, "name": "a"}
    assert await db.fetchall("SELECT name FROM t") == [{"name": "a"}]
    assert await db.fetchone("SELECT * FROM t WHERE id = 99") is None


@pytest.mark.asyncio
class TestTransactions:
    async def test_commit(self, db):
        await db.execute("CREATE TABLE t (v INTEGER)")
        async with db.transaction():
            await db.execute("INSERT INTO t VALUES (1)")
            await db.execute("INSERT INTO t VALUES (2)")
        assert await db.fetchval("SELECT COUNT(*) FROM t") == 2

    async def test_rollback_on_error(self, db):
        await db.execute("CREATE TABLE t (v INTEGER UNIQUE)")
        with pytest.raises(sqlite3.IntegrityError):
            async with db.transaction():
                await db.execute("INSERT INTO t VALUES (1)")
                await db.execute("INSERT INTO t VALUES (1)")
        assert await db.fetchval("SELECT COUNT(*) FROM t") == 0

    async def test_nested_failure_rolls_back_inner_only(self, db):
        await db.execute("CREATE TABLE t (v INTEGER)")
        async with db.transaction():
            await db.execute("INSERT INTO t VALUES (1)")
            with pytest.raises(ValueError):
                async with db.transaction():
                    await db.execute("INSERT INTO t VALUES (2)")
                    raise ValueError("inner")
        rows = await db.fetchall("SELECT v FROM t")
        assert rows == [{"v": 1}]

    async def test_run_transaction_is_all_or_nothing(self, db):
        await db.execute("CREATE TABLE t (v INTEGER NOT NULL)")
        count = await db.run_transaction(
            [("INSERT INTO t VALUES (?)", (1,)), ("INSERT INTO t VALUES (?)", (2,))]
        )
        assert count == 2
        with pytest.raises(sqlite3.IntegrityError):
            await db.run_transaction(
                [("INSERT INTO t VALUES (?)", (3,)), ("INSERT INTO t VALUES (?)", (None,))]
            )
        assert await db.fetchval("SELECT COUNT(*) FROM t") == 2

    async def test_concurrent_transactions_are_serialized(self, db):
        await db.execute("CREATE TABLE t (x INTEGER NOT NULL)")

        async def bad():
            async with db.transaction():
                await db.execute("INSERT INTO t VALUES (1)")
                await asyncio.sleep(0.01)
                await db.execute("INSERT INTO t VALUES (NULL)")

        async def good():
            async with db.transaction():
                await db.execute("INSERT INTO t VALUES (2)")
                await asyncio.sleep(0)
                await db.execute("INSERT INTO t VALUES (3)")

        results = await asyncio.gather(bad(), good(), return_exceptions=True)

        assert isinstance(results[0], sqlite3.IntegrityError)
        assert results[1] is None
        rows = await db.fetchall("SELECT x FROM t ORDER BY x")
        assert rows == [{"x": 2}, {"x": 3}]

    async def test_other_task_waits_for_open_transaction(self, db):
        await db.execute("CREATE TABLE t (x INTEGER)")
        order = []

        async def writer(value):
            async with db.transaction():
                order.append(("begin", value))
                await asyncio.sleep(0.01)
                await db.execute("INSERT INTO t VALUES (?)", (value,))
                order.append(("end", value))

        await asyncio.gather(writer(1), writer(2))
        assert order == [("begin", 1), ("end", 1), ("begin", 2), ("end", 2)]
        assert await db.fetchval("SELECT COUNT(*) FROM t") == 2


@pytest.mark.asyncio
async def test_introspection_skips_internal_objects(db):
    await db.execute("CREATE TABLE t (id INTEGER PRIMARY KEY AUTOINCREMENT, v TEXT UNIQUE)")
    await db.execute("CREATE INDEX idx_t_v ON t(v)")
    await db.execute("INSERT INTO t (v) VALUES ('x')")
    assert await db.table_names() == ["t"]
    assert await db.index_names() == ["idx_t_v"]
