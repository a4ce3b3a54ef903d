"""Tests for async database connection abstraction."""

from pathlib import Path

import pytest

from src.db import _AsyncConnection, connection, get_connection

pytestmark = pytest.mark.usefixtures("_no_turso")


class TestGetConnection:
    async def test_returns_async_connection(self, tmp_path: Path):
        conn = await get_connection(local_path_override=tmp_path / "test.db")
        assert isinstance(conn, _AsyncConnection)
        await conn.close()

    async def test_creates_parent_dirs(self, tmp_path: Path):
        db_path = tmp_path / "nested" / "dir" / "test.db"
        conn = await get_connection(local_path_override=db_path)
        assert db_path.parent.exists()
        await conn.close()


class TestAsyncConnection:
    async def test_execute_and_fetchall(self, tmp_path: Path):
        conn = await get_connection(local_path_override=tmp_path / "test.db")
        await conn.execute("CREATE TABLE t (id INTEGER PRIMARY KEY, name TEXT)")
        await conn.execute("INSERT INTO t (name) VALUES (?)", ("alice",))
        await conn.commit()

        cursor = await conn.execute("SELECT name FROM t")
        rows = await cursor.fetchall()
        assert rows == [("alice",)]
        await conn.close()

    async def test_fetchone_returns_none_when_empty(self, tmp_path: Path):
        conn = await get_connection(local_path_override=tmp_path / "test.db")
        await conn.execute("CREATE TABLE t (id INTEGER PRIMARY KEY)")

        cursor = await conn.execute("SELECT * FROM t WHERE id = 999")
        assert await cursor.fetchone() is None
        await conn.close()

    async def test_guarded_update_rowcount(self, tmp_path: Path):
        conn = await get_connection(local_path_override=tmp_path / "test.db")
        await conn.execute("CREATE TABLE t (id INTEGER PRIMARY KEY, status TEXT)")
        await conn.execute("INSERT INTO t (status) VALUES (?)", ("pending",))
        await conn.commit()

        won = await conn.execute(
            "UPDATE t SET status = ? WHERE id = 1 AND status = ?", ("missed", "pending")
        )
        await conn.commit()
        lost = await conn.execute(
            "UPDATE t SET status = ? WHERE id = 1 AND status = ?", ("completed", "pending")
        )
        assert won.rowcount == 1
        assert lost.rowcount == 0
        await conn.close()

    async def test_execute_script(self, tmp_path: Path):
        conn = await get_connection(local_path_override=tmp_path / "test.db")
        await conn.execute_script([
            "CREATE TABLE a (id INTEGER PRIMARY KEY)",
            "CREATE TABLE b (id INTEGER PRIMARY KEY)",
        ])
        cursor = await conn.execute(
            "SELECT name FROM sqlite_master WHERE type = 'table' ORDER BY name"
        )
        assert [row[0] for row in await cursor.fetchall()] == ["a", "b"]
        await conn.close()


class TestConnectionContext:
    async def test_yields_usable_connection(self, tmp_path: Path):
        async with connection(tmp_path / "test.db") as db:
            cursor = await db.execute("SELECT 1")
            assert await cursor.fetchone() == (1,)
