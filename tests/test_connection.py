"""
Connection manager tests: lazy opening, one handle per logical name,
reference counting and the read-only / must-exist guards.
"""

import sqlite3

import pytest

from quarry.config import MEMORY
from quarry.db import AsyncConnectionManager, ConnectionManager
from quarry.faults import (
    DatabaseConnectionFault,
    DatabaseNotFoundFault,
    ReadOnlyFault,
)


@pytest.fixture
def manager(config):
    mgr = ConnectionManager(config)
    yield mgr
    mgr.close_all()


class TestConnectionManager:
    """Blocking manager."""

    def test_lazy_open_creates_file(self, manager, tmp_path):
        assert not manager.is_open("main")
        handle = manager.open("main")
        assert handle.is_connected
        assert manager.is_open("main")
        assert (tmp_path / "main.sqlite").exists()

    def test_same_handle_for_same_name(self, manager):
        assert manager.open("main") is manager.open("main")
        assert manager.names() == ["main"]

    def test_names_are_independent(self, manager):
        a = manager.open("a")
        b = manager.open("b")
        a.execute("CREATE TABLE t (x INTEGER)")
        assert not b.table_exists("t")

    def test_nested_storage_dir_created(self, tmp_path):
        mgr = ConnectionManager({"storage_dir": str(tmp_path / "deep" / "er")})
        mgr.open("main")
        assert (tmp_path / "deep" / "er" / "main.sqlite").exists()
        mgr.close_all()

    def test_memory_database(self, manager):
        handle = manager.open("scratch", {"filepath": MEMORY})
        handle.execute("CREATE TABLE t (x INTEGER)")
        assert handle.table_exists("t")

    @pytest.mark.parametrize("name", ["", "../etc", "a b", "x/y"])
    def test_invalid_name(self, manager, name):
        with pytest.raises(DatabaseConnectionFault, match="invalid logical database name"):
            manager.open(name)

    def test_must_exist(self, manager):
        with pytest.raises(DatabaseNotFoundFault) as exc_info:
            manager.open("ghost", {"must_exist": True})
        assert exc_info.value.retryable is False
        assert not manager.is_open("ghost")

    def test_create_false_means_must_exist(self, manager):
        with pytest.raises(DatabaseNotFoundFault):
            manager.open("ghost", {"create": False})

    def test_readonly_missing_file(self, manager):
        with pytest.raises(DatabaseNotFoundFault):
            manager.open("ghost", {"readonly": True})

    def test_readonly_guard(self, manager):
        writer = manager.open("shared")
        writer.execute("CREATE TABLE t (x INTEGER)")
        manager.close("shared")

        reader = manager.open("shared", {"readonly": True})
        assert manager.is_readonly("shared")
        with pytest.raises(ReadOnlyFault) as exc_info:
            manager.ensure_writable("shared", "insert")
        assert exc_info.value.metadata["operation"] == "insert"
        # the engine refuses as well
        with pytest.raises(sqlite3.OperationalError):
            reader.execute("INSERT INTO t VALUES (1)")

    def test_reopen_with_different_options(self, manager):
        manager.open("main")
        with pytest.raises(DatabaseConnectionFault, match="different options"):
            manager.open("main", {"timeout": 1})

    def test_reopen_with_same_options(self, manager):
        handle = manager.open("main")
        assert manager.open("main", manager.options("main")) is handle

    def test_refcount(self, manager):
        manager.acquire("main")
        manager.acquire("main")
        assert manager.ref_count("main") == 2
        manager.release("main")
        assert manager.is_open("main")
        manager.release("main")
        assert not manager.is_open("main")
        assert manager.ref_count("main") == 0

    def test_release_unknown_is_noop(self, manager):
        manager.release("nothing")

    def test_get_unopened(self, manager):
        with pytest.raises(DatabaseConnectionFault, match="not open"):
            manager.get("main")

    def test_close_all(self, manager):
        handle = manager.open("a")
        manager.open("b")
        manager.close_all()
        assert manager.names() == []
        assert not handle.is_connected


class TestAsyncConnectionManager:
    """Async manager shares resolution and guards."""

    @pytest.mark.asyncio
    async def test_open_and_reuse(self, config, tmp_path):
        mgr = AsyncConnectionManager(config)
        try:
            handle = await mgr.open("main")
            assert await mgr.open("main") is handle
            assert (tmp_path / "main.sqlite").exists()
        finally:
            await mgr.close_all()

    @pytest.mark.asyncio
    async def test_refcount(self, config):
        mgr = AsyncConnectionManager(config)
        await mgr.acquire("main")
        await mgr.acquire("main")
        await mgr.release("main")
        assert mgr.is_open("main")
        await mgr.release("main")
        assert not mgr.is_open("main")

    @pytest.mark.asyncio
    async def test_must_exist(self, config):
        mgr = AsyncConnectionManager(config)
        with pytest.raises(DatabaseNotFoundFault):
            await mgr.open("ghost", {"must_exist": True})

    @pytest.mark.asyncio
    async def test_readonly_guard(self, config):
        mgr = AsyncConnectionManager(config)
        try:
            writer = await mgr.open("shared")
            await writer.execute("CREATE TABLE t (x INTEGER)")
            await mgr.close("shared")
            await mgr.open("shared", {"readonly": True})
            with pytest.raises(ReadOnlyFault):
                mgr.ensure_writable("shared", "delete")
        finally:
            await mgr.close_all()
