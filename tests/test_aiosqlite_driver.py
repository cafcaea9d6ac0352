"""
AsyncSQLiteDriver tests — the async driver must behave like the blocking one.
"""

import asyncio
import datetime

import pytest

from quarry import AsyncSQLiteDriver, escape_like
from quarry.faults import (
    ConstraintViolationFault,
    IndexConflictFault,
    ReadOnlyFault,
    SchemaConflictFault,
    TransactionFault,
    ValidationFault,
)


def names(rows):
    return [r["name"] for r in rows]


class TestAsyncLifecycle:
    """connect / disconnect / metadata."""

    @pytest.mark.asyncio
    async def test_metadata(self, adriver, users_schema):
        await adriver.define("main", "users", users_schema)
        meta = adriver.metadata
        assert meta.name == "quarry-aiosqlite"
        assert meta.is_async is True
        assert meta.databases == ("main",)

    @pytest.mark.asyncio
    async def test_async_context_manager(self, config, users_schema):
        async with await AsyncSQLiteDriver().connect(config) as d:
            await d.define("main", "users", users_schema)
            assert await d.table_exists("main", "users")
        assert not d.is_connected


class TestAsyncCrud:
    """Reads and writes."""

    @pytest.mark.asyncio
    async def test_alice_scenario(self, adriver, users_schema):
        await adriver.define("main", "users", users_schema)
        assert await adriver.insert("main", "users", {"name": "alice"}) == {"id": 1, "name": "alice"}
        await adriver.insert("main", "users", {"name": "bob"})
        assert await adriver.find_one("main", "users", {"where": {"name": "alice"}}) == {"id": 1, "name": "alice"}
        assert await adriver.update("main", "users", {"where": {"id": 1}, "set": {"name": "alicia"}}) == 1
        rows = await adriver.find_all("main", "users", {"order_by": ["-id"]})
        assert names(rows) == ["bob", "alicia"]
        assert await adriver.delete("main", "users", {"name": {"$ne": "bob"}}) == 1
        assert await adriver.count("main", "users") == 1

    @pytest.mark.asyncio
    async def test_autoincrement_is_monotonic(self, adriver, users_schema):
        await adriver.define("main", "users", users_schema)
        await adriver.bulk_insert("main", "users", [{"name": "a"}, {"name": "b"}])
        await adriver.delete("main", "users", {"id": 2})
        assert (await adriver.insert("main", "users", {"name": "c"}))["id"] == 3

    @pytest.mark.asyncio
    async def test_in_operator(self, adriver, users_schema):
        await adriver.define("main", "users", users_schema)
        await adriver.bulk_insert("main", "users", [{"name": n} for n in ("a", "b", "c")])
        stmt = adriver.compile_select("main", "users", {"where": {"name": {"$in": ["c", "a"]}}})
        assert stmt.params == ("c", "a")
        rows = await adriver.find_all("main", "users", {"where": {"name": {"$in": ["c", "a"]}}, "order_by": ["id"]})
        assert names(rows) == ["a", "c"]

    @pytest.mark.asyncio
    async def test_round_trip(self, adriver, profile_schema):
        await adriver.define("main", "people", profile_schema)
        row = await adriver.insert("main", "people", {
            "name": "ada",
            "born": "1815-12-10",
            "meta": {"k": [1, {"x": None}]},
        })
        assert row["born"] == datetime.date(1815, 12, 10)
        assert row["meta"] == {"k": [1, {"x": None}]}
        assert row["tags"] == [] and row["active"] is True

    @pytest.mark.asyncio
    async def test_like_escaping(self, adriver, users_schema):
        await adriver.define("main", "users", users_schema)
        await adriver.bulk_insert("main", "users", [{"name": "a_b"}, {"name": "axb"}])
        assert len(await adriver.find_all("main", "users", {"where": {"name": {"$like": "a_b"}}})) == 2
        rows = await adriver.find_all("main", "users", {"where": {"name": {"$like": escape_like("a_b")}}})
        assert names(rows) == ["a_b"]

    @pytest.mark.asyncio
    async def test_unscoped_update_rejected(self, adriver, users_schema):
        await adriver.define("main", "users", users_schema)
        await adriver.insert("main", "users", {"name": "a"})
        with pytest.raises(ValidationFault):
            await adriver.update("main", "users", {"set": {"name": "z"}})
        assert names(await adriver.find_all("main", "users")) == ["a"]

    @pytest.mark.asyncio
    async def test_aggregates(self, adriver, profile_schema):
        await adriver.define("main", "people", profile_schema)
        assert await adriver.aggregate("main", "people", {"function": "SUM", "column": "age"}) == 0
        assert await adriver.aggregate("main", "people", {"function": "AVG", "column": "age"}) is None
        await adriver.bulk_insert("main", "people", [{"name": "a", "age": 2}, {"name": "b", "age": 4}])
        assert await adriver.aggregate("main", "people", {"function": "AVG", "column": "age"}) == 3

    @pytest.mark.asyncio
    async def test_bulk_update_is_atomic(self, adriver, users_schema):
        await adriver.define("main", "users", users_schema)
        await adriver.bulk_insert("main", "users", [{"name": "a"}, {"name": "b"}])
        with pytest.raises(ConstraintViolationFault):
            await adriver.bulk_update("main", "users", [
                {"where": {"name": "a"}, "set": {"name": "x"}},
                {"where": {"name": "b"}, "set": {"name": "x"}},
            ])
        assert names(await adriver.find_all("main", "users", {"order_by": ["id"]})) == ["a", "b"]


class TestAsyncTransactions:
    """Atomic blocks over aiosqlite."""

    @pytest.mark.asyncio
    async def test_failed_statement_undoes_block(self, adriver, users_schema):
        await adriver.define("main", "users", users_schema)
        await adriver.insert("main", "users", {"name": "b"})
        with pytest.raises(ConstraintViolationFault):
            async with adriver.transaction("main"):
                await adriver.insert("main", "users", {"name": "a"})
                await adriver.insert("main", "users", {"name": "b"})
        assert names(await adriver.find_all("main", "users")) == ["b"]

    @pytest.mark.asyncio
    async def test_nested_rollback_keeps_outer(self, adriver, users_schema):
        await adriver.define("main", "users", users_schema)
        async with adriver.transaction("main"):
            await adriver.insert("main", "users", {"name": "outer"})
            with pytest.raises(RuntimeError):
                async with adriver.transaction("main"):
                    await adriver.insert("main", "users", {"name": "inner"})
                    raise RuntimeError
        assert names(await adriver.find_all("main", "users")) == ["outer"]

    @pytest.mark.asyncio
    async def test_swallowed_failure_is_reported(self, adriver, users_schema):
        await adriver.define("main", "users", users_schema)
        await adriver.insert("main", "users", {"name": "a"})
        with pytest.raises(TransactionFault):
            async with adriver.transaction("main"):
                await adriver.insert("main", "users", {"name": "b"})
                try:
                    await adriver.insert("main", "users", {"name": "a"})
                except ConstraintViolationFault:
                    pass
        assert await adriver.count("main", "users") == 1

    @pytest.mark.asyncio
    async def test_async_hooks(self, adriver, users_schema):
        await adriver.define("main", "users", users_schema)
        calls = []

        async def saved():
            calls.append("saved")

        async with adriver.transaction("main") as txn:
            txn.on_commit(saved)
            await adriver.insert("main", "users", {"name": "a"})
        assert calls == ["saved"]

    @pytest.mark.asyncio
    async def test_maintenance_rejected_inside_transaction(self, adriver, users_schema):
        await adriver.define("main", "users", users_schema)
        async with adriver.transaction("main"):
            with pytest.raises(TransactionFault):
                await adriver.checkpoint("main")
        assert set(await adriver.checkpoint("main")) == {"busy", "log", "checkpointed"}

    @pytest.mark.asyncio
    async def test_other_task_failure_leaves_transaction_alone(self, adriver, users_schema):
        await adriver.define("main", "users", users_schema)
        await adriver.insert("main", "users", {"name": "taken"})
        entered = asyncio.Event()
        release = asyncio.Event()

        async def owner():
            async with adriver.transaction("main"):
                await adriver.insert("main", "users", {"name": "a-row"})
                entered.set()
                await release.wait()

        async def other():
            await entered.wait()
            with pytest.raises(ConstraintViolationFault):
                await adriver.insert("main", "users", {"name": "taken"})

        a = asyncio.create_task(owner())
        b = asyncio.create_task(other())
        await entered.wait()
        await asyncio.sleep(0.05)
        # blocked until the owner's transaction ends
        assert not b.done()
        release.set()
        await asyncio.gather(a, b)
        assert names(await adriver.find_all("main", "users", {"order_by": ["id"]})) == ["taken", "a-row"]

    @pytest.mark.asyncio
    async def test_transactions_from_two_tasks_run_one_after_another(self, adriver, users_schema):
        await adriver.define("main", "users", users_schema)

        async def write(prefix):
            async with adriver.transaction("main"):
                await adriver.insert("main", "users", {"name": f"{prefix}1"})
                await asyncio.sleep(0.01)
                await adriver.insert("main", "users", {"name": f"{prefix}2"})

        await asyncio.gather(write("a"), write("b"))
        rows = names(await adriver.find_all("main", "users", {"order_by": ["id"]}))
        assert rows in (["a1", "a2", "b1", "b2"], ["b1", "b2", "a1", "a2"])

    @pytest.mark.asyncio
    async def test_only_the_owning_task_can_finish_a_transaction(self, adriver, users_schema):
        await adriver.define("main", "users", users_schema)
        frame = await adriver.begin_transaction("main")

        async def other():
            with pytest.raises(TransactionFault, match="another task"):
                await adriver.rollback("main")

        await asyncio.create_task(other())
        assert adriver.transactions.current("main") is frame
        await adriver.rollback("main")
        assert not adriver.transactions.in_transaction("main")


class TestAsyncSchema:
    """define / indexes / read-only."""

    @pytest.mark.asyncio
    async def test_idempotent_and_additive(self, adriver, users_schema):
        await adriver.define("main", "users", users_schema)
        await adriver.insert("main", "users", {"name": "a"})
        await adriver.define("main", "users", users_schema)
        await adriver.define("main", "users", {**users_schema, "age": {"type": "INTEGER", "default": 7}})
        assert (await adriver.find_one("main", "users", {}))["age"] == 7
        with pytest.raises(SchemaConflictFault):
            await adriver.define("main", "users", {"id": users_schema["id"]})

    @pytest.mark.asyncio
    async def test_index_conflict(self, adriver, users_schema):
        await adriver.define("main", "users", users_schema)
        await adriver.create_index("main", "users", {"columns": ["name"], "name": "by_name"})
        assert await adriver.create_index("main", "users", {"columns": ["name"], "name": "by_name"}) == "by_name"
        with pytest.raises(IndexConflictFault):
            await adriver.create_index("main", "users", {"columns": ["id"], "name": "by_name"})

    @pytest.mark.asyncio
    async def test_readonly(self, tmp_path, users_schema):
        async with await AsyncSQLiteDriver().connect({"storage_dir": str(tmp_path)}) as writer:
            await writer.define("main", "users", users_schema)
            await writer.insert("main", "users", {"name": "a"})
        async with await AsyncSQLiteDriver().connect({"storage_dir": str(tmp_path), "readonly": True}) as reader:
            await reader.define("main", "users", users_schema)
            with pytest.raises(ReadOnlyFault):
                await reader.insert("main", "users", {"name": "b"})
            assert names(await reader.find_all("main", "users")) == ["a"]
