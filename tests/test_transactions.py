"""
Transaction coordinator tests — frame stacks and planned SQL only.
"""

import pytest

from quarry.faults import TransactionFault
from quarry.models.transactions import (
    TransactionCoordinator,
    TransactionFrame,
    TransactionState,
)


@pytest.fixture
def coord():
    return TransactionCoordinator()


def begin(coord, database="main", **kwargs):
    frame = coord.push(database, **kwargs)
    coord.activate(frame)
    return frame


def commit(coord, database="main"):
    frame = coord.plan_commit(database)
    return frame, coord.finish_commit(frame)


class TestFrames:
    """SQL planned for each frame depth."""

    def test_outermost(self):
        frame = TransactionFrame("main", 0)
        assert frame.savepoint is None
        assert frame.begin_sql == "BEGIN"
        assert frame.commit_statements() == ["COMMIT"]
        assert frame.rollback_statements() == ["ROLLBACK"]

    def test_nested_uses_savepoint(self):
        frame = TransactionFrame("main", 1)
        assert frame.savepoint.startswith("sp_")
        assert len(frame.savepoint) == 15
        assert frame.begin_sql == f"SAVEPOINT {frame.savepoint}"
        assert frame.commit_statements() == [f"RELEASE SAVEPOINT {frame.savepoint}"]
        assert frame.rollback_statements() == [
            f"ROLLBACK TO SAVEPOINT {frame.savepoint}",
            f"RELEASE SAVEPOINT {frame.savepoint}",
        ]

    def test_savepoint_names_unique(self):
        names = {TransactionFrame("main", 1).savepoint for _ in range(50)}
        assert len(names) == 50


class TestCoordinator:
    """Stack bookkeeping."""

    def test_push_activate_commit(self, coord):
        frame = begin(coord)
        assert frame.state is TransactionState.ACTIVE
        assert coord.depth("main") == 1
        assert coord.in_transaction("main")
        done, _ = commit(coord)
        assert done is frame
        assert frame.state is TransactionState.COMMITTED
        assert not coord.in_transaction("main")

    def test_nesting_depth(self, coord):
        outer = begin(coord)
        inner = begin(coord)
        assert inner.depth == 1
        assert coord.current("main") is inner
        commit(coord)
        assert coord.current("main") is outer

    def test_databases_have_separate_stacks(self, coord):
        begin(coord, "a")
        assert coord.depth("b") == 0
        frame = begin(coord, "b")
        assert frame.is_outermost

    def test_commit_without_transaction(self, coord):
        with pytest.raises(TransactionFault, match="without an active transaction"):
            coord.plan_commit("main")

    def test_rollback_without_transaction(self, coord):
        with pytest.raises(TransactionFault, match="without an active transaction"):
            coord.plan_rollback("main")

    def test_discard_failed_begin(self, coord):
        frame = coord.push("main")
        coord.discard(frame)
        assert coord.depth("main") == 0

    def test_out_of_order_close(self, coord):
        outer = begin(coord)
        begin(coord)
        with pytest.raises(TransactionFault, match="out of order"):
            coord.finish_commit(outer)

    def test_reset(self, coord):
        outer = begin(coord)
        inner = begin(coord)
        assert coord.reset("main") == [inner, outer]
        assert outer.state is TransactionState.ROLLED_BACK
        assert coord.depth("main") == 0


class TestDurable:
    """Durable frames refuse nesting in both directions."""

    def test_durable_inside_transaction(self, coord):
        begin(coord)
        with pytest.raises(TransactionFault, match="durable transaction cannot be nested"):
            coord.push("main", durable=True)

    def test_nesting_inside_durable(self, coord):
        begin(coord, durable=True)
        with pytest.raises(TransactionFault, match="inside a durable transaction"):
            coord.push("main")

    def test_durable_at_top_level(self, coord):
        frame = begin(coord, durable=True)
        assert frame.durable and frame.is_outermost


class TestAbort:
    """A failed statement rolls back the innermost frame and blocks the stack."""

    def test_abort_marks_innermost(self, coord):
        outer = begin(coord)
        inner = begin(coord)
        assert coord.plan_abort("main") is inner
        assert inner.state is TransactionState.ROLLED_BACK
        assert outer.state is TransactionState.ACTIVE

    def test_abort_without_transaction(self, coord):
        assert coord.plan_abort("main") is None

    def test_guard_blocks_statements(self, coord):
        begin(coord)
        coord.plan_abort("main")
        with pytest.raises(TransactionFault, match="call rollback"):
            coord.guard("main")
        with pytest.raises(TransactionFault):
            coord.push("main")

    def test_cannot_commit_after_abort(self, coord):
        begin(coord)
        coord.plan_abort("main")
        with pytest.raises(TransactionFault, match="was rolled back"):
            coord.plan_commit("main")

    def test_rollback_clears_block(self, coord):
        outer = begin(coord)
        begin(coord)
        frame = coord.plan_abort("main")
        coord.mark_undone(frame)
        closing = coord.plan_rollback("main")
        assert closing is frame and closing.undone
        coord.finish_rollback(closing)
        coord.guard("main")
        assert coord.current("main") is outer


class TestHooks:
    """on_commit / on_rollback propagation."""

    def test_commit_hooks_fire_after_outermost(self, coord):
        calls = []
        outer = begin(coord)
        inner = begin(coord)
        inner.on_commit(lambda: calls.append("inner"))
        outer.on_commit(lambda: calls.append("outer"))

        _, hooks = commit(coord)
        assert hooks == []
        _, hooks = commit(coord)
        TransactionCoordinator.fire_hooks(hooks)
        assert calls == ["outer", "inner"]

    def test_rolled_back_inner_drops_commit_hooks(self, coord):
        calls = []
        begin(coord)
        inner = begin(coord)
        inner.on_commit(lambda: calls.append("inner"))
        inner.on_rollback(lambda: calls.append("undo"))

        frame = coord.plan_rollback("main")
        TransactionCoordinator.fire_hooks(coord.finish_rollback(frame))
        _, hooks = commit(coord)
        TransactionCoordinator.fire_hooks(hooks)
        assert calls == ["undo"]

    def test_released_inner_rollback_hooks_move_to_parent(self, coord):
        calls = []
        begin(coord)
        inner = begin(coord)
        inner.on_rollback(lambda: calls.append("inner-undo"))
        commit(coord)

        frame = coord.plan_rollback("main")
        TransactionCoordinator.fire_hooks(coord.finish_rollback(frame))
        assert calls == ["inner-undo"]

    def test_failing_hook_does_not_stop_others(self, coord):
        calls = []

        def boom():
            raise RuntimeError("boom")

        TransactionCoordinator.fire_hooks([boom, lambda: calls.append("ok")])
        assert calls == ["ok"]

    @pytest.mark.asyncio
    async def test_async_hooks(self):
        calls = []

        async def async_hook():
            calls.append("async")

        await TransactionCoordinator.afire_hooks([async_hook, lambda: calls.append("sync")])
        assert calls == ["async", "sync"]
