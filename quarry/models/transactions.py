"""
Quarry Transactions — frame stacks and savepoint planning.

The coordinator keeps one stack of TransactionFrames per logical database
and decides which SQL a driver must run; it never touches a handle itself.

- The first frame on a stack issues BEGIN / COMMIT / ROLLBACK.
- Nested frames use ``SAVEPOINT sp_<id>``; committing one only releases the
  savepoint, so its writes become durable with the outermost COMMIT.
- When a statement fails inside a frame, the driver asks for ``abort``: the
  innermost frame is rolled back at once and stays on the stack, rejecting
  further statements, until ``rollback`` closes it.

Typical driver flow:

    frame = coordinator.push("main")
    run(frame.begin_sql); coordinator.activate(frame)
    ...
    frame = coordinator.plan_commit("main")
    run(*frame.commit_statements()); hooks = coordinator.finish_commit(frame)

Hooks follow ``atomic()`` semantics: ``on_commit`` callbacks fire only after
the outermost COMMIT (inner frames hand theirs to the parent), ``on_rollback``
callbacks fire when the frame that owns them rolls back.
"""

from __future__ import annotations

import inspect
import logging
import uuid
from enum import Enum
from typing import Callable, Dict, List, Optional

from ..faults.domains import TransactionFault

logger = logging.getLogger("quarry.models.transactions")

__all__ = [
    "TransactionState",
    "TransactionFrame",
    "TransactionCoordinator",
]


class TransactionState(str, Enum):
    IDLE = "idle"
    ACTIVE = "active"
    COMMITTED = "committed"
    ROLLED_BACK = "rolled_back"


class TransactionFrame:
    """
    One level of a transaction stack.

    Supports:
    - ``on_commit(fn)`` — called after outermost commit only
    - ``on_rollback(fn)`` — called when this frame rolls back
    - ``durable`` — refuses to be nested
    """

    def __init__(self, database: str, depth: int, *, durable: bool = False):
        self.database = database
        self.depth = depth
        self.durable = durable
        self.state = TransactionState.IDLE
        self.savepoint: Optional[str] = None if depth == 0 else f"sp_{uuid.uuid4().hex[:12]}"
        # True once the rollback SQL has been run for this frame
        self.undone = False
        self._commit_hooks: List[Callable] = []
        self._rollback_hooks: List[Callable] = []

    @property
    def is_outermost(self) -> bool:
        return self.depth == 0

    @property
    def begin_sql(self) -> str:
        return "BEGIN" if self.is_outermost else f"SAVEPOINT {self.savepoint}"

    def commit_statements(self) -> List[str]:
        if self.is_outermost:
            return ["COMMIT"]
        return [f"RELEASE SAVEPOINT {self.savepoint}"]

    def rollback_statements(self) -> List[str]:
        if self.is_outermost:
            return ["ROLLBACK"]
        # ROLLBACK TO keeps the savepoint open; release it as well
        return [
            f"ROLLBACK TO SAVEPOINT {self.savepoint}",
            f"RELEASE SAVEPOINT {self.savepoint}",
        ]

    def on_commit(self, fn: Callable) -> None:
        """
        Register a function to call after successful outermost commit.

        Supports both sync and async callables.
        """
        self._commit_hooks.append(fn)

    def on_rollback(self, fn: Callable) -> None:
        """Register a function to call if this frame rolls back."""
        self._rollback_hooks.append(fn)

    def __repr__(self) -> str:
        return (
            f"<TransactionFrame {self.database} depth={self.depth} "
            f"state={self.state.value}>"
        )


class TransactionCoordinator:
    """Per-database frame stacks. Plans SQL, performs no I/O."""

    def __init__(self):
        self._stacks: Dict[str, List[TransactionFrame]] = {}

    # ── Inspection ───────────────────────────────────────────────────

    def current(self, database: str) -> Optional[TransactionFrame]:
        stack = self._stacks.get(database)
        return stack[-1] if stack else None

    def depth(self, database: str) -> int:
        return len(self._stacks.get(database, ()))

    def in_transaction(self, database: str) -> bool:
        return self.depth(database) > 0

    def guard(self, database: str) -> None:
        """Reject statements while the innermost frame is rolled back."""
        frame = self.current(database)
        if frame is not None and frame.state is TransactionState.ROLLED_BACK:
            raise TransactionFault(
                database,
                "transaction was rolled back after an error; call rollback() before issuing statements",
            )

    # ── Begin ────────────────────────────────────────────────────────

    def push(self, database: str, *, durable: bool = False) -> TransactionFrame:
        """Open a frame; the driver runs ``frame.begin_sql`` then ``activate``."""
        self.guard(database)
        stack = self._stacks.setdefault(database, [])
        if stack and durable:
            raise TransactionFault(database, "durable transaction cannot be nested inside another transaction")
        if any(f.durable for f in stack):
            raise TransactionFault(database, "cannot nest a transaction inside a durable transaction")
        frame = TransactionFrame(database, len(stack), durable=durable)
        stack.append(frame)
        return frame

    def activate(self, frame: TransactionFrame) -> None:
        frame.state = TransactionState.ACTIVE
        if frame.is_outermost:
            logger.debug(f"[{frame.database}] BEGIN")
        else:
            logger.debug(f"[{frame.database}] SAVEPOINT {frame.savepoint}")

    def discard(self, frame: TransactionFrame) -> None:
        """Drop a frame whose begin statement failed."""
        self._pop(frame)

    # ── Commit ───────────────────────────────────────────────────────

    def plan_commit(self, database: str) -> TransactionFrame:
        frame = self.current(database)
        if frame is None:
            raise TransactionFault(database, "commit() without an active transaction")
        if frame.state is TransactionState.ROLLED_BACK:
            raise TransactionFault(database, "cannot commit a transaction that was rolled back")
        if frame.state is not TransactionState.ACTIVE:
            raise TransactionFault(database, f"cannot commit a transaction in state {frame.state.value}")
        return frame

    def finish_commit(self, frame: TransactionFrame) -> List[Callable]:
        """Close a committed frame; returns the hooks to fire now."""
        self._pop(frame)
        frame.state = TransactionState.COMMITTED
        if frame.is_outermost:
            logger.debug(f"[{frame.database}] COMMIT")
            hooks = list(frame._commit_hooks)
        else:
            logger.debug(f"[{frame.database}] RELEASE SAVEPOINT {frame.savepoint}")
            parent = self.current(frame.database)
            parent._commit_hooks.extend(frame._commit_hooks)
            parent._rollback_hooks.extend(frame._rollback_hooks)
            hooks = []
        frame._commit_hooks.clear()
        frame._rollback_hooks.clear()
        return hooks

    # ── Rollback ─────────────────────────────────────────────────────

    def plan_abort(self, database: str) -> Optional[TransactionFrame]:
        """
        Mark the innermost active frame rolled back after a failed statement.

        Returns the frame whose ``rollback_statements()`` must run now, or
        None when there is nothing to undo.
        """
        frame = self.current(database)
        if frame is None or frame.state is not TransactionState.ACTIVE:
            return None
        frame.state = TransactionState.ROLLED_BACK
        logger.debug(f"[{database}] statement failed; rolling back depth {frame.depth}")
        return frame

    def mark_undone(self, frame: TransactionFrame) -> None:
        frame.undone = True

    def plan_rollback(self, database: str) -> TransactionFrame:
        """Frame to close; run its rollback statements unless ``undone``."""
        frame = self.current(database)
        if frame is None:
            raise TransactionFault(database, "rollback() without an active transaction")
        frame.state = TransactionState.ROLLED_BACK
        return frame

    def finish_rollback(self, frame: TransactionFrame) -> List[Callable]:
        """Close a rolled-back frame; returns its rollback hooks."""
        self._pop(frame)
        frame.state = TransactionState.ROLLED_BACK
        frame.undone = True
        logger.debug(f"[{frame.database}] rolled back depth {frame.depth}")
        hooks = list(frame._rollback_hooks)
        frame._commit_hooks.clear()
        frame._rollback_hooks.clear()
        return hooks

    def reset(self, database: str) -> List[TransactionFrame]:
        """Forget every frame of ``database`` (handle closed); innermost first."""
        frames = self._stacks.pop(database, [])
        for frame in frames:
            frame.state = TransactionState.ROLLED_BACK
        return list(reversed(frames))

    def _pop(self, frame: TransactionFrame) -> None:
        stack = self._stacks.get(frame.database)
        if not stack or stack[-1] is not frame:
            raise TransactionFault(frame.database, "transaction frames closed out of order")
        stack.pop()
        if not stack:
            del self._stacks[frame.database]

    # ── Hooks ────────────────────────────────────────────────────────

    @staticmethod
    def fire_hooks(hooks: List[Callable]) -> None:
        """Execute a list of sync hooks, catching exceptions."""
        for hook in hooks:
            try:
                hook()
            except Exception as exc:
                logger.error(f"Transaction hook failed: {exc}")

    @staticmethod
    async def afire_hooks(hooks: List[Callable]) -> None:
        """Execute a list of hooks, awaiting coroutine functions."""
        for hook in hooks:
            try:
                if inspect.iscoroutinefunction(hook):
                    await hook()
                else:
                    hook()
            except Exception as exc:
                logger.error(f"Transaction hook failed: {exc}")
