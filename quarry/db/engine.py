"""
Quarry Database Engine — logical database registry.

Maps each logical database name to exactly one open adapter. Handles are
opened lazily on first use with ConnectionOptions resolved from the
DriverConfig; asking again returns the same handle.

    manager = ConnectionManager(DriverConfig(storage_dir="./data"))
    handle = manager.open("main")        # ./data/main.sqlite
    manager.acquire("main")              # +1 holder
    manager.release("main")              # closes when the last holder leaves
    manager.close_all()

The async manager shares option resolution, the registry and the guards;
only opening and closing are awaited.
"""

from __future__ import annotations

import asyncio
import logging
import re
import threading
from pathlib import Path
from typing import Any, Dict, List, Optional

from ..config import ConnectionOptions, DriverConfig
from ..faults.domains import (
    DatabaseConnectionFault,
    DatabaseNotFoundFault,
    ReadOnlyFault,
)
from .backends.aiosqlite import AioSQLiteAdapter
from .backends.base import DatabaseAdapter, SyncDatabaseAdapter
from .backends.sqlite import SQLiteAdapter

logger = logging.getLogger("quarry.db")

__all__ = ["ConnectionManager", "AsyncConnectionManager"]

# Logical names become file names; keep them to a safe alphabet
_DB_NAME_RE = re.compile(r"^[A-Za-z0-9_][A-Za-z0-9_.-]*$")


class _ManagerBase:
    """Option resolution, registry bookkeeping and guards."""

    def __init__(self, config: Any = None):
        self.config = DriverConfig.coerce(config)
        self._handles: Dict[str, Any] = {}
        self._options: Dict[str, ConnectionOptions] = {}
        self._refs: Dict[str, int] = {}

    # ── Options ──────────────────────────────────────────────────────

    def resolve(self, name: str, options: Any = None) -> ConnectionOptions:
        """Resolve ConnectionOptions for ``name``; explicit options win over config."""
        if not isinstance(name, str) or not _DB_NAME_RE.match(name):
            raise DatabaseConnectionFault(
                str(name),
                "invalid logical database name; use letters, digits, '_', '-' or '.'",
                retryable=False,
            )
        if options is None:
            return self.config.options_for(name)
        if isinstance(options, ConnectionOptions):
            return options
        return self.config.options_for(name, **dict(options))

    def options(self, name: str) -> ConnectionOptions:
        """Options of an open database."""
        try:
            return self._options[name]
        except KeyError:
            raise DatabaseConnectionFault(name, "database is not open", retryable=False) from None

    def _prepare_path(self, name: str, options: ConnectionOptions) -> None:
        if options.is_memory:
            return
        path = Path(options.filepath)
        if not path.exists():
            if options.must_exist or options.readonly:
                raise DatabaseNotFoundFault(name, str(path))
            path.parent.mkdir(parents=True, exist_ok=True)

    # ── Registry ─────────────────────────────────────────────────────

    def is_open(self, name: str) -> bool:
        return name in self._handles

    def names(self) -> List[str]:
        return list(self._handles)

    def ref_count(self, name: str) -> int:
        return self._refs.get(name, 0)

    def is_readonly(self, name: str) -> bool:
        return self.options(name).readonly

    def ensure_writable(self, name: str, operation: str) -> None:
        """Refuse a mutating operation on a read-only database."""
        if self.options(name).readonly:
            logger.warning(f"Rejected {operation} on read-only database '{name}'")
            raise ReadOnlyFault(name, operation)

    def _register(self, name: str, handle: Any, options: ConnectionOptions) -> None:
        self._handles[name] = handle
        self._options[name] = options
        self._refs.setdefault(name, 0)

    def _unregister(self, name: str) -> Any:
        self._options.pop(name, None)
        self._refs.pop(name, None)
        return self._handles.pop(name, None)

    def _check_reopen(self, name: str, options: Any) -> None:
        if options is None:
            return
        requested = self.resolve(name, options)
        if requested != self._options[name]:
            raise DatabaseConnectionFault(
                name,
                "already open with different options; close it first",
                retryable=False,
            )


class ConnectionManager(_ManagerBase):
    """Blocking connection manager backed by the sqlite3 adapter."""

    adapter_class = SQLiteAdapter

    def __init__(self, config: Any = None):
        super().__init__(config)
        self._lock = threading.Lock()

    def open(self, name: str, options: Any = None) -> SyncDatabaseAdapter:
        """Return the handle for ``name``, opening it on first use."""
        handle = self._handles.get(name)
        if handle is not None:
            self._check_reopen(name, options)
            return handle
        with self._lock:
            handle = self._handles.get(name)
            if handle is not None:
                return handle
            resolved = self.resolve(name, options)
            self._prepare_path(name, resolved)
            handle = self.adapter_class()
            try:
                handle.connect(resolved)
            except Exception as exc:
                raise DatabaseConnectionFault(name, str(exc)) from exc
            self._register(name, handle, resolved)
            logger.info(f"Opened database '{name}' ({resolved.filepath})")
            return handle

    def get(self, name: str) -> SyncDatabaseAdapter:
        """Return the handle of an already open database."""
        handle = self._handles.get(name)
        if handle is None:
            raise DatabaseConnectionFault(name, "database is not open", retryable=False)
        return handle

    def acquire(self, name: str, options: Any = None) -> SyncDatabaseAdapter:
        handle = self.open(name, options)
        self._refs[name] += 1
        return handle

    def release(self, name: str) -> None:
        """Drop one holder; the handle closes when none remain."""
        if name not in self._handles:
            return
        self._refs[name] = max(0, self._refs[name] - 1)
        if self._refs[name] == 0:
            self.close(name)

    def close(self, name: str) -> None:
        with self._lock:
            handle = self._unregister(name)
        if handle is None:
            return
        try:
            handle.disconnect()
        except Exception as exc:
            raise DatabaseConnectionFault(name, f"close failed: {exc}") from exc
        logger.info(f"Closed database '{name}'")

    def close_all(self) -> None:
        for name in list(self._handles):
            self.close(name)


class AsyncConnectionManager(_ManagerBase):
    """Async connection manager backed by the aiosqlite adapter."""

    adapter_class = AioSQLiteAdapter

    def __init__(self, config: Any = None):
        super().__init__(config)
        self._lock = asyncio.Lock()

    async def open(self, name: str, options: Any = None) -> DatabaseAdapter:
        """Return the handle for ``name``, opening it on first use."""
        handle = self._handles.get(name)
        if handle is not None:
            self._check_reopen(name, options)
            return handle
        async with self._lock:
            handle = self._handles.get(name)
            if handle is not None:
                return handle
            resolved = self.resolve(name, options)
            self._prepare_path(name, resolved)
            handle = self.adapter_class()
            try:
                await handle.connect(resolved)
            except Exception as exc:
                raise DatabaseConnectionFault(name, str(exc)) from exc
            self._register(name, handle, resolved)
            logger.info(f"Opened database '{name}' ({resolved.filepath})")
            return handle

    def get(self, name: str) -> DatabaseAdapter:
        """Return the handle of an already open database."""
        handle = self._handles.get(name)
        if handle is None:
            raise DatabaseConnectionFault(name, "database is not open", retryable=False)
        return handle

    async def acquire(self, name: str, options: Any = None) -> DatabaseAdapter:
        handle = await self.open(name, options)
        self._refs[name] += 1
        return handle

    async def release(self, name: str) -> None:
        """Drop one holder; the handle closes when none remain."""
        if name not in self._handles:
            return
        self._refs[name] = max(0, self._refs[name] - 1)
        if self._refs[name] == 0:
            await self.close(name)

    async def close(self, name: str) -> None:
        async with self._lock:
            handle = self._unregister(name)
        if handle is None:
            return
        try:
            await handle.disconnect()
        except Exception as exc:
            raise DatabaseConnectionFault(name, f"close failed: {exc}") from exc
        logger.info(f"Closed database '{name}'")

    async def close_all(self) -> None:
        for name in list(self._handles):
            await self.close(name)
