"""
Quarry Drivers — sync and async facades over the shared core.
"""

from .base import DriverCore
from .sqlite import SQLiteDriver
from .aiosqlite import AsyncSQLiteDriver

__all__ = ["DriverCore", "SQLiteDriver", "AsyncSQLiteDriver"]
