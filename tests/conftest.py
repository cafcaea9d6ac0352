"""
Shared test fixtures for the Quarry test suite.
"""

import pytest
import pytest_asyncio

from quarry import AsyncSQLiteDriver, SQLiteDriver


# ============================================================================
# Schemas
# ============================================================================


@pytest.fixture
def users_schema():
    """id autoincrement key plus a unique, required name."""
    return {
        "id": {"type": "INTEGER", "primary_key": True, "auto_increment": True},
        "name": {"type": "TEXT", "not_null": True, "unique": True},
    }


@pytest.fixture
def profile_schema():
    """A wider table covering every storage conversion."""
    return {
        "id": {"type": "INTEGER", "primary_key": True, "auto_increment": True},
        "name": {"type": "TEXT", "not_null": True},
        "age": {"type": "INTEGER"},
        "score": {"type": "REAL", "default": 0.0},
        "active": {"type": "BOOLEAN", "default": True},
        "born": {"type": "DATE"},
        "meta": {"type": "OBJECT", "default": dict},
        "tags": {"type": "ARRAY", "default": list},
        "payload": {"type": "JSON"},
    }


# ============================================================================
# Drivers
# ============================================================================


@pytest.fixture
def config(tmp_path):
    return {"storage_dir": str(tmp_path)}


@pytest.fixture
def driver(config):
    """Connected blocking driver writing under tmp_path."""
    d = SQLiteDriver().connect(config)
    yield d
    d.disconnect()


@pytest_asyncio.fixture
async def adriver(config):
    """Connected async driver writing under tmp_path."""
    d = await AsyncSQLiteDriver().connect(config)
    yield d
    await d.disconnect()
