"""
Pytest fixtures and test configuration for carryzone tests.
"""

import itertools
from dataclasses import replace
from typing import Any, Dict, List
from unittest.mock import Mock

import pytest

from carryzone.network import ConnectivityMonitor
from carryzone.remote.memory import InMemoryPinDataSource
from carryzone.repository import PinRepository
from carryzone.storage import Database, SQLitePinStore, SyncQueue
from carryzone.sync.engine import SyncEngine
from carryzone.types import Location, Pin, PinMetadata, PinStatus

# Fixed reference time (2024-01-01T00:00:00Z) so timestamps are predictable
BASE_MS = 1_704_067_200_000


def make_pin(
    pin_id: str = "p1",
    status: PinStatus = PinStatus.ALLOWED,
    last_modified: int = BASE_MS,
    created_at: int = BASE_MS,
    latitude: float = 40.7128,
    longitude: float = -74.0060,
    name: str = "",
    **metadata,
) -> Pin:
    """Build a pin with explicit, deterministic timestamps."""
    return Pin(
        id=pin_id,
        name=name or f"Place {pin_id}",
        location=Location(latitude=latitude, longitude=longitude),
        status=status,
        metadata=PinMetadata(created_at=created_at, last_modified=last_modified, **metadata),
    )


def touched(pin: Pin, last_modified: int, **changes) -> Pin:
    """Copy of ``pin`` with a given last_modified and field changes."""
    return replace(pin, metadata=replace(pin.metadata, last_modified=last_modified), **changes)


@pytest.fixture
def db_path(tmp_path):
    """Create a temporary database path."""
    return tmp_path / "carryzone.db"


@pytest.fixture
def database(db_path):
    return Database(db_path)


@pytest.fixture
def store(database):
    return SQLitePinStore(database)


@pytest.fixture
def queue(database):
    """Sync queue with a strictly increasing clock so enqueue order is stable."""
    ticks = itertools.count(BASE_MS)
    return SyncQueue(database, clock=lambda: next(ticks))


@pytest.fixture
def remote():
    return InMemoryPinDataSource()


@pytest.fixture
def connectivity():
    return ConnectivityMonitor(online=True)


@pytest.fixture
def engine(store, queue, remote, connectivity):
    return SyncEngine(store, queue, remote, connectivity)


@pytest.fixture
def repository(store, engine):
    return PinRepository(store, engine)


@pytest.fixture
def supabase_rows() -> List[Dict[str, Any]]:
    """Rows held by the mock Supabase client's pins table."""
    return []


@pytest.fixture
def mock_supabase_client(supabase_rows):
    """Mock Supabase client that simulates table queries over ``supabase_rows``."""
    client = Mock()

    def create_query(operation: str, payload=None):
        query = Mock()
        filters = []

        def add_filter(predicate):
            filters.append(predicate)
            return query

        query.eq.side_effect = lambda field, value: add_filter(lambda r: r.get(field) == value)
        query.gte.side_effect = lambda field, value: add_filter(lambda r: r.get(field) >= value)
        query.lte.side_effect = lambda field, value: add_filter(lambda r: r.get(field) <= value)

        def execute_mock():
            matched = [row for row in supabase_rows if all(p(row) for p in filters)]
            if operation == "insert":
                supabase_rows.append(dict(payload))
                data = [dict(payload)]
            elif operation == "update":
                for row in matched:
                    row.update(payload)
                data = [dict(row) for row in matched]
            elif operation == "delete":
                for row in matched:
                    supabase_rows.remove(row)
                data = matched
            else:
                data = [dict(row) for row in matched]
            result = Mock()
            result.data = data
            return result

        query.execute.side_effect = execute_mock
        return query

    def create_table_mock(table_name: str):
        table_mock = Mock()
        table_mock.select.side_effect = lambda *args, **kwargs: create_query("select")
        table_mock.insert.side_effect = lambda payload: create_query("insert", payload)
        table_mock.update.side_effect = lambda payload: create_query("update", payload)
        table_mock.delete.side_effect = lambda: create_query("delete")
        return table_mock

    client.table.side_effect = create_table_mock
    return client
