"""
Pytest fixtures and test configuration for spendsync tests.
"""

from datetime import datetime, timedelta, timezone
from typing import Optional

import pytest

from spendsync.config import SyncSettings
from spendsync.identity import StaticIdentity
from spendsync.storage.documents import InMemoryDocumentStore, Timestamp, collection_path
from spendsync.storage.sqlite import SQLiteStore
from spendsync.sync import codec
from spendsync.sync.orchestrator import SyncOrchestrator
from spendsync.types import entity_type_of

USER_ID = "user-1"


def at(hour: int, minute: int = 0, day: int = 1) -> datetime:
    """A fixed UTC instant on 2024-03-<day>."""
    return datetime(2024, 3, day, hour, minute, tzinfo=timezone.utc)


class ServerClock:
    """Controllable clock for the in-memory remote store."""

    def __init__(self, start: Optional[datetime] = None):
        self.now = start or at(12)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


def seed_remote(remote: InMemoryDocumentStore, entity, modified: datetime, user_id: str = USER_ID):
    """Write an entity to the remote store as another device would have."""
    document = codec.encode(entity)
    document["lastModified"] = Timestamp.from_datetime(modified)
    path = collection_path(user_id, entity_type_of(entity).collection)
    remote.put_raw(path, entity.id, document)
    return document


@pytest.fixture
def temp_db(tmp_path):
    """Create a temporary database path."""
    return tmp_path / "spendsync.db"


@pytest.fixture
def store(temp_db):
    """Create a SQLiteStore for testing."""
    store = SQLiteStore(temp_db)
    yield store
    store.close()


@pytest.fixture
def clock():
    return ServerClock()


@pytest.fixture
def remote(clock):
    """In-memory remote document store driven by the test clock."""
    return InMemoryDocumentStore(clock=clock)


@pytest.fixture
def identity():
    return StaticIdentity(USER_ID)


@pytest.fixture
def settings(tmp_path):
    return SyncSettings(home=tmp_path, db_path=tmp_path / "spendsync.db")


@pytest.fixture
def orchestrator(store, remote, identity, settings):
    return SyncOrchestrator(store, remote, identity, settings=settings)


@pytest.fixture
def user_id():
    return USER_ID


@pytest.fixture
def seed(remote):
    """Seed the remote store: ``seed(entity, modified)``."""

    def _seed(entity, modified: datetime, user_id: str = USER_ID):
        return seed_remote(remote, entity, modified, user_id)

    return _seed


@pytest.fixture
def server_time():
    """Build fixed UTC instants: ``server_time(10, 5)`` is 2024-03-01 10:05."""
    return at
