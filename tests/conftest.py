# tests/conftest.py
"""
Pytest configuration and fixtures.
"""

import itertools
import os
from datetime import UTC, datetime, timedelta

import pytest

# Set test environment
os.environ.setdefault("TESTING", "1")
os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")

from prunarr.services.retention.types import MediaItem  # noqa: E402
from prunarr.stores.memory import (  # noqa: E402
    InMemoryDeletionHistoryStore,
    InMemoryMediaStore,
    InMemoryRuleStore,
)

# Fixed clock for every time-dependent test
NOW = datetime(2026, 3, 1, 12, 0, tzinfo=UTC)


@pytest.fixture
def now():
    return NOW


@pytest.fixture
def make_item():
    """
    Factory for MediaItem snapshots.

    Defaults describe a stale movie that no default protection applies to:
    added a year ago, never watched, unrated.
    """
    ids = itertools.count(1)

    def factory(**overrides):
        values = {
            "id": next(ids),
            "title": "Test Movie",
            "type": "movie",
            "radarr_id": 100,
            "tmdb_id": 550,
            "file_size": 4 * 1024**3,
            "resolution": "1080p",
            "added_at": NOW - timedelta(days=365),
            "genres": ["Drama"],
        }
        values.update(overrides)
        return MediaItem(**values)

    return factory


@pytest.fixture
def media_store():
    return InMemoryMediaStore()


@pytest.fixture
def rule_store():
    return InMemoryRuleStore()


@pytest.fixture
def history_store():
    return InMemoryDeletionHistoryStore()


class RecordingSink:
    """Notification sink that keeps every event it receives."""

    def __init__(self):
        self.events = []

    def notify(self, event, data):
        self.events.append((event, data))

    def of(self, event):
        return [data for name, data in self.events if name == event]


@pytest.fixture
def notifier():
    return RecordingSink()


@pytest.fixture
def session_factory():
    """Isolated in-memory SQLite database with all tables created."""
    from prunarr.database import Base, create_session_factory, init_db

    factory = create_session_factory("sqlite://")
    init_db(factory)
    yield factory
    Base.metadata.drop_all(bind=factory.kw["bind"])
