"""Shared fixtures for roomtracker functional tests."""

import os
from datetime import datetime, timedelta, timezone

import pytest

from roomtracker.store import TrackerStore


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    """Strip ROOMTRACKER_* and service env vars for test isolation."""
    for key in list(os.environ):
        if key.startswith("ROOMTRACKER_") or key in ("DATABASE_URL", "PORT"):
            monkeypatch.delenv(key, raising=False)


@pytest.fixture
def memory_store():
    """TrackerStore on in-memory SQLite (single shared connection). Returns connected instance."""
    store = TrackerStore("sqlite://", retries=0)
    store.connect()
    yield store
    store.close()


@pytest.fixture
def file_store(tmp_path):
    """TrackerStore on a SQLite file, one connection per thread. Returns connected instance."""
    store = TrackerStore(f"sqlite:///{tmp_path / 'tracker.sqlite'}", retries=5)
    store.connect()
    yield store
    store.close()


class FakeClock:
    """Manually advanced UTC clock."""

    def __init__(self, start=None):
        self.now = start or datetime(2024, 3, 1, 12, 0, 0, tzinfo=timezone.utc)

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now = self.now + timedelta(seconds=seconds)
        return self.now


@pytest.fixture
def clock():
    return FakeClock()
