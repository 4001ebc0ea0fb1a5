"""Functional tests for the reporting queries and store maintenance."""

from datetime import timedelta

import pytest

from roomtracker import queries
from roomtracker.model import ActivityLogEntry, RoomAnalytics, RoomSnapshot
from roomtracker.normalizer import UserObservation
from roomtracker.reconciler import SessionReconciler


@pytest.fixture
def history(memory_store, clock):
    """A and B overlap in R1 twice and in R2 once; C is only ever alone."""
    reconciler = SessionReconciler(memory_store, clock=clock)
    for room_id, language in (("R1", "English"), ("R2", "English"), ("R3", "French")):
        memory_store.upsert_room(room_id, {"language": language, "topic": f"topic {room_id}"}, 0, clock())

    steps = [
        ("R1", ["A", "B"]), ("R1", []),
        ("R1", ["A", "B"]), ("R1", ["B"]), ("R1", []),
        ("R2", ["A"]), ("R2", ["A", "B"]), ("R2", []),
        ("R3", ["C"]),
    ]
    for room_id, present in steps:
        reconciler.reconcile(room_id, [UserObservation(user_id=u, username=f"user {u}") for u in present])
        clock.advance(60)
    return memory_store


class TestUserQueries:
    def test_user_room_history(self, history):
        """Per-room totals for a user."""
        rooms = {r["room_id"]: r for r in queries.user_room_history(history, "B")}
        assert set(rooms) == {"R1", "R2"}
        assert rooms["R1"]["session_count"] == 2
        assert rooms["R1"]["total_duration_seconds"] == 60 + 120
        assert rooms["R2"]["session_count"] == 1

    def test_user_sessions_limit(self, history):
        """Newest first, limited."""
        sessions = queries.user_sessions(history, "A", limit=2)
        assert len(sessions) == 2
        assert sessions[0]["room_id"] == "R2"

    def test_user_statistics(self, history):
        """Favourite language and current rooms."""
        stats = queries.user_statistics(history, "C")
        assert stats["favorite_language"] == "French"
        assert stats["current_rooms"] == ["R3"]
        assert stats["is_currently_active"] is True
        assert queries.user_statistics(history, "nobody") is None

    def test_search_escapes_wildcards(self, history):
        """LIKE wildcards in the query match literally."""
        assert queries.search_users(history, "%") == []
        assert [u["user_id"] for u in queries.search_users(history, "USER A")] == ["A"]

    def test_shared_rooms(self, history):
        """Overlapping closed sessions are counted per room."""
        shared = queries.shared_rooms(history, "A", "B")
        assert [(r["room_id"], r["were_together_count"]) for r in shared] == [("R1", 2), ("R2", 1)]
        assert queries.shared_rooms(history, "A", "C") == []


class TestRoomQueries:
    def test_room_statistics(self, history):
        """Session counts and participants for a room."""
        stats = queries.room_statistics(history, "R1")
        assert stats["total_sessions"] == 4
        assert stats["unique_participants"] == 2
        assert stats["current_users"] == 0
        assert stats["max_duration_seconds"] == 120

    def test_active_rooms_ordering(self, history):
        """Occupied rooms first."""
        rooms = queries.active_rooms(history)
        assert rooms[0]["room_id"] == "R3"

    def test_trending_window(self, history, clock):
        """Only sessions inside the window count."""
        recent = queries.trending_rooms(history, hours=1, now=clock())
        assert {r["room_id"] for r in recent} == {"R1", "R2", "R3"}
        later = queries.trending_rooms(history, hours=1, now=clock() + timedelta(hours=5))
        assert later == []

    def test_get_stats(self, history):
        """Store-wide totals."""
        stats = queries.get_stats(history)
        assert stats["total_users"] == 3
        assert stats["active_sessions"] == 1

    def test_room_analytics_peak(self, history):
        """Daily analytics keep the highest concurrency seen."""
        with history.session_scope() as db:
            row = db.query(RoomAnalytics).filter_by(room_id="R1").one()
            assert row.total_sessions == 4
            assert row.peak_concurrent_users == 2


class TestMaintenance:
    def test_clean_old_data(self, history, clock):
        """Activity and snapshot rows older than the window are deleted."""
        history.record_room_snapshot("R1", [], clock() - timedelta(days=40))
        history.record_room_snapshot("R1", [], clock() + timedelta(days=1))

        counts = history.clean_old_data(30, now=clock() + timedelta(days=31))

        assert counts["room_snapshots"] == 1
        assert counts["activity_log"] > 0
        with history.session_scope() as db:
            assert db.query(RoomSnapshot).count() == 1
            assert db.query(ActivityLogEntry).count() == 0

    @pytest.mark.parametrize("limit,expected", [(None, 50), ("7", 7), (0, 50), (-3, 50), (10_000, 500)])
    def test_normalize_limit(self, limit, expected):
        """Limits fall back to the default and are capped."""
        assert queries._normalize_limit(limit) == expected
