"""Functional tests for RoomStateUpserter - upserts and sweep-based inactivity."""

from roomtracker.index import OpenSessionIndex
from roomtracker.locks import KeyedLocks
from roomtracker.model import Room, RoomSession
from roomtracker.reconciler import SessionReconciler
from roomtracker.rooms import RoomStateUpserter


def _room(store, room_id):
    with store.session_scope() as db:
        return db.get(Room, room_id)


def _open_rooms(store):
    with store.session_scope() as db:
        return {s.room_id for s in db.query(RoomSession).filter(RoomSession.left_at.is_(None))}


class TestUpsertRoom:
    def test_insert_then_update(self, memory_store, clock):
        """First upsert inserts; later upserts refresh fields but keep first_seen."""
        upserter = RoomStateUpserter(memory_store, clock=clock)
        assert upserter.upsert_room("R1", {"topic": "Hello", "language": "English", "max_capacity": 2}) is True
        first_seen = _room(memory_store, "R1").first_seen

        clock.advance(120)
        assert upserter.upsert_room("R1", {"topic": "Changed"}, occupancy=2) is False

        room = _room(memory_store, "R1")
        assert room.topic == "Changed"
        assert room.language == "English"
        assert room.first_seen == first_seen
        assert room.last_activity == clock().replace(tzinfo=None)
        assert room.current_users_count == 2
        assert room.is_full is True

    def test_unknown_attributes_ignored(self, memory_store, clock):
        """Only known room columns are written."""
        upserter = RoomStateUpserter(memory_store, clock=clock)
        upserter.upsert_room("R1", {"room_id": "hijack", "first_seen": None, "topic": "ok"})
        room = _room(memory_store, "R1")
        assert room.room_id == "R1"
        assert room.first_seen is not None

    def test_reupsert_reactivates(self, memory_store, clock):
        """A room seen again after deactivation is active again."""
        upserter = RoomStateUpserter(memory_store, clock=clock)
        upserter.upsert_room("R1", {})
        upserter.upsert_room("R2", {})
        upserter.mark_inactive(["R2"])
        assert _room(memory_store, "R1").is_active is False

        upserter.upsert_room("R1", {})
        assert _room(memory_store, "R1").is_active is True


class TestMarkInactive:
    def test_empty_sweep_deactivates_nothing(self, memory_store, clock):
        """An empty exclude set is treated as no data."""
        upserter = RoomStateUpserter(memory_store, clock=clock)
        for room_id in ("R1", "R2"):
            upserter.upsert_room(room_id, {})

        result = upserter.mark_inactive([])

        assert result.skipped is True
        assert memory_store.active_room_ids() == {"R1", "R2"}

    def test_deactivates_all_but_excluded_and_closes_sessions(self, memory_store, clock):
        """Rooms outside the sweep go inactive and their open sessions close."""
        locks = KeyedLocks()
        index = OpenSessionIndex(memory_store)
        index.initialize()
        upserter = RoomStateUpserter(memory_store, index, locks, clock=clock)
        reconciler = SessionReconciler(memory_store, index, locks, clock=clock)
        for room_id in ("R1", "R2", "R3", "R4"):
            upserter.upsert_room(room_id, {})
        reconciler.reconcile("R3", ["A", "B"])
        reconciler.reconcile("R1", ["C"])

        clock.advance(90)
        result = upserter.mark_inactive(["R1", "R2"])

        assert sorted(result.deactivated) == ["R3", "R4"]
        assert result.closed_sessions == 2
        assert memory_store.active_room_ids() == {"R1", "R2"}
        assert _open_rooms(memory_store) == {"R1"}
        assert index.open_user_ids("R3") == set()
        room = _room(memory_store, "R3")
        assert room.current_users_count == 0
        assert room.is_empty is True

    def test_inactive_rooms_not_touched_again(self, memory_store, clock):
        """Already inactive rooms are not deactivated twice."""
        upserter = RoomStateUpserter(memory_store, clock=clock)
        for room_id in ("R1", "R2"):
            upserter.upsert_room(room_id, {})
        upserter.mark_inactive(["R1"])
        result = upserter.mark_inactive(["R1"])
        assert result.deactivated == []
