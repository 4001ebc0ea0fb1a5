"""RoomStateUpserter - room metadata persistence and sweep-based inactivity."""

import logging
from dataclasses import dataclass, field

from .locks import KeyedLocks
from .store import utc_now

log = logging.getLogger('roomtracker')


@dataclass
class DeactivationResult:
    deactivated: list = field(default_factory=list)
    closed_sessions: int = 0
    failed: list = field(default_factory=list)
    skipped: bool = False


class RoomStateUpserter:
    """Keeps the rooms table in step with sweeps.

    Shares ``room_locks`` with the SessionReconciler so a room is never
    deactivated while its presence is being reconciled.
    """

    def __init__(self, store, index=None, room_locks=None, clock=utc_now):
        self._store = store
        self._index = index
        self.room_locks = room_locks if room_locks is not None else KeyedLocks()
        self._clock = clock

    def upsert_room(self, room_id, attributes, occupancy=0, now=None):
        """Insert or update a room by id. Returns True when the room is new."""
        inserted = self._store.upsert_room(room_id, attributes, occupancy, now or self._clock())
        if inserted:
            log.info(f"[RoomStateUpserter] New room {room_id} ({attributes.get('language', 'Unknown')})")
        return inserted

    def upsert_snapshot(self, snapshot, now=None):
        return self.upsert_room(snapshot.room_id, snapshot.attributes, len(snapshot.present_users), now)

    def mark_inactive(self, exclude_ids, now=None):
        """Deactivate every active room not seen in a complete sweep.

        An empty ``exclude_ids`` means there is no sweep data yet, so nothing
        is deactivated. Open sessions in deactivated rooms are closed.
        """
        exclude_ids = set(exclude_ids or ())
        if not exclude_ids:
            log.warning("[RoomStateUpserter] Empty sweep, skipping inactivity marking")
            return DeactivationResult(skipped=True)

        now = now or self._clock()
        result = DeactivationResult()
        stale = sorted(self._store.active_room_ids() - exclude_ids)

        for room_id in stale:
            try:
                with self.room_locks.hold(room_id):
                    closed = self._store.deactivate_room(room_id, now)
                    if self._index is not None:
                        self._index.discard_room(room_id)
            except Exception as e:
                log.error(f"[RoomStateUpserter] Failed to deactivate room {room_id}: {e}")
                result.failed.append(room_id)
                continue
            result.deactivated.append(room_id)
            result.closed_sessions += len(closed)

        if result.deactivated:
            log.info(
                f"[RoomStateUpserter] Deactivated {len(result.deactivated)} rooms, "
                f"closed {result.closed_sessions} sessions"
            )
        return result
