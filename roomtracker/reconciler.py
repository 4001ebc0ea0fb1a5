"""SessionReconciler - diffs observed room presence against open sessions.

Per (user_id, room_id) a session moves NO_SESSION -> OPEN -> CLOSED. A later
re-join opens a new row; closed rows are never reopened. Presence in one room
has no effect on sessions in any other room.
"""

import logging
from dataclasses import dataclass

from .locks import KeyedLocks
from .normalizer import UserObservation
from .store import utc_now

log = logging.getLogger('roomtracker')


@dataclass
class ReconcileResult:
    room_id: str
    opened: int = 0
    closed: int = 0
    failed: int = 0


class SessionReconciler:
    """Applies one room's observed presence to the store.

    Usage:
        reconciler = SessionReconciler(store, index)
        result = reconciler.reconcile(room_id, snapshot.present_users)

    Reconciliations of the same room are serialized through ``room_locks``;
    different rooms may be reconciled concurrently.
    """

    def __init__(self, store, index=None, room_locks=None, clock=utc_now):
        self._store = store
        self._index = index
        self.room_locks = room_locks if room_locks is not None else KeyedLocks()
        self._clock = clock

    def current_open(self, room_id):
        if self._index is not None and self._index.initialized:
            return self._index.open_user_ids(room_id)
        return self._store.open_user_ids(room_id)

    def reconcile(self, room_id, present_users, now=None):
        """Open sessions for newly present users and close them for absent ones.

        ``present_users`` holds UserObservation records (bare user ids are
        accepted too). Returns a ReconcileResult with opened/closed/failed counts.
        """
        observed = {}
        for user in present_users:
            if isinstance(user, str):
                user = UserObservation(user_id=user)
            observed[user.user_id] = user

        with self.room_locks.hold(room_id):
            now = now or self._clock()
            currently_open = self.current_open(room_id)
            result = ReconcileResult(room_id=room_id)

            for user_id, observation in observed.items():
                try:
                    self._store.apply_observation(observation, now)
                    if user_id in currently_open:
                        continue
                    session_id = self._store.open_session(user_id, room_id, now, observation.position)
                    if self._index is not None:
                        self._index.add(user_id, room_id)
                    if session_id is not None:
                        result.opened += 1
                except Exception as e:
                    result.failed += 1
                    log.error(f"[SessionReconciler] Failed to process {user_id} in room {room_id}: {e}")

            for user_id in currently_open - observed.keys():
                try:
                    closed = self._store.close_sessions(room_id, [user_id], now)
                    if self._index is not None:
                        self._index.discard(user_id, room_id)
                    if closed:
                        result.closed += 1
                except Exception as e:
                    result.failed += 1
                    log.error(f"[SessionReconciler] Failed to close session for {user_id} in room {room_id}: {e}")

            try:
                self._store.update_room_analytics(room_id, now)
            except Exception as e:
                log.warning(f"[SessionReconciler] Analytics update failed for room {room_id}: {e}")

        if result.opened or result.closed or result.failed:
            log.debug(
                f"[SessionReconciler] Room {room_id}: +{result.opened} joins, "
                f"-{result.closed} leaves, {result.failed} failed"
            )
        return result
