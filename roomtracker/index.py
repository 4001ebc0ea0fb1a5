"""In-memory index of open sessions - a read-through cache over the store."""

import logging
import threading

log = logging.getLogger('roomtracker')


class OpenSessionIndex:
    """Mirror of open (user_id, room_id) pairs, keyed both ways.

    Never authoritative: the store decides whether a session opens or closes,
    and the index only records what the store reported. Rebuild it with
    ``initialize()`` on process start.
    """

    def __init__(self, store):
        self._store = store
        self._lock = threading.Lock()
        self._by_room = {}
        self._by_user = {}
        self.initialized = False

    def initialize(self):
        """Load every open session from the store, replacing current contents."""
        pairs = self._store.open_session_pairs()
        with self._lock:
            self._by_room = {}
            self._by_user = {}
            for user_id, room_id in pairs:
                self._by_room.setdefault(room_id, set()).add(user_id)
                self._by_user.setdefault(user_id, set()).add(room_id)
            self.initialized = True
        log.info(f"[OpenSessionIndex] Initialized with {len(pairs)} open sessions")
        return len(pairs)

    def open_user_ids(self, room_id):
        with self._lock:
            return set(self._by_room.get(room_id, ()))

    def rooms_for_user(self, user_id):
        with self._lock:
            return set(self._by_user.get(user_id, ()))

    def add(self, user_id, room_id):
        with self._lock:
            self._by_room.setdefault(room_id, set()).add(user_id)
            self._by_user.setdefault(user_id, set()).add(room_id)

    def discard(self, user_id, room_id):
        with self._lock:
            users = self._by_room.get(room_id)
            if users is not None:
                users.discard(user_id)
                if not users:
                    del self._by_room[room_id]
            rooms = self._by_user.get(user_id)
            if rooms is not None:
                rooms.discard(room_id)
                if not rooms:
                    del self._by_user[user_id]

    def discard_room(self, room_id):
        with self._lock:
            for user_id in self._by_room.pop(room_id, set()):
                rooms = self._by_user.get(user_id)
                if rooms is not None:
                    rooms.discard(room_id)
                    if not rooms:
                        del self._by_user[user_id]

    def count(self):
        with self._lock:
            return sum(len(users) for users in self._by_room.values())

    def room_count(self):
        with self._lock:
            return len(self._by_room)
