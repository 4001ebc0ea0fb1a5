"""TrackerStore - transactional persistence for users, rooms and sessions.

The store is the only arbiter of the one-open-session-per-(user, room)
invariant: ``open_session`` refuses to create a second open row and
``close_sessions`` closes every open row it finds for a pair.

All timestamps are written as naive UTC. Aware datetimes passed in are
converted; naive ones are taken to be UTC already.
"""

import logging
import threading
import time
from contextlib import contextmanager
from datetime import datetime, timedelta, timezone

from sqlalchemy import case, create_engine, func, text
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from .errors import StoreUnavailableError
from .locks import KeyedLocks
from .merge import UserProfile, merge_profile
from .model import (
    ActivityLogEntry, Room, RoomAnalytics, RoomSession, RoomSnapshot, TrackerBase, User,
)

log = logging.getLogger('roomtracker')

ROOM_ATTRIBUTE_FIELDS = (
    'topic', 'language', 'second_language', 'skill_level', 'max_capacity', 'is_locked',
    'mic_allowed', 'url', 'creator_user_id', 'creator_name', 'creator_avatar', 'creator_is_verified',
)
PROFILE_FIELDS = (
    'username', 'user_avatar', 'is_verified', 'followers_count', 'following_count',
    'friends_count', 'supporter_level', 'first_seen', 'last_seen',
)


def utc_now():
    return datetime.now(timezone.utc)


def to_storage_time(value):
    """Naive UTC datetime for persistence."""
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


def as_utc(value):
    """Aware UTC datetime from a stored (naive UTC) value."""
    if value is None:
        return None
    return value.replace(tzinfo=timezone.utc) if value.tzinfo is None else value


def make_engine(database_url, timeout=10):
    if database_url.startswith('sqlite'):
        kwargs = {'connect_args': {'check_same_thread': False, 'timeout': timeout}}
        if ':memory:' in database_url or database_url in ('sqlite://', 'sqlite:///'):
            kwargs['poolclass'] = StaticPool
        return create_engine(database_url, **kwargs)

    kwargs = {'pool_pre_ping': True, 'pool_timeout': timeout}
    if database_url.startswith('postgresql'):
        kwargs['connect_args'] = {'connect_timeout': timeout}
    return create_engine(database_url, **kwargs)


class TrackerStore:
    """Durable tracker state.

    Usage:
        store = TrackerStore('sqlite:///roomtracker.sqlite')
        store.connect()                       # raises StoreUnavailableError
        result = store.apply_observation(observation, now)
        session_id = store.open_session(user_id, room_id, now)
        closed = store.close_sessions(room_id, [user_id], now)
    """

    def __init__(self, database_url, retries=2, timeout=10, engine=None):
        self.database_url = database_url
        self.retries = retries
        self.timeout = timeout
        self._engine = engine
        self._session_factory = None
        self._user_locks = KeyedLocks()
        self._serial = None

    @classmethod
    def from_config(cls, config):
        return cls(config.database_url, retries=config.store_retries, timeout=config.store_timeout)

    # -----------------------------------------------------------------------
    # Lifecycle
    # -----------------------------------------------------------------------

    def connect(self):
        """Create the schema and verify the database answers."""
        try:
            if self._engine is None:
                self._engine = make_engine(self.database_url, self.timeout)
            TrackerBase.metadata.create_all(self._engine)
            with self._engine.connect() as conn:
                conn.execute(text('SELECT 1'))
            self._session_factory = sessionmaker(bind=self._engine, expire_on_commit=False)
            # one shared connection: transactions from different threads must not interleave
            if isinstance(self._engine.pool, StaticPool):
                self._serial = threading.RLock()
        except Exception as e:
            raise StoreUnavailableError(f"Database unavailable: {e}") from e
        log.info(f"[TrackerStore] Database initialized: {self._engine.url.render_as_string(hide_password=True)}")
        return self

    def close(self):
        if self._engine is not None:
            self._engine.dispose()
            log.info("[TrackerStore] Connections closed")

    @contextmanager
    def _serialized(self):
        if self._serial is None:
            yield
            return
        with self._serial:
            yield

    @contextmanager
    def session_scope(self):
        if self._session_factory is None:
            raise StoreUnavailableError("Store is not connected")
        with self._serialized():
            db = self._session_factory()
            try:
                yield db
                db.commit()
            except Exception:
                db.rollback()
                raise
            finally:
                db.close()

    def run(self, fn, *args):
        """Run fn(db, *args) in a transaction, retrying transient database errors."""
        attempt = 0
        while True:
            try:
                with self.session_scope() as db:
                    return fn(db, *args)
            except OperationalError as e:
                attempt += 1
                if attempt > self.retries:
                    raise
                log.warning(f"[TrackerStore] Transient error in {fn.__name__} (attempt {attempt}): {e}")
                time.sleep(0.1 * attempt)

    def ping(self):
        try:
            with self._serialized(), self._engine.connect() as conn:
                conn.execute(text('SELECT 1'))
            return True
        except Exception as e:
            log.info(f"[TrackerStore] Ping failed: {e}")
            return False

    # -----------------------------------------------------------------------
    # Users
    # -----------------------------------------------------------------------

    def get_profile(self, user_id):
        def _get(db):
            user = db.get(User, user_id)
            return _profile_from_row(user) if user is not None else None
        return self.run(_get)

    def apply_observation(self, observation, now):
        """Merge an observed profile into the stored user; returns the MergeResult."""
        now = to_storage_time(now)
        with self._user_locks.hold(observation.user_id):
            return self.run(self._apply_observation, observation, now)

    def _apply_observation(self, db, observation, now):
        user = (
            db.query(User)
            .filter(User.user_id == observation.user_id)
            .with_for_update()
            .one_or_none()
        )
        stored = _profile_from_row(user) if user is not None else None
        result = merge_profile(stored, observation, now)

        if user is None:
            user = User(user_id=observation.user_id, total_sessions=0, total_duration_seconds=0)
            db.add(user)
        for name in PROFILE_FIELDS:
            setattr(user, name, getattr(result.profile, name))

        if result.changed:
            db.add(ActivityLogEntry(
                user_id=observation.user_id,
                activity_type='profile_update',
                activity_data={'changes': result.changes},
                activity_time=now,
            ))
        return result

    # -----------------------------------------------------------------------
    # Sessions
    # -----------------------------------------------------------------------

    def open_user_ids(self, room_id):
        """User ids with an open session in the room."""
        def _open(db):
            rows = db.query(RoomSession.user_id).filter(
                RoomSession.room_id == room_id,
                RoomSession.is_currently_active.is_(True),
            ).all()
            return {r[0] for r in rows}
        return self.run(_open)

    def open_session_pairs(self):
        """All (user_id, room_id) pairs with an open session."""
        def _pairs(db):
            rows = db.query(RoomSession.user_id, RoomSession.room_id).filter(
                RoomSession.is_currently_active.is_(True),
            ).all()
            return [(r[0], r[1]) for r in rows]
        return self.run(_pairs)

    def open_session(self, user_id, room_id, now, position=None):
        """Open a session unless one is already open for the pair. Returns session_id or None."""
        return self.run(self._open_session, user_id, room_id, to_storage_time(now), position)

    def _open_session(self, db, user_id, room_id, now, position):
        existing = db.query(RoomSession.session_id).filter(
            RoomSession.user_id == user_id,
            RoomSession.room_id == room_id,
            RoomSession.is_currently_active.is_(True),
        ).first()
        if existing is not None:
            log.debug(f"[TrackerStore] Session already open for {user_id} in {room_id}")
            return None

        session = RoomSession(
            user_id=user_id,
            room_id=room_id,
            joined_at=now,
            user_position=position,
            is_currently_active=True,
        )
        db.add(session)

        # increments run in SQL; rooms reconciled in parallel can share a user
        db.query(User).filter(User.user_id == user_id).update({
            User.total_sessions: func.coalesce(User.total_sessions, 0) + 1,
            User.last_seen: case(
                (User.last_seen.is_(None), now),
                (User.last_seen < now, now),
                else_=User.last_seen,
            ),
        }, synchronize_session=False)

        db.flush()
        db.add(ActivityLogEntry(
            user_id=user_id,
            activity_type='room_join',
            activity_data={'room_id': room_id, 'session_id': session.session_id, 'position': position},
            activity_time=now,
        ))
        _refresh_room_occupancy(db, room_id, now)
        return session.session_id

    def close_sessions(self, room_id, user_ids, now):
        """Close open sessions in a room (all of them when user_ids is None).

        Returns the list of (user_id, session_id, duration_seconds) closed.
        """
        return self.run(self._close_sessions, room_id, user_ids, to_storage_time(now))

    def _close_sessions(self, db, room_id, user_ids, now):
        query = db.query(RoomSession).filter(
            RoomSession.room_id == room_id,
            RoomSession.is_currently_active.is_(True),
        )
        if user_ids is not None:
            user_ids = list(user_ids)
            if not user_ids:
                return []
            query = query.filter(RoomSession.user_id.in_(user_ids))

        closed = []
        for session in query.all():
            duration = _close_session(db, session, now)
            closed.append((session.user_id, session.session_id, duration))

        if closed:
            _refresh_room_occupancy(db, room_id, now)
        return closed

    # -----------------------------------------------------------------------
    # Rooms
    # -----------------------------------------------------------------------

    def upsert_room(self, room_id, attributes, occupancy, now):
        """Insert or update a room; never resets first_seen. Returns True if inserted."""
        return self.run(self._upsert_room, room_id, attributes, occupancy, to_storage_time(now))

    def _upsert_room(self, db, room_id, attributes, occupancy, now):
        room = db.query(Room).filter(Room.room_id == room_id).with_for_update().one_or_none()
        inserted = room is None
        if inserted:
            room = Room(room_id=room_id, first_seen=now, language='Unknown')
            db.add(room)

        for name in ROOM_ATTRIBUTE_FIELDS:
            if name in attributes:
                setattr(room, name, attributes[name])

        room.is_active = True
        room.current_users_count = occupancy
        room.is_empty = occupancy == 0
        capacity = room.max_capacity if room.max_capacity is not None else -1
        room.is_full = capacity > 0 and occupancy >= capacity
        room.last_activity = now
        return inserted

    def active_room_ids(self):
        def _active(db):
            return {r[0] for r in db.query(Room.room_id).filter(Room.is_active.is_(True)).all()}
        return self.run(_active)

    def deactivate_room(self, room_id, now):
        """Flip a room inactive and close its open sessions. Returns the closed list."""
        return self.run(self._deactivate_room, room_id, to_storage_time(now))

    def _deactivate_room(self, db, room_id, now):
        room = db.get(Room, room_id)
        if room is None:
            return []
        closed = self._close_sessions(db, room_id, None, now)
        room.is_active = False
        room.current_users_count = 0
        room.is_empty = True
        room.is_full = False
        room.last_activity = now
        return closed

    def record_room_snapshot(self, room_id, users, now, is_active=True):
        """Persist the occupancy a sweep observed for a room."""
        now = to_storage_time(now)

        def _record(db):
            db.add(RoomSnapshot(
                room_id=room_id,
                snapshot_time=now,
                participants_count=len(users),
                participants_json=[
                    {'user_id': u.user_id, 'username': u.username, 'position': u.position}
                    for u in users
                ],
                is_active=is_active,
            ))
        return self.run(_record)

    def update_room_analytics(self, room_id, now):
        """Refresh today's aggregate row for a room."""
        return self.run(self._update_room_analytics, room_id, to_storage_time(now))

    def _update_room_analytics(self, db, room_id, now):
        day_start = datetime(now.year, now.month, now.day)
        day_end = day_start + timedelta(days=1)
        in_day = (
            RoomSession.room_id == room_id,
            RoomSession.joined_at >= day_start,
            RoomSession.joined_at < day_end,
        )

        total, unique = db.query(
            func.count(RoomSession.session_id),
            func.count(func.distinct(RoomSession.user_id)),
        ).filter(*in_day).one()
        avg_duration = db.query(func.avg(RoomSession.duration_seconds)).filter(
            *in_day, RoomSession.duration_seconds.isnot(None),
        ).scalar()
        concurrent = db.query(func.count(RoomSession.session_id)).filter(
            RoomSession.room_id == room_id,
            RoomSession.is_currently_active.is_(True),
        ).scalar() or 0

        row = db.query(RoomAnalytics).filter(
            RoomAnalytics.room_id == room_id,
            RoomAnalytics.date == day_start.date(),
        ).one_or_none()
        if row is None:
            row = RoomAnalytics(room_id=room_id, date=day_start.date(), peak_concurrent_users=0)
            db.add(row)
        row.total_sessions = total or 0
        row.unique_participants = unique or 0
        row.avg_session_duration_seconds = float(avg_duration or 0.0)
        row.peak_concurrent_users = max(row.peak_concurrent_users or 0, concurrent)
        return row.total_sessions

    # -----------------------------------------------------------------------
    # Maintenance
    # -----------------------------------------------------------------------

    def clean_old_data(self, days, now=None):
        """Delete activity log entries and room snapshots older than ``days``."""
        cutoff = to_storage_time(now or utc_now()) - timedelta(days=days)

        def _clean(db):
            activity = db.query(ActivityLogEntry).filter(
                ActivityLogEntry.activity_time < cutoff,
            ).delete(synchronize_session=False)
            snapshots = db.query(RoomSnapshot).filter(
                RoomSnapshot.snapshot_time < cutoff,
            ).delete(synchronize_session=False)
            return {'activity_log': activity, 'room_snapshots': snapshots}

        counts = self.run(_clean)
        if counts['activity_log'] or counts['room_snapshots']:
            log.info(
                f"[TrackerStore] Pruned {counts['activity_log']} activity entries, "
                f"{counts['room_snapshots']} snapshots older than {days}d"
            )
        return counts


def _profile_from_row(user):
    return UserProfile(
        user_id=user.user_id,
        username=user.username or '',
        user_avatar=user.user_avatar,
        is_verified=bool(user.is_verified),
        followers_count=user.followers_count or 0,
        following_count=user.following_count or 0,
        friends_count=user.friends_count or 0,
        supporter_level=user.supporter_level or 0,
        first_seen=user.first_seen,
        last_seen=user.last_seen,
    )


def _close_session(db, session, now):
    left_at = now
    if left_at < session.joined_at:
        log.warning(
            f"[TrackerStore] Clock anomaly closing session {session.session_id} "
            f"({session.user_id} in {session.room_id}): left_at {left_at} < joined_at "
            f"{session.joined_at}, clamping to zero duration"
        )
        left_at = session.joined_at

    duration = int((left_at - session.joined_at).total_seconds())
    session.left_at = left_at
    session.duration_seconds = duration
    session.is_currently_active = False

    db.query(User).filter(User.user_id == session.user_id).update({
        User.total_duration_seconds: func.coalesce(User.total_duration_seconds, 0) + duration,
    }, synchronize_session=False)

    db.add(ActivityLogEntry(
        user_id=session.user_id,
        activity_type='room_leave',
        activity_data={'room_id': session.room_id, 'session_id': session.session_id, 'duration_seconds': duration},
        activity_time=left_at,
    ))
    return duration


def _refresh_room_occupancy(db, room_id, now):
    room = db.get(Room, room_id)
    if room is None:
        return
    db.flush()
    count = db.query(func.count(RoomSession.session_id)).filter(
        RoomSession.room_id == room_id,
        RoomSession.is_currently_active.is_(True),
    ).scalar() or 0
    room.current_users_count = count
    room.is_empty = count == 0
    capacity = room.max_capacity if room.max_capacity is not None else -1
    room.is_full = capacity > 0 and count >= capacity
    room.last_activity = now
