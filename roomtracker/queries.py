"""Reporting queries over the store. All functions return JSON-ready dicts/lists."""

from datetime import timedelta

from sqlalchemy import func, or_

from .model import Room, RoomSession, User
from .store import as_utc, to_storage_time, utc_now


def _iso(value):
    value = as_utc(value)
    return value.isoformat() if value is not None else None


def _normalize_limit(limit, default_limit=50, max_limit=500):
    try:
        safe_limit = int(limit)
    except (TypeError, ValueError):
        safe_limit = default_limit
    if safe_limit <= 0:
        safe_limit = default_limit
    return min(safe_limit, max_limit)


def _room_dict(room):
    return {
        'room_id': room.room_id,
        'topic': room.topic,
        'language': room.language,
        'second_language': room.second_language,
        'skill_level': room.skill_level,
        'max_capacity': room.max_capacity,
        'is_locked': bool(room.is_locked),
        'mic_allowed': bool(room.mic_allowed),
        'url': room.url,
        'creator_user_id': room.creator_user_id,
        'creator_name': room.creator_name,
        'current_users_count': room.current_users_count or 0,
        'is_active': bool(room.is_active),
        'is_full': bool(room.is_full),
        'first_seen': _iso(room.first_seen),
        'last_activity': _iso(room.last_activity),
    }


def _user_dict(user):
    return {
        'user_id': user.user_id,
        'username': user.username,
        'user_avatar': user.user_avatar,
        'is_verified': bool(user.is_verified),
        'followers_count': user.followers_count or 0,
        'following_count': user.following_count or 0,
        'friends_count': user.friends_count or 0,
        'supporter_level': user.supporter_level or 0,
        'first_seen': _iso(user.first_seen),
        'last_seen': _iso(user.last_seen),
        'total_sessions': user.total_sessions or 0,
        'total_duration_seconds': user.total_duration_seconds or 0,
    }


def get_stats(store):
    def _stats(db):
        return {
            'total_users': db.query(func.count(User.user_id)).scalar() or 0,
            'total_rooms': db.query(func.count(Room.room_id)).scalar() or 0,
            'active_rooms': db.query(func.count(Room.room_id)).filter(Room.is_active.is_(True)).scalar() or 0,
            'active_sessions': db.query(func.count(RoomSession.session_id)).filter(
                RoomSession.is_currently_active.is_(True)).scalar() or 0,
            'total_sessions': db.query(func.count(RoomSession.session_id)).scalar() or 0,
        }
    return store.run(_stats)


def active_rooms(store, language=None, limit=100):
    limit = _normalize_limit(limit, default_limit=100, max_limit=1000)

    def _rooms(db):
        query = db.query(Room).filter(Room.is_active.is_(True))
        if language:
            query = query.filter(func.lower(Room.language) == language.lower())
        rows = query.order_by(Room.current_users_count.desc(), Room.last_activity.desc()).limit(limit).all()
        return [_room_dict(r) for r in rows]
    return store.run(_rooms)


def room_active_users(store, room_id, now=None):
    """Users with an open session in a room, longest-present first."""
    now = to_storage_time(now or utc_now())

    def _users(db):
        rows = (
            db.query(RoomSession, User)
            .join(User, User.user_id == RoomSession.user_id)
            .filter(RoomSession.room_id == room_id, RoomSession.is_currently_active.is_(True))
            .order_by(RoomSession.joined_at.asc())
            .all()
        )
        return [
            {
                'user_id': user.user_id,
                'username': user.username,
                'user_avatar': user.user_avatar,
                'is_verified': bool(user.is_verified),
                'followers_count': user.followers_count or 0,
                'joined_at': _iso(session.joined_at),
                'duration_seconds': max(0, int((now - session.joined_at).total_seconds())),
                'position': session.user_position,
            }
            for session, user in rows
        ]
    return store.run(_users)


def user_sessions(store, user_id, limit=100):
    """A user's raw session history, newest first."""
    limit = _normalize_limit(limit, default_limit=100, max_limit=1000)

    def _sessions(db):
        rows = (
            db.query(RoomSession, Room)
            .outerjoin(Room, Room.room_id == RoomSession.room_id)
            .filter(RoomSession.user_id == user_id)
            .order_by(RoomSession.joined_at.desc())
            .limit(limit)
            .all()
        )
        return [
            {
                'session_id': session.session_id,
                'room_id': session.room_id,
                'topic': room.topic if room is not None else None,
                'language': room.language if room is not None else None,
                'joined_at': _iso(session.joined_at),
                'left_at': _iso(session.left_at),
                'duration_seconds': session.duration_seconds,
                'is_currently_active': bool(session.is_currently_active),
            }
            for session, room in rows
        ]
    return store.run(_sessions)


def user_room_history(store, user_id):
    """Per-room aggregate of a user's sessions, most recent first."""
    def _history(db):
        rows = (
            db.query(
                RoomSession.room_id,
                Room.topic,
                Room.language,
                Room.skill_level,
                func.min(RoomSession.joined_at).label('first_join'),
                func.max(RoomSession.left_at).label('last_leave'),
                func.coalesce(func.sum(RoomSession.duration_seconds), 0).label('total_duration'),
                func.count(RoomSession.session_id).label('session_count'),
            )
            .outerjoin(Room, Room.room_id == RoomSession.room_id)
            .filter(RoomSession.user_id == user_id)
            .group_by(RoomSession.room_id, Room.topic, Room.language, Room.skill_level)
            .order_by(func.max(RoomSession.joined_at).desc())
            .all()
        )
        return [
            {
                'room_id': r.room_id,
                'topic': r.topic,
                'language': r.language,
                'skill_level': r.skill_level,
                'first_join': _iso(r.first_join),
                'last_leave': _iso(r.last_leave),
                'total_duration_seconds': int(r.total_duration or 0),
                'session_count': r.session_count,
            }
            for r in rows
        ]
    return store.run(_history)


def room_timeline(store, room_id, user_ids=None):
    """Chronological join and leave events for a room."""
    def _timeline(db):
        query = (
            db.query(RoomSession, User.username)
            .outerjoin(User, User.user_id == RoomSession.user_id)
            .filter(RoomSession.room_id == room_id)
        )
        if user_ids:
            query = query.filter(RoomSession.user_id.in_(list(user_ids)))

        events = []
        for session, username in query.all():
            events.append({
                'event_type': 'join',
                'event_time': as_utc(session.joined_at),
                'session_id': session.session_id,
                'user_id': session.user_id,
                'username': username,
                'duration_seconds': None,
            })
            if session.left_at is not None:
                events.append({
                    'event_type': 'leave',
                    'event_time': as_utc(session.left_at),
                    'session_id': session.session_id,
                    'user_id': session.user_id,
                    'username': username,
                    'duration_seconds': session.duration_seconds,
                })
        events.sort(key=lambda e: (e['event_time'], e['event_type'] == 'join', e['session_id']))
        for event in events:
            event['event_time'] = event['event_time'].isoformat()
        return events
    return store.run(_timeline)


def room_statistics(store, room_id):
    def _room_stats(db):
        total, unique, avg_duration, max_duration, first, last_join, last_leave = db.query(
            func.count(RoomSession.session_id),
            func.count(func.distinct(RoomSession.user_id)),
            func.avg(RoomSession.duration_seconds),
            func.max(RoomSession.duration_seconds),
            func.min(RoomSession.joined_at),
            func.max(RoomSession.joined_at),
            func.max(RoomSession.left_at),
        ).filter(RoomSession.room_id == room_id).one()
        open_count = db.query(func.count(RoomSession.session_id)).filter(
            RoomSession.room_id == room_id, RoomSession.is_currently_active.is_(True),
        ).scalar() or 0
        last_activity = max([t for t in (last_join, last_leave) if t is not None], default=None)
        return {
            'room_id': room_id,
            'total_sessions': total or 0,
            'unique_participants': unique or 0,
            'avg_duration_seconds': float(avg_duration) if avg_duration is not None else None,
            'max_duration_seconds': max_duration,
            'first_activity': _iso(first),
            'last_activity': _iso(last_activity),
            'current_users': open_count,
            'is_currently_active': open_count > 0,
        }
    return store.run(_room_stats)


def user_statistics(store, user_id):
    """Aggregate profile of a user, or None if never seen."""
    def _favorite(db, column):
        row = (
            db.query(column, func.count(RoomSession.session_id).label('n'))
            .join(Room, Room.room_id == RoomSession.room_id)
            .filter(RoomSession.user_id == user_id)
            .group_by(column)
            .order_by(func.count(RoomSession.session_id).desc())
            .first()
        )
        return row[0] if row else None

    def _user_stats(db):
        user = db.get(User, user_id)
        if user is None:
            return None
        rooms, sessions, avg_duration = db.query(
            func.count(func.distinct(RoomSession.room_id)),
            func.count(RoomSession.session_id),
            func.avg(RoomSession.duration_seconds),
        ).filter(RoomSession.user_id == user_id).one()
        open_rooms = [
            r[0] for r in db.query(RoomSession.room_id).filter(
                RoomSession.user_id == user_id, RoomSession.is_currently_active.is_(True),
            ).all()
        ]
        stats = _user_dict(user)
        stats.update({
            'total_rooms': rooms or 0,
            'session_rows': sessions or 0,
            'avg_session_duration_seconds': float(avg_duration) if avg_duration is not None else None,
            'favorite_language': _favorite(db, Room.language),
            'favorite_skill_level': _favorite(db, Room.skill_level),
            'current_rooms': open_rooms,
            'is_currently_active': bool(open_rooms),
        })
        return stats
    return store.run(_user_stats)


def trending_rooms(store, hours=24, limit=10, now=None):
    """Rooms with the most sessions started in the last ``hours``."""
    limit = _normalize_limit(limit, default_limit=10, max_limit=100)
    since = to_storage_time(now or utc_now()) - timedelta(hours=hours)

    def _trending(db):
        session_count = func.count(RoomSession.session_id)
        participant_count = func.count(func.distinct(RoomSession.user_id))
        rows = (
            db.query(Room, session_count.label('session_count'), participant_count.label('participant_count'))
            .join(RoomSession, RoomSession.room_id == Room.room_id)
            .filter(RoomSession.joined_at >= since)
            .group_by(Room.room_id)
            .order_by(session_count.desc(), participant_count.desc())
            .limit(limit)
            .all()
        )
        result = []
        for room, sessions, participants in rows:
            entry = _room_dict(room)
            entry['session_count'] = sessions
            entry['participant_count'] = participants
            result.append(entry)
        return result
    return store.run(_trending)


def search_users(store, query, limit=20):
    """Case-insensitive username substring search, most followed first."""
    limit = _normalize_limit(limit, default_limit=20, max_limit=200)
    needle = (query or '').strip().lower()
    if not needle:
        return []
    pattern = '%' + needle.replace('\\', '\\\\').replace('%', '\\%').replace('_', '\\_') + '%'

    def _search(db):
        rows = (
            db.query(User)
            .filter(or_(
                func.lower(User.username).like(pattern, escape='\\'),
                func.lower(User.user_id).like(pattern, escape='\\'),
            ))
            .order_by(User.followers_count.desc(), User.username.asc())
            .limit(limit)
            .all()
        )
        return [_user_dict(u) for u in rows]
    return store.run(_search)


def shared_rooms(store, user_a, user_b):
    """Rooms where two users had overlapping closed sessions."""
    def _closed(db, user_id):
        return db.query(RoomSession).filter(
            RoomSession.user_id == user_id,
            RoomSession.left_at.isnot(None),
        ).all()

    def _shared(db):
        by_room = {}
        for session in _closed(db, user_b):
            by_room.setdefault(session.room_id, []).append(session)

        together = {}
        for mine in _closed(db, user_a):
            for theirs in by_room.get(mine.room_id, ()):
                if mine.joined_at < theirs.left_at and theirs.joined_at < mine.left_at:
                    count, last = together.get(mine.room_id, (0, None))
                    start = max(mine.joined_at, theirs.joined_at)
                    together[mine.room_id] = (count + 1, start if last is None else max(last, start))
        if not together:
            return []

        topics = dict(db.query(Room.room_id, Room.topic).filter(Room.room_id.in_(list(together))).all())
        result = [
            {
                'room_id': room_id,
                'topic': topics.get(room_id),
                'were_together_count': count,
                'last_together': _iso(last),
            }
            for room_id, (count, last) in together.items()
        ]
        result.sort(key=lambda r: (-r['were_together_count'], r['room_id']))
        return result
    return store.run(_shared)
