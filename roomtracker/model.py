"""ORM models - users, rooms, sessions and derived history tables."""

from sqlalchemy import (
    JSON, BigInteger, Boolean, Column, Date, DateTime, Float, ForeignKey, Index, Integer,
    String, Text, UniqueConstraint,
)
from sqlalchemy.orm import declarative_base

TrackerBase = declarative_base()


class User(TrackerBase):
    """A platform user. Mutated only through the profile merge policy."""
    __tablename__ = 'users'

    user_id = Column(String(50), primary_key=True)
    username = Column(String(100), nullable=False)
    user_avatar = Column(Text, nullable=True)
    is_verified = Column(Boolean, default=False)

    followers_count = Column(Integer, default=0)
    following_count = Column(Integer, default=0)
    friends_count = Column(Integer, default=0)
    supporter_level = Column(Integer, default=0)

    first_seen = Column(DateTime, nullable=False)
    last_seen = Column(DateTime, nullable=False, index=True)

    total_sessions = Column(Integer, default=0)
    total_duration_seconds = Column(BigInteger, default=0)


class Room(TrackerBase):
    """A room as last observed on the platform."""
    __tablename__ = 'rooms'

    room_id = Column(String(100), primary_key=True)
    topic = Column(String(500), default='Anything')
    language = Column(String(50), nullable=False, default='Unknown', index=True)
    second_language = Column(String(50), nullable=True)
    skill_level = Column(String(50), default='Any Level')

    max_capacity = Column(Integer, default=-1)
    is_locked = Column(Boolean, default=False)
    mic_allowed = Column(Boolean, default=True)
    url = Column(Text, nullable=True)

    # Weak reference: the creator may never have been observed in a room.
    creator_user_id = Column(String(50), nullable=True, index=True)
    creator_name = Column(String(100), nullable=True)
    creator_avatar = Column(Text, nullable=True)
    creator_is_verified = Column(Boolean, default=False)

    current_users_count = Column(Integer, default=0)
    is_active = Column(Boolean, default=True, index=True)
    is_full = Column(Boolean, default=False)
    is_empty = Column(Boolean, default=True)

    first_seen = Column(DateTime, nullable=False)
    last_activity = Column(DateTime, nullable=False, index=True)


class RoomSession(TrackerBase):
    """One continuous presence interval of a user in a room."""
    __tablename__ = 'sessions'

    session_id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(String(50), ForeignKey('users.user_id'), nullable=False, index=True)
    room_id = Column(String(100), ForeignKey('rooms.room_id'), nullable=False, index=True)

    joined_at = Column(DateTime, nullable=False, index=True)
    left_at = Column(DateTime, nullable=True)
    duration_seconds = Column(Integer, nullable=True)
    user_position = Column(Integer, nullable=True)
    is_currently_active = Column(Boolean, default=True, index=True)

    __table_args__ = (
        Index('ix_sessions_room_open', 'room_id', 'is_currently_active'),
        Index('ix_sessions_user_room', 'user_id', 'room_id'),
    )


class ActivityLogEntry(TrackerBase):
    """Append-only audit record of profile changes and joins/leaves."""
    __tablename__ = 'user_activity_log'

    log_id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(String(50), nullable=False, index=True)
    activity_type = Column(String(50), nullable=False, index=True)
    activity_data = Column(JSON, nullable=True)
    activity_time = Column(DateTime, nullable=False, index=True)


class RoomSnapshot(TrackerBase):
    """Occupancy of a room as captured by one sweep."""
    __tablename__ = 'room_snapshots'

    snapshot_id = Column(Integer, primary_key=True, autoincrement=True)
    room_id = Column(String(100), nullable=False, index=True)
    snapshot_time = Column(DateTime, nullable=False, index=True)
    participants_count = Column(Integer, default=0)
    participants_json = Column(JSON, nullable=True)
    is_active = Column(Boolean, default=True)


class RoomAnalytics(TrackerBase):
    """Daily per-room aggregates, refreshed after each reconciliation."""
    __tablename__ = 'room_analytics'

    analytics_id = Column(Integer, primary_key=True, autoincrement=True)
    room_id = Column(String(100), nullable=False, index=True)
    date = Column(Date, nullable=False)

    total_sessions = Column(Integer, default=0)
    unique_participants = Column(Integer, default=0)
    avg_session_duration_seconds = Column(Float, default=0.0)
    peak_concurrent_users = Column(Integer, default=0)

    __table_args__ = (
        UniqueConstraint('room_id', 'date', name='uq_room_analytics_room_date'),
    )
