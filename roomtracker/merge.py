"""Profile merge policy - decides persisted user values from an untrusted observation.

Pure functions only. The store loads the current profile, calls
``merge_profile`` and writes the result back inside one transaction.
"""

from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Optional

COUNTER_FIELDS = ('followers_count', 'following_count', 'friends_count')
IDENTITY_FIELDS = ('username', 'user_avatar', 'is_verified')
SUPPORTER_MIN = 0
SUPPORTER_MAX = 10


@dataclass
class UserProfile:
    user_id: str
    username: str = ''
    user_avatar: Optional[str] = None
    is_verified: bool = False
    followers_count: int = 0
    following_count: int = 0
    friends_count: int = 0
    supporter_level: int = 0
    first_seen: Optional[datetime] = None
    last_seen: Optional[datetime] = None


@dataclass
class MergeResult:
    profile: UserProfile
    is_new: bool = False
    changes: dict = field(default_factory=dict)

    @property
    def changed(self):
        return bool(self.changes)


def clamp_supporter_level(value):
    """Supporter tier in [0, 10]; anything out of range or non-numeric becomes 0."""
    if isinstance(value, bool):
        return 0
    try:
        level = int(value)
    except (TypeError, ValueError):
        return 0
    if level < SUPPORTER_MIN or level > SUPPORTER_MAX:
        return 0
    return level


def _has_value(value):
    if value is None:
        return False
    if isinstance(value, str) and not value.strip():
        return False
    return True


def merge_counter(stored_value, observed_value):
    """A zero (or missing) observation never overwrites a positive stored counter."""
    observed_value = observed_value or 0
    if observed_value == 0 and (stored_value or 0) > 0:
        return stored_value
    return observed_value


def merge_profile(stored, observed, now):
    """Merge an observation into the stored profile (None for a first sighting).

    Returns a MergeResult whose ``changes`` maps each changed field to
    ``{'old', 'new', 'diff'}``. Timestamps are not reported as changes, and
    a brand-new user never reports changes.
    """
    if stored is None:
        profile = UserProfile(
            user_id=observed.user_id,
            username=observed.username or observed.user_id,
            user_avatar=observed.user_avatar if _has_value(observed.user_avatar) else None,
            is_verified=bool(observed.is_verified),
            followers_count=observed.followers_count or 0,
            following_count=observed.following_count or 0,
            friends_count=observed.friends_count or 0,
            supporter_level=clamp_supporter_level(observed.supporter_level),
            first_seen=now,
            last_seen=now,
        )
        return MergeResult(profile=profile, is_new=True)

    updates = {}
    for name in IDENTITY_FIELDS:
        value = getattr(observed, name)
        if _has_value(value):
            updates[name] = value
    for name in COUNTER_FIELDS:
        updates[name] = merge_counter(getattr(stored, name), getattr(observed, name))
    if observed.supporter_level is not None:
        updates['supporter_level'] = clamp_supporter_level(observed.supporter_level)

    changes = {}
    for name, new_value in updates.items():
        old_value = getattr(stored, name)
        if old_value == new_value:
            continue
        diff = None
        if name in COUNTER_FIELDS or name == 'supporter_level':
            diff = (new_value or 0) - (old_value or 0)
        changes[name] = {'old': old_value, 'new': new_value, 'diff': diff}

    profile = replace(
        stored,
        first_seen=stored.first_seen or now,
        last_seen=max(stored.last_seen, now) if stored.last_seen else now,
        **updates,
    )
    return MergeResult(profile=profile, changes=changes)
