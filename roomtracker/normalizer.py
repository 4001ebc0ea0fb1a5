"""Snapshot normalizer - raw captures to canonical room/user records.

Two capture shapes are known:

    JsonCapture   intercepted sync payload, rooms as a keyed mapping or a list
    HtmlCapture   room card fragments scraped from the web client

Each has its own decoder. Both produce a list of RoomSnapshot records with
duplicate room ids merged last-write-wins. Malformed rooms and users are
skipped and counted in the optional ``counters`` (a collections.Counter),
never raised.
"""

import logging
import re
from collections import Counter
from dataclasses import dataclass, field
from typing import Optional

from .dom import parse_html

log = logging.getLogger('roomtracker')

TOPIC_MAX_LENGTH = 500
_COUNT_RE = re.compile(r'(\d+(?:\.\d+)?)\s*([kKmM](?![a-zA-Z]))?')
_SUFFIX_MULTIPLIER = {'k': 1_000, 'm': 1_000_000}


@dataclass
class UserObservation:
    """One user as seen in one room. ``None`` means the capture did not carry the field."""
    user_id: str
    username: Optional[str] = None
    user_avatar: Optional[str] = None
    is_verified: Optional[bool] = None
    followers_count: Optional[int] = None
    following_count: Optional[int] = None
    friends_count: Optional[int] = None
    supporter_level: object = None
    position: Optional[int] = None


@dataclass
class RoomSnapshot:
    room_id: str
    attributes: dict = field(default_factory=dict)
    present_users: list = field(default_factory=list)

    @property
    def user_ids(self):
        return {u.user_id for u in self.present_users}


@dataclass(frozen=True)
class DomSelectors:
    """Class names of the web client's room card markup."""
    room_item: str = 'group-item'
    room_id_prefix: str = 'group-'
    language: str = 'sc-kvZOFW'
    skill_level: str = 'sc-hqyNC'
    topic_container: str = 'sc-jbKcbu'
    topic: str = 'notranslate'
    client_item: str = 'client-item'
    followers: str = 'followers-btn'
    empty_marker: str = 'blind'


@dataclass(frozen=True)
class JsonCapture:
    payload: object
    complete: bool = True


@dataclass(frozen=True)
class HtmlCapture:
    """Room card fragments: markup strings or ``{'id': ..., 'html': ...}`` dicts."""
    fragments: tuple
    complete: bool = True
    selectors: DomSelectors = DomSelectors()


def slugify_username(name):
    """Fallback user id for captures without a stable platform id."""
    return re.sub(r'[^a-z0-9]', '-', name.lower())


def normalize_skill_level(level):
    if not level or not isinstance(level, str):
        return 'Any Level'
    lower = level.lower().strip()
    if 'beginner' in lower:
        return 'Beginner'
    if 'upper intermediate' in lower:
        return 'Advanced'
    if 'intermediate' in lower:
        return 'Intermediate'
    if 'advanced' in lower:
        return 'Advanced'
    return 'Any Level'


def parse_count(value):
    """Parse a platform counter (int, float or text like '1.2k followers'). None if unreadable."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return int(value) if value >= 0 else None
    if isinstance(value, str):
        match = _COUNT_RE.search(value.replace(',', ''))
        if not match:
            return None
        number = float(match.group(1))
        suffix = (match.group(2) or '').lower()
        return int(number * _SUFFIX_MULTIPLIER.get(suffix, 1))
    return None


def normalize(capture, counters=None):
    """Decode one capture into a list of RoomSnapshot records."""
    if counters is None:
        counters = Counter()
    if isinstance(capture, JsonCapture):
        entries = _decode_json(capture.payload, counters)
    elif isinstance(capture, HtmlCapture):
        entries = _decode_html(capture.fragments, capture.selectors, counters)
    else:
        raise TypeError(f"Unsupported capture type: {type(capture).__name__}")

    merged = {}
    for room_id, attributes, users in entries:
        slot = merged.get(room_id)
        if slot is None:
            slot = merged[room_id] = {'attributes': {}, 'users': None}
        else:
            counters['rooms_duplicated'] += 1
        slot['attributes'].update(attributes)
        if users is not None:
            slot['users'] = users

    snapshots = [
        RoomSnapshot(room_id=room_id, attributes=slot['attributes'], present_users=slot['users'] or [])
        for room_id, slot in merged.items()
    ]
    counters['rooms_parsed'] += len(snapshots)
    return snapshots


def _dedupe_users(users):
    by_id = {}
    for user in users:
        by_id[user.user_id] = user
    return list(by_id.values())


# ---------------------------------------------------------------------------
# JSON payloads
# ---------------------------------------------------------------------------

def _decode_json(payload, counters):
    if isinstance(payload, dict) and isinstance(payload.get('data'), (dict, list)):
        payload = payload['data']

    if isinstance(payload, dict):
        items = list(payload.items())
    elif isinstance(payload, list):
        items = [(None, entry) for entry in payload]
    else:
        log.warning(f"[Normalizer] Unrecognized payload type: {type(payload).__name__}")
        counters['payloads_unrecognized'] += 1
        return []

    entries = []
    for key, entry in items:
        try:
            entries.append(_json_room(key, entry, counters))
        except (TypeError, ValueError, AttributeError, KeyError) as e:
            log.debug(f"[Normalizer] Skipping room {key!r}: {e}")
            counters['rooms_skipped'] += 1
    return entries


def _json_room(key, entry, counters):
    if not isinstance(entry, dict):
        raise TypeError(f"room entry is {type(entry).__name__}")

    raw_id = entry.get('id') or entry.get('groupId') or entry.get('_id') or key
    if raw_id is None or str(raw_id).strip() == '':
        raise ValueError("room entry has no id")
    room_id = str(raw_id)

    attrs = {}
    if entry.get('topic') is not None:
        attrs['topic'] = str(entry['topic'])[:TOPIC_MAX_LENGTH]
    if entry.get('language'):
        attrs['language'] = str(entry['language'])
    if entry.get('secondLanguage'):
        attrs['second_language'] = str(entry['secondLanguage'])
    if 'level' in entry:
        attrs['skill_level'] = normalize_skill_level(entry['level'])
    if entry.get('maxPeople') is not None:
        capacity = int(entry['maxPeople'])
        attrs['max_capacity'] = capacity if capacity > 0 else -1
    if entry.get('url'):
        attrs['url'] = str(entry['url'])

    settings = entry.get('settings')
    if isinstance(settings, dict):
        attrs['is_locked'] = bool(settings.get('isLocked'))
        attrs['mic_allowed'] = not settings.get('noMic')

    creator = entry.get('creator')
    if isinstance(creator, dict) and creator.get('id') is not None:
        attrs['creator_user_id'] = str(creator['id'])
        attrs['creator_name'] = creator.get('name')
        attrs['creator_avatar'] = creator.get('avatar')
        attrs['creator_is_verified'] = bool(creator.get('isVerified'))
    elif entry.get('userId') is not None:
        attrs['creator_user_id'] = str(entry['userId'])

    users = None
    clients = entry.get('clients')
    if clients is not None:
        if not isinstance(clients, list):
            raise TypeError("clients is not a list")
        users = []
        for position, client in enumerate(clients, start=1):
            try:
                users.append(_json_user(client, position))
            except (TypeError, ValueError, AttributeError) as e:
                log.debug(f"[Normalizer] Skipping user in room {room_id}: {e}")
                counters['users_skipped'] += 1
        users = _dedupe_users(users)

    return room_id, attrs, users


def _json_user(client, position):
    if not isinstance(client, dict):
        raise TypeError(f"client entry is {type(client).__name__}")

    name = client.get('name') or client.get('username')
    if client.get('id') not in (None, ''):
        user_id = str(client['id'])
    elif name:
        user_id = slugify_username(str(name))
    else:
        raise ValueError("client has neither id nor name")

    return UserObservation(
        user_id=user_id,
        username=str(name) if name else None,
        user_avatar=client.get('avatar') or None,
        is_verified=bool(client['isVerified']) if 'isVerified' in client else None,
        followers_count=parse_count(client.get('followers')),
        following_count=parse_count(client.get('following')),
        friends_count=parse_count(client.get('friends')),
        supporter_level=client.get('supporter'),
        position=position,
    )


# ---------------------------------------------------------------------------
# DOM fragments
# ---------------------------------------------------------------------------

def _decode_html(fragments, selectors, counters):
    entries = []
    for fragment in fragments:
        try:
            entry = _html_room(fragment, selectors, counters)
        except (TypeError, ValueError, AttributeError, KeyError) as e:
            log.debug(f"[Normalizer] Skipping room fragment: {e}")
            counters['rooms_skipped'] += 1
            continue
        if entry is not None:
            entries.append(entry)
    return entries


def _html_room(fragment, selectors, counters):
    known_id = None
    if isinstance(fragment, dict):
        known_id = fragment.get('id')
        markup = fragment['html']
    else:
        markup = fragment
    if not isinstance(markup, str):
        raise TypeError("fragment markup is not a string")

    root = parse_html(markup)
    room_el = root.find(cls=selectors.room_item) or root
    if 'fake' in room_el.classes:
        counters['rooms_placeholder'] += 1
        return None

    room_id = str(known_id) if known_id else None
    if room_id is None:
        id_el = room_el.find_id_prefix(selectors.room_id_prefix)
        if id_el is not None:
            room_id = id_el.get('id')[len(selectors.room_id_prefix):]
    if not room_id:
        raise ValueError("room fragment has no id")
    if 'fake' in room_id:
        counters['rooms_placeholder'] += 1
        return None

    attrs = {}
    language_el = room_el.find(cls=selectors.language)
    if language_el is not None and language_el.text():
        attrs['language'] = language_el.text()
    level_el = room_el.find(cls=selectors.skill_level)
    if level_el is not None:
        attrs['skill_level'] = normalize_skill_level(level_el.text())
    topic_container = room_el.find(cls=selectors.topic_container)
    if topic_container is not None:
        topic_el = topic_container.find(cls=selectors.topic) or topic_container
        if topic_el.text():
            attrs['topic'] = topic_el.text()[:TOPIC_MAX_LENGTH]

    users = []
    for position, client_el in enumerate(room_el.find_all(cls=selectors.client_item), start=1):
        user = _html_user(client_el, position, selectors)
        if user is None:
            continue
        users.append(user)

    return room_id, attrs, _dedupe_users(users)


def _html_user(client_el, position, selectors):
    marker = client_el.find(cls=selectors.empty_marker)
    if marker is not None and 'Empty Slot' in marker.text():
        return None
    if any('disabled' in button.attrs for button in client_el.find_all(tag='button')):
        return None

    labelled = client_el.find(tag='button', attr='aria-label')
    username = labelled.get('aria-label').strip() if labelled is not None else ''
    if not username or username == 'Empty Slot':
        return None

    followers_el = client_el.find(cls=selectors.followers)
    followers = parse_count(followers_el.text()) if followers_el is not None else None

    return UserObservation(
        user_id=slugify_username(username),
        username=username,
        followers_count=followers,
        position=position,
    )
