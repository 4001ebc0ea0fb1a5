"""Functional tests for the profile merge policy."""

from datetime import datetime, timedelta

import pytest

from roomtracker.merge import UserProfile, clamp_supporter_level, merge_counter, merge_profile
from roomtracker.normalizer import UserObservation

T0 = datetime(2024, 3, 1, 12, 0, 0)


def _stored(**overrides):
    values = dict(
        user_id="u1", username="Anna", user_avatar="a.png", is_verified=False,
        followers_count=50, following_count=10, friends_count=3, supporter_level=1,
        first_seen=T0, last_seen=T0,
    )
    values.update(overrides)
    return UserProfile(**values)


# ---------------------------------------------------------------------------
# New users
# ---------------------------------------------------------------------------

class TestNewUser:
    def test_observation_taken_verbatim(self):
        """First sighting copies the observation, missing counters become 0."""
        obs = UserObservation(user_id="u1", username="Anna", followers_count=7, supporter_level=3)
        result = merge_profile(None, obs, T0)
        assert result.is_new
        assert result.profile.username == "Anna"
        assert result.profile.followers_count == 7
        assert result.profile.following_count == 0
        assert result.profile.supporter_level == 3
        assert result.profile.first_seen == T0
        assert result.profile.last_seen == T0

    def test_new_user_reports_no_changes(self):
        """No profile_update entry for a brand-new user."""
        result = merge_profile(None, UserObservation(user_id="u1", followers_count=7), T0)
        assert not result.changed

    def test_missing_username_uses_id(self):
        """Username is required in storage; the id stands in."""
        result = merge_profile(None, UserObservation(user_id="u1"), T0)
        assert result.profile.username == "u1"


# ---------------------------------------------------------------------------
# Counters
# ---------------------------------------------------------------------------

class TestCounters:
    def test_zero_never_overwrites_positive(self):
        """An observed zero keeps the stored positive counter."""
        assert merge_counter(50, 0) == 50
        assert merge_counter(50, None) == 50

    def test_zero_over_zero(self):
        """Zero stays zero."""
        assert merge_counter(0, 0) == 0

    def test_positive_observation_adopted(self):
        """Any non-zero observation wins, including decreases."""
        assert merge_counter(50, 40) == 40
        assert merge_counter(0, 5) == 5

    def test_zero_suppression_idempotent(self):
        """Two zero observations in a row leave followers at 50."""
        zero = UserObservation(user_id="u1", followers_count=0)
        once = merge_profile(_stored(), zero, T0 + timedelta(minutes=1))
        twice = merge_profile(once.profile, zero, T0 + timedelta(minutes=2))
        assert once.profile.followers_count == 50
        assert twice.profile.followers_count == 50

    def test_suppressed_zero_is_not_a_change(self):
        """A suppressed zero produces no change entry."""
        result = merge_profile(_stored(), UserObservation(user_id="u1", followers_count=0), T0)
        assert "followers_count" not in result.changes
        assert not result.changed

    def test_change_records_old_new_diff(self):
        """Changed counters report old, new and diff."""
        result = merge_profile(_stored(), UserObservation(user_id="u1", followers_count=65), T0)
        assert result.changes["followers_count"] == {"old": 50, "new": 65, "diff": 15}


# ---------------------------------------------------------------------------
# Supporter tier and identity fields
# ---------------------------------------------------------------------------

class TestSupporterAndIdentity:
    @pytest.mark.parametrize("value,expected", [
        (0, 0), (10, 10), ("4", 4), (11, 0), (-1, 0), ("gold", 0), (None, 0), (True, 0),
    ])
    def test_clamp(self, value, expected):
        """Tier stays in [0, 10]; anything else is 0."""
        assert clamp_supporter_level(value) == expected

    def test_missing_supporter_keeps_stored(self):
        """No supporter field in the observation keeps the stored tier."""
        result = merge_profile(_stored(supporter_level=4), UserObservation(user_id="u1"), T0)
        assert result.profile.supporter_level == 4

    def test_out_of_range_supporter_coerced(self):
        """An out-of-range tier is stored as 0."""
        result = merge_profile(_stored(supporter_level=4), UserObservation(user_id="u1", supporter_level=99), T0)
        assert result.profile.supporter_level == 0
        assert result.changes["supporter_level"]["diff"] == -4

    def test_identity_adopted_when_present(self):
        """Non-empty identity fields replace stored ones."""
        obs = UserObservation(user_id="u1", username="Anna B", user_avatar="b.png", is_verified=True)
        result = merge_profile(_stored(), obs, T0)
        assert result.profile.username == "Anna B"
        assert result.profile.user_avatar == "b.png"
        assert result.profile.is_verified is True
        assert set(result.changes) == {"username", "user_avatar", "is_verified"}

    def test_empty_identity_retained(self):
        """Blank or missing identity fields keep stored values."""
        result = merge_profile(_stored(), UserObservation(user_id="u1", username="  ", user_avatar=""), T0)
        assert result.profile.username == "Anna"
        assert result.profile.user_avatar == "a.png"


# ---------------------------------------------------------------------------
# Timestamps
# ---------------------------------------------------------------------------

class TestTimestamps:
    def test_first_seen_fixed_last_seen_advances(self):
        """first_seen never changes; last_seen moves to the observation time."""
        later = T0 + timedelta(hours=1)
        result = merge_profile(_stored(), UserObservation(user_id="u1"), later)
        assert result.profile.first_seen == T0
        assert result.profile.last_seen == later

    def test_last_seen_never_goes_back(self):
        """An older observation time leaves last_seen alone."""
        stored = _stored(last_seen=T0 + timedelta(hours=2))
        result = merge_profile(stored, UserObservation(user_id="u1"), T0 + timedelta(hours=1))
        assert result.profile.last_seen == T0 + timedelta(hours=2)

    def test_timestamps_not_reported_as_changes(self):
        """Timestamp movement alone is not a change."""
        result = merge_profile(_stored(), UserObservation(user_id="u1"), T0 + timedelta(days=1))
        assert not result.changed
