"""
Unit tests for quiet-hours deferral.
"""

from datetime import datetime

from backend.src.schemas.notifications import PreferenceSnapshot
from backend.src.services.quiet_hours import QuietHoursResolver, defer_past_quiet_hours
from backend.src.utils.time_utils import is_within_window


def _prefs(**overrides):
    return PreferenceSnapshot(**overrides)


class TestDeferPastQuietHours:
    """Tests for defer_past_quiet_hours with UTC preferences."""

    def test_late_evening_rolls_to_next_morning(self):
        """Should defer 23:30 to 08:00 the next day for a 22:00-08:00 window."""
        result = defer_past_quiet_hours(datetime(2026, 3, 10, 23, 30), _prefs())
        assert result == datetime(2026, 3, 11, 8, 0)

    def test_early_morning_defers_same_day(self):
        """Should defer 05:00 to 08:00 the same day."""
        result = defer_past_quiet_hours(datetime(2026, 3, 10, 5, 0), _prefs())
        assert result == datetime(2026, 3, 10, 8, 0)

    def test_outside_window_unchanged(self):
        """Should return 12:00 unchanged."""
        candidate = datetime(2026, 3, 10, 12, 0, 42)
        assert defer_past_quiet_hours(candidate, _prefs()) == candidate

    def test_same_day_window(self):
        """Should defer 12:00 to 17:00 for a 09:00-17:00 window, leave 20:00."""
        prefs = _prefs(quiet_hours_start="09:00", quiet_hours_end="17:00")
        assert defer_past_quiet_hours(datetime(2026, 3, 10, 12, 0), prefs) == datetime(2026, 3, 10, 17, 0)
        assert defer_past_quiet_hours(datetime(2026, 3, 10, 20, 0), prefs) == datetime(2026, 3, 10, 20, 0)

    def test_disabled_quiet_hours(self):
        """Should never defer when quiet hours are disabled."""
        candidate = datetime(2026, 3, 10, 23, 30)
        assert defer_past_quiet_hours(candidate, _prefs(quiet_hours_enabled=False)) == candidate

    def test_discards_seconds(self):
        """Should return the window end with seconds cleared."""
        result = defer_past_quiet_hours(datetime(2026, 3, 10, 23, 30, 45, 123), _prefs())
        assert result == datetime(2026, 3, 11, 8, 0, 0, 0)

    def test_start_bound_is_inside(self):
        """Should treat the window start itself as quiet."""
        result = defer_past_quiet_hours(datetime(2026, 3, 10, 22, 0), _prefs())
        assert result == datetime(2026, 3, 11, 8, 0)

    def test_deferred_instant_is_the_inclusive_end_bound(self):
        """Should land on the window end, which is still a quiet minute."""
        result = defer_past_quiet_hours(datetime(2026, 3, 10, 23, 30), _prefs())

        minute = result.hour * 60 + result.minute
        assert is_within_window(minute, 22 * 60, 8 * 60)
        assert defer_past_quiet_hours(result, _prefs()) == result


class TestTimezoneAwareQuietHours:
    """Quiet hours evaluated in the owner's local timezone."""

    def test_new_york_evening(self):
        """Should defer 23:30 New York (03:30 UTC, EST) to 08:00 New York next day."""
        prefs = _prefs(timezone="America/New_York")
        # 2026-01-15 04:30 UTC is 23:30 on 2026-01-14 in New York (UTC-5)
        result = defer_past_quiet_hours(datetime(2026, 1, 15, 4, 30), prefs)
        # 08:00 New York on 2026-01-15 is 13:00 UTC
        assert result == datetime(2026, 1, 15, 13, 0)

    def test_new_york_afternoon_unchanged(self):
        """Should leave 17:00 UTC (12:00 New York) alone."""
        prefs = _prefs(timezone="America/New_York")
        candidate = datetime(2026, 1, 15, 17, 0)
        assert defer_past_quiet_hours(candidate, prefs) == candidate

    def test_utc_evening_is_daytime_in_tokyo(self):
        """Should not defer 23:30 UTC for a Tokyo owner (08:30 local)."""
        prefs = _prefs(timezone="Asia/Tokyo")
        candidate = datetime(2026, 3, 10, 23, 30)
        assert defer_past_quiet_hours(candidate, prefs) == candidate


class TestQuietHoursResolver:
    """Tests for QuietHoursResolver with stored preferences."""

    def test_defaults_apply_without_stored_preferences(self, test_db_session):
        """Should use the default 22:00-08:00 window for unknown owners."""
        resolver = QuietHoursResolver(test_db_session)
        result = resolver.resolve_delivery_time("nobody", datetime(2026, 3, 10, 23, 30))
        assert result == datetime(2026, 3, 11, 8, 0)

    def test_uses_stored_window(self, test_db_session, sample_preferences):
        """Should use the owner's stored window."""
        sample_preferences(
            owner_id="user-1",
            quiet_hours_start="13:00",
            quiet_hours_end="14:00",
        )
        resolver = QuietHoursResolver(test_db_session)
        result = resolver.resolve_delivery_time("user-1", datetime(2026, 3, 10, 13, 15))
        assert result == datetime(2026, 3, 10, 14, 0)
