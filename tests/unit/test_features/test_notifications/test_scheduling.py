"""Unit tests for digest delay and quiet-hours resolution."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta

import pytest

from notification_service.features.notifications.preferences import (
    Frequency,
    NotificationPreferences,
    QuietHours,
)
from notification_service.features.notifications.scheduling import (
    is_within_quiet_hours,
    parse_local_minutes,
    resolve_run_after,
)


def _quiet(start: str = "21:00", end: str = "08:00", tz: str = "America/Phoenix", **kwargs):
    return NotificationPreferences(
        quiet_hours=QuietHours(enabled=True, start_local=start, end_local=end, timezone=tz),
        **kwargs,
    )


@pytest.mark.unit
class TestParseLocalMinutes:
    @pytest.mark.parametrize(
        ("value", "expected"),
        [
            ("21:00", 1260),
            ("08:30", 510),
            ("25:99", 1439),
            ("-1:-5", 0),
            (" 7:05", 425),
            ("", 99),
            (None, 99),
            ("noon", 99),
            ("aa:bb", 99),
        ],
    )
    def test_parsing(self, value, expected):
        assert parse_local_minutes(value, 99) == expected


@pytest.mark.unit
class TestQuietWindow:
    def test_same_day_window(self):
        assert is_within_quiet_hours(13 * 60, 12 * 60, 14 * 60)
        assert not is_within_quiet_hours(14 * 60, 12 * 60, 14 * 60)

    def test_wrapping_window(self):
        assert is_within_quiet_hours(23 * 60, 21 * 60, 8 * 60)
        assert is_within_quiet_hours(2 * 60, 21 * 60, 8 * 60)
        assert not is_within_quiet_hours(12 * 60, 21 * 60, 8 * 60)

    def test_equal_bounds_cover_the_whole_day(self):
        assert is_within_quiet_hours(0, 600, 600)
        assert is_within_quiet_hours(1000, 600, 600)


@pytest.mark.unit
class TestResolveRunAfter:
    """Phoenix is UTC-7 all year, which keeps the arithmetic obvious."""

    def test_immediate_without_quiet_hours(self):
        base = datetime(2026, 10, 14, 17, 0, tzinfo=UTC)

        assert resolve_run_after(base, NotificationPreferences()) == base

    def test_digest_delay(self):
        base = datetime(2026, 10, 14, 17, 0, tzinfo=UTC)
        prefs = NotificationPreferences(frequency=Frequency(mode="digest", digest_hours=6))

        assert resolve_run_after(base, prefs) == base + timedelta(hours=6)

    def test_digest_delay_is_at_least_one_hour(self):
        base = datetime(2026, 10, 14, 17, 0, tzinfo=UTC)
        prefs = NotificationPreferences(frequency=Frequency(mode="digest", digest_hours=0))

        assert resolve_run_after(base, prefs) == base + timedelta(hours=1)

    def test_outside_quiet_hours_is_unchanged(self):
        base = datetime(2026, 10, 14, 19, 0, tzinfo=UTC)  # 12:00 local

        assert resolve_run_after(base, _quiet()) == base

    def test_late_evening_moves_to_next_morning(self):
        base = datetime(2026, 10, 15, 5, 30, tzinfo=UTC)  # 22:30 local on the 14th

        assert resolve_run_after(base, _quiet()) == datetime(2026, 10, 15, 15, 0, tzinfo=UTC)

    def test_early_morning_moves_to_same_morning(self):
        base = datetime(2026, 10, 15, 10, 15, tzinfo=UTC)  # 03:15 local

        assert resolve_run_after(base, _quiet()) == datetime(2026, 10, 15, 15, 0, tzinfo=UTC)

    def test_same_day_window_moves_to_its_end(self):
        base = datetime(2026, 10, 14, 20, 0, tzinfo=UTC)  # 13:00 local

        result = resolve_run_after(base, _quiet(start="12:00", end="14:00"))

        assert result == datetime(2026, 10, 14, 21, 0, tzinfo=UTC)

    def test_digest_then_quiet_hours(self):
        base = datetime(2026, 10, 15, 1, 0, tzinfo=UTC)  # 18:00 local, +6h lands at 00:00
        prefs = _quiet(frequency=Frequency(mode="digest", digest_hours=6))

        assert resolve_run_after(base, prefs) == datetime(2026, 10, 15, 15, 0, tzinfo=UTC)

    def test_unknown_timezone_falls_back_to_phoenix(self):
        base = datetime(2026, 10, 15, 5, 30, tzinfo=UTC)

        result = resolve_run_after(base, _quiet(tz="Mars/Olympus_Mons"))

        assert result == datetime(2026, 10, 15, 15, 0, tzinfo=UTC)

    def test_result_is_never_earlier_than_base(self):
        base = datetime(2026, 10, 14, 17, 0, tzinfo=UTC)

        for hours in range(24):
            moment = base + timedelta(hours=hours, minutes=17)
            assert resolve_run_after(moment, _quiet(start="08:00", end="08:00")) >= moment
