"""Delivery time resolution: digest delay and quiet hours."""

from __future__ import annotations

from datetime import datetime, timedelta
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from notification_service.infra.logging import get_logger

from .preferences import DEFAULT_TIMEZONE, NotificationPreferences

logger = get_logger(__name__)

DEFAULT_QUIET_START = 21 * 60
DEFAULT_QUIET_END = 8 * 60


def parse_local_minutes(value: str | None, fallback: int) -> int:
    """Parse ``"HH:MM"`` into minutes after midnight.

    Hours clamp to 0..23 and minutes to 0..59. Anything unparseable yields
    ``fallback``.
    """
    if not value or ":" not in value:
        return fallback
    hours_text, _, minutes_text = value.strip().partition(":")
    try:
        hours = int(hours_text)
        minutes = int(minutes_text)
    except ValueError:
        return fallback
    return min(max(hours, 0), 23) * 60 + min(max(minutes, 0), 59)


def is_within_quiet_hours(local_minutes: int, start: int, end: int) -> bool:
    if start == end:
        return True
    if start < end:
        return start <= local_minutes < end
    return local_minutes >= start or local_minutes < end


def _zone(name: str | None) -> ZoneInfo:
    try:
        return ZoneInfo(name or DEFAULT_TIMEZONE)
    except (ZoneInfoNotFoundError, ValueError):
        logger.warning("Unknown quiet hours timezone, using default", extra={"timezone": name})
        return ZoneInfo(DEFAULT_TIMEZONE)


def resolve_run_after(base_time: datetime, prefs: NotificationPreferences) -> datetime:
    """Earliest time a job created at ``base_time`` may be delivered.

    Digest mode delays by ``digest_hours``, clamped to at least one hour so
    a stored 0 never turns digest into immediate. If the result falls
    inside the user's quiet hours it is pushed to the next local ``end``
    boundary, shifted by the wall-clock delta so the local target is exact.
    """
    target = base_time
    if prefs.frequency.mode == "digest":
        target = target + timedelta(hours=max(1, prefs.frequency.digest_hours))

    quiet = prefs.quiet_hours
    if not quiet.enabled:
        return target

    start = parse_local_minutes(quiet.start_local, DEFAULT_QUIET_START)
    end = parse_local_minutes(quiet.end_local, DEFAULT_QUIET_END)
    local = target.astimezone(_zone(quiet.timezone))
    local_minutes = local.hour * 60 + local.minute
    if not is_within_quiet_hours(local_minutes, start, end):
        return target

    wall = local.replace(tzinfo=None)
    boundary = wall.replace(hour=end // 60, minute=end % 60, second=0, microsecond=0)
    # Wrapping windows end tomorrow when we are past the start today.
    if start >= end and local_minutes >= start:
        boundary += timedelta(days=1)

    return target + (boundary - wall)
