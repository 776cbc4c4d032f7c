"""Storage policy thresholds and the copy attached to each step."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import timedelta

from notification_service.core.settings import NotificationSettings

from .models import StorageStatus

MISSED_WINDOW_LABEL = "Pickup window missed. Staff follow-up is now required."
FINAL_REMINDER_LABEL = (
    "Final reminder window. Reservation moves to storage hold soon if pickup is still pending."
)

_TRANSITION_DETAILS = {
    StorageStatus.STORED_BY_POLICY: (
        "Reservation reached storage policy threshold and is marked stored by policy."
    ),
    StorageStatus.HOLD_PENDING: "Reservation entered storage hold pending status.",
    StorageStatus.REMINDER_PENDING: "Reservation has pending pickup reminders.",
    StorageStatus.ACTIVE: "Reservation storage status returned to active.",
}


def pickup_reminder_reason(ordinal: int) -> str:
    if ordinal >= 3:
        return "Final pickup reminder: reservation is nearing storage-hold policy thresholds."
    if ordinal == 2:
        return "Second pickup reminder: reservation is still awaiting pickup scheduling."
    return "Pickup reminder: reservation has been ready for collection for several days."


def missed_window_reason(missed_count: int) -> str:
    if missed_count >= 2:
        return "Pickup window was missed again and reservation moved to stored-by-policy."
    return "Pickup window elapsed and reservation moved to hold-pending."


def transition_detail(status: StorageStatus) -> str:
    return _TRANSITION_DETAILS[status]


def advance_status(current: StorageStatus, proposed: StorageStatus) -> StorageStatus:
    """Storage status only moves forward through the escalation ranks."""
    return proposed if proposed.rank > current.rank else current


@dataclass(frozen=True)
class StoragePolicy:
    """Elapsed-time thresholds measured from pickup-ready.

    Example:
        policy = StoragePolicy.from_settings(get_notification_settings())
        policy.status_for_elapsed(timedelta(hours=130), reminder_count=2)
        # StorageStatus.HOLD_PENDING
    """

    reminder_schedule: tuple[timedelta, ...]
    hold_pending_after: timedelta
    stored_by_policy_after: timedelta
    history_max_entries: int = 60

    @classmethod
    def from_settings(cls, settings: NotificationSettings) -> StoragePolicy:
        return cls(
            reminder_schedule=tuple(timedelta(hours=h) for h in settings.reminder_schedule_hours),
            hold_pending_after=timedelta(hours=settings.hold_pending_after_hours),
            stored_by_policy_after=timedelta(hours=settings.stored_by_policy_after_hours),
            history_max_entries=settings.storage_history_max_entries,
        )

    def status_for_elapsed(self, elapsed: timedelta, reminder_count: int) -> StorageStatus:
        elapsed = max(elapsed, timedelta(0))
        if elapsed >= self.stored_by_policy_after:
            return StorageStatus.STORED_BY_POLICY
        if elapsed >= self.hold_pending_after:
            return StorageStatus.HOLD_PENDING
        if reminder_count > 0:
            return StorageStatus.REMINDER_PENDING
        return StorageStatus.ACTIVE

    def next_due_reminder(self, elapsed: timedelta, current_count: int) -> int | None:
        """Ordinal of the next reminder if its threshold has passed."""
        ordinal = max(1, current_count + 1)
        if ordinal > len(self.reminder_schedule):
            return None
        if elapsed < self.reminder_schedule[ordinal - 1]:
            return None
        return ordinal

    def reminder_status(self, ordinal: int) -> StorageStatus:
        if ordinal >= len(self.reminder_schedule):
            return StorageStatus.HOLD_PENDING
        return StorageStatus.REMINDER_PENDING

    def window_label(self, ordinal: int) -> str:
        if ordinal >= len(self.reminder_schedule):
            return FINAL_REMINDER_LABEL
        next_threshold = self.reminder_schedule[ordinal]
        hours = round(next_threshold.total_seconds() / 3600)
        return f"Next storage policy checkpoint is around {hours} hours after pickup-ready status."
