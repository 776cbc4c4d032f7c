"""User-facing copy for notification jobs.

``build_job_content`` turns a job into the title, bodies and structured
data shared by every channel.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Literal

from notification_service.utils.hashing import stable_id
from notification_service.utils.timestamps import parse_timestamp

from .models import EventKind, JobType, NotificationJob, NotificationPayload

_RESERVATION_DATA_FIELDS = (
    "reservation_id",
    "reservation_status",
    "previous_reservation_status",
    "reservation_load_status",
    "previous_reservation_load_status",
    "event_kind",
    "reason",
    "estimate_window_label",
    "suggested_next_update_at",
    "previous_window_start",
    "previous_window_end",
    "current_window_start",
    "current_window_end",
    "delay_episode_id",
    "delay_follow_up_ordinal",
    "storage_status",
    "previous_storage_status",
    "reminder_ordinal",
    "reminder_count",
    "ready_for_pickup_at",
    "policy_window_label",
)


@dataclass(frozen=True)
class JobContent:
    message_type: str
    title: str
    body: str
    subject: str
    text_body: str
    source_kind: Literal["firing", "reservation"]
    source_id: str | None
    data: dict[str, Any] = field(default_factory=dict)


def format_for_user(iso: str | None) -> str | None:
    """Render a stored timestamp as ``Oct 17, 9:30 AM`` (UTC)."""
    moment = parse_timestamp(iso)
    if moment is None:
        return None
    hour = moment.hour % 12 or 12
    meridiem = "AM" if moment.hour < 12 else "PM"
    return f"{moment:%b} {moment.day}, {hour}:{moment:%M} {meridiem}"


def support_code(dedupe_key: str) -> str:
    return stable_id(dedupe_key)[:8]


def estimate_line(payload: NotificationPayload) -> str:
    start = format_for_user(payload.current_window_start)
    end = format_for_user(payload.current_window_end)
    if start and end:
        return f"Updated estimate: {start} - {end}."
    if payload.estimate_window_label:
        return f"Updated estimate: {payload.estimate_window_label}."
    return "Updated estimate: We'll keep this current as queue conditions change."


def reason_line(payload: NotificationPayload) -> str:
    reason = (payload.reason or "").strip()
    if reason:
        return f"Last change reason: {reason}."
    return "Last change reason: queue and kiln availability were recalculated."


def next_update_line(payload: NotificationPayload) -> str:
    policy_label = (payload.policy_window_label or "").strip()
    if policy_label:
        return policy_label
    upcoming = format_for_user(payload.suggested_next_update_at)
    if upcoming:
        return f"Suggested next update window: around {upcoming}."
    return "Suggested next update window: within 24 hours or sooner if conditions change."


def _kiln_content(job: NotificationJob) -> JobContent:
    payload = job.payload
    title = f"Kiln unloaded: {payload.kiln_name}" if payload.kiln_name else "Kiln unloaded"
    if payload.firing_type:
        body = (
            f"Your {payload.firing_type} firing is unloaded. "
            "We will confirm details together at pickup."
        )
        firing_label = f"Firing ({payload.firing_type})"
    else:
        body = "Your firing is unloaded. We will confirm details together at pickup."
        firing_label = "Firing"
    text_body = "\n".join(
        [
            "Your firing has been unloaded.",
            firing_label,
            "We will confirm everything together at pickup.",
        ]
    )
    return JobContent(
        message_type=JobType.KILN_UNLOADED.value,
        title=title,
        body=body,
        subject=title,
        text_body=text_body,
        source_kind="firing",
        source_id=payload.firing_id,
        data={
            "firing_id": payload.firing_id,
            "kiln_id": payload.kiln_id,
            "kiln_name": payload.kiln_name,
            "firing_type": payload.firing_type,
            "batch_ids": list(payload.batch_ids),
            "piece_ids": list(payload.piece_ids),
        },
    )


def _reservation_copy(job: NotificationJob) -> tuple[str, str, str, str]:
    """Return ``(message_type, title, subject, body)`` for a reservation job."""
    payload = job.payload
    estimate = estimate_line(payload)
    reason = reason_line(payload)
    upcoming = next_update_line(payload)

    match payload.event_kind:
        case EventKind.CONFIRMED:
            return (
                "RESERVATION_CONFIRMED",
                "Reservation confirmed",
                "Reservation confirmed",
                " ".join(["Your reservation is confirmed.", estimate, reason, upcoming]),
            )
        case EventKind.WAITLISTED:
            return (
                "RESERVATION_WAITLISTED",
                "Reservation waitlisted",
                "Reservation moved to waitlist",
                " ".join(["Your reservation is currently waitlisted.", estimate, reason, upcoming]),
            )
        case EventKind.CANCELLED:
            return (
                "RESERVATION_CANCELLED",
                "Reservation cancelled",
                "Reservation cancelled",
                " ".join(
                    [
                        "Your reservation has been cancelled.",
                        reason,
                        f"Contact support with code {support_code(job.dedupe_key)} "
                        "if this looks wrong.",
                    ]
                ),
            )
        case EventKind.PICKUP_READY:
            return (
                "RESERVATION_READY_PICKUP",
                "Ready for pickup",
                "Reservation ready for pickup",
                " ".join(["Your reservation is ready for pickup planning.", reason, upcoming]),
            )
        case EventKind.DELAY_FOLLOW_UP:
            return (
                "RESERVATION_DELAY_FOLLOW_UP",
                "Reservation delay update",
                "Reservation delay follow-up",
                " ".join(["Your reservation is still delayed.", estimate, reason, upcoming]),
            )
        case EventKind.PICKUP_REMINDER:
            return (
                "RESERVATION_PICKUP_REMINDER",
                "Pickup reminder",
                "Reservation pickup reminder",
                " ".join(
                    [
                        "Your reservation is still waiting for pickup.",
                        reason,
                        upcoming,
                        f"Contact support with code {support_code(job.dedupe_key)} "
                        "if you need help scheduling pickup.",
                    ]
                ),
            )
    return (
        "RESERVATION_ESTIMATE_SHIFT",
        "Reservation estimate updated",
        "Reservation estimate updated",
        " ".join(["Your reservation estimate has changed.", estimate, reason, upcoming]),
    )


def build_job_content(job: NotificationJob) -> JobContent:
    if job.type is JobType.KILN_UNLOADED:
        return _kiln_content(job)

    message_type, title, subject, body = _reservation_copy(job)
    payload = job.payload
    return JobContent(
        message_type=message_type,
        title=title,
        body=body,
        subject=subject,
        text_body=body,
        source_kind="reservation",
        source_id=payload.reservation_id or payload.firing_id,
        data=payload.model_dump(mode="json", include=set(_RESERVATION_DATA_FIELDS)),
    )
