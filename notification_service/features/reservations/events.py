"""Turns reservation document writes into notification jobs."""

from __future__ import annotations

from collections.abc import Callable, Mapping
from datetime import datetime, timedelta
from typing import TYPE_CHECKING, Any

from notification_service.infra.logging import get_logger
from notification_service.utils.timestamps import to_epoch_ms, to_iso, utc_now

from ..notifications.content import format_for_user
from ..notifications.models import EventKind, JobType, NotificationPayload
from ..notifications.preferences import PreferenceReader, ReservationRouting
from ..notifications.scheduling import resolve_run_after
from .follow_ups import DelayFollowUpChainer
from .models import (
    CANCELLED,
    CONFIRMED,
    WAITLISTED,
    PickupWindowStatus,
    ReservationSnapshot,
    StorageStatus,
)
from .storage_policy import StoragePolicyEngine

if TYPE_CHECKING:
    from ..notifications.queue import JobQueue

logger = get_logger(__name__)

_STATUS_EVENTS = {
    CONFIRMED: EventKind.CONFIRMED,
    WAITLISTED: EventKind.WAITLISTED,
    CANCELLED: EventKind.CANCELLED,
}
_ACTIVE_STATUSES = frozenset({CONFIRMED, WAITLISTED})
LOADED_STATUS = "LOADED"
_PRE_EXPIRY_LEAD = timedelta(hours=24)
_DEFAULT_UPDATE_OFFSET = timedelta(hours=24)


def _iso(value: datetime | None) -> str | None:
    return to_iso(value) if value is not None else None


class ReservationEventHandler:
    """Reacts to one reservation write with ``before``/``after`` snapshots.

    Each trigger enqueues idempotent jobs, so a redelivered write event is
    harmless. Nothing is raised back to the caller.
    """

    def __init__(
        self,
        queue: JobQueue,
        preferences: PreferenceReader,
        follow_ups: DelayFollowUpChainer,
        storage: StoragePolicyEngine,
        *,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._queue = queue
        self._preferences = preferences
        self._follow_ups = follow_ups
        self._storage = storage
        self._clock = clock

    async def on_reservation_written(
        self,
        reservation_id: str,
        before: Mapping[str, Any] | None,
        after: Mapping[str, Any] | None,
    ) -> list[JobType]:
        """Enqueue the jobs a reservation change calls for.

        Returns:
            Job types that were newly created, in creation order.
        """
        if after is None:
            return []
        previous = ReservationSnapshot.parse(reservation_id, before)
        current = ReservationSnapshot.parse(reservation_id, after)
        if not current.owner_uid:
            logger.warning(
                "Reservation notification skipped: missing owner",
                extra={"reservation_id": reservation_id},
            )
            return []

        try:
            return await self._handle(previous, current)
        except Exception:
            logger.exception(
                "Reservation event handling failed", extra={"reservation_id": reservation_id}
            )
            return []

    async def _handle(
        self, previous: ReservationSnapshot, current: ReservationSnapshot
    ) -> list[JobType]:
        uid = current.owner_uid or ""
        routing = await self._preferences.read_reservation_routing(uid)
        now = self._clock()
        updated_ms = to_epoch_ms(current.updated_at or now)
        created: list[JobType] = []

        async def enqueue(
            job_type: JobType, payload: NotificationPayload, run_after: Any = None
        ) -> None:
            kwargs: dict[str, Any] = {"run_after": run_after} if run_after is not None else {}
            if await self._queue.enqueue_reservation_job(
                uid=uid, job_type=job_type, payload=payload, routing=routing, **kwargs
            ):
                created.append(job_type)

        base = self._base_payload(previous, current)
        status_changed = previous.status != current.status
        window_changed = current.estimated_window.changed_from(previous.estimated_window)
        window_opened = (
            previous.pickup_window.status != current.pickup_window.status
            and current.pickup_window.status is PickupWindowStatus.OPEN
        )
        became_loaded = (current.is_loaded and not previous.is_loaded) or (
            current.status == LOADED_STATUS and previous.status != LOADED_STATUS
        )

        if status_changed and current.status in _STATUS_EVENTS:
            await enqueue(
                JobType.RESERVATION_STATUS,
                NotificationPayload(
                    **base,
                    dedupe_key=(
                        f"RESERVATION_STATUS:{current.id}:{previous.status or 'unknown'}:"
                        f"{current.status}:{updated_ms}"
                    ),
                    event_kind=_STATUS_EVENTS[current.status],
                    reason=current.reason(f"Reservation moved to {current.status}."),
                    suggested_next_update_at=(
                        None if current.is_cancelled else self._suggested_update(current, None)
                    ),
                ),
            )

        if window_changed and current.status in _ACTIVE_STATUSES:
            delayed = current.is_delayed
            await enqueue(
                JobType.RESERVATION_ETA_SHIFT,
                NotificationPayload(
                    **base,
                    dedupe_key=":".join(
                        [
                            "RESERVATION_ETA_SHIFT",
                            current.id,
                            base["previous_window_start"] or "null",
                            base["previous_window_end"] or "null",
                            base["current_window_start"] or "null",
                            base["current_window_end"] or "null",
                            current.estimated_window.sla_state or "unknown",
                        ]
                    ),
                    event_kind=EventKind.ESTIMATE_SHIFT,
                    reason=current.reason(
                        "Estimated firing window shifted based on live queue and kiln availability."
                    ),
                    suggested_next_update_at=self._suggested_update(
                        current, self._follow_ups.initial_delay if delayed else None
                    ),
                    delay_episode_id=current.delay_episode_id(),
                ),
            )
            if delayed and await self._follow_ups.start_episode(
                current, routing, previous=previous
            ):
                created.append(JobType.RESERVATION_DELAY_FOLLOW_UP)

        if window_opened:
            await self._pickup_window_opened(previous, current, routing, base, updated_ms, enqueue)

        if became_loaded:
            reason = current.reason("Reservation load is complete and ready for pickup planning.")
            ready_at = current.ready_for_pickup_at or current.updated_at or now
            await enqueue(
                JobType.RESERVATION_READY_PICKUP,
                NotificationPayload(
                    **base,
                    dedupe_key=f"RESERVATION_READY_PICKUP:{current.id}:{updated_ms}",
                    event_kind=EventKind.PICKUP_READY,
                    reason=reason,
                    storage_status=StorageStatus.ACTIVE.value,
                    previous_storage_status=previous.current_storage_status.value,
                    reminder_count=0,
                    ready_for_pickup_at=to_iso(ready_at),
                    policy_window_label=(
                        "Pickup-ready notice sent. Storage reminders begin after "
                        f"{self._first_reminder_hours()} hours."
                    ),
                ),
            )
            await self._storage.mark_pickup_ready(
                current.id, reason=reason, ready_for_pickup_at=ready_at, now=now
            )

        if created:
            logger.info(
                "Reservation notifications enqueued",
                extra={"reservation_id": current.id, "job_types": [t.value for t in created]},
            )
        return created

    async def _pickup_window_opened(
        self,
        previous: ReservationSnapshot,
        current: ReservationSnapshot,
        routing: ReservationRouting,
        base: dict[str, Any],
        updated_ms: int,
        enqueue: Callable[..., Any],
    ) -> None:
        now = self._clock()
        window_end = current.pickup_window.confirmed_end
        window_end_iso = _iso(window_end)
        ready_at = current.ready_for_pickup_at or current.updated_at or now
        shared = {
            **base,
            "event_kind": EventKind.PICKUP_REMINDER,
            "storage_status": current.current_storage_status.value,
            "previous_storage_status": previous.current_storage_status.value,
            "reminder_count": current.pickup_reminder_count,
            "ready_for_pickup_at": to_iso(ready_at),
        }

        closes_label = format_for_user(window_end_iso)
        await enqueue(
            JobType.RESERVATION_PICKUP_REMINDER,
            NotificationPayload(
                **shared,
                dedupe_key=f"RESERVATION_PICKUP_WINDOW_OPEN:{current.id}:{updated_ms}",
                reason=current.reason(
                    "Pickup window is now open. Please confirm your collection window."
                ),
                policy_window_label=(
                    f"Pickup window closes around {closes_label}."
                    if closes_label
                    else "Pickup window is open. Confirm as soon as possible."
                ),
                suggested_next_update_at=window_end_iso,
            ),
        )

        if window_end is None:
            return
        pre_expiry = window_end - _PRE_EXPIRY_LEAD
        if pre_expiry <= now:
            return
        run_after = resolve_run_after(pre_expiry, routing.prefs)
        await enqueue(
            JobType.RESERVATION_PICKUP_REMINDER,
            NotificationPayload(
                **shared,
                dedupe_key=f"RESERVATION_PICKUP_WINDOW_PRE_EXPIRY:{current.id}:{to_epoch_ms(window_end)}",
                reason=current.reason(
                    "Pickup window reminder: your selected collection window is closing soon."
                ),
                policy_window_label="Pickup window closes in about 24 hours.",
                suggested_next_update_at=to_iso(run_after),
            ),
            run_after,
        )

    @staticmethod
    def _base_payload(
        previous: ReservationSnapshot, current: ReservationSnapshot
    ) -> dict[str, Any]:
        return {
            "firing_id": current.id,
            "reservation_id": current.id,
            "reservation_status": current.status,
            "previous_reservation_status": previous.status,
            "reservation_load_status": current.load_status,
            "previous_reservation_load_status": previous.load_status,
            "estimate_window_label": current.estimated_window.label(),
            "previous_window_start": _iso(previous.estimated_window.current_start),
            "previous_window_end": _iso(previous.estimated_window.current_end),
            "current_window_start": _iso(current.estimated_window.current_start),
            "current_window_end": _iso(current.estimated_window.current_end),
        }

    @staticmethod
    def _suggested_update(
        reservation: ReservationSnapshot, offset: timedelta | None
    ) -> str | None:
        anchor = reservation.estimated_window.updated_at or reservation.updated_at
        if anchor is None:
            return None
        return to_iso(anchor + (offset or _DEFAULT_UPDATE_OFFSET))

    def _first_reminder_hours(self) -> int:
        return round(self._storage.policy.reminder_schedule[0].total_seconds() / 3600)

