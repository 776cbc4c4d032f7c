"""Recurring follow-ups while a reservation stays delayed.

A delay episode starts when the estimated window shifts with
``sla_state == "delayed"``. The first follow-up runs after the initial
interval; each delivered follow-up schedules the next one until the
reservation recovers, loads, is cancelled, or the ordinal cap is reached.
"""

from __future__ import annotations

from collections.abc import Callable
from datetime import datetime, timedelta
from typing import TYPE_CHECKING

from notification_service.core.settings import NotificationSettings
from notification_service.infra.documents import DocumentStore
from notification_service.infra.logging import get_logger
from notification_service.utils.timestamps import to_iso, utc_now

from ..notifications.models import EventKind, JobType, NotificationJob, NotificationPayload
from ..notifications.preferences import ReservationRouting
from ..notifications.scheduling import resolve_run_after
from .models import RESERVATIONS_COLLECTION, ReservationSnapshot

if TYPE_CHECKING:
    from ..notifications.queue import JobQueue

logger = get_logger(__name__)

DELAY_REASON_FALLBACK = (
    "Your reservation remains delayed while we work through active kiln constraints."
)


def _iso(value: datetime | None) -> str | None:
    return to_iso(value) if value is not None else None


def delay_follow_up_key(reservation_id: str, episode_id: str, ordinal: int) -> str:
    return f"RESERVATION_DELAY_FOLLOW_UP:{reservation_id}:{episode_id}:{ordinal}"


class DelayFollowUpChainer:
    """Enqueues the links of a delay follow-up chain."""

    def __init__(
        self,
        store: DocumentStore,
        queue: JobQueue,
        settings: NotificationSettings,
        *,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._store = store
        self._queue = queue
        self._clock = clock
        self.initial_delay = timedelta(hours=settings.delay_follow_up_initial_hours)
        self.repeat_delay = timedelta(hours=settings.delay_follow_up_repeat_hours)
        self.max_ordinal = settings.delay_follow_up_max_ordinal

    async def start_episode(
        self,
        reservation: ReservationSnapshot,
        routing: ReservationRouting,
        *,
        previous: ReservationSnapshot | None = None,
        episode_id: str | None = None,
    ) -> bool:
        """Enqueue ordinal 1 of a new delay episode."""
        if not reservation.owner_uid:
            return False
        episode_id = episode_id or reservation.delay_episode_id() or to_iso(self._clock())
        run_after = resolve_run_after(self._clock() + self.initial_delay, routing.prefs)
        previous = previous or reservation
        payload = self._payload(
            reservation,
            episode_id=episode_id,
            ordinal=1,
            run_after=run_after,
            previous_status=previous.status,
            previous_load_status=previous.load_status,
            previous_window_start=_iso(previous.estimated_window.current_start),
            previous_window_end=_iso(previous.estimated_window.current_end),
        )
        return await self._queue.enqueue_reservation_job(
            uid=reservation.owner_uid,
            job_type=JobType.RESERVATION_DELAY_FOLLOW_UP,
            payload=payload,
            routing=routing,
            run_after=run_after,
        )

    async def schedule_next(self, job: NotificationJob, routing: ReservationRouting) -> bool:
        """Enqueue the next follow-up after ``job`` was delivered.

        Returns:
            True when a new link was created.
        """
        if (
            job.type is not JobType.RESERVATION_DELAY_FOLLOW_UP
            or job.payload.event_kind is not EventKind.DELAY_FOLLOW_UP
        ):
            return False
        reservation_id = (job.payload.reservation_id or "").strip()
        if not reservation_id:
            return False

        raw = await self._store.get(RESERVATIONS_COLLECTION, reservation_id)
        if raw is None:
            return False
        reservation = ReservationSnapshot.parse(reservation_id, raw)
        if reservation.is_cancelled or reservation.is_loaded or not reservation.is_delayed:
            return False
        if not routing.deliverable:
            return False

        current = max(1, job.payload.delay_follow_up_ordinal or 1)
        ordinal = current + 1
        if ordinal > self.max_ordinal:
            logger.info(
                "Delay follow-up chain reached its cap",
                extra={"reservation_id": reservation_id, "ordinal": current},
            )
            return False

        episode_id = (
            (job.payload.delay_episode_id or "").strip()
            or reservation.delay_episode_id()
            or to_iso(self._clock())
        )
        run_after = resolve_run_after(self._clock() + self.repeat_delay, routing.prefs)
        payload = self._payload(
            reservation,
            episode_id=episode_id,
            ordinal=ordinal,
            run_after=run_after,
            previous_status=job.payload.reservation_status,
            previous_load_status=job.payload.reservation_load_status,
            previous_window_start=job.payload.current_window_start,
            previous_window_end=job.payload.current_window_end,
        )
        return await self._queue.enqueue_reservation_job(
            uid=job.uid,
            job_type=JobType.RESERVATION_DELAY_FOLLOW_UP,
            payload=payload,
            routing=routing,
            run_after=run_after,
        )

    def _payload(
        self,
        reservation: ReservationSnapshot,
        *,
        episode_id: str,
        ordinal: int,
        run_after: datetime,
        previous_status: str | None,
        previous_load_status: str | None,
        previous_window_start: str | None,
        previous_window_end: str | None,
    ) -> NotificationPayload:
        window = reservation.estimated_window
        return NotificationPayload(
            dedupe_key=delay_follow_up_key(reservation.id, episode_id, ordinal),
            firing_id=reservation.id,
            reservation_id=reservation.id,
            reservation_status=reservation.status,
            previous_reservation_status=previous_status,
            reservation_load_status=reservation.load_status,
            previous_reservation_load_status=previous_load_status,
            event_kind=EventKind.DELAY_FOLLOW_UP,
            reason=reservation.reason(DELAY_REASON_FALLBACK),
            estimate_window_label=window.label(),
            suggested_next_update_at=to_iso(run_after),
            previous_window_start=previous_window_start,
            previous_window_end=previous_window_end,
            current_window_start=_iso(window.current_start),
            current_window_end=_iso(window.current_end),
            delay_episode_id=episode_id,
            delay_follow_up_ordinal=ordinal,
        )
