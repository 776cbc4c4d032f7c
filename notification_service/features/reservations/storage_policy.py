"""Reservation storage-policy engine.

A periodic sweep walks loaded reservations and escalates them as time
passes since they became ready for pickup:

1. A confirmed or open pickup window whose end has passed is marked
   missed; the first miss moves the reservation to ``hold_pending``, a
   second one to ``stored_by_policy``.
2. Pickup reminders fall due at the configured elapsed-time thresholds.
3. The elapsed time alone maps to a policy status.

Storage status only moves forward. A fresh pickup-ready transition
(``mark_pickup_ready``) is the one way back to ``active``.
"""

from __future__ import annotations

from collections.abc import Callable
from datetime import datetime, timedelta
from typing import TYPE_CHECKING, Any

from notification_service.core.settings import NotificationSettings
from notification_service.infra.documents import DocumentStore, FieldFilter, Transaction
from notification_service.infra.logging import get_logger
from notification_service.utils.timestamps import to_epoch_ms, to_iso, utc_now

from ..notifications.errors import ErrorClass
from ..notifications.metrics import (
    reservation_pickup_reminders_total,
    reservation_storage_transitions_total,
)
from ..notifications.models import EventKind, JobType, NotificationJob, NotificationPayload
from .audit import StorageAuditLog
from .models import (
    LOADED,
    RESERVATIONS_COLLECTION,
    PickupWindowStatus,
    ReservationSnapshot,
    StorageNotice,
    StorageStatus,
    SweepSummary,
    notices_to_documents,
    push_notice,
)
from .policy import (
    MISSED_WINDOW_LABEL,
    StoragePolicy,
    advance_status,
    missed_window_reason,
    pickup_reminder_reason,
    transition_detail,
)

if TYPE_CHECKING:
    from ..notifications.queue import JobQueue

logger = get_logger(__name__)

_OPEN_WINDOW_STATES = frozenset({PickupWindowStatus.OPEN, PickupWindowStatus.CONFIRMED})
_FAILURE_DETAIL_MAX = 280


class StoragePolicyEngine:
    """Applies storage escalation to loaded reservations and records every step."""

    def __init__(
        self,
        store: DocumentStore,
        queue: JobQueue,
        audit: StorageAuditLog,
        settings: NotificationSettings,
        *,
        policy: StoragePolicy | None = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._store = store
        self._queue = queue
        self._audit = audit
        self._settings = settings
        self.policy = policy or StoragePolicy.from_settings(settings)
        self._clock = clock

    async def sweep(self, now: datetime | None = None, limit: int | None = None) -> SweepSummary:
        """Evaluate up to ``limit`` loaded reservations."""
        now = now or self._clock()
        docs = await self._store.query(
            RESERVATIONS_COLLECTION,
            [FieldFilter("load_status", "==", LOADED)],
            limit=limit or self._settings.storage_sweep_limit,
        )

        summary = SweepSummary()
        for doc in docs:
            reservation = ReservationSnapshot.parse(doc.id, doc.data)
            if not reservation.owner_uid or reservation.is_cancelled:
                continue
            if reservation.pickup_window.status is PickupWindowStatus.COMPLETED:
                continue
            summary.scanned += 1
            try:
                await self._evaluate(reservation, now, summary)
            except Exception:
                logger.exception(
                    "Storage policy evaluation failed",
                    extra={"reservation_id": reservation.id},
                )

        logger.info("Reservation storage sweep finished", extra=summary.model_dump())
        return summary

    async def _evaluate(
        self, reservation: ReservationSnapshot, now: datetime, summary: SweepSummary
    ) -> None:
        uid = reservation.owner_uid or ""
        anchor = reservation.ready_anchor()
        if anchor is None:
            return

        elapsed = max(now - anchor, timedelta(0))
        previous = reservation.current_storage_status
        status = previous
        reminder_count = reservation.pickup_reminder_count
        history = list(reservation.storage_notice_history)
        updates: dict[str, Any] = {}
        missed_applied = False

        if reservation.ready_for_pickup_at is None:
            updates["ready_for_pickup_at"] = anchor

        window = reservation.pickup_window
        window_end = window.confirmed_end
        if window.status in _OPEN_WINDOW_STATES and window_end is not None and window_end <= now:
            missed_count = window.missed_count + 1
            missed_status = advance_status(
                status,
                StorageStatus.STORED_BY_POLICY if missed_count >= 2 else StorageStatus.HOLD_PENDING,
            )
            reason = missed_window_reason(missed_count)
            missed_window = window.model_copy(
                update={
                    "status": PickupWindowStatus.MISSED,
                    "confirmed_at": None,
                    "completed_at": None,
                    "missed_count": missed_count,
                    "last_missed_at": now,
                }
            )
            updates["pickup_window"] = missed_window.to_document()
            updates["storage_status"] = missed_status
            if missed_status is not status:
                summary.status_transitions += 1
                reservation_storage_transitions_total.labels(
                    from_status=status.value, to_status=missed_status.value
                ).inc()
            status = missed_status
            missed_applied = True
            history = push_notice(
                history,
                StorageNotice(
                    at=now,
                    kind="pickup_window_missed",
                    detail=reason,
                    status=missed_status,
                    reminder_count=reminder_count,
                ),
                self.policy.history_max_entries,
            )
            await self._audit.record(
                reservation_id=reservation.id,
                uid=uid,
                action="pickup_window_missed",
                reason=reason,
                at=now,
                from_status=previous,
                to_status=missed_status,
                reminder_count=reminder_count,
            )
            await self._queue.enqueue_reservation_job(
                uid=uid,
                job_type=JobType.RESERVATION_PICKUP_REMINDER,
                payload=self._payload(
                    reservation,
                    dedupe_key=(
                        f"RESERVATION_PICKUP_WINDOW_MISSED:{reservation.id}:"
                        f"{to_epoch_ms(window_end)}:{missed_count}"
                    ),
                    reason=reason,
                    storage_status=missed_status,
                    previous_status=previous,
                    anchor=anchor,
                    reminder_count=reminder_count,
                    policy_window_label=MISSED_WINDOW_LABEL,
                ),
            )
            summary.reminder_jobs += 1
            reservation_pickup_reminders_total.labels(kind="missed_window").inc()

        ordinal = self.policy.next_due_reminder(elapsed, reservation.pickup_reminder_count)
        if ordinal is not None and not missed_applied:
            reason = pickup_reminder_reason(ordinal)
            reminder_status = advance_status(status, self.policy.reminder_status(ordinal))
            await self._queue.enqueue_reservation_job(
                uid=uid,
                job_type=JobType.RESERVATION_PICKUP_REMINDER,
                payload=self._payload(
                    reservation,
                    dedupe_key=f"RESERVATION_PICKUP_REMINDER:{reservation.id}:{to_iso(anchor)}:{ordinal}",
                    reason=reason,
                    storage_status=reminder_status,
                    previous_status=previous,
                    anchor=anchor,
                    reminder_count=ordinal,
                    reminder_ordinal=ordinal,
                    policy_window_label=self.policy.window_label(ordinal),
                ),
            )
            summary.reminder_jobs += 1
            reservation_pickup_reminders_total.labels(kind="reminder").inc()

            reminder_count = max(reminder_count, ordinal)
            if reminder_status is not status:
                summary.status_transitions += 1
                reservation_storage_transitions_total.labels(
                    from_status=status.value, to_status=reminder_status.value
                ).inc()
            status = reminder_status
            updates["pickup_reminder_count"] = reminder_count
            updates["last_reminder_at"] = now
            updates["storage_status"] = status
            history = push_notice(
                history,
                StorageNotice(
                    at=now,
                    kind=f"pickup_reminder_{ordinal}",
                    detail=reason,
                    status=status,
                    reminder_ordinal=ordinal,
                    reminder_count=reminder_count,
                ),
                self.policy.history_max_entries,
            )
            await self._audit.record(
                reservation_id=reservation.id,
                uid=uid,
                action="pickup_reminder_enqueued",
                reason=reason,
                at=now,
                from_status=previous,
                to_status=status,
                reminder_ordinal=ordinal,
                reminder_count=reminder_count,
            )

        policy_status = advance_status(
            status, self.policy.status_for_elapsed(elapsed, reminder_count)
        )
        if policy_status is not status:
            detail = transition_detail(policy_status)
            summary.status_transitions += 1
            reservation_storage_transitions_total.labels(
                from_status=status.value, to_status=policy_status.value
            ).inc()
            history = push_notice(
                history,
                StorageNotice(
                    at=now,
                    kind=policy_status.value,
                    detail=detail,
                    status=policy_status,
                    reminder_count=reminder_count,
                ),
                self.policy.history_max_entries,
            )
            await self._audit.record(
                reservation_id=reservation.id,
                uid=uid,
                action="storage_status_transition",
                reason=detail,
                at=now,
                from_status=status,
                to_status=policy_status,
                reminder_count=reminder_count,
            )
            status = policy_status
            updates["storage_status"] = status

        if not updates:
            return

        updates["storage_notice_history"] = notices_to_documents(history)
        updates["updated_at"] = now
        await self._store.merge_patch(RESERVATIONS_COLLECTION, reservation.id, updates)
        summary.updated += 1
        logger.info(
            "Reservation storage state updated",
            extra={
                "reservation_id": reservation.id,
                "from_status": previous.value,
                "to_status": status.value,
                "reminder_count": reminder_count,
            },
        )

    def _payload(
        self,
        reservation: ReservationSnapshot,
        *,
        dedupe_key: str,
        reason: str,
        storage_status: StorageStatus,
        previous_status: StorageStatus,
        anchor: datetime,
        reminder_count: int,
        policy_window_label: str,
        reminder_ordinal: int | None = None,
    ) -> NotificationPayload:
        return NotificationPayload(
            dedupe_key=dedupe_key,
            firing_id=reservation.id,
            reservation_id=reservation.id,
            reservation_status=reservation.status,
            reservation_load_status=reservation.load_status,
            event_kind=EventKind.PICKUP_REMINDER,
            reason=reason,
            storage_status=storage_status.value,
            previous_storage_status=previous_status.value,
            reminder_ordinal=reminder_ordinal,
            reminder_count=reminder_count,
            ready_for_pickup_at=to_iso(anchor),
            policy_window_label=policy_window_label,
        )

    async def mark_pickup_ready(
        self,
        reservation_id: str,
        *,
        reason: str,
        ready_for_pickup_at: datetime | None = None,
        now: datetime | None = None,
    ) -> StorageStatus | None:
        """Reset storage state for a reservation that just became ready for pickup.

        Counters are zeroed and the notice history is replaced by a single
        ``pickup_ready`` notice.

        Returns:
            The storage status the reservation had before the reset, or None
            when the reservation does not exist.
        """
        now = now or self._clock()

        async def reset(txn: Transaction) -> ReservationSnapshot | None:
            raw = await txn.get(RESERVATIONS_COLLECTION, reservation_id)
            if raw is None:
                return None
            reservation = ReservationSnapshot.parse(reservation_id, raw)
            ready_at = ready_for_pickup_at or reservation.ready_anchor() or now
            notice = StorageNotice(
                at=now,
                kind="pickup_ready",
                detail=reason,
                status=StorageStatus.ACTIVE,
                reminder_count=0,
            )
            await txn.merge_patch(
                RESERVATIONS_COLLECTION,
                reservation_id,
                {
                    "ready_for_pickup_at": ready_at,
                    "storage_status": StorageStatus.ACTIVE,
                    "pickup_reminder_count": 0,
                    "last_reminder_at": None,
                    "pickup_reminder_failure_count": 0,
                    "last_reminder_failure_at": None,
                    "storage_notice_history": notices_to_documents([notice]),
                    "updated_at": now,
                },
            )
            return reservation

        reservation = await self._store.run_transaction(reset)
        if reservation is None:
            logger.warning(
                "Pickup-ready reset skipped: reservation missing",
                extra={"reservation_id": reservation_id},
            )
            return None

        await self._audit.record(
            reservation_id=reservation_id,
            uid=reservation.owner_uid or "",
            action="pickup_ready",
            reason=reason,
            at=now,
            from_status=reservation.current_storage_status,
            to_status=StorageStatus.ACTIVE,
            reminder_count=0,
        )
        return reservation.current_storage_status

    async def record_reminder_failure(
        self, job: NotificationJob, error_class: ErrorClass, message: str
    ) -> int | None:
        """Count a dead-lettered pickup reminder against its reservation.

        Returns:
            The new failure count, or None when the job is not a pickup
            reminder or the reservation is gone.
        """
        if job.type is not JobType.RESERVATION_PICKUP_REMINDER:
            return None
        reservation_id = (job.payload.reservation_id or "").strip()
        uid = job.uid.strip()
        if not reservation_id or not uid:
            return None
        ordinal = job.payload.reminder_ordinal
        ordinal = max(1, ordinal) if ordinal is not None else None
        detail = message[:_FAILURE_DETAIL_MAX]
        now = self._clock()

        async def record(txn: Transaction) -> int | None:
            raw = await txn.get(RESERVATIONS_COLLECTION, reservation_id)
            if raw is None:
                return None
            reservation = ReservationSnapshot.parse(reservation_id, raw)
            history = push_notice(
                reservation.storage_notice_history,
                StorageNotice(
                    at=now,
                    kind="reminder_failed",
                    detail=detail,
                    status=reservation.current_storage_status,
                    reminder_ordinal=ordinal,
                    reminder_count=reservation.pickup_reminder_count,
                    failure_code=error_class.value,
                ),
                self.policy.history_max_entries,
            )
            failure_count = reservation.pickup_reminder_failure_count + 1
            await txn.merge_patch(
                RESERVATIONS_COLLECTION,
                reservation_id,
                {
                    "pickup_reminder_failure_count": failure_count,
                    "last_reminder_failure_at": now,
                    "storage_notice_history": notices_to_documents(history),
                    "updated_at": now,
                },
            )
            return failure_count

        failure_count = await self._store.run_transaction(record)
        if failure_count is None:
            return None

        await self._audit.record(
            reservation_id=reservation_id,
            uid=uid,
            action="pickup_reminder_failed",
            reason=detail,
            at=now,
            reminder_ordinal=ordinal,
            reminder_count=failure_count,
            request_id=job.job_id,
            failure_code=error_class.value,
        )
        logger.warning(
            "Pickup reminder failure recorded",
            extra={
                "reservation_id": reservation_id,
                "failure_count": failure_count,
                "error_class": error_class.value,
            },
        )
        return failure_count
