"""Durable, at-least-once notification job queue.

Jobs are documents keyed by ``sha256(dedupe_key)``; creating one is
create-if-absent, so a repeated domain event never produces a second job.
Processing claims a job inside a store transaction (``queued`` to
``processing``), re-validates whether the job still warrants a send,
dispatches it to its channels and then either finishes it, schedules a
retry with exponential backoff, or dead-letters it.

Example:
    queue = JobQueue(store, dispatcher, PreferenceReader(store), settings)
    await queue.enqueue(job)
    summary = await queue.process_due_jobs()
"""

from __future__ import annotations

import random
import time
from collections.abc import Callable
from datetime import datetime, timedelta
from typing import Any, Protocol

from notification_service.core.settings import NotificationSettings
from notification_service.infra.documents import DocumentStore, FieldFilter, Transaction
from notification_service.infra.logging import clear_log_context, get_logger, set_log_context
from notification_service.utils.backoff import ExponentialBackoff
from notification_service.utils.timestamps import utc_now

from ..reservations.models import RESERVATIONS_COLLECTION, ReservationSnapshot, StorageStatus
from .channels import ChannelDispatcher
from .errors import ErrorClass, classify_error, is_retryable
from .metrics import (
    notification_dead_letters_total,
    notification_job_outcomes_total,
    notification_job_processing_seconds,
    notification_job_retries_total,
    notification_job_skips_total,
    notification_jobs_enqueued_total,
)
from .models import (
    DEAD_LETTERS_COLLECTION,
    JOBS_COLLECTION,
    ChannelFlags,
    DeadLetter,
    JobStatus,
    JobType,
    NotificationJob,
    NotificationPayload,
    ProcessSummary,
    SkipReason,
)
from .preferences import PreferenceReader, ReservationRouting
from .scheduling import resolve_run_after

logger = get_logger(__name__)

_UNSET: Any = object()

_LIVE_CHECKED_TYPES = frozenset({JobType.RESERVATION_DELAY_FOLLOW_UP, JobType.RESERVATION_PICKUP_REMINDER})


class FollowUpScheduler(Protocol):
    async def schedule_next(self, job: NotificationJob, routing: ReservationRouting) -> bool: ...


class ReminderFailureRecorder(Protocol):
    async def record_reminder_failure(
        self, job: NotificationJob, error_class: ErrorClass, message: str
    ) -> int | None: ...


class JobQueue:
    """Creates, claims and processes notification jobs.

    Attributes:
        follow_ups: Schedules the next link of a delay follow-up chain after
            a successful dispatch. Attached after construction because the
            chainer enqueues through this queue.
        reminder_failures: Records failed pickup reminders on the reservation.
    """

    def __init__(
        self,
        store: DocumentStore,
        dispatcher: ChannelDispatcher,
        preferences: PreferenceReader,
        settings: NotificationSettings,
        *,
        clock: Callable[[], datetime] = utc_now,
        rng: Callable[[float, float], float] | None = None,
        process_on_enqueue: bool = True,
    ) -> None:
        self._store = store
        self._dispatcher = dispatcher
        self._preferences = preferences
        self._settings = settings
        self._clock = clock
        self._process_on_enqueue = process_on_enqueue
        self._backoff = ExponentialBackoff(
            base_seconds=settings.retry_base_seconds,
            ceiling_seconds=settings.retry_ceiling_seconds,
            jitter_range=settings.retry_jitter_range,
            rng=rng or random.uniform,
        )
        self.follow_ups: FollowUpScheduler | None = None
        self.reminder_failures: ReminderFailureRecorder | None = None

    @property
    def preferences(self) -> PreferenceReader:
        return self._preferences

    def now(self) -> datetime:
        return self._clock()

    async def get_job(self, job_id: str) -> NotificationJob | None:
        data = await self._store.get(JOBS_COLLECTION, job_id)
        return NotificationJob.model_validate(data) if data is not None else None

    async def enqueue(self, job: NotificationJob) -> bool:
        """Create ``job`` unless its dedupe key already has a job.

        A newly created queued job is processed right away when it is due.
        Failures of that attempt are logged; the due-job sweep picks the
        job up again.

        Returns:
            True when the job was created, False for a duplicate.
        """
        job_id = job.job_id
        created = await self._store.create_if_absent(JOBS_COLLECTION, job_id, job)
        if not created:
            logger.debug(
                "Duplicate notification job ignored",
                extra={"job_id": job_id, "dedupe_key": job.dedupe_key},
            )
            return False

        notification_jobs_enqueued_total.labels(job_type=job.type.value, status=job.status.value).inc()
        logger.info(
            "Notification job enqueued",
            extra={
                "job_id": job_id,
                "job_type": job.type.value,
                "status": job.status.value,
                "run_after": job.run_after.isoformat() if job.run_after else None,
            },
        )
        if self._process_on_enqueue and job.status is JobStatus.QUEUED:
            try:
                await self.process_job(job_id)
            except Exception:
                logger.exception("Immediate job processing failed", extra={"job_id": job_id})
        return True

    async def enqueue_reservation_job(
        self,
        *,
        uid: str,
        job_type: JobType,
        payload: NotificationPayload,
        routing: ReservationRouting | None = None,
        run_after: datetime | None = _UNSET,
    ) -> bool:
        """Create a reservation job routed by the user's live preferences.

        ``run_after`` defaults to now resolved through quiet hours and
        digest settings. When routing forbids delivery the job is still
        written, as ``skipped`` with the reason, so the decision is visible.
        """
        routing = routing or await self._preferences.read_reservation_routing(uid)
        now = self._clock()
        if run_after is _UNSET:
            run_after = resolve_run_after(now, routing.prefs)

        job = NotificationJob(
            type=job_type,
            uid=uid,
            channels=routing.channels,
            payload=payload,
            run_after=run_after,
            created_at=now,
            updated_at=now,
        )
        skip = routing.skip_reason()
        if skip is not None:
            job.status = JobStatus.SKIPPED
            job.last_error = skip.value
        return await self.enqueue(job)

    async def _claim(self, job_id: str, now: datetime) -> NotificationJob | None:
        async def claim(txn: Transaction) -> NotificationJob | None:
            data = await txn.get(JOBS_COLLECTION, job_id)
            if data is None:
                return None
            job = NotificationJob.model_validate(data)
            if job.status is not JobStatus.QUEUED:
                return None
            if job.run_after is not None and job.run_after > now:
                return None
            job.attempt_count += 1
            job.status = JobStatus.PROCESSING
            job.updated_at = now
            await txn.merge_patch(
                JOBS_COLLECTION,
                job_id,
                {"status": job.status, "attempt_count": job.attempt_count, "updated_at": now},
            )
            return job

        return await self._store.run_transaction(claim)

    async def _finish(self, job_id: str, **fields: Any) -> None:
        await self._store.merge_patch(
            JOBS_COLLECTION, job_id, {**fields, "updated_at": self._clock()}
        )

    async def _skip(self, job: NotificationJob, reason: SkipReason) -> JobStatus:
        await self._finish(job.job_id, status=JobStatus.SKIPPED, last_error=reason.value)
        notification_job_skips_total.labels(reason=reason.value).inc()
        notification_job_outcomes_total.labels(job_type=job.type.value, outcome="skipped").inc()
        logger.info(
            "Notification job skipped",
            extra={"job_id": job.job_id, "job_type": job.type.value, "reason": reason.value},
        )
        return JobStatus.SKIPPED

    async def live_skip_reason(self, job: NotificationJob) -> SkipReason | None:
        """Re-check that a follow-up or reminder still applies to its reservation."""
        if job.type not in _LIVE_CHECKED_TYPES:
            return None
        reservation_id = (job.payload.reservation_id or "").strip()
        if not reservation_id:
            return SkipReason.RESERVATION_ID_MISSING
        raw = await self._store.get(RESERVATIONS_COLLECTION, reservation_id)
        if raw is None:
            return SkipReason.RESERVATION_NOT_FOUND
        reservation = ReservationSnapshot.parse(reservation_id, raw)

        if job.type is JobType.RESERVATION_DELAY_FOLLOW_UP:
            if not reservation.is_delayed or reservation.is_cancelled or reservation.is_loaded:
                return SkipReason.RESERVATION_NO_LONGER_DELAYED
            return None

        if not reservation.is_loaded or reservation.is_cancelled:
            return SkipReason.RESERVATION_NOT_READY_FOR_PICKUP
        if reservation.current_storage_status is StorageStatus.STORED_BY_POLICY:
            return SkipReason.RESERVATION_STORAGE_FINALIZED
        ordinal = job.payload.reminder_ordinal
        # The sweep records count == ordinal when it enqueues; only a later
        # reminder supersedes this one.
        if ordinal and reservation.pickup_reminder_count > max(1, ordinal):
            return SkipReason.REMINDER_ALREADY_RECORDED
        return None

    async def process_job(self, job_id: str) -> JobStatus | None:
        """Run one processing attempt.

        Returns:
            The status the job was left in, or None when it was not claimable
            (missing, not queued or not yet due).
        """
        job = await self._claim(job_id, self._clock())
        if job is None:
            return None

        job_logger = logger.bind(job_id=job_id, job_type=job.type.value, attempt=job.attempt_count)
        started = time.perf_counter()
        try:
            return await self._attempt(job, job_logger)
        except Exception as exc:
            return await self._handle_failure(job, exc, job_logger)
        finally:
            notification_job_processing_seconds.labels(job_type=job.type.value).observe(
                time.perf_counter() - started
            )

    async def _attempt(self, job: NotificationJob, job_logger: Any) -> JobStatus:
        routing: ReservationRouting | None = None
        if job.type.is_reservation:
            routing = await self._preferences.read_reservation_routing(job.uid)
            reason = routing.skip_reason()
            if reason is not None:
                return await self._skip(job, reason)

        reason = await self.live_skip_reason(job)
        if reason is not None:
            return await self._skip(job, reason)

        channels: ChannelFlags = routing.channels if routing is not None else job.channels
        outcome = await self._dispatcher.dispatch(job, channels)

        if routing is not None and self.follow_ups is not None:
            await self.follow_ups.schedule_next(job, routing)

        await self._finish(job.job_id, status=JobStatus.DONE, last_error=outcome.last_error)
        notification_job_outcomes_total.labels(job_type=job.type.value, outcome="done").inc()
        job_logger.info("Notification job delivered", extra={"warnings": outcome.warnings})
        return JobStatus.DONE

    async def _handle_failure(
        self, job: NotificationJob, exc: Exception, job_logger: Any
    ) -> JobStatus:
        error_class = classify_error(exc)
        message = str(exc) or exc.__class__.__name__
        last_error = f"{error_class.value}: {message}"[: self._settings.dead_letter_message_max_chars]

        if is_retryable(error_class) and job.attempt_count < self._settings.max_attempts:
            delay = self._backoff.calculate_delay(job.attempt_count)
            await self._finish(
                job.job_id,
                status=JobStatus.QUEUED,
                run_after=self._clock() + timedelta(seconds=delay),
                last_error=last_error,
                last_error_class=error_class.value,
            )
            notification_job_retries_total.labels(
                job_type=job.type.value, error_class=error_class.value
            ).inc()
            notification_job_outcomes_total.labels(job_type=job.type.value, outcome="retried").inc()
            job_logger.warning(
                "Notification job failed, retry scheduled",
                extra={"error_class": error_class.value, "retry_in_seconds": round(delay, 1)},
            )
            return JobStatus.QUEUED

        await self._finish(
            job.job_id,
            status=JobStatus.FAILED,
            last_error=last_error,
            last_error_class=error_class.value,
        )
        await self._write_dead_letter(job, error_class, message)
        if job.type is JobType.RESERVATION_PICKUP_REMINDER and self.reminder_failures is not None:
            await self.reminder_failures.record_reminder_failure(job, error_class, message)
        notification_dead_letters_total.labels(
            job_type=job.type.value, error_class=error_class.value
        ).inc()
        notification_job_outcomes_total.labels(job_type=job.type.value, outcome="failed").inc()
        job_logger.error(
            "Notification job moved to dead-letter",
            extra={"error_class": error_class.value, "attempt_count": job.attempt_count},
        )
        return JobStatus.FAILED

    async def _write_dead_letter(
        self, job: NotificationJob, error_class: ErrorClass, message: str
    ) -> None:
        record = DeadLetter(
            job_id=job.job_id,
            uid=job.uid,
            type=job.type,
            payload=job.payload,
            channels=job.channels,
            attempt_count=job.attempt_count,
            error_class=error_class.value,
            error_message=message[: self._settings.dead_letter_message_max_chars],
            failed_at=self._clock(),
            dedupe_key=job.dedupe_key,
        )
        await self._store.create_if_absent(DEAD_LETTERS_COLLECTION, job.job_id, record)

    async def process_due_jobs(self, limit: int | None = None) -> ProcessSummary:
        """Process queued jobs whose ``run_after`` has passed.

        Jobs without a ``run_after`` count as due. Each job is processed
        independently; an error escaping one job does not stop the batch.
        """
        limit = limit or self._settings.due_batch_size
        now = self._clock()
        docs = await self._store.query(
            JOBS_COLLECTION,
            [FieldFilter("status", "==", JobStatus.QUEUED), FieldFilter("run_after", "<=", now)],
            order_by="run_after",
            limit=limit,
        )
        if len(docs) < limit:
            docs += await self._store.query(
                JOBS_COLLECTION,
                [FieldFilter("status", "==", JobStatus.QUEUED), FieldFilter("run_after", "==", None)],
                limit=limit - len(docs),
            )

        summary = ProcessSummary(picked=len(docs))
        for doc in docs:
            set_log_context(job_id=doc.id)
            try:
                status = await self.process_job(doc.id)
            except Exception:
                summary.errors += 1
                logger.exception("Queued notification job failed")
                continue
            finally:
                clear_log_context()
            if status is not None:
                summary.processed += 1
                summary.job_ids.append(doc.id)

        logger.info(
            "Due notification jobs processed",
            extra={"picked": summary.picked, "processed": summary.processed, "errors": summary.errors},
        )
        return summary

    async def list_dead_letters(self, limit: int = 50) -> list[DeadLetter]:
        docs = await self._store.query(
            DEAD_LETTERS_COLLECTION, order_by="failed_at", descending=True, limit=limit
        )
        return [DeadLetter.model_validate(doc.data) for doc in docs]
