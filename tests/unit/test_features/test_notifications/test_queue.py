"""Unit tests for the notification job queue.

Organization:
    - Enqueue: dedupe, skipped jobs and immediate processing
    - Processing: claiming, delivery and channel routing
    - Retries: backoff, classification and dead letters
    - Live checks: follow-ups and reminders re-validated at send time
    - Due sweep: batch selection and error isolation
"""

from __future__ import annotations

from datetime import timedelta

import pytest

from notification_service.features.notifications.models import (
    DEAD_LETTERS_COLLECTION,
    IN_APP_COLLECTION,
    JOBS_COLLECTION,
    ChannelFlags,
    JobStatus,
    JobType,
    NotificationJob,
    NotificationPayload,
    SkipReason,
)
from notification_service.utils.timestamps import to_iso


def _kiln_job(key: str = "FIRING_UNLOADED:f1:member-1", **fields) -> NotificationJob:
    fields.setdefault("channels", ChannelFlags(in_app=True))
    return NotificationJob(
        type=JobType.KILN_UNLOADED,
        uid="member-1",
        payload=NotificationPayload(dedupe_key=key, firing_id="f1"),
        **fields,
    )


def _reminder_job(reservation_id: str | None = "r1", ordinal: int = 1) -> NotificationJob:
    return NotificationJob(
        type=JobType.RESERVATION_PICKUP_REMINDER,
        uid="member-1",
        payload=NotificationPayload(
            dedupe_key=f"RESERVATION_PICKUP_REMINDER:{reservation_id}:anchor:{ordinal}",
            reservation_id=reservation_id,
            reminder_ordinal=ordinal,
        ),
    )


async def _stored(store, job: NotificationJob) -> dict:
    return await store.get(JOBS_COLLECTION, job.job_id)


# ============================================================================
# Enqueue
# ============================================================================


@pytest.mark.unit
class TestEnqueue:
    async def test_duplicate_dedupe_key_is_ignored(self, services, store):
        assert await services.queue.enqueue(_kiln_job()) is True
        assert await services.queue.enqueue(_kiln_job(channels=ChannelFlags(email=True))) is False

        stored = await _stored(store, _kiln_job())
        assert stored["channels"]["in_app"] is True
        assert stored["status"] == "queued"

    async def test_get_job_round_trips(self, services):
        job = _kiln_job()
        await services.queue.enqueue(job)

        loaded = await services.queue.get_job(job.job_id)

        assert loaded is not None
        assert loaded.dedupe_key == job.dedupe_key
        assert await services.queue.get_job("missing") is None

    async def test_reservation_job_for_opted_out_user_is_written_skipped(self, services, store, seed):
        await seed.profile("member-1", notify_reservations=False)

        created = await services.queue.enqueue_reservation_job(
            uid="member-1",
            job_type=JobType.RESERVATION_STATUS,
            payload=NotificationPayload(dedupe_key="RESERVATION_STATUS:r1:x", reservation_id="r1"),
        )

        assert created is True
        (doc,) = store.dump(JOBS_COLLECTION).values()
        assert doc["status"] == "skipped"
        assert doc["last_error"] == "RESERVATION_PREF_DISABLED"

    async def test_disabled_user_with_unknown_frequency_stays_disabled(self, services, store, seed):
        await seed.preferences("member-1", enabled=False, frequency={"mode": "weekly"})

        await services.queue.enqueue_reservation_job(
            uid="member-1",
            job_type=JobType.RESERVATION_STATUS,
            payload=NotificationPayload(dedupe_key="RESERVATION_STATUS:r1:x", reservation_id="r1"),
        )

        (doc,) = store.dump(JOBS_COLLECTION).values()
        assert doc["status"] == "skipped"
        assert doc["last_error"] == "PREFS_DISABLED"

    async def test_reservation_job_uses_quiet_hours(self, services, store, seed, clock):
        # 17:00 UTC is 10:00 in Phoenix; quiet until noon local
        await seed.preferences(
            "member-1",
            quiet_hours={"enabled": True, "start_local": "06:00", "end_local": "12:00"},
        )

        await services.queue.enqueue_reservation_job(
            uid="member-1",
            job_type=JobType.RESERVATION_STATUS,
            payload=NotificationPayload(dedupe_key="RESERVATION_STATUS:r1:x", reservation_id="r1"),
        )

        (doc,) = store.dump(JOBS_COLLECTION).values()
        assert doc["run_after"] == to_iso(clock() + timedelta(hours=2))
        assert doc["channels"] == {"in_app": True, "email": False, "push": False, "sms": False}

    async def test_explicit_run_after(self, services, store, clock):
        later = clock() + timedelta(hours=12)

        await services.queue.enqueue_reservation_job(
            uid="member-1",
            job_type=JobType.RESERVATION_DELAY_FOLLOW_UP,
            payload=NotificationPayload(dedupe_key="k", reservation_id="r1"),
            run_after=later,
        )

        (doc,) = store.dump(JOBS_COLLECTION).values()
        assert doc["run_after"] == to_iso(later)

    async def test_eager_queue_processes_on_enqueue(self, eager_services, store):
        job = _kiln_job()

        await eager_services.queue.enqueue(job)

        assert (await _stored(store, job))["status"] == "done"
        assert job.job_id in store.dump(IN_APP_COLLECTION)

    async def test_eager_failures_stay_queued_for_the_sweep(
        self, eager_services, store, providers
    ):
        await eager_services.device_tokens.register("member-1", "abc123")
        providers.push_status = 503
        job = _kiln_job(channels=ChannelFlags(push=True))

        assert await eager_services.queue.enqueue(job) is True

        stored = await _stored(store, job)
        assert stored["status"] == "queued"
        assert stored["attempt_count"] == 1


# ============================================================================
# Processing
# ============================================================================


@pytest.mark.unit
class TestProcessJob:
    async def test_delivers_and_marks_done(self, services, store):
        job = _kiln_job()
        await services.queue.enqueue(job)

        status = await services.queue.process_job(job.job_id)

        assert status is JobStatus.DONE
        stored = await _stored(store, job)
        assert stored["status"] == "done"
        assert stored["attempt_count"] == 1
        assert stored["last_error"] is None
        assert job.job_id in store.dump(IN_APP_COLLECTION)

    async def test_unclaimable_jobs_return_none(self, services, clock):
        future = _kiln_job(run_after=clock() + timedelta(minutes=5))
        await services.queue.enqueue(future)

        assert await services.queue.process_job(future.job_id) is None
        assert await services.queue.process_job("missing") is None

    async def test_done_jobs_are_not_reprocessed(self, services):
        job = _kiln_job()
        await services.queue.enqueue(job)
        await services.queue.process_job(job.job_id)

        assert await services.queue.process_job(job.job_id) is None

    async def test_soft_warnings_recorded_on_done_job(self, services, store, seed):
        await seed.identity("member-1")
        job = _kiln_job(channels=ChannelFlags(in_app=True, email=True))
        await services.queue.enqueue(job)

        await services.queue.process_job(job.job_id)

        stored = await _stored(store, job)
        assert stored["status"] == "done"
        assert stored["last_error"] == "EMAIL_MISSING"

    async def test_reservation_channels_follow_live_preferences(self, services, store, seed):
        """Routing is re-read at send time, not frozen at enqueue."""
        await services.queue.enqueue_reservation_job(
            uid="member-1",
            job_type=JobType.RESERVATION_STATUS,
            payload=NotificationPayload(dedupe_key="RESERVATION_STATUS:r1:x", reservation_id="r1"),
        )
        await seed.preferences("member-1", enabled=False)
        (job_id,) = store.dump(JOBS_COLLECTION)

        status = await services.queue.process_job(job_id)

        assert status is JobStatus.SKIPPED
        assert (await store.get(JOBS_COLLECTION, job_id))["last_error"] == "PREFS_DISABLED"
        assert store.dump(IN_APP_COLLECTION) == {}


# ============================================================================
# Retries
# ============================================================================


@pytest.mark.unit
class TestRetries:
    @pytest.fixture
    async def push_job(self, services, providers) -> NotificationJob:
        await services.device_tokens.register("member-1", "abc123")
        job = _kiln_job(channels=ChannelFlags(push=True))
        await services.queue.enqueue(job)
        return job

    async def test_retryable_failure_backs_off(self, services, store, providers, clock, push_job):
        providers.push_status = 503

        status = await services.queue.process_job(push_job.job_id)

        assert status is JobStatus.QUEUED
        stored = await _stored(store, push_job)
        assert stored["run_after"] == to_iso(clock() + timedelta(seconds=60))
        assert stored["last_error"].startswith("provider_5xx: Push relay failed: 503")
        assert stored["last_error_class"] == "provider_5xx"

        clock.advance(seconds=60)
        await services.queue.process_job(push_job.job_id)

        stored = await _stored(store, push_job)
        assert stored["attempt_count"] == 2
        assert stored["run_after"] == to_iso(clock() + timedelta(seconds=120))

    async def test_retry_succeeds_once_provider_recovers(self, services, store, providers, clock, push_job):
        providers.push_status = 503
        await services.queue.process_job(push_job.job_id)

        providers.push_status = 200
        clock.advance(minutes=1)
        status = await services.queue.process_job(push_job.job_id)

        assert status is JobStatus.DONE
        assert (await _stored(store, push_job))["attempt_count"] == 2

    async def test_exhausted_retries_dead_letter(self, services, store, providers, clock, push_job):
        providers.push_status = 503

        statuses = []
        for _ in range(5):
            statuses.append(await services.queue.process_job(push_job.job_id))
            clock.advance(hours=1)

        assert statuses == [JobStatus.QUEUED] * 4 + [JobStatus.FAILED]
        stored = await _stored(store, push_job)
        assert stored["status"] == "failed"
        assert stored["attempt_count"] == 5

        (letter,) = await services.queue.list_dead_letters()
        assert letter.job_id == push_job.job_id
        assert letter.error_class == "provider_5xx"
        assert letter.attempt_count == 5
        assert letter.dedupe_key == push_job.dedupe_key

    async def test_auth_failure_is_not_retried(self, services, store, providers, push_job):
        providers.push_status = 401

        status = await services.queue.process_job(push_job.job_id)

        assert status is JobStatus.FAILED
        assert (await _stored(store, push_job))["last_error_class"] == "auth"
        assert push_job.job_id in store.dump(DEAD_LETTERS_COLLECTION)

    async def test_provider_4xx_is_not_retried(self, services, providers, push_job):
        providers.push_status = 400

        assert await services.queue.process_job(push_job.job_id) is JobStatus.FAILED

    async def test_dead_letters_newest_first(self, services, providers, clock):
        await services.device_tokens.register("member-1", "abc123")
        providers.push_status = 401
        for key in ("first", "second"):
            job = _kiln_job(key, channels=ChannelFlags(push=True))
            await services.queue.enqueue(job)
            await services.queue.process_job(job.job_id)
            clock.advance(minutes=1)

        letters = await services.queue.list_dead_letters(limit=10)

        assert [letter.dedupe_key for letter in letters] == ["second", "first"]


# ============================================================================
# Live checks
# ============================================================================


@pytest.mark.unit
class TestLiveSkipReason:
    async def test_other_job_types_are_not_checked(self, services):
        assert await services.queue.live_skip_reason(_kiln_job()) is None

    async def test_reminder_without_reservation_id(self, services):
        reason = await services.queue.live_skip_reason(_reminder_job(reservation_id=None))

        assert reason is SkipReason.RESERVATION_ID_MISSING

    async def test_reminder_for_missing_reservation(self, services):
        assert await services.queue.live_skip_reason(_reminder_job()) is SkipReason.RESERVATION_NOT_FOUND

    async def test_reminder_for_unloaded_reservation(self, services, seed):
        await seed.reservation("r1")

        reason = await services.queue.live_skip_reason(_reminder_job())

        assert reason is SkipReason.RESERVATION_NOT_READY_FOR_PICKUP

    async def test_reminder_for_finalized_storage(self, services, seed):
        await seed.loaded_reservation("r1", ready_hours_ago=200, storage_status="stored_by_policy")

        reason = await services.queue.live_skip_reason(_reminder_job())

        assert reason is SkipReason.RESERVATION_STORAGE_FINALIZED

    @pytest.mark.parametrize(
        ("recorded", "ordinal", "expected"),
        [
            (1, 1, None),
            (2, 1, SkipReason.REMINDER_ALREADY_RECORDED),
            (2, 2, None),
            (3, 2, SkipReason.REMINDER_ALREADY_RECORDED),
        ],
    )
    async def test_superseded_reminders(self, services, seed, recorded, ordinal, expected):
        await seed.loaded_reservation("r1", ready_hours_ago=80, pickup_reminder_count=recorded)

        assert await services.queue.live_skip_reason(_reminder_job(ordinal=ordinal)) is expected

    async def test_follow_up_for_reservation_no_longer_delayed(self, services, seed):
        await seed.reservation("r1", estimated_window={"sla_state": "on_track"})
        job = NotificationJob(
            type=JobType.RESERVATION_DELAY_FOLLOW_UP,
            uid="member-1",
            payload=NotificationPayload(dedupe_key="follow-up", reservation_id="r1"),
        )

        assert await services.queue.live_skip_reason(job) is SkipReason.RESERVATION_NO_LONGER_DELAYED

    async def test_follow_up_for_delayed_reservation(self, services, seed):
        await seed.reservation("r1", estimated_window={"sla_state": "DELAYED"})
        job = NotificationJob(
            type=JobType.RESERVATION_DELAY_FOLLOW_UP,
            uid="member-1",
            payload=NotificationPayload(dedupe_key="follow-up", reservation_id="r1"),
        )

        assert await services.queue.live_skip_reason(job) is None

    async def test_skip_is_applied_during_processing(self, services, store):
        job = _reminder_job()
        await services.queue.enqueue(job)

        status = await services.queue.process_job(job.job_id)

        assert status is JobStatus.SKIPPED
        assert (await _stored(store, job))["last_error"] == "RESERVATION_NOT_FOUND"


# ============================================================================
# Due sweep
# ============================================================================


@pytest.mark.unit
class TestProcessDueJobs:
    async def test_processes_due_and_unscheduled_jobs(self, services, clock):
        due = _kiln_job("due", run_after=clock() - timedelta(minutes=1))
        unscheduled = _kiln_job("unscheduled")
        future = _kiln_job("future", run_after=clock() + timedelta(hours=1))
        for job in (due, unscheduled, future):
            await services.queue.enqueue(job)

        summary = await services.queue.process_due_jobs()

        assert summary.picked == 2
        assert summary.processed == 2
        assert summary.errors == 0
        assert set(summary.job_ids) == {due.job_id, unscheduled.job_id}
        assert (await services.queue.get_job(future.job_id)).status is JobStatus.QUEUED

    async def test_limit_applies_across_both_queries(self, services, clock):
        for index in range(3):
            await services.queue.enqueue(_kiln_job(f"due-{index}", run_after=clock()))
        await services.queue.enqueue(_kiln_job("unscheduled"))

        summary = await services.queue.process_due_jobs(limit=2)

        assert summary.picked == 2

    async def test_failures_do_not_stop_the_batch(self, services, providers, clock):
        await services.device_tokens.register("member-1", "abc123")
        providers.push_status = 503
        await services.queue.enqueue(_kiln_job("failing", channels=ChannelFlags(push=True)))
        await services.queue.enqueue(_kiln_job("fine"))

        summary = await services.queue.process_due_jobs()

        assert summary.processed == 2
        assert summary.errors == 0

    async def test_retried_jobs_wait_for_their_backoff(self, services, providers, clock):
        await services.device_tokens.register("member-1", "abc123")
        providers.push_status = 503
        await services.queue.enqueue(_kiln_job("failing", channels=ChannelFlags(push=True)))
        await services.queue.process_due_jobs()

        assert (await services.queue.process_due_jobs()).picked == 0

        clock.advance(seconds=60)
        assert (await services.queue.process_due_jobs()).picked == 1
