"""Unit tests for delay follow-up chains."""

from __future__ import annotations

from datetime import timedelta

import pytest

from notification_service.features.notifications.models import (
    EventKind,
    JobStatus,
    JobType,
    NotificationJob,
    NotificationPayload,
    job_id_for,
)
from notification_service.features.reservations.follow_ups import delay_follow_up_key
from notification_service.features.reservations.models import ReservationSnapshot
from notification_service.utils.timestamps import to_iso

EPISODE = "2026-10-14T12:00:00.000000Z"


@pytest.fixture
async def delayed(seed):
    return await seed.reservation(
        "res-1",
        estimated_window={
            "current_start": "2026-10-20T16:00:00.000000Z",
            "current_end": "2026-10-21T16:00:00.000000Z",
            "sla_state": "delayed",
            "updated_at": EPISODE,
        },
    )


@pytest.fixture
async def routing(services):
    return await services.preferences.read_reservation_routing("member-1")


def _follow_up(ordinal: int, reservation_id: str = "res-1") -> NotificationJob:
    return NotificationJob(
        type=JobType.RESERVATION_DELAY_FOLLOW_UP,
        uid="member-1",
        payload=NotificationPayload(
            dedupe_key=delay_follow_up_key(reservation_id, EPISODE, ordinal),
            reservation_id=reservation_id,
            event_kind=EventKind.DELAY_FOLLOW_UP,
            delay_episode_id=EPISODE,
            delay_follow_up_ordinal=ordinal,
        ),
    )


@pytest.mark.unit
class TestStartEpisode:
    async def test_first_link_after_initial_delay(self, services, delayed, routing, clock):
        reservation = ReservationSnapshot.parse("res-1", delayed)

        assert await services.follow_ups.start_episode(reservation, routing)

        job = await services.queue.get_job(job_id_for(delay_follow_up_key("res-1", EPISODE, 1)))
        assert job.run_after == clock() + timedelta(hours=12)
        assert job.payload.delay_follow_up_ordinal == 1
        assert job.payload.suggested_next_update_at == to_iso(job.run_after)
        assert job.payload.current_window_start == "2026-10-20T16:00:00.000000Z"

    async def test_requires_owner(self, services, routing):
        reservation = ReservationSnapshot.parse("res-1", {"status": "CONFIRMED"})

        assert not await services.follow_ups.start_episode(reservation, routing)


@pytest.mark.unit
class TestScheduleNext:
    async def test_next_link_after_repeat_delay(self, services, delayed, routing, clock):
        assert await services.follow_ups.schedule_next(_follow_up(1), routing)

        job = await services.queue.get_job(job_id_for(delay_follow_up_key("res-1", EPISODE, 2)))
        assert job.run_after == clock() + timedelta(hours=24)
        assert job.payload.delay_follow_up_ordinal == 2

    async def test_chain_stops_at_cap(self, services, delayed, routing):
        assert not await services.follow_ups.schedule_next(_follow_up(14), routing)

    @pytest.mark.parametrize(
        "overrides",
        [
            {"status": "CANCELLED"},
            {"load_status": "loaded"},
            {"estimated_window": {"sla_state": "on_track"}},
        ],
    )
    async def test_chain_stops_when_no_longer_delayed(self, services, delayed, seed, routing, overrides):
        await seed.reservation("res-1", **{**delayed, **overrides})

        assert not await services.follow_ups.schedule_next(_follow_up(1), routing)

    async def test_missing_reservation(self, services, routing):
        assert not await services.follow_ups.schedule_next(_follow_up(1, "gone"), routing)

    async def test_undeliverable_routing(self, services, delayed, seed):
        await seed.profile("member-1", notify_reservations=False)
        routing = await services.preferences.read_reservation_routing("member-1")

        assert not await services.follow_ups.schedule_next(_follow_up(1), routing)

    async def test_ignores_other_job_types(self, services, delayed, routing):
        job = _follow_up(1).model_copy(update={"type": JobType.RESERVATION_STATUS})

        assert not await services.follow_ups.schedule_next(job, routing)


@pytest.mark.unit
class TestChainThroughQueue:
    async def test_delivered_follow_up_schedules_the_next(self, services, delayed, routing, clock):
        reservation = ReservationSnapshot.parse("res-1", delayed)
        await services.follow_ups.start_episode(reservation, routing)
        first_id = job_id_for(delay_follow_up_key("res-1", EPISODE, 1))
        clock.advance(hours=12)

        assert await services.queue.process_job(first_id) is JobStatus.DONE

        second = await services.queue.get_job(job_id_for(delay_follow_up_key("res-1", EPISODE, 2)))
        assert second is not None
        assert second.status is JobStatus.QUEUED

    async def test_recovered_reservation_skips_pending_link(self, services, delayed, seed, routing, clock):
        reservation = ReservationSnapshot.parse("res-1", delayed)
        await services.follow_ups.start_episode(reservation, routing)
        await seed.reservation("res-1", estimated_window={"sla_state": "on_track"})
        clock.advance(hours=12)

        status = await services.queue.process_job(job_id_for(delay_follow_up_key("res-1", EPISODE, 1)))

        assert status is JobStatus.SKIPPED
