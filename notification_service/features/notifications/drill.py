"""Operator-triggered failure drills.

A drill enqueues a synthetic kiln-unload job whose ``drill_mode`` makes
the SMS and push channels simulate a provider outcome, so the retry and
dead-letter paths can be exercised end to end without a real provider.
"""

from __future__ import annotations

import secrets
from collections.abc import Callable
from datetime import datetime, timedelta

from pydantic import BaseModel, Field

from notification_service.infra.logging import get_logger
from notification_service.utils.timestamps import to_epoch_ms, utc_now

from .models import ChannelFlags, DrillMode, JobType, NotificationJob, NotificationPayload
from .queue import JobQueue

logger = get_logger(__name__)

DEFERRED_DRILL_DELAY = timedelta(minutes=2)


class DrillChannels(BaseModel):
    """Channel selection for a drill; push only unless stated otherwise."""

    in_app: bool = False
    email: bool = False
    push: bool = True
    sms: bool = False


class DrillRequest(BaseModel):
    uid: str = Field(min_length=1)
    mode: DrillMode
    channels: DrillChannels = Field(default_factory=DrillChannels)
    force_run_now: bool = True


class DrillResult(BaseModel):
    job_id: str
    uid: str
    mode: DrillMode


class FailureDrillRunner:
    def __init__(self, queue: JobQueue, clock: Callable[[], datetime] = utc_now) -> None:
        self._queue = queue
        self._clock = clock

    async def run(self, request: DrillRequest) -> DrillResult:
        now = self._clock()
        drill_id = f"drill-{to_epoch_ms(now)}-{secrets.token_hex(3)}"
        job = NotificationJob(
            type=JobType.KILN_UNLOADED,
            uid=request.uid,
            channels=ChannelFlags(**request.channels.model_dump()),
            payload=NotificationPayload(
                dedupe_key=f"DRILL:{request.mode.value}:{drill_id}:{request.uid}",
                firing_id=f"drill-firing-{drill_id}",
                kiln_name="Drill Kiln",
                firing_type="bisque",
                drill_mode=request.mode,
            ),
            run_after=now if request.force_run_now else now + DEFERRED_DRILL_DELAY,
            created_at=now,
            updated_at=now,
        )
        await self._queue.enqueue(job)
        logger.info(
            "Notification failure drill enqueued",
            extra={"job_id": job.job_id, "uid": request.uid, "mode": request.mode.value},
        )
        return DrillResult(job_id=job.job_id, uid=request.uid, mode=request.mode)
