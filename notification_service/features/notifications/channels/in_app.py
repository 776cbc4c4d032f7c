"""In-app notification channel."""

from __future__ import annotations

from collections.abc import Callable
from datetime import datetime

from notification_service.infra.documents import DocumentStore
from notification_service.utils.timestamps import utc_now

from ..content import JobContent
from ..metrics import notification_channel_deliveries_total
from ..models import IN_APP_COLLECTION, InAppNotification, NotificationJob
from .base import DeliveryResult


class InAppChannel:
    """Writes one in-app record per dedupe key; a second write is a no-op."""

    channel_name = "in_app"

    def __init__(self, store: DocumentStore, clock: Callable[[], datetime] = utc_now) -> None:
        self._store = store
        self._clock = clock

    async def send(self, job: NotificationJob, content: JobContent) -> DeliveryResult:
        record = InAppNotification(
            uid=job.uid,
            type=content.message_type,
            title=content.title,
            body=content.body,
            data=content.data,
            dedupe_key=job.dedupe_key,
            source_kind=content.source_kind,
            source_id=content.source_id,
            created_at=self._clock(),
        )
        created = await self._store.create_if_absent(IN_APP_COLLECTION, job.job_id, record)
        outcome = "sent" if created else "duplicate"
        notification_channel_deliveries_total.labels(channel=self.channel_name, outcome=outcome).inc()
        return DeliveryResult(outcome=outcome, metadata={"record_id": job.job_id})
