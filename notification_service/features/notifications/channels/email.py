"""Email channel: enqueues a message for the external mailer."""

from __future__ import annotations

from collections.abc import Callable
from datetime import datetime

from notification_service.infra.documents import DocumentStore
from notification_service.utils.hashing import stable_id
from notification_service.utils.timestamps import utc_now

from ..content import JobContent
from ..directory import IdentityDirectory
from ..metrics import notification_channel_deliveries_total
from ..models import MAIL_COLLECTION, MailMessage, NotificationJob
from .base import DeliveryResult

EMAIL_MISSING = "EMAIL_MISSING"


def mail_record_id(dedupe_key: str, *, fallback: bool = False) -> str:
    suffix = "sms_fallback_email" if fallback else "email"
    return stable_id(f"{dedupe_key}:{suffix}")


class EmailChannel:
    """Creates ``mail`` documents keyed by dedupe key.

    The SMS fallback path uses its own record id so a fallback never
    collides with a primary email for the same job.
    """

    channel_name = "email"

    def __init__(
        self,
        store: DocumentStore,
        directory: IdentityDirectory,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._store = store
        self._directory = directory
        self._clock = clock

    async def send(
        self, job: NotificationJob, content: JobContent, *, fallback: bool = False
    ) -> DeliveryResult:
        identity = await self._directory.get_identity(job.uid)
        address = identity.email if identity else None
        if not address:
            notification_channel_deliveries_total.labels(
                channel=self.channel_name, outcome="skipped"
            ).inc()
            return DeliveryResult(outcome="skipped", reason=EMAIL_MISSING)

        record_id = mail_record_id(job.dedupe_key, fallback=fallback)
        message = MailMessage(
            to=address,
            subject=content.subject,
            text=content.text_body,
            data=content.data,
            dedupe_key=job.dedupe_key,
            created_at=self._clock(),
        )
        created = await self._store.create_if_absent(MAIL_COLLECTION, record_id, message)
        outcome = "sent" if created else "duplicate"
        notification_channel_deliveries_total.labels(channel=self.channel_name, outcome=outcome).inc()
        return DeliveryResult(outcome=outcome, metadata={"record_id": record_id})
