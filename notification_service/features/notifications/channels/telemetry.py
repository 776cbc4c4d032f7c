"""Delivery attempt telemetry for SMS and push."""

from __future__ import annotations

from collections.abc import Callable, Sequence
from datetime import datetime
from typing import Literal

from notification_service.infra.documents import DocumentStore
from notification_service.utils.hashing import stable_id
from notification_service.utils.timestamps import utc_now

from ..models import DELIVERY_ATTEMPTS_COLLECTION, DeliveryAttempt, NotificationJob

AttemptStatus = Literal["sent", "skipped", "failed"]
FallbackStatus = Literal["sent", "missing_email", "failed"]


class DeliveryTelemetry:
    """Writes one ``DeliveryAttempt`` document per distinct attempt outcome.

    Ids are derived from the dedupe key and the outcome, so a retried job
    overwrites its own earlier record instead of adding noise.
    """

    def __init__(self, store: DocumentStore, clock: Callable[[], datetime] = utc_now) -> None:
        self._store = store
        self._clock = clock

    async def record_sms(
        self,
        job: NotificationJob,
        *,
        status: AttemptStatus,
        reason: str,
        provider: str | None = None,
        provider_code: str | None = None,
        phone_e164: str | None = None,
        accepted: int | None = None,
        rejected: int | None = None,
        fallback_status: FallbackStatus | None = None,
    ) -> str:
        attempt_id = stable_id(
            f"{job.dedupe_key}:sms:{status}:{reason}:"
            f"{provider_code or 'none'}:{fallback_status or 'none'}"
        )
        attempt = DeliveryAttempt(
            uid=job.uid,
            channel="sms",
            type=job.type,
            firing_id=job.payload.firing_id,
            reservation_id=job.payload.reservation_id,
            status=status,
            reason=reason,
            provider=provider,
            provider_code=provider_code,
            phone_hash=stable_id(phone_e164) if phone_e164 else None,
            accepted=accepted,
            rejected=rejected,
            fallback_channel="email" if fallback_status else None,
            fallback_status=fallback_status,
            dedupe_key=job.dedupe_key,
            created_at=self._clock(),
        )
        await self._store.set(DELIVERY_ATTEMPTS_COLLECTION, attempt_id, attempt)
        return attempt_id

    async def record_push(
        self,
        job: NotificationJob,
        *,
        status: AttemptStatus,
        reason: str,
        token_hashes: Sequence[str] = (),
        provider: str | None = None,
        accepted: int | None = None,
        rejected: int | None = None,
        provider_codes: Sequence[str] = (),
    ) -> str:
        attempt_id = stable_id(f"{job.dedupe_key}:push:{reason}")
        attempt = DeliveryAttempt(
            uid=job.uid,
            channel="push",
            type=job.type,
            firing_id=job.payload.firing_id,
            reservation_id=job.payload.reservation_id,
            status=status,
            reason=reason,
            provider=provider,
            token_hashes=list(token_hashes),
            accepted=accepted,
            rejected=rejected,
            provider_codes=list(provider_codes),
            dedupe_key=job.dedupe_key,
            created_at=self._clock(),
        )
        await self._store.set(DELIVERY_ATTEMPTS_COLLECTION, attempt_id, attempt)
        return attempt_id
