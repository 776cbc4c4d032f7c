"""Append-only audit trail for storage-policy actions."""

from __future__ import annotations

from collections.abc import Callable
from datetime import datetime

from notification_service.infra.documents import DocumentStore, FieldFilter
from notification_service.infra.logging import get_logger
from notification_service.utils.hashing import stable_id
from notification_service.utils.timestamps import to_iso, utc_now

from .models import STORAGE_AUDIT_COLLECTION, StorageAuditEntry, StorageStatus

logger = get_logger(__name__)


class StorageAuditLog:
    """Writes immutable audit entries, keeping the newest ``max_entries`` per reservation."""

    def __init__(
        self,
        store: DocumentStore,
        max_entries: int = 60,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._store = store
        self._max_entries = max_entries
        self._clock = clock

    async def record(
        self,
        *,
        reservation_id: str,
        uid: str,
        action: str,
        reason: str,
        at: datetime | None = None,
        from_status: StorageStatus | None = None,
        to_status: StorageStatus | None = None,
        reminder_ordinal: int | None = None,
        reminder_count: int | None = None,
        request_id: str | None = None,
        failure_code: str | None = None,
    ) -> str:
        now = self._clock()
        at = at or now
        entry_id = stable_id(
            ":".join(
                [
                    reservation_id,
                    action,
                    request_id or "none",
                    to_iso(at),
                    reason,
                    "" if reminder_ordinal is None else str(reminder_ordinal),
                    "" if reminder_count is None else str(reminder_count),
                ]
            )
        )
        entry = StorageAuditEntry(
            reservation_id=reservation_id,
            uid=uid,
            action=action,
            reason=reason,
            from_status=from_status,
            to_status=to_status,
            reminder_ordinal=reminder_ordinal,
            reminder_count=reminder_count,
            request_id=request_id,
            failure_code=failure_code,
            at=at,
            created_at=now,
        )
        await self._store.create_if_absent(STORAGE_AUDIT_COLLECTION, entry_id, entry)
        await self._prune(reservation_id)
        return entry_id

    async def list_for(self, reservation_id: str, limit: int | None = None) -> list[StorageAuditEntry]:
        docs = await self._store.query(
            STORAGE_AUDIT_COLLECTION,
            [FieldFilter("reservation_id", "==", reservation_id)],
            order_by="at",
            limit=limit,
        )
        return [StorageAuditEntry.model_validate(doc.data) for doc in docs]

    async def _prune(self, reservation_id: str) -> None:
        docs = await self._store.query(
            STORAGE_AUDIT_COLLECTION,
            [FieldFilter("reservation_id", "==", reservation_id)],
            order_by="at",
        )
        overflow = len(docs) - self._max_entries
        if overflow <= 0:
            return
        for doc in docs[:overflow]:
            await self._store.delete(STORAGE_AUDIT_COLLECTION, doc.id)
        logger.debug(
            "Pruned storage audit entries",
            extra={"reservation_id": reservation_id, "pruned": overflow},
        )
