"""Unit tests for the storage audit trail."""

from __future__ import annotations

import pytest

from notification_service.features.reservations.audit import StorageAuditLog
from notification_service.features.reservations.models import (
    STORAGE_AUDIT_COLLECTION,
    StorageStatus,
)


@pytest.fixture
def audit(store, clock) -> StorageAuditLog:
    return StorageAuditLog(store, max_entries=3, clock=clock)


@pytest.mark.unit
class TestStorageAuditLog:
    async def test_record_and_list(self, audit, clock):
        await audit.record(
            reservation_id="res-1",
            uid="member-1",
            action="storage_status_transition",
            reason="Reservation entered storage hold pending status.",
            from_status=StorageStatus.REMINDER_PENDING,
            to_status=StorageStatus.HOLD_PENDING,
        )

        (entry,) = await audit.list_for("res-1")
        assert entry.to_status is StorageStatus.HOLD_PENDING
        assert entry.at == clock()
        assert await audit.list_for("res-2") == []

    async def test_identical_entries_are_written_once(self, audit, store):
        kwargs = {"reservation_id": "res-1", "uid": "member-1", "action": "pickup_ready", "reason": "ready"}

        first = await audit.record(**kwargs)
        second = await audit.record(**kwargs)

        assert first == second
        assert len(store.dump(STORAGE_AUDIT_COLLECTION)) == 1

    async def test_keeps_newest_entries(self, audit, clock):
        for ordinal in range(1, 6):
            await audit.record(
                reservation_id="res-1",
                uid="member-1",
                action="pickup_reminder_enqueued",
                reason="reminder",
                reminder_ordinal=ordinal,
            )
            clock.advance(hours=1)

        entries = await audit.list_for("res-1")
        assert [entry.reminder_ordinal for entry in entries] == [3, 4, 5]

    async def test_pruning_is_per_reservation(self, audit):
        for reservation_id in ("res-1", "res-2"):
            for ordinal in range(3):
                await audit.record(
                    reservation_id=reservation_id,
                    uid="member-1",
                    action="pickup_reminder_enqueued",
                    reason="reminder",
                    reminder_ordinal=ordinal,
                )

        assert len(await audit.list_for("res-1")) == 3
        assert len(await audit.list_for("res-2")) == 3
