"""Reservation lifecycle notifications and the storage policy."""

from .audit import StorageAuditLog
from .events import ReservationEventHandler
from .follow_ups import DelayFollowUpChainer
from .models import (
    RESERVATIONS_COLLECTION,
    STORAGE_AUDIT_COLLECTION,
    ReservationSnapshot,
    StorageAuditEntry,
    StorageStatus,
    SweepSummary,
)
from .policy import StoragePolicy
from .storage_policy import StoragePolicyEngine

__all__ = [
    "RESERVATIONS_COLLECTION",
    "STORAGE_AUDIT_COLLECTION",
    "DelayFollowUpChainer",
    "ReservationEventHandler",
    "ReservationSnapshot",
    "StorageAuditEntry",
    "StorageAuditLog",
    "StoragePolicy",
    "StoragePolicyEngine",
    "StorageStatus",
    "SweepSummary",
]
