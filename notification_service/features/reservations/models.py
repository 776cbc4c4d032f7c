"""Reservation snapshot and storage-policy records.

Reservation documents are written by other services, so every field is
parsed leniently: unknown or malformed values become None (or 0 for
counters) instead of failing validation.
"""

from __future__ import annotations

from collections.abc import Mapping
from datetime import datetime
from enum import StrEnum
from typing import Annotated, Any

from pydantic import BaseModel, BeforeValidator, Field, PlainSerializer

from notification_service.utils.timestamps import parse_timestamp, to_iso

RESERVATIONS_COLLECTION = "reservations"
STORAGE_AUDIT_COLLECTION = "reservation_storage_audit"

CANCELLED = "CANCELLED"
CONFIRMED = "CONFIRMED"
WAITLISTED = "WAITLISTED"
LOADED = "loaded"
DELAYED = "delayed"


class StorageStatus(StrEnum):
    ACTIVE = "active"
    REMINDER_PENDING = "reminder_pending"
    HOLD_PENDING = "hold_pending"
    STORED_BY_POLICY = "stored_by_policy"

    @property
    def rank(self) -> int:
        return _STORAGE_RANK[self]


_STORAGE_RANK = {
    StorageStatus.ACTIVE: 0,
    StorageStatus.REMINDER_PENDING: 1,
    StorageStatus.HOLD_PENDING: 2,
    StorageStatus.STORED_BY_POLICY: 3,
}


class PickupWindowStatus(StrEnum):
    OPEN = "open"
    CONFIRMED = "confirmed"
    MISSED = "missed"
    EXPIRED = "expired"
    COMPLETED = "completed"


def _text(value: Any) -> str | None:
    if not isinstance(value, str | int | float) or isinstance(value, bool):
        return None
    text = str(value).strip()
    return text or None


def _lower(value: Any) -> str | None:
    text = _text(value)
    return text.lower() if text else None


def _reservation_status(value: Any) -> str | None:
    text = _text(value)
    if not text:
        return None
    upper = text.upper()
    return CANCELLED if upper == "CANCELED" else upper


def _count(value: Any) -> int:
    if isinstance(value, bool):
        return 0
    try:
        parsed = int(float(value))
    except (TypeError, ValueError, OverflowError):
        return 0
    return max(0, parsed)


def _optional_count(value: Any) -> int | None:
    return _count(value) or None


def _enum_or_none(enum_cls: type[StrEnum]):
    def parse(value: Any) -> StrEnum | None:
        text = _lower(value)
        try:
            return enum_cls(text) if text else None
        except ValueError:
            return None

    return parse


def _serialize_ts(value: datetime | None) -> str | None:
    return to_iso(value) if value is not None else None


LenientTimestamp = Annotated[
    datetime | None,
    BeforeValidator(parse_timestamp),
    PlainSerializer(_serialize_ts, return_type=str | None, when_used="json"),
]
LenientText = Annotated[str | None, BeforeValidator(_text)]
LowerText = Annotated[str | None, BeforeValidator(_lower)]
Count = Annotated[int, BeforeValidator(_count)]
OptionalCount = Annotated[int | None, BeforeValidator(_optional_count)]
LenientStorageStatus = Annotated[StorageStatus | None, BeforeValidator(_enum_or_none(StorageStatus))]


class EstimatedWindow(BaseModel):
    current_start: LenientTimestamp = None
    current_end: LenientTimestamp = None
    updated_at: LenientTimestamp = None
    sla_state: LowerText = None
    confidence: LowerText = None

    def changed_from(self, other: EstimatedWindow) -> bool:
        return (
            self.current_start != other.current_start
            or self.current_end != other.current_end
            or self.sla_state != other.sla_state
            or self.confidence != other.confidence
        )

    def label(self) -> str | None:
        start = _serialize_ts(self.current_start)
        end = _serialize_ts(self.current_end)
        if start and end:
            return f"{start} -> {end}"
        if start:
            return f"from {start}"
        if end:
            return f"until {end}"
        return None


class StorageNotice(BaseModel):
    """One entry of the member-visible storage notice history."""

    at: LenientTimestamp = None
    kind: Annotated[str, BeforeValidator(_text)]
    detail: LenientText = None
    status: LenientStorageStatus = None
    reminder_ordinal: OptionalCount = None
    reminder_count: OptionalCount = None
    failure_code: LenientText = None


class PickupWindow(BaseModel):
    requested_start: LenientTimestamp = None
    requested_end: LenientTimestamp = None
    confirmed_start: LenientTimestamp = None
    confirmed_end: LenientTimestamp = None
    status: Annotated[
        PickupWindowStatus | None, BeforeValidator(_enum_or_none(PickupWindowStatus))
    ] = None
    confirmed_at: LenientTimestamp = None
    completed_at: LenientTimestamp = None
    missed_count: Count = 0
    reschedule_count: Count = 0
    last_missed_at: LenientTimestamp = None
    last_reschedule_requested_at: LenientTimestamp = None

    def to_document(self) -> dict[str, Any]:
        data = self.model_dump(mode="json")
        data["status"] = data["status"] or PickupWindowStatus.OPEN.value
        return data


def _mapping(value: Any) -> dict[str, Any]:
    return dict(value) if isinstance(value, Mapping) else {}


def _notices(value: Any) -> list[dict[str, Any]]:
    if not isinstance(value, list):
        return []
    return [
        dict(entry)
        for entry in value
        if isinstance(entry, Mapping) and _text(entry.get("kind"))
    ]


class ReservationSnapshot(BaseModel):
    """Normalized view of a reservation document."""

    id: str = ""
    owner_uid: LenientText = None
    status: Annotated[str | None, BeforeValidator(_reservation_status)] = None
    load_status: LowerText = None
    created_at: LenientTimestamp = None
    updated_at: LenientTimestamp = None
    estimated_window: Annotated[EstimatedWindow, BeforeValidator(_mapping)] = Field(
        default_factory=EstimatedWindow
    )
    stage_reason: LenientText = None
    stage_notes: LenientText = None
    staff_notes: LenientText = None
    storage_status: LenientStorageStatus = None
    ready_for_pickup_at: LenientTimestamp = None
    pickup_reminder_count: Count = 0
    last_reminder_at: LenientTimestamp = None
    pickup_reminder_failure_count: Count = 0
    last_reminder_failure_at: LenientTimestamp = None
    storage_notice_history: Annotated[list[StorageNotice], BeforeValidator(_notices)] = Field(
        default_factory=list
    )
    pickup_window: Annotated[PickupWindow, BeforeValidator(_mapping)] = Field(
        default_factory=PickupWindow
    )

    @classmethod
    def parse(cls, reservation_id: str, raw: Mapping[str, Any] | None) -> ReservationSnapshot:
        data = dict(raw or {})
        stage = _mapping(data.pop("stage_status", None))
        return cls.model_validate(
            {
                **data,
                "id": reservation_id,
                "stage_reason": stage.get("reason"),
                "stage_notes": stage.get("notes"),
            }
        )

    @property
    def current_storage_status(self) -> StorageStatus:
        return self.storage_status or StorageStatus.ACTIVE

    @property
    def is_cancelled(self) -> bool:
        return self.status == CANCELLED

    @property
    def is_loaded(self) -> bool:
        return self.load_status == LOADED

    @property
    def is_delayed(self) -> bool:
        return self.estimated_window.sla_state == DELAYED

    def reason(self, fallback: str) -> str:
        return self.stage_reason or self.stage_notes or self.staff_notes or fallback

    def ready_anchor(self) -> datetime | None:
        return self.ready_for_pickup_at or self.updated_at or self.created_at

    def delay_episode_id(self) -> str | None:
        anchor = self.estimated_window.updated_at or self.updated_at
        return to_iso(anchor) if anchor else None


def push_notice(
    history: list[StorageNotice], notice: StorageNotice, max_entries: int
) -> list[StorageNotice]:
    """Append ``notice`` and keep only the newest ``max_entries``."""
    return [*history, notice][-max_entries:]


def notices_to_documents(history: list[StorageNotice]) -> list[dict[str, Any]]:
    return [notice.model_dump(mode="json") for notice in history]


class StorageAuditEntry(BaseModel):
    """Immutable audit record for a storage-policy action."""

    reservation_id: str
    uid: str
    action: str
    reason: str
    from_status: StorageStatus | None = None
    to_status: StorageStatus | None = None
    reminder_ordinal: int | None = None
    reminder_count: int | None = None
    request_id: str | None = None
    failure_code: str | None = None
    at: LenientTimestamp = None
    created_at: LenientTimestamp = None


class SweepSummary(BaseModel):
    scanned: int = 0
    updated: int = 0
    reminder_jobs: int = 0
    status_transitions: int = 0
