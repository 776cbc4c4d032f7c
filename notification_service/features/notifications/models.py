"""Document models for the notification queue.

Every record is a pydantic model stored as a JSON document. Timestamps use
``Timestamp`` so they serialize to the canonical, sortable UTC form.
"""

from __future__ import annotations

from enum import StrEnum
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field

from notification_service.utils.hashing import stable_id
from notification_service.utils.timestamps import Timestamp, utc_now

JOBS_COLLECTION = "notification_jobs"
DEAD_LETTERS_COLLECTION = "notification_dead_letters"
IN_APP_COLLECTION = "user_notifications"
MAIL_COLLECTION = "mail"
DELIVERY_ATTEMPTS_COLLECTION = "notification_delivery_attempts"
DEVICE_TOKENS_COLLECTION = "device_tokens"
METRICS_COLLECTION = "notification_metrics"


class JobType(StrEnum):
    KILN_UNLOADED = "KILN_UNLOADED"
    RESERVATION_STATUS = "RESERVATION_STATUS"
    RESERVATION_ETA_SHIFT = "RESERVATION_ETA_SHIFT"
    RESERVATION_READY_PICKUP = "RESERVATION_READY_PICKUP"
    RESERVATION_DELAY_FOLLOW_UP = "RESERVATION_DELAY_FOLLOW_UP"
    RESERVATION_PICKUP_REMINDER = "RESERVATION_PICKUP_REMINDER"

    @property
    def is_reservation(self) -> bool:
        return self is not JobType.KILN_UNLOADED


class JobStatus(StrEnum):
    QUEUED = "queued"
    PROCESSING = "processing"
    DONE = "done"
    FAILED = "failed"
    SKIPPED = "skipped"


class SkipReason(StrEnum):
    """Terminal reasons recorded in ``last_error`` for skipped jobs."""

    PREFS_DISABLED = "PREFS_DISABLED"
    NO_CHANNELS_ENABLED = "NO_CHANNELS_ENABLED"
    RESERVATION_PREF_DISABLED = "RESERVATION_PREF_DISABLED"
    RESERVATION_ID_MISSING = "RESERVATION_ID_MISSING"
    RESERVATION_NOT_FOUND = "RESERVATION_NOT_FOUND"
    RESERVATION_NO_LONGER_DELAYED = "RESERVATION_NO_LONGER_DELAYED"
    RESERVATION_NOT_READY_FOR_PICKUP = "RESERVATION_NOT_READY_FOR_PICKUP"
    RESERVATION_STORAGE_FINALIZED = "RESERVATION_STORAGE_FINALIZED"
    REMINDER_ALREADY_RECORDED = "REMINDER_ALREADY_RECORDED"


class EventKind(StrEnum):
    CONFIRMED = "confirmed"
    WAITLISTED = "waitlisted"
    CANCELLED = "cancelled"
    ESTIMATE_SHIFT = "estimate_shift"
    PICKUP_READY = "pickup_ready"
    DELAY_FOLLOW_UP = "delay_follow_up"
    PICKUP_REMINDER = "pickup_reminder"


class DrillMode(StrEnum):
    AUTH = "auth"
    PROVIDER_4XX = "provider_4xx"
    PROVIDER_5XX = "provider_5xx"
    NETWORK = "network"
    SUCCESS = "success"


FiringType = Literal["bisque", "glaze"]


class ChannelFlags(BaseModel):
    """Which channels a job may use."""

    in_app: bool = False
    email: bool = False
    push: bool = False
    sms: bool = False

    def any_enabled(self) -> bool:
        return self.in_app or self.email or self.push or self.sms


class NotificationPayload(BaseModel):
    """Event data carried by a job.

    Opaque to the queue engine; read by content builders and by the live
    re-validation of reservation jobs. Unknown fields are preserved.
    """

    model_config = ConfigDict(extra="allow")

    dedupe_key: str
    firing_id: str | None = None
    kiln_id: str | None = None
    kiln_name: str | None = None
    firing_type: FiringType | None = None
    batch_ids: list[str] = Field(default_factory=list)
    piece_ids: list[str] = Field(default_factory=list)
    drill_mode: DrillMode | None = None

    reservation_id: str | None = None
    reservation_status: str | None = None
    previous_reservation_status: str | None = None
    reservation_load_status: str | None = None
    previous_reservation_load_status: str | None = None
    event_kind: EventKind | None = None
    reason: str | None = None
    estimate_window_label: str | None = None
    suggested_next_update_at: str | None = None
    previous_window_start: str | None = None
    previous_window_end: str | None = None
    current_window_start: str | None = None
    current_window_end: str | None = None
    delay_episode_id: str | None = None
    delay_follow_up_ordinal: int | None = None
    storage_status: str | None = None
    previous_storage_status: str | None = None
    reminder_ordinal: int | None = None
    reminder_count: int | None = None
    ready_for_pickup_at: str | None = None
    policy_window_label: str | None = None


class NotificationJob(BaseModel):
    """The unit of work owned by ``JobQueue``."""

    type: JobType
    uid: str
    channels: ChannelFlags = Field(default_factory=ChannelFlags)
    payload: NotificationPayload
    status: JobStatus = JobStatus.QUEUED
    run_after: Timestamp | None = None
    attempt_count: int = 0
    last_error: str | None = None
    last_error_class: str | None = None
    created_at: Timestamp = Field(default_factory=utc_now)
    updated_at: Timestamp = Field(default_factory=utc_now)

    @property
    def dedupe_key(self) -> str:
        return self.payload.dedupe_key

    @property
    def job_id(self) -> str:
        return job_id_for(self.payload.dedupe_key)


def job_id_for(dedupe_key: str) -> str:
    """Document id of the job owning ``dedupe_key``."""
    return stable_id(dedupe_key)


class DeadLetter(BaseModel):
    """Immutable copy of a job that exhausted its retries."""

    job_id: str
    uid: str
    type: JobType
    payload: NotificationPayload
    channels: ChannelFlags
    attempt_count: int
    error_class: str
    error_message: str
    failed_at: Timestamp
    dedupe_key: str


class InAppNotification(BaseModel):
    uid: str
    type: str
    title: str
    body: str
    data: dict[str, Any] = Field(default_factory=dict)
    dedupe_key: str
    source_kind: Literal["firing", "reservation"]
    source_id: str | None = None
    status: str = "created"
    created_at: Timestamp = Field(default_factory=utc_now)


class MailMessage(BaseModel):
    """Outbound mail document consumed by the external mailer."""

    to: str
    subject: str
    text: str
    data: dict[str, Any] = Field(default_factory=dict)
    dedupe_key: str
    created_at: Timestamp = Field(default_factory=utc_now)


class DeliveryAttempt(BaseModel):
    """Telemetry for one SMS or push attempt."""

    uid: str
    channel: Literal["sms", "push"]
    type: JobType
    firing_id: str | None = None
    reservation_id: str | None = None
    status: Literal["sent", "skipped", "failed"]
    reason: str
    provider: str | None = None
    provider_code: str | None = None
    provider_codes: list[str] = Field(default_factory=list)
    phone_hash: str | None = None
    token_hashes: list[str] = Field(default_factory=list)
    accepted: int | None = None
    rejected: int | None = None
    fallback_channel: Literal["email"] | None = None
    fallback_status: Literal["sent", "missing_email", "failed"] | None = None
    dedupe_key: str
    created_at: Timestamp = Field(default_factory=utc_now)


class DeviceToken(BaseModel):
    uid: str
    token: str
    token_hash: str
    active: bool = True
    platform: str = "ios"
    environment: Literal["sandbox", "production"] = "production"
    app_version: str | None = None
    app_build: str | None = None
    device_model: str | None = None
    created_at: Timestamp = Field(default_factory=utc_now)
    last_seen_at: Timestamp | None = None
    updated_at: Timestamp = Field(default_factory=utc_now)
    deactivated_at: Timestamp | None = None
    deactivation_reason: str | None = None


class ProcessSummary(BaseModel):
    """Result of one due-job sweep."""

    picked: int = 0
    processed: int = 0
    errors: int = 0
    job_ids: list[str] = Field(default_factory=list)
