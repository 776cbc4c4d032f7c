"""Prometheus metrics for the notification queue and storage policy.

Usage:
    from notification_service.features.notifications.metrics import (
        notification_job_outcomes_total,
    )

    notification_job_outcomes_total.labels(
        job_type="RESERVATION_STATUS",
        outcome="done",
    ).inc()
"""

from __future__ import annotations

from prometheus_client import Counter, Histogram

# =============================================================================
# Job Lifecycle Metrics
# =============================================================================

notification_jobs_enqueued_total = Counter(
    "notification_jobs_enqueued_total",
    "Total notification jobs created, by initial status",
    labelnames=["job_type", "status"],
)
"""
Counter for job creation. Duplicate enqueues are not counted.

Labels:
    job_type: JobType value
    status: queued or skipped
"""

notification_job_outcomes_total = Counter(
    "notification_job_outcomes_total",
    "Total processed notification jobs by outcome",
    labelnames=["job_type", "outcome"],
)
"""
Counter for the terminal or intermediate result of each processing attempt.

Labels:
    job_type: JobType value
    outcome: done, skipped, retried or failed
"""

notification_job_skips_total = Counter(
    "notification_job_skips_total",
    "Total jobs skipped during processing, by reason",
    labelnames=["reason"],
)

notification_job_retries_total = Counter(
    "notification_job_retries_total",
    "Total job retries scheduled, by error class",
    labelnames=["job_type", "error_class"],
)

notification_dead_letters_total = Counter(
    "notification_dead_letters_total",
    "Total jobs moved to the dead-letter collection",
    labelnames=["job_type", "error_class"],
)

notification_job_processing_seconds = Histogram(
    "notification_job_processing_seconds",
    "Time spent processing one notification job",
    labelnames=["job_type"],
    buckets=(0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0),
)
"""
Histogram of processing duration, including channel sends.

Labels:
    job_type: JobType value
"""

# =============================================================================
# Channel Metrics
# =============================================================================

notification_channel_deliveries_total = Counter(
    "notification_channel_deliveries_total",
    "Total channel delivery attempts by channel and outcome",
    labelnames=["channel", "outcome"],
)
"""
Counter for channel sends.

Labels:
    channel: in_app, email, sms or push
    outcome: sent, duplicate, skipped, hard_failed or failed
"""

notification_sms_fallback_total = Counter(
    "notification_sms_fallback_total",
    "Total SMS hard failures that fell back to email",
    labelnames=["result"],
)

notification_push_tokens_deactivated_total = Counter(
    "notification_push_tokens_deactivated_total",
    "Total device tokens deactivated",
    labelnames=["reason"],
)

# =============================================================================
# Storage Policy Metrics
# =============================================================================

reservation_storage_transitions_total = Counter(
    "reservation_storage_transitions_total",
    "Total reservation storage status transitions",
    labelnames=["from_status", "to_status"],
)

reservation_pickup_reminders_total = Counter(
    "reservation_pickup_reminders_total",
    "Total pickup reminder jobs enqueued by the storage sweep",
    labelnames=["kind"],
)
"""
Counter for sweep-driven reminders.

Labels:
    kind: reminder or window_missed
"""
