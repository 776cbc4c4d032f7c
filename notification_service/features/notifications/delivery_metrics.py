"""Rolling delivery-attempt summaries written to ``notification_metrics``."""

from __future__ import annotations

from collections import Counter
from collections.abc import Callable
from datetime import datetime, timedelta
from typing import Any

from pydantic import BaseModel, Field

from notification_service.infra.documents import DocumentStore, FieldFilter
from notification_service.infra.logging import get_logger
from notification_service.utils.timestamps import Timestamp, utc_now

from .models import DELIVERY_ATTEMPTS_COLLECTION, METRICS_COLLECTION

logger = get_logger(__name__)


class DeliveryMetricsSummary(BaseModel):
    window_hours: int
    total_attempts: int = 0
    status_counts: dict[str, int] = Field(default_factory=dict)
    reason_counts: dict[str, int] = Field(default_factory=dict)
    provider_counts: dict[str, int] = Field(default_factory=dict)
    updated_at: Timestamp | None = None
    triggered_by: str | None = None
    trigger_mode: str = "scheduled"


def metrics_doc_id(window_hours: int) -> str:
    return f"delivery_{window_hours}h"


def _label(value: Any) -> str:
    text = value.strip() if isinstance(value, str) else ""
    return text or "unknown"


class DeliveryMetricsAggregator:
    def __init__(
        self,
        store: DocumentStore,
        scan_limit: int = 5000,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._store = store
        self._scan_limit = scan_limit
        self._clock = clock

    async def aggregate(
        self, window_hours: int = 24, *, triggered_by: str | None = None
    ) -> DeliveryMetricsSummary:
        """Count delivery attempts from the last ``window_hours`` and persist the summary."""
        now = self._clock()
        docs = await self._store.query(
            DELIVERY_ATTEMPTS_COLLECTION,
            [FieldFilter("created_at", ">=", now - timedelta(hours=window_hours))],
            limit=self._scan_limit,
        )

        statuses: Counter[str] = Counter()
        reasons: Counter[str] = Counter()
        providers: Counter[str] = Counter()
        for doc in docs:
            statuses[_label(doc.data.get("status"))] += 1
            reasons[_label(doc.data.get("reason"))] += 1
            providers[_label(doc.data.get("provider"))] += 1

        summary = DeliveryMetricsSummary(
            window_hours=window_hours,
            total_attempts=len(docs),
            status_counts=dict(statuses),
            reason_counts=dict(reasons),
            provider_counts=dict(providers),
            updated_at=now,
            triggered_by=triggered_by,
            trigger_mode="manual" if triggered_by else "scheduled",
        )
        await self._store.set(METRICS_COLLECTION, metrics_doc_id(window_hours), summary)
        logger.info(
            "Delivery metrics aggregated",
            extra={"window_hours": window_hours, "total_attempts": summary.total_attempts},
        )
        return summary
