"""Shared result type for channel sends."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Literal

DeliveryOutcome = Literal["sent", "duplicate", "skipped", "hard_failed"]


@dataclass
class DeliveryResult:
    """Result of one channel send.

    Attributes:
        outcome: ``sent`` and ``duplicate`` both count as delivered;
            ``skipped`` is a soft warning; ``hard_failed`` is a permanent
            provider rejection that may trigger a fallback.
        reason: Machine-readable reason for skipped and hard-failed sends.
        provider: Provider that handled the send, if any.
        provider_code: Provider-specific code, if any.
        metadata: Channel-specific details (token counts, record ids).
    """

    outcome: DeliveryOutcome
    reason: str | None = None
    provider: str | None = None
    provider_code: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    @property
    def delivered(self) -> bool:
        return self.outcome in ("sent", "duplicate")
