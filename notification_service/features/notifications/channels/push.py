"""Push channel: sends through the APNs relay and retires dead tokens."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

import httpx

from notification_service.core.settings import PushSettings
from notification_service.infra.logging import get_logger
from notification_service.infra.ratelimit import ProviderPacer

from ..content import JobContent
from ..device_tokens import DeviceTokenRegistry
from ..errors import ErrorClass, ProviderConfigurationError, ProviderError
from ..metrics import notification_channel_deliveries_total
from ..models import DeviceToken, DrillMode, NotificationJob
from .base import DeliveryResult
from .telemetry import DeliveryTelemetry

logger = get_logger(__name__)

DEACTIVATING_PROVIDER_CODES = frozenset(
    {"baddevicetoken", "unregistered", "device_token_not_for_topic", "devicetokennotfortopic"}
)


def should_deactivate(provider_code: str | None) -> bool:
    return (provider_code or "").lower() in DEACTIVATING_PROVIDER_CODES


@dataclass
class TokenResult:
    token_hash: str
    ok: bool
    provider_code: str | None = None
    message: str | None = None


@dataclass
class RelayResult:
    accepted: int
    rejected: int
    results: list[TokenResult] = field(default_factory=list)


def _as_count(value: Any) -> int | None:
    if isinstance(value, bool) or not isinstance(value, int | float):
        return None
    return int(value)


def parse_relay_response(body: Any) -> RelayResult:
    data = body if isinstance(body, dict) else {}
    results = []
    for entry in data.get("results") or []:
        if not isinstance(entry, dict) or not entry.get("token_hash"):
            continue
        results.append(
            TokenResult(
                token_hash=str(entry["token_hash"]),
                ok=bool(entry.get("ok")),
                provider_code=str(entry["provider_code"]) if entry.get("provider_code") else None,
                message=str(entry["message"]) if entry.get("message") else None,
            )
        )
    accepted = _as_count(data.get("accepted"))
    rejected = _as_count(data.get("rejected"))
    return RelayResult(
        accepted=accepted if accepted is not None else sum(1 for r in results if r.ok),
        rejected=rejected if rejected is not None else sum(1 for r in results if not r.ok),
        results=results,
    )


class PushRelayClient:
    """POSTs one batch of device tokens to the push relay."""

    provider_name = "push_relay"

    def __init__(
        self,
        settings: PushSettings,
        http_client: httpx.AsyncClient,
        pacer: ProviderPacer | None = None,
    ) -> None:
        self._settings = settings
        self._http = http_client
        self._pacer = pacer

    async def send(
        self, job: NotificationJob, content: JobContent, tokens: list[DeviceToken]
    ) -> RelayResult:
        relay_url = (self._settings.relay_url or "").strip()
        if not relay_url:
            raise ProviderConfigurationError("PUSH_RELAY_URL not configured", provider=self.provider_name)
        relay_key = self._settings.relay_key.get_secret_value().strip() if self._settings.relay_key else ""
        if not relay_key:
            raise ProviderConfigurationError("PUSH_RELAY_KEY not configured", provider=self.provider_name)

        body = {
            "tokens": [
                {"token": t.token, "token_hash": t.token_hash, "environment": t.environment}
                for t in tokens
            ],
            "notification": {
                "title": content.title,
                "body": content.body,
                "data": {
                    "type": content.message_type,
                    "firing_id": job.payload.firing_id or "",
                    "kiln_id": job.payload.kiln_id or "",
                    "kiln_name": job.payload.kiln_name or "",
                    "firing_type": job.payload.firing_type or "",
                    "reservation_id": job.payload.reservation_id or "",
                    "reservation_status": job.payload.reservation_status or "",
                    "event_kind": job.payload.event_kind.value if job.payload.event_kind else "",
                    "source_kind": content.source_kind,
                    "source_id": content.source_id or "",
                },
            },
            "context": {
                "uid": job.uid,
                "dedupe_key": job.dedupe_key,
                "firing_id": job.payload.firing_id,
            },
        }
        if self._pacer is not None:
            await self._pacer.wait(self.provider_name)

        response = await self._http.post(
            relay_url,
            json=body,
            headers={"Authorization": f"Bearer {relay_key}"},
            timeout=self._settings.timeout_seconds,
        )
        if not response.is_success:
            raise ProviderError(
                f"Push relay failed: {response.status_code} {response.text}"[:1000],
                provider=self.provider_name,
                status_code=response.status_code,
            )
        try:
            parsed = response.json()
        except ValueError:
            parsed = {}
        return parse_relay_response(parsed)


_DRILL_FAILURES: dict[DrillMode, tuple[str, int | None]] = {
    DrillMode.AUTH: ("Push relay failed: 401 DRILL_AUTH", 401),
    DrillMode.PROVIDER_4XX: ("Push relay failed: 400 DRILL_PROVIDER_4XX", 400),
    DrillMode.PROVIDER_5XX: ("Push relay failed: 503 DRILL_PROVIDER_5XX", 503),
    DrillMode.NETWORK: ("fetch failed DRILL_NETWORK", None),
}


class PushChannel:
    """Delivers to a user's active device tokens.

    Having no active tokens is recorded as a skipped attempt, not a failure.
    Tokens the relay reports as dead are deactivated.
    """

    channel_name = "push"

    def __init__(
        self,
        tokens: DeviceTokenRegistry,
        telemetry: DeliveryTelemetry,
        settings: PushSettings,
        client: PushRelayClient | None = None,
    ) -> None:
        self._tokens = tokens
        self._telemetry = telemetry
        self._settings = settings
        self._client = client

    def _count(self, outcome: str) -> None:
        notification_channel_deliveries_total.labels(channel=self.channel_name, outcome=outcome).inc()

    async def send(self, job: NotificationJob, content: JobContent) -> DeliveryResult:
        drill = job.payload.drill_mode
        if drill is DrillMode.SUCCESS:
            await self._telemetry.record_push(
                job,
                status="sent",
                reason="DRILL_SUCCESS_SIMULATED",
                provider="relay",
                accepted=1,
                rejected=0,
            )
            self._count("sent")
            return DeliveryResult(outcome="sent", provider="relay")
        if drill is not None:
            message, status = _DRILL_FAILURES[drill]
            self._count("failed")
            raise ProviderError(
                message,
                provider="relay",
                status_code=status,
                provider_code=f"DRILL_{drill.value.upper()}",
                error_class=ErrorClass.NETWORK if status is None else None,
            )

        tokens = await self._tokens.list_active(job.uid, limit=self._settings.max_tokens_per_send)
        if not tokens:
            await self._telemetry.record_push(job, status="skipped", reason="NO_ACTIVE_DEVICE_TOKENS")
            self._count("skipped")
            return DeliveryResult(outcome="skipped", reason="NO_ACTIVE_DEVICE_TOKENS")

        token_hashes = [t.token_hash for t in tokens]
        try:
            if self._client is None:
                raise ProviderConfigurationError("Push relay client not configured", provider="relay")
            result = await self._client.send(job, content, tokens)
        except Exception as exc:
            await self._telemetry.record_push(
                job,
                status="failed",
                reason=str(exc)[:180],
                token_hashes=token_hashes,
                provider="relay",
                accepted=0,
                rejected=len(tokens),
            )
            self._count("failed")
            raise

        for entry in result.results:
            if not entry.ok and should_deactivate(entry.provider_code):
                await self._tokens.deactivate(
                    job.uid, entry.token_hash, entry.provider_code or "INVALID_DEVICE_TOKEN"
                )

        failed_codes = [r.provider_code for r in result.results if not r.ok and r.provider_code]
        all_rejected = result.rejected > 0 and result.accepted == 0
        await self._telemetry.record_push(
            job,
            status="failed" if all_rejected else "sent",
            reason="PUSH_PROVIDER_PARTIAL" if result.rejected > 0 else "PUSH_PROVIDER_SENT",
            token_hashes=token_hashes,
            provider="relay",
            accepted=result.accepted,
            rejected=result.rejected,
            provider_codes=failed_codes,
        )
        if result.rejected:
            logger.info(
                "Push relay rejected tokens",
                extra={"uid": job.uid, "accepted": result.accepted, "rejected": result.rejected},
            )
        self._count("failed" if all_rejected else "sent")
        return DeliveryResult(
            outcome="sent",
            provider="relay",
            metadata={"accepted": result.accepted, "rejected": result.rejected},
        )
