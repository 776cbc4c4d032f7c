"""SMS channel: phone resolution, provider modes and the Twilio client."""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Any

import httpx

from notification_service.core.settings import SmsSettings
from notification_service.infra.documents import DocumentStore
from notification_service.infra.logging import get_logger
from notification_service.infra.ratelimit import ProviderPacer
from notification_service.utils.hashing import redact_hash

from ..content import JobContent
from ..directory import IdentityDirectory
from ..errors import ErrorClass, ProviderConfigurationError, ProviderError, classify_status
from ..metrics import notification_channel_deliveries_total
from ..models import DrillMode, NotificationJob
from ..preferences import PROFILES_COLLECTION
from .base import DeliveryResult
from .telemetry import DeliveryTelemetry

logger = get_logger(__name__)

TWILIO_HARD_FAILURE_CODES = frozenset({"21211", "21610", "21612", "21614"})
_E164_PATTERN = re.compile(r"^\+[1-9]\d{7,14}$")
_PHONE_NOISE = re.compile(r"[\s()\-]")
_PROFILE_PHONE_FIELDS = ("phone_e164", "phone", "mobile_phone")


def normalize_e164(value: Any) -> str | None:
    """Normalize a phone number to E.164, or None when it cannot be."""
    if not isinstance(value, str):
        return None
    compact = _PHONE_NOISE.sub("", value.strip())
    if compact.startswith("00"):
        compact = "+" + compact[2:]
    return compact if _E164_PATTERN.match(compact) else None


def normalize_sms_body(raw: str, max_chars: int = 1200) -> str:
    return " ".join(raw.split())[:max_chars]


def is_twilio_hard_failure(status: int, provider_code: str | None) -> bool:
    """Permanent recipient errors; 408 and 429 are never hard failures."""
    if status < 400 or status >= 500 or status in (408, 429):
        return False
    return provider_code in TWILIO_HARD_FAILURE_CODES


@dataclass(frozen=True)
class TwilioResponse:
    ok: bool
    status: int
    sid: str | None = None
    twilio_status: str | None = None
    provider_code: str | None = None
    provider_message: str | None = None


def _text(value: Any) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


class TwilioClient:
    """Minimal client for the Twilio Messages API."""

    provider_name = "twilio"

    def __init__(
        self,
        settings: SmsSettings,
        http_client: httpx.AsyncClient,
        pacer: ProviderPacer | None = None,
    ) -> None:
        self._settings = settings
        self._http = http_client
        self._pacer = pacer

    def _credentials(self) -> tuple[str, str, str]:
        sid = (self._settings.twilio_account_sid or "").strip()
        token = self._settings.twilio_auth_token
        token_value = token.get_secret_value().strip() if token else ""
        sender = normalize_e164(self._settings.twilio_from_number)
        if not sid or not token_value or not sender:
            raise ProviderConfigurationError(
                "SMS_CONFIG: Twilio credentials or sender number not configured",
                provider=self.provider_name,
            )
        return sid, token_value, sender

    async def send(self, to_e164: str, body: str) -> TwilioResponse:
        sid, token, sender = self._credentials()
        url = f"{self._settings.twilio_base_url.rstrip('/')}/2010-04-01/Accounts/{sid}/Messages.json"
        if self._pacer is not None:
            await self._pacer.wait(self.provider_name)

        response = await self._http.post(
            url,
            data={"To": to_e164, "From": sender, "Body": body},
            auth=(sid, token),
            timeout=self._settings.timeout_seconds,
        )
        try:
            parsed = response.json()
        except ValueError:
            parsed = None
        if not isinstance(parsed, dict):
            parsed = {}

        return TwilioResponse(
            ok=response.is_success,
            status=response.status_code,
            sid=_text(parsed.get("sid")),
            twilio_status=_text(parsed.get("status")),
            provider_code=_text(parsed.get("code")),
            provider_message=_text(parsed.get("message")) or _text(response.text[:240]),
        )


class SmsChannel:
    """Sends SMS through the configured provider mode.

    Modes are ``disabled``, ``mock`` (simulated outcomes) and ``twilio``.
    A failure drill on the job overrides the mode. Every attempt writes
    a telemetry record keyed by its outcome.
    """

    channel_name = "sms"

    def __init__(
        self,
        store: DocumentStore,
        directory: IdentityDirectory,
        telemetry: DeliveryTelemetry,
        settings: SmsSettings,
        client: TwilioClient | None = None,
    ) -> None:
        self._store = store
        self._directory = directory
        self._telemetry = telemetry
        self._settings = settings
        self._client = client

    async def resolve_phone(self, uid: str) -> str | None:
        identity = await self._directory.get_identity(uid)
        if identity is not None:
            phone = normalize_e164(identity.phone_number)
            if phone:
                return phone
        profile = await self._store.get(PROFILES_COLLECTION, uid) or {}
        for field_name in _PROFILE_PHONE_FIELDS:
            phone = normalize_e164(profile.get(field_name))
            if phone:
                return phone
        return None

    def _count(self, outcome: str) -> None:
        notification_channel_deliveries_total.labels(channel=self.channel_name, outcome=outcome).inc()

    async def send(self, job: NotificationJob, content: JobContent) -> DeliveryResult:
        mode = self._settings.provider
        phone = await self.resolve_phone(job.uid)
        if phone is None:
            await self._telemetry.record_sms(
                job, status="skipped", reason="PHONE_MISSING", provider=mode, accepted=0, rejected=0
            )
            self._count("skipped")
            return DeliveryResult(outcome="skipped", reason="PHONE_MISSING")

        if job.payload.drill_mode is not None:
            return await self._simulate(
                job,
                phone,
                mode=job.payload.drill_mode,
                prefix="DRILL",
                success_reason="DRILL_SUCCESS_SIMULATED",
                provider=mode,
            )

        if mode == "disabled":
            return await self._skip(job, phone, "SMS_PROVIDER_DISABLED")

        body = normalize_sms_body(content.text_body, self._settings.message_max_chars)
        if not body:
            return await self._skip(job, phone, "SMS_BODY_EMPTY")

        if mode == "mock":
            return await self._simulate(
                job,
                phone,
                mode=DrillMode(self._settings.mock_mode),
                prefix="SMS_MOCK",
                success_reason="SMS_MOCK_SENT",
                provider=mode,
            )

        return await self._send_twilio(job, phone, body)

    async def _skip(self, job: NotificationJob, phone: str, reason: str) -> DeliveryResult:
        await self._telemetry.record_sms(
            job,
            status="skipped",
            reason=reason,
            provider=self._settings.provider,
            phone_e164=phone,
            accepted=0,
            rejected=0,
        )
        self._count("skipped")
        return DeliveryResult(outcome="skipped", reason=reason)

    async def _simulate(
        self,
        job: NotificationJob,
        phone: str,
        *,
        mode: DrillMode,
        prefix: str,
        success_reason: str,
        provider: str,
    ) -> DeliveryResult:
        if mode is DrillMode.SUCCESS:
            await self._telemetry.record_sms(
                job,
                status="sent",
                reason=success_reason,
                provider=provider,
                phone_e164=phone,
                accepted=1,
                rejected=0,
            )
            self._count("sent")
            return DeliveryResult(outcome="sent", provider=provider)

        reason = f"{prefix}_{mode.value.upper()}"
        await self._telemetry.record_sms(
            job,
            status="failed",
            reason=reason,
            provider=provider,
            provider_code=reason,
            phone_e164=phone,
            accepted=0,
            rejected=1,
        )
        if mode is DrillMode.PROVIDER_4XX:
            self._count("hard_failed")
            return DeliveryResult(
                outcome="hard_failed", reason=reason, provider=provider, provider_code=reason
            )

        self._count("failed")
        match mode:
            case DrillMode.AUTH:
                raise ProviderError(
                    f"SMS provider failed: 401 {reason}",
                    provider=provider,
                    status_code=401,
                    provider_code=reason,
                )
            case DrillMode.PROVIDER_5XX:
                raise ProviderError(
                    f"SMS provider failed: 503 {reason}",
                    provider=provider,
                    status_code=503,
                    provider_code=reason,
                )
        raise ProviderError(
            f"SMS provider failed: network {reason}",
            provider=provider,
            provider_code=reason,
            error_class=ErrorClass.NETWORK,
        )

    async def _send_twilio(self, job: NotificationJob, phone: str, body: str) -> DeliveryResult:
        if self._client is None:
            raise ProviderConfigurationError(
                "SMS_CONFIG: Twilio client not configured", provider="twilio"
            )
        result = await self._client.send(phone, body)

        if not result.ok:
            status_class = classify_status(result.status)
            provider_reason = (
                f"{result.status}:{result.provider_code or 'no_code'}:"
                f"{result.provider_message or 'error'}"
            )[:180]
            hard_failure = status_class is ErrorClass.PROVIDER_4XX and is_twilio_hard_failure(
                result.status, result.provider_code
            )
            await self._telemetry.record_sms(
                job,
                status="failed",
                reason=f"SMS_HARD_FAIL:{provider_reason}" if hard_failure else f"SMS_FAIL:{provider_reason}",
                provider="twilio",
                provider_code=result.provider_code,
                phone_e164=phone,
                accepted=0,
                rejected=1,
            )
            logger.warning(
                "Twilio rejected SMS",
                extra={
                    "status_code": result.status,
                    "provider_code": result.provider_code,
                    "phone_hash": redact_hash(phone),
                    "hard_failure": hard_failure,
                },
            )
            if hard_failure:
                self._count("hard_failed")
                return DeliveryResult(
                    outcome="hard_failed",
                    reason=provider_reason,
                    provider="twilio",
                    provider_code=result.provider_code,
                )
            self._count("failed")
            raise ProviderError(
                f"SMS provider failed ({status_class.value}): {provider_reason}",
                provider="twilio",
                status_code=result.status,
                provider_code=result.provider_code,
            )

        await self._telemetry.record_sms(
            job,
            status="sent",
            reason="SMS_PROVIDER_SENT",
            provider="twilio",
            provider_code=result.twilio_status,
            phone_e164=phone,
            accepted=1,
            rejected=0,
        )
        self._count("sent")
        return DeliveryResult(outcome="sent", provider="twilio", metadata={"sid": result.sid})
