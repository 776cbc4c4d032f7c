"""Channel dispatcher coordinating in-app, SMS, email and push sends."""

from __future__ import annotations

from dataclasses import dataclass, field

from notification_service.infra.logging import get_logger

from ..content import JobContent, build_job_content
from ..metrics import notification_sms_fallback_total
from ..models import ChannelFlags, NotificationJob
from .base import DeliveryResult
from .email import EMAIL_MISSING, EmailChannel
from .in_app import InAppChannel
from .push import PushChannel
from .sms import SmsChannel
from .telemetry import DeliveryTelemetry, FallbackStatus

logger = get_logger(__name__)


@dataclass
class DispatchOutcome:
    """Soft warnings collected while fanning a job out to its channels."""

    warnings: list[str] = field(default_factory=list)
    results: dict[str, DeliveryResult] = field(default_factory=dict)

    @property
    def last_error(self) -> str | None:
        return ",".join(self.warnings) if self.warnings else None


class ChannelDispatcher:
    """Sends one job to each enabled channel in a fixed order.

    Order is in-app, SMS, email, push. A hard SMS failure forces an email
    attempt even when email is not enabled. Exceptions from any channel
    propagate so the queue can classify and retry; per-channel writes are
    idempotent, so a retry never duplicates an earlier success.
    """

    def __init__(
        self,
        in_app: InAppChannel,
        email: EmailChannel,
        sms: SmsChannel,
        push: PushChannel,
        telemetry: DeliveryTelemetry,
    ) -> None:
        self.in_app = in_app
        self.email = email
        self.sms = sms
        self.push = push
        self._telemetry = telemetry

    async def dispatch(self, job: NotificationJob, channels: ChannelFlags) -> DispatchOutcome:
        content = build_job_content(job)
        outcome = DispatchOutcome()

        if channels.in_app:
            outcome.results["in_app"] = await self.in_app.send(job, content)

        sms_fallback = False
        if channels.sms:
            sms_result = await self.sms.send(job, content)
            outcome.results["sms"] = sms_result
            if sms_result.outcome == "hard_failed":
                sms_fallback = True
                outcome.warnings.append(f"SMS_HARD_FAIL:{(sms_result.reason or 'unknown')[:120]}")
            elif sms_result.outcome == "skipped":
                outcome.warnings.append(f"SMS_SKIPPED:{sms_result.reason or 'unknown'}")

        if channels.email or sms_fallback:
            await self._send_email(job, content, outcome, channels=channels, sms_fallback=sms_fallback)

        if channels.push:
            outcome.results["push"] = await self.push.send(job, content)

        return outcome

    async def _send_email(
        self,
        job: NotificationJob,
        content: JobContent,
        outcome: DispatchOutcome,
        *,
        channels: ChannelFlags,
        sms_fallback: bool,
    ) -> None:
        fallback_only = sms_fallback and not channels.email
        try:
            result = await self.email.send(job, content, fallback=fallback_only)
        except Exception as exc:
            if sms_fallback:
                await self._record_fallback(
                    job, "failed", f"SMS_FALLBACK_EMAIL_FAILED:{str(exc)[:120]}"
                )
                notification_sms_fallback_total.labels(result="failed").inc()
            raise

        outcome.results["email"] = result
        if result.outcome == "skipped":
            if sms_fallback:
                outcome.warnings.append("SMS_FALLBACK_EMAIL_MISSING")
                await self._record_fallback(job, "missing_email", "SMS_FALLBACK_EMAIL_MISSING")
                notification_sms_fallback_total.labels(result="missing_email").inc()
            else:
                outcome.warnings.append(result.reason or EMAIL_MISSING)
            return

        if sms_fallback:
            outcome.warnings.append("SMS_FALLBACK_EMAIL_SENT")
            await self._record_fallback(job, "sent", "SMS_FALLBACK_EMAIL_SENT")
            notification_sms_fallback_total.labels(result="sent").inc()
            logger.info("SMS hard failure fell back to email", extra={"uid": job.uid})

    async def _record_fallback(self, job: NotificationJob, status: FallbackStatus, reason: str) -> None:
        await self._telemetry.record_sms(
            job,
            status="sent" if status == "sent" else "failed",
            reason=reason,
            fallback_status=status,
        )
