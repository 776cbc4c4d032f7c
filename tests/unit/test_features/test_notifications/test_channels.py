"""Unit tests for the in-app, email, SMS and push channels."""

from __future__ import annotations

from urllib.parse import parse_qs

import httpx
import pytest

from notification_service.core.settings import PushSettings, SmsSettings
from notification_service.features.notifications.channels import (
    DeliveryTelemetry,
    EmailChannel,
    InAppChannel,
    PushChannel,
    PushRelayClient,
    SmsChannel,
    TwilioClient,
    normalize_e164,
)
from notification_service.features.notifications.channels.email import mail_record_id
from notification_service.features.notifications.channels.push import (
    parse_relay_response,
    should_deactivate,
)
from notification_service.features.notifications.channels.sms import is_twilio_hard_failure
from notification_service.features.notifications.content import build_job_content
from notification_service.features.notifications.device_tokens import DeviceTokenRegistry
from notification_service.features.notifications.directory import StoreIdentityDirectory
from notification_service.features.notifications.errors import (
    ErrorClass,
    ProviderConfigurationError,
    ProviderError,
    classify_error,
)
from notification_service.features.notifications.models import (
    DELIVERY_ATTEMPTS_COLLECTION,
    IN_APP_COLLECTION,
    MAIL_COLLECTION,
    DrillMode,
    JobType,
    NotificationJob,
    NotificationPayload,
)


def _job(drill_mode: DrillMode | None = None) -> NotificationJob:
    return NotificationJob(
        type=JobType.KILN_UNLOADED,
        uid="member-1",
        payload=NotificationPayload(
            dedupe_key="FIRING_UNLOADED:f1:member-1",
            firing_id="f1",
            kiln_name="Big Blue",
            drill_mode=drill_mode,
        ),
    )


def _attempts(store) -> list[dict]:
    return list(store.dump(DELIVERY_ATTEMPTS_COLLECTION).values())


# ============================================================================
# Helpers
# ============================================================================


@pytest.mark.unit
class TestPhoneNormalization:
    @pytest.mark.parametrize(
        ("raw", "expected"),
        [
            ("+1 (555) 123-4567", "+15551234567"),
            ("0044 20 7946 0958", "+442079460958"),
            ("+15551234567", "+15551234567"),
            ("5551234567", None),
            ("+0123456789", None),
            ("", None),
            (None, None),
            (15551234567, None),
        ],
    )
    def test_normalize_e164(self, raw, expected):
        assert normalize_e164(raw) == expected

    @pytest.mark.parametrize(
        ("status", "code", "expected"),
        [
            (400, "21211", True),
            (400, "21610", True),
            (400, "30003", False),
            (429, "21211", False),
            (408, "21211", False),
            (500, "21211", False),
        ],
    )
    def test_twilio_hard_failures(self, status, code, expected):
        assert is_twilio_hard_failure(status, code) is expected


# ============================================================================
# In-app and email
# ============================================================================


@pytest.mark.unit
class TestInAppChannel:
    async def test_second_send_is_duplicate(self, store, clock):
        channel = InAppChannel(store, clock)
        job = _job()
        content = build_job_content(job)

        first = await channel.send(job, content)
        second = await channel.send(job, content)

        assert first.outcome == "sent"
        assert second.outcome == "duplicate"
        assert second.delivered
        record = store.dump(IN_APP_COLLECTION)[job.job_id]
        assert record["title"] == "Kiln unloaded: Big Blue"
        assert record["source_kind"] == "firing"
        assert record["created_at"] == "2026-10-14T17:00:00.000000Z"


@pytest.mark.unit
class TestEmailChannel:
    async def test_missing_email_is_skipped(self, store, clock, seed):
        await seed.identity("member-1")
        channel = EmailChannel(store, StoreIdentityDirectory(store), clock)

        result = await channel.send(_job(), build_job_content(_job()))

        assert result.outcome == "skipped"
        assert result.reason == "EMAIL_MISSING"
        assert store.dump(MAIL_COLLECTION) == {}

    async def test_primary_and_fallback_records_do_not_collide(self, store, clock, seed):
        await seed.identity("member-1", email="member@example.com")
        channel = EmailChannel(store, StoreIdentityDirectory(store), clock)
        job = _job()
        content = build_job_content(job)

        primary = await channel.send(job, content)
        fallback = await channel.send(job, content, fallback=True)
        again = await channel.send(job, content)

        assert (primary.outcome, fallback.outcome, again.outcome) == ("sent", "sent", "duplicate")
        mail = store.dump(MAIL_COLLECTION)
        assert set(mail) == {
            mail_record_id(job.dedupe_key),
            mail_record_id(job.dedupe_key, fallback=True),
        }
        assert mail[mail_record_id(job.dedupe_key)]["to"] == "member@example.com"


# ============================================================================
# SMS
# ============================================================================


def _sms(store, http_client, clock, **settings) -> SmsChannel:
    sms_settings = SmsSettings(min_interval_ms=0, **settings)
    return SmsChannel(
        store,
        StoreIdentityDirectory(store),
        DeliveryTelemetry(store, clock),
        sms_settings,
        TwilioClient(sms_settings, http_client),
    )


_TWILIO = {
    "provider": "twilio",
    "twilio_account_sid": "AC123",
    "twilio_auth_token": "secret",
    "twilio_from_number": "+15550000000",
}


@pytest.mark.unit
class TestSmsChannel:
    async def test_phone_missing(self, store, http_client, clock, seed):
        await seed.identity("member-1", phone="not a phone")
        channel = _sms(store, http_client, clock, provider="mock")

        result = await channel.send(_job(), build_job_content(_job()))

        assert result.outcome == "skipped"
        assert result.reason == "PHONE_MISSING"
        assert _attempts(store)[0]["reason"] == "PHONE_MISSING"

    async def test_profile_phone_fallback(self, store, http_client, clock, seed):
        await seed.identity("member-1")
        await seed.profile("member-1", mobile_phone="+1 555 222 3333")
        channel = _sms(store, http_client, clock, provider="mock")

        assert await channel.resolve_phone("member-1") == "+15552223333"

    async def test_disabled_provider_is_skipped(self, store, http_client, clock, seed, providers):
        await seed.identity("member-1", phone="+15551234567")
        channel = _sms(store, http_client, clock, provider="disabled")

        result = await channel.send(_job(), build_job_content(_job()))

        assert result.reason == "SMS_PROVIDER_DISABLED"
        assert providers.requests == []

    async def test_mock_success(self, store, http_client, clock, seed):
        await seed.identity("member-1", phone="+15551234567")
        channel = _sms(store, http_client, clock, provider="mock")

        result = await channel.send(_job(), build_job_content(_job()))

        assert result.outcome == "sent"
        attempt = _attempts(store)[0]
        assert attempt["reason"] == "SMS_MOCK_SENT"
        assert attempt["phone_hash"] is not None
        assert "+15551234567" not in str(attempt)

    async def test_mock_provider_4xx_is_hard_failure(self, store, http_client, clock, seed):
        await seed.identity("member-1", phone="+15551234567")
        channel = _sms(store, http_client, clock, provider="mock", mock_mode="provider_4xx")

        result = await channel.send(_job(), build_job_content(_job()))

        assert result.outcome == "hard_failed"
        assert result.reason == "SMS_MOCK_PROVIDER_4XX"

    @pytest.mark.parametrize(
        ("mode", "expected_class"),
        [
            ("auth", ErrorClass.AUTH),
            ("provider_5xx", ErrorClass.PROVIDER_5XX),
            ("network", ErrorClass.NETWORK),
        ],
    )
    async def test_mock_failures_raise(self, store, http_client, clock, seed, mode, expected_class):
        await seed.identity("member-1", phone="+15551234567")
        channel = _sms(store, http_client, clock, provider="mock", mock_mode=mode)

        with pytest.raises(ProviderError) as exc_info:
            await channel.send(_job(), build_job_content(_job()))

        assert classify_error(exc_info.value) is expected_class

    async def test_drill_overrides_provider_mode(self, store, http_client, clock, seed):
        await seed.identity("member-1", phone="+15551234567")
        channel = _sms(store, http_client, clock, provider="disabled")

        result = await channel.send(
            _job(DrillMode.PROVIDER_4XX), build_job_content(_job(DrillMode.PROVIDER_4XX))
        )

        assert result.outcome == "hard_failed"
        assert result.reason == "DRILL_PROVIDER_4XX"

    async def test_twilio_success(self, store, http_client, clock, seed, providers):
        await seed.identity("member-1", phone="+15551234567")
        channel = _sms(store, http_client, clock, **_TWILIO)

        result = await channel.send(_job(), build_job_content(_job()))

        assert result.outcome == "sent"
        assert result.metadata == {"sid": "SM0001"}
        request = providers.requests[0]
        assert request.url.path == "/2010-04-01/Accounts/AC123/Messages.json"
        form = parse_qs(request.content.decode())
        assert form["To"] == ["+15551234567"]
        assert form["From"] == ["+15550000000"]
        assert form["Body"][0].startswith("Your firing has been unloaded.")
        assert request.headers["authorization"].startswith("Basic ")

    async def test_twilio_hard_failure(self, store, http_client, clock, seed, providers):
        await seed.identity("member-1", phone="+15551234567")
        providers.twilio_status = 400
        providers.twilio_body = {"code": 21610, "message": "Attempt to send to unsubscribed recipient"}
        channel = _sms(store, http_client, clock, **_TWILIO)

        result = await channel.send(_job(), build_job_content(_job()))

        assert result.outcome == "hard_failed"
        assert result.provider_code == "21610"
        assert result.reason.startswith("400:21610:")
        assert _attempts(store)[0]["reason"].startswith("SMS_HARD_FAIL:")

    async def test_twilio_server_error_raises(self, store, http_client, clock, seed, providers):
        await seed.identity("member-1", phone="+15551234567")
        providers.twilio_status = 503
        providers.twilio_body = {"message": "unavailable"}
        channel = _sms(store, http_client, clock, **_TWILIO)

        with pytest.raises(ProviderError) as exc_info:
            await channel.send(_job(), build_job_content(_job()))

        assert exc_info.value.status_code == 503
        assert classify_error(exc_info.value) is ErrorClass.PROVIDER_5XX

    async def test_twilio_missing_credentials(self, store, http_client, clock, seed, providers):
        await seed.identity("member-1", phone="+15551234567")
        channel = _sms(store, http_client, clock, provider="twilio")

        with pytest.raises(ProviderConfigurationError):
            await channel.send(_job(), build_job_content(_job()))

        assert providers.requests == []


# ============================================================================
# Push
# ============================================================================


def _push(store, http_client, clock, push_settings: PushSettings) -> tuple[PushChannel, DeviceTokenRegistry]:
    tokens = DeviceTokenRegistry(store, clock)
    channel = PushChannel(
        tokens,
        DeliveryTelemetry(store, clock),
        push_settings,
        PushRelayClient(push_settings, http_client),
    )
    return channel, tokens


@pytest.mark.unit
class TestPushChannel:
    async def test_no_tokens_is_skipped(self, store, http_client, clock, push_settings, providers):
        channel, _ = _push(store, http_client, clock, push_settings)

        result = await channel.send(_job(), build_job_content(_job()))

        assert result.outcome == "skipped"
        assert result.reason == "NO_ACTIVE_DEVICE_TOKENS"
        assert providers.requests == []

    async def test_sends_active_tokens_to_relay(self, store, http_client, clock, push_settings, providers):
        channel, tokens = _push(store, http_client, clock, push_settings)
        record = await tokens.register("member-1", "abc123")

        result = await channel.send(_job(), build_job_content(_job()))

        assert result.outcome == "sent"
        body = providers.last_push_body()
        assert body["tokens"] == [
            {"token": "abc123", "token_hash": record.token_hash, "environment": "production"}
        ]
        assert body["notification"]["title"] == "Kiln unloaded: Big Blue"
        assert body["notification"]["data"]["firing_id"] == "f1"
        assert body["context"]["uid"] == "member-1"
        assert providers.push_requests[0].headers["authorization"] == "Bearer relay-key"

    async def test_dead_tokens_are_deactivated(self, store, http_client, clock, push_settings, providers):
        channel, tokens = _push(store, http_client, clock, push_settings)
        dead = await tokens.register("member-1", "dead")
        alive = await tokens.register("member-1", "alive")
        providers.push_body = {
            "accepted": 1,
            "rejected": 1,
            "results": [
                {"token_hash": dead.token_hash, "ok": False, "provider_code": "BadDeviceToken"},
                {"token_hash": alive.token_hash, "ok": True},
            ],
        }

        result = await channel.send(_job(), build_job_content(_job()))

        assert result.metadata == {"accepted": 1, "rejected": 1}
        active = await tokens.list_active("member-1")
        assert [t.token_hash for t in active] == [alive.token_hash]
        assert _attempts(store)[0]["reason"] == "PUSH_PROVIDER_PARTIAL"

    async def test_relay_error_raises_with_status(self, store, http_client, clock, push_settings, providers):
        channel, tokens = _push(store, http_client, clock, push_settings)
        await tokens.register("member-1", "abc123")
        providers.push_status = 503

        with pytest.raises(ProviderError) as exc_info:
            await channel.send(_job(), build_job_content(_job()))

        assert exc_info.value.status_code == 503
        assert _attempts(store)[0]["status"] == "failed"

    async def test_transport_error_propagates(self, store, http_client, clock, push_settings, providers):
        channel, tokens = _push(store, http_client, clock, push_settings)
        await tokens.register("member-1", "abc123")
        providers.error = httpx.ConnectError("connection refused")

        with pytest.raises(httpx.ConnectError) as exc_info:
            await channel.send(_job(), build_job_content(_job()))

        assert classify_error(exc_info.value) is ErrorClass.NETWORK

    async def test_missing_relay_url(self, store, http_client, clock, providers):
        channel, tokens = _push(store, http_client, clock, PushSettings(min_interval_ms=0))
        await tokens.register("member-1", "abc123")

        with pytest.raises(ProviderConfigurationError):
            await channel.send(_job(), build_job_content(_job()))

    async def test_drill_success_needs_no_tokens(self, store, http_client, clock, push_settings, providers):
        channel, _ = _push(store, http_client, clock, push_settings)

        result = await channel.send(_job(DrillMode.SUCCESS), build_job_content(_job(DrillMode.SUCCESS)))

        assert result.outcome == "sent"
        assert providers.requests == []

    @pytest.mark.parametrize(
        ("mode", "expected_class"),
        [
            (DrillMode.AUTH, ErrorClass.AUTH),
            (DrillMode.PROVIDER_4XX, ErrorClass.PROVIDER_4XX),
            (DrillMode.PROVIDER_5XX, ErrorClass.PROVIDER_5XX),
            (DrillMode.NETWORK, ErrorClass.NETWORK),
        ],
    )
    async def test_drill_failures(self, store, http_client, clock, push_settings, mode, expected_class):
        channel, _ = _push(store, http_client, clock, push_settings)

        with pytest.raises(ProviderError) as exc_info:
            await channel.send(_job(mode), build_job_content(_job(mode)))

        assert classify_error(exc_info.value) is expected_class


@pytest.mark.unit
class TestRelayParsing:
    def test_counts_fall_back_to_results(self):
        result = parse_relay_response(
            {"results": [{"token_hash": "a", "ok": True}, {"token_hash": "b", "ok": False}, "junk"]}
        )

        assert (result.accepted, result.rejected) == (1, 1)
        assert len(result.results) == 2

    def test_non_dict_body(self):
        result = parse_relay_response(["nope"])

        assert (result.accepted, result.rejected, result.results) == (0, 0, [])

    @pytest.mark.parametrize(
        ("code", "expected"),
        [
            ("BadDeviceToken", True),
            ("Unregistered", True),
            ("DeviceTokenNotForTopic", True),
            ("device_token_not_for_topic", True),
            ("TooManyRequests", False),
            (None, False),
        ],
    )
    def test_should_deactivate(self, code, expected):
        assert should_deactivate(code) is expected
