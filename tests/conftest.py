"""Pytest configuration and shared fixtures.

Organization:
    - Clock and Store Fixtures: a frozen clock and the in-memory document store
    - Settings Fixtures: explicit settings instances (no .env lookups)
    - Provider Fixtures: httpx.MockTransport standing in for Twilio and the push relay
    - Service Fixtures: the wired ServiceContainer, lazy or eager processing
    - Application Fixtures: FastAPI app and HTTP client
    - Data Fixtures: seeding helpers for identities, preferences and reservations

When adding new features:
    1. Prefer building on ``services``; every component shares its clock and store
    2. Advance time with ``clock.advance(hours=...)`` instead of sleeping
"""

from __future__ import annotations

import json
import os
from collections.abc import AsyncGenerator
from datetime import UTC, datetime, timedelta
from typing import Any

import httpx
import pytest
from httpx import ASGITransport, AsyncClient

# Keep tests independent of local configuration
os.environ.setdefault("APP_ENABLE_SCHEDULER", "false")
os.environ.setdefault("APP_ENVIRONMENT", "test")
os.environ.setdefault("ADMIN_TOKEN", "test-admin-token")
os.environ.setdefault("LOG_CONSOLE_ENABLED", "false")
os.environ.setdefault("STORE_BACKEND", "memory")

from notification_service.container import ServiceContainer, build_services  # noqa: E402
from notification_service.core.settings import (  # noqa: E402
    NotificationSettings,
    PushSettings,
    SmsSettings,
    get_admin_settings,
)
from notification_service.features.notifications.directory import (  # noqa: E402
    IDENTITIES_COLLECTION,
)
from notification_service.features.notifications.preferences import (  # noqa: E402
    PREFERENCES_COLLECTION,
    PROFILES_COLLECTION,
)
from notification_service.features.reservations.models import (  # noqa: E402
    RESERVATIONS_COLLECTION,
)
from notification_service.infra.documents import InMemoryDocumentStore  # noqa: E402
from notification_service.infra.logging import clear_log_context  # noqa: E402
from notification_service.infra.ratelimit import ProviderPacer  # noqa: E402
from notification_service.utils.timestamps import to_iso  # noqa: E402

START = datetime(2026, 10, 14, 17, 0, tzinfo=UTC)
RELAY_URL = "https://relay.test/v1/send"


# ============================================================================
# Clock and Store Fixtures
# ============================================================================


class FrozenClock:
    """Callable clock that only moves when told to."""

    def __init__(self, start: datetime) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> datetime:
        self.now += timedelta(**kwargs)
        return self.now


@pytest.fixture
def clock() -> FrozenClock:
    """Frozen at 2026-10-14 17:00 UTC."""
    return FrozenClock(START)


@pytest.fixture
def store() -> InMemoryDocumentStore:
    return InMemoryDocumentStore()


@pytest.fixture(autouse=True)
def _reset_log_context():
    yield
    clear_log_context()


# ============================================================================
# Settings Fixtures
# ============================================================================


@pytest.fixture
def notification_settings() -> NotificationSettings:
    return NotificationSettings()


@pytest.fixture
def sms_settings() -> SmsSettings:
    """Mock SMS provider reporting success."""
    return SmsSettings(provider="mock", mock_mode="success", min_interval_ms=0)


@pytest.fixture
def push_settings() -> PushSettings:
    return PushSettings(relay_url=RELAY_URL, relay_key="relay-key", min_interval_ms=0)


# ============================================================================
# Provider Fixtures
# ============================================================================


class FakeProviders:
    """Records outbound provider requests and answers with canned replies.

    Attributes:
        push_status / push_body: Reply of the push relay.
        twilio_status / twilio_body: Reply of the Twilio Messages API.
        error: Raised instead of replying, to simulate transport failures.
    """

    def __init__(self) -> None:
        self.requests: list[httpx.Request] = []
        self.push_status = 200
        self.push_body: Any = {"accepted": 1, "rejected": 0, "results": []}
        self.twilio_status = 201
        self.twilio_body: Any = {"sid": "SM0001", "status": "queued"}
        self.error: Exception | None = None

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.error is not None:
            raise self.error
        if request.url.host == "api.twilio.com":
            return httpx.Response(self.twilio_status, json=self.twilio_body)
        return httpx.Response(self.push_status, json=self.push_body)

    @property
    def push_requests(self) -> list[httpx.Request]:
        return [r for r in self.requests if str(r.url) == RELAY_URL]

    def last_push_body(self) -> dict[str, Any]:
        return json.loads(self.push_requests[-1].content)


@pytest.fixture
def providers() -> FakeProviders:
    return FakeProviders()


@pytest.fixture
async def http_client(providers: FakeProviders) -> AsyncGenerator[httpx.AsyncClient]:
    async with httpx.AsyncClient(transport=httpx.MockTransport(providers.handler)) as client:
        yield client


# ============================================================================
# Service Fixtures
# ============================================================================


async def _build(
    store: InMemoryDocumentStore,
    http_client: httpx.AsyncClient,
    clock: FrozenClock,
    notification_settings: NotificationSettings,
    sms_settings: SmsSettings,
    push_settings: PushSettings,
    *,
    process_on_enqueue: bool,
) -> ServiceContainer:
    return await build_services(
        store=store,
        http_client=http_client,
        settings=notification_settings,
        sms_settings=sms_settings,
        push_settings=push_settings,
        clock=clock,
        rng=lambda low, high: high,
        pacer=ProviderPacer(),
        process_on_enqueue=process_on_enqueue,
    )


@pytest.fixture
async def services(
    store, http_client, clock, notification_settings, sms_settings, push_settings
) -> AsyncGenerator[ServiceContainer]:
    """Container whose jobs wait for ``process_job`` or ``process_due_jobs``.

    Retry jitter is pinned to its upper bound, so backoff delays are exact.
    """
    container = await _build(
        store,
        http_client,
        clock,
        notification_settings,
        sms_settings,
        push_settings,
        process_on_enqueue=False,
    )
    yield container
    await container.aclose()


@pytest.fixture
async def eager_services(
    store, http_client, clock, notification_settings, sms_settings, push_settings
) -> AsyncGenerator[ServiceContainer]:
    """Container that processes due jobs as soon as they are enqueued."""
    container = await _build(
        store,
        http_client,
        clock,
        notification_settings,
        sms_settings,
        push_settings,
        process_on_enqueue=True,
    )
    yield container
    await container.aclose()


# ============================================================================
# Application Fixtures
# ============================================================================


@pytest.fixture
def app(services):
    """FastAPI application with the test container preinstalled.

    The lifespan is not run by ASGITransport, so no scheduler starts.
    """
    from notification_service.app.main import create_app

    application = create_app()
    application.state.services = services
    return application


@pytest.fixture
async def client(app) -> AsyncGenerator[AsyncClient]:
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac


@pytest.fixture
def admin_headers() -> dict[str, str]:
    token = get_admin_settings().token
    assert token is not None
    return {"x-admin-token": token.get_secret_value()}


# ============================================================================
# Data Fixtures
# ============================================================================


class Seeder:
    """Writes the documents other services own (identities, reservations)."""

    def __init__(self, store: InMemoryDocumentStore, clock: FrozenClock) -> None:
        self.store = store
        self.clock = clock

    async def identity(
        self,
        uid: str,
        *,
        email: str | None = None,
        phone: str | None = None,
        claims: dict[str, Any] | None = None,
    ) -> None:
        await self.store.set(
            IDENTITIES_COLLECTION,
            uid,
            {"email": email, "phone_number": phone, "custom_claims": claims or {}},
        )

    async def preferences(self, uid: str, **fields: Any) -> None:
        await self.store.set(PREFERENCES_COLLECTION, uid, fields)

    async def profile(self, uid: str, **fields: Any) -> None:
        await self.store.set(PROFILES_COLLECTION, uid, fields)

    def reservation_doc(self, **overrides: Any) -> dict[str, Any]:
        data: dict[str, Any] = {
            "owner_uid": "member-1",
            "status": "CONFIRMED",
            "load_status": "queued",
            "created_at": to_iso(self.clock() - timedelta(days=10)),
            "updated_at": to_iso(self.clock()),
        }
        data.update(overrides)
        return data

    async def reservation(self, reservation_id: str, **overrides: Any) -> dict[str, Any]:
        data = self.reservation_doc(**overrides)
        await self.store.set(RESERVATIONS_COLLECTION, reservation_id, data)
        return data

    async def loaded_reservation(
        self, reservation_id: str, *, ready_hours_ago: float, **overrides: Any
    ) -> dict[str, Any]:
        """A loaded reservation that became ready ``ready_hours_ago`` hours ago."""
        return await self.reservation(
            reservation_id,
            load_status="loaded",
            ready_for_pickup_at=to_iso(self.clock() - timedelta(hours=ready_hours_ago)),
            **overrides,
        )


@pytest.fixture
def seed(store, clock) -> Seeder:
    return Seeder(store, clock)
