"""Wiring of the notification pipeline.

``build_services`` assembles every component once per process (or per
test) from settings. The FastAPI lifespan, the scheduler and the CLI all
share the resulting ``ServiceContainer``.

Example:
    services = await build_services()
    try:
        await services.queue.process_due_jobs()
    finally:
        await services.aclose()
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime

import httpx

from notification_service.core.settings import (
    NotificationSettings,
    PushSettings,
    SmsSettings,
    get_notification_settings,
    get_push_settings,
    get_sms_settings,
    get_store_settings,
)
from notification_service.features.kilns import KilnUnloadHandler
from notification_service.features.notifications.channels import (
    ChannelDispatcher,
    DeliveryTelemetry,
    EmailChannel,
    InAppChannel,
    PushChannel,
    PushRelayClient,
    SmsChannel,
    TwilioClient,
)
from notification_service.features.notifications.delivery_metrics import (
    DeliveryMetricsAggregator,
)
from notification_service.features.notifications.device_tokens import DeviceTokenRegistry
from notification_service.features.notifications.directory import (
    IdentityDirectory,
    StoreIdentityDirectory,
)
from notification_service.features.notifications.drill import FailureDrillRunner
from notification_service.features.notifications.preferences import PreferenceReader
from notification_service.features.notifications.queue import JobQueue
from notification_service.features.reservations import (
    DelayFollowUpChainer,
    ReservationEventHandler,
    StorageAuditLog,
    StoragePolicyEngine,
)
from notification_service.infra.documents import DocumentStore, build_document_store
from notification_service.infra.logging import get_logger
from notification_service.infra.ratelimit import ProviderPacer
from notification_service.utils.timestamps import utc_now

logger = get_logger(__name__)


@dataclass
class ServiceContainer:
    store: DocumentStore
    http_client: httpx.AsyncClient
    settings: NotificationSettings
    preferences: PreferenceReader
    directory: IdentityDirectory
    device_tokens: DeviceTokenRegistry
    dispatcher: ChannelDispatcher
    queue: JobQueue
    audit: StorageAuditLog
    storage: StoragePolicyEngine
    follow_ups: DelayFollowUpChainer
    reservations: ReservationEventHandler
    kilns: KilnUnloadHandler
    drills: FailureDrillRunner
    delivery_metrics: DeliveryMetricsAggregator
    owns_http_client: bool = True

    async def aclose(self) -> None:
        if self.owns_http_client:
            await self.http_client.aclose()
        await self.store.close()
        logger.info("Notification services closed")


async def build_services(
    *,
    store: DocumentStore | None = None,
    http_client: httpx.AsyncClient | None = None,
    settings: NotificationSettings | None = None,
    sms_settings: SmsSettings | None = None,
    push_settings: PushSettings | None = None,
    directory: IdentityDirectory | None = None,
    clock: Callable[[], datetime] = utc_now,
    rng: Callable[[float, float], float] | None = None,
    pacer: ProviderPacer | None = None,
    process_on_enqueue: bool = True,
) -> ServiceContainer:
    """Build the full component graph.

    Every collaborator can be injected; anything omitted comes from the
    cached settings loaders.
    """
    settings = settings or get_notification_settings()
    sms_settings = sms_settings or get_sms_settings()
    push_settings = push_settings or get_push_settings()
    store = store or await build_document_store(get_store_settings())
    owns_http_client = http_client is None
    http_client = http_client or httpx.AsyncClient()
    directory = directory or StoreIdentityDirectory(store)
    pacer = pacer or ProviderPacer(
        {
            TwilioClient.provider_name: sms_settings.min_interval_ms / 1000,
            PushRelayClient.provider_name: push_settings.min_interval_ms / 1000,
        }
    )

    preferences = PreferenceReader(store)
    telemetry = DeliveryTelemetry(store, clock)
    device_tokens = DeviceTokenRegistry(store, clock)
    dispatcher = ChannelDispatcher(
        in_app=InAppChannel(store, clock),
        email=EmailChannel(store, directory, clock),
        sms=SmsChannel(
            store,
            directory,
            telemetry,
            sms_settings,
            TwilioClient(sms_settings, http_client, pacer),
        ),
        push=PushChannel(
            device_tokens,
            telemetry,
            push_settings,
            PushRelayClient(push_settings, http_client, pacer),
        ),
        telemetry=telemetry,
    )
    queue = JobQueue(
        store,
        dispatcher,
        preferences,
        settings,
        clock=clock,
        rng=rng,
        process_on_enqueue=process_on_enqueue,
    )
    audit = StorageAuditLog(store, settings.storage_audit_max_entries, clock)
    storage = StoragePolicyEngine(store, queue, audit, settings, clock=clock)
    follow_ups = DelayFollowUpChainer(store, queue, settings, clock=clock)
    queue.follow_ups = follow_ups
    queue.reminder_failures = storage

    return ServiceContainer(
        store=store,
        http_client=http_client,
        settings=settings,
        preferences=preferences,
        directory=directory,
        device_tokens=device_tokens,
        dispatcher=dispatcher,
        queue=queue,
        audit=audit,
        storage=storage,
        follow_ups=follow_ups,
        reservations=ReservationEventHandler(
            queue, preferences, follow_ups, storage, clock=clock
        ),
        kilns=KilnUnloadHandler(store, queue, preferences, directory, clock=clock),
        drills=FailureDrillRunner(queue, clock),
        delivery_metrics=DeliveryMetricsAggregator(
            store, settings.delivery_metrics_scan_limit, clock
        ),
        owns_http_client=owns_http_client,
    )
