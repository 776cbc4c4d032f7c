"""Operator API for the notification pipeline.

Every route requires the ``x-admin-token`` header.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query, status

from notification_service.core.dependencies import ServicesDep, require_admin_token
from notification_service.core.exceptions import NotFoundException
from notification_service.features.reservations.models import StorageAuditEntry, SweepSummary
from notification_service.infra.logging import get_logger

from .delivery_metrics import DeliveryMetricsSummary
from .device_tokens import TokenCleanupSummary
from .drill import DrillRequest, DrillResult
from .models import DeadLetter, NotificationJob, ProcessSummary
from .schemas import (
    DeviceTokenRead,
    DeviceTokenRegister,
    DeviceTokenUnregister,
    DeviceTokenUnregistered,
)

router = APIRouter(
    prefix="/admin/notifications",
    tags=["notifications"],
    dependencies=[Depends(require_admin_token)],
)

logger = get_logger(__name__)


@router.post(
    "/jobs/run-due",
    response_model=ProcessSummary,
    summary="Process due jobs now",
)
async def run_due_jobs(
    services: ServicesDep,
    limit: int | None = Query(default=None, ge=1, le=1000),
) -> ProcessSummary:
    summary = await services.queue.process_due_jobs(limit)
    logger.info("Manual due-job run", extra={"processed": summary.processed})
    return summary


@router.get(
    "/jobs/{job_id}",
    response_model=NotificationJob,
    summary="Read a notification job",
)
async def get_job(job_id: str, services: ServicesDep) -> NotificationJob:
    job = await services.queue.get_job(job_id)
    if job is None:
        raise NotFoundException(f"Notification job {job_id} not found", extra={"job_id": job_id})
    return job


@router.get(
    "/dead-letters",
    response_model=list[DeadLetter],
    summary="List dead-lettered jobs, newest first",
)
async def list_dead_letters(
    services: ServicesDep,
    limit: int = Query(default=50, ge=1, le=500),
) -> list[DeadLetter]:
    return await services.queue.list_dead_letters(limit)


@router.post(
    "/storage/run",
    response_model=SweepSummary,
    summary="Run the reservation storage-policy sweep now",
)
async def run_storage_sweep(
    services: ServicesDep,
    limit: int | None = Query(default=None, ge=1, le=5000),
) -> SweepSummary:
    return await services.storage.sweep(limit=limit)


@router.get(
    "/reservations/{reservation_id}/storage-audit",
    response_model=list[StorageAuditEntry],
    summary="Storage audit trail for a reservation",
)
async def reservation_storage_audit(
    reservation_id: str, services: ServicesDep
) -> list[StorageAuditEntry]:
    return await services.audit.list_for(reservation_id)


@router.post(
    "/metrics/aggregate",
    response_model=DeliveryMetricsSummary,
    summary="Aggregate delivery metrics now",
)
async def aggregate_metrics(
    services: ServicesDep,
    window_hours: int = Query(default=24, ge=1, le=24 * 30),
) -> DeliveryMetricsSummary:
    return await services.delivery_metrics.aggregate(window_hours, triggered_by="admin")


@router.post(
    "/drills",
    response_model=DrillResult,
    status_code=status.HTTP_202_ACCEPTED,
    summary="Enqueue a provider failure drill",
)
async def run_drill(payload: DrillRequest, services: ServicesDep) -> DrillResult:
    return await services.drills.run(payload)


@router.post(
    "/device-tokens",
    response_model=DeviceTokenRead,
    status_code=status.HTTP_201_CREATED,
    summary="Register a push device token",
)
async def register_device_token(
    payload: DeviceTokenRegister, services: ServicesDep
) -> DeviceTokenRead:
    record = await services.device_tokens.register(
        payload.uid,
        payload.token,
        platform=payload.platform,
        environment=payload.environment,
        app_version=payload.app_version,
        app_build=payload.app_build,
        device_model=payload.device_model,
    )
    return DeviceTokenRead.model_validate(record.model_dump())


@router.post(
    "/device-tokens/unregister",
    response_model=DeviceTokenUnregistered,
    summary="Deactivate a push device token",
)
async def unregister_device_token(
    payload: DeviceTokenUnregister, services: ServicesDep
) -> DeviceTokenUnregistered:
    token_hash = await services.device_tokens.unregister(
        payload.uid, token=payload.token, token_hash=payload.token_hash
    )
    return DeviceTokenUnregistered(uid=payload.uid, token_hash=token_hash)


@router.post(
    "/device-tokens/cleanup",
    response_model=TokenCleanupSummary,
    summary="Deactivate stale device tokens now",
)
async def cleanup_device_tokens(services: ServicesDep) -> TokenCleanupSummary:
    settings = services.settings
    return await services.device_tokens.cleanup_stale(
        settings.device_token_stale_days, settings.device_token_cleanup_limit
    )
