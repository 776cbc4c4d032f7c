"""Router registration."""

from __future__ import annotations

from fastapi import APIRouter, FastAPI, Request, Response
from prometheus_client import CONTENT_TYPE_LATEST, REGISTRY, generate_latest

from notification_service.core.settings import AppSettings
from notification_service.features.notifications.router import router as notifications_router
from notification_service.tasks import get_job_status

observability_router = APIRouter(tags=["observability"])


@observability_router.get("/metrics", include_in_schema=False)
async def metrics() -> Response:
    """Prometheus scrape endpoint."""
    return Response(content=generate_latest(REGISTRY), media_type=CONTENT_TYPE_LATEST)


@observability_router.get("/health", summary="Liveness and scheduler state")
async def health(request: Request) -> dict[str, object]:
    scheduler = getattr(request.app.state, "scheduler", None)
    return {
        "status": "ok",
        "scheduler": get_job_status(scheduler) if scheduler is not None else [],
    }


def setup_routers(app: FastAPI, settings: AppSettings) -> None:
    app.include_router(observability_router)
    app.include_router(notifications_router, prefix=settings.api_prefix)
