"""Service container dependency for FastAPI."""

from __future__ import annotations

from typing import Annotated

from fastapi import Depends, Request

from notification_service.container import ServiceContainer
from notification_service.core.exceptions import ServiceUnavailableException


def get_services(request: Request) -> ServiceContainer:
    """Return the container built during application lifespan.

    Example:
        ```python
        @router.post("/jobs/run-due")
        async def run_due(services: ServicesDep):
            return await services.queue.process_due_jobs()
        ```
    """
    services = getattr(request.app.state, "services", None)
    if services is None:
        raise ServiceUnavailableException("Notification services are not initialized")
    return services


ServicesDep = Annotated[ServiceContainer, Depends(get_services)]
