"""Shared-secret authorization for operator endpoints."""

from __future__ import annotations

import secrets
from typing import Annotated

from fastapi import Depends, Header

from notification_service.core.exceptions import (
    ForbiddenException,
    ServiceUnavailableException,
    UnauthorizedException,
)
from notification_service.core.settings import get_admin_settings
from notification_service.infra.logging import get_logger

logger = get_logger(__name__)


def require_admin_token(
    x_admin_token: Annotated[str | None, Header(alias="x-admin-token")] = None,
) -> str:
    """Validate the ``x-admin-token`` header.

    Raises:
        ServiceUnavailableException: No admin token is configured.
        UnauthorizedException: The header is missing.
        ForbiddenException: The header does not match.
    """
    configured = get_admin_settings().token
    if configured is None or not configured.get_secret_value():
        raise ServiceUnavailableException("Admin token is not configured")
    if not x_admin_token:
        raise UnauthorizedException("Missing admin token")
    if not secrets.compare_digest(x_admin_token, configured.get_secret_value()):
        logger.warning("Rejected admin request with invalid token")
        raise ForbiddenException("Invalid admin token")
    return "admin"


AdminDep = Annotated[str, Depends(require_admin_token)]
