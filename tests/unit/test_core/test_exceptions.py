"""Unit tests for the application exception hierarchy."""

from __future__ import annotations

import pytest

from notification_service.core.exceptions import (
    AppException,
    ForbiddenException,
    NotFoundException,
    ServiceUnavailableException,
    UnauthorizedException,
    ValidationException,
)


@pytest.mark.unit
class TestAppException:
    def test_default_title_from_status(self):
        exc = AppException(status_code=409, detail="Duplicate job")

        assert exc.title == "Conflict"
        assert exc.type == "about:blank"
        assert exc.extra == {}
        assert str(exc) == "Duplicate job"

    def test_unknown_status_gets_generic_title(self):
        assert AppException(status_code=418, detail="teapot").title == "Error"

    @pytest.mark.parametrize(
        ("exc_type", "status_code", "problem_type"),
        [
            (NotFoundException, 404, "not-found"),
            (ValidationException, 422, "validation-error"),
            (UnauthorizedException, 401, "unauthorized"),
            (ForbiddenException, 403, "forbidden"),
            (ServiceUnavailableException, 503, "service-unavailable"),
        ],
    )
    def test_subclasses(self, exc_type, status_code, problem_type):
        exc = exc_type("nope", extra={"job_id": "j1"})

        assert isinstance(exc, AppException)
        assert exc.status_code == status_code
        assert exc.type == problem_type
        assert exc.extra == {"job_id": "j1"}
