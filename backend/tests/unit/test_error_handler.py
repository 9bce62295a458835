"""
Tests for error handler middleware and custom exceptions.
"""
import pytest
from fastapi import FastAPI, Request
from fastapi.testclient import TestClient
from pydantic import BaseModel, Field

from carenow.api.middleware.error_handler import (
    AppException,
    UnauthorizedException,
    ForbiddenException,
    app_exception_handler,
    domain_exception_handler,
    status_for_failure,
    validation_exception_handler,
    http_exception_handler,
    unhandled_exception_handler,
)
from carenow.services.errors import (
    CareNowError,
    ConcurrentUpdateFailure,
    NotFoundFailure,
    PartnerConflictFailure,
    RetrievalFailure,
    ServerFailure,
    ValidationFailure,
)


def _domain_app(exc: Exception) -> TestClient:
    app = FastAPI()
    app.add_exception_handler(CareNowError, domain_exception_handler)

    @app.get("/boom")
    async def boom(request: Request):
        request.state.correlation_id = "corr-1"
        raise exc

    return TestClient(app)


@pytest.mark.unit
def test_app_exception_creation():
    """Test creating custom AppException."""
    exc = AppException(
        message="Test error",
        status_code=500,
        details={"key": "value"},
    )

    assert exc.message == "Test error"
    assert exc.status_code == 500
    assert exc.details == {"key": "value"}


@pytest.mark.unit
def test_unauthorized_exception():
    exc = UnauthorizedException()

    assert exc.message == "Unauthorized"
    assert exc.status_code == 401


@pytest.mark.unit
def test_forbidden_exception():
    exc = ForbiddenException("Partner access required")

    assert exc.message == "Partner access required"
    assert exc.status_code == 403


@pytest.mark.unit
@pytest.mark.parametrize(
    "exc, expected",
    [
        (ValidationFailure("bad"), 422),
        (PartnerConflictFailure("taken"), 409),
        (ConcurrentUpdateFailure("raced"), 409),
        (NotFoundFailure("Booking", "b1"), 404),
        (ServerFailure("down"), 503),
        (RetrievalFailure("down"), 503),
        (CareNowError("other"), 500),
    ],
)
def test_status_for_failure(exc, expected):
    assert status_for_failure(exc) == expected


@pytest.mark.integration
def test_validation_failure_lists_every_error():
    client = _domain_app(ValidationFailure("a\nb", ["a", "b"]))

    response = client.get("/boom")

    assert response.status_code == 422
    data = response.json()
    assert data["error"] == "a\nb"
    assert data["correlation_id"] == "corr-1"
    assert data["details"]["errors"] == ["a", "b"]


@pytest.mark.integration
def test_not_found_failure_details():
    client = _domain_app(NotFoundFailure("Booking", "b1"))

    response = client.get("/boom")

    assert response.status_code == 404
    assert response.json()["details"] == {"resource": "Booking", "resource_id": "b1"}


@pytest.mark.integration
def test_server_failure_has_no_details():
    client = _domain_app(ServerFailure("store timed out"))

    response = client.get("/boom")

    assert response.status_code == 503
    assert "details" not in response.json()


@pytest.mark.integration
def test_app_exception_handler_in_route():
    """Test custom exception handler in actual route."""
    app = FastAPI()
    app.add_exception_handler(AppException, app_exception_handler)

    @app.get("/test-error")
    async def test_error():
        raise AppException("Slot unavailable", status_code=409, details={"slot": "10:00"})

    client = TestClient(app)
    response = client.get("/test-error")

    assert response.status_code == 409
    data = response.json()
    assert data["error"] == "Slot unavailable"
    assert data["details"] == {"slot": "10:00"}
    assert data["correlation_id"] == "unknown"


@pytest.mark.integration
def test_validation_error_handler():
    """Test Pydantic validation error handler."""
    app = FastAPI()

    from fastapi.exceptions import RequestValidationError
    app.add_exception_handler(RequestValidationError, validation_exception_handler)

    class SlotModel(BaseModel):
        time_slot: str = Field(..., pattern=r"^\d{2}:\d{2}$")
        hours: float = Field(..., gt=0)

    @app.post("/test-validation")
    async def test_validation(data: SlotModel):
        return {"ok": True}

    client = TestClient(app)
    response = client.post("/test-validation", json={"time_slot": "noon", "hours": -1})

    assert response.status_code == 422
    data = response.json()
    assert data["error"] == "Validation error"
    assert len(data["details"]["errors"]) == 2


@pytest.mark.integration
def test_http_exception_handler():
    """Test HTTP exception handler."""
    app = FastAPI()

    from starlette.exceptions import HTTPException as StarletteHTTPException
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)

    @app.get("/test-http-error")
    async def test_http_error():
        raise StarletteHTTPException(status_code=404, detail="Page not found")

    client = TestClient(app)
    response = client.get("/test-http-error")

    assert response.status_code == 404
    data = response.json()
    assert data["error"] == "Page not found"
    assert "correlation_id" in data


@pytest.mark.integration
def test_unhandled_exception_handler():
    """Test handler for unhandled exceptions."""
    app = FastAPI()
    app.add_exception_handler(Exception, unhandled_exception_handler)

    @app.get("/test-unhandled")
    async def test_unhandled():
        raise ValueError("Unexpected error")

    client = TestClient(app, raise_server_exceptions=False)
    response = client.get("/test-unhandled")

    assert response.status_code == 500
    assert response.json()["error"] == "Internal server error"
