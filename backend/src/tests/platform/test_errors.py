"""
Error handling tests for the onboarding API.

Verifies that request-level errors share one response shape, carry a
correlation id, and never leak exception text to clients.
"""

import pytest
from unittest.mock import Mock
from fastapi import FastAPI, Request, HTTPException, status
from fastapi.testclient import TestClient

from src.platform.errors import (
    AppError,
    AuthenticationError,
    ErrorHandlerMiddleware,
    PermissionDeniedError,
    ServiceUnavailableError,
    generate_correlation_id,
    get_correlation_id,
)


# ============================================================================
# TEST SUITE: ERROR CLASSES
# ============================================================================

class TestErrorClasses:
    """Status codes and error codes per class."""

    def test_app_error_defaults_to_500(self):
        error = AppError(code="BROKEN", message="Something broke")

        assert error.status_code == 500
        assert error.details == {}

    def test_app_error_to_dict(self):
        """to_dict wraps everything under an "error" key."""
        error = AppError(code="BROKEN", message="Something broke", details={"stage": "claim"})

        assert error.to_dict() == {
            "error": {
                "code": "BROKEN",
                "message": "Something broke",
                "details": {"stage": "claim"},
            }
        }

    @pytest.mark.parametrize(
        "error,expected_status,expected_code",
        [
            (AuthenticationError(), status.HTTP_401_UNAUTHORIZED, "AUTHENTICATION_ERROR"),
            (PermissionDeniedError(), status.HTTP_403_FORBIDDEN, "PERMISSION_DENIED"),
            (ServiceUnavailableError(), status.HTTP_503_SERVICE_UNAVAILABLE, "SERVICE_UNAVAILABLE"),
        ],
    )
    def test_status_and_code(self, error, expected_status, expected_code):
        assert error.status_code == expected_status
        assert error.code == expected_code
        assert error.message


# ============================================================================
# TEST SUITE: CORRELATION ID
# ============================================================================

class TestCorrelationId:
    """Correlation id resolution order: header, state, new."""

    def test_generated_ids_are_unique_uuids(self):
        first, second = generate_correlation_id(), generate_correlation_id()

        assert first != second
        assert len(first) == 36

    def test_header_wins(self):
        request = Mock(spec=Request)
        request.headers = {"X-Correlation-ID": "from-header"}
        request.state = Mock(spec=[])

        assert get_correlation_id(request) == "from-header"

    def test_state_used_without_header(self):
        request = Mock(spec=Request)
        request.headers = {}
        request.state.correlation_id = "from-state"

        assert get_correlation_id(request) == "from-state"

    def test_new_id_when_missing(self):
        request = Mock(spec=Request)
        request.headers = {}
        request.state = Mock(spec=[])

        assert len(get_correlation_id(request)) == 36


# ============================================================================
# TEST SUITE: ERROR HANDLER MIDDLEWARE
# ============================================================================

class TestErrorHandlerMiddleware:
    """Middleware behavior on a minimal app."""

    @pytest.fixture
    def client(self):
        app = FastAPI()
        app.add_middleware(ErrorHandlerMiddleware)

        @app.get("/ok")
        async def ok():
            return {"status": "ok"}

        @app.get("/denied")
        async def denied():
            raise PermissionDeniedError("Only organization admins can manage invitation codes")

        @app.get("/http-error")
        async def http_error():
            raise HTTPException(status_code=409, detail="conflict detail")

        @app.get("/crash")
        async def crash():
            raise RuntimeError("connection string postgres://secret@db")

        return TestClient(app, raise_server_exceptions=False)

    def test_success_echoes_correlation_id(self, client):
        response = client.get("/ok", headers={"X-Correlation-ID": "corr-abc"})

        assert response.status_code == 200
        assert response.headers["X-Correlation-ID"] == "corr-abc"

    def test_app_error_shape(self, client):
        response = client.get("/denied")

        assert response.status_code == 403
        assert response.json()["error"]["code"] == "PERMISSION_DENIED"
        assert "X-Correlation-ID" in response.headers

    def test_http_exception_keeps_status(self, client):
        response = client.get("/http-error")

        assert response.status_code == 409

    def test_unexpected_error_hides_details(self, client):
        response = client.get("/crash")

        assert response.status_code == 500
        data = response.json()
        assert data["error"]["code"] == "INTERNAL_ERROR"
        assert "secret" not in str(data)
        assert "RuntimeError" not in str(data)
        assert "correlation_id" in data["error"]["details"]
