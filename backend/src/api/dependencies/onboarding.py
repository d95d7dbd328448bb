"""FastAPI dependencies for the onboarding routes."""

from typing import Optional

from fastapi import Request

from src.platform.errors import AuthenticationError, ServiceUnavailableError
from src.platform.identity_client import IdentityDirectory, get_identity_client


def get_principal_id(request: Request) -> str:
    """
    Return the authenticated principal id.

    The id is set on request.state by the session layer that runs before
    onboarding; it is never read from the request body.
    """
    principal_id = getattr(request.state, "principal_id", None)
    if not principal_id:
        raise AuthenticationError()
    return principal_id


def get_identity_directory() -> IdentityDirectory:
    """Return the shared identity directory client."""
    client = get_identity_client()
    if client is None:
        raise ServiceUnavailableError("Identity directory is not configured")
    return client


def get_request_correlation_id(request: Request) -> Optional[str]:
    """Correlation id assigned by ErrorHandlerMiddleware, if any."""
    return getattr(request.state, "correlation_id", None)
