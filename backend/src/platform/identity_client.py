"""
Identity directory client (Clerk Backend API).

Handles:
- Reading a user's canonical profile (first name, last name, primary email)
- Merging keys into a user's public metadata

The directory owns the profile; onboarding only reads it and writes the
onboarding projection (onboardingCompleted, role, companyId) into public
metadata. Clerk's metadata endpoint deep-merges, so keys not present in the
partial map are preserved.

SECURITY:
- The secret key is read from the environment and only sent as a bearer token
- Profile data is always fetched server-side, never taken from client input
- Every call has a bounded timeout; timeouts surface as IdentityDirectoryTimeoutError
"""

import logging
import os
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Optional
from urllib.parse import quote

import httpx

from src.config.onboarding import IDENTITY_TIMEOUT_SECONDS

logger = logging.getLogger(__name__)

CLERK_API_BASE = "https://api.clerk.com/v1"


@dataclass(frozen=True)
class Principal:
    """Authenticated identity resolved from the directory."""
    id: str
    first_name: Optional[str]
    last_name: Optional[str]
    email: Optional[str]

    @property
    def is_complete(self) -> bool:
        """True when the profile has everything an account needs."""
        return bool(self.first_name and self.last_name and self.email)


@dataclass
class ClerkConfig:
    """Clerk configuration from environment."""
    secret_key: str
    api_base_url: str = CLERK_API_BASE
    timeout_seconds: float = IDENTITY_TIMEOUT_SECONDS

    @classmethod
    def from_env(cls) -> Optional["ClerkConfig"]:
        """Load configuration from environment variables."""
        secret_key = os.getenv("CLERK_SECRET_KEY")

        if not secret_key:
            logger.warning(
                "Clerk credentials not configured",
                extra={"has_secret_key": False},
            )
            return None

        return cls(
            secret_key=secret_key,
            api_base_url=os.getenv("CLERK_API_URL", CLERK_API_BASE).rstrip("/"),
            timeout_seconds=IDENTITY_TIMEOUT_SECONDS,
        )


class IdentityDirectoryError(Exception):
    """Raised when an identity directory call fails."""
    pass


class IdentityDirectoryTimeoutError(IdentityDirectoryError):
    """Raised when an identity directory call exceeds its timeout."""
    pass


class IdentityDirectory(ABC):
    """
    Boundary to the external identity directory.

    Implementations must raise IdentityDirectoryError (or a subclass) for
    any failure other than "user does not exist".
    """

    @abstractmethod
    def get_principal(self, principal_id: str) -> Optional[Principal]:
        """Return the principal, or None if the user does not exist."""
        pass

    @abstractmethod
    def merge_metadata(self, principal_id: str, metadata: dict[str, Any]) -> None:
        """Merge keys into the principal's public metadata."""
        pass

    def close(self) -> None:
        """Release held connections. No-op by default."""


class ClerkIdentityClient(IdentityDirectory):
    """Identity directory backed by the Clerk Backend API."""

    def __init__(self, config: ClerkConfig, http_client: Optional[httpx.Client] = None):
        """
        Initialize client with Clerk configuration.

        Args:
            config: ClerkConfig with credentials
            http_client: Optional preconfigured httpx client (tests inject a MockTransport)
        """
        self.config = config
        self._http_client = http_client or httpx.Client(
            base_url=config.api_base_url,
            timeout=httpx.Timeout(config.timeout_seconds),
        )

    @staticmethod
    def _user_path(principal_id: str, suffix: str = "") -> str:
        return f"/users/{quote(principal_id, safe='')}{suffix}"

    def _headers(self) -> dict[str, str]:
        return {"Authorization": f"Bearer {self.config.secret_key}"}

    def _request(self, method: str, path: str, **kwargs) -> httpx.Response:
        try:
            return self._http_client.request(method, path, headers=self._headers(), **kwargs)
        except httpx.TimeoutException as e:
            logger.error(
                "Clerk request timed out",
                extra={"method": method, "path": path, "timeout": self.config.timeout_seconds},
            )
            raise IdentityDirectoryTimeoutError(f"Clerk request timed out: {e}") from e
        except httpx.HTTPError as e:
            logger.error(
                "Clerk request failed",
                extra={"method": method, "path": path, "error": str(e)},
            )
            raise IdentityDirectoryError(f"Clerk request failed: {e}") from e

    def get_principal(self, principal_id: str) -> Optional[Principal]:
        """
        Fetch a user's profile.

        Args:
            principal_id: Clerk user id

        Returns:
            Principal, or None if the user does not exist

        Raises:
            IdentityDirectoryError: On transport errors, non-404 failures or
                a malformed user payload
        """
        response = self._request("GET", self._user_path(principal_id))

        if response.status_code == 404:
            logger.info("Principal not found in Clerk", extra={"principal_id": principal_id})
            return None

        if response.status_code != 200:
            logger.error(
                "Unexpected Clerk response for user lookup",
                extra={"status_code": response.status_code, "principal_id": principal_id},
            )
            raise IdentityDirectoryError(
                f"Clerk user lookup failed with status {response.status_code}"
            )

        try:
            return self._parse_principal(response.json())
        except (ValueError, KeyError, TypeError, AttributeError) as e:
            logger.error(
                "Malformed Clerk user payload",
                extra={"principal_id": principal_id, "error": str(e)},
            )
            raise IdentityDirectoryError("Malformed Clerk user payload") from e

    def merge_metadata(self, principal_id: str, metadata: dict[str, Any]) -> None:
        """
        Merge keys into the user's public metadata.

        Args:
            principal_id: Clerk user id
            metadata: Partial map; existing keys not present here are kept

        Raises:
            IdentityDirectoryError: If the merge was not acknowledged
        """
        response = self._request(
            "PATCH",
            self._user_path(principal_id, "/metadata"),
            json={"public_metadata": metadata},
        )

        if response.status_code != 200:
            logger.error(
                "Clerk metadata merge rejected",
                extra={"status_code": response.status_code, "principal_id": principal_id},
            )
            raise IdentityDirectoryError(
                f"Clerk metadata merge failed with status {response.status_code}"
            )

        logger.info(
            "Merged Clerk public metadata",
            extra={"principal_id": principal_id, "keys": sorted(metadata)},
        )

    @staticmethod
    def _parse_principal(data: dict[str, Any]) -> Principal:
        """Build a Principal, preferring the primary email address."""
        addresses = data.get("email_addresses") or []
        primary_id = data.get("primary_email_address_id")

        email = None
        for address in addresses:
            if address.get("id") == primary_id:
                email = address.get("email_address")
                break
        if email is None and addresses:
            email = addresses[0].get("email_address")

        return Principal(
            id=data["id"],
            first_name=data.get("first_name"),
            last_name=data.get("last_name"),
            email=email,
        )

    def close(self):
        """Close the HTTP client."""
        self._http_client.close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()


_identity_client: Optional[ClerkIdentityClient] = None


def get_identity_client() -> Optional[ClerkIdentityClient]:
    """
    Get or create the shared Clerk client.

    Returns None if Clerk is not configured.
    """
    global _identity_client

    if _identity_client is None:
        config = ClerkConfig.from_env()
        if config:
            _identity_client = ClerkIdentityClient(config)

    return _identity_client
