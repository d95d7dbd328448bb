"""Configuration module for backend services."""

from src.config.onboarding import (
    INVITATION_CODE_LENGTH,
    INVITATION_CODE_ALPHABET,
    IDENTITY_TIMEOUT_SECONDS,
    METADATA_SYNC_BATCH_SIZE,
    METADATA_SYNC_MAX_ATTEMPTS,
)

__all__ = [
    "INVITATION_CODE_LENGTH",
    "INVITATION_CODE_ALPHABET",
    "IDENTITY_TIMEOUT_SECONDS",
    "METADATA_SYNC_BATCH_SIZE",
    "METADATA_SYNC_MAX_ATTEMPTS",
]
