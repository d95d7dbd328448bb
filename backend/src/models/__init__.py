"""
Database models for onboarding and account provisioning.

Importing this package registers every model with Base.metadata.
"""

from src.models.base import TimestampMixin
from src.models.organization import Organization
from src.models.account import AccountRecord, AccountRole
from src.models.invitation_code import InvitationCode
from src.models.metadata_sync_task import (
    MetadataSyncTask,
    MetadataSyncStatus,
    onboarding_metadata,
)

__all__ = [
    "TimestampMixin",
    "Organization",
    "AccountRecord",
    "AccountRole",
    "InvitationCode",
    "MetadataSyncTask",
    "MetadataSyncStatus",
    "onboarding_metadata",
]
