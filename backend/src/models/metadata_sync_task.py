"""
MetadataSyncTask model (transactional outbox for identity metadata).

The relational database is the source of truth for onboarding. The identity
directory's public metadata is a projection of it that can lag or fail.

A task is inserted in the same transaction as the AccountRecord, so every
committed account has a durable record of the metadata it still owes the
identity directory. The provisioning call tries the merge immediately; the
reconciliation job retries anything left pending.

Lifecycle:
- PENDING: merge not yet confirmed by the identity directory
- COMPLETED: merge acknowledged, task is kept for history
"""

import enum
import uuid
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import JSON, Column, DateTime, Index, Integer, String, Text, Enum as SAEnum

from src.config.onboarding import MAX_SYNC_ERROR_LENGTH
from src.db_base import Base
from src.models.base import TimestampMixin


class MetadataSyncStatus(str, enum.Enum):
    """Outbox task status."""
    PENDING = "pending"
    COMPLETED = "completed"


class MetadataSyncTask(Base, TimestampMixin):
    """Identity metadata owed to the directory for one principal."""

    __tablename__ = "metadata_sync_tasks"

    id = Column(
        String(36),
        primary_key=True,
        default=lambda: str(uuid.uuid4()),
        comment="Internal UUID primary key"
    )

    identity_id = Column(
        String(255),
        nullable=False,
        unique=True,
        comment="Identity directory user id"
    )

    payload = Column(
        "metadata",
        JSON,
        nullable=False,
        default=dict,
        comment="Partial public metadata map to merge"
    )

    status = Column(
        SAEnum(MetadataSyncStatus, name="metadata_sync_status", create_constraint=True),
        nullable=False,
        default=MetadataSyncStatus.PENDING,
        index=True,
    )

    attempts = Column(Integer, nullable=False, default=0)

    last_error = Column(Text, nullable=True)

    last_attempt_at = Column(DateTime(timezone=True), nullable=True)

    completed_at = Column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        Index("ix_metadata_sync_tasks_status_created", "status", "created_at"),
    )

    def __repr__(self) -> str:
        return (
            f"<MetadataSyncTask(identity_id={self.identity_id}, "
            f"status={self.status.value}, attempts={self.attempts})>"
        )

    @property
    def is_pending(self) -> bool:
        return self.status == MetadataSyncStatus.PENDING

    def mark_completed(self) -> None:
        now = datetime.now(timezone.utc)
        self.status = MetadataSyncStatus.COMPLETED
        self.attempts = (self.attempts or 0) + 1
        self.last_attempt_at = now
        self.completed_at = now
        self.last_error = None

    def record_failure(self, error: str) -> None:
        self.attempts = (self.attempts or 0) + 1
        self.last_attempt_at = datetime.now(timezone.utc)
        self.last_error = error[:MAX_SYNC_ERROR_LENGTH]

    @classmethod
    def create_pending(
        cls,
        identity_id: str,
        metadata: dict[str, Any],
    ) -> "MetadataSyncTask":
        return cls(
            id=str(uuid.uuid4()),
            identity_id=identity_id,
            payload=dict(metadata),
            status=MetadataSyncStatus.PENDING,
            attempts=0,
        )


def onboarding_metadata(role: str, organization_id: str) -> dict[str, Any]:
    """Public metadata written to the identity directory after provisioning."""
    return {
        "onboardingCompleted": True,
        "role": role,
        "companyId": organization_id,
    }
