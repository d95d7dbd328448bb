"""
Audit logging for account onboarding.

REQUIREMENTS:
- Audit logs are append-only (no UPDATE/DELETE)
- Every provisioning attempt writes an event, successful or not
- Events include: organization_id, identity_id, action, outcome, timestamp, metadata
- PII fields are redacted before persistence
- Failed writes fall back to a secondary logger and never break the caller

Onboarding writes audit events only after its own transaction has been
committed or rolled back, so an audit failure can never undo provisioning.
"""

import json
import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, FrozenSet, Optional

from sqlalchemy import JSON, Column, DateTime, Index, String
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Session

from src.db_base import Base

logger = logging.getLogger(__name__)
fallback_logger = logging.getLogger("audit.fallback")


class AuditAction(str, Enum):
    """Enumeration of all auditable onboarding actions."""
    EMPLOYEE_PROVISIONED = "onboarding.employee_provisioned"
    ADMIN_PROVISIONED = "onboarding.admin_provisioned"
    PROVISIONING_FAILED = "onboarding.provisioning_failed"
    METADATA_SYNCED = "onboarding.metadata_synced"
    METADATA_SYNC_FAILED = "onboarding.metadata_sync_failed"
    INVITATION_CODE_ISSUED = "onboarding.invitation_code_issued"


class AuditOutcome(str, Enum):
    """Outcome of the audited action."""
    SUCCESS = "success"
    FAILURE = "failure"
    DENIED = "denied"


class PIIRedactor:
    """
    Redacts PII fields from audit metadata before persistence.

    Redacted fields are replaced with "[REDACTED]" to keep the structure
    while removing sensitive data.
    """

    REDACTED_FIELDS: FrozenSet[str] = frozenset({
        "email",
        "phone",
        "phone_number",
        "first_name",
        "last_name",
        "token",
        "secret",
        "password",
        "invitation_code",
        "code",
    })

    REDACTION_MARKER = "[REDACTED]"

    @classmethod
    def redact(cls, data: dict[str, Any]) -> dict[str, Any]:
        """Return a copy of data with PII fields redacted at any depth."""
        if not isinstance(data, dict):
            return data
        return cls._redact_dict(data)

    @classmethod
    def _redact_dict(cls, d: dict[str, Any]) -> dict[str, Any]:
        result = {}
        for key, value in d.items():
            lower_key = key.lower()
            if lower_key in cls.REDACTED_FIELDS:
                result[key] = cls._redact_value(lower_key, value)
            elif isinstance(value, dict):
                result[key] = cls._redact_dict(value)
            elif isinstance(value, list):
                result[key] = [
                    cls._redact_dict(item) if isinstance(item, dict) else item
                    for item in value
                ]
            else:
                result[key] = value
        return result

    @classmethod
    def _redact_value(cls, key: str, value: Any) -> str:
        """Redact a single value, keeping the domain of email addresses."""
        if key == "email" and isinstance(value, str) and "@" in value:
            return f"***@{value.split('@', 1)[1]}"
        return cls.REDACTION_MARKER


class AuditLog(Base):
    """
    Audit log database model.

    This table is append-only. Onboarding code only ever inserts into it.
    """
    __tablename__ = "audit_logs"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    organization_id = Column(String(36), nullable=True, index=True)  # NULL before an org is known
    identity_id = Column(String(255), nullable=True, index=True)  # NULL for system events
    action = Column(String(100), nullable=False, index=True)
    timestamp = Column(DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc))
    resource_type = Column(String(100), nullable=True)
    resource_id = Column(String(255), nullable=True)
    event_metadata = Column(JSON().with_variant(JSONB(), "postgresql"), nullable=False, default=dict)
    correlation_id = Column(String(36), nullable=False)
    source = Column(String(50), nullable=False, default="api")  # api, worker, system
    outcome = Column(String(20), nullable=False, default="success")
    error_code = Column(String(50), nullable=True)

    __table_args__ = (
        Index("ix_audit_logs_org_timestamp", "organization_id", "timestamp"),
        Index("ix_audit_logs_identity_action", "identity_id", "action"),
        Index("ix_audit_logs_correlation", "correlation_id"),
    )


@dataclass
class AuditEvent:
    """
    Audit event data structure.

    PII in metadata is redacted automatically before persistence.
    """
    action: AuditAction
    organization_id: Optional[str] = None
    identity_id: Optional[str] = None
    resource_type: Optional[str] = None
    resource_id: Optional[str] = None
    metadata: dict[str, Any] = field(default_factory=dict)
    correlation_id: Optional[str] = field(default_factory=lambda: str(uuid.uuid4()))
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    source: str = "api"
    outcome: AuditOutcome = AuditOutcome.SUCCESS
    error_code: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        """Convert to column values with PII redaction."""
        return {
            "organization_id": self.organization_id,
            "identity_id": self.identity_id,
            "action": _enum_value(self.action),
            "timestamp": self.timestamp,
            "resource_type": self.resource_type,
            "resource_id": self.resource_id,
            "event_metadata": PIIRedactor.redact(self.metadata),
            "correlation_id": self.correlation_id or str(uuid.uuid4()),
            "source": self.source,
            "outcome": _enum_value(self.outcome),
            "error_code": self.error_code,
        }


def _enum_value(value: Any) -> Any:
    return value.value if isinstance(value, Enum) else value


def write_audit_log_sync(
    db: Session,
    event: AuditEvent,
) -> Optional[AuditLog]:
    """
    Write an audit event to the database in its own commit.

    Callers must not have uncommitted work on the session. On failure the
    event goes to the fallback logger and None is returned.

    Args:
        db: SQLAlchemy Session
        event: The audit event to write

    Returns:
        The created AuditLog record, or None if fallback was used
    """
    audit_id = str(uuid.uuid4())
    try:
        audit_log = AuditLog(
            id=audit_id,
            **event.to_dict()
        )
        db.add(audit_log)
        db.commit()

        logger.info(
            "Audit event recorded",
            extra={
                "audit_id": audit_id,
                "organization_id": event.organization_id,
                "identity_id": event.identity_id,
                "action": _enum_value(event.action),
                "correlation_id": event.correlation_id,
                "outcome": _enum_value(event.outcome),
            }
        )
        return audit_log

    except Exception as e:
        try:
            db.rollback()
        except Exception:
            logger.exception("Rollback after audit failure also failed")

        _write_fallback_log(event, audit_id, str(e))
        return None


def _write_fallback_log(event: AuditEvent, audit_id: str, error_reason: str) -> None:
    """Write audit event to fallback logger when the database write fails."""
    fallback_entry = {
        "event_id": audit_id,
        "organization_id": event.organization_id,
        "identity_id": event.identity_id,
        "action": _enum_value(event.action),
        "timestamp": event.timestamp.isoformat(),
        "correlation_id": event.correlation_id,
        "source": event.source,
        "outcome": _enum_value(event.outcome),
        "resource_type": event.resource_type,
        "resource_id": event.resource_id,
        "metadata": PIIRedactor.redact(event.metadata),
        "fallback_reason": error_reason,
    }
    fallback_logger.error(
        "Audit log fallback",
        extra={"audit_entry": json.dumps(fallback_entry, default=str)},
    )
