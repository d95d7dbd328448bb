"""
AccountRecord model.

One row per provisioned principal. The identity_id column is unique so a
principal can never hold two accounts, even when two provisioning calls race.

INVARIANTS:
- role is ADMIN or EMPLOYEE and never changes after creation
- department is only set for EMPLOYEE (CHECK constraint)
- rows are never updated or deleted by onboarding
"""

import enum
import uuid
from typing import Optional

from sqlalchemy import CheckConstraint, Column, ForeignKey, String, Enum as SAEnum
from sqlalchemy.orm import relationship

from src.db_base import Base
from src.models.base import TimestampMixin


class AccountRole(str, enum.Enum):
    """Account role, fixed at provisioning time."""
    ADMIN = "ADMIN"           # Created the organization
    EMPLOYEE = "EMPLOYEE"     # Joined through an invitation code


class AccountRecord(Base, TimestampMixin):
    """Application account bound to an organization and a role."""

    __tablename__ = "accounts"

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
        index=True,
        comment="Identity directory user id (one account per principal)"
    )

    email = Column(
        String(255),
        nullable=False,
        comment="Email copied from the identity directory at provisioning"
    )

    first_name = Column(String(255), nullable=False)
    last_name = Column(String(255), nullable=False)

    role = Column(
        SAEnum(AccountRole, name="account_role", create_constraint=True),
        nullable=False,
        comment="ADMIN or EMPLOYEE"
    )

    department = Column(
        String(255),
        nullable=True,
        comment="Free-text department (EMPLOYEE only)"
    )

    organization_id = Column(
        String(36),
        ForeignKey("organizations.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
        comment="Owning organization"
    )

    organization = relationship("Organization", back_populates="accounts")

    __table_args__ = (
        CheckConstraint(
            "role = 'EMPLOYEE' OR department IS NULL",
            name="ck_accounts_department_employee_only",
        ),
    )

    def __repr__(self) -> str:
        return (
            f"<AccountRecord(id={self.id}, identity_id={self.identity_id}, "
            f"role={self.role.value}, organization_id={self.organization_id})>"
        )

    @property
    def is_admin(self) -> bool:
        return self.role == AccountRole.ADMIN

    @classmethod
    def create_employee(
        cls,
        identity_id: str,
        email: str,
        first_name: str,
        last_name: str,
        organization_id: str,
        department: Optional[str] = None,
    ) -> "AccountRecord":
        """Factory for an invited employee account."""
        return cls(
            id=str(uuid.uuid4()),
            identity_id=identity_id,
            email=email,
            first_name=first_name,
            last_name=last_name,
            role=AccountRole.EMPLOYEE,
            department=department,
            organization_id=organization_id,
        )

    @classmethod
    def create_admin(
        cls,
        identity_id: str,
        email: str,
        first_name: str,
        last_name: str,
        organization_id: str,
    ) -> "AccountRecord":
        """Factory for an organization administrator account (no department)."""
        return cls(
            id=str(uuid.uuid4()),
            identity_id=identity_id,
            email=email,
            first_name=first_name,
            last_name=last_name,
            role=AccountRole.ADMIN,
            department=None,
            organization_id=organization_id,
        )
