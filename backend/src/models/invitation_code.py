"""
InvitationCode model for employee onboarding.

An InvitationCode binds a new employee account to an existing organization.

Lifecycle:
1. An ADMIN account issues a code for its organization (used=false)
2. An employee redeems it during onboarding
3. ProvisioningService claims it with a conditional update
   (WHERE used = false) in the same transaction that creates the account
4. Once used=true the row is never modified again

SECURITY:
- Codes are case-sensitive and globally unique
- Redemption is compare-and-set; two callers can never both claim a code
- Lookups never distinguish "unknown" from "already used"
"""

import secrets
import uuid
from typing import Optional

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Index, String
from sqlalchemy.orm import relationship

from src.config.onboarding import INVITATION_CODE_ALPHABET, INVITATION_CODE_LENGTH
from src.db_base import Base
from src.models.base import TimestampMixin


class InvitationCode(Base, TimestampMixin):
    """Single-use invitation code owned by an organization."""

    __tablename__ = "invitation_codes"

    # Primary Key
    id = Column(
        String(36),
        primary_key=True,
        default=lambda: str(uuid.uuid4()),
        comment="Internal UUID primary key"
    )

    code = Column(
        String(32),
        nullable=False,
        unique=True,
        comment="Case-sensitive redemption token"
    )

    organization_id = Column(
        String(36),
        ForeignKey("organizations.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
        comment="Organization the redeemer joins"
    )

    used = Column(
        Boolean,
        nullable=False,
        default=False,
        comment="Flipped to true exactly once on redemption"
    )

    # Audit trail
    created_by = Column(
        String(255),
        nullable=True,
        comment="identity_id of the admin who issued the code"
    )

    used_at = Column(
        DateTime(timezone=True),
        nullable=True,
        comment="When the code was redeemed"
    )

    used_by_identity_id = Column(
        String(255),
        nullable=True,
        comment="identity_id of the redeemer"
    )

    organization = relationship("Organization", back_populates="invitation_codes")

    __table_args__ = (
        Index("ix_invitation_codes_code_used", "code", "used"),
    )

    def __repr__(self) -> str:
        return (
            f"<InvitationCode(id={self.id}, organization_id={self.organization_id}, "
            f"used={self.used})>"
        )

    @staticmethod
    def generate_code(length: int = INVITATION_CODE_LENGTH) -> str:
        """Draw a random code from the unambiguous alphabet."""
        return "".join(
            secrets.choice(INVITATION_CODE_ALPHABET) for _ in range(length)
        )

    @classmethod
    def create_code(
        cls,
        organization_id: str,
        created_by: Optional[str] = None,
        code: Optional[str] = None,
    ) -> "InvitationCode":
        """
        Factory method for a new unused code.

        Args:
            organization_id: Organization the code grants access to
            created_by: identity_id of the issuing admin
            code: Explicit code value (random when omitted)

        Returns:
            New InvitationCode instance
        """
        return cls(
            id=str(uuid.uuid4()),
            code=code or cls.generate_code(),
            organization_id=organization_id,
            used=False,
            created_by=created_by,
        )
