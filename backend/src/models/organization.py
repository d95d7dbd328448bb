"""
Organization model.

An Organization is created by the admin onboarding path (one per admin) and
referenced, never created, by employee onboarding through an invitation code.
"""

import uuid
from typing import Optional

from sqlalchemy import Column, String
from sqlalchemy.orm import relationship

from src.db_base import Base
from src.models.base import TimestampMixin


class Organization(Base, TimestampMixin):
    """Company that owns accounts and invitation codes."""

    __tablename__ = "organizations"

    id = Column(
        String(36),
        primary_key=True,
        default=lambda: str(uuid.uuid4()),
        comment="Internal UUID primary key"
    )

    name = Column(
        String(100),
        nullable=False,
        comment="Company display name"
    )

    website = Column(
        String(2048),
        nullable=True,
        comment="Company website URL"
    )

    logo_url = Column(
        String(2048),
        nullable=True,
        comment="Company logo URL"
    )

    accounts = relationship("AccountRecord", back_populates="organization", lazy="select")
    invitation_codes = relationship("InvitationCode", back_populates="organization", lazy="select")

    def __repr__(self) -> str:
        return f"<Organization(id={self.id}, name={self.name})>"

    @classmethod
    def create(
        cls,
        name: str,
        website: Optional[str] = None,
        logo_url: Optional[str] = None,
    ) -> "Organization":
        """Factory with an eagerly assigned id so it can be referenced before flush."""
        return cls(
            id=str(uuid.uuid4()),
            name=name,
            website=website,
            logo_url=logo_url,
        )
