"""
InvitationCodeService for issuing employee invitation codes.

Only ADMIN accounts may issue codes, and only for their own organization.
Redemption lives in ProvisioningService; this service never flips `used`.
"""

import logging
import uuid
from typing import List, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from src.config.onboarding import INVITATION_CODE_MAX_ISSUE_ATTEMPTS
from src.models.account import AccountRecord
from src.models.invitation_code import InvitationCode
from src.platform.audit import (
    AuditAction,
    AuditEvent,
    AuditOutcome,
    write_audit_log_sync,
)

logger = logging.getLogger(__name__)


class InvitationCodeServiceError(Exception):
    """Base exception for invitation code errors."""
    pass


class NotAnAdminError(InvitationCodeServiceError):
    """Raised when the caller has no ADMIN account."""
    pass


class CodeAllocationError(InvitationCodeServiceError):
    """Raised when no unique code could be allocated."""
    pass


class InvitationCodeService:
    """Issues and lists invitation codes for an admin's organization."""

    def __init__(self, session: Session, correlation_id: Optional[str] = None):
        self.session = session
        self.correlation_id = correlation_id or str(uuid.uuid4())

    def issue_code(self, principal_id: str) -> InvitationCode:
        """
        Issue a new unused code for the caller's organization.

        Args:
            principal_id: identity_id of the calling admin

        Returns:
            The committed InvitationCode

        Raises:
            NotAnAdminError: If the caller is not an ADMIN
            CodeAllocationError: If every attempt collided with an existing code
        """
        organization_id = self._admin_organization_id(principal_id)

        for attempt in range(1, INVITATION_CODE_MAX_ISSUE_ATTEMPTS + 1):
            invitation = InvitationCode.create_code(
                organization_id=organization_id,
                created_by=principal_id,
            )
            self.session.add(invitation)
            try:
                self.session.commit()
            except IntegrityError:
                self.session.rollback()
                logger.warning(
                    "Invitation code collision, retrying",
                    extra={"organization_id": organization_id, "attempt": attempt},
                )
                continue

            logger.info(
                "Issued invitation code",
                extra={
                    "invitation_code_id": invitation.id,
                    "organization_id": organization_id,
                    "issued_by": principal_id,
                }
            )
            write_audit_log_sync(
                db=self.session,
                event=AuditEvent(
                    action=AuditAction.INVITATION_CODE_ISSUED,
                    outcome=AuditOutcome.SUCCESS,
                    organization_id=organization_id,
                    identity_id=principal_id,
                    resource_type="invitation_code",
                    resource_id=invitation.id,
                    correlation_id=self.correlation_id,
                ),
            )
            return invitation

        raise CodeAllocationError(
            f"Could not allocate a unique code after {INVITATION_CODE_MAX_ISSUE_ATTEMPTS} attempts"
        )

    def list_codes(self, principal_id: str, include_used: bool = False) -> List[InvitationCode]:
        """List the caller's organization codes, unused only by default."""
        organization_id = self._admin_organization_id(principal_id)

        query = self.session.query(InvitationCode).filter(
            InvitationCode.organization_id == organization_id
        )
        if not include_used:
            query = query.filter(InvitationCode.used.is_(False))

        return query.order_by(InvitationCode.created_at.desc()).all()

    def _admin_organization_id(self, principal_id: str) -> str:
        account = self.session.query(AccountRecord).filter(
            AccountRecord.identity_id == principal_id
        ).first()

        if account is None or not account.is_admin:
            raise NotAnAdminError("Only organization admins can manage invitation codes")

        return account.organization_id
