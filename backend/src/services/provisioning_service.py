"""
ProvisioningService: turns an authenticated principal into an account.

Two onboarding variants:
- EmployeeOnboarding: redeem a single-use invitation code and join its organization
- AdminOnboarding: create a new organization and become its administrator

Consistency model:
- The relational database is the source of truth. Account, organization,
  code claim and the metadata outbox task are written in ONE transaction.
- The identity directory's public metadata is a best-effort projection
  written after commit. A failed merge is reported to the caller but never
  rolls back committed rows; the outbox task keeps it retryable.
- Invitation codes are claimed with a conditional UPDATE (WHERE used = false)
  and an affected-row check, so concurrent redemptions have exactly one winner.
- A principal that already has an account is reported as provisioned without
  writing anything (retries are idempotent).

Failure reasons crossing the boundary never distinguish an unknown code from
a consumed one.

Usage:
    service = ProvisioningService(session=db, identity=get_identity_client())
    outcome = service.provision_employee(principal_id, invitation_code="AB3DE7")
    if not outcome.success:
        ...  # outcome.reason is a ProvisioningFailureReason
"""

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Optional, Union
from urllib.parse import urlparse

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from src.config.onboarding import COMPANY_NAME_MAX_LENGTH, INVITATION_CODE_LENGTH
from src.models.account import AccountRecord, AccountRole
from src.models.invitation_code import InvitationCode
from src.models.metadata_sync_task import (
    MetadataSyncStatus,
    MetadataSyncTask,
    onboarding_metadata,
)
from src.models.organization import Organization
from src.platform.audit import (
    AuditAction,
    AuditEvent,
    AuditOutcome,
    write_audit_log_sync,
)
from src.platform.identity_client import (
    IdentityDirectory,
    IdentityDirectoryError,
    Principal,
)

logger = logging.getLogger(__name__)


# =============================================================================
# Outcome
# =============================================================================

class ProvisioningFailureReason(str, Enum):
    """Machine-readable failure reason exposed to callers."""
    PRINCIPAL_NOT_FOUND = "PRINCIPAL_NOT_FOUND"
    INVALID_CODE = "INVALID_CODE"
    METADATA_SYNC_FAILED = "METADATA_SYNC_FAILED"
    VALIDATION_FAILED = "VALIDATION_FAILED"
    TRANSIENT_FAILURE = "TRANSIENT_FAILURE"


@dataclass(frozen=True)
class ProvisioningOutcome:
    """Uniform result of a provisioning call."""
    success: bool
    reason: Optional[ProvisioningFailureReason] = None
    already_provisioned: bool = False
    account_id: Optional[str] = None
    organization_id: Optional[str] = None

    @classmethod
    def succeeded(
        cls,
        account_id: str,
        organization_id: str,
        already_provisioned: bool = False,
    ) -> "ProvisioningOutcome":
        return cls(
            success=True,
            already_provisioned=already_provisioned,
            account_id=account_id,
            organization_id=organization_id,
        )

    @classmethod
    def failed(cls, reason: ProvisioningFailureReason) -> "ProvisioningOutcome":
        return cls(success=False, reason=reason)

    def to_dict(self) -> dict[str, Any]:
        return {
            "success": self.success,
            "reason": self.reason.value if self.reason else None,
            "already_provisioned": self.already_provisioned,
        }


# =============================================================================
# Exceptions
# =============================================================================

class ProvisioningError(Exception):
    """Base exception for provisioning failures."""
    reason = ProvisioningFailureReason.TRANSIENT_FAILURE

    def __init__(self, message: str, stage: str):
        super().__init__(message)
        self.stage = stage


class PrincipalNotFoundError(ProvisioningError):
    """Principal is missing from the directory or its profile is incomplete."""
    reason = ProvisioningFailureReason.PRINCIPAL_NOT_FOUND


class InvalidInvitationCodeError(ProvisioningError):
    """Code is unknown, malformed or already consumed."""
    reason = ProvisioningFailureReason.INVALID_CODE


class ValidationFailedError(ProvisioningError):
    """Required admin input is empty or malformed."""
    reason = ProvisioningFailureReason.VALIDATION_FAILED


class TransientStoreFailureError(ProvisioningError):
    """Database or directory call failed or timed out. Retryable."""
    reason = ProvisioningFailureReason.TRANSIENT_FAILURE


class MetadataSyncError(ProvisioningError):
    """Relational state committed but the directory merge failed."""
    reason = ProvisioningFailureReason.METADATA_SYNC_FAILED


# =============================================================================
# Requests (one variant per role)
# =============================================================================

@dataclass(frozen=True)
class EmployeeOnboarding:
    """Join an existing organization with an invitation code."""
    invitation_code: str
    department: Optional[str] = None


@dataclass(frozen=True)
class AdminOnboarding:
    """Create an organization and administer it."""
    company_name: str
    company_website: Optional[str] = None
    company_logo: Optional[str] = None


OnboardingRequest = Union[EmployeeOnboarding, AdminOnboarding]


@dataclass(frozen=True)
class RedeemableCode:
    """Snapshot of an unused code taken before the claim."""
    id: str
    organization_id: str


# =============================================================================
# Service
# =============================================================================

class ProvisioningService:
    """Orchestrates account provisioning across the database and identity directory."""

    def __init__(
        self,
        session: Session,
        identity: IdentityDirectory,
        correlation_id: Optional[str] = None,
    ):
        """
        Initialize service.

        Args:
            session: SQLAlchemy session; the service owns commit/rollback on it
            identity: Identity directory boundary
            correlation_id: Optional correlation ID for audit event tracing
        """
        self.session = session
        self.identity = identity
        self.correlation_id = correlation_id or str(uuid.uuid4())

    # =========================================================================
    # Public API
    # =========================================================================

    def provision(self, principal_id: str, request: OnboardingRequest) -> ProvisioningOutcome:
        """
        Provision an account for principal_id according to the request variant.

        Never raises for expected failures; they are mapped to a failed
        ProvisioningOutcome after logging and auditing.
        """
        handler: Callable[[str, Any], ProvisioningOutcome]
        if isinstance(request, EmployeeOnboarding):
            handler = self._provision_employee
        elif isinstance(request, AdminOnboarding):
            handler = self._provision_admin
        else:
            raise TypeError(f"Unsupported onboarding request: {type(request).__name__}")

        try:
            return handler(principal_id, request)
        except ProvisioningError as e:
            self._record_failure(principal_id, request, e)
            return ProvisioningOutcome.failed(e.reason)

    def provision_employee(
        self,
        principal_id: str,
        invitation_code: str,
        department: Optional[str] = None,
    ) -> ProvisioningOutcome:
        """Redeem invitation_code and create an EMPLOYEE account."""
        return self.provision(
            principal_id,
            EmployeeOnboarding(invitation_code=invitation_code, department=department),
        )

    def provision_admin(
        self,
        principal_id: str,
        company_name: str,
        company_website: Optional[str] = None,
        company_logo: Optional[str] = None,
    ) -> ProvisioningOutcome:
        """Create an organization and an ADMIN account for it."""
        return self.provision(
            principal_id,
            AdminOnboarding(
                company_name=company_name,
                company_website=company_website,
                company_logo=company_logo,
            ),
        )

    # =========================================================================
    # Variants
    # =========================================================================

    def _provision_employee(
        self,
        principal_id: str,
        request: EmployeeOnboarding,
    ) -> ProvisioningOutcome:
        principal = self._resolve_principal(principal_id)

        existing = self._existing_account_outcome(principal.id)
        if existing is not None:
            return existing

        code = self._find_redeemable_code(request.invitation_code)
        if code is None:
            raise InvalidInvitationCodeError("Invalid invitation code", stage="lookup_code")

        account = AccountRecord.create_employee(
            identity_id=principal.id,
            email=principal.email,
            first_name=principal.first_name,
            last_name=principal.last_name,
            organization_id=code.organization_id,
            department=_clean_optional(request.department),
        )
        account_id = account.id
        metadata = onboarding_metadata(AccountRole.EMPLOYEE.value, code.organization_id)

        def write() -> None:
            if not self._claim_code(code, principal.id):
                raise InvalidInvitationCodeError(
                    "Invitation code was claimed concurrently", stage="claim_code"
                )
            self.session.add(account)
            self.session.add(MetadataSyncTask.create_pending(principal.id, metadata))

        already = self._commit_provisioning(principal.id, write)
        if already is not None:
            return already

        logger.info(
            "Provisioned employee account",
            extra={
                "principal_id": principal.id,
                "account_id": account_id,
                "organization_id": code.organization_id,
                "invitation_code_id": code.id,
            }
        )
        self._emit_provisioned(
            AuditAction.EMPLOYEE_PROVISIONED,
            principal.id,
            account_id,
            code.organization_id,
            {"invitation_code_id": code.id, "role": AccountRole.EMPLOYEE.value},
        )

        self._sync_metadata(principal.id)
        return ProvisioningOutcome.succeeded(account_id, code.organization_id)

    def _provision_admin(
        self,
        principal_id: str,
        request: AdminOnboarding,
    ) -> ProvisioningOutcome:
        company_name, website, logo = self._validate_admin_request(request)

        principal = self._resolve_principal(principal_id)

        existing = self._existing_account_outcome(principal.id)
        if existing is not None:
            return existing

        organization = Organization.create(name=company_name, website=website, logo_url=logo)
        organization_id = organization.id
        account = AccountRecord.create_admin(
            identity_id=principal.id,
            email=principal.email,
            first_name=principal.first_name,
            last_name=principal.last_name,
            organization_id=organization.id,
        )
        account_id = account.id
        metadata = onboarding_metadata(AccountRole.ADMIN.value, organization_id)

        def write() -> None:
            self.session.add(organization)
            self.session.flush()
            self.session.add(account)
            self.session.add(MetadataSyncTask.create_pending(principal.id, metadata))

        already = self._commit_provisioning(principal.id, write)
        if already is not None:
            return already

        logger.info(
            "Provisioned admin account",
            extra={
                "principal_id": principal.id,
                "account_id": account_id,
                "organization_id": organization_id,
            }
        )
        self._emit_provisioned(
            AuditAction.ADMIN_PROVISIONED,
            principal.id,
            account_id,
            organization_id,
            {"role": AccountRole.ADMIN.value},
        )

        self._sync_metadata(principal.id)
        return ProvisioningOutcome.succeeded(account_id, organization_id)

    # =========================================================================
    # Steps
    # =========================================================================

    def _resolve_principal(self, principal_id: str) -> Principal:
        """Fetch the principal; incomplete profiles count as not found."""
        if not principal_id:
            raise PrincipalNotFoundError("Empty principal id", stage="resolve_principal")

        try:
            principal = self.identity.get_principal(principal_id)
        except IdentityDirectoryError as e:
            raise TransientStoreFailureError(
                f"Identity directory unavailable: {e}", stage="resolve_principal"
            ) from e

        if principal is None or not principal.is_complete:
            raise PrincipalNotFoundError("User not found", stage="resolve_principal")

        return principal

    def _existing_account_outcome(self, principal_id: str) -> Optional[ProvisioningOutcome]:
        """
        Return a success outcome if the principal already has an account.

        A still-pending metadata task is retried first so that a client
        retrying after METADATA_SYNC_FAILED can converge. If that merge fails
        again the call still succeeds and the task is left for reconciliation.
        """
        try:
            account = self.session.query(AccountRecord).filter(
                AccountRecord.identity_id == principal_id
            ).first()
        except SQLAlchemyError as e:
            self.session.rollback()
            raise TransientStoreFailureError(
                f"Account lookup failed: {e}", stage="idempotence_check"
            ) from e

        if account is None:
            return None

        account_id, organization_id = account.id, account.organization_id
        logger.info(
            "Principal already provisioned",
            extra={"principal_id": principal_id, "account_id": account_id},
        )

        try:
            self._sync_metadata(principal_id)
        except MetadataSyncError as e:
            logger.warning(
                "Pending metadata sync still failing",
                extra={"principal_id": principal_id, "error": str(e)},
            )
        return ProvisioningOutcome.succeeded(
            account_id, organization_id, already_provisioned=True
        )

    def _find_redeemable_code(self, code_value: str) -> Optional[RedeemableCode]:
        """Look up an unused code by exact value. Malformed values match nothing."""
        if not isinstance(code_value, str) or len(code_value) != INVITATION_CODE_LENGTH:
            return None

        try:
            row = self.session.query(
                InvitationCode.id, InvitationCode.organization_id
            ).filter(
                InvitationCode.code == code_value,
                InvitationCode.used.is_(False),
            ).first()
        except SQLAlchemyError as e:
            self.session.rollback()
            raise TransientStoreFailureError(
                f"Invitation code lookup failed: {e}", stage="lookup_code"
            ) from e

        if row is None:
            return None
        return RedeemableCode(id=row.id, organization_id=row.organization_id)

    def _claim_code(self, code: RedeemableCode, identity_id: str) -> bool:
        """
        Flip used false -> true only if nobody else has.

        Returns:
            True if this transaction claimed the code
        """
        now = datetime.now(timezone.utc)
        result = self.session.execute(
            update(InvitationCode)
            .where(
                InvitationCode.id == code.id,
                InvitationCode.used.is_(False),
            )
            .values(
                used=True,
                used_at=now,
                used_by_identity_id=identity_id,
                updated_at=now,
            )
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    def _commit_provisioning(
        self,
        principal_id: str,
        write: Callable[[], None],
    ) -> Optional[ProvisioningOutcome]:
        """
        Run write() and commit it as one transaction.

        Returns:
            None when this call committed the account, or an already-provisioned
            outcome when a concurrent call for the same principal won the
            code claim or the unique constraint on accounts.identity_id
        """
        try:
            write()
            self.session.commit()
        except InvalidInvitationCodeError:
            # A concurrent call for the same principal may have claimed this code.
            self.session.rollback()
            existing = self._existing_account_outcome(principal_id)
            if existing is not None:
                return existing
            raise
        except ProvisioningError:
            self.session.rollback()
            raise
        except IntegrityError as e:
            self.session.rollback()
            logger.warning(
                "Integrity conflict while provisioning",
                extra={"principal_id": principal_id, "error": str(e.orig)},
            )
            existing = self._existing_account_outcome(principal_id)
            if existing is not None:
                return existing
            raise TransientStoreFailureError(
                "Provisioning write rejected", stage="transaction"
            ) from e
        except SQLAlchemyError as e:
            self.session.rollback()
            raise TransientStoreFailureError(
                f"Provisioning transaction failed: {e}", stage="transaction"
            ) from e

        return None

    def _sync_metadata(self, identity_id: str) -> None:
        """
        Push the pending onboarding metadata to the identity directory.

        Raises:
            MetadataSyncError: If the directory rejected or timed out the merge
        """
        try:
            task = self.session.query(MetadataSyncTask).filter(
                MetadataSyncTask.identity_id == identity_id,
                MetadataSyncTask.status == MetadataSyncStatus.PENDING,
            ).first()
        except SQLAlchemyError as e:
            self.session.rollback()
            raise MetadataSyncError(
                f"Metadata task lookup failed: {e}", stage="metadata_sync"
            ) from e

        if task is None:
            return

        task_id = task.id
        payload = dict(task.payload)

        try:
            self.identity.merge_metadata(identity_id, payload)
        except IdentityDirectoryError as e:
            task.record_failure(str(e))
            self._commit_task_state(identity_id)
            raise MetadataSyncError(
                f"Identity metadata merge failed: {e}", stage="metadata_sync"
            ) from e

        task.mark_completed()
        self._commit_task_state(identity_id)

        write_audit_log_sync(
            db=self.session,
            event=AuditEvent(
                action=AuditAction.METADATA_SYNCED,
                outcome=AuditOutcome.SUCCESS,
                identity_id=identity_id,
                organization_id=payload.get("companyId"),
                resource_type="metadata_sync_task",
                resource_id=task_id,
                correlation_id=self.correlation_id,
            ),
        )

    def _commit_task_state(self, identity_id: str) -> None:
        """Persist outbox bookkeeping. A lost update only delays reconciliation."""
        try:
            self.session.commit()
        except SQLAlchemyError as e:
            self.session.rollback()
            logger.warning(
                "Could not persist metadata task state",
                extra={"principal_id": identity_id, "error": str(e)},
            )

    def _validate_admin_request(
        self,
        request: AdminOnboarding,
    ) -> tuple[str, Optional[str], Optional[str]]:
        """Normalize and validate admin input; empty URLs mean absent."""
        company_name = (request.company_name or "").strip()
        if not company_name:
            raise ValidationFailedError("Company name is required", stage="validate")
        if len(company_name) > COMPANY_NAME_MAX_LENGTH:
            raise ValidationFailedError(
                f"Company name cannot exceed {COMPANY_NAME_MAX_LENGTH} characters",
                stage="validate",
            )

        website = _clean_optional(request.company_website)
        if website is not None and not _is_http_url(website):
            raise ValidationFailedError("Invalid website URL", stage="validate")

        logo = _clean_optional(request.company_logo)
        if logo is not None and not _is_http_url(logo):
            raise ValidationFailedError("Invalid URL for company logo", stage="validate")

        return company_name, website, logo

    # =========================================================================
    # Audit Event Emission
    # =========================================================================

    def _emit_provisioned(
        self,
        action: AuditAction,
        identity_id: str,
        account_id: str,
        organization_id: str,
        metadata: dict[str, Any],
    ) -> None:
        write_audit_log_sync(
            db=self.session,
            event=AuditEvent(
                action=action,
                outcome=AuditOutcome.SUCCESS,
                organization_id=organization_id,
                identity_id=identity_id,
                resource_type="account",
                resource_id=account_id,
                correlation_id=self.correlation_id,
                metadata=metadata,
            ),
        )

    def _record_failure(
        self,
        principal_id: str,
        request: OnboardingRequest,
        error: ProvisioningError,
    ) -> None:
        """Log and audit a failed call. Relational writes are already settled."""
        variant = "employee" if isinstance(request, EmployeeOnboarding) else "admin"
        log_extra = {
            "principal_id": principal_id,
            "variant": variant,
            "stage": error.stage,
            "reason": error.reason.value,
            "correlation_id": self.correlation_id,
        }
        if isinstance(error, (TransientStoreFailureError, MetadataSyncError)):
            logger.error("Provisioning failed: %s", error, extra=log_extra)
        else:
            logger.info("Provisioning rejected: %s", error, extra=log_extra)

        self.session.rollback()
        action = (
            AuditAction.METADATA_SYNC_FAILED
            if isinstance(error, MetadataSyncError)
            else AuditAction.PROVISIONING_FAILED
        )
        write_audit_log_sync(
            db=self.session,
            event=AuditEvent(
                action=action,
                outcome=AuditOutcome.FAILURE,
                identity_id=principal_id or None,
                correlation_id=self.correlation_id,
                error_code=error.reason.value,
                metadata={"variant": variant, "stage": error.stage},
            ),
        )


# =============================================================================
# Helpers
# =============================================================================

def _clean_optional(value: Optional[str]) -> Optional[str]:
    """Strip whitespace; blank strings become None."""
    if value is None:
        return None
    value = value.strip()
    return value or None


def _is_http_url(value: str) -> bool:
    parsed = urlparse(value)
    return parsed.scheme in ("http", "https") and bool(parsed.netloc)
