"""
Onboarding API routes.

Turns an authenticated principal into an EMPLOYEE (invitation code) or an
ADMIN (new organization), and lets admins issue invitation codes.

SECURITY: The principal id always comes from request.state, never the body.
Failure responses carry only the reason enum; an unknown invitation code and
a consumed one are indistinguishable.
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Response, status
from sqlalchemy.orm import Session

from src.api.dependencies.onboarding import (
    get_identity_directory,
    get_principal_id,
    get_request_correlation_id,
)
from src.api.schemas.onboarding import (
    AdminOnboardingRequest,
    EmployeeOnboardingRequest,
    InvitationCodeListResponse,
    InvitationCodeResponse,
    OnboardingResponse,
)
from src.database.session import get_db_session
from src.models.invitation_code import InvitationCode
from src.platform.errors import PermissionDeniedError, ServiceUnavailableError
from src.platform.identity_client import IdentityDirectory
from src.services.invitation_code_service import (
    CodeAllocationError,
    InvitationCodeService,
    NotAnAdminError,
)
from src.services.provisioning_service import (
    AdminOnboarding,
    EmployeeOnboarding,
    ProvisioningFailureReason,
    ProvisioningOutcome,
    ProvisioningService,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/onboarding", tags=["onboarding"])

# Retryable reasons map to 503.
_REASON_STATUS = {
    ProvisioningFailureReason.PRINCIPAL_NOT_FOUND: status.HTTP_400_BAD_REQUEST,
    ProvisioningFailureReason.INVALID_CODE: status.HTTP_400_BAD_REQUEST,
    ProvisioningFailureReason.VALIDATION_FAILED: status.HTTP_400_BAD_REQUEST,
    ProvisioningFailureReason.METADATA_SYNC_FAILED: status.HTTP_503_SERVICE_UNAVAILABLE,
    ProvisioningFailureReason.TRANSIENT_FAILURE: status.HTTP_503_SERVICE_UNAVAILABLE,
}


def _to_response(outcome: ProvisioningOutcome, response: Response) -> OnboardingResponse:
    if not outcome.success:
        response.status_code = _REASON_STATUS[outcome.reason]
    return OnboardingResponse(**outcome.to_dict())


def _code_response(invitation: InvitationCode) -> InvitationCodeResponse:
    return InvitationCodeResponse(
        code=invitation.code,
        organization_id=invitation.organization_id,
        used=invitation.used,
        created_at=invitation.created_at,
    )


@router.post("/employee", response_model=OnboardingResponse)
def onboard_employee(
    body: EmployeeOnboardingRequest,
    response: Response,
    principal_id: str = Depends(get_principal_id),
    db_session: Session = Depends(get_db_session),
    identity: IdentityDirectory = Depends(get_identity_directory),
    correlation_id: Optional[str] = Depends(get_request_correlation_id),
):
    """Redeem an invitation code and join its organization as EMPLOYEE."""
    service = ProvisioningService(db_session, identity, correlation_id=correlation_id)
    outcome = service.provision(
        principal_id,
        EmployeeOnboarding(
            invitation_code=body.invitation_code,
            department=body.department,
        ),
    )
    return _to_response(outcome, response)


@router.post("/admin", response_model=OnboardingResponse)
def onboard_admin(
    body: AdminOnboardingRequest,
    response: Response,
    principal_id: str = Depends(get_principal_id),
    db_session: Session = Depends(get_db_session),
    identity: IdentityDirectory = Depends(get_identity_directory),
    correlation_id: Optional[str] = Depends(get_request_correlation_id),
):
    """Create an organization and become its ADMIN."""
    service = ProvisioningService(db_session, identity, correlation_id=correlation_id)
    outcome = service.provision(
        principal_id,
        AdminOnboarding(
            company_name=body.company_name,
            company_website=body.company_website,
            company_logo=body.company_logo,
        ),
    )
    return _to_response(outcome, response)


@router.post(
    "/invitation-codes",
    response_model=InvitationCodeResponse,
    status_code=status.HTTP_201_CREATED,
)
def issue_invitation_code(
    principal_id: str = Depends(get_principal_id),
    db_session: Session = Depends(get_db_session),
    correlation_id: Optional[str] = Depends(get_request_correlation_id),
):
    """Issue a single-use invitation code for the caller's organization."""
    service = InvitationCodeService(db_session, correlation_id=correlation_id)
    try:
        invitation = service.issue_code(principal_id)
    except NotAnAdminError as e:
        raise PermissionDeniedError(str(e)) from e
    except CodeAllocationError as e:
        logger.error("Invitation code allocation exhausted", extra={"principal_id": principal_id})
        raise ServiceUnavailableError(str(e)) from e

    return _code_response(invitation)


@router.get("/invitation-codes", response_model=InvitationCodeListResponse)
def list_invitation_codes(
    include_used: bool = False,
    principal_id: str = Depends(get_principal_id),
    db_session: Session = Depends(get_db_session),
):
    """List the caller's organization codes."""
    service = InvitationCodeService(db_session)
    try:
        codes = service.list_codes(principal_id, include_used=include_used)
    except NotAnAdminError as e:
        raise PermissionDeniedError(str(e)) from e

    return InvitationCodeListResponse(
        codes=[_code_response(c) for c in codes],
        total=len(codes),
    )
