"""
Tests for invitation code issuance.
"""

from unittest.mock import patch

import pytest

from src.config.onboarding import (
    INVITATION_CODE_ALPHABET,
    INVITATION_CODE_LENGTH,
    INVITATION_CODE_MAX_ISSUE_ATTEMPTS,
)
from src.models import InvitationCode
from src.platform.audit import AuditAction, AuditLog
from src.services.invitation_code_service import (
    CodeAllocationError,
    InvitationCodeService,
    NotAnAdminError,
)
from src.services.provisioning_service import ProvisioningService


@pytest.fixture
def admin_org_id(db_session, identity):
    outcome = ProvisioningService(db_session, identity).provision_admin("user_admin", "Initech")
    return outcome.organization_id


@pytest.fixture
def service(db_session):
    return InvitationCodeService(db_session, correlation_id="corr-codes")


class TestGenerateCode:
    """Code format."""

    def test_generated_code_uses_alphabet(self):
        for _ in range(50):
            code = InvitationCode.generate_code()
            assert len(code) == INVITATION_CODE_LENGTH
            assert set(code) <= set(INVITATION_CODE_ALPHABET)

    def test_alphabet_excludes_ambiguous_characters(self):
        assert not set("0O1IL") & set(INVITATION_CODE_ALPHABET)


class TestIssueCode:
    """Admins issue unused codes for their own organization."""

    def test_admin_issues_code(self, service, db_session, admin_org_id):
        invitation = service.issue_code("user_admin")

        assert invitation.organization_id == admin_org_id
        assert invitation.used is False
        assert invitation.created_by == "user_admin"
        assert len(invitation.code) == INVITATION_CODE_LENGTH

    def test_issued_code_is_redeemable(self, service, db_session, identity, admin_org_id):
        invitation = service.issue_code("user_admin")

        outcome = ProvisioningService(db_session, identity).provision_employee(
            "user_employee", invitation.code
        )

        assert outcome.success is True
        assert outcome.organization_id == admin_org_id

    def test_issue_is_audited_without_code_value(self, service, db_session, admin_org_id):
        invitation = service.issue_code("user_admin")

        entry = db_session.query(AuditLog).filter_by(
            action=AuditAction.INVITATION_CODE_ISSUED.value
        ).one()
        assert entry.resource_id == invitation.id
        assert entry.organization_id == admin_org_id
        assert invitation.code not in str(entry.event_metadata)

    def test_employee_cannot_issue(self, service, db_session, identity, invitation):
        ProvisioningService(db_session, identity).provision_employee("user_employee", "AB3DE7")

        with pytest.raises(NotAnAdminError):
            service.issue_code("user_employee")

    def test_unprovisioned_caller_cannot_issue(self, service):
        with pytest.raises(NotAnAdminError):
            service.issue_code("user_nobody")

    def test_collision_is_retried(self, service, db_session, admin_org_id):
        existing = InvitationCode.create_code(organization_id=admin_org_id, code="TAKEN2")
        db_session.add(existing)
        db_session.commit()

        with patch.object(InvitationCode, "generate_code", side_effect=["TAKEN2", "FRESH3"]):
            invitation = service.issue_code("user_admin")

        assert invitation.code == "FRESH3"

    def test_exhausted_collisions_raise(self, service, db_session, admin_org_id):
        db_session.add(InvitationCode.create_code(organization_id=admin_org_id, code="TAKEN2"))
        db_session.commit()

        with patch.object(InvitationCode, "generate_code", return_value="TAKEN2"):
            with pytest.raises(CodeAllocationError):
                service.issue_code("user_admin")

        assert db_session.query(InvitationCode).count() == 1


class TestListCodes:
    """Listing codes for the admin's organization."""

    def test_lists_unused_by_default(self, service, db_session, identity, admin_org_id):
        first = service.issue_code("user_admin")
        service.issue_code("user_admin")
        ProvisioningService(db_session, identity).provision_employee("user_employee", first.code)

        unused = service.list_codes("user_admin")
        everything = service.list_codes("user_admin", include_used=True)

        assert len(unused) == 1
        assert len(everything) == 2

    def test_other_organizations_codes_hidden(self, service, invitation, admin_org_id):
        assert service.list_codes("user_admin", include_used=True) == []

    def test_non_admin_cannot_list(self, service):
        with pytest.raises(NotAnAdminError):
            service.list_codes("user_nobody")
