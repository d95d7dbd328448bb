"""
Shared pytest fixtures for onboarding tests.

Provides an in-memory SQLite database with every onboarding table created,
and a fake identity directory that records metadata merges.
"""

from typing import Any, Optional

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from src.db_base import Base
from src.models import AccountRecord, InvitationCode, MetadataSyncTask, Organization
from src.platform.audit import AuditLog
from src.platform.identity_client import (
    IdentityDirectory,
    IdentityDirectoryError,
    Principal,
)


# ============================================================================
# FAKE IDENTITY DIRECTORY
# ============================================================================

class FakeIdentityDirectory(IdentityDirectory):
    """In-memory identity directory with switchable failures."""

    def __init__(self):
        self.principals: dict[str, Principal] = {}
        self.metadata: dict[str, dict[str, Any]] = {}
        self.merge_calls: list[tuple[str, dict[str, Any]]] = []
        self.fail_lookup = False
        self.fail_merge = False

    def add_principal(
        self,
        principal_id: str,
        first_name: Optional[str] = "Ada",
        last_name: Optional[str] = "Lovelace",
        email: Optional[str] = None,
    ) -> Principal:
        principal = Principal(
            id=principal_id,
            first_name=first_name,
            last_name=last_name,
            email=email if email is not None else f"{principal_id}@example.com",
        )
        self.principals[principal_id] = principal
        return principal

    def get_principal(self, principal_id: str) -> Optional[Principal]:
        if self.fail_lookup:
            raise IdentityDirectoryError("directory unavailable")
        return self.principals.get(principal_id)

    def merge_metadata(self, principal_id: str, metadata: dict[str, Any]) -> None:
        self.merge_calls.append((principal_id, dict(metadata)))
        if self.fail_merge:
            raise IdentityDirectoryError("merge rejected")
        self.metadata.setdefault(principal_id, {}).update(metadata)


# ============================================================================
# DATABASE FIXTURES
# ============================================================================

@pytest.fixture
def db_engine():
    """In-memory SQLite engine shared by every session in a test."""
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def session_factory(db_engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=db_engine)


@pytest.fixture
def db_session(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def identity():
    directory = FakeIdentityDirectory()
    directory.add_principal("user_employee")
    directory.add_principal("user_admin", first_name="Grace", last_name="Hopper")
    return directory


@pytest.fixture
def organization(db_session):
    org = Organization.create(name="Acme Corp", website="https://acme.example")
    db_session.add(org)
    db_session.commit()
    return org


@pytest.fixture
def invitation(db_session, organization):
    code = InvitationCode.create_code(
        organization_id=organization.id,
        created_by="user_owner",
        code="AB3DE7",
    )
    db_session.add(code)
    db_session.commit()
    return code


# ============================================================================
# QUERY HELPERS
# ============================================================================

def count_accounts(session, **filters) -> int:
    return session.query(AccountRecord).filter_by(**filters).count()


def get_task(session, identity_id: str) -> Optional[MetadataSyncTask]:
    return session.query(MetadataSyncTask).filter_by(identity_id=identity_id).first()


def audit_actions(session) -> list[str]:
    return [row.action for row in session.query(AuditLog).order_by(AuditLog.timestamp).all()]
