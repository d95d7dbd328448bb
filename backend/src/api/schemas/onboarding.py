"""
Request/response schemas for the onboarding API.

Invitation code and company name limits are not enforced here; the service
maps them to INVALID_CODE and VALIDATION_FAILED so every malformed value gets
the same {success, reason} body.
"""

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field


class EmployeeOnboardingRequest(BaseModel):
    """Body for joining an organization with an invitation code."""
    invitation_code: str
    department: Optional[str] = Field(None, max_length=100)


class AdminOnboardingRequest(BaseModel):
    """Body for creating an organization."""
    company_name: str
    company_website: Optional[str] = Field(None, max_length=2048)
    company_logo: Optional[str] = Field(None, max_length=2048)


class OnboardingResponse(BaseModel):
    """Uniform provisioning result."""
    success: bool
    reason: Optional[str] = None
    already_provisioned: bool = False


class InvitationCodeResponse(BaseModel):
    """A single invitation code visible to its organization's admin."""
    code: str
    organization_id: str
    used: bool = False
    created_at: Optional[datetime] = None


class InvitationCodeListResponse(BaseModel):
    codes: List[InvitationCodeResponse]
    total: int
