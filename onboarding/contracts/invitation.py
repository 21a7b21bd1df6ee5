"""
Contracts for invitations.
"""

from datetime import datetime
from typing import Optional
from uuid import UUID

from onboarding.models.enums import AppRole

from .base import BaseContract


class InvitationCreate(BaseContract):
    email: str
    role: AppRole
    full_name: Optional[str] = None
    team_id: Optional[UUID] = None
    office_id: Optional[UUID] = None


class InvitationResponse(BaseContract):
    id: UUID
    email: str
    full_name: Optional[str] = None
    role: AppRole
    team_id: Optional[UUID] = None
    office_id: Optional[UUID] = None
    status: str
    invited_by: Optional[UUID] = None
    expires_at: datetime
    accepted_at: Optional[datetime] = None
    created_at: Optional[datetime] = None


class InvitationCreated(InvitationResponse):
    """Returned once on create and resend; carries the token for the accept link."""
    invite_code: str
    accept_url: str


class InvitationValidation(BaseContract):
    valid: bool = True
    invitation_id: UUID
    email: str
    full_name: Optional[str] = None
    role: AppRole
    team_id: Optional[UUID] = None
    team_name: Optional[str] = None
    office_id: Optional[UUID] = None
    office_name: Optional[str] = None
    expires_at: datetime


class InvitationCountResponse(BaseContract):
    pending: int = 0
    accepted: int = 0
    expired: int = 0
    revoked: int = 0
    total: int = 0
