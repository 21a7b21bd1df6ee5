"""
Contracts for accepting an invitation.
"""

from datetime import date
from typing import Any, Dict, List, Optional
from uuid import UUID

from .base import BaseContract


class AcceptInvitationRequest(BaseContract):
    token: Optional[str] = None
    invitation_id: Optional[UUID] = None
    full_name: Optional[str] = None
    password: Optional[str] = None
    mobile: Optional[str] = None
    birthday: Optional[date] = None


class AcceptInvitationResponse(BaseContract):
    success: bool
    user_id: Optional[UUID] = None
    warnings: List[str] = []
    code: Optional[str] = None
    message: Optional[str] = None
    details: Optional[Dict[str, Any]] = None
