"""
Contracts for members and the authenticated actor.
"""

from datetime import date
from typing import List, Optional
from uuid import UUID

from onboarding.models.enums import AppRole

from .base import BaseContract


class Actor(BaseContract):
    """The authenticated caller with its active role grants."""
    user_id: UUID
    email: str = ""
    office_id: Optional[UUID] = None
    roles: List[AppRole] = []

    @property
    def is_platform_admin(self) -> bool:
        return AppRole.platform_admin in self.roles

    @property
    def is_office_manager(self) -> bool:
        return AppRole.office_manager in self.roles

    @property
    def is_admin(self) -> bool:
        return self.is_platform_admin or self.is_office_manager


class MemberResponse(BaseContract):
    id: UUID
    email: str
    full_name: Optional[str] = None
    mobile: Optional[str] = None
    birthday: Optional[date] = None
    status: str
    office_id: Optional[UUID] = None
    primary_team_id: Optional[UUID] = None
    onboarding_completed: bool = False
    role: Optional[AppRole] = None  # highest active role
    roles: List[AppRole] = []


class ChangeRoleRequest(BaseContract):
    new_role: AppRole
    old_role: Optional[AppRole] = None


class ReactivateUserRequest(BaseContract):
    email: str
    role: AppRole
    team_id: Optional[UUID] = None
    office_id: Optional[UUID] = None
    password: Optional[str] = None
