"""
Contracts for the reconciliation endpoints.
"""

from typing import Any, Dict, List, Literal, Optional
from uuid import UUID

from onboarding.models.enums import AppRole

from .base import BaseContract


class ReconciliationSummary(BaseContract):
    success: bool = True
    processed: int = 0
    fixed: int = 0
    failed: int = 0
    details: List[Dict[str, Any]] = []


class RepairUserRequest(BaseContract):
    user_id: UUID
    office_id: UUID
    role: AppRole
    team_id: Optional[UUID] = None
    is_solo_agent: bool = False
    reset_password: bool = False


class RepairUserResponse(BaseContract):
    success: bool = True
    user_id: UUID
    repaired_fields: List[str] = []
    verification: str
    missing: List[str] = []
    temporary_password: Optional[str] = None


class ProfileRepairRequest(BaseContract):
    """Fallbacks for credentials with no pending invitation to take office and role from."""
    office_id: Optional[UUID] = None
    role: AppRole = AppRole.assistant


class MergeUsersRequest(BaseContract):
    keep_user_id: UUID
    remove_user_id: UUID


class MergeUsersResponse(BaseContract):
    success: bool = True
    kept_user_id: UUID
    removed_user_id: UUID
    transferred: Dict[str, int] = {}
    skipped: List[str] = []


class CrossOfficeRequest(BaseContract):
    strategy: Literal["move_users", "remove_teams", "duplicate_teams"]
    user_ids: Optional[List[UUID]] = None


class HealthReport(BaseContract):
    healthy: bool
    orphaned_profiles: int = 0
    expired_invitations: int = 0
    invalid_invitations: int = 0
    users_without_roles: int = 0
    incomplete_profiles: int = 0
    cross_office_assignments: int = 0
    credentials_without_profiles: int = 0
