"""
ConsistencyVerifier: the single authoritative check that provisioning is done.
"""

import logging
from dataclasses import dataclass, field
from typing import List, Optional
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from onboarding.models.enums import AuditSeverity, ProfileStatus
from onboarding.models.profiles import Profile
from onboarding.models.team_members import TeamMember
from onboarding.services.audit import AuditLogger
from onboarding.services.crud import CRUDBase

logger = logging.getLogger(__name__)

COMPLETE = "complete"
INCOMPLETE = "incomplete"


@dataclass
class VerificationResult:
    user_id: UUID
    missing: List[str] = field(default_factory=list)

    @property
    def complete(self) -> bool:
        return not self.missing

    @property
    def outcome(self) -> str:
        return COMPLETE if self.complete else INCOMPLETE


class ConsistencyVerifier:
    def __init__(self, db: AsyncSession, audit: AuditLogger):
        self.db = db
        self.audit = audit

    async def verify(self, user_id: UUID, actor_id: Optional[UUID] = None) -> VerificationResult:
        """
        Re-read the profile from the store and list what is missing.

        Nothing reported by earlier steps is trusted; an incomplete result
        writes a critical audit entry.
        """
        result = VerificationResult(user_id=user_id)
        profile = await CRUDBase(Profile, self.db).get(user_id, fresh=True)

        if profile is None:
            result.missing.append("profile")
        else:
            if profile.status != ProfileStatus.active.value:
                result.missing.append("active_status")
            if profile.office_id is None:
                result.missing.append("office_id")
            if profile.primary_team_id is None:
                result.missing.append("primary_team_id")
            elif await CRUDBase(TeamMember, self.db).first(
                user_id=user_id, team_id=profile.primary_team_id
            ) is None:
                result.missing.append("primary_team_membership")

        if not result.complete:
            logger.error("Profile %s incomplete after provisioning: %s", user_id, result.missing)
            await self.audit.record(
                "profile_verification_failed",
                actor_id or user_id,
                target_user_id=user_id,
                details={"missing": result.missing},
                severity=AuditSeverity.critical,
            )
        return result
