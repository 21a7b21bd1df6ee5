"""
TeamMembershipAssigner: picks or creates the member's team, writes the
membership row, confirms it by reading it back, then sets the primary team.
"""

import logging
from typing import Optional
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from onboarding.core.errors import DependencyFailed, NotFound, OnboardingError, ValidationFailed
from onboarding.models.enums import AccessLevel, AppRole, AuditSeverity
from onboarding.models.profiles import Profile
from onboarding.models.team_members import TeamMember
from onboarding.models.teams import Team
from onboarding.services.audit import AuditLogger
from onboarding.services.crud import CRUDBase
from onboarding.services.roles import access_level_for

logger = logging.getLogger(__name__)


def personal_team_name(full_name: Optional[str]) -> str:
    return f"{(full_name or 'Member').strip()} - Personal"


class TeamAssignmentFailed(OnboardingError):
    """Membership could not be established; the account itself is kept."""
    status_code = 202

    def __init__(self, user_id: UUID, team_id: Optional[UUID], team_name: Optional[str], reason: str):
        super().__init__(
            "team_assignment_failed",
            f"Account created but team assignment failed: {reason}",
            details={
                "team_id": str(team_id) if team_id else None,
                "team_name": team_name,
                "user_id": str(user_id),
            },
        )
        self.user_id = user_id


class TeamMembershipAssigner:
    def __init__(self, db: AsyncSession, audit: AuditLogger):
        self.db = db
        self.audit = audit

    async def resolve_team(self, team_id: UUID, office_id: Optional[UUID]) -> Team:
        team = await CRUDBase(Team, self.db).get(team_id)
        if team is None or office_id is None or team.office_id != office_id:
            raise ValidationFailed(
                "invalid_team",
                "Team does not exist or does not belong to this office",
                details={"team_id": str(team_id)},
            )
        return team

    async def ensure_personal_team(self, user_id: UUID, office_id: UUID, full_name: Optional[str]) -> Team:
        """Fetch or create the user's personal team in the office."""
        teams = CRUDBase(Team, self.db)
        existing = await teams.first(created_by=user_id, office_id=office_id, is_personal_team=True)
        if existing:
            return existing

        team = Team(
            name=personal_team_name(full_name),
            office_id=office_id,
            is_personal_team=True,
            created_by=user_id,
        )
        self.db.add(team)
        try:
            await self.db.commit()
        except IntegrityError:
            await self.db.rollback()
            existing = await teams.first(created_by=user_id, office_id=office_id, is_personal_team=True)
            if existing is None:
                raise
            return existing
        logger.info("Created personal team %s for user %s", team.id, user_id)
        return team

    async def _membership(self, user_id: UUID, team_id: UUID) -> Optional[TeamMember]:
        result = await self.db.execute(
            select(TeamMember)
            .where(TeamMember.user_id == user_id, TeamMember.team_id == team_id)
            .execution_options(populate_existing=True)
        )
        return result.scalars().first()

    async def add_member(self, user_id: UUID, team_id: UUID, access_level: AccessLevel) -> TeamMember:
        """Insert the membership unless present, then confirm it by reading it back."""
        if await self._membership(user_id, team_id) is None:
            self.db.add(TeamMember(user_id=user_id, team_id=team_id, access_level=access_level))
            try:
                await self.db.commit()
            except IntegrityError:
                await self.db.rollback()

        membership = await self._membership(user_id, team_id)
        if membership is None:
            raise DependencyFailed(
                "membership_not_persisted",
                "Team membership was not found after insert",
                details={"user_id": str(user_id), "team_id": str(team_id)},
            )
        return membership

    async def set_primary_team(self, user_id: UUID, team_id: UUID) -> None:
        profile = await CRUDBase(Profile, self.db).get(user_id, fresh=True)
        if profile is None:
            raise NotFound("user_not_found", "Profile not found", details={"user_id": str(user_id)})
        profile.primary_team_id = team_id
        await self.db.commit()

    async def assign(
        self,
        user_id: UUID,
        office_id: UUID,
        role: AppRole,
        team_id: Optional[UUID] = None,
        full_name: Optional[str] = None,
        actor_id: Optional[UUID] = None,
    ) -> Team:
        """
        Give the user a team in the office and make it primary.

        Any failure is audited and re-raised as TeamAssignmentFailed.
        """
        team_name = None
        try:
            if team_id is not None:
                team = await self.resolve_team(team_id, office_id)
            else:
                team = await self.ensure_personal_team(user_id, office_id, full_name)
            team_id, team_name = team.id, team.name

            access_level = access_level_for(role)
            await self.add_member(user_id, team_id, access_level)
            await self.set_primary_team(user_id, team_id)
        except Exception as e:
            await self.db.rollback()
            reason = e.message if isinstance(e, OnboardingError) else str(e)
            logger.error("Team assignment failed for user %s: %s", user_id, reason)
            await self.audit.record(
                "team_assignment_failed",
                actor_id or user_id,
                target_user_id=user_id,
                details={"team_id": team_id, "team_name": team_name, "office_id": office_id, "error": reason},
                severity=AuditSeverity.warning,
            )
            raise TeamAssignmentFailed(user_id, team_id, team_name, reason) from e

        await self.audit.record(
            "user_joined_team",
            actor_id or user_id,
            target_user_id=user_id,
            details={"team_id": team_id, "team_name": team_name, "access_level": access_level.value},
        )
        return team
