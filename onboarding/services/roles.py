"""
Role hierarchy, role grants and the last-platform-admin guard.
"""

import logging
from typing import Dict, FrozenSet, Iterable, List, Optional
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from onboarding.core.errors import Conflict
from onboarding.models.base import utcnow
from onboarding.models.enums import AccessLevel, AppRole, ProfileStatus
from onboarding.models.profiles import Profile
from onboarding.models.user_roles import UserRole

logger = logging.getLogger(__name__)

# Each role may invite strictly lower roles only
INVITABLE_ROLES: Dict[AppRole, FrozenSet[AppRole]] = {
    AppRole.platform_admin: frozenset(
        {AppRole.office_manager, AppRole.team_leader, AppRole.salesperson, AppRole.assistant}
    ),
    AppRole.office_manager: frozenset({AppRole.team_leader, AppRole.salesperson, AppRole.assistant}),
    AppRole.team_leader: frozenset({AppRole.salesperson, AppRole.assistant}),
    AppRole.salesperson: frozenset({AppRole.assistant}),
    AppRole.assistant: frozenset(),
}

ROLE_RANK: Dict[AppRole, int] = {
    AppRole.platform_admin: 5,
    AppRole.office_manager: 4,
    AppRole.team_leader: 3,
    AppRole.salesperson: 2,
    AppRole.assistant: 1,
}


def can_invite(inviter_roles: Iterable[AppRole], role: AppRole) -> bool:
    return any(role in INVITABLE_ROLES[r] for r in inviter_roles)


def highest_role(roles: Iterable[AppRole]) -> Optional[AppRole]:
    return max(roles, key=ROLE_RANK.__getitem__, default=None)


def access_level_for(role: AppRole) -> AccessLevel:
    return AccessLevel.admin if role == AppRole.team_leader else AccessLevel.edit


async def active_roles(db: AsyncSession, user_id: UUID) -> List[AppRole]:
    result = await db.execute(
        select(UserRole.role).where(UserRole.user_id == user_id, UserRole.revoked_at.is_(None))
    )
    return list(dict.fromkeys(result.scalars().all()))


async def ensure_platform_admin_remains(db: AsyncSession, user_id: UUID) -> None:
    """
    Refuse any revocation or deletion that would leave no active platform admin.

    Call before revoking ``user_id``'s platform_admin grant or removing the
    user. A no-op when the user holds no active platform_admin grant.
    """
    if AppRole.platform_admin not in await active_roles(db, user_id):
        return

    others = (
        await db.execute(
            select(func.count(func.distinct(UserRole.user_id)))
            .join(Profile, Profile.id == UserRole.user_id)
            .where(
                UserRole.role == AppRole.platform_admin,
                UserRole.revoked_at.is_(None),
                UserRole.user_id != user_id,
                Profile.status == ProfileStatus.active.value,
            )
        )
    ).scalar_one()

    if others == 0:
        raise Conflict(
            "last_platform_admin",
            "Cannot remove the last active platform admin",
            details={"user_id": str(user_id)},
        )


class RoleAssigner:
    """Grants and revokes roles. Grants are idempotent per (user, role)."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def _active_grant(self, user_id: UUID, role: AppRole) -> Optional[UserRole]:
        result = await self.db.execute(
            select(UserRole).where(
                UserRole.user_id == user_id,
                UserRole.role == role,
                UserRole.revoked_at.is_(None),
            )
        )
        return result.scalars().first()

    async def grant(self, user_id: UUID, role: AppRole, granted_by: Optional[UUID]) -> UserRole:
        existing = await self._active_grant(user_id, role)
        if existing:
            return existing

        grant = UserRole(user_id=user_id, role=role, granted_by=granted_by)
        self.db.add(grant)
        try:
            await self.db.commit()
        except IntegrityError:
            # A concurrent grant of the same role won
            await self.db.rollback()
            existing = await self._active_grant(user_id, role)
            if existing is None:
                raise
            return existing
        logger.info("Granted role %s to user %s", role.value, user_id)
        return grant

    async def revoke(self, user_id: UUID, role: AppRole, revoked_by: Optional[UUID]) -> int:
        """Revoke every active grant of ``role``; returns how many were revoked."""
        if role == AppRole.platform_admin:
            await ensure_platform_admin_remains(self.db, user_id)

        result = await self.db.execute(
            select(UserRole).where(
                UserRole.user_id == user_id,
                UserRole.role == role,
                UserRole.revoked_at.is_(None),
            )
        )
        grants = result.scalars().all()
        now = utcnow()
        for grant in grants:
            grant.revoked_at = now
            grant.revoked_by = revoked_by
        await self.db.commit()
        return len(grants)
