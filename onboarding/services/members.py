"""
Member administration: role changes, deletion and reactivation.
"""

import logging
from typing import Any, Dict, Optional
from uuid import UUID

from sqlalchemy import delete, update
from sqlalchemy.ext.asyncio import AsyncSession

from onboarding.contracts.member import Actor, ChangeRoleRequest, ReactivateUserRequest
from onboarding.core.errors import AuthorizationFailed, NotFound, ValidationFailed
from onboarding.core.identity import LONG_BAN_DURATION, NO_BAN, IdentityStore
from onboarding.models.base import utcnow
from onboarding.models.enums import AppRole, AuditSeverity, InvitationStatus, ProfileStatus
from onboarding.models.invitations import Invitation
from onboarding.models.profiles import Profile
from onboarding.models.team_members import TeamMember
from onboarding.models.user_roles import UserRole
from onboarding.services.audit import AuditLogger
from onboarding.services.crud import CRUDBase
from onboarding.services.roles import INVITABLE_ROLES, RoleAssigner, ensure_platform_admin_remains
from onboarding.services.teams import TeamMembershipAssigner
from onboarding.services.utils.emails import deleted_email, is_valid_email, normalize_email
from onboarding.services.verification import ConsistencyVerifier

logger = logging.getLogger(__name__)


class MemberAdministration:
    def __init__(self, db: AsyncSession, identity: IdentityStore, audit: Optional[AuditLogger] = None):
        self.db = db
        self.identity = identity
        self.audit = audit or AuditLogger(db)
        self.roles = RoleAssigner(db)

    async def _target(self, user_id: UUID, actor: Actor) -> Profile:
        profile = await CRUDBase(Profile, self.db).get(user_id, fresh=True)
        if profile is None:
            raise NotFound("user_not_found", "User not found", details={"user_id": str(user_id)})
        if not actor.is_platform_admin and profile.office_id not in (None, actor.office_id):
            raise AuthorizationFailed("forbidden_office", "You can only manage users in your own office")
        return profile

    def _check_assignable(self, actor: Actor, *roles: Optional[AppRole]) -> None:
        if actor.is_platform_admin:
            return
        allowed = set()
        for held in actor.roles:
            allowed |= INVITABLE_ROLES[held]
        for role in roles:
            if role is not None and role not in allowed:
                raise AuthorizationFailed(
                    "forbidden_role", f"Your role cannot manage the {role.value} role"
                )

    async def change_role(self, user_id: UUID, payload: ChangeRoleRequest, actor: Actor) -> Dict[str, Any]:
        await self._target(user_id, actor)
        self._check_assignable(actor, payload.new_role, payload.old_role)

        revoked = 0
        if payload.old_role is not None and payload.old_role != payload.new_role:
            revoked = await self.roles.revoke(user_id, payload.old_role, actor.user_id)
        await self.roles.grant(user_id, payload.new_role, actor.user_id)

        await self.audit.record(
            "role_changed",
            actor.user_id,
            target_user_id=user_id,
            details={
                "old_role": payload.old_role.value if payload.old_role else None,
                "new_role": payload.new_role.value,
                "revoked_grants": revoked,
            },
        )
        return {"success": True, "user_id": str(user_id), "role": payload.new_role.value}

    async def delete_user(self, user_id: UUID, actor: Actor, hard: bool = False) -> Dict[str, Any]:
        """
        Soft delete deactivates the profile and parks the credential behind a
        sentinel email with a long ban; hard delete removes both.
        """
        if user_id == actor.user_id:
            raise ValidationFailed("cannot_delete_self", "You cannot delete your own account")
        profile = await self._target(user_id, actor)
        email = profile.email
        await ensure_platform_admin_remains(self.db, user_id)

        credential = await self.identity.get(user_id)

        if hard:
            if credential is not None:
                await self.identity.delete(user_id)
            await self.db.execute(delete(TeamMember).where(TeamMember.user_id == user_id))
            await self.db.execute(delete(UserRole).where(UserRole.user_id == user_id))
            await self.db.execute(delete(Profile).where(Profile.id == user_id))
        else:
            if credential is not None:
                await self.identity.update(
                    user_id, email=deleted_email(user_id), ban_duration=LONG_BAN_DURATION
                )
            await self.db.execute(delete(TeamMember).where(TeamMember.user_id == user_id))
            profile.status = ProfileStatus.inactive.value
            profile.primary_team_id = None
        await self.db.commit()

        await self.audit.record(
            "user_deleted",
            actor.user_id,
            target_user_id=user_id,
            details={"email": email, "hard_delete": hard, "had_credential": credential is not None},
            severity=AuditSeverity.warning,
        )
        logger.info("User %s %s deleted by %s", user_id, "hard" if hard else "soft", actor.user_id)
        return {"success": True, "user_id": str(user_id), "hard_delete": hard}

    async def reactivate_user(
        self, user_id: UUID, payload: ReactivateUserRequest, actor: Actor
    ) -> Dict[str, Any]:
        profile = await self._target(user_id, actor)
        if profile.status not in (ProfileStatus.inactive.value, ProfileStatus.suspended.value):
            raise ValidationFailed(
                "invalid_status",
                f"Only inactive users can be reactivated (status is {profile.status})",
            )
        email = normalize_email(payload.email)
        if not is_valid_email(email):
            raise ValidationFailed("invalid_email", "Invalid email format", details={"email": email})
        self._check_assignable(actor, payload.role)

        office_id = payload.office_id or profile.office_id or actor.office_id
        if office_id is None:
            raise ValidationFailed("office_required", "An office is required to reactivate a user")
        if not actor.is_platform_admin and office_id != actor.office_id:
            raise AuthorizationFailed("forbidden_office", "You can only manage users in your own office")

        teams = TeamMembershipAssigner(self.db, self.audit)
        if payload.team_id is not None:
            await teams.resolve_team(payload.team_id, office_id)

        if await self.identity.get(user_id) is None:
            raise NotFound("credential_not_found", "No credential exists for this user")
        await self.identity.update(
            user_id,
            email=email,
            password=payload.password,
            ban_duration=NO_BAN,
            email_confirm=True,
        )

        full_name = profile.full_name
        profile.email = email
        profile.original_email = None
        profile.archived_at = None
        profile.office_id = office_id
        profile.status = ProfileStatus.active.value
        await self.db.commit()

        await teams.assign(
            user_id, office_id, payload.role, team_id=payload.team_id, full_name=full_name, actor_id=actor.user_id
        )
        await self.roles.grant(user_id, payload.role, actor.user_id)

        result = await self.db.execute(
            update(Invitation)
            .where(Invitation.email == email, Invitation.status == InvitationStatus.pending.value)
            .values(status=InvitationStatus.accepted.value, accepted_at=utcnow())
        )
        await self.db.commit()

        verification = await ConsistencyVerifier(self.db, self.audit).verify(user_id, actor.user_id)
        await self.audit.record(
            "user_reactivated",
            actor.user_id,
            target_user_id=user_id,
            details={
                "email": email,
                "role": payload.role.value,
                "office_id": office_id,
                "team_id": payload.team_id,
                "closed_invitations": result.rowcount,
                "verification": verification.outcome,
            },
        )
        return {
            "success": verification.complete,
            "user_id": str(user_id),
            "verification": verification.outcome,
            "missing": verification.missing,
        }
