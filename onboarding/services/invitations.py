"""
InvitationRegistry: invitation lifecycle: create, validate, expire, resend,
revoke and the at-most-once flip to accepted.
"""

import logging
import secrets
from dataclasses import dataclass
from datetime import timedelta
from typing import Dict, List, Optional
from uuid import UUID

from sqlalchemy import func, or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from onboarding.config import get_settings
from onboarding.contracts.invitation import InvitationCreate
from onboarding.contracts.member import Actor
from onboarding.core.errors import AuthorizationFailed, Conflict, NotFound, ValidationFailed
from onboarding.models.base import utcnow
from onboarding.models.enums import ActivityType, InvitationStatus, ProfileStatus
from onboarding.models.invitations import Invitation
from onboarding.models.offices import Office
from onboarding.models.profiles import Profile
from onboarding.models.teams import Team
from onboarding.services.audit import AuditLogger
from onboarding.services.crud import CRUDBase
from onboarding.services.roles import can_invite
from onboarding.services.utils.emails import is_valid_email, normalize_email

logger = logging.getLogger(__name__)

PENDING = InvitationStatus.pending.value


def new_invite_code() -> str:
    return secrets.token_urlsafe(32)


def accept_url(invite_code: str) -> str:
    return f"{get_settings().site_url.rstrip('/')}/accept-invitation?token={invite_code}"


@dataclass
class ValidatedInvitation:
    """A pending, unexpired invitation with its office resolved."""
    invitation: Invitation
    office_id: Optional[UUID]
    team: Optional[Team] = None
    office: Optional[Office] = None


class InvitationRegistry:
    def __init__(self, db: AsyncSession, audit: Optional[AuditLogger] = None):
        self.db = db
        self.audit = audit or AuditLogger(db)
        self.expiry = timedelta(days=get_settings().invitation_expiry_days)

    async def _pending_for_email(self, email: str, exclude_id: Optional[UUID] = None) -> Optional[Invitation]:
        stmt = select(Invitation).where(Invitation.email == email, Invitation.status == PENDING)
        if exclude_id is not None:
            stmt = stmt.where(Invitation.id != exclude_id)
        result = await self.db.execute(stmt)
        return result.scalars().first()

    async def _profiles_for_email(self, email: str) -> List[Profile]:
        result = await self.db.execute(
            select(Profile).where(
                func.lower(Profile.email) == email,
                Profile.status != ProfileStatus.archived.value,
            )
        )
        return list(result.scalars().all())

    async def _resolve_office(self, requested: Optional[UUID], actor: Actor) -> UUID:
        office_id = requested or actor.office_id
        if office_id is None:
            raise ValidationFailed("office_required", "An office is required for the invitation")
        if not actor.is_platform_admin and office_id != actor.office_id:
            raise AuthorizationFailed(
                "forbidden_office", "You can only invite members into your own office"
            )
        if await CRUDBase(Office, self.db).get(office_id) is None:
            raise ValidationFailed("invalid_office", "Office not found", details={"office_id": str(office_id)})
        return office_id

    async def check_team(self, team_id: UUID, office_id: Optional[UUID]) -> Team:
        """The team must exist and belong to ``office_id``."""
        team = await CRUDBase(Team, self.db).get(team_id)
        if team is None or team.office_id != office_id:
            raise ValidationFailed(
                "invalid_team",
                "Team does not exist or does not belong to this office",
                details={"team_id": str(team_id), "office_id": str(office_id) if office_id else None},
            )
        return team

    async def create(self, payload: InvitationCreate, actor: Actor) -> Invitation:
        """
        Issue a new pending invitation.

        Every check runs before the insert; the partial unique index on
        pending emails settles races between concurrent callers.
        """
        email = normalize_email(payload.email)
        if not is_valid_email(email):
            raise ValidationFailed("invalid_email", "Invalid email format", details={"email": email})

        if not can_invite(actor.roles, payload.role):
            raise AuthorizationFailed(
                "forbidden_role",
                f"Your role cannot invite a {payload.role.value}",
                details={"role": payload.role.value},
            )

        office_id = await self._resolve_office(payload.office_id, actor)
        if payload.team_id is not None:
            await self.check_team(payload.team_id, office_id)

        profiles = await self._profiles_for_email(email)
        if any(p.status == ProfileStatus.active.value for p in profiles):
            raise Conflict("user_exists", "A user with this email already exists")
        if profiles:
            raise Conflict(
                "user_inactive",
                "This user exists but is inactive; reactivate the account instead",
                details={"user_id": str(profiles[0].id)},
            )

        if await self._pending_for_email(email) is not None:
            raise Conflict("already_invited", "A pending invitation already exists for this email")

        invitation = Invitation(
            email=email,
            full_name=payload.full_name,
            role=payload.role,
            team_id=payload.team_id,
            office_id=office_id,
            invite_code=new_invite_code(),
            invited_by=actor.user_id,
            status=PENDING,
            expires_at=utcnow() + self.expiry,
        )
        self.db.add(invitation)
        try:
            await self.db.commit()
        except IntegrityError:
            await self.db.rollback()
            logger.info("Concurrent invitation for %s lost the insert race", email)
            raise Conflict("already_invited", "A pending invitation already exists for this email")

        await self.audit.record(
            "invitation_sent",
            actor.user_id,
            details={
                "invitation_id": invitation.id,
                "email": email,
                "role": payload.role.value,
                "team_id": payload.team_id,
                "office_id": office_id,
            },
        )
        await self.audit.activity(invitation, ActivityType.created, actor.user_id)
        await self.audit.activity(invitation, ActivityType.sent, actor.user_id)
        logger.info("Invitation %s created for %s", invitation.id, email)
        return invitation

    async def get(self, invitation_id: UUID) -> Invitation:
        invitation = await CRUDBase(Invitation, self.db).get(invitation_id, fresh=True)
        if invitation is None:
            raise NotFound("invitation_not_found", "Invitation not found")
        return invitation

    async def validate(
        self, token: Optional[str] = None, invitation_id: Optional[UUID] = None
    ) -> ValidatedInvitation:
        """
        Read-only check that an invitation can be accepted.

        An expired-but-pending row is reported as ``expired`` without being
        rewritten; the sweep owns that transition.
        """
        if not token and invitation_id is None:
            raise ValidationFailed("missing_fields", "An invitation token is required")

        stmt = select(Invitation).execution_options(populate_existing=True)
        if token:
            stmt = stmt.where(Invitation.invite_code == token)
        else:
            stmt = stmt.where(Invitation.id == invitation_id)
        invitation = (await self.db.execute(stmt)).scalars().first()

        if invitation is None:
            raise NotFound("invalid_token", "Invalid or unknown invitation")
        if invitation.status == InvitationStatus.accepted.value:
            raise Conflict("already_used", "This invitation has already been used", status_code=400)
        if invitation.status != PENDING:
            raise ValidationFailed(
                "invalid_status",
                f"This invitation is {invitation.status}",
                details={"status": invitation.status},
            )
        if invitation.expires_at <= utcnow():
            raise ValidationFailed("expired", "This invitation has expired")

        office_id = invitation.effective_office_id
        team = await CRUDBase(Team, self.db).get(invitation.team_id) if invitation.team_id else None
        office = await CRUDBase(Office, self.db).get(office_id) if office_id else None
        return ValidatedInvitation(invitation=invitation, office_id=office_id, team=team, office=office)

    async def expire_sweep(self, actor_id: Optional[UUID] = None) -> List[Invitation]:
        """Flip every pending invitation past its expiry to expired."""
        result = await self.db.execute(
            select(Invitation).where(Invitation.status == PENDING, Invitation.expires_at <= utcnow())
        )
        stale = list(result.scalars().all())
        for invitation in stale:
            invitation.status = InvitationStatus.expired.value
        await self.db.commit()

        for invitation in stale:
            await self.audit.activity(
                invitation, ActivityType.expired, actor_id, {"expired_at": invitation.expires_at}
            )
        if stale:
            logger.info("Expired %d invitations", len(stale))
        return stale

    async def resend(self, invitation_id: UUID, actor: Actor) -> Invitation:
        invitation = await self.get(invitation_id)

        if invitation.invited_by != actor.user_id and not actor.is_platform_admin:
            raise AuthorizationFailed(
                "forbidden", "Only the inviter or a platform admin can resend this invitation"
            )
        if invitation.status not in (PENDING, InvitationStatus.expired.value):
            raise ValidationFailed(
                "invalid_status",
                f"Cannot resend an invitation that is {invitation.status}",
                details={"status": invitation.status},
            )
        if await self._pending_for_email(invitation.email, exclude_id=invitation.id) is not None:
            raise Conflict("already_invited", "Another pending invitation exists for this email")

        previous_status = invitation.status
        invitation.invite_code = new_invite_code()
        invitation.expires_at = utcnow() + self.expiry
        invitation.status = PENDING
        try:
            await self.db.commit()
        except IntegrityError:
            await self.db.rollback()
            raise Conflict("already_invited", "Another pending invitation exists for this email")

        await self.audit.record(
            "invitation_resent",
            actor.user_id,
            details={
                "invitation_id": invitation.id,
                "email": invitation.email,
                "previous_status": previous_status,
                "expires_at": invitation.expires_at,
            },
        )
        await self.audit.activity(invitation, ActivityType.reminder_sent, actor.user_id)
        return invitation

    async def revoke(self, invitation_id: UUID, actor: Actor) -> Invitation:
        invitation = await self.get(invitation_id)

        allowed = (
            actor.is_platform_admin
            or invitation.invited_by == actor.user_id
            or (actor.is_office_manager and invitation.effective_office_id == actor.office_id)
        )
        if not allowed:
            raise AuthorizationFailed("forbidden", "You cannot revoke this invitation")
        if invitation.status != PENDING:
            raise ValidationFailed(
                "invalid_status",
                f"Cannot revoke an invitation that is {invitation.status}",
                details={"status": invitation.status},
            )

        invitation.status = InvitationStatus.revoked.value
        await self.db.commit()

        await self.audit.record(
            "invitation_revoked",
            actor.user_id,
            details={"invitation_id": invitation.id, "email": invitation.email},
        )
        await self.audit.activity(invitation, ActivityType.revoked, actor.user_id)
        return invitation

    async def mark_accepted(self, invitation_id: UUID) -> bool:
        """
        Conditionally flip pending to accepted. Returns False when another
        request already did, so acceptance happens at most once.
        """
        result = await self.db.execute(
            update(Invitation)
            .where(Invitation.id == invitation_id, Invitation.status == PENDING)
            .values(status=InvitationStatus.accepted.value, accepted_at=utcnow())
        )
        await self.db.commit()
        return result.rowcount == 1

    def _scoped(self, stmt, actor: Actor):
        if actor.is_platform_admin and actor.office_id is None:
            return stmt
        return stmt.where(
            or_(Invitation.office_id == actor.office_id, Invitation.agency_id == actor.office_id)
        )

    async def list_invitations(self, actor: Actor, status: Optional[str] = None) -> List[Invitation]:
        stmt = self._scoped(select(Invitation), actor)
        if status:
            stmt = stmt.where(Invitation.status == status)
        result = await self.db.execute(stmt.order_by(Invitation.created_at.desc()))
        return list(result.scalars().all())

    async def count_by_status(self, actor: Actor) -> Dict[str, int]:
        stmt = self._scoped(
            select(Invitation.status, func.count()).select_from(Invitation), actor
        ).group_by(Invitation.status)
        rows = (await self.db.execute(stmt)).all()
        return {status: count for status, count in rows}
