"""
ReconciliationTools: administrator-run batch repairs for accounts and
invitations left inconsistent by interrupted provisioning.

Every operation is idempotent: a second run over already-repaired data
reports nothing to fix. Each run writes one audit entry.
"""

import logging
import secrets
import string
from typing import Any, Dict, List, Optional
from uuid import UUID

from sqlalchemy import delete, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import aliased

from onboarding.contracts.admin import (
    CrossOfficeRequest,
    HealthReport,
    MergeUsersResponse,
    ProfileRepairRequest,
    ReconciliationSummary,
    RepairUserRequest,
    RepairUserResponse,
)
from onboarding.contracts.member import Actor
from onboarding.core.errors import (
    AuthorizationFailed,
    Conflict,
    DependencyFailed,
    NotFound,
    OnboardingError,
    ValidationFailed,
)
from onboarding.core.identity import IdentityStore, IdentityUser
from onboarding.models.base import utcnow
from onboarding.models.enums import ActivityType, AppRole, AuditSeverity, InvitationStatus, ProfileStatus
from onboarding.models.invitations import Invitation
from onboarding.models.offices import Office
from onboarding.models.profiles import Profile
from onboarding.models.team_members import TeamMember
from onboarding.models.teams import Team
from onboarding.models.user_roles import UserRole
from onboarding.services.audit import AuditLogger
from onboarding.services.crud import CRUDBase
from onboarding.services.invitations import InvitationRegistry
from onboarding.services.provisioning import archive_profile
from onboarding.services.roles import RoleAssigner, access_level_for, active_roles, ensure_platform_admin_remains
from onboarding.services.teams import TeamMembershipAssigner
from onboarding.services.utils.emails import is_sentinel_email, normalize_email
from onboarding.services.verification import ConsistencyVerifier

logger = logging.getLogger(__name__)

PENDING = InvitationStatus.pending.value
TEMP_PASSWORD_LENGTH = 12

# Tables whose rows follow a user through a merge, keyed by the owning column
MERGE_TABLES = (
    ("team_members", TeamMember, TeamMember.user_id),
    ("user_roles", UserRole, UserRole.user_id),
    ("invitations", Invitation, Invitation.invited_by),
)


def temporary_password(length: int = TEMP_PASSWORD_LENGTH) -> str:
    alphabet = string.ascii_letters + string.digits
    return "".join(secrets.choice(alphabet) for _ in range(length))


class ReconciliationTools:
    def __init__(self, db: AsyncSession, identity: IdentityStore, audit: Optional[AuditLogger] = None):
        self.db = db
        self.identity = identity
        self.audit = audit or AuditLogger(db)

    def _office_scope(self, stmt, column, actor: Actor):
        """Office managers only see their own office."""
        if actor.is_platform_admin:
            return stmt
        return stmt.where(column == actor.office_id)

    # -- orphaned profiles -------------------------------------------------

    async def _orphaned_profile_ids(self, actor: Actor) -> List[UUID]:
        stmt = select(Profile.id).where(Profile.status != ProfileStatus.archived.value)
        ids = (await self.db.execute(self._office_scope(stmt, Profile.office_id, actor))).scalars().all()
        orphaned = []
        for profile_id in ids:
            if await self.identity.get(profile_id) is None:
                orphaned.append(profile_id)
        return orphaned

    async def archive_orphaned_profiles(self, actor: Actor) -> ReconciliationSummary:
        """Archive every profile whose credential no longer exists."""
        summary = ReconciliationSummary()
        for profile_id in await self._orphaned_profile_ids(actor):
            summary.processed += 1
            profile = await CRUDBase(Profile, self.db).get(profile_id, fresh=True)
            original = archive_profile(profile)
            await self.db.commit()
            summary.fixed += 1
            summary.details.append({"user_id": str(profile_id), "original_email": original})

        await self.audit.record(
            "archive_orphaned_profiles",
            actor.user_id,
            details={"archived": summary.fixed, "profiles": summary.details},
        )
        return summary

    # -- credentials without profiles ------------------------------------------

    async def _profileless_credentials(self) -> List[IdentityUser]:
        credentials = [c for c in await self.identity.list_users() if not is_sentinel_email(c.email)]
        if not credentials:
            return []
        known = set(
            (
                await self.db.execute(select(Profile.id).where(Profile.id.in_([c.id for c in credentials])))
            ).scalars().all()
        )
        return [c for c in credentials if c.id not in known]

    async def _pending_invitation(self, email: str) -> Optional[Invitation]:
        result = await self.db.execute(
            select(Invitation)
            .where(Invitation.email == email, Invitation.status == PENDING)
            .order_by(Invitation.created_at.desc())
        )
        return result.scalars().first()

    async def repair_profileless_credentials(
        self, request: ProfileRepairRequest, actor: Actor
    ) -> ReconciliationSummary:
        """
        Give every credential that has no profile row a profile, a team
        membership and a role.

        Office, role and team come from the email's pending invitation when
        one exists, otherwise from the request. A fully repaired account
        also fulfils that invitation.
        """
        summary = ReconciliationSummary()
        teams = TeamMembershipAssigner(self.db, self.audit)
        for credential in await self._profileless_credentials():
            summary.processed += 1
            user_id = credential.id
            email = normalize_email(credential.email)
            full_name = credential.user_metadata.get("full_name") or email.split("@")[0]
            entry = {"user_id": str(user_id), "email": email}

            invitation = await self._pending_invitation(email)
            if invitation is not None:
                invitation_id = invitation.id
                office_id = invitation.office_id or invitation.agency_id
                role, team_id = AppRole(invitation.role), invitation.team_id
            else:
                invitation_id, office_id, role, team_id = None, request.office_id, request.role, None
            if office_id is None:
                summary.failed += 1
                summary.details.append({**entry, "status": "failed", "error": "office_required"})
                continue

            try:
                self.db.add(
                    Profile(
                        id=user_id,
                        email=email,
                        full_name=full_name,
                        office_id=office_id,
                        status=ProfileStatus.active.value,
                        password_set=True,
                    )
                )
                await self.db.commit()
                team = await teams.assign(user_id, office_id, role, team_id, full_name, actor.user_id)
                await RoleAssigner(self.db).grant(user_id, role, actor.user_id)
                verification = await ConsistencyVerifier(self.db, self.audit).verify(user_id, actor.user_id)
                if verification.complete and invitation_id is not None:
                    await InvitationRegistry(self.db, self.audit).mark_accepted(invitation_id)
            except Exception as e:
                await self.db.rollback()
                logger.error("Profile repair failed for credential %s", user_id, exc_info=e)
                summary.failed += 1
                summary.details.append({**entry, "status": "failed", "error": str(e)})
                continue

            summary.fixed += 1
            summary.details.append(
                {
                    **entry,
                    "status": "fixed",
                    "office_id": str(office_id),
                    "team_id": str(team.id),
                    "team_name": team.name,
                    "role": role.value,
                    "invitation_id": str(invitation_id) if invitation_id else None,
                    "verification": verification.outcome,
                }
            )

        await self.audit.record(
            "repair_profileless_credentials",
            actor.user_id,
            details={
                "processed": summary.processed,
                "fixed": summary.fixed,
                "failed": summary.failed,
                "users": summary.details,
            },
        )
        summary.success = summary.failed == 0
        return summary

    # -- invitations -------------------------------------------------------

    async def expire_invitations(self, actor: Actor) -> ReconciliationSummary:
        expired = await InvitationRegistry(self.db, self.audit).expire_sweep(actor.user_id)
        summary = ReconciliationSummary(
            processed=len(expired),
            fixed=len(expired),
            details=[{"invitation_id": str(i.id), "email": i.email} for i in expired],
        )
        await self.audit.record("expire_invitations", actor.user_id, details={"expired": summary.fixed})
        return summary

    async def _invalid_invitations(self, actor: Actor) -> List[Dict[str, Any]]:
        """Pending invitations whose office or team row no longer exists."""
        team = aliased(Team)
        office_id = func.coalesce(Invitation.office_id, Invitation.agency_id)
        stmt = (
            select(Invitation.id, Invitation.email, Invitation.team_id, office_id, Office.id, team.id)
            .outerjoin(Office, Office.id == office_id)
            .outerjoin(team, team.id == Invitation.team_id)
            .where(Invitation.status == PENDING)
        )
        stmt = self._office_scope(stmt, office_id, actor)
        invalid = []
        for inv_id, email, team_id, inv_office, office_found, team_found in (await self.db.execute(stmt)).all():
            if inv_office is None or office_found is None:
                reason = "office_missing"
            elif team_id is not None and team_found is None:
                reason = "team_missing"
            else:
                continue
            invalid.append({"invitation_id": inv_id, "email": email, "reason": reason})
        return invalid

    async def remove_invalid_invitations(self, actor: Actor) -> ReconciliationSummary:
        summary = ReconciliationSummary()
        for item in await self._invalid_invitations(actor):
            summary.processed += 1
            invitation = await CRUDBase(Invitation, self.db).get(item["invitation_id"])
            await self.audit.activity(
                invitation, ActivityType.removed, actor.user_id, {"reason": item["reason"]}
            )
            await self.db.execute(delete(Invitation).where(Invitation.id == item["invitation_id"]))
            await self.db.commit()
            summary.fixed += 1
            summary.details.append(
                {"invitation_id": str(item["invitation_id"]), "email": item["email"], "reason": item["reason"]}
            )

        await self.audit.record(
            "remove_invalid_invitations",
            actor.user_id,
            details={"removed": summary.fixed, "invitations": summary.details},
        )
        return summary

    # -- cross-office memberships --------------------------------------------

    async def _cross_office_memberships(self, user_ids: Optional[List[UUID]] = None) -> List[Dict[str, Any]]:
        stmt = (
            select(
                TeamMember.id,
                TeamMember.user_id,
                TeamMember.team_id,
                Team.name,
                Team.team_code,
                Team.office_id,
                Profile.office_id,
            )
            .join(Team, Team.id == TeamMember.team_id)
            .join(Profile, Profile.id == TeamMember.user_id)
            .where(Profile.office_id.is_not(None), Profile.office_id != Team.office_id)
        )
        if user_ids:
            stmt = stmt.where(TeamMember.user_id.in_(user_ids))
        rows = (await self.db.execute(stmt.order_by(TeamMember.joined_at))).all()
        return [
            {
                "membership_id": membership_id,
                "user_id": user_id,
                "team_id": team_id,
                "team_name": team_name,
                "team_code": team_code,
                "team_office_id": team_office_id,
                "user_office_id": user_office_id,
            }
            for membership_id, user_id, team_id, team_name, team_code, team_office_id, user_office_id in rows
        ]

    async def _move_user(self, item: Dict[str, Any]) -> Dict[str, Any]:
        profile = await CRUDBase(Profile, self.db).get(item["user_id"], fresh=True)
        profile.office_id = item["team_office_id"]
        return {"new_office_id": item["team_office_id"]}

    async def _remove_membership(self, item: Dict[str, Any]) -> Dict[str, Any]:
        await self.db.execute(delete(TeamMember).where(TeamMember.id == item["membership_id"]))
        profile = await CRUDBase(Profile, self.db).get(item["user_id"], fresh=True)
        result: Dict[str, Any] = {"removed_team_id": item["team_id"]}
        if profile.primary_team_id == item["team_id"]:
            # Fall back to another membership inside the user's own office
            replacement = (
                await self.db.execute(
                    select(TeamMember.team_id)
                    .join(Team, Team.id == TeamMember.team_id)
                    .where(
                        TeamMember.user_id == profile.id,
                        TeamMember.id != item["membership_id"],
                        Team.office_id == profile.office_id,
                    )
                    .limit(1)
                )
            ).scalars().first()
            profile.primary_team_id = replacement
            result["primary_team_id"] = replacement
        return result

    async def _duplicate_team(self, item: Dict[str, Any], actor: Actor) -> Dict[str, Any]:
        target_office = item["user_office_id"]
        duplicate = (
            await self.db.execute(
                select(Team).where(
                    Team.office_id == target_office,
                    Team.name == item["team_name"],
                    Team.is_personal_team.is_(False),
                )
            )
        ).scalars().first()
        created = duplicate is None
        if created:
            duplicate = Team(
                name=item["team_name"],
                office_id=target_office,
                team_code=f"{item['team_code']}_NEW" if item["team_code"] else None,
                created_by=actor.user_id,
            )
            self.db.add(duplicate)
            await self.db.flush()

        already_member = await CRUDBase(TeamMember, self.db).first(user_id=item["user_id"], team_id=duplicate.id)
        if already_member:
            await self.db.execute(delete(TeamMember).where(TeamMember.id == item["membership_id"]))
        else:
            await self.db.execute(
                update(TeamMember).where(TeamMember.id == item["membership_id"]).values(team_id=duplicate.id)
            )

        profile = await CRUDBase(Profile, self.db).get(item["user_id"], fresh=True)
        if profile.primary_team_id == item["team_id"]:
            profile.primary_team_id = duplicate.id
        return {"new_team_id": duplicate.id, "team_created": created}

    async def fix_cross_office_data(self, request: CrossOfficeRequest, actor: Actor) -> ReconciliationSummary:
        """
        Repair memberships whose team sits in another office than the user.

        Items are committed one by one; a failing item is rolled back and
        recorded without stopping the batch.
        """
        summary = ReconciliationSummary()
        for item in await self._cross_office_memberships(request.user_ids):
            summary.processed += 1
            entry = {"user_id": str(item["user_id"]), "team_id": str(item["team_id"]), "team_name": item["team_name"]}
            try:
                if request.strategy == "move_users":
                    outcome = await self._move_user(item)
                elif request.strategy == "remove_teams":
                    outcome = await self._remove_membership(item)
                else:
                    outcome = await self._duplicate_team(item, actor)
                await self.db.commit()
            except Exception as e:
                await self.db.rollback()
                logger.error("Cross-office repair failed for user %s", item["user_id"], exc_info=e)
                summary.failed += 1
                summary.details.append({**entry, "status": "failed", "error": str(e)})
                continue
            summary.fixed += 1
            summary.details.append({**entry, "status": "fixed", **outcome})

        await self.audit.record(
            "fix_cross_office_data",
            actor.user_id,
            details={
                "strategy": request.strategy,
                "user_ids": request.user_ids,
                "processed": summary.processed,
                "fixed": summary.fixed,
                "failed": summary.failed,
                "items": summary.details,
            },
        )
        summary.success = summary.failed == 0
        return summary

    # -- duplicate accounts --------------------------------------------------

    async def merge_duplicate_users(self, keep_id: UUID, remove_id: UUID, actor: Actor) -> MergeUsersResponse:
        """
        Move remove's dependent rows onto keep, table by table, but only into
        tables where keep has no rows yet. Then delete remove's credential
        and profile. Irreversible.
        """
        if keep_id == remove_id:
            raise ValidationFailed("same_user", "Cannot merge a user into itself")

        profiles = CRUDBase(Profile, self.db)
        keep = await profiles.get(keep_id, fresh=True)
        remove = await profiles.get(remove_id, fresh=True)
        if keep is None or remove is None:
            raise NotFound(
                "user_not_found",
                "Both users must exist",
                details={"missing": [str(i) for i, p in ((keep_id, keep), (remove_id, remove)) if p is None]},
            )
        remove_email = remove.email

        transferred: Dict[str, int] = {}
        skipped: List[str] = []
        for name, model, column in MERGE_TABLES:
            keep_count = (
                await self.db.execute(select(func.count()).select_from(model).where(column == keep_id))
            ).scalar_one()
            remove_count = (
                await self.db.execute(select(func.count()).select_from(model).where(column == remove_id))
            ).scalar_one()
            if remove_count == 0:
                continue
            if keep_count:
                skipped.append(name)
                continue
            await self.db.execute(update(model).where(column == remove_id).values({column.key: keep_id}))
            transferred[name] = remove_count

        # Fill only what keep lacks
        if keep.office_id is None:
            keep.office_id = remove.office_id
        if keep.primary_team_id is None and "team_members" in transferred:
            keep.primary_team_id = remove.primary_team_id

        try:
            await ensure_platform_admin_remains(self.db, remove_id)
            await self.db.execute(delete(TeamMember).where(TeamMember.user_id == remove_id))
            await self.db.execute(delete(UserRole).where(UserRole.user_id == remove_id))
            await self.db.flush()
            if await self.identity.get(remove_id) is not None:
                await self.identity.delete(remove_id)
        except OnboardingError:
            await self.db.rollback()
            raise

        await self.db.execute(delete(Profile).where(Profile.id == remove_id))
        await self.db.commit()

        await self.audit.record(
            "merge_duplicate_users",
            actor.user_id,
            target_user_id=keep_id,
            details={
                "kept_user_id": keep_id,
                "removed_user_id": remove_id,
                "removed_email": remove_email,
                "transferred": transferred,
                "skipped": skipped,
            },
            severity=AuditSeverity.warning,
        )
        return MergeUsersResponse(
            kept_user_id=keep_id, removed_user_id=remove_id, transferred=transferred, skipped=skipped
        )

    # -- single user ---------------------------------------------------------

    async def repair_user(self, request: RepairUserRequest, actor: Actor) -> RepairUserResponse:
        """
        Fill in whichever of office, membership, primary team and role the
        user is missing. Fields already set are left untouched.
        """
        if request.team_id is None and not request.is_solo_agent:
            raise ValidationFailed("missing_fields", "team_id is required unless is_solo_agent is set")
        if not actor.is_platform_admin and request.office_id != actor.office_id:
            raise AuthorizationFailed("forbidden_office", "You can only repair users in your own office")

        user_id = request.user_id
        profile = await CRUDBase(Profile, self.db).get(user_id, fresh=True)
        if profile is None:
            raise NotFound("user_not_found", "User not found", details={"user_id": str(user_id)})
        if not actor.is_platform_admin and profile.office_id not in (None, actor.office_id):
            raise AuthorizationFailed("forbidden_office", "You can only repair users in your own office")
        if await CRUDBase(Office, self.db).get(request.office_id) is None:
            raise ValidationFailed("invalid_office", "Office not found")

        repaired: List[str] = []
        if profile.status == ProfileStatus.archived.value and profile.original_email:
            await self._ensure_email_free(profile.original_email, user_id)
            profile.email = profile.original_email
            profile.original_email = None
            profile.archived_at = None
            profile.status = ProfileStatus.active.value
            repaired.append("archived_email")
        if profile.office_id is None:
            profile.office_id = request.office_id
            repaired.append("office_id")
        office_id = profile.office_id
        real_email = profile.email
        full_name = profile.full_name
        primary_team_id = profile.primary_team_id
        await self.db.commit()

        teams = TeamMembershipAssigner(self.db, self.audit)
        if request.team_id is not None:
            team = await teams.resolve_team(request.team_id, office_id)
        else:
            team = await teams.ensure_personal_team(user_id, office_id, full_name)
        team_id = team.id

        if await CRUDBase(TeamMember, self.db).first(user_id=user_id, team_id=team_id) is None:
            await teams.add_member(user_id, team_id, access_level_for(request.role))
            repaired.append("team_membership")
        if primary_team_id is None:
            await teams.set_primary_team(user_id, team_id)
            repaired.append("primary_team_id")

        if not await active_roles(self.db, user_id):
            await RoleAssigner(self.db).grant(user_id, request.role, actor.user_id)
            repaired.append("role")

        temp_password = None
        if request.reset_password:
            temp_password = await self._reset_credential(user_id, real_email, repaired)

        verification = await ConsistencyVerifier(self.db, self.audit).verify(user_id, actor.user_id)
        if verification.complete:
            # A pending invitation left open by an interrupted accept is now fulfilled
            closed = await self.db.execute(
                update(Invitation)
                .where(Invitation.email == real_email.lower(), Invitation.status == PENDING)
                .values(status=InvitationStatus.accepted.value, accepted_at=utcnow())
            )
            await self.db.commit()
            if closed.rowcount:
                repaired.append("invitation_accepted")

        await self.audit.record(
            "user_repaired",
            actor.user_id,
            target_user_id=user_id,
            details={
                "repaired_fields": repaired,
                "office_id": office_id,
                "team_id": team_id,
                "role": request.role.value,
                "verification": verification.outcome,
            },
        )
        return RepairUserResponse(
            success=verification.complete,
            user_id=user_id,
            repaired_fields=repaired,
            verification=verification.outcome,
            missing=verification.missing,
            temporary_password=temp_password,
        )

    async def _ensure_email_free(self, email: str, user_id: UUID) -> None:
        """An archived address may have been reclaimed by a newer account since."""
        holder = (
            await self.db.execute(
                select(Profile.id).where(
                    func.lower(Profile.email) == email.lower(),
                    Profile.id != user_id,
                    Profile.status != ProfileStatus.archived.value,
                )
            )
        ).scalars().first()
        if holder is not None:
            raise Conflict(
                "user_exists",
                "Another account now uses this email; merge the accounts instead",
                details={"email": email, "user_id": str(holder)},
            )

    async def _reset_credential(self, user_id: UUID, real_email: str, repaired: List[str]) -> str:
        credential = await self.identity.get(user_id)
        if credential is None:
            raise NotFound("credential_not_found", "No credential exists for this user")

        if is_sentinel_email(credential.email):
            if is_sentinel_email(real_email):
                raise DependencyFailed(
                    "email_unrecoverable", "The user's real email address is not known"
                )
            await self.identity.update(user_id, email=real_email, email_confirm=True)
            repaired.append("credential_email")

        password = temporary_password()
        await self.identity.update(user_id, password=password)
        await self.identity.unban(user_id)
        repaired.append("password_reset")
        return password

    # -- health ----------------------------------------------------------------

    async def health_report(self, actor: Actor) -> HealthReport:
        now = utcnow()
        active = Profile.status == ProfileStatus.active.value

        async def count(stmt) -> int:
            return (await self.db.execute(stmt)).scalar_one()

        expired = await count(
            self._office_scope(
                select(func.count()).select_from(Invitation).where(
                    Invitation.status == PENDING, Invitation.expires_at <= now
                ),
                func.coalesce(Invitation.office_id, Invitation.agency_id),
                actor,
            )
        )
        has_role = (
            select(UserRole.id)
            .where(UserRole.user_id == Profile.id, UserRole.revoked_at.is_(None))
            .exists()
        )
        without_roles = await count(
            self._office_scope(
                select(func.count()).select_from(Profile).where(active, ~has_role), Profile.office_id, actor
            )
        )
        incomplete = await count(
            self._office_scope(
                select(func.count()).select_from(Profile).where(
                    active, (Profile.office_id.is_(None)) | (Profile.primary_team_id.is_(None))
                ),
                Profile.office_id,
                actor,
            )
        )
        cross_office = len(
            [
                row
                for row in await self._cross_office_memberships()
                if actor.is_platform_admin or row["user_office_id"] == actor.office_id
            ]
        )
        report = HealthReport(
            healthy=False,
            orphaned_profiles=len(await self._orphaned_profile_ids(actor)),
            expired_invitations=expired,
            invalid_invitations=len(await self._invalid_invitations(actor)),
            users_without_roles=without_roles,
            incomplete_profiles=incomplete,
            cross_office_assignments=cross_office,
            # Credentials carry no office, so only platform admins see them
            credentials_without_profiles=(
                len(await self._profileless_credentials()) if actor.is_platform_admin else 0
            ),
        )
        report.healthy = not any(
            (
                report.orphaned_profiles,
                report.expired_invitations,
                report.invalid_invitations,
                report.users_without_roles,
                report.incomplete_profiles,
                report.cross_office_assignments,
                report.credentials_without_profiles,
            )
        )
        return report
