"""
AccountProvisioner: turns a validated invitation into a credential plus an
active profile, reusing whatever a previous interrupted attempt left behind.
"""

import logging
from dataclasses import dataclass, field
from datetime import date
from typing import List, Optional
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from onboarding.core.errors import Conflict, DependencyFailed
from onboarding.core.identity import IdentityConflictError, IdentityStore, IdentityStoreError
from onboarding.models.base import utcnow
from onboarding.models.enums import ProfileStatus
from onboarding.models.profiles import Profile
from onboarding.services.audit import AuditLogger
from onboarding.services.crud import CRUDBase
from onboarding.services.invitations import ValidatedInvitation
from onboarding.services.utils.emails import archived_email, normalize_email

logger = logging.getLogger(__name__)


def archive_profile(profile: Profile) -> str:
    """
    Free the profile's email for reuse while keeping it recoverable.

    Returns the original address. The caller commits.
    """
    original = profile.original_email or profile.email
    profile.original_email = original
    profile.email = archived_email(profile.id)
    profile.status = ProfileStatus.archived.value
    profile.archived_at = utcnow()
    return original


def is_fully_configured(profile: Optional[Profile]) -> bool:
    return bool(
        profile is not None
        and profile.is_active
        and profile.office_id is not None
        and profile.primary_team_id is not None
    )


@dataclass
class ProvisionResult:
    user_id: UUID
    resumed: bool = False
    archived_profile_ids: List[UUID] = field(default_factory=list)


class AccountProvisioner:
    def __init__(self, db: AsyncSession, identity: IdentityStore, audit: AuditLogger):
        self.db = db
        self.identity = identity
        self.audit = audit

    async def provision(
        self,
        validated: ValidatedInvitation,
        full_name: str,
        password: str,
        mobile: Optional[str] = None,
        birthday: Optional[date] = None,
    ) -> ProvisionResult:
        email = normalize_email(validated.invitation.email)
        office_id = validated.office_id

        credential = await self.identity.find_by_email(email)
        if credential is not None:
            existing = await CRUDBase(Profile, self.db).get(credential.id, fresh=True)
            if is_fully_configured(existing):
                raise Conflict(
                    "user_exists",
                    "An account with this email already exists; sign in instead",
                    details={"user_id": str(credential.id)},
                )

        archived = await self._archive_stale_profiles(email, keep_id=credential.id if credential else None)

        resumed = credential is not None
        if credential is None:
            try:
                credential = await self.identity.create(email, password, {"full_name": full_name})
            except IdentityConflictError:
                # A concurrent Accept created it first
                credential = await self.identity.find_by_email(email)
                if credential is None:
                    raise DependencyFailed(
                        "auth_creation_failed", "Failed to create the user account"
                    )
                resumed = True
            except IdentityStoreError as e:
                raise DependencyFailed(
                    "auth_creation_failed",
                    "Failed to create the user account",
                    details={"error": e.message},
                ) from e
            else:
                await self.audit.record(
                    "account_created",
                    credential.id,
                    target_user_id=credential.id,
                    details={"email": email, "office_id": office_id},
                )

        user_id = credential.id
        if resumed:
            await self._resume_credential(user_id, password, full_name)

        await self._upsert_profile(user_id, email, office_id, full_name, mobile, birthday)
        return ProvisionResult(user_id=user_id, resumed=resumed, archived_profile_ids=archived)

    async def _archive_stale_profiles(self, email: str, keep_id: Optional[UUID]) -> List[UUID]:
        """
        Profiles and credentials drift independently, so profile rows for the
        email are checked even after the credential lookup. Any active one
        owned by another id blocks the flow; the rest are archived.
        """
        stmt = select(Profile).where(
            func.lower(Profile.email) == email,
            Profile.status != ProfileStatus.archived.value,
        )
        if keep_id is not None:
            stmt = stmt.where(Profile.id != keep_id)
        stale = list((await self.db.execute(stmt)).scalars().all())

        if any(p.is_active for p in stale):
            raise Conflict("user_exists", "An active profile already uses this email")

        archived = []
        for profile in stale:
            archive_profile(profile)
            archived.append(profile.id)
        if not archived:
            return archived

        await self.db.commit()
        for profile_id in archived:
            await self.audit.record(
                "profile_archived",
                None,
                target_user_id=profile_id,
                details={"original_email": email, "reason": "email_reclaimed_by_invitation"},
            )
        return archived

    async def _resume_credential(self, user_id: UUID, password: str, full_name: str) -> None:
        try:
            await self.identity.update(
                user_id, password=password, email_confirm=True, metadata={"full_name": full_name}
            )
        except IdentityStoreError as e:
            logger.error("Could not refresh credential for resumed user %s: %s", user_id, e.message)

    async def _upsert_profile(
        self,
        user_id: UUID,
        email: str,
        office_id: Optional[UUID],
        full_name: str,
        mobile: Optional[str],
        birthday: Optional[date],
    ) -> None:
        # primary_team_id is left alone until membership is confirmed
        for attempt in range(2):
            profile = await CRUDBase(Profile, self.db).get(user_id, fresh=True)
            if profile is None:
                profile = Profile(id=user_id, email=email)
                self.db.add(profile)
            profile.email = email
            profile.original_email = None
            profile.archived_at = None
            profile.full_name = full_name
            profile.mobile = mobile
            profile.birthday = birthday
            profile.office_id = office_id
            profile.password_set = True
            profile.onboarding_completed = True
            profile.status = ProfileStatus.active.value
            try:
                await self.db.commit()
                return
            except IntegrityError:
                # Concurrent insert of the same id; retry as an update
                await self.db.rollback()
                if attempt:
                    break
            except SQLAlchemyError as e:
                await self.db.rollback()
                logger.error("Profile upsert failed for %s", user_id, exc_info=e)
                break

        raise DependencyFailed(
            "profile_upsert_failed",
            "Account created but the profile could not be saved",
            details={"user_id": str(user_id)},
        )
