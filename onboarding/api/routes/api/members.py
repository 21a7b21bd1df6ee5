"""
Member routes: GET /me, POST /{id}/role, DELETE /{id}, POST /{id}/reactivate
"""

from uuid import UUID

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from onboarding.contracts.base import ERROR_RESPONSES
from onboarding.contracts.member import Actor, ChangeRoleRequest, MemberResponse, ReactivateUserRequest
from onboarding.core.identity import IdentityStore
from onboarding.dependencies.auth import get_current_actor, require_admin
from onboarding.dependencies.db import get_db
from onboarding.dependencies.identity import get_identity_store
from onboarding.dependencies.rate_limit import rate_limited
from onboarding.models.profiles import Profile
from onboarding.services.crud import CRUDBase
from onboarding.services.members import MemberAdministration
from onboarding.services.roles import highest_role

router = APIRouter(responses=ERROR_RESPONSES)


@router.get("/me", response_model=MemberResponse)
async def get_current_member_info(
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
):
    profile = await CRUDBase(Profile, db).get(actor.user_id)
    return MemberResponse(
        id=profile.id,
        email=profile.email,
        full_name=profile.full_name,
        mobile=profile.mobile,
        birthday=profile.birthday,
        status=profile.status,
        office_id=profile.office_id,
        primary_team_id=profile.primary_team_id,
        onboarding_completed=profile.onboarding_completed,
        role=highest_role(actor.roles),
        roles=actor.roles,
    )


@router.post("/{user_id}/role")
async def change_user_role(
    user_id: UUID,
    payload: ChangeRoleRequest,
    actor: Actor = Depends(rate_limited("change-user-role", require_admin)),
    db: AsyncSession = Depends(get_db),
    identity: IdentityStore = Depends(get_identity_store),
):
    admin = MemberAdministration(db, identity)
    async with admin.audit.guard("change_user_role", actor.user_id, {"user_id": user_id}):
        return await admin.change_role(user_id, payload, actor)


@router.delete("/{user_id}")
async def delete_user(
    user_id: UUID,
    hard: bool = False,
    actor: Actor = Depends(rate_limited("delete-user", require_admin)),
    db: AsyncSession = Depends(get_db),
    identity: IdentityStore = Depends(get_identity_store),
):
    admin = MemberAdministration(db, identity)
    async with admin.audit.guard("delete_user", actor.user_id, {"user_id": user_id, "hard_delete": hard}):
        return await admin.delete_user(user_id, actor, hard=hard)


@router.post("/{user_id}/reactivate")
async def reactivate_user(
    user_id: UUID,
    payload: ReactivateUserRequest,
    actor: Actor = Depends(rate_limited("reactivate-user", require_admin)),
    db: AsyncSession = Depends(get_db),
    identity: IdentityStore = Depends(get_identity_store),
):
    admin = MemberAdministration(db, identity)
    async with admin.audit.guard("reactivate_user", actor.user_id, {"user_id": user_id}):
        return await admin.reactivate_user(user_id, payload, actor)
