"""
Reconciliation routes: administrator-invoked repairs
"""

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from onboarding.contracts.admin import (
    CrossOfficeRequest,
    HealthReport,
    MergeUsersRequest,
    MergeUsersResponse,
    ProfileRepairRequest,
    ReconciliationSummary,
    RepairUserRequest,
    RepairUserResponse,
)
from onboarding.contracts.base import ERROR_RESPONSES
from onboarding.contracts.member import Actor
from onboarding.core.identity import IdentityStore
from onboarding.dependencies.auth import require_admin, require_platform_admin
from onboarding.dependencies.db import get_db
from onboarding.dependencies.identity import get_identity_store
from onboarding.services.reconciliation import ReconciliationTools

router = APIRouter(responses=ERROR_RESPONSES)


@router.post("/repair-user", response_model=RepairUserResponse)
async def repair_user(
    payload: RepairUserRequest,
    actor: Actor = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
    identity: IdentityStore = Depends(get_identity_store),
):
    tools = ReconciliationTools(db, identity)
    async with tools.audit.guard("repair_user", actor.user_id, {"user_id": payload.user_id}):
        return await tools.repair_user(payload, actor)


@router.post("/merge-duplicate-users", response_model=MergeUsersResponse)
async def merge_duplicate_users(
    payload: MergeUsersRequest,
    actor: Actor = Depends(require_platform_admin),
    db: AsyncSession = Depends(get_db),
    identity: IdentityStore = Depends(get_identity_store),
):
    tools = ReconciliationTools(db, identity)
    async with tools.audit.guard(
        "merge_duplicate_users",
        actor.user_id,
        {"keep_user_id": payload.keep_user_id, "remove_user_id": payload.remove_user_id},
    ):
        return await tools.merge_duplicate_users(payload.keep_user_id, payload.remove_user_id, actor)


@router.post("/fix-cross-office-data", response_model=ReconciliationSummary)
async def fix_cross_office_data(
    payload: CrossOfficeRequest,
    actor: Actor = Depends(require_platform_admin),
    db: AsyncSession = Depends(get_db),
    identity: IdentityStore = Depends(get_identity_store),
):
    tools = ReconciliationTools(db, identity)
    async with tools.audit.guard("fix_cross_office_data", actor.user_id, {"strategy": payload.strategy}):
        return await tools.fix_cross_office_data(payload, actor)


@router.post("/archive-orphaned-profiles", response_model=ReconciliationSummary)
async def archive_orphaned_profiles(
    actor: Actor = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
    identity: IdentityStore = Depends(get_identity_store),
):
    tools = ReconciliationTools(db, identity)
    async with tools.audit.guard("archive_orphaned_profiles", actor.user_id):
        return await tools.archive_orphaned_profiles(actor)


@router.post("/repair-profileless-credentials", response_model=ReconciliationSummary)
async def repair_profileless_credentials(
    payload: ProfileRepairRequest,
    actor: Actor = Depends(require_platform_admin),
    db: AsyncSession = Depends(get_db),
    identity: IdentityStore = Depends(get_identity_store),
):
    tools = ReconciliationTools(db, identity)
    async with tools.audit.guard("repair_profileless_credentials", actor.user_id):
        return await tools.repair_profileless_credentials(payload, actor)


@router.post("/expire-invitations", response_model=ReconciliationSummary)
async def expire_invitations(
    actor: Actor = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
    identity: IdentityStore = Depends(get_identity_store),
):
    tools = ReconciliationTools(db, identity)
    async with tools.audit.guard("expire_invitations", actor.user_id):
        return await tools.expire_invitations(actor)


@router.post("/remove-invalid-invitations", response_model=ReconciliationSummary)
async def remove_invalid_invitations(
    actor: Actor = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
    identity: IdentityStore = Depends(get_identity_store),
):
    tools = ReconciliationTools(db, identity)
    async with tools.audit.guard("remove_invalid_invitations", actor.user_id):
        return await tools.remove_invalid_invitations(actor)


@router.get("/health", response_model=HealthReport)
async def health_report(
    actor: Actor = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
    identity: IdentityStore = Depends(get_identity_store),
):
    return await ReconciliationTools(db, identity).health_report(actor)
