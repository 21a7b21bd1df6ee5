"""
Invitation routes: create, list, count, validate, accept, resend, revoke
"""

from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, BackgroundTasks, Depends
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession

from onboarding.contracts.acceptance import AcceptInvitationRequest, AcceptInvitationResponse
from onboarding.contracts.base import ERROR_RESPONSES
from onboarding.contracts.invitation import (
    InvitationCountResponse,
    InvitationCreate,
    InvitationCreated,
    InvitationResponse,
    InvitationValidation,
)
from onboarding.contracts.member import Actor
from onboarding.core.identity import IdentityStore
from onboarding.dependencies.auth import get_current_actor
from onboarding.dependencies.db import get_db
from onboarding.dependencies.identity import get_identity_store
from onboarding.dependencies.rate_limit import anonymous_rate_limited, rate_limited
from onboarding.models.enums import InvitationStatus
from onboarding.models.invitations import Invitation
from onboarding.services.acceptance import InvitationAcceptance
from onboarding.services.audit import AuditLogger
from onboarding.services.invitations import InvitationRegistry, accept_url
from onboarding.services.notifications import NotificationChannel, get_notification_channel

router = APIRouter(responses=ERROR_RESPONSES)


def _created(invitation: Invitation) -> InvitationCreated:
    data = InvitationResponse.model_validate(invitation).model_dump()
    return InvitationCreated(
        **data, invite_code=invitation.invite_code, accept_url=accept_url(invitation.invite_code)
    )


@router.post("", response_model=InvitationCreated, status_code=201)
async def create_invitation(
    payload: InvitationCreate,
    background_tasks: BackgroundTasks,
    actor: Actor = Depends(rate_limited("invite-user")),
    db: AsyncSession = Depends(get_db),
    notifications: NotificationChannel = Depends(get_notification_channel),
):
    audit = AuditLogger(db)
    async with audit.guard("invite_user", actor.user_id, {"email": payload.email, "role": payload.role.value}):
        invitation = await InvitationRegistry(db, audit).create(payload, actor)

    created = _created(invitation)
    background_tasks.add_task(
        notifications.invitation_sent, created.email, created.full_name, created.role.value, created.accept_url
    )
    return created


@router.get("", response_model=List[InvitationResponse])
async def list_invitations(
    status: Optional[InvitationStatus] = None,
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
):
    return await InvitationRegistry(db).list_invitations(actor, status.value if status else None)


@router.get("/count", response_model=InvitationCountResponse)
async def get_invitation_counts(
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
):
    counts = await InvitationRegistry(db).count_by_status(actor)
    return InvitationCountResponse(**counts, total=sum(counts.values()))


@router.get("/validate/{token}", response_model=InvitationValidation)
async def validate_invitation(
    token: str,
    db: AsyncSession = Depends(get_db),
):
    validated = await InvitationRegistry(db).validate(token=token)
    invitation = validated.invitation
    return InvitationValidation(
        invitation_id=invitation.id,
        email=invitation.email,
        full_name=invitation.full_name,
        role=invitation.role,
        team_id=invitation.team_id,
        team_name=validated.team.name if validated.team else None,
        office_id=validated.office_id,
        office_name=validated.office.name if validated.office else None,
        expires_at=invitation.expires_at,
    )


@router.post("/accept", response_model=AcceptInvitationResponse)
async def accept_invitation(
    payload: AcceptInvitationRequest,
    background_tasks: BackgroundTasks,
    _: None = Depends(anonymous_rate_limited("accept-invitation")),
    db: AsyncSession = Depends(get_db),
    identity: IdentityStore = Depends(get_identity_store),
    notifications: NotificationChannel = Depends(get_notification_channel),
):
    """
    Complete an invitation. 200 when done, 202 when the account exists but
    team assignment must be finished by an administrator, 500
    ``profile_incomplete`` when verification fails for another reason.
    """
    audit = AuditLogger(db)
    async with audit.guard("accept_invitation", None, {"invitation_id": payload.invitation_id}):
        outcome = await InvitationAcceptance(db, identity).accept(payload)

    if outcome.accepted:
        background_tasks.add_task(
            notifications.account_created, str(outcome.user_id), outcome.email, outcome.full_name
        )
    return JSONResponse(status_code=outcome.status_code, content=outcome.body)


@router.post("/{invitation_id}/resend", response_model=InvitationCreated)
async def resend_invitation(
    invitation_id: UUID,
    background_tasks: BackgroundTasks,
    actor: Actor = Depends(rate_limited("resend-invitation")),
    db: AsyncSession = Depends(get_db),
    notifications: NotificationChannel = Depends(get_notification_channel),
):
    audit = AuditLogger(db)
    async with audit.guard("resend_invitation", actor.user_id, {"invitation_id": invitation_id}):
        invitation = await InvitationRegistry(db, audit).resend(invitation_id, actor)

    created = _created(invitation)
    background_tasks.add_task(
        notifications.invitation_sent,
        created.email,
        created.full_name,
        created.role.value,
        created.accept_url,
        reminder=True,
    )
    return created


@router.post("/{invitation_id}/revoke", response_model=InvitationResponse)
async def revoke_invitation(
    invitation_id: UUID,
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
):
    audit = AuditLogger(db)
    async with audit.guard("revoke_invitation", actor.user_id, {"invitation_id": invitation_id}):
        invitation = await InvitationRegistry(db, audit).revoke(invitation_id, actor)
    return invitation
