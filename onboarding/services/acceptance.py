"""
Accept/Complete: drives an invitation through provisioning, team and role
assignment and final verification.

Each step commits its own writes and nothing is rolled back when a later
step fails. The verifier decides whether the run is done; whatever it
reports as missing is left for repair-user and the reconciliation tools.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from onboarding.contracts.acceptance import AcceptInvitationRequest
from onboarding.core.errors import ConsistencyFailed, ValidationFailed
from onboarding.core.identity import IdentityStore
from onboarding.models.enums import ActivityType, AppRole, AuditSeverity
from onboarding.services.audit import AuditLogger
from onboarding.services.invitations import InvitationRegistry
from onboarding.services.provisioning import AccountProvisioner
from onboarding.services.roles import RoleAssigner
from onboarding.services.teams import TeamAssignmentFailed, TeamMembershipAssigner
from onboarding.services.verification import ConsistencyVerifier

logger = logging.getLogger(__name__)


@dataclass
class AcceptOutcome:
    status_code: int
    body: Dict[str, Any]
    user_id: Optional[UUID] = None
    email: Optional[str] = None
    full_name: Optional[str] = None
    warnings: List[str] = field(default_factory=list)

    @property
    def accepted(self) -> bool:
        return self.status_code == 200


class InvitationAcceptance:
    def __init__(self, db: AsyncSession, identity: IdentityStore):
        self.db = db
        self.audit = AuditLogger(db)
        self.registry = InvitationRegistry(db, self.audit)
        self.provisioner = AccountProvisioner(db, identity, self.audit)
        self.teams = TeamMembershipAssigner(db, self.audit)
        self.roles = RoleAssigner(db)
        self.verifier = ConsistencyVerifier(db, self.audit)

    async def accept(self, request: AcceptInvitationRequest) -> AcceptOutcome:
        missing = [
            name
            for name, value in (
                ("token", request.token or request.invitation_id),
                ("full_name", (request.full_name or "").strip()),
                ("password", request.password),
            )
            if not value
        ]
        if missing:
            raise ValidationFailed(
                "missing_fields", "Token, full name and password are required", details={"missing": missing}
            )
        full_name = request.full_name.strip()

        # No writes happen before the invitation is known to be acceptable
        validated = await self.registry.validate(request.token, request.invitation_id)
        invitation = validated.invitation
        invitation_id = invitation.id
        email = invitation.email
        role = AppRole(invitation.role)
        team_id = invitation.team_id
        office_id = validated.office_id
        inviter_id = invitation.invited_by
        if office_id is None:
            raise ValidationFailed("invalid_invitation", "The invitation has no office")
        if team_id is not None:
            await self.teams.resolve_team(team_id, office_id)

        provisioned = await self.provisioner.provision(
            validated, full_name, request.password, request.mobile, request.birthday
        )
        user_id = provisioned.user_id

        team_failure: Optional[TeamAssignmentFailed] = None
        try:
            await self.teams.assign(user_id, office_id, role, team_id=team_id, full_name=full_name)
        except TeamAssignmentFailed as e:
            team_failure = e

        warnings: List[str] = []
        try:
            await self.roles.grant(user_id, role, inviter_id)
        except Exception as e:
            await self.db.rollback()
            logger.error("Role assignment failed for user %s", user_id, exc_info=e)
            await self.audit.record(
                "role_assignment_failed",
                user_id,
                target_user_id=user_id,
                details={"role": role.value, "invitation_id": invitation_id, "error": str(e)},
                severity=AuditSeverity.warning,
            )
            warnings.append(f"Role '{role.value}' could not be assigned; an administrator must grant it")

        verification = await self.verifier.verify(user_id)

        if team_failure is not None:
            return AcceptOutcome(
                status_code=team_failure.status_code,
                body={**team_failure.to_dict(), "user_id": str(user_id)},
                user_id=user_id,
                warnings=warnings,
            )

        if not verification.complete:
            incomplete = ConsistencyFailed(
                "profile_incomplete",
                "Account created but the profile is incomplete; contact an administrator",
                details={"missing": verification.missing},
            )
            return AcceptOutcome(
                status_code=incomplete.status_code,
                body={**incomplete.to_dict(), "user_id": str(user_id)},
                user_id=user_id,
                warnings=warnings,
            )

        if not await self.registry.mark_accepted(invitation_id):
            logger.info("Invitation %s was already accepted by a concurrent request", invitation_id)
        else:
            await self.audit.record(
                "invitation_accepted",
                user_id,
                target_user_id=user_id,
                details={
                    "invitation_id": invitation_id,
                    "email": email,
                    "role": role.value,
                    "office_id": office_id,
                    "resumed": provisioned.resumed,
                    "warnings": warnings,
                },
            )
            accepted = await self.registry.get(invitation_id)
            await self.audit.activity(accepted, ActivityType.accepted, user_id)

        body: Dict[str, Any] = {"success": True, "user_id": str(user_id)}
        if warnings:
            body["warnings"] = warnings
        return AcceptOutcome(
            status_code=200,
            body=body,
            user_id=user_id,
            email=email,
            full_name=full_name,
            warnings=warnings,
        )
