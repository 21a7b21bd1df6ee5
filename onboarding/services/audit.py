"""
AuditLogger: append-only audit trail and the invitation activity log.
"""

import logging
from contextlib import asynccontextmanager
from typing import Any, Dict, Optional
from uuid import UUID

from fastapi.encoders import jsonable_encoder
from sqlalchemy.ext.asyncio import AsyncSession

from onboarding.core.errors import OnboardingError
from onboarding.models.audit_logs import AuditLog
from onboarding.models.enums import ActivityType, AuditSeverity
from onboarding.models.invitation_activity import InvitationActivity
from onboarding.models.invitations import Invitation

logger = logging.getLogger(__name__)


class AuditLogger:
    """
    Writes audit entries and invitation activity rows.

    Each write commits on its own so an entry survives whatever the caller
    does next. Entries are never updated or deleted.
    """

    def __init__(self, db: AsyncSession):
        self.db = db

    async def record(
        self,
        action: str,
        actor_id: Optional[UUID],
        target_user_id: Optional[UUID] = None,
        details: Optional[Dict[str, Any]] = None,
        severity: AuditSeverity = AuditSeverity.info,
    ) -> None:
        entry = AuditLog(
            user_id=actor_id,
            action=action,
            target_user_id=target_user_id,
            details=jsonable_encoder(details or {}),
            severity=severity.value,
        )
        self.db.add(entry)
        try:
            await self.db.commit()
        except Exception as e:
            await self.db.rollback()
            logger.error("Failed to write audit entry %s: %s", action, e, exc_info=e)
            return
        log = logger.warning if severity != AuditSeverity.info else logger.info
        log("audit action=%s actor=%s target=%s", action, actor_id, target_user_id)

    async def activity(
        self,
        invitation: Invitation,
        activity_type: ActivityType,
        actor_id: Optional[UUID] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> None:
        self.db.add(
            InvitationActivity(
                invitation_id=invitation.id,
                activity_type=activity_type.value,
                actor_id=actor_id,
                recipient_email=invitation.email,
                team_id=invitation.team_id,
                office_id=invitation.effective_office_id,
                activity_metadata=jsonable_encoder(metadata or {}),
            )
        )
        try:
            await self.db.commit()
        except Exception as e:
            await self.db.rollback()
            logger.error("Failed to write invitation activity %s: %s", activity_type.value, e, exc_info=e)

    @asynccontextmanager
    async def guard(self, action: str, actor_id: Optional[UUID], details: Optional[Dict[str, Any]] = None):
        """
        Record ``<action>_failed`` when the wrapped block raises a domain error.

        Success entries are written by the services themselves, since only
        they know the final target and details.
        """
        try:
            yield
        except OnboardingError as e:
            await self.db.rollback()
            await self.record(
                f"{action}_failed",
                actor_id,
                details={**(details or {}), "code": e.code, "message": e.message, **e.details},
                severity=AuditSeverity.warning,
            )
            raise
