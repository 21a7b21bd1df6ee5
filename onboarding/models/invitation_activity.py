"""
Invitation activity model: maps to the invitation_activity_log table.
"""

import uuid
from datetime import datetime
from typing import Any, Dict, Optional

from sqlalchemy import JSON, Column, Text, Uuid
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped

from .base import Base, UTCDateTime, utcnow


class InvitationActivity(Base):
    __tablename__ = "invitation_activity_log"

    id: Mapped[uuid.UUID] = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    invitation_id: Mapped[uuid.UUID] = Column(Uuid(as_uuid=True), nullable=False, index=True)
    activity_type: Mapped[str] = Column(Text, nullable=False)
    actor_id: Mapped[Optional[uuid.UUID]] = Column(Uuid(as_uuid=True), nullable=True)
    recipient_email: Mapped[Optional[str]] = Column(Text, nullable=True)
    team_id: Mapped[Optional[uuid.UUID]] = Column(Uuid(as_uuid=True), nullable=True)
    office_id: Mapped[Optional[uuid.UUID]] = Column(Uuid(as_uuid=True), nullable=True)
    # "metadata" is reserved on declarative classes
    activity_metadata: Mapped[Optional[Dict[str, Any]]] = Column(
        "metadata", JSON().with_variant(JSONB(), "postgresql"), nullable=True
    )
    created_at: Mapped[datetime] = Column(UTCDateTime, default=utcnow)
