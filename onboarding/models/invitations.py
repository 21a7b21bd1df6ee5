"""
Invitation model: maps to the invitations table.

team_id and office_id carry no foreign key so dangling references survive
for the cleanup tools to find.
"""

import uuid
from datetime import datetime
from typing import Optional

from sqlalchemy import Column, Enum, Index, Text, Uuid, text
from sqlalchemy.orm import Mapped

from .base import Base, UTCDateTime, utcnow
from .enums import AppRole, InvitationStatus


class Invitation(Base):
    __tablename__ = "invitations"
    __table_args__ = (
        # At most one pending invitation per email
        Index(
            "uq_invitations_pending_email",
            "email",
            unique=True,
            postgresql_where=text("status = 'pending'"),
            sqlite_where=text("status = 'pending'"),
        ),
    )

    id: Mapped[uuid.UUID] = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    email: Mapped[str] = Column(Text, nullable=False)
    full_name: Mapped[Optional[str]] = Column(Text, nullable=True)
    role: Mapped[AppRole] = Column(
        Enum(AppRole, name="app_role", values_callable=lambda e: [m.value for m in e]),
        nullable=False,
    )
    team_id: Mapped[Optional[uuid.UUID]] = Column(Uuid(as_uuid=True), nullable=True)
    office_id: Mapped[Optional[uuid.UUID]] = Column(Uuid(as_uuid=True), nullable=True)
    agency_id: Mapped[Optional[uuid.UUID]] = Column(Uuid(as_uuid=True), nullable=True)
    invite_code: Mapped[str] = Column(Text, nullable=False, unique=True)
    invited_by: Mapped[Optional[uuid.UUID]] = Column(Uuid(as_uuid=True), nullable=True)
    status: Mapped[str] = Column(Text, nullable=False, default=InvitationStatus.pending.value)
    expires_at: Mapped[datetime] = Column(UTCDateTime, nullable=False)
    accepted_at: Mapped[Optional[datetime]] = Column(UTCDateTime, nullable=True)
    created_at: Mapped[datetime] = Column(UTCDateTime, default=utcnow)

    @property
    def effective_office_id(self) -> Optional[uuid.UUID]:
        """Office id, falling back to the legacy agency column."""
        return self.office_id or self.agency_id
