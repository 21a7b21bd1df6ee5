"""
Profile model: maps to the profiles table.

A profile shares its id with the identity-store credential.
"""

import uuid
from datetime import date, datetime
from typing import Optional

from sqlalchemy import Boolean, Column, Date, ForeignKey, Text, Uuid
from sqlalchemy.orm import Mapped

from .base import Base, UTCDateTime, utcnow
from .enums import ProfileStatus


class Profile(Base):
    __tablename__ = "profiles"

    id: Mapped[uuid.UUID] = Column(Uuid(as_uuid=True), primary_key=True)
    email: Mapped[str] = Column(Text, nullable=False, index=True)
    original_email: Mapped[Optional[str]] = Column(Text, nullable=True)
    full_name: Mapped[Optional[str]] = Column(Text, nullable=True)
    mobile: Mapped[Optional[str]] = Column(Text, nullable=True)
    birthday: Mapped[Optional[date]] = Column(Date, nullable=True)
    status: Mapped[str] = Column(Text, nullable=False, default=ProfileStatus.active.value)
    office_id: Mapped[Optional[uuid.UUID]] = Column(
        Uuid(as_uuid=True), ForeignKey("offices.id", ondelete="SET NULL"), nullable=True
    )
    primary_team_id: Mapped[Optional[uuid.UUID]] = Column(
        Uuid(as_uuid=True), ForeignKey("teams.id", ondelete="SET NULL"), nullable=True
    )
    password_set: Mapped[bool] = Column(Boolean, nullable=False, default=False)
    onboarding_completed: Mapped[bool] = Column(Boolean, nullable=False, default=False)
    archived_at: Mapped[Optional[datetime]] = Column(UTCDateTime, nullable=True)
    created_at: Mapped[datetime] = Column(UTCDateTime, default=utcnow)
    updated_at: Mapped[datetime] = Column(UTCDateTime, default=utcnow, onupdate=utcnow)

    @property
    def is_active(self) -> bool:
        return self.status == ProfileStatus.active.value
