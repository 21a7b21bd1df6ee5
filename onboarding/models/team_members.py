"""
Team membership model: maps to the team_members table.
"""

import uuid
from datetime import datetime

from sqlalchemy import Column, Enum, ForeignKey, UniqueConstraint, Uuid
from sqlalchemy.orm import Mapped

from .base import Base, UTCDateTime, utcnow
from .enums import AccessLevel


class TeamMember(Base):
    __tablename__ = "team_members"
    __table_args__ = (
        UniqueConstraint("user_id", "team_id", name="uq_team_members_user_team"),
    )

    id: Mapped[uuid.UUID] = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    user_id: Mapped[uuid.UUID] = Column(
        Uuid(as_uuid=True), ForeignKey("profiles.id", ondelete="CASCADE"), nullable=False
    )
    team_id: Mapped[uuid.UUID] = Column(
        Uuid(as_uuid=True), ForeignKey("teams.id", ondelete="CASCADE"), nullable=False
    )
    access_level: Mapped[AccessLevel] = Column(
        Enum(AccessLevel, name="access_level", values_callable=lambda e: [m.value for m in e]),
        nullable=False,
        default=AccessLevel.member,
    )
    joined_at: Mapped[datetime] = Column(UTCDateTime, default=utcnow)
