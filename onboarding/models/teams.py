"""
Team model: maps to the teams table.
"""

import uuid
from datetime import datetime
from typing import Optional

from sqlalchemy import Boolean, Column, ForeignKey, Index, Text, Uuid, text
from sqlalchemy.orm import Mapped

from .base import Base, UTCDateTime, utcnow


class Team(Base):
    __tablename__ = "teams"
    __table_args__ = (
        # One personal team per (user, office)
        Index(
            "uq_teams_personal_owner_office",
            "created_by",
            "office_id",
            unique=True,
            postgresql_where=text("is_personal_team = true"),
            sqlite_where=text("is_personal_team = 1"),
        ),
    )

    id: Mapped[uuid.UUID] = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    name: Mapped[str] = Column(Text, nullable=False)
    office_id: Mapped[uuid.UUID] = Column(
        Uuid(as_uuid=True), ForeignKey("offices.id", ondelete="CASCADE"), nullable=False
    )
    team_code: Mapped[Optional[str]] = Column(Text, nullable=True)
    is_personal_team: Mapped[bool] = Column(Boolean, nullable=False, default=False)
    created_by: Mapped[Optional[uuid.UUID]] = Column(Uuid(as_uuid=True), nullable=True)
    created_at: Mapped[datetime] = Column(UTCDateTime, default=utcnow)
