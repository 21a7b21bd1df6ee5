"""
Office model: maps to the offices table.
"""

import uuid
from datetime import datetime

from sqlalchemy import Column, Text, Uuid
from sqlalchemy.orm import Mapped

from .base import Base, UTCDateTime, utcnow


class Office(Base):
    __tablename__ = "offices"

    id: Mapped[uuid.UUID] = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    name: Mapped[str] = Column(Text, nullable=False)
    created_at: Mapped[datetime] = Column(UTCDateTime, default=utcnow)
