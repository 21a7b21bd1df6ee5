"""
Role grant model: maps to the user_roles table.

A grant is active while revoked_at is null.
"""

import uuid
from datetime import datetime
from typing import Optional

from sqlalchemy import Column, Enum, Index, Uuid, text
from sqlalchemy.orm import Mapped

from .base import Base, UTCDateTime, utcnow
from .enums import AppRole


class UserRole(Base):
    __tablename__ = "user_roles"
    __table_args__ = (
        # One active grant per user and role
        Index(
            "uq_user_roles_active",
            "user_id",
            "role",
            unique=True,
            postgresql_where=text("revoked_at IS NULL"),
            sqlite_where=text("revoked_at IS NULL"),
        ),
    )

    id: Mapped[uuid.UUID] = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    user_id: Mapped[uuid.UUID] = Column(Uuid(as_uuid=True), nullable=False, index=True)
    role: Mapped[AppRole] = Column(
        Enum(AppRole, name="app_role", values_callable=lambda e: [m.value for m in e]),
        nullable=False,
    )
    granted_by: Mapped[Optional[uuid.UUID]] = Column(Uuid(as_uuid=True), nullable=True)
    granted_at: Mapped[datetime] = Column(UTCDateTime, default=utcnow)
    revoked_at: Mapped[Optional[datetime]] = Column(UTCDateTime, nullable=True)
    revoked_by: Mapped[Optional[uuid.UUID]] = Column(Uuid(as_uuid=True), nullable=True)
