"""
Audit log model: maps to the audit_logs table. Rows are append-only.
"""

import uuid
from datetime import datetime
from typing import Any, Dict, Optional

from sqlalchemy import JSON, Column, Text, Uuid
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped

from .base import Base, UTCDateTime, utcnow
from .enums import AuditSeverity


class AuditLog(Base):
    __tablename__ = "audit_logs"

    id: Mapped[uuid.UUID] = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    user_id: Mapped[Optional[uuid.UUID]] = Column(Uuid(as_uuid=True), nullable=True)
    action: Mapped[str] = Column(Text, nullable=False, index=True)
    target_user_id: Mapped[Optional[uuid.UUID]] = Column(Uuid(as_uuid=True), nullable=True)
    details: Mapped[Optional[Dict[str, Any]]] = Column(
        JSON().with_variant(JSONB(), "postgresql"), nullable=True
    )
    severity: Mapped[str] = Column(Text, nullable=False, default=AuditSeverity.info.value)
    created_at: Mapped[datetime] = Column(UTCDateTime, default=utcnow)
