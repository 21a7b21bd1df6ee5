"""
Enum definitions for roles, access levels and lifecycle states.
Uses (str, Enum) pattern so values serialize correctly in Pydantic.
"""

from enum import Enum


class AppRole(str, Enum):
    platform_admin = "platform_admin"
    office_manager = "office_manager"
    team_leader = "team_leader"
    salesperson = "salesperson"
    assistant = "assistant"


class AccessLevel(str, Enum):
    admin = "admin"
    edit = "edit"
    member = "member"


class ProfileStatus(str, Enum):
    active = "active"
    inactive = "inactive"
    suspended = "suspended"
    archived = "archived"


class InvitationStatus(str, Enum):
    pending = "pending"
    accepted = "accepted"
    expired = "expired"
    revoked = "revoked"


class AuditSeverity(str, Enum):
    info = "info"
    warning = "warning"
    critical = "critical"


class ActivityType(str, Enum):
    created = "created"
    sent = "sent"
    reminder_sent = "reminder_sent"
    accepted = "accepted"
    expired = "expired"
    revoked = "revoked"
    removed = "removed"
