from .audit_logs import AuditLog
from .base import Base
from .invitation_activity import InvitationActivity
from .invitations import Invitation
from .offices import Office
from .profiles import Profile
from .team_members import TeamMember
from .teams import Team
from .user_roles import UserRole

__all__ = [
    "AuditLog",
    "Base",
    "Invitation",
    "InvitationActivity",
    "Office",
    "Profile",
    "Team",
    "TeamMember",
    "UserRole",
]
