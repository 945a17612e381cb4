"""ORM models; importing this package registers every table with ``Base``."""

from .admin_action import AdminAction
from .notification import Audience, Notification, NotificationRead, NotificationRecipient
from .registration import Registration
from .team import Team
from .team_member import TeamMember
from .tournament import Tournament, TournamentStatus
from .user import User

__all__ = [
    "AdminAction",
    "Audience",
    "Notification",
    "NotificationRead",
    "NotificationRecipient",
    "Registration",
    "Team",
    "TeamMember",
    "Tournament",
    "TournamentStatus",
    "User",
]
