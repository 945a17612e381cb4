"""Domain services: registration, status lifecycle, rosters, notifications."""

from .notifications import NotificationCleanup, get_notification_cleanup
from .status_updater import StatusUpdater, get_status_updater

__all__ = [
    "NotificationCleanup",
    "StatusUpdater",
    "get_notification_cleanup",
    "get_status_updater",
]
