"""
Notifications

Delivery of site up/down notifications.
"""

from sitewatch.notifications.models import (
    Notification,
    NotificationChannel,
    NotificationKind,
)
from sitewatch.notifications.router import (
    NotificationRouter,
    Notifier,
    get_notification_router,
)

__all__ = [
    "Notification",
    "NotificationChannel",
    "NotificationKind",
    "NotificationRouter",
    "Notifier",
    "get_notification_router",
]
