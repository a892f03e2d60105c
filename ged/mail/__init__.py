"""
GED Mail ("courrier") workflow and responsible-user notifications.
"""

from ged.mail.models import Mail, MailNotificationView, MailPriority, MailStatus, MailType
from ged.mail.notifications import NotificationRouter
from ged.mail.workflow import MailWorkflow

__all__ = [
    "Mail",
    "MailNotificationView",
    "MailPriority",
    "MailStatus",
    "MailType",
    "MailWorkflow",
    "NotificationRouter",
]
