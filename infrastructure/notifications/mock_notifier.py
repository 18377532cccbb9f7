import logging
from typing import Any, Dict, List

from .interface import NotifierInterface

logger = logging.getLogger(__name__)


class MockNotifier(NotifierInterface):
    """Records notifications in memory for verification."""

    def __init__(self):
        self.notifications: List[Dict[str, Any]] = []
        self.emails: List[Dict[str, Any]] = []

    def notify(self, user_id, title, body, notification_type, payload=None) -> None:
        logger.info(f"[MOCK NOTIFY] user={user_id} title={title}")
        self.notifications.append(
            {
                "user_id": str(user_id),
                "title": title,
                "body": body,
                "type": notification_type,
                "payload": payload or {},
            }
        )

    def email_notify(self, to, subject, template, data=None) -> None:
        logger.info(f"[MOCK NOTIFY] email template={template}")
        self.emails.append({"to": to, "subject": subject, "template": template, "data": data or {}})

    def titles_for(self, user_id) -> List[str]:
        return [n["title"] for n in self.notifications if n["user_id"] == str(user_id)]

    def clear(self):
        self.notifications.clear()
        self.emails.clear()
