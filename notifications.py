"""
Notifications Module

Transient operator notifications: every pipeline outcome ends up here as a
success or error message, with an optional detail block (e.g. a build log).
The presentation layer drains them.
"""

from collections import deque
from typing import Deque, List, Optional

from models import Notification
from utils import logger

MAX_PENDING = 100


class Notifier:
    """Bounded queue of pending notifications"""

    def __init__(self, max_pending: int = MAX_PENDING):
        self._pending: Deque[Notification] = deque(maxlen=max_pending)

    def push(self, notification: Notification) -> Notification:
        self._pending.append(notification)
        logger.info(
            "Notification",
            level=notification.level,
            message=notification.message,
            has_detail=notification.detail is not None,
        )
        return notification

    def success(self, message: str) -> Notification:
        return self.push(Notification(level="success", message=message))

    def error(self, message: str, detail: Optional[str] = None) -> Notification:
        return self.push(Notification(level="error", message=message, detail=detail))

    def info(self, message: str) -> Notification:
        return self.push(Notification(level="info", message=message))

    def pending(self) -> List[Notification]:
        return list(self._pending)

    def drain(self) -> List[Notification]:
        drained = list(self._pending)
        self._pending.clear()
        return drained
