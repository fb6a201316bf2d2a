"""
In-process notification services.

Delivery (email, push, in-app feed) belongs to another system; these
implementations record what the workflow asked to send and fan it out to
local subscribers.
"""

import logging
import threading
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

from ..core.entities import utcnow
from ..core.enums import NotificationKind
from ..core.interfaces import NotificationService


logger = logging.getLogger(__name__)


@dataclass
class Notification:
    """A notification the workflow queued for a user."""
    user_id: str
    kind: NotificationKind
    payload: Dict[str, Any]
    notification_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    created_at: datetime = field(default_factory=utcnow)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.notification_id,
            'userId': self.user_id,
            'kind': self.kind.value,
            'payload': dict(self.payload),
            'createdAt': self.created_at.isoformat(),
        }


class InMemoryNotificationService(NotificationService):
    """Thread-safe notification outbox with publish/subscribe."""

    def __init__(self, max_history: int = 10000):
        self._notifications: List[Notification] = []
        self._subscribers: Dict[str, Callable[[Notification], None]] = {}
        self._max_history = max_history
        self._lock = threading.RLock()

    def notify(self, user_id: str, kind: NotificationKind, payload: Dict[str, Any]) -> None:
        notification = Notification(user_id=user_id, kind=NotificationKind(kind), payload=dict(payload))
        with self._lock:
            self._notifications.append(notification)
            if len(self._notifications) > self._max_history:
                self._notifications = self._notifications[-self._max_history:]
            subscribers = list(self._subscribers.items())

        logger.debug("Queued %s notification for user %s", notification.kind.value, user_id)
        for subscriber_id, callback in subscribers:
            try:
                callback(notification)
            except Exception:
                # subscriber failures never reach the caller
                logger.exception("Error notifying subscriber %s", subscriber_id)

    def subscribe(self, subscriber_id: str, callback: Callable[[Notification], None]) -> None:
        """Subscribe to notifications."""
        with self._lock:
            self._subscribers[subscriber_id] = callback

    def unsubscribe(self, subscriber_id: str) -> None:
        """Unsubscribe from notifications."""
        with self._lock:
            self._subscribers.pop(subscriber_id, None)

    @property
    def sent(self) -> List[Notification]:
        with self._lock:
            return list(self._notifications)

    def for_user(self, user_id: str, kind: Optional[NotificationKind] = None) -> List[Notification]:
        with self._lock:
            return [
                n for n in self._notifications
                if n.user_id == user_id and (kind is None or n.kind is kind)
            ]

    def clear(self) -> None:
        with self._lock:
            self._notifications.clear()


class LoggingNotificationService(NotificationService):
    """Writes each notification to the log; used when no outbox is wired."""

    def notify(self, user_id: str, kind: NotificationKind, payload: Dict[str, Any]) -> None:
        logger.info("Notification %s for user %s: %s", NotificationKind(kind).value, user_id, payload)
