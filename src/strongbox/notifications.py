# Notification Broker
#
# In-process publish/subscribe for backup lifecycle notifications.
# Subscribers register a callback per user id; publish() delivers to the
# notification's user and (optionally) agent, then to global listeners.
#
# Design:
#   - One broker instance is created by the application and injected into
#     whatever publishes or subscribes.  There is no module-level singleton.
#   - Delivery is fire-and-forget: a failing callback is logged, never
#     raised back to the publisher.
#   - Recent notifications are kept in a bounded history for read/unread
#     queries.

import logging
import threading
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Deque, Dict, List, Optional, Set
from uuid import uuid4

logger = logging.getLogger(__name__)

DEFAULT_MAX_HISTORY = 1000

SYSTEM_USER_ID = 0


class NotificationType(str, Enum):
    BACKUP_CREATED = "backup_created"
    BACKUP_FAILED = "backup_failed"
    BACKUP_RESTORED = "backup_restored"
    RESTORE_FAILED = "restore_failed"
    RETENTION_COMPLETED = "retention_completed"


class NotificationPriority(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    URGENT = "urgent"


@dataclass
class Notification:
    """A single notification delivered to subscribers."""
    type: NotificationType
    title: str
    message: str
    user_id: int = SYSTEM_USER_ID
    agent_id: Optional[int] = None
    priority: NotificationPriority = NotificationPriority.MEDIUM
    data: Dict[str, Any] = field(default_factory=dict)
    id: str = field(default_factory=lambda: f"notif_{uuid4().hex[:12]}")
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    is_read: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "type": self.type.value,
            "title": self.title,
            "message": self.message,
            "user_id": self.user_id,
            "agent_id": self.agent_id,
            "priority": self.priority.value,
            "data": dict(self.data),
            "timestamp": self.timestamp.isoformat(),
            "is_read": self.is_read,
        }


Callback = Callable[[Notification], None]


class NotificationBroker:
    """Per-user subscriber registry with bounded notification history.

    Args:
        max_history: Maximum notifications retained in memory.
    """

    def __init__(self, max_history: int = DEFAULT_MAX_HISTORY):
        self._lock = threading.RLock()
        self._subscribers: Dict[int, Set[Callback]] = {}
        self._listeners: List[Callback] = []
        self._history: Deque[Notification] = deque(maxlen=max_history)

    # ------------------------------------------------------------------
    # Subscriptions
    # ------------------------------------------------------------------

    def subscribe(self, user_id: int, callback: Callback) -> Callable[[], None]:
        """Register a callback for one user.  Returns an unsubscribe function."""
        with self._lock:
            self._subscribers.setdefault(user_id, set()).add(callback)
        return lambda: self.unsubscribe(user_id, callback)

    def unsubscribe(self, user_id: int, callback: Callback) -> None:
        with self._lock:
            callbacks = self._subscribers.get(user_id)
            if not callbacks:
                return
            callbacks.discard(callback)
            if not callbacks:
                del self._subscribers[user_id]

    def add_listener(self, callback: Callback) -> Callable[[], None]:
        """Register a callback that receives every notification."""
        with self._lock:
            self._listeners.append(callback)

        def _remove():
            with self._lock:
                if callback in self._listeners:
                    self._listeners.remove(callback)

        return _remove

    # ------------------------------------------------------------------
    # Publishing
    # ------------------------------------------------------------------

    def publish(self, notification: Notification) -> int:
        """Record and deliver a notification.  Returns callbacks invoked."""
        with self._lock:
            self._history.append(notification)
            targets: List[Callback] = list(
                self._subscribers.get(notification.user_id, ())
            )
            if (
                notification.agent_id is not None
                and notification.agent_id != notification.user_id
            ):
                targets.extend(self._subscribers.get(notification.agent_id, ()))
            targets.extend(self._listeners)

        # Deliver outside the lock so callbacks may call back into the broker
        delivered = 0
        for callback in targets:
            try:
                callback(notification)
                delivered += 1
            except Exception:
                logger.warning(
                    "Notification callback failed for %s", notification.id,
                    exc_info=True,
                )
        return delivered

    # ------------------------------------------------------------------
    # History
    # ------------------------------------------------------------------

    def get_history(self, limit: int = 50) -> List[Notification]:
        """Most recent notifications, oldest first."""
        with self._lock:
            items = list(self._history)
        return items[-limit:] if limit > 0 else []

    def get_unread(self, user_id: int) -> List[Notification]:
        with self._lock:
            return [
                n for n in self._history
                if (n.user_id == user_id or n.agent_id == user_id) and not n.is_read
            ]

    def mark_as_read(self, notification_id: str) -> bool:
        with self._lock:
            for n in self._history:
                if n.id == notification_id:
                    n.is_read = True
                    return True
        return False

    def delete_notification(self, notification_id: str) -> bool:
        with self._lock:
            for n in self._history:
                if n.id == notification_id:
                    self._history.remove(n)
                    return True
        return False

    def clear_history(self) -> None:
        with self._lock:
            self._history.clear()

    def get_statistics(self) -> Dict[str, Any]:
        """Totals by type and priority, plus subscribed user count."""
        with self._lock:
            by_type: Dict[str, int] = {}
            by_priority: Dict[str, int] = {}
            for n in self._history:
                by_type[n.type.value] = by_type.get(n.type.value, 0) + 1
                by_priority[n.priority.value] = by_priority.get(n.priority.value, 0) + 1
            return {
                "total_notifications": len(self._history),
                "by_type": by_type,
                "by_priority": by_priority,
                "subscribed_users": len(self._subscribers),
            }
