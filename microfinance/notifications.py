"""
In-App Notifications Module

Notification records shown to borrowers and staff. Reminder notifications for
a term are created through ``create_once``, whose deterministic id makes the
record itself the per-day deduplication fence of the reminder sweep.
"""

from datetime import datetime, timezone, date
from dataclasses import dataclass
from enum import Enum
from typing import Dict, List, Optional, Any
import uuid

from .storage import StorageInterface, StorageRecord
from .dates import business_date, parse_date, parse_datetime
from .exceptions import RecordNotFound
from .logging_config import get_logger

logger = get_logger("microfinance.notifications")

FENCE_NAMESPACE = uuid.UUID("6f1c3b8e-2f7a-4d5e-9b0c-8a4e2d1f7c55")


class NotificationType(Enum):
    PAYMENT_PENDING = "PAYMENT_PENDING"
    PAYMENT_APPROVED = "PAYMENT_APPROVED"
    PAYMENT_REJECTED = "PAYMENT_REJECTED"
    PAYMENT_DUE_SOON = "PAYMENT_DUE_SOON"
    PAYMENT_OVERDUE = "PAYMENT_OVERDUE"
    APPLICATION_PENDING = "APPLICATION_PENDING"
    BORROWER_PENDING = "BORROWER_PENDING"
    LOAN_APPROVED = "LOAN_APPROVED"
    LOAN_REJECTED = "LOAN_REJECTED"
    LOAN_COMPLETED = "LOAN_COMPLETED"


DEFAULT_ICONS = {
    NotificationType.PAYMENT_PENDING: "clock",
    NotificationType.PAYMENT_APPROVED: "check-circle",
    NotificationType.PAYMENT_REJECTED: "x-circle",
    NotificationType.PAYMENT_DUE_SOON: "calendar",
    NotificationType.PAYMENT_OVERDUE: "alert-triangle",
    NotificationType.LOAN_APPROVED: "check-circle",
    NotificationType.LOAN_REJECTED: "x-circle",
    NotificationType.LOAN_COMPLETED: "award",
}


@dataclass
class Notification(StorageRecord):
    user_id: str
    type: NotificationType
    title: str
    message: str
    day: date  # Business-timezone calendar day of creation
    link: Optional[str] = None
    entity_type: Optional[str] = None
    entity_id: Optional[str] = None
    icon: Optional[str] = None
    is_read: bool = False
    read_at: Optional[datetime] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Notification':
        data = dict(data)
        data['type'] = NotificationType(data['type'])
        data['day'] = parse_date(data['day'])
        data['read_at'] = parse_datetime(data.get('read_at'))
        return super().from_dict(data)


def fence_id(user_id: str, notification_type: NotificationType, entity_type: str,
             entity_id: str, day: date) -> str:
    """Deterministic notification id for one (user, type, entity, day)"""
    key = f"{user_id}|{notification_type.value}|{entity_type}|{entity_id}|{day.isoformat()}"
    return str(uuid.uuid5(FENCE_NAMESPACE, key))


class NotificationCenter:
    """
    Creates and reads in-app notifications
    """

    def __init__(self, storage: StorageInterface, table_name: str = "notifications"):
        self.storage = storage
        self.table_name = table_name

    def _build(self, notification_id: str, user_id: str, notification_type: NotificationType,
               title: str, message: str, link: Optional[str], entity_type: Optional[str],
               entity_id: Optional[str], icon: Optional[str], now: datetime) -> Notification:
        return Notification(
            id=notification_id,
            created_at=now,
            updated_at=now,
            user_id=user_id,
            type=notification_type,
            title=title,
            message=message,
            day=business_date(now),
            link=link,
            entity_type=entity_type,
            entity_id=entity_id,
            icon=icon or DEFAULT_ICONS.get(notification_type)
        )

    def create_notification(
        self,
        user_id: str,
        notification_type: NotificationType,
        title: str,
        message: str,
        link: Optional[str] = None,
        entity_type: Optional[str] = None,
        entity_id: Optional[str] = None,
        icon: Optional[str] = None,
        now: Optional[datetime] = None
    ) -> Optional[Notification]:
        """
        Create a notification

        Notifications accompany other actions, so a storage failure here is
        logged and reported as None instead of failing the caller.
        """
        now = now or datetime.now(timezone.utc)
        notification = self._build(str(uuid.uuid4()), user_id, notification_type, title, message,
                                   link, entity_type, entity_id, icon, now)
        try:
            self.storage.save(self.table_name, notification.id, notification.to_dict())
        except Exception:
            logger.exception(f"Failed to create {notification_type.value} notification for user {user_id}")
            return None
        logger.debug(f"Created notification {notification.id} ({notification_type.value}) for user {user_id}")
        return notification

    def create_once(
        self,
        user_id: str,
        notification_type: NotificationType,
        title: str,
        message: str,
        entity_type: str,
        entity_id: str,
        link: Optional[str] = None,
        icon: Optional[str] = None,
        now: Optional[datetime] = None
    ) -> Optional[Notification]:
        """
        Create the notification for (user, type, entity, today) unless it exists

        Returns:
            The new notification, or None if one was already created today
        """
        now = now or datetime.now(timezone.utc)
        notification_id = fence_id(user_id, notification_type, entity_type, entity_id, business_date(now))
        notification = self._build(notification_id, user_id, notification_type, title, message,
                                   link, entity_type, entity_id, icon, now)
        if not self.storage.insert(self.table_name, notification.id, notification.to_dict()):
            return None
        return notification

    def exists_for_day(self, user_id: str, notification_type: NotificationType,
                       entity_type: str, entity_id: str, day: date) -> bool:
        return self.storage.exists(
            self.table_name, fence_id(user_id, notification_type, entity_type, entity_id, day)
        )

    def get_notification(self, notification_id: str) -> Optional[Notification]:
        data = self.storage.load(self.table_name, notification_id)
        return Notification.from_dict(data) if data else None

    def get_notifications(self, user_id: str, unread_only: bool = False,
                          limit: int = 50) -> List[Notification]:
        """Unread notifications first, newest first, then read ones up to limit"""
        notifications = [Notification.from_dict(d)
                         for d in self.storage.find(self.table_name, {'user_id': user_id})]
        unread = sorted((n for n in notifications if not n.is_read),
                        key=lambda n: n.created_at, reverse=True)
        if unread_only:
            return unread
        read = sorted((n for n in notifications if n.is_read),
                      key=lambda n: n.created_at, reverse=True)
        return unread + read[:max(0, limit - len(unread))]

    def get_entity_notifications(self, entity_type: str, entity_id: str) -> List[Notification]:
        notifications = [Notification.from_dict(d) for d in self.storage.find(
            self.table_name, {'entity_type': entity_type, 'entity_id': entity_id})]
        return sorted(notifications, key=lambda n: n.created_at)

    def unread_count(self, user_id: str) -> int:
        return len(self.storage.find(self.table_name, {'user_id': user_id, 'is_read': False}))

    def mark_as_read(self, notification_id: str, user_id: str) -> Notification:
        notification = self.get_notification(notification_id)
        if notification is None or notification.user_id != user_id:
            raise RecordNotFound(f"Notification {notification_id} not found")
        if not notification.is_read:
            now = datetime.now(timezone.utc)
            notification.is_read = True
            notification.read_at = now
            notification.updated_at = now
            self.storage.save(self.table_name, notification.id, notification.to_dict())
        return notification

    def mark_all_read(self, user_id: str) -> int:
        """Mark every unread notification of a user as read; returns how many changed"""
        now = datetime.now(timezone.utc)
        count = 0
        with self.storage.atomic():
            for data in self.storage.find(self.table_name, {'user_id': user_id, 'is_read': False}):
                notification = Notification.from_dict(data)
                notification.is_read = True
                notification.read_at = now
                notification.updated_at = now
                self.storage.save(self.table_name, notification.id, notification.to_dict())
                count += 1
        return count
