"""
In-app notifications for swap activity.
"""

from __future__ import annotations

import logging
from typing import Optional

from rewear.db import NOTIFICATION_TYPES, DbClient, NotificationRecord
from rewear.errors import BackendError, NotFound, PermissionDenied
from rewear.realtime import ChangeFeed, Subscription, emit, notifications_channel

logger = logging.getLogger(__name__)

DEFAULT_MESSAGES = {
    "swap_requested": "Someone wants to swap with your item",
    "swap_accepted": "Your swap request was accepted!",
    "swap_rejected": "Your swap request was declined",
    "swap_completed": "Swap completed successfully",
}


def notify(
    db: DbClient,
    user_id: str,
    type: str,
    related_id: Optional[str] = None,
    message: Optional[str] = None,
    feed: Optional[ChangeFeed] = None,
) -> NotificationRecord:
    if type not in NOTIFICATION_TYPES:
        raise ValueError(f"Unknown notification type: {type}")
    notification = NotificationRecord(
        user_id=user_id,
        type=type,
        related_id=related_id,
        message=message or DEFAULT_MESSAGES[type],
    )
    db.insert_notification(notification)
    emit(feed, "notifications", "INSERT", new=notification.as_dict())
    return notification


def get_user_notifications(db: DbClient, user_id: str) -> list[NotificationRecord]:
    try:
        return db.list_notifications(user_id)
    except Exception as exc:
        logger.exception("notifications.get_user_notifications error: %s", exc)
        raise BackendError("Failed to load notifications.") from exc


def unread_count(db: DbClient, user_id: str) -> int:
    return sum(1 for n in get_user_notifications(db, user_id) if not n.is_read)


def mark_as_read(db: DbClient, actor_id: str, notification_id: str) -> None:
    notification = db.get_notification(notification_id)
    if not notification:
        raise NotFound("Notification not found")
    if notification.user_id != actor_id:
        raise PermissionDenied("Not your notification")
    try:
        db.mark_notification_read(notification_id)
    except Exception as exc:
        logger.exception("notifications.mark_as_read error: %s", exc)
        raise BackendError("Failed to mark notification as read.") from exc


def mark_all_as_read(db: DbClient, user_id: str) -> int:
    try:
        return db.mark_all_notifications_read(user_id)
    except Exception as exc:
        logger.exception("notifications.mark_all_as_read error: %s", exc)
        raise BackendError("Failed to mark all notifications as read.") from exc


def subscribe_to_notifications(feed: ChangeFeed, user_id: str) -> Subscription:
    channel, filters = notifications_channel(user_id)
    return feed.subscribe(channel, filters)
