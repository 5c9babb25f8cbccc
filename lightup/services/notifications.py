"""
Lightup Notification Service

Persists user notifications and fans each new one out on the event bus.
"""

from typing import List, Optional

from lightup.db.database import Database
from lightup.models.domain import Card, Notification, NotificationType
from lightup.services.base import Service, ServiceContext
from lightup.services.events import EventBroadcaster, NotificationCreated


class NotificationService(Service):
    def __init__(self, context: ServiceContext, db: Database, bus: EventBroadcaster) -> None:
        super().__init__(context)
        self.db = db
        self.bus = bus

    def notify(
        self,
        notification_type: str,
        title: str,
        message: str,
        *,
        card_id: Optional[str] = None,
        board_id: Optional[str] = None,
        user_id: Optional[str] = None,
    ) -> Notification:
        notification = self.db.create_notification(
            notification_type=notification_type,
            title=title,
            message=message,
            card_id=card_id,
            board_id=board_id,
            user_id=user_id,
        )
        self.bus.publish(NotificationCreated(notification=notification.to_dict()))
        self.logger.info(
            "notification_created",
            extra=self.log_extra(card_id=card_id, notification_type=notification_type),
        )
        return notification

    def review_requested(self, card: Card) -> Notification:
        return self.notify(
            NotificationType.REVIEW_REQUESTED,
            f"Review requested: {card.title}",
            f"Card \"{card.title}\" is ready for review.",
            card_id=card.id,
            board_id=card.board_id,
        )

    def ai_failed(self, card: Card) -> Notification:
        return self.notify(
            NotificationType.AI_FAILED,
            f"AI dispatch failed: {card.title}",
            f"The agent could not start work on \"{card.title}\".",
            card_id=card.id,
            board_id=card.board_id,
        )

    def list(self, *, unread_only: bool = False) -> List[Notification]:
        return self.db.list_notifications(unread_only=unread_only)

    def mark_read(self, notification_id: str) -> Notification:
        return self.db.mark_notification_read(notification_id)

    def mark_all_read(self) -> int:
        return self.db.mark_all_notifications_read()

    def delete(self, notification_id: str) -> None:
        self.db.delete_notification(notification_id)
