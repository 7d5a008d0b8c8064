"""
Notification Sink

The core only decides *that* a user should be told about something. It hands
a NotificationRequest to a sink; delivery (push, SMS, email) happens outside
this service. The default sink stores a notifications row that the delivery
workers pick up.
"""
from dataclasses import dataclass
from typing import List, Optional, Protocol

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from freightguard.core.logging import api_logger
from freightguard.db.enums import NotificationType
from freightguard.db.models import Notification


@dataclass(frozen=True)
class NotificationRequest:
    user_id: int
    type: NotificationType
    title: str
    message: str
    related_id: Optional[str] = None
    related_type: Optional[str] = None


class NotificationSink(Protocol):
    async def send(self, request: NotificationRequest) -> None:
        ...


class DatabaseNotificationSink:
    """Writes requests to the notifications table inside the caller's transaction."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def send(self, request: NotificationRequest) -> None:
        notification = Notification(
            user_id=request.user_id,
            type=NotificationType(request.type).value,
            title=request.title,
            message=request.message,
            related_id=request.related_id,
            related_type=request.related_type,
            is_read=False,
        )
        self.db.add(notification)
        await self.db.flush()
        api_logger.info(
            "notification_queued",
            user_id=request.user_id,
            type=notification.type,
            related_id=request.related_id,
        )


async def get_user_notifications(
    db: AsyncSession,
    user_id: int,
    unread_only: bool = False,
    limit: int = 50,
) -> List[Notification]:
    query = select(Notification).where(Notification.user_id == user_id)
    if unread_only:
        query = query.where(Notification.is_read == False)  # noqa: E712
    query = query.order_by(Notification.created_at.desc(), Notification.id.desc()).limit(limit)
    result = await db.execute(query)
    return list(result.scalars().all())
