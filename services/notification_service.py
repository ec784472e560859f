"""Dashboard notifications for kinés."""

import logging
from typing import Any

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from core.constants import NotificationType
from core.exceptions import NotFoundError
from database.models import Notification
from utils.log_sanitizer import sanitize_id

logger = logging.getLogger(__name__)


class NotificationService:
    """Creates and reads kiné notifications."""

    def __init__(self, db_session: AsyncSession) -> None:
        self.db = db_session

    async def create_notification(
        self,
        kine_id: int,
        notification_type: NotificationType,
        title: str,
        message: str,
        patient_id: int | None = None,
        programme_id: int | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> Notification:
        """
        Stage a notification in the current transaction.

        The caller owns the commit, so a notification written by a webhook
        handler is persisted together with the state change it reports.
        """
        notification = Notification(
            kine_id=kine_id,
            type=notification_type.value,
            title=title,
            message=message,
            patient_id=patient_id,
            programme_id=programme_id,
            notification_metadata=metadata or {},
        )
        self.db.add(notification)
        await self.db.flush()

        logger.info(
            f"Notification {notification_type.value} created for kiné {sanitize_id(kine_id)}"
        )
        return notification

    async def list_for_kine(
        self, kine_id: int, unread_only: bool = False, limit: int = 50, offset: int = 0
    ) -> tuple[list[Notification], int]:
        """Return a page of notifications, newest first, and the unread count."""
        query = select(Notification).where(Notification.kine_id == kine_id)
        if unread_only:
            query = query.where(Notification.is_read.is_(False))
        query = (
            query.order_by(Notification.created_at.desc(), Notification.id.desc())
            .limit(limit)
            .offset(offset)
        )
        result = await self.db.execute(query)
        notifications = list(result.scalars().all())

        unread = await self.db.execute(
            select(func.count(Notification.id)).where(
                Notification.kine_id == kine_id, Notification.is_read.is_(False)
            )
        )
        return notifications, int(unread.scalar_one())

    async def mark_read(self, kine_id: int, notification_id: int) -> Notification:
        result = await self.db.execute(
            select(Notification).where(
                Notification.id == notification_id, Notification.kine_id == kine_id
            )
        )
        notification = result.scalar_one_or_none()
        if not notification:
            raise NotFoundError("Notification not found")

        notification.is_read = True
        await self.db.commit()
        return notification

    async def mark_all_read(self, kine_id: int) -> int:
        result = await self.db.execute(
            update(Notification)
            .where(Notification.kine_id == kine_id, Notification.is_read.is_(False))
            .values(is_read=True)
            .execution_options(synchronize_session=False)
        )
        await self.db.commit()
        return int(result.rowcount or 0)
