"""
Notification Service.

Creates in-app notifications for dispatch escalations.
"""

from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select
from typing import Optional, Dict, Any

from ride_dispatch.app.models.notification import Notification, NotificationType
from ride_dispatch.app.models.user import User
from ride_dispatch.app.models.enums import UserRole


class NotificationService:

    @staticmethod
    async def broadcast(
        db: AsyncSession,
        title: str,
        message: str,
        role: Optional[UserRole] = None,
        type: NotificationType = NotificationType.INFO,
        metadata: Optional[Dict[str, Any]] = None
    ) -> int:
        """Notify all active users, optionally filtered by role. Caller commits."""
        query = select(User.id).where(User.is_active.is_(True))
        if role:
            query = query.where(User.role == role)

        result = await db.execute(query)
        user_ids = result.scalars().all()

        notifications = [
            Notification(
                user_id=uid,
                title=title,
                message=message,
                type=type,
                metadata_payload=metadata
            )
            for uid in user_ids
        ]

        if notifications:
            db.add_all(notifications)

        return len(notifications)
