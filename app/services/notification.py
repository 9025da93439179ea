from __future__ import annotations

import logging
from typing import List

from app.schemas.notification import Notification
from app.services.exceptions import Forbidden, NotFound
from app.services.mock_store import NotificationRepository, UserRepository

logger = logging.getLogger(__name__)


class NotificationService:
    def __init__(
        self,
        notifications: NotificationRepository,
        users: UserRepository,
        *,
        page_size: int = 20,
    ) -> None:
        self._notifications = notifications
        self._users = users
        self._page_size = page_size

    async def list_for_caller(self, caller_id: int) -> List[Notification]:
        provider = await self._users.find_provider_by_id(caller_id)
        if provider is None:
            raise Forbidden("Only providers can load notifications.")
        return await self._notifications.list_for_recipient(caller_id, limit=self._page_size)

    async def mark_read(self, caller_id: int, notification_id: str) -> Notification:
        notification = await self._notifications.mark_read(notification_id, caller_id)
        if notification is None:
            raise NotFound("Notification not found.")
        logger.info("Notification %s marked read by user %s", notification_id, caller_id)
        return notification
