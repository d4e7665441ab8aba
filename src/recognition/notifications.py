"""Store-backed pattern notifications with per-pattern de-duplication."""

import uuid
from typing import Optional

import structlog

from core.events import EventBus, EventType
from core.models import Notification, Pattern
from core.store import PatternStore
from recognition.iteration import notification_message

logger = structlog.get_logger()


class NotificationCenter:
    """Creates at most one active notification per pattern."""

    def __init__(self, store: PatternStore, events: EventBus):
        self.store = store
        self.events = events

    async def has_active_for_pattern(self, pattern_id: str) -> bool:
        return await self.store.find_active_notification(pattern_id) is not None

    async def notify_pattern(self, pattern: Pattern, confidence: float) -> Optional[Notification]:
        """
        Create and broadcast a notification unless one is already active.

        Returns:
            The new notification, or None when de-duplicated
        """
        if await self.has_active_for_pattern(pattern.id):
            logger.debug("notification_deduplicated", pattern_id=pattern.id)
            return None

        notification = Notification(
            id=f"notification-{uuid.uuid4().hex}",
            type="pattern",
            severity="info",
            title="Pattern Detected",
            message=notification_message(pattern, confidence),
            pattern_id=pattern.id,
        )
        await self.store.put_notification(notification)

        self.events.emit(
            EventType.PATTERN_DETECTED,
            notification_id=notification.id,
            pattern_id=pattern.id,
            pattern_type=pattern.type.value,
            confidence=confidence,
            occurrence_count=pattern.occurrence_count,
            message=notification.message,
        )
        logger.info("pattern_notification_created", pattern_id=pattern.id, confidence=confidence)
        return notification

    async def list_active(self) -> list[Notification]:
        return await self.store.list_notifications()

    async def dismiss(self, notification_id: str) -> bool:
        return await self.store.dismiss_notification(notification_id)
