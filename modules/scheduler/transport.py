"""Delivery transport: publishes rendered reminders for the chat bots."""

from __future__ import annotations

from typing import Protocol

import redis.asyncio as aioredis
import structlog

from shared.schemas.notifications import Notification
from shared.schemas.reminders import ReminderTarget

logger = structlog.get_logger()


class Transport(Protocol):
    async def deliver(self, target: ReminderTarget, notification: Notification) -> bool: ...

    async def deliver_pre_warning(self, target: ReminderTarget, notification: Notification) -> bool: ...


class RedisTransport:
    """Publish notifications to the Redis channel consumed by the Discord bot.

    Delivery is fire-and-forget; the only failure the scheduler can observe
    is a publish error or a channel with no listening bot.
    """

    def __init__(self, redis: aioredis.Redis, channel: str = "notifications:discord") -> None:
        self.redis = redis
        self.channel = channel

    async def deliver(self, target: ReminderTarget, notification: Notification) -> bool:
        return await self._publish(target, notification)

    async def deliver_pre_warning(self, target: ReminderTarget, notification: Notification) -> bool:
        return await self._publish(target, notification)

    async def _publish(self, target: ReminderTarget, notification: Notification) -> bool:
        try:
            receivers = await self.redis.publish(self.channel, notification.model_dump_json())
        except Exception as e:
            logger.error(
                "notification_publish_failed",
                channel=self.channel,
                reminder_id=notification.reminder_id,
                error=str(e),
            )
            return False

        if not receivers:
            logger.warning(
                "notification_no_subscribers",
                channel=self.channel,
                reminder_id=notification.reminder_id,
                target_channel=target.channel_id,
            )
            return False

        logger.info(
            "notification_published",
            channel=self.channel,
            reminder_id=notification.reminder_id,
            kind=notification.kind,
        )
        return True
