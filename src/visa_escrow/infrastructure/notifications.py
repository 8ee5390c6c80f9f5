"""Notification sinks for post-commit workflow events.

Sinks are fired only after a transition commits. They may raise; the
workflow engine logs the failure and never rolls back committed state.

Implementations:
    - LoggingNotificationSink: writes the notification to the structured log.
    - RedisNotificationSink: publishes JSON on a Redis channel, retrying
      transient connection errors with exponential backoff.
"""

from __future__ import annotations

import json
from typing import TYPE_CHECKING

from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import TimeoutError as RedisTimeoutError
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from visa_escrow.logging_config import get_logger

if TYPE_CHECKING:
    import redis.asyncio as aioredis

    from visa_escrow.domain.collaborators import WorkflowNotification

logger = get_logger(__name__)


class LoggingNotificationSink:
    """Development sink: every notification becomes a log entry."""

    async def publish(self, notification: WorkflowNotification) -> None:
        logger.info(
            "notification.published",
            event_type=notification.event_type,
            case_id=notification.case_id,
            recipients=[str(r) for r in notification.recipients],
        )


class RedisNotificationSink:
    """Publishes notifications to a Redis pub/sub channel for the delivery service."""

    def __init__(self, redis: aioredis.Redis, channel: str) -> None:
        self._redis = redis
        self._channel = channel

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=0.2, min=0.2, max=2),
        retry=retry_if_exception_type((RedisConnectionError, RedisTimeoutError)),
        reraise=True,
    )
    async def publish(self, notification: WorkflowNotification) -> None:
        """Publish one notification.

        Uses tenacity for exponential backoff on transient failures.
        """
        receivers = await self._redis.publish(self._channel, json.dumps(notification.to_dict()))
        logger.debug(
            "notification.sent",
            channel=self._channel,
            event_type=notification.event_type,
            receivers=receivers,
        )
