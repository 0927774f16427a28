"""
Notification dispatchers for alert transitions.

Delivery is fire-and-forget: the monitoring cycle hands an event over and
moves on. Failures are logged and never retried inline.
"""

import asyncio
import httpx
from sqlalchemy import select
from sqlalchemy.ext.asyncio import async_sessionmaker
from typing import Any, Dict, List, Optional, Set
from core.config import settings
from models.alert import NotificationChannel, PipelineNotificationChannel
import logging

logger = logging.getLogger(__name__)


class NotificationDispatcher:
    """Interface: deliver one alert lifecycle event for a pipeline."""

    async def send(self, pipeline_id, event: Dict[str, Any]) -> None:
        raise NotImplementedError

    async def drain(self) -> None:
        """Wait for deliveries still in flight."""

    async def aclose(self) -> None:
        pass


class LoggingNotificationDispatcher(NotificationDispatcher):
    """Writes events to the log; used when no channel is configured."""

    async def send(self, pipeline_id, event: Dict[str, Any]) -> None:
        alert = event.get("alert") or {}
        logger.info(
            f"Alert {event.get('event')} for pipeline {pipeline_id}: "
            f"{alert.get('alert_type')} ({alert.get('severity')}) - {alert.get('message')}"
        )


class WebhookNotificationDispatcher(NotificationDispatcher):
    """
    Posts the alert event JSON to every active channel linked to the pipeline.

    Each send schedules a background task with its own database session, so
    the caller's transaction and timing are unaffected.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None
    ):
        self.session_factory = session_factory
        self.fallback = LoggingNotificationDispatcher()
        self._client = httpx.AsyncClient(
            timeout=timeout or settings.NOTIFICATION_TIMEOUT_SECONDS,
            transport=transport
        )
        self._tasks: Set[asyncio.Task] = set()

    async def send(self, pipeline_id, event: Dict[str, Any]) -> None:
        task = asyncio.create_task(self._deliver(pipeline_id, event))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _channels(self, pipeline_id) -> List[NotificationChannel]:
        async with self.session_factory() as session:
            result = await session.execute(
                select(NotificationChannel)
                .join(PipelineNotificationChannel, PipelineNotificationChannel.channel_id == NotificationChannel.id)
                .where(
                    PipelineNotificationChannel.pipeline_id == pipeline_id,
                    NotificationChannel.is_active.is_(True)
                )
            )
            return list(result.scalars().all())

    async def _deliver(self, pipeline_id, event: Dict[str, Any]) -> None:
        try:
            channels = await self._channels(pipeline_id)
        except Exception as e:
            logger.error(f"Could not load notification channels for pipeline {pipeline_id}: {e}")
            return

        if not channels:
            await self.fallback.send(pipeline_id, event)
            return

        for channel in channels:
            try:
                response = await self._client.post(channel.webhook_url, json=event)
                if response.status_code >= 400:
                    logger.warning(
                        f"Channel {channel.name} rejected notification: HTTP {response.status_code}"
                    )
                else:
                    logger.debug(f"Notification delivered to {channel.name}")
            except httpx.HTTPError as e:
                logger.warning(f"Notification to {channel.name} failed ({type(e).__name__}): {e}")

    async def drain(self) -> None:
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def aclose(self) -> None:
        await self.drain()
        await self._client.aclose()
