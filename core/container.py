"""
NotifierContainer — builds every component from Settings and owns their
lifecycle.

Startup order:   database → queue → channel → consumer workers → promoter
Shutdown order:  consumer workers + promoter (drain) → queue → cache →
                 channel → database

Stopping the workers first means no delivery is in flight when the
connections it depends on go away.
"""
from __future__ import annotations

import structlog

from cache import BaseStatusCache, create_status_cache
from channels import ChannelAdapter, create_channel
from config.settings import Settings
from core.dispatcher import NotificationDispatcher
from core.scheduler import NotificationScheduler
from core.service import NotificationService
from core.status import StatusRecorder
from database import BaseNotificationStore, create_store
from job_queue.consumer import DelayedMessagePromoter, NotificationConsumer
from job_queue.message_queue import DelayQueue, create_delay_queue

logger = structlog.get_logger()


class NotifierContainer:
    def __init__(
        self,
        settings: Settings,
        store: BaseNotificationStore,
        cache: BaseStatusCache,
        queue: DelayQueue,
        channel: ChannelAdapter,
    ):
        self.settings = settings
        self.store = store
        self.cache = cache
        self.queue = queue
        self.channel = channel

        q = settings.queue
        self.recorder = StatusRecorder(
            store, cache,
            ttl_seconds=settings.cache.ttl_seconds,
            key_prefix=settings.cache.key_prefix,
        )
        self.scheduler = NotificationScheduler(
            queue, q.routing_key,
            publish_attempts=q.publish_attempts,
            publish_initial_delay=q.publish_initial_delay,
            publish_backoff=q.publish_backoff,
        )
        self.dispatcher = NotificationDispatcher(self.recorder, channel)
        self.service = NotificationService(self.scheduler, self.recorder, self.dispatcher)
        self.consumer = NotificationConsumer(
            self.dispatcher.handle_delivery, queue, q.routing_key,
            consumer_group=q.consumer_group,
            concurrency=q.consumer_concurrency,
        )
        self.promoter = DelayedMessagePromoter(queue, interval_seconds=q.delayed_promote_interval)
        self._started = False

    @classmethod
    def from_settings(cls, settings: Settings) -> NotifierContainer:
        store = create_store({
            "store_backend": settings.database.store_backend,
            "url": settings.database.url,
            "echo": settings.debug,
        })
        cache = create_status_cache({
            "backend": settings.cache.backend,
            "redis_url": settings.cache.redis_url,
        })
        queue = create_delay_queue({
            "backend": settings.queue.backend,
            "redis_url": settings.queue.redis_url,
            "dead_letter_queue": settings.queue.dead_letter_queue,
            "max_attempts": settings.queue.max_attempts,
            "retry_backoff_base": settings.queue.retry_backoff_base,
        })
        channel = create_channel(settings)
        return cls(settings, store, cache, queue, channel)

    @property
    def started(self) -> bool:
        return self._started

    async def start(self, consume: bool = True) -> None:
        """Open connections and, unless consume=False, start the dispatcher workers."""
        await self.store.initialize()
        await self.queue.connect()
        await self.channel.initialize()
        if consume:
            await self.consumer.start_background()
            await self.promoter.start_background()
        self._started = True
        logger.info("notifier_started",
                    queue_backend=type(self.queue).__name__,
                    store_backend=type(self.store).__name__,
                    channel=self.channel.channel_name,
                    consuming=consume)

    async def stop(self) -> None:
        """Two-phase stop: drain the workers, then release connections."""
        await self.consumer.stop()
        await self.promoter.stop()

        await self.queue.close()
        await self.cache.close()
        await self.channel.shutdown()
        await self.store.close()
        self._started = False
        logger.info("notifier_stopped")
