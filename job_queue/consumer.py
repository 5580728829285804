"""
Queue Consumer — Pulls notifications from the bound queue and drives dispatch.

Runs as one or more async tasks inside the application process.
For horizontal scaling, deploy multiple processes with the same consumer_group;
Redis Streams guarantees each message is delivered to exactly one consumer.

Topology:
  ┌──────────────┐        ┌─────────────────┐        ┌────────────┐
  │  Scheduler   │──pub──▶│ delayed (sorted │        │ Dispatcher │
  │  (API)       │        │  set / promoter)│        │ Worker(s)  │
  └──────────────┘        └────────┬────────┘        └─────┬──────┘
                                   │ promote               │
                                   ▼                       │
                          ┌─────────────────┐              │
                          │ bound queue     │──────────────┘
                          └─────────────────┘              │
                                   ▲                       │
                                   └──── redeliver ────────┤
                          ┌─────────────────┐              │
                          │  DLQ            │◀── reject ───┘
                          └─────────────────┘
"""
from __future__ import annotations

import asyncio
import structlog
from typing import Optional

from job_queue.message_queue import DelayQueue, MessageHandler


class NotificationConsumer:
    """
    Runs `concurrency` workers, each handling one message at a time.

    Usage:
        consumer = NotificationConsumer(dispatcher.handle_delivery, queue, "notifications")
        await consumer.start()              # blocks until stopped
        await consumer.start_background()   # returns immediately, runs as tasks
        await consumer.stop()
    """

    def __init__(
        self,
        handler: MessageHandler,
        queue: DelayQueue,
        routing_key: str,
        consumer_group: str = "notification-dispatchers",
        consumer_name: str = "dispatcher",
        concurrency: int = 1,
        shutdown_grace_seconds: float = 5.0,
        logger=None,
    ):
        self.handler = handler
        self.queue = queue
        self.routing_key = routing_key
        self.consumer_group = consumer_group
        self.consumer_name = consumer_name
        self.concurrency = max(1, concurrency)
        self.shutdown_grace_seconds = shutdown_grace_seconds
        self._tasks: list[asyncio.Task] = []
        self._running = False
        self.log = logger or structlog.get_logger().bind(component="consumer")

    @property
    def running(self) -> bool:
        """True while started and at least one worker is still alive."""
        if not self._running:
            return False
        return not self._tasks or any(not t.done() for t in self._tasks)

    def _worker(self, index: int):
        return self.queue.consume(
            routing_key=self.routing_key,
            handler=self.handler,
            consumer_group=self.consumer_group,
            consumer_name=f"{self.consumer_name}-{index}",
        )

    async def start(self):
        """Start consuming — blocks until stop() is called."""
        self._running = True
        self.log.info("notification_consumer_starting",
                      group=self.consumer_group,
                      concurrency=self.concurrency)
        try:
            await asyncio.gather(*(self._worker(i) for i in range(self.concurrency)))
        finally:
            self._running = False

    async def start_background(self) -> list[asyncio.Task]:
        """Start every worker as a background task. Returns the task handles."""
        self._running = True
        self.log.info("notification_consumer_starting",
                      group=self.consumer_group,
                      concurrency=self.concurrency)
        self._tasks = [
            asyncio.create_task(self._worker(i), name=f"{self.consumer_name}-{i}")
            for i in range(self.concurrency)
        ]
        return self._tasks

    async def stop(self):
        """
        Two-phase stop: ask the workers to finish their current message,
        wait up to the grace period, then cancel whatever is still running.
        """
        self._running = False
        self.queue.stop_consuming()
        if self._tasks:
            done, pending = await asyncio.wait(self._tasks, timeout=self.shutdown_grace_seconds)
            for task in done:
                if not task.cancelled() and task.exception() is not None:
                    self.log.error("consumer_worker_failed",
                                   worker=task.get_name(),
                                   error=str(task.exception()))
            for task in pending:
                task.cancel()
            for task in pending:
                try:
                    await task
                except asyncio.CancelledError:
                    pass
        self._tasks.clear()
        self.log.info("notification_consumer_stopped")


# ──────────────────────────────────────────────────────────────
#  Delayed Message Promoter
# ──────────────────────────────────────────────────────────────

class DelayedMessagePromoter:
    """
    Background task that periodically moves delayed messages whose
    delay has elapsed into their bound queue.
    """

    def __init__(self, queue: DelayQueue, interval_seconds: float = 1.0, logger=None):
        self.queue = queue
        self.interval = interval_seconds
        self._task: Optional[asyncio.Task] = None
        self.log = logger or structlog.get_logger().bind(component="promoter")

    async def start_background(self) -> asyncio.Task:
        self._task = asyncio.create_task(self._run())
        return self._task

    async def stop(self):
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None

    async def _run(self):
        self.log.info("delayed_promoter_started", interval=self.interval)
        while True:
            try:
                await self.queue.promote_delayed()
            except asyncio.CancelledError:
                break
            except Exception as e:
                self.log.error("promoter_error", error=str(e))
            await asyncio.sleep(self.interval)
