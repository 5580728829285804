"""
Delay Queue — Abstract interface with Redis Streams and in-memory backends.

Topology:
  <routing_key>          — Bound queue; messages land here once their delay
                           has elapsed (Redis Stream + consumer group)
  delay_queue:delayed    — Messages still waiting out their delay
                           (sorted set scored by ready-at epoch milliseconds)
  <dead_letter_queue>    — Rejected messages kept for manual inspection

Publishing with delay_ms <= 0 goes straight to the bound queue. Anything else
waits in the delayed set until promote_delayed() moves it.

Consumption contract: the handler receives the raw payload string. Returning
acknowledges the message. Raising rejects it: an exception whose `retryable`
attribute is true is redelivered with exponential backoff until max_attempts,
everything else is dead-lettered immediately.

Message Schema (stream fields, all strings):
  {
      "message_id":   unique message identifier,
      "payload":      opaque body (JSON notification),
      "routing_key":  bound queue name,
      "delay_ms":     requested delay,
      "attempt":      delivery attempt number (0-based),
      "max_attempts": ceiling before DLQ,
      "published_at": ISO timestamp of the original publish,
      "metadata":     JSON object (dlq_reason, last_error, ...),
  }
"""
from __future__ import annotations

import asyncio
import json
import time
import uuid
import structlog
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from dataclasses import dataclass, field, asdict
from typing import Any, Awaitable, Callable, Optional

logger = structlog.get_logger()

MessageHandler = Callable[[str], Awaitable[Any]]


def _now_ms() -> int:
    return int(time.time() * 1000)


# ──────────────────────────────────────────────────────────────
#  Errors
# ──────────────────────────────────────────────────────────────

class QueueError(Exception):
    """Broker operation failed."""


class QueueConnectionError(QueueError):
    """Broker unreachable or channel closed. Safe to retry."""


# ──────────────────────────────────────────────────────────────
#  Message Model
# ──────────────────────────────────────────────────────────────

@dataclass
class QueueMessage:
    """A unit of work on the queue."""
    payload: str
    routing_key: str
    delay_ms: int = 0
    attempt: int = 0
    max_attempts: int = 3
    published_at: str = ""
    metadata: dict[str, Any] = field(default_factory=dict)
    message_id: str = ""

    def __post_init__(self):
        if not self.message_id:
            self.message_id = f"msg_{uuid.uuid4().hex[:12]}"
        if not self.published_at:
            self.published_at = datetime.now(timezone.utc).isoformat()

    def to_dict(self) -> dict[str, str]:
        d = asdict(self)
        d["metadata"] = json.dumps(d["metadata"])
        d["delay_ms"] = str(d["delay_ms"])
        d["attempt"] = str(d["attempt"])
        d["max_attempts"] = str(d["max_attempts"])
        return d

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> QueueMessage:
        data = dict(data)  # copy
        if isinstance(data.get("metadata"), str):
            data["metadata"] = json.loads(data["metadata"] or "{}")
        data["delay_ms"] = int(data.get("delay_ms", 0))
        data["attempt"] = int(data.get("attempt", 0))
        data["max_attempts"] = int(data.get("max_attempts", 3))
        return cls(**{k: v for k, v in data.items() if k in cls.__dataclass_fields__})

    def next_retry(self, backoff_seconds: int, error: str = "") -> QueueMessage:
        """Create a copy with incremented attempt and an exponential redelivery delay."""
        return QueueMessage(
            payload=self.payload,
            routing_key=self.routing_key,
            delay_ms=backoff_seconds * (2 ** self.attempt) * 1000,
            attempt=self.attempt + 1,
            max_attempts=self.max_attempts,
            published_at=self.published_at,
            metadata={**self.metadata, "last_error": error,
                      "last_failure_at": datetime.now(timezone.utc).isoformat()},
            message_id=self.message_id,  # same id across redeliveries for tracing
        )


# ──────────────────────────────────────────────────────────────
#  Abstract Interface
# ──────────────────────────────────────────────────────────────

class DelayQueue(ABC):
    """Abstract delay queue interface."""

    DELAYED = "delay_queue:delayed"

    def __init__(
        self,
        dead_letter_queue: str = "notifications:dlq",
        max_attempts: int = 3,
        retry_backoff_base: int = 5,
    ):
        self.dead_letter_queue = dead_letter_queue
        self.max_attempts = max_attempts
        self.retry_backoff_base = retry_backoff_base
        self._running = False

    @abstractmethod
    async def connect(self):
        """Establish connection to the queue backend."""
        ...

    @abstractmethod
    async def close(self):
        """Gracefully shut down."""
        ...

    @abstractmethod
    async def _enqueue(self, message: QueueMessage):
        """Place a message in its bound queue or the delayed set."""
        ...

    @abstractmethod
    async def _dead_letter(self, message: QueueMessage):
        ...

    @abstractmethod
    async def consume(
        self,
        routing_key: str,
        handler: MessageHandler,
        consumer_group: str = "default",
        consumer_name: str = "",
    ):
        """
        Start consuming from the queue bound to routing_key. Blocks and calls
        handler for each message, one at a time, until stop_consuming().
        Supports consumer groups for horizontal scaling.
        """
        ...

    @abstractmethod
    async def queue_length(self, queue: str) -> int:
        """Return the number of pending messages in a queue."""
        ...

    @abstractmethod
    async def dead_letters(self, count: int = 10) -> list[QueueMessage]:
        """Peek at dead-lettered messages without removing them."""
        ...

    @abstractmethod
    async def promote_delayed(self, now_ms: Optional[int] = None) -> int:
        """Move delayed messages whose delay has elapsed to their bound queue."""
        ...

    async def publish(self, payload: str, routing_key: str, delay_ms: int = 0) -> QueueMessage:
        """Publish a payload to be routed to routing_key after delay_ms."""
        message = QueueMessage(
            payload=payload,
            routing_key=routing_key,
            delay_ms=max(0, int(delay_ms)),
            max_attempts=self.max_attempts,
        )
        await self._enqueue(message)
        logger.info("message_published",
                    routing_key=routing_key,
                    message_id=message.message_id,
                    delay_ms=message.delay_ms)
        return message

    def stop_consuming(self):
        self._running = False

    async def reject(self, message: QueueMessage, error: BaseException):
        """Route a failed message to redelivery or the dead-letter queue."""
        retryable = bool(getattr(error, "retryable", False))
        if retryable and message.attempt + 1 < message.max_attempts:
            retry = message.next_retry(self.retry_backoff_base, error=str(error))
            await self._enqueue(retry)
            logger.info("message_scheduled_for_redelivery",
                        message_id=message.message_id,
                        attempt=retry.attempt,
                        delay_ms=retry.delay_ms)
            return

        if retryable:
            reason = f"Exceeded {message.max_attempts} attempts: {error}"
        else:
            reason = f"Rejected: {error}"
        message.metadata["dlq_reason"] = reason
        message.metadata["dead_lettered_at"] = datetime.now(timezone.utc).isoformat()
        await self._dead_letter(message)
        logger.warning("message_moved_to_dlq",
                       message_id=message.message_id,
                       attempts=message.attempt + 1,
                       reason=reason)


# ──────────────────────────────────────────────────────────────
#  Redis Streams Implementation
# ──────────────────────────────────────────────────────────────

class RedisDelayQueue(DelayQueue):
    """
    Production queue backed by Redis Streams + a Sorted Set.

    - Bound queues and the DLQ are Redis Streams; consumers use groups
    - Delayed messages live in a Sorted Set scored by ready-at epoch ms
    """

    def __init__(self, redis_url: str = "redis://localhost:6379", **kwargs):
        super().__init__(**kwargs)
        self._redis_url = redis_url
        self._redis = None
        self.error_backoff_seconds = 1.0

    async def connect(self):
        import redis.asyncio as aioredis
        from redis.exceptions import RedisError
        self._redis = aioredis.from_url(
            self._redis_url,
            decode_responses=True,
            max_connections=20,
        )
        try:
            await self._redis.ping()
        except RedisError as e:
            raise QueueConnectionError(f"redis unreachable: {e}") from e
        logger.info("redis_queue_connected", url=self._redis_url.split("@")[-1])

    async def close(self):
        self._running = False
        if self._redis:
            await self._redis.aclose()
            self._redis = None

    def _client(self):
        if self._redis is None:
            raise QueueConnectionError("queue connection is closed")
        return self._redis

    async def _call(self, coro_fn, *args, **kwargs):
        """Run a redis command, mapping connection failures to QueueConnectionError."""
        from redis.exceptions import ConnectionError as RedisConnectionError
        from redis.exceptions import RedisError, TimeoutError as RedisTimeoutError
        try:
            return await coro_fn(*args, **kwargs)
        except (RedisConnectionError, RedisTimeoutError) as e:
            raise QueueConnectionError(str(e)) from e
        except RedisError as e:
            raise QueueError(str(e)) from e

    async def _ensure_group(self, queue: str, group: str):
        """Create consumer group if it doesn't exist."""
        from redis.exceptions import ResponseError
        try:
            await self._client().xgroup_create(queue, group, id="0", mkstream=True)
        except ResponseError as e:
            if "BUSYGROUP" not in str(e):
                raise

    async def _enqueue(self, message: QueueMessage):
        client = self._client()
        if message.delay_ms <= 0:
            await self._call(client.xadd, message.routing_key, message.to_dict())
            return
        score = _now_ms() + message.delay_ms
        payload = json.dumps(message.to_dict())
        await self._call(client.zadd, self.DELAYED, {payload: score})

    async def _dead_letter(self, message: QueueMessage):
        await self._call(self._client().xadd, self.dead_letter_queue, message.to_dict())

    async def consume(
        self,
        routing_key: str,
        handler: MessageHandler,
        consumer_group: str = "default",
        consumer_name: str = "",
    ):
        if not consumer_name:
            consumer_name = f"worker_{uuid.uuid4().hex[:8]}"

        await self._ensure_group(routing_key, consumer_group)
        self._running = True
        logger.info("consumer_started",
                    queue=routing_key,
                    group=consumer_group,
                    consumer=consumer_name)

        # "0" reads this consumer's unacknowledged entries, ">" new ones.
        # A connection error leaves the entry pending, so go back to "0".
        read_from = "0"
        while self._running:
            try:
                messages = await self._call(
                    self._client().xreadgroup,
                    groupname=consumer_group,
                    consumername=consumer_name,
                    streams={routing_key: read_from},
                    count=1,
                    block=2000,  # block 2s waiting for messages
                )

                if not messages or not any(entries for _, entries in messages):
                    read_from = ">"
                    continue

                for _stream, stream_messages in messages:
                    for entry_id, fields in stream_messages:
                        if fields:
                            await self._handle_entry(QueueMessage.from_dict(fields), entry_id, handler)
                        await self._call(self._client().xack, routing_key, consumer_group, entry_id)

            except asyncio.CancelledError:
                break
            except QueueConnectionError as e:
                logger.error("consumer_connection_error", queue=routing_key, error=str(e))
                read_from = "0"
                await asyncio.sleep(self.error_backoff_seconds)
            except Exception as e:
                logger.error("consumer_error", queue=routing_key, error=str(e))
                await asyncio.sleep(self.error_backoff_seconds)

        logger.info("consumer_stopped", queue=routing_key, consumer=consumer_name)

    async def _handle_entry(self, message: QueueMessage, entry_id: str, handler: MessageHandler):
        try:
            await handler(message.payload)
            logger.debug("message_acked",
                         message_id=message.message_id,
                         entry_id=entry_id)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error("message_handler_error",
                         message_id=message.message_id,
                         error=str(e))
            await self.reject(message, e)

    async def queue_length(self, queue: str) -> int:
        client = self._client()
        if queue == self.DELAYED:
            return await self._call(client.zcard, queue)
        return await self._call(client.xlen, queue)

    async def dead_letters(self, count: int = 10) -> list[QueueMessage]:
        entries = await self._call(self._client().xrange, self.dead_letter_queue, count=count)
        return [QueueMessage.from_dict(fields) for _, fields in entries]

    async def promote_delayed(self, now_ms: Optional[int] = None) -> int:
        """
        Move ready messages from the sorted set to their bound stream.
        ZREM decides ownership, so concurrent promoters never double-route.
        """
        client = self._client()
        now_ms = now_ms if now_ms is not None else _now_ms()
        ready = await self._call(client.zrangebyscore, self.DELAYED, "-inf", now_ms)

        promoted = 0
        for raw in ready:
            if not await self._call(client.zrem, self.DELAYED, raw):
                continue  # another promoter took it
            message = QueueMessage.from_dict(json.loads(raw))
            await self._call(client.xadd, message.routing_key, message.to_dict())
            promoted += 1

        if promoted:
            logger.info("delayed_messages_promoted", count=promoted)
        return promoted


# ──────────────────────────────────────────────────────────────
#  In-Memory Implementation (Development)
# ──────────────────────────────────────────────────────────────

class InMemoryDelayQueue(DelayQueue):
    """
    Development/test queue backed by asyncio primitives.
    Single-process only — no persistence. Each bound queue is one
    asyncio.Queue, so every message goes to exactly one worker.
    """

    def __init__(self, **kwargs):
        super().__init__(**kwargs)
        self._queues: dict[str, asyncio.Queue] = {}
        self._delayed: list[tuple[int, QueueMessage]] = []  # (ready_at_ms, message)
        self._dlq: list[QueueMessage] = []
        self._connected = False

    def _get_queue(self, name: str) -> asyncio.Queue:
        if name not in self._queues:
            self._queues[name] = asyncio.Queue()
        return self._queues[name]

    async def connect(self):
        self._connected = True
        logger.info("inmemory_queue_connected")

    async def close(self):
        self._running = False
        self._connected = False

    async def _enqueue(self, message: QueueMessage):
        if not self._connected:
            raise QueueConnectionError("queue connection is closed")
        if message.delay_ms <= 0:
            await self._get_queue(message.routing_key).put(message)
            return
        self._delayed.append((_now_ms() + message.delay_ms, message))
        self._delayed.sort(key=lambda x: x[0])

    async def _dead_letter(self, message: QueueMessage):
        self._dlq.append(message)

    async def consume(
        self,
        routing_key: str,
        handler: MessageHandler,
        consumer_group: str = "default",
        consumer_name: str = "",
    ):
        q = self._get_queue(routing_key)
        self._running = True
        logger.info("consumer_started", queue=routing_key, consumer=consumer_name)

        while self._running:
            try:
                message = await asyncio.wait_for(q.get(), timeout=0.5)
            except asyncio.TimeoutError:
                continue
            except asyncio.CancelledError:
                break
            try:
                await handler(message.payload)
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error("message_handler_error",
                             message_id=message.message_id,
                             error=str(e))
                await self.reject(message, e)
            finally:
                q.task_done()

        logger.info("consumer_stopped", queue=routing_key, consumer=consumer_name)

    async def queue_length(self, queue: str) -> int:
        if queue == self.DELAYED:
            return len(self._delayed)
        if queue == self.dead_letter_queue:
            return len(self._dlq)
        return self._get_queue(queue).qsize()

    async def dead_letters(self, count: int = 10) -> list[QueueMessage]:
        return list(self._dlq[:count])

    async def promote_delayed(self, now_ms: Optional[int] = None) -> int:
        now_ms = now_ms if now_ms is not None else _now_ms()
        ready = [(ts, m) for ts, m in self._delayed if ts <= now_ms]
        self._delayed = [(ts, m) for ts, m in self._delayed if ts > now_ms]

        for _, message in ready:
            await self._get_queue(message.routing_key).put(message)

        if ready:
            logger.info("delayed_messages_promoted", count=len(ready))
        return len(ready)

    async def join(self, routing_key: str):
        """Wait until every message put on routing_key has been handled."""
        await self._get_queue(routing_key).join()


# ──────────────────────────────────────────────────────────────
#  Factory
# ──────────────────────────────────────────────────────────────

def create_delay_queue(queue_config: dict[str, Any] = None) -> DelayQueue:
    """Factory: create the appropriate queue backend."""
    config = queue_config or {}
    backend = config.get("backend", "memory")
    common = {
        "dead_letter_queue": config.get("dead_letter_queue", "notifications:dlq"),
        "max_attempts": config.get("max_attempts", 3),
        "retry_backoff_base": config.get("retry_backoff_base", 5),
    }

    if backend == "redis":
        url = config.get("redis_url", "redis://localhost:6379")
        return RedisDelayQueue(redis_url=url, **common)
    return InMemoryDelayQueue(**common)
