"""
Tests for the delay queue and its workers.

Covers:
  - QueueMessage serialization and retry copies
  - InMemoryDelayQueue: publish, delay, promotion, ack, redelivery, DLQ
  - RedisDelayQueue command routing (mocked client)
  - NotificationConsumer / DelayedMessagePromoter lifecycle
  - Queue factory
"""
import asyncio
import json
from unittest.mock import AsyncMock, MagicMock

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from core.errors import DependencyFailureError, InvalidInputError
from job_queue.consumer import DelayedMessagePromoter, NotificationConsumer
from job_queue.message_queue import (
    InMemoryDelayQueue, QueueConnectionError, QueueMessage, RedisDelayQueue,
    create_delay_queue,
)


async def _drain(queue, routing_key, handler, timeout=2.0):
    """Run one consumer until the bound queue has been fully handled."""
    task = asyncio.create_task(queue.consume(routing_key, handler))
    try:
        await asyncio.wait_for(queue.join(routing_key), timeout)
    finally:
        queue.stop_consuming()
        await asyncio.wait_for(task, timeout)


# ──────────────────────────────────────────────────────────────
#  QueueMessage
# ──────────────────────────────────────────────────────────────

class TestQueueMessage:
    def test_defaults_are_filled(self):
        m = QueueMessage(payload="{}", routing_key="notifications")
        assert m.message_id.startswith("msg_")
        assert m.published_at

    def test_stream_fields_are_strings(self):
        m = QueueMessage(payload="{}", routing_key="notifications", delay_ms=1500,
                         metadata={"k": "v"})
        fields = m.to_dict()
        assert all(isinstance(v, str) for v in fields.values())
        restored = QueueMessage.from_dict(fields)
        assert restored.delay_ms == 1500
        assert restored.metadata == {"k": "v"}
        assert restored.message_id == m.message_id

    def test_next_retry_backs_off_exponentially(self):
        m = QueueMessage(payload="{}", routing_key="notifications")
        first = m.next_retry(5, error="boom")
        second = first.next_retry(5, error="boom again")
        assert (first.attempt, first.delay_ms) == (1, 5_000)
        assert (second.attempt, second.delay_ms) == (2, 10_000)
        assert second.message_id == m.message_id
        assert second.metadata["last_error"] == "boom again"


# ──────────────────────────────────────────────────────────────
#  InMemoryDelayQueue
# ──────────────────────────────────────────────────────────────

class TestInMemoryDelayQueue:
    @pytest.mark.asyncio
    async def test_publish_requires_connection(self):
        q = InMemoryDelayQueue()
        with pytest.raises(QueueConnectionError):
            await q.publish("{}", "notifications")

    @pytest.mark.asyncio
    async def test_negative_delay_is_immediate(self, queue):
        message = await queue.publish("{}", "notifications", delay_ms=-50)
        assert message.delay_ms == 0
        assert await queue.queue_length("notifications") == 1

    @pytest.mark.asyncio
    async def test_delayed_message_is_promoted_when_due(self, queue):
        await queue.publish('{"n": 1}', "notifications", delay_ms=60_000)
        now_ms = queue._delayed[0][0]

        assert await queue.promote_delayed(now_ms - 1) == 0
        assert await queue.queue_length("notifications") == 0

        assert await queue.promote_delayed(now_ms) == 1
        assert await queue.queue_length("notifications") == 1
        assert await queue.queue_length(queue.DELAYED) == 0

    @pytest.mark.asyncio
    async def test_promotion_keeps_ready_order(self, queue):
        await queue.publish("later", "notifications", delay_ms=2_000)
        await queue.publish("sooner", "notifications", delay_ms=1_000)
        await queue.promote_delayed(queue._delayed[-1][0])

        q = queue._get_queue("notifications")
        assert [q.get_nowait().payload for _ in range(2)] == ["sooner", "later"]

    @pytest.mark.asyncio
    async def test_successful_handler_acks(self, queue):
        seen = []

        async def handler(payload):
            seen.append(payload)

        await queue.publish("a", "notifications")
        await queue.publish("b", "notifications")
        await _drain(queue, "notifications", handler)

        assert seen == ["a", "b"]
        assert await queue.queue_length("notifications") == 0
        assert await queue.dead_letters() == []

    @pytest.mark.asyncio
    async def test_retryable_error_is_redelivered_with_delay(self, queue):
        async def handler(payload):
            raise DependencyFailureError("store not ready")

        await queue.publish("a", "notifications")
        await _drain(queue, "notifications", handler)

        assert await queue.queue_length(queue.DELAYED) == 1
        _, retry = queue._delayed[0]
        assert retry.attempt == 1
        assert retry.metadata["last_error"] == "store not ready"

    @pytest.mark.asyncio
    async def test_retryable_error_dead_letters_after_max_attempts(self, queue):
        calls = 0

        async def handler(payload):
            nonlocal calls
            calls += 1
            raise DependencyFailureError("store not ready")

        await queue.publish("a", "notifications")
        for _ in range(queue.max_attempts):
            await queue.promote_delayed(10 ** 15)
            await _drain(queue, "notifications", handler)

        assert calls == queue.max_attempts
        dead = await queue.dead_letters()
        assert len(dead) == 1
        assert dead[0].metadata["dlq_reason"].startswith("Exceeded 3 attempts")

    @pytest.mark.asyncio
    async def test_non_retryable_error_dead_letters_immediately(self, queue):
        async def handler(payload):
            raise InvalidInputError("malformed")

        await queue.publish("a", "notifications")
        await _drain(queue, "notifications", handler)

        assert await queue.queue_length(queue.DELAYED) == 0
        assert await queue.queue_length(queue.dead_letter_queue) == 1
        dead = await queue.dead_letters()
        assert dead[0].metadata["dlq_reason"] == "Rejected: malformed"

    @pytest.mark.asyncio
    async def test_plain_exceptions_are_not_retried(self, queue):
        async def handler(payload):
            raise RuntimeError("bug")

        await queue.publish("a", "notifications")
        await _drain(queue, "notifications", handler)
        assert len(await queue.dead_letters()) == 1


# ──────────────────────────────────────────────────────────────
#  RedisDelayQueue (mocked client)
# ──────────────────────────────────────────────────────────────

class TestRedisDelayQueue:
    @pytest.fixture
    def redis_queue(self):
        q = RedisDelayQueue("redis://localhost:6379/0", dead_letter_queue="notifications:dlq")
        q._redis = AsyncMock()
        return q

    @pytest.mark.asyncio
    async def test_immediate_publish_adds_to_stream(self, redis_queue):
        await redis_queue.publish('{"id": "n1"}', "notifications")
        redis_queue._redis.xadd.assert_awaited_once()
        stream, fields = redis_queue._redis.xadd.await_args.args
        assert stream == "notifications"
        assert fields["payload"] == '{"id": "n1"}'
        redis_queue._redis.zadd.assert_not_called()

    @pytest.mark.asyncio
    async def test_delayed_publish_adds_to_sorted_set(self, redis_queue):
        await redis_queue.publish("{}", "notifications", delay_ms=30_000)
        redis_queue._redis.zadd.assert_awaited_once()
        key, mapping = redis_queue._redis.zadd.await_args.args
        assert key == RedisDelayQueue.DELAYED
        (raw, score), = mapping.items()
        assert json.loads(raw)["delay_ms"] == "30000"
        redis_queue._redis.xadd.assert_not_called()

    @pytest.mark.asyncio
    async def test_connection_error_is_mapped(self, redis_queue):
        redis_queue._redis.xadd.side_effect = RedisConnectionError("refused")
        with pytest.raises(QueueConnectionError):
            await redis_queue.publish("{}", "notifications")

    @pytest.mark.asyncio
    async def test_closed_queue_raises_connection_error(self):
        q = RedisDelayQueue()
        with pytest.raises(QueueConnectionError):
            await q.publish("{}", "notifications")

    @pytest.mark.asyncio
    async def test_promote_only_moves_entries_it_removed(self, redis_queue):
        mine = json.dumps(QueueMessage(payload="mine", routing_key="notifications").to_dict())
        theirs = json.dumps(QueueMessage(payload="theirs", routing_key="notifications").to_dict())
        redis_queue._redis.zrangebyscore.return_value = [mine, theirs]
        redis_queue._redis.zrem.side_effect = [1, 0]

        assert await redis_queue.promote_delayed(now_ms=1) == 1
        redis_queue._redis.xadd.assert_awaited_once()
        assert redis_queue._redis.xadd.await_args.args[1]["payload"] == "mine"

    @pytest.mark.asyncio
    async def test_consumer_survives_connection_error_while_rejecting(self, redis_queue):
        entry = ("1-0", QueueMessage(payload="p", routing_key="notifications").to_dict())
        delivered, acked, handled = [], [], []

        async def xreadgroup(groupname, consumername, streams, count, block):
            await asyncio.sleep(0.01)
            if streams["notifications"] == ">":
                if delivered:
                    return []
                delivered.append(entry)
                return [["notifications", [entry]]]
            pending = [entry] if delivered and not acked else []
            return [["notifications", pending]]

        async def handler(payload):
            handled.append(payload)
            if len(handled) == 1:
                raise DependencyFailureError("db down")

        redis_queue._redis.xreadgroup.side_effect = xreadgroup
        redis_queue._redis.xack.side_effect = lambda *args: acked.append(args)
        redis_queue._redis.zadd.side_effect = RedisConnectionError("blip")
        redis_queue.error_backoff_seconds = 0

        task = asyncio.create_task(redis_queue.consume("notifications", handler, "dispatchers"))
        try:
            for _ in range(200):
                if acked:
                    break
                await asyncio.sleep(0.01)
            assert not task.done()
        finally:
            redis_queue.stop_consuming()
            await asyncio.wait_for(task, timeout=5)

        assert handled == ["p", "p"]
        assert acked == [("notifications", "dispatchers", "1-0")]
        redis_queue._redis.zadd.assert_awaited_once()


# ──────────────────────────────────────────────────────────────
#  Workers
# ──────────────────────────────────────────────────────────────

class TestWorkers:
    @pytest.mark.asyncio
    async def test_consumer_runs_and_stops(self, queue):
        seen = asyncio.Queue()

        async def handler(payload):
            await seen.put(payload)

        consumer = NotificationConsumer(handler, queue, "notifications", concurrency=2,
                                        shutdown_grace_seconds=2.0)
        tasks = await consumer.start_background()
        assert len(tasks) == 2
        assert consumer.running

        await queue.publish("hello", "notifications")
        assert await asyncio.wait_for(seen.get(), 2.0) == "hello"

        await consumer.stop()
        assert not consumer.running
        assert all(t.done() for t in tasks)

    @pytest.mark.asyncio
    async def test_dead_workers_are_reported_and_logged_on_stop(self):
        queue = MagicMock()
        queue.consume = AsyncMock(side_effect=QueueConnectionError("group missing"))
        log = MagicMock()
        consumer = NotificationConsumer(AsyncMock(), queue, "notifications", concurrency=2,
                                        logger=log)
        tasks = await consumer.start_background()
        await asyncio.wait(tasks, timeout=2.0)

        assert not consumer.running

        await consumer.stop()
        failures = [c for c in log.error.call_args_list if c.args == ("consumer_worker_failed",)]
        assert len(failures) == 2
        assert failures[0].kwargs["error"] == "group missing"
        queue.stop_consuming.assert_called_once()

    @pytest.mark.asyncio
    async def test_promoter_moves_due_messages(self, queue):
        await queue.publish("soon", "notifications", delay_ms=1)
        promoter = DelayedMessagePromoter(queue, interval_seconds=0.01)
        await promoter.start_background()
        try:
            for _ in range(100):
                if await queue.queue_length("notifications"):
                    break
                await asyncio.sleep(0.01)
        finally:
            await promoter.stop()
        assert await queue.queue_length("notifications") == 1


# ──────────────────────────────────────────────────────────────
#  Factory
# ──────────────────────────────────────────────────────────────

class TestQueueFactory:
    def test_memory_queue_default(self):
        assert isinstance(create_delay_queue(), InMemoryDelayQueue)

    def test_redis_queue_selected(self):
        q = create_delay_queue({
            "backend": "redis",
            "redis_url": "redis://cache:6379/1",
            "max_attempts": 5,
        })
        assert isinstance(q, RedisDelayQueue)
        assert q.max_attempts == 5
        assert q.dead_letter_queue == "notifications:dlq"
