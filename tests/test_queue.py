"""
Unit Tests for the Delivery Queues
==================================
"""

import pytest


def _redis_queue(max_receives=2, clock=None):
    fakeredis = pytest.importorskip("fakeredis")
    from smsotp_core.queue import RedisQueue

    client = fakeredis.FakeAsyncRedis(server=fakeredis.FakeServer(), decode_responses=True)
    extra = {"clock": clock} if clock is not None else {}
    return RedisQueue(client, "test:sms", max_receives=max_receives, visibility_timeout=30, **extra)


class TestInMemoryQueue:
    """Tests for InMemoryQueue."""

    @pytest.mark.asyncio
    async def test_enqueue_receive_ack(self):
        """Messages are delivered once and acked."""
        from smsotp_core.queue import InMemoryQueue

        queue = InMemoryQueue()
        message_id = await queue.enqueue({"sessionId": "s1"})

        message = await queue.receive(timeout=0.1)

        assert message.id == message_id
        assert message.body == {"sessionId": "s1"}
        assert message.receive_count == 1
        await queue.ack(message)
        assert await queue.receive(timeout=0.01) is None

    @pytest.mark.asyncio
    async def test_release_redelivers_then_dead_letters(self):
        """Released messages come back until max_receives is reached."""
        from smsotp_core.queue import InMemoryQueue

        queue = InMemoryQueue(max_receives=2)
        await queue.enqueue({"n": 1})

        first = await queue.receive(timeout=0.1)
        assert await queue.release(first) is True

        second = await queue.receive(timeout=0.1)
        assert second.receive_count == 2
        assert await queue.release(second) is False

        assert queue.dead_letters == [second]
        assert queue.pending_count() == 0

    def test_repr_hides_body(self):
        """Message bodies never show up in reprs."""
        from smsotp_core.queue import QueueMessage

        message = QueueMessage(id="m1", body={"otp": "123456"}, receive_count=1)

        assert "123456" not in repr(message)


class TestRedisQueue:
    """Tests for RedisQueue against fakeredis."""

    @pytest.mark.asyncio
    async def test_enqueue_receive_ack(self):
        """Received messages sit on the processing list until acked."""
        queue = _redis_queue()
        message_id = await queue.enqueue({"sessionId": "s1"})

        message = await queue.receive(timeout=0.1)

        assert message.id == message_id
        assert message.body == {"sessionId": "s1"}
        assert message.receive_count == 1
        assert await queue.redis.llen(queue.processing_key) == 1

        await queue.ack(message)
        assert await queue.redis.llen(queue.processing_key) == 0
        assert await queue.redis.llen(queue.queue_key) == 0

    @pytest.mark.asyncio
    async def test_release_and_dead_letter(self):
        """Released messages are redelivered, then dead-lettered."""
        queue = _redis_queue(max_receives=2)
        await queue.enqueue({"n": 1})

        first = await queue.receive(timeout=0.1)
        assert await queue.release(first) is True

        second = await queue.receive(timeout=0.1)
        assert second.id == first.id
        assert second.receive_count == 2
        assert await queue.release(second) is False

        assert await queue.redis.llen(queue.dead_letter_key) == 1
        assert await queue.redis.llen(queue.processing_key) == 0
        assert await queue.redis.llen(queue.queue_key) == 0

    @pytest.mark.asyncio
    async def test_undecodable_entry_is_dropped(self):
        """Garbage on the list is removed rather than redelivered forever."""
        queue = _redis_queue()
        await queue.redis.lpush(queue.queue_key, "not json")

        assert await queue.receive(timeout=0.1) is None
        assert await queue.redis.llen(queue.processing_key) == 0

    @pytest.mark.asyncio
    async def test_redis_errors_become_queue_errors(self):
        """Connection failures surface as QueueError."""
        from redis.exceptions import ConnectionError as RedisConnectionError
        from smsotp_core.queue import QueueError

        queue = _redis_queue()

        async def broken(*args, **kwargs):
            raise RedisConnectionError("connection refused")

        queue.redis.lpush = broken

        with pytest.raises(QueueError):
            await queue.enqueue({"n": 1})

    @pytest.mark.asyncio
    async def test_ping(self):
        """Ping reports broker reachability without raising."""
        from redis.exceptions import ConnectionError as RedisConnectionError

        queue = _redis_queue()
        assert await queue.ping() is True

        async def broken():
            raise RedisConnectionError("connection refused")

        queue.redis.ping = broken

        assert await queue.ping() is False


class TestRedisQueueVisibility:
    """Messages abandoned between receive and ack are recovered."""

    @pytest.mark.asyncio
    async def test_stale_message_is_requeued(self, clock):
        pytest.importorskip("lupa")
        queue = _redis_queue(max_receives=3, clock=clock)
        message_id = await queue.enqueue({"n": 1})
        await queue.receive(timeout=0.1)

        clock.advance(10)
        assert await queue.requeue_stale() == 0

        clock.advance(25)
        assert await queue.requeue_stale() == 1
        assert await queue.redis.llen(queue.processing_key) == 0
        assert await queue.redis.zcard(queue.lease_key) == 0

        again = await queue.receive(timeout=0.1)
        assert again.id == message_id
        assert again.receive_count == 2

    @pytest.mark.asyncio
    async def test_stale_message_at_limit_is_dead_lettered(self, clock):
        pytest.importorskip("lupa")
        queue = _redis_queue(max_receives=1, clock=clock)
        await queue.enqueue({"n": 1})
        await queue.receive(timeout=0.1)
        clock.advance(31)

        assert await queue.requeue_stale() == 0

        assert await queue.redis.llen(queue.dead_letter_key) == 1
        assert await queue.redis.llen(queue.processing_key) == 0
        assert await queue.redis.llen(queue.queue_key) == 0

    @pytest.mark.asyncio
    async def test_acked_message_leaves_no_lease(self, clock):
        queue = _redis_queue(clock=clock)
        await queue.enqueue({"n": 1})
        message = await queue.receive(timeout=0.1)
        assert await queue.redis.zscore(queue.lease_key, message.raw) == clock()

        await queue.ack(message)

        assert await queue.redis.zcard(queue.lease_key) == 0

    @pytest.mark.asyncio
    async def test_unleased_entry_gets_a_lease_first(self, clock):
        """An entry moved without a lease is timed from when it is first seen."""
        pytest.importorskip("lupa")
        queue = _redis_queue(clock=clock)
        await queue.redis.lpush(queue.processing_key, '{"id":"m1","body":{},"receiveCount":0}')

        assert await queue.requeue_stale() == 0
        clock.advance(31)
        assert await queue.requeue_stale() == 1
        assert (await queue.receive(timeout=0.1)).id == "m1"
