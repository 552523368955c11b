"""
Redis Queue
===========
Reliable queue on Redis lists.

Messages are LPUSHed onto the queue list and moved atomically to a
processing list with BLMOVE when received. Each received entry gets a lease
in a sorted set scored by its receive time. ack removes the entry and its
lease; release pushes it back, or onto the dead-letter list once
max_receives is reached.

Entries whose lease is older than the visibility timeout belong to a worker
that died mid-delivery. requeue_stale() returns them to the queue, and a
stale entry counts as one receive.
"""

import json
import time
from typing import Any, Callable, Dict, Optional

import redis.asyncio as aioredis
import structlog
from redis.exceptions import RedisError

from ..crypto import generate_uuid
from .base import MessageQueue, QueueError, QueueMessage

logger = structlog.get_logger(__name__)

# KEYS: processing, leases, target list
# ARGV: stale entry, entry to push
# Removing the entry first means only one reaper can claim it.
CLAIM_SCRIPT = """
if redis.call('LREM', KEYS[1], 1, ARGV[1]) == 0 then
    redis.call('ZREM', KEYS[2], ARGV[1])
    return 0
end
redis.call('ZREM', KEYS[2], ARGV[1])
redis.call('LPUSH', KEYS[3], ARGV[2])
return 1
"""


def _encode(message_id: str, body: Dict[str, Any], receive_count: int) -> str:
    return json.dumps(
        {"id": message_id, "body": body, "receiveCount": receive_count},
        separators=(",", ":"),
    )


class RedisQueue(MessageQueue):
    """At-least-once queue backed by Redis lists."""

    def __init__(
        self,
        redis_client,
        queue_key: str,
        max_receives: int = 5,
        visibility_timeout: float = 60.0,
        clock: Callable[[], float] = time.time,
    ):
        """
        Args:
            redis_client: Async Redis client created with decode_responses=True
            queue_key: Key of the pending list
            max_receives: Deliveries before a message is dead-lettered
            visibility_timeout: Seconds a received message may stay unacked
            clock: Epoch seconds source for leases
        """
        self.redis = redis_client
        self.queue_key = queue_key
        self.processing_key = f"{queue_key}:processing"
        self.lease_key = f"{queue_key}:leases"
        self.dead_letter_key = f"{queue_key}:dead"
        self.max_receives = max_receives
        self.visibility_timeout = visibility_timeout
        self._clock = clock
        self._claim = self.redis.register_script(CLAIM_SCRIPT)

    @classmethod
    def from_url(
        cls,
        url: str,
        queue_key: str,
        max_receives: int = 5,
        visibility_timeout: float = 60.0,
        timeout: float = 2.0,
    ) -> "RedisQueue":
        # No socket_timeout: BLMOVE blocks for the receive timeout
        client = aioredis.from_url(
            url,
            decode_responses=True,
            socket_connect_timeout=timeout,
        )
        return cls(
            client,
            queue_key,
            max_receives=max_receives,
            visibility_timeout=visibility_timeout,
        )

    async def enqueue(self, body: Dict[str, Any]) -> str:
        message_id = generate_uuid()
        try:
            await self.redis.lpush(self.queue_key, _encode(message_id, body, 0))
        except RedisError as e:
            logger.error("Queue enqueue failed", queue=self.queue_key, error=str(e))
            raise QueueError(str(e), operation="enqueue") from e
        return message_id

    async def receive(self, timeout: float = 1.0) -> Optional[QueueMessage]:
        try:
            raw = await self.redis.blmove(
                self.queue_key,
                self.processing_key,
                timeout,
                src="RIGHT",
                dest="LEFT",
            )
            if raw is not None:
                await self.redis.zadd(self.lease_key, {raw: self._clock()})
        except RedisError as e:
            logger.error("Queue receive failed", queue=self.queue_key, error=str(e))
            raise QueueError(str(e), operation="receive") from e

        if raw is None:
            return None

        try:
            data = json.loads(raw)
            return QueueMessage(
                id=data["id"],
                body=data["body"],
                receive_count=int(data.get("receiveCount", 0)) + 1,
                raw=raw,
            )
        except (ValueError, KeyError, TypeError):
            logger.error("Dropping undecodable queue entry", queue=self.queue_key)
            await self._forget(raw, operation="receive")
            return None

    async def _forget(self, raw: str, operation: str) -> None:
        try:
            async with self.redis.pipeline(transaction=True) as pipe:
                pipe.lrem(self.processing_key, 1, raw)
                pipe.zrem(self.lease_key, raw)
                await pipe.execute()
        except RedisError as e:
            raise QueueError(str(e), operation=operation) from e

    async def ack(self, message: QueueMessage) -> None:
        await self._forget(message.raw, operation="ack")

    async def release(self, message: QueueMessage) -> bool:
        dead = message.receive_count >= self.max_receives
        try:
            async with self.redis.pipeline(transaction=True) as pipe:
                pipe.lrem(self.processing_key, 1, message.raw)
                pipe.zrem(self.lease_key, message.raw)
                if dead:
                    pipe.lpush(self.dead_letter_key, message.raw)
                else:
                    pipe.lpush(
                        self.queue_key,
                        _encode(message.id, message.body, message.receive_count),
                    )
                await pipe.execute()
        except RedisError as e:
            raise QueueError(str(e), operation="release") from e

        if dead:
            logger.warning(
                "Message dead-lettered",
                message_id=message.id,
                receive_count=message.receive_count,
            )
        return not dead

    async def requeue_stale(self) -> int:
        now = self._clock()
        requeued = 0
        try:
            entries = await self.redis.lrange(self.processing_key, 0, -1)
            for raw in entries:
                leased_at = await self.redis.zscore(self.lease_key, raw)
                if leased_at is None:
                    # Receiver died before taking the lease; start the clock now
                    await self.redis.zadd(self.lease_key, {raw: now}, nx=True)
                    continue
                if now - leased_at < self.visibility_timeout:
                    continue

                target, replacement = self._stale_target(raw)
                claimed = await self._claim(
                    keys=[self.processing_key, self.lease_key, target],
                    args=[raw, replacement],
                )
                if claimed and target == self.queue_key:
                    requeued += 1
        except RedisError as e:
            logger.error("Queue requeue failed", queue=self.queue_key, error=str(e))
            raise QueueError(str(e), operation="requeue") from e

        if requeued:
            logger.warning("Stale messages requeued", queue=self.queue_key, count=requeued)
        return requeued

    def _stale_target(self, raw: str):
        """Where a timed-out entry goes, and in what form."""
        try:
            data = json.loads(raw)
            message_id, body = data["id"], data["body"]
            receive_count = int(data.get("receiveCount", 0)) + 1
        except (ValueError, KeyError, TypeError):
            return self.dead_letter_key, raw

        if receive_count >= self.max_receives:
            logger.warning(
                "Message dead-lettered",
                message_id=message_id,
                receive_count=receive_count,
            )
            return self.dead_letter_key, raw
        return self.queue_key, _encode(message_id, body, receive_count)

    async def ping(self) -> bool:
        try:
            return bool(await self.redis.ping())
        except RedisError as e:
            logger.error("Queue ping failed", queue=self.queue_key, error=str(e))
            return False

    async def close(self) -> None:
        await self.redis.aclose()
