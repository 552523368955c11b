"""
In-Memory Queue
===============
Process-local queue for development and testing.
"""

import asyncio
from typing import Any, Dict, List, Optional, Tuple

from ..crypto import generate_uuid
from .base import MessageQueue, QueueMessage


class InMemoryQueue(MessageQueue):
    """
    Simple in-memory queue.

    For development and testing only.
    Use RedisQueue in production.
    """

    def __init__(self, max_receives: int = 5):
        self.max_receives = max_receives
        self._pending: "asyncio.Queue[Tuple[str, Dict[str, Any], int]]" = asyncio.Queue()
        self._in_flight: Dict[str, QueueMessage] = {}
        self.dead_letters: List[QueueMessage] = []

    async def enqueue(self, body: Dict[str, Any]) -> str:
        message_id = generate_uuid()
        await self._pending.put((message_id, dict(body), 0))
        return message_id

    async def receive(self, timeout: float = 1.0) -> Optional[QueueMessage]:
        try:
            message_id, body, count = await asyncio.wait_for(self._pending.get(), timeout)
        except asyncio.TimeoutError:
            return None
        message = QueueMessage(id=message_id, body=body, receive_count=count + 1)
        self._in_flight[message_id] = message
        return message

    async def ack(self, message: QueueMessage) -> None:
        self._in_flight.pop(message.id, None)

    async def release(self, message: QueueMessage) -> bool:
        self._in_flight.pop(message.id, None)
        if message.receive_count >= self.max_receives:
            self.dead_letters.append(message)
            return False
        await self._pending.put((message.id, message.body, message.receive_count))
        return True

    def pending_count(self) -> int:
        return self._pending.qsize()

    def drain(self) -> List[Dict[str, Any]]:
        """Remove and return all pending bodies (test helper)."""
        bodies = []
        while not self._pending.empty():
            _, body, _ = self._pending.get_nowait()
            bodies.append(body)
        return bodies
