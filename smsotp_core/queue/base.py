"""
Message Queue Interface
=======================
At-least-once hand-off of SMS delivery jobs to the delivery worker.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Dict, Optional


class QueueError(Exception):
    """The queue is unavailable or a call timed out."""

    def __init__(self, message: str, operation: str = "unknown"):
        self.message = message
        self.operation = operation
        super().__init__(f"[{operation}] {message}")


@dataclass
class QueueMessage:
    """A received message. receive_count starts at 1."""
    id: str
    body: Dict[str, Any]
    receive_count: int
    raw: Optional[str] = None

    def __repr__(self) -> str:
        # Bodies carry plaintext OTPs
        return f"QueueMessage(id={self.id!r}, receive_count={self.receive_count})"


class MessageQueue(ABC):
    """Abstract at-least-once message queue."""

    @abstractmethod
    async def enqueue(self, body: Dict[str, Any]) -> str:
        """
        Add a message.

        Returns:
            Message ID
        """

    @abstractmethod
    async def receive(self, timeout: float = 1.0) -> Optional[QueueMessage]:
        """Take the next message, waiting up to timeout seconds."""

    @abstractmethod
    async def ack(self, message: QueueMessage) -> None:
        """Remove a processed message for good."""

    @abstractmethod
    async def release(self, message: QueueMessage) -> bool:
        """
        Return a failed message for redelivery.

        Returns:
            False if the message went to the dead-letter list instead
        """

    async def requeue_stale(self) -> int:
        """
        Return messages received longer ago than the visibility timeout
        and never acked or released.

        Returns:
            Number of messages put back on the queue
        """
        return 0

    async def ping(self) -> bool:
        """Whether the backing broker is reachable."""
        return True

    async def close(self) -> None:
        """Release connections."""
