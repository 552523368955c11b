"""
Queue Module
============
At-least-once hand-off of SMS delivery jobs.
"""

from .base import QueueError, QueueMessage, MessageQueue
from .memory import InMemoryQueue
from .redis_queue import RedisQueue

__all__ = [
    "QueueError",
    "QueueMessage",
    "MessageQueue",
    "InMemoryQueue",
    "RedisQueue",
]
