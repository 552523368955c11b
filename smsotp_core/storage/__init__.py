"""
Storage Module
==============
Durable keyed store with conditional writes, secondary indexes and TTL.
"""

from .base import (
    StoreError,
    ConditionFailedError,
    IndexSpec,
    TableSpec,
    KeyValueStore,
    expected_alternatives,
)
from .tables import (
    SESSION_INDEX,
    PROVIDER_MESSAGE_INDEX,
    SESSIONS,
    OTP_RECORDS,
    OTP_SEQUENCES,
    RATE_LIMITS,
    AUDIT_LOGS,
    DEBUG_OTPS,
)
from .memory import InMemoryStore
from .redis_store import RedisStore

__all__ = [
    # Errors
    "StoreError",
    "ConditionFailedError",
    # Interface
    "IndexSpec",
    "TableSpec",
    "KeyValueStore",
    "expected_alternatives",
    # Tables
    "SESSION_INDEX",
    "PROVIDER_MESSAGE_INDEX",
    "SESSIONS",
    "OTP_RECORDS",
    "OTP_SEQUENCES",
    "RATE_LIMITS",
    "AUDIT_LOGS",
    "DEBUG_OTPS",
    # Implementations
    "InMemoryStore",
    "RedisStore",
]
