"""
Keyed Store Interface
=====================
Durable key-value store with atomic conditional writes, secondary-key
queries and TTL expiry. Sessions, OTP records, rate limit counters and
audit entries all live behind this interface.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Tuple


class StoreError(Exception):
    """The store is unavailable or a call timed out."""

    def __init__(self, message: str, operation: str = "unknown"):
        self.message = message
        self.operation = operation
        super().__init__(f"[{operation}] {message}")


class ConditionFailedError(Exception):
    """A conditional write's precondition did not hold."""

    def __init__(self, table: str, key: str, missing: bool = False):
        self.table = table
        self.key = key
        self.missing = missing
        reason = "item not found" if missing else "precondition failed"
        super().__init__(f"{table}/{key}: {reason}")


@dataclass(frozen=True)
class IndexSpec:
    """Secondary index: items grouped by `field`, newest `sort_field` first."""
    field: str
    sort_field: str


@dataclass(frozen=True)
class TableSpec:
    """Table definition shared by every store implementation."""
    name: str
    key_field: str
    ttl_field: Optional[str] = "ttl"
    indexes: Mapping[str, IndexSpec] = field(default_factory=dict)

    def key_of(self, item: Mapping[str, Any]) -> str:
        return str(item[self.key_field])


def expected_alternatives(value: Any) -> Tuple[Any, ...]:
    """
    Normalize one precondition value to its acceptable alternatives.

    A list, tuple, set or frozenset means "any of"; anything else is a
    single value. None matches an absent attribute.
    """
    if isinstance(value, (list, tuple, set, frozenset)):
        return tuple(value)
    return (value,)


class KeyValueStore(ABC):
    """Abstract durable keyed store."""

    @abstractmethod
    async def get(self, table: TableSpec, key: str) -> Optional[Dict[str, Any]]:
        """
        Fetch an item by primary key.

        Returns:
            The item, or None if absent or past its TTL
        """

    @abstractmethod
    async def put(
        self,
        table: TableSpec,
        item: Dict[str, Any],
        if_absent: bool = False,
    ) -> bool:
        """
        Write a whole item.

        Args:
            table: Target table
            item: Item including its primary key attribute
            if_absent: Only write if no live item has this key

        Returns:
            False if if_absent was set and an item already existed
        """

    @abstractmethod
    async def conditional_update(
        self,
        table: TableSpec,
        key: str,
        set_fields: Optional[Dict[str, Any]] = None,
        increment: Optional[Dict[str, int]] = None,
        expected: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        """
        Atomically check a precondition and mutate an item.

        Args:
            table: Target table
            key: Primary key
            set_fields: Attributes to overwrite
            increment: Integer attributes to increment (absent counts as 0)
            expected: Precondition, attribute -> value or alternatives

        Returns:
            The item after the mutation

        Raises:
            ConditionFailedError: Item missing or precondition false
        """

    @abstractmethod
    async def query_by_secondary_key(
        self,
        table: TableSpec,
        index: str,
        value: Any,
        limit: Optional[int] = None,
    ) -> List[Dict[str, Any]]:
        """
        Fetch live items whose indexed attribute equals value, newest first.
        """

    async def ping(self) -> bool:
        """Check store connectivity."""
        return True

    async def close(self) -> None:
        """Release connections."""
