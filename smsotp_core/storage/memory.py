"""
In-Memory Store
===============
Process-local keyed store for development and testing.
"""

import asyncio
import time
from typing import Any, Callable, Dict, List, Optional

from .base import (
    ConditionFailedError,
    KeyValueStore,
    TableSpec,
    expected_alternatives,
)


class InMemoryStore(KeyValueStore):
    """
    Simple in-memory keyed store.

    For development and testing only.
    Use RedisStore in production.
    """

    def __init__(self, clock: Callable[[], float] = time.time):
        self._clock = clock
        self._tables: Dict[str, Dict[str, Dict[str, Any]]] = {}
        self._lock = asyncio.Lock()

    def _table(self, table: TableSpec) -> Dict[str, Dict[str, Any]]:
        return self._tables.setdefault(table.name, {})

    def _is_expired(self, table: TableSpec, item: Dict[str, Any]) -> bool:
        if not table.ttl_field:
            return False
        ttl = item.get(table.ttl_field)
        return ttl is not None and ttl <= self._clock()

    def _live(self, table: TableSpec, key: str) -> Optional[Dict[str, Any]]:
        rows = self._table(table)
        item = rows.get(key)
        if item is not None and self._is_expired(table, item):
            del rows[key]
            return None
        return item

    async def get(self, table: TableSpec, key: str) -> Optional[Dict[str, Any]]:
        item = self._live(table, key)
        return dict(item) if item is not None else None

    async def put(
        self,
        table: TableSpec,
        item: Dict[str, Any],
        if_absent: bool = False,
    ) -> bool:
        key = table.key_of(item)
        async with self._lock:
            if if_absent and self._live(table, key) is not None:
                return False
            self._table(table)[key] = dict(item)
            return True

    async def conditional_update(
        self,
        table: TableSpec,
        key: str,
        set_fields: Optional[Dict[str, Any]] = None,
        increment: Optional[Dict[str, int]] = None,
        expected: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        async with self._lock:
            item = self._live(table, key)
            if item is None:
                raise ConditionFailedError(table.name, key, missing=True)

            for name, value in (expected or {}).items():
                if item.get(name) not in expected_alternatives(value):
                    raise ConditionFailedError(table.name, key)

            item.update(set_fields or {})
            for name, amount in (increment or {}).items():
                item[name] = int(item.get(name) or 0) + amount

            return dict(item)

    async def query_by_secondary_key(
        self,
        table: TableSpec,
        index: str,
        value: Any,
        limit: Optional[int] = None,
    ) -> List[Dict[str, Any]]:
        index_def = table.indexes[index]
        matches = [
            dict(item)
            for key, item in list(self._table(table).items())
            if item.get(index_def.field) == value and self._live(table, key) is not None
        ]
        matches.sort(key=lambda item: item.get(index_def.sort_field) or 0, reverse=True)
        return matches[:limit] if limit is not None else matches

    def dump(self, table: TableSpec) -> List[Dict[str, Any]]:
        """All live items of a table (test helper)."""
        return [
            dict(item)
            for key, item in list(self._table(table).items())
            if self._live(table, key) is not None
        ]
