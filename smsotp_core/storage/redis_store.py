"""
Redis Store
===========
Redis-backed keyed store using Lua scripts for atomic conditional writes.

Items are hashes whose attribute values are JSON-encoded. Preconditions
compare encoded values inside the script, so the check and the mutation
happen in one atomic step. Secondary indexes are sorted sets scored by the
index's sort attribute. TTL attributes become EXPIREAT on the hash.
"""

import json
import math
from typing import Any, Dict, List, Optional, Sequence

import redis.asyncio as aioredis
import structlog
from redis.exceptions import NoScriptError, RedisError

from .base import (
    ConditionFailedError,
    KeyValueStore,
    StoreError,
    TableSpec,
    expected_alternatives,
)

logger = structlog.get_logger(__name__)

# Shared helper: add the item to one secondary index and keep the index
# alive at least as long as the item.
_INDEX_HELPER = """
local function index_item(key, member, prefix, field, sort_field)
    local value = redis.call('HGET', key, field)
    if not value then
        return
    end
    local score = tonumber(redis.call('HGET', key, sort_field) or '0') or 0
    local index_key = prefix .. value
    redis.call('ZADD', index_key, score, member)
    local ttl = redis.call('PTTL', key)
    if ttl > 0 and ttl > redis.call('PTTL', index_key) then
        redis.call('PEXPIRE', index_key, ttl)
    end
end
"""

# KEYS[1] item key
# ARGV: if_absent, expire_at, member, n_fields, (field, value)*, n_indexes,
#       (prefix, field, sort_field)*
PUT_SCRIPT = _INDEX_HELPER + """
local key = KEYS[1]
if ARGV[1] == '1' and redis.call('EXISTS', key) == 1 then
    return 0
end
redis.call('DEL', key)

local pos = 5
local n_fields = tonumber(ARGV[4])
for i = 1, n_fields do
    redis.call('HSET', key, ARGV[pos], ARGV[pos + 1])
    pos = pos + 2
end

local expire_at = tonumber(ARGV[2])
if expire_at > 0 then
    redis.call('EXPIREAT', key, expire_at)
end

local n_indexes = tonumber(ARGV[pos])
pos = pos + 1
for i = 1, n_indexes do
    index_item(key, ARGV[3], ARGV[pos], ARGV[pos + 1], ARGV[pos + 2])
    pos = pos + 3
end
return 1
"""

# KEYS[1] item key
# ARGV: member, expire_at, n_expected, (field, n_values, value*)*,
#       n_set, (field, value)*, n_incr, (field, amount)*,
#       n_indexes, (prefix, field, sort_field)*
UPDATE_SCRIPT = _INDEX_HELPER + """
local key = KEYS[1]
if redis.call('EXISTS', key) == 0 then
    return {'missing'}
end

local pos = 3
local n_expected = tonumber(ARGV[pos])
pos = pos + 1
for i = 1, n_expected do
    local current = redis.call('HGET', key, ARGV[pos]) or 'null'
    local n_values = tonumber(ARGV[pos + 1])
    local matched = false
    for j = 1, n_values do
        if current == ARGV[pos + 1 + j] then
            matched = true
        end
    end
    if not matched then
        return {'conflict'}
    end
    pos = pos + 2 + n_values
end

local n_set = tonumber(ARGV[pos])
pos = pos + 1
for i = 1, n_set do
    redis.call('HSET', key, ARGV[pos], ARGV[pos + 1])
    pos = pos + 2
end

local n_incr = tonumber(ARGV[pos])
pos = pos + 1
for i = 1, n_incr do
    redis.call('HINCRBY', key, ARGV[pos], tonumber(ARGV[pos + 1]))
    pos = pos + 2
end

local expire_at = tonumber(ARGV[2])
if expire_at > 0 then
    redis.call('EXPIREAT', key, expire_at)
end

local n_indexes = tonumber(ARGV[pos])
pos = pos + 1
for i = 1, n_indexes do
    index_item(key, ARGV[1], ARGV[pos], ARGV[pos + 1], ARGV[pos + 2])
    pos = pos + 3
end

local result = redis.call('HGETALL', key)
table.insert(result, 1, 'ok')
return result
"""


def _encode(value: Any) -> str:
    return json.dumps(value, separators=(",", ":"))


def _decode_hash(raw: Dict[str, str]) -> Dict[str, Any]:
    return {name: json.loads(value) for name, value in raw.items()}


def _decode_pairs(flat: Sequence[str]) -> Dict[str, Any]:
    return {flat[i]: json.loads(flat[i + 1]) for i in range(0, len(flat), 2)}


class RedisStore(KeyValueStore):
    """
    Redis-backed keyed store.

    Uses Lua scripts for atomic operations.
    """

    def __init__(self, redis_client, key_prefix: str = "sms-otp"):
        """
        Args:
            redis_client: Async Redis client created with decode_responses=True
            key_prefix: Namespace for every key this store writes
        """
        self.redis = redis_client
        self.key_prefix = key_prefix
        self._script_shas: Dict[str, str] = {}

    @classmethod
    def from_url(cls, url: str, key_prefix: str = "sms-otp", timeout: float = 2.0) -> "RedisStore":
        """Create a store with bounded socket timeouts."""
        client = aioredis.from_url(
            url,
            decode_responses=True,
            socket_timeout=timeout,
            socket_connect_timeout=timeout,
        )
        return cls(client, key_prefix=key_prefix)

    def _item_key(self, table: TableSpec, key: str) -> str:
        return f"{self.key_prefix}:{table.name}:{key}"

    def _index_prefix(self, table: TableSpec, index: str) -> str:
        return f"{self.key_prefix}:{table.name}:idx:{index}:"

    def _expire_at(self, table: TableSpec, fields: Dict[str, Any]) -> int:
        if not table.ttl_field or fields.get(table.ttl_field) is None:
            return 0
        return int(math.ceil(fields[table.ttl_field]))

    def _index_args(self, table: TableSpec, only_fields: Optional[set] = None) -> List[Any]:
        args: List[Any] = []
        count = 0
        for name, index in table.indexes.items():
            if only_fields is not None and index.field not in only_fields:
                continue
            args.extend([self._index_prefix(table, name), index.field, index.sort_field])
            count += 1
        return [count] + args

    async def _ensure_script(self, script: str) -> str:
        """Load a Lua script into Redis if needed."""
        sha = self._script_shas.get(script)
        if sha is None:
            sha = await self.redis.script_load(script)
            self._script_shas[script] = sha
        return sha

    async def _run_script(self, script: str, operation: str, keys: List[str], args: List[Any]):
        try:
            sha = await self._ensure_script(script)
            try:
                return await self.redis.evalsha(sha, len(keys), *keys, *args)
            except NoScriptError:
                # Script cache was flushed (restart, failover)
                self._script_shas.pop(script, None)
                sha = await self._ensure_script(script)
                return await self.redis.evalsha(sha, len(keys), *keys, *args)
        except RedisError as e:
            logger.error("Redis script failed", operation=operation, error=str(e))
            raise StoreError(str(e), operation=operation) from e

    async def get(self, table: TableSpec, key: str) -> Optional[Dict[str, Any]]:
        try:
            raw = await self.redis.hgetall(self._item_key(table, key))
        except RedisError as e:
            logger.error("Redis get failed", table=table.name, error=str(e))
            raise StoreError(str(e), operation="get") from e
        return _decode_hash(raw) if raw else None

    async def put(
        self,
        table: TableSpec,
        item: Dict[str, Any],
        if_absent: bool = False,
    ) -> bool:
        member = table.key_of(item)
        args: List[Any] = [
            "1" if if_absent else "0",
            self._expire_at(table, item),
            member,
            len(item),
        ]
        for name, value in item.items():
            args.extend([name, _encode(value)])
        args.extend(self._index_args(table))

        result = await self._run_script(
            PUT_SCRIPT, "put", [self._item_key(table, member)], args
        )
        return bool(int(result))

    async def conditional_update(
        self,
        table: TableSpec,
        key: str,
        set_fields: Optional[Dict[str, Any]] = None,
        increment: Optional[Dict[str, int]] = None,
        expected: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        set_fields = set_fields or {}
        increment = increment or {}
        expected = expected or {}

        args: List[Any] = [key, self._expire_at(table, set_fields), len(expected)]
        for name, value in expected.items():
            alternatives = expected_alternatives(value)
            args.extend([name, len(alternatives)])
            args.extend(_encode(alternative) for alternative in alternatives)

        args.append(len(set_fields))
        for name, value in set_fields.items():
            args.extend([name, _encode(value)])

        args.append(len(increment))
        for name, amount in increment.items():
            args.extend([name, int(amount)])

        args.extend(self._index_args(table, only_fields=set(set_fields)))

        result = await self._run_script(
            UPDATE_SCRIPT, "conditional_update", [self._item_key(table, key)], args
        )
        status = result[0]
        if status == "missing":
            raise ConditionFailedError(table.name, key, missing=True)
        if status == "conflict":
            raise ConditionFailedError(table.name, key)
        return _decode_pairs(result[1:])

    async def query_by_secondary_key(
        self,
        table: TableSpec,
        index: str,
        value: Any,
        limit: Optional[int] = None,
    ) -> List[Dict[str, Any]]:
        index_key = self._index_prefix(table, index) + _encode(value)
        try:
            members = await self.redis.zrevrange(index_key, 0, -1)
            if not members:
                return []
            async with self.redis.pipeline(transaction=False) as pipe:
                for member in members:
                    pipe.hgetall(self._item_key(table, member))
                rows = await pipe.execute()
        except RedisError as e:
            logger.error("Redis query failed", table=table.name, index=index, error=str(e))
            raise StoreError(str(e), operation="query") from e

        items = [_decode_hash(raw) for raw in rows if raw]
        return items[:limit] if limit is not None else items

    async def ping(self) -> bool:
        try:
            return bool(await self.redis.ping())
        except RedisError as e:
            logger.error("Redis ping failed", error=str(e))
            return False

    async def close(self) -> None:
        await self.redis.aclose()
