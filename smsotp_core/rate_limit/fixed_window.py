"""
Fixed Window Rate Limiter
=========================
Fixed window counters per identifier, stored in the keyed store.

The window is anchored at the first request seen for an identifier and
lasts window_seconds. A request arriving once the window has elapsed starts
a fresh window with count=1. Rejected requests are still counted so the
stored count reflects abuse volume.
"""

import math
import time
from typing import Any, Callable, Dict, Optional

import structlog

from ..storage import RATE_LIMITS, ConditionFailedError, KeyValueStore
from .models import RateLimitInfo, RateLimitKind

logger = structlog.get_logger(__name__)

# Contention on one counter is rare; a handful of re-reads is plenty.
MAX_CONTENTION_RETRIES = 5


class FixedWindowRateLimiter:
    """
    Fixed window rate limiter on top of a KeyValueStore.

    Every write is conditional on the windowStart this call observed, so
    two concurrent requests can never both take the last slot.
    """

    def __init__(self, store: KeyValueStore, clock: Callable[[], float] = time.time):
        self.store = store
        self._clock = clock

    @staticmethod
    def counter_key(identifier: str, kind: RateLimitKind) -> str:
        """Generate a rate limit counter key."""
        return f"{RateLimitKind(kind).value}:{identifier}"

    async def check_and_increment(
        self,
        identifier: str,
        kind: RateLimitKind,
        max_requests: int,
        window_seconds: int,
    ) -> RateLimitInfo:
        """
        Count one request and decide whether it is allowed.

        Args:
            identifier: Phone number or source IP
            kind: Counter family
            max_requests: Requests allowed per window
            window_seconds: Window length

        Returns:
            RateLimitInfo with decision and quota

        Raises:
            StoreError: Store unavailable
        """
        key = self.counter_key(identifier, kind)

        for _ in range(MAX_CONTENTION_RETRIES):
            now = self._clock()
            counter = await self.store.get(RATE_LIMITS, key)

            if counter is None or now - counter["windowStart"] >= window_seconds:
                info = await self._start_window(key, counter, now, max_requests, window_seconds)
            else:
                info = await self._increment(key, counter, now, max_requests, window_seconds)

            if info is not None:
                if not info.allowed:
                    logger.warning(
                        "Rate limit exceeded",
                        kind=RateLimitKind(kind).value,
                        retry_after=info.retry_after,
                    )
                return info

        # Still losing races after several rounds: treat as saturated.
        logger.warning("Rate limit counter contended", kind=RateLimitKind(kind).value)
        now = self._clock()
        return RateLimitInfo(
            allowed=False,
            remaining=0,
            limit=max_requests,
            reset_at=now + window_seconds,
            retry_after=window_seconds,
        )

    async def _start_window(
        self,
        key: str,
        counter: Optional[Dict[str, Any]],
        now: float,
        max_requests: int,
        window_seconds: int,
    ) -> Optional[RateLimitInfo]:
        fields = {
            "identifier": key,
            "count": 1,
            "windowStart": now,
            "ttl": now + 2 * window_seconds,
        }

        if counter is None:
            if not await self.store.put(RATE_LIMITS, fields, if_absent=True):
                return None
        else:
            try:
                await self.store.conditional_update(
                    RATE_LIMITS,
                    key,
                    set_fields={k: v for k, v in fields.items() if k != "identifier"},
                    expected={"windowStart": counter["windowStart"]},
                )
            except ConditionFailedError:
                return None

        return RateLimitInfo(
            allowed=max_requests >= 1,
            remaining=max(max_requests - 1, 0),
            limit=max_requests,
            reset_at=now + window_seconds,
            retry_after=None if max_requests >= 1 else window_seconds,
        )

    async def _increment(
        self,
        key: str,
        counter: Dict[str, Any],
        now: float,
        max_requests: int,
        window_seconds: int,
    ) -> Optional[RateLimitInfo]:
        window_start = counter["windowStart"]
        try:
            updated = await self.store.conditional_update(
                RATE_LIMITS,
                key,
                increment={"count": 1},
                expected={"windowStart": window_start},
            )
        except ConditionFailedError:
            return None

        count = int(updated["count"])
        reset_at = window_start + window_seconds

        if count > max_requests:
            return RateLimitInfo(
                allowed=False,
                remaining=0,
                limit=max_requests,
                reset_at=reset_at,
                retry_after=max(int(math.ceil(reset_at - now)), 1),
            )

        return RateLimitInfo(
            allowed=True,
            remaining=max_requests - count,
            limit=max_requests,
            reset_at=reset_at,
        )
