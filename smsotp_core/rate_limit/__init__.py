"""
Rate Limiting Module
====================
Fixed window counters per phone number and per source IP.
"""

from .models import RateLimitKind, RateLimitResult, RateLimitInfo
from .fixed_window import FixedWindowRateLimiter

__all__ = [
    # Models
    "RateLimitKind",
    "RateLimitResult",
    "RateLimitInfo",
    # Limiters
    "FixedWindowRateLimiter",
]
