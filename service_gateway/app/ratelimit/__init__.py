"""
Rate limiting package for the Gateway.

Fixed one-minute window counters keyed by wallet (optionally wallet and
API), with an in-process store and a Redis store for shared deployments.
"""

from .fixed_window import FixedWindowRateLimiter, InMemoryWindowStore, RedisWindowStore, WindowResult

__all__ = [
    "FixedWindowRateLimiter",
    "InMemoryWindowStore",
    "RedisWindowStore",
    "WindowResult",
]
