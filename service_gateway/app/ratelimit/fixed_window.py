"""
Fixed-window rate limiter for the Gateway service.

Each key gets a counter and the time its window opened. A call arriving at
or after ``start + window`` opens a new window with a zero count. Calls are
admitted while the count is below the ceiling. Windows are fixed, not
sliding, so up to twice the ceiling can pass across a window boundary.
Keys are never evicted.
"""

import math
import threading
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional

import redis.asyncio as redis
from redis.exceptions import RedisError

from shared.logging import get_logger
from shared.metrics import MetricsCollector


@dataclass(frozen=True)
class WindowResult:
    allowed: bool
    count: int
    reset_in_seconds: float


@dataclass
class _Window:
    count: int
    start: float


class InMemoryWindowStore:
    """Process-local window counters.

    The read-modify-write for a key runs under a lock and never awaits, so
    concurrent requests for the same holder cannot both take the last slot.
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        self._windows: Dict[str, _Window] = {}
        self._lock = threading.Lock()

    def __len__(self) -> int:
        return len(self._windows)

    async def consume(self, key: str, limit: int, window_seconds: float) -> WindowResult:
        with self._lock:
            now = self._clock()
            window = self._windows.get(key)
            if window is None or now >= window.start + window_seconds:
                window = _Window(count=0, start=now)
                self._windows[key] = window

            allowed = window.count < limit
            if allowed:
                window.count += 1
            return WindowResult(allowed, window.count, window.start + window_seconds - now)

    async def peek(self, key: str, window_seconds: float) -> WindowResult:
        with self._lock:
            now = self._clock()
            window = self._windows.get(key)
            if window is None or now >= window.start + window_seconds:
                return WindowResult(True, 0, window_seconds)
            return WindowResult(True, window.count, window.start + window_seconds - now)

    async def check_health(self) -> str:
        return "ok"

    async def close(self) -> None:
        return None


# KEYS[1] = counter key, ARGV[1] = limit, ARGV[2] = window in ms.
# The key's TTL is the window: it is created with the first admitted call.
_CONSUME_SCRIPT = """
local current = tonumber(redis.call('GET', KEYS[1]) or '0')
if current >= tonumber(ARGV[1]) then
    return {0, current, redis.call('PTTL', KEYS[1])}
end
local count = redis.call('INCR', KEYS[1])
if count == 1 then
    redis.call('PEXPIRE', KEYS[1], ARGV[2])
end
return {1, count, redis.call('PTTL', KEYS[1])}
"""


class RedisWindowStore:
    """Window counters shared by every gateway instance through Redis."""

    def __init__(self, redis_url: Optional[str] = None, client: Optional[redis.Redis] = None):
        if client is None:
            if redis_url is None:
                raise ValueError("redis_url or client is required")
            client = redis.from_url(redis_url, socket_connect_timeout=2, socket_timeout=2)
        self.client = client
        self._consume = client.register_script(_CONSUME_SCRIPT)

    @staticmethod
    def _ttl_seconds(pttl: Any, window_seconds: float) -> float:
        pttl = int(pttl)
        return pttl / 1000.0 if pttl >= 0 else window_seconds

    async def consume(self, key: str, limit: int, window_seconds: float) -> WindowResult:
        allowed, count, pttl = await self._consume(keys=[key], args=[limit, int(window_seconds * 1000)])
        return WindowResult(bool(int(allowed)), int(count), self._ttl_seconds(pttl, window_seconds))

    async def peek(self, key: str, window_seconds: float) -> WindowResult:
        async with self.client.pipeline(transaction=False) as pipe:
            pipe.get(key)
            pipe.pttl(key)
            value, pttl = await pipe.execute()
        if value is None:
            return WindowResult(True, 0, window_seconds)
        return WindowResult(True, int(value), self._ttl_seconds(pttl, window_seconds))

    async def check_health(self) -> str:
        try:
            await self.client.ping()
        except (RedisError, OSError):
            return "unavailable"
        return "ok"

    async def close(self) -> None:
        await self.client.aclose()


class FixedWindowRateLimiter:
    """Per-wallet call budget, sized by each API's configured ceiling."""

    def __init__(self, store=None, window_seconds: float = 60.0, scope: str = "holder_resource",
                 metrics: Optional[MetricsCollector] = None):
        if scope not in ("holder_resource", "holder"):
            raise ValueError(f"unknown rate limit scope: {scope}")
        self.store = store if store is not None else InMemoryWindowStore()
        self.window_seconds = window_seconds
        self.scope = scope
        self.metrics = metrics
        self.logger = get_logger("gateway.rate_limiter")

    def _make_key(self, holder_id: str, resource_id: Optional[str] = None) -> str:
        if self.scope == "holder_resource" and resource_id:
            return f"rate_limit:{holder_id}:{resource_id}"
        return f"rate_limit:{holder_id}"

    def _result(self, allowed: bool, count: int, limit: int, reset_in: float) -> Dict[str, Any]:
        reset_in_seconds = max(0, math.ceil(reset_in))
        result = {
            "allowed": allowed,
            "current_count": count,
            "limit": limit,
            "remaining": max(0, limit - count),
            "reset_in_seconds": reset_in_seconds,
        }
        if not allowed:
            result["retry_after"] = reset_in_seconds
        return result

    async def check_rate_limit(self, holder_id: str, ceiling: int,
                               resource_id: Optional[str] = None) -> Dict[str, Any]:
        """Consume one call from the holder's current window."""
        key = self._make_key(holder_id, resource_id)
        try:
            window = await self.store.consume(key, ceiling, self.window_seconds)
        except (RedisError, OSError) as e:
            # Grants stay authoritative; a limiter outage admits the call.
            self.logger.error("Rate limit check error", key=key, error=str(e))
            result = self._result(True, 0, ceiling, self.window_seconds)
            result["error"] = "rate limit store unavailable"
            return result

        if not window.allowed:
            self.logger.warning(
                "Rate limit exceeded",
                holder=holder_id,
                api_id=resource_id,
                current_count=window.count,
                limit=ceiling
            )
            if self.metrics:
                self.metrics.increment_counter("rate_limit_hits_total", resource_id=resource_id or "")
        return self._result(window.allowed, window.count, ceiling, window.reset_in_seconds)

    async def consume(self, holder_id: str, ceiling: int, resource_id: Optional[str] = None) -> bool:
        result = await self.check_rate_limit(holder_id, ceiling, resource_id)
        return result["allowed"]

    async def get_rate_limit_status(self, holder_id: str, ceiling: int,
                                    resource_id: Optional[str] = None) -> Dict[str, Any]:
        """Report the holder's current window without consuming from it."""
        key = self._make_key(holder_id, resource_id)
        try:
            window = await self.store.peek(key, self.window_seconds)
        except (RedisError, OSError) as e:
            self.logger.error("Rate limit status error", key=key, error=str(e))
            result = self._result(True, 0, ceiling, self.window_seconds)
            result["error"] = "rate limit store unavailable"
            return result
        return self._result(window.count < ceiling, window.count, ceiling, window.reset_in_seconds)
