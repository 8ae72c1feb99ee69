"""
Rate Limiting Infrastructure
============================

Fixed-window rate limiter guarding calls to the OpenAI API.

The limiter keeps no state of its own: counters live in an injected store so
that several bulk runs (or several processes, with the Redis store) share the
same quota. Each store increments with an atomic check-and-increment, so two
callers can never both take the last slot of a window.

A window starts with its first request and resets ``decay_minutes`` later;
it does not slide.
"""

import inspect
import math
import threading
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Optional, Union

import redis.asyncio as aioredis

from helpdesk.config import settings
from helpdesk.core import ConfigurationException
from helpdesk.shared.infrastructure.logging import get_logger

logger = get_logger(__name__)


class IRateLimitStore(ABC):
    """
    Interface for rate limit counter storage.

    All window lengths are in seconds.
    """

    @abstractmethod
    async def acquire(self, key: str, limit: int, window: int) -> bool:
        """Take one slot of the current window; False when it is full."""

    @abstractmethod
    async def hits(self, key: str, window: int) -> int:
        """Number of slots taken in the current window."""

    @abstractmethod
    async def reset_in(self, key: str, window: int) -> float:
        """Seconds until the current window ends (0 when no window is open)."""

    @abstractmethod
    async def clear(self, key: str) -> None:
        """Drop the current window."""


@dataclass
class _Window:
    started_at: float
    count: int = 0


class MemoryRateLimitStore(IRateLimitStore):
    """
    Process-local counter store.

    State is a dict keyed by limiter name, guarded by a mutex. The clock is
    injectable so tests can move time forward without sleeping.
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        self._windows: Dict[str, _Window] = {}
        self._lock = threading.Lock()

    def _current(self, key: str, window: int) -> Optional[_Window]:
        # Caller must hold the lock
        current = self._windows.get(key)
        if current is not None and self._clock() - current.started_at >= window:
            del self._windows[key]
            return None
        return current

    async def acquire(self, key: str, limit: int, window: int) -> bool:
        with self._lock:
            current = self._current(key, window)
            if current is None:
                current = _Window(started_at=self._clock())
                self._windows[key] = current
            if current.count >= limit:
                return False
            current.count += 1
            return True

    async def hits(self, key: str, window: int) -> int:
        with self._lock:
            current = self._current(key, window)
            return current.count if current else 0

    async def reset_in(self, key: str, window: int) -> float:
        with self._lock:
            current = self._current(key, window)
            if current is None:
                return 0.0
            return max(0.0, current.started_at + window - self._clock())

    async def clear(self, key: str) -> None:
        with self._lock:
            self._windows.pop(key, None)


# KEYS[1] = counter key, ARGV[1] = limit, ARGV[2] = window seconds
_ACQUIRE_SCRIPT = """
local current = tonumber(redis.call('GET', KEYS[1]) or '0')
if current >= tonumber(ARGV[1]) then
    return 0
end
current = redis.call('INCR', KEYS[1])
if current == 1 then
    redis.call('EXPIRE', KEYS[1], ARGV[2])
end
return 1
"""


class RedisRateLimitStore(IRateLimitStore):
    """
    Counter store shared across processes.

    The window is the key's TTL, set by the request that opens it. Check and
    increment run inside one Lua script.
    """

    KEY_PREFIX = "helpdesk:rate_limit:"

    def __init__(self, redis_url: Optional[str] = None, client: Optional[Any] = None):
        self._client = client or aioredis.from_url(
            redis_url or settings.redis_url,
            decode_responses=True,
            socket_connect_timeout=2,
        )
        self._acquire_script = self._client.register_script(_ACQUIRE_SCRIPT)

    def _key(self, key: str) -> str:
        return f"{self.KEY_PREFIX}{key}"

    async def acquire(self, key: str, limit: int, window: int) -> bool:
        allowed = await self._acquire_script(keys=[self._key(key)], args=[limit, window])
        return bool(int(allowed))

    async def hits(self, key: str, window: int) -> int:
        value = await self._client.get(self._key(key))
        return int(value) if value else 0

    async def reset_in(self, key: str, window: int) -> float:
        ttl_ms = await self._client.pttl(self._key(key))
        # -2: no key, -1: no expiry
        return max(ttl_ms, 0) / 1000

    async def clear(self, key: str) -> None:
        await self._client.delete(self._key(key))

    async def close(self) -> None:
        await self._client.aclose()


def build_rate_limit_store(backend: Optional[str] = None) -> IRateLimitStore:
    """Create the counter store selected by RATE_LIMIT_STORE."""
    backend = (backend or settings.rate_limit_store).lower()
    if backend == "memory":
        return MemoryRateLimitStore()
    if backend == "redis":
        return RedisRateLimitStore(settings.redis_url)
    raise ConfigurationException(f"Unknown rate limit store: {backend}")


class RateLimiter:
    """
    Rate limiter for OpenAI classification calls.

    Usage:
        limiter = RateLimiter.with_limits(store, 30)
        result = await limiter.attempt(lambda: queue.enqueue(...))
        if result is False:
            ...  # blocked, nothing was called
    """

    DEFAULT_NAME = "openai_classification"
    BACKOFF_MULTIPLIER = 2

    def __init__(
        self,
        store: IRateLimitStore,
        rate_limit: Optional[int] = None,
        decay_minutes: Optional[int] = None,
        name: str = DEFAULT_NAME,
        max_backoff_minutes: Optional[int] = None,
    ):
        self._store = store
        self._name = name
        self._rate_limit = max(1, rate_limit if rate_limit is not None else settings.rate_limit_per_minute)
        self._decay_minutes = max(
            1, decay_minutes if decay_minutes is not None else settings.rate_limit_decay_minutes
        )
        self._max_backoff_minutes = (
            max_backoff_minutes if max_backoff_minutes is not None
            else settings.rate_limit_max_backoff_minutes
        )

    # ========== Factories ==========

    @classmethod
    def with_limits(cls, store: IRateLimitStore, rate_limit: int, decay_minutes: int = 1) -> "RateLimiter":
        """Create a limiter with explicit limits."""
        return cls(store, rate_limit=rate_limit, decay_minutes=decay_minutes)

    @classmethod
    def conservative(cls, store: IRateLimitStore) -> "RateLimiter":
        """15 requests per minute."""
        return cls(store, rate_limit=15, decay_minutes=1)

    @classmethod
    def aggressive(cls, store: IRateLimitStore) -> "RateLimiter":
        """60 requests per minute."""
        return cls(store, rate_limit=60, decay_minutes=1)

    # ========== Properties ==========

    @property
    def name(self) -> str:
        return self._name

    @property
    def rate_limit(self) -> int:
        return self._rate_limit

    @property
    def decay_minutes(self) -> int:
        return self._decay_minutes

    @property
    def window_seconds(self) -> int:
        return self._decay_minutes * 60

    # ========== Operations ==========

    async def can_make_request(self) -> bool:
        """Check if a call fits in the current window."""
        return await self.attempts() < self._rate_limit

    async def attempt(self, callback: Callable[[], Union[Any, Awaitable[Any]]]) -> Any:
        """
        Run ``callback`` if the window has room.

        Returns the callback's result, or False when rate limited. The slot is
        taken before the callback runs and is not returned if it raises.
        """
        acquired = await self._store.acquire(self._name, self._rate_limit, self.window_seconds)
        if not acquired:
            await self._log_rate_limit_hit()
            return False

        result = callback()
        if inspect.isawaitable(result):
            result = await result
        return result

    async def attempts(self) -> int:
        """Number of calls made in the current window."""
        return await self._store.hits(self._name, self.window_seconds)

    async def remaining_attempts(self) -> int:
        """Calls left in the current window."""
        return max(0, self._rate_limit - await self.attempts())

    async def available_in(self) -> int:
        """Seconds until a call is allowed again; 0 when not blocked."""
        if await self.can_make_request():
            return 0
        return math.ceil(await self._store.reset_in(self._name, self.window_seconds))

    async def clear(self) -> None:
        """Reset the window immediately."""
        await self._store.clear(self._name)

    async def get_backoff_delay(self) -> int:
        """
        Advisory exponential backoff in seconds.

        0 before the first call of a window, then
        min(decay_minutes * 2^attempts, max_backoff_minutes) minutes.
        """
        attempts = await self.attempts()
        if attempts == 0:
            return 0

        backoff_minutes = min(
            self._decay_minutes * (self.BACKOFF_MULTIPLIER ** attempts),
            self._max_backoff_minutes,
        )
        return backoff_minutes * 60

    async def should_use_backoff(self) -> bool:
        """True once the window is exhausted."""
        return await self.attempts() > 0 and not await self.can_make_request()

    async def get_status(self) -> Dict[str, Any]:
        """Snapshot of the limiter for logs and the CLI."""
        return {
            "can_make_request": await self.can_make_request(),
            "remaining_attempts": await self.remaining_attempts(),
            "attempts_made": await self.attempts(),
            "rate_limit": self._rate_limit,
            "available_in_seconds": await self.available_in(),
            "decay_minutes": self._decay_minutes,
        }

    async def _log_rate_limit_hit(self) -> None:
        logger.warning(
            "OpenAI API rate limit exceeded",
            extra={
                "limiter": self._name,
                "rate_limit": self._rate_limit,
                "attempts_made": await self.attempts(),
                "available_in_seconds": await self.available_in(),
            },
        )


__all__ = [
    "IRateLimitStore",
    "MemoryRateLimitStore",
    "RedisRateLimitStore",
    "RateLimiter",
    "build_rate_limit_store",
]
