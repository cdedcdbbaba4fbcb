"""Fixed-window rate limiters for outbound provider calls.

Every external call made by the export pipeline (crawl submissions and
text-generation requests) acquires a slot here first.  Within any single
window at most ``max_requests`` calls are admitted; a caller that finds the
window exhausted sleeps for the remainder of the window, after which a fresh
window begins.

Two implementations share the same ``acquire()`` contract:

- :class:`FixedWindowRateLimiter` keeps the window in-process and serializes
  callers through an :class:`asyncio.Lock`.
- :class:`RedisFixedWindowRateLimiter` keeps the counter in Redis so that
  several worker processes draw from one budget.  An atomic Lua script does
  the increment-and-expire.

Fixed windows admit up to ``2 * max_requests`` calls across a window
boundary (a full window at the end of one and another at the start of the
next).

Typical usage::

    limiter = get_rate_limiter()

    await limiter.acquire()
    response = await http_client.post(url, json=payload)
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Protocol

import redis.asyncio as aioredis

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Data classes
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class RateLimitConfig:
    """Window configuration shared by both limiter implementations.

    Attributes:
        max_requests: Calls admitted per window.  Must be at least 1.
        window_seconds: Window length in seconds.  Must be positive.
    """

    max_requests: int = 10
    window_seconds: float = 60.0

    def __post_init__(self) -> None:
        if self.max_requests < 1:
            raise ValueError("max_requests must be >= 1")
        if self.window_seconds <= 0:
            raise ValueError("window_seconds must be > 0")


class RateLimiter(Protocol):
    """The interface the crawler and the generation engine depend on."""

    config: RateLimitConfig

    async def acquire(self) -> None: ...

    def would_block(self) -> bool: ...


# ---------------------------------------------------------------------------
# In-process limiter
# ---------------------------------------------------------------------------


@dataclass
class FixedWindowRateLimiter:
    """In-process fixed-window limiter.

    ``acquire()`` is serialized through an :class:`asyncio.Lock`, so the
    check of ``count`` and its increment are never interleaved between
    concurrent coroutines.  A caller that sleeps for the rest of the window
    holds the lock while it sleeps; later callers queue behind it and see
    the fresh window when they get the lock.

    Attributes:
        config: Window configuration.
        clock: Monotonic time source in seconds.  Injected by tests.
        sleep: Coroutine used to wait.  Injected by tests.
    """

    config: RateLimitConfig = field(default_factory=RateLimitConfig)
    clock: Callable[[], float] = time.monotonic
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep
    _count: int = field(default=0, init=False)
    _window_start: float | None = field(default=None, init=False)
    _lock: asyncio.Lock = field(default_factory=asyncio.Lock, init=False, repr=False)

    async def acquire(self) -> None:
        """Wait until the current window has room, then take one slot."""
        async with self._lock:
            now = self.clock()
            if self._window_start is None or now - self._window_start >= self.config.window_seconds:
                self._window_start = now
                self._count = 0

            if self._count >= self.config.max_requests:
                wait = self.config.window_seconds - (now - self._window_start)
                if wait > 0:
                    logger.info(
                        "rate_limiter: window exhausted, waiting %.1f s",
                        wait,
                        extra={"count": self._count, "max_requests": self.config.max_requests},
                    )
                    await self.sleep(wait)
                self._window_start = self.clock()
                self._count = 0

            self._count += 1

    def would_block(self) -> bool:
        """Return ``True`` if the next :meth:`acquire` would have to wait."""
        if self._window_start is None:
            return False
        if self.clock() - self._window_start >= self.config.window_seconds:
            return False
        return self._count >= self.config.max_requests

    def snapshot(self) -> tuple[int, float | None]:
        """Return ``(count, window_start)`` for logging and tests."""
        return self._count, self._window_start


# ---------------------------------------------------------------------------
# Redis-backed limiter
# ---------------------------------------------------------------------------

# Atomic fixed-window increment.
#
# KEYS[1]: counter key for the current window
# ARGV[1]: key TTL in milliseconds (slightly > window)
#
# Returns the counter value after the increment.
_LUA_INCR_WINDOW = """
local count = redis.call('INCR', KEYS[1])
if count == 1 then
    redis.call('PEXPIRE', KEYS[1], tonumber(ARGV[1]))
end
return count
"""


@dataclass
class RedisFixedWindowRateLimiter:
    """Fixed-window limiter whose counter lives in Redis.

    Keys are ``ratelimit:{name}:{window_index}`` where *window_index* is
    ``floor(now / window_seconds)``, so every process agrees on window
    boundaries without coordination.  When the counter for the current
    window is past the limit the caller sleeps until the next window starts
    and tries again.

    If Redis is unreachable the request is allowed and a warning is logged.

    Attributes:
        redis_client: An initialised ``redis.asyncio.Redis`` connection.
        config: Window configuration.
        name: Namespace for the counter keys.
        clock: Wall-clock time source.  Injected by tests.
        sleep: Coroutine used to wait.  Injected by tests.
    """

    redis_client: aioredis.Redis
    config: RateLimitConfig = field(default_factory=RateLimitConfig)
    name: str = "providers"
    clock: Callable[[], float] = time.time
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep
    _sha_incr: str = field(default="", init=False, repr=False)
    _last_count: int = field(default=0, init=False, repr=False)
    _last_window: int = field(default=-1, init=False, repr=False)

    def _key(self, window_index: int) -> str:
        return f"ratelimit:{self.name}:{window_index}"

    async def _ensure_script_loaded(self) -> None:
        """Upload the Lua script on first use and cache its SHA1."""
        if self._sha_incr:
            return
        try:
            self._sha_incr = await self.redis_client.script_load(_LUA_INCR_WINDOW)
        except Exception:
            logger.exception("Failed to load Lua script into Redis")
            raise

    async def acquire(self) -> None:
        """Increment the shared window counter, waiting while it is full."""
        try:
            await self._ensure_script_loaded()
        except Exception:
            logger.warning(
                "Redis unavailable: allowing request without rate limiting",
                extra={"name": self.name},
            )
            return

        window = self.config.window_seconds
        ttl_ms = int(window * 1000) + 10_000
        while True:
            now = self.clock()
            window_index = int(now // window)
            try:
                count = int(
                    await self.redis_client.evalsha(  # type: ignore[attr-defined]
                        self._sha_incr, 1, self._key(window_index), str(ttl_ms)
                    )
                )
            except Exception:
                logger.exception(
                    "Redis error during rate-limit acquire: allowing request",
                    extra={"name": self.name},
                )
                return

            self._last_count, self._last_window = count, window_index
            if count <= self.config.max_requests:
                return

            wait = (window_index + 1) * window - now
            logger.info(
                "rate_limiter: shared window exhausted, waiting %.1f s",
                wait,
                extra={"name": self.name, "count": count},
            )
            await self.sleep(max(wait, 0.0))

    def would_block(self) -> bool:
        """Best-effort guess based on the last counter value this process saw."""
        window_index = int(self.clock() // self.config.window_seconds)
        return (
            window_index == self._last_window
            and self._last_count >= self.config.max_requests
        )


# ---------------------------------------------------------------------------
# Factory
# ---------------------------------------------------------------------------


def get_redis_client() -> aioredis.Redis:
    """Create an async Redis client from application settings."""
    from site_personalizer.config.settings import get_settings  # noqa: PLC0415

    return aioredis.from_url(
        str(get_settings().redis_url),
        encoding="utf-8",
        decode_responses=True,
    )


def get_rate_limiter() -> FixedWindowRateLimiter | RedisFixedWindowRateLimiter:
    """Build the provider-call limiter selected by ``rate_limit_backend``.

    One limiter is built per export run and shared by the crawler and the
    generation engine, so both kinds of call draw from one budget.
    """
    from site_personalizer.config.settings import get_settings  # noqa: PLC0415

    settings = get_settings()
    config = RateLimitConfig(
        max_requests=settings.rate_limit_max_requests,
        window_seconds=settings.rate_limit_window_seconds,
    )
    if settings.rate_limit_backend == "redis":
        return RedisFixedWindowRateLimiter(get_redis_client(), config=config)
    return FixedWindowRateLimiter(config=config)

