"""Sliding-window rate limiting.

Each rule keeps, per ``(client_address, route_pattern)`` key, the timestamps
of admitted requests inside the window. A request prunes timestamps at or
before ``now - window`` and is admitted only while fewer than ``max_requests``
remain. Timestamps are integer milliseconds.
"""
from __future__ import annotations

import logging
import math
import threading
import time
import uuid
from collections import deque
from dataclasses import dataclass
from typing import Callable, Protocol, Sequence

import redis
from redis.exceptions import RedisError

from ..config import settings

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RateLimitRule:
    pattern: str
    window_ms: int
    max_requests: int

    def matches(self, path: str) -> bool:
        return path.startswith(self.pattern)


DEFAULT_RATE_LIMIT_RULES: tuple[RateLimitRule, ...] = (
    RateLimitRule("/api/auth/signin", window_ms=15 * 60 * 1000, max_requests=5),
    RateLimitRule("/api/products", window_ms=60 * 1000, max_requests=100),
    RateLimitRule("/api/upload", window_ms=60 * 1000, max_requests=20),
    RateLimitRule("/api/qr/generate", window_ms=60 * 1000, max_requests=50),
)


@dataclass(frozen=True)
class WindowState:
    """Result of one read-prune-append cycle against a store."""

    admitted: bool
    count: int
    oldest_ms: int


@dataclass(frozen=True)
class RateLimitDecision:
    allowed: bool
    limit: int
    remaining: int
    reset_at: int  # epoch seconds
    retry_after: int | None = None

    def headers(self) -> dict[str, str]:
        values = {
            "X-RateLimit-Limit": str(self.limit),
            "X-RateLimit-Remaining": str(self.remaining),
            "X-RateLimit-Reset": str(self.reset_at),
        }
        if not self.allowed and self.retry_after is not None:
            values["Retry-After"] = str(self.retry_after)
        return values


class WindowStore(Protocol):
    def hit(self, key: str, *, now_ms: int, window_ms: int, limit: int) -> WindowState:
        ...


class InMemoryWindowStore:
    """Per-process store; the lock serialises read-prune-append per call.

    Only correct for a single worker process. Keys whose timestamps have all
    aged out are dropped on read and by a periodic sweep.
    """

    def __init__(self, *, sweep_interval_ms: int | None = None) -> None:
        self._lock = threading.Lock()
        self._windows: dict[str, tuple[int, deque[int]]] = {}
        interval = sweep_interval_ms
        if interval is None:
            interval = settings.RATE_LIMIT_SWEEP_SECONDS * 1000
        self._sweep_interval_ms = interval
        self._last_sweep_ms = 0

    def __len__(self) -> int:
        with self._lock:
            return len(self._windows)

    def hit(self, key: str, *, now_ms: int, window_ms: int, limit: int) -> WindowState:
        with self._lock:
            if now_ms - self._last_sweep_ms >= self._sweep_interval_ms:
                self._sweep_locked(now_ms)

            _, timestamps = self._windows.get(key, (window_ms, deque()))
            cutoff = now_ms - window_ms
            while timestamps and timestamps[0] <= cutoff:
                timestamps.popleft()

            admitted = len(timestamps) < limit
            if admitted:
                timestamps.append(now_ms)
            if timestamps:
                self._windows[key] = (window_ms, timestamps)
            else:
                self._windows.pop(key, None)
            oldest = timestamps[0] if timestamps else now_ms
            return WindowState(admitted=admitted, count=len(timestamps), oldest_ms=oldest)

    def sweep(self, now_ms: int) -> int:
        with self._lock:
            return self._sweep_locked(now_ms)

    def _sweep_locked(self, now_ms: int) -> int:
        self._last_sweep_ms = now_ms
        stale = [
            key
            for key, (window_ms, timestamps) in self._windows.items()
            if not timestamps or timestamps[-1] <= now_ms - window_ms
        ]
        for key in stale:
            del self._windows[key]
        if stale:
            logger.debug("Evicted %s stale rate-limit windows", len(stale))
        return len(stale)


# KEYS[1] window key; ARGV: now_ms, window_ms, limit, member
_SLIDING_WINDOW_LUA = """
local key = KEYS[1]
local now = tonumber(ARGV[1])
local window = tonumber(ARGV[2])
local limit = tonumber(ARGV[3])
redis.call('ZREMRANGEBYSCORE', key, '-inf', now - window)
local count = redis.call('ZCARD', key)
local admitted = 0
if count < limit then
  redis.call('ZADD', key, now, ARGV[4])
  count = count + 1
  admitted = 1
end
redis.call('PEXPIRE', key, window)
local oldest = redis.call('ZRANGE', key, 0, 0, 'WITHSCORES')
local oldest_score = now
if oldest[2] then
  oldest_score = tonumber(oldest[2])
end
return {admitted, count, oldest_score}
"""


class RedisWindowStore:
    """Shared store for multi-process deployments (sorted set per key, atomic Lua)."""

    def __init__(self, client=None, *, key_prefix: str = "ratelimit:") -> None:
        self._client = client or redis.from_url(settings.REDIS_URL, decode_responses=True)
        self._key_prefix = key_prefix
        self._script = self._client.register_script(_SLIDING_WINDOW_LUA)

    def hit(self, key: str, *, now_ms: int, window_ms: int, limit: int) -> WindowState:
        member = f"{now_ms}-{uuid.uuid4().hex}"
        admitted, count, oldest = self._script(
            keys=[f"{self._key_prefix}{key}"],
            args=[now_ms, window_ms, limit, member],
        )
        return WindowState(admitted=bool(int(admitted)), count=int(count), oldest_ms=int(oldest))


def _now_ms() -> int:
    return int(time.time() * 1000)


class SlidingWindowLimiter:
    """Rule table plus store; created once at startup and shared by the gateway."""

    def __init__(
        self,
        store: WindowStore,
        rules: Sequence[RateLimitRule] = DEFAULT_RATE_LIMIT_RULES,
        *,
        clock: Callable[[], int] = _now_ms,
    ) -> None:
        self.store = store
        self.rules = tuple(rules)
        self._clock = clock

    def rule_for(self, path: str) -> RateLimitRule | None:
        for rule in self.rules:
            if rule.matches(path):
                return rule
        return None

    def check(self, client_address: str, path: str) -> RateLimitDecision | None:
        """Record a request; returns None when no rule covers ``path``."""
        rule = self.rule_for(path)
        if rule is None:
            return None
        return self.check_rule(rule, client_address)

    def check_rule(self, rule: RateLimitRule, client_address: str) -> RateLimitDecision:
        now_ms = self._clock()
        key = f"{client_address}:{rule.pattern}"
        try:
            state = self.store.hit(key, now_ms=now_ms, window_ms=rule.window_ms, limit=rule.max_requests)
        except RedisError:
            # Fail open if Redis is down to avoid a total API outage.
            logger.exception("Redis error during rate limiting (fail-open)")
            return RateLimitDecision(
                allowed=True,
                limit=rule.max_requests,
                remaining=rule.max_requests,
                reset_at=math.ceil((now_ms + rule.window_ms) / 1000),
            )

        reset_ms = state.oldest_ms + rule.window_ms
        if not state.admitted:
            return RateLimitDecision(
                allowed=False,
                limit=rule.max_requests,
                remaining=0,
                reset_at=math.ceil(reset_ms / 1000),
                retry_after=max(1, math.ceil((reset_ms - now_ms) / 1000)),
            )
        return RateLimitDecision(
            allowed=True,
            limit=rule.max_requests,
            remaining=max(0, rule.max_requests - state.count),
            reset_at=math.ceil(reset_ms / 1000),
        )


def build_rate_limiter(backend: str | None = None) -> SlidingWindowLimiter:
    """Create the limiter configured by RATE_LIMIT_BACKEND."""
    choice = (backend or settings.RATE_LIMIT_BACKEND).lower()
    if choice == "redis":
        return SlidingWindowLimiter(RedisWindowStore())
    if choice == "memory":
        if settings.is_production:
            logger.warning("In-memory rate limiting only enforces limits per worker process")
        return SlidingWindowLimiter(InMemoryWindowStore())
    raise RuntimeError(f"Unknown RATE_LIMIT_BACKEND: {choice}")
