"""
Rate limiting for the API layer.

The limiter is injected into the application (``app.state.rate_limiter``)
rather than kept as module state, so each app instance and each test gets
its own buckets. Any object with an ``allow(identifier, policy)`` method
returning a RateLimitResult can be used.
"""

import math
import threading
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Dict, Optional, Protocol

from .logger import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class RateLimitPolicy:
    name: str
    interval: float  # seconds
    max_requests: int


class RateLimitPresets:
    STRICT = RateLimitPolicy("strict", 60, 5)        # create/update/delete
    STANDARD = RateLimitPolicy("standard", 60, 20)
    RELAXED = RateLimitPolicy("relaxed", 60, 60)     # reads
    AUTH = RateLimitPolicy("auth", 300, 5)
    EXPORT = RateLimitPolicy("export", 300, 3)


@dataclass
class RateLimitResult:
    success: bool
    limit: int
    remaining: int
    reset: float  # epoch seconds
    retry_after: Optional[int] = None

    def headers(self) -> Dict[str, str]:
        headers = {
            "X-RateLimit-Limit": str(self.limit),
            "X-RateLimit-Remaining": str(self.remaining),
            "X-RateLimit-Reset": datetime.fromtimestamp(self.reset, tz=timezone.utc).isoformat(),
        }
        if self.retry_after is not None:
            headers["Retry-After"] = str(self.retry_after)
        return headers

    def body(self) -> dict:
        retry_after = self.retry_after or 60
        return {
            "success": False,
            "error": "RATE_LIMIT_EXCEEDED",
            "message": f"Too many requests. Please try again in {retry_after} seconds.",
            "retry_after": self.retry_after,
            "limit": self.limit,
            "reset": datetime.fromtimestamp(self.reset, tz=timezone.utc).isoformat(),
        }


class RateLimitExceeded(Exception):
    def __init__(self, result: RateLimitResult):
        super().__init__("Rate limit exceeded")
        self.result = result


class RateLimiter(Protocol):
    def allow(self, identifier: str, policy: RateLimitPolicy) -> RateLimitResult: ...


@dataclass
class _Bucket:
    tokens: int
    last_refill: float


class TokenBucketRateLimiter:
    """
    In-memory token bucket per (policy, identifier).

    Tokens refill in proportion to the time elapsed since the last refill.
    Buckets idle for longer than ``idle_ttl`` are swept at most once every
    ``sweep_interval`` seconds, on access.
    """

    def __init__(
        self,
        clock: Callable[[], float] = time.time,
        sweep_interval: float = 600,
        idle_ttl: float = 3600,
    ):
        self._clock = clock
        self._sweep_interval = sweep_interval
        self._idle_ttl = idle_ttl
        self._buckets: Dict[str, _Bucket] = {}
        self._lock = threading.Lock()
        self._last_sweep = clock()

    def __len__(self) -> int:
        return len(self._buckets)

    def _sweep(self, now: float) -> None:
        if now - self._last_sweep < self._sweep_interval:
            return
        stale = [key for key, b in self._buckets.items() if now - b.last_refill > self._idle_ttl]
        for key in stale:
            del self._buckets[key]
        self._last_sweep = now
        if stale:
            logger.debug(f"Swept {len(stale)} idle rate limit buckets")

    def allow(self, identifier: str, policy: RateLimitPolicy) -> RateLimitResult:
        with self._lock:
            now = self._clock()
            self._sweep(now)
            key = f"ratelimit:{policy.name}:{identifier}"

            bucket = self._buckets.get(key)
            if bucket is None:
                bucket = self._buckets[key] = _Bucket(policy.max_requests - 1, now)
                return RateLimitResult(True, policy.max_requests, bucket.tokens, now + policy.interval)

            tokens_to_add = math.floor((now - bucket.last_refill) / policy.interval * policy.max_requests)
            if tokens_to_add > 0:
                bucket.tokens = min(policy.max_requests, bucket.tokens + tokens_to_add)
                bucket.last_refill = now

            reset = bucket.last_refill + policy.interval
            if bucket.tokens > 0:
                bucket.tokens -= 1
                return RateLimitResult(True, policy.max_requests, bucket.tokens, reset)

            retry_after = max(1, math.ceil(reset - now))
            logger.warning(f"Rate limit hit for {identifier} on {policy.name} policy")
            return RateLimitResult(False, policy.max_requests, 0, reset, retry_after)


class UnlimitedRateLimiter:
    """Limiter that admits everything; used when rate limiting is disabled."""

    def __init__(self, clock: Callable[[], float] = time.time):
        self._clock = clock

    def allow(self, identifier: str, policy: RateLimitPolicy) -> RateLimitResult:
        return RateLimitResult(True, policy.max_requests, policy.max_requests, self._clock() + policy.interval)
