"""
Fixed-window rate limiting for webhook ingress.

Counters live in process memory. A multi-instance deployment needs the
store behind ``RateLimiter`` replaced with an external atomic counter
(for example a key-value store with INCR and EXPIRE).
"""

import logging
import threading
import time
from dataclasses import dataclass
from typing import Callable, Dict, Optional

from fastapi import Request, Response

from ..exceptions import RateLimitExceededError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RateLimitPreset:
    """Named limit applied to a class of endpoints."""
    max_requests: int
    window_seconds: float
    message: str


class RateLimitPresets:
    WEBHOOK = RateLimitPreset(100, 60, "Webhook rate limit exceeded")
    API = RateLimitPreset(60, 60, "API rate limit exceeded")
    AUTH = RateLimitPreset(5, 15 * 60, "Too many authentication attempts")
    READ = RateLimitPreset(300, 60, "Read rate limit exceeded")
    WRITE = RateLimitPreset(30, 60, "Write rate limit exceeded")


@dataclass
class RateLimitResult:
    allowed: bool
    current: int
    limit: int
    reset_in: float
    reset_time: float

    @property
    def remaining(self) -> int:
        return max(0, self.limit - self.current)


@dataclass
class _Window:
    count: int
    reset_time: float


class RateLimiter:
    """Keyed fixed-window counter.

    ``check_rate_limit`` performs get-or-init-and-increment under a single
    lock so concurrent handlers never lose an increment.
    """

    def __init__(self, clock: Callable[[], float] = time.time, sweep_interval: float = 60.0):
        self._clock = clock
        self._sweep_interval = sweep_interval
        self._windows: Dict[str, _Window] = {}
        self._lock = threading.Lock()
        self._last_sweep = clock()

    def check_rate_limit(
        self,
        identifier: str,
        endpoint: str,
        max_requests: int,
        window_seconds: float,
    ) -> RateLimitResult:
        """Count one request and report whether it is within the limit."""
        key = f"{identifier}:{endpoint}"
        with self._lock:
            now = self._clock()
            self._maybe_sweep(now)

            window = self._windows.get(key)
            if window is None or now > window.reset_time:
                window = _Window(count=1, reset_time=now + window_seconds)
                self._windows[key] = window
            else:
                window.count += 1

            return RateLimitResult(
                allowed=window.count <= max_requests,
                current=window.count,
                limit=max_requests,
                reset_in=max(0.0, window.reset_time - now),
                reset_time=window.reset_time,
            )

    def reset(self, identifier: Optional[str] = None, endpoint: Optional[str] = None) -> None:
        """Clear one key, or everything when called without arguments."""
        with self._lock:
            if identifier is None:
                self._windows.clear()
            else:
                self._windows.pop(f"{identifier}:{endpoint}", None)

    def __len__(self) -> int:
        return len(self._windows)

    def _maybe_sweep(self, now: float) -> None:
        # Caller holds the lock.
        if now - self._last_sweep < self._sweep_interval:
            return
        expired = [k for k, w in self._windows.items() if now > w.reset_time]
        for key in expired:
            del self._windows[key]
        self._last_sweep = now
        if expired:
            logger.debug(f"Swept {len(expired)} expired rate limit windows")


_default_limiter = RateLimiter()


def get_rate_limiter() -> RateLimiter:
    return _default_limiter


def check_rate_limit(identifier: str, endpoint: str, max_requests: int, window_seconds: float) -> RateLimitResult:
    """Module-level shortcut using the process-wide limiter."""
    return _default_limiter.check_rate_limit(identifier, endpoint, max_requests, window_seconds)


def get_client_identifier(request: Request) -> str:
    """Resolve the client IP: CF-Connecting-IP, X-Forwarded-For, X-Real-IP, then the socket."""
    cf_ip = request.headers.get("cf-connecting-ip")
    if cf_ip:
        return cf_ip.strip()

    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        first = forwarded.split(",")[0].strip()
        if first:
            return first

    real_ip = request.headers.get("x-real-ip")
    if real_ip:
        return real_ip.strip()

    if request.client and request.client.host:
        return request.client.host
    return "unknown"


def rate_limit(
    request: Request,
    response: Optional[Response],
    preset: RateLimitPreset = RateLimitPresets.WEBHOOK,
    identifier: Optional[str] = None,
    endpoint: Optional[str] = None,
    limiter: Optional[RateLimiter] = None,
) -> RateLimitResult:
    """Enforce ``preset`` for this request.

    Raises:
        RateLimitExceededError: when the window is exhausted
    """
    limiter = limiter or _default_limiter
    identifier = identifier or get_client_identifier(request)
    endpoint = endpoint or request.url.path

    result = limiter.check_rate_limit(identifier, endpoint, preset.max_requests, preset.window_seconds)

    if not result.allowed:
        logger.warning(
            f"Rate limit exceeded: identifier={identifier}, endpoint={endpoint}, "
            f"current={result.current}, limit={result.limit}"
        )
        raise RateLimitExceededError(
            preset.message,
            limit=result.limit,
            current=result.current,
            reset_in=result.reset_in,
            reset_at=result.reset_time,
        )

    if response is not None:
        response.headers.update(rate_limit_headers(result))
    return result


def rate_limit_headers(result: RateLimitResult) -> Dict[str, str]:
    return {
        "RateLimit-Limit": str(result.limit),
        "RateLimit-Remaining": str(result.remaining),
        "RateLimit-Reset": str(int(result.reset_in + 0.999)),
    }
