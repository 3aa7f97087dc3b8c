"""Sliding-window rate limiting kept in process memory.

Used on the endpoints guests can hit repeatedly: login, register, direct
contributions, payment-intent creation and ``/api/notify``.
"""

from collections import deque
from dataclasses import dataclass, field
import logging
import time

from fastapi import Request, status

from giftregistry.core.config import settings
from giftregistry.core.errors import ApiError


logger = logging.getLogger("giftregistry.rate_limit")

MAX_KEYS = 10000
SWEEP_EVERY = 100


class TooManyRequests(ApiError):
    status_code = status.HTTP_429_TOO_MANY_REQUESTS
    default_message = "Rate limit exceeded"


@dataclass
class _Window:
    hits: deque[float] = field(default_factory=deque)
    touched: float = field(default_factory=time.monotonic)


class SlidingWindowLimiter:
    def __init__(self, max_keys: int = MAX_KEYS) -> None:
        self._windows: dict[str, _Window] = {}
        self._max_keys = max_keys
        self._checks = 0

    def hit(self, key: str, max_requests: int, window_seconds: int) -> int:
        """Record a hit; return 0 when allowed, else seconds until retry."""
        now = time.monotonic()
        window = self._windows.setdefault(key, _Window())
        window.touched = now
        cutoff = now - window_seconds
        while window.hits and window.hits[0] <= cutoff:
            window.hits.popleft()

        if len(window.hits) >= max_requests:
            return max(1, int(window.hits[0] + window_seconds - now) + 1)

        window.hits.append(now)
        self._checks += 1
        if self._checks % SWEEP_EVERY == 0:
            self._sweep(now, window_seconds * 2)
        return 0

    def _sweep(self, now: float, idle_seconds: float) -> None:
        idle = [k for k, w in self._windows.items() if now - w.touched > idle_seconds]
        for key in idle:
            del self._windows[key]
        overflow = len(self._windows) - self._max_keys
        if overflow > 0:
            oldest = sorted(self._windows, key=lambda k: self._windows[k].touched)[:overflow]
            for key in oldest:
                del self._windows[key]
            logger.warning("Rate limiter over capacity, evicted %d keys", overflow)

    def reset(self) -> None:
        self._windows.clear()
        self._checks = 0


limiter = SlidingWindowLimiter()


def client_identifier(request: Request) -> str:
    forwarded = request.headers.get("X-Forwarded-For")
    if forwarded:
        return f"ip:{forwarded.split(',')[0].strip()}"
    if request.client:
        return f"ip:{request.client.host}"
    return f"ua:{request.headers.get('User-Agent', '')}"


def check_rate_limit(
    request: Request,
    scope: str,
    max_requests: int | None = None,
    window_seconds: int | None = None,
) -> None:
    """Raise ``TooManyRequests`` when the client exceeded its budget for ``scope``."""
    if not settings.rate_limit_enabled:
        return

    client_id = client_identifier(request)
    window = window_seconds or settings.rate_limit_window_seconds
    retry_after = limiter.hit(
        f"{scope}:{client_id}",
        max_requests or settings.rate_limit_requests,
        window,
    )
    if retry_after:
        logger.warning(
            "Rate limit exceeded scope=%s client=%s retry_after=%ds",
            scope,
            client_id,
            retry_after,
        )
        raise TooManyRequests(
            f"Rate limit exceeded. Try again in {retry_after} seconds.",
            headers={"Retry-After": str(retry_after)},
        )
