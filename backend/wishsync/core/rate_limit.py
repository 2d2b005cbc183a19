"""In-memory sliding-window throttling for login and reservation writes."""

import time
from collections import deque

from fastapi import HTTPException, Request, status

from wishsync.core.config import settings
from wishsync.core.logger import get_logger


logger = get_logger("rate_limit")

MAX_KEYS = 10000
SWEEP_EVERY = 100


class SlidingWindowLimiter:
    """Per-key deques of hit times. Idle keys are swept every ``SWEEP_EVERY`` hits."""

    def __init__(self, max_keys: int = MAX_KEYS) -> None:
        self._hits: dict[str, deque[float]] = {}
        self._max_keys = max_keys
        self._calls = 0

    def hit(self, key: str, max_requests: int, window_seconds: float, now: float | None = None) -> float:
        """Record a hit for ``key``. Returns 0 when allowed, else seconds until a slot frees up."""
        now = time.monotonic() if now is None else now
        window = self._hits.setdefault(key, deque())
        while window and window[0] <= now - window_seconds:
            window.popleft()

        if len(window) >= max_requests:
            return max(window[0] + window_seconds - now, 0.001)

        window.append(now)
        self._calls += 1
        if self._calls % SWEEP_EVERY == 0:
            self._sweep(now, window_seconds)
        return 0.0

    def _sweep(self, now: float, window_seconds: float) -> None:
        idle = [key for key, window in self._hits.items() if not window or window[-1] <= now - window_seconds]
        for key in idle:
            del self._hits[key]
        if len(self._hits) > self._max_keys:
            # Oldest last-hit first
            overflow = sorted(self._hits, key=lambda key: self._hits[key][-1])[: len(self._hits) - self._max_keys]
            for key in overflow:
                del self._hits[key]
            logger.warning("Rate limit keys over %d, dropped %d", self._max_keys, len(overflow))

    def reset(self, key: str | None = None) -> None:
        if key is None:
            self._hits.clear()
        else:
            self._hits.pop(key, None)

    def __len__(self) -> int:
        return len(self._hits)


limiter = SlidingWindowLimiter()


def client_address(request: Request) -> str:
    forwarded = request.headers.get("X-Forwarded-For")
    if forwarded:
        return forwarded.split(",")[0].strip()
    if request.client:
        return request.client.host
    return "unknown"


def check_rate_limit(
    request: Request,
    action: str,
    max_requests: int | None = None,
    subject: int | str | None = None,
) -> None:
    """Raise 429 when ``subject`` (default: client address) exceeds the budget for ``action``."""
    if not settings.rate_limit_enabled:
        return

    who = f"user:{subject}" if subject is not None else f"ip:{client_address(request)}"
    limit = max_requests or settings.rate_limit_requests
    window_seconds = settings.rate_limit_window_seconds
    wait = limiter.hit(f"{action}:{who}", limit, window_seconds)
    if not wait:
        return

    retry_after = max(1, int(wait + 0.999))
    logger.warning("Rate limit exceeded action=%s %s retry_after=%ds", action, who, retry_after)
    raise HTTPException(
        status_code=status.HTTP_429_TOO_MANY_REQUESTS,
        detail=f"Rate limit exceeded. Try again in {retry_after} seconds.",
        headers={"Retry-After": str(retry_after)},
    )
