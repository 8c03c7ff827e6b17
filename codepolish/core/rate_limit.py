"""In-process fixed-window rate limiter.

Counters are keyed ``ratelimit:{class}:{user-or-ip}:{path}`` and live on the
application context. Expired windows are reset on access and dropped by a
periodic sweep so idle keys do not accumulate.
"""

import asyncio
import math
import time
from collections.abc import Callable
from dataclasses import dataclass

import structlog

from codepolish.core.exceptions import TooManyRequestsError

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class RateLimitRule:
    max_requests: int
    window_seconds: int
    message: str


RATE_LIMITS: dict[str, RateLimitRule] = {
    "polish": RateLimitRule(10, 60, "Polish rate limit exceeded. Please wait before polishing more code."),
    "mutation": RateLimitRule(30, 60, "Too many requests. Please slow down."),
    "query": RateLimitRule(120, 60, "Too many requests. Please try again later."),
    "auth": RateLimitRule(10, 15 * 60, "Too many authentication attempts. Please wait before trying again."),
}


@dataclass
class _Window:
    count: int
    reset_at: float


class RateLimiter:
    """Fixed-window counters keyed by rate class, caller identity and path."""

    def __init__(
        self,
        rules: dict[str, RateLimitRule] | None = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.rules = rules if rules is not None else dict(RATE_LIMITS)
        self.clock = clock
        self._windows: dict[str, _Window] = {}

    @staticmethod
    def key(kind: str, identity: str, path: str) -> str:
        return f"ratelimit:{kind}:{identity}:{path}"

    def check(self, kind: str, identity: str, path: str) -> int:
        """Count one request against the window.

        Runs without awaiting, so it is atomic on the event loop.

        Returns:
            Requests remaining in the current window

        Raises:
            KeyError: Unknown rate class
            TooManyRequestsError: Window is full; carries seconds until it resets
        """
        rule = self.rules[kind]
        now = self.clock()
        key = self.key(kind, identity, path)

        window = self._windows.get(key)
        if window is None or now >= window.reset_at:
            window = _Window(count=0, reset_at=now + rule.window_seconds)
            self._windows[key] = window

        if window.count >= rule.max_requests:
            retry_after = max(1, math.ceil(window.reset_at - now))
            logger.info("rate_limit_exceeded", rate_class=kind, identity=identity, path=path, retry_after=retry_after)
            raise TooManyRequestsError(rule.message, retry_after=retry_after)

        window.count += 1
        return rule.max_requests - window.count

    def sweep(self) -> int:
        """Drop expired windows. Returns how many were removed."""
        now = self.clock()
        expired = [key for key, window in self._windows.items() if now >= window.reset_at]
        for key in expired:
            del self._windows[key]
        return len(expired)

    def reset(self) -> None:
        self._windows.clear()

    def __len__(self) -> int:
        return len(self._windows)


async def sweep_periodically(limiter: RateLimiter, interval_seconds: float) -> None:
    """Background loop started from the app lifespan. Runs until cancelled."""
    while True:
        await asyncio.sleep(interval_seconds)
        removed = limiter.sweep()
        if removed:
            logger.debug("rate_limit_swept", removed=removed, remaining=len(limiter))
