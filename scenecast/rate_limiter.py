"""
Token-window rate limiter for description requests.

The window is a fixed wall-clock interval: token usage only grows inside a
window and is reset unconditionally at every window boundary, whatever the
queue is doing. This approximates a token bucket and can admit a burst right
after a reset.
"""

import logging
import math
import time
from dataclasses import dataclass
from typing import Callable, Optional

from .config import Settings

logger = logging.getLogger(__name__)


def estimate_tokens(text: str) -> int:
    """Token estimate used when the provider reports no usage (~3 chars/token)."""
    return math.ceil(len(text or "") / 3)


@dataclass
class RateLimiterState:
    tokens_used: int
    window_start: float
    backoff_ms: int


class RateLimiter:
    """Token budget per window plus the shared exponential backoff value."""

    def __init__(
        self,
        tokens_per_minute: int = 30000,
        cooldown_threshold: float = 0.8,
        reset_interval_ms: int = 60000,
        backoff_floor_ms: int = 1000,
        backoff_ceiling_ms: int = 60000,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.tokens_per_minute = tokens_per_minute
        self.cooldown_threshold = cooldown_threshold
        self.reset_interval = reset_interval_ms / 1000.0
        self.backoff_floor_ms = backoff_floor_ms
        self.backoff_ceiling_ms = backoff_ceiling_ms
        self.clock = clock
        self.state = RateLimiterState(tokens_used=0, window_start=clock(), backoff_ms=backoff_floor_ms)

    @classmethod
    def from_settings(cls, settings: Settings, clock: Callable[[], float] = time.monotonic) -> "RateLimiter":
        return cls(
            tokens_per_minute=settings.tokens_per_minute,
            cooldown_threshold=settings.cooldown_threshold,
            reset_interval_ms=settings.reset_interval_ms,
            backoff_floor_ms=settings.backoff_floor_ms,
            backoff_ceiling_ms=settings.backoff_ceiling_ms,
            clock=clock,
        )

    @property
    def tokens_used(self) -> int:
        self.refresh()
        return self.state.tokens_used

    @property
    def backoff_ms(self) -> int:
        return self.state.backoff_ms

    @property
    def cooldown_limit(self) -> float:
        return self.tokens_per_minute * self.cooldown_threshold

    def refresh(self, now: Optional[float] = None) -> bool:
        """Apply any window boundaries crossed since the last call."""
        now = self.clock() if now is None else now
        elapsed = now - self.state.window_start
        if elapsed < self.reset_interval:
            return False

        windows = math.floor(elapsed / self.reset_interval)
        self.state.window_start += windows * self.reset_interval
        self.state.tokens_used = 0
        self.state.backoff_ms = self.backoff_floor_ms
        logger.debug("Rate window reset")
        return True

    def record(self, tokens: int, now: Optional[float] = None):
        self.refresh(now)
        self.state.tokens_used += max(0, int(tokens))

    def should_cool_down(self, now: Optional[float] = None) -> bool:
        self.refresh(now)
        return self.state.tokens_used > self.cooldown_limit

    def time_until_reset(self, now: Optional[float] = None) -> float:
        """Seconds until the current window ends."""
        now = self.clock() if now is None else now
        self.refresh(now)
        return max(0.0, self.state.window_start + self.reset_interval - now)

    def next_backoff_ms(self) -> int:
        """Current backoff delay; doubles the stored value for the next retry."""
        wait = min(self.state.backoff_ms, self.backoff_ceiling_ms)
        self.state.backoff_ms = min(self.backoff_ceiling_ms, self.state.backoff_ms * 2)
        return wait

    def relax(self):
        """Halve the backoff after a success, never below the floor."""
        self.state.backoff_ms = max(self.backoff_floor_ms, self.state.backoff_ms // 2)

    def to_dict(self) -> dict:
        self.refresh()
        return {
            "tokens_used": self.state.tokens_used,
            "tokens_per_minute": self.tokens_per_minute,
            "cooldown_limit": self.cooldown_limit,
            "backoff_ms": self.state.backoff_ms,
            "seconds_to_reset": round(self.time_until_reset(), 3),
        }
