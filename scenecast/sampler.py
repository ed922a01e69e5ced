"""
Frame Sampler

Decouples the detection loop from expensive description requests. Each
sampler is an independent throttle: a frame is accepted only when at least
`interval_ms` passed since the last accepted frame.
"""

import time
from typing import Callable, Optional


class FrameSampler:
    """Interval throttle for frames."""

    def __init__(self, interval_ms: float, clock: Callable[[], float] = time.monotonic):
        if interval_ms < 0:
            raise ValueError("interval_ms cannot be negative")
        self.interval = interval_ms / 1000.0
        self.clock = clock
        self.last_processed: Optional[float] = None
        self.accepted = 0
        self.rejected = 0

    def ready(self, now: Optional[float] = None) -> bool:
        """Whether a frame would be accepted now (no side effects)."""
        now = self.clock() if now is None else now
        return self.last_processed is None or now - self.last_processed >= self.interval

    def accept(self, now: Optional[float] = None) -> bool:
        """Accept the frame and start a new interval, or reject it."""
        now = self.clock() if now is None else now
        if not self.ready(now):
            self.rejected += 1
            return False
        self.last_processed = now
        self.accepted += 1
        return True

    def reset(self):
        self.last_processed = None
