"""
Backoff window for failed deliveries.

The window doubles from a base value up to a ceiling, and every deadline
gets a random jitter in [0, 500) ms so that actors sharing a collector do
not retry in lockstep.
"""

import random
import time
from dataclasses import dataclass

JITTER_RANGE_MS = 500


def now_ms() -> int:
    """Current wall-clock time in epoch milliseconds."""
    return int(time.time() * 1000)


def next_backoff_ms(current_ms: int, base_ms: int, max_ms: int) -> int:
    """Return the window that follows `current_ms` (0 means no window yet)."""
    if current_ms <= 0:
        return base_ms
    return min(current_ms * 2, max_ms)


class JitterSource:
    """Uniform integer jitter in [0, limit_ms), seedable for tests."""

    def __init__(self, seed: int | None = None, limit_ms: int = JITTER_RANGE_MS):
        self.limit_ms = limit_ms
        self._rng = random.Random(seed)

    def draw(self) -> int:
        return self._rng.randrange(self.limit_ms)


@dataclass
class BackoffState:
    """Current holding window. Both fields are 0 when no backoff is in effect."""

    backoff_ms: int = 0
    backoff_until: int = 0

    @property
    def active(self) -> bool:
        return self.backoff_ms > 0

    def holds(self, at_ms: int) -> bool:
        """True while flush attempts must be suppressed."""
        return at_ms < self.backoff_until

    def extend(self, at_ms: int, base_ms: int, max_ms: int, jitter_ms: int) -> int:
        """Grow the window after a retryable failure and return the new deadline."""
        self.backoff_ms = next_backoff_ms(self.backoff_ms, base_ms, max_ms)
        self.backoff_until = at_ms + self.backoff_ms + jitter_ms
        return self.backoff_until

    def clear(self):
        self.backoff_ms = 0
        self.backoff_until = 0
