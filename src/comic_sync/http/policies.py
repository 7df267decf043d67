from __future__ import annotations

import random
import time
from dataclasses import dataclass
from typing import Optional


@dataclass(frozen=True)
class RetryPolicy:
    """Configuration for HTTP retry behavior."""

    max_attempts: int = 3
    base_delay_s: float = 1.0
    jitter_s: float = 0.3
    retry_statuses: tuple[int, ...] = (429, 500, 502, 503, 504)


class RateLimiter:
    """Simple fixed-delay rate limiter."""

    def __init__(self, delay_ms: int):
        self.delay_s = max(0, delay_ms) / 1000.0

    def sleep(self) -> None:
        """Sleep for the configured delay."""
        if self.delay_s > 0:
            time.sleep(self.delay_s)


class CallBudget:
    """Hard ceiling on outbound calls for one run, shared by every step."""

    def __init__(self, limit: int, spent: int = 0):
        self.limit = max(0, int(limit))
        self.spent = max(0, int(spent))

    @property
    def remaining(self) -> int:
        return max(self.limit - self.spent, 0)

    def try_spend(self, calls: int = 1) -> bool:
        """Reserve calls if the budget allows it."""
        if self.remaining < calls:
            return False
        self.spent += calls
        return True


class Deadline:
    """Wall-clock budget measured with a monotonic clock."""

    def __init__(self, seconds: Optional[float]):
        self.seconds = seconds
        self._started = time.monotonic()

    def expired(self) -> bool:
        if self.seconds is None:
            return False
        return time.monotonic() - self._started >= self.seconds


def backoff_sleep(policy: RetryPolicy, attempt_index: int) -> None:
    """Sleep with exponential backoff and jitter."""
    delay = policy.base_delay_s * (2**attempt_index)
    delay += random.uniform(0, policy.jitter_s)
    time.sleep(delay)
