"""
Exponential retry backoff with jitter.
"""

import random
from datetime import datetime, timedelta
from typing import Optional


class BackoffPolicy:
    """
    Delay before retry number ``error_count``.

    base * 2 ** (error_count - 1), plus up to 20% jitter, never above max_delay.
    """

    def __init__(self, base_delay: float = 10, max_delay: float = 600, rng: Optional[random.Random] = None):
        if base_delay <= 0 or max_delay < base_delay:
            raise ValueError("backoff requires 0 < base_delay <= max_delay")
        self.base_delay = base_delay
        self.max_delay = max_delay
        self._rng = rng or random.Random()

    def delay(self, error_count: int) -> float:
        exponent = min(max(error_count, 1) - 1, 32)
        backoff = self.base_delay * (2 ** exponent)
        jitter = self._rng.uniform(0, backoff * 0.2)
        return min(backoff + jitter, self.max_delay)

    def next_retry_at(self, now: datetime, error_count: int, permanent: bool = False) -> datetime:
        """Permanent failures wait the maximum interval"""
        seconds = self.max_delay if permanent else self.delay(error_count)
        return now + timedelta(seconds=seconds)
