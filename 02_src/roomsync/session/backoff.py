"""Retry and resume timing policies."""

import random
from dataclasses import dataclass


@dataclass
class BackoffPolicy:
    """Bounded exponential backoff for re-opening a subscription."""

    base_delay: float = 2.0
    multiplier: float = 2.0
    max_delay: float = 15.0
    max_attempts: int = 5

    def delay_for(self, attempt: int) -> float:
        """Delay in seconds before the given 1-based attempt."""
        if attempt < 1:
            raise ValueError("attempt is 1-based")
        return min(self.base_delay * self.multiplier ** (attempt - 1), self.max_delay)

    def delays(self) -> list[float]:
        return [self.delay_for(n) for n in range(1, self.max_attempts + 1)]


@dataclass
class ResumeJitter:
    """Randomized delay before re-subscribing when a view becomes visible again."""

    min_delay: float = 0.3
    max_delay: float = 0.8

    def next_delay(self, rng: random.Random | None = None) -> float:
        return (rng or random).uniform(self.min_delay, self.max_delay)
