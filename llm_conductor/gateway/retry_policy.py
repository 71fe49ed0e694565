"""Same-provider retry budget and exponential backoff.

Backoff strategy:
  delay(k) = min(base * 2^(k-1) + jitter, max_delay)   for retry k >= 1
  jitter   = random(0, jitter_max), 0 by default
"""

from __future__ import annotations

import random
from dataclasses import dataclass

from llm_conductor.gateway.types import DispatchConfig


@dataclass(frozen=True)
class RetryPolicy:
    max_retries: int = 3  # Calls per provider before falling back
    max_provider_attempts: int = 3  # Distinct providers tried per request
    base_delay: float = 1.0
    max_delay: float = 10.0
    jitter: float = 0.0

    @classmethod
    def from_config(cls, config: DispatchConfig) -> RetryPolicy:
        return cls(
            max_retries=config.max_retries,
            max_provider_attempts=config.max_provider_attempts,
            base_delay=config.backoff_base,
            max_delay=config.backoff_max,
            jitter=config.backoff_jitter,
        )

    def should_retry(self, failed_calls: int) -> bool:
        """True while the provider still has budget after ``failed_calls`` failures."""
        return failed_calls < self.max_retries

    def backoff(self, retry: int) -> float:
        return calculate_backoff(retry, self.base_delay, self.max_delay, self.jitter)


def calculate_backoff(retry: int, base_delay: float = 1.0, max_delay: float = 10.0, jitter: float = 0.0) -> float:
    """Delay before retry ``retry`` (1-indexed)."""
    exponential = base_delay * (2 ** max(retry - 1, 0))
    if jitter > 0:
        exponential += random.uniform(0, jitter)
    return min(exponential, max_delay)
