"""Rate-Limit Tracker — per-provider cooldown bookkeeping.

When a provider signals throttling it is marked ineligible for a fixed
cooldown window. Expired entries are simply treated as absent on read;
there is no background sweep.

Not locked: only the queue's single drain loop reads and writes it.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable

logger = logging.getLogger(__name__)


class RateLimitTracker:
    """Per-provider cooldown map.

    Usage:
        tracker = RateLimitTracker(cooldown=60.0)

        # After a provider answers 429:
        tracker.mark_rate_limited("openai")

        # When building the provider list:
        if tracker.is_rate_limited("openai"):
            ...
    """

    def __init__(self, cooldown: float = 60.0, clock: Callable[[], float] = time.monotonic):
        self.cooldown = cooldown
        self._clock = clock
        self._expiry: dict[str, float] = {}

    def mark_rate_limited(self, provider: str, cooldown: float | None = None) -> float:
        """Record ``provider`` as throttled until now + cooldown.

        A new mark always replaces the previous one. Returns the expiry.
        """
        duration = self.cooldown if cooldown is None else cooldown
        expiry = self._clock() + duration
        self._expiry[provider] = expiry
        logger.warning("Provider %s marked as rate limited for %.1fs", provider, duration)
        return expiry

    def is_rate_limited(self, provider: str) -> bool:
        expiry = self._expiry.get(provider)
        if expiry is None:
            return False
        return self._clock() < expiry

    def remaining(self, provider: str) -> float:
        """Seconds left in the provider's cooldown (0 when eligible)."""
        expiry = self._expiry.get(provider)
        if expiry is None:
            return 0.0
        return max(expiry - self._clock(), 0.0)

    def snapshot(self) -> dict[str, float]:
        """Remaining cooldown per provider, active entries only."""
        return {name: round(self.remaining(name), 3) for name in self._expiry if self.is_rate_limited(name)}
