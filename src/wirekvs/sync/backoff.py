"""Reconnect backoff policy."""

from __future__ import annotations

import random
from dataclasses import dataclass, field

from wirekvs.config import SyncConfig


@dataclass
class BackoffPolicy:
    """Exponential backoff with multiplicative jitter, capped at ``cap``.

    ``delay(n) = min(cap, base * multiplier ** (n - 1) * U(1 - jitter, 1 + jitter))``
    """

    base: float = 1.0
    cap: float = 60.0
    multiplier: float = 2.0
    jitter: float = 0.25
    rng: random.Random = field(default_factory=random.Random, repr=False)

    @classmethod
    def from_config(cls, config: SyncConfig) -> BackoffPolicy:
        return cls(
            base=config.backoff_base,
            cap=config.backoff_cap,
            multiplier=config.backoff_multiplier,
            jitter=config.backoff_jitter,
        )

    def delay(self, attempt: int) -> float:
        """Seconds to wait before connection attempt number ``attempt`` (1-based)."""
        if attempt < 1:
            raise ValueError("attempt must be >= 1")
        # Bound the exponent so huge attempt counts cannot overflow
        exponent = min(attempt - 1, 64)
        raw = min(self.cap, self.base * self.multiplier**exponent)
        if self.jitter:
            raw *= self.rng.uniform(1 - self.jitter, 1 + self.jitter)
        return min(self.cap, raw)
