from __future__ import annotations

import random
from collections.abc import Callable


class ExponentialBackoff:
    """Capped exponential delay with multiplicative jitter.

    ``delay(n) = min(ceiling, base * multiplier ** (n - 1)) * uniform(jitter_range)``
    for the n-th attempt (1-based).
    """

    def __init__(
        self,
        base_seconds: float = 60.0,
        ceiling_seconds: float = 3600.0,
        multiplier: float = 2.0,
        jitter_range: tuple[float, float] = (0.85, 1.0),
        rng: Callable[[float, float], float] | None = None,
    ) -> None:
        self.base_seconds = base_seconds
        self.ceiling_seconds = ceiling_seconds
        self.multiplier = multiplier
        self.jitter_range = jitter_range
        self._uniform = rng or random.uniform

    def calculate_delay(self, attempt: int) -> float:
        exponent = max(0, attempt - 1)
        delay = self.base_seconds * (self.multiplier**exponent)
        delay = min(delay, self.ceiling_seconds)
        return delay * self._uniform(self.jitter_range[0], self.jitter_range[1])
