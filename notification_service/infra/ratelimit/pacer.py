"""Per-provider call pacing.

Outbound SMS and push calls are spaced by a minimum interval per provider
name. Each ``ProviderPacer`` owns its own state, so tests and separate
dispatchers never share pacing windows.
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Awaitable, Callable, Mapping

from notification_service.infra.logging import get_logger

logger = get_logger(__name__)


class ProviderPacer:
    """Spaces calls to each provider by at least its configured interval.

    Attributes:
        default_interval: Seconds between calls for providers without an override.

    Example:
        pacer = ProviderPacer({"twilio": 0.25, "push_relay": 0.25})
        await pacer.wait("twilio")
        response = await client.post(...)
    """

    def __init__(
        self,
        min_intervals: Mapping[str, float] | None = None,
        default_interval: float = 0.0,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[object]] = asyncio.sleep,
    ) -> None:
        self._intervals = dict(min_intervals or {})
        self.default_interval = default_interval
        self._clock = clock
        self._sleep = sleep
        self._next_slot: dict[str, float] = {}
        self._locks: dict[str, asyncio.Lock] = {}

    def interval_for(self, provider: str) -> float:
        return self._intervals.get(provider, self.default_interval)

    async def wait(self, provider: str) -> float:
        """Block until ``provider`` may be called again.

        Returns:
            Seconds spent waiting (0.0 when the slot was already free).
        """
        interval = self.interval_for(provider)
        if interval <= 0:
            return 0.0

        lock = self._locks.setdefault(provider, asyncio.Lock())
        async with lock:
            now = self._clock()
            slot = max(now, self._next_slot.get(provider, now))
            self._next_slot[provider] = slot + interval
            delay = slot - now
            if delay > 0:
                logger.debug(
                    "Pacing provider call",
                    extra={"provider": provider, "delay_seconds": round(delay, 3)},
                )
                await self._sleep(delay)
            return delay
