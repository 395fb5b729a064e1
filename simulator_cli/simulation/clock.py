"""Simulated clock used when fast-forwarding through a past time window."""

import asyncio
from datetime import datetime


class SimulatedClock:
    """Clock that only moves when the driver advances it."""

    def __init__(self, start: datetime) -> None:
        self._now = start

    def now(self) -> datetime:
        return self._now

    def advance_to(self, moment: datetime) -> None:
        """Move the clock forward; it never goes backwards."""
        if moment > self._now:
            self._now = moment

    async def step(self) -> None:
        """Yield once to the event loop so work scheduled at the current time runs."""
        await asyncio.sleep(0)
