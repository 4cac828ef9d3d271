"""
Clock - time source shared by the cache, circuit breaker, pool and poller.

Swapping the clock lets tests move time forward without real delays.
"""

import asyncio
from datetime import datetime


class Clock:
    """Wall clock backed by datetime.now() and asyncio.sleep()."""

    def now(self) -> datetime:
        return datetime.now()

    async def sleep(self, seconds: float) -> None:
        await asyncio.sleep(seconds)

    def elapsed(self, since: datetime) -> float:
        """Seconds elapsed since the given moment."""
        return (self.now() - since).total_seconds()
