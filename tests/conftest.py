"""Root conftest.py for pytest configuration.

Adds project root to sys.path so the wallwhale package imports without
an install, and provides a FakeClock that moves time on demand.
"""

from __future__ import annotations

import asyncio
import sys
from datetime import datetime, timedelta
from pathlib import Path
from typing import Callable

import pytest

project_root = Path(__file__).parent.parent
if str(project_root) not in sys.path:
    sys.path.insert(0, str(project_root))

from wallwhale.services.clock import Clock  # noqa: E402


class FakeClock(Clock):
    """Clock whose time only moves when told to.

    sleep() records the delay, advances time by it and yields once to
    the event loop, so retry and polling loops run without real waits.
    """

    def __init__(self, start: datetime | None = None) -> None:
        self.current = start or datetime(2026, 1, 1, 12, 0, 0)
        self.sleeps: list[float] = []

    def now(self) -> datetime:
        return self.current

    def advance(self, seconds: float) -> None:
        self.current += timedelta(seconds=seconds)

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.advance(seconds)
        await asyncio.sleep(0)


async def wait_until(predicate: Callable[[], bool], turns: int = 200) -> None:
    """Yield to the event loop until predicate holds."""
    for _ in range(turns):
        if predicate():
            return
        await asyncio.sleep(0)
    raise AssertionError("condition not reached")


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()
