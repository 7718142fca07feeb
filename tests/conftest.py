"""Shared test fixtures: deterministic clocks and a recording sleep."""

import asyncio
from datetime import datetime, timedelta

import pytest


class FakeClock:
    """Monotonic clock that only moves when told to."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeWallClock:
    """datetime clock that steps by a fixed amount on every read."""

    def __init__(self, step: timedelta = timedelta(seconds=1), start: datetime = datetime(2024, 1, 1, 12, 0, 0)):
        self.step = step
        self.current = start

    def __call__(self) -> datetime:
        value = self.current
        self.current += self.step
        return value


class RecordingSleep:
    """Async sleep stand-in that records delays and advances a FakeClock."""

    def __init__(self, clock: FakeClock = None):
        self.calls = []
        self.clock = clock

    async def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)
        if self.clock is not None:
            self.clock.advance(seconds)
        await asyncio.sleep(0)


@pytest.fixture
def clock() -> FakeClock:
    """Fresh fake monotonic clock."""
    return FakeClock()


@pytest.fixture
def wall_clock() -> FakeWallClock:
    """Fake wall clock stepping one second per read."""
    return FakeWallClock()


@pytest.fixture
def recording_sleep(clock) -> RecordingSleep:
    """Recording sleep wired to the fake clock."""
    return RecordingSleep(clock)
