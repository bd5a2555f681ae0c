"""
Clocks for the idle timer.

The connection manager never calls ``asyncio.sleep`` directly; it waits on a
Timebase so tests can drive idle expiry by hand.
"""

from abc import ABC, abstractmethod
from time import monotonic
import asyncio


class Timebase(ABC):
    """Source of the current time and of sleeps measured against it."""

    @abstractmethod
    def now(self) -> float:
        pass

    @abstractmethod
    async def sleep(self, duration: float):
        pass


class MonotonicClock(Timebase):
    """Real time from ``time.monotonic``, unaffected by wall-clock changes."""

    def now(self) -> float:
        return monotonic()

    async def sleep(self, duration: float):
        await asyncio.sleep(duration)


class ManualClock(Timebase):
    """
    A clock that only moves when told to.

    Sleepers wake once ``set`` or ``advance`` moves the value past their
    deadline.
    """

    def __init__(self, initial: float = 0.0):
        super().__init__()
        self.value = initial
        self._moved = asyncio.Event()

    async def sleep(self, duration: float):
        target = self.value + duration
        while self.value < target:
            await self._moved.wait()

    def now(self) -> float:
        return self.value

    def set(self, val: float):
        self.value = val

        # Pulse the event to wake up sleepers
        self._moved.set()
        self._moved.clear()

    def advance(self, delta: float):
        self.set(self.value + delta)
