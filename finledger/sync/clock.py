"""Time source for delayed work (the post-write resync)."""

import asyncio
from abc import ABC, abstractmethod


class Clock(ABC):
    """Something that can wait."""

    @abstractmethod
    async def sleep(self, seconds: float) -> None:
        pass


class SystemClock(Clock):
    """Real time, on the running event loop."""

    async def sleep(self, seconds: float) -> None:
        await asyncio.sleep(seconds)
