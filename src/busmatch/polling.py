"""Background polling loops with pause/resume."""

import asyncio
import logging
import time
from typing import Awaitable, Callable, Hashable, Optional

logger = logging.getLogger(__name__)

POLL_INTERVAL = 30  # seconds


class PollingLoop:
    """
    Runs an update coroutine on a fixed interval in a background task.

    The update returns True when it produced a fresh result; only then does the
    loop record the time of the last update. resume() honours that time: a
    stale loop updates immediately, a recent one sleeps only what is left of
    the interval.
    """

    def __init__(
        self,
        update: Callable[[], Awaitable[bool]],
        interval: float = POLL_INTERVAL,
        name: str = "poller",
        clock: Callable[[], float] = time.monotonic,
    ):
        self._update = update
        self.interval = interval
        self.name = name
        self._clock = clock
        self._task: Optional[asyncio.Task] = None
        self.last_update: Optional[float] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def resume(self) -> None:
        """Start the loop if it is not already running. Must be called from a running event loop."""
        if self.running:
            logger.debug(f"{self.name}: updates are already running")
            return
        self._task = asyncio.get_running_loop().create_task(self._run())
        logger.debug(f"{self.name}: updates resumed")

    async def pause(self) -> None:
        """Cancel the loop and wait for it to finish."""
        task = self._task
        self._task = None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        logger.debug(f"{self.name}: updates paused")

    async def refresh(self) -> bool:
        """Run one update now, outside the schedule."""
        return await self._tick()

    async def _tick(self) -> bool:
        try:
            updated = await self._update()
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"{self.name}: update failed: {e}", exc_info=True)
            return False
        if updated:
            self.last_update = self._clock()
        return updated

    async def _run(self) -> None:
        if self.last_update is None:
            await self._tick()
        else:
            elapsed = self._clock() - self.last_update
            if elapsed >= self.interval:
                logger.debug(f"{self.name}: last update too old, updating immediately")
            else:
                remaining = self.interval - elapsed
                logger.debug(f"{self.name}: last update within interval, delaying for {remaining:.1f}s")
                await asyncio.sleep(remaining)
            await self._tick()

        while True:
            await asyncio.sleep(self.interval)
            await self._tick()


class PollSlot:
    """Holds at most one polling loop; starting a new target stops the previous one."""

    def __init__(self):
        self.target: Optional[Hashable] = None
        self.loop: Optional[PollingLoop] = None

    async def start(self, target: Hashable, loop: PollingLoop) -> None:
        await self.stop()
        self.target = target
        self.loop = loop
        loop.resume()

    async def pause(self) -> None:
        if self.loop is not None:
            await self.loop.pause()

    def resume(self) -> None:
        if self.loop is not None:
            self.loop.resume()

    async def stop(self) -> None:
        if self.loop is not None:
            await self.loop.pause()
        self.target = None
        self.loop = None
