"""
Session clock and periodic tick broadcast.

Every party computes elapsed playback time as ``now - startAt``. The anchor is
fixed at process start and only moves on an explicit controller reset.
"""

import asyncio
import logging
from typing import Callable, Optional

from marquee_sync.config import TICK_INTERVAL_MS
from marquee_sync.fanout import Fanout
from marquee_sync.protocol import reset_message, tick_message
from marquee_sync.registry import now_ms

logger = logging.getLogger(__name__)


class SessionClock:
    """Holds the process-wide ``startAt`` anchor."""

    def __init__(self, time_fn: Callable[[], int] = now_ms):
        self._time_fn = time_fn
        self.start_at = time_fn()
        self.reset_count = 0

    def now_ms(self) -> int:
        return self._time_fn()

    def reset(self) -> int:
        """Overwrite the anchor with the current time and return it."""
        self.start_at = self._time_fn()
        self.reset_count += 1
        return self.start_at


class ClockBroadcaster:
    """Emits ``tick`` to every connection on a fixed interval."""

    def __init__(
        self,
        clock: SessionClock,
        fanout: Fanout,
        lock: asyncio.Lock,
        interval_ms: int = TICK_INTERVAL_MS,
    ):
        self.clock = clock
        self.fanout = fanout
        self.lock = lock
        self.interval = interval_ms / 1000.0
        self.ticks_sent = 0
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.create_task(self._tick_loop())
        logger.debug(f"[TICK] Tick loop started ({self.interval:.1f}s interval)")

    async def stop(self) -> None:
        if self._task is None:
            return
        task, self._task = self._task, None
        if not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass

    async def tick(self) -> int:
        """Send one tick to all players and controllers. Caller holds the lock."""
        payload = tick_message(self.clock.now_ms(), self.clock.start_at)
        self.ticks_sent += 1
        return await self.fanout.to_everyone(payload)

    async def reset_start_at(self) -> int:
        """Move the anchor to now and announce it. Caller holds the lock."""
        new_start_at = self.clock.reset()
        logger.info(f"[RESET] startAt reset to {new_start_at}")
        return await self.fanout.to_everyone(reset_message(new_start_at))

    async def _tick_loop(self):
        while True:
            try:
                await asyncio.sleep(self.interval)
                async with self.lock:
                    await self.tick()
            except asyncio.CancelledError:
                logger.debug("[TICK] Tick loop cancelled")
                raise
            except Exception as e:
                logger.error(f"[TICK] Loop error: {e}", exc_info=True)
