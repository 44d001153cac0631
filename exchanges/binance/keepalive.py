"""
Keepalive Timer

Runs an async action every `interval` seconds in a background task. The
client uses it to refresh the user data listen key, which the venue expires
60 minutes after the last refresh.

A failing tick is logged and counted, whatever it raised, and the timer
keeps going. The stream may go stale until the next successful tick.
Callers should treat a growing `consecutive_failures` as a sign that the
listen key must be recreated.
"""

import asyncio
from typing import Awaitable, Callable, Optional

from core.exceptions import FuturesClientError
from core.logging import get_logger


class KeepaliveTimer:
    """
    Periodic background action.

    Attributes:
        interval: Seconds between ticks
        action: Coroutine function run on every tick
        name: Label used in log lines
        consecutive_failures: Failed ticks since the last success

    Example:
        >>> timer = KeepaliveTimer(1800, client.keepalive_listen_key, name="listen key keepalive")
        >>> timer.start()
        >>> ...
        >>> await timer.stop()
    """

    def __init__(self, interval: float, action: Callable[[], Awaitable[None]], name: str = "keepalive"):
        self.interval = interval
        self.action = action
        self.name = name
        self.consecutive_failures = 0
        self._task: Optional[asyncio.Task] = None
        self.logger = get_logger(__name__)

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        """Start ticking. Does nothing if already running."""
        if self.running:
            return
        self.consecutive_failures = 0
        self._task = asyncio.create_task(self._run(), name=self.name)
        self.logger.info(f"{self.name} started (every {self.interval}s)")

    async def stop(self) -> None:
        """Cancel the timer and wait for it to finish."""
        if self._task is None:
            return
        self._task.cancel()
        await asyncio.gather(self._task, return_exceptions=True)
        self._task = None
        self.logger.info(f"{self.name} stopped")

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self.interval)
            await self.tick()

    async def tick(self) -> bool:
        """
        Run the action once.

        Returns:
            bool: True on success
        """
        try:
            await self.action()
        except FuturesClientError as e:
            self.consecutive_failures += 1
            self.logger.error(f"{self.name} failed ({self.consecutive_failures} in a row): {e}")
            return False
        except Exception:
            self.consecutive_failures += 1
            self.logger.exception(f"{self.name} raised unexpectedly ({self.consecutive_failures} in a row)")
            return False

        self.consecutive_failures = 0
        return True
