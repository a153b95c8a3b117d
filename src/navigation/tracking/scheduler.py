# scheduler.py
# Cancellable timers for the asyncio event loop:
#   PeriodicTask:  fixed-period callback (progress refresh)
#   DebouncedTask: runs once after a quiet window (destination drag)

import asyncio
import logging
from typing import Any, Callable, Optional

logger = logging.getLogger(__name__)


class PeriodicTask:
    """
    Calls callback every interval_s seconds until cancelled.

    Callback errors are logged and the timer keeps running.

    Args:
        interval_s: Period in seconds.
        callback:   Zero-argument callable.
        name:       Label used in logs.
    """

    def __init__(self, interval_s: float, callback: Callable[[], Any], name: str = "periodic") -> None:
        self.interval_s = interval_s
        self.callback = callback
        self.name = name
        self._task: Optional[asyncio.Task] = None

    def start(self) -> None:
        """Start the timer on the running loop; no-op if already running."""
        if self.running:
            return
        self._task = asyncio.get_running_loop().create_task(self._run(), name=self.name)

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self.interval_s)
            try:
                self.callback()
            except Exception:
                logger.exception(f"{self.name} tick failed")

    def cancel(self) -> None:
        if self._task is not None:
            self._task.cancel()
            self._task = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()


class DebouncedTask:
    """
    Runs callback(*args) once, delay_s after the last schedule() call.

    Args:
        delay_s:  Debounce window in seconds.
        callback: Callable receiving the arguments of the latest schedule().
    """

    def __init__(self, delay_s: float, callback: Callable[..., Any]) -> None:
        self.delay_s = delay_s
        self.callback = callback
        self._handle: Optional[asyncio.TimerHandle] = None

    def schedule(self, *args: Any) -> None:
        """(Re)start the window; earlier pending calls are dropped."""
        self.cancel()
        self._handle = asyncio.get_running_loop().call_later(self.delay_s, self._fire, *args)

    def _fire(self, *args: Any) -> None:
        self._handle = None
        self.callback(*args)

    def cancel(self) -> None:
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None

    @property
    def pending(self) -> bool:
        return self._handle is not None
