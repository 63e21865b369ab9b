"""Inactivity lock timer."""

import asyncio
import logging
import time
from collections.abc import Callable

logger = logging.getLogger(__name__)


class InactivityTimer:
    """Single-shot timer, restarted on every reset.

    ``reset()`` cancels the pending handle and schedules a new one ``timeout``
    seconds out. There is no repeating tick. ``on_expire`` runs on the event
    loop when a handle fires.
    """

    def __init__(
        self,
        timeout: float,
        on_expire: Callable[[], None],
        clock: Callable[[], float] = time.monotonic,
    ):
        self.timeout = timeout
        self._on_expire = on_expire
        self._clock = clock
        self._handle: asyncio.TimerHandle | None = None
        self.last_activity: float = clock()

    @property
    def active(self) -> bool:
        return self._handle is not None

    def reset(self) -> None:
        self.last_activity = self._clock()
        self.cancel()
        loop = asyncio.get_running_loop()
        self._handle = loop.call_later(self.timeout, self._fire)

    def cancel(self) -> None:
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None

    def touch(self) -> None:
        """Record activity without (re)arming the timer."""
        self.last_activity = self._clock()

    def idle_for(self) -> float:
        return self._clock() - self.last_activity

    def expired(self) -> bool:
        return self.idle_for() >= self.timeout

    def _fire(self) -> None:
        self._handle = None
        logger.info("No activity for %.0fs, locking", self.timeout)
        self._on_expire()
