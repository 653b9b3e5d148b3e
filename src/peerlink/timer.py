"""
PeerLink - Single-slot cancelable retry timer.

A RetryTimer holds at most one scheduled callback. Scheduling a new one
cancels the previous one, so two retries can never be outstanding at once.
The clock is injected through a Scheduler so tests can drive time manually.
"""

import asyncio
import logging
from typing import Any, Callable, Optional, Protocol

logger = logging.getLogger(__name__)


class Cancellable(Protocol):
    def cancel(self) -> Any: ...


class Scheduler(Protocol):
    """Anything that can run a callback after a delay."""

    def call_later(self, delay: float, callback: Callable[[], None]) -> Cancellable: ...


class AsyncioScheduler:
    """Scheduler backed by the running asyncio event loop."""

    def __init__(self, loop: Optional[asyncio.AbstractEventLoop] = None):
        self._loop = loop

    @property
    def loop(self) -> asyncio.AbstractEventLoop:
        if self._loop is None:
            self._loop = asyncio.get_running_loop()
        return self._loop

    def call_later(self, delay: float, callback: Callable[[], None]) -> asyncio.TimerHandle:
        return self.loop.call_later(delay, callback)


class RetryTimer:
    """
    At most one outstanding scheduled callback.

    The slot is cleared before the callback runs, so a callback may
    schedule the next retry from inside itself.
    """

    def __init__(self, scheduler: Scheduler, name: str = "retry"):
        self.scheduler = scheduler
        self.name = name
        self._handle: Optional[Cancellable] = None
        self._delay: Optional[float] = None
        self.fired_count = 0

    @property
    def pending(self) -> bool:
        return self._handle is not None

    @property
    def delay(self) -> Optional[float]:
        """Delay of the pending callback, None when idle."""
        return self._delay if self._handle is not None else None

    def schedule(self, delay: float, callback: Callable[[], None]) -> None:
        """Schedule ``callback`` after ``delay`` seconds, replacing any pending one."""
        self.cancel()

        def fire():
            if self._handle is not handle_box[0]:
                return
            self._handle = None
            self._delay = None
            self.fired_count += 1
            logger.debug(f"{self.name} timer fired")
            callback()

        # Box lets fire() compare against its own handle once it exists.
        handle_box: list = [None]
        handle_box[0] = self.scheduler.call_later(delay, fire)
        self._handle = handle_box[0]
        self._delay = delay
        logger.debug(f"{self.name} timer scheduled in {delay:.1f}s")

    def cancel(self) -> bool:
        """Cancel the pending callback. Returns True if one was pending."""
        if self._handle is None:
            return False
        self._handle.cancel()
        self._handle = None
        self._delay = None
        logger.debug(f"{self.name} timer canceled")
        return True

    def __repr__(self) -> str:
        return f"RetryTimer(name={self.name!r}, pending={self.pending})"
