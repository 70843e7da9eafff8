"""
Timer primitives for the workout engine.

The engine is single-threaded and callback driven. Its only suspension points
are wall-clock timers (rest countdown, auto-stop dwell), so everything that
needs time goes through a Scheduler: production code runs on the asyncio
(uvloop) event loop, tests drive a manual clock.
"""

from __future__ import annotations

import asyncio
import logging
import math
import time
from abc import ABC, abstractmethod
from typing import Any, Callable, Coroutine, Optional

logger = logging.getLogger(__name__)


class TimerHandle(ABC):
    @abstractmethod
    def cancel(self) -> None:
        """Prevent the callback from running if it has not fired yet."""


class Scheduler(ABC):
    """Clock plus deferred-callback source used by every timed component."""

    @abstractmethod
    def now(self) -> float:
        """Current time in seconds."""

    @abstractmethod
    def call_later(self, delay: float, callback: Callable[[], None]) -> TimerHandle:
        """Run ``callback`` after ``delay`` seconds."""

    @abstractmethod
    def spawn(self, coro: Coroutine[Any, Any, Any]) -> None:
        """Run a coroutine to completion without awaiting it here."""


class _LoopTimerHandle(TimerHandle):
    def __init__(self, handle: asyncio.TimerHandle):
        self._handle = handle

    def cancel(self) -> None:
        self._handle.cancel()


class LoopScheduler(Scheduler):
    """Scheduler backed by the running asyncio event loop."""

    def __init__(self, loop: Optional[asyncio.AbstractEventLoop] = None):
        self._loop = loop

    @property
    def loop(self) -> asyncio.AbstractEventLoop:
        if self._loop is not None:
            return self._loop
        return asyncio.get_running_loop()

    def now(self) -> float:
        return time.time()

    def call_later(self, delay: float, callback: Callable[[], None]) -> TimerHandle:
        return _LoopTimerHandle(self.loop.call_later(max(0.0, delay), callback))

    def spawn(self, coro: Coroutine[Any, Any, Any]) -> None:
        task = self.loop.create_task(coro)
        task.add_done_callback(self._report_failure)

    @staticmethod
    def _report_failure(task: "asyncio.Task[Any]") -> None:
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.error("Background task failed: %s", error)


class RestTimer:
    """
    Countdown between plan blocks.

    Owns its pending timer handle. Ticks once per second so the UI can show the
    remaining whole seconds and a progress ratio. ``skip()`` ends the rest
    immediately and ``extend()`` pushes the deadline out without touching the
    time already elapsed. ``on_done`` runs exactly once, whether the rest ends
    naturally or is skipped; ``cancel()`` ends it without calling ``on_done``.
    """

    TICK_SECONDS = 1.0
    EXTEND_SECONDS = 30.0

    def __init__(
        self,
        scheduler: Scheduler,
        duration: float,
        on_done: Callable[[], None],
        on_tick: Optional[Callable[["RestTimer"], None]] = None,
    ):
        self.scheduler = scheduler
        self.duration = max(0.0, float(duration))
        self.on_done = on_done
        self.on_tick = on_tick
        self.started_at: Optional[float] = None
        self.deadline: Optional[float] = None
        self.finished = False
        self.skipped = False
        self._handle: Optional[TimerHandle] = None

    def start(self) -> "RestTimer":
        self.started_at = self.scheduler.now()
        self.deadline = self.started_at + self.duration
        self._schedule_tick()
        return self

    @property
    def is_running(self) -> bool:
        return self.started_at is not None and not self.finished

    @property
    def elapsed(self) -> float:
        if self.started_at is None:
            return 0.0
        return max(0.0, self.scheduler.now() - self.started_at)

    @property
    def remaining(self) -> float:
        if self.deadline is None:
            return self.duration
        if self.finished:
            return 0.0
        return max(0.0, self.deadline - self.scheduler.now())

    @property
    def remaining_seconds(self) -> int:
        """Whole seconds left, rounded up the way a countdown displays them."""
        return int(math.ceil(self.remaining - 1e-9))

    @property
    def progress(self) -> float:
        """Fraction of the (possibly extended) rest already elapsed, 0.0 to 1.0."""
        if self.finished:
            return 1.0
        total = self.elapsed + self.remaining
        if total <= 0:
            return 1.0
        return min(1.0, self.elapsed / total)

    def extend(self, seconds: float = EXTEND_SECONDS) -> None:
        if not self.is_running:
            return
        self.deadline += seconds
        self.duration += seconds
        logger.info("+%ds added to rest", int(seconds))

    def skip(self) -> None:
        if not self.is_running:
            return
        logger.info("Rest skipped")
        self.skipped = True
        self._finish()

    def cancel(self) -> None:
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None
        self.finished = True

    def _schedule_tick(self) -> None:
        delay = min(self.TICK_SECONDS, self.remaining)
        self._handle = self.scheduler.call_later(delay, self._tick)

    def _tick(self) -> None:
        self._handle = None
        if self.finished:
            return
        if self.remaining <= 0:
            self._finish()
            return
        if self.on_tick is not None:
            self.on_tick(self)
        self._schedule_tick()

    def _finish(self) -> None:
        if self.finished:
            return
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None
        self.finished = True
        self.on_done()
