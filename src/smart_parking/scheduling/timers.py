"""Clock and one-shot timer service on the asyncio event loop."""

import asyncio
import logging
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from enum import Enum
from typing import Awaitable, Callable, Optional

from ..errors import TimerServiceError

logger = logging.getLogger(__name__)

TimerCallback = Callable[[], Awaitable[None]]


class Clock(ABC):
    """Source of the current instant."""

    @abstractmethod
    def now(self) -> datetime:
        """Current time as a timezone-aware datetime."""


class SystemClock(Clock):
    """Wall clock in UTC."""

    def now(self) -> datetime:
        return datetime.now(timezone.utc)


class TimerStatus(str, Enum):
    PENDING = "pending"
    FIRED = "fired"
    CANCELLED = "cancelled"


class TimerHandle:
    """
    One scheduled callback.

    The handle moves from pending to either fired or cancelled exactly once.
    The callback starts only while the handle is still pending, so once a
    cancel has gone through the callback can no longer start.
    """

    def __init__(self, when: datetime, callback: TimerCallback, label: str = ""):
        self.when = when
        self.label = label
        self._callback = callback
        self._status = TimerStatus.PENDING
        self._loop_handle: Optional[asyncio.TimerHandle] = None

    @property
    def status(self) -> TimerStatus:
        return self._status

    @property
    def pending(self) -> bool:
        return self._status == TimerStatus.PENDING

    def bind(self, loop_handle: asyncio.TimerHandle) -> None:
        """Attach the event loop entry that will fire this handle."""
        self._loop_handle = loop_handle

    def cancel(self) -> bool:
        """
        Stop the callback from running.

        Returns:
            True if this call cancelled the handle, False if it had
            already fired or been cancelled
        """
        if self._status != TimerStatus.PENDING:
            return False
        self._status = TimerStatus.CANCELLED
        if self._loop_handle is not None:
            self._loop_handle.cancel()
        return True

    async def run(self) -> None:
        """Run the callback unless the handle was cancelled or already fired."""
        if self._status != TimerStatus.PENDING:
            return
        self._status = TimerStatus.FIRED
        try:
            await self._callback()
        except Exception:
            logger.exception(f"Timer callback failed: {self.label or self._callback!r}")

    def __repr__(self) -> str:
        return f"TimerHandle({self.label!r}, when={self.when.isoformat()}, {self._status.value})"


class TimerService(ABC):
    """Schedules callbacks at absolute instants."""

    def __init__(self, clock: Clock):
        self.clock = clock

    @abstractmethod
    def schedule(self, at: datetime, callback: TimerCallback, label: str = "") -> TimerHandle:
        """
        Register a callback to run once at ``at``.

        An instant that is now or already past runs on a later loop
        iteration, never inside this call.

        Raises:
            TimerServiceError: If the callback cannot be registered
        """

    def cancel(self, handle: Optional[TimerHandle]) -> None:
        """Cancel a handle. Cancelling twice, or after firing, does nothing."""
        if handle is not None and handle.cancel():
            logger.debug(f"Cancelled timer {handle.label}")

    @abstractmethod
    def close(self) -> None:
        """Cancel everything still pending and refuse new callbacks."""


class AsyncioTimerService(TimerService):
    """
    Timer service backed by ``loop.call_later``.

    Due callbacks are started as tasks, so they run concurrently with the
    code that scheduled them and with each other.
    """

    def __init__(self, clock: Clock, loop: Optional[asyncio.AbstractEventLoop] = None):
        super().__init__(clock)
        self._loop = loop
        self._pending: set[TimerHandle] = set()
        self._tasks: set[asyncio.Task] = set()
        self._closed = False

    def schedule(self, at: datetime, callback: TimerCallback, label: str = "") -> TimerHandle:
        if self._closed:
            raise TimerServiceError("Timer service is closed")

        try:
            loop = self._loop or asyncio.get_running_loop()
        except RuntimeError as e:
            raise TimerServiceError("No running event loop to schedule timers on") from e

        handle = TimerHandle(at, callback, label)
        try:
            delay = max((at - self.clock.now()).total_seconds(), 0.0)
            handle.bind(loop.call_later(delay, self._fire, handle))
        except (TypeError, ValueError, OverflowError, RuntimeError) as e:
            raise TimerServiceError(f"Cannot schedule timer {label} at {at!r}: {e}") from e
        self._pending.add(handle)

        logger.debug(f"Scheduled timer {label} in {delay:.3f}s")
        return handle

    def cancel(self, handle: Optional[TimerHandle]) -> None:
        super().cancel(handle)
        if handle is not None:
            self._pending.discard(handle)

    def close(self) -> None:
        self._closed = True
        for handle in list(self._pending):
            self.cancel(handle)
        for task in list(self._tasks):
            task.cancel()
        logger.info("Timer service closed")

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    def _fire(self, handle: TimerHandle) -> None:
        self._pending.discard(handle)
        if not handle.pending:
            return
        task = asyncio.ensure_future(handle.run())
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
