"""Timers and the lifecycle scheduler built on them."""

from .timers import AsyncioTimerService, Clock, SystemClock, TimerHandle, TimerService
from .lifecycle import LifecycleScheduler, TimerKind

__all__ = [
    "AsyncioTimerService",
    "Clock",
    "SystemClock",
    "TimerHandle",
    "TimerService",
    "LifecycleScheduler",
    "TimerKind",
]
