"""Shared fixtures: a manual clock and a timer service advanced by hand."""

from datetime import datetime, timedelta, timezone

import pytest

from smart_parking.errors import TimerServiceError
from smart_parking.events import EventBus, SlotEvent
from smart_parking.scheduling.lifecycle import STATE_TIMERS, LifecycleScheduler
from smart_parking.scheduling.timers import Clock, TimerHandle, TimerService
from smart_parking.state.models import SlotState

T0 = datetime(2026, 3, 2, 9, 0, tzinfo=timezone.utc)


class ManualClock(Clock):
    def __init__(self, start: datetime = T0):
        self.current = start

    def now(self) -> datetime:
        return self.current


class ManualTimerService(TimerService):
    """
    Timer service whose callbacks run only when the test advances time.

    advance() walks the clock forward through every due handle in order,
    setting the clock to each handle's instant before running it, like a
    discrete event simulation.
    """

    def __init__(self, clock: ManualClock):
        super().__init__(clock)
        self.handles: list[TimerHandle] = []
        self.fail = False
        self.closed = False

    def schedule(self, at, callback, label=""):
        if self.fail or self.closed:
            raise TimerServiceError("Timer service unavailable")
        handle = TimerHandle(at, callback, label)
        self.handles.append(handle)
        return handle

    def close(self) -> None:
        self.closed = True
        for handle in self.handles:
            handle.cancel()

    def pending(self) -> list[TimerHandle]:
        return [h for h in self.handles if h.pending]

    async def advance(self, seconds: float = 0) -> None:
        target = self.clock.current + timedelta(seconds=seconds)
        while True:
            due = [h for h in self.pending() if h.when <= target]
            if not due:
                break
            handle = min(due, key=lambda h: h.when)
            if handle.when > self.clock.current:
                self.clock.current = handle.when
            await handle.run()
        self.clock.current = target


@pytest.fixture
def clock() -> ManualClock:
    return ManualClock()


@pytest.fixture
def timers(clock) -> ManualTimerService:
    return ManualTimerService(clock)


@pytest.fixture
def event_bus() -> EventBus:
    return EventBus(history_size=500)


@pytest.fixture
def events(event_bus) -> list[SlotEvent]:
    """Every event published on the bus, in order."""
    received: list[SlotEvent] = []
    event_bus.subscribe(received.append)
    return received


@pytest.fixture
def slots_config() -> list[dict]:
    return [{"id": 1, "name": "Slot 1"}, {"id": 2, "name": "Slot 2"}, {"id": 3, "name": "Slot 3"}]


@pytest.fixture
def scheduler(slots_config, timers, event_bus) -> LifecycleScheduler:
    return LifecycleScheduler(
        slots_config=slots_config,
        timer_service=timers,
        event_bus=event_bus,
        confirm_window=timedelta(seconds=10),
        payment_window=timedelta(seconds=10),
    )


def assert_consistent(scheduler: LifecycleScheduler, slot_id: int) -> None:
    """State, booking and live timers of a slot agree with each other."""
    snapshot = scheduler.get_slot(slot_id)
    live = set(scheduler.live_timers(slot_id))

    if snapshot.state == SlotState.FREE:
        assert live == set()
        assert snapshot.booking is None
    else:
        assert live == {STATE_TIMERS[snapshot.state]}
        assert snapshot.booking is not None


@pytest.fixture
def check_consistent(scheduler):
    def check(*slot_ids: int) -> None:
        for slot_id in slot_ids or scheduler.slot_ids:
            assert_consistent(scheduler, slot_id)

    return check
