"""Timer-driven orchestration of slot lifecycles."""

import asyncio
import logging
from datetime import datetime, timedelta
from enum import Enum
from typing import Optional

from ..errors import SlotError, TimerServiceError, UnknownSlot
from ..events import EventBus, PaymentDue, SlotEvent
from ..metrics import (
    record_payment_due,
    record_rejection,
    record_timer_firing,
    update_slot_counts,
)
from ..state.machine import SlotStateMachine
from ..state.models import SlotSnapshot, SlotState
from ..state.status import StatusSummary, summarize
from .timers import TimerHandle, TimerService

logger = logging.getLogger(__name__)

DEFAULT_CONFIRM_WINDOW = timedelta(seconds=10)
DEFAULT_PAYMENT_WINDOW = timedelta(seconds=10)


class TimerKind(str, Enum):
    """The delayed checks a slot can have scheduled."""

    START = "start"
    CONFIRM = "confirm"
    END = "end"
    PAYMENT = "payment"


# The single timer each busy state is waiting on
STATE_TIMERS = {
    SlotState.RESERVED: TimerKind.START,
    SlotState.ARRIVAL_WINDOW: TimerKind.CONFIRM,
    SlotState.OCCUPIED: TimerKind.END,
    SlotState.PAYMENT_PENDING: TimerKind.PAYMENT,
}


class ManagedSlot:
    """A slot's state machine together with the lock and timers guarding it."""

    def __init__(self, machine: SlotStateMachine):
        self.machine = machine
        self.lock = asyncio.Lock()
        self.timers: dict[TimerKind, TimerHandle] = {}

    @property
    def id(self) -> int:
        return self.machine.slot_id

    def live_timers(self) -> dict[TimerKind, TimerHandle]:
        return {kind: h for kind, h in self.timers.items() if h.pending}

    def deadline(self) -> Optional[datetime]:
        kind = STATE_TIMERS.get(self.machine.state)
        handle = self.timers.get(kind) if kind else None
        return handle.when if handle is not None and handle.pending else None


class LifecycleScheduler:
    """
    Drives every slot through its lifecycle.

    User actions (book, confirm_arrival, extend, choose_payment,
    choose_extend_instead, release) and timer callbacks for the same slot
    run under that slot's lock, so they never interleave. Slots do not share
    locks and progress independently.

    Each busy state keeps exactly one live timer (see STATE_TIMERS); a free
    slot keeps none. Timer callbacks first check that they are still the
    slot's current timer of their kind, then the state machine checks the
    state, so a timer that lost a race with a user action does nothing.
    """

    def __init__(
        self,
        slots_config: list[dict],
        timer_service: TimerService,
        event_bus: Optional[EventBus] = None,
        confirm_window: timedelta = DEFAULT_CONFIRM_WINDOW,
        payment_window: timedelta = DEFAULT_PAYMENT_WINDOW,
    ):
        """
        Initialize the scheduler with every slot free.

        Args:
            slots_config: List of slot configuration dicts with 'id' and 'name'
            timer_service: Service used for all delayed checks
            event_bus: Bus that receives lifecycle events
            confirm_window: Time allowed to confirm arrival after the start
            payment_window: Time allowed to choose payment or extension after the end
        """
        self.timer_service = timer_service
        self.clock = timer_service.clock
        self.event_bus = event_bus or EventBus()
        self.confirm_window = confirm_window
        self.payment_window = payment_window

        now = self.clock.now()
        self._slots: dict[int, ManagedSlot] = {}
        for slot in slots_config:
            slot_id = slot["id"]
            name = slot.get("name") or f"Slot {slot_id}"
            self._slots[slot_id] = ManagedSlot(SlotStateMachine(slot_id, name, now))

        self._update_counts()
        logger.info(f"Initialized LifecycleScheduler with {len(self._slots)} slots")

    # User actions

    async def book(self, slot_id: int, start: datetime, end: datetime) -> SlotSnapshot:
        """Reserve a free slot for [start, end)."""
        slot = self._get_slot(slot_id, "book")
        async with slot.lock:
            events = self._transition(slot, "book", slot.machine.reserve, start, end, self.clock.now())
            self._commit(slot, events, schedule=(TimerKind.START, slot.machine.booking.start))
            return self._snapshot(slot)

    async def confirm_arrival(self, slot_id: int) -> SlotSnapshot:
        """Claim a slot whose arrival window is open."""
        slot = self._get_slot(slot_id, "confirm_arrival")
        async with slot.lock:
            events = self._transition(slot, "confirm_arrival", slot.machine.confirm_arrival, self.clock.now())
            self._commit(
                slot,
                events,
                cancel=(TimerKind.CONFIRM,),
                schedule=(TimerKind.END, slot.machine.booking.end),
            )
            return self._snapshot(slot)

    async def extend(self, slot_id: int, new_end: datetime) -> SlotSnapshot:
        """Push back the end of an occupied slot's booking."""
        slot = self._get_slot(slot_id, "extend")
        async with slot.lock:
            events = self._transition(slot, "extend", slot.machine.extend, new_end, self.clock.now())
            self._commit(
                slot,
                events,
                cancel=(TimerKind.PAYMENT,),
                schedule=(TimerKind.END, slot.machine.booking.end),
            )
            return self._snapshot(slot)

    async def choose_extend_instead(self, slot_id: int, new_end: datetime) -> SlotSnapshot:
        """Answer the payment choice by extending; the slot is occupied again."""
        slot = self._get_slot(slot_id, "choose_extend_instead")
        async with slot.lock:
            events = self._transition(
                slot,
                "choose_extend_instead",
                slot.machine.choose_extend_instead,
                new_end,
                self.clock.now(),
            )
            self._commit(
                slot,
                events,
                cancel=(TimerKind.PAYMENT,),
                schedule=(TimerKind.END, slot.machine.booking.end),
            )
            return self._snapshot(slot)

    async def choose_payment(self, slot_id: int) -> PaymentDue:
        """
        Finish the booking from the payment choice.

        Returns:
            The PaymentDue event, for presenting the bill
        """
        slot = self._get_slot(slot_id, "choose_payment")
        async with slot.lock:
            events = self._transition(slot, "choose_payment", slot.machine.choose_payment, self.clock.now())
            self._commit(slot, events)
            record_payment_due(timed_out=False)
            return next(e for e in events if isinstance(e, PaymentDue))

    async def release(self, slot_id: int) -> SlotSnapshot:
        """Free a busy slot immediately, dropping its booking and timers."""
        slot = self._get_slot(slot_id, "release")
        async with slot.lock:
            events = self._transition(slot, "release", slot.machine.release, self.clock.now())
            self._commit(slot, events)
            return self._snapshot(slot)

    # Read side

    def get_slot(self, slot_id: int) -> SlotSnapshot:
        return self._snapshot(self._get_slot(slot_id, "get_slot"))

    def snapshots(self) -> list[SlotSnapshot]:
        return [self._snapshot(slot) for slot in self._slots.values()]

    def summary(self) -> StatusSummary:
        return summarize(slot.machine.state for slot in self._slots.values())

    def live_timers(self, slot_id: int) -> dict[TimerKind, TimerHandle]:
        """Timers of a slot that have neither fired nor been cancelled."""
        return self._get_slot(slot_id, "live_timers").live_timers()

    @property
    def slot_ids(self) -> list[int]:
        return list(self._slots)

    def shutdown(self) -> None:
        """Cancel every live timer. Slot state is left as it is."""
        for slot in self._slots.values():
            self._cancel_all(slot)
        logger.info("LifecycleScheduler shut down")

    # Timer callbacks

    async def _on_timer(self, slot: ManagedSlot, kind: TimerKind, handle: TimerHandle) -> None:
        async with slot.lock:
            if slot.timers.get(kind) is not handle:
                logger.debug(f"Ignoring superseded {kind.value} timer for slot {slot.id}")
                record_timer_firing(kind.value, applied=False)
                return
            del slot.timers[kind]

            now = self.clock.now()
            machine = slot.machine
            schedule = None

            if kind == TimerKind.START:
                deadline = now + self.confirm_window
                events = machine.on_start_time(now, deadline)
                schedule = (TimerKind.CONFIRM, deadline)
            elif kind == TimerKind.CONFIRM:
                events = machine.on_arrival_timeout(now)
            elif kind == TimerKind.END:
                deadline = now + self.payment_window
                events = machine.on_end_time(now, deadline)
                schedule = (TimerKind.PAYMENT, deadline)
            else:
                events = machine.on_payment_timeout(now)
                if events:
                    record_payment_due(timed_out=True)

            record_timer_firing(kind.value, applied=bool(events))
            if not events:
                logger.debug(f"Stale {kind.value} timer for slot {slot.id} in state {machine.state.value}")
                return

            self._commit(slot, events, schedule=schedule, raise_errors=False)

    # Internals

    def _get_slot(self, slot_id: int, operation: str) -> ManagedSlot:
        slot = self._slots.get(slot_id)
        if slot is None:
            record_rejection(operation, UnknownSlot.__name__)
            logger.warning(f"Unknown slot ID in {operation}: {slot_id}")
            raise UnknownSlot(slot_id)
        return slot

    def _transition(self, slot: ManagedSlot, operation: str, action, *args) -> list[SlotEvent]:
        try:
            return action(*args)
        except SlotError as e:
            record_rejection(operation, type(e).__name__)
            logger.warning(f"Rejected {operation} on slot {slot.id}: {e}")
            raise

    def _commit(
        self,
        slot: ManagedSlot,
        events: list[SlotEvent],
        cancel: tuple[TimerKind, ...] = (),
        schedule: Optional[tuple[TimerKind, datetime]] = None,
        raise_errors: bool = True,
    ) -> None:
        """Bring the slot's timers in line with its new state, then publish."""
        for kind in cancel:
            self._cancel_timer(slot, kind)

        try:
            if slot.machine.state == SlotState.FREE:
                self._cancel_all(slot)
            elif schedule is not None:
                self._schedule(slot, *schedule)
        except TimerServiceError as e:
            events = events + self._fall_back(slot, e)
            self._publish(events)
            if raise_errors:
                raise
            return

        self._publish(events)

    def _schedule(self, slot: ManagedSlot, kind: TimerKind, at: datetime) -> None:
        self._cancel_timer(slot, kind)
        handle: Optional[TimerHandle] = None

        async def fire() -> None:
            await self._on_timer(slot, kind, handle)

        handle = self.timer_service.schedule(at, fire, label=f"slot {slot.id} {kind.value}")
        slot.timers[kind] = handle

    def _cancel_timer(self, slot: ManagedSlot, kind: TimerKind) -> None:
        self.timer_service.cancel(slot.timers.pop(kind, None))

    def _cancel_all(self, slot: ManagedSlot) -> None:
        for kind in list(slot.timers):
            self._cancel_timer(slot, kind)

    def _fall_back(self, slot: ManagedSlot, error: TimerServiceError) -> list[SlotEvent]:
        """Release a slot whose next timer could not be scheduled."""
        logger.error(f"Could not schedule timer for slot {slot.id}, releasing it: {error}")
        error.slot_id = slot.id
        self._cancel_all(slot)
        if slot.machine.state == SlotState.FREE:
            return []
        return slot.machine.release(self.clock.now())

    def _publish(self, events: list[SlotEvent]) -> None:
        self._update_counts()
        for event in events:
            self.event_bus.publish(event)

    def _update_counts(self) -> None:
        summary = self.summary()
        update_slot_counts(
            total=len(self._slots),
            free=summary.free,
            reserved=summary.reserved,
            occupied=summary.occupied,
        )

    def _snapshot(self, slot: ManagedSlot) -> SlotSnapshot:
        return slot.machine.snapshot(deadline=slot.deadline())
