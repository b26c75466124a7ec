"""Per-slot lifecycle state machine."""

import logging
from datetime import datetime, timezone
from typing import Optional

from ..errors import InvalidDuration, InvalidTransition
from ..events import (
    ArrivalConfirmed,
    ArrivalTimedOut,
    ArrivalWindowStarted,
    EndReached,
    Extended,
    PaymentDue,
    Released,
    Reserved,
    SlotEvent,
)
from ..metrics import record_transition, set_slot_state
from .models import Booking, SlotSnapshot, SlotState

logger = logging.getLogger(__name__)


class SlotStateMachine:
    """
    Holds one slot's state and booking and applies transitions to them.

    Lifecycle: free -> reserved -> arrival_window -> occupied ->
    payment_pending -> free, with timeouts back to free from the arrival
    window and the payment choice, and extension as a self-loop on occupied.

    User actions raise InvalidTransition when called from the wrong state.
    Timer-driven operations (``on_*``) return an empty event list instead,
    since a timer that lost a race with a user action is expected.

    The machine knows nothing about timers; the lifecycle scheduler decides
    when the ``on_*`` operations run and serializes all calls per slot.
    """

    def __init__(self, slot_id: int, name: str, now: datetime):
        self.slot_id = slot_id
        self.name = name
        self._state = SlotState.FREE
        self._booking: Optional[Booking] = None
        self._last_changed = now
        set_slot_state(slot_id, self._state.value)

    @property
    def state(self) -> SlotState:
        return self._state

    @property
    def booking(self) -> Optional[Booking]:
        return self._booking

    @property
    def last_changed(self) -> datetime:
        return self._last_changed

    def snapshot(self, deadline: Optional[datetime] = None) -> SlotSnapshot:
        return SlotSnapshot(
            id=self.slot_id,
            name=self.name,
            state=self._state,
            booking=self._booking,
            deadline=deadline,
            last_changed=self._last_changed,
        )

    # User actions

    def reserve(self, start: datetime, end: datetime, now: datetime) -> list[SlotEvent]:
        """Book the slot for [start, end). Only a free slot can be booked."""
        self._require("reserve", SlotState.FREE)
        start, end = _as_utc(start), _as_utc(end)
        if end <= start:
            raise InvalidDuration(
                f"Booking for slot {self.slot_id} must end after it starts",
                slot_id=self.slot_id,
            )

        self._apply(SlotState.RESERVED, Booking(start=start, end=end), now)
        return [Reserved(slot_id=self.slot_id, occurred_at=now, start=start, end=end)]

    def confirm_arrival(self, now: datetime) -> list[SlotEvent]:
        self._require("confirm arrival at", SlotState.ARRIVAL_WINDOW)

        self._apply(SlotState.OCCUPIED, self._booking, now)
        return [ArrivalConfirmed(slot_id=self.slot_id, occurred_at=now, end=self._booking.end)]

    def extend(self, new_end: datetime, now: datetime) -> list[SlotEvent]:
        """Move the end of an occupied slot's booking."""
        self._require("extend", SlotState.OCCUPIED)
        return self._extend_to(new_end, now)

    def choose_payment(self, now: datetime) -> list[SlotEvent]:
        """Finish the booking from the payment choice."""
        self._require("pay for", SlotState.PAYMENT_PENDING)
        return self._finish_with_payment(now)

    def choose_extend_instead(self, new_end: datetime, now: datetime) -> list[SlotEvent]:
        """Answer the payment choice with an extension; the slot is occupied again."""
        self._require("extend", SlotState.PAYMENT_PENDING)
        return self._extend_to(new_end, now)

    def release(self, now: datetime) -> list[SlotEvent]:
        """Clear the slot from any busy state."""
        if self._state == SlotState.FREE:
            raise InvalidTransition(self.slot_id, "release", self._state.value)

        self._apply(SlotState.FREE, None, now)
        return [Released(slot_id=self.slot_id, occurred_at=now)]

    # Timer-driven transitions

    def on_start_time(self, now: datetime, confirm_deadline: datetime) -> list[SlotEvent]:
        if self._state != SlotState.RESERVED:
            return []

        self._apply(SlotState.ARRIVAL_WINDOW, self._booking, now)
        return [
            ArrivalWindowStarted(
                slot_id=self.slot_id,
                occurred_at=now,
                deadline=confirm_deadline,
            )
        ]

    def on_arrival_timeout(self, now: datetime) -> list[SlotEvent]:
        if self._state != SlotState.ARRIVAL_WINDOW:
            return []

        self._apply(SlotState.FREE, None, now)
        return [
            ArrivalTimedOut(slot_id=self.slot_id, occurred_at=now),
            Released(slot_id=self.slot_id, occurred_at=now),
        ]

    def on_end_time(self, now: datetime, payment_deadline: datetime) -> list[SlotEvent]:
        if self._state != SlotState.OCCUPIED:
            return []

        self._apply(SlotState.PAYMENT_PENDING, self._booking, now)
        return [EndReached(slot_id=self.slot_id, occurred_at=now, deadline=payment_deadline)]

    def on_payment_timeout(self, now: datetime) -> list[SlotEvent]:
        if self._state != SlotState.PAYMENT_PENDING:
            return []
        return self._finish_with_payment(now)

    # Internals

    def _require(self, operation: str, expected: SlotState) -> None:
        if self._state != expected:
            raise InvalidTransition(self.slot_id, operation, self._state.value)

    def _extend_to(self, new_end: datetime, now: datetime) -> list[SlotEvent]:
        new_end = _as_utc(new_end)
        if new_end <= now or new_end <= self._booking.start:
            raise InvalidDuration(
                f"Extension for slot {self.slot_id} must end in the future",
                slot_id=self.slot_id,
            )

        booking = Booking(start=self._booking.start, end=new_end)
        self._apply(SlotState.OCCUPIED, booking, now)
        return [Extended(slot_id=self.slot_id, occurred_at=now, new_end=new_end)]

    def _finish_with_payment(self, now: datetime) -> list[SlotEvent]:
        booking = self._booking
        self._apply(SlotState.FREE, None, now)
        return [
            PaymentDue(
                slot_id=self.slot_id,
                occurred_at=now,
                start=booking.start,
                end=booking.end,
            ),
            Released(slot_id=self.slot_id, occurred_at=now),
        ]

    def _apply(self, new_state: SlotState, booking: Optional[Booking], now: datetime) -> None:
        """Replace state and booking together."""
        old_state = self._state
        self._state, self._booking = new_state, booking
        if new_state != old_state:
            self._last_changed = now
            logger.info(
                f"Slot '{self.name}' changed: {old_state.value} -> {new_state.value}"
            )
            record_transition(self.slot_id, old_state.value, new_state.value)


def _as_utc(value: datetime) -> datetime:
    """Read a naive datetime as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value
