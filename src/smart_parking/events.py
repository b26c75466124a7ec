"""Slot lifecycle events and the in-process bus that delivers them."""

import logging
from collections import deque
from datetime import datetime
from typing import Annotated, Callable, Literal, Union

from pydantic import BaseModel, ConfigDict, Field

logger = logging.getLogger(__name__)


class SlotEvent(BaseModel):
    """Base for everything the lifecycle core announces."""

    model_config = ConfigDict(frozen=True)

    kind: str
    slot_id: int
    occurred_at: datetime


class Reserved(SlotEvent):
    kind: Literal["reserved"] = "reserved"
    start: datetime
    end: datetime


class ArrivalWindowStarted(SlotEvent):
    kind: Literal["arrival_window_started"] = "arrival_window_started"
    deadline: datetime


class ArrivalConfirmed(SlotEvent):
    kind: Literal["arrival_confirmed"] = "arrival_confirmed"
    end: datetime


class ArrivalTimedOut(SlotEvent):
    kind: Literal["arrival_timed_out"] = "arrival_timed_out"


class EndReached(SlotEvent):
    kind: Literal["end_reached"] = "end_reached"
    deadline: datetime


class Extended(SlotEvent):
    kind: Literal["extended"] = "extended"
    new_end: datetime


class PaymentDue(SlotEvent):
    """Booking finished; the collaborator should present the bill."""

    kind: Literal["payment_due"] = "payment_due"
    start: datetime
    end: datetime


class Released(SlotEvent):
    kind: Literal["released"] = "released"


AnySlotEvent = Annotated[
    Union[
        Reserved,
        ArrivalWindowStarted,
        ArrivalConfirmed,
        ArrivalTimedOut,
        EndReached,
        Extended,
        PaymentDue,
        Released,
    ],
    Field(discriminator="kind"),
]

EventListener = Callable[[SlotEvent], None]


class EventBus:
    """
    Synchronous publish/subscribe for slot events.

    Listeners are called in subscription order. A listener that raises is
    logged and skipped; it never affects slot state or other listeners.
    The most recent events are kept for callers that poll instead of
    subscribing.
    """

    def __init__(self, history_size: int = 100):
        self._listeners: list[EventListener] = []
        self._history: deque[SlotEvent] = deque(maxlen=history_size)

    def subscribe(self, listener: EventListener) -> Callable[[], None]:
        """
        Register a listener.

        Returns:
            Callable that removes the listener again
        """
        self._listeners.append(listener)

        def unsubscribe() -> None:
            try:
                self._listeners.remove(listener)
            except ValueError:
                pass

        return unsubscribe

    def publish(self, event: SlotEvent) -> None:
        """Record an event and deliver it to every listener."""
        self._history.append(event)
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception:
                logger.exception(f"Event listener failed on {event.kind} for slot {event.slot_id}")

    def recent(self, limit: int = 50) -> list[SlotEvent]:
        """Most recent events, oldest first."""
        if limit <= 0:
            return []
        return list(self._history)[-limit:]
