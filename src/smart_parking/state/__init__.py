"""State management module."""

from .models import Booking, SlotSnapshot, SlotState
from .machine import SlotStateMachine
from .status import StatusSummary, summarize

__all__ = [
    "Booking",
    "SlotSnapshot",
    "SlotState",
    "SlotStateMachine",
    "StatusSummary",
    "summarize",
]
