"""Three-bucket occupancy summary over slot states."""

from typing import Iterable

from pydantic import BaseModel

from .models import SlotState


class StatusSummary(BaseModel):
    """Free / reserved / occupied counts shown to users."""

    free: int = 0
    reserved: int = 0
    occupied: int = 0

    @property
    def total(self) -> int:
        return self.free + self.reserved + self.occupied


# Waiting for arrival still counts as reserved, waiting for a payment
# choice still counts as occupied.
_BUCKETS = {
    SlotState.FREE: "free",
    SlotState.RESERVED: "reserved",
    SlotState.ARRIVAL_WINDOW: "reserved",
    SlotState.OCCUPIED: "occupied",
    SlotState.PAYMENT_PENDING: "occupied",
}


def summarize(states: Iterable[SlotState]) -> StatusSummary:
    """
    Count slots per bucket.

    Args:
        states: Current state of every slot

    Returns:
        StatusSummary whose counts sum to the number of states given
    """
    counts = {"free": 0, "reserved": 0, "occupied": 0}
    for state in states:
        counts[_BUCKETS[SlotState(state)]] += 1
    return StatusSummary(**counts)
