"""Data models for parking slot state."""

from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, model_validator


class SlotState(str, Enum):
    """Lifecycle state of a parking slot."""

    FREE = "free"
    RESERVED = "reserved"
    ARRIVAL_WINDOW = "arrival_window"
    OCCUPIED = "occupied"
    PAYMENT_PENDING = "payment_pending"


class Booking(BaseModel):
    """Reserved interval for a slot's current cycle."""

    model_config = ConfigDict(frozen=True)

    start: datetime
    end: datetime

    @model_validator(mode="after")
    def check_interval(self) -> "Booking":
        if self.end <= self.start:
            raise ValueError("Booking end must be after its start")
        return self

    @property
    def duration_seconds(self) -> float:
        return (self.end - self.start).total_seconds()


class SlotSnapshot(BaseModel):
    """Read-only view of a slot at one instant."""

    id: int
    name: str
    state: SlotState
    booking: Optional[Booking] = None
    deadline: Optional[datetime] = None  # due instant of the live timer
    last_changed: datetime
