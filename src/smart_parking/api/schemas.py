"""API request and response schemas."""

from datetime import datetime, timezone
from typing import Optional

from pydantic import BaseModel, Field, field_validator

from ..events import AnySlotEvent
from ..state.models import SlotSnapshot, SlotState


def _assume_utc(v: datetime) -> datetime:
    """Treat naive datetimes as UTC."""
    if v.tzinfo is None:
        return v.replace(tzinfo=timezone.utc)
    return v


class ReservationRequest(BaseModel):
    """Interval to book, collected fully by the client before calling."""

    start: datetime
    end: datetime

    @field_validator("start", "end")
    @classmethod
    def assume_utc(cls, v: datetime) -> datetime:
        return _assume_utc(v)


class ExtensionRequest(BaseModel):
    """New end time for an occupied slot."""

    end: datetime

    @field_validator("end")
    @classmethod
    def assume_utc(cls, v: datetime) -> datetime:
        return _assume_utc(v)


class SlotResponse(BaseModel):
    """Response schema for a single parking slot."""

    id: int
    name: str
    state: SlotState
    start: Optional[datetime] = None
    end: Optional[datetime] = None
    deadline: Optional[datetime] = None
    last_changed: datetime

    @classmethod
    def from_snapshot(cls, snapshot: SlotSnapshot) -> "SlotResponse":
        return cls(
            id=snapshot.id,
            name=snapshot.name,
            state=snapshot.state,
            start=snapshot.booking.start if snapshot.booking else None,
            end=snapshot.booking.end if snapshot.booking else None,
            deadline=snapshot.deadline,
            last_changed=snapshot.last_changed,
        )


class StatusResponse(BaseModel):
    """Response schema for overall parking status."""

    total_slots: int
    free: int
    reserved: int
    occupied: int
    slots: list[SlotResponse]
    server_time: datetime


class HealthResponse(BaseModel):
    """Health check response."""

    status: str
    slots: int
    uptime_seconds: float


class EventsResponse(BaseModel):
    """Recent lifecycle events, oldest first."""

    events: list[AnySlotEvent] = Field(default_factory=list)
