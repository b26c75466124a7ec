"""Bill shown to the user when a booking finishes."""

import math
from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel

from .events import PaymentDue

MINIMUM_BILLED_MINUTES = 1


class PaymentSummary(BaseModel):
    slot_id: int
    start: datetime
    end: datetime
    duration_minutes: int
    rate_per_minute: Decimal
    amount: Decimal
    currency: str


def billed_minutes(start: datetime, end: datetime) -> int:
    """Whole minutes to bill for [start, end), rounded up, at least one."""
    seconds = (end - start).total_seconds()
    return max(MINIMUM_BILLED_MINUTES, math.ceil(seconds / 60))


def summarize_payment(
    event: PaymentDue,
    rate_per_minute: Decimal = Decimal("2"),
    currency: str = "INR",
) -> PaymentSummary:
    """
    Compute the amount due for a finished booking.

    Args:
        event: PaymentDue event carrying the booking interval
        rate_per_minute: Price of one billed minute
        currency: Currency code shown with the amount

    Returns:
        PaymentSummary with the billed minutes and total amount
    """
    minutes = billed_minutes(event.start, event.end)
    rate = Decimal(rate_per_minute)
    return PaymentSummary(
        slot_id=event.slot_id,
        start=event.start,
        end=event.end,
        duration_minutes=minutes,
        rate_per_minute=rate,
        amount=rate * minutes,
        currency=currency,
    )
