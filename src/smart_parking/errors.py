"""Errors raised by slot lifecycle operations.

All of these are local and recoverable: the operation that raised left the
slot exactly as it was (or, for TimerServiceError, released it back to free).
"""

from typing import Optional


class SlotError(Exception):
    """Base class for slot lifecycle errors."""

    def __init__(self, message: str, slot_id: Optional[int] = None):
        super().__init__(message)
        self.slot_id = slot_id


class InvalidTransition(SlotError):
    """Operation is not permitted from the slot's current state."""

    def __init__(self, slot_id: int, operation: str, state: str):
        super().__init__(
            f"Cannot {operation} slot {slot_id} while it is {state}",
            slot_id=slot_id,
        )
        self.operation = operation
        self.state = state


class InvalidDuration(SlotError):
    """Supplied interval is empty, reversed, or already over."""


class UnknownSlot(SlotError):
    """Slot id is not part of the managed set."""

    def __init__(self, slot_id: int):
        super().__init__(f"Slot {slot_id} does not exist", slot_id=slot_id)


class TimerServiceError(SlotError):
    """The timer service could not register a callback."""
