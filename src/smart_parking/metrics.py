"""Prometheus metrics for the slot lifecycle."""

from prometheus_client import Counter, Gauge, CollectorRegistry, generate_latest

# Create a custom registry to avoid conflicts with default metrics
REGISTRY = CollectorRegistry()

# Slot state transitions
SLOT_TRANSITIONS = Counter(
    "parking_slot_transitions_total",
    "Total number of slot lifecycle transitions",
    ["slot_id", "from_state", "to_state"],
    registry=REGISTRY,
)

# Current slot state, one series per slot/state pair (1=current, 0=not)
SLOT_STATE = Gauge(
    "parking_slot_state",
    "Current lifecycle state of a slot",
    ["slot_id", "state"],
    registry=REGISTRY,
)

# Three-bucket summary gauges
TOTAL_SLOTS = Gauge(
    "parking_slots_total",
    "Total number of parking slots",
    registry=REGISTRY,
)

FREE_SLOTS = Gauge(
    "parking_slots_free",
    "Number of free parking slots",
    registry=REGISTRY,
)

RESERVED_SLOTS = Gauge(
    "parking_slots_reserved",
    "Number of reserved slots, including those waiting for arrival",
    registry=REGISTRY,
)

OCCUPIED_SLOTS = Gauge(
    "parking_slots_occupied",
    "Number of occupied slots, including those waiting for a payment choice",
    registry=REGISTRY,
)

# Timer firings by kind and whether they changed anything
TIMER_FIRINGS = Counter(
    "parking_timer_firings_total",
    "Lifecycle timer callbacks that ran",
    ["kind", "outcome"],
    registry=REGISTRY,
)

# Operations rejected with a typed error
REJECTED_OPERATIONS = Counter(
    "parking_rejected_operations_total",
    "Slot operations rejected because of state, duration or slot id",
    ["operation", "error"],
    registry=REGISTRY,
)

PAYMENTS_DUE = Counter(
    "parking_payments_due_total",
    "Bookings that finished with a payment due",
    ["reason"],
    registry=REGISTRY,
)


def record_transition(slot_id: int, from_state: str, to_state: str) -> None:
    """Record a slot state transition and refresh its state gauge."""
    SLOT_TRANSITIONS.labels(
        slot_id=str(slot_id),
        from_state=from_state,
        to_state=to_state,
    ).inc()
    SLOT_STATE.labels(slot_id=str(slot_id), state=from_state).set(0)
    SLOT_STATE.labels(slot_id=str(slot_id), state=to_state).set(1)


def set_slot_state(slot_id: int, state: str) -> None:
    """Mark the initial state of a slot."""
    SLOT_STATE.labels(slot_id=str(slot_id), state=state).set(1)


def update_slot_counts(total: int, free: int, reserved: int, occupied: int) -> None:
    """Update overall slot count gauges."""
    TOTAL_SLOTS.set(total)
    FREE_SLOTS.set(free)
    RESERVED_SLOTS.set(reserved)
    OCCUPIED_SLOTS.set(occupied)


def record_timer_firing(kind: str, applied: bool) -> None:
    """Record a timer callback, applied or ignored as stale."""
    TIMER_FIRINGS.labels(kind=kind, outcome="applied" if applied else "stale").inc()


def record_rejection(operation: str, error: str) -> None:
    """Record an operation rejected with a slot error."""
    REJECTED_OPERATIONS.labels(operation=operation, error=error).inc()


def record_payment_due(timed_out: bool) -> None:
    """Record a finished booking."""
    PAYMENTS_DUE.labels(reason="timeout" if timed_out else "chosen").inc()


def get_metrics() -> bytes:
    """Generate Prometheus metrics output."""
    return generate_latest(REGISTRY)
