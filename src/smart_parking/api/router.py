"""FastAPI route definitions."""

import logging
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, HTTPException, Query, Response

from ..config import PaymentConfig
from ..errors import InvalidDuration, InvalidTransition, SlotError, TimerServiceError, UnknownSlot
from ..events import EventBus
from ..metrics import get_metrics
from ..payment import PaymentSummary, summarize_payment
from ..scheduling.lifecycle import LifecycleScheduler
from .schemas import (
    EventsResponse,
    ExtensionRequest,
    HealthResponse,
    ReservationRequest,
    SlotResponse,
    StatusResponse,
)

logger = logging.getLogger(__name__)

router = APIRouter()

# Dependencies injected at startup
_scheduler: Optional[LifecycleScheduler] = None
_event_bus: Optional[EventBus] = None
_payment_config: PaymentConfig = PaymentConfig()
_start_time: datetime = datetime.now()

_ERROR_STATUS = {
    UnknownSlot: 404,
    InvalidTransition: 409,
    InvalidDuration: 422,
    TimerServiceError: 503,
}


def init_router(
    scheduler: LifecycleScheduler,
    event_bus: EventBus,
    payment_config: Optional[PaymentConfig] = None,
) -> None:
    """
    Initialize router with dependencies.

    Args:
        scheduler: LifecycleScheduler owning every slot
        event_bus: Bus the scheduler publishes to
        payment_config: Rate and currency for payment summaries
    """
    global _scheduler, _event_bus, _payment_config, _start_time

    _scheduler = scheduler
    _event_bus = event_bus
    _payment_config = payment_config or PaymentConfig()
    _start_time = datetime.now()

    logger.info("API router initialized")


def _require_scheduler() -> LifecycleScheduler:
    if _scheduler is None:
        raise HTTPException(status_code=503, detail="Service not initialized")
    return _scheduler


def _http_error(e: SlotError) -> HTTPException:
    """Map a slot error to the response the client sees."""
    status_code = _ERROR_STATUS.get(type(e), 400)
    return HTTPException(status_code=status_code, detail=str(e))


@router.get("/health", response_model=HealthResponse)
async def health_check() -> HealthResponse:
    """
    Health check endpoint.

    Returns basic health information about the service.
    """
    uptime = (datetime.now() - _start_time).total_seconds()

    return HealthResponse(
        status="healthy" if _scheduler is not None else "starting",
        slots=len(_scheduler.slot_ids) if _scheduler else 0,
        uptime_seconds=uptime,
    )


@router.get("/status", response_model=StatusResponse)
async def get_status() -> StatusResponse:
    """
    Get overall parking status.

    Returns free/reserved/occupied counts and every slot's details.
    Reserved includes slots waiting for arrival; occupied includes slots
    waiting for a payment choice.
    """
    scheduler = _require_scheduler()

    summary = scheduler.summary()
    return StatusResponse(
        total_slots=summary.total,
        free=summary.free,
        reserved=summary.reserved,
        occupied=summary.occupied,
        slots=[SlotResponse.from_snapshot(s) for s in scheduler.snapshots()],
        server_time=scheduler.clock.now(),
    )


@router.get("/slots/{slot_id}", response_model=SlotResponse)
async def get_slot(slot_id: int) -> SlotResponse:
    """
    Get status for a specific parking slot.

    Args:
        slot_id: The ID of the slot to query
    """
    scheduler = _require_scheduler()

    try:
        return SlotResponse.from_snapshot(scheduler.get_slot(slot_id))
    except SlotError as e:
        raise _http_error(e)


@router.post("/slots/{slot_id}/reservation", response_model=SlotResponse)
async def reserve_slot(slot_id: int, request: ReservationRequest) -> SlotResponse:
    """Book a free slot for the given interval."""
    scheduler = _require_scheduler()

    try:
        snapshot = await scheduler.book(slot_id, request.start, request.end)
    except SlotError as e:
        raise _http_error(e)
    return SlotResponse.from_snapshot(snapshot)


@router.post("/slots/{slot_id}/arrival", response_model=SlotResponse)
async def confirm_arrival(slot_id: int) -> SlotResponse:
    """Confirm arrival while the slot's arrival window is open."""
    scheduler = _require_scheduler()

    try:
        snapshot = await scheduler.confirm_arrival(slot_id)
    except SlotError as e:
        raise _http_error(e)
    return SlotResponse.from_snapshot(snapshot)


@router.post("/slots/{slot_id}/extension", response_model=SlotResponse)
async def extend_slot(slot_id: int, request: ExtensionRequest) -> SlotResponse:
    """Move the end time of an occupied slot."""
    scheduler = _require_scheduler()

    try:
        snapshot = await scheduler.extend(slot_id, request.end)
    except SlotError as e:
        raise _http_error(e)
    return SlotResponse.from_snapshot(snapshot)


@router.post("/slots/{slot_id}/payment", response_model=PaymentSummary)
async def choose_payment(slot_id: int) -> PaymentSummary:
    """
    Finish a booking whose end was reached and return the bill.

    The slot becomes free; no money is processed here.
    """
    scheduler = _require_scheduler()

    try:
        event = await scheduler.choose_payment(slot_id)
    except SlotError as e:
        raise _http_error(e)
    return summarize_payment(
        event,
        rate_per_minute=_payment_config.rate_per_minute,
        currency=_payment_config.currency,
    )


@router.post("/slots/{slot_id}/payment/extension", response_model=SlotResponse)
async def choose_extension(slot_id: int, request: ExtensionRequest) -> SlotResponse:
    """Answer the payment choice with an extension."""
    scheduler = _require_scheduler()

    try:
        snapshot = await scheduler.choose_extend_instead(slot_id, request.end)
    except SlotError as e:
        raise _http_error(e)
    return SlotResponse.from_snapshot(snapshot)


@router.post("/slots/{slot_id}/release", response_model=SlotResponse)
async def release_slot(slot_id: int) -> SlotResponse:
    """Free a busy slot immediately."""
    scheduler = _require_scheduler()

    try:
        snapshot = await scheduler.release(slot_id)
    except SlotError as e:
        raise _http_error(e)
    return SlotResponse.from_snapshot(snapshot)


@router.get("/events", response_model=EventsResponse)
async def recent_events(limit: int = Query(50, ge=1, le=1000)) -> EventsResponse:
    """
    Recent lifecycle events, oldest first.

    Clients poll this to learn about timer-driven changes such as an
    arrival timeout or a payment falling due.
    """
    if _event_bus is None:
        raise HTTPException(status_code=503, detail="Service not initialized")

    return EventsResponse(events=_event_bus.recent(limit))


@router.get("/metrics")
async def prometheus_metrics() -> Response:
    """
    Prometheus metrics endpoint.

    Returns metrics in Prometheus text format including:
    - parking_slot_transitions_total: Counter of transitions by slot and states
    - parking_slot_state: Gauge of each slot's current state
    - parking_slots_total / _free / _reserved / _occupied: Summary counts
    - parking_timer_firings_total: Timer callbacks, applied or stale
    - parking_rejected_operations_total: Operations rejected by error kind
    - parking_payments_due_total: Finished bookings by reason
    """
    return Response(
        content=get_metrics(),
        media_type="text/plain; version=0.0.4; charset=utf-8",
    )
