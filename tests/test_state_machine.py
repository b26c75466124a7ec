"""Tests for the per-slot state machine, without timers."""

from datetime import datetime, timedelta, timezone

import pytest

from smart_parking.errors import InvalidDuration, InvalidTransition
from smart_parking.events import (
    ArrivalConfirmed,
    ArrivalTimedOut,
    ArrivalWindowStarted,
    EndReached,
    Extended,
    PaymentDue,
    Released,
    Reserved,
)
from smart_parking.state.machine import SlotStateMachine
from smart_parking.state.models import Booking, SlotState

NOW = datetime(2026, 3, 2, 9, 0, tzinfo=timezone.utc)


def at(seconds: float) -> datetime:
    return NOW + timedelta(seconds=seconds)


@pytest.fixture
def machine() -> SlotStateMachine:
    return SlotStateMachine(1, "Slot 1", NOW)


def drive_to(machine: SlotStateMachine, state: SlotState) -> None:
    """Walk the happy path until the machine is in ``state``."""
    path = [
        (SlotState.RESERVED, lambda: machine.reserve(at(0), at(60), NOW)),
        (SlotState.ARRIVAL_WINDOW, lambda: machine.on_start_time(at(0), at(10))),
        (SlotState.OCCUPIED, lambda: machine.confirm_arrival(at(5))),
        (SlotState.PAYMENT_PENDING, lambda: machine.on_end_time(at(60), at(70))),
    ]
    for target, step in path:
        if machine.state == state:
            return
        step()
        assert machine.state == target
    assert machine.state == state


class TestBooking:
    def test_end_must_follow_start(self):
        with pytest.raises(ValueError):
            Booking(start=at(10), end=at(10))

    def test_duration(self):
        assert Booking(start=at(0), end=at(90)).duration_seconds == 90


class TestReserve:
    def test_new_slot_is_free(self, machine):
        assert machine.state == SlotState.FREE
        assert machine.booking is None
        assert machine.last_changed == NOW

    def test_reserve_sets_booking(self, machine):
        events = machine.reserve(at(0), at(60), NOW)

        assert machine.state == SlotState.RESERVED
        assert machine.booking == Booking(start=at(0), end=at(60))
        assert events == [Reserved(slot_id=1, occurred_at=NOW, start=at(0), end=at(60))]

    @pytest.mark.parametrize("end_offset", [0, -1, -3600])
    def test_reserve_rejects_non_positive_interval(self, machine, end_offset):
        with pytest.raises(InvalidDuration):
            machine.reserve(at(100), at(100 + end_offset), NOW)

        assert machine.state == SlotState.FREE
        assert machine.booking is None

    def test_reserve_reads_naive_times_as_utc(self, machine):
        events = machine.reserve(at(0).replace(tzinfo=None), at(60), NOW)

        assert machine.booking == Booking(start=at(0), end=at(60))
        assert machine.booking.start.tzinfo is not None
        assert events[0].start == at(0)

    def test_reserve_keeps_sub_second_precision(self, machine):
        start = at(0) + timedelta(microseconds=1500)
        machine.reserve(start, at(60), NOW)

        assert machine.booking.start == start

    @pytest.mark.parametrize(
        "state",
        [SlotState.RESERVED, SlotState.ARRIVAL_WINDOW, SlotState.OCCUPIED, SlotState.PAYMENT_PENDING],
    )
    def test_reserve_busy_slot_rejected(self, machine, state):
        drive_to(machine, state)
        booking = machine.booking

        with pytest.raises(InvalidTransition) as exc_info:
            machine.reserve(at(100), at(200), NOW)

        assert exc_info.value.slot_id == 1
        assert exc_info.value.state == state.value
        assert machine.state == state
        assert machine.booking == booking


class TestArrival:
    def test_start_time_opens_arrival_window(self, machine):
        drive_to(machine, SlotState.RESERVED)

        events = machine.on_start_time(at(0), at(10))

        assert machine.state == SlotState.ARRIVAL_WINDOW
        assert events == [ArrivalWindowStarted(slot_id=1, occurred_at=at(0), deadline=at(10))]

    def test_confirm_arrival_occupies(self, machine):
        drive_to(machine, SlotState.ARRIVAL_WINDOW)

        events = machine.confirm_arrival(at(3))

        assert machine.state == SlotState.OCCUPIED
        assert events == [ArrivalConfirmed(slot_id=1, occurred_at=at(3), end=at(60))]

    @pytest.mark.parametrize("state", [SlotState.FREE, SlotState.RESERVED, SlotState.OCCUPIED])
    def test_confirm_arrival_outside_window_rejected(self, machine, state):
        drive_to(machine, state)

        with pytest.raises(InvalidTransition):
            machine.confirm_arrival(at(3))

        assert machine.state == state

    def test_arrival_timeout_frees_slot(self, machine):
        drive_to(machine, SlotState.ARRIVAL_WINDOW)

        events = machine.on_arrival_timeout(at(10))

        assert machine.state == SlotState.FREE
        assert machine.booking is None
        assert events == [
            ArrivalTimedOut(slot_id=1, occurred_at=at(10)),
            Released(slot_id=1, occurred_at=at(10)),
        ]

    def test_confirm_after_timeout_rejected(self, machine):
        drive_to(machine, SlotState.ARRIVAL_WINDOW)
        machine.on_arrival_timeout(at(10))

        with pytest.raises(InvalidTransition):
            machine.confirm_arrival(at(11))


class TestStaleTimers:
    @pytest.mark.parametrize(
        "state",
        [SlotState.FREE, SlotState.ARRIVAL_WINDOW, SlotState.OCCUPIED, SlotState.PAYMENT_PENDING],
    )
    def test_start_time_ignored_unless_reserved(self, machine, state):
        drive_to(machine, state)
        assert machine.on_start_time(at(1), at(11)) == []
        assert machine.state == state

    @pytest.mark.parametrize(
        "state",
        [SlotState.FREE, SlotState.RESERVED, SlotState.OCCUPIED, SlotState.PAYMENT_PENDING],
    )
    def test_arrival_timeout_ignored_outside_window(self, machine, state):
        drive_to(machine, state)
        booking = machine.booking

        assert machine.on_arrival_timeout(at(10)) == []
        assert machine.state == state
        assert machine.booking == booking

    @pytest.mark.parametrize(
        "state",
        [SlotState.FREE, SlotState.RESERVED, SlotState.ARRIVAL_WINDOW, SlotState.PAYMENT_PENDING],
    )
    def test_end_time_ignored_unless_occupied(self, machine, state):
        drive_to(machine, state)
        assert machine.on_end_time(at(60), at(70)) == []
        assert machine.state == state

    @pytest.mark.parametrize(
        "state",
        [SlotState.FREE, SlotState.RESERVED, SlotState.ARRIVAL_WINDOW, SlotState.OCCUPIED],
    )
    def test_payment_timeout_ignored_unless_pending(self, machine, state):
        drive_to(machine, state)
        assert machine.on_payment_timeout(at(70)) == []
        assert machine.state == state


class TestExtension:
    def test_extend_moves_end(self, machine):
        drive_to(machine, SlotState.OCCUPIED)

        events = machine.extend(at(90), at(30))

        assert machine.state == SlotState.OCCUPIED
        assert machine.booking == Booking(start=at(0), end=at(90))
        assert events == [Extended(slot_id=1, occurred_at=at(30), new_end=at(90))]

    def test_extend_reads_naive_time_as_utc(self, machine):
        drive_to(machine, SlotState.OCCUPIED)

        events = machine.extend(at(90).replace(tzinfo=None), at(30))

        assert machine.booking.end == at(90)
        assert events == [Extended(slot_id=1, occurred_at=at(30), new_end=at(90))]

    def test_extend_into_past_rejected(self, machine):
        drive_to(machine, SlotState.OCCUPIED)

        with pytest.raises(InvalidDuration):
            machine.extend(at(20), at(30))
        with pytest.raises(InvalidDuration):
            machine.extend(at(30), at(30))

        assert machine.booking.end == at(60)

    @pytest.mark.parametrize(
        "state",
        [SlotState.FREE, SlotState.RESERVED, SlotState.ARRIVAL_WINDOW, SlotState.PAYMENT_PENDING],
    )
    def test_extend_requires_occupied(self, machine, state):
        drive_to(machine, state)

        with pytest.raises(InvalidTransition):
            machine.extend(at(500), at(30))

    def test_state_checked_before_duration(self, machine):
        with pytest.raises(InvalidTransition):
            machine.extend(at(-10), at(30))


class TestPaymentChoice:
    def test_end_time_asks_for_payment(self, machine):
        drive_to(machine, SlotState.OCCUPIED)

        events = machine.on_end_time(at(60), at(70))

        assert machine.state == SlotState.PAYMENT_PENDING
        assert events == [EndReached(slot_id=1, occurred_at=at(60), deadline=at(70))]

    def test_choose_payment_frees_and_bills(self, machine):
        drive_to(machine, SlotState.PAYMENT_PENDING)

        events = machine.choose_payment(at(65))

        assert machine.state == SlotState.FREE
        assert machine.booking is None
        assert events == [
            PaymentDue(slot_id=1, occurred_at=at(65), start=at(0), end=at(60)),
            Released(slot_id=1, occurred_at=at(65)),
        ]

    def test_payment_timeout_bills(self, machine):
        drive_to(machine, SlotState.PAYMENT_PENDING)

        events = machine.on_payment_timeout(at(70))

        assert machine.state == SlotState.FREE
        assert [type(e) for e in events] == [PaymentDue, Released]

    def test_choose_extend_instead_reoccupies(self, machine):
        drive_to(machine, SlotState.PAYMENT_PENDING)

        events = machine.choose_extend_instead(at(120), at(65))

        assert machine.state == SlotState.OCCUPIED
        assert machine.booking.end == at(120)
        assert events == [Extended(slot_id=1, occurred_at=at(65), new_end=at(120))]

    def test_choose_extend_instead_into_past_rejected(self, machine):
        drive_to(machine, SlotState.PAYMENT_PENDING)

        with pytest.raises(InvalidDuration):
            machine.choose_extend_instead(at(50), at(65))

        assert machine.state == SlotState.PAYMENT_PENDING

    @pytest.mark.parametrize("state", [SlotState.FREE, SlotState.OCCUPIED])
    def test_choices_require_payment_pending(self, machine, state):
        drive_to(machine, state)

        with pytest.raises(InvalidTransition):
            machine.choose_payment(at(65))
        with pytest.raises(InvalidTransition):
            machine.choose_extend_instead(at(500), at(65))


class TestRelease:
    @pytest.mark.parametrize(
        "state",
        [SlotState.RESERVED, SlotState.ARRIVAL_WINDOW, SlotState.OCCUPIED, SlotState.PAYMENT_PENDING],
    )
    def test_release_from_any_busy_state(self, machine, state):
        drive_to(machine, state)

        events = machine.release(at(30))

        assert machine.state == SlotState.FREE
        assert machine.booking is None
        assert events == [Released(slot_id=1, occurred_at=at(30))]
        assert machine.last_changed == at(30)

    def test_release_free_slot_rejected(self, machine):
        with pytest.raises(InvalidTransition):
            machine.release(at(30))


def test_snapshot_reflects_state(machine):
    drive_to(machine, SlotState.OCCUPIED)

    snapshot = machine.snapshot(deadline=at(60))

    assert snapshot.id == 1
    assert snapshot.name == "Slot 1"
    assert snapshot.state == SlotState.OCCUPIED
    assert snapshot.booking == Booking(start=at(0), end=at(60))
    assert snapshot.deadline == at(60)
    assert snapshot.last_changed == at(5)
