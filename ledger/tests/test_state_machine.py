import pytest
from django.utils import timezone

from ledger.exceptions import BookingValidationError, CapacityError, StateError
from ledger.models import Booking
from ledger.services.resources import ResourceLedger
from ledger.services.state_machine import TERMINAL_STATUSES, TRANSITIONS, BookingStateMachine, can_transition

from .conftest import GENERAL

ALL_STATUSES = [s for s, _ in Booking.STATUS_CHOICES]


@pytest.fixture
def machine(store, beds):
    return BookingStateMachine(ResourceLedger(store))


def open_booking(machine, store, **fields):
    booking = Booking(user_id=10, hospital_id=GENERAL, resource_type='beds', resources_allocated=2,
                      scheduled_date=timezone.now(), **fields)
    with store.atomic():
        machine.open(booking, actor_id=10)
    return booking


def in_status(machine, store, status):
    booking = open_booking(machine, store)
    with store.atomic():
        if status == Booking.STATUS_APPROVED:
            machine.approve(booking, 20)
        elif status == Booking.STATUS_DECLINED:
            machine.decline(booking, 20, 'No beds')
        elif status == Booking.STATUS_CANCELLED:
            machine.cancel(booking, 10)
        elif status == Booking.STATUS_EXPIRED:
            machine.expire(booking)
        elif status == Booking.STATUS_COMPLETED:
            machine.approve(booking, 20)
            machine.complete(booking, 20)
    return booking


def test_transition_table():
    assert TERMINAL_STATUSES == {'declined', 'completed', 'cancelled', 'expired'}
    assert TRANSITIONS['pending'] == {'approved', 'declined', 'cancelled', 'expired'}
    assert TRANSITIONS['approved'] == {'completed', 'cancelled'}
    assert not can_transition('approved', 'expired')
    assert not can_transition('pending', 'completed')


@pytest.mark.parametrize('status', sorted(TERMINAL_STATUSES))
def test_terminal_states_are_closed(machine, store, status):
    booking = in_status(machine, store, status)
    history_before = len(store.history_for(booking.id))
    attempts = [
        lambda: machine.approve(booking, 20),
        lambda: machine.decline(booking, 20, 'late'),
        lambda: machine.complete(booking, 20),
        lambda: machine.cancel(booking, 10),
        lambda: machine.expire(booking),
    ]
    for attempt in attempts:
        with pytest.raises(StateError) as exc:
            with store.atomic():
                attempt()
        assert exc.value.context['current'] == status
    assert store.get_booking(booking.id).status == status
    assert len(store.history_for(booking.id)) == history_before


def test_open_writes_initial_history(machine, store):
    booking = open_booking(machine, store)
    history = store.history_for(booking.id)
    assert [(h.previous_status, h.new_status) for h in history] == [(None, 'pending')]
    assert booking.booking_reference.startswith('BK')


def test_approve_allocates_and_records_history(machine, store):
    booking = open_booking(machine, store)
    with store.atomic():
        _, allocation = machine.approve(booking, 20, notes='Ward 3')
    assert allocation.quantity == 2
    saved = store.get_booking(booking.id)
    assert saved.status == 'approved' and saved.allocated_quantity == 2
    assert saved.approved_by_id == 20 and saved.authority_notes == 'Ward 3'
    assert store.get_pool(GENERAL, 'beds').occupied == 22
    assert [h.new_status for h in store.history_for(booking.id)] == ['pending', 'approved']


def test_approve_without_allocation_holds_nothing(machine, store):
    booking = open_booking(machine, store)
    with store.atomic():
        _, allocation = machine.approve(booking, 20, allocate=False)
    assert allocation is None
    assert store.get_booking(booking.id).allocated_quantity == 0
    assert store.get_pool(GENERAL, 'beds').occupied == 20


def test_failed_allocation_leaves_booking_pending(machine, store):
    booking = open_booking(machine, store)
    with pytest.raises(CapacityError):
        with store.atomic():
            machine.approve(booking, 20, quantity=31)
    saved = store.get_booking(booking.id)
    assert saved.status == 'pending'
    assert len(store.history_for(booking.id)) == 1


def test_decline_requires_reason(machine, store):
    booking = open_booking(machine, store)
    with pytest.raises(BookingValidationError) as exc:
        with store.atomic():
            machine.decline(booking, 20, '   ')
    assert exc.value.message == 'Decline reason is required'
    assert store.get_booking(booking.id).status == 'pending'


def test_cancel_pending_has_no_ledger_effect(machine, store):
    booking = in_status(machine, store, 'cancelled')
    assert store.audit_entries(booking_id=booking.id) == []
    assert store.get_pool(GENERAL, 'beds').occupied == 20


def test_cancel_approved_releases_allocation(machine, store):
    booking = in_status(machine, store, 'approved')
    with store.atomic():
        _, release = machine.cancel(booking, 10, 'Recovered at home')
    assert release.quantity == 2
    saved = store.get_booking(booking.id)
    assert saved.allocated_quantity == 0 and saved.cancellation_reason == 'Recovered at home'
    assert store.get_pool(GENERAL, 'beds').available == 30


def test_invalid_transition_message_is_stable(machine, store):
    booking = in_status(machine, store, 'approved')
    with pytest.raises(StateError) as exc:
        with store.atomic():
            machine.approve(booking, 20)
    assert exc.value.message == 'Only pending bookings can be approved'
    assert exc.value.as_dict()['target'] == 'approved'
