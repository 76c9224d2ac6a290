import pytest

from ledger.exceptions import BookingValidationError, CapacityError, ConsistencyError, NotFoundError
from ledger.models import Booking, ResourceAuditLog
from ledger.services.resources import ResourceCounts, ResourceLedger

from .conftest import CLINIC, GENERAL


@pytest.fixture
def ledger(store, directory, beds):
    return ResourceLedger(store)


def pool_state(store, resource_type='beds', hospital_id=GENERAL):
    return store.get_pool(hospital_id, resource_type).counters()


def test_allocate_moves_quantity_to_occupied_and_audits(ledger, store):
    result = ledger.allocate(GENERAL, 'beds', 2, booking_id=7, actor_id=20)

    pool = store.get_pool(GENERAL, 'beds')
    assert (pool.available, pool.occupied, pool.total) == (28, 22, 50)
    assert pool.is_balanced()
    assert pool.version == 1
    entries = store.audit_entries(hospital_id=GENERAL)
    assert len(entries) == 1
    entry = entries[0]
    assert entry.change_type == ResourceAuditLog.BOOKING_APPROVED
    assert (entry.old_value, entry.new_value, entry.quantity) == (30, 28, -2)
    assert entry.booking_id == 7
    assert entry.detail['before']['occupied'] == 20 and entry.detail['after']['occupied'] == 22
    assert result.as_dict()['newAvailable'] == 28


def test_allocate_beyond_available_fails_without_mutation(ledger, store):
    before = pool_state(store)
    with pytest.raises(CapacityError) as exc:
        ledger.allocate(GENERAL, 'beds', 50, booking_id=8)

    assert exc.value.message == 'Insufficient beds available'
    assert exc.value.code == 'insufficient_capacity'
    assert pool_state(store) == before
    assert store.audit_entries(hospital_id=GENERAL) == []


def test_allocate_rejects_non_positive_quantity(ledger):
    with pytest.raises(BookingValidationError):
        ledger.allocate(GENERAL, 'beds', 0)


def test_allocate_on_missing_pool_is_not_found(ledger):
    with pytest.raises(NotFoundError):
        ledger.allocate(GENERAL, 'icu', 1)


def test_allocate_then_release_restores_counters(ledger, store):
    before = pool_state(store)
    ledger.allocate(GENERAL, 'beds', 3, booking_id=1)
    ledger.release(GENERAL, 'beds', 3, booking_id=1, reason='completed')

    assert pool_state(store) == before
    entries = store.audit_entries(booking_id=1)
    assert [e.change_type for e in entries] == [ResourceAuditLog.BOOKING_COMPLETED, ResourceAuditLog.BOOKING_APPROVED]
    assert sum(e.quantity for e in entries) == 0
    assert entries[0].reason == 'Resource released after booking completion'


def test_cancel_release_uses_cancelled_change_type(ledger, store):
    ledger.allocate(GENERAL, 'beds', 1, booking_id=3)
    ledger.release(GENERAL, 'beds', 1, booking_id=3, reason='cancelled')
    assert store.audit_entries(booking_id=3)[0].change_type == ResourceAuditLog.BOOKING_CANCELLED


def test_release_more_than_occupied_is_a_consistency_error(ledger, store):
    before = pool_state(store)
    with pytest.raises(ConsistencyError):
        ledger.release(GENERAL, 'beds', 21, booking_id=1)
    assert pool_state(store) == before


def test_failed_unit_of_work_rolls_back_ledger_and_audit(ledger, store):
    before = pool_state(store)
    with pytest.raises(RuntimeError):
        with store.atomic():
            ledger.allocate(GENERAL, 'beds', 4, booking_id=9)
            raise RuntimeError("boom")
    assert pool_state(store) == before
    assert store.audit_entries(hospital_id=GENERAL) == []


def test_update_quantities_rejects_components_over_total(ledger, store):
    before = pool_state(store)
    with pytest.raises(BookingValidationError) as exc:
        ledger.update_quantities(GENERAL, {'beds': {'total': 50, 'available': 30, 'occupied': 25}})
    assert 'exceeds total' in exc.value.message
    assert pool_state(store) == before


def test_update_quantities_rejects_components_under_total(ledger):
    with pytest.raises(BookingValidationError):
        ledger.update_quantities(GENERAL, {'beds': {'total': 50, 'available': 10, 'occupied': 20}})


def test_update_quantities_rejects_unknown_keys(ledger):
    with pytest.raises(BookingValidationError) as exc:
        ledger.update_quantities(GENERAL, {'beds': {'total': 5, 'available': 5, 'occupied': 0, 'spare': 1}})
    assert 'spare' in exc.value.message


def test_update_quantities_rejects_negative_values():
    with pytest.raises(BookingValidationError):
        ResourceCounts.from_mapping('beds', {'total': 5, 'available': -1, 'occupied': 6})


def test_update_quantities_is_all_or_nothing(ledger, store):
    with pytest.raises(BookingValidationError):
        ledger.update_quantities(GENERAL, {
            'beds': {'total': 60, 'available': 40, 'occupied': 20},
            'icu': {'total': 10, 'available': 10, 'occupied': 10},
        })
    assert store.get_pool(GENERAL, 'beds').total == 50
    assert store.get_pool(GENERAL, 'icu') is None


def test_update_quantities_creates_and_overwrites_pools(ledger, store):
    result = ledger.update_quantities(GENERAL, {
        'beds': {'total': 60, 'available': 40, 'occupied': 20},
        'icu': {'total': 10, 'available': 8, 'occupied': 1, 'maintenance': 1},
    }, actor_id=20)

    assert {p.resource_type for p in result.pools} == {'beds', 'icu'}
    icu = store.get_pool(GENERAL, 'icu')
    assert icu.counters() == {'total': 10, 'available': 8, 'occupied': 1, 'reserved': 0, 'maintenance': 1}
    manual = store.audit_entries(hospital_id=GENERAL, change_type=ResourceAuditLog.MANUAL_UPDATE)
    assert len(manual) == 2
    beds_entry = next(e for e in manual if e.resource_type == 'beds')
    assert (beds_entry.old_value, beds_entry.new_value, beds_entry.quantity) == (30, 40, 10)
    assert beds_entry.changed_by_id == 20


def test_update_quantities_cannot_drop_below_held_allocations(ledger, store):
    store.add_booking(Booking(user_id=10, hospital_id=GENERAL, resource_type='beds',
                              status=Booking.STATUS_APPROVED, allocated_quantity=5))
    with pytest.raises(BookingValidationError):
        ledger.update_quantities(GENERAL, {'beds': {'total': 50, 'available': 46, 'occupied': 4}})


def test_update_quantities_unknown_hospital(ledger):
    with pytest.raises(NotFoundError):
        ledger.update_quantities(999, {'beds': {'total': 1, 'available': 1, 'occupied': 0}})


def test_update_maintenance_moves_between_available_and_maintenance(ledger, store):
    ledger.update_maintenance(GENERAL, 'beds', 5, actor_id=20, reason='Deep clean')
    pool = store.get_pool(GENERAL, 'beds')
    assert (pool.available, pool.maintenance) == (25, 5)

    ledger.update_maintenance(GENERAL, 'beds', 2, actor_id=20)
    pool = store.get_pool(GENERAL, 'beds')
    assert (pool.available, pool.maintenance) == (28, 2)
    assert pool.is_balanced()
    changes = store.audit_entries(hospital_id=GENERAL, change_type=ResourceAuditLog.MAINTENANCE_UPDATE)
    assert [e.quantity for e in changes] == [3, -5]


def test_update_maintenance_needs_available_capacity(ledger, store):
    with pytest.raises(CapacityError):
        ledger.update_maintenance(GENERAL, 'beds', 31)
    assert store.get_pool(GENERAL, 'beds').maintenance == 0


def test_update_maintenance_on_missing_pool(ledger):
    with pytest.raises(NotFoundError):
        ledger.update_maintenance(GENERAL, 'operationTheatres', 1)


def test_check_availability_is_advisory_and_never_mutates(ledger, store):
    result = ledger.check_availability(GENERAL, 'beds', 31)
    assert not result.available
    assert result.as_dict() == {
        'available': False, 'currentAvailable': 30, 'requested': 31, 'message': 'Insufficient beds available',
    }
    assert ledger.check_availability(GENERAL, 'beds', 30).available
    assert store.get_pool(GENERAL, 'beds').version == 0


def test_check_availability_for_missing_pool_is_a_result(ledger):
    result = ledger.check_availability(CLINIC, 'icu')
    assert not result.available and not result.pool_exists
    assert not ledger.check_availability(GENERAL, 'helipad').available


def test_initialize_pools_is_idempotent(ledger, store):
    created = ledger.initialize_pools(CLINIC, actor_id=40)
    assert created == sorted(['beds', 'icu', 'operationTheatres'])
    assert ledger.initialize_pools(CLINIC) == []
    assert all(p.total == 0 and p.is_balanced() for p in store.pools_for_hospital(CLINIC))


def test_utilization_reports_occupied_share(ledger):
    stats = ledger.get_utilization(GENERAL)
    assert stats['beds']['utilizationRate'] == 40.0


def test_check_pool_flags_drift_from_audit_trail(ledger, store):
    ledger.allocate(GENERAL, 'beds', 2, booking_id=1)
    assert ledger.check_pool(GENERAL, 'beds') == []

    store.seed_pool(GENERAL, 'beds', total=50, available=27, occupied=22)
    problems = ledger.check_pool(GENERAL, 'beds')
    assert any('counters sum to 49' in p for p in problems)
    assert any('audit entry records 28' in p for p in problems)


def test_audit_entries_are_append_only():
    entry = ResourceAuditLog(id=5, hospital_id=GENERAL, resource_type='beds', change_type='manual_update',
                             old_value=1, new_value=2, quantity=1)
    entry._state.adding = False
    with pytest.raises(ConsistencyError):
        entry.save()
    with pytest.raises(ConsistencyError):
        entry.delete()
