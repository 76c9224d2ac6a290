from datetime import timedelta
from decimal import Decimal

import pytest
from django.utils import timezone

from ledger.models import Hospital, User
from ledger.services.approvals import ApprovalOrchestrator

from .conftest import ADMIN, AUTHORITY, CLINIC, GENERAL, OTHER_AUTHORITY, PATIENT, ExplodingNotifier, booking_input


def beds_pool(store):
    return store.get_pool(GENERAL, 'beds')


def test_create_opens_pending_booking(orchestrator, store, users, notifier):
    result = orchestrator.create(booking_input(), users[PATIENT])

    assert result.success and result.http_status == 200
    booking = result.data['booking']
    assert booking['status'] == 'pending'
    assert booking['bookingReference'].startswith('BK')
    assert booking['expiresAt'] is not None
    assert beds_pool(store).available == 30
    history = store.history_for(booking['id'])
    assert [(h.previous_status, h.new_status) for h in history] == [(None, 'pending')]
    assert notifier.events == [('created', booking['id'], {})]


def test_create_rejects_duplicate_open_booking(orchestrator, users, pending_booking):
    result = orchestrator.create(booking_input(), users[PATIENT])
    assert not result.success
    assert result.error_code == 'conflict'
    assert result.http_status == 409


def test_create_without_capacity(orchestrator, users):
    result = orchestrator.create(booking_input(resources_allocated=31), users[PATIENT])
    assert not result.success
    assert result.error_code == 'insufficient_capacity'
    assert result.message == 'Insufficient beds available'


def test_create_for_unregistered_pool_has_no_capacity(orchestrator, store, users):
    result = orchestrator.create(booking_input(resource_type='icu'), users[PATIENT])
    assert result.error_code == 'insufficient_capacity'
    assert result.message == 'Insufficient icu available'
    assert result.as_payload()['error']['current_available'] == 0
    assert store.get_pool(GENERAL, 'icu') is None


def test_create_at_unapproved_hospital(orchestrator, directory, users):
    directory.add_hospital(Hospital(id=3, name='New', is_active=True, approval_status=Hospital.APPROVAL_PENDING))
    result = orchestrator.create(booking_input(hospital_id=3), users[PATIENT])
    assert result.error_code == 'permission_denied'


def test_create_for_another_user_requires_authority(orchestrator, directory, users):
    directory.add_user(User(id=11, username='relative', role=User.ROLE_USER))
    denied = orchestrator.create(booking_input(user_id=11), users[PATIENT])
    assert denied.error_code == 'permission_denied'

    allowed = orchestrator.create(booking_input(user_id=11), users[AUTHORITY])
    assert allowed.success
    assert allowed.data['booking']['userId'] == 11


def test_create_for_inactive_user(orchestrator, directory, users):
    directory.add_user(User(id=12, username='gone', role=User.ROLE_USER, is_active=False))
    result = orchestrator.create(booking_input(user_id=12), users[ADMIN])
    assert result.error_code == 'permission_denied'


@pytest.mark.parametrize('overrides', [
    {'resource_type': 'helipad'},
    {'scheduled_date': timezone.now() - timedelta(hours=1)},
    {'estimated_duration_hours': 169},
    {'patient_age': 0},
    {'urgency': 'whenever'},
])
def test_create_validates_input(orchestrator, users, overrides):
    result = orchestrator.create(booking_input(**overrides), users[PATIENT])
    assert result.error_code == 'validation_error'
    assert result.http_status == 400


def test_create_uses_price_quoter(store, directory, notifier, beds, users):
    quotes = []

    def quote(hospital_id, resource_type, hours):
        quotes.append((hospital_id, resource_type, hours))
        return Decimal('120.50')

    orchestrator = ApprovalOrchestrator(store=store, directory=directory, notifier=notifier, price_quoter=quote)
    result = orchestrator.create(booking_input(estimated_duration_hours=48), users[PATIENT])
    assert result.data['booking']['paymentAmount'] == '120.50'
    assert quotes == [(GENERAL, 'beds', 48)]


def test_approve_allocates_resources(orchestrator, store, users, pending_booking, notifier):
    result = orchestrator.approve(pending_booking, users[AUTHORITY], notes='Bed 12')

    assert result.success
    assert result.data['booking']['status'] == 'approved'
    assert result.data['allocation'] == {
        'resourceType': 'beds', 'quantity': 2, 'previousAvailable': 30, 'newAvailable': 28,
    }
    pool = beds_pool(store)
    assert (pool.available, pool.occupied) == (28, 22)
    assert notifier.events[-1][0] == 'approved'


def test_approve_by_other_hospital_authority_is_denied(orchestrator, store, users, pending_booking):
    result = orchestrator.approve(pending_booking, users[OTHER_AUTHORITY])
    assert result.error_code == 'permission_denied'
    assert store.get_booking(pending_booking).status == 'pending'
    assert beds_pool(store).available == 30


def test_admin_can_approve_any_hospital(orchestrator, users, pending_booking):
    assert orchestrator.approve(pending_booking, users[ADMIN]).success


def test_second_approve_sees_status_change(orchestrator, store, users, pending_booking):
    first = orchestrator.approve(pending_booking, users[AUTHORITY])
    second = orchestrator.approve(pending_booking, users[AUTHORITY])

    assert first.success
    assert not second.success
    assert second.error_code == 'invalid_state'
    assert second.message == 'Only pending bookings can be approved'
    assert second.as_payload()['error']['current'] == 'approved'
    assert beds_pool(store).occupied == 22


def test_approve_with_insufficient_capacity_keeps_booking_pending(orchestrator, store, users, pending_booking):
    result = orchestrator.approve(pending_booking, users[AUTHORITY], resources_allocated=40)
    assert result.error_code == 'insufficient_capacity'
    assert store.get_booking(pending_booking).status == 'pending'
    assert len(store.history_for(pending_booking)) == 1


def test_approve_expired_booking_is_rejected(orchestrator, store, users):
    created = orchestrator.create(
        booking_input(expires_at=timezone.now() + timedelta(milliseconds=1)), users[PATIENT],
    )
    booking = store.get_booking(created.data['booking']['id'])
    booking.expires_at = timezone.now() - timedelta(minutes=1)
    store.save_booking(booking)

    result = orchestrator.approve(booking.id, users[AUTHORITY])
    assert result.error_code == 'conflict'
    assert result.message == 'Booking has expired'


def test_approve_without_auto_allocation(orchestrator, store, users, pending_booking):
    result = orchestrator.approve(pending_booking, users[AUTHORITY], auto_allocate_resources=False)
    assert result.success and result.data['allocation'] is None
    assert beds_pool(store).occupied == 20

    completed = orchestrator.complete(pending_booking, users[AUTHORITY])
    assert completed.success and completed.data['release'] is None
    assert beds_pool(store).occupied == 20


def test_decline_without_reason_keeps_booking_pending(orchestrator, store, users, pending_booking):
    result = orchestrator.decline(pending_booking, users[AUTHORITY], '')
    assert not result.success
    assert result.error_code == 'validation_error'
    assert result.message == 'Decline reason is required'
    assert store.get_booking(pending_booking).status == 'pending'


def test_decline_records_alternative_suggestions(orchestrator, store, users, pending_booking):
    result = orchestrator.decline(
        pending_booking, users[AUTHORITY], 'No ICU specialist on call', notes='Sorry',
        alternative_suggestions=['City Hospital', 'Try again tomorrow'],
    )
    assert result.success
    booking = store.get_booking(pending_booking)
    assert booking.status == 'declined'
    assert booking.decline_reason == 'No ICU specialist on call'
    assert booking.authority_notes == 'Sorry\nAlternative suggestions:\nCity Hospital\nTry again tomorrow'
    assert store.audit_entries(booking_id=pending_booking) == []


def test_complete_releases_allocation(orchestrator, store, users, pending_booking):
    orchestrator.approve(pending_booking, users[AUTHORITY])
    result = orchestrator.complete(pending_booking, users[AUTHORITY], notes='Discharged')

    assert result.success
    booking = store.get_booking(pending_booking)
    assert booking.status == 'completed' and booking.allocated_quantity == 0
    assert booking.completed_at is not None
    pool = beds_pool(store)
    assert (pool.available, pool.occupied) == (30, 20)
    assert [h.new_status for h in store.history_for(pending_booking)] == ['pending', 'approved', 'completed']


def test_complete_requires_approved_booking(orchestrator, users, pending_booking):
    result = orchestrator.complete(pending_booking, users[AUTHORITY])
    assert result.error_code == 'invalid_state'
    assert result.message == 'Only approved bookings can be completed'


def test_owner_can_cancel_and_release(orchestrator, store, users, pending_booking):
    orchestrator.approve(pending_booking, users[AUTHORITY])
    result = orchestrator.cancel(pending_booking, users[PATIENT], 'Feeling better')

    assert result.success
    assert result.data['release']['quantity'] == 2
    assert beds_pool(store).available == 30


def test_stranger_cannot_cancel(orchestrator, directory, users, pending_booking):
    stranger = directory.add_user(User(id=13, username='stranger', role=User.ROLE_USER))
    assert orchestrator.cancel(pending_booking, stranger).error_code == 'permission_denied'
    assert orchestrator.cancel(pending_booking, users[OTHER_AUTHORITY]).error_code == 'permission_denied'
    assert orchestrator.cancel(pending_booking, users[AUTHORITY]).success


def test_unknown_booking(orchestrator, users):
    result = orchestrator.approve(999, users[AUTHORITY])
    assert result.error_code == 'not_found' and result.http_status == 404


def test_anonymous_actor_is_rejected(orchestrator, pending_booking):
    assert orchestrator.approve(pending_booking, None).error_code == 'permission_denied'


def test_notification_failure_does_not_roll_back(store, directory, beds, users, caplog):
    orchestrator = ApprovalOrchestrator(store=store, directory=directory, notifier=ExplodingNotifier())
    created = orchestrator.create(booking_input(), users[PATIENT])
    approved = orchestrator.approve(created.data['booking']['id'], users[AUTHORITY])

    assert created.success and approved.success
    assert beds_pool(store).occupied == 21
    assert 'failed to send approved notification' in caplog.text


def test_expiry_sweep_is_idempotent(orchestrator, store, users, directory, notifier):
    directory.add_user(User(id=14, username='late', role=User.ROLE_USER))
    stale = orchestrator.create(booking_input(), users[PATIENT]).data['booking']['id']
    fresh = orchestrator.create(booking_input(user_id=14), users[ADMIN]).data['booking']['id']
    booking = store.get_booking(stale)
    booking.expires_at = timezone.now() - timedelta(hours=1)
    store.save_booking(booking)

    first = orchestrator.process_expired_bookings()
    assert first.success
    assert first.data['expired'] == 1
    assert first.data['results'] == [
        {'bookingId': stale, 'bookingReference': booking.booking_reference, 'status': 'expired'},
    ]
    assert store.get_booking(stale).status == 'expired'
    assert store.get_booking(fresh).status == 'pending'
    history = store.history_for(stale)
    assert (history[-1].previous_status, history[-1].new_status, history[-1].changed_by_id) == \
        ('pending', 'expired', None)
    assert ('expired', stale, {}) in notifier.events

    second = orchestrator.process_expired_bookings()
    assert second.data['processed'] == 0 and second.data['expired'] == 0
    assert len(store.history_for(stale)) == 2


def test_expiry_sweep_can_target_one_hospital(orchestrator, store, users):
    stale = orchestrator.create(booking_input(), users[PATIENT]).data['booking']['id']
    booking = store.get_booking(stale)
    booking.expires_at = timezone.now() - timedelta(hours=1)
    store.save_booking(booking)

    assert orchestrator.process_expired_bookings(hospital_id=CLINIC).data['expired'] == 0
    assert orchestrator.process_expired_bookings(hospital_id=GENERAL).data['expired'] == 1


def test_expiry_sweep_isolates_failing_booking(orchestrator, store, directory, users, monkeypatch, caplog):
    directory.add_user(User(id=15, username='second', role=User.ROLE_USER))
    first = orchestrator.create(booking_input(), users[PATIENT]).data['booking']['id']
    second = orchestrator.create(booking_input(user_id=15), users[ADMIN]).data['booking']['id']
    for booking_id, hours in ((first, 2), (second, 1)):
        booking = store.get_booking(booking_id)
        booking.expires_at = timezone.now() - timedelta(hours=hours)
        store.save_booking(booking)

    save_booking = store.save_booking

    def flaky_save(booking):
        if booking.id == first and booking.status == 'expired':
            raise RuntimeError('storage hiccup')
        save_booking(booking)
    monkeypatch.setattr(store, 'save_booking', flaky_save)

    result = orchestrator.process_expired_bookings()
    assert result.success
    assert (result.data['processed'], result.data['expired'], result.data['failed']) == (2, 1, 1)
    failed = result.data['results'][0]
    assert failed['bookingId'] == first and failed['status'] == 'failed'
    assert failed['error'] == {'code': 'server_error', 'message': 'storage hiccup'}
    assert store.get_booking(first).status == 'pending'
    assert len(store.history_for(first)) == 1
    assert store.get_booking(second).status == 'expired'
    assert 'unexpected failure expiring booking' in caplog.text


def test_booking_history_pages_and_filters(orchestrator, directory, users):
    ids = []
    for uid in (61, 62, 63):
        directory.add_user(User(id=uid, username=f'u{uid}', role=User.ROLE_USER))
        ids.append(orchestrator.create(booking_input(user_id=uid), users[ADMIN]).data['booking']['id'])
    orchestrator.decline(ids[0], users[AUTHORITY], 'Full')
    orchestrator.approve(ids[1], users[AUTHORITY])

    page = orchestrator.get_booking_history(GENERAL, users[AUTHORITY], limit=2)
    assert page.success
    assert [b['id'] for b in page.data['bookings']] == [ids[1], ids[0]]
    assert (page.data['totalCount'], page.data['currentPage'], page.data['totalPages']) == (3, 1, 2)
    assert page.data['bookings'][0]['approvedByName'] == 'authority'
    assert page.data['bookings'][0]['userName'] == 'u62'
    assert page.data['bookings'][1]['approvedByName'] is None

    rest = orchestrator.get_booking_history(GENERAL, users[AUTHORITY], limit=2, offset=2)
    assert [b['id'] for b in rest.data['bookings']] == [ids[2]]
    assert rest.data['currentPage'] == 2

    declined = orchestrator.get_booking_history(GENERAL, users[ADMIN], status='declined')
    assert [b['id'] for b in declined.data['bookings']] == [ids[0]]

    later = orchestrator.get_booking_history(GENERAL, users[AUTHORITY], start=timezone.now() + timedelta(days=1))
    assert later.data['totalCount'] == 0 and later.data['totalPages'] == 0


def test_booking_history_requires_authority(orchestrator, users):
    assert orchestrator.get_booking_history(GENERAL, users[OTHER_AUTHORITY]).error_code == 'permission_denied'
    assert orchestrator.get_booking_history(GENERAL, users[AUTHORITY], status='lost').error_code == \
        'validation_error'
    assert orchestrator.get_booking_history(GENERAL, users[AUTHORITY], offset=-1).error_code == 'validation_error'


def test_user_bookings_lists_own_bookings_newest_first(orchestrator, store, directory, users, pending_booking):
    directory.add_user(User(id=64, username='neighbour', role=User.ROLE_USER))
    orchestrator.create(booking_input(user_id=64), users[ADMIN])
    store.seed_pool(CLINIC, 'beds', total=5, available=5)
    clinic = orchestrator.create(booking_input(hospital_id=CLINIC), users[PATIENT]).data['booking']['id']

    mine = orchestrator.get_user_bookings(users[PATIENT])
    assert mine.success
    assert [b['id'] for b in mine.data['bookings']] == [clinic, pending_booking]
    assert mine.data['totalCount'] == 2
    assert orchestrator.get_user_bookings(None).error_code == 'permission_denied'


def test_pending_bookings_sorted_by_urgency(orchestrator, directory, users):
    for uid, urgency in [(51, 'low'), (52, 'critical'), (53, 'medium'), (54, 'high'), (55, 'critical')]:
        directory.add_user(User(id=uid, username=f'u{uid}', role=User.ROLE_USER))
        assert orchestrator.create(booking_input(user_id=uid, urgency=urgency), users[ADMIN]).success

    result = orchestrator.get_pending_bookings(GENERAL, users[AUTHORITY])
    assert result.success
    rows = result.data['bookings']
    assert [r['urgency'] for r in rows] == ['critical', 'critical', 'high', 'medium', 'low']
    assert all(r['canApprove'] for r in rows)
    assert rows[0]['userName'] == 'u52'
    assert result.data['summary'] == {'total': 5, 'critical': 2, 'high': 1}

    limited = orchestrator.get_pending_bookings(GENERAL, users[AUTHORITY], urgency='critical', limit=1)
    assert limited.data['totalCount'] == 1
    assert limited.data['summary']['total'] == 5


def test_pending_bookings_report_current_capacity(orchestrator, store, users):
    orchestrator.create(booking_input(resources_allocated=30), users[PATIENT])
    row = orchestrator.get_pending_bookings(GENERAL, users[AUTHORITY]).data['bookings'][0]
    assert row['canApprove'] is True
    assert row['resourceAvailability']['currentAvailable'] == 30

    pool = store.get_pool(GENERAL, 'beds')
    pool.available, pool.maintenance = 29, 1
    store.save_pool(pool)
    row = orchestrator.get_pending_bookings(GENERAL, users[AUTHORITY]).data['bookings'][0]
    assert row['canApprove'] is False


def test_pending_bookings_require_authority(orchestrator, users):
    assert orchestrator.get_pending_bookings(GENERAL, users[PATIENT]).error_code == 'permission_denied'
    assert orchestrator.get_pending_bookings(GENERAL, users[OTHER_AUTHORITY]).error_code == 'permission_denied'


def test_get_booking_includes_history(orchestrator, users, pending_booking, directory):
    result = orchestrator.get_booking(pending_booking, users[PATIENT])
    assert result.success
    assert [h['newStatus'] for h in result.data['statusHistory']] == ['pending']
    stranger = directory.add_user(User(id=15, username='nosy', role=User.ROLE_USER))
    assert orchestrator.get_booking(pending_booking, stranger).error_code == 'permission_denied'


def test_resource_history_and_updates(orchestrator, users, pending_booking):
    orchestrator.approve(pending_booking, users[AUTHORITY])
    updated = orchestrator.update_resources(GENERAL, users[AUTHORITY], {
        'beds': {'total': 60, 'available': 38, 'occupied': 22},
    })
    assert updated.success
    history = orchestrator.get_resource_history(GENERAL, users[AUTHORITY], resource_type='beds')
    assert [h['changeType'] for h in history.data['history']] == ['manual_update', 'booking_approved']

    denied = orchestrator.update_resources(GENERAL, users[PATIENT], {'beds': {}})
    assert denied.error_code == 'permission_denied'


def test_update_resources_reports_validation_error(orchestrator, users):
    result = orchestrator.update_resources(GENERAL, users[AUTHORITY], {
        'beds': {'total': 50, 'available': 30, 'occupied': 25},
    })
    assert result.error_code == 'validation_error'
    assert 'exceeds total' in result.message


def test_check_availability_result(orchestrator):
    result = orchestrator.check_availability(GENERAL, 'beds', 5)
    assert result.as_payload() == {
        'success': True,
        'message': 'Resources available',
        'data': {'available': True, 'currentAvailable': 30, 'requested': 5, 'message': 'Resources available'},
    }


def test_initialize_and_maintenance(orchestrator, users):
    init = orchestrator.initialize_resources(CLINIC, users[OTHER_AUTHORITY])
    assert init.success and len(init.data['created']) == 3

    maintenance = orchestrator.update_maintenance(GENERAL, users[AUTHORITY], 'beds', 4, 'Repairs')
    assert maintenance.success
    assert maintenance.data['resource']['maintenance'] == 4
    assert orchestrator.get_utilization(GENERAL, users[AUTHORITY]).data['utilization']['beds']['available'] == 26
