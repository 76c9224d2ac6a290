from datetime import timedelta

import pytest
from django.utils import timezone

from ledger.models import Hospital, User
from ledger.services.approvals import ApprovalOrchestrator
from ledger.services.memory import MemoryDirectory, MemoryLedgerStore

GENERAL, CLINIC = 1, 2
PATIENT, AUTHORITY, ADMIN, OTHER_AUTHORITY = 10, 20, 30, 40


class RecordingNotifier:
    def __init__(self):
        self.events = []

    def dispatch(self, action, booking, metadata=None):
        self.events.append((action, booking.id, metadata))


class ExplodingNotifier:
    def dispatch(self, action, booking, metadata=None):
        raise ConnectionError("channel layer unavailable")


def booking_input(**overrides):
    data = {
        'hospital_id': GENERAL,
        'resource_type': 'beds',
        'patient_name': 'Jane Doe',
        'patient_age': 42,
        'patient_gender': 'female',
        'medical_condition': 'Fractured femur',
        'emergency_contact_name': 'John Doe',
        'emergency_contact_phone': '+1 555 0100',
        'emergency_contact_relationship': 'Spouse',
        'urgency': 'high',
        'scheduled_date': timezone.now() + timedelta(days=2),
    }
    data.update(overrides)
    return data


@pytest.fixture
def store():
    return MemoryLedgerStore()


@pytest.fixture
def directory(store):
    d = MemoryDirectory()
    d.add_hospital(Hospital(id=GENERAL, name='General', is_active=True, approval_status=Hospital.APPROVAL_APPROVED))
    d.add_hospital(Hospital(id=CLINIC, name='Clinic', is_active=True, approval_status=Hospital.APPROVAL_APPROVED))
    d.add_user(User(id=PATIENT, username='patient', role=User.ROLE_USER))
    d.add_user(User(id=AUTHORITY, username='authority', role=User.ROLE_AUTHORITY, hospital_id=GENERAL))
    d.add_user(User(id=ADMIN, username='admin', role=User.ROLE_ADMIN))
    d.add_user(User(id=OTHER_AUTHORITY, username='clinic-authority', role=User.ROLE_AUTHORITY, hospital_id=CLINIC))
    store.register_hospital(GENERAL)
    store.register_hospital(CLINIC)
    return d


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def beds(store):
    return store.seed_pool(GENERAL, 'beds', total=50, available=30, occupied=20)


@pytest.fixture
def orchestrator(store, directory, notifier, beds):
    return ApprovalOrchestrator(store=store, directory=directory, notifier=notifier)


@pytest.fixture
def users(directory):
    return directory.users


@pytest.fixture
def pending_booking(orchestrator, users):
    result = orchestrator.create(booking_input(resources_allocated=2), users[PATIENT])
    assert result.success, result.message
    return result.data['booking']['id']
