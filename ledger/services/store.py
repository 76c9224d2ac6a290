"""
Persistence capability used by the ledger, the state machine and the
orchestrator.

:class:`LedgerStore` lists the operations a conforming store must offer:
a unit of work (``atomic``), row locks on pools and bookings that are held
until the unit of work ends, and append-only writes for the audit and
status trails that commit or roll back together with the counters.
:class:`DjangoLedgerStore` implements it on the ORM with
``transaction.atomic`` and ``select_for_update``; the in-memory variant
used by tests lives in :mod:`ledger.services.memory`.
"""
from __future__ import annotations

import random
import string
from contextlib import contextmanager
from typing import Iterator, Optional

from django.db import transaction
from django.db.models import Sum
from django.utils import timezone

from ledger.models import Booking, BookingStatusHistory, Hospital, ResourceAuditLog, ResourcePool


def generate_booking_reference(now=None) -> str:
    now = now or timezone.now()
    stamp = str(int(now.timestamp() * 1000))[-8:]
    suffix = ''.join(random.choices(string.ascii_uppercase + string.digits, k=4))
    return f"BK{stamp}{suffix}"


class LedgerStore:
    """Interface shared by the ORM and in-memory stores."""

    def atomic(self):
        """Context manager delimiting one all-or-nothing unit of work."""
        raise NotImplementedError

    # -- hospitals -----------------------------------------------------
    def hospital_exists(self, hospital_id) -> bool:
        raise NotImplementedError

    # -- pools ---------------------------------------------------------
    def get_pool(self, hospital_id, resource_type) -> Optional[ResourcePool]:
        raise NotImplementedError

    def lock_pool(self, hospital_id, resource_type) -> Optional[ResourcePool]:
        raise NotImplementedError

    def create_pool(self, hospital_id, resource_type) -> ResourcePool:
        raise NotImplementedError

    def save_pool(self, pool: ResourcePool) -> None:
        raise NotImplementedError

    def pools_for_hospital(self, hospital_id) -> list[ResourcePool]:
        raise NotImplementedError

    def held_quantity(self, hospital_id, resource_type) -> int:
        """Quantity currently held by approved bookings of one pool."""
        raise NotImplementedError

    # -- bookings ------------------------------------------------------
    def get_booking(self, booking_id) -> Optional[Booking]:
        raise NotImplementedError

    def lock_booking(self, booking_id) -> Optional[Booking]:
        raise NotImplementedError

    def add_booking(self, booking: Booking) -> Booking:
        raise NotImplementedError

    def save_booking(self, booking: Booking) -> None:
        raise NotImplementedError

    def find_open_booking(self, user_id, hospital_id, resource_type) -> Optional[Booking]:
        raise NotImplementedError

    def pending_bookings(self, hospital_id, *, urgency=None, resource_type=None) -> list[Booking]:
        raise NotImplementedError

    def expired_pending_ids(self, now, hospital_id=None) -> list:
        raise NotImplementedError

    def booking_ids(self, *, hospital_id=None, status=None, limit=None) -> list:
        raise NotImplementedError

    def hospital_bookings(self, hospital_id, *, status=None, start=None, end=None, limit=None,
                          offset=0) -> tuple[list[Booking], int]:
        """One page of a hospital's bookings, most recently updated first, and the match count."""
        raise NotImplementedError

    def user_bookings(self, user_id) -> list[Booking]:
        """All bookings of one user, newest first."""
        raise NotImplementedError

    # -- append-only trails ---------------------------------------------
    def append_audit(self, entry: ResourceAuditLog) -> ResourceAuditLog:
        raise NotImplementedError

    def audit_entries(self, *, hospital_id=None, resource_type=None, change_type=None, booking_id=None,
                      start=None, end=None) -> list[ResourceAuditLog]:
        """Entries matching the filters, newest first."""
        raise NotImplementedError

    def append_history(self, entry: BookingStatusHistory) -> BookingStatusHistory:
        raise NotImplementedError

    def history_for(self, booking_id) -> list[BookingStatusHistory]:
        """Status history of one booking, oldest first."""
        raise NotImplementedError


class DjangoLedgerStore(LedgerStore):
    """ORM-backed store; row locks come from ``select_for_update``."""

    @contextmanager
    def atomic(self) -> Iterator[None]:
        with transaction.atomic():
            yield

    def hospital_exists(self, hospital_id) -> bool:
        return Hospital.objects.filter(id=hospital_id).exists()

    def get_pool(self, hospital_id, resource_type):
        return ResourcePool.objects.filter(hospital_id=hospital_id, resource_type=resource_type).first()

    def lock_pool(self, hospital_id, resource_type):
        return (
            ResourcePool.objects.select_for_update()
            .filter(hospital_id=hospital_id, resource_type=resource_type)
            .first()
        )

    def create_pool(self, hospital_id, resource_type):
        pool, _ = ResourcePool.objects.get_or_create(hospital_id=hospital_id, resource_type=resource_type)
        # Re-read under lock so the caller holds the row for the rest of the unit of work.
        return self.lock_pool(hospital_id, resource_type) or pool

    def save_pool(self, pool):
        pool.save()

    def pools_for_hospital(self, hospital_id):
        return list(ResourcePool.objects.filter(hospital_id=hospital_id).order_by('resource_type'))

    def held_quantity(self, hospital_id, resource_type) -> int:
        agg = Booking.objects.filter(
            hospital_id=hospital_id, resource_type=resource_type, status=Booking.STATUS_APPROVED,
        ).aggregate(held=Sum('allocated_quantity'))
        return agg['held'] or 0

    def get_booking(self, booking_id):
        return Booking.objects.filter(id=booking_id).first()

    def lock_booking(self, booking_id):
        return Booking.objects.select_for_update().filter(id=booking_id).first()

    def add_booking(self, booking):
        if not booking.booking_reference:
            booking.booking_reference = generate_booking_reference()
        booking.save()
        return booking

    def save_booking(self, booking):
        booking.save()

    def find_open_booking(self, user_id, hospital_id, resource_type):
        return Booking.objects.filter(
            user_id=user_id, hospital_id=hospital_id, resource_type=resource_type,
            status__in=Booking.OPEN_STATUSES,
        ).first()

    def pending_bookings(self, hospital_id, *, urgency=None, resource_type=None):
        qs = Booking.objects.filter(hospital_id=hospital_id, status=Booking.STATUS_PENDING)
        if urgency:
            qs = qs.filter(urgency=urgency)
        if resource_type:
            qs = qs.filter(resource_type=resource_type)
        return list(qs.select_related('user').order_by('created_at', 'id'))

    def expired_pending_ids(self, now, hospital_id=None):
        qs = Booking.objects.filter(status=Booking.STATUS_PENDING, expires_at__isnull=False, expires_at__lt=now)
        if hospital_id:
            qs = qs.filter(hospital_id=hospital_id)
        return list(qs.order_by('expires_at', 'id').values_list('id', flat=True))

    def booking_ids(self, *, hospital_id=None, status=None, limit=None):
        qs = Booking.objects.all()
        if hospital_id:
            qs = qs.filter(hospital_id=hospital_id)
        if status:
            qs = qs.filter(status=status)
        qs = qs.order_by('id').values_list('id', flat=True)
        if limit:
            qs = qs[:limit]
        return list(qs)

    def hospital_bookings(self, hospital_id, *, status=None, start=None, end=None, limit=None, offset=0):
        qs = Booking.objects.filter(hospital_id=hospital_id)
        if status:
            qs = qs.filter(status=status)
        if start:
            qs = qs.filter(created_at__gte=start)
        if end:
            qs = qs.filter(created_at__lte=end)
        total = qs.count()
        qs = qs.select_related('user', 'approved_by').order_by('-updated_at', '-id')
        page = qs[offset:offset + limit] if limit else qs[offset:]
        return list(page), total

    def user_bookings(self, user_id):
        return list(Booking.objects.filter(user_id=user_id).order_by('-created_at', '-id'))

    def append_audit(self, entry):
        entry.save()
        return entry

    def audit_entries(self, *, hospital_id=None, resource_type=None, change_type=None, booking_id=None,
                      start=None, end=None):
        qs = ResourceAuditLog.objects.all()
        if hospital_id:
            qs = qs.filter(hospital_id=hospital_id)
        if resource_type:
            qs = qs.filter(resource_type=resource_type)
        if change_type:
            qs = qs.filter(change_type=change_type)
        if booking_id:
            qs = qs.filter(booking_id=booking_id)
        if start:
            qs = qs.filter(timestamp__gte=start)
        if end:
            qs = qs.filter(timestamp__lte=end)
        return list(qs.order_by('-timestamp', '-id'))

    def append_history(self, entry):
        entry.save()
        return entry

    def history_for(self, booking_id):
        return list(BookingStatusHistory.objects.filter(booking_id=booking_id).order_by('timestamp', 'id'))
