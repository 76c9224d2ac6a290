"""
Booking lifecycle.

``pending`` may become ``approved``, ``declined``, ``cancelled`` or
``expired``; ``approved`` may become ``completed`` or ``cancelled``; all
other states are terminal.  Each method expects the booking row to be
locked by the caller's unit of work and writes exactly one status history
entry.  Ledger effects (allocation on approve, release on complete or on
cancelling an approved booking) happen in the same unit of work, so a
ledger failure leaves the booking untouched.
"""
from __future__ import annotations

import logging

from django.utils import timezone

from ledger.exceptions import BookingValidationError, StateError
from ledger.models import Booking
from .audit import AuditTrail
from .resources import ResourceLedger

logger = logging.getLogger(__name__)

TRANSITIONS = {
    Booking.STATUS_PENDING: frozenset({
        Booking.STATUS_APPROVED, Booking.STATUS_DECLINED, Booking.STATUS_CANCELLED, Booking.STATUS_EXPIRED,
    }),
    Booking.STATUS_APPROVED: frozenset({Booking.STATUS_COMPLETED, Booking.STATUS_CANCELLED}),
    Booking.STATUS_DECLINED: frozenset(),
    Booking.STATUS_COMPLETED: frozenset(),
    Booking.STATUS_CANCELLED: frozenset(),
    Booking.STATUS_EXPIRED: frozenset(),
}

TERMINAL_STATUSES = frozenset(status for status, targets in TRANSITIONS.items() if not targets)

REJECTION_MESSAGES = {
    Booking.STATUS_APPROVED: 'Only pending bookings can be approved',
    Booking.STATUS_DECLINED: 'Only pending bookings can be declined',
    Booking.STATUS_COMPLETED: 'Only approved bookings can be completed',
    Booking.STATUS_CANCELLED: 'Only pending or approved bookings can be cancelled',
    Booking.STATUS_EXPIRED: 'Only pending bookings can expire',
}


def can_transition(current: str, target: str) -> bool:
    return target in TRANSITIONS.get(current, ())


class BookingStateMachine:

    def __init__(self, ledger: ResourceLedger, clock=timezone.now):
        self.ledger = ledger
        self.store = ledger.store
        self.audit = AuditTrail(self.store)
        self.clock = clock

    def ensure(self, booking: Booking, target: str) -> None:
        if not can_transition(booking.status, target):
            raise StateError(REJECTION_MESSAGES[target], current=booking.status, target=target)

    def _transition(self, booking: Booking, target: str, actor_id, reason: str, notes: str = '') -> Booking:
        previous = booking.status
        booking.status = target
        self.store.save_booking(booking)
        self.audit.record_status_change(
            booking_id=booking.id, previous=previous, new=target, actor_id=actor_id, reason=reason, notes=notes,
        )
        logger.info("booking %s: %s -> %s", booking.booking_reference, previous, target)
        return booking

    def open(self, booking: Booking, actor_id=None) -> Booking:
        booking.status = Booking.STATUS_PENDING
        booking.allocated_quantity = 0
        self.store.add_booking(booking)
        self.audit.record_status_change(
            booking_id=booking.id, previous=None, new=Booking.STATUS_PENDING, actor_id=actor_id,
            reason='Booking created',
        )
        logger.info("booking %s opened for %s at hospital %s",
                    booking.booking_reference, booking.resource_type, booking.hospital_id)
        return booking

    def approve(self, booking: Booking, actor_id, *, quantity=None, allocate: bool = True, notes: str = ''):
        """Approve and, unless ``allocate`` is false, take ``quantity`` from the pool.

        Returns ``(booking, allocation)`` where ``allocation`` is ``None``
        when nothing was allocated.
        """
        self.ensure(booking, Booking.STATUS_APPROVED)
        quantity = quantity or booking.resources_allocated or 1
        allocation = None
        if allocate:
            allocation = self.ledger.allocate(
                booking.hospital_id, booking.resource_type, quantity, booking_id=booking.id, actor_id=actor_id,
            )
            booking.allocated_quantity = quantity
        booking.resources_allocated = quantity
        booking.approved_by_id = actor_id
        booking.approved_at = self.clock()
        if notes:
            booking.authority_notes = notes
        self._transition(booking, Booking.STATUS_APPROVED, actor_id, 'Booking approved by hospital authority', notes)
        return booking, allocation

    def decline(self, booking: Booking, actor_id, reason: str, notes: str = '') -> Booking:
        reason = (reason or '').strip()
        if not reason:
            raise BookingValidationError('Decline reason is required')
        self.ensure(booking, Booking.STATUS_DECLINED)
        booking.decline_reason = reason
        booking.declined_at = self.clock()
        if notes:
            booking.authority_notes = notes
        return self._transition(booking, Booking.STATUS_DECLINED, actor_id, reason, notes)

    def _release(self, booking: Booking, actor_id, reason: str):
        if booking.allocated_quantity <= 0:
            return None
        release = self.ledger.release(
            booking.hospital_id, booking.resource_type, booking.allocated_quantity,
            booking_id=booking.id, actor_id=actor_id, reason=reason,
        )
        booking.allocated_quantity = 0
        return release

    def complete(self, booking: Booking, actor_id, notes: str = ''):
        self.ensure(booking, Booking.STATUS_COMPLETED)
        release = self._release(booking, actor_id, 'completed')
        booking.completed_at = self.clock()
        if notes:
            booking.authority_notes = notes
        self._transition(booking, Booking.STATUS_COMPLETED, actor_id, 'Booking completed', notes)
        return booking, release

    def cancel(self, booking: Booking, actor_id, reason: str = '', notes: str = ''):
        self.ensure(booking, Booking.STATUS_CANCELLED)
        release = None
        if booking.status == Booking.STATUS_APPROVED:
            release = self._release(booking, actor_id, 'cancelled')
        booking.cancellation_reason = reason or ''
        booking.cancelled_at = self.clock()
        self._transition(booking, Booking.STATUS_CANCELLED, actor_id, reason or 'Booking cancelled', notes)
        return booking, release

    def expire(self, booking: Booking) -> Booking:
        self.ensure(booking, Booking.STATUS_EXPIRED)
        return self._transition(booking, Booking.STATUS_EXPIRED, None, 'Booking expired before approval')
