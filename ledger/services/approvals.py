"""
Booking approval workflow.

:class:`ApprovalOrchestrator` is the single entry point used by the API
views and management commands.  Each operation validates its input,
checks the actor's rights, then runs the booking lock, the state
transition, the ledger mutation and both audit writes as one unit of work
on the injected store.  Business failures come back as failed
:class:`OperationResult` values; notifications are sent only once the unit
of work has committed, and a delivery failure never changes the result.
"""
from __future__ import annotations

import functools
import logging
from datetime import timedelta
from decimal import Decimal, InvalidOperation
from typing import Any, Callable, Dict, Iterable, Optional

from django.conf import settings
from django.utils import timezone

from ledger.exceptions import (
    AccessDeniedError, BookingValidationError, CapacityError, ConflictError, ConsistencyError, LedgerError,
    NotFoundError,
)
from ledger.models import Booking, ResourcePool
from .directory import ModelDirectory
from .formatting import format_audit_entry, format_booking, format_history_entry, format_pool
from .notifications import ChannelsNotifier
from .resources import ResourceLedger
from .results import OperationResult
from .state_machine import TRANSITIONS, BookingStateMachine
from .store import DjangoLedgerStore

logger = logging.getLogger(__name__)

URGENCY_WEIGHTS = {
    Booking.URGENCY_CRITICAL: 1,
    Booking.URGENCY_HIGH: 2,
    Booking.URGENCY_MEDIUM: 3,
    Booking.URGENCY_LOW: 4,
}

PENDING_SORT_KEYS: Dict[str, Callable[[Booking], Any]] = {
    'urgency': lambda b: URGENCY_WEIGHTS.get(b.urgency, 5),
    'date': lambda b: b.created_at,
    'patient': lambda b: (b.patient_name or '').lower(),
    'amount': lambda b: b.payment_amount or 0,
}

BOOKING_FIELDS = (
    'patient_name', 'patient_age', 'patient_gender', 'medical_condition', 'emergency_contact_name',
    'emergency_contact_phone', 'emergency_contact_relationship', 'notes',
)


def guarded(operation: str):
    """Turn ``LedgerError`` raised by an operation into a failed result."""
    def decorator(func):
        @functools.wraps(func)
        def wrapper(self, *args, **kwargs) -> OperationResult:
            try:
                return func(self, *args, **kwargs)
            except ConsistencyError as exc:
                logger.error("%s aborted, ledger inconsistency: %s %s", operation, exc.message, exc.context)
                return OperationResult.failure(exc)
            except LedgerError as exc:
                logger.info("%s rejected (%s): %s", operation, exc.code, exc.message)
                return OperationResult.failure(exc)
        return wrapper
    return decorator


def _positive_int(value, name: str, *, upper: Optional[int] = None, default=None) -> int:
    if value is None:
        value = default
    if isinstance(value, bool) or not isinstance(value, int) or value < 1:
        raise BookingValidationError(f"{name} must be a positive integer", field=name)
    if upper is not None and value > upper:
        raise BookingValidationError(f"{name} cannot exceed {upper}", field=name)
    return value


def clean_booking_input(data: Dict[str, Any], now) -> Dict[str, Any]:
    """Check the fields the workflow depends on; patient details are opaque."""
    if not isinstance(data, dict):
        raise BookingValidationError('Booking data must be an object')
    if not data.get('hospital_id'):
        raise BookingValidationError('Hospital is required', field='hospital_id')
    resource_type = data.get('resource_type')
    if resource_type not in ResourcePool.RESOURCE_TYPES:
        raise BookingValidationError(
            f"Resource type must be one of: {', '.join(ResourcePool.RESOURCE_TYPES)}", field='resource_type',
        )
    urgency = data.get('urgency') or Booking.URGENCY_MEDIUM
    if urgency not in URGENCY_WEIGHTS:
        raise BookingValidationError('Urgency must be one of: low, medium, high, critical', field='urgency')
    scheduled = data.get('scheduled_date')
    if scheduled is None:
        raise BookingValidationError('Scheduled date is required', field='scheduled_date')
    if scheduled <= now:
        raise BookingValidationError('Scheduled date must be in the future', field='scheduled_date')
    age = data.get('patient_age')
    if age is not None and (isinstance(age, bool) or not isinstance(age, int) or not 1 <= age <= 150):
        raise BookingValidationError('Patient age must be between 1 and 150', field='patient_age')
    max_hours = getattr(settings, 'MAX_BOOKING_DURATION_HOURS', 168)
    cleaned = dict(data)
    cleaned['urgency'] = urgency
    cleaned['estimated_duration_hours'] = _positive_int(
        data.get('estimated_duration_hours'), 'estimated_duration_hours', upper=max_hours, default=24,
    )
    cleaned['resources_allocated'] = _positive_int(data.get('resources_allocated'), 'resources_allocated', default=1)
    return cleaned


class ApprovalOrchestrator:

    def __init__(self, store=None, directory=None, notifier=None, price_quoter=None, clock=timezone.now):
        self.store = store or DjangoLedgerStore()
        self.directory = directory or ModelDirectory()
        self.notifier = notifier or ChannelsNotifier()
        self.price_quoter = price_quoter
        self.clock = clock
        self.ledger = ResourceLedger(self.store)
        self.machine = BookingStateMachine(self.ledger, clock=clock)
        self.audit = self.ledger.audit

    # -- helpers ---------------------------------------------------------
    def _notify(self, action: str, booking: Booking, metadata=None) -> None:
        try:
            self.notifier.dispatch(action, booking, metadata or {})
        except Exception:
            logger.exception("failed to send %s notification for booking %s", action, booking.booking_reference)

    @staticmethod
    def _require_actor(actor) -> None:
        if actor is None or getattr(actor, 'id', None) is None:
            raise AccessDeniedError('Authentication required')

    def _require_manager(self, actor, hospital_id, action: str) -> None:
        self._require_actor(actor)
        if not self.directory.can_manage(actor, hospital_id):
            raise AccessDeniedError(f"You are not allowed to {action} for this hospital", hospital_id=hospital_id)

    def _require_hospital(self, hospital_id):
        hospital = self.directory.find_hospital(hospital_id)
        if hospital is None:
            raise NotFoundError('Hospital not found', hospital_id=hospital_id)
        return hospital

    def _lock_booking(self, booking_id) -> Booking:
        booking = self.store.lock_booking(booking_id)
        if booking is None:
            raise NotFoundError('Booking not found', booking_id=booking_id)
        return booking

    def _quote(self, hospital_id, resource_type: str, hours: int, requested) -> Decimal:
        if self.price_quoter is not None:
            return Decimal(self.price_quoter(hospital_id, resource_type, hours))
        try:
            return Decimal(str(requested or 0))
        except InvalidOperation:
            raise BookingValidationError('Payment amount must be a number', field='payment_amount')

    # -- booking lifecycle -----------------------------------------------
    @guarded('create booking')
    def create(self, booking_input: Dict[str, Any], actor) -> OperationResult:
        self._require_actor(actor)
        now = self.clock()
        data = clean_booking_input(booking_input, now)
        hospital = self._require_hospital(data['hospital_id'])
        if not self.directory.accepts_bookings(hospital):
            raise AccessDeniedError('Hospital is not currently accepting bookings', hospital_id=hospital.id)

        user_id = data.get('user_id') or actor.id
        if user_id != actor.id and not self.directory.can_manage(actor, hospital.id):
            raise AccessDeniedError('You can only create bookings for yourself')
        user = self.directory.find_user(user_id)
        if user is None:
            raise NotFoundError('User not found', user_id=user_id)
        if not user.is_active:
            raise AccessDeniedError('User account is not active', user_id=user_id)

        resource_type = data['resource_type']
        quantity = data['resources_allocated']
        ttl = timedelta(hours=getattr(settings, 'PENDING_BOOKING_TTL_HOURS', 24))
        with self.store.atomic():
            pool = self.store.lock_pool(hospital.id, resource_type)
            duplicate = self.store.find_open_booking(user_id, hospital.id, resource_type)
            if duplicate is not None:
                raise ConflictError(
                    'You already have an active booking for this resource at this hospital',
                    booking_reference=duplicate.booking_reference,
                )
            available = pool.available if pool is not None else 0
            if available < quantity:
                raise CapacityError(
                    f"Insufficient {resource_type} available",
                    current_available=available, requested=quantity,
                )
            booking = Booking(
                user_id=user_id,
                hospital_id=hospital.id,
                resource_type=resource_type,
                urgency=data['urgency'],
                scheduled_date=data['scheduled_date'],
                estimated_duration_hours=data['estimated_duration_hours'],
                resources_allocated=quantity,
                payment_amount=self._quote(hospital.id, resource_type, data['estimated_duration_hours'],
                                           data.get('payment_amount')),
                expires_at=data.get('expires_at') or now + ttl,
                **{name: data[name] for name in BOOKING_FIELDS if data.get(name) is not None},
            )
            self.machine.open(booking, actor.id)
        self._notify('created', booking)
        return OperationResult.ok({'booking': format_booking(booking)}, 'Booking created successfully')

    @guarded('approve booking')
    def approve(self, booking_id, actor, *, notes: str = '', resources_allocated: Optional[int] = None,
                scheduled_date=None, auto_allocate_resources: bool = True) -> OperationResult:
        self._require_actor(actor)
        if resources_allocated is not None:
            resources_allocated = _positive_int(resources_allocated, 'resources_allocated')
        now = self.clock()
        with self.store.atomic():
            booking = self._lock_booking(booking_id)
            self._require_manager(actor, booking.hospital_id, 'approve bookings')
            self.machine.ensure(booking, Booking.STATUS_APPROVED)
            if booking.expires_at is not None and booking.expires_at <= now:
                raise ConflictError('Booking has expired', expires_at=booking.expires_at.isoformat())
            if scheduled_date is not None:
                if scheduled_date <= now:
                    raise BookingValidationError('Scheduled date must be in the future', field='scheduled_date')
                booking.scheduled_date = scheduled_date
            booking, allocation = self.machine.approve(
                booking, actor.id, quantity=resources_allocated, allocate=auto_allocate_resources, notes=notes,
            )
        metadata = {'resourcesAllocated': booking.resources_allocated, 'allocated': allocation is not None}
        self._notify('approved', booking, metadata)
        return OperationResult.ok({
            'booking': format_booking(booking),
            'allocation': allocation.as_dict() if allocation else None,
            'resourcesAllocated': booking.resources_allocated,
        }, 'Booking approved successfully')

    @guarded('decline booking')
    def decline(self, booking_id, actor, reason: str = '', *, notes: str = '',
                alternative_suggestions: Optional[Iterable[str]] = None) -> OperationResult:
        self._require_actor(actor)
        if not (reason or '').strip():
            raise BookingValidationError('Decline reason is required', field='reason')
        suggestions = [s for s in (alternative_suggestions or []) if s]
        if suggestions:
            notes = '\n'.join(filter(None, [notes, 'Alternative suggestions:', *suggestions]))
        with self.store.atomic():
            booking = self._lock_booking(booking_id)
            self._require_manager(actor, booking.hospital_id, 'decline bookings')
            self.machine.decline(booking, actor.id, reason, notes)
        self._notify('declined', booking, {'reason': booking.decline_reason, 'alternativeSuggestions': suggestions})
        return OperationResult.ok({
            'booking': format_booking(booking),
            'alternativeSuggestions': suggestions,
        }, 'Booking declined successfully')

    @guarded('cancel booking')
    def cancel(self, booking_id, actor, reason: str = '', *, notes: str = '') -> OperationResult:
        self._require_actor(actor)
        with self.store.atomic():
            booking = self._lock_booking(booking_id)
            if booking.user_id != actor.id and not self.directory.can_manage(actor, booking.hospital_id):
                raise AccessDeniedError('You can only cancel your own bookings', booking_id=booking_id)
            booking, release = self.machine.cancel(booking, actor.id, reason, notes)
        self._notify('cancelled', booking, {'released': release.quantity if release else 0})
        return OperationResult.ok({
            'booking': format_booking(booking),
            'release': release.as_dict() if release else None,
        }, 'Booking cancelled successfully')

    @guarded('complete booking')
    def complete(self, booking_id, actor, *, notes: str = '') -> OperationResult:
        self._require_actor(actor)
        with self.store.atomic():
            booking = self._lock_booking(booking_id)
            self._require_manager(actor, booking.hospital_id, 'complete bookings')
            booking, release = self.machine.complete(booking, actor.id, notes)
        self._notify('completed', booking, {'released': release.quantity if release else 0})
        return OperationResult.ok({
            'booking': format_booking(booking),
            'release': release.as_dict() if release else None,
        }, 'Booking completed successfully')

    @guarded('expire bookings')
    def process_expired_bookings(self, hospital_id=None) -> OperationResult:
        now = self.clock()
        candidates = self.store.expired_pending_ids(now, hospital_id)
        results, expired = [], []
        for booking_id in candidates:
            try:
                with self.store.atomic():
                    booking = self.store.lock_booking(booking_id)
                    if booking is None or booking.status != Booking.STATUS_PENDING \
                            or booking.expires_at is None or booking.expires_at >= now:
                        results.append({'bookingId': booking_id, 'status': 'skipped'})
                        continue
                    self.machine.expire(booking)
            except LedgerError as exc:
                logger.warning("could not expire booking %s: %s", booking_id, exc.message)
                results.append({'bookingId': booking_id, 'status': 'failed', 'error': exc.as_dict()})
                continue
            except Exception as exc:
                logger.exception("unexpected failure expiring booking %s", booking_id)
                results.append({'bookingId': booking_id, 'status': 'failed',
                                'error': {'code': 'server_error', 'message': str(exc)}})
                continue
            expired.append(booking)
            results.append({'bookingId': booking_id, 'bookingReference': booking.booking_reference,
                            'status': 'expired'})
        for booking in expired:
            self._notify('expired', booking)
        failed = sum(1 for r in results if r['status'] == 'failed')
        if expired:
            logger.info("expired %s pending bookings", len(expired))
        return OperationResult.ok({
            'processed': len(candidates),
            'expired': len(expired),
            'failed': failed,
            'results': results,
        }, f"{len(expired)} bookings expired")

    # -- queries ---------------------------------------------------------
    @guarded('check availability')
    def check_availability(self, hospital_id, resource_type: str, quantity: int = 1) -> OperationResult:
        quantity = _positive_int(quantity, 'quantity', default=1)
        result = self.ledger.check_availability(hospital_id, resource_type, quantity)
        return OperationResult.ok(result.as_dict(), result.message)

    @guarded('list pending bookings')
    def get_pending_bookings(self, hospital_id, actor, *, urgency=None, resource_type=None, sort_by='urgency',
                             sort_order='asc', limit: Optional[int] = None) -> OperationResult:
        self._require_manager(actor, hospital_id, 'view pending bookings')
        self._require_hospital(hospital_id)
        if sort_by not in PENDING_SORT_KEYS:
            raise BookingValidationError(
                f"sortBy must be one of: {', '.join(PENDING_SORT_KEYS)}", field='sortBy',
            )
        everything = self.store.pending_bookings(hospital_id)
        bookings = self.store.pending_bookings(hospital_id, urgency=urgency, resource_type=resource_type)
        bookings.sort(key=PENDING_SORT_KEYS[sort_by], reverse=sort_order == 'desc')
        if limit:
            bookings = bookings[:limit]

        now = self.clock()
        rows = []
        for booking in bookings:
            availability = self.ledger.check_availability(
                hospital_id, booking.resource_type, booking.resources_allocated or 1,
            )
            row = format_booking(booking, user=self.directory.find_user(booking.user_id))
            row.update({
                'resourceAvailability': availability.as_dict(),
                'canApprove': availability.available,
                'waitingTime': round((now - booking.created_at).total_seconds() / 3600),
                'estimatedCompletionDate': (
                    booking.scheduled_date + timedelta(hours=booking.estimated_duration_hours or 24)
                ).isoformat(),
            })
            rows.append(row)
        summary = {
            'total': len(everything),
            'critical': sum(1 for b in everything if b.urgency == Booking.URGENCY_CRITICAL),
            'high': sum(1 for b in everything if b.urgency == Booking.URGENCY_HIGH),
        }
        return OperationResult.ok({
            'bookings': rows,
            'totalCount': len(rows),
            'summary': summary,
            'filters': {'urgency': urgency, 'resourceType': resource_type, 'sortBy': sort_by,
                        'sortOrder': sort_order, 'limit': limit},
        })

    @guarded('get booking')
    def get_booking(self, booking_id, actor) -> OperationResult:
        self._require_actor(actor)
        booking = self.store.get_booking(booking_id)
        if booking is None:
            raise NotFoundError('Booking not found', booking_id=booking_id)
        if booking.user_id != actor.id and not self.directory.can_manage(actor, booking.hospital_id):
            raise AccessDeniedError('You can only view your own bookings', booking_id=booking_id)
        return OperationResult.ok({
            'booking': format_booking(booking),
            'statusHistory': [format_history_entry(e) for e in self.audit.status_history(booking.id)],
        })

    @guarded('booking history')
    def get_booking_history(self, hospital_id, actor, *, status=None, start=None, end=None, limit=10,
                            offset=0) -> OperationResult:
        """A page of the hospital's bookings, most recently updated first."""
        self._require_manager(actor, hospital_id, 'view booking history')
        self._require_hospital(hospital_id)
        if status and status not in TRANSITIONS:
            raise BookingValidationError(f"Unknown booking status: {status}", field='status')
        limit = _positive_int(limit, 'limit', default=10)
        if offset is None:
            offset = 0
        if isinstance(offset, bool) or not isinstance(offset, int) or offset < 0:
            raise BookingValidationError('offset must be a non-negative integer', field='offset')

        bookings, total = self.store.hospital_bookings(
            hospital_id, status=status, start=start, end=end, limit=limit, offset=offset,
        )
        rows = []
        for booking in bookings:
            row = format_booking(booking, user=self.directory.find_user(booking.user_id))
            approver = self.directory.find_user(booking.approved_by_id) if booking.approved_by_id else None
            row['approvedByName'] = (approver.get_full_name() or approver.username) if approver else None
            rows.append(row)
        return OperationResult.ok({
            'bookings': rows,
            'totalCount': total,
            'currentPage': offset // limit + 1,
            'totalPages': -(-total // limit),
            'filters': {'status': status, 'startDate': start.isoformat() if start else None,
                        'endDate': end.isoformat() if end else None, 'limit': limit, 'offset': offset},
        })

    @guarded('list user bookings')
    def get_user_bookings(self, actor) -> OperationResult:
        self._require_actor(actor)
        bookings = self.store.user_bookings(actor.id)
        return OperationResult.ok({
            'bookings': [format_booking(b) for b in bookings],
            'totalCount': len(bookings),
        })

    @guarded('resource history')
    def get_resource_history(self, hospital_id, actor, *, resource_type=None, change_type=None, start=None,
                             end=None, limit: Optional[int] = None) -> OperationResult:
        self._require_manager(actor, hospital_id, 'view resource history')
        entries = self.ledger.get_resource_history(
            hospital_id, resource_type=resource_type, change_type=change_type, start=start, end=end, limit=limit,
        )
        return OperationResult.ok({'history': [format_audit_entry(e) for e in entries], 'count': len(entries)})

    @guarded('list resources')
    def get_resources(self, hospital_id) -> OperationResult:
        self._require_hospital(hospital_id)
        return OperationResult.ok({'resources': [format_pool(p) for p in self.ledger.get_pools(hospital_id)]})

    @guarded('resource utilization')
    def get_utilization(self, hospital_id, actor) -> OperationResult:
        self._require_manager(actor, hospital_id, 'view utilization')
        self._require_hospital(hospital_id)
        return OperationResult.ok({'utilization': self.ledger.get_utilization(hospital_id)})

    # -- resource administration -----------------------------------------
    @guarded('update resources')
    def update_resources(self, hospital_id, actor, resources) -> OperationResult:
        self._require_manager(actor, hospital_id, 'update resources')
        result = self.ledger.update_quantities(hospital_id, resources, actor.id)
        return OperationResult.ok({
            'resources': [format_pool(p) for p in result.pools],
        }, 'Resources updated successfully')

    @guarded('update maintenance')
    def update_maintenance(self, hospital_id, actor, resource_type: str, maintenance_quantity: int,
                           reason: str = '') -> OperationResult:
        self._require_manager(actor, hospital_id, 'update maintenance')
        result = self.ledger.update_maintenance(hospital_id, resource_type, maintenance_quantity, actor.id, reason)
        return OperationResult.ok({'resource': format_pool(result.pools[0])}, 'Maintenance updated successfully')

    @guarded('initialize resources')
    def initialize_resources(self, hospital_id, actor) -> OperationResult:
        self._require_manager(actor, hospital_id, 'initialize resources')
        created = self.ledger.initialize_pools(hospital_id, actor.id)
        return OperationResult.ok({
            'created': created,
            'resources': [format_pool(p) for p in self.ledger.get_pools(hospital_id)],
        }, 'Resources initialized successfully')
