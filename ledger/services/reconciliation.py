"""
Read-only integrity sweep over bookings, their trails and the pools.

Nothing here writes.  Problems are reported so an operator can correct
them with an explicit adjustment; they are never repaired automatically.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field

from django.utils import timezone

from ledger.models import Booking, ResourceAuditLog
from .audit import AuditTrail
from .directory import ModelDirectory
from .resources import ResourceLedger
from .state_machine import can_transition
from .store import DjangoLedgerStore

logger = logging.getLogger(__name__)

EXPECTED_RELEASE = {
    Booking.STATUS_COMPLETED: ResourceAuditLog.BOOKING_COMPLETED,
    Booking.STATUS_CANCELLED: ResourceAuditLog.BOOKING_CANCELLED,
}


@dataclass
class ConsistencyReport:
    booking_id: int
    errors: list = field(default_factory=list)
    warnings: list = field(default_factory=list)
    checked_at: object = None

    @property
    def is_valid(self) -> bool:
        return not self.errors

    def as_dict(self) -> dict:
        return {
            'bookingId': self.booking_id,
            'isValid': self.is_valid,
            'errors': list(self.errors),
            'warnings': list(self.warnings),
            'checkedAt': self.checked_at.isoformat() if self.checked_at else None,
        }


class ReconciliationChecker:

    def __init__(self, store=None, directory=None, clock=timezone.now):
        self.store = store or DjangoLedgerStore()
        self.directory = directory or ModelDirectory()
        self.ledger = ResourceLedger(self.store)
        self.audit = AuditTrail(self.store)
        self.clock = clock

    def validate_data_consistency(self, booking_id) -> ConsistencyReport:
        report = ConsistencyReport(booking_id, checked_at=self.clock())
        booking = self.store.get_booking(booking_id)
        if booking is None:
            report.errors.append('Booking not found')
            return report
        self._check_references(booking, report)
        self._check_pool(booking, report)
        self._check_history(booking, report)
        self._check_allocations(booking, report)
        self._check_dates(booking, report)
        return report

    def _check_references(self, booking, report) -> None:
        user = self.directory.find_user(booking.user_id)
        if user is None:
            report.errors.append('Referenced user does not exist')
        elif not user.is_active:
            report.warnings.append('Referenced user is inactive')
        hospital = self.directory.find_hospital(booking.hospital_id)
        if hospital is None:
            report.errors.append('Referenced hospital does not exist')
            return
        if not hospital.is_active:
            report.warnings.append('Referenced hospital is inactive')
        if hospital.approval_status != hospital.APPROVAL_APPROVED:
            report.warnings.append('Referenced hospital is not approved')

    def _check_pool(self, booking, report) -> None:
        pool = self.store.get_pool(booking.hospital_id, booking.resource_type)
        if pool is None:
            if booking.status == Booking.STATUS_APPROVED or booking.allocated_quantity:
                report.errors.append('Resource type not found for hospital')
            return
        if not pool.is_balanced():
            report.errors.append('Resource counts do not add up to total')
        if booking.allocated_quantity > pool.occupied:
            report.errors.append('Allocated quantity exceeds occupied resources')

    def _check_history(self, booking, report) -> None:
        history = self.audit.status_history(booking.id)
        if not history:
            report.errors.append('Booking has no status history')
            return
        first = history[0]
        if first.previous_status is not None or first.new_status != Booking.STATUS_PENDING:
            report.errors.append('Status history does not start with booking creation')
        for prev, entry in zip(history, history[1:]):
            if entry.previous_status != prev.new_status:
                report.errors.append(
                    f"Status history gap: {prev.new_status} followed by {entry.previous_status} -> {entry.new_status}"
                )
            elif not can_transition(entry.previous_status, entry.new_status):
                report.errors.append(f"Illegal transition {entry.previous_status} -> {entry.new_status}")
            if entry.timestamp and prev.timestamp and entry.timestamp < prev.timestamp:
                report.errors.append('Status history timestamps are not in order')
        if history[-1].new_status != booking.status:
            report.errors.append('Current booking status does not match latest status history entry')

    def _check_allocations(self, booking, report) -> None:
        entries = self.audit.entries_for_booking(booking.id)
        allocations = [e for e in entries if e.change_type == ResourceAuditLog.BOOKING_APPROVED]
        releases = [e for e in entries if e.change_type in ResourceAuditLog.RELEASE_CHANGES]
        if len(allocations) > 1:
            report.errors.append('Booking has more than one allocation entry')
        if len(releases) > 1:
            report.errors.append('Booking has more than one release entry')
        net = sum(e.quantity for e in entries)
        if net != -booking.allocated_quantity:
            report.errors.append(
                f"Audit trail nets {net} but booking holds {booking.allocated_quantity}"
            )

        status = booking.status
        if status == Booking.STATUS_APPROVED and not booking.allocated_quantity:
            report.warnings.append('Approved booking holds no allocated resources')
        if status != Booking.STATUS_APPROVED and booking.allocated_quantity:
            report.errors.append(f"{status.capitalize()} booking still holds allocated resources")
        if status in (Booking.STATUS_PENDING, Booking.STATUS_DECLINED, Booking.STATUS_EXPIRED) and entries:
            report.errors.append(f"{status.capitalize()} booking has resource audit entries")
        expected = EXPECTED_RELEASE.get(status)
        for entry in releases:
            if entry.change_type != expected:
                report.errors.append(f"Release recorded as {entry.change_type} for a {status} booking")

    def _check_dates(self, booking, report) -> None:
        created = booking.created_at
        if created and booking.scheduled_date and booking.scheduled_date <= created:
            report.errors.append('Scheduled date is not after creation date')
        if created and booking.approved_at and booking.approved_at < created:
            report.errors.append('Approval date is before creation date')
        if booking.status == Booking.STATUS_COMPLETED and not booking.completed_at:
            report.errors.append('Completed booking has no completion date')
        if booking.completed_at and booking.approved_at and booking.completed_at < booking.approved_at:
            report.errors.append('Completion date is before approval date')

    def check_pool(self, hospital_id, resource_type) -> list:
        return self.ledger.check_pool(hospital_id, resource_type)

    def run_integrity_checks(self, hospital_id=None, status=None, limit=None) -> dict:
        booking_ids = self.store.booking_ids(hospital_id=hospital_id, status=status, limit=limit)
        results = {
            'totalBookings': len(booking_ids),
            'validBookings': 0,
            'invalidBookings': 0,
            'warnings': 0,
            'errors': [],
            'poolErrors': [],
        }
        hospitals = {hospital_id} if hospital_id else set()
        for booking_id in booking_ids:
            report = self.validate_data_consistency(booking_id)
            if report.is_valid:
                results['validBookings'] += 1
            else:
                results['invalidBookings'] += 1
                results['errors'].append({
                    'bookingId': booking_id, 'errors': report.errors, 'warnings': report.warnings,
                })
            results['warnings'] += len(report.warnings)
            booking = self.store.get_booking(booking_id)
            if booking is not None:
                hospitals.add(booking.hospital_id)

        for hid in sorted(hospitals):
            for pool in self.store.pools_for_hospital(hid):
                problems = self.check_pool(hid, pool.resource_type)
                if problems:
                    results['poolErrors'].append({
                        'hospitalId': hid, 'resourceType': pool.resource_type, 'errors': problems,
                    })

        total = results['totalBookings']
        results['summary'] = {
            'validPercentage': round(results['validBookings'] / total * 100, 2) if total else 0,
            'invalidPercentage': round(results['invalidBookings'] / total * 100, 2) if total else 0,
            'totalWarnings': results['warnings'],
            'poolsWithErrors': len(results['poolErrors']),
        }
        results['checkedAt'] = self.clock().isoformat()
        if results['invalidBookings'] or results['poolErrors']:
            logger.warning("integrity check found %s invalid bookings and %s unhealthy pools",
                           results['invalidBookings'], len(results['poolErrors']))
        return results
