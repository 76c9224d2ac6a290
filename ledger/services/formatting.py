"""camelCase response dictionaries for ledger objects."""
from __future__ import annotations

from typing import Any, Dict, Optional


def _iso(value) -> Optional[str]:
    return value.isoformat() if value else None


def format_pool(pool) -> Dict[str, Any]:
    return {
        'id': pool.id,
        'hospitalId': pool.hospital_id,
        'resourceType': pool.resource_type,
        'total': pool.total,
        'available': pool.available,
        'occupied': pool.occupied,
        'reserved': pool.reserved,
        'maintenance': pool.maintenance,
        'version': pool.version,
        'updatedBy': pool.updated_by_id,
        'updatedAt': _iso(pool.updated_at),
    }


def format_booking(booking, *, user=None) -> Dict[str, Any]:
    data = {
        'id': booking.id,
        'bookingReference': booking.booking_reference,
        'userId': booking.user_id,
        'hospitalId': booking.hospital_id,
        'resourceType': booking.resource_type,
        'patientName': booking.patient_name,
        'patientAge': booking.patient_age,
        'patientGender': booking.patient_gender,
        'medicalCondition': booking.medical_condition,
        'emergencyContactName': booking.emergency_contact_name,
        'emergencyContactPhone': booking.emergency_contact_phone,
        'emergencyContactRelationship': booking.emergency_contact_relationship,
        'urgency': booking.urgency,
        'status': booking.status,
        'scheduledDate': _iso(booking.scheduled_date),
        'estimatedDuration': booking.estimated_duration_hours,
        'resourcesAllocated': booking.resources_allocated,
        'allocatedQuantity': booking.allocated_quantity,
        'paymentAmount': str(booking.payment_amount) if booking.payment_amount is not None else None,
        'notes': booking.notes,
        'authorityNotes': booking.authority_notes,
        'approvedBy': booking.approved_by_id,
        'approvedAt': _iso(booking.approved_at),
        'declineReason': booking.decline_reason,
        'declinedAt': _iso(booking.declined_at),
        'cancellationReason': booking.cancellation_reason,
        'cancelledAt': _iso(booking.cancelled_at),
        'completedAt': _iso(booking.completed_at),
        'expiresAt': _iso(booking.expires_at),
        'createdAt': _iso(booking.created_at),
        'updatedAt': _iso(booking.updated_at),
    }
    if user is not None:
        data['userName'] = user.get_full_name() or user.username
        data['userPhone'] = getattr(user, 'phone', '')
    return data


def format_audit_entry(entry) -> Dict[str, Any]:
    return {
        'id': entry.id,
        'hospitalId': entry.hospital_id,
        'resourceType': entry.resource_type,
        'changeType': entry.change_type,
        'oldValue': entry.old_value,
        'newValue': entry.new_value,
        'quantity': entry.quantity,
        'bookingId': entry.booking_id,
        'changedBy': entry.changed_by_id,
        'reason': entry.reason,
        'detail': entry.detail,
        'timestamp': _iso(entry.timestamp),
    }


def format_history_entry(entry) -> Dict[str, Any]:
    return {
        'id': entry.id,
        'bookingId': entry.booking_id,
        'oldStatus': entry.previous_status,
        'newStatus': entry.new_status,
        'changedBy': entry.changed_by_id,
        'reason': entry.reason,
        'notes': entry.notes,
        'timestamp': _iso(entry.timestamp),
    }
