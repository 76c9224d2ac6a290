from typing import Optional, Dict, List

from ledger.models import BookingStatusHistory, ResourceAuditLog


class AuditTrail:
    """Writes and reads the two append-only trails through a store."""

    def __init__(self, store):
        self.store = store

    def record_resource_change(self, *, hospital_id, resource_type: str, change_type: str,
                               before: Dict[str, int], after: Dict[str, int], booking_id=None,
                               actor_id=None, reason: str = '') -> ResourceAuditLog:
        old_value, new_value = before['available'], after['available']
        return self.store.append_audit(ResourceAuditLog(
            hospital_id=hospital_id,
            resource_type=resource_type,
            change_type=change_type,
            old_value=old_value,
            new_value=new_value,
            quantity=new_value - old_value,
            booking_id=booking_id,
            changed_by_id=actor_id,
            reason=reason[:255],
            detail={'before': before, 'after': after},
        ))

    def record_status_change(self, *, booking_id, previous: Optional[str], new: str, actor_id=None,
                             reason: str = '', notes: str = '') -> BookingStatusHistory:
        return self.store.append_history(BookingStatusHistory(
            booking_id=booking_id,
            previous_status=previous,
            new_status=new,
            changed_by_id=actor_id,
            reason=reason[:255],
            notes=notes or '',
        ))

    def resource_history(self, hospital_id, *, resource_type=None, change_type=None, start=None, end=None,
                         limit: Optional[int] = None) -> List[ResourceAuditLog]:
        rows = self.store.audit_entries(
            hospital_id=hospital_id, resource_type=resource_type, change_type=change_type, start=start, end=end,
        )
        return rows[:limit] if limit else rows

    def entries_for_booking(self, booking_id) -> List[ResourceAuditLog]:
        return self.store.audit_entries(booking_id=booking_id)

    def latest_for_pool(self, hospital_id, resource_type) -> Optional[ResourceAuditLog]:
        rows = self.store.audit_entries(hospital_id=hospital_id, resource_type=resource_type)
        return rows[0] if rows else None

    def status_history(self, booking_id) -> List[BookingStatusHistory]:
        return self.store.history_for(booking_id)

