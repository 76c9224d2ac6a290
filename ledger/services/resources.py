"""
Capacity counters per hospital and resource type.

:class:`ResourceLedger` is the only writer of :class:`ResourcePool` rows.
Every mutation runs inside ``store.atomic()`` with the pool row locked,
re-validates against the locked counters and writes one audit entry in the
same unit of work.  Availability checks are advisory and never trusted by
:meth:`ResourceLedger.allocate`.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field, asdict
from typing import Iterable, Mapping, Optional

from ledger.exceptions import BookingValidationError, CapacityError, ConsistencyError, NotFoundError
from ledger.models import ResourceAuditLog, ResourcePool
from .audit import AuditTrail
from .store import DjangoLedgerStore

logger = logging.getLogger(__name__)

RELEASE_REASONS = {
    'completed': (ResourceAuditLog.BOOKING_COMPLETED, 'Resource released after booking completion'),
    'cancelled': (ResourceAuditLog.BOOKING_CANCELLED, 'Resource released due to booking cancellation'),
}


@dataclass
class Availability:
    available: bool
    current_available: int
    requested: int
    message: str
    pool_exists: bool = True

    def as_dict(self) -> dict:
        return {
            'available': self.available,
            'currentAvailable': self.current_available,
            'requested': self.requested,
            'message': self.message,
        }


@dataclass
class AllocationResult:
    hospital_id: int
    resource_type: str
    quantity: int
    booking_id: Optional[int]
    before: dict
    after: dict
    audit_id: Optional[int] = None

    def as_dict(self) -> dict:
        return {
            'resourceType': self.resource_type,
            'quantity': self.quantity,
            'previousAvailable': self.before['available'],
            'newAvailable': self.after['available'],
        }


@dataclass
class ReleaseResult(AllocationResult):
    reason: str = 'completed'


@dataclass
class UpdateResult:
    hospital_id: int
    pools: list = field(default_factory=list)
    audit_ids: list = field(default_factory=list)


@dataclass(frozen=True)
class ResourceCounts:
    """Closed update record for one resource type."""
    total: int
    available: int
    occupied: int
    reserved: int = 0
    maintenance: int = 0

    KEYS = ('total', 'available', 'occupied', 'reserved', 'maintenance')
    REQUIRED = ('total', 'available', 'occupied')

    @classmethod
    def from_mapping(cls, resource_type: str, data) -> 'ResourceCounts':
        if not isinstance(data, Mapping):
            raise BookingValidationError(f"Resource data for {resource_type} must be an object",
                                         resource_type=resource_type)
        unknown = sorted(set(data) - set(cls.KEYS))
        if unknown:
            raise BookingValidationError(
                f"Unknown fields for {resource_type}: {', '.join(unknown)}", resource_type=resource_type,
            )
        missing = [k for k in cls.REQUIRED if k not in data]
        if missing:
            raise BookingValidationError(
                f"Missing fields for {resource_type}: {', '.join(missing)}", resource_type=resource_type,
            )
        values = {}
        for key in cls.KEYS:
            value = data.get(key, 0)
            if isinstance(value, bool) or not isinstance(value, int) or value < 0:
                raise BookingValidationError(
                    f"{key} for {resource_type} must be a non-negative integer", resource_type=resource_type,
                )
            values[key] = value
        counts = cls(**values)
        allocated = counts.available + counts.occupied + counts.reserved + counts.maintenance
        if allocated > counts.total:
            raise BookingValidationError(
                f"Sum of allocated resources ({allocated}) exceeds total capacity ({counts.total}) "
                f"for {resource_type}",
                resource_type=resource_type,
            )
        if allocated < counts.total:
            raise BookingValidationError(
                f"Sum of allocated resources ({allocated}) is below total capacity ({counts.total}) "
                f"for {resource_type}",
                resource_type=resource_type,
            )
        return counts

    def as_dict(self) -> dict:
        return asdict(self)


def _check_type(resource_type: str) -> None:
    if resource_type not in ResourcePool.RESOURCE_TYPES:
        raise BookingValidationError(f"Unknown resource type: {resource_type}", resource_type=resource_type)


class ResourceLedger:

    def __init__(self, store=None):
        self.store = store or DjangoLedgerStore()
        self.audit = AuditTrail(self.store)

    # -- reads -----------------------------------------------------------
    def check_availability(self, hospital_id, resource_type: str, quantity: int = 1) -> Availability:
        pool = None
        if resource_type in ResourcePool.RESOURCE_TYPES:
            pool = self.store.get_pool(hospital_id, resource_type)
        if pool is None:
            return Availability(False, 0, quantity, f"No {resource_type} resources registered for this hospital",
                                pool_exists=False)
        ok = pool.available >= quantity
        message = 'Resources available' if ok else f"Insufficient {resource_type} available"
        return Availability(ok, pool.available, quantity, message)

    def get_pools(self, hospital_id) -> list:
        return self.store.pools_for_hospital(hospital_id)

    def get_utilization(self, hospital_id) -> dict:
        stats = {}
        for pool in self.get_pools(hospital_id):
            rate = round(pool.occupied / pool.total * 100, 2) if pool.total else 0.0
            stats[pool.resource_type] = {**pool.counters(), 'utilizationRate': rate}
        return stats

    def get_resource_history(self, hospital_id, **filters) -> list:
        return self.audit.resource_history(hospital_id, **filters)

    def check_pool(self, hospital_id, resource_type: str) -> list:
        """Problems with one pool at rest; an empty list means healthy."""
        pool = self.store.get_pool(hospital_id, resource_type)
        if pool is None:
            return [f"No {resource_type} pool for hospital {hospital_id}"]
        problems = []
        if not pool.is_balanced():
            problems.append(
                f"{resource_type} counters sum to {pool.allocated_sum} but total is {pool.total}"
            )
        latest = self.audit.latest_for_pool(hospital_id, resource_type)
        if latest is not None and latest.new_value != pool.available:
            problems.append(
                f"Latest {resource_type} audit entry records {latest.new_value} available "
                f"but pool has {pool.available}"
            )
        return problems

    # -- mutations -------------------------------------------------------
    def lock_pool(self, hospital_id, resource_type: str) -> ResourcePool:
        """Lock and return an existing pool; the caller owns the unit of work."""
        pool = self.store.lock_pool(hospital_id, resource_type)
        if pool is None:
            raise NotFoundError(f"No {resource_type} resources registered for this hospital",
                                resource_type=resource_type)
        return pool

    def _write(self, pool, before: dict, change_type: str, *, booking_id=None, actor_id=None, reason=''):
        if not pool.is_balanced():
            raise ConsistencyError(
                f"{pool.resource_type} counters do not add up to total", hospital_id=pool.hospital_id,
            )
        pool.version += 1
        pool.updated_by_id = actor_id
        self.store.save_pool(pool)
        return self.audit.record_resource_change(
            hospital_id=pool.hospital_id, resource_type=pool.resource_type, change_type=change_type,
            before=before, after=pool.counters(), booking_id=booking_id, actor_id=actor_id, reason=reason,
        )

    def allocate(self, hospital_id, resource_type: str, quantity: int, booking_id=None,
                 actor_id=None) -> AllocationResult:
        _check_type(resource_type)
        if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity <= 0:
            raise BookingValidationError('Quantity must be a positive integer')
        with self.store.atomic():
            pool = self.lock_pool(hospital_id, resource_type)
            if pool.available < quantity:
                raise CapacityError(
                    f"Insufficient {resource_type} available",
                    current_available=pool.available, requested=quantity,
                )
            before = pool.counters()
            pool.available -= quantity
            pool.occupied += quantity
            entry = self._write(
                pool, before, ResourceAuditLog.BOOKING_APPROVED, booking_id=booking_id, actor_id=actor_id,
                reason='Resource allocated for approved booking',
            )
        logger.info("allocated %s %s at hospital %s for booking %s", quantity, resource_type, hospital_id, booking_id)
        return AllocationResult(hospital_id, resource_type, quantity, booking_id, before, pool.counters(), entry.id)

    def release(self, hospital_id, resource_type: str, quantity: int, booking_id=None, actor_id=None,
                reason: str = 'completed') -> ReleaseResult:
        _check_type(resource_type)
        if reason not in RELEASE_REASONS:
            raise BookingValidationError(f"Unknown release reason: {reason}")
        if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity <= 0:
            raise BookingValidationError('Quantity must be a positive integer')
        change_type, audit_reason = RELEASE_REASONS[reason]
        with self.store.atomic():
            pool = self.lock_pool(hospital_id, resource_type)
            if pool.occupied < quantity:
                raise ConsistencyError(
                    f"Cannot release {quantity} {resource_type}: only {pool.occupied} occupied",
                    hospital_id=hospital_id, booking_id=booking_id,
                )
            before = pool.counters()
            pool.occupied -= quantity
            pool.available += quantity
            entry = self._write(pool, before, change_type, booking_id=booking_id, actor_id=actor_id,
                                reason=audit_reason)
        logger.info("released %s %s at hospital %s for booking %s (%s)",
                    quantity, resource_type, hospital_id, booking_id, reason)
        return ReleaseResult(hospital_id, resource_type, quantity, booking_id, before, pool.counters(), entry.id,
                             reason=reason)

    def update_quantities(self, hospital_id, resources, actor_id=None) -> UpdateResult:
        if not isinstance(resources, Mapping) or not resources:
            raise BookingValidationError('Resources must be a non-empty object keyed by resource type')
        parsed = {}
        for resource_type, data in resources.items():
            _check_type(resource_type)
            parsed[resource_type] = ResourceCounts.from_mapping(resource_type, data)
        if not self.store.hospital_exists(hospital_id):
            raise NotFoundError('Hospital not found', hospital_id=hospital_id)

        result = UpdateResult(hospital_id)
        with self.store.atomic():
            locked = {rt: self.store.create_pool(hospital_id, rt) for rt in sorted(parsed)}
            for resource_type, counts in sorted(parsed.items()):
                held = self.store.held_quantity(hospital_id, resource_type)
                if counts.occupied + counts.reserved < held:
                    raise BookingValidationError(
                        f"{resource_type} occupied ({counts.occupied}) cannot be less than the "
                        f"{held} held by approved bookings",
                        resource_type=resource_type, held=held,
                    )
            for resource_type, counts in sorted(parsed.items()):
                pool = locked[resource_type]
                before = pool.counters()
                for name, value in counts.as_dict().items():
                    setattr(pool, name, value)
                entry = self._write(pool, before, ResourceAuditLog.MANUAL_UPDATE, actor_id=actor_id,
                                    reason='Manual resource quantity update')
                result.pools.append(pool)
                result.audit_ids.append(entry.id)
        logger.info("updated %s pools at hospital %s", ', '.join(sorted(parsed)), hospital_id)
        return result

    def update_maintenance(self, hospital_id, resource_type: str, maintenance_quantity: int, actor_id=None,
                           reason: str = '') -> UpdateResult:
        _check_type(resource_type)
        if isinstance(maintenance_quantity, bool) or not isinstance(maintenance_quantity, int) \
                or maintenance_quantity < 0:
            raise BookingValidationError('Maintenance quantity must be a non-negative integer')
        with self.store.atomic():
            pool = self.lock_pool(hospital_id, resource_type)
            delta = maintenance_quantity - pool.maintenance
            if delta > pool.available:
                raise CapacityError(
                    f"Insufficient {resource_type} available for maintenance",
                    current_available=pool.available, requested=delta,
                )
            before = pool.counters()
            pool.maintenance = maintenance_quantity
            pool.available -= delta
            entry = self._write(pool, before, ResourceAuditLog.MAINTENANCE_UPDATE, actor_id=actor_id,
                                reason=reason or 'Maintenance quantity update')
        logger.info("set %s maintenance to %s at hospital %s", resource_type, maintenance_quantity, hospital_id)
        return UpdateResult(hospital_id, [pool], [entry.id])

    def initialize_pools(self, hospital_id, actor_id=None, resource_types: Iterable[str] = None) -> list:
        """Register zeroed pools for the given (default: all) resource types."""
        types = sorted(resource_types or ResourcePool.RESOURCE_TYPES)
        for resource_type in types:
            _check_type(resource_type)
        if not self.store.hospital_exists(hospital_id):
            raise NotFoundError('Hospital not found', hospital_id=hospital_id)
        created = []
        with self.store.atomic():
            for resource_type in types:
                if self.store.get_pool(hospital_id, resource_type) is None:
                    pool = self.store.create_pool(hospital_id, resource_type)
                    pool.updated_by_id = actor_id
                    self.store.save_pool(pool)
                    created.append(resource_type)
        if created:
            logger.info("initialized %s pools at hospital %s", ', '.join(created), hospital_id)
        return created
