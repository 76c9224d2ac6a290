"""
Database models for the resource ledger.

These models capture the hospital capacity counters (one
:class:`ResourcePool` per hospital and resource type), the bookings that
consume them and the two append-only trails written alongside every
change: :class:`ResourceAuditLog` for counter mutations and
:class:`BookingStatusHistory` for booking transitions.  Hospitals and
users are kept deliberately small; they only carry what the approval
workflow needs for eligibility and permission checks.
"""
from __future__ import annotations

from django.contrib.auth.models import AbstractUser
from django.db import models

from .exceptions import ConsistencyError


class Hospital(models.Model):
    """A facility that owns resource pools and receives bookings."""
    APPROVAL_PENDING = 'pending'
    APPROVAL_APPROVED = 'approved'
    APPROVAL_REJECTED = 'rejected'
    APPROVAL_CHOICES = (
        (APPROVAL_PENDING, 'Pending'),
        (APPROVAL_APPROVED, 'Approved'),
        (APPROVAL_REJECTED, 'Rejected'),
    )

    name = models.CharField(max_length=255)
    is_active = models.BooleanField(default=True, db_index=True)
    approval_status = models.CharField(max_length=16, choices=APPROVAL_CHOICES, default=APPROVAL_PENDING)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    def __str__(self) -> str:
        return f"{self.name} ({self.id})"


class User(AbstractUser):
    """Custom user model with a role and an optional hospital binding.

    ``hospital-authority`` users act on behalf of the hospital stored in
    :attr:`hospital`; ``admin`` users are platform administrators who may
    act on any hospital.  Regular ``user`` accounts book resources for
    patients.
    """
    ROLE_USER = 'user'
    ROLE_AUTHORITY = 'hospital-authority'
    ROLE_ADMIN = 'admin'
    ROLE_CHOICES = (
        (ROLE_USER, 'User'),
        (ROLE_AUTHORITY, 'Hospital authority'),
        (ROLE_ADMIN, 'Administrator'),
    )
    role = models.CharField(max_length=32, choices=ROLE_CHOICES, default=ROLE_USER)
    hospital = models.ForeignKey(
        Hospital, null=True, blank=True, on_delete=models.SET_NULL, related_name='authorities'
    )
    phone = models.CharField(max_length=32, blank=True)

    def __str__(self) -> str:
        return f"{self.username} ({self.role})"


class ResourcePool(models.Model):
    """Capacity counters for one hospital and resource type.

    The counters always satisfy
    ``total == available + occupied + reserved + maintenance``.  They are
    only ever written by :class:`ledger.services.resources.ResourceLedger`
    while the row is locked; ``version`` is bumped on every write so stale
    copies can be detected.
    """
    BEDS = 'beds'
    ICU = 'icu'
    OPERATION_THEATRES = 'operationTheatres'
    RESOURCE_TYPES = (BEDS, ICU, OPERATION_THEATRES)
    RESOURCE_CHOICES = (
        (BEDS, 'Beds'),
        (ICU, 'ICU'),
        (OPERATION_THEATRES, 'Operation theatres'),
    )
    COUNTER_FIELDS = ('total', 'available', 'occupied', 'reserved', 'maintenance')

    hospital = models.ForeignKey(Hospital, on_delete=models.PROTECT, related_name='resources')
    resource_type = models.CharField(max_length=32, choices=RESOURCE_CHOICES)
    total = models.PositiveIntegerField(default=0)
    available = models.PositiveIntegerField(default=0)
    occupied = models.PositiveIntegerField(default=0)
    reserved = models.PositiveIntegerField(default=0)
    maintenance = models.PositiveIntegerField(default=0)
    version = models.PositiveIntegerField(default=0)
    updated_by = models.ForeignKey(
        User, null=True, blank=True, on_delete=models.SET_NULL, related_name='+'
    )
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        constraints = [
            models.UniqueConstraint(fields=['hospital', 'resource_type'], name='uniq_pool_per_hospital_type'),
        ]

    def __str__(self) -> str:
        return f"{self.resource_type}@{self.hospital_id} {self.available}/{self.total}"

    @property
    def allocated_sum(self) -> int:
        return self.available + self.occupied + self.reserved + self.maintenance

    def is_balanced(self) -> bool:
        return self.allocated_sum == self.total

    def counters(self) -> dict:
        return {name: getattr(self, name) for name in self.COUNTER_FIELDS}


class Booking(models.Model):
    """A request by a user to hold a hospital resource for a patient."""
    STATUS_PENDING = 'pending'
    STATUS_APPROVED = 'approved'
    STATUS_DECLINED = 'declined'
    STATUS_COMPLETED = 'completed'
    STATUS_CANCELLED = 'cancelled'
    STATUS_EXPIRED = 'expired'
    STATUS_CHOICES = (
        (STATUS_PENDING, 'Pending'),
        (STATUS_APPROVED, 'Approved'),
        (STATUS_DECLINED, 'Declined'),
        (STATUS_COMPLETED, 'Completed'),
        (STATUS_CANCELLED, 'Cancelled'),
        (STATUS_EXPIRED, 'Expired'),
    )
    OPEN_STATUSES = (STATUS_PENDING, STATUS_APPROVED)

    URGENCY_LOW = 'low'
    URGENCY_MEDIUM = 'medium'
    URGENCY_HIGH = 'high'
    URGENCY_CRITICAL = 'critical'
    URGENCY_CHOICES = (
        (URGENCY_LOW, 'Low'),
        (URGENCY_MEDIUM, 'Medium'),
        (URGENCY_HIGH, 'High'),
        (URGENCY_CRITICAL, 'Critical'),
    )
    GENDER_CHOICES = (
        ('male', 'Male'),
        ('female', 'Female'),
        ('other', 'Other'),
    )

    user = models.ForeignKey(User, on_delete=models.PROTECT, related_name='bookings')
    hospital = models.ForeignKey(Hospital, on_delete=models.PROTECT, related_name='bookings')
    resource_type = models.CharField(max_length=32, choices=ResourcePool.RESOURCE_CHOICES)
    booking_reference = models.CharField(max_length=32, unique=True)

    # Patient and contact details are validated at the API boundary and are
    # opaque to the ledger.
    patient_name = models.CharField(max_length=255, blank=True)
    patient_age = models.PositiveIntegerField(null=True, blank=True)
    patient_gender = models.CharField(max_length=10, choices=GENDER_CHOICES, blank=True)
    medical_condition = models.TextField(blank=True)
    emergency_contact_name = models.CharField(max_length=255, blank=True)
    emergency_contact_phone = models.CharField(max_length=32, blank=True)
    emergency_contact_relationship = models.CharField(max_length=64, blank=True)

    urgency = models.CharField(max_length=10, choices=URGENCY_CHOICES, default=URGENCY_MEDIUM, db_index=True)
    status = models.CharField(max_length=16, choices=STATUS_CHOICES, default=STATUS_PENDING, db_index=True)
    scheduled_date = models.DateTimeField()
    estimated_duration_hours = models.PositiveIntegerField(default=24)
    resources_allocated = models.PositiveIntegerField(default=1)
    # Quantity currently held in the owning pool; zero unless approved with allocation.
    allocated_quantity = models.PositiveIntegerField(default=0)
    payment_amount = models.DecimalField(max_digits=12, decimal_places=2, default=0)

    notes = models.TextField(blank=True)
    authority_notes = models.TextField(blank=True)
    approved_by = models.ForeignKey(
        User, null=True, blank=True, on_delete=models.SET_NULL, related_name='approved_bookings'
    )
    approved_at = models.DateTimeField(null=True, blank=True)
    decline_reason = models.TextField(blank=True)
    declined_at = models.DateTimeField(null=True, blank=True)
    cancellation_reason = models.TextField(blank=True)
    cancelled_at = models.DateTimeField(null=True, blank=True)
    completed_at = models.DateTimeField(null=True, blank=True)
    expires_at = models.DateTimeField(null=True, blank=True, db_index=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        indexes = [
            models.Index(fields=['hospital', 'status', 'created_at'], name='booking_hosp_status_created'),
            models.Index(fields=['user', 'hospital', 'resource_type', 'status'], name='booking_open_lookup'),
        ]

    def __str__(self) -> str:
        return f"{self.booking_reference} {self.resource_type}@{self.hospital_id} [{self.status}]"


class AppendOnlyModel(models.Model):
    """Rows are written once and never updated or deleted."""

    class Meta:
        abstract = True

    def save(self, *args, **kwargs):
        if self.pk is not None and not self._state.adding:
            raise ConsistencyError(f"{type(self).__name__} entries are append-only")
        super().save(*args, **kwargs)

    def delete(self, *args, **kwargs):
        raise ConsistencyError(f"{type(self).__name__} entries are append-only")


class ResourceAuditLog(AppendOnlyModel):
    """One entry per ledger mutation.

    ``old_value``/``new_value`` hold the pool's ``available`` counter
    before and after the change and ``quantity`` the signed delta applied
    to it.  ``detail`` keeps full counter snapshots for reconciliation.
    """
    MANUAL_UPDATE = 'manual_update'
    BOOKING_APPROVED = 'booking_approved'
    BOOKING_COMPLETED = 'booking_completed'
    BOOKING_CANCELLED = 'booking_cancelled'
    MAINTENANCE_UPDATE = 'maintenance_update'
    CHANGE_CHOICES = (
        (MANUAL_UPDATE, 'Manual update'),
        (BOOKING_APPROVED, 'Booking approved'),
        (BOOKING_COMPLETED, 'Booking completed'),
        (BOOKING_CANCELLED, 'Booking cancelled'),
        (MAINTENANCE_UPDATE, 'Maintenance update'),
    )
    RELEASE_CHANGES = (BOOKING_COMPLETED, BOOKING_CANCELLED)

    hospital = models.ForeignKey(Hospital, on_delete=models.PROTECT, related_name='resource_audit')
    resource_type = models.CharField(max_length=32, choices=ResourcePool.RESOURCE_CHOICES)
    change_type = models.CharField(max_length=32, choices=CHANGE_CHOICES)
    old_value = models.IntegerField()
    new_value = models.IntegerField()
    quantity = models.IntegerField()
    booking = models.ForeignKey(
        Booking, null=True, blank=True, on_delete=models.PROTECT, related_name='audit_entries'
    )
    changed_by = models.ForeignKey(
        User, null=True, blank=True, on_delete=models.SET_NULL, related_name='+'
    )
    reason = models.CharField(max_length=255, blank=True)
    detail = models.JSONField(default=dict, blank=True)
    timestamp = models.DateTimeField(auto_now_add=True, db_index=True)

    class Meta:
        indexes = [
            models.Index(fields=['hospital', 'resource_type', 'timestamp'], name='audit_pool_timestamp'),
            models.Index(fields=['booking', 'timestamp'], name='audit_booking_timestamp'),
        ]

    def __str__(self) -> str:
        return f"{self.change_type} {self.resource_type}@{self.hospital_id} {self.quantity:+d}"


class BookingStatusHistory(AppendOnlyModel):
    """Records a status transition for a booking."""
    booking = models.ForeignKey(Booking, on_delete=models.CASCADE, related_name='status_history')
    previous_status = models.CharField(max_length=16, null=True, blank=True)
    new_status = models.CharField(max_length=16)
    changed_by = models.ForeignKey(
        User, null=True, blank=True, on_delete=models.SET_NULL, related_name='+'
    )
    reason = models.CharField(max_length=255, blank=True)
    notes = models.TextField(blank=True)
    timestamp = models.DateTimeField(auto_now_add=True)

    class Meta:
        indexes = [models.Index(fields=['booking', 'timestamp'], name='history_booking_timestamp')]

    def __str__(self) -> str:
        return f"{self.booking_id}: {self.previous_status} → {self.new_status}"
