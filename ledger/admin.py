"""
Django admin registrations for the ledger models.

Pools and bookings are listed for inspection; the audit and status trails
are append-only and therefore read-only here.  Counter changes must go
through the API so they are audited.
"""

from django.contrib import admin

from .models import Booking, BookingStatusHistory, Hospital, ResourceAuditLog, ResourcePool, User


@admin.register(Hospital)
class HospitalAdmin(admin.ModelAdmin):
    list_display = ('id', 'name', 'is_active', 'approval_status', 'created_at')
    list_filter = ('is_active', 'approval_status')
    search_fields = ('name',)


@admin.register(User)
class UserAdmin(admin.ModelAdmin):
    list_display = ('username', 'role', 'hospital', 'is_active', 'is_superuser')
    list_filter = ('role', 'hospital')
    search_fields = ('username', 'first_name', 'last_name', 'phone')


class ReadOnlyAdmin(admin.ModelAdmin):
    def has_add_permission(self, request):
        return False

    def has_change_permission(self, request, obj=None):
        return False

    def has_delete_permission(self, request, obj=None):
        return False


@admin.register(ResourcePool)
class ResourcePoolAdmin(ReadOnlyAdmin):
    list_display = ('hospital', 'resource_type', 'total', 'available', 'occupied', 'reserved', 'maintenance',
                    'version', 'updated_at')
    list_filter = ('resource_type',)


@admin.register(Booking)
class BookingAdmin(ReadOnlyAdmin):
    list_display = ('booking_reference', 'hospital', 'user', 'resource_type', 'urgency', 'status',
                    'allocated_quantity', 'created_at')
    list_filter = ('status', 'urgency', 'resource_type')
    search_fields = ('booking_reference', 'patient_name', 'user__username')


@admin.register(ResourceAuditLog)
class ResourceAuditLogAdmin(ReadOnlyAdmin):
    list_display = ('timestamp', 'hospital', 'resource_type', 'change_type', 'old_value', 'new_value', 'quantity',
                    'booking', 'changed_by')
    list_filter = ('change_type', 'resource_type')


@admin.register(BookingStatusHistory)
class BookingStatusHistoryAdmin(ReadOnlyAdmin):
    list_display = ('timestamp', 'booking', 'previous_status', 'new_status', 'changed_by', 'reason')
    list_filter = ('new_status',)
