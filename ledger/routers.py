"""
URL mappings for the ledger API.

Trailing slashes are omitted, as in the rest of the API.
"""
from django.urls import path, include

from .views import bookings, health, reconciliation, resources

urlpatterns = [
    path('metrics', include('django_prometheus.urls')),
    path('healthz', health.healthz),
    # Bookings
    path('api/bookings', bookings.create_booking),
    path('api/bookings/expire', bookings.expire_bookings),
    path('api/bookings/my-bookings', bookings.my_bookings),
    path('api/bookings/<int:booking_id>', bookings.booking_detail),
    path('api/bookings/<int:booking_id>/approve', bookings.approve_booking),
    path('api/bookings/<int:booking_id>/decline', bookings.decline_booking),
    path('api/bookings/<int:booking_id>/cancel', bookings.cancel_booking),
    path('api/bookings/<int:booking_id>/complete', bookings.complete_booking),
    path('api/bookings/<int:booking_id>/consistency', bookings.booking_consistency),
    path('api/hospitals/<int:hospital_id>/bookings/pending', bookings.pending_bookings),
    path('api/hospitals/<int:hospital_id>/bookings/history', bookings.booking_history),
    # Resources
    path('api/hospitals/<int:hospital_id>/resources', resources.hospital_resources),
    path('api/hospitals/<int:hospital_id>/resources/initialize', resources.initialize_resources),
    path('api/hospitals/<int:hospital_id>/resources/utilization', resources.resource_utilization),
    path('api/hospitals/<int:hospital_id>/resources/history', resources.resource_history),
    path('api/hospitals/<int:hospital_id>/resources/<str:resource_type>/maintenance', resources.update_maintenance),
    path('api/hospitals/<int:hospital_id>/resources/<str:resource_type>/availability',
         resources.resource_availability),
    # Reconciliation
    path('api/reconciliation/integrity', reconciliation.integrity_checks),
]
