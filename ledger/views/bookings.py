"""
Booking workflow endpoints.

Thin wrappers around :class:`ApprovalOrchestrator`: the serializer checks
the request shape, the orchestrator does the rest and its result is
rendered as ``{success, message, data}`` or ``{success, message, error}``.
"""
from __future__ import annotations

from rest_framework import status
from rest_framework.decorators import api_view, permission_classes
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response

from ledger.exceptions import AccessDeniedError
from ledger.permissions import IsAuthorityOrAdmin, IsPlatformAdmin
from ledger.serializers.bookings import (
    ApproveSerializer, BookingCreateSerializer, BookingHistoryQuerySerializer, CancelSerializer, CompleteSerializer,
    DeclineSerializer, ExpireSerializer, PendingQuerySerializer,
)
from ledger.services.approvals import ApprovalOrchestrator
from ledger.services.reconciliation import ReconciliationChecker


def render(result, success_status=status.HTTP_200_OK) -> Response:
    code = success_status if result.success else result.http_status
    return Response(result.as_payload(), status=code)


@api_view(['POST'])
@permission_classes([IsAuthenticated])
def create_booking(request):
    s = BookingCreateSerializer(data=request.data)
    s.is_valid(raise_exception=True)
    result = ApprovalOrchestrator().create(s.to_booking_input(), request.user)
    return render(result, status.HTTP_201_CREATED)


@api_view(['GET'])
@permission_classes([IsAuthenticated])
def booking_detail(request, booking_id: int):
    return render(ApprovalOrchestrator().get_booking(booking_id, request.user))


@api_view(['POST'])
@permission_classes([IsAuthenticated, IsAuthorityOrAdmin])
def approve_booking(request, booking_id: int):
    s = ApproveSerializer(data=request.data)
    s.is_valid(raise_exception=True)
    d = s.validated_data
    result = ApprovalOrchestrator().approve(
        booking_id, request.user,
        notes=d.get('notes', ''),
        resources_allocated=d.get('resourcesAllocated'),
        scheduled_date=d.get('scheduledDate'),
        auto_allocate_resources=d.get('autoAllocateResources', True),
    )
    return render(result)


@api_view(['POST'])
@permission_classes([IsAuthenticated, IsAuthorityOrAdmin])
def decline_booking(request, booking_id: int):
    s = DeclineSerializer(data=request.data)
    s.is_valid(raise_exception=True)
    d = s.validated_data
    result = ApprovalOrchestrator().decline(
        booking_id, request.user, d.get('reason', ''),
        notes=d.get('notes', ''), alternative_suggestions=d.get('alternativeSuggestions'),
    )
    return render(result)


@api_view(['POST'])
@permission_classes([IsAuthenticated])
def cancel_booking(request, booking_id: int):
    s = CancelSerializer(data=request.data)
    s.is_valid(raise_exception=True)
    d = s.validated_data
    result = ApprovalOrchestrator().cancel(booking_id, request.user, d.get('reason', ''), notes=d.get('notes', ''))
    return render(result)


@api_view(['POST'])
@permission_classes([IsAuthenticated, IsAuthorityOrAdmin])
def complete_booking(request, booking_id: int):
    s = CompleteSerializer(data=request.data)
    s.is_valid(raise_exception=True)
    result = ApprovalOrchestrator().complete(booking_id, request.user, notes=s.validated_data.get('notes', ''))
    return render(result)


@api_view(['GET'])
@permission_classes([IsAuthenticated, IsAuthorityOrAdmin])
def pending_bookings(request, hospital_id: int):
    q = PendingQuerySerializer(data=request.query_params)
    q.is_valid(raise_exception=True)
    d = q.validated_data
    result = ApprovalOrchestrator().get_pending_bookings(
        hospital_id, request.user,
        urgency=d.get('urgency'), resource_type=d.get('resourceType'),
        sort_by=d.get('sortBy', 'urgency'), sort_order=d.get('sortOrder', 'asc'), limit=d.get('limit'),
    )
    return render(result)


@api_view(['GET'])
@permission_classes([IsAuthenticated])
def my_bookings(request):
    return render(ApprovalOrchestrator().get_user_bookings(request.user))


@api_view(['GET'])
@permission_classes([IsAuthenticated, IsAuthorityOrAdmin])
def booking_history(request, hospital_id: int):
    q = BookingHistoryQuerySerializer(data=request.query_params)
    q.is_valid(raise_exception=True)
    d = q.validated_data
    result = ApprovalOrchestrator().get_booking_history(
        hospital_id, request.user,
        status=d.get('status'), start=d.get('startDate'), end=d.get('endDate'),
        limit=d.get('limit', 10), offset=d.get('offset', 0),
    )
    return render(result)


@api_view(['POST'])
@permission_classes([IsAuthenticated, IsPlatformAdmin])
def expire_bookings(request):
    s = ExpireSerializer(data=request.data)
    s.is_valid(raise_exception=True)
    return render(ApprovalOrchestrator().process_expired_bookings(hospital_id=s.validated_data.get('hospitalId')))


@api_view(['GET'])
@permission_classes([IsAuthenticated, IsAuthorityOrAdmin])
def booking_consistency(request, booking_id: int):
    orchestrator = ApprovalOrchestrator()
    booking = orchestrator.store.get_booking(booking_id)
    if booking is not None and not orchestrator.directory.can_manage(request.user, booking.hospital_id):
        raise AccessDeniedError("You are not allowed to inspect this booking", booking_id=booking_id)
    report = ReconciliationChecker(store=orchestrator.store, directory=orchestrator.directory) \
        .validate_data_consistency(booking_id)
    return Response({'success': True, 'message': '', 'data': report.as_dict()})
