"""Resource pool endpoints for hospital authorities."""
from __future__ import annotations

from rest_framework.decorators import api_view, permission_classes
from rest_framework.exceptions import PermissionDenied
from rest_framework.permissions import IsAuthenticated

from ledger.permissions import IsAuthorityOrAdmin
from ledger.serializers.resources import (
    AvailabilityQuerySerializer, HistoryQuerySerializer, MaintenanceSerializer, ResourceUpdateSerializer,
)
from ledger.services.approvals import ApprovalOrchestrator
from .bookings import render


@api_view(['GET', 'PUT'])
@permission_classes([IsAuthenticated])
def hospital_resources(request, hospital_id: int):
    orchestrator = ApprovalOrchestrator()
    if request.method == 'GET':
        return render(orchestrator.get_resources(hospital_id))
    if not IsAuthorityOrAdmin().has_permission(request, None):
        raise PermissionDenied("Only hospital authorities can update resources")
    s = ResourceUpdateSerializer(data=request.data)
    s.is_valid(raise_exception=True)
    return render(orchestrator.update_resources(hospital_id, request.user, s.validated_data['resources']))


@api_view(['POST'])
@permission_classes([IsAuthenticated, IsAuthorityOrAdmin])
def initialize_resources(request, hospital_id: int):
    return render(ApprovalOrchestrator().initialize_resources(hospital_id, request.user))


@api_view(['POST'])
@permission_classes([IsAuthenticated, IsAuthorityOrAdmin])
def update_maintenance(request, hospital_id: int, resource_type: str):
    s = MaintenanceSerializer(data=request.data)
    s.is_valid(raise_exception=True)
    d = s.validated_data
    result = ApprovalOrchestrator().update_maintenance(
        hospital_id, request.user, resource_type, d['maintenance'], d.get('reason', ''),
    )
    return render(result)


@api_view(['GET'])
@permission_classes([IsAuthenticated])
def resource_availability(request, hospital_id: int, resource_type: str):
    q = AvailabilityQuerySerializer(data=request.query_params)
    q.is_valid(raise_exception=True)
    return render(ApprovalOrchestrator().check_availability(hospital_id, resource_type, q.validated_data['quantity']))


@api_view(['GET'])
@permission_classes([IsAuthenticated, IsAuthorityOrAdmin])
def resource_utilization(request, hospital_id: int):
    return render(ApprovalOrchestrator().get_utilization(hospital_id, request.user))


@api_view(['GET'])
@permission_classes([IsAuthenticated, IsAuthorityOrAdmin])
def resource_history(request, hospital_id: int):
    q = HistoryQuerySerializer(data=request.query_params)
    q.is_valid(raise_exception=True)
    d = q.validated_data
    result = ApprovalOrchestrator().get_resource_history(
        hospital_id, request.user,
        resource_type=d.get('resourceType'), change_type=d.get('changeType'),
        start=d.get('startDate'), end=d.get('endDate'), limit=d.get('limit'),
    )
    return render(result)
