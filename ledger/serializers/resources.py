import bleach
from rest_framework import serializers

from ledger.models import Booking, ResourceAuditLog, ResourcePool


class ResourceUpdateSerializer(serializers.Serializer):
    """Shape check only; the ledger parses each entry into a closed record."""
    resources = serializers.DictField(child=serializers.DictField())

    def validate_resources(self, v):
        if not v:
            raise serializers.ValidationError('At least one resource type is required')
        unknown = sorted(set(v) - set(ResourcePool.RESOURCE_TYPES))
        if unknown:
            raise serializers.ValidationError(f"Unknown resource types: {', '.join(unknown)}")
        return v


class MaintenanceSerializer(serializers.Serializer):
    maintenance = serializers.IntegerField(min_value=0)
    reason = serializers.CharField(required=False, allow_blank=True, max_length=255)

    def validate_reason(self, v):
        return bleach.clean((v or '').strip(), strip=True)


class AvailabilityQuerySerializer(serializers.Serializer):
    quantity = serializers.IntegerField(required=False, min_value=1, default=1)


class HistoryQuerySerializer(serializers.Serializer):
    resourceType = serializers.ChoiceField(choices=ResourcePool.RESOURCE_TYPES, required=False)
    changeType = serializers.ChoiceField(choices=[c for c, _ in ResourceAuditLog.CHANGE_CHOICES], required=False)
    startDate = serializers.DateTimeField(required=False)
    endDate = serializers.DateTimeField(required=False)
    limit = serializers.IntegerField(required=False, min_value=1, max_value=1000)


class IntegrityQuerySerializer(serializers.Serializer):
    hospitalId = serializers.IntegerField(required=False, min_value=1)
    status = serializers.ChoiceField(choices=[c for c, _ in Booking.STATUS_CHOICES], required=False)
    limit = serializers.IntegerField(required=False, min_value=1)
