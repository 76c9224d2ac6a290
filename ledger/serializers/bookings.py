import re

import bleach
from rest_framework import serializers

from ledger.models import Booking, ResourcePool

PHONE_RE = re.compile(r'^[\d\s\-\+\(\)]+$')


def _clean(value, minimum=0, label='Value'):
    value = bleach.clean((value or '').strip(), strip=True)
    if len(value) < minimum:
        raise serializers.ValidationError(f'{label} must be at least {minimum} characters')
    return value


class BookingCreateSerializer(serializers.Serializer):
    hospitalId = serializers.IntegerField(min_value=1)
    userId = serializers.IntegerField(required=False, min_value=1)
    resourceType = serializers.ChoiceField(choices=ResourcePool.RESOURCE_TYPES)
    patientName = serializers.CharField(max_length=255)
    patientAge = serializers.IntegerField(min_value=1, max_value=150)
    patientGender = serializers.ChoiceField(choices=[c for c, _ in Booking.GENDER_CHOICES])
    medicalCondition = serializers.CharField(max_length=2000)
    urgency = serializers.ChoiceField(choices=[c for c, _ in Booking.URGENCY_CHOICES], required=False)
    emergencyContactName = serializers.CharField(max_length=255)
    emergencyContactPhone = serializers.CharField(max_length=32)
    emergencyContactRelationship = serializers.CharField(max_length=64)
    scheduledDate = serializers.DateTimeField()
    estimatedDuration = serializers.IntegerField(required=False, min_value=1, max_value=168)
    resourcesAllocated = serializers.IntegerField(required=False, min_value=1)
    paymentAmount = serializers.DecimalField(required=False, max_digits=12, decimal_places=2, min_value=0)
    notes = serializers.CharField(required=False, allow_blank=True, max_length=2000)

    def validate_patientName(self, v):
        return _clean(v, 2, 'Patient name')

    def validate_medicalCondition(self, v):
        return _clean(v, 5, 'Medical condition')

    def validate_emergencyContactName(self, v):
        return _clean(v, 2, 'Contact name')

    def validate_emergencyContactRelationship(self, v):
        return _clean(v, 2, 'Relationship')

    def validate_emergencyContactPhone(self, v):
        v = _clean(v)
        if not PHONE_RE.match(v):
            raise serializers.ValidationError('Invalid phone number format')
        return v

    def validate_notes(self, v):
        return _clean(v)

    def to_booking_input(self) -> dict:
        d = self.validated_data
        data = {
            'hospital_id': d['hospitalId'],
            'user_id': d.get('userId'),
            'resource_type': d['resourceType'],
            'patient_name': d['patientName'],
            'patient_age': d['patientAge'],
            'patient_gender': d['patientGender'],
            'medical_condition': d['medicalCondition'],
            'urgency': d.get('urgency'),
            'emergency_contact_name': d['emergencyContactName'],
            'emergency_contact_phone': d['emergencyContactPhone'],
            'emergency_contact_relationship': d['emergencyContactRelationship'],
            'scheduled_date': d['scheduledDate'],
            'estimated_duration_hours': d.get('estimatedDuration'),
            'resources_allocated': d.get('resourcesAllocated'),
            'payment_amount': d.get('paymentAmount'),
            'notes': d.get('notes'),
        }
        return {k: v for k, v in data.items() if v is not None}


class ApproveSerializer(serializers.Serializer):
    notes = serializers.CharField(required=False, allow_blank=True, max_length=2000)
    resourcesAllocated = serializers.IntegerField(required=False, min_value=1)
    scheduledDate = serializers.DateTimeField(required=False)
    autoAllocateResources = serializers.BooleanField(required=False, default=True)

    def validate_notes(self, v):
        return _clean(v)


class DeclineSerializer(serializers.Serializer):
    # reason presence is checked by the workflow so the message stays stable
    reason = serializers.CharField(required=False, allow_blank=True, max_length=255)
    notes = serializers.CharField(required=False, allow_blank=True, max_length=2000)
    alternativeSuggestions = serializers.ListField(
        child=serializers.CharField(max_length=255), required=False, default=list,
    )

    def validate_reason(self, v):
        return _clean(v)

    def validate_notes(self, v):
        return _clean(v)

    def validate_alternativeSuggestions(self, v):
        return [s for s in (_clean(item) for item in v) if s]


class CancelSerializer(serializers.Serializer):
    reason = serializers.CharField(required=False, allow_blank=True, max_length=255)
    notes = serializers.CharField(required=False, allow_blank=True, max_length=2000)

    def validate_reason(self, v):
        return _clean(v)

    def validate_notes(self, v):
        return _clean(v)


class CompleteSerializer(serializers.Serializer):
    notes = serializers.CharField(required=False, allow_blank=True, max_length=2000)

    def validate_notes(self, v):
        return _clean(v)


class PendingQuerySerializer(serializers.Serializer):
    urgency = serializers.ChoiceField(choices=[c for c, _ in Booking.URGENCY_CHOICES], required=False)
    resourceType = serializers.ChoiceField(choices=ResourcePool.RESOURCE_TYPES, required=False)
    sortBy = serializers.ChoiceField(choices=['urgency', 'date', 'patient', 'amount'], required=False,
                                     default='urgency')
    sortOrder = serializers.ChoiceField(choices=['asc', 'desc'], required=False, default='asc')
    limit = serializers.IntegerField(required=False, min_value=1, max_value=500)


class BookingHistoryQuerySerializer(serializers.Serializer):
    status = serializers.ChoiceField(choices=[c for c, _ in Booking.STATUS_CHOICES], required=False)
    startDate = serializers.DateTimeField(required=False)
    endDate = serializers.DateTimeField(required=False)
    limit = serializers.IntegerField(required=False, min_value=1, max_value=100, default=10)
    offset = serializers.IntegerField(required=False, min_value=0, default=0)


class ExpireSerializer(serializers.Serializer):
    hospitalId = serializers.IntegerField(required=False, min_value=1)
