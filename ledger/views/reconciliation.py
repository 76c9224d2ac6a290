from rest_framework.decorators import api_view, permission_classes
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response

from ledger.permissions import IsPlatformAdmin
from ledger.serializers.resources import IntegrityQuerySerializer
from ledger.services.reconciliation import ReconciliationChecker


@api_view(['GET'])
@permission_classes([IsAuthenticated, IsPlatformAdmin])
def integrity_checks(request):
    q = IntegrityQuerySerializer(data=request.query_params)
    q.is_valid(raise_exception=True)
    d = q.validated_data
    results = ReconciliationChecker().run_integrity_checks(
        hospital_id=d.get('hospitalId'), status=d.get('status'), limit=d.get('limit'),
    )
    return Response({'success': True, 'message': 'Integrity check completed', 'data': results})
