"""
Error kinds raised by the ledger and the unified API exception handler.

Every business failure is a :class:`LedgerError` subclass carrying a
stable ``code``, an HTTP status for the API layer and a user-facing
message.  Extra keyword context (for example the current and rejected
status of a transition) is exposed alongside the message.
"""
from rest_framework.views import exception_handler as drf_exception_handler
from rest_framework.response import Response


class LedgerError(Exception):
    code = 'ledger_error'
    http_status = 400
    default_message = 'Operation failed'

    def __init__(self, message=None, **context):
        self.message = message or self.default_message
        self.context = context
        super().__init__(self.message)

    def as_dict(self) -> dict:
        return {'code': self.code, 'message': self.message, **self.context}


class BookingValidationError(LedgerError):
    """Malformed input, rejected before any mutation."""
    code = 'validation_error'
    http_status = 400
    default_message = 'Invalid input'


class NotFoundError(LedgerError):
    code = 'not_found'
    http_status = 404
    default_message = 'Not found'


class AccessDeniedError(LedgerError):
    code = 'permission_denied'
    http_status = 403
    default_message = 'You do not have permission to perform this action'


class ConflictError(LedgerError):
    code = 'conflict'
    http_status = 409
    default_message = 'Conflicting request'


class CapacityError(ConflictError):
    code = 'insufficient_capacity'
    default_message = 'Insufficient resources available'


class StateError(LedgerError):
    code = 'invalid_state'
    http_status = 409
    default_message = 'Invalid status transition'


class ConsistencyError(LedgerError):
    """A ledger invariant is broken; never corrected automatically."""
    code = 'consistency_error'
    http_status = 500
    default_message = 'Ledger consistency violated'


def api_exception_handler(exc, context):
    if isinstance(exc, LedgerError):
        return Response({'success': False, 'message': exc.message, 'error': exc.as_dict()}, status=exc.http_status)
    resp = drf_exception_handler(exc, context)
    if resp is None:
        return Response({'success': False, 'message': 'Internal server error',
                         'error': {'code': 'server_error', 'message': 'Internal server error'}}, status=500)
    # normalize response
    detail = None
    if isinstance(resp.data, dict):
        detail = resp.data.get('detail') or resp.data
    else:
        detail = str(resp.data)
    message = detail if isinstance(detail, str) else 'Invalid request'
    return Response({'success': False, 'message': message, 'error': {'code': 'api_error', 'message': detail}},
                    status=resp.status_code)
