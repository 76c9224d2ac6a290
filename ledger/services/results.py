"""Uniform result values returned by the orchestrator."""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Optional

from ledger.exceptions import LedgerError


@dataclass
class OperationResult:
    success: bool
    message: str = ''
    data: Any = None
    error: Optional[LedgerError] = field(default=None, repr=False)

    @classmethod
    def ok(cls, data=None, message: str = '') -> 'OperationResult':
        return cls(success=True, message=message, data=data)

    @classmethod
    def failure(cls, error: LedgerError) -> 'OperationResult':
        return cls(success=False, message=error.message, error=error)

    @property
    def error_code(self) -> Optional[str]:
        return self.error.code if self.error else None

    @property
    def http_status(self) -> int:
        if self.error is not None:
            return self.error.http_status
        return 200

    def as_payload(self) -> dict:
        if self.success:
            return {'success': True, 'message': self.message, 'data': self.data}
        return {'success': False, 'message': self.message, 'error': self.error.as_dict()}
