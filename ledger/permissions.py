"""
Role based access control for the ledger API.

These classes only check the role; whether an authority may act on a
particular hospital is decided by the approval workflow.
"""
from rest_framework.permissions import BasePermission

from ledger.models import User

MANAGER_ROLES = {User.ROLE_AUTHORITY, User.ROLE_ADMIN}


class IsAuthorityOrAdmin(BasePermission):
    """Hospital authorities and platform administrators."""
    def has_permission(self, request, view) -> bool:  # type: ignore[override]
        user = getattr(request, "user", None)
        return bool(user and user.is_authenticated and
                    (getattr(user, "role", None) in MANAGER_ROLES or user.is_superuser))


class IsPlatformAdmin(BasePermission):
    """Only platform administrators."""
    def has_permission(self, request, view) -> bool:  # type: ignore[override]
        user = getattr(request, "user", None)
        return bool(user and user.is_authenticated and
                    (getattr(user, "role", None) == User.ROLE_ADMIN or user.is_superuser))
