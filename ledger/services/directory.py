"""
Hospital and user lookups used for eligibility and permission checks.

:class:`Directory` holds the policy (who may book, who acts for which
hospital); subclasses only provide ``find_hospital`` and ``find_user``.
"""
from __future__ import annotations

from typing import Optional

from ledger.models import Hospital, User


class Directory:

    def find_hospital(self, hospital_id) -> Optional[Hospital]:
        raise NotImplementedError

    def find_user(self, user_id) -> Optional[User]:
        raise NotImplementedError

    def accepts_bookings(self, hospital) -> bool:
        return bool(hospital and hospital.is_active and hospital.approval_status == Hospital.APPROVAL_APPROVED)

    def is_platform_admin(self, user) -> bool:
        return bool(user and (getattr(user, 'role', None) == User.ROLE_ADMIN or getattr(user, 'is_superuser', False)))

    def authority_for(self, user):
        """Hospital id a hospital-authority user acts for, else ``None``."""
        if user and getattr(user, 'role', None) == User.ROLE_AUTHORITY:
            return getattr(user, 'hospital_id', None)
        return None

    def can_manage(self, user, hospital_id) -> bool:
        if self.is_platform_admin(user):
            return True
        managed = self.authority_for(user)
        return managed is not None and managed == hospital_id


class ModelDirectory(Directory):
    """Directory backed by the ``Hospital`` and ``User`` tables."""

    def find_hospital(self, hospital_id):
        return Hospital.objects.filter(id=hospital_id).first()

    def find_user(self, user_id):
        return User.objects.filter(id=user_id).first()
