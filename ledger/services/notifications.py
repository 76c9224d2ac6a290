"""
Post-commit booking notifications over the Channels layer.

Each event goes to ``hospital.<id>`` (the hospital's authorities) and
``user.<id>`` (the booking owner) as a ``booking.event`` message, which
:class:`ledger.realtime.consumers.BookingUpdatesConsumer` relays to
WebSocket clients.  Delivery is best effort; callers log failures.
"""
from __future__ import annotations

from asgiref.sync import async_to_sync
from channels.layers import get_channel_layer
from django.conf import settings
from django.utils import timezone


def hospital_group(hospital_id) -> str:
    return f"hospital.{hospital_id}"


def user_group(user_id) -> str:
    return f"user.{user_id}"


class Notifier:
    def dispatch(self, action: str, booking, metadata=None) -> None:
        raise NotImplementedError


class ChannelsNotifier(Notifier):

    def dispatch(self, action, booking, metadata=None) -> None:
        if not getattr(settings, 'LEDGER_NOTIFICATIONS_ENABLED', True):
            return
        channel_layer = get_channel_layer()
        if channel_layer is None:
            return
        payload = {
            'type': 'booking.event',
            'action': action,
            'bookingId': booking.id,
            'bookingReference': booking.booking_reference,
            'hospitalId': booking.hospital_id,
            'resourceType': booking.resource_type,
            'status': booking.status,
            'metadata': metadata or {},
            'ts': timezone.now().isoformat(),
        }
        for group in (hospital_group(booking.hospital_id), user_group(booking.user_id)):
            async_to_sync(channel_layer.group_send)(group, payload)
