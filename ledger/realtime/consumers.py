import json

from asgiref.sync import sync_to_async
from channels.generic.websocket import AsyncWebsocketConsumer
from django.contrib.auth.models import AnonymousUser

from ledger.services.directory import ModelDirectory
from ledger.services.notifications import hospital_group, user_group


def _groups_for(user) -> list:
    groups = [user_group(user.id)]
    directory = ModelDirectory()
    hospital_id = directory.authority_for(user)
    if hospital_id is not None:
        groups.append(hospital_group(hospital_id))
    return groups


class BookingUpdatesConsumer(AsyncWebsocketConsumer):
    """Relays ``booking.event`` messages to the user and their hospital."""

    async def connect(self):
        user = self.scope.get("user") or AnonymousUser()
        if not user.is_authenticated:
            await self.close(code=4003)
            return
        self.groups_joined = await sync_to_async(_groups_for)(user)
        for group in self.groups_joined:
            await self.channel_layer.group_add(group, self.channel_name)
        await self.accept()
        await self.send(json.dumps({"type": "welcome", "groups": self.groups_joined}))

    async def disconnect(self, close_code):
        for group in getattr(self, "groups_joined", []):
            await self.channel_layer.group_discard(group, self.channel_name)

    async def booking_event(self, event):
        # event: {"type": "booking.event", "action": "...", "bookingId": int, ...}
        payload = {k: v for k, v in event.items() if k != "type"}
        await self.send(json.dumps({"type": "booking", **payload}))
