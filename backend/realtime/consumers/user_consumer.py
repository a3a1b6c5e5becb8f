"""Relay consumer: streams one chat user's notifications to the chat transport."""

import logging
from typing import Any, Dict, List

from realtime.notifications import user_group_name
from .base import BaseConsumer

logger = logging.getLogger(__name__)


class UserEventsConsumer(BaseConsumer):
    """
    Joined to the personal group `user_<id>`; every notify_user() call for
    that user arrives here and is forwarded as a `notification` message.
    """

    def get_groups(self) -> List[str]:
        self.user_id = self.scope["url_route"]["kwargs"]["user_id"]
        return [user_group_name(self.user_id)]

    async def on_connect(self):
        await self.send_json({
            "type": "connection_established",
            "user_id": self.user_id,
        })

    async def handle_message(self, msg_type: str, data: Dict[str, Any]):
        if msg_type == "ping":
            await self.send_json({"type": "pong"})
            return
        await super().handle_message(msg_type, data)

    # ---------------------- Group Event Handlers ----------------------

    async def user_notify(self, event):
        """Sent by notify_user() to this user's group."""
        await self.send_json({
            "type": "notification",
            "user_id": self.user_id,
            "message": event.get("message", ""),
            "data": event.get("data", {}),
        })
