"""
Notification helpers for sending messages to chat users.

Every user (customer or worker) has a personal channel group `user_<id>`.
The chat transport relay (see consumers.py) listens on those groups and
forwards each event to the user. Delivery is best effort / at-least-once:
a failed send is logged and never interrupts the caller.
"""

from __future__ import annotations

import logging
import re
from typing import Any, Dict, Optional

from asgiref.sync import async_to_sync
from channels.layers import get_channel_layer

logger = logging.getLogger(__name__)

# Channel group names allow ASCII alphanumerics, hyphens, underscores and periods
_GROUP_UNSAFE = re.compile(r"[^0-9A-Za-z\-_.]")


def user_group_name(user_id: Any) -> str:
    """Personal group name for a chat user id."""
    return "user_" + _GROUP_UNSAFE.sub("-", str(user_id))[:90]


def build_event(message: str, data: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    return {
        "type": "user.notify",
        "message": message,
        "data": data or {},
    }


def notify_user(user_id: Any, message: str, data: Optional[Dict[str, Any]] = None) -> bool:
    """
    Send a message (and optional structured data) to one chat user.

    Returns:
        True if the event was handed to the channel layer
    """
    channel_layer = get_channel_layer()
    if channel_layer is None:
        logger.warning("No channel layer available, dropping notification for %s", user_id)
        return False

    event_type = (data or {}).get("event", "message")
    try:
        logger.debug("Notifying %s (%s)", user_id, event_type)
        async_to_sync(channel_layer.group_send)(user_group_name(user_id), build_event(message, data))
        return True
    except Exception:
        logger.exception("Failed to notify user %s (%s)", user_id, event_type)
        return False

