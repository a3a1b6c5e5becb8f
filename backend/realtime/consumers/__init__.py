"""Realtime consumers for WebSocket communication."""

from .base import BaseConsumer
from .user_consumer import UserEventsConsumer

__all__ = [
    "BaseConsumer",
    "UserEventsConsumer",
]
