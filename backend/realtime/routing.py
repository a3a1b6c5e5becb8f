"""WebSocket URL routing for the realtime app."""

from django.urls import re_path

from .consumers.user_consumer import UserEventsConsumer

websocket_urlpatterns = [
    # Per-user notification relay for the chat transport
    # URL: ws://localhost:8000/ws/users/<user_id>/
    re_path(
        r"ws/users/(?P<user_id>[\w\-.]+)/$",
        UserEventsConsumer.as_asgi(),
        name="user-events-ws"
    ),
]
