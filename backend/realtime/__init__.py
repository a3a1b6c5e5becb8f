"""
Realtime app: outbound notifications for chat users.

This app provides:
- notify_user(): group_send to a user's personal channel group
- UserEventsConsumer: WebSocket relay that forwards those events to the
  chat transport
- BotSecretAuthMiddleware: shared-secret check for relay connections

Usage:
    from realtime.notifications import notify_user
"""
