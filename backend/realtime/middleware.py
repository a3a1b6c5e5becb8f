"""WebSocket authentication middleware for the chat transport relay."""

import hmac
import logging
from urllib.parse import parse_qs

from channels.middleware import BaseMiddleware
from django.conf import settings

logger = logging.getLogger(__name__)


class BotSecretAuthMiddleware(BaseMiddleware):
    """
    Authenticate relay WebSocket connections using either:
    1. The shared secret in querystring (?secret=...)
    2. The X-Bot-Secret handshake header
    Every connection is accepted while BOT_WEBHOOK_SECRET is empty.
    """

    async def __call__(self, scope, receive, send):
        expected = getattr(settings, "BOT_WEBHOOK_SECRET", "")
        scope["relay_authenticated"] = not expected or hmac.compare_digest(self._provided(scope), expected)
        if not scope["relay_authenticated"]:
            logger.debug("Relay connection with invalid secret to %s", scope.get("path"))
        return await super().__call__(scope, receive, send)

    @staticmethod
    def _provided(scope) -> str:
        params = parse_qs(scope.get("query_string", b"").decode())
        secret_list = params.get("secret")
        if secret_list:
            return secret_list[0]

        for name, value in scope.get("headers", []):
            if name.lower() == b"x-bot-secret":
                return value.decode()
        return ""
