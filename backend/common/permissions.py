# common/permissions.py
import hmac

from django.conf import settings
from rest_framework.permissions import BasePermission


class HasBotSecret(BasePermission):
    """
    Allows access only to callers presenting the chat transport's shared secret
    in the X-Bot-Secret header. Open when BOT_WEBHOOK_SECRET is empty.
    """
    message = "Invalid or missing bot secret"

    def has_permission(self, request, view):
        expected = getattr(settings, "BOT_WEBHOOK_SECRET", "")
        if not expected:
            return True
        provided = request.headers.get("X-Bot-Secret", "")
        return hmac.compare_digest(provided, expected)
