import uuid

from django.db import models
from django.utils import timezone


class ConversationSession(models.Model):
    """Per-user chat flow state; at most one per user"""

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    user_id = models.CharField(max_length=64, unique=True)

    # flow, current_step and the fields collected so far
    payload = models.JSONField(default=dict)

    expires_at = models.DateTimeField(db_index=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = 'conversation_sessions'

    def __str__(self):
        return f"Session {self.user_id} ({self.payload.get('flow', '-')})"

    def is_expired(self, now=None) -> bool:
        return self.expires_at <= (now or timezone.now())
