"""
Conversation session storage with TTL.

A session past `expires_at` is absent for every reader, whether or not the
sweep has purged it yet. Each mutation touches a single row inside its own
transaction; sessions of different users never coordinate.
"""

import logging
from datetime import timedelta
from typing import Any, Dict, Optional

from django.conf import settings
from django.core.exceptions import ImproperlyConfigured
from django.db import IntegrityError, transaction
from django.utils import timezone

from common.exceptions import DuplicateSessionError, ExpiredError, NotFoundError
from conversations.models import ConversationSession

logger = logging.getLogger(__name__)

COLLISION_POLICIES = ('reject', 'replace')


def default_ttl() -> timedelta:
    return timedelta(minutes=getattr(settings, "SESSION_TTL_MINUTES", 10))


class SessionStore:
    """
    create / get / update / extend / destroy over ConversationSession rows.

    `policy` decides what `create` does when the user already holds an
    unexpired session: `reject` raises DuplicateSessionError, `replace`
    discards the old session.
    """

    def __init__(self, policy: Optional[str] = None):
        policy = policy or getattr(settings, "SESSION_COLLISION_POLICY", "replace")
        if policy not in COLLISION_POLICIES:
            raise ImproperlyConfigured(
                f"SESSION_COLLISION_POLICY must be one of {', '.join(COLLISION_POLICIES)}, got {policy!r}"
            )
        self.policy = policy

    def create(
        self,
        user_id: str,
        initial_payload: Optional[Dict[str, Any]] = None,
        ttl: Optional[timedelta] = None,
    ) -> ConversationSession:
        user_id = str(user_id)
        now = timezone.now()
        expires_at = now + (ttl or default_ttl())

        with transaction.atomic():
            existing = ConversationSession.objects.select_for_update().filter(user_id=user_id).first()
            if existing is not None:
                if not existing.is_expired(now) and self.policy == 'reject':
                    raise DuplicateSessionError("You already have a conversation in progress")
                logger.debug("Replacing session %s for user %s", existing.pk, user_id)
                existing.delete()

            try:
                with transaction.atomic():
                    session = ConversationSession.objects.create(
                        user_id=user_id,
                        payload=dict(initial_payload or {}),
                        expires_at=expires_at,
                    )
            except IntegrityError:
                # Another create for the same user committed first
                raise DuplicateSessionError("You already have a conversation in progress")

        logger.debug("Created session %s for user %s", session.pk, user_id)
        return session

    def get(self, user_id: str) -> Optional[ConversationSession]:
        session = ConversationSession.objects.filter(user_id=str(user_id)).first()
        if session is None:
            return None
        if session.is_expired():
            # Purge only if nobody extended or replaced it meanwhile
            ConversationSession.objects.filter(pk=session.pk, expires_at__lte=timezone.now()).delete()
            return None
        return session

    def update(self, session_id, patch: Dict[str, Any]) -> ConversationSession:
        """Merge `patch` into the payload; later keys override earlier ones."""
        with transaction.atomic():
            session = self._locked(session_id)
            session.payload = {**session.payload, **patch}
            session.save(update_fields=['payload', 'updated_at'])
        return session

    def extend(self, session_id, ttl: Optional[timedelta] = None) -> ConversationSession:
        """Push the expiry forward from now."""
        with transaction.atomic():
            session = self._locked(session_id)
            session.expires_at = timezone.now() + (ttl or default_ttl())
            session.save(update_fields=['expires_at', 'updated_at'])
        return session

    def destroy(self, session_id) -> bool:
        """Delete the session. False when it was already gone, e.g. destroyed concurrently."""
        deleted, _ = ConversationSession.objects.filter(pk=session_id).delete()
        return deleted > 0

    def sweep_expired(self, batch_size: Optional[int] = None) -> int:
        """
        Delete up to `batch_size` expired sessions.

        Returns:
            Number of sessions deleted
        """
        batch_size = batch_size or getattr(settings, "SESSION_SWEEP_BATCH_SIZE", 500)
        now = timezone.now()
        expired_ids = list(
            ConversationSession.objects.filter(expires_at__lte=now)
            .order_by('expires_at')
            .values_list('pk', flat=True)[:batch_size]
        )
        if not expired_ids:
            return 0

        # Rows extended since the select above survive
        deleted, _ = ConversationSession.objects.filter(pk__in=expired_ids, expires_at__lte=now).delete()
        logger.info("Swept %d expired session(s)", deleted)
        return deleted

    def _locked(self, session_id) -> ConversationSession:
        try:
            session = ConversationSession.objects.select_for_update().get(pk=session_id)
        except ConversationSession.DoesNotExist:
            raise NotFoundError("Session not found")
        if session.is_expired():
            raise ExpiredError("Session has expired")
        return session
