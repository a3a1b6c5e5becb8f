"""Celery tasks for conversation housekeeping."""

from celery import shared_task


@shared_task
def sweep_expired_sessions_task(batch_size=None):
    """
    Periodic sweep of expired conversation sessions.

    Runs on the beat schedule with a bounded batch; readers already treat
    expired sessions as absent, so a delayed sweep only costs storage.
    """
    from conversations.store import SessionStore

    return SessionStore().sweep_expired(batch_size)
