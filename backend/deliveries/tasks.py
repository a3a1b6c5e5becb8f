"""Celery tasks for offer timers and negotiation housekeeping."""

from celery import shared_task
import logging

logger = logging.getLogger(__name__)


@shared_task
def expire_offer_task(offer_id: int):
    """
    Celery task to expire a task offer once its window has elapsed.

    This task is scheduled when an offer is sent to a worker.
    If the worker hasn't responded, the offer is expired and
    the negotiation moves on to the next candidate. Offers that
    were already answered or superseded are left untouched.
    """
    from services.matching import expire_offer

    expired = expire_offer(offer_id)
    if expired:
        logger.info("Expired offer %s", offer_id)
    else:
        logger.debug("Offer %s already resolved, timer ignored", offer_id)
    return expired


@shared_task
def reconcile_offers_task():
    """Periodic recovery for offered tasks whose timers were lost (worker crash, broker flush)."""
    from services.matching import reconcile_stale_offering

    recovered = reconcile_stale_offering()
    if recovered:
        logger.info("Reconciled %d stale offering task(s)", recovered)
    return recovered
