"""
Build ordered worker offer queues for tasks.

Uses worker locations and distances to create a prioritized list of workers
to offer the task to (closest first) for one negotiation round.
"""

import logging
from typing import List

from django.conf import settings
from django.db import IntegrityError, transaction

from deliveries.models import Task, Offer
from workers.geo_index import find_candidates

logger = logging.getLogger(__name__)


def build_offer_round(task: Task, radius: float) -> List[Offer]:
    """
    Queue the offers for the task's current negotiation round.

    Workers that were offered this task earlier in the same search are
    skipped, so a widened round only reaches new candidates. A customer
    retry starts a new search in which everyone may be asked again.

    Args:
        task: Task whose negotiation_round was just claimed
        radius: Search radius for this round in meters

    Returns:
        Queued (unsent) Offer instances, closest candidate first
    """
    limit = getattr(settings, "MATCHING_MAX_CANDIDATES", 5)
    already_offered = list(
        Offer.objects.filter(task=task, round__gte=task.first_round).values_list("worker_id", flat=True)
    )

    candidates = find_candidates(
        task.point,
        task.worker_role,
        max_distance=radius,
        limit=limit,
        exclude_ids=already_offered,
    )

    offers: List[Offer] = []
    for order, candidate in enumerate(candidates):
        try:
            with transaction.atomic():
                offer = Offer.objects.create(
                    task=task,
                    worker=candidate.worker,
                    round=task.negotiation_round,
                    order=order,
                    status="pending",
                )
        except IntegrityError:
            # Offered concurrently by a recovery pass
            logger.debug("Worker %s already holds an offer for task %s", candidate.worker.pk, task.id)
            continue
        offers.append(offer)

    logger.info(
        "Built %d offers for task %s (round=%s radius=%sm)",
        len(offers), task.id, task.negotiation_round, radius
    )

    return offers
