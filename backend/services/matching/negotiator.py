"""
Offer negotiation for new tasks.

Drives one task from `pending` to exactly one accepted worker, or to
`exhausted` when no candidate takes it:

1. Each round queues the nearest available candidates (offer_builder)
2. Up to MATCHING_OFFER_FANOUT queued offers are sent at once, each with
   its own Celery expiry timer
3. A decline or expiry immediately sends the next queued offer
4. An empty queue opens the next round with a wider radius
5. After MATCHING_ROUNDS rounds the task is marked exhausted

First accept wins: every contested step is a conditional update (offer
`pending -> accepted`, task `offered -> accepted`), so only one worker can
ever be assigned and a late response finds nothing left to change.
"""

import logging
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Any, Dict, List, Optional

from django.conf import settings
from django.db import transaction
from django.utils import timezone

from common.exceptions import (
    ConflictError,
    ExpiredError,
    NotFoundError,
    OfferNotFoundError,
    WorkerNotAvailableError,
)
from common.utils import calculate_distance
from customers.services import customer_contact
from deliveries.models import Offer, Task
from deliveries.store import task_store
from deliveries.tasks import expire_offer_task
from realtime.notifications import notify_user
from workers.models import Worker
from workers.services import claim_availability, is_exclusive_role, release_availability
from .offer_builder import build_offer_round

logger = logging.getLogger(__name__)

# Task statuses in which the negotiation may still send offers
NEGOTIABLE_STATUSES = ('pending', 'offered', 'exhausted')


@dataclass
class NegotiationResult:
    """Where a negotiation stands after the latest step."""
    task: Task
    outcome: str  # "offering", "exhausted" or "resolved"
    dispatched: int = 0


@dataclass
class OfferResult:
    """Result object for a worker's response to an offer."""
    success: bool
    task: Optional[Task] = None
    offer: Optional[Offer] = None
    message: str = ""
    superseded: bool = False
    extra: Dict[str, Any] = field(default_factory=dict)


# ===================== Configuration =====================

def offer_window() -> timedelta:
    return timedelta(seconds=getattr(settings, "OFFER_WINDOW_SECONDS", 60))


def initial_radius(role: str) -> float:
    radii = getattr(settings, "MATCHING_INITIAL_RADIUS_METERS", {})
    return float(radii.get(role, 3000))


def next_radius(task: Task) -> float:
    if task.search_radius <= 0:
        return initial_radius(task.worker_role)
    return task.search_radius * getattr(settings, "MATCHING_RADIUS_MULTIPLIER", 2.0)


# ===================== Negotiation =====================

def start_negotiation(task: Task) -> NegotiationResult:
    """
    Begin matching a freshly created task.

    Raises:
        ConflictError: the task is not pending or was already started
    """
    rounds = getattr(settings, "MATCHING_ROUNDS", 3)
    started = Task.objects.filter(pk=task.pk, status='pending', max_rounds=0).update(max_rounds=rounds)
    if not started:
        raise ConflictError(f"Negotiation for task {task.pk} already started")

    logger.info("Starting negotiation for %s %s (%d rounds)", task.kind, task.pk, rounds)
    return advance(task)


def retry_negotiation(task_id, customer_id: str) -> NegotiationResult:
    """
    Give an exhausted task a new search: another set of rounds starting
    again from the initial radius. Workers asked during the earlier search
    may be offered the task again, since they may be free by now.
    """
    task = task_store.get(task_id)
    if task.customer_id != str(customer_id):
        raise NotFoundError(f"Task {task_id} not found")
    if task.status != 'exhausted':
        raise ConflictError("Only tasks that found no worker can be retried")

    rounds = getattr(settings, "MATCHING_ROUNDS", 3)
    reopened = Task.objects.filter(
        pk=task.pk,
        status='exhausted',
        negotiation_round=task.negotiation_round,
    ).update(
        max_rounds=task.negotiation_round + rounds,
        first_round=task.negotiation_round + 1,
        search_radius=0,
    )
    if not reopened:
        raise ConflictError("This task is already being retried")

    logger.info("Retrying negotiation for task %s", task.pk)
    return advance(task)


def advance(task: Task) -> NegotiationResult:
    """
    Keep a negotiation moving: send queued offers, open the next round when
    the queue is empty, or give up once every round is used.
    """
    while True:
        task = task_store.get(task.pk)
        if task.status not in NEGOTIABLE_STATUSES:
            return NegotiationResult(task=task, outcome="resolved")

        dispatched = dispatch_next_offers(task)
        if dispatched or _outstanding_offers(task).exists():
            return NegotiationResult(task=task_store.get(task.pk), outcome="offering", dispatched=dispatched)

        if _queued_offers(task).exists():
            # A concurrent dispatcher holds the next offer, or the task left negotiation
            continue

        if task.negotiation_round < task.max_rounds:
            radius = next_radius(task)
            claimed = task_store.advance_round(task, radius)
            if claimed is None:
                # Another caller opened this round first
                continue
            build_offer_round(claimed, radius)
            continue

        return _exhaust(task)


def dispatch_next_offers(task: Task) -> int:
    """
    Send queued offers until MATCHING_OFFER_FANOUT offers are outstanding.

    Returns:
        Number of offers sent
    """
    fanout = max(1, getattr(settings, "MATCHING_OFFER_FANOUT", 1))
    dispatched = 0

    while _outstanding_offers(task).count() < fanout:
        offer = _queued_offers(task).select_related('worker').first()
        if offer is None:
            break

        if not Worker.objects.filter(pk=offer.worker_id, is_available=True).exists():
            # Never offer to an unavailable worker: skip the queued entry
            Offer.objects.filter(pk=offer.pk, status='pending', sent_at__isnull=True).update(
                status='expired',
                responded_at=timezone.now(),
            )
            logger.debug("Skipped offer %s: worker %s no longer available", offer.pk, offer.worker_id)
            continue

        if not _ensure_offering(task):
            break

        if _send_offer(task, offer):
            dispatched += 1

    return dispatched


def _send_offer(task: Task, offer: Offer) -> bool:
    """Claim a queued offer, start its timer and tell the worker."""
    now = timezone.now()
    window = offer_window()
    deadline = now + window

    claimed = Offer.objects.filter(pk=offer.pk, status='pending', sent_at__isnull=True).update(
        sent_at=now,
        deadline=deadline,
    )
    if not claimed:
        return False

    try:
        expire_offer_task.apply_async((offer.pk,), countdown=window.total_seconds())
    except Exception:
        # Reconciliation expires the offer once its deadline has passed
        logger.exception("Failed to schedule expiry for offer %s", offer.pk)

    worker = offer.worker
    distance = None
    if worker.has_location:
        distance = round(calculate_distance(task.latitude, task.longitude, worker.latitude, worker.longitude))

    logger.debug("Dispatching offer %s to worker %s for task %s", offer.pk, worker.external_id, task.pk)
    notify_user(
        worker.external_id,
        _offer_message(task, window),
        {
            "event": "task_offer",
            "task_id": str(task.pk),
            "offer_id": offer.pk,
            "kind": task.kind,
            "deadline": deadline.isoformat(),
            "distance_meters": distance,
        },
    )
    return True


def _ensure_offering(task: Task) -> bool:
    """Move the task into `offered` on the first send of a negotiation."""
    current = task_store.get(task.pk)
    if current.status == 'offered':
        return True
    if current.status not in ('pending', 'exhausted'):
        return False
    try:
        task_store.set_status(task.pk, current.status, 'offered')
        return True
    except ConflictError:
        return task_store.get(task.pk).status == 'offered'


def _exhaust(task: Task) -> NegotiationResult:
    if task.status in ('pending', 'offered'):
        try:
            task = task_store.set_status(task.pk, task.status, 'exhausted')
        except ConflictError:
            return NegotiationResult(task=task_store.get(task.pk), outcome="resolved")

    logger.info("Negotiation exhausted for task %s after %d round(s)", task.pk, task.negotiation_round)
    notify_user(
        task.customer_id,
        f"No {task.worker_role} accepted your {task.kind} yet. "
        f"Send /retry {task.pk} to search again or /cancel_task {task.pk} to cancel.",
        {"event": "task_exhausted", "task_id": str(task.pk)},
    )
    return NegotiationResult(task=task, outcome="exhausted")


# ===================== Worker responses =====================

def accept_offer(task_id, worker: Worker) -> OfferResult:
    """
    Accept a task that was offered to this worker.

    The first accept to win the task CAS takes the task; any later accept
    comes back with superseded=True and leaves the task untouched. An
    accept racing the customer's cancel gets a canceled answer instead.

    Raises:
        OfferNotFoundError: the worker holds no live offer for the task
        ExpiredError: the offer window has elapsed
        WorkerNotAvailableError: the worker is offline or busy
    """
    task = task_store.get(task_id)
    offer = _sent_offer(task, worker)

    if offer.status != 'pending':
        if task.status == 'canceled' or _taken_by_other(task.pk, worker):
            return _lost(task.pk, offer, worker)
        if offer.status == 'expired':
            raise ExpiredError("This offer has expired")
        raise OfferNotFoundError("This offer is no longer active for you")

    now = timezone.now()
    if offer.deadline and offer.deadline <= now:
        expire_offer(offer.pk)
        raise ExpiredError("This offer has timed out")

    exclusive = is_exclusive_role(worker.role)
    if exclusive and not Worker.objects.filter(pk=worker.pk, is_available=True).exists():
        raise WorkerNotAvailableError("Go online and finish your current task before accepting new ones")

    lost = False
    others: List[Offer] = []
    with transaction.atomic():
        claimed = Offer.objects.filter(pk=offer.pk, status='pending').update(
            status='accepted',
            responded_at=now,
        )
        if not claimed:
            # Withdrawn between the read above and this update
            lost = True
        else:
            # Taken inside the transaction so one exclusive worker never
            # holds two tasks; raising rolls the offer back to pending
            if exclusive and not claim_availability(worker.pk):
                raise WorkerNotAvailableError("Finish your current task before accepting new ones")
            try:
                task = task_store.assign_worker(task.pk, worker.pk)
            except ConflictError:
                lost = True
                Offer.objects.filter(pk=offer.pk).update(status='expired', responded_at=now)
                if exclusive:
                    release_availability(worker.pk)
            else:
                others = list(
                    Offer.objects.filter(task=task, status='pending')
                    .exclude(pk=offer.pk)
                    .select_related('worker')
                )
                Offer.objects.filter(pk__in=[o.pk for o in others], status='pending').update(
                    status='expired',
                    responded_at=now,
                )

    if lost:
        return _lost(task_id, offer, worker)

    # Offers still being considered are withdrawn
    for other in others:
        if other.sent_at is not None:
            notify_user(
                other.worker.external_id,
                f"The {task.kind} {task.pk} is no longer available.",
                {"event": "offer_superseded", "task_id": str(task.pk)},
            )

    notify_user(
        task.customer_id,
        f"Your {task.kind} has been accepted by {worker.full_name}! "
        f"Contact: {worker.phone_number}.",
        {
            "event": "task_accepted",
            "task_id": str(task.pk),
            "worker_id": worker.external_id,
            "worker_name": worker.full_name,
            "worker_rating": worker.rating,
        },
    )

    logger.info("Task %s accepted by worker %s", task.pk, worker.external_id)
    contact = customer_contact(task.customer_id)
    message = f"You accepted {task.kind} {task.pk}. Send /start {task.pk} when you set off."
    if contact is not None:
        message += f"\nCustomer: {contact['name']}, {contact['phone_number']}"
    return OfferResult(
        success=True,
        task=task,
        offer=offer,
        message=message,
        extra={"customer": contact},
    )


def decline_offer(task_id, worker: Worker) -> OfferResult:
    """
    Decline a pending offer and move the negotiation to the next candidate.

    Raises:
        OfferNotFoundError: the worker holds no live offer for the task
    """
    task = task_store.get(task_id)
    offer = _sent_offer(task, worker)

    declined = Offer.objects.filter(pk=offer.pk, status='pending').update(
        status='declined',
        responded_at=timezone.now(),
    )
    if not declined:
        raise OfferNotFoundError("No active offer found for this task")

    logger.info("Worker %s declined task %s", worker.external_id, task.pk)

    task = task_store.get(task.pk)
    queued_next = False
    if task.status == 'offered':
        result = advance(task)
        queued_next = result.outcome == "offering"

    return OfferResult(
        success=True,
        task=task,
        offer=offer,
        message="Offer declined.",
        extra={"queued_next_worker": queued_next},
    )


def expire_offer(offer_id: int) -> bool:
    """
    Expire an offer whose window elapsed and move on to the next candidate.

    Returns:
        True if this call expired the offer; False for offers that were
        already answered, superseded or expired (late timers are no-ops)
    """
    offer = Offer.objects.select_related('task', 'worker').filter(pk=offer_id).first()
    if offer is None:
        logger.warning("Offer %s not found for expiry", offer_id)
        return False

    if offer.status != 'pending':
        return False

    expired = Offer.objects.filter(pk=offer.pk, status='pending').update(
        status='expired',
        responded_at=timezone.now(),
    )
    if not expired:
        return False

    if offer.sent_at is not None:
        notify_user(
            offer.worker.external_id,
            f"Your offer for {offer.task.kind} {offer.task_id} has timed out.",
            {"event": "offer_expired", "task_id": str(offer.task_id)},
        )

    # Re-check the task: a resolved or canceled task must not be re-offered
    task = task_store.get(offer.task_id)
    if task.status == 'offered':
        advance(task)
    return True


def reconcile_stale_offering() -> int:
    """
    Recover `offered` tasks with no live offer, e.g. after timers were lost
    in a crash: overdue offers are expired and the negotiation continues.

    Returns:
        Number of tasks reconciled
    """
    now = timezone.now()
    reconciled = 0

    for task in task_store.stale_offering(now):
        overdue = Offer.objects.filter(
            task=task,
            status='pending',
            sent_at__isnull=False,
            deadline__lte=now,
        ).update(status='expired', responded_at=now)

        result = advance(task)
        reconciled += 1
        logger.info(
            "Reconciled task %s: %d overdue offer(s) expired, now %s",
            task.pk, overdue, result.outcome
        )

    return reconciled


# ===================== Helpers =====================

def _outstanding_offers(task: Task):
    return Offer.objects.filter(task=task, status='pending', sent_at__isnull=False)


def _queued_offers(task: Task):
    return Offer.objects.filter(task=task, status='pending', sent_at__isnull=True).order_by('round', 'order')


def _sent_offer(task: Task, worker: Worker) -> Offer:
    # Customer retries may offer the same worker again; the latest offer counts
    offer = (
        Offer.objects.filter(task=task, worker=worker, sent_at__isnull=False)
        .order_by('-round')
        .first()
    )
    if offer is None:
        raise OfferNotFoundError("This task was not offered to you")
    return offer


def _taken_by_other(task_id, worker: Worker) -> bool:
    return Task.objects.filter(
        pk=task_id,
        status__in=('accepted', 'in_progress', 'completed'),
    ).exclude(worker=worker).exists()


def _lost(task_id, offer: Offer, worker: Worker) -> OfferResult:
    """Answer for an accept that found the task gone to someone else or canceled."""
    task = task_store.get(task_id)
    if task.status == 'canceled':
        logger.info("Worker %s accepted task %s after it was canceled", worker.external_id, task_id)
        return OfferResult(
            success=False,
            task=task,
            offer=offer,
            message=f"Sorry, the customer canceled this {task.kind}.",
            extra={"reason": "canceled"},
        )
    if task.worker_id is None or task.worker_id == worker.pk:
        raise ExpiredError("This offer is no longer active")

    logger.info("Worker %s lost the race for task %s", worker.external_id, task_id)
    return OfferResult(
        success=False,
        task=task,
        offer=offer,
        superseded=True,
        message="Sorry, this task has already been taken by someone else.",
        extra={"reason": "taken"},
    )


def _offer_message(task: Task, window: timedelta) -> str:
    seconds = int(window.total_seconds())
    if task.kind == 'order':
        details = (
            f"Pickup: {task.address or f'{task.latitude}, {task.longitude}'}\n"
            f"Dropoff: {task.dropoff_address or f'{task.dropoff_latitude}, {task.dropoff_longitude}'}"
        )
    else:
        details = (
            f"Location: {task.address or f'{task.latitude}, {task.longitude}'}\n"
            f"Errand: {task.description}"
        )
    return (
        f"New {task.kind} request!\n"
        f"{details}\n"
        f"Reply /accept {task.pk} or /decline {task.pk} within {seconds} seconds."
    )
