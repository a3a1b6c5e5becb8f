"""
Task lifecycle operations outside offer negotiation.

This module contains the business logic for starting, completing,
cancelling and rating tasks once they exist, shared by the chat
orchestrator and the HTTP views.
"""

import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

from django.utils import timezone

from common.exceptions import ConflictError, NotFoundError, ValidationError
from deliveries.models import Offer, Task
from deliveries.store import task_store
from realtime.notifications import notify_user
from workers.models import Worker
from workers.services import is_exclusive_role, record_rating, release_availability

logger = logging.getLogger(__name__)

CANCELLABLE_STATUSES = ('pending', 'offered', 'exhausted', 'accepted', 'in_progress')


@dataclass
class TaskResult:
    """Result object for task lifecycle operations."""
    success: bool
    task: Optional[Task] = None
    message: str = ""
    extra: Optional[Dict[str, Any]] = None


def _customer_task(task_id, customer_id: str) -> Task:
    task = task_store.get(task_id)
    if task.customer_id != str(customer_id):
        raise NotFoundError(f"Task {task_id} not found")
    return task


def _worker_task(task_id, worker: Worker) -> Task:
    task = task_store.get(task_id)
    if task.worker_id != worker.pk:
        raise NotFoundError("Task not found or not assigned to you")
    return task


# ===================== Customer Operations =====================

def cancel_task(task_id, customer_id: str, reason: str = "") -> TaskResult:
    """
    Cancel a task on behalf of its customer.

    Outstanding offers are withdrawn (their timers become no-ops) and an
    assigned worker is made available again.

    Raises:
        NotFoundError: no such task for this customer
        ConflictError: the task already completed or was canceled
    """
    task = _customer_task(task_id, customer_id)
    if task.status not in CANCELLABLE_STATUSES:
        raise ConflictError(f"Cannot cancel - task is already {task.status}")

    assigned = task.worker
    task = task_store.set_status(
        task.pk,
        task.status,
        'canceled',
        cancellation_reason=reason or "No reason provided",
    )

    now = timezone.now()
    withdrawn = list(
        Offer.objects.filter(task=task, status='pending', sent_at__isnull=False).select_related('worker')
    )
    Offer.objects.filter(task=task, status='pending').update(status='expired', responded_at=now)

    for offer in withdrawn:
        notify_user(
            offer.worker.external_id,
            f"The {task.kind} {task.pk} was canceled by the customer.",
            {"event": "task_canceled", "task_id": str(task.pk)},
        )

    if assigned is not None:
        message = f"The customer canceled {task.kind} {task.pk}."
        if is_exclusive_role(assigned.role) and release_availability(assigned.pk):
            message += " You are available for new tasks."
        notify_user(
            assigned.external_id,
            message,
            {"event": "task_canceled", "task_id": str(task.pk), "reason": task.cancellation_reason},
        )

    logger.info("Task %s canceled by customer %s", task.pk, customer_id)
    return TaskResult(
        success=True,
        task=task,
        message=f"Your {task.kind} has been canceled.",
        extra={"withdrawn_offers": len(withdrawn)},
    )


def rate_task(task_id, customer_id: str, score: int) -> TaskResult:
    """Rate the worker of a completed task, once."""
    try:
        score = int(score)
    except (TypeError, ValueError):
        raise ValidationError("Rating must be a number from 1 to 5")
    if not 1 <= score <= 5:
        raise ValidationError("Rating must be a number from 1 to 5")

    task = _customer_task(task_id, customer_id)
    if task.status != 'completed':
        raise ConflictError("Only completed tasks can be rated")

    rated = Task.objects.filter(pk=task.pk, customer_rating__isnull=True).update(customer_rating=score)
    if not rated:
        raise ConflictError("You already rated this task")

    record_rating(task.worker_id, score)
    logger.info("Task %s rated %d by customer %s", task.pk, score, customer_id)
    return TaskResult(success=True, task=task_store.get(task.pk), message="Thanks for your feedback!")


# ===================== Worker Operations =====================

def start_task(task_id, worker: Worker) -> TaskResult:
    """Mark an accepted task as underway."""
    task = _worker_task(task_id, worker)
    task = task_store.set_status(task.pk, 'accepted', 'in_progress')

    notify_user(
        task.customer_id,
        f"{worker.full_name} is on the way with your {task.kind}.",
        {"event": "task_started", "task_id": str(task.pk)},
    )
    return TaskResult(success=True, task=task, message=f"Started {task.kind} {task.pk}.")


def complete_task(task_id, worker: Worker) -> TaskResult:
    """
    Complete a task, called by the assigned worker on delivery.
    A task still in `accepted` passes through `in_progress` first.
    """
    task = _worker_task(task_id, worker)
    if task.status == 'accepted':
        try:
            task = task_store.set_status(task.pk, 'accepted', 'in_progress')
        except ConflictError:
            task = task_store.get(task.pk)

    task = task_store.set_status(task.pk, 'in_progress', 'completed')
    if is_exclusive_role(worker.role):
        release_availability(worker.pk)

    notify_user(
        task.customer_id,
        f"Your {task.kind} has been completed. Rate it with /rate {task.pk} <1-5>.",
        {"event": "task_completed", "task_id": str(task.pk)},
    )

    logger.info("Task %s completed by worker %s", task.pk, worker.external_id)
    return TaskResult(
        success=True,
        task=task,
        message="Task completed. Thank you!",
    )
