"""
Durable task records with compare-and-swap status transitions.

Every status change is a single conditional UPDATE (`WHERE status = expected`),
so when several callers race for the same transition exactly one row update
succeeds and the rest observe a ConflictError. Correctness never depends on
application-level locks.
"""

import logging
from typing import Any, Dict, Optional

from django.core.exceptions import ValidationError as DjangoValidationError
from django.db.models import Exists, OuterRef, QuerySet
from django.utils import timezone

from common.exceptions import ConflictError, InvalidTransitionError, NotFoundError, ValidationError
from common.utils import is_valid_coordinate
from deliveries.models import Offer, Task

logger = logging.getLogger(__name__)

ALLOWED_TRANSITIONS = {
    'pending': {'offered', 'exhausted', 'canceled'},
    'offered': {'accepted', 'exhausted', 'canceled'},
    'exhausted': {'offered', 'canceled'},
    'accepted': {'in_progress', 'canceled'},
    'in_progress': {'completed', 'canceled'},
}

# A worker is assigned exactly while the task is in one of these
ASSIGNED_STATUSES = {'accepted', 'in_progress', 'completed'}

TIMESTAMP_FOR_STATUS = {
    'accepted': 'accepted_at',
    'in_progress': 'started_at',
    'completed': 'completed_at',
    'canceled': 'canceled_at',
}


class TaskStore:
    """CRUD and CAS operations over Task rows."""

    def create(self, customer_id: str, payload: Dict[str, Any]) -> Task:
        kind = payload.get('kind')
        if kind not in Task.ROLE_FOR_KIND:
            raise ValidationError(f"Unknown task kind: {kind}")

        lat, lon = payload.get('latitude'), payload.get('longitude')
        if lat is None or lon is None or not is_valid_coordinate(lat, lon):
            raise ValidationError("A valid location is required")

        fields = {
            'kind': kind,
            'customer_id': str(customer_id),
            'latitude': float(lat),
            'longitude': float(lon),
            'address': payload.get('address') or '',
            'status': 'pending',
        }

        if kind == 'order':
            drop_lat, drop_lon = payload.get('dropoff_latitude'), payload.get('dropoff_longitude')
            if drop_lat is None or drop_lon is None or not is_valid_coordinate(drop_lat, drop_lon):
                raise ValidationError("Orders need a valid dropoff location")
            fields.update(
                dropoff_latitude=float(drop_lat),
                dropoff_longitude=float(drop_lon),
                dropoff_address=payload.get('dropoff_address') or '',
            )
        else:
            description = (payload.get('description') or '').strip()
            if not description:
                raise ValidationError("Errands need a description")
            fields['description'] = description

        task = Task.objects.create(**fields)
        logger.info("Created %s %s for customer %s", kind, task.id, customer_id)
        return task

    def get(self, task_id) -> Task:
        try:
            return Task.objects.select_related('worker').get(pk=task_id)
        except (Task.DoesNotExist, DjangoValidationError, ValueError):
            raise NotFoundError(f"Task {task_id} not found")

    def set_status(
        self,
        task_id,
        expected: str,
        new: str,
        *,
        worker_id: Optional[int] = None,
        **fields,
    ) -> Task:
        """
        Move a task from `expected` to `new` in one conditional update.

        Raises:
            InvalidTransitionError: `new` is not reachable from `expected`
            ConflictError: the stored status is no longer `expected`
            NotFoundError: the task does not exist
        """
        if new not in ALLOWED_TRANSITIONS.get(expected, ()):
            raise InvalidTransitionError(f"Cannot move a task from {expected} to {new}")

        now = timezone.now()
        updates: Dict[str, Any] = {'status': new, 'updated_at': now}
        updates.update(fields)

        if new == 'accepted':
            if worker_id is None:
                raise InvalidTransitionError("Accepting a task requires a worker")
            updates['worker_id'] = worker_id
        elif worker_id is not None:
            raise InvalidTransitionError("A worker can only be assigned when the task is accepted")
        elif new not in ASSIGNED_STATUSES:
            updates['worker_id'] = None

        stamp = TIMESTAMP_FOR_STATUS.get(new)
        if stamp:
            updates.setdefault(stamp, now)

        matched = Task.objects.filter(pk=task_id, status=expected).update(**updates)
        if not matched:
            if not Task.objects.filter(pk=task_id).exists():
                raise NotFoundError(f"Task {task_id} not found")
            raise ConflictError(f"Task {task_id} is no longer {expected}")

        logger.debug("Task %s: %s -> %s", task_id, expected, new)
        return self.get(task_id)

    def assign_worker(self, task_id, worker_id: int) -> Task:
        """The offered -> accepted CAS; the only way a worker is attached to a task."""
        return self.set_status(task_id, 'offered', 'accepted', worker_id=worker_id)

    def advance_round(self, task: Task, radius: float) -> Optional[Task]:
        """
        Claim the next negotiation round for a task.

        Returns the refreshed task, or None when another caller already
        advanced past `task.negotiation_round`.
        """
        matched = Task.objects.filter(
            pk=task.pk,
            negotiation_round=task.negotiation_round,
        ).update(
            negotiation_round=task.negotiation_round + 1,
            search_radius=radius,
            updated_at=timezone.now(),
        )
        if not matched:
            return None
        return self.get(task.pk)

    def stale_offering(self, now=None) -> QuerySet:
        """Tasks still `offered` without a single live offer (sent, pending, before deadline)."""
        now = now or timezone.now()
        live_offers = Offer.objects.filter(
            task=OuterRef('pk'),
            status='pending',
            sent_at__isnull=False,
            deadline__gt=now,
        )
        return Task.objects.filter(status='offered').annotate(
            has_live_offer=Exists(live_offers)
        ).filter(has_live_offer=False)


task_store = TaskStore()
