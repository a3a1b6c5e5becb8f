import logging
from typing import Any, Dict

from django.conf import settings
from django.db import IntegrityError, transaction
from django.db.models import ExpressionWrapper, F, FloatField
from django.utils import timezone

from common.exceptions import NotFoundError, ValidationError, WorkerNotAvailableError
from common.utils import is_valid_coordinate
from workers.models import Worker

logger = logging.getLogger(__name__)

REGISTRATION_FIELDS = (
    "full_name",
    "phone_number",
    "bank_name",
    "account_number",
    "identity_number",
    "photo_file_id",
)


def get_worker(external_id: str) -> Worker:
    try:
        return Worker.objects.get(external_id=str(external_id))
    except Worker.DoesNotExist:
        raise NotFoundError("You are not registered as a rider or errander")


def find_worker(external_id: str):
    return Worker.objects.filter(external_id=str(external_id)).first()


def register_worker(external_id: str, role: str, details: Dict[str, Any]) -> Worker:
    """
    Create the worker record once a registration flow completes.
    New workers start unavailable until they share a location and go online.
    """
    if role not in dict(Worker.ROLE_CHOICES):
        raise ValidationError(f"Unknown role: {role}")

    fields = {name: details.get(name) or "" for name in REGISTRATION_FIELDS}
    try:
        with transaction.atomic():
            worker = Worker.objects.create(
                external_id=str(external_id),
                role=role,
                is_available=False,
                **fields,
            )
    except IntegrityError:
        raise ValidationError("You are already registered")

    logger.info("Registered %s %s", role, worker.external_id)
    return worker


# WORKER LOCATION UPDATE
def update_location(worker: Worker, lat, lon) -> Worker:
    """
    Update worker location. The next candidate query sees the new position.
    """
    if not is_valid_coordinate(lat, lon):
        raise ValidationError("Latitude must be within -90..90 and longitude within -180..180")

    worker.latitude = float(lat)
    worker.longitude = float(lon)
    worker.last_location_update = timezone.now()
    worker.save(update_fields=["latitude", "longitude", "last_location_update"])
    return worker


def is_exclusive_role(role: str) -> bool:
    """Workers of these roles carry one task at a time."""
    return role in getattr(settings, "MATCHING_EXCLUSIVE_ROLES", ["rider"])


# WORKER AVAILABILITY UPDATE
def set_availability(worker: Worker, available: bool) -> Worker:
    """
    Record whether the worker wants to receive offers.
    Going online requires a known location, and an exclusive worker must
    finish the task in hand first.
    """
    if available and not worker.has_location:
        raise ValidationError("Share your location before going online")
    if available and is_exclusive_role(worker.role) and worker.active_task_ids:
        raise WorkerNotAvailableError("Finish your current task before going online")

    worker.is_online = available
    worker.is_available = available
    worker.save(update_fields=["is_online", "is_available"])
    logger.info("Worker %s is now %s", worker.external_id, "available" if available else "offline")
    return worker


def claim_availability(worker_id: int) -> bool:
    """Atomically flip an available worker to unavailable. False if already unavailable."""
    return Worker.objects.filter(pk=worker_id, is_available=True).update(is_available=False) == 1


def release_availability(worker_id: int) -> bool:
    """
    Make a worker available again once a task no longer holds them.
    Workers who went offline in the meantime stay offline.
    """
    return Worker.objects.filter(pk=worker_id, is_online=True).update(is_available=True) == 1


def record_rating(worker_id: int, score: int) -> None:
    """Fold a customer rating into the worker's running average in a single UPDATE."""
    Worker.objects.filter(pk=worker_id).update(
        rating=ExpressionWrapper(
            (F("rating") * F("rating_count") + float(score)) / (F("rating_count") + 1.0),
            output_field=FloatField(),
        ),
        rating_count=F("rating_count") + 1,
    )
