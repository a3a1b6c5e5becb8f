"""
Proximity queries over worker locations.

Workers are stored with live latitude/longitude columns, so a location
update is visible to the very next query without any index rebuild. A
lat/lon bounding box narrows the rows in SQL; the exact haversine distance
then filters and orders the candidates in Python.
"""

import logging
from dataclasses import dataclass
from typing import Iterable, List, Tuple

from common.utils import bounding_box, calculate_distance
from workers.models import Worker

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Candidate:
    """A worker eligible for an offer and its distance to the task."""
    worker: Worker
    distance: float


def candidate_sort_key(candidate: Candidate) -> Tuple[float, float, str]:
    """Nearest first, then higher rating, then stable external id order."""
    return (candidate.distance, -candidate.worker.rating, candidate.worker.external_id)


def find_candidates(
    point: Tuple[float, float],
    role: str,
    max_distance: float,
    limit: int,
    exclude_ids: Iterable[int] = (),
) -> List[Candidate]:
    """
    Find available workers of a role around a point.

    Args:
        point: (latitude, longitude) of the task
        role: "rider" or "errander"
        max_distance: Search radius in meters
        limit: Maximum number of candidates to return
        exclude_ids: Worker primary keys to leave out (already offered)

    Returns:
        Candidates sorted nearest first; ties broken by higher rating,
        then by external id
    """
    if limit <= 0:
        return []

    lat, lon = float(point[0]), float(point[1])
    min_lat, max_lat, min_lon, max_lon = bounding_box(lat, lon, max_distance)

    workers = Worker.objects.filter(
        role=role,
        is_available=True,
        latitude__isnull=False,
        longitude__isnull=False,
        latitude__gte=min_lat,
        latitude__lte=max_lat,
    )
    if min_lon is not None:
        workers = workers.filter(longitude__gte=min_lon, longitude__lte=max_lon)

    exclude_ids = list(exclude_ids)
    if exclude_ids:
        workers = workers.exclude(pk__in=exclude_ids)

    candidates: List[Candidate] = []
    for worker in workers:
        distance = calculate_distance(lat, lon, worker.latitude, worker.longitude)
        if distance <= max_distance:
            candidates.append(Candidate(worker=worker, distance=distance))

    candidates.sort(key=candidate_sort_key)

    logger.debug(
        "Found %d %s candidate(s) within %sm of (%s, %s)",
        len(candidates), role, max_distance, lat, lon
    )
    return candidates[:limit]
