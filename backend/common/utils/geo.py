"""
Geographic utility functions.

This module provides core geospatial calculations used throughout the application.
"""

from math import radians, degrees, cos, sin, asin, sqrt
from typing import Optional, Tuple

EARTH_RADIUS_METERS = 6371000

# Above this latitude a longitude window is meaningless, skip it
_POLAR_CUTOFF_LATITUDE = 89.0


def calculate_distance(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """
    Calculate distance between two points in meters using Haversine formula.

    Args:
        lat1: Latitude of first point
        lon1: Longitude of first point
        lat2: Latitude of second point
        lon2: Longitude of second point

    Returns:
        Distance in meters
    """
    lat1, lon1, lat2, lon2 = map(radians, [float(lat1), float(lon1), float(lat2), float(lon2)])
    dlat = lat2 - lat1
    dlon = lon2 - lon1
    a = sin(dlat / 2) ** 2 + cos(lat1) * cos(lat2) * sin(dlon / 2) ** 2
    c = 2 * asin(min(1.0, sqrt(a)))
    return c * EARTH_RADIUS_METERS


def bounding_box(
    lat: float, lon: float, radius_meters: float
) -> Tuple[float, float, Optional[float], Optional[float]]:
    """
    Get a lat/lon window that fully contains the circle around a point.

    Used as a cheap indexed prefilter before the exact haversine check.
    Longitude bounds are None when the window would wrap the antimeridian
    or the circle reaches a pole; callers must then skip the longitude filter.

    Returns:
        (min_lat, max_lat, min_lon, max_lon)
    """
    lat = float(lat)
    lon = float(lon)
    angular = degrees(float(radius_meters) / EARTH_RADIUS_METERS)

    min_lat = max(-90.0, lat - angular)
    max_lat = min(90.0, lat + angular)

    if max(abs(min_lat), abs(max_lat)) >= _POLAR_CUTOFF_LATITUDE:
        return min_lat, max_lat, None, None

    # Widest longitude span is at the latitude closest to a pole
    widest = max(abs(min_lat), abs(max_lat))
    lon_delta = angular / cos(radians(widest))
    min_lon = lon - lon_delta
    max_lon = lon + lon_delta
    if min_lon < -180.0 or max_lon > 180.0:
        return min_lat, max_lat, None, None

    return min_lat, max_lat, min_lon, max_lon


def is_valid_coordinate(lat: float, lon: float) -> bool:
    """Check that a latitude/longitude pair is inside the valid ranges."""
    return -90.0 <= float(lat) <= 90.0 and -180.0 <= float(lon) <= 180.0
