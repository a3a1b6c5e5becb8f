"""Common utility functions."""

from .geo import bounding_box, calculate_distance, is_valid_coordinate

__all__ = [
    "bounding_box",
    "calculate_distance",
    "is_valid_coordinate",
]
