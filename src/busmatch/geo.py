"""Bearing and distance helpers."""

import math

from .models import Coordinate

EARTH_RADIUS_METERS = 6371008.8


def distance(a: Coordinate, b: Coordinate) -> float:
    """Great-circle distance in meters (haversine)."""
    lat1 = math.radians(a.latitude)
    lat2 = math.radians(b.latitude)
    dlat = lat2 - lat1
    dlon = math.radians(b.longitude - a.longitude)
    h = math.sin(dlat / 2) ** 2 + math.cos(lat1) * math.cos(lat2) * math.sin(dlon / 2) ** 2
    return 2 * EARTH_RADIUS_METERS * math.asin(min(1.0, math.sqrt(h)))


def bearing(a: Coordinate, b: Coordinate) -> float:
    """
    Compass heading from a to b in degrees clockwise from north, in [0, 360).

    Uses a local equirectangular projection around the midpoint latitude, which
    is accurate at stop-to-stop scale and keeps bearing(b, a) exactly opposite
    to bearing(a, b).
    """
    mean_lat = math.radians((a.latitude + b.latitude) / 2)
    dx = math.radians(b.longitude - a.longitude) * math.cos(mean_lat)
    dy = math.radians(b.latitude - a.latitude)
    result = math.degrees(math.atan2(dx, dy))
    if result < 0:
        result += 360
    # -0.0 and float rounding can land exactly on 360
    return result % 360


def reciprocal(heading: float) -> float:
    return (heading + 180) % 360


def signed_angle_difference(target: float, reference: float) -> float:
    """Angle from reference to target in (-180, 180]; positive means clockwise (to the right)."""
    diff = (target - reference + 360) % 360
    if diff > 180:
        diff -= 360
    return diff
