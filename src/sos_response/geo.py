"""Great-circle helpers shared by the matcher, the deviation monitor and safe spots."""
from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Sequence

from sos_response.models import Coordinates

EARTH_RADIUS_M = 6_371_008.8
WALKING_METERS_PER_MINUTE = 83.33
SECTOR_COUNT = 8
SECTOR_WIDTH = 360.0 / SECTOR_COUNT


@dataclass(frozen=True)
class PathDistance:
    """Distance from a point to a reference path.

    ``has_reference`` is False when the path was empty; ``meters`` is then 0
    and carries no meaning.
    """

    meters: float
    has_reference: bool


def distance(origin: Coordinates, target: Coordinates) -> float:
    lat1, lon1 = math.radians(origin.latitude), math.radians(origin.longitude)
    lat2, lon2 = math.radians(target.latitude), math.radians(target.longitude)
    dlat = lat2 - lat1
    dlon = lon2 - lon1

    a = math.sin(dlat / 2) ** 2 + math.cos(lat1) * math.cos(lat2) * math.sin(dlon / 2) ** 2
    c = 2 * math.atan2(math.sqrt(a), math.sqrt(max(0.0, 1 - a)))
    return EARTH_RADIUS_M * c


def bearing(origin: Coordinates, target: Coordinates) -> float:
    """Initial great-circle bearing in degrees, in [0, 360). Zero for identical points."""
    if origin == target:
        return 0.0
    lat1, lat2 = math.radians(origin.latitude), math.radians(target.latitude)
    dlon = math.radians(target.longitude - origin.longitude)

    y = math.sin(dlon) * math.cos(lat2)
    x = math.cos(lat1) * math.sin(lat2) - math.sin(lat1) * math.cos(lat2) * math.cos(dlon)
    degrees = math.degrees(math.atan2(y, x)) % 360.0
    # -0.0 % 360 and rounding can land exactly on 360.
    return 0.0 if degrees >= 360.0 else degrees


def sector(bearing_deg: float) -> int:
    """Compass sector 0-7 (N, NE, E, SE, S, SW, W, NW) for a bearing."""
    return int(math.floor((bearing_deg + SECTOR_WIDTH / 2) / SECTOR_WIDTH)) % SECTOR_COUNT


def walking_eta_minutes(meters: float) -> int:
    return int(math.ceil(meters / WALKING_METERS_PER_MINUTE))


def point_to_path_min_distance(point: Coordinates, path: Sequence[Coordinates]) -> PathDistance:
    if not path:
        return PathDistance(meters=0.0, has_reference=False)
    return PathDistance(meters=min(distance(point, vertex) for vertex in path), has_reference=True)
