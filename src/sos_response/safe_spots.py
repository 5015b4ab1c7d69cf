from __future__ import annotations

from typing import List, Optional

from sos_response import geo
from sos_response.models import Coordinates, NearbySpot
from sos_response.stores import SafeSpotDirectory


class SafeSpotLocator:
    """Finds police stations, hospitals and other safe places within walking range."""

    def __init__(self, directory: SafeSpotDirectory, default_radius_m: float = 5000.0) -> None:
        self.directory = directory
        self.default_radius_m = default_radius_m

    def nearby(
        self,
        location: Coordinates,
        radius_m: Optional[float] = None,
        kind: Optional[str] = None,
    ) -> List[NearbySpot]:
        radius_m = self.default_radius_m if radius_m is None else radius_m
        found = []
        for spot in self.directory.list_spots(kind):
            meters = geo.distance(location, spot.location)
            if meters <= radius_m:
                found.append(NearbySpot(spot=spot, distance_m=meters, eta_minutes=geo.walking_eta_minutes(meters)))
        found.sort(key=lambda item: item.distance_m)
        return found
