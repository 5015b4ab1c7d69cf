from __future__ import annotations

import logging
from typing import Iterable, List

from sos_response import geo
from sos_response.models import Coordinates, RankedResponder, ResponderCandidate

logger = logging.getLogger(__name__)


class DirectionalResponderMatcher:
    """Picks nearby certified responders, spread across compass sectors."""

    def __init__(self, default_limit: int = 3) -> None:
        self.default_limit = default_limit

    @staticmethod
    def rank(incident_location: Coordinates, pool: Iterable[ResponderCandidate]) -> List[RankedResponder]:
        """Every eligible candidate within its own service radius, nearest first."""
        ranked = []
        for candidate in pool:
            if not (candidate.available and candidate.certified) or candidate.location is None:
                continue

            meters = geo.distance(incident_location, candidate.location)
            if meters > candidate.radius_m:
                continue

            heading = geo.bearing(incident_location, candidate.location)
            ranked.append(
                RankedResponder(
                    candidate=candidate,
                    distance_m=meters,
                    eta_minutes=geo.walking_eta_minutes(meters),
                    bearing=heading,
                    sector=geo.sector(heading),
                )
            )

        # list.sort is stable: equal distances keep pool order.
        ranked.sort(key=lambda item: item.distance_m)
        return ranked

    def match(
        self,
        incident_location: Coordinates,
        pool: Iterable[ResponderCandidate],
        limit: int | None = None,
    ) -> List[RankedResponder]:
        limit = self.default_limit if limit is None else limit
        if limit <= 0:
            return []

        ranked = self.rank(incident_location, pool)

        chosen: list[int] = []
        used_sectors: set[int] = set()
        for index, item in enumerate(ranked):
            if len(chosen) >= limit:
                break
            if item.sector not in used_sectors:
                chosen.append(index)
                used_sectors.add(item.sector)

        # Not enough distinct sectors: fill with the nearest skipped candidates.
        if len(chosen) < limit:
            taken = set(chosen)
            for index in range(len(ranked)):
                if len(chosen) >= limit:
                    break
                if index not in taken:
                    chosen.append(index)

        shortlist = [ranked[index] for index in sorted(chosen)]
        logger.info(
            "RESPONDERS_MATCHED",
            extra={
                "eligible_count": len(ranked),
                "selected_count": len(shortlist),
                "sectors": sorted({item.sector for item in shortlist}),
            },
        )
        return shortlist
