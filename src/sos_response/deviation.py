from __future__ import annotations

import logging
from datetime import datetime
from enum import Enum
from typing import Optional, Sequence

from sos_response.geo import point_to_path_min_distance
from sos_response.models import Coordinates, DeviationState, utcnow

logger = logging.getLogger(__name__)

DEVIATION_THRESHOLD_M = 500.0
DEVIATION_REASON = "Route significantly differs from expected path"


class Observation(str, Enum):
    NOT_APPLICABLE = "not_applicable"
    NO_CHANGE = "no_change"
    NEWLY_DETECTED = "newly_detected"


class RouteDeviationMonitor:
    """Compares observed fixes against an expected path and latches once.

    The monitor mutates the ``DeviationState`` it is given so that the
    latch lives on the tracking record. Callers must serialise ``observe``
    per tracking identifier; the lifecycle does this with a keyed lock.
    """

    def __init__(
        self,
        expected_path: Sequence[Coordinates],
        state: Optional[DeviationState] = None,
        threshold_m: float = DEVIATION_THRESHOLD_M,
    ) -> None:
        self.expected_path = tuple(expected_path)
        self.state = state if state is not None else DeviationState()
        self.threshold_m = threshold_m

    @property
    def latched(self) -> bool:
        return self.state.detected

    def observe(self, point: Coordinates, at: Optional[datetime] = None) -> Observation:
        measured = point_to_path_min_distance(point, self.expected_path)
        if not measured.has_reference:
            return Observation.NOT_APPLICABLE

        self.state.max_deviation = max(self.state.max_deviation, measured.meters)

        if measured.meters > self.threshold_m and not self.state.detected:
            self.state.detected = True
            self.state.detected_at = at or utcnow()
            self.state.reason = DEVIATION_REASON
            logger.warning(
                "ROUTE_DEVIATION_LATCHED",
                extra={"deviation_m": round(measured.meters, 1), "threshold_m": self.threshold_m},
            )
            return Observation.NEWLY_DETECTED

        return Observation.NO_CHANGE
