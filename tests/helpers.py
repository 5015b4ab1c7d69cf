from __future__ import annotations

import math
from datetime import datetime, timedelta, timezone
from typing import Iterable, Optional

from sos_response.config import EngineConfig
from sos_response.geo import EARTH_RADIUS_M
from sos_response.lifecycle import EmergencyLifecycle
from sos_response.models import Contact, Coordinates, ResponderCandidate, Subject, SubjectSettings
from sos_response.stores import (
    InMemoryEmergencyStore,
    InMemoryEventEmitter,
    InMemoryResponderPool,
    InMemorySubjectStore,
    InMemoryTrackingStore,
    OutboxMessageSender,
)

ORIGIN = Coordinates(17.3850, 78.4867)


def offset(origin: Coordinates, bearing_deg: float, meters: float) -> Coordinates:
    """Point ``meters`` away from ``origin`` along ``bearing_deg`` on the sphere."""
    angular = meters / EARTH_RADIUS_M
    theta = math.radians(bearing_deg)
    lat1 = math.radians(origin.latitude)
    lon1 = math.radians(origin.longitude)
    lat2 = math.asin(math.sin(lat1) * math.cos(angular) + math.cos(lat1) * math.sin(angular) * math.cos(theta))
    lon2 = lon1 + math.atan2(
        math.sin(theta) * math.sin(angular) * math.cos(lat1),
        math.cos(angular) - math.sin(lat1) * math.sin(lat2),
    )
    return Coordinates(math.degrees(lat2), math.degrees(lon2))


def responder(responder_id: str, location: Optional[Coordinates], **kwargs) -> ResponderCandidate:
    return ResponderCandidate(responder_id, f"Responder {responder_id}", f"+1555{responder_id[-4:]:0>4}", location, **kwargs)


def subject(
    subject_id: str = "USR-1",
    contacts: Iterable[Contact] = (),
    auto_call: bool = False,
) -> Subject:
    return Subject(
        subject_id=subject_id,
        name="Asha Rao",
        phone="+15550000001",
        email="asha@example.com",
        contacts=tuple(contacts),
        settings=SubjectSettings(auto_call_authorities=auto_call),
    )


TWO_CONTACTS = (
    Contact("CON-A", "Contact A", "+15550000100", "a@example.com", priority=1),
    Contact("CON-B", "Contact B", "+15550000200", None, priority=3),
)


class TickingClock:
    """Deterministic clock advancing one second per reading."""

    def __init__(self, start: Optional[datetime] = None) -> None:
        self.current = start or datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        self.current += timedelta(seconds=1)
        return self.current


class Harness:
    def __init__(self, subjects=(), responders=(), config: Optional[EngineConfig] = None, failing=(), clock=None):
        self.subjects = InMemorySubjectStore(subjects)
        self.responders = InMemoryResponderPool(responders)
        self.emergencies = InMemoryEmergencyStore()
        self.trackings = InMemoryTrackingStore()
        self.sender = OutboxMessageSender(failing=failing)
        self.events = InMemoryEventEmitter()
        kwargs = {"clock": clock} if clock is not None else {}
        self.lifecycle = EmergencyLifecycle(
            subjects=self.subjects,
            responders=self.responders,
            emergencies=self.emergencies,
            trackings=self.trackings,
            sender=self.sender,
            events=self.events,
            config=config or EngineConfig(authority_call_delay_s=0.01),
            **kwargs,
        )
