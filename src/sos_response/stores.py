"""Collaborator interfaces used by the lifecycle, with in-memory implementations.

Production deployments plug their own storage, messaging provider and
socket layer in behind these interfaces.
"""
from __future__ import annotations

import copy
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field, replace
from typing import Any, Dict, Iterable, List, Optional
from uuid import uuid4

from sos_response.errors import SendFailure
from sos_response.models import (
    Coordinates,
    EmergencyDescriptor,
    JourneyTracking,
    ResponderCandidate,
    SafeSpot,
    SendOutcome,
    Subject,
)

logger = logging.getLogger(__name__)


class SubjectStore(ABC):
    @abstractmethod
    def find_subject(self, subject_id: str) -> Optional[Subject]:
        ...

    @abstractmethod
    def add(self, subject: Subject) -> None:
        """Insert or replace the profile."""

    @abstractmethod
    def record_location(self, subject_id: str, location: Coordinates) -> None:
        ...


class ResponderPool(ABC):
    @abstractmethod
    def list_available_certified_responders(self) -> List[ResponderCandidate]:
        ...

    @abstractmethod
    def find_responder(self, responder_id: str) -> Optional[ResponderCandidate]:
        ...

    @abstractmethod
    def register(self, responder: ResponderCandidate) -> None:
        """Insert or replace the responder."""

    @abstractmethod
    def update_location(self, responder_id: str, location: Coordinates) -> Optional[ResponderCandidate]:
        """Updated responder, or None when unknown."""

    @abstractmethod
    def set_availability(
        self, responder_id: str, available: bool, radius_m: float
    ) -> Optional[ResponderCandidate]:
        """Updated responder, or None when unknown."""


class EmergencyStore(ABC):
    @abstractmethod
    def create(self, emergency: EmergencyDescriptor) -> None:
        ...

    @abstractmethod
    def find_by_id(self, emergency_id: str) -> Optional[EmergencyDescriptor]:
        ...

    @abstractmethod
    def save(self, emergency: EmergencyDescriptor) -> None:
        """Replace the stored document; saving the same state twice is harmless."""

    @abstractmethod
    def list_for_subject(self, subject_id: str, limit: int = 50) -> List[EmergencyDescriptor]:
        """Newest first."""


class TrackingStore(ABC):
    @abstractmethod
    def find_by_id(self, tracking_id: str) -> Optional[JourneyTracking]:
        ...

    @abstractmethod
    def find_active(self, subject_id: str) -> Optional[JourneyTracking]:
        """The subject's journey that has not been completed, if any."""

    @abstractmethod
    def save(self, tracking: JourneyTracking) -> None:
        ...


class SafeSpotDirectory(ABC):
    @abstractmethod
    def list_spots(self, kind: Optional[str] = None) -> List[SafeSpot]:
        ...

    @abstractmethod
    def add(self, spot: SafeSpot) -> None:
        ...


class MessageSender(ABC):
    """Delivery provider. Methods may return a failed outcome or raise."""

    @abstractmethod
    async def send_sms(self, phone: str, text: str) -> SendOutcome:
        ...

    @abstractmethod
    async def send_call(self, phone: str, text: str) -> SendOutcome:
        ...

    @abstractmethod
    async def send_email(self, address: str, subject: str, body: str) -> SendOutcome:
        ...


class EventEmitter(ABC):
    @abstractmethod
    def broadcast(self, event: str, payload: Dict[str, Any]) -> None:
        ...

    @abstractmethod
    def emit_to(self, room: str, event: str, payload: Dict[str, Any]) -> None:
        ...


class InMemorySubjectStore(SubjectStore):
    def __init__(self, subjects: Iterable[Subject] = ()) -> None:
        self._subjects = {subject.subject_id: subject for subject in subjects}

    def add(self, subject: Subject) -> None:
        self._subjects[subject.subject_id] = subject

    def find_subject(self, subject_id: str) -> Optional[Subject]:
        return self._subjects.get(subject_id)

    def record_location(self, subject_id: str, location: Coordinates) -> None:
        subject = self._subjects.get(subject_id)
        if subject is not None:
            self._subjects[subject_id] = replace(subject, location=location)


class InMemoryResponderPool(ResponderPool):
    def __init__(self, responders: Iterable[ResponderCandidate] = ()) -> None:
        self._responders = {responder.responder_id: responder for responder in responders}

    def register(self, responder: ResponderCandidate) -> None:
        self._responders[responder.responder_id] = responder

    def list_available_certified_responders(self) -> List[ResponderCandidate]:
        return [r for r in self._responders.values() if r.available and r.certified]

    def find_responder(self, responder_id: str) -> Optional[ResponderCandidate]:
        return self._responders.get(responder_id)

    def update_location(self, responder_id: str, location: Coordinates) -> Optional[ResponderCandidate]:
        return self._update(responder_id, location=location)

    def set_availability(
        self, responder_id: str, available: bool, radius_m: float
    ) -> Optional[ResponderCandidate]:
        return self._update(responder_id, available=available, radius_m=radius_m)

    def _update(self, responder_id: str, **changes: Any) -> Optional[ResponderCandidate]:
        responder = self._responders.get(responder_id)
        if responder is None:
            return None
        responder = self._responders[responder_id] = replace(responder, **changes)
        return responder


class InMemoryEmergencyStore(EmergencyStore):
    """Keeps deep copies so callers never share state with the store."""

    def __init__(self) -> None:
        self._items: Dict[str, EmergencyDescriptor] = {}

    def create(self, emergency: EmergencyDescriptor) -> None:
        self._items[emergency.emergency_id] = copy.deepcopy(emergency)

    def find_by_id(self, emergency_id: str) -> Optional[EmergencyDescriptor]:
        item = self._items.get(emergency_id)
        return copy.deepcopy(item) if item is not None else None

    def save(self, emergency: EmergencyDescriptor) -> None:
        self._items[emergency.emergency_id] = copy.deepcopy(emergency)

    def list_for_subject(self, subject_id: str, limit: int = 50) -> List[EmergencyDescriptor]:
        items = [e for e in self._items.values() if e.subject_id == subject_id]
        items.sort(key=lambda e: e.trigger_time, reverse=True)
        return [copy.deepcopy(e) for e in items[:limit]]


class InMemoryTrackingStore(TrackingStore):
    def __init__(self) -> None:
        self._items: Dict[str, JourneyTracking] = {}

    def find_by_id(self, tracking_id: str) -> Optional[JourneyTracking]:
        item = self._items.get(tracking_id)
        return copy.deepcopy(item) if item is not None else None

    def find_active(self, subject_id: str) -> Optional[JourneyTracking]:
        open_items = [t for t in self._items.values() if t.subject_id == subject_id and t.is_open]
        if not open_items:
            return None
        return copy.deepcopy(max(open_items, key=lambda t: t.start_time))

    def save(self, tracking: JourneyTracking) -> None:
        self._items[tracking.tracking_id] = copy.deepcopy(tracking)


class InMemorySafeSpotDirectory(SafeSpotDirectory):
    def __init__(self, spots: Iterable[SafeSpot] = ()) -> None:
        self._spots = list(spots)

    def add(self, spot: SafeSpot) -> None:
        self._spots.append(spot)

    def list_spots(self, kind: Optional[str] = None) -> List[SafeSpot]:
        return [spot for spot in self._spots if kind is None or spot.kind == kind]


@dataclass(frozen=True)
class OutboundMessage:
    channel: str
    to: str
    text: str
    subject: Optional[str] = None
    reference: Optional[str] = None


class OutboxMessageSender(MessageSender):
    """Keeps every message in an outbox instead of contacting a provider.

    Numbers or addresses in ``failing`` are rejected with ``SendFailure`` so
    failure handling can be exercised.
    """

    def __init__(self, failing: Iterable[str] = ()) -> None:
        self.failing = set(failing)
        self.outbox: List[OutboundMessage] = []

    def _deliver(self, channel: str, to: str, text: str, subject: Optional[str] = None) -> SendOutcome:
        if to in self.failing:
            raise SendFailure(f"{channel} delivery rejected")
        reference = f"{channel.upper()}{uuid4().hex[:16]}"
        self.outbox.append(OutboundMessage(channel=channel, to=to, text=text, subject=subject, reference=reference))
        logger.info("MESSAGE_QUEUED", extra={"channel": channel, "reference": reference})
        return SendOutcome.sent(reference)

    async def send_sms(self, phone: str, text: str) -> SendOutcome:
        return self._deliver("sms", phone, text)

    async def send_call(self, phone: str, text: str) -> SendOutcome:
        return self._deliver("call", phone, text)

    async def send_email(self, address: str, subject: str, body: str) -> SendOutcome:
        return self._deliver("email", address, body, subject=subject)

    def sent_to(self, to: str) -> List[OutboundMessage]:
        return [message for message in self.outbox if message.to == to]


@dataclass(frozen=True)
class EmittedEvent:
    event: str
    payload: Dict[str, Any]
    room: Optional[str] = None


@dataclass
class InMemoryEventEmitter(EventEmitter):
    events: List[EmittedEvent] = field(default_factory=list)

    def broadcast(self, event: str, payload: Dict[str, Any]) -> None:
        self.events.append(EmittedEvent(event=event, payload=payload))
        logger.debug("EVENT_BROADCAST", extra={"event_name": event})

    def emit_to(self, room: str, event: str, payload: Dict[str, Any]) -> None:
        self.events.append(EmittedEvent(event=event, payload=payload, room=room))
        logger.debug("EVENT_EMITTED", extra={"event_name": event})

    def named(self, event: str) -> List[EmittedEvent]:
        return [item for item in self.events if item.event == event]
