from __future__ import annotations

import math
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple
from uuid import uuid4

from sos_response.errors import InvalidInput, InvalidTransition


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_id(prefix: str) -> str:
    return f"{prefix}_{uuid4().hex[:12]}"


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def _parse_time(value: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value else None


class EmergencyKind(str, Enum):
    VOICE_TRIGGER = "voice_trigger"
    SHAKE_DETECTION = "shake_detection"
    FALL_DETECTION = "fall_detection"
    MANUAL = "manual"
    HEART_EMERGENCY = "heart_emergency"
    ROUTE_DEVIATION = "route_deviation"

    @property
    def label(self) -> str:
        return self.value.replace("_", " ").upper()


class EmergencyStatus(str, Enum):
    ACTIVE = "active"
    RESOLVED = "resolved"
    CANCELLED = "cancelled"
    FALSE_ALARM = "false_alarm"

    @property
    def is_terminal(self) -> bool:
        return self is not EmergencyStatus.ACTIVE


class Channel(str, Enum):
    SMS = "sms"
    EMAIL = "email"
    CALL = "call"


class DeliveryOutcome(str, Enum):
    SENT = "sent"
    FAILED = "failed"


class AssignmentStatus(str, Enum):
    NOTIFIED = "notified"
    ACCEPTED = "accepted"


class TrackingStatus(str, Enum):
    ACTIVE = "active"
    COMPLETED = "completed"
    DEVIATION_ALERT = "deviation_alert"
    EMERGENCY = "emergency"


@dataclass(frozen=True)
class Coordinates:
    latitude: float
    longitude: float

    @classmethod
    def parse(cls, data: Any) -> Coordinates:
        """Build coordinates from a mapping, raising InvalidInput on bad fields."""
        if isinstance(data, Coordinates):
            return data.validated()
        if not isinstance(data, dict):
            raise InvalidInput("location must be an object with latitude and longitude")
        try:
            latitude = float(data["latitude"])
            longitude = float(data["longitude"])
        except KeyError as exc:
            raise InvalidInput(f"missing coordinate field: {exc.args[0]}") from exc
        except (TypeError, ValueError) as exc:
            raise InvalidInput(f"invalid coordinate value: {exc}") from exc
        return cls(latitude, longitude).validated()

    def validated(self) -> Coordinates:
        if not (math.isfinite(self.latitude) and math.isfinite(self.longitude)):
            raise InvalidInput("coordinates must be finite numbers")
        if not -90.0 <= self.latitude <= 90.0:
            raise InvalidInput(f"latitude out of range: {self.latitude}")
        if not -180.0 <= self.longitude <= 180.0:
            raise InvalidInput(f"longitude out of range: {self.longitude}")
        return self

    def to_dict(self) -> dict:
        return {"latitude": self.latitude, "longitude": self.longitude}


@dataclass(frozen=True)
class IncidentLocation:
    coordinates: Coordinates
    accuracy: Optional[float] = None
    address: Optional[str] = None

    @classmethod
    def parse(cls, data: Any) -> IncidentLocation:
        if isinstance(data, IncidentLocation):
            return data
        if isinstance(data, Coordinates):
            return cls(coordinates=data.validated())
        coordinates = Coordinates.parse(data)
        accuracy = data.get("accuracy")
        if accuracy is not None:
            try:
                accuracy = float(accuracy)
            except (TypeError, ValueError) as exc:
                raise InvalidInput(f"invalid accuracy value: {accuracy!r}") from exc
        address = data.get("address")
        return cls(
            coordinates=coordinates,
            accuracy=accuracy,
            address=str(address) if address else None,
        )

    @property
    def latitude(self) -> float:
        return self.coordinates.latitude

    @property
    def longitude(self) -> float:
        return self.coordinates.longitude

    def describe(self) -> str:
        return self.address or f"{self.latitude}, {self.longitude}"

    def map_url(self) -> str:
        return f"https://maps.google.com/maps?q={self.latitude},{self.longitude}"

    def to_dict(self) -> dict:
        return {**self.coordinates.to_dict(), "accuracy": self.accuracy, "address": self.address}


@dataclass(frozen=True)
class Contact:
    contact_id: str
    name: str
    phone: str
    email: Optional[str] = None
    relationship: Optional[str] = None
    priority: int = 1

    @classmethod
    def from_dict(cls, data: dict) -> Contact:
        return cls(
            contact_id=str(data.get("contact_id") or data.get("id") or new_id("CON")),
            name=data["name"],
            phone=data["phone"],
            email=data.get("email") or None,
            relationship=data.get("relationship"),
            priority=int(data.get("priority", 1)),
        )

    def to_dict(self) -> dict:
        return {
            "contact_id": self.contact_id,
            "name": self.name,
            "phone": self.phone,
            "email": self.email,
            "relationship": self.relationship,
            "priority": self.priority,
        }


@dataclass(frozen=True)
class SubjectSettings:
    auto_call_authorities: bool = True
    route_tracking_enabled: bool = False

    def merged(self, data: Optional[dict]) -> SubjectSettings:
        """Apply the app's settings payload on top of these values."""
        data = data or {}
        return SubjectSettings(
            auto_call_authorities=bool(data.get("autoCallPolice", self.auto_call_authorities)),
            route_tracking_enabled=bool(data.get("routeTrackingEnabled", self.route_tracking_enabled)),
        )

    def to_dict(self) -> dict:
        return {"autoCallPolice": self.auto_call_authorities, "routeTrackingEnabled": self.route_tracking_enabled}


@dataclass(frozen=True)
class Subject:
    subject_id: str
    name: str
    phone: str
    email: Optional[str] = None
    contacts: Tuple[Contact, ...] = ()
    settings: SubjectSettings = field(default_factory=SubjectSettings)
    location: Optional[Coordinates] = None

    def sorted_contacts(self) -> List[Contact]:
        # sorted() is stable, so equal priorities keep their configured order.
        return sorted(self.contacts, key=lambda contact: contact.priority)

    def to_dict(self) -> dict:
        return {
            "user_id": self.subject_id,
            "name": self.name,
            "phone": self.phone,
            "email": self.email,
            "emergency_contacts": [contact.to_dict() for contact in self.contacts],
            "settings": self.settings.to_dict(),
            "location": self.location.to_dict() if self.location else None,
        }


@dataclass(frozen=True)
class TimelineEntry:
    timestamp: datetime
    event: str
    details: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {"timestamp": _iso(self.timestamp), "event": self.event, "details": dict(self.details)}

    @classmethod
    def from_dict(cls, data: dict) -> TimelineEntry:
        return cls(timestamp=_parse_time(data["timestamp"]), event=data["event"], details=data.get("details", {}))


@dataclass(frozen=True)
class SendOutcome:
    ok: bool
    reference: Optional[str] = None
    error: Optional[str] = None

    @classmethod
    def sent(cls, reference: str) -> SendOutcome:
        return cls(ok=True, reference=reference)

    @classmethod
    def failed(cls, error: str) -> SendOutcome:
        return cls(ok=False, error=error)


@dataclass(frozen=True)
class NotificationRecord:
    contact_id: str
    contact_name: str
    channel: Channel
    sent_at: datetime
    status: DeliveryOutcome
    reference: Optional[str] = None
    error: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "contact_id": self.contact_id,
            "contact_name": self.contact_name,
            "method": self.channel.value,
            "sent_at": _iso(self.sent_at),
            "status": self.status.value,
            "reference": self.reference,
            "error": self.error,
        }

    @classmethod
    def from_dict(cls, data: dict) -> NotificationRecord:
        return cls(
            contact_id=data["contact_id"],
            contact_name=data["contact_name"],
            channel=Channel(data["method"]),
            sent_at=_parse_time(data["sent_at"]),
            status=DeliveryOutcome(data["status"]),
            reference=data.get("reference"),
            error=data.get("error"),
        )


@dataclass
class ResponderAssignment:
    """A matched responder attached to an emergency; only status changes."""

    responder_id: str
    name: str
    distance_m: float
    eta_minutes: int
    responder_type: str = "cpr"
    status: AssignmentStatus = AssignmentStatus.NOTIFIED

    def to_dict(self) -> dict:
        return {
            "responder_id": self.responder_id,
            "name": self.name,
            "type": self.responder_type,
            "distance": self.distance_m,
            "eta": self.eta_minutes,
            "status": self.status.value,
        }

    @classmethod
    def from_dict(cls, data: dict) -> ResponderAssignment:
        return cls(
            responder_id=data["responder_id"],
            name=data["name"],
            distance_m=float(data["distance"]),
            eta_minutes=int(data["eta"]),
            responder_type=data.get("type", "cpr"),
            status=AssignmentStatus(data.get("status", "notified")),
        )


@dataclass
class EmergencyDescriptor:
    """Aggregate root for one emergency.

    The timeline, notification log and responder list only ever grow.
    Status leaves ``active`` at most once and never comes back.
    """

    emergency_id: str
    subject_id: str
    kind: EmergencyKind
    location: IncidentLocation
    trigger_time: datetime
    status: EmergencyStatus = EmergencyStatus.ACTIVE
    resolved_time: Optional[datetime] = None
    evidence: Dict[str, Any] = field(default_factory=dict)
    timeline: List[TimelineEntry] = field(default_factory=list)
    notifications: List[NotificationRecord] = field(default_factory=list)
    responders: List[ResponderAssignment] = field(default_factory=list)

    def log(self, event: str, details: Optional[dict] = None, at: Optional[datetime] = None) -> TimelineEntry:
        entry = TimelineEntry(timestamp=at or utcnow(), event=event, details=details or {})
        self.timeline.append(entry)
        return entry

    def record_notifications(self, records: List[NotificationRecord]) -> None:
        self.notifications.extend(records)

    def transition(self, status: EmergencyStatus, at: Optional[datetime] = None) -> None:
        if not status.is_terminal:
            raise InvalidInput(f"cannot move an emergency to {status.value}")
        if self.status.is_terminal:
            raise InvalidTransition(
                f"emergency {self.emergency_id} is already {self.status.value}"
            )
        self.status = status
        self.resolved_time = at or utcnow()

    def find_assignment(self, responder_id: str) -> Optional[ResponderAssignment]:
        for assignment in self.responders:
            if assignment.responder_id == responder_id:
                return assignment
        return None

    def to_dict(self) -> dict:
        return {
            "emergency_id": self.emergency_id,
            "subject_id": self.subject_id,
            "type": self.kind.value,
            "status": self.status.value,
            "location": self.location.to_dict(),
            "trigger_time": _iso(self.trigger_time),
            "resolved_time": _iso(self.resolved_time),
            "evidence": dict(self.evidence),
            "timeline": [entry.to_dict() for entry in self.timeline],
            "notifications": [record.to_dict() for record in self.notifications],
            "responders": [assignment.to_dict() for assignment in self.responders],
        }

    @classmethod
    def from_dict(cls, data: dict) -> EmergencyDescriptor:
        return cls(
            emergency_id=data["emergency_id"],
            subject_id=data["subject_id"],
            kind=EmergencyKind(data["type"]),
            location=IncidentLocation.parse(data["location"]),
            trigger_time=_parse_time(data["trigger_time"]),
            status=EmergencyStatus(data["status"]),
            resolved_time=_parse_time(data.get("resolved_time")),
            evidence=data.get("evidence") or {},
            timeline=[TimelineEntry.from_dict(item) for item in data.get("timeline", [])],
            notifications=[NotificationRecord.from_dict(item) for item in data.get("notifications", [])],
            responders=[ResponderAssignment.from_dict(item) for item in data.get("responders", [])],
        )


DEFAULT_RESPONDER_RADIUS_M = 5000.0


@dataclass(frozen=True)
class ResponderCandidate:
    responder_id: str
    name: str
    phone: str
    location: Optional[Coordinates]
    available: bool = True
    certified: bool = True
    radius_m: float = DEFAULT_RESPONDER_RADIUS_M
    rating: float = 5.0

    def to_dict(self) -> dict:
        return {
            "responder_id": self.responder_id,
            "name": self.name,
            "phone": self.phone,
            "location": self.location.to_dict() if self.location else None,
            "certified": self.certified,
            "availability": {"isAvailable": self.available, "radius": self.radius_m},
            "rating": self.rating,
        }


@dataclass(frozen=True)
class RankedResponder:
    candidate: ResponderCandidate
    distance_m: float
    eta_minutes: int
    bearing: float
    sector: int

    def to_dict(self) -> dict:
        return {
            "responder_id": self.candidate.responder_id,
            "name": self.candidate.name,
            "distance": round(self.distance_m, 1),
            "eta": self.eta_minutes,
            "bearing": round(self.bearing, 1),
            "sector": self.sector,
        }


@dataclass(frozen=True)
class RouteFix:
    coordinates: Coordinates
    timestamp: datetime

    def to_dict(self) -> dict:
        return {**self.coordinates.to_dict(), "timestamp": _iso(self.timestamp)}


@dataclass
class DeviationState:
    detected: bool = False
    detected_at: Optional[datetime] = None
    max_deviation: float = 0.0
    reason: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "detected": self.detected,
            "detected_at": _iso(self.detected_at),
            "max_deviation": round(self.max_deviation, 1),
            "reason": self.reason,
        }

    @classmethod
    def from_dict(cls, data: dict) -> DeviationState:
        return cls(
            detected=bool(data.get("detected", False)),
            detected_at=_parse_time(data.get("detected_at")),
            max_deviation=float(data.get("max_deviation") or 0.0),
            reason=data.get("reason"),
        )


@dataclass
class JourneyTracking:
    tracking_id: str
    subject_id: str
    origin: IncidentLocation
    destination: IncidentLocation
    expected_route: Tuple[Coordinates, ...] = ()
    actual_route: List[RouteFix] = field(default_factory=list)
    deviation: DeviationState = field(default_factory=DeviationState)
    status: TrackingStatus = TrackingStatus.ACTIVE
    vehicle_info: Dict[str, Any] = field(default_factory=dict)
    start_time: datetime = field(default_factory=utcnow)
    end_time: Optional[datetime] = None
    estimated_arrival: Optional[datetime] = None

    @property
    def is_open(self) -> bool:
        return self.status is not TrackingStatus.COMPLETED

    def to_dict(self) -> dict:
        return {
            "tracking_id": self.tracking_id,
            "subject_id": self.subject_id,
            "origin": self.origin.to_dict(),
            "destination": self.destination.to_dict(),
            "expected_route": [point.to_dict() for point in self.expected_route],
            "actual_route": [fix.to_dict() for fix in self.actual_route],
            "deviation": self.deviation.to_dict(),
            "status": self.status.value,
            "vehicle_info": dict(self.vehicle_info),
            "start_time": _iso(self.start_time),
            "end_time": _iso(self.end_time),
            "estimated_arrival": _iso(self.estimated_arrival),
        }

    @classmethod
    def from_dict(cls, data: dict) -> JourneyTracking:
        return cls(
            tracking_id=data["tracking_id"],
            subject_id=data["subject_id"],
            origin=IncidentLocation.parse(data["origin"]),
            destination=IncidentLocation.parse(data["destination"]),
            expected_route=tuple(Coordinates.parse(point) for point in data.get("expected_route", [])),
            actual_route=[
                RouteFix(Coordinates.parse(fix), _parse_time(fix["timestamp"]))
                for fix in data.get("actual_route", [])
            ],
            deviation=DeviationState.from_dict(data.get("deviation") or {}),
            status=TrackingStatus(data.get("status", "active")),
            vehicle_info=data.get("vehicle_info") or {},
            start_time=_parse_time(data["start_time"]),
            end_time=_parse_time(data.get("end_time")),
            estimated_arrival=_parse_time(data.get("estimated_arrival")),
        )


SAFE_SPOT_KINDS = frozenset(
    {"police_station", "hospital", "fire_station", "cafe", "store", "gas_station", "mall", "community_verified"}
)


@dataclass(frozen=True)
class SafeSpot:
    spot_id: str
    name: str
    kind: str
    location: Coordinates
    address: Optional[str] = None
    phone: Optional[str] = None
    open_24_7: bool = False
    verified: bool = False
    rating: float = 0.0

    def to_dict(self) -> dict:
        return {
            "spot_id": self.spot_id,
            "name": self.name,
            "type": self.kind,
            "location": {**self.location.to_dict(), "address": self.address},
            "phone": self.phone,
            "open_24_7": self.open_24_7,
            "verified": self.verified,
            "rating": self.rating,
        }


@dataclass(frozen=True)
class NearbySpot:
    spot: SafeSpot
    distance_m: float
    eta_minutes: int

    def to_dict(self) -> dict:
        return {**self.spot.to_dict(), "distance": round(self.distance_m, 1), "eta": self.eta_minutes}
