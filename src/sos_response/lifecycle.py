"""Emergency lifecycle: trigger, escalate, match responders, resolve.

Every write to one emergency (timeline, notification log, responder list)
happens while holding that emergency's lock, so each emergency observes a
single total order. Journey updates are serialised the same way per
tracking identifier.
"""
from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass, replace
from datetime import datetime, timedelta
from typing import Any, AsyncIterator, Awaitable, Callable, Dict, Iterable, List, Optional, Set

from sos_response import templates
from sos_response.config import EngineConfig
from sos_response.deviation import Observation, RouteDeviationMonitor
from sos_response.errors import InvalidInput, NoContactsConfigured, NotFound
from sos_response.matcher import DirectionalResponderMatcher
from sos_response.models import (
    DEFAULT_RESPONDER_RADIUS_M,
    SAFE_SPOT_KINDS,
    AssignmentStatus,
    Contact,
    Coordinates,
    EmergencyDescriptor,
    EmergencyKind,
    EmergencyStatus,
    IncidentLocation,
    JourneyTracking,
    NearbySpot,
    RankedResponder,
    ResponderAssignment,
    ResponderCandidate,
    RouteFix,
    SafeSpot,
    Subject,
    SubjectSettings,
    TrackingStatus,
    new_id,
    utcnow,
)
from sos_response.notifications import NotificationEscalationEngine
from sos_response.safe_spots import SafeSpotLocator
from sos_response.stores import (
    EmergencyStore,
    EventEmitter,
    InMemorySafeSpotDirectory,
    MessageSender,
    ResponderPool,
    SafeSpotDirectory,
    SubjectStore,
    TrackingStore,
)

logger = logging.getLogger(__name__)


class _KeyedEntry:
    __slots__ = ("lock", "users")

    def __init__(self) -> None:
        self.lock = asyncio.Lock()
        self.users = 0


class KeyedLocks:
    """One asyncio lock per identifier, dropped once nobody holds or waits on it.

    ``acquire`` and ``release`` may happen in different tasks, which lets a
    caller hand a held lock over to background delivery.
    """

    def __init__(self) -> None:
        self._entries: Dict[str, _KeyedEntry] = {}

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: str) -> bool:
        return key in self._entries

    async def acquire(self, key: str) -> None:
        entry = self._entries.get(key)
        if entry is None:
            entry = self._entries[key] = _KeyedEntry()
        entry.users += 1
        try:
            await entry.lock.acquire()
        except BaseException:
            self._drop(key, entry)
            raise

    def release(self, key: str) -> None:
        entry = self._entries[key]
        entry.lock.release()
        self._drop(key, entry)

    @asynccontextmanager
    async def hold(self, key: str) -> AsyncIterator[None]:
        await self.acquire(key)
        try:
            yield
        finally:
            self.release(key)

    def _drop(self, key: str, entry: _KeyedEntry) -> None:
        entry.users -= 1
        if entry.users == 0 and self._entries.get(key) is entry:
            del self._entries[key]


@dataclass(frozen=True)
class PositionUpdate:
    tracking: JourneyTracking
    location: Coordinates
    observation: Observation

    def to_dict(self) -> dict:
        return {
            "tracking_id": self.tracking.tracking_id,
            "location": self.location.to_dict(),
            "observation": self.observation.value,
            "status": self.tracking.status.value,
            "deviation": self.tracking.deviation.to_dict(),
        }


class EmergencyLifecycle:
    def __init__(
        self,
        subjects: SubjectStore,
        responders: ResponderPool,
        emergencies: EmergencyStore,
        trackings: TrackingStore,
        sender: MessageSender,
        events: EventEmitter,
        safe_spots: Optional[SafeSpotDirectory] = None,
        config: Optional[EngineConfig] = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.config = config or EngineConfig()
        self.subjects = subjects
        self.responders = responders
        self.emergencies = emergencies
        self.trackings = trackings
        self.events = events
        self.clock = clock
        self.notifier = NotificationEscalationEngine(
            sender,
            call_priority_cutoff=self.config.call_priority_cutoff,
            max_concurrency=self.config.max_concurrent_sends,
            clock=clock,
        )
        self.matcher = DirectionalResponderMatcher(default_limit=self.config.responder_limit)
        self.safe_spots = SafeSpotLocator(
            safe_spots if safe_spots is not None else InMemorySafeSpotDirectory(),
            default_radius_m=self.config.safe_spot_radius_m,
        )
        self.emergency_locks = KeyedLocks()
        self.tracking_locks = KeyedLocks()
        self._background: Set[asyncio.Task] = set()
        self._authority_calls: Dict[str, asyncio.Task] = {}

    # ------------------------------------------------------------------
    # Emergencies
    # ------------------------------------------------------------------

    async def trigger_emergency(
        self,
        subject_id: str,
        kind: str,
        location: Any,
        evidence: Optional[Dict[str, Any]] = None,
    ) -> EmergencyDescriptor:
        kind = self._parse_kind(kind)
        incident_location = IncidentLocation.parse(location)
        subject = self._require_subject(subject_id)

        now = self.clock()
        emergency = EmergencyDescriptor(
            emergency_id=new_id("EMG"),
            subject_id=subject_id,
            kind=kind,
            location=incident_location,
            trigger_time=now,
            evidence=dict(evidence or {}),
        )

        release = self._release_emergency(emergency.emergency_id)
        await self.emergency_locks.acquire(emergency.emergency_id)
        try:
            emergency.log(
                "emergency_triggered",
                {"type": kind.value, "location": incident_location.to_dict()},
                at=now,
            )
            self.emergencies.create(emergency)
        except BaseException:
            release()
            raise

        logger.critical(
            "EMERGENCY_TRIGGERED",
            extra={
                "emergency_id": emergency.emergency_id,
                "subject_id": subject_id,
                "kind": kind.value,
                "contact_count": len(subject.contacts),
            },
        )

        await self._follow_up(release, self._deliver_trigger(emergency.emergency_id, subject))
        await self._mark_journey_emergency(subject_id, emergency.emergency_id)

        if subject.settings.auto_call_authorities:
            self._schedule_authority_call(emergency.emergency_id)

        self.events.broadcast(
            "emergency_triggered",
            {
                "emergency_id": emergency.emergency_id,
                "user_id": subject_id,
                "type": kind.value,
                "location": incident_location.to_dict(),
            },
        )
        for contact in subject.contacts:
            self.events.emit_to(
                contact.phone,
                "emergency_alert",
                {
                    "emergency_id": emergency.emergency_id,
                    "user_name": subject.name,
                    "type": kind.value,
                    "location": incident_location.to_dict(),
                },
            )

        return self._require_emergency(emergency.emergency_id)

    async def resolve_emergency(
        self,
        emergency_id: str,
        status: str,
        reason: Optional[str] = None,
    ) -> EmergencyDescriptor:
        release = self._release_emergency(emergency_id)
        await self.emergency_locks.acquire(emergency_id)
        try:
            emergency = self._require_emergency(emergency_id)
            target = self._parse_status(status)
            now = self.clock()
            emergency.transition(target, at=now)
            emergency.log(f"emergency_{target.value}", {"reason": reason}, at=now)
            if self.config.cancel_authority_call_on_resolve and self._cancel_authority_call(emergency_id):
                emergency.log("authority_call_cancelled", {"number": self.config.authority_number}, at=now)
            self.emergencies.save(emergency)
        except BaseException:
            release()
            raise

        logger.info(
            "EMERGENCY_RESOLVED",
            extra={
                "emergency_id": emergency_id,
                "status": target.value,
                "time_to_resolve_seconds": (emergency.resolved_time - emergency.trigger_time).total_seconds(),
            },
        )

        subject = self.subjects.find_subject(emergency.subject_id)
        if subject is None:
            logger.warning("RESOLVE_SUBJECT_NOT_FOUND", extra={"subject_id": emergency.subject_id})
            release()
        else:
            await self._follow_up(release, self._deliver_relief(emergency_id, subject))

        self.events.broadcast("emergency_resolved", {"emergency_id": emergency_id, "status": target.value})
        return self._require_emergency(emergency_id)

    async def accept_response(self, emergency_id: str, responder_id: str) -> EmergencyDescriptor:
        async with self.emergency_locks.hold(emergency_id):
            emergency = self._require_emergency(emergency_id)
            assignment = emergency.find_assignment(responder_id)
            if assignment is None:
                logger.warning(
                    "RESPONDER_ASSIGNMENT_NOT_FOUND",
                    extra={"emergency_id": emergency_id, "responder_id": responder_id},
                )
                raise NotFound(f"responder {responder_id} is not assigned to emergency {emergency_id}")
            if assignment.status is AssignmentStatus.NOTIFIED:
                assignment.status = AssignmentStatus.ACCEPTED
                emergency.log("responder_accepted", {"responder_id": responder_id}, at=self.clock())
                self.emergencies.save(emergency)
                logger.info(
                    "RESPONDER_ACCEPTED",
                    extra={"emergency_id": emergency_id, "responder_id": responder_id},
                )

        self.events.emit_to(
            emergency.subject_id,
            "cpr_responder_accepted",
            {"emergency_id": emergency_id, "responder_id": responder_id, "eta": assignment.eta_minutes},
        )
        return emergency

    def match_responders(self, location: Any, limit: Optional[int] = None) -> List[RankedResponder]:
        coordinates = IncidentLocation.parse(location).coordinates
        return self.matcher.match(coordinates, self.responders.list_available_certified_responders(), limit)

    def get_emergency(self, emergency_id: str) -> EmergencyDescriptor:
        return self._require_emergency(emergency_id)

    def list_emergencies(self, subject_id: str, limit: int = 50) -> List[EmergencyDescriptor]:
        return self.emergencies.list_for_subject(subject_id, limit)

    # ------------------------------------------------------------------
    # Journeys
    # ------------------------------------------------------------------

    async def start_tracking(
        self,
        subject_id: str,
        origin: Any,
        destination: Any,
        expected_route: Iterable[Any] = (),
        vehicle_info: Optional[Dict[str, Any]] = None,
    ) -> JourneyTracking:
        subject = self._require_subject(subject_id)
        now = self.clock()
        tracking = JourneyTracking(
            tracking_id=new_id("TRK"),
            subject_id=subject_id,
            origin=IncidentLocation.parse(origin),
            destination=IncidentLocation.parse(destination),
            expected_route=tuple(Coordinates.parse(point) for point in expected_route),
            vehicle_info=dict(vehicle_info or {}),
            start_time=now,
            estimated_arrival=now + timedelta(minutes=self.config.journey_eta_minutes),
        )
        self.trackings.save(tracking)
        logger.info(
            "JOURNEY_STARTED",
            extra={
                "tracking_id": tracking.tracking_id,
                "subject_id": subject_id,
                "expected_points": len(tracking.expected_route),
            },
        )
        await self._text_top_contacts(subject, templates.journey_started(subject, tracking))
        return tracking

    async def update_tracking_position(self, tracking_id: str, coordinate: Any) -> PositionUpdate:
        point = Coordinates.parse(coordinate)

        async with self.tracking_locks.hold(tracking_id):
            tracking = self._require_tracking(tracking_id)
            now = self.clock()
            tracking.actual_route.append(RouteFix(point, now))
            monitor = RouteDeviationMonitor(
                tracking.expected_route,
                state=tracking.deviation,
                threshold_m=self.config.deviation_threshold_m,
            )
            observation = monitor.observe(point, at=now)
            if observation is Observation.NEWLY_DETECTED and tracking.status is TrackingStatus.ACTIVE:
                tracking.status = TrackingStatus.DEVIATION_ALERT
            self.trackings.save(tracking)

        if observation is Observation.NEWLY_DETECTED:
            logger.critical(
                "ROUTE_DEVIATION_DETECTED",
                extra={
                    "tracking_id": tracking_id,
                    "subject_id": tracking.subject_id,
                    "max_deviation_m": round(tracking.deviation.max_deviation, 1),
                },
            )
            await self._follow_up(None, self._deliver_deviation_alert(tracking, point))
            self.events.broadcast(
                "route_deviation",
                {"tracking_id": tracking_id, "deviation": tracking.deviation.to_dict()},
            )

        self.events.emit_to(
            tracking_id,
            "route_updated",
            {**point.to_dict(), "deviation": tracking.deviation.to_dict()},
        )
        return PositionUpdate(tracking=tracking, location=point, observation=observation)

    async def complete_tracking(self, tracking_id: str) -> JourneyTracking:
        async with self.tracking_locks.hold(tracking_id):
            tracking = self._require_tracking(tracking_id)
            if tracking.status is TrackingStatus.COMPLETED:
                return tracking
            tracking.status = TrackingStatus.COMPLETED
            tracking.end_time = self.clock()
            self.trackings.save(tracking)

        logger.info("JOURNEY_COMPLETED", extra={"tracking_id": tracking_id})
        subject = self.subjects.find_subject(tracking.subject_id)
        if subject is not None:
            await self._text_top_contacts(subject, templates.journey_completed(subject))
        return tracking

    async def update_subject_location(self, subject_id: str, coordinate: Any) -> Coordinates:
        point = Coordinates.parse(coordinate)
        self._require_subject(subject_id)
        self.subjects.record_location(subject_id, point)
        address = coordinate.get("address") if isinstance(coordinate, dict) else None

        self.events.emit_to(subject_id, "location_updated", {**point.to_dict(), "address": address})
        active = self.trackings.find_active(subject_id)
        if active is not None:
            self.events.emit_to(
                active.tracking_id,
                "live_location",
                {**point.to_dict(), "timestamp": self.clock().isoformat()},
            )
        return point

    def nearby_safe_spots(
        self,
        location: Any,
        radius_m: Optional[float] = None,
        kind: Optional[str] = None,
    ) -> List[NearbySpot]:
        return self.safe_spots.nearby(IncidentLocation.parse(location).coordinates, radius_m, kind)

    # ------------------------------------------------------------------
    # Profiles
    # ------------------------------------------------------------------

    def register_subject(
        self,
        subject_id: str,
        name: Optional[str] = None,
        phone: Optional[str] = None,
        email: Optional[str] = None,
        contacts: Optional[Iterable[Dict[str, Any]]] = None,
        settings: Optional[Dict[str, Any]] = None,
    ) -> Subject:
        """Create the profile, or update the fields that were supplied."""
        parsed_contacts = None if contacts is None else tuple(self._parse_contact(item) for item in contacts)
        existing = self.subjects.find_subject(subject_id)
        if existing is None:
            if not (subject_id and name and phone):
                raise InvalidInput("userId, name and phone are required to register a user")
            subject = Subject(
                subject_id=subject_id,
                name=name,
                phone=phone,
                email=email,
                contacts=parsed_contacts or (),
                settings=SubjectSettings().merged(settings),
            )
        else:
            subject = replace(
                existing,
                name=name or existing.name,
                phone=phone or existing.phone,
                email=email or existing.email,
                contacts=existing.contacts if parsed_contacts is None else parsed_contacts,
                settings=existing.settings.merged(settings),
            )
        self.subjects.add(subject)
        logger.info(
            "SUBJECT_REGISTERED",
            extra={"subject_id": subject_id, "created": existing is None, "contact_count": len(subject.contacts)},
        )
        return subject

    def get_subject(self, subject_id: str) -> Subject:
        return self._require_subject(subject_id)

    def register_responder(
        self,
        responder_id: str,
        name: Optional[str] = None,
        phone: Optional[str] = None,
        certified: Optional[bool] = None,
        location: Any = None,
    ) -> ResponderCandidate:
        point = Coordinates.parse(location) if location is not None else None
        existing = self.responders.find_responder(responder_id)
        if existing is None:
            if not (responder_id and name and phone):
                raise InvalidInput("userId, name and phone are required to register a responder")
            responder = ResponderCandidate(
                responder_id=responder_id,
                name=name,
                phone=phone,
                location=point,
                certified=True if certified is None else certified,
            )
        else:
            responder = replace(
                existing,
                name=name or existing.name,
                phone=phone or existing.phone,
                certified=existing.certified if certified is None else certified,
                location=point or existing.location,
            )
        self.responders.register(responder)
        logger.info("RESPONDER_REGISTERED", extra={"responder_id": responder_id, "created": existing is None})
        return responder

    def update_responder_location(self, responder_id: str, coordinate: Any) -> ResponderCandidate:
        responder = self.responders.update_location(responder_id, Coordinates.parse(coordinate))
        if responder is None:
            raise NotFound(f"responder {responder_id} not found")
        return responder

    def set_responder_availability(
        self,
        responder_id: str,
        available: bool,
        radius_m: Optional[float] = None,
    ) -> ResponderCandidate:
        radius_m = DEFAULT_RESPONDER_RADIUS_M if not radius_m else float(radius_m)
        if radius_m < 0:
            raise InvalidInput(f"radius must not be negative: {radius_m}")
        responder = self.responders.set_availability(responder_id, bool(available), radius_m)
        if responder is None:
            raise NotFound(f"responder {responder_id} not found")
        logger.info(
            "RESPONDER_AVAILABILITY_CHANGED",
            extra={"responder_id": responder_id, "available": responder.available, "radius_m": radius_m},
        )
        return responder

    def add_safe_spot(
        self,
        name: str,
        kind: str,
        location: Any,
        phone: Optional[str] = None,
        open_24_7: bool = False,
    ) -> SafeSpot:
        if kind not in SAFE_SPOT_KINDS:
            raise InvalidInput(f"unknown safe spot type: {kind}")
        place = IncidentLocation.parse(location)
        spot = SafeSpot(
            spot_id=new_id("SPOT"),
            name=name,
            kind=kind,
            location=place.coordinates,
            address=place.address,
            phone=phone,
            open_24_7=open_24_7,
            # Crowd-sourced spots stay unverified until reviewed.
            verified=kind != "community_verified",
        )
        self.safe_spots.directory.add(spot)
        logger.info("SAFE_SPOT_ADDED", extra={"spot_id": spot.spot_id, "kind": kind})
        return spot

    # ------------------------------------------------------------------
    # Background work
    # ------------------------------------------------------------------

    async def drain(self) -> None:
        """Wait for background delivery and pending authority calls."""
        while self._background or self._authority_calls:
            pending = list(self._background) + list(self._authority_calls.values())
            await asyncio.gather(*pending, return_exceptions=True)

    async def shutdown(self) -> None:
        pending = list(self._background) + list(self._authority_calls.values())
        for task in pending:
            task.cancel()
        await asyncio.gather(*pending, return_exceptions=True)
        self._background.clear()
        self._authority_calls.clear()

    def pending_authority_calls(self) -> List[str]:
        return sorted(self._authority_calls)

    async def _follow_up(self, release: Optional[Callable[[], None]], work: Awaitable[None]) -> None:
        """Run delivery work, then call ``release``.

        The caller already holds the emergency lock, so nothing else can touch
        the emergency between the state change and its delivery records. In
        background mode the lock is released from a done callback, which also
        fires when the task is cancelled before it starts.
        """
        if self.config.await_delivery:
            try:
                await work
            finally:
                if release is not None:
                    release()
            return

        task = self._spawn(work)
        if release is not None:
            task.add_done_callback(lambda _: release())

    def _release_emergency(self, emergency_id: str) -> Callable[[], None]:
        return lambda: self.emergency_locks.release(emergency_id)

    def _spawn(self, work: Awaitable[None]) -> asyncio.Task:
        task = asyncio.ensure_future(work)
        self._background.add(task)
        task.add_done_callback(self._background_done)
        return task

    def _background_done(self, task: asyncio.Task) -> None:
        self._background.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error("BACKGROUND_DELIVERY_FAILED", exc_info=task.exception())

    async def _deliver_trigger(self, emergency_id: str, subject: Subject) -> None:
        emergency = self._require_emergency(emergency_id)
        try:
            result = await self.notifier.escalate(
                subject.sorted_contacts(),
                templates.emergency_alert(subject, emergency),
            )
        except NoContactsConfigured as exc:
            logger.warning(
                "EMERGENCY_NO_CONTACTS",
                extra={"emergency_id": emergency_id, "subject_id": subject.subject_id},
            )
            emergency.log("no_contacts_configured", {"reason": exc.message}, at=self.clock())
        else:
            emergency.record_notifications(result.records)
            emergency.log("contacts_notified", result.summary(), at=self.clock())

        if emergency.kind is EmergencyKind.HEART_EMERGENCY:
            await self._dispatch_responders(emergency)
        self.emergencies.save(emergency)

    async def _dispatch_responders(self, emergency: EmergencyDescriptor) -> None:
        shortlist = self.matcher.match(
            emergency.location.coordinates,
            self.responders.list_available_certified_responders(),
            self.config.responder_limit,
        )
        for item in shortlist:
            emergency.responders.append(
                ResponderAssignment(
                    responder_id=item.candidate.responder_id,
                    name=item.candidate.name,
                    distance_m=round(item.distance_m, 1),
                    eta_minutes=item.eta_minutes,
                )
            )

        outcomes = await asyncio.gather(
            *(self.notifier.send_sms(item.candidate.phone, templates.cpr_request(emergency, item)) for item in shortlist)
        )
        emergency.log(
            "responders_notified",
            {
                "responder_ids": [item.candidate.responder_id for item in shortlist],
                "sms_sent": sum(1 for outcome in outcomes if outcome.ok),
            },
            at=self.clock(),
        )
        for item in shortlist:
            self.events.emit_to(
                item.candidate.responder_id,
                "cpr_request",
                {
                    "emergency_id": emergency.emergency_id,
                    "location": emergency.location.to_dict(),
                    "distance": round(item.distance_m, 1),
                    "eta": item.eta_minutes,
                },
            )
        logger.info(
            "CPR_RESPONDERS_DISPATCHED",
            extra={"emergency_id": emergency.emergency_id, "responder_count": len(shortlist)},
        )

    async def _deliver_relief(self, emergency_id: str, subject: Subject) -> None:
        emergency = self._require_emergency(emergency_id)
        try:
            result = await self.notifier.relieve(subject.sorted_contacts(), templates.safe_relief(subject, emergency))
        except NoContactsConfigured as exc:
            emergency.log("no_contacts_configured", {"reason": exc.message}, at=self.clock())
        else:
            emergency.record_notifications(result.records)
            emergency.log("contacts_relieved", result.summary(), at=self.clock())
        self.emergencies.save(emergency)

    async def _deliver_deviation_alert(self, tracking: JourneyTracking, position: Coordinates) -> None:
        subject = self.subjects.find_subject(tracking.subject_id)
        if subject is None:
            logger.warning("DEVIATION_SUBJECT_NOT_FOUND", extra={"subject_id": tracking.subject_id})
            return
        try:
            result = await self.notifier.escalate(
                subject.sorted_contacts(),
                templates.route_deviation_alert(subject, tracking, position),
            )
        except NoContactsConfigured:
            logger.warning("DEVIATION_NO_CONTACTS", extra={"tracking_id": tracking.tracking_id})
            return
        logger.info("DEVIATION_CONTACTS_ALERTED", extra={"tracking_id": tracking.tracking_id, **result.summary()})

    async def _text_top_contacts(self, subject: Subject, text: str) -> None:
        contacts = subject.sorted_contacts()[: self.config.journey_contact_count]
        await asyncio.gather(*(self.notifier.send_sms(contact.phone, text) for contact in contacts))

    def _schedule_authority_call(self, emergency_id: str) -> None:
        task = asyncio.ensure_future(self._call_authorities(emergency_id))
        self._authority_calls[emergency_id] = task

        def forget(done: asyncio.Task) -> None:
            if self._authority_calls.get(emergency_id) is done:
                del self._authority_calls[emergency_id]
            if not done.cancelled() and done.exception() is not None:
                logger.error("AUTHORITY_CALL_FAILED", exc_info=done.exception())

        task.add_done_callback(forget)
        logger.info(
            "AUTHORITY_CALL_SCHEDULED",
            extra={"emergency_id": emergency_id, "delay_seconds": self.config.authority_call_delay_s},
        )

    def _cancel_authority_call(self, emergency_id: str) -> bool:
        task = self._authority_calls.pop(emergency_id, None)
        if task is None or task.done():
            return False
        task.cancel()
        logger.info("AUTHORITY_CALL_CANCELLED", extra={"emergency_id": emergency_id})
        return True

    async def _call_authorities(self, emergency_id: str) -> None:
        await asyncio.sleep(self.config.authority_call_delay_s)
        number = self.config.authority_number
        async with self.emergency_locks.hold(emergency_id):
            emergency = self._require_emergency(emergency_id)
            outcome = await self.notifier.send_call(number, templates.authority_call(emergency))
            emergency.log(
                "authorities_notified",
                {"number": number, "status": "sent" if outcome.ok else "failed"},
                at=self.clock(),
            )
            self.emergencies.save(emergency)
        logger.critical("AUTHORITIES_NOTIFIED", extra={"emergency_id": emergency_id, "ok": outcome.ok})

    async def _mark_journey_emergency(self, subject_id: str, emergency_id: str) -> None:
        active = self.trackings.find_active(subject_id)
        if active is None:
            return
        async with self.tracking_locks.hold(active.tracking_id):
            tracking = self._require_tracking(active.tracking_id)
            if tracking.status in (TrackingStatus.COMPLETED, TrackingStatus.EMERGENCY):
                return
            tracking.status = TrackingStatus.EMERGENCY
            self.trackings.save(tracking)
        logger.info(
            "JOURNEY_MARKED_EMERGENCY",
            extra={"tracking_id": tracking.tracking_id, "emergency_id": emergency_id},
        )

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    @staticmethod
    def _parse_status(status: Any) -> EmergencyStatus:
        try:
            return EmergencyStatus(status)
        except ValueError as exc:
            raise InvalidInput(f"unknown emergency status: {status}") from exc

    @staticmethod
    def _parse_kind(kind: Any) -> EmergencyKind:
        try:
            return EmergencyKind(kind)
        except ValueError as exc:
            raise InvalidInput(f"unknown emergency type: {kind}") from exc

    @staticmethod
    def _parse_contact(data: Any) -> Contact:
        if not isinstance(data, dict):
            raise InvalidInput("each emergency contact must be an object")
        try:
            return Contact.from_dict(data)
        except KeyError as exc:
            raise InvalidInput(f"emergency contact is missing {exc.args[0]}") from exc
        except (TypeError, ValueError) as exc:
            raise InvalidInput(f"invalid emergency contact: {exc}") from exc

    def _require_subject(self, subject_id: str) -> Subject:
        subject = self.subjects.find_subject(subject_id)
        if subject is None:
            logger.warning("SUBJECT_NOT_FOUND", extra={"subject_id": subject_id})
            raise NotFound(f"user {subject_id} not found")
        return subject

    def _require_emergency(self, emergency_id: str) -> EmergencyDescriptor:
        emergency = self.emergencies.find_by_id(emergency_id)
        if emergency is None:
            logger.warning("EMERGENCY_NOT_FOUND", extra={"emergency_id": emergency_id})
            raise NotFound(f"emergency {emergency_id} not found")
        return emergency

    def _require_tracking(self, tracking_id: str) -> JourneyTracking:
        tracking = self.trackings.find_by_id(tracking_id)
        if tracking is None:
            logger.warning("TRACKING_NOT_FOUND", extra={"tracking_id": tracking_id})
            raise NotFound(f"tracking {tracking_id} not found")
        return tracking
