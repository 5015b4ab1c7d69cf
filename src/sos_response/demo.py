from __future__ import annotations

import asyncio
import logging
from dataclasses import replace
from typing import Optional

from sos_response.config import EngineConfig
from sos_response.lifecycle import EmergencyLifecycle
from sos_response.models import (
    Contact,
    Coordinates,
    ResponderCandidate,
    SafeSpot,
    Subject,
    SubjectSettings,
)
from sos_response.stores import (
    InMemoryEmergencyStore,
    InMemoryEventEmitter,
    InMemoryResponderPool,
    InMemorySafeSpotDirectory,
    InMemorySubjectStore,
    InMemoryTrackingStore,
    OutboxMessageSender,
)


def build_demo_lifecycle(config: Optional[EngineConfig] = None) -> EmergencyLifecycle:
    subjects = InMemorySubjectStore(
        [
            Subject(
                subject_id="USR-1",
                name="Asha Rao",
                phone="+91-900-000-0001",
                email="asha@example.com",
                contacts=(
                    Contact("CON-1", "Meera Rao", "+91-900-000-0101", "meera@example.com", "sister", priority=1),
                    Contact("CON-2", "Vikram Rao", "+91-900-000-0102", None, "father", priority=2),
                    Contact("CON-3", "Lena Park", "+91-900-000-0103", "lena@example.com", "friend", priority=3),
                ),
                settings=SubjectSettings(auto_call_authorities=True, route_tracking_enabled=True),
            )
        ]
    )
    responders = InMemoryResponderPool(
        [
            ResponderCandidate("CPR-1", "Dr. Iyer", "+91-900-000-0201", Coordinates(17.3860, 78.4867)),
            ResponderCandidate("CPR-2", "Nurse Khan", "+91-900-000-0202", Coordinates(17.3850, 78.4885)),
            ResponderCandidate("CPR-3", "Sam Paul", "+91-900-000-0203", Coordinates(17.3835, 78.4867)),
            ResponderCandidate("CPR-4", "Ravi Das", "+91-900-000-0204", Coordinates(17.3870, 78.4868)),
            ResponderCandidate(
                "CPR-5", "Off Duty", "+91-900-000-0205", Coordinates(17.3851, 78.4866), available=False
            ),
        ]
    )
    spots = InMemorySafeSpotDirectory(
        [
            SafeSpot("SPOT-1", "Central Police Station", "police_station", Coordinates(17.3850, 78.4867),
                     "MG Road, Hyderabad", "100", open_24_7=True, verified=True),
            SafeSpot("SPOT-2", "City Hospital Emergency", "hospital", Coordinates(17.3900, 78.4900),
                     "Hospital Road, Hyderabad", "108", open_24_7=True, verified=True),
            SafeSpot("SPOT-3", "Starbucks Coffee", "cafe", Coordinates(17.3875, 78.4890),
                     "Main Street, Hyderabad", "+91-40-12345678", open_24_7=True, verified=True),
            SafeSpot("SPOT-4", "Phoenix Mall", "mall", Coordinates(17.3920, 78.4920),
                     "Phoenix Road, Hyderabad", "+91-40-87654321", verified=True),
        ]
    )
    return EmergencyLifecycle(
        subjects=subjects,
        responders=responders,
        emergencies=InMemoryEmergencyStore(),
        trackings=InMemoryTrackingStore(),
        sender=OutboxMessageSender(),
        events=InMemoryEventEmitter(),
        safe_spots=spots,
        config=config or EngineConfig.from_env(),
    )


async def _walkthrough() -> None:
    lifecycle = build_demo_lifecycle(replace(EngineConfig(), authority_call_delay_s=0.1))
    incident = {"latitude": 17.3851, "longitude": 78.4867, "address": "MG Road, Hyderabad"}

    emergency = await lifecycle.trigger_emergency("USR-1", "heart_emergency", incident)
    await lifecycle.accept_response(emergency.emergency_id, emergency.responders[0].responder_id)
    await lifecycle.drain()
    emergency = await lifecycle.resolve_emergency(emergency.emergency_id, "resolved", "Ambulance arrived")

    print(f"=== SilentSOS emergency {emergency.emergency_id} ===")
    print(f"Type: {emergency.kind.label}  Status: {emergency.status.value}")
    print("\nNotifications:")
    for record in emergency.notifications:
        print(f" - {record.contact_name}: {record.channel.value} {record.status.value}")
    print("\nResponders:")
    for assignment in emergency.responders:
        print(f" - {assignment.name}: {assignment.distance_m}m, ETA {assignment.eta_minutes} min, {assignment.status.value}")
    print("\nTimeline:")
    for entry in emergency.timeline:
        print(f" - {entry.event}")
    print("\nNearest safe spots:")
    for item in lifecycle.nearby_safe_spots(incident)[:3]:
        print(f" - {item.spot.name} ({item.spot.kind}): {round(item.distance_m)}m, {item.eta_minutes} min walk")


def main() -> None:
    logging.basicConfig(level=logging.WARNING)
    asyncio.run(_walkthrough())


if __name__ == "__main__":
    main()
