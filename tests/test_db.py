import asyncio
from datetime import datetime, timedelta, timezone

from helpers import ORIGIN, TWO_CONTACTS, offset, subject
from sos_response.config import EngineConfig
from sos_response.db import SQLiteEmergencyStore, SQLiteTrackingStore, get_conn, init_db
from sos_response.lifecycle import EmergencyLifecycle
from sos_response.models import (
    EmergencyDescriptor,
    EmergencyKind,
    EmergencyStatus,
    IncidentLocation,
    JourneyTracking,
    TrackingStatus,
)
from sos_response.stores import (
    InMemoryEventEmitter,
    InMemoryResponderPool,
    InMemorySubjectStore,
    OutboxMessageSender,
)

T0 = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)


def _emergency(emergency_id: str, minutes: int = 0, subject_id: str = "USR-1") -> EmergencyDescriptor:
    return EmergencyDescriptor(
        emergency_id=emergency_id,
        subject_id=subject_id,
        kind=EmergencyKind.FALL_DETECTION,
        location=IncidentLocation(ORIGIN, accuracy=12.5, address="MG Road"),
        trigger_time=T0 + timedelta(minutes=minutes),
        evidence={"audio": "clip-1.m4a"},
    )


def _journey(tracking_id: str, minutes: int = 0, status: TrackingStatus = TrackingStatus.ACTIVE) -> JourneyTracking:
    return JourneyTracking(
        tracking_id=tracking_id,
        subject_id="USR-1",
        origin=IncidentLocation(ORIGIN, address="Home"),
        destination=IncidentLocation(offset(ORIGIN, 90, 2000), address="Office"),
        expected_route=(ORIGIN, offset(ORIGIN, 90, 2000)),
        status=status,
        start_time=T0 + timedelta(minutes=minutes),
    )


def test_init_db_creates_tables(tmp_path) -> None:
    db_path = tmp_path / "sos.db"
    init_db(db_path)
    init_db(db_path)

    with get_conn(db_path) as conn:
        names = {row["name"] for row in conn.execute("SELECT name FROM sqlite_master WHERE type='table'")}

    assert {"emergencies", "route_trackings"} <= names


def test_emergency_document_round_trips(tmp_path) -> None:
    store = SQLiteEmergencyStore(tmp_path / "sos.db")
    emergency = _emergency("EMG_1")
    store.create(emergency)

    emergency.log("emergency_triggered", {"type": "fall_detection"}, at=T0)
    emergency.transition(EmergencyStatus.RESOLVED, at=T0 + timedelta(minutes=3))
    store.save(emergency)

    loaded = store.find_by_id("EMG_1")
    assert loaded == emergency
    assert loaded.location.address == "MG Road"
    assert loaded.resolved_time == T0 + timedelta(minutes=3)
    assert store.find_by_id("EMG_missing") is None


def test_history_is_newest_first_and_per_subject(tmp_path) -> None:
    store = SQLiteEmergencyStore(tmp_path / "sos.db")
    store.create(_emergency("EMG_old", minutes=0))
    store.create(_emergency("EMG_new", minutes=10))
    store.create(_emergency("EMG_other", minutes=5, subject_id="USR-2"))

    assert [e.emergency_id for e in store.list_for_subject("USR-1")] == ["EMG_new", "EMG_old"]
    assert [e.emergency_id for e in store.list_for_subject("USR-1", limit=1)] == ["EMG_new"]


def test_find_active_skips_completed_journeys(tmp_path) -> None:
    store = SQLiteTrackingStore(tmp_path / "sos.db")
    store.save(_journey("TRK_done", minutes=20, status=TrackingStatus.COMPLETED))
    store.save(_journey("TRK_old", minutes=0))
    store.save(_journey("TRK_alert", minutes=10, status=TrackingStatus.DEVIATION_ALERT))

    assert store.find_active("USR-1").tracking_id == "TRK_alert"
    assert store.find_active("USR-2") is None

    loaded = store.find_by_id("TRK_old")
    assert loaded.expected_route == _journey("TRK_old").expected_route
    assert loaded.status is TrackingStatus.ACTIVE


def test_lifecycle_runs_on_sqlite_stores(tmp_path) -> None:
    db_path = tmp_path / "sos.db"
    lifecycle = EmergencyLifecycle(
        subjects=InMemorySubjectStore([subject(contacts=TWO_CONTACTS)]),
        responders=InMemoryResponderPool(),
        emergencies=SQLiteEmergencyStore(db_path),
        trackings=SQLiteTrackingStore(db_path),
        sender=OutboxMessageSender(),
        events=InMemoryEventEmitter(),
        config=EngineConfig(authority_call_delay_s=0.01),
    )
    incident = {"latitude": ORIGIN.latitude, "longitude": ORIGIN.longitude}

    async def scenario():
        emergency = await lifecycle.trigger_emergency("USR-1", "manual", incident)
        tracking = await lifecycle.start_tracking("USR-1", incident, offset(ORIGIN, 90, 2000).to_dict(), [incident])
        await lifecycle.update_tracking_position(tracking.tracking_id, offset(ORIGIN, 0, 900).to_dict())
        await lifecycle.resolve_emergency(emergency.emergency_id, "resolved", "safe")
        return emergency.emergency_id, tracking.tracking_id

    emergency_id, tracking_id = asyncio.run(scenario())

    reopened = SQLiteEmergencyStore(db_path).find_by_id(emergency_id)
    assert reopened.status is EmergencyStatus.RESOLVED
    assert [entry.event for entry in reopened.timeline] == [
        "emergency_triggered",
        "contacts_notified",
        "emergency_resolved",
        "contacts_relieved",
    ]
    assert len(reopened.notifications) == 7

    journey = SQLiteTrackingStore(db_path).find_by_id(tracking_id)
    assert journey.status is TrackingStatus.DEVIATION_ALERT
    assert journey.deviation.detected is True
    assert len(journey.actual_route) == 1
