"""Human readable alert text, one ``AlertMessage`` per alert kind."""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime

from sos_response.models import (
    Coordinates,
    EmergencyDescriptor,
    IncidentLocation,
    JourneyTracking,
    RankedResponder,
    Subject,
)


@dataclass(frozen=True)
class AlertMessage:
    """Text for every channel of one alert."""

    sms: str
    call: str
    email_subject: str
    email_body: str


def _when(value: datetime) -> str:
    return value.strftime("%Y-%m-%d %H:%M:%S %Z").strip()


def emergency_alert(subject: Subject, emergency: EmergencyDescriptor) -> AlertMessage:
    location = emergency.location
    sms = (
        "EMERGENCY ALERT!\n\n"
        f"{subject.name} has triggered an emergency SOS.\n\n"
        f"Type: {emergency.kind.label}\n"
        f"Location: {location.describe()}\n"
        f"Time: {_when(emergency.trigger_time)}\n\n"
        f"View live location: {location.map_url()}\n\n"
        f"Emergency ID: {emergency.emergency_id}\n\n"
        "Please check on them immediately!"
    )
    call = (
        f"Emergency alert. {subject.name} has triggered an SOS. Please check on them immediately. "
        "Their location has been sent to your phone."
    )
    email_body = (
        '<div style="font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto;">'
        "<h1>EMERGENCY ALERT</h1>"
        f"<p><strong>{subject.name}</strong> has triggered an emergency SOS.</p>"
        f"<p><strong>Type:</strong> {emergency.kind.label}</p>"
        f"<p><strong>Time:</strong> {_when(emergency.trigger_time)}</p>"
        f"<p><strong>Location:</strong> {location.describe()}</p>"
        f'<p><a href="{location.map_url()}">View Live Location</a></p>'
        f"<p>Emergency ID: {emergency.emergency_id}</p>"
        "</div>"
    )
    return AlertMessage(
        sms=sms,
        call=call,
        email_subject=f"EMERGENCY: {subject.name} needs help!",
        email_body=email_body,
    )


def route_deviation_alert(subject: Subject, tracking: JourneyTracking, position: Coordinates) -> AlertMessage:
    deviation_m = round(tracking.deviation.max_deviation)
    map_url = IncidentLocation(position).map_url()
    detected_at = tracking.deviation.detected_at
    sms = (
        "ROUTE DEVIATION ALERT!\n\n"
        f"{subject.name}'s ride has deviated from the expected route.\n\n"
        f"Current location: {position.latitude}, {position.longitude}\n"
        f"Deviation: {deviation_m}m from expected path\n"
        + (f"Detected: {_when(detected_at)}\n" if detected_at else "")
        + f"\nView location: {map_url}\n\n"
        f"Tracking ID: {tracking.tracking_id}"
    )
    call = f"Route deviation alert. {subject.name}'s ride has left the expected route. Please check on them."
    email_body = (
        "<h2>Route deviation alert</h2>"
        f"<p>{subject.name}'s ride has deviated {deviation_m}m from the expected route.</p>"
        f'<p><a href="{map_url}">View location</a></p>'
        f"<p>Tracking ID: {tracking.tracking_id}</p>"
    )
    return AlertMessage(
        sms=sms,
        call=call,
        email_subject=f"Route deviation: {subject.name}",
        email_body=email_body,
    )


def safe_relief(subject: Subject, emergency: EmergencyDescriptor) -> AlertMessage:
    status = emergency.status.value.replace("_", " ")
    sms = f"SAFE: {subject.name} has marked themselves as safe. Emergency {status}. (ID {emergency.emergency_id})"
    return AlertMessage(
        sms=sms,
        call=sms,
        email_subject=f"{subject.name} is Safe",
        email_body=(
            "<h2>Good News!</h2>"
            f"<p>{subject.name} has confirmed they are safe and the emergency alert is {status}.</p>"
            f"<p>Emergency ID: {emergency.emergency_id}</p>"
        ),
    )


def journey_started(subject: Subject, tracking: JourneyTracking) -> str:
    vehicle = tracking.vehicle_info.get("type") or "Unknown"
    arrival = _when(tracking.estimated_arrival) if tracking.estimated_arrival else "unknown"
    return (
        f"{subject.name} has started a ride.\n\n"
        f"From: {tracking.origin.describe()}\n"
        f"To: {tracking.destination.describe()}\n"
        f"Vehicle: {vehicle}\n"
        f"Estimated arrival: {arrival}\n\n"
        f"Tracking ID: {tracking.tracking_id}"
    )


def journey_completed(subject: Subject) -> str:
    return f"{subject.name} has reached their destination safely."


def cpr_request(emergency: EmergencyDescriptor, responder: RankedResponder) -> str:
    return (
        "CPR EMERGENCY NEARBY!\n\n"
        f"Location: {emergency.location.describe()}\n"
        f"Distance: {round(responder.distance_m)}m\n"
        f"ETA: {responder.eta_minutes} mins\n\n"
        "Respond immediately if available!"
    )


def authority_call(emergency: EmergencyDescriptor) -> str:
    return (
        f"Emergency SOS triggered. Location: {emergency.location.latitude}, {emergency.location.longitude}. "
        f"Emergency ID {emergency.emergency_id}."
    )
