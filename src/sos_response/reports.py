from __future__ import annotations

import io
from typing import Optional

from reportlab.lib import colors
from reportlab.lib.pagesizes import letter
from reportlab.pdfgen import canvas

from sos_response.models import EmergencyDescriptor, utcnow


def build_incident_pdf(emergency: EmergencyDescriptor, subject_name: Optional[str] = None) -> bytes:
    """One incident report: header, timeline, notification log and responders."""
    buff = io.BytesIO()
    pdf = canvas.Canvas(buff, pagesize=letter)
    width, height = letter
    y = height - 40

    def line(text: str, font: str = "Helvetica", size: int = 9, step: int = 13) -> None:
        nonlocal y
        if y < 60:
            pdf.showPage()
            y = height - 40
        pdf.setFont(font, size)
        pdf.drawString(45, y, text[:110])
        y -= step

    def section(title: str) -> None:
        nonlocal y
        y -= 6
        pdf.setStrokeColor(colors.darkblue)
        pdf.line(40, y + 12, width - 40, y + 12)
        line(title, font="Helvetica-Bold", size=11, step=16)

    line(f"SilentSOS Incident Report {emergency.emergency_id}", font="Helvetica-Bold", size=14, step=18)
    line(f"Generated: {utcnow().isoformat()}", size=10, step=20)

    section("Summary")
    line(f"Person: {subject_name or emergency.subject_id}")
    line(f"Type: {emergency.kind.label}  |  Status: {emergency.status.value}")
    line(f"Triggered: {emergency.trigger_time.isoformat()}")
    if emergency.resolved_time:
        line(f"Closed: {emergency.resolved_time.isoformat()}")
    line(f"Location: {emergency.location.describe()}  ({emergency.location.map_url()})")

    section("Timeline")
    for entry in emergency.timeline:
        details = ", ".join(f"{key}={value}" for key, value in entry.details.items() if key != "location")
        line(f"{entry.timestamp.isoformat()}  {entry.event}  {details}")

    section(f"Notifications ({len(emergency.notifications)})")
    for record in emergency.notifications:
        line(f"{record.sent_at.isoformat()}  {record.contact_name}  {record.channel.value}  {record.status.value}")

    if emergency.responders:
        section(f"Responders ({len(emergency.responders)})")
        for assignment in emergency.responders:
            line(
                f"{assignment.name} ({assignment.responder_id})  {assignment.distance_m}m  "
                f"ETA {assignment.eta_minutes} min  {assignment.status.value}"
            )

    pdf.save()
    buff.seek(0)
    return buff.read()
