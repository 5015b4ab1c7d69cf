from __future__ import annotations

import io
from contextlib import asynccontextmanager
from typing import Any, Dict, List, Optional

import uvicorn
from fastapi import FastAPI, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, StreamingResponse
from pydantic import BaseModel

from sos_response.demo import build_demo_lifecycle
from sos_response.errors import SOSError
from sos_response.lifecycle import EmergencyLifecycle
from sos_response.models import utcnow
from sos_response.reports import build_incident_pdf

ERROR_STATUS = {
    "not_found": 404,
    "invalid_transition": 409,
    "invalid_input": 400,
    "no_contacts_configured": 422,
}


class TriggerRequest(BaseModel):
    userId: str
    type: str
    location: Dict[str, Any]
    evidence: Optional[Dict[str, Any]] = None


class ResolveRequest(BaseModel):
    status: str
    reason: Optional[str] = None


class AcceptRequest(BaseModel):
    responderId: str


class RouteStartRequest(BaseModel):
    userId: str
    origin: Dict[str, Any]
    destination: Dict[str, Any]
    expectedRoute: List[Dict[str, Any]] = []
    vehicleInfo: Optional[Dict[str, Any]] = None


class UserRegisterRequest(BaseModel):
    userId: str
    name: Optional[str] = None
    phone: Optional[str] = None
    email: Optional[str] = None
    emergencyContacts: Optional[List[Dict[str, Any]]] = None
    settings: Optional[Dict[str, Any]] = None


class ResponderRegisterRequest(BaseModel):
    userId: str
    name: Optional[str] = None
    phone: Optional[str] = None
    certification: Optional[Dict[str, Any]] = None
    location: Optional[Dict[str, Any]] = None


class AvailabilityRequest(BaseModel):
    isAvailable: bool
    radius: Optional[float] = None


class SafeSpotRequest(BaseModel):
    name: str
    type: str
    location: Dict[str, Any]
    contact: Optional[Dict[str, Any]] = None
    hours: Optional[Dict[str, Any]] = None


def create_app(lifecycle: EmergencyLifecycle) -> FastAPI:
    @asynccontextmanager
    async def lifespan(_: FastAPI):
        yield
        await lifecycle.shutdown()

    app = FastAPI(title="SilentSOS Response Core", lifespan=lifespan)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["GET", "POST"],
        allow_headers=["*"],
    )
    app.state.lifecycle = lifecycle

    @app.exception_handler(SOSError)
    async def sos_error(_: Request, exc: SOSError) -> JSONResponse:
        return JSONResponse(status_code=ERROR_STATUS.get(exc.category, 400), content={"success": False, "error": exc.as_dict()})

    @app.exception_handler(RequestValidationError)
    async def bad_request(_: Request, exc: RequestValidationError) -> JSONResponse:
        fields = [".".join(str(part) for part in err["loc"]) for err in exc.errors()]
        return JSONResponse(
            status_code=400,
            content={
                "success": False,
                "error": {"category": "invalid_input", "message": f"invalid or missing fields: {', '.join(fields)}"},
            },
        )

    @app.get("/api/health")
    async def health():
        return {"status": "ok", "message": "SilentSOS response core is running", "timestamp": utcnow().isoformat()}

    @app.post("/api/emergency/trigger")
    async def trigger(body: TriggerRequest):
        emergency = await lifecycle.trigger_emergency(body.userId, body.type, body.location, body.evidence)
        return {
            "success": True,
            "message": "Emergency SOS triggered successfully",
            "emergency": emergency.to_dict(),
            "notificationsSent": len(emergency.notifications),
        }

    @app.post("/api/emergency/{emergency_id}/resolve")
    async def resolve(emergency_id: str, body: ResolveRequest):
        emergency = await lifecycle.resolve_emergency(emergency_id, body.status, body.reason)
        return {"success": True, "message": "Emergency resolved successfully", "emergency": emergency.to_dict()}

    @app.get("/api/emergency/{emergency_id}")
    async def emergency_detail(emergency_id: str):
        return {"success": True, "emergency": lifecycle.get_emergency(emergency_id).to_dict()}

    @app.get("/api/emergency/{emergency_id}/report.pdf")
    async def emergency_report(emergency_id: str):
        emergency = lifecycle.get_emergency(emergency_id)
        subject = lifecycle.subjects.find_subject(emergency.subject_id)
        content = build_incident_pdf(emergency, subject.name if subject else None)
        return StreamingResponse(
            io.BytesIO(content),
            media_type="application/pdf",
            headers={"Content-Disposition": f"attachment; filename=incident_{emergency_id}.pdf"},
        )

    @app.post("/api/user/register")
    async def user_register(body: UserRegisterRequest):
        created = lifecycle.subjects.find_subject(body.userId) is None
        subject = lifecycle.register_subject(
            body.userId, body.name, body.phone, body.email, body.emergencyContacts, body.settings
        )
        return {
            "success": True,
            "message": "User registered successfully" if created else "User updated successfully",
            "user": subject.to_dict(),
        }

    @app.get("/api/user/{user_id}")
    async def user_detail(user_id: str):
        return {"success": True, "user": lifecycle.get_subject(user_id).to_dict()}

    @app.get("/api/user/{user_id}/emergencies")
    async def emergency_history(user_id: str):
        emergencies = lifecycle.list_emergencies(user_id)
        return {"success": True, "emergencies": [e.to_dict() for e in emergencies]}

    @app.post("/api/user/{user_id}/location")
    async def user_location(user_id: str, body: Dict[str, Any]):
        point = await lifecycle.update_subject_location(user_id, body)
        return {"success": True, "location": {**point.to_dict(), "address": body.get("address")}}

    @app.post("/api/route/start")
    async def route_start(body: RouteStartRequest):
        tracking = await lifecycle.start_tracking(
            body.userId, body.origin, body.destination, body.expectedRoute, body.vehicleInfo
        )
        return {"success": True, "message": "Route tracking started", "tracking": tracking.to_dict()}

    @app.post("/api/route/{tracking_id}/update")
    async def route_update(tracking_id: str, body: Dict[str, Any]):
        update = await lifecycle.update_tracking_position(tracking_id, body)
        return {"success": True, **update.to_dict()}

    @app.post("/api/route/{tracking_id}/complete")
    async def route_complete(tracking_id: str):
        tracking = await lifecycle.complete_tracking(tracking_id)
        return {"success": True, "message": "Route tracking completed", "tracking": tracking.to_dict()}

    @app.post("/api/cpr/register")
    async def cpr_register(body: ResponderRegisterRequest):
        certification = body.certification or {}
        responder = lifecycle.register_responder(
            body.userId, body.name, body.phone, certification.get("certified"), body.location
        )
        return {"success": True, "message": "CPR responder registered successfully", "responder": responder.to_dict()}

    @app.post("/api/cpr/{responder_id}/location")
    async def cpr_location(responder_id: str, body: Dict[str, Any]):
        responder = lifecycle.update_responder_location(responder_id, body)
        return {"success": True, "location": responder.location.to_dict()}

    @app.post("/api/cpr/{responder_id}/availability")
    async def cpr_availability(responder_id: str, body: AvailabilityRequest):
        responder = lifecycle.set_responder_availability(responder_id, body.isAvailable, body.radius)
        return {"success": True, "availability": responder.to_dict()["availability"]}

    @app.post("/api/cpr/accept/{emergency_id}")
    async def cpr_accept(emergency_id: str, body: AcceptRequest):
        emergency = await lifecycle.accept_response(emergency_id, body.responderId)
        return {"success": True, "message": "CPR response accepted", "emergency": emergency.to_dict()}

    @app.get("/api/cpr/nearby")
    async def cpr_nearby(latitude: float, longitude: float, limit: int = Query(3, ge=1, le=20)):
        matches = lifecycle.match_responders({"latitude": latitude, "longitude": longitude}, limit)
        return {"success": True, "count": len(matches), "responders": [m.to_dict() for m in matches]}

    @app.get("/api/safespots/nearby")
    async def safe_spots_nearby(
        latitude: float,
        longitude: float,
        radius: float = 5000,
        type: Optional[str] = None,  # noqa: A002
    ):
        spots = lifecycle.nearby_safe_spots({"latitude": latitude, "longitude": longitude}, radius, type)
        return {"success": True, "count": len(spots), "spots": [s.to_dict() for s in spots]}

    @app.post("/api/safespots/add")
    async def safe_spot_add(body: SafeSpotRequest):
        contact = body.contact or {}
        hours = body.hours or {}
        spot = lifecycle.add_safe_spot(
            body.name, body.type, body.location, contact.get("phone"), bool(hours.get("open24_7", False))
        )
        return {"success": True, "message": "Safe spot added successfully", "spot": spot.to_dict()}

    return app


def run(host: str = "0.0.0.0", port: int = 3000) -> None:
    uvicorn.run(create_app(build_demo_lifecycle()), host=host, port=port)


if __name__ == "__main__":
    run()
