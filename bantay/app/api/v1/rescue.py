"""
FastAPI routes: rescue requests.

    POST /api/v1/rescue-requests                    — submit (any user)
    GET  /api/v1/rescue-requests?status=            — queue (handlers)
    GET  /api/v1/rescue-requests/nearby             — within radius (handlers)
    GET  /api/v1/rescue-requests/{number}           — one request
    POST /api/v1/rescue-requests/{number}/status    — status change (handlers)
    POST /api/v1/rescue-requests/{number}/assign    — assign responder (handlers)
    POST /api/v1/rescue-requests/{number}/notes     — add note

Handlers are admins, officials and responders.
"""

from __future__ import annotations

from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, Query

from bantay.app.api.deps import get_actor, get_rescue_service
from bantay.app.api.schemas import (
    RescueAssignRequest,
    RescueCreateRequest,
    RescueNoteRequest,
    RescueStatusRequest,
)
from bantay.app.core.auth import RESCUE_HANDLER_ROLES, Actor
from bantay.app.rescue.models import RescueRequestInput
from bantay.app.rescue.service import RescueRequestService
from bantay.app.spatial.radius_utils import format_distance

router = APIRouter(prefix="/api/v1/rescue-requests", tags=["rescue"])


def _view(record, actor: Actor) -> Dict[str, Any]:
    return record.to_dict(include_internal=actor.has_role(RESCUE_HANDLER_ROLES))


@router.post("", status_code=201, summary="Submit a rescue request")
async def create_request(
    body: RescueCreateRequest,
    actor: Actor = Depends(get_actor),
    service: RescueRequestService = Depends(get_rescue_service),
) -> Dict[str, Any]:
    data = RescueRequestInput(
        contact_name=body.contact_name,
        contact_phone=body.contact_phone,
        alternate_contact_name=body.alternate_contact_name,
        alternate_contact_phone=body.alternate_contact_phone,
        latitude=body.location.latitude,
        longitude=body.location.longitude,
        street=body.street,
        sitio=body.sitio,
        landmarks=body.landmarks,
        emergency_type=body.emergency_type,
        severity=body.severity,
        description=body.description,
        priority=body.priority,
        **body.persons_affected.model_dump(),
        **body.medical_info.model_dump(),
    )
    record = await service.create(data, actor)
    return _view(record, actor)


@router.get("", summary="Rescue queue by status")
async def list_requests(
    status: Optional[str] = Query(None, examples=["pending"]),
    limit: int = Query(50, ge=1, le=200),
    actor: Actor = Depends(get_actor),
    service: RescueRequestService = Depends(get_rescue_service),
) -> Dict[str, Any]:
    records = await service.list_by_status(actor, status, limit=limit)
    return {"count": len(records), "requests": [r.to_dict() for r in records]}


@router.get("/nearby", summary="Rescue requests within a radius")
async def nearby_requests(
    lat: float = Query(..., ge=-90, le=90),
    lon: float = Query(..., ge=-180, le=180),
    radius_km: float = Query(5.0),
    status: Optional[str] = Query(None),
    actor: Actor = Depends(get_actor),
    service: RescueRequestService = Depends(get_rescue_service),
) -> Dict[str, Any]:
    results = await service.list_within_radius(actor, lat, lon, radius_km, status=status)
    return {
        "center": {"latitude": lat, "longitude": lon},
        "radius_km": radius_km,
        "count": len(results),
        "requests": [
            {
                **r["request"].to_dict(),
                "distance_km": r["distance_km"],
                "distance": format_distance(r["distance_km"]),
            }
            for r in results
        ],
    }


@router.get("/{number}", summary="Get a rescue request")
async def get_request(
    number: str,
    actor: Actor = Depends(get_actor),
    service: RescueRequestService = Depends(get_rescue_service),
) -> Dict[str, Any]:
    record = await service.get(number, actor)
    return _view(record, actor)


@router.post("/{number}/status", summary="Change rescue request status")
async def update_status(
    number: str,
    body: RescueStatusRequest,
    actor: Actor = Depends(get_actor),
    service: RescueRequestService = Depends(get_rescue_service),
) -> Dict[str, Any]:
    record = await service.update_status(
        number, body.status, actor,
        notes=body.notes, outcome=body.outcome, final_notes=body.final_notes,
    )
    return _view(record, actor)


@router.post("/{number}/assign", summary="Assign a responder")
async def assign_responder(
    number: str,
    body: RescueAssignRequest,
    actor: Actor = Depends(get_actor),
    service: RescueRequestService = Depends(get_rescue_service),
) -> Dict[str, Any]:
    record = await service.assign_responder(
        number, body.responder_id, actor,
        team=body.team, estimated_arrival=body.estimated_arrival,
    )
    return _view(record, actor)


@router.post("/{number}/notes", status_code=201, summary="Add a note")
async def add_note(
    number: str,
    body: RescueNoteRequest,
    actor: Actor = Depends(get_actor),
    service: RescueRequestService = Depends(get_rescue_service),
) -> Dict[str, Any]:
    note = await service.add_note(number, actor, body.content, is_internal=body.is_internal)
    return {"request_number": number, "note": note.to_dict()}
