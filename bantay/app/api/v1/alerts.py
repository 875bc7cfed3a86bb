"""
FastAPI routes: barangay alert lifecycle and broadcasting.

Provides endpoints to:
    POST  /api/v1/alerts                        — create a draft
    GET   /api/v1/alerts                        — list (filters)
    GET   /api/v1/alerts/active?area=           — live alerts for a sitio
    GET   /api/v1/alerts/nearby?lat=&lon=       — live alerts near a point
    GET   /api/v1/alerts/statistics/summary     — aggregate statistics
    WS    /api/v1/alerts/feed                   — live web-display feed
    GET   /api/v1/alerts/{code}                 — full alert with history
    PATCH /api/v1/alerts/{code}                 — edit a draft
    POST  /api/v1/alerts/{code}/publish         — publish + background dispatch
    POST  /api/v1/alerts/{code}/extend          — move expiry
    POST  /api/v1/alerts/{code}/deactivate      — take out of circulation
    POST  /api/v1/alerts/{code}/acknowledge     — resident "I'm safe"
    GET   /api/v1/alerts/{code}/statistics      — delivery + ack statistics
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, Query, WebSocket, WebSocketDisconnect
from fastapi.responses import JSONResponse

from bantay.app.alerts.alert_service import AlertService
from bantay.app.alerts.models import AlertChannel, AlertContent
from bantay.app.api.deps import get_actor, get_alert_service
from bantay.app.api.schemas import (
    AcknowledgeRequest,
    AlertCreateRequest,
    AlertUpdateRequest,
    DeactivateRequest,
    ExtendRequest,
)
from bantay.app.core.auth import Actor

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/alerts", tags=["alerts"])


# ---------------------------------------------------------------------------
# Collection routes (declared before /{code} so they are not captured by it)
# ---------------------------------------------------------------------------

@router.post(
    "",
    status_code=201,
    summary="Create an alert draft",
    description="Validates content and stores an unpublished draft. Admin / official only.",
)
async def create_alert(
    body: AlertCreateRequest,
    actor: Actor = Depends(get_actor),
    service: AlertService = Depends(get_alert_service),
) -> Dict[str, Any]:
    content = AlertContent(
        title=body.title,
        message=body.message,
        alert_type=body.alert_type,
        severity=body.severity,
        expires_at=body.expires_at,
        target_area=body.target_area.to_domain(),
        instructions=body.instructions.to_domain() if body.instructions else {},
        channels=body.channels if body.channels is not None else list(AlertChannel),
    )
    record = await service.create(content, actor)
    return record.to_dict()


@router.get("", summary="List alerts")
async def list_alerts(
    active: Optional[bool] = Query(None),
    published: Optional[bool] = Query(None),
    alert_type: Optional[str] = Query(None),
    severity: Optional[str] = Query(None),
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    service: AlertService = Depends(get_alert_service),
) -> Dict[str, Any]:
    records = await service.lifecycle.list_alerts(
        active=active, published=published,
        alert_type=alert_type, severity=severity,
        limit=limit, offset=offset,
    )
    return {"count": len(records), "alerts": [r.to_dict() for r in records]}


@router.get(
    "/active",
    summary="Live alerts for a sitio",
    description="Published, active, unexpired alerts that are barangay-wide or list the area. Critical first.",
)
async def active_alerts(
    area: str = Query(..., min_length=1, examples=["Sitio Centro"]),
    service: AlertService = Depends(get_alert_service),
) -> Dict[str, Any]:
    alerts = await service.lifecycle.list_active_for_area(area)
    return {"area": area, "count": len(alerts), "alerts": alerts}


@router.get(
    "/nearby",
    summary="Live alerts near a point",
    description="Barangay-wide alerts plus radius alerts centred within radius_km of the point.",
)
async def nearby_alerts(
    lat: float = Query(..., ge=-90, le=90),
    lon: float = Query(..., ge=-180, le=180),
    radius_km: float = Query(5.0),
    service: AlertService = Depends(get_alert_service),
) -> Dict[str, Any]:
    alerts = await service.lifecycle.list_within_radius(lat, lon, radius_km)
    return {
        "center": {"latitude": lat, "longitude": lon},
        "radius_km": radius_km,
        "count": len(alerts),
        "alerts": alerts,
    }


@router.get("/statistics/summary", summary="Aggregate alert statistics")
async def statistics_summary(
    start: Optional[datetime] = Query(None),
    end: Optional[datetime] = Query(None),
    service: AlertService = Depends(get_alert_service),
) -> Dict[str, Any]:
    return await service.summary(start, end)


@router.websocket("/feed")
async def alert_feed(websocket: WebSocket) -> None:
    """Dashboards subscribe here; every published alert is pushed once."""
    service: AlertService = websocket.app.state.alert_service
    if not await service.feed.connect(websocket):
        return
    try:
        while True:
            # client messages are ignored; reading detects disconnects
            await websocket.receive_text()
    except WebSocketDisconnect:
        pass
    finally:
        await service.feed.disconnect(websocket)


# ---------------------------------------------------------------------------
# Single-alert routes
# ---------------------------------------------------------------------------

@router.get("/{code}", summary="Alert with audit trail, acknowledgments and deliveries")
async def get_alert(
    code: str,
    service: AlertService = Depends(get_alert_service),
) -> Dict[str, Any]:
    record = await service.get(code)
    return record.to_dict()


@router.patch("/{code}", summary="Edit an unpublished draft")
async def update_alert(
    code: str,
    body: AlertUpdateRequest,
    actor: Actor = Depends(get_actor),
    service: AlertService = Depends(get_alert_service),
) -> Dict[str, Any]:
    record = await service.update_draft(code, body.to_changes(), actor)
    return record.to_dict()


@router.post(
    "/{code}/publish",
    status_code=202,
    summary="Publish an alert",
    description=(
        "Marks the alert published and returns immediately; delivery to "
        "recipients continues in the background."
    ),
)
async def publish_alert(
    code: str,
    actor: Actor = Depends(get_actor),
    service: AlertService = Depends(get_alert_service),
) -> Dict[str, Any]:
    result = await service.publish(code, actor)
    return result.to_dict()


@router.post("/{code}/extend", summary="Extend an alert's expiry")
async def extend_alert(
    code: str,
    body: ExtendRequest,
    actor: Actor = Depends(get_actor),
    service: AlertService = Depends(get_alert_service),
) -> Dict[str, Any]:
    record = await service.extend(code, body.expires_at, actor, body.reason)
    return record.to_dict()


@router.post("/{code}/deactivate", summary="Deactivate an alert")
async def deactivate_alert(
    code: str,
    body: Optional[DeactivateRequest] = None,
    actor: Actor = Depends(get_actor),
    service: AlertService = Depends(get_alert_service),
) -> Dict[str, Any]:
    record = await service.deactivate(code, actor, body.reason if body else None)
    return record.to_dict()


@router.post(
    "/{code}/acknowledge",
    summary="Acknowledge an alert",
    description="Idempotent: repeat calls return the first acknowledgment with 200.",
    responses={201: {"description": "Acknowledgment recorded"}, 200: {"description": "Already acknowledged"}},
)
async def acknowledge_alert(
    code: str,
    body: Optional[AcknowledgeRequest] = None,
    actor: Actor = Depends(get_actor),
    service: AlertService = Depends(get_alert_service),
):
    location = body.location.to_domain() if body and body.location else None
    ack, created = await service.acknowledge(code, actor, location)
    return JSONResponse(
        status_code=201 if created else 200,
        content={"alert_id": code, "created": created, "acknowledgment": ack.to_dict()},
    )


@router.get("/{code}/statistics", summary="Delivery and acknowledgment statistics")
async def alert_statistics(
    code: str,
    service: AlertService = Depends(get_alert_service),
) -> Dict[str, Any]:
    return await service.statistics(code)
