"""
FastAPI routes: typed notification triggers.

Each route builds its event from the standard copy in
``backend.app.notifications.copy`` and runs it through the pipeline, so
callers never pick titles, priorities or deep links themselves.

    POST /api/v1/triggers/panic/{panic_id}/started
    POST /api/v1/triggers/panic/{panic_id}/movement
    POST /api/v1/triggers/panic/{panic_id}/ended
    POST /api/v1/triggers/incidents/{incident_id}/reported
    POST /api/v1/triggers/incidents/{incident_id}/status
    POST /api/v1/triggers/amber/{amber_id}/alert
    POST /api/v1/triggers/amber/{amber_id}/closed
    POST /api/v1/triggers/look-after-me/{session_id}/started
    POST /api/v1/triggers/look-after-me/{session_id}/ended
    POST /api/v1/triggers/comments/{thread_id}
"""

from __future__ import annotations

from fastapi import APIRouter, Request

from backend.app.api.schemas import (
    DispatchResponse,
    GeoTriggerRequest,
    IncidentStatusTriggerRequest,
    LookAfterMeTriggerRequest,
    TargetedTriggerRequest,
)
from backend.app.core.config import settings
from backend.app.notifications import copy
from backend.app.notifications.models import NotificationEvent
from backend.app.notifications.pipeline import process_event

router = APIRouter(prefix="/api/v1/triggers", tags=["triggers"])


async def _run(event: NotificationEvent, request: Request) -> DispatchResponse:
    report = await process_event(event, request.app.state.pipeline)
    return DispatchResponse(**report.to_dict())


def _radius(body: GeoTriggerRequest) -> float:
    return body.radius_km or settings.DEFAULT_INCIDENT_RADIUS_KM


# ── Panic ──

@router.post("/panic/{panic_id}/started", response_model=DispatchResponse)
async def panic_started(panic_id: str, body: GeoTriggerRequest, request: Request):
    event = copy.panic_started(
        panic_id, body.triggered_by, body.location.to_location(), radius_km=_radius(body),
    )
    return await _run(event, request)


@router.post("/panic/{panic_id}/movement", response_model=DispatchResponse)
async def panic_movement(panic_id: str, body: GeoTriggerRequest, request: Request):
    event = copy.panic_movement(
        panic_id, body.triggered_by, body.location.to_location(), radius_km=_radius(body),
    )
    return await _run(event, request)


@router.post("/panic/{panic_id}/ended", response_model=DispatchResponse)
async def panic_ended(panic_id: str, body: TargetedTriggerRequest, request: Request):
    return await _run(copy.panic_ended(panic_id, body.triggered_by, body.target_user_ids), request)


# ── Incidents ──

@router.post("/incidents/{incident_id}/reported", response_model=DispatchResponse)
async def incident_reported(incident_id: str, body: GeoTriggerRequest, request: Request):
    event = copy.incident_reported(
        incident_id, body.triggered_by, body.location.to_location(), radius_km=_radius(body),
    )
    return await _run(event, request)


@router.post("/incidents/{incident_id}/status", response_model=DispatchResponse)
async def incident_status_changed(
    incident_id: str, body: IncidentStatusTriggerRequest, request: Request,
):
    event = copy.incident_status_changed(
        incident_id, body.triggered_by, body.status, body.target_user_ids,
    )
    return await _run(event, request)


# ── Amber ──

@router.post("/amber/{amber_id}/alert", response_model=DispatchResponse)
async def amber_alert(amber_id: str, body: TargetedTriggerRequest, request: Request):
    return await _run(copy.amber_alert(amber_id, body.triggered_by, body.target_user_ids), request)


@router.post("/amber/{amber_id}/closed", response_model=DispatchResponse)
async def amber_closed(amber_id: str, body: TargetedTriggerRequest, request: Request):
    return await _run(copy.amber_closed(amber_id, body.triggered_by, body.target_user_ids), request)


# ── Look after me ──

@router.post("/look-after-me/{session_id}/started", response_model=DispatchResponse)
async def look_after_me_started(session_id: str, body: LookAfterMeTriggerRequest, request: Request):
    event = copy.look_after_me(
        session_id, body.triggered_by, body.user_name, body.target_user_ids, started=True,
    )
    return await _run(event, request)


@router.post("/look-after-me/{session_id}/ended", response_model=DispatchResponse)
async def look_after_me_ended(session_id: str, body: LookAfterMeTriggerRequest, request: Request):
    event = copy.look_after_me(
        session_id, body.triggered_by, body.user_name, body.target_user_ids, started=False,
    )
    return await _run(event, request)


# ── Community ──

@router.post("/comments/{thread_id}", response_model=DispatchResponse)
async def comment_added(thread_id: str, body: TargetedTriggerRequest, request: Request):
    return await _run(copy.comment_added(thread_id, body.triggered_by, body.target_user_ids), request)
