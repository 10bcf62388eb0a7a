"""
FastAPI routes: notification pipeline.

Provides endpoints to:
    POST /api/v1/notifications/dispatch              — run fan-out → dedup → dispatch
    POST /api/v1/notifications/score                 — urgency scores for an observer
    POST /api/v1/notifications/deep-link             — resolve a push payload's tap target
    PUT  /api/v1/notifications/locations/{user_id}   — update a user's geo index entry
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Dict

from fastapi import APIRouter, Body, Request

from backend.app.api.schemas import (
    DeepLinkResponse,
    DispatchResponse,
    GlowResponse,
    NotificationEventRequest,
    ScoredIncidentResponse,
    ScoreRequest,
    ScoreResponse,
    UserLocationRequest,
)
from backend.app.client.delivery_router import SUPPRESSED_EVENT_TYPES, deep_link
from backend.app.notifications.payloads import parse_push_payload
from backend.app.notifications.pipeline import PipelineContext, process_event
from backend.app.spatial.radius_utils import Coordinate
from backend.app.urgency.scorer import (
    is_calm,
    is_night_time,
    resolve_priority,
    score_many,
    urgency_glow,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/notifications", tags=["notifications"])


def _pipeline(request: Request) -> PipelineContext:
    return request.app.state.pipeline


@router.post("/dispatch", response_model=DispatchResponse)
async def dispatch_event(body: NotificationEventRequest, request: Request) -> DispatchResponse:
    """
    Deliver one notification event.

    Delivery problems never fail the request; they are reported as
    ``failed`` / ``push_failed`` counts and the outcome field.
    """
    report = await process_event(body.to_event(), _pipeline(request))
    return DispatchResponse(**report.to_dict())


@router.post("/score", response_model=ScoreResponse)
async def score_incidents(body: ScoreRequest) -> ScoreResponse:
    now = body.now or datetime.now(timezone.utc)
    night = is_night_time(now) if body.is_night is None else body.is_night
    observer = (
        Coordinate(body.observer.latitude, body.observer.longitude)
        if body.observer else None
    )
    incidents = [i.to_incident() for i in body.incidents]

    scored = score_many(incidents, observer, now, is_night=night)
    top = resolve_priority(incidents, observer, now, is_night=night)

    return ScoreResponse(
        count=len(scored),
        calm=is_calm(incidents, observer, now),
        is_night=night,
        priority_incident_id=top[0].id if top else None,
        incidents=[
            ScoredIncidentResponse(
                id=incident.id,
                score=result.score,
                tier=result.tier.value,
                urban=result.urban,
                breakdown=result.breakdown,
                glow=GlowResponse(**vars(urgency_glow(result.score, night))),
            )
            for incident, result in scored
        ],
    )


@router.post("/deep-link", response_model=DeepLinkResponse)
async def resolve_deep_link(payload: Dict[str, Any] = Body(...)) -> DeepLinkResponse:
    """Where tapping this push would land, and whether it is shown at all."""
    notification = parse_push_payload(payload)
    return DeepLinkResponse(
        url=deep_link(notification.data),
        tag=notification.tag,
        displayed=notification.event_type not in SUPPRESSED_EVENT_TYPES,
        tray_options=notification.tray_options(),
    )


@router.put("/locations/{user_id}")
async def update_location(user_id: str, body: UserLocationRequest, request: Request) -> Dict[str, Any]:
    await _pipeline(request).geo_index.upsert(body.to_watcher(user_id))
    logger.debug("Location updated for user=%s", user_id, extra={"user_id": user_id})
    return {"user_id": user_id, "ghost_mode": body.ghost_mode, "updated": True}
