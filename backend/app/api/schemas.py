"""
Pydantic schemas for the notification pipeline API.

Separated from the route handlers so they are reusable across
the codebase (background workers, tests).
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from backend.app.notifications.models import (
    EventLocation,
    NotificationEvent,
    NotificationPriority,
    RelatedType,
    WatcherLocation,
)
from backend.app.reminders.scheduler import ReminderType
from backend.app.urgency.scorer import Incident, IncidentStatus, IncidentType


# ---------------------------------------------------------------------------
# Request schemas
# ---------------------------------------------------------------------------

class LocationInput(BaseModel):
    latitude: float = Field(
        ..., ge=-90.0, le=90.0,
        description="Latitude in decimal degrees",
        examples=[-22.5609],
    )
    longitude: float = Field(
        ..., ge=-180.0, le=180.0,
        description="Longitude in decimal degrees",
        examples=[17.0832],
    )
    place_name: Optional[str] = Field(None, examples=["Independence Ave"])

    def to_location(self) -> EventLocation:
        return EventLocation(self.latitude, self.longitude, self.place_name)


class NotificationEventRequest(BaseModel):
    """Request body for POST /api/v1/notifications/dispatch."""
    event_type: str = Field(..., min_length=1, examples=["panic_started"])
    related_type: RelatedType = Field(..., examples=["panic"])
    related_id: str = Field(..., min_length=1, examples=["p-1024"])
    triggered_by: str = Field(..., min_length=1, examples=["u-7"])
    title: str = Field(..., min_length=1, examples=["Panic alert nearby"])
    body: str = Field("", examples=["Last seen near Independence Ave. Tap to view on map"])
    priority: NotificationPriority = Field(NotificationPriority.IMPORTANT)
    url: str = Field("/alerts", examples=["/map?panic=p-1024"])
    location: Optional[LocationInput] = None
    radius_km: Optional[float] = Field(
        None, gt=0.0, le=500.0,
        description="Geo fan-out radius; used when target_user_ids is empty",
    )
    target_user_ids: List[str] = Field(
        default_factory=list,
        description="Explicit recipients; take precedence over the radius",
    )

    def to_event(self) -> NotificationEvent:
        return NotificationEvent(
            event_type=self.event_type,
            related_type=self.related_type,
            related_id=self.related_id,
            triggered_by=self.triggered_by,
            title=self.title,
            body=self.body,
            priority=self.priority,
            url=self.url,
            location=self.location.to_location() if self.location else None,
            radius_km=self.radius_km,
            target_user_ids=tuple(self.target_user_ids),
        )


class UserLocationRequest(BaseModel):
    """Request body for PUT /api/v1/notifications/locations/{user_id}."""
    latitude: float = Field(..., ge=-90.0, le=90.0)
    longitude: float = Field(..., ge=-180.0, le=180.0)
    ghost_mode: bool = Field(False, description="Hide from radius fan-out except critical")

    def to_watcher(self, user_id: str) -> WatcherLocation:
        return WatcherLocation(user_id, self.latitude, self.longitude, self.ghost_mode)


class IncidentInput(BaseModel):
    id: str = Field(..., examples=["i-1"])
    type: str = Field("other", examples=["robbery"])
    status: str = Field("active", examples=["en_route"])
    latitude: Optional[float] = Field(None, ge=-90.0, le=90.0)
    longitude: Optional[float] = Field(None, ge=-180.0, le=180.0)
    created_at: Optional[datetime] = None
    confidence_score: Optional[float] = None

    def to_incident(self) -> Incident:
        return Incident(
            id=self.id,
            type=IncidentType.parse(self.type),
            status=IncidentStatus.parse(self.status),
            latitude=self.latitude,
            longitude=self.longitude,
            created_at=self.created_at,
            confidence_score=self.confidence_score,
        )


class ScoreRequest(BaseModel):
    """Request body for POST /api/v1/notifications/score."""
    incidents: List[IncidentInput] = Field(..., max_length=500)
    observer: Optional[LocationInput] = None
    now: Optional[datetime] = Field(None, description="Evaluation time; defaults to now (UTC)")
    is_night: Optional[bool] = Field(None, description="Override the night-time check")


class GeoTriggerRequest(BaseModel):
    """Body for triggers that fan out by radius (panic started/moved, incident reported)."""
    triggered_by: str = Field(..., min_length=1, examples=["u-7"])
    location: LocationInput
    radius_km: Optional[float] = Field(None, gt=0.0, le=500.0)


class TargetedTriggerRequest(BaseModel):
    """Body for triggers sent to a known audience (watchers, followers, community)."""
    triggered_by: str = Field(..., min_length=1, examples=["u-7"])
    target_user_ids: List[str] = Field(default_factory=list)


class IncidentStatusTriggerRequest(TargetedTriggerRequest):
    status: str = Field(..., min_length=1, examples=["resolved"])


class LookAfterMeTriggerRequest(TargetedTriggerRequest):
    user_name: str = Field(..., min_length=1, examples=["Maria"])


class OpenSessionRequest(BaseModel):
    """Registers a user's open panic / look-after-me session for reminders."""
    kind: ReminderType
    session_id: str = Field(..., min_length=1)
    started_at: datetime


# ---------------------------------------------------------------------------
# Response schemas
# ---------------------------------------------------------------------------

class DispatchResponse(BaseModel):
    event_type: str
    related_id: str
    outcome: str
    candidates: int
    sent: int
    deduplicated: int
    failed: int
    push_failed: int
    duration_ms: float


class GlowResponse(BaseModel):
    radius: int
    opacity: float


class ScoredIncidentResponse(BaseModel):
    id: str
    score: int
    tier: str
    urban: bool
    breakdown: Dict[str, int]
    glow: GlowResponse


class ScoreResponse(BaseModel):
    count: int
    calm: bool
    is_night: bool
    priority_incident_id: Optional[str] = None
    incidents: List[ScoredIncidentResponse]


class DeepLinkResponse(BaseModel):
    url: str
    tag: str
    displayed: bool
    tray_options: Dict[str, Any]


class ReminderResponse(BaseModel):
    user_id: str
    running: bool
    reminder: Optional[Dict[str, str]] = None
