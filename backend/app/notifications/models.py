"""
models.py — Shared data structures for the notification pipeline.

Defines:
    • NotificationPriority — critical / important / info
    • RelatedType          — what kind of entity a notification points at
    • NotificationEvent    — one upstream trigger, consumed once by fan-out
    • WatcherLocation      — a geo index row
    • DedupRecord          — ledger entry (entity, event type, user, time)
    • NotificationRecord   — persisted in-app notification
    • ClientNotification   — push payload handed to the delivery router
    • DispatchResult       — counts reported back to the trigger

═══════════════════════════════════════════════════════════════════════════
PRIORITY MAPPING
═══════════════════════════════════════════════════════════════════════════

    Event priority   In-app priority   Client delivery
    ──────────────   ───────────────   ───────────────────────────────
    critical         high              sticky, re-alerts, audible
    important        normal            brief, audible
    info             low               silent (tray only)

The tray tag ``{relatedType}_{relatedId}`` makes a newer push for the same
entity replace the older one instead of stacking.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, FrozenSet, Optional, Tuple


# ═══════════════════════════════════════════════════════════════════════════
# Enums
# ═══════════════════════════════════════════════════════════════════════════

class NotificationPriority(str, Enum):
    CRITICAL  = "critical"
    IMPORTANT = "important"
    INFO      = "info"


class RecordPriority(str, Enum):
    """Priority vocabulary of the persisted in-app notification."""
    HIGH   = "high"
    NORMAL = "normal"
    LOW    = "low"


class RelatedType(str, Enum):
    PANIC         = "panic"
    INCIDENT      = "incident"
    AMBER         = "amber"
    LOOK_AFTER_ME = "lookAfterMe"
    COMMENT       = "comment"


class EventType(str, Enum):
    """Known upstream triggers. Free-form strings are accepted too."""
    PANIC_STARTED           = "panic_started"
    PANIC_MOVEMENT          = "panic_movement"
    PANIC_ENDED             = "panic_ended"
    INCIDENT_REPORTED       = "incident_reported"
    INCIDENT_STATUS_CHANGED = "incident_status_changed"
    AMBER_ALERT             = "amber_alert"
    AMBER_CLOSED            = "amber_closed"
    LAM_STARTED             = "lam_started"
    LAM_ENDED               = "lam_ended"
    COMMENT                 = "comment"


RECORD_PRIORITY: Dict[NotificationPriority, RecordPriority] = {
    NotificationPriority.CRITICAL:  RecordPriority.HIGH,
    NotificationPriority.IMPORTANT: RecordPriority.NORMAL,
    NotificationPriority.INFO:      RecordPriority.LOW,
}

# Events that only move markers on a live map: never persisted, never shown
MAP_ONLY_EVENT_TYPES: FrozenSet[str] = frozenset({EventType.PANIC_MOVEMENT.value})


# ═══════════════════════════════════════════════════════════════════════════
# Data Structures
# ═══════════════════════════════════════════════════════════════════════════

def _now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class EventLocation:
    latitude: float
    longitude: float
    place_name: Optional[str] = None


@dataclass(frozen=True)
class NotificationEvent:
    """
    A single upstream trigger.

    Attributes
    ----------
    event_type : str
        e.g. "panic_started"; part of the dedup key.
    related_type : RelatedType
        Entity kind; drives the deep link on the client.
    related_id : str
        Entity id; part of the dedup key.
    triggered_by : str
        User who caused the event; never notified about it.
    priority : NotificationPriority
    url : str
        Fallback deep link.
    location, radius_km : optional
        Geo fan-out parameters, used when target_user_ids is empty.
    target_user_ids : tuple of str
        Explicit recipients; authoritative when non-empty.
    """
    event_type: str
    related_type: RelatedType
    related_id: str
    triggered_by: str
    title: str
    body: str
    priority: NotificationPriority
    url: str = "/alerts"
    location: Optional[EventLocation] = None
    radius_km: Optional[float] = None
    target_user_ids: Tuple[str, ...] = ()

    @property
    def is_map_only(self) -> bool:
        return self.event_type in MAP_ONLY_EVENT_TYPES

    @property
    def tag(self) -> str:
        return f"{self.related_type.value}_{self.related_id}"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "event_type": self.event_type,
            "related_type": self.related_type.value,
            "related_id": self.related_id,
            "triggered_by": self.triggered_by,
            "title": self.title,
            "body": self.body,
            "priority": self.priority.value,
            "url": self.url,
            "location": (
                {
                    "latitude": self.location.latitude,
                    "longitude": self.location.longitude,
                    "place_name": self.location.place_name,
                }
                if self.location else None
            ),
            "radius_km": self.radius_km,
            "target_user_ids": list(self.target_user_ids),
        }


@dataclass(frozen=True)
class WatcherLocation:
    """Last known location of a user, as returned by the geo index."""
    user_id: str
    latitude: float
    longitude: float
    ghost_mode: bool = False


@dataclass(frozen=True)
class DedupRecord:
    entity_id: str
    event_type: str
    user_id: str
    notified_at: datetime


@dataclass
class NotificationRecord:
    """In-app notification row, one per recipient."""
    user_id: str
    type: str
    title: str
    body: str
    priority: RecordPriority
    entity_id: str
    entity_type: str
    actor_id: Optional[str]
    data: Dict[str, Any] = field(default_factory=dict)
    read: bool = False
    created_at: datetime = field(default_factory=_now)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "user_id": self.user_id,
            "type": self.type,
            "title": self.title,
            "body": self.body,
            "priority": self.priority.value,
            "entity_id": self.entity_id,
            "entity_type": self.entity_type,
            "actor_id": self.actor_id,
            "data": dict(self.data),
            "read": self.read,
            "created_at": self.created_at.isoformat(),
        }


@dataclass(frozen=True)
class NotificationData:
    """Routing data carried inside a push payload."""
    url: str
    related_type: str
    related_id: str
    priority: NotificationPriority
    lat: Optional[float] = None
    lng: Optional[float] = None


@dataclass(frozen=True)
class ClientNotification:
    """
    Push payload as rendered by the client.

    ``to_wire()`` produces the flat JSON the push transport carries; the
    delivery router parses that same shape back with
    ``payloads.parse_push_payload``.
    """
    title: str
    body: str
    tag: str
    renotify: bool
    require_interaction: bool
    silent: bool
    data: NotificationData
    event_type: Optional[str] = None

    def to_wire(self) -> Dict[str, Any]:
        wire: Dict[str, Any] = {
            "title": self.title,
            "body": self.body,
            "tag": self.tag,
            "relatedType": self.data.related_type,
            "relatedId": self.data.related_id,
            "priority": self.data.priority.value,
            "url": self.data.url,
        }
        if self.data.lat is not None and self.data.lng is not None:
            wire["lat"] = self.data.lat
            wire["lng"] = self.data.lng
        if self.event_type:
            wire["eventType"] = self.event_type
        return wire

    def tray_options(self) -> Dict[str, Any]:
        """Options for the OS notification tray (showNotification equivalent)."""
        return {
            "body": self.body,
            "tag": self.tag,
            "renotify": self.renotify,
            "requireInteraction": self.require_interaction,
            "silent": self.silent,
            "data": {
                "url": self.data.url,
                "relatedType": self.data.related_type,
                "relatedId": self.data.related_id,
                "priority": self.data.priority.value,
                "lat": self.data.lat,
                "lng": self.data.lng,
            },
        }


@dataclass
class DispatchResult:
    """What one pipeline run delivered."""
    sent: int = 0
    deduplicated: int = 0
    failed: int = 0
    push_failed: int = 0

    def to_dict(self) -> Dict[str, int]:
        return {
            "sent": self.sent,
            "deduplicated": self.deduplicated,
            "failed": self.failed,
            "push_failed": self.push_failed,
        }
