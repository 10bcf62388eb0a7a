"""
copy.py — Notification wording and event factories.

Calm. Trustworthy. Never dramatic: no emojis, no exclamation marks,
no all caps. Each factory returns a ready NotificationEvent with the
priority and deep link that belong to the trigger.

    Trigger                  Priority    Fan-out
    ──────────────────────   ─────────   ─────────────────────────
    panic started            critical    10 km radius
    panic movement           info        10 km radius (map only)
    panic ended              important   explicit targets
    incident reported        important   10 km radius
    incident status changed  info if resolved, else important
    amber alert              important   explicit targets (community)
    amber closed             info        explicit targets
    look-after-me start/end  info        watchers
    comment                  info        followers
"""

from __future__ import annotations

from typing import Iterable, Optional

from backend.app.core.config import settings
from backend.app.notifications.models import (
    EventLocation,
    EventType,
    NotificationEvent,
    NotificationPriority,
    RelatedType,
)

DEFAULT_PLACE = "your area"


def _place(location: Optional[EventLocation]) -> str:
    if location and location.place_name:
        return location.place_name
    return DEFAULT_PLACE


def panic_started(
    panic_id: str,
    triggered_by: str,
    location: EventLocation,
    *,
    radius_km: float = settings.DEFAULT_INCIDENT_RADIUS_KM,
) -> NotificationEvent:
    return NotificationEvent(
        event_type=EventType.PANIC_STARTED.value,
        related_type=RelatedType.PANIC,
        related_id=panic_id,
        triggered_by=triggered_by,
        title="Panic alert nearby",
        body=f"Last seen near {_place(location)}. Tap to view on map",
        priority=NotificationPriority.CRITICAL,
        url=f"/map?panic={panic_id}",
        location=location,
        radius_km=radius_km,
    )


def panic_movement(
    panic_id: str,
    triggered_by: str,
    location: EventLocation,
    *,
    radius_km: float = settings.DEFAULT_INCIDENT_RADIUS_KM,
) -> NotificationEvent:
    return NotificationEvent(
        event_type=EventType.PANIC_MOVEMENT.value,
        related_type=RelatedType.PANIC,
        related_id=panic_id,
        triggered_by=triggered_by,
        title="Panic location updated",
        body="",
        priority=NotificationPriority.INFO,
        url=f"/map?panic={panic_id}",
        location=location,
        radius_km=radius_km,
    )


def panic_ended(panic_id: str, triggered_by: str, targets: Iterable[str]) -> NotificationEvent:
    return NotificationEvent(
        event_type=EventType.PANIC_ENDED.value,
        related_type=RelatedType.PANIC,
        related_id=panic_id,
        triggered_by=triggered_by,
        title="Panic alert ended",
        body="Tracking has stopped. View details if needed",
        priority=NotificationPriority.IMPORTANT,
        url=f"/map?panic={panic_id}",
        target_user_ids=tuple(targets),
    )


def incident_reported(
    incident_id: str,
    triggered_by: str,
    location: EventLocation,
    *,
    radius_km: float = settings.DEFAULT_INCIDENT_RADIUS_KM,
) -> NotificationEvent:
    return NotificationEvent(
        event_type=EventType.INCIDENT_REPORTED.value,
        related_type=RelatedType.INCIDENT,
        related_id=incident_id,
        triggered_by=triggered_by,
        title="Incident reported nearby",
        body=f"Reported near {_place(location)}. Tap to view details",
        priority=NotificationPriority.IMPORTANT,
        url=f"/map?incident={incident_id}",
        location=location,
        radius_km=radius_km,
    )


def incident_status_changed(
    incident_id: str,
    triggered_by: str,
    status: str,
    targets: Iterable[str],
) -> NotificationEvent:
    resolved = status == "resolved"
    return NotificationEvent(
        event_type=EventType.INCIDENT_STATUS_CHANGED.value,
        related_type=RelatedType.INCIDENT,
        related_id=incident_id,
        triggered_by=triggered_by,
        title="Incident resolved" if resolved else "Incident update",
        body=(
            "Reported issue has been marked resolved"
            if resolved else f'Status updated to "{status}"'
        ),
        priority=NotificationPriority.INFO if resolved else NotificationPriority.IMPORTANT,
        url=f"/map?incident={incident_id}",
        target_user_ids=tuple(targets),
    )


def amber_alert(amber_id: str, triggered_by: str, targets: Iterable[str]) -> NotificationEvent:
    return NotificationEvent(
        event_type=EventType.AMBER_ALERT.value,
        related_type=RelatedType.AMBER,
        related_id=amber_id,
        triggered_by=triggered_by,
        title="Missing person alert",
        body="Community assistance requested. Tap to view details",
        priority=NotificationPriority.IMPORTANT,
        url=f"/amber-chat/{amber_id}",
        target_user_ids=tuple(targets),
    )


def amber_closed(amber_id: str, triggered_by: str, targets: Iterable[str]) -> NotificationEvent:
    return NotificationEvent(
        event_type=EventType.AMBER_CLOSED.value,
        related_type=RelatedType.AMBER,
        related_id=amber_id,
        triggered_by=triggered_by,
        title="Amber alert update",
        body="This alert has been closed",
        priority=NotificationPriority.INFO,
        url=f"/amber-chat/{amber_id}",
        target_user_ids=tuple(targets),
    )


def look_after_me(
    session_id: str,
    triggered_by: str,
    user_name: str,
    watchers: Iterable[str],
    *,
    started: bool,
) -> NotificationEvent:
    return NotificationEvent(
        event_type=(EventType.LAM_STARTED if started else EventType.LAM_ENDED).value,
        related_type=RelatedType.LOOK_AFTER_ME,
        related_id=session_id,
        triggered_by=triggered_by,
        title="Tracking started" if started else "Tracking ended",
        body=(
            f"{user_name} has started live location sharing"
            if started else f"{user_name} has stopped live location sharing"
        ),
        priority=NotificationPriority.INFO,
        url="/look-after-me",
        target_user_ids=tuple(watchers),
    )


def comment_added(thread_id: str, triggered_by: str, followers: Iterable[str]) -> NotificationEvent:
    return NotificationEvent(
        event_type=EventType.COMMENT.value,
        related_type=RelatedType.COMMENT,
        related_id=thread_id,
        triggered_by=triggered_by,
        title="New update",
        body="Someone commented on an alert you follow",
        priority=NotificationPriority.INFO,
        url="/community",
        target_user_ids=tuple(followers),
    )
