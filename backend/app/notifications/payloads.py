"""
payloads.py — Building and parsing push payloads.

The dispatcher builds a ClientNotification from a NotificationEvent; the
delivery router rebuilds one from the raw JSON the push transport carried.
Both go through ``delivery_attributes`` so a payload's tray behaviour is
decided in exactly one place.
"""

from __future__ import annotations

import json
import logging
from typing import Any, Dict, Mapping, Optional, Tuple, Union

from backend.app.core.errors import MalformedInputError
from backend.app.notifications.models import (
    ClientNotification,
    NotificationData,
    NotificationEvent,
    NotificationPriority,
)

logger = logging.getLogger(__name__)

DEFAULT_TITLE = "Safety update"
DEFAULT_URL = "/alerts"

# priority → (require_interaction, renotify, silent)
DELIVERY_ATTRIBUTES: Dict[NotificationPriority, Tuple[bool, bool, bool]] = {
    NotificationPriority.CRITICAL:  (True, True, False),
    NotificationPriority.IMPORTANT: (False, False, False),
    NotificationPriority.INFO:      (False, False, True),
}


def delivery_attributes(priority: NotificationPriority) -> Tuple[bool, bool, bool]:
    """(require_interaction, renotify, silent) for a priority."""
    return DELIVERY_ATTRIBUTES[priority]


def default_tag(related_type: str, related_id: str) -> str:
    return f"{related_type}_{related_id}"


def build_client_notification(event: NotificationEvent) -> ClientNotification:
    """Push payload for one recipient of an event."""
    require_interaction, renotify, silent = delivery_attributes(event.priority)
    location = event.location
    return ClientNotification(
        title=event.title or DEFAULT_TITLE,
        body=event.body,
        tag=event.tag,
        renotify=renotify,
        require_interaction=require_interaction,
        silent=silent,
        event_type=event.event_type,
        data=NotificationData(
            url=event.url or DEFAULT_URL,
            related_type=event.related_type.value,
            related_id=event.related_id,
            priority=event.priority,
            lat=location.latitude if location else None,
            lng=location.longitude if location else None,
        ),
    )


def _optional_float(raw: Mapping[str, Any], key: str) -> Optional[float]:
    value = raw.get(key)
    if value is None:
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        raise MalformedInputError(f"{key} must be numeric", field=key)


def parse_push_payload(raw: Union[str, bytes, Mapping[str, Any]]) -> ClientNotification:
    """
    Parse the flat push JSON into a ClientNotification.

    Accepts a JSON string/bytes or an already decoded mapping. Raises
    MalformedInputError when the payload cannot identify its entity; an
    unknown priority degrades to "important".
    """
    if isinstance(raw, (str, bytes)):
        try:
            raw = json.loads(raw)
        except ValueError as exc:
            raise MalformedInputError(f"payload is not JSON: {exc}")
    if not isinstance(raw, Mapping):
        raise MalformedInputError("payload must be a JSON object")

    related_type = raw.get("relatedType")
    related_id = raw.get("relatedId")
    if not related_type or related_id in (None, ""):
        raise MalformedInputError(
            "relatedType and relatedId are required", field="relatedType",
        )

    try:
        priority = NotificationPriority(raw.get("priority"))
    except ValueError:
        priority = NotificationPriority.IMPORTANT

    lat = _optional_float(raw, "lat")
    lng = _optional_float(raw, "lng")
    require_interaction, renotify, silent = delivery_attributes(priority)

    return ClientNotification(
        title=str(raw.get("title") or DEFAULT_TITLE),
        body=str(raw.get("body") or ""),
        tag=str(raw.get("tag") or default_tag(str(related_type), str(related_id))),
        renotify=renotify,
        require_interaction=require_interaction,
        silent=silent,
        event_type=raw.get("eventType"),
        data=NotificationData(
            url=str(raw.get("url") or DEFAULT_URL),
            related_type=str(related_type),
            related_id=str(related_id),
            priority=priority,
            lat=lat,
            lng=lng,
        ),
    )
