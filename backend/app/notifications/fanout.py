"""
fanout.py — Expanding one NotificationEvent into its recipient set.

═══════════════════════════════════════════════════════════════════════════
TARGETING RULES
═══════════════════════════════════════════════════════════════════════════

    1. Explicit list   — event.target_user_ids non-empty → used as-is,
                         no geo lookup
    2. Geo radius      — otherwise, event.location + event.radius_km:

           candidates = geo_index.query_near(lat, lng, radius_m,
                                             exclude=triggered_by)
           keep c if   haversine(event, c) ≤ radius_km × 1000
                  and (not c.ghost_mode or priority == critical)

    3. Neither         — empty set (a configuration gap, not an error)

The triggering user is removed on both paths. Ghost mode hides a user
from every radius query except critical ones: safety outranks privacy
for a panic nearby.

The geo index may over-return (bounding box, GEOSEARCH rounding); the
Haversine test here is the authoritative, inclusive boundary.
"""

from __future__ import annotations

import logging
from typing import Set

from backend.app.notifications.models import NotificationEvent, NotificationPriority
from backend.app.notifications.stores import GeoIndex
from backend.app.spatial.radius_utils import distance_m

logger = logging.getLogger(__name__)


def radius_in_meters(event: NotificationEvent) -> float:
    return float(event.radius_km or 0.0) * 1000.0


async def resolve_targets(event: NotificationEvent, geo_index: GeoIndex) -> Set[str]:
    """
    Candidate recipients for an event.

    Parameters
    ----------
    event : NotificationEvent
    geo_index : GeoIndex
        Only consulted when the event carries no explicit targets.

    Returns
    -------
    set of str
        User ids; possibly empty. Never contains ``event.triggered_by``.
    """
    if event.target_user_ids:
        targets = {uid for uid in event.target_user_ids if uid}
        targets.discard(event.triggered_by)
        logger.info(
            "Fan-out %s/%s: %d explicit targets",
            event.event_type, event.related_id, len(targets),
            extra={"event_type": event.event_type, "recipient_count": len(targets)},
        )
        return targets

    if event.location is None or not event.radius_km:
        logger.info(
            "Fan-out %s/%s: no targets and no location/radius",
            event.event_type, event.related_id,
        )
        return set()

    radius_m = radius_in_meters(event)
    origin = event.location

    try:
        candidates = await geo_index.query_near(
            origin.latitude, origin.longitude, radius_m, event.triggered_by,
        )
    except Exception as exc:
        logger.warning(
            "Geo index query failed for %s/%s: %s",
            event.event_type, event.related_id, exc,
        )
        return set()

    critical = event.priority == NotificationPriority.CRITICAL
    targets: Set[str] = set()
    hidden = 0

    for candidate in candidates:
        if candidate.user_id == event.triggered_by:
            continue
        if candidate.ghost_mode and not critical:
            hidden += 1
            continue
        dist = distance_m(
            origin.latitude, origin.longitude,
            candidate.latitude, candidate.longitude,
        )
        if dist <= radius_m:
            targets.add(candidate.user_id)

    logger.info(
        "Fan-out %s/%s: %d targeted of %d candidates "
        "(radius=%.0f m, ghost-hidden=%d, priority=%s)",
        event.event_type, event.related_id, len(targets), len(candidates),
        radius_m, hidden, event.priority.value,
        extra={"event_type": event.event_type, "recipient_count": len(targets)},
    )
    return targets
