"""
ledger.py — Time-windowed dedup of (entity, event type, recipient).

A recipient is filtered out when the ledger already holds a record for
``(event.related_id, event.event_type, user_id)`` no older than the dedup
window (5 minutes by default).

The filter never writes. The dispatcher records an entry only after the
in-app notification was persisted, so a crash between filtering and
persisting cannot suppress a legitimate resend.

Two concurrent triggers for the same entity can both pass the filter
before either records; the SQL ledger's unique bucket constraint keeps the
ledger itself clean, and the worst case is one duplicate notification.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import Iterable, Optional, Set

from backend.app.core.config import settings
from backend.app.notifications.models import NotificationEvent
from backend.app.notifications.stores import LedgerStore

logger = logging.getLogger(__name__)

DEDUP_WINDOW = timedelta(seconds=settings.DEDUP_WINDOW_SECONDS)


async def filter_already_notified(
    candidates: Iterable[str],
    event: NotificationEvent,
    ledger: LedgerStore,
    now: Optional[datetime] = None,
    *,
    window: timedelta = DEDUP_WINDOW,
) -> Set[str]:
    """
    Candidates not yet notified about this entity/event inside the window.

    A failing ledger lookup lets the candidate through: a duplicate
    notification is preferable to a missed one.
    """
    now = now or datetime.now(timezone.utc)
    since = now - window
    fresh: Set[str] = set()

    for user_id in candidates:
        try:
            seen = await ledger.exists(event.related_id, event.event_type, user_id, since)
        except Exception as exc:
            logger.warning(
                "Ledger lookup failed for %s/%s user=%s: %s",
                event.event_type, event.related_id, user_id, exc,
            )
            seen = False
        if not seen:
            fresh.add(user_id)

    return fresh
