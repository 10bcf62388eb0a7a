"""
stores.py — Store interfaces consumed by the pipeline + in-memory backends.

The pipeline only talks to these protocols:

    GeoIndex           query_near(lat, lng, radius_m, exclude_user_id)
                       upsert(location)
    LedgerStore        exists(entity_id, event_type, user_id, since)
                       record(entity_id, event_type, user_id, timestamp)
    NotificationStore  insert_many(records) / insert(record)

The in-memory classes back tests and local development. Production
backends live in ``sql_store`` (PostgreSQL) and ``redis_geo`` (Redis GEO).
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Dict, Iterable, List, Optional, Protocol, Sequence, Tuple

from backend.app.core.config import settings
from backend.app.notifications.models import (
    DedupRecord,
    NotificationRecord,
    WatcherLocation,
)
from backend.app.spatial.radius_utils import Coordinate, bounding_box

logger = logging.getLogger(__name__)


# ═══════════════════════════════════════════════════════════════════════════
# Interfaces
# ═══════════════════════════════════════════════════════════════════════════

class GeoIndex(Protocol):
    async def upsert(self, location: WatcherLocation) -> None:
        ...

    async def query_near(
        self,
        lat: float,
        lng: float,
        radius_m: float,
        exclude_user_id: Optional[str] = None,
    ) -> List[WatcherLocation]:
        """Candidate locations around a point. May over-return; callers re-check distance."""
        ...


class LedgerStore(Protocol):
    async def exists(
        self, entity_id: str, event_type: str, user_id: str, since: datetime,
    ) -> bool:
        ...

    async def record(
        self, entity_id: str, event_type: str, user_id: str, timestamp: datetime,
    ) -> None:
        ...


class NotificationStore(Protocol):
    async def insert_many(self, records: Sequence[NotificationRecord]) -> int:
        """Insert all records atomically; raise on failure."""
        ...

    async def insert(self, record: NotificationRecord) -> None:
        ...


# ═══════════════════════════════════════════════════════════════════════════
# In-memory backends
# ═══════════════════════════════════════════════════════════════════════════

class InMemoryGeoIndex:
    """Dict of user_id → WatcherLocation with a bounding-box pre-filter."""

    def __init__(self, locations: Iterable[WatcherLocation] = ()):
        self._locations: Dict[str, WatcherLocation] = {loc.user_id: loc for loc in locations}

    async def upsert(self, location: WatcherLocation) -> None:
        self._locations[location.user_id] = location

    def remove(self, user_id: str) -> None:
        self._locations.pop(user_id, None)

    async def query_near(
        self,
        lat: float,
        lng: float,
        radius_m: float,
        exclude_user_id: Optional[str] = None,
    ) -> List[WatcherLocation]:
        box = bounding_box(Coordinate(lat, lng), radius_m)
        return [
            loc for loc in self._locations.values()
            if loc.user_id != exclude_user_id and box.contains(loc.latitude, loc.longitude)
        ]


class InMemoryLedgerStore:
    """
    Ledger keyed by (entity_id, event_type, user_id) → last notified time.

    Entries older than ``window`` behind the newest recorded timestamp are
    pruned on write; they can no longer suppress anything.
    """

    def __init__(self, window: Optional[timedelta] = None) -> None:
        self._window = window or timedelta(seconds=settings.DEDUP_WINDOW_SECONDS)
        self._entries: Dict[Tuple[str, str, str], datetime] = {}
        self._newest: Optional[datetime] = None

    async def exists(
        self, entity_id: str, event_type: str, user_id: str, since: datetime,
    ) -> bool:
        last = self._entries.get((entity_id, event_type, user_id))
        return last is not None and last >= since

    async def record(
        self, entity_id: str, event_type: str, user_id: str, timestamp: datetime,
    ) -> None:
        key = (entity_id, event_type, user_id)
        previous = self._entries.get(key)
        if previous is None or timestamp > previous:
            self._entries[key] = timestamp
        if self._newest is None or timestamp > self._newest:
            self._newest = timestamp
            self._prune(timestamp - self._window)

    def _prune(self, cutoff: datetime) -> None:
        stale = [key for key, ts in self._entries.items() if ts < cutoff]
        for key in stale:
            del self._entries[key]

    def records(self) -> List[DedupRecord]:
        return [
            DedupRecord(entity_id=e, event_type=t, user_id=u, notified_at=ts)
            for (e, t, u), ts in self._entries.items()
        ]


class InMemoryNotificationStore:
    """List-backed notification store; ``fail_user_ids`` simulates bad rows."""

    def __init__(self, fail_user_ids: Iterable[str] = ()):
        self.records: List[NotificationRecord] = []
        self.fail_user_ids = set(fail_user_ids)

    async def insert(self, record: NotificationRecord) -> None:
        if record.user_id in self.fail_user_ids:
            raise RuntimeError(f"insert rejected for {record.user_id}")
        self.records.append(record)

    async def insert_many(self, records: Sequence[NotificationRecord]) -> int:
        bad = [r.user_id for r in records if r.user_id in self.fail_user_ids]
        if bad:
            raise RuntimeError(f"batch insert rejected ({len(bad)} bad rows)")
        self.records.extend(records)
        return len(records)

    def for_user(self, user_id: str) -> List[NotificationRecord]:
        return [r for r in self.records if r.user_id == user_id]
