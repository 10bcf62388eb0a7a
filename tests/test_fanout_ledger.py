"""
test_fanout_ledger.py — Tests for recipient fan-out and the dedup ledger.

Covers:
    • Explicit targets vs geo radius fan-out
    • Self-exclusion of the triggering user
    • Ghost mode (hidden unless critical) and the inclusive radius boundary
    • Graceful degradation when the geo index fails
    • Dedup window filtering, ledger failures, time buckets
    • Redis GEO index adapter

Run with:
    pytest tests/test_fanout_ledger.py -v
"""

from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone
from typing import List, Optional

import pytest

from backend.app.notifications.fanout import radius_in_meters, resolve_targets
from backend.app.notifications.ledger import DEDUP_WINDOW, filter_already_notified
from backend.app.notifications.models import (
    EventLocation,
    NotificationEvent,
    NotificationPriority,
    RelatedType,
    WatcherLocation,
)
from backend.app.notifications.redis_geo import RedisGeoIndex
from backend.app.notifications.sql_store import time_bucket
from backend.app.notifications.stores import InMemoryGeoIndex, InMemoryLedgerStore


# ═══════════════════════════════════════════════════════════════════════════
# Test Fixtures
# ═══════════════════════════════════════════════════════════════════════════

# On the equator one degree of longitude is ~111 195 m
ORIGIN = EventLocation(latitude=0.0, longitude=0.0, place_name="Test Square")
NOW = datetime(2026, 3, 10, 12, 0, tzinfo=timezone.utc)


def _make_event(
    priority: NotificationPriority = NotificationPriority.IMPORTANT,
    radius_km: Optional[float] = 1.0,
    targets: tuple = (),
    triggered_by: str = "reporter",
    event_type: str = "incident_reported",
    location: Optional[EventLocation] = ORIGIN,
) -> NotificationEvent:
    return NotificationEvent(
        event_type=event_type,
        related_type=RelatedType.INCIDENT,
        related_id="inc-1",
        triggered_by=triggered_by,
        title="Incident reported nearby",
        body="Reported near Test Square. Tap to view details",
        priority=priority,
        location=location,
        radius_km=radius_km,
        target_user_ids=targets,
    )


def _watcher(user_id: str, lng: float, ghost: bool = False) -> WatcherLocation:
    return WatcherLocation(user_id=user_id, latitude=0.0, longitude=lng, ghost_mode=ghost)


class ExplodingGeoIndex:
    async def upsert(self, location: WatcherLocation) -> None:
        raise ConnectionError("geo index down")

    async def query_near(self, lat, lng, radius_m, exclude_user_id=None) -> List[WatcherLocation]:
        raise ConnectionError("geo index down")


class CarelessGeoIndex:
    """Ignores exclude_user_id, like a misbehaving backend would."""

    def __init__(self, locations: List[WatcherLocation]):
        self.locations = locations

    async def upsert(self, location: WatcherLocation) -> None:
        self.locations.append(location)

    async def query_near(self, lat, lng, radius_m, exclude_user_id=None) -> List[WatcherLocation]:
        return list(self.locations)


class FailingLedger:
    async def exists(self, entity_id, event_type, user_id, since) -> bool:
        raise TimeoutError("ledger timeout")

    async def record(self, entity_id, event_type, user_id, timestamp) -> None:
        raise TimeoutError("ledger timeout")


def _resolve(event: NotificationEvent, geo_index) -> set:
    return asyncio.run(resolve_targets(event, geo_index))


# ═══════════════════════════════════════════════════════════════════════════
# Section 1: Fan-out
# ═══════════════════════════════════════════════════════════════════════════

class TestExplicitTargets:
    def test_explicit_targets_skip_geo(self):
        event = _make_event(targets=("a", "b", "c"))
        assert _resolve(event, ExplodingGeoIndex()) == {"a", "b", "c"}

    def test_trigger_user_removed_from_explicit_list(self):
        event = _make_event(targets=("a", "reporter", "b"))
        assert _resolve(event, ExplodingGeoIndex()) == {"a", "b"}

    def test_blank_ids_dropped(self):
        event = _make_event(targets=("a", ""))
        assert _resolve(event, ExplodingGeoIndex()) == {"a"}


class TestGeoFanout:
    def test_within_radius(self):
        index = InMemoryGeoIndex([
            _watcher("near", 0.005),    # ~556 m
            _watcher("far", 0.05),      # ~5.6 km
        ])
        assert _resolve(_make_event(), index) == {"near"}

    def test_boundary_is_inclusive(self):
        index = InMemoryGeoIndex([
            _watcher("inside", 0.0089),   # ~990 m
            _watcher("outside", 0.0091),  # ~1012 m
            _watcher("same-spot", 0.0),
        ])
        assert _resolve(_make_event(), index) == {"inside", "same-spot"}

    def test_trigger_user_never_targeted(self):
        locations = [_watcher("reporter", 0.0), _watcher("neighbour", 0.001)]
        assert _resolve(_make_event(), InMemoryGeoIndex(locations)) == {"neighbour"}
        assert _resolve(_make_event(), CarelessGeoIndex(locations)) == {"neighbour"}

    def test_ghost_hidden_for_important(self):
        index = InMemoryGeoIndex([_watcher("ghost", 0.001, ghost=True), _watcher("v", 0.001)])
        assert _resolve(_make_event(NotificationPriority.IMPORTANT), index) == {"v"}

    def test_ghost_included_for_critical(self):
        index = InMemoryGeoIndex([_watcher("ghost", 0.001, ghost=True), _watcher("v", 0.001)])
        assert _resolve(_make_event(NotificationPriority.CRITICAL), index) == {"ghost", "v"}

    def test_geo_failure_is_empty_not_error(self):
        assert _resolve(_make_event(), ExplodingGeoIndex()) == set()

    def test_neighbour_across_antimeridian(self):
        origin = EventLocation(latitude=-17.0, longitude=179.995, place_name="Date Line")
        index = InMemoryGeoIndex([
            WatcherLocation(user_id="east", latitude=-17.0, longitude=-179.995),
            WatcherLocation(user_id="far", latitude=-17.0, longitude=-179.0),
        ])
        event = _make_event(radius_km=10.0, location=origin)
        assert _resolve(event, index) == {"east"}


class TestConfigurationGaps:
    def test_no_location(self):
        index = InMemoryGeoIndex([_watcher("v", 0.0)])
        assert _resolve(_make_event(location=None), index) == set()

    def test_no_radius(self):
        index = InMemoryGeoIndex([_watcher("v", 0.0)])
        assert _resolve(_make_event(radius_km=None), index) == set()

    def test_radius_in_meters(self):
        assert radius_in_meters(_make_event(radius_km=10.0)) == 10_000.0
        assert radius_in_meters(_make_event(radius_km=None)) == 0.0


# ═══════════════════════════════════════════════════════════════════════════
# Section 2: Dedup ledger
# ═══════════════════════════════════════════════════════════════════════════

def _filter(candidates, event, ledger, now=NOW) -> set:
    return asyncio.run(filter_already_notified(candidates, event, ledger, now))


class TestDedupWindow:
    def test_default_window_is_five_minutes(self):
        assert DEDUP_WINDOW == timedelta(minutes=5)

    def test_recent_record_filters(self):
        ledger = InMemoryLedgerStore()
        event = _make_event()
        asyncio.run(ledger.record("inc-1", "incident_reported", "a", NOW - timedelta(minutes=4)))
        assert _filter({"a", "b"}, event, ledger) == {"b"}

    def test_old_record_passes(self):
        ledger = InMemoryLedgerStore()
        asyncio.run(ledger.record("inc-1", "incident_reported", "a", NOW - timedelta(minutes=6)))
        assert _filter({"a"}, _make_event(), ledger) == {"a"}

    def test_window_edge_still_deduplicated(self):
        ledger = InMemoryLedgerStore()
        asyncio.run(ledger.record("inc-1", "incident_reported", "a", NOW - DEDUP_WINDOW))
        assert _filter({"a"}, _make_event(), ledger) == set()

    def test_different_event_type_not_deduplicated(self):
        ledger = InMemoryLedgerStore()
        asyncio.run(ledger.record("inc-1", "incident_reported", "a", NOW))
        event = _make_event(event_type="incident_status_changed")
        assert _filter({"a"}, event, ledger) == {"a"}

    def test_ledger_failure_lets_candidates_through(self):
        assert _filter({"a", "b"}, _make_event(), FailingLedger()) == {"a", "b"}

    def test_ledger_keeps_latest_timestamp(self):
        ledger = InMemoryLedgerStore()
        asyncio.run(ledger.record("inc-1", "incident_reported", "a", NOW))
        asyncio.run(ledger.record("inc-1", "incident_reported", "a", NOW - timedelta(hours=1)))
        (record,) = ledger.records()
        assert record.notified_at == NOW

    def test_entries_outside_window_pruned_on_write(self):
        ledger = InMemoryLedgerStore(DEDUP_WINDOW)
        asyncio.run(ledger.record("inc-1", "incident_reported", "a", NOW - timedelta(minutes=10)))
        asyncio.run(ledger.record("inc-2", "incident_reported", "b", NOW - timedelta(minutes=3)))
        asyncio.run(ledger.record("inc-3", "incident_reported", "c", NOW))
        assert {r.user_id for r in ledger.records()} == {"b", "c"}
        assert _filter({"a"}, _make_event(), ledger) == {"a"}


class TestTimeBucket:
    def test_same_window_same_bucket(self):
        start = datetime(2026, 3, 10, 12, 0, tzinfo=timezone.utc)
        assert time_bucket(start) == time_bucket(start + timedelta(minutes=4, seconds=59))

    def test_next_window_next_bucket(self):
        start = datetime(2026, 3, 10, 12, 0, tzinfo=timezone.utc)
        assert time_bucket(start + timedelta(minutes=5)) == time_bucket(start) + 1


# ═══════════════════════════════════════════════════════════════════════════
# Section 3: Redis GEO index
# ═══════════════════════════════════════════════════════════════════════════

class FakeRedis:
    """Just enough of redis.asyncio.Redis for the GEO adapter."""

    def __init__(self):
        self.geo = {}
        self.ghosts = {}
        self.last_search = None

    async def geoadd(self, key, values):
        lng, lat, member = values
        self.geo[member] = (lng, lat)

    async def hset(self, key, field, value):
        self.ghosts[field] = value

    async def hdel(self, key, field):
        self.ghosts.pop(field, None)

    async def geosearch(self, key, **kwargs):
        self.last_search = kwargs
        return [[member, coord] for member, coord in self.geo.items()]

    async def hmget(self, key, fields):
        return [self.ghosts.get(f) for f in fields]


class TestRedisGeoIndex:
    def test_query_joins_ghost_flags_and_excludes(self):
        client = FakeRedis()
        index = RedisGeoIndex(client, "geo", "ghost")

        async def scenario():
            await index.upsert(_watcher("a", 0.001))
            await index.upsert(_watcher("b", 0.002, ghost=True))
            await index.upsert(_watcher("me", 0.0))
            return await index.query_near(0.0, 0.0, 1000.0, exclude_user_id="me")

        found = {w.user_id: w for w in asyncio.run(scenario())}
        assert set(found) == {"a", "b"}
        assert found["b"].ghost_mode is True
        assert found["a"].longitude == pytest.approx(0.001)
        assert client.last_search["unit"] == "m"
        assert client.last_search["radius"] == 1000.0

    def test_ghost_flag_cleared_on_upsert(self):
        client = FakeRedis()
        index = RedisGeoIndex(client, "geo", "ghost")
        asyncio.run(index.upsert(_watcher("a", 0.0, ghost=True)))
        asyncio.run(index.upsert(_watcher("a", 0.0, ghost=False)))
        assert "a" not in client.ghosts

    def test_empty_search(self):
        index = RedisGeoIndex(FakeRedis(), "geo", "ghost")
        assert asyncio.run(index.query_near(0.0, 0.0, 500.0)) == []
