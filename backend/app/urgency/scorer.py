"""
scorer.py — Urgency scoring for safety incidents.

Turns an incident plus observer context into a non-negative integer score
and a coarse tier. Pure and deterministic: no I/O, no clock reads unless
the caller leaves ``now`` unset.

═══════════════════════════════════════════════════════════════════════════
WEIGHTED ADDITIVE MODEL
═══════════════════════════════════════════════════════════════════════════

    Term              Urban zone                 Outside urban zone
    ──────────        ─────────────────────      ──────────────────────
    Type base         panic 90 · robbery/assault/kidnapping 70 ·
                      crash/accident 55 · suspicious 40 · other 25
    Status            en_route +25 · on_scene +10 · resolved −40
    Recency           <5 min +25                 <15 min +30
                      <15 min +15                <45 min +20
                      else −20                   else −5
    Distance          <1 km +30                  <5 km +25
                      <3 km +15                  <15 km +15
                      else −15                   else 0
    Night             violent type +20; observer > 3 km away +10
                      (local hour >= 19 or <= 5, on settings.TIMEZONE)
    Stale panic       panic older than 30 min −50

    score = max(0, Σ terms)

Outside the urban zone reports arrive late over sparse connectivity, so
decay and distance drop-off are gentler there.

═══════════════════════════════════════════════════════════════════════════
TIERS
═══════════════════════════════════════════════════════════════════════════

    Score     Tier        Glow radius / opacity (night: +2 / +0.1)
    ─────     ────        ───────────────────────────────────────
    ≥ 120     critical    20 / 0.90
    ≥ 90      high        16 / 0.70
    ≥ 60      medium      13 / 0.55
    else      low         10 / 0.40
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional, Tuple
from zoneinfo import ZoneInfo

from backend.app.core.config import settings
from backend.app.spatial.radius_utils import Coordinate, distance_m


# ═══════════════════════════════════════════════════════════════════════════
# Enums
# ═══════════════════════════════════════════════════════════════════════════

class IncidentType(str, Enum):
    PANIC      = "panic"
    AMBER      = "amber"
    ROBBERY    = "robbery"
    ASSAULT    = "assault"
    KIDNAPPING = "kidnapping"
    ACCIDENT   = "accident"
    CRASH      = "crash"
    SUSPICIOUS = "suspicious"
    OTHER      = "other"

    @classmethod
    def parse(cls, value: Any) -> "IncidentType":
        """Unknown or missing types degrade to OTHER."""
        try:
            return cls(str(value).lower())
        except ValueError:
            return cls.OTHER


class IncidentStatus(str, Enum):
    ACTIVE   = "active"
    EN_ROUTE = "en_route"
    ON_SCENE = "on_scene"
    RESOLVED = "resolved"

    @classmethod
    def parse(cls, value: Any) -> "IncidentStatus":
        """Unknown or missing statuses are treated as ACTIVE (no adjustment)."""
        try:
            return cls(str(value).lower())
        except ValueError:
            return cls.ACTIVE


class UrgencyTier(str, Enum):
    LOW      = "low"
    MEDIUM   = "medium"
    HIGH     = "high"
    CRITICAL = "critical"


# ═══════════════════════════════════════════════════════════════════════════
# Weights
# ═══════════════════════════════════════════════════════════════════════════

TYPE_WEIGHTS: Dict[IncidentType, int] = {
    IncidentType.PANIC:      90,
    IncidentType.ROBBERY:    70,
    IncidentType.ASSAULT:    70,
    IncidentType.KIDNAPPING: 70,
    IncidentType.CRASH:      55,
    IncidentType.ACCIDENT:   55,
    IncidentType.SUSPICIOUS: 40,
    IncidentType.AMBER:      25,
    IncidentType.OTHER:      25,
}

STATUS_WEIGHTS: Dict[IncidentStatus, int] = {
    IncidentStatus.ACTIVE:   0,
    IncidentStatus.EN_ROUTE: 25,
    IncidentStatus.ON_SCENE: 10,
    IncidentStatus.RESOLVED: -40,
}

# (upper bound exclusive, points); last entry is the fallback
URBAN_RECENCY: Tuple[Tuple[float, int], ...] = ((5, 25), (15, 15), (math.inf, -20))
RURAL_RECENCY: Tuple[Tuple[float, int], ...] = ((15, 30), (45, 20), (math.inf, -5))
URBAN_DISTANCE: Tuple[Tuple[float, int], ...] = ((1_000, 30), (3_000, 15), (math.inf, -15))
RURAL_DISTANCE: Tuple[Tuple[float, int], ...] = ((5_000, 25), (15_000, 15), (math.inf, 0))

NIGHT_VIOLENT_TYPES = frozenset({
    IncidentType.PANIC,
    IncidentType.ROBBERY,
    IncidentType.ASSAULT,
    IncidentType.KIDNAPPING,
})
NIGHT_VIOLENT_BONUS = 20
NIGHT_ISOLATION_BONUS = 10
NIGHT_ISOLATION_DISTANCE_M = 3_000.0
NIGHT_START_HOUR = 19
NIGHT_END_HOUR = 5

STALE_PANIC_MINUTES = 30.0
STALE_PANIC_PENALTY = -50

MISSING_AGE_MINUTES = 999.0

# (minimum score, tier), highest first
TIER_THRESHOLDS: Tuple[Tuple[int, UrgencyTier], ...] = (
    (120, UrgencyTier.CRITICAL),
    (90, UrgencyTier.HIGH),
    (60, UrgencyTier.MEDIUM),
)

GLOW_LADDER: Dict[UrgencyTier, Tuple[int, float]] = {
    UrgencyTier.CRITICAL: (20, 0.9),
    UrgencyTier.HIGH:     (16, 0.7),
    UrgencyTier.MEDIUM:   (13, 0.55),
    UrgencyTier.LOW:      (10, 0.4),
}

CALM_MAX_AGE_MINUTES = 15.0
CALM_RADIUS_M = 3_000.0


# ═══════════════════════════════════════════════════════════════════════════
# Data Structures
# ═══════════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class UrbanZone:
    """Circle inside which the steep urban decay tables apply."""
    center: Coordinate
    radius_m: float

    def contains(self, latitude: float, longitude: float) -> bool:
        return distance_m(
            self.center.latitude, self.center.longitude, latitude, longitude,
        ) <= self.radius_m


DEFAULT_URBAN_ZONE = UrbanZone(
    center=Coordinate(settings.URBAN_CENTER_LAT, settings.URBAN_CENTER_LNG),
    radius_m=settings.URBAN_RADIUS_M,
)


@dataclass(frozen=True)
class Incident:
    """
    A reported safety incident as observed by the pipeline.

    Status transitions belong to the upstream incident system; here the
    incident is a read-only snapshot for one evaluation pass.
    """
    id: str
    type: IncidentType
    latitude: Optional[float]
    longitude: Optional[float]
    status: IncidentStatus = IncidentStatus.ACTIVE
    created_at: Optional[datetime] = None
    confidence_score: Optional[float] = None

    @property
    def has_coordinates(self) -> bool:
        return Coordinate.maybe(self.latitude, self.longitude) is not None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Incident":
        """Build from a store row / API body with camelCase or snake_case keys."""
        created = data.get("created_at", data.get("createdAt"))
        if isinstance(created, str):
            created = datetime.fromisoformat(created.replace("Z", "+00:00"))
        return cls(
            id=str(data.get("id", "")),
            type=IncidentType.parse(data.get("type")),
            status=IncidentStatus.parse(data.get("status")),
            latitude=data.get("latitude", data.get("lat")),
            longitude=data.get("longitude", data.get("lng")),
            created_at=created,
            confidence_score=data.get("confidence_score", data.get("confidenceScore")),
        )


@dataclass(frozen=True)
class GlowStyle:
    """Visual urgency for a map marker."""
    radius: int
    opacity: float


@dataclass
class UrgencyScore:
    """Score, tier and the itemised terms that produced them."""
    score: int
    tier: UrgencyTier
    breakdown: Dict[str, int] = field(default_factory=dict)
    urban: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "score": self.score,
            "tier": self.tier.value,
            "urban": self.urban,
            "breakdown": dict(self.breakdown),
        }


# ═══════════════════════════════════════════════════════════════════════════
# Helpers
# ═══════════════════════════════════════════════════════════════════════════

def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _bracket(value: float, table: Tuple[Tuple[float, int], ...]) -> int:
    """Points for the first bracket whose bound exceeds value; NaN → last bracket."""
    for bound, points in table:
        if value < bound:
            return points
    return table[-1][1]


def _age_minutes(created_at: Optional[datetime], now: datetime) -> float:
    if created_at is None:
        return MISSING_AGE_MINUTES
    if created_at.tzinfo is None and now.tzinfo is not None:
        created_at = created_at.replace(tzinfo=timezone.utc)
    elif created_at.tzinfo is not None and now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)
    return (now - created_at).total_seconds() / 60.0


def local_time(moment: datetime, tz_name: Optional[str] = None) -> datetime:
    """Aware instants move to the service timezone; naive ones are taken as local already."""
    if moment.tzinfo is None:
        return moment
    return moment.astimezone(ZoneInfo(tz_name or settings.TIMEZONE))


def is_night_time(moment: datetime, tz_name: Optional[str] = None) -> bool:
    """Night runs from 19:00 through the 05:xx hour, local time."""
    hour = local_time(moment, tz_name).hour
    return hour >= NIGHT_START_HOUR or hour <= NIGHT_END_HOUR


def is_urban_area(
    latitude: float,
    longitude: float,
    zone: UrbanZone = DEFAULT_URBAN_ZONE,
) -> bool:
    return zone.contains(latitude, longitude)


def select_tier(score: int) -> UrgencyTier:
    for minimum, tier in TIER_THRESHOLDS:
        if score >= minimum:
            return tier
    return UrgencyTier.LOW


def urgency_glow(score: int, is_night: bool) -> GlowStyle:
    """Glow ladder for map markers; night makes it slightly bigger and brighter."""
    radius, opacity = GLOW_LADDER[select_tier(score)]
    if is_night:
        radius += 2
        opacity = min(round(opacity + 0.1, 2), 1.0)
    return GlowStyle(radius=radius, opacity=opacity)


# ═══════════════════════════════════════════════════════════════════════════
# Scoring
# ═══════════════════════════════════════════════════════════════════════════

def score_incident(
    incident: Incident,
    observer: Optional[Coordinate] = None,
    now: Optional[datetime] = None,
    *,
    is_night: Optional[bool] = None,
    urban_zone: UrbanZone = DEFAULT_URBAN_ZONE,
) -> UrgencyScore:
    """
    Score one incident for one observer.

    Parameters
    ----------
    incident : Incident
        Must carry coordinates; callers filter out the ones that don't.
        Missing coordinates are still tolerated and score as "far away".
    observer : Coordinate | None
        Viewer location. None means infinitely far.
    now : datetime | None
        Evaluation instant. Defaults to the current UTC time.
    is_night : bool | None
        Overrides the night check; None derives it from ``now``.
    urban_zone : UrbanZone
        Zone that selects the urban decay tables.

    Returns
    -------
    UrgencyScore
    """
    now = now or _utcnow()
    night = is_night_time(now) if is_night is None else is_night

    age = _age_minutes(incident.created_at, now)
    if math.isnan(age):
        age = MISSING_AGE_MINUTES

    lat, lng = incident.latitude, incident.longitude
    try:
        urban = lat is not None and lng is not None and urban_zone.contains(float(lat), float(lng))
    except (TypeError, ValueError):
        urban = False

    distance = math.inf
    if observer is not None and lat is not None and lng is not None:
        try:
            distance = distance_m(observer.latitude, observer.longitude, float(lat), float(lng))
        except (TypeError, ValueError):
            distance = math.inf
        if math.isnan(distance):
            distance = math.inf

    breakdown: Dict[str, int] = {
        "type": TYPE_WEIGHTS.get(incident.type, TYPE_WEIGHTS[IncidentType.OTHER]),
        "status": STATUS_WEIGHTS.get(incident.status, 0),
        "recency": _bracket(age, URBAN_RECENCY if urban else RURAL_RECENCY),
        "distance": _bracket(distance, URBAN_DISTANCE if urban else RURAL_DISTANCE),
        "night": 0,
        "stale_panic": 0,
    }

    if night:
        if incident.type in NIGHT_VIOLENT_TYPES:
            breakdown["night"] += NIGHT_VIOLENT_BONUS
        if distance > NIGHT_ISOLATION_DISTANCE_M:
            breakdown["night"] += NIGHT_ISOLATION_BONUS

    if incident.type == IncidentType.PANIC and age > STALE_PANIC_MINUTES:
        breakdown["stale_panic"] = STALE_PANIC_PENALTY

    total = max(sum(breakdown.values()), 0)
    return UrgencyScore(
        score=total,
        tier=select_tier(total),
        breakdown=breakdown,
        urban=urban,
    )


def resolve_priority(
    incidents: Iterable[Incident],
    observer: Optional[Coordinate] = None,
    now: Optional[datetime] = None,
    *,
    is_night: Optional[bool] = None,
    urban_zone: UrbanZone = DEFAULT_URBAN_ZONE,
) -> Optional[Tuple[Incident, UrgencyScore]]:
    """
    Highest-scoring incident worth focusing on.

    Incidents without coordinates and resolved incidents are skipped.
    A zero score never wins; ties keep the first incident seen.
    """
    now = now or _utcnow()
    best: Optional[Tuple[Incident, UrgencyScore]] = None

    for incident in incidents:
        if not incident.has_coordinates:
            continue
        if incident.status == IncidentStatus.RESOLVED:
            continue

        result = score_incident(
            incident, observer, now, is_night=is_night, urban_zone=urban_zone,
        )
        if result.score > (best[1].score if best else 0):
            best = (incident, result)

    return best


def is_calm(
    incidents: Iterable[Incident],
    observer: Optional[Coordinate],
    now: Optional[datetime] = None,
) -> bool:
    """
    True when nothing active is both recent (< 15 min) and near (< 3 km).

    Without an observer location the area is considered calm.
    """
    if observer is None:
        return True
    now = now or _utcnow()

    for incident in incidents:
        coord = Coordinate.maybe(incident.latitude, incident.longitude)
        if coord is None or incident.status == IncidentStatus.RESOLVED:
            continue
        # A missing timestamp counts as "just now"
        age = 0.0 if incident.created_at is None else _age_minutes(incident.created_at, now)
        near = distance_m(
            observer.latitude, observer.longitude, coord.latitude, coord.longitude,
        ) < CALM_RADIUS_M
        if age < CALM_MAX_AGE_MINUTES and near:
            return False
    return True


def score_many(
    incidents: Iterable[Incident],
    observer: Optional[Coordinate] = None,
    now: Optional[datetime] = None,
    *,
    is_night: Optional[bool] = None,
) -> List[Tuple[Incident, UrgencyScore]]:
    """Score every incident with coordinates, most urgent first."""
    now = now or _utcnow()
    scored = [
        (incident, score_incident(incident, observer, now, is_night=is_night))
        for incident in incidents
        if incident.has_coordinates
    ]
    scored.sort(key=lambda pair: pair[1].score, reverse=True)
    return scored
