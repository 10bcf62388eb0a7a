"""
Health check aggregation — probes for the configured pipeline backends.

Checks:
    • Notification / ledger store (memory or PostgreSQL)
    • Geo index (memory, PostgreSQL or Redis)
    • Push transport configuration

Only backends selected in settings are probed; a memory backend is
always healthy. Push is DEGRADED rather than UNHEALTHY when no gateway
is configured, since notifications are still persisted in-app.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List

from sqlalchemy import text

from backend.app.core.config import Settings, settings

logger = logging.getLogger(__name__)


class HealthStatus(str, Enum):
    HEALTHY = "healthy"
    DEGRADED = "degraded"  # partial functionality
    UNHEALTHY = "unhealthy"


@dataclass
class ComponentHealth:
    name: str
    status: HealthStatus = HealthStatus.HEALTHY
    latency_ms: float = 0.0
    message: str = ""
    details: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        d: Dict[str, Any] = {
            "name": self.name,
            "status": self.status.value,
            "latency_ms": round(self.latency_ms, 2),
        }
        if self.message:
            d["message"] = self.message
        if self.details:
            d["details"] = self.details
        return d


@dataclass
class HealthReport:
    status: HealthStatus = HealthStatus.HEALTHY
    version: str = settings.APP_VERSION
    environment: str = settings.ENVIRONMENT
    timestamp: str = ""
    uptime_seconds: float = 0.0
    components: List[ComponentHealth] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "status": self.status.value,
            "version": self.version,
            "environment": self.environment,
            "timestamp": self.timestamp or datetime.now(timezone.utc).isoformat(),
            "uptime_seconds": round(self.uptime_seconds, 1),
            "components": [c.to_dict() for c in self.components],
        }


# Track application start time
_start_time = time.monotonic()


def _redact(url: str) -> str:
    return url.split("@")[-1] if "@" in url else url


async def check_database(cfg: Settings) -> ComponentHealth:
    """SELECT 1 against PostgreSQL when any backend uses it."""
    comp = ComponentHealth(name="postgresql")
    start = time.monotonic()
    if "sql" not in (cfg.STORE_BACKEND, cfg.GEO_BACKEND):
        comp.message = "Not configured (memory backend)"
        return comp
    try:
        from backend.app.core.database import get_engine

        async with get_engine().connect() as conn:
            await conn.execute(text("SELECT 1"))
        comp.message = "Connection pool available"
        comp.details = {"url": _redact(cfg.DATABASE_URL)}
    except Exception as e:
        comp.status = HealthStatus.UNHEALTHY
        comp.message = str(e)
    comp.latency_ms = (time.monotonic() - start) * 1000
    return comp


async def check_redis(cfg: Settings) -> ComponentHealth:
    """PING Redis when the geo index lives there."""
    comp = ComponentHealth(name="redis")
    start = time.monotonic()
    if cfg.GEO_BACKEND != "redis":
        comp.message = "Not configured"
        return comp

    from backend.app.core.redis_client import ping_redis

    if await ping_redis():
        comp.message = "Geo index available"
        comp.details = {"url": _redact(cfg.REDIS_URL)}
    else:
        comp.status = HealthStatus.UNHEALTHY
        comp.message = "Redis did not answer PING"
    comp.latency_ms = (time.monotonic() - start) * 1000
    return comp


async def check_push_gateway(cfg: Settings) -> ComponentHealth:
    comp = ComponentHealth(name="push_gateway")
    if cfg.PUSH_GATEWAY_URL:
        comp.message = "Gateway configured"
        comp.details = {"url": cfg.PUSH_GATEWAY_URL}
    else:
        comp.status = HealthStatus.DEGRADED
        comp.message = "No push gateway; pushes are logged only"
    return comp


async def run_health_check(cfg: Settings = settings) -> HealthReport:
    """Run all health checks and aggregate into a report."""
    report = HealthReport(
        timestamp=datetime.now(timezone.utc).isoformat(),
        uptime_seconds=time.monotonic() - _start_time,
    )

    checks = [
        check_database(cfg),
        check_redis(cfg),
        check_push_gateway(cfg),
    ]

    for coro in checks:
        comp = await coro
        report.components.append(comp)

    # Aggregate status
    statuses = [c.status for c in report.components]
    if HealthStatus.UNHEALTHY in statuses:
        report.status = HealthStatus.UNHEALTHY
    elif HealthStatus.DEGRADED in statuses:
        report.status = HealthStatus.DEGRADED
    else:
        report.status = HealthStatus.HEALTHY

    return report
