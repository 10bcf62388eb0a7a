"""
pipeline.py — One notification event, end to end.

═══════════════════════════════════════════════════════════════════════════
ORCHESTRATION FLOW
═══════════════════════════════════════════════════════════════════════════

    ┌─────────────────────┐
    │  NotificationEvent  │  from an incident / panic / amber trigger
    └─────────┬───────────┘
              ▼
    ┌─────────────────────┐
    │  1. Fan-out         │  explicit targets, or geo radius query
    │                     │  (ghost mode, self-exclusion)
    └─────────┬───────────┘
              ▼
    ┌─────────────────────┐
    │  2. Dedup ledger    │  drop recipients notified about the same
    │                     │  entity/event within the window
    └─────────┬───────────┘
              ▼
    ┌─────────────────────┐
    │  3. Dispatch        │  persist in-app rows, ledger them, push
    └─────────┬───────────┘
              ▼
    ┌─────────────────────┐
    │  PipelineReport     │  outcome + counts, for logs and the caller
    └─────────────────────┘

All collaborators travel in an explicit PipelineContext, so concurrent
pipelines share nothing but the external stores.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Dict, Optional

from backend.app.core.logging_config import bind_log_context
from backend.app.notifications.channels.web_push import PushTransport
from backend.app.notifications.dispatcher import NotificationDispatcher
from backend.app.notifications.fanout import resolve_targets
from backend.app.notifications.ledger import DEDUP_WINDOW, filter_already_notified
from backend.app.notifications.models import DispatchResult, NotificationEvent
from backend.app.notifications.stores import GeoIndex, LedgerStore, NotificationStore

logger = logging.getLogger(__name__)


class PipelineOutcome(str, Enum):
    NO_RECIPIENTS    = "no_recipients"      # fan-out found nobody
    ALL_DEDUPLICATED = "all_deduplicated"   # everybody already notified
    DISPATCHED       = "dispatched"


@dataclass
class PipelineContext:
    """Store clients and knobs for one pipeline invocation."""
    geo_index: GeoIndex
    ledger: LedgerStore
    notification_store: NotificationStore
    push_transport: PushTransport
    dedup_window: timedelta = DEDUP_WINDOW

    @property
    def dispatcher(self) -> NotificationDispatcher:
        return NotificationDispatcher(
            notification_store=self.notification_store,
            ledger=self.ledger,
            push_transport=self.push_transport,
        )


@dataclass
class PipelineReport:
    event_type: str
    related_id: str
    outcome: PipelineOutcome
    candidates: int = 0
    result: DispatchResult = field(default_factory=DispatchResult)
    duration_ms: float = 0.0

    @property
    def sent(self) -> int:
        return self.result.sent

    @property
    def deduplicated(self) -> int:
        return self.result.deduplicated

    def to_dict(self) -> Dict[str, Any]:
        return {
            "event_type": self.event_type,
            "related_id": self.related_id,
            "outcome": self.outcome.value,
            "candidates": self.candidates,
            **self.result.to_dict(),
            "duration_ms": round(self.duration_ms, 2),
        }


async def process_event(
    event: NotificationEvent,
    ctx: PipelineContext,
    now: Optional[datetime] = None,
) -> PipelineReport:
    """
    Run fan-out → dedup → dispatch for one event.

    Never raises for delivery problems; they show up as counts or as a
    NO_RECIPIENTS / ALL_DEDUPLICATED outcome.
    """
    now = now or datetime.now(timezone.utc)
    with bind_log_context(event_type=event.event_type, related_id=event.related_id):
        return await _run(event, ctx, now)


async def _run(event: NotificationEvent, ctx: PipelineContext, now: datetime) -> PipelineReport:
    started = time.perf_counter()

    candidates = await resolve_targets(event, ctx.geo_index)
    report = PipelineReport(
        event_type=event.event_type,
        related_id=event.related_id,
        outcome=PipelineOutcome.NO_RECIPIENTS,
        candidates=len(candidates),
    )

    if not candidates:
        report.duration_ms = (time.perf_counter() - started) * 1000
        logger.info(
            "Event %s/%s: no recipients found",
            event.event_type, event.related_id,
            extra={"event_type": event.event_type, "outcome": report.outcome.value},
        )
        return report

    if event.is_map_only:
        # Movement updates are never ledgered, so they are never deduplicated
        fresh = set(candidates)
    else:
        fresh = await filter_already_notified(
            candidates, event, ctx.ledger, now, window=ctx.dedup_window,
        )
    deduplicated = len(candidates) - len(fresh)

    if not fresh:
        report.outcome = PipelineOutcome.ALL_DEDUPLICATED
        report.result = DispatchResult(deduplicated=deduplicated)
        report.duration_ms = (time.perf_counter() - started) * 1000
        logger.info(
            "Event %s/%s: all %d recipients already notified",
            event.event_type, event.related_id, deduplicated,
            extra={
                "event_type": event.event_type,
                "outcome": report.outcome.value,
                "deduplicated": deduplicated,
            },
        )
        return report

    report.result = await ctx.dispatcher.dispatch(
        fresh, event, deduplicated=deduplicated, now=now,
    )
    report.outcome = PipelineOutcome.DISPATCHED
    report.duration_ms = (time.perf_counter() - started) * 1000
    return report
