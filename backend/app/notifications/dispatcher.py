"""
dispatcher.py — Turning approved (recipient, event) pairs into deliveries.

For each recipient:
    1. Build one in-app NotificationRecord (priority mapped
       critical→high, important→normal, info→low)
    2. Persist the batch; if the batch insert fails, retry row by row
       so one bad row only costs that recipient
    3. Record a ledger entry for every persisted recipient
    4. Hand a ClientNotification to the push transport

Delivery is best-effort and must never block the incident flow that
triggered it: persistence and push failures become counts in the
DispatchResult, never exceptions.

Map-only events (panic_movement) skip steps 1–3; they are pushed only so
open maps can move the marker, and the delivery router never shows them.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Iterable, List, Optional, Sequence

from backend.app.notifications.channels.web_push import PushTransport
from backend.app.notifications.models import (
    RECORD_PRIORITY,
    DispatchResult,
    NotificationEvent,
    NotificationRecord,
)
from backend.app.notifications.payloads import build_client_notification
from backend.app.notifications.stores import LedgerStore, NotificationStore

logger = logging.getLogger(__name__)


def build_record(user_id: str, event: NotificationEvent, now: datetime) -> NotificationRecord:
    location = event.location
    return NotificationRecord(
        user_id=user_id,
        type=event.event_type,
        title=event.title,
        body=event.body,
        priority=RECORD_PRIORITY[event.priority],
        entity_id=event.related_id,
        entity_type=event.related_type.value,
        actor_id=event.triggered_by or None,
        data={
            "url": event.url,
            "relatedType": event.related_type.value,
            "relatedId": event.related_id,
            "placeName": location.place_name if location else None,
            "lat": location.latitude if location else None,
            "lng": location.longitude if location else None,
        },
        created_at=now,
    )


@dataclass
class NotificationDispatcher:
    """Persists, ledgers and pushes notifications for one event at a time."""
    notification_store: NotificationStore
    ledger: LedgerStore
    push_transport: PushTransport

    async def _persist(self, records: Sequence[NotificationRecord]) -> List[NotificationRecord]:
        """Persisted subset of records."""
        if not records:
            return []
        try:
            await self.notification_store.insert_many(records)
            return list(records)
        except Exception as exc:
            logger.warning(
                "Batch insert of %d notifications failed (%s); retrying per record",
                len(records), exc,
            )

        persisted: List[NotificationRecord] = []
        for record in records:
            try:
                await self.notification_store.insert(record)
                persisted.append(record)
            except Exception as exc:
                logger.error(
                    "Notification insert failed for user=%s type=%s: %s",
                    record.user_id, record.type, exc,
                    extra={"user_id": record.user_id, "event_type": record.type},
                )
        return persisted

    async def _record_ledger(self, user_ids: Iterable[str], event: NotificationEvent, now: datetime) -> None:
        for user_id in user_ids:
            try:
                await self.ledger.record(event.related_id, event.event_type, user_id, now)
            except Exception as exc:
                logger.warning(
                    "Ledger record failed for %s/%s user=%s: %s",
                    event.event_type, event.related_id, user_id, exc,
                )

    async def _push(self, user_ids: Iterable[str], event: NotificationEvent) -> int:
        """Push to every user; returns the number of failed pushes."""
        notification = build_client_notification(event)
        failures = 0
        for user_id in user_ids:
            try:
                await self.push_transport.send(user_id, notification)
            except Exception as exc:
                failures += 1
                logger.warning(
                    "Push failed for user=%s tag=%s: %s",
                    user_id, notification.tag, exc,
                    extra={"user_id": user_id, "event_type": event.event_type},
                )
        return failures

    async def dispatch(
        self,
        targets: Iterable[str],
        event: NotificationEvent,
        *,
        deduplicated: int = 0,
        now: Optional[datetime] = None,
    ) -> DispatchResult:
        """
        Deliver an event to already-filtered targets.

        Parameters
        ----------
        targets : iterable of str
            Recipients that passed fan-out and dedup.
        event : NotificationEvent
        deduplicated : int
            How many candidates the ledger filtered out, echoed in the result.
        now : datetime | None
            Ledger / record timestamp.

        Returns
        -------
        DispatchResult
        """
        now = now or datetime.now(timezone.utc)
        user_ids = sorted(set(targets))
        result = DispatchResult(deduplicated=deduplicated)

        if not user_ids:
            return result

        if event.is_map_only:
            result.push_failed = await self._push(user_ids, event)
            result.sent = len(user_ids) - result.push_failed
            return result

        records = [build_record(uid, event, now) for uid in user_ids]
        persisted = await self._persist(records)
        persisted_ids = [r.user_id for r in persisted]

        await self._record_ledger(persisted_ids, event, now)

        result.sent = len(persisted_ids)
        result.failed = len(user_ids) - len(persisted_ids)
        result.push_failed = await self._push(persisted_ids, event)

        logger.info(
            "Dispatched %s/%s: sent=%d failed=%d push_failed=%d deduplicated=%d",
            event.event_type, event.related_id,
            result.sent, result.failed, result.push_failed, result.deduplicated,
            extra={
                "event_type": event.event_type,
                "related_id": event.related_id,
                "sent": result.sent,
                "failed": result.failed,
                "deduplicated": result.deduplicated,
            },
        )
        return result
