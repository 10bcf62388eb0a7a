"""
sql_store.py — PostgreSQL backends for the pipeline stores.

Tables:
    notifications         in-app notification rows (one per recipient)
    notification_ledger   dedup ledger; UNIQUE(entity_id, event_type,
                          user_id, bucket) where bucket = epoch // window
    user_locations        last known location + ghost-mode flag

The unique bucket constraint is the store-level half of dedup: two
concurrent pipelines that both pass the filter can only write one ledger
row per window bucket; the loser's IntegrityError is swallowed.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional, Sequence

from sqlalchemy import (
    JSON,
    Boolean,
    DateTime,
    Float,
    Index,
    Integer,
    String,
    UniqueConstraint,
    or_,
    select,
)
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.orm import Mapped, mapped_column

from backend.app.core.database import Base
from backend.app.notifications.ledger import DEDUP_WINDOW
from backend.app.notifications.models import NotificationRecord, WatcherLocation
from backend.app.spatial.radius_utils import Coordinate, bounding_box

logger = logging.getLogger(__name__)


# ═══════════════════════════════════════════════════════════════════════════
# ORM Models
# ═══════════════════════════════════════════════════════════════════════════

class NotificationRow(Base):
    __tablename__ = "notifications"
    __table_args__ = (
        Index("ix_notifications_user_created", "user_id", "created_at"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False)
    type: Mapped[str] = mapped_column(String(64), nullable=False)
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    body: Mapped[str] = mapped_column(String(1024), default="")
    priority: Mapped[str] = mapped_column(String(16), nullable=False)
    entity_id: Mapped[str] = mapped_column(String(64), nullable=False)
    entity_type: Mapped[str] = mapped_column(String(32), nullable=False)
    actor_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    data: Mapped[Dict[str, Any]] = mapped_column(JSON, default=dict)
    read: Mapped[bool] = mapped_column(Boolean, default=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    @classmethod
    def from_record(cls, record: NotificationRecord) -> "NotificationRow":
        return cls(
            user_id=record.user_id,
            type=record.type,
            title=record.title,
            body=record.body,
            priority=record.priority.value,
            entity_id=record.entity_id,
            entity_type=record.entity_type,
            actor_id=record.actor_id,
            data=record.data,
            read=record.read,
            created_at=record.created_at,
        )


class LedgerRow(Base):
    __tablename__ = "notification_ledger"
    __table_args__ = (
        UniqueConstraint(
            "entity_id", "event_type", "user_id", "bucket",
            name="uq_notification_ledger_bucket",
        ),
        Index("ix_notification_ledger_lookup", "entity_id", "event_type", "user_id", "notified_at"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    entity_id: Mapped[str] = mapped_column(String(64), nullable=False)
    event_type: Mapped[str] = mapped_column(String(64), nullable=False)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False)
    bucket: Mapped[int] = mapped_column(Integer, nullable=False)
    notified_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)


class UserLocationRow(Base):
    __tablename__ = "user_locations"

    user_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    latitude: Mapped[float] = mapped_column(Float, nullable=False, index=True)
    longitude: Mapped[float] = mapped_column(Float, nullable=False, index=True)
    ghost_mode: Mapped[bool] = mapped_column(Boolean, default=False)
    updated_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)


def time_bucket(timestamp: datetime, window: timedelta = DEDUP_WINDOW) -> int:
    """Index of the dedup window a timestamp falls in."""
    return int(timestamp.timestamp() // window.total_seconds())


# ═══════════════════════════════════════════════════════════════════════════
# Stores
# ═══════════════════════════════════════════════════════════════════════════

class SqlNotificationStore:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    async def insert_many(self, records: Sequence[NotificationRecord]) -> int:
        async with self._session_factory() as session:
            async with session.begin():
                session.add_all([NotificationRow.from_record(r) for r in records])
        return len(records)

    async def insert(self, record: NotificationRecord) -> None:
        async with self._session_factory() as session:
            async with session.begin():
                session.add(NotificationRow.from_record(record))


class SqlLedgerStore:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        window: timedelta = DEDUP_WINDOW,
    ):
        self._session_factory = session_factory
        self._window = window

    async def exists(
        self, entity_id: str, event_type: str, user_id: str, since: datetime,
    ) -> bool:
        stmt = (
            select(LedgerRow.id)
            .where(
                LedgerRow.entity_id == entity_id,
                LedgerRow.event_type == event_type,
                LedgerRow.user_id == user_id,
                LedgerRow.notified_at >= since,
            )
            .limit(1)
        )
        async with self._session_factory() as session:
            result = await session.execute(stmt)
            return result.first() is not None

    async def record(
        self, entity_id: str, event_type: str, user_id: str, timestamp: datetime,
    ) -> None:
        row = LedgerRow(
            entity_id=entity_id,
            event_type=event_type,
            user_id=user_id,
            bucket=time_bucket(timestamp, self._window),
            notified_at=timestamp,
        )
        try:
            async with self._session_factory() as session:
                async with session.begin():
                    session.add(row)
        except IntegrityError:
            logger.debug(
                "Ledger entry already present for %s/%s user=%s",
                event_type, entity_id, user_id,
            )


class SqlGeoIndex:
    """Bounding-box query on user_locations; the resolver re-checks distance."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    async def upsert(self, location: WatcherLocation) -> None:
        async with self._session_factory() as session:
            async with session.begin():
                await session.merge(UserLocationRow(
                    user_id=location.user_id,
                    latitude=location.latitude,
                    longitude=location.longitude,
                    ghost_mode=location.ghost_mode,
                    updated_at=datetime.now(timezone.utc),
                ))

    async def query_near(
        self,
        lat: float,
        lng: float,
        radius_m: float,
        exclude_user_id: Optional[str] = None,
    ) -> List[WatcherLocation]:
        box = bounding_box(Coordinate(lat, lng), radius_m)
        stmt = select(UserLocationRow).where(
            UserLocationRow.latitude.between(box.min_lat, box.max_lat),
            or_(*(UserLocationRow.longitude.between(lo, hi) for lo, hi in box.lng_ranges)),
        )
        if exclude_user_id:
            stmt = stmt.where(UserLocationRow.user_id != exclude_user_id)

        async with self._session_factory() as session:
            rows = (await session.execute(stmt)).scalars().all()

        return [
            WatcherLocation(
                user_id=row.user_id,
                latitude=row.latitude,
                longitude=row.longitude,
                ghost_mode=bool(row.ghost_mode),
            )
            for row in rows
        ]
