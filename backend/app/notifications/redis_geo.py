"""
redis_geo.py — Redis GEO backend for the geo index.

Layout:
    GEO key   (REDIS_GEO_KEY)     member = user_id, position = (lng, lat)
    HASH key  (REDIS_GHOST_KEY)   user_id → "1" when ghost mode is on

``query_near`` runs GEOSEARCH FROMLONLAT … BYRADIUS … m WITHCOORD and
joins the ghost flags with one HMGET.
"""

from __future__ import annotations

import logging
from typing import List, Optional

import redis.asyncio as aioredis

from backend.app.notifications.models import WatcherLocation

logger = logging.getLogger(__name__)


class RedisGeoIndex:
    def __init__(self, client: aioredis.Redis, geo_key: str, ghost_key: str):
        self._client = client
        self._geo_key = geo_key
        self._ghost_key = ghost_key

    async def upsert(self, location: WatcherLocation) -> None:
        await self._client.geoadd(
            self._geo_key, (location.longitude, location.latitude, location.user_id),
        )
        if location.ghost_mode:
            await self._client.hset(self._ghost_key, location.user_id, "1")
        else:
            await self._client.hdel(self._ghost_key, location.user_id)

    async def query_near(
        self,
        lat: float,
        lng: float,
        radius_m: float,
        exclude_user_id: Optional[str] = None,
    ) -> List[WatcherLocation]:
        hits = await self._client.geosearch(
            self._geo_key,
            longitude=lng,
            latitude=lat,
            radius=radius_m,
            unit="m",
            withcoord=True,
        )
        members = [(member, coord) for member, coord in hits if member != exclude_user_id]
        if not members:
            return []

        flags = await self._client.hmget(self._ghost_key, [m for m, _ in members])
        return [
            WatcherLocation(
                user_id=member,
                latitude=float(coord[1]),
                longitude=float(coord[0]),
                ghost_mode=flag == "1",
            )
            for (member, coord), flag in zip(members, flags)
        ]
