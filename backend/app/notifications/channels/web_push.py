"""
web_push.py — Push transport boundary.

Delivery mechanism:
    • The dispatcher hands one ClientNotification per recipient to a
      PushTransport, keyed by the recipient's user id
    • The gateway transport POSTs the flat wire JSON to a push relay that
      owns subscriptions and VAPID signing
    • The client's delivery router renders (or silences) the payload

Push is best-effort. The in-app notification row, delivered over the
real-time subscription, is the channel of record; a push failure is
logged by the dispatcher and never retried here.

When PUSH_GATEWAY_URL is unset, LoggingPushTransport simulates delivery
for development and tests.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import List, Optional, Protocol, Tuple

import httpx

from backend.app.core.config import settings
from backend.app.core.errors import TransientTransportError
from backend.app.notifications.models import ClientNotification

logger = logging.getLogger(__name__)


class PushTransport(Protocol):
    async def send(self, user_id: str, notification: ClientNotification) -> None:
        """Deliver one payload; raise TransientTransportError on failure."""
        ...

    async def close(self) -> None:
        ...


class LoggingPushTransport:
    """Simulated transport: logs and keeps what it would have sent."""

    def __init__(self) -> None:
        self.delivered: List[Tuple[str, ClientNotification]] = []

    async def send(self, user_id: str, notification: ClientNotification) -> None:
        logger.info(
            "[WEB_PUSH] %s → %s (tag=%s, silent=%s): %s",
            notification.event_type, user_id, notification.tag,
            notification.silent, notification.title,
        )
        self.delivered.append((user_id, notification))

    async def close(self) -> None:
        return None


@dataclass
class GatewayPushTransport:
    """
    Push relay client.

    POST {gateway_url}
        {"user_id": "...", "payload": {...flat wire JSON...}}
    """
    gateway_url: str
    token: Optional[str] = None
    timeout_seconds: float = 10.0
    _client: Optional[httpx.AsyncClient] = None

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            headers = {"Content-Type": "application/json"}
            if self.token:
                headers["Authorization"] = f"Bearer {self.token}"
            self._client = httpx.AsyncClient(
                timeout=self.timeout_seconds, headers=headers,
            )
        return self._client

    async def send(self, user_id: str, notification: ClientNotification) -> None:
        client = await self._get_client()
        body = {"user_id": user_id, "payload": notification.to_wire()}
        try:
            response = await client.post(self.gateway_url, json=body)
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            raise TransientTransportError(
                "web_push", f"HTTP {exc.response.status_code}",
                user_id=user_id,
            ) from exc
        except httpx.HTTPError as exc:
            raise TransientTransportError("web_push", str(exc), user_id=user_id) from exc

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None


def build_push_transport() -> PushTransport:
    """Transport selected by settings."""
    if settings.PUSH_GATEWAY_URL:
        logger.info("Push transport: gateway %s", settings.PUSH_GATEWAY_URL)
        return GatewayPushTransport(
            gateway_url=settings.PUSH_GATEWAY_URL,
            token=settings.PUSH_GATEWAY_TOKEN,
            timeout_seconds=settings.PUSH_TIMEOUT_SECONDS,
        )
    logger.info("Push transport: simulated (PUSH_GATEWAY_URL unset)")
    return LoggingPushTransport()
