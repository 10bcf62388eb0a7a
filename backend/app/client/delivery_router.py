"""
delivery_router.py — Client-side push delivery (service-worker equivalent).

═══════════════════════════════════════════════════════════════════════════
MESSAGE LIFECYCLE
═══════════════════════════════════════════════════════════════════════════

    PushMessage ──► parse ──► malformed? ──► drop (logged)
                                │
                                ▼
                       eventType == panic_movement? ──► no tray call
                                │
                                ▼
                       tray.show(title, options)   tag replaces, never stacks

    ClickMessage ──► tray.close(tag)               always first
                        │
                        ▼
                 open app window? ──yes──► post NOTIFICATION_TAP, focus
                        │
                        no
                        ▼
                 windows.open_window(deep_link)

Messages are handled one at a time from a FIFO asyncio.Queue. ``stop()``
drains what is already queued, then refuses new messages.

═══════════════════════════════════════════════════════════════════════════
DEEP LINKS
═══════════════════════════════════════════════════════════════════════════

    relatedType    Target
    ────────────   ──────────────────────────────────────────
    panic          /map?panic={id}&lat=..&lng=..&zoom=16
    incident       /map?incident={id}&lat=..&lng=..&zoom=15
    amber          /amber-chat/{id}
    lookAfterMe    /look-after-me
    comment        payload url, else /alerts
    (unknown)      payload url, else /alerts

lat/lng/zoom are appended only when both coordinates are present.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Mapping, Optional, Protocol, Tuple, Union
from urllib.parse import urlencode

from backend.app.core.errors import MalformedInputError, RouterClosedError
from backend.app.notifications.models import (
    ClientNotification,
    EventType,
    NotificationData,
    RelatedType,
)
from backend.app.notifications.payloads import DEFAULT_URL, parse_push_payload

logger = logging.getLogger(__name__)

TAP_MESSAGE_TYPE = "NOTIFICATION_TAP"

# Event types that must never reach the tray
SUPPRESSED_EVENT_TYPES = frozenset({EventType.PANIC_MOVEMENT.value})


# ═══════════════════════════════════════════════════════════════════════════
# Deep links
# ═══════════════════════════════════════════════════════════════════════════

def _map_link(param: str, zoom: int) -> Callable[[NotificationData], str]:
    def build(data: NotificationData) -> str:
        params: List[Tuple[str, str]] = [(param, data.related_id)]
        if data.lat is not None and data.lng is not None:
            params += [("lat", str(data.lat)), ("lng", str(data.lng)), ("zoom", str(zoom))]
        return f"/map?{urlencode(params)}"
    return build


def _fallback_link(data: NotificationData) -> str:
    return data.url or DEFAULT_URL


DEEP_LINKS: Dict[RelatedType, Callable[[NotificationData], str]] = {
    RelatedType.PANIC:         _map_link("panic", 16),
    RelatedType.INCIDENT:      _map_link("incident", 15),
    RelatedType.AMBER:         lambda data: f"/amber-chat/{data.related_id}",
    RelatedType.LOOK_AFTER_ME: lambda data: "/look-after-me",
    RelatedType.COMMENT:       _fallback_link,
}


def deep_link(data: NotificationData) -> str:
    """Exact in-app location a tapped notification should open."""
    try:
        related_type = RelatedType(data.related_type)
    except ValueError:
        return _fallback_link(data)
    return DEEP_LINKS[related_type](data)


def tap_message(data: NotificationData) -> Dict[str, Any]:
    """Message posted to an already-open app window on tap."""
    message: Dict[str, Any] = {
        "type": TAP_MESSAGE_TYPE,
        "relatedType": data.related_type,
        "relatedId": data.related_id,
        "url": data.url,
    }
    if data.lat is not None and data.lng is not None:
        message["lat"] = data.lat
        message["lng"] = data.lng
    return message


# ═══════════════════════════════════════════════════════════════════════════
# Client boundaries
# ═══════════════════════════════════════════════════════════════════════════

class NotificationTray(Protocol):
    async def show(self, title: str, options: Dict[str, Any]) -> None:
        ...

    async def close(self, tag: str) -> None:
        ...


class AppWindow(Protocol):
    async def post_message(self, message: Dict[str, Any]) -> None:
        ...

    async def focus(self) -> None:
        ...


class ClientWindows(Protocol):
    async def find_open(self) -> Optional[AppWindow]:
        ...

    async def open_window(self, url: str) -> None:
        ...


class InMemoryTray:
    """
    Tray keyed by tag: showing a tag that is already present replaces it.

    ``calls`` records every show/close so callers can assert that nothing
    touched the tray.
    """

    def __init__(self) -> None:
        self.entries: Dict[str, Tuple[str, Dict[str, Any]]] = {}
        self.calls: List[Tuple[str, str]] = []

    async def show(self, title: str, options: Dict[str, Any]) -> None:
        self.calls.append(("show", options["tag"]))
        self.entries[options["tag"]] = (title, options)

    async def close(self, tag: str) -> None:
        self.calls.append(("close", tag))
        self.entries.pop(tag, None)


# ═══════════════════════════════════════════════════════════════════════════
# Router
# ═══════════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class PushMessage:
    payload: Union[str, bytes, Mapping[str, Any]]


@dataclass(frozen=True)
class ClickMessage:
    notification: ClientNotification


RouterMessage = Union[PushMessage, ClickMessage]


@dataclass
class DeliveryRouter:
    tray: NotificationTray
    windows: ClientWindows
    _queue: "asyncio.Queue[RouterMessage]" = field(default_factory=asyncio.Queue, init=False)
    _task: Optional[asyncio.Task] = field(default=None, init=False)
    _closed: bool = field(default=False, init=False)

    # ── Handlers ──

    async def handle_push(self, payload: Union[str, bytes, Mapping[str, Any]]) -> Optional[ClientNotification]:
        """
        Show one push in the tray.

        Returns the notification shown, or None when the payload was
        dropped or suppressed.
        """
        try:
            notification = parse_push_payload(payload)
        except MalformedInputError as exc:
            logger.warning("Dropping malformed push payload: %s", exc.message)
            return None

        if notification.event_type in SUPPRESSED_EVENT_TYPES:
            logger.debug("Suppressed %s push for %s", notification.event_type, notification.tag)
            return None

        await self.tray.show(notification.title, notification.tray_options())
        return notification

    async def handle_click(self, notification: ClientNotification) -> str:
        """
        Route a tapped notification.

        Returns the deep link that was posted to an open window or opened
        in a new one.
        """
        await self.tray.close(notification.tag)

        target = deep_link(notification.data)
        window = await self.windows.find_open()
        if window is not None:
            await window.post_message(tap_message(notification.data))
            await window.focus()
        else:
            await self.windows.open_window(target)
        return target

    # ── Event loop ──

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self._closed:
            raise RouterClosedError()
        if not self.running:
            self._task = asyncio.create_task(self._run(), name="delivery-router")

    def submit(self, message: RouterMessage) -> None:
        if self._closed:
            raise RouterClosedError()
        self._queue.put_nowait(message)

    async def stop(self) -> None:
        """Stop accepting messages, finish the queued ones, end the loop."""
        self._closed = True
        if self._task is None:
            # Never started: handle what was submitted here instead of dropping it
            while not self._queue.empty():
                await self._handle(self._queue.get_nowait())
                self._queue.task_done()
            return
        await self._queue.join()
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None

    async def _handle(self, message: RouterMessage) -> None:
        try:
            if isinstance(message, PushMessage):
                await self.handle_push(message.payload)
            else:
                await self.handle_click(message.notification)
        except Exception as exc:
            logger.error("Delivery router handler failed: %s", exc, exc_info=True)

    async def _run(self) -> None:
        while True:
            message = await self._queue.get()
            try:
                await self._handle(message)
            finally:
                self._queue.task_done()
