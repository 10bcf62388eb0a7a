"""
test_delivery_router.py — Tests for client-side push delivery and deep links.

Covers:
    • Payload parsing (malformed payloads dropped, defaults)
    • panic_movement suppression (zero tray calls)
    • Tag-based replace-not-stack behaviour
    • Delivery attributes per priority, including the dispatcher round trip
    • Click handling (close first, in-place tap message or new window)
    • Deep-link table
    • Queue lifecycle (FIFO, drain on stop, closed router)

Run with:
    pytest tests/test_delivery_router.py -v
"""

from __future__ import annotations

import asyncio
import json

import pytest

from backend.app.client.delivery_router import (
    DEEP_LINKS,
    TAP_MESSAGE_TYPE,
    ClickMessage,
    DeliveryRouter,
    InMemoryTray,
    PushMessage,
    deep_link,
    tap_message,
)
from backend.app.core.errors import MalformedInputError, RouterClosedError
from backend.app.notifications.models import (
    EventLocation,
    NotificationData,
    NotificationEvent,
    NotificationPriority,
    RelatedType,
)
from backend.app.notifications.payloads import build_client_notification, parse_push_payload


# ═══════════════════════════════════════════════════════════════════════════
# Test Fixtures
# ═══════════════════════════════════════════════════════════════════════════

class FakeWindow:
    def __init__(self, log):
        self.log = log
        self.messages = []

    async def post_message(self, message):
        self.log.append("post")
        self.messages.append(message)

    async def focus(self):
        self.log.append("focus")


class FakeWindows:
    def __init__(self, open_window: bool = False):
        self.log = []
        self.window = FakeWindow(self.log) if open_window else None
        self.opened = []

    async def find_open(self):
        return self.window

    async def open_window(self, url):
        self.log.append("open")
        self.opened.append(url)


class LoggingTray(InMemoryTray):
    def __init__(self, log):
        super().__init__()
        self.log = log

    async def close(self, tag):
        self.log.append("close")
        await super().close(tag)


def _payload(**overrides):
    payload = {
        "title": "Panic alert nearby",
        "body": "Last seen near Zoo Park. Tap to view on map",
        "relatedType": "panic",
        "relatedId": "p-1",
        "priority": "critical",
        "url": "/map?panic=p-1",
        "lat": -22.5609,
        "lng": 17.0832,
    }
    payload.update(overrides)
    return payload


def _event(priority: NotificationPriority) -> NotificationEvent:
    return NotificationEvent(
        event_type="incident_reported",
        related_type=RelatedType.INCIDENT,
        related_id="inc-1",
        triggered_by="reporter",
        title="Incident reported nearby",
        body="Reported near Zoo Park. Tap to view details",
        priority=priority,
        location=EventLocation(-22.5, 17.0),
    )


def _data(related_type: str, lat=None, lng=None, url="/alerts") -> NotificationData:
    return NotificationData(
        url=url,
        related_type=related_type,
        related_id="x-1",
        priority=NotificationPriority.IMPORTANT,
        lat=lat,
        lng=lng,
    )


# ═══════════════════════════════════════════════════════════════════════════
# Section 1: Payload parsing
# ═══════════════════════════════════════════════════════════════════════════

class TestParsePushPayload:
    def test_tag_defaults_to_entity(self):
        assert parse_push_payload(_payload()).tag == "panic_p-1"

    def test_explicit_tag_kept(self):
        assert parse_push_payload(_payload(tag="custom")).tag == "custom"

    def test_json_text_accepted(self):
        notification = parse_push_payload(json.dumps(_payload()).encode())
        assert notification.data.related_id == "p-1"

    def test_unknown_priority_is_important(self):
        notification = parse_push_payload(_payload(priority="urgent!!"))
        assert notification.data.priority == NotificationPriority.IMPORTANT
        assert notification.silent is False
        assert notification.require_interaction is False

    def test_defaults(self):
        notification = parse_push_payload({"relatedType": "amber", "relatedId": "m-1"})
        assert notification.title == "Safety update"
        assert notification.data.url == "/alerts"

    @pytest.mark.parametrize("raw", [
        "not json",
        "[1, 2]",
        {"relatedType": "panic"},
        {"relatedId": "p-1"},
        {"relatedType": "panic", "relatedId": "p-1", "lat": "north"},
    ])
    def test_malformed(self, raw):
        with pytest.raises(MalformedInputError):
            parse_push_payload(raw)


class TestDeliveryAttributes:
    def test_critical_round_trip_requires_interaction(self):
        wire = build_client_notification(_event(NotificationPriority.CRITICAL)).to_wire()
        parsed = parse_push_payload(wire)
        assert parsed.require_interaction is True
        assert parsed.renotify is True
        assert parsed.silent is False

    def test_info_round_trip_is_silent(self):
        wire = build_client_notification(_event(NotificationPriority.INFO)).to_wire()
        assert parse_push_payload(wire).silent is True

    def test_important_is_plain(self):
        parsed = parse_push_payload(
            build_client_notification(_event(NotificationPriority.IMPORTANT)).to_wire(),
        )
        assert (parsed.require_interaction, parsed.renotify, parsed.silent) == (False, False, False)

    def test_wire_carries_coordinates_and_event_type(self):
        wire = build_client_notification(_event(NotificationPriority.INFO)).to_wire()
        assert wire["lat"] == -22.5 and wire["lng"] == 17.0
        assert wire["eventType"] == "incident_reported"


# ═══════════════════════════════════════════════════════════════════════════
# Section 2: Push handling
# ═══════════════════════════════════════════════════════════════════════════

class TestHandlePush:
    def test_panic_movement_never_touches_tray(self):
        tray = InMemoryTray()
        router = DeliveryRouter(tray, FakeWindows())
        payload = {"eventType": "panic_movement", "relatedType": "panic", "relatedId": "x"}
        assert asyncio.run(router.handle_push(payload)) is None
        assert tray.calls == []

    def test_malformed_dropped_silently(self):
        tray = InMemoryTray()
        router = DeliveryRouter(tray, FakeWindows())
        assert asyncio.run(router.handle_push(b"\x00garbage")) is None
        assert tray.calls == []

    def test_same_tag_replaces(self):
        tray = InMemoryTray()
        router = DeliveryRouter(tray, FakeWindows())

        async def scenario():
            await router.handle_push(_payload(body="first"))
            await router.handle_push(_payload(body="second"))

        asyncio.run(scenario())
        assert list(tray.entries) == ["panic_p-1"]
        assert tray.entries["panic_p-1"][1]["body"] == "second"

    def test_different_entities_stack(self):
        tray = InMemoryTray()
        router = DeliveryRouter(tray, FakeWindows())

        async def scenario():
            await router.handle_push(_payload())
            await router.handle_push(_payload(relatedId="p-2"))

        asyncio.run(scenario())
        assert set(tray.entries) == {"panic_p-1", "panic_p-2"}

    def test_tray_options(self):
        tray = InMemoryTray()
        router = DeliveryRouter(tray, FakeWindows())
        asyncio.run(router.handle_push(_payload()))
        title, options = tray.entries["panic_p-1"]
        assert title == "Panic alert nearby"
        assert options["requireInteraction"] is True
        assert options["data"]["relatedId"] == "p-1"


# ═══════════════════════════════════════════════════════════════════════════
# Section 3: Clicks & deep links
# ═══════════════════════════════════════════════════════════════════════════

class TestHandleClick:
    def test_open_window_gets_tap_message(self):
        windows = FakeWindows(open_window=True)
        router = DeliveryRouter(LoggingTray(windows.log), windows)
        notification = parse_push_payload(_payload())

        asyncio.run(router.handle_click(notification))

        assert windows.log == ["close", "post", "focus"]
        (message,) = windows.window.messages
        assert message == {
            "type": TAP_MESSAGE_TYPE,
            "relatedType": "panic",
            "relatedId": "p-1",
            "url": "/map?panic=p-1",
            "lat": -22.5609,
            "lng": 17.0832,
        }
        assert windows.opened == []

    def test_no_window_opens_deep_link(self):
        windows = FakeWindows(open_window=False)
        router = DeliveryRouter(LoggingTray(windows.log), windows)
        target = asyncio.run(router.handle_click(parse_push_payload(_payload())))

        assert windows.log == ["close", "open"]
        assert windows.opened == [target]
        assert target == "/map?panic=p-1&lat=-22.5609&lng=17.0832&zoom=16"


class TestDeepLinks:
    def test_every_related_type_has_a_route(self):
        assert set(DEEP_LINKS) == set(RelatedType)

    def test_panic(self):
        assert deep_link(_data("panic", 1.5, 2.5)) == "/map?panic=x-1&lat=1.5&lng=2.5&zoom=16"

    def test_incident(self):
        assert deep_link(_data("incident", 1.5, 2.5)) == "/map?incident=x-1&lat=1.5&lng=2.5&zoom=15"

    def test_coordinates_need_both(self):
        assert deep_link(_data("panic", 1.5, None)) == "/map?panic=x-1"
        assert "lat" not in tap_message(_data("panic", 1.5, None))

    def test_zero_coordinates_kept(self):
        assert deep_link(_data("incident", 0.0, 0.0)) == "/map?incident=x-1&lat=0.0&lng=0.0&zoom=15"

    def test_amber(self):
        assert deep_link(_data("amber")) == "/amber-chat/x-1"

    def test_look_after_me(self):
        assert deep_link(_data("lookAfterMe")) == "/look-after-me"

    def test_unknown_falls_back_to_url(self):
        assert deep_link(_data("weather", url="/community/42")) == "/community/42"
        assert deep_link(_data("weather", url="")) == "/alerts"


# ═══════════════════════════════════════════════════════════════════════════
# Section 4: Event loop
# ═══════════════════════════════════════════════════════════════════════════

class TestRouterLoop:
    def test_messages_handled_in_order_and_drained_on_stop(self):
        windows = FakeWindows()
        tray = InMemoryTray()

        async def scenario():
            router = DeliveryRouter(tray, windows)
            router.start()
            router.submit(PushMessage(_payload()))
            router.submit(PushMessage({"relatedType": "panic"}))  # malformed, skipped
            router.submit(ClickMessage(parse_push_payload(_payload())))
            await router.stop()
            return router

        router = asyncio.run(scenario())
        assert tray.calls == [("show", "panic_p-1"), ("close", "panic_p-1")]
        assert len(windows.opened) == 1
        assert router.running is False

    def test_closed_router_refuses_messages(self):
        async def scenario():
            router = DeliveryRouter(InMemoryTray(), FakeWindows())
            router.start()
            await router.stop()
            with pytest.raises(RouterClosedError):
                router.submit(PushMessage(_payload()))
            with pytest.raises(RouterClosedError):
                router.start()

        asyncio.run(scenario())

    def test_handler_error_does_not_kill_loop(self):
        class BrokenWindows(FakeWindows):
            async def find_open(self):
                raise RuntimeError("no clients API")

        tray = InMemoryTray()

        async def scenario():
            router = DeliveryRouter(tray, BrokenWindows())
            router.start()
            router.submit(ClickMessage(parse_push_payload(_payload())))
            router.submit(PushMessage(_payload(relatedId="p-2")))
            await router.stop()

        asyncio.run(scenario())
        assert ("show", "panic_p-2") in tray.calls

    def test_stop_before_start_handles_submitted(self):
        tray = InMemoryTray()

        async def scenario():
            router = DeliveryRouter(tray, FakeWindows())
            router.submit(PushMessage(_payload()))
            router.submit(PushMessage(_payload(relatedId="p-2")))
            await router.stop()
            return router

        router = asyncio.run(scenario())
        assert tray.calls == [("show", "panic_p-1"), ("show", "panic_p-2")]
        assert router.running is False
