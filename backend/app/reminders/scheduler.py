"""
scheduler.py — Gentle reminders for a user's own unresolved sessions.

═══════════════════════════════════════════════════════════════════════════
TIMING RULES
═══════════════════════════════════════════════════════════════════════════

    Session          Elapsed since start     Reminder
    ──────────────   ─────────────────────   ──────────────────────────────
    panic            ≥ 30 min                "still active. Are you safe?"
    look after me    ≥ 4 h                   long-session message
    look after me    ≥ 60 min                inactivity message

The panic session is checked first; the first match wins, so at most one
reminder is current at a time. Polling happens once on start, then every
REMINDER_POLL_SECONDS until stop.

Reminders NEVER resolve anything. Dismissing one only stops re-prompting
for that session key ("panic-{id}" / "lam-{id}") in this process; the
panic or look-after-me session itself is left untouched.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Callable, Dict, Optional, Protocol, Set

from backend.app.core.config import settings

logger = logging.getLogger(__name__)

PANIC_REMINDER_AFTER = timedelta(minutes=settings.PANIC_REMINDER_MINUTES)
LAM_INACTIVITY_AFTER = timedelta(minutes=settings.LAM_INACTIVITY_MINUTES)
LAM_LONG_SESSION_AFTER = timedelta(minutes=settings.LAM_LONG_SESSION_MINUTES)

PANIC_REASON = "Your panic alert is still active. Are you safe?"
LAM_INACTIVITY_REASON = (
    "Your Look After Me session is still running. You can end it when you're ready."
)
LAM_LONG_SESSION_REASON = (
    "Your Look After Me session has been running for a while. "
    "You can end it when you've arrived safely."
)


class ReminderType(str, Enum):
    PANIC         = "panic"
    LOOK_AFTER_ME = "look_after_me"


@dataclass(frozen=True)
class OpenSession:
    """An active panic or look-after-me session owned by the user."""
    id: str
    started_at: datetime


@dataclass(frozen=True)
class Reminder:
    id: str
    type: ReminderType
    reason: str
    entity_id: str

    @property
    def action_url(self) -> str:
        if self.type is ReminderType.PANIC:
            return f"/map?panic={self.entity_id}"
        return "/look-after-me"

    def to_dict(self) -> Dict[str, str]:
        return {
            "id": self.id,
            "type": self.type.value,
            "reason": self.reason,
            "entity_id": self.entity_id,
            "action_url": self.action_url,
        }


class SessionSource(Protocol):
    async def active_panic(self, user_id: str) -> Optional[OpenSession]:
        ...

    async def active_look_after_me(self, user_id: str) -> Optional[OpenSession]:
        ...


class InMemorySessionSource:
    def __init__(self) -> None:
        self.panics: Dict[str, OpenSession] = {}
        self.look_after_me: Dict[str, OpenSession] = {}

    async def active_panic(self, user_id: str) -> Optional[OpenSession]:
        return self.panics.get(user_id)

    async def active_look_after_me(self, user_id: str) -> Optional[OpenSession]:
        return self.look_after_me.get(user_id)


def panic_reminder(session: OpenSession, elapsed: timedelta) -> Optional[Reminder]:
    if elapsed < PANIC_REMINDER_AFTER:
        return None
    return Reminder(
        id=f"panic-{session.id}",
        type=ReminderType.PANIC,
        reason=PANIC_REASON,
        entity_id=session.id,
    )


def look_after_me_reminder(session: OpenSession, elapsed: timedelta) -> Optional[Reminder]:
    if elapsed >= LAM_LONG_SESSION_AFTER:
        reason = LAM_LONG_SESSION_REASON
    elif elapsed >= LAM_INACTIVITY_AFTER:
        reason = LAM_INACTIVITY_REASON
    else:
        return None
    return Reminder(
        id=f"lam-{session.id}",
        type=ReminderType.LOOK_AFTER_ME,
        reason=reason,
        entity_id=session.id,
    )


def elapsed_since(started_at: datetime, now: datetime) -> timedelta:
    """Naive timestamps are read as UTC on either side."""
    if started_at.tzinfo is None:
        started_at = started_at.replace(tzinfo=timezone.utc)
    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)
    return now - started_at


ReminderCallback = Callable[[str, Reminder], None]


class ReminderScheduler:
    """
    One user's reminder loop.

    Parameters
    ----------
    user_id : str
    sessions : SessionSource
        Where the user's open sessions are looked up on every poll.
    poll_interval : float
        Seconds between polls.
    on_reminder : callable, optional
        Called with (user_id, reminder) whenever a different reminder
        becomes current.
    """

    def __init__(
        self,
        user_id: str,
        sessions: SessionSource,
        *,
        poll_interval: float = settings.REMINDER_POLL_SECONDS,
        on_reminder: Optional[ReminderCallback] = None,
    ):
        self.user_id = user_id
        self._sessions = sessions
        self._poll_interval = poll_interval
        self._on_reminder = on_reminder
        self._dismissed: Set[str] = set()
        self._current: Optional[Reminder] = None
        self._stop_event = asyncio.Event()
        self._task: Optional[asyncio.Task] = None

    @property
    def current(self) -> Optional[Reminder]:
        return self._current

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def _find(self, now: datetime) -> Optional[Reminder]:
        panic = await self._sessions.active_panic(self.user_id)
        if panic is not None:
            reminder = panic_reminder(panic, elapsed_since(panic.started_at, now))
            if reminder and reminder.id not in self._dismissed:
                return reminder

        lam = await self._sessions.active_look_after_me(self.user_id)
        if lam is not None:
            reminder = look_after_me_reminder(lam, elapsed_since(lam.started_at, now))
            if reminder and reminder.id not in self._dismissed:
                return reminder
        return None

    async def check(self, now: Optional[datetime] = None) -> Optional[Reminder]:
        """Poll once; returns the reminder that is now current, if any."""
        now = now or datetime.now(timezone.utc)
        try:
            reminder = await self._find(now)
        except Exception as exc:
            logger.warning(
                "Reminder poll failed for user=%s: %s", self.user_id, exc,
                extra={"user_id": self.user_id},
            )
            return self._current

        previous = self._current
        self._current = reminder
        if reminder is not None and (previous is None or previous.id != reminder.id):
            logger.info(
                "Reminder %s surfaced for user=%s", reminder.id, self.user_id,
                extra={"user_id": self.user_id, "related_id": reminder.entity_id},
            )
            if self._on_reminder is not None:
                try:
                    self._on_reminder(self.user_id, reminder)
                except Exception as exc:
                    logger.error(
                        "Reminder callback failed for user=%s: %s", self.user_id, exc,
                        exc_info=True, extra={"user_id": self.user_id},
                    )
        return reminder

    def dismiss(self) -> Optional[str]:
        """Dismiss the current reminder for the rest of this session."""
        if self._current is None:
            return None
        key = self._current.id
        self._dismissed.add(key)
        self._current = None
        return key

    async def start(self) -> None:
        """Check immediately, then keep polling in the background."""
        if self.running:
            return
        self._stop_event.clear()
        await self.check()
        self._task = asyncio.create_task(self._loop(), name=f"reminders-{self.user_id}")

    async def stop(self) -> None:
        self._stop_event.set()
        task, self._task = self._task, None
        if task is None:
            return
        try:
            await task
        except Exception as exc:
            logger.error(
                "Reminder loop for user=%s ended with an error: %s", self.user_id, exc,
                exc_info=True, extra={"user_id": self.user_id},
            )

    async def _loop(self) -> None:
        while not self._stop_event.is_set():
            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=self._poll_interval)
            except asyncio.TimeoutError:
                await self.check()


class ReminderRegistry:
    """Schedulers for every signed-in user; torn down on logout or shutdown."""

    def __init__(
        self,
        sessions: SessionSource,
        *,
        poll_interval: float = settings.REMINDER_POLL_SECONDS,
        on_reminder: Optional[ReminderCallback] = None,
    ):
        self.sessions = sessions
        self._poll_interval = poll_interval
        self._on_reminder = on_reminder
        self._schedulers: Dict[str, ReminderScheduler] = {}

    def get(self, user_id: str) -> Optional[ReminderScheduler]:
        return self._schedulers.get(user_id)

    async def start_session(self, user_id: str) -> ReminderScheduler:
        scheduler = self._schedulers.get(user_id)
        if scheduler is None:
            scheduler = ReminderScheduler(
                user_id,
                self.sessions,
                poll_interval=self._poll_interval,
                on_reminder=self._on_reminder,
            )
            self._schedulers[user_id] = scheduler
        await scheduler.start()
        return scheduler

    async def end_session(self, user_id: str) -> bool:
        scheduler = self._schedulers.pop(user_id, None)
        if scheduler is None:
            return False
        await scheduler.stop()
        return True

    async def shutdown(self) -> None:
        for user_id in list(self._schedulers):
            await self.end_session(user_id)
        logger.info("Reminder schedulers stopped")
