"""
FastAPI routes: session reminders.

Provides endpoints to:
    POST   /api/v1/reminders/{user_id}/start      — start polling (on sign-in)
    POST   /api/v1/reminders/{user_id}/stop       — stop polling (on sign-out)
    GET    /api/v1/reminders/{user_id}            — current reminder, if any
    POST   /api/v1/reminders/{user_id}/dismiss    — dismiss it for this session
    PUT    /api/v1/reminders/{user_id}/sessions   — register an open session
    DELETE /api/v1/reminders/{user_id}/sessions/{kind}
"""

from __future__ import annotations

from typing import Any, Dict

from fastapi import APIRouter, Request

from backend.app.api.schemas import OpenSessionRequest, ReminderResponse
from backend.app.core.errors import NotFoundError, ValidationError
from backend.app.reminders.scheduler import (
    InMemorySessionSource,
    OpenSession,
    ReminderRegistry,
    ReminderScheduler,
    ReminderType,
)

router = APIRouter(prefix="/api/v1/reminders", tags=["reminders"])


def _registry(request: Request) -> ReminderRegistry:
    return request.app.state.reminders


def _scheduler(request: Request, user_id: str) -> ReminderScheduler:
    scheduler = _registry(request).get(user_id)
    if scheduler is None:
        raise NotFoundError("Reminder session", user_id=user_id)
    return scheduler


def _sessions(request: Request) -> InMemorySessionSource:
    sessions = _registry(request).sessions
    if not isinstance(sessions, InMemorySessionSource):
        raise ValidationError("Open sessions are managed by the session store")
    return sessions


def _response(scheduler: ReminderScheduler) -> ReminderResponse:
    current = scheduler.current
    return ReminderResponse(
        user_id=scheduler.user_id,
        running=scheduler.running,
        reminder=current.to_dict() if current else None,
    )


@router.post("/{user_id}/start", response_model=ReminderResponse)
async def start_reminders(user_id: str, request: Request) -> ReminderResponse:
    scheduler = await _registry(request).start_session(user_id)
    return _response(scheduler)


@router.post("/{user_id}/stop")
async def stop_reminders(user_id: str, request: Request) -> Dict[str, Any]:
    stopped = await _registry(request).end_session(user_id)
    if not stopped:
        raise NotFoundError("Reminder session", user_id=user_id)
    return {"user_id": user_id, "stopped": True}


@router.get("/{user_id}", response_model=ReminderResponse)
async def current_reminder(user_id: str, request: Request) -> ReminderResponse:
    return _response(_scheduler(request, user_id))


@router.post("/{user_id}/dismiss")
async def dismiss_reminder(user_id: str, request: Request) -> Dict[str, Any]:
    """Stops re-prompting; the panic / look-after-me session itself is untouched."""
    key = _scheduler(request, user_id).dismiss()
    return {"user_id": user_id, "dismissed": key}


@router.put("/{user_id}/sessions")
async def open_session(user_id: str, body: OpenSessionRequest, request: Request) -> Dict[str, Any]:
    sessions = _sessions(request)
    table = sessions.panics if body.kind is ReminderType.PANIC else sessions.look_after_me
    table[user_id] = OpenSession(id=body.session_id, started_at=body.started_at)

    scheduler = _registry(request).get(user_id)
    if scheduler is not None:
        await scheduler.check()
    return {"user_id": user_id, "kind": body.kind.value, "session_id": body.session_id}


@router.delete("/{user_id}/sessions/{kind}")
async def close_session(user_id: str, kind: ReminderType, request: Request) -> Dict[str, Any]:
    sessions = _sessions(request)
    table = sessions.panics if kind is ReminderType.PANIC else sessions.look_after_me
    removed = table.pop(user_id, None)
    if removed is None:
        raise NotFoundError("Open session", user_id=user_id, kind=kind.value)
    return {"user_id": user_id, "kind": kind.value, "closed": removed.id}
