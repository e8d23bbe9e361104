"""Socket.IO manager - pushes report progress to subscribed clients.

Flow:
    DataFlowService -> (progress callback) -> AsyncEventBus -> this module -> browser
"""
from __future__ import annotations

import logging
from typing import Dict, List, Set

import socketio

from application.events import AsyncEventBus, EventType, ReportEvent

logger = logging.getLogger(__name__)

sio = socketio.AsyncServer(
    async_mode="asgi",
    cors_allowed_origins=[],
    logger=False,
    engineio_logger=False,
)

# sid -> report ids
_subscriptions: Dict[str, Set[str]] = {}


def configure_cors(origins: List[str]) -> None:
    sio.eio.cors_allowed_origins = list(origins)


def _room(report_id: str) -> str:
    return f"report:{report_id}"


# Socket.IO event handlers -------------------------------------------------
@sio.event
async def connect(sid: str, environ: dict) -> None:
    logger.debug("Client connected: %s", sid)


@sio.event
async def disconnect(sid: str) -> None:
    for report_id in _subscriptions.pop(sid, set()):
        await sio.leave_room(sid, _room(report_id))
    logger.debug("Client disconnected: %s", sid)


@sio.event
async def subscribe_report(sid: str, data: dict) -> None:
    report_id = (data or {}).get("reportId")
    if not report_id:
        return
    _subscriptions.setdefault(sid, set()).add(report_id)
    await sio.enter_room(sid, _room(report_id))
    logger.debug("%s subscribed to %s", sid, _room(report_id))


@sio.event
async def unsubscribe_report(sid: str, data: dict) -> None:
    report_id = (data or {}).get("reportId")
    if not report_id:
        return
    _subscriptions.get(sid, set()).discard(report_id)
    await sio.leave_room(sid, _room(report_id))


# Push functions -----------------------------------------------------------
async def push_report_progress(event: ReportEvent) -> None:
    await sio.emit("report_progress", {"reportId": event.report_id, **event.payload}, room=_room(event.report_id))


async def push_report_complete(event: ReportEvent) -> None:
    await sio.emit("report_complete", {"reportId": event.report_id, **event.payload}, room=_room(event.report_id))


async def push_report_failed(event: ReportEvent) -> None:
    await sio.emit("report_failed", {"reportId": event.report_id, **event.payload}, room=_room(event.report_id))


def register_event_handlers(bus: AsyncEventBus) -> None:
    bus.register_handler(EventType.REPORT_PROGRESS, push_report_progress)
    bus.register_handler(EventType.REPORT_COMPLETED, push_report_complete)
    bus.register_handler(EventType.REPORT_FAILED, push_report_failed)
