"""WebSocket subscriber boundary.

Clients send ``{"type": "join:incident" | "leave:incident", "incident_id": ...}``
and receive ``{"event": ..., "data": ...}`` frames for the global feed plus
every incident they joined. There is no replay: after (re)joining, clients
fetch the current incident from ``GET /api/incidents/{id}``.
"""

from __future__ import annotations

import asyncio

from fastapi import APIRouter, WebSocket, WebSocketDisconnect

from incident_agent.core.logging import get_logger
from incident_agent.core.notifier import Notifier, Subscriber

logger = get_logger("events")

router = APIRouter()

JOIN = "join:incident"
LEAVE = "leave:incident"


async def _pump(websocket: WebSocket, subscriber: Subscriber) -> None:
    while True:
        event = await subscriber.receive()
        await websocket.send_json(event.to_wire())


async def _listen(websocket: WebSocket, notifier: Notifier, subscriber: Subscriber) -> None:
    while True:
        message = await websocket.receive_json()
        if not isinstance(message, dict):
            continue
        incident_id = message.get("incident_id")
        if not isinstance(incident_id, str) or not incident_id:
            continue
        if message.get("type") == JOIN:
            notifier.subscribe(subscriber, incident_id)
        elif message.get("type") == LEAVE:
            notifier.unsubscribe(subscriber, incident_id)


@router.websocket("/ws")
async def events(websocket: WebSocket) -> None:
    notifier: Notifier = websocket.app.state.runtime.notifier
    await websocket.accept()
    subscriber = notifier.connect()
    pump = asyncio.create_task(_pump(websocket, subscriber))
    try:
        await _listen(websocket, notifier, subscriber)
    except WebSocketDisconnect as exc:
        logger.debug("websocket_closed", subscriber_id=subscriber.id, code=exc.code)
    finally:
        pump.cancel()
        await asyncio.gather(pump, return_exceptions=True)
        notifier.disconnect(subscriber)
