"""
Realtime endpoint
=================

WS /api/v1/ws -- one connection per user (the newest wins)

Client messages::

    {"event": "subscribe",   "taxi_id": 7}
    {"event": "unsubscribe", "taxi_id": 7}

Subscribing answers immediately with the current ``taxiUpdate`` view; from
then on every change to the taxi is pushed.  Server messages are always
``{"event": <name>, "data": <payload>}``.  Drivers change their taxis through the
REST endpoints only; any other client event is answered with ``taxiError``.
"""

from __future__ import annotations

import logging
import uuid

from fastapi import APIRouter, WebSocket, WebSocketDisconnect

from taxidispatch.api.container import DispatchContainer
from taxidispatch.api.dependencies import parse_principal
from taxidispatch.domain.errors import DispatchError
from taxidispatch.realtime import events

logger = logging.getLogger(__name__)

router = APIRouter(tags=["realtime"])

SUBSCRIBE = "subscribe"
UNSUBSCRIBE = "unsubscribe"


async def _handle_message(
    container: DispatchContainer, connection_id: str, message: dict
) -> None:
    fanout = container.fanout
    event = message.get("event") if isinstance(message, dict) else None
    taxi_id = message.get("taxi_id") if isinstance(message, dict) else None

    if event not in (SUBSCRIBE, UNSUBSCRIBE):
        await fanout.send_to_connection(
            connection_id, events.TAXI_ERROR, {"message": f"Unknown event '{event}'."}
        )
        return
    try:
        taxi_id = int(taxi_id)
    except (TypeError, ValueError):
        await fanout.send_to_connection(
            connection_id, events.TAXI_ERROR, {"message": "taxi_id is required."}
        )
        return

    if event == UNSUBSCRIBE:
        await fanout.unsubscribe(connection_id, taxi_id)
        return

    try:
        state = await container.taxis.get(taxi_id)
    except DispatchError as exc:
        await fanout.send_to_connection(
            connection_id,
            events.TAXI_ERROR,
            {"taxi_id": taxi_id, "message": exc.detail},
        )
        return
    await fanout.subscribe(connection_id, taxi_id)
    await fanout.send_to_connection(
        connection_id, events.TAXI_UPDATE, events.taxi_update_payload(state)
    )


@router.websocket("/ws")
async def realtime_socket(websocket: WebSocket):
    principal = parse_principal(
        websocket.headers.get("x-user-id"), websocket.headers.get("x-user-roles")
    )
    if principal is None:
        await websocket.close(code=1008)
        return

    container: DispatchContainer = websocket.app.state.container
    await websocket.accept()
    connection_id = uuid.uuid4().hex
    container.transport.attach(connection_id, websocket)
    await container.fanout.register(principal.user_id, connection_id)
    logger.info("User %s connected as %s", principal.user_id, connection_id)

    try:
        while True:
            try:
                message = await websocket.receive_json()
            except ValueError:
                await container.fanout.send_to_connection(
                    connection_id, events.TAXI_ERROR, {"message": "Malformed message."}
                )
                continue
            await _handle_message(container, connection_id, message)
    except WebSocketDisconnect:
        pass
    finally:
        container.transport.detach(connection_id)
        await container.fanout.unregister(connection_id)
        logger.info("User %s disconnected (%s)", principal.user_id, connection_id)
