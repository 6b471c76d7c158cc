"""
Realtime fanout.

Delivery is best-effort and at-most-once: a user without a live
connection simply misses the event, nothing is queued.  Services call the
fanout only after their transaction committed, and every failure here is
logged and swallowed so it can never undo or fail a state transition.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Optional, Protocol

from fastapi import WebSocket

from .directory import ConnectionDirectory

logger = logging.getLogger(__name__)


class Transport(Protocol):
    async def send(self, connection_id: str, message: dict) -> bool: ...


class WebSocketTransport:
    """Process-local map of connection ids to live WebSockets."""

    def __init__(self):
        self._sockets: dict[str, WebSocket] = {}

    def attach(self, connection_id: str, websocket: WebSocket) -> None:
        self._sockets[connection_id] = websocket

    def detach(self, connection_id: str) -> None:
        self._sockets.pop(connection_id, None)

    def __len__(self) -> int:
        return len(self._sockets)

    async def send(self, connection_id: str, message: dict) -> bool:
        websocket = self._sockets.get(connection_id)
        if websocket is None:
            return False
        await websocket.send_json(message)
        return True

    async def close_all(self) -> None:
        sockets = list(self._sockets.values())
        self._sockets.clear()
        for websocket in sockets:
            try:
                await websocket.close()
            except Exception:
                logger.debug("WebSocket already closed", exc_info=True)


class RealtimeFanout:
    def __init__(
        self,
        directory: ConnectionDirectory,
        transport: Transport,
        send_timeout: float = 5.0,
    ):
        self.directory = directory
        self.transport = transport
        self.send_timeout = send_timeout

    # ── Inbound (connect / disconnect / subscribe) ────────────────

    async def register(self, user_id: str, connection_id: str) -> None:
        await self.directory.register(str(user_id), connection_id)

    async def unregister(self, connection_id: str) -> None:
        await self.directory.unregister(connection_id)

    async def subscribe(self, connection_id: str, taxi_id: Any) -> None:
        await self.directory.subscribe(connection_id, str(taxi_id))

    async def unsubscribe(self, connection_id: str, taxi_id: Any) -> None:
        await self.directory.unsubscribe(connection_id, str(taxi_id))

    # ── Outbound ──────────────────────────────────────────────────

    async def send_to_connection(
        self, connection_id: str, event: str, payload: dict
    ) -> bool:
        message = {"event": event, "data": payload}
        try:
            return await asyncio.wait_for(
                self.transport.send(connection_id, message),
                timeout=self.send_timeout,
            )
        except Exception as exc:
            logger.warning(
                "Failed to deliver %s to connection %s: %r",
                event,
                connection_id,
                exc,
            )
            return False

    async def notify_user(self, user_id: Any, event: str, payload: dict) -> bool:
        """Deliver to the user's live connection; no-op when offline."""
        try:
            connection_id: Optional[str] = await self.directory.lookup(str(user_id))
        except Exception:
            logger.exception("Connection lookup failed for user %s", user_id)
            return False
        if connection_id is None:
            logger.debug("User %s is not connected; dropping %s", user_id, event)
            return False
        return await self.send_to_connection(connection_id, event, payload)

    async def broadcast_to_room(self, taxi_id: Any, event: str, payload: dict) -> int:
        """Deliver to every connection watching *taxi_id*; returns the count."""
        try:
            connections = await self.directory.subscribers(str(taxi_id))
        except Exception:
            logger.exception("Subscriber lookup failed for taxi %s", taxi_id)
            return 0
        # Concurrent, so one slow socket costs at most one send_timeout
        results = await asyncio.gather(
            *(
                self.send_to_connection(connection_id, event, payload)
                for connection_id in connections
            )
        )
        sent = sum(1 for delivered in results if delivered)
        if connections:
            logger.debug(
                "Broadcast %s for taxi %s to %d/%d connections",
                event,
                taxi_id,
                sent,
                len(connections),
            )
        return sent
