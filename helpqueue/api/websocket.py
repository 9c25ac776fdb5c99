"""
WebSocket connection manager for live queue updates.
"""

import asyncio
import json
import logging
from collections import defaultdict
from dataclasses import dataclass

from fastapi import WebSocket, WebSocketDisconnect, status

from helpqueue.constants import WS_MESSAGE_ERROR, WS_MESSAGE_PONG
from helpqueue.extensions.base import BaseQueueExtension, BaseServerExtension
from helpqueue.types.events import LifecycleEvent, WebSocketMessage

logger = logging.getLogger(__name__)


@dataclass(eq=False)
class ConnectionInfo:
    """Information about a WebSocket connection."""

    websocket: WebSocket
    server_id: str


class WebSocketManager:
    """
    Manager for WebSocket connections.

    Handles connection lifecycle and broadcasts lifecycle events to every
    client watching the server they happened on.
    """

    def __init__(self):
        """Initialize the WebSocket manager."""
        # Connections by server
        self._connections: dict[str, list[ConnectionInfo]] = defaultdict(list)
        self._lock = asyncio.Lock()

    async def connect(self, websocket: WebSocket, server_id: str) -> ConnectionInfo:
        """
        Accept a new WebSocket connection.

        Args:
            websocket: The WebSocket connection.
            server_id: The server the client watches.

        Returns:
            ConnectionInfo for the new connection.
        """
        await websocket.accept()

        connection = ConnectionInfo(websocket=websocket, server_id=server_id)
        async with self._lock:
            self._connections[server_id].append(connection)

        logger.info("WebSocket connected", extra={"server_id": server_id})
        return connection

    async def disconnect(self, connection: ConnectionInfo) -> None:
        """
        Handle WebSocket disconnection.

        Args:
            connection: The connection to remove.
        """
        async with self._lock:
            server_connections = self._connections.get(connection.server_id, [])
            if connection in server_connections:
                server_connections.remove(connection)
            if not server_connections:
                self._connections.pop(connection.server_id, None)

        logger.info("WebSocket disconnected", extra={"server_id": connection.server_id})

    async def broadcast_to_server(self, server_id: str, message: WebSocketMessage) -> int:
        """
        Broadcast a message to all connections watching a server.

        Connections that fail to receive are dropped.

        Returns:
            Number of connections the message reached.
        """
        async with self._lock:
            connections = list(self._connections.get(server_id, []))

        if not connections:
            return 0

        message_json = message.model_dump_json()

        disconnected = []
        for connection in connections:
            try:
                await connection.websocket.send_text(message_json)
            except Exception as e:
                logger.warning(
                    f"Failed to send WebSocket message: {e}",
                    extra={"server_id": server_id},
                )
                disconnected.append(connection)

        for connection in disconnected:
            await self.disconnect(connection)
        return len(connections) - len(disconnected)

    async def broadcast_event(self, event: LifecycleEvent) -> int:
        """Broadcast a lifecycle event to the clients of its server."""
        return await self.broadcast_to_server(event.server_id, WebSocketMessage.from_event(event))

    async def close_server(
        self,
        server_id: str,
        code: int = status.WS_1001_GOING_AWAY,
    ) -> int:
        """
        Close and forget every connection watching a server.

        Returns:
            Number of connections that were open.
        """
        async with self._lock:
            connections = self._connections.pop(server_id, [])

        for connection in connections:
            try:
                await connection.websocket.close(code=code)
            except Exception as e:
                logger.warning(
                    f"Failed to close WebSocket: {e}",
                    extra={"server_id": server_id},
                )

        if connections:
            logger.info(
                "WebSockets closed for departed server",
                extra={"server_id": server_id, "connections": len(connections)},
            )
        return len(connections)

    def get_connection_count(self, server_id: str | None = None) -> int:
        """
        Get the number of active connections.

        Args:
            server_id: Optional server filter.

        Returns:
            Number of active connections.
        """
        if server_id is not None:
            return len(self._connections.get(server_id, []))
        return sum(len(conns) for conns in self._connections.values())


class EventStreamExtension(BaseQueueExtension, BaseServerExtension):
    """Forwards every lifecycle event to WebSocket clients."""

    def __init__(self, manager: WebSocketManager):
        self.manager = manager

    async def _forward(self, event: LifecycleEvent) -> None:
        await self.manager.broadcast_event(event)

    on_queue_create = _forward
    on_queue_open = _forward
    on_queue_close = _forward
    on_enqueue = _forward
    on_dequeue = _forward
    on_student_remove = _forward
    on_remove_all_students = _forward
    on_queue_delete = _forward
    on_server_init = _forward
    on_dequeue_first = _forward
    on_helper_start = _forward
    on_helper_stop = _forward
    on_server_periodic_update = _forward

    async def on_server_delete(self, event: LifecycleEvent) -> None:
        await self._forward(event)
        await self.manager.close_server(event.server_id)


async def websocket_handler(
    websocket: WebSocket,
    server_id: str,
    manager: WebSocketManager,
) -> None:
    """
    Handle a WebSocket connection for live queue updates.

    Events are pushed by EventStreamExtension; the client may only ping.

    Args:
        websocket: The WebSocket connection.
        server_id: The server to watch.
        manager: Connection manager of the app serving the socket.
    """
    connection = await manager.connect(websocket, server_id)

    try:
        while True:
            data = await websocket.receive_text()

            try:
                message = json.loads(data)
                action = message.get("action")

                if action == "ping":
                    await websocket.send_json({"type": WS_MESSAGE_PONG})
                else:
                    await websocket.send_json(
                        {"type": WS_MESSAGE_ERROR, "message": f"Unknown action: {action}"}
                    )

            except (json.JSONDecodeError, AttributeError) as e:
                await websocket.send_json(
                    {"type": WS_MESSAGE_ERROR, "message": f"Invalid message: {e}"}
                )

    except WebSocketDisconnect:
        await manager.disconnect(connection)
