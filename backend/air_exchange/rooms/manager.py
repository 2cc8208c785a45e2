"""WebSocket connection manager for real-time sharing rooms.

This module tracks which WebSocket connections have joined which room and
fans room-scoped events out to them. Room state itself lives in the
:class:`~air_exchange.rooms.registry.RoomRegistry`; the manager keeps the
registry's presence sets in step with live connections.

Key features:
    - Presence keyed by a stable client id, so a reconnecting client that
      briefly holds two connections is still counted once
    - Broadcast to a whole room or to everyone except the sender
    - Concurrent message delivery with asyncio.gather()
    - Automatic dead connection cleanup
    - Empty rooms are pruned when the last user leaves

Wire format:
    Every frame is a JSON object ``{"type": <event>, "data": <payload>}``.

Thread Safety:
    This implementation is designed for async/await usage with a single event loop.
    It is NOT thread-safe for concurrent access from multiple threads.
"""
import asyncio
import logging
import uuid
from typing import Any, Dict, List, Optional, Tuple

from fastapi import WebSocket

from .registry import RoomRegistry

logger = logging.getLogger(__name__)


def envelope(event: str, data: Any = None) -> dict:
    """Build an outbound frame."""
    return {"type": event, "data": data}


class ConnectionManager:
    """Manages WebSocket connections and presence for all rooms.

    Note:
        One instance is created per application and shared by the WebSocket
        endpoint, the HTTP file endpoints and the expiry sweeper.
    """

    def __init__(self, registry: RoomRegistry) -> None:
        self.registry = registry

        # room key -> list of joined WebSocket connections
        self.active_connections: Dict[str, List[WebSocket]] = {}

        # websocket -> (room_id, client_id) for disconnect handling
        self.websocket_to_client: Dict[WebSocket, Tuple[str, str]] = {}

    # =========================================================================
    # Connection lifecycle
    # =========================================================================

    async def connect(self, websocket: WebSocket) -> str:
        """Accept a WebSocket connection and return its connection id.

        The connection id is used for presence when the client does not
        supply a stable client id on join.
        """
        await websocket.accept()
        return str(uuid.uuid4())

    async def join(self, websocket: WebSocket, room_id: str, client_id: str) -> None:
        """Add a connection to a room.

        Leaves any previously joined room first, registers the client in the
        room's presence set, broadcasts ``userCountUpdate`` to the room and
        sends ``init`` to the joining connection only.
        """
        if websocket in self.websocket_to_client:
            await self.leave(websocket)

        room = self.registry.add_user(room_id, client_id)
        self.active_connections.setdefault(room.key, []).append(websocket)
        self.websocket_to_client[websocket] = (room_id, client_id)
        logger.info(f"[Manager] {client_id} joined room: {room.key}")

        await self.emit(room_id, "userCountUpdate", len(room.users))
        await self.send(websocket, "init", room.snapshot_data())

    async def leave(self, websocket: WebSocket) -> Optional[str]:
        """Remove a connection from its room.

        The client id is only dropped from presence when no other connection
        in the room carries it. Emits ``userCountUpdate`` and prunes the room
        if it is now empty.

        Returns:
            The room id the connection had joined, or None.
        """
        mapping = self.websocket_to_client.pop(websocket, None)
        if mapping is None:
            return None
        room_id, client_id = mapping
        key = self.registry.room_key(room_id)

        connections = self.active_connections.get(key, [])
        if websocket in connections:
            connections.remove(websocket)
        if not connections:
            self.active_connections.pop(key, None)

        still_present = any(
            cid == client_id and rid == room_id
            for rid, cid in self.websocket_to_client.values()
        )
        if not still_present:
            self.registry.remove_user(room_id, client_id)

        room = self.registry.find(room_id)
        if room is None:
            return room_id

        logger.info(f"[Manager] {client_id} disconnected from room: {key}")
        await self.emit(room_id, "userCountUpdate", len(room.users))
        self.registry.prune_if_empty(room_id)
        return room_id

    def room_of(self, websocket: WebSocket) -> Optional[str]:
        mapping = self.websocket_to_client.get(websocket)
        return mapping[0] if mapping else None

    def client_of(self, websocket: WebSocket) -> Optional[str]:
        mapping = self.websocket_to_client.get(websocket)
        return mapping[1] if mapping else None

    def get_room_size(self, room_id: str) -> int:
        """Get the number of active connections in a room."""
        return len(self.active_connections.get(self.registry.room_key(room_id), []))

    # =========================================================================
    # Event delivery
    # =========================================================================

    async def send(self, websocket: WebSocket, event: str, data: Any = None) -> bool:
        """Send one event to a single connection."""
        return await self._safe_send(websocket, envelope(event, data))

    async def emit(self, room_id: str, event: str, data: Any = None) -> None:
        """Send an event to every connection in a room."""
        await self.broadcast(envelope(event, data), room_id)

    async def emit_except(
        self, room_id: str, event: str, data: Any, exclude_websocket: WebSocket
    ) -> None:
        """Send an event to every connection in a room except the sender."""
        await self.broadcast_except(envelope(event, data), room_id, exclude_websocket)

    async def broadcast(self, message: dict, room_id: str) -> None:
        """Broadcast a message to all connections in a room concurrently.

        This method safely handles disconnected clients by removing them
        from the connection list if sending fails.
        """
        key = self.registry.room_key(room_id)
        connections = list(self.active_connections.get(key, []))
        if not connections:
            return

        results = await asyncio.gather(
            *[self._safe_send(conn, message) for conn in connections],
            return_exceptions=True
        )

        failed_connections = [
            conn for conn, success in zip(connections, results)
            if success is False
        ]
        self._cleanup_connections(key, failed_connections)

    async def broadcast_except(
        self, message: dict, room_id: str, exclude_websocket: WebSocket
    ) -> None:
        """Broadcast a message to all connections except one concurrently."""
        key = self.registry.room_key(room_id)
        connections = [
            conn for conn in self.active_connections.get(key, [])
            if conn != exclude_websocket
        ]
        if not connections:
            return

        results = await asyncio.gather(
            *[self._safe_send(conn, message) for conn in connections],
            return_exceptions=True
        )

        failed_connections = [
            conn for conn, success in zip(connections, results)
            if success is False
        ]
        self._cleanup_connections(key, failed_connections)

    async def _safe_send(self, connection: WebSocket, message: dict) -> bool:
        """Send a message to a WebSocket connection with error handling.

        Returns:
            True if successful, False if connection failed.
        """
        try:
            await connection.send_json(message)
            return True
        except Exception as e:
            logger.debug(f"Failed to send to connection: {e}")
            return False

    def _cleanup_connections(
        self, key: str, failed_connections: List[WebSocket]
    ) -> None:
        """Remove failed connections from a room's delivery list.

        Presence is left alone; the connection's own handler calls
        :meth:`leave` when it sees the disconnect.
        """
        if not failed_connections or key not in self.active_connections:
            return

        for conn in failed_connections:
            if conn in self.active_connections[key]:
                self.active_connections[key].remove(conn)
                logger.debug(f"Removed dead connection from room {key}")
