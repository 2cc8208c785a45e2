"""Room router providing the realtime WebSocket and room lookup endpoints.

This module provides:
    - GET /rooms/{room_id}: Current room snapshot
    - WebSocket /ws: Realtime room events

Protocol:
    Every frame is ``{"type": <event>, "data": <payload>}``.

    Inbound events:
        - joinRoom: roomId string, or {roomId, clientId}
        - textUpdate: new text (broadcast to the room except the sender)
        - clearText: clear the shared text
        - deleteFile: filename to remove
        - deleteAllFiles: remove every file
        - setExpiry: milliseconds, or {roomId, expiryTime}
        - cursorUpdate: opaque cursor position
        - saveText: text string, or {text, expiry}
        - deleteSavedText: index of the saved text

    Outbound events: init, userCountUpdate, textUpdate, clearText, newFile,
    fileDeleted, allFilesDeleted, savedText, deleteSavedText, cursorUpdate,
    expiryUpdate, notification, error.
"""
import json
import logging
from typing import Any, Optional

from fastapi import APIRouter, Depends, HTTPException, WebSocket, WebSocketDisconnect

from air_exchange.errors import NotFoundError, RelayError, ValidationError
from air_exchange.rooms.schemas import RoomSnapshot
from air_exchange.services import RelayServices, get_services

logger = logging.getLogger(__name__)

router = APIRouter(tags=["rooms"])


@router.get("/rooms/{room_id}", response_model=RoomSnapshot)
async def get_room(
    room_id: str,
    services: RelayServices = Depends(get_services),
) -> RoomSnapshot:
    """Get the current snapshot of a room.

    Raises:
        HTTPException 404: If the room does not exist
    """
    try:
        room = services.registry.get(room_id)
    except NotFoundError as e:
        raise HTTPException(status_code=404, detail=e.message)
    return room.snapshot()


# =============================================================================
# Payload helpers
# =============================================================================


def _field(data: Any, name: str) -> Any:
    """Read *name* from a dict payload, or use a bare payload as the value."""
    if isinstance(data, dict):
        return data.get(name)
    return data


def _as_str(value: Any, what: str) -> str:
    if not isinstance(value, str):
        raise ValidationError(f"{what} must be a string")
    return value


def _as_int(value: Any, what: str) -> int:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValidationError(f"{what} must be a number")
    if isinstance(value, float) and not value.is_integer():
        raise ValidationError(f"{what} must be a whole number")
    return int(value)


# =============================================================================
# WebSocket endpoint
# =============================================================================


@router.websocket("/ws")
async def websocket_room_endpoint(
    websocket: WebSocket,
    services: RelayServices = Depends(get_services),
) -> None:
    """WebSocket endpoint for realtime room events.

    Protocol Flow:
        1. Client connects → server accepts, assigns a connection id
        2. Client sends joinRoom → server broadcasts userCountUpdate to the
           room and sends init to the joining client
        3. Client sends room events → server mutates the room and fans the
           resulting events out
        4. On disconnect → server removes the client from presence,
           broadcasts userCountUpdate, prunes the room if empty

    Errors in a single event are reported to the sender as an ``error``
    frame; the connection stays open.
    """
    manager = services.manager
    connection_id = await manager.connect(websocket)
    logger.info(f"[WS] New connection {connection_id}")

    try:
        while True:
            message = await websocket.receive()
            if message["type"] == "websocket.disconnect":
                raise WebSocketDisconnect(message.get("code", 1000))
            raw = message.get("text")
            if raw is None:
                await manager.send(websocket, "error", {"message": "Invalid frame"})
                continue
            try:
                frame = json.loads(raw)
            except json.JSONDecodeError:
                await manager.send(websocket, "error", {"message": "Invalid JSON"})
                continue
            if not isinstance(frame, dict) or not isinstance(frame.get("type"), str):
                await manager.send(websocket, "error", {"message": "Invalid frame: type is required"})
                continue

            event = frame["type"]
            logger.debug("[WS] %s received: type=%s", connection_id, event)
            try:
                await _dispatch(websocket, services, connection_id, event, frame.get("data"))
            except RelayError as e:
                logger.debug(f"[WS] {event} from {connection_id} rejected: {e.message}")
                await manager.send(websocket, "error", {"message": e.message, "event": event})

    except WebSocketDisconnect:
        logger.debug(f"[WS] {connection_id} disconnected")
    finally:
        room_id = await manager.leave(websocket)
        logger.info(f"[WS] Connection {connection_id} closed (room={room_id})")


async def _dispatch(
    websocket: WebSocket,
    services: RelayServices,
    connection_id: str,
    event: str,
    data: Any,
) -> None:
    """Apply one inbound event."""
    manager = services.manager
    registry = services.registry

    # --- Handle JOIN ---
    if event == "joinRoom":
        room_id = _field(data, "roomId")
        if not isinstance(room_id, str) or not room_id:
            raise ValidationError("Room ID required")
        client_id = _field(data, "clientId") if isinstance(data, dict) else None
        if not isinstance(client_id, str) or not client_id:
            client_id = connection_id
        await manager.join(websocket, room_id, client_id)
        return

    # --- Handle SET_EXPIRY (may name a room explicitly) ---
    if event == "setExpiry":
        target: Optional[str] = None
        if isinstance(data, dict) and data.get("roomId"):
            target = _as_str(data["roomId"], "roomId")
        else:
            target = manager.room_of(websocket)
        if target is None:
            raise ValidationError("Join a room first")
        expiry = _as_int(_field(data, "expiryTime"), "expiryTime")
        room = registry.set_expiry(target, expiry)
        await manager.emit(target, "expiryUpdate", room.expiry)
        logger.info(f"Expiry set for {room.key}: {room.expiry}ms")
        return

    room_id = manager.room_of(websocket)
    if room_id is None:
        raise ValidationError("Join a room first")

    # --- Handle TEXT_UPDATE (everyone but the sender) ---
    if event == "textUpdate":
        text = _as_str(data, "text")
        room = registry.set_text(room_id, text)
        await manager.emit_except(room_id, "textUpdate", text, exclude_websocket=websocket)
        logger.debug(f"Text updated in {room.key}: {text[:20]}...")
        return

    if event == "clearText":
        room = registry.clear_text(room_id)
        await manager.emit(room_id, "clearText")
        logger.info(f"Text cleared in {room.key}")
        return

    # --- Handle CURSOR_UPDATE (everyone but the sender) ---
    if event == "cursorUpdate":
        await manager.emit_except(
            room_id,
            "cursorUpdate",
            {"id": manager.client_of(websocket), "position": data},
            exclude_websocket=websocket,
        )
        return

    if event == "deleteFile":
        filename = _as_str(_field(data, "filename"), "filename")
        registry.remove_file(room_id, filename)
        services.blob_store.discard(filename)
        await manager.emit(room_id, "fileDeleted", filename)
        logger.info(f"File deleted in {registry.room_key(room_id)}: {filename}")
        return

    if event == "deleteAllFiles":
        removed = registry.clear_files(room_id)
        for record in removed:
            services.blob_store.discard(record.filename)
        await manager.emit(room_id, "allFilesDeleted")
        await manager.emit(room_id, "notification", {"message": "All files deleted"})
        logger.info(f"All files deleted in {registry.room_key(room_id)} ({len(removed)} files)")
        return

    if event == "saveText":
        text = _as_str(_field(data, "text"), "text")
        expiry = data.get("expiry") if isinstance(data, dict) else None
        if expiry is not None:
            expiry = _as_int(expiry, "expiry")
        record = registry.add_saved_text(room_id, text, expiry)
        await manager.emit(room_id, "savedText", record.model_dump())
        logger.info(f"Text saved in {registry.room_key(room_id)} (expiry={record.expiry}ms)")
        return

    if event == "deleteSavedText":
        index = _as_int(_field(data, "index"), "index")
        registry.remove_saved_text(room_id, index)
        await manager.emit(room_id, "deleteSavedText", index)
        logger.info(f"Saved text {index} deleted in {registry.room_key(room_id)}")
        return

    raise ValidationError(f"Unknown event: {event}")
