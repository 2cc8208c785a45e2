"""In-memory room registry.

Owns creation, mutation and removal of room state. A room exists only while
it has a connected user, a file, non-empty text or a saved text; callers use
:meth:`RoomRegistry.prune_if_empty` after mutations that may empty a room.

Thread Safety:
    Every method is synchronous and never awaits, so under a single asyncio
    event loop each mutation runs to completion before the next begins.
    It is NOT thread-safe for concurrent access from multiple threads.
"""
import logging
from typing import Callable, Dict, List, Optional

from air_exchange.errors import NotFoundError, ValidationError

from .schemas import DEFAULT_EXPIRY_MS, FileRecord, Room, SavedText, now_ms

logger = logging.getLogger(__name__)

DEFAULT_KEY_PREFIX = "wifi-"


class RoomRegistry:
    """Maps room keys to :class:`Room` state.

    Room ids supplied by clients are namespaced with ``key_prefix`` so they
    can never collide with internal keys.
    """

    def __init__(
        self,
        key_prefix: str = DEFAULT_KEY_PREFIX,
        default_expiry_ms: int = DEFAULT_EXPIRY_MS,
        saved_text_expiry_ms: int = DEFAULT_EXPIRY_MS,
        clock: Callable[[], int] = now_ms,
    ) -> None:
        self.key_prefix = key_prefix
        self.default_expiry_ms = default_expiry_ms
        self.saved_text_expiry_ms = saved_text_expiry_ms
        self.clock = clock
        self._rooms: Dict[str, Room] = {}

    # =========================================================================
    # Lookup and lifecycle
    # =========================================================================

    def room_key(self, room_id: str) -> str:
        return f"{self.key_prefix}{room_id}"

    def get_or_create(self, room_id: str) -> Room:
        """Return the room for *room_id*, creating it with defaults if unseen."""
        key = self.room_key(room_id)
        room = self._rooms.get(key)
        if room is None:
            room = Room(key=key, roomId=room_id, expiry=self.default_expiry_ms)
            self._rooms[key] = room
            logger.info("Created room %s", key)
        return room

    def find(self, room_id: str) -> Optional[Room]:
        return self._rooms.get(self.room_key(room_id))

    def get(self, room_id: str) -> Room:
        """Return an existing room.

        Raises:
            NotFoundError: If the room does not exist.
        """
        room = self.find(room_id)
        if room is None:
            raise NotFoundError("Room not found")
        return room

    def delete(self, room_id: str) -> None:
        """Remove a room entirely. Only valid for empty rooms."""
        room = self.get(room_id)
        if not room.is_empty():
            raise ValidationError(f"Room {room.key} is not empty")
        del self._rooms[room.key]
        logger.info("Cleaned up room: %s", room.key)

    def prune_if_empty(self, room_id: str) -> bool:
        """Delete the room if nothing keeps it alive. Returns True if deleted."""
        room = self.find(room_id)
        if room is None or not room.is_empty():
            return False
        self.delete(room.roomId)
        return True

    def rooms(self) -> List[Room]:
        """Snapshot list of rooms, safe to iterate while mutating the registry."""
        return list(self._rooms.values())

    def __len__(self) -> int:
        return len(self._rooms)

    def __contains__(self, room_id: str) -> bool:
        return self.find(room_id) is not None

    # =========================================================================
    # Presence
    # =========================================================================

    def add_user(self, room_id: str, client_id: str) -> Room:
        room = self.get_or_create(room_id)
        room.users.add(client_id)
        return room

    def remove_user(self, room_id: str, client_id: str) -> Optional[Room]:
        room = self.find(room_id)
        if room is not None:
            room.users.discard(client_id)
        return room

    # =========================================================================
    # Text
    # =========================================================================

    def set_text(self, room_id: str, text: str) -> Room:
        room = self.get(room_id)
        room.text = text
        room.lastTextUpdate = self.clock()
        return room

    def clear_text(self, room_id: str) -> Room:
        room = self.get(room_id)
        room.text = ""
        room.lastTextUpdate = None
        return room

    # =========================================================================
    # Files
    # =========================================================================

    def add_file(self, room_id: str, record: FileRecord) -> Room:
        """Append a file record, creating the room if needed."""
        room = self.get_or_create(room_id)
        if room.find_file(record.filename) is not None:
            raise ValidationError(f"Duplicate filename: {record.filename}")
        room.files.append(record)
        return room

    def remove_file(self, room_id: str, filename: str) -> FileRecord:
        """Remove and return a file record.

        Raises:
            NotFoundError: If the room or the record does not exist.
        """
        room = self.get(room_id)
        record = room.find_file(filename)
        if record is None:
            raise NotFoundError("File not found")
        room.files = [f for f in room.files if f.filename != filename]
        return record

    def clear_files(self, room_id: str) -> List[FileRecord]:
        """Remove and return every file record in the room."""
        room = self.get(room_id)
        removed, room.files = room.files, []
        return removed

    # =========================================================================
    # Saved texts
    # =========================================================================

    def add_saved_text(
        self, room_id: str, text: str, expiry: Optional[int] = None
    ) -> SavedText:
        room = self.get(room_id)
        if expiry is not None and expiry <= 0:
            raise ValidationError("Expiry must be a positive number of milliseconds")
        record = SavedText(
            text=text,
            timestamp=self.clock(),
            expiry=expiry if expiry is not None else self.saved_text_expiry_ms,
        )
        room.savedTexts.append(record)
        return record

    def remove_saved_text(self, room_id: str, index: int) -> SavedText:
        room = self.get(room_id)
        if index < 0 or index >= len(room.savedTexts):
            raise NotFoundError(f"No saved text at index {index}")
        return room.savedTexts.pop(index)

    # =========================================================================
    # Settings
    # =========================================================================

    def set_expiry(self, room_id: str, expiry_ms: int) -> Room:
        if expiry_ms <= 0:
            raise ValidationError("Expiry must be a positive number of milliseconds")
        room = self.get(room_id)
        room.expiry = expiry_ms
        return room
