"""Pydantic models for room state.

This module defines the data held for each sharing room:
- FileRecord: an uploaded file, as announced to clients
- SavedText: a text snippet kept with its own retention period
- Room: the complete in-memory state of one room
- RoomSnapshot: the ``init`` payload sent to clients

All timestamps and durations are integer milliseconds.
"""
import time
from typing import Any, Dict, List, Optional, Set

from pydantic import BaseModel, Field

# Default room expiry: 30 minutes
DEFAULT_EXPIRY_MS = 30 * 60 * 1000


def now_ms() -> int:
    """Current wall-clock time in milliseconds since the epoch."""
    return int(time.time() * 1000)


class FileRecord(BaseModel):
    """Metadata for a file shared in a room.

    ``filename`` is the storage-internal name (time-prefixed, unique);
    ``originalName`` is what the uploader called it.
    """
    filename: str = Field(..., description="Filename in the blob store")
    originalName: str = Field(..., description="User-supplied filename")
    timestamp: int = Field(default_factory=now_ms, description="Upload time (ms)")
    url: str = Field(..., description="Public download locator")


class SavedText(BaseModel):
    """A saved text snippet with its own expiry, independent of the room's."""
    text: str = Field(..., description="Saved content")
    timestamp: int = Field(default_factory=now_ms, description="Creation time (ms)")
    expiry: int = Field(default=DEFAULT_EXPIRY_MS, description="Retention period (ms)")


class RoomSnapshot(BaseModel):
    """Full room state as delivered in an ``init`` event."""
    text: str
    lastTextUpdate: Optional[int] = None
    files: List[FileRecord]
    savedTexts: List[SavedText]
    expiry: int
    userCount: int


class Room(BaseModel):
    """In-memory state of a single room.

    Attributes:
        key: Namespaced room key (prefix + room id).
        roomId: Room id as supplied by clients.
        text: Current shared text (opaque, may be formatted HTML).
        lastTextUpdate: Time of the last text mutation, None if never set.
        files: File records in upload order.
        savedTexts: Saved text records in creation order.
        expiry: Retention period for files and text (ms).
        users: Client identifiers currently joined.
    """
    key: str
    roomId: str
    text: str = ""
    lastTextUpdate: Optional[int] = None
    files: List[FileRecord] = Field(default_factory=list)
    savedTexts: List[SavedText] = Field(default_factory=list)
    expiry: int = DEFAULT_EXPIRY_MS
    users: Set[str] = Field(default_factory=set)

    def is_empty(self) -> bool:
        """True when nothing keeps the room alive."""
        return (
            not self.users
            and not self.files
            and self.text == ""
            and not self.savedTexts
        )

    def find_file(self, filename: str) -> Optional[FileRecord]:
        for record in self.files:
            if record.filename == filename:
                return record
        return None

    def snapshot(self) -> RoomSnapshot:
        return RoomSnapshot(
            text=self.text,
            lastTextUpdate=self.lastTextUpdate,
            files=list(self.files),
            savedTexts=list(self.savedTexts),
            expiry=self.expiry,
            userCount=len(self.users),
        )

    def snapshot_data(self) -> Dict[str, Any]:
        return self.snapshot().model_dump()
