"""Periodic eviction of expired room content.

Files and text expire with the room's own ``expiry``; saved texts carry their
own retention period. Rooms left empty after a pass are deleted, the others
receive a fresh ``init`` snapshot if anything was evicted.
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Optional

from air_exchange.files.storage import BlobStore

from .manager import ConnectionManager
from .registry import RoomRegistry
from .schemas import Room

logger = logging.getLogger(__name__)


@dataclass
class SweepResult:
    files_evicted:       int = 0
    saved_texts_evicted: int = 0
    texts_cleared:       int = 0
    rooms_deleted:       int = 0


@dataclass
class _RoomOutcome:
    changed:      bool = False
    text_cleared: bool = False
    deleted:      bool = False


class ExpirySweeper:
    """Background task that sweeps every room on a fixed interval."""

    def __init__(
        self,
        registry: RoomRegistry,
        manager: ConnectionManager,
        blob_store: BlobStore,
        interval_seconds: float = 60.0,
    ) -> None:
        self.registry = registry
        self.manager = manager
        self.blob_store = blob_store
        self.interval_seconds = interval_seconds
        self._lock = asyncio.Lock()
        self._sweep_task: Optional[asyncio.Task] = None  # type: ignore[type-arg]

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> None:
        """Start background sweep task."""
        self._sweep_task = asyncio.create_task(self._sweep_loop())
        logger.info("Expiry sweeper started (interval=%ss)", self.interval_seconds)

    async def stop(self) -> None:
        """Cancel the sweep task."""
        if self._sweep_task:
            self._sweep_task.cancel()
            try:
                await self._sweep_task
            except asyncio.CancelledError:
                pass
            self._sweep_task = None
        logger.info("Expiry sweeper stopped.")

    @property
    def running(self) -> bool:
        return self._sweep_task is not None and not self._sweep_task.done()

    # ------------------------------------------------------------------
    # Background sweep
    # ------------------------------------------------------------------

    async def _sweep_loop(self) -> None:
        while True:
            await asyncio.sleep(self.interval_seconds)
            try:
                await self.sweep_once()
            except Exception:
                logger.exception("Expiry sweep failed")

    async def sweep_once(self) -> SweepResult:
        """Run one pass over all rooms. Only one pass runs at a time."""
        async with self._lock:
            result = SweepResult()
            for room in self.registry.rooms():
                # Rooms deleted by a handler while an earlier broadcast awaited
                if self.registry.find(room.roomId) is not room:
                    continue
                files_before = len(room.files)
                saved_before = len(room.savedTexts)

                outcome = self._sweep_room(room)

                result.files_evicted += files_before - len(room.files)
                result.saved_texts_evicted += saved_before - len(room.savedTexts)
                if outcome.text_cleared:
                    result.texts_cleared += 1
                    await self.manager.emit(room.roomId, "clearText")
                if outcome.deleted:
                    result.rooms_deleted += 1
                elif outcome.changed:
                    await self.manager.emit(room.roomId, "init", room.snapshot_data())

        if result.files_evicted or result.saved_texts_evicted or result.texts_cleared or result.rooms_deleted:
            logger.info(
                "Expiry sweep: evicted %d files, %d saved texts, cleared %d texts, deleted %d rooms",
                result.files_evicted,
                result.saved_texts_evicted,
                result.texts_cleared,
                result.rooms_deleted,
            )
        return result

    def _sweep_room(self, room: Room) -> _RoomOutcome:
        """Evict expired content from one room without yielding to the loop."""
        now = self.registry.clock()
        expiry_time = room.expiry or self.registry.default_expiry_ms
        outcome = _RoomOutcome()

        expired_files = [f for f in room.files if now - f.timestamp > expiry_time]
        if expired_files:
            room.files = [f for f in room.files if now - f.timestamp <= expiry_time]
            for record in expired_files:
                self.blob_store.discard(record.filename)
            outcome.changed = True

        kept_texts = [s for s in room.savedTexts if now - s.timestamp <= s.expiry]
        if len(kept_texts) != len(room.savedTexts):
            room.savedTexts = kept_texts
            outcome.changed = True

        if room.text and now - (room.lastTextUpdate or 0) > expiry_time:
            room.text = ""
            room.lastTextUpdate = None
            outcome.text_cleared = True
            outcome.changed = True

        outcome.deleted = self.registry.prune_if_empty(room.roomId)
        return outcome
