"""Application-scoped service container.

One :class:`RelayServices` is built per application by
:func:`air_exchange.main.create_app` and stored on ``app.state``. Routers
receive it through the :func:`get_services` dependency, which works for both
HTTP requests and WebSocket connections.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Optional

from starlette.requests import HTTPConnection

from air_exchange.config import AppConfig
from air_exchange.files.storage import BlobStore
from air_exchange.rooms.manager import ConnectionManager
from air_exchange.rooms.registry import RoomRegistry
from air_exchange.rooms.schemas import now_ms
from air_exchange.rooms.sweeper import ExpirySweeper


@dataclass
class RelayServices:
    config:     AppConfig
    registry:   RoomRegistry
    manager:    ConnectionManager
    blob_store: BlobStore
    sweeper:    ExpirySweeper

    @classmethod
    def from_config(
        cls, config: AppConfig, clock: Optional[Callable[[], int]] = None
    ) -> "RelayServices":
        clock = clock or now_ms
        registry = RoomRegistry(
            key_prefix=config.rooms.key_prefix,
            default_expiry_ms=config.rooms.default_expiry_ms,
            saved_text_expiry_ms=config.rooms.saved_text_expiry_ms,
            clock=clock,
        )
        manager = ConnectionManager(registry)
        blob_store = BlobStore(config.storage.upload_dir, clock=clock)
        sweeper = ExpirySweeper(
            registry,
            manager,
            blob_store,
            interval_seconds=config.rooms.sweep_interval_seconds,
        )
        return cls(
            config=config,
            registry=registry,
            manager=manager,
            blob_store=blob_store,
            sweeper=sweeper,
        )


def get_services(connection: HTTPConnection) -> RelayServices:
    """FastAPI dependency returning the application's services."""
    return connection.app.state.services
