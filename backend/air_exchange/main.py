"""Air Exchange Backend Application.

This is the main entry point for the Air Exchange relay. Air Exchange lets
clients on the same network join a room, share files and clipboard text, and
see live presence and cursor updates.

Modules:
    - rooms: room registry, WebSocket fan-out and expiry sweeper
    - files: blob storage and upload/download/delete endpoints
    - config: YAML-backed settings
"""
import logging
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Callable, Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.staticfiles import StaticFiles

from air_exchange.config import AppConfig, get_config
from air_exchange.files.router import router as files_router
from air_exchange.rooms.router import router as rooms_router
from air_exchange.services import RelayServices

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)

# Silence verbose third-party loggers.
# uvicorn.access logs every download and upload request; multipart logs
# every parsed form field.
for _noisy in (
    "uvicorn.access",
    "multipart",
    "python_multipart",
):
    logging.getLogger(_noisy).setLevel(logging.WARNING)

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager for startup/shutdown events."""
    # Startup
    services: RelayServices = app.state.services
    config = services.config

    configured_level = getattr(logging, config.logging.level.upper(), None)
    if configured_level is not None:
        logging.getLogger().setLevel(configured_level)
        logger.info("Root logger level set to %s", config.logging.level.upper())

    await services.sweeper.start()
    logger.info(
        f"Server running on http://{config.server.host}:{config.server.port} "
        f"(uploads in {config.storage.upload_dir})"
    )

    yield  # Application runs here

    # Shutdown
    await services.sweeper.stop()
    logger.info("Application shutdown complete")


def create_app(
    config: Optional[AppConfig] = None,
    clock: Optional[Callable[[], int]] = None,
) -> FastAPI:
    """Build the FastAPI application and its services.

    Args:
        config: Settings to use; loaded from the settings file if omitted.
        clock: Millisecond clock shared by the registry, blob store and
            sweeper (tests pass a fake one).
    """
    config = config or get_config()
    services = RelayServices.from_config(config, clock)

    app = FastAPI(
        title="Air Exchange API",
        description="Real-time file and text sharing relay",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.state.services = services

    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.server.allowed_origins,
        allow_methods=["GET", "POST", "DELETE"],
        allow_headers=["*"],
    )

    app.include_router(files_router)
    app.include_router(rooms_router)

    @app.get("/health")
    async def health() -> dict:
        """Health check endpoint.

        Returns:
            dict: Status object with the number of live rooms.
        """
        return {"status": "ok", "rooms": len(services.registry)}

    # Static mounts go last: "/" would otherwise shadow the API routes.
    app.mount(
        "/uploads",
        StaticFiles(directory=config.storage.upload_dir),
        name="uploads",
    )
    public_dir = Path(config.storage.public_dir)
    if public_dir.is_dir():
        app.mount("/", StaticFiles(directory=public_dir, html=True), name="public")
    else:
        logger.info("No client assets at %s; serving API only", public_dir)

    return app


app = create_app()
