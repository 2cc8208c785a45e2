"""Shared test fixtures and configuration for backend tests."""
import pytest
from fastapi.testclient import TestClient

from air_exchange.config import AppConfig, StorageSettings
from air_exchange.main import create_app

START_MS = 1_700_000_000_000


class FakeClock:
    """Millisecond clock that only moves when told to."""

    def __init__(self, start: int = START_MS) -> None:
        self.now = start

    def __call__(self) -> int:
        return self.now

    def advance(self, ms: int) -> None:
        self.now += ms


class FakeWebSocket:
    """Records frames sent by the connection manager."""

    def __init__(self, fail: bool = False) -> None:
        self.sent = []
        self.accepted = False
        self.fail = fail

    async def accept(self) -> None:
        self.accepted = True

    async def send_json(self, message: dict) -> None:
        if self.fail:
            raise RuntimeError("connection closed")
        self.sent.append(message)

    def events(self, event_type: str) -> list:
        return [m["data"] for m in self.sent if m["type"] == event_type]


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def app_config(tmp_path):
    return AppConfig(
        storage=StorageSettings(
            upload_dir=str(tmp_path / "uploads"),
            public_dir=str(tmp_path / "public"),
        )
    )


@pytest.fixture
def app(app_config, clock):
    return create_app(app_config, clock=clock)


@pytest.fixture
def services(app):
    return app.state.services


@pytest.fixture
def api_client(app):
    """Provide a TestClient for a freshly built app.

    Used as a context manager so lifespan runs and every WebSocket session
    shares one event loop.
    """
    with TestClient(app) as client:
        yield client
