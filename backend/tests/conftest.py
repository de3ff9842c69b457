"""Shared test fixtures and configuration for backend tests.

Every test gets fresh settings pointing at an in-memory DuckDB database and a
temporary upload directory, plus a fresh chat hub.
"""
import asyncio

import pytest
from fastapi.testclient import TestClient

from app.auth.service import create_access_token
from app.chat.connection import ClientConnection
from app.chat.manager import get_hub, reset_hub
from app.config import AppSettings, reset_config, set_config
from app.files.service import FileStorageService
from app.main import app
from app.storage import Storage


class FakeWebSocket:
    """Records frames instead of sending them."""

    def __init__(self, fail: bool = False):
        self.sent = []
        self.closed_with = None
        self.fail = fail

    async def send_json(self, payload):
        if self.fail:
            raise RuntimeError("socket is gone")
        self.sent.append(payload)

    async def close(self, code: int = 1000):
        self.closed_with = code

    def of_type(self, event_type: str):
        return [f for f in self.sent if f["type"] == event_type]

    def types(self):
        return [f["type"] for f in self.sent]

    def clear(self):
        self.sent.clear()


@pytest.fixture(autouse=True)
def test_settings(tmp_path):
    """Isolated settings, storage and hub for each test."""
    settings = AppSettings()
    settings.storage.db_path = ":memory:"
    settings.uploads.upload_dir = str(tmp_path / "uploads")
    settings.secrets.jwt.secret_key = "test-secret-key"
    settings.presence.reconcile_interval_seconds = 3600
    set_config(settings)
    Storage.reset_instance()
    FileStorageService.reset_instance()
    reset_hub()
    yield settings
    reset_hub()
    FileStorageService.reset_instance()
    Storage.reset_instance()
    reset_config()


@pytest.fixture
def storage(test_settings):
    return Storage.get_instance(test_settings.storage.db_path)


@pytest.fixture
def hub(storage):
    return get_hub()


@pytest.fixture
def create_user(storage):
    """Create a persisted user from synchronous tests."""
    def _create(name: str = "Alice", email: str = ""):
        return asyncio.run(
            storage.users.create(email=email or f"{name.lower()}@example.com", name=name)
        )
    return _create


@pytest.fixture
def run(storage):
    """Run a storage coroutine from a synchronous test."""
    return asyncio.run


@pytest.fixture
def token_for():
    return create_access_token


@pytest.fixture
def auth_headers():
    def _headers(user):
        return {"Authorization": f"Bearer {create_access_token(user)}"}
    return _headers


@pytest.fixture
def connect(hub):
    """Authenticate and activate a connection backed by a FakeWebSocket."""
    async def _connect(user, websocket=None):
        websocket = websocket or FakeWebSocket()
        connection = ClientConnection(websocket)
        assert await hub.lifecycle.authenticate(connection, create_access_token(user))
        await hub.lifecycle.activate(connection)
        return connection, websocket
    return _connect


@pytest.fixture
def fake_websocket():
    return FakeWebSocket


@pytest.fixture
def api_client():
    """Provide a TestClient for the main FastAPI app with its lifespan running."""
    with TestClient(app) as client:
        yield client
