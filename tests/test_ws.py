"""
WebSocket push channel tests (sync TestClient)
"""

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine
from starlette.websockets import WebSocketDisconnect

from api_server import create_app
from conftest import FakeChain, FakeDex
from src.api import api_key_auth
from src.services.container import ServiceContainer


@pytest.fixture
def app():
    # Never connected: the push channel only reads in-memory status
    engine = create_async_engine("sqlite+aiosqlite:///:memory:")
    services = ServiceContainer.create(
        session_maker=async_sessionmaker(engine, expire_on_commit=False),
        chain=FakeChain(),
        dex=FakeDex(),
    )
    return create_app(services)


def test_ws_sends_current_status_on_connect(app):
    client = TestClient(app)

    with client.websocket_connect("/ws") as websocket:
        message = websocket.receive_json()

    assert message["type"] == "twap_status"
    assert message["data"]["is_active"] is False
    assert "timestamp" in message


def test_ws_rejects_bad_api_key(app, monkeypatch):
    monkeypatch.setattr(api_key_auth, "API_KEY", "secret")
    client = TestClient(app)

    with pytest.raises(WebSocketDisconnect):
        with client.websocket_connect("/ws?apiKey=wrong") as websocket:
            websocket.receive_json()

    with client.websocket_connect("/ws?apiKey=secret") as websocket:
        assert websocket.receive_json()["type"] == "twap_status"
