"""
Tests for the relay HTTP/WebSocket entrypoint.
"""

from unittest.mock import AsyncMock, patch

import pytest
from fastapi.testclient import TestClient

from src.relay.server import create_app
from src.relay.settings import SERVICE_NAME, RelaySettings


@pytest.fixture
def settings():
    return RelaySettings(api_key="sk-test")


@pytest.fixture
def test_client(settings):
    with TestClient(create_app(settings)) as client:
        yield client


class TestHealth:
    def test_health(self, test_client):
        response = test_client.get("/health")

        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "ok"
        assert body["service"] == SERVICE_NAME
        assert body["timestamp"]

    def test_missing_api_key_still_starts(self):
        with TestClient(create_app(RelaySettings(api_key=None))) as client:
            assert client.get("/health").status_code == 200


class TestRelayEndpoint:
    def test_websocket_runs_a_relay_session(self, test_client, settings):
        with patch("src.relay.server.RelaySession") as session_cls:
            session_cls.return_value.run = AsyncMock()
            with test_client.websocket_connect("/"):
                pass

        session_cls.assert_called_once()
        assert session_cls.call_args.args[1] is settings
        session_cls.return_value.run.assert_awaited_once()
