"""Tests for the WebSocket record tail."""
import orjson
import pytest
from unittest.mock import AsyncMock
from starlette.testclient import TestClient
from json_collector.channel import OutputChannel
from json_collector.config import Settings
from json_collector.main import create_app
from json_collector.streaming.websocket import RecordStreamManager


def test_stream_receives_collected_records():
    app = create_app(Settings(SINK_ADAPTER="none"))

    with TestClient(app) as client:
        with client.websocket_connect("/stream") as websocket:
            welcome = websocket.receive_json()
            assert welcome["type"] == "welcome"

            assert client.post("/", json={"event": "live"}).status_code == 200

            message = orjson.loads(websocket.receive_text())
            assert message["type"] == "record"
            assert message["data"]["data"] == {"event": "live"}
            assert message["data"]["identity"]


def test_stream_ping_pong():
    app = create_app(Settings(SINK_ADAPTER="none"))

    with TestClient(app) as client:
        with client.websocket_connect("/stream") as websocket:
            websocket.receive_json()
            websocket.send_text("ping")
            assert websocket.receive_text() == "pong"


@pytest.mark.asyncio
async def test_manager_tracks_subscriptions():
    channel = OutputChannel()
    manager = RecordStreamManager(channel, max_buffer=5)
    websocket = AsyncMock()

    subscription = await manager.connect(websocket)

    assert manager.connection_count == 1
    assert channel.subscriber_count == 1
    websocket.accept.assert_awaited_once()

    manager.disconnect(websocket)

    assert manager.connection_count == 0
    assert channel.subscriber_count == 0
    assert subscription.closed
