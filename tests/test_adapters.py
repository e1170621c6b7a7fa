"""Tests for record sinks."""
import pytest
from unittest.mock import AsyncMock, patch
from redis.exceptions import RedisError
from json_collector.adapters.factory import create_sink
from json_collector.adapters.memory import InMemorySink
from json_collector.adapters.redis_stream import RedisStreamSink
from json_collector.config import Settings
from json_collector.event_models import EventRecord
import orjson


def make_record(**kwargs) -> EventRecord:
    fields = {"identity": "abc", "client_address": "127.0.0.1", "headers": {"user-agent": "test"}}
    fields.update(kwargs)
    return EventRecord(**fields)


@pytest.mark.asyncio
async def test_memory_sink_write_and_list():
    """Test in-memory sink keeps records newest first."""
    sink = InMemorySink()

    for i in range(5):
        await sink.write(make_record(data={"index": i}))

    records = list(await sink.list_recent(limit=3))

    assert len(records) == 3
    assert [r.data["index"] for r in records] == [4, 3, 2]
    assert await sink.health_check() is True


@pytest.mark.asyncio
async def test_memory_sink_is_bounded():
    sink = InMemorySink(max_records=2)
    for i in range(3):
        await sink.write(make_record(data={"index": i}))
    assert len(sink) == 2


@pytest.mark.asyncio
async def test_redis_sink_write_with_mock():
    """Test Redis sink serializes records into the stream."""
    with patch("json_collector.adapters.redis_stream.Redis") as mock_redis_class:
        mock_redis = AsyncMock()
        mock_redis_class.from_url.return_value = mock_redis
        mock_redis.xadd.return_value = b"1234567890-0"

        sink = RedisStreamSink(redis_url="redis://localhost:6379", stream_key="test:events", maxlen=50)
        await sink.write(make_record(data={"key": "value"}))

        mock_redis.xadd.assert_awaited_once()
        args, kwargs = mock_redis.xadd.call_args
        assert args[0] == "test:events"
        assert kwargs["maxlen"] == 50
        parsed = orjson.loads(args[1]["data"])
        assert parsed["identity"] == "abc"
        assert parsed["data"] == {"key": "value"}
        assert "received_at" in parsed


@pytest.mark.asyncio
async def test_redis_sink_write_failure_raises():
    with patch("json_collector.adapters.redis_stream.Redis") as mock_redis_class:
        mock_redis = AsyncMock()
        mock_redis_class.from_url.return_value = mock_redis
        mock_redis.xadd.side_effect = RedisError("down")

        sink = RedisStreamSink(redis_url="redis://localhost:6379")
        with pytest.raises(RedisError):
            await sink.write(make_record())


@pytest.mark.asyncio
async def test_redis_sink_list_recent_with_mock():
    with patch("json_collector.adapters.redis_stream.Redis") as mock_redis_class:
        mock_redis = AsyncMock()
        mock_redis_class.from_url.return_value = mock_redis
        mock_redis.xrevrange.return_value = [
            (b"2-0", {b"data": make_record(data={"index": 2}).to_json()}),
            (b"1-0", {b"data": make_record().to_json()}),
        ]

        sink = RedisStreamSink(redis_url="redis://localhost:6379")
        records = list(await sink.list_recent(limit=2))

        assert records[0].data == {"index": 2}
        assert records[1].data is None
        mock_redis.xrevrange.assert_awaited_once_with("collector:events", count=2)


@pytest.mark.asyncio
async def test_redis_sink_health_check():
    with patch("json_collector.adapters.redis_stream.Redis") as mock_redis_class:
        mock_redis = AsyncMock()
        mock_redis_class.from_url.return_value = mock_redis
        mock_redis.ping.return_value = True
        sink = RedisStreamSink(redis_url="redis://localhost:6379")
        assert await sink.health_check() is True

        mock_redis.ping.side_effect = Exception("Connection refused")
        assert await sink.health_check() is False


def test_sink_selection():
    assert isinstance(create_sink(Settings(SINK_ADAPTER="memory")), InMemorySink)
    assert create_sink(Settings(SINK_ADAPTER="none")) is None
    # redis without a URL falls back to memory
    assert isinstance(create_sink(Settings(SINK_ADAPTER="redis", REDIS_URL=None)), InMemorySink)
    assert isinstance(
        create_sink(Settings(SINK_ADAPTER="redis", REDIS_URL="redis://localhost:6379")),
        RedisStreamSink,
    )


@pytest.mark.asyncio
async def test_redis_sink_awaits_client_calls():
    """The sink never blocks the loop: every client call is awaited."""
    with patch("json_collector.adapters.redis_stream.Redis") as mock_redis_class:
        mock_redis = AsyncMock()
        mock_redis_class.from_url.return_value = mock_redis
        mock_redis.ping.return_value = True

        sink = RedisStreamSink(redis_url="redis://localhost:6379")
        await sink.write(make_record())
        assert await sink.health_check() is True
        await sink.close()

        mock_redis.xadd.assert_awaited_once()
        mock_redis.ping.assert_awaited_once()
        mock_redis.aclose.assert_awaited_once()
        mock_redis_class.from_url.assert_called_once()


def test_record_with_lone_surrogate_serializes():
    record = make_record(data={"s": "\ud800"})
    assert b'"s":"\\ud800"' in record.to_json()
