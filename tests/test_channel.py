"""Tests for the output channel."""
import asyncio
import pytest
from json_collector.channel import OutputChannel
from json_collector.adapters.base import RecordSink
from json_collector.adapters.memory import InMemorySink
from json_collector.event_models import EventRecord


def make_record(i: int) -> EventRecord:
    return EventRecord(identity=f"client-{i}", client_address="127.0.0.1", data={"i": i})


class FlakySink(RecordSink):
    """Fails on the first write, stores the rest."""

    def __init__(self):
        self.records = []
        self.calls = 0

    async def write(self, record):
        self.calls += 1
        if self.calls == 1:
            raise RuntimeError("sink unavailable")
        self.records.append(record)

    async def health_check(self):
        return True


@pytest.mark.asyncio
async def test_subscribers_receive_in_order():
    channel = OutputChannel()
    first = channel.subscribe()
    second = channel.subscribe()

    for i in range(3):
        channel.push(make_record(i))

    for subscription in (first, second):
        received = [(await subscription.get()).data["i"] for _ in range(3)]
        assert received == [0, 1, 2]


def test_push_without_subscribers():
    channel = OutputChannel()
    channel.push(make_record(1))
    assert channel.pushed == 1
    assert channel.subscriber_count == 0


@pytest.mark.asyncio
async def test_subscription_only_sees_later_records():
    channel = OutputChannel()
    channel.push(make_record(0))
    subscription = channel.subscribe()
    channel.push(make_record(1))

    assert (await subscription.get()).data == {"i": 1}
    assert subscription.pending == 0


@pytest.mark.asyncio
async def test_overflow_drops_oldest():
    drops = []
    channel = OutputChannel(max_buffer=2, on_drop=lambda: drops.append(1))
    subscription = channel.subscribe()

    for i in range(4):
        channel.push(make_record(i))

    assert subscription.dropped == 2
    assert len(drops) == 2
    assert [(await subscription.get()).data["i"] for _ in range(2)] == [2, 3]


@pytest.mark.asyncio
async def test_close_ends_iteration_after_draining():
    channel = OutputChannel()
    subscription = channel.subscribe()
    channel.push(make_record(0))
    subscription.close()
    channel.push(make_record(1))

    received = [record.data["i"] async for record in subscription]

    assert received == [0]
    assert channel.subscriber_count == 0


@pytest.mark.asyncio
async def test_pipe_forwards_to_sink():
    channel = OutputChannel()
    sink = InMemorySink()
    pipe = channel.pipe(sink)

    for i in range(3):
        channel.push(make_record(i))
    await pipe.close()

    assert len(sink) == 3
    assert [r.data["i"] for r in await sink.list_recent()] == [2, 1, 0]


@pytest.mark.asyncio
async def test_sink_errors_do_not_stop_forwarding():
    channel = OutputChannel()
    sink = FlakySink()
    pipe = channel.pipe(sink)

    for i in range(3):
        channel.push(make_record(i))
    await pipe.close()

    assert pipe.failed == 1
    assert pipe.forwarded == 2
    assert [r.data["i"] for r in sink.records] == [1, 2]


@pytest.mark.asyncio
async def test_channel_close_tears_down_consumers():
    channel = OutputChannel()
    sink = InMemorySink()
    channel.pipe(sink)
    subscription = channel.subscribe()
    channel.push(make_record(0))

    await channel.close()

    assert len(sink) == 1
    assert subscription.closed
    assert channel.subscriber_count == 0
    assert (await asyncio.wait_for(subscription.get(), timeout=1)).data == {"i": 0}
    with pytest.raises(StopAsyncIteration):
        await subscription.get()
