"""
Output channel fanning EventRecords out to subscribers and sinks.

Pushing never blocks the producer. Every subscription owns a bounded FIFO
buffer; when a consumer falls behind, the oldest buffered record is dropped.
"""
import asyncio
from typing import AsyncIterator, Callable, List, Optional
import structlog
from .event_models import EventRecord
from .adapters.base import RecordSink

log = structlog.get_logger()

DEFAULT_BUFFER = 1000

_CLOSED = object()


class Subscription:
    """A single consumer's ordered view of the channel."""

    def __init__(self, channel: "OutputChannel", max_buffer: int = DEFAULT_BUFFER):
        self._channel = channel
        self._queue: asyncio.Queue = asyncio.Queue()
        self._max_buffer = max_buffer
        self._closed = False
        self.dropped = 0

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def max_buffer(self) -> int:
        return self._max_buffer

    @property
    def pending(self) -> int:
        return self._queue.qsize()

    def offer(self, record: EventRecord) -> None:
        """Buffer a record without blocking, evicting the oldest when full."""
        if self._closed:
            return
        if self._max_buffer and self._queue.qsize() >= self._max_buffer:
            self._queue.get_nowait()
            self.dropped += 1
            self._channel.record_dropped(self)
        self._queue.put_nowait(record)

    async def get(self) -> EventRecord:
        """
        Wait for the next record.

        Raises:
            StopAsyncIteration: If the subscription was closed and drained
        """
        if self._closed and self._queue.empty():
            raise StopAsyncIteration
        item = await self._queue.get()
        if item is _CLOSED:
            raise StopAsyncIteration
        return item

    def close(self) -> None:
        """Stop receiving records; pending ones can still be drained."""
        if self._closed:
            return
        self._closed = True
        self._channel.unsubscribe(self)
        self._queue.put_nowait(_CLOSED)

    def __aiter__(self) -> AsyncIterator[EventRecord]:
        return self

    async def __anext__(self) -> EventRecord:
        return await self.get()


class Pipe:
    """Forwards a subscription into a sink on a background task."""

    def __init__(self, subscription: Subscription, sink: RecordSink):
        self.subscription = subscription
        self.sink = sink
        self.forwarded = 0
        self.failed = 0
        self._task = asyncio.create_task(self._forward())

    async def _forward(self):
        async for record in self.subscription:
            try:
                await self.sink.write(record)
                self.forwarded += 1
            except Exception as e:
                self.failed += 1
                log.error(
                    "channel.sink_failed",
                    sink=type(self.sink).__name__,
                    error=str(e),
                    error_type=type(e).__name__,
                )

    async def close(self, drain: bool = True):
        """
        Stop forwarding.

        Args:
            drain: Forward records already buffered before stopping
        """
        self.subscription.close()
        if not drain:
            self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass


class OutputChannel:
    """
    Ordered, push-based channel of EventRecords.

    - push() is fire-and-forget; with no subscribers records are discarded
    - subscribe() returns an independent async iterator
    - pipe() forwards into a RecordSink
    """

    def __init__(self, max_buffer: int = DEFAULT_BUFFER, on_drop: Optional[Callable[[], None]] = None):
        """
        Initialize output channel.

        Args:
            max_buffer: Per-subscriber buffer bound (0 for unbounded)
            on_drop: Called whenever a buffered record is evicted
        """
        self.max_buffer = max_buffer
        self._on_drop = on_drop
        self._subscriptions: List[Subscription] = []
        self._pipes: List[Pipe] = []
        self.pushed = 0

    @property
    def subscriber_count(self) -> int:
        return len(self._subscriptions)

    def push(self, record: EventRecord) -> None:
        """Hand a record to every current subscriber."""
        self.pushed += 1
        for subscription in list(self._subscriptions):
            try:
                subscription.offer(record)
            except Exception as e:
                log.error("channel.push_failed", error=str(e), error_type=type(e).__name__)

    def subscribe(self, max_buffer: Optional[int] = None) -> Subscription:
        subscription = Subscription(self, self.max_buffer if max_buffer is None else max_buffer)
        self._subscriptions.append(subscription)
        log.debug("channel.subscribed", subscribers=len(self._subscriptions))
        return subscription

    def unsubscribe(self, subscription: Subscription) -> None:
        if subscription in self._subscriptions:
            self._subscriptions.remove(subscription)
            log.debug("channel.unsubscribed", subscribers=len(self._subscriptions))

    def pipe(self, sink: RecordSink, max_buffer: Optional[int] = None) -> Pipe:
        """
        Forward every subsequent record into ``sink``.

        Must be called from a running event loop.
        """
        pipe = Pipe(self.subscribe(max_buffer), sink)
        self._pipes.append(pipe)
        log.info("channel.piped", sink=type(sink).__name__)
        return pipe

    def record_dropped(self, subscription: Subscription) -> None:
        log.warning("channel.record_dropped", dropped=subscription.dropped, buffer=subscription.max_buffer)
        if self._on_drop is not None:
            self._on_drop()

    async def close(self) -> None:
        """Close every pipe (draining) and subscription."""
        pipes, self._pipes = self._pipes, []
        for pipe in pipes:
            await pipe.close()
        for subscription in list(self._subscriptions):
            subscription.close()
        log.info("channel.closed", pushed=self.pushed)
