"""In-memory record sink."""
from collections import deque
from typing import Iterable
import structlog
from .base import RecordSink
from ..event_models import EventRecord

log = structlog.get_logger()


class InMemorySink(RecordSink):
    """In-memory implementation of a record sink."""

    def __init__(self, max_records: int = 10000):
        self._buffer: deque[EventRecord] = deque(maxlen=max_records)

    async def write(self, record: EventRecord) -> None:
        """Append record to in-memory buffer."""
        self._buffer.append(record)
        log.debug(
            "record.stored",
            identity=record.identity,
            accepted=record.accepted,
            sink="memory",
        )

    async def list_recent(self, limit: int = 50) -> Iterable[EventRecord]:
        """List recent records from memory buffer."""
        return list(reversed(self._buffer))[:limit]

    async def health_check(self) -> bool:
        """In-memory sink is always healthy."""
        return True

    def __len__(self) -> int:
        return len(self._buffer)
