"""Base adapter interface for downstream record sinks."""
from abc import ABC, abstractmethod
from typing import Iterable
from ..event_models import EventRecord


class RecordSink(ABC):
    """Abstract interface for the consumer side of the output channel."""

    @abstractmethod
    async def write(self, record: EventRecord) -> None:
        """
        Deliver a record to the backend.

        Args:
            record: The event record emitted by the collector
        """
        pass

    @abstractmethod
    async def health_check(self) -> bool:
        """
        Check if the backend is healthy and accessible.

        Returns:
            True if backend is healthy, False otherwise
        """
        pass

    async def list_recent(self, limit: int = 50) -> Iterable[EventRecord]:
        """
        Retrieve recent records, newest first, where the backend keeps them.

        Args:
            limit: Maximum number of records to return
        """
        return []

    async def close(self):
        """Release backend resources."""
        pass
