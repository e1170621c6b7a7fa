"""Redis Streams record sink on the asyncio client."""
from typing import Iterable
import structlog
import orjson
from redis.asyncio import Redis
from redis.exceptions import RedisError
from .base import RecordSink
from ..event_models import EventRecord

log = structlog.get_logger()

DEFAULT_STREAM_KEY = "collector:events"


class RedisStreamSink(RecordSink):
    """Redis Streams implementation of a record sink.

    Records are appended to a capped Redis stream and can be queried
    in reverse chronological order.
    """

    def __init__(self, redis_url: str, stream_key: str = DEFAULT_STREAM_KEY, maxlen: int = 10000):
        """
        Initialize Redis stream sink.

        Args:
            redis_url: Redis connection URL
            stream_key: Stream the records are appended to
            maxlen: Approximate cap on stream length
        """
        self.redis_url = redis_url
        self._client: Redis | None = None
        self._stream_key = stream_key
        self._maxlen = maxlen

    def _get_client(self) -> Redis:
        """Get or create Redis client."""
        if self._client is None:
            self._client = Redis.from_url(
                self.redis_url,
                decode_responses=False,  # We'll handle encoding ourselves
                socket_connect_timeout=5,
                socket_timeout=5
            )
        return self._client

    async def write(self, record: EventRecord) -> None:
        """
        Append record to the Redis stream.

        Raises:
            RedisError: If unable to write to Redis
        """
        try:
            client = self._get_client()
            await client.xadd(
                self._stream_key,
                {"data": record.to_json()},
                id="*",
                maxlen=self._maxlen,
                approximate=True,
            )
            log.debug("record.stored", identity=record.identity, accepted=record.accepted, sink="redis_stream")

        except RedisError as e:
            log.error("redis.write_failed", error=str(e), identity=record.identity)
            raise

    async def list_recent(self, limit: int = 50) -> Iterable[EventRecord]:
        """
        List recent records from the Redis stream, newest first.
        """
        try:
            client = self._get_client()
            entries = await client.xrevrange(self._stream_key, count=limit)

            records = []
            for entry_id, entry_data in entries:
                if b"data" in entry_data:
                    records.append(EventRecord(**orjson.loads(entry_data[b"data"])))

            return records

        except RedisError as e:
            log.error("redis.list_failed", error=str(e))
            return []

    async def health_check(self) -> bool:
        """
        Check Redis connection health.

        Returns:
            True if Redis is accessible, False otherwise
        """
        try:
            client = self._get_client()
            return bool(await client.ping())
        except Exception as e:
            log.warning("redis.health_check_failed", error=str(e))
            return False

    async def close(self):
        """Close the Redis connection pool."""
        if self._client:
            await self._client.aclose()
            self._client = None
