"""Sink selection from configuration."""
import structlog
from .base import RecordSink
from .memory import InMemorySink
from .redis_stream import RedisStreamSink
from ..config import Settings

log = structlog.get_logger()


def create_sink(settings: Settings) -> RecordSink | None:
    """
    Create the downstream sink based on configuration.

    Returns:
        RecordSink instance based on SINK_ADAPTER, or None for "none"
    """
    if settings.SINK_ADAPTER == "none":
        log.info("sink.selected", type="none")
        return None

    if settings.SINK_ADAPTER == "redis":
        if not settings.REDIS_URL:
            log.warning(
                "sink.fallback",
                requested="redis",
                actual="memory",
                reason="REDIS_URL not configured"
            )
            return InMemorySink()

        log.info("sink.selected", type="redis", url=str(settings.REDIS_URL))
        return RedisStreamSink(
            str(settings.REDIS_URL),
            stream_key=settings.REDIS_STREAM_KEY,
            maxlen=settings.REDIS_STREAM_MAXLEN,
        )

    log.info("sink.selected", type="memory")
    return InMemorySink()
