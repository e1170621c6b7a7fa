"""
JSON Collector - anonymous event collection endpoint.

Features:
- Event submission with CORS negotiation and anonymous client identity
- Output channel piped into a configurable sink
- WebSocket live tail of collected records
- Structured logging with correlation IDs
- Prometheus metrics
- Health checks (liveness and readiness)
"""
from contextlib import asynccontextmanager
from fastapi import FastAPI, WebSocket
from fastapi.responses import JSONResponse
from prometheus_client import make_asgi_app
from .config import Settings, get_settings
from .logging import SERVICE_NAME, setup_logging, get_logger
from .collector import Collector
from .adapters.factory import create_sink
from .middleware import CorrelationIdMiddleware, MetricsMiddleware
from .metrics import Metrics
from .health import HealthChecker
from .streaming.websocket import RecordStreamManager, handle_record_stream

VERSION = "0.1.0"

logger = get_logger()


def create_app(settings: Settings | None = None) -> FastAPI:
    """
    Build the collector application.

    Args:
        settings: Service configuration (defaults to environment settings)
    """
    settings = settings or get_settings()
    metrics = Metrics(service_name=SERVICE_NAME, version=VERSION)
    collector = Collector.from_settings(settings, metrics=metrics)
    sink = create_sink(settings)
    health_checker = HealthChecker(service_name=SERVICE_NAME, version=VERSION, sink=sink)
    stream_manager = RecordStreamManager(collector.channel)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info(
            "service_starting",
            version=VERSION,
            env=settings.ENV,
            sink=settings.SINK_ADAPTER,
            collect_path=settings.COLLECT_PATH,
        )
        if sink is not None:
            collector.pipe(sink)
        yield
        logger.info("service_stopping")
        await collector.close()
        if sink is not None:
            await sink.close()
        metrics.app_up.labels(service=SERVICE_NAME, version=VERSION).set(0)

    app = FastAPI(
        title="JSON Collector",
        version=VERSION,
        description="Anonymous JSON event collection endpoint",
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.collector = collector
    app.state.sink = sink
    app.state.metrics = metrics

    # Order matters: correlation ID first, then metrics
    app.add_middleware(MetricsMiddleware, metrics=metrics)
    app.add_middleware(CorrelationIdMiddleware)

    @app.get("/health")
    async def health():
        """Liveness probe."""
        logger.debug("health_check_liveness")
        return health_checker.liveness()

    @app.get("/health/ready")
    async def health_ready():
        """
        Readiness probe.

        Returns:
            200: Service is ready to handle traffic
            503: Service is not ready
        """
        logger.debug("health_check_readiness")
        result = await health_checker.readiness()
        status_code = 200 if result["status"] == "ready" else 503
        return JSONResponse(result, status_code=status_code)

    @app.websocket("/stream")
    async def stream(websocket: WebSocket):
        """Live tail of collected records."""
        await handle_record_stream(websocket, stream_manager)

    app.mount("/metrics", make_asgi_app(registry=metrics.registry))

    # Registered last so the fixed routes above win on "/"-prefixed paths;
    # accepts every method, dispatch happens in the collector
    app.add_route(settings.COLLECT_PATH, collector, include_in_schema=False)

    return app


_settings = get_settings()
setup_logging(json_output=_settings.LOG_JSON, service_name=SERVICE_NAME, level=_settings.LOG_LEVEL)
app = create_app(_settings)


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "json_collector.main:app",
        host="0.0.0.0",
        port=_settings.SERVICE_PORT,
    )
