"""
Middleware for observability features.

Both middlewares describe a request by its route template rather than the
raw URL path, so probing arbitrary paths cannot grow label cardinality.
"""
import uuid
import time
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.routing import Match
import structlog

UNMATCHED_ROUTE = "<unmatched>"
METRICS_ROUTE = "/metrics"


def route_template(request: Request) -> str:
    """
    Path template of the route that will serve the request.

    A route matching only on path (wrong method) still names the request;
    nothing matching at all collapses into UNMATCHED_ROUTE.
    """
    app = request.scope.get("app")
    routes = getattr(getattr(app, "router", None), "routes", None) or []
    partial = None
    for route in routes:
        match, _ = route.matches(request.scope)
        if match == Match.FULL:
            return route.path
        if match == Match.PARTIAL and partial is None:
            partial = route.path
    return partial or UNMATCHED_ROUTE


class CorrelationIdMiddleware(BaseHTTPMiddleware):
    """
    Tag every request with a correlation ID.

    The ID comes from X-Correlation-ID or a fresh UUID, is bound into the
    structlog context (so collector log lines carry it alongside the client
    identity) and echoed on the response.
    """

    async def dispatch(self, request: Request, call_next):
        correlation_id = request.headers.get("x-correlation-id") or str(uuid.uuid4())

        structlog.contextvars.clear_contextvars()
        structlog.contextvars.bind_contextvars(
            correlation_id=correlation_id,
            http_method=request.method,
            http_route=route_template(request),
        )
        request.state.correlation_id = correlation_id

        response = await call_next(request)
        response.headers["x-correlation-id"] = correlation_id

        return response


class MetricsMiddleware(BaseHTTPMiddleware):
    """
    Record HTTP request count, duration and concurrency per route template.

    The collector's own outcome counters live in Metrics; this middleware
    only sees the status code the collector chose.
    """

    def __init__(self, app, metrics):
        super().__init__(app)
        self.metrics = metrics

    async def dispatch(self, request: Request, call_next):
        route = route_template(request)
        # Scrapes are not traffic
        if route == METRICS_ROUTE:
            return await call_next(request)

        service = self.metrics.service_name
        active = self.metrics.http_requests_active.labels(service=service)
        active.inc()
        start_time = time.time()
        logger = structlog.get_logger()
        status = 500

        try:
            response = await call_next(request)
            status = response.status_code
            logger.info(
                "http_request",
                http_status=status,
                duration_ms=round((time.time() - start_time) * 1000, 2),
            )
            return response

        except Exception as e:
            logger.error(
                "http_request_error",
                error=str(e),
                error_type=type(e).__name__,
                duration_ms=round((time.time() - start_time) * 1000, 2),
            )
            raise

        finally:
            duration = time.time() - start_time
            self.metrics.http_requests_total.labels(
                service=service,
                method=request.method,
                path=route,
                status=status,
            ).inc()
            self.metrics.http_request_duration.labels(
                service=service,
                method=request.method,
                path=route,
            ).observe(duration)
            active.dec()
