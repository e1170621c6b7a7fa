"""
Prometheus metrics for the collector service.
"""
from prometheus_client import Counter, Histogram, Gauge, Info, CollectorRegistry


class Metrics:
    """
    Centralized metrics for the collector service.
    """

    def __init__(self, service_name: str = "json-collector", version: str = "0.1.0", registry=None):
        self.service_name = service_name
        self.version = version
        self.registry = registry or CollectorRegistry()

        # HTTP Metrics
        self.http_requests_total = Counter(
            "http_requests_total",
            "Total HTTP requests",
            ["service", "method", "path", "status"],
            registry=self.registry,
        )

        self.http_request_duration = Histogram(
            "http_request_duration_seconds",
            "HTTP request duration in seconds",
            ["service", "method", "path"],
            registry=self.registry,
        )

        self.http_requests_active = Gauge(
            "http_requests_active",
            "Number of active HTTP requests",
            ["service"],
            registry=self.registry,
        )
        self.http_requests_active.labels(service=service_name).set(0)

        # Application Info
        self.app_info = Info(
            "app",
            "Application information",
            registry=self.registry,
        )
        self.app_info.info({"service": service_name, "version": version})

        self.app_up = Gauge(
            "app_up",
            "Application up status (1=up, 0=down)",
            ["service", "version"],
            registry=self.registry,
        )
        self.app_up.labels(service=service_name, version=version).set(1)

        # Collector specific
        self.records_emitted_total = Counter(
            "collector_records_emitted_total",
            "Event records pushed to the output channel",
            ["outcome"],
            registry=self.registry,
        )

        self.rejections_total = Counter(
            "collector_rejections_total",
            "Submissions rejected by the collector",
            ["reason", "status"],
            registry=self.registry,
        )

        self.body_size_bytes = Histogram(
            "collector_body_size_bytes",
            "Accepted body size in bytes",
            buckets=(64, 256, 1024, 4096, 10240, 65536, 1048576),
            registry=self.registry,
        )

        self.channel_dropped_total = Counter(
            "collector_channel_dropped_total",
            "Records evicted from a subscriber buffer",
            registry=self.registry,
        )

    def record_emitted(self, accepted: bool):
        """Record a push into the output channel."""
        self.records_emitted_total.labels(outcome="accepted" if accepted else "failed").inc()

    def record_rejection(self, reason: str, status: int):
        """Record a rejected submission."""
        self.rejections_total.labels(reason=reason, status=str(status)).inc()

    def record_body_size(self, size_bytes: int):
        self.body_size_bytes.observe(size_bytes)

    def record_channel_drop(self):
        self.channel_dropped_total.inc()
