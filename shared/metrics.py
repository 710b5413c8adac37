"""
Shared metrics configuration for the edge proxy control plane.
"""

from typing import Any, Dict, Optional

from prometheus_client import CollectorRegistry, Counter, Histogram, Info, generate_latest


class MetricsCollector:
    """Centralized metrics collector for services.

    Each collector owns its registry so several service instances can live in
    one process (tests, the propagator worker next to the edge app).
    """

    def __init__(self, service_name: str, registry: Optional[CollectorRegistry] = None):
        self.service_name = service_name
        self.registry = registry if registry is not None else CollectorRegistry()
        self._metrics: Dict[str, Any] = {}
        self._setup_metrics()

    def _setup_metrics(self):
        """Set up common metrics for the service."""

        self._metrics["service_info"] = Info(
            "service_info",
            "Service information",
            registry=self.registry
        )
        self._metrics["service_info"].info({
            "service": self.service_name,
            "version": "1.0.0"
        })

        # HTTP metrics
        self._metrics["http_requests_total"] = Counter(
            "http_requests_total",
            "Total HTTP requests",
            ["method", "route", "status_code"],
            registry=self.registry
        )

        self._metrics["http_request_duration_seconds"] = Histogram(
            "http_request_duration_seconds",
            "HTTP request duration in seconds",
            ["method", "route"],
            registry=self.registry
        )

        self._metrics["errors_total"] = Counter(
            "errors_total",
            "Total errors",
            ["error_type", "service"],
            registry=self.registry
        )

        self._setup_edge_metrics()

    def _setup_edge_metrics(self):
        """Set up edge-specific metrics."""
        self._metrics["cache_hits_total"] = Counter(
            "edge_cache_hits_total",
            "Total edge cache hits",
            ["entity_type"],
            registry=self.registry
        )

        self._metrics["cache_misses_total"] = Counter(
            "edge_cache_misses_total",
            "Total edge cache misses",
            ["entity_type"],
            registry=self.registry
        )

        self._metrics["store_reads_total"] = Counter(
            "edge_store_reads_total",
            "Authoritative config store reads",
            ["entity_type", "result"],
            registry=self.registry
        )

        self._metrics["auth_decisions_total"] = Counter(
            "edge_auth_decisions_total",
            "Inbound authentication decisions",
            ["auth_type", "outcome"],
            registry=self.registry
        )

        self._metrics["upstream_requests_total"] = Counter(
            "edge_upstream_requests_total",
            "Requests forwarded to proxy targets",
            ["result"],
            registry=self.registry
        )

        self._metrics["upstream_duration_seconds"] = Histogram(
            "edge_upstream_duration_seconds",
            "Time to first byte from proxy targets",
            registry=self.registry
        )

        self._metrics["propagation_events_total"] = Counter(
            "edge_propagation_events_total",
            "Change events applied to the edge cache",
            ["entity_type", "change_kind", "status"],
            registry=self.registry
        )

    def get_metric(self, name: str):
        """Get a metric by name."""
        return self._metrics.get(name)

    def render(self) -> bytes:
        """Render the registry in Prometheus text format."""
        return generate_latest(self.registry)

    def record_http_request(self, method: str, route: str, status_code: int, duration: float):
        """Record HTTP request metrics."""
        self._metrics["http_requests_total"].labels(
            method=method,
            route=route,
            status_code=str(status_code)
        ).inc()

        self._metrics["http_request_duration_seconds"].labels(
            method=method,
            route=route
        ).observe(duration)

    def record_error(self, error_type: str, service: Optional[str] = None):
        """Record error metrics."""
        service_name = service or self.service_name
        self._metrics["errors_total"].labels(error_type=error_type, service=service_name).inc()

    def increment_counter(self, metric_name: str, **labels):
        """Increment a counter metric."""
        if metric_name in self._metrics:
            self._metrics[metric_name].labels(**labels).inc()


def get_metrics_collector(service_name: str, registry: Optional[CollectorRegistry] = None) -> MetricsCollector:
    """Get a metrics collector for a service."""
    return MetricsCollector(service_name, registry)
