"""
Prometheus metrics for the Media Gate access layer.
"""

from typing import Any, Dict, Optional, Sequence

from prometheus_client import CollectorRegistry, Counter, Histogram, Info, generate_latest


# Access decisions are sub-second; the tail buckets catch store timeouts
LATENCY_BUCKETS = (0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.0, 5.0)


class MetricsCollector:
    """
    Holds the collectors of one service instance.

    Each collector gets its own registry unless one is passed in, so several
    service instances (as in tests) never register the same name twice.
    """

    def __init__(self, service_name: str, registry: Optional[CollectorRegistry] = None):
        self.service_name = service_name
        self.registry = registry if registry is not None else CollectorRegistry()
        self._metrics: Dict[str, Any] = {}

        info = Info("service", "Service information", registry=self.registry)
        info.info({"service": service_name, "version": "1.0.0"})
        self._metrics["service_info"] = info

        self._setup_http_metrics()
        self._setup_access_metrics()

    def _counter(self, name: str, documentation: str, labels: Sequence[str] = ()):
        self._metrics[name] = Counter(name, documentation, list(labels), registry=self.registry)

    def _setup_http_metrics(self):
        self._counter("http_requests_total", "HTTP requests by route template", ["method", "endpoint", "status_code"])
        self._metrics["http_request_duration_seconds"] = Histogram(
            "http_request_duration_seconds",
            "HTTP request duration in seconds",
            ["method", "endpoint"],
            buckets=LATENCY_BUCKETS,
            registry=self.registry
        )
        self._counter("health_check_total", "Health check results", ["status"])
        self._counter("errors_total", "Error responses by error code", ["error_type", "service"])

    def _setup_access_metrics(self):
        # outcome: allowed | denied | fail_open | fail_closed
        self._counter("quota_decisions_total", "Quota decisions", ["action", "outcome"])
        # result: hit | miss | bypass | error
        self._counter("cache_lookups_total", "Response cache lookups", ["result"])
        self._counter("preview_link_events_total", "Preview link lifecycle events", ["event"])
        self._counter("signed_urls_total", "Signed delivery URLs issued")
        self._counter("store_errors_total", "Backing store failures", ["store", "operation"])

    def get_metric(self, name: str):
        return self._metrics.get(name)

    def render(self) -> bytes:
        """Registry contents in the Prometheus text format."""
        return generate_latest(self.registry)

    def record_http_request(self, method: str, endpoint: str, status_code: int, duration: float):
        self._metrics["http_requests_total"].labels(
            method=method, endpoint=endpoint, status_code=str(status_code)
        ).inc()
        self._metrics["http_request_duration_seconds"].labels(method=method, endpoint=endpoint).observe(duration)

    def record_health_check(self, status: str):
        self._metrics["health_check_total"].labels(status=status).inc()

    def record_error(self, error_type: str, service: Optional[str] = None):
        self._metrics["errors_total"].labels(error_type=error_type, service=service or self.service_name).inc()

    def increment_counter(self, metric_name: str, **labels):
        """Increment a named counter; unknown names are ignored."""
        metric = self._metrics.get(metric_name)
        if metric is None:
            return
        if labels:
            metric = metric.labels(**labels)
        metric.inc()


def get_metrics_collector(service_name: str, registry: Optional[CollectorRegistry] = None) -> MetricsCollector:
    """Get a metrics collector for a service."""
    return MetricsCollector(service_name, registry)
