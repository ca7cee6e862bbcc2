"""
Shared metrics configuration for the JWKS bearer authentication service.
"""

from typing import Dict, Any, Optional

from prometheus_client import CollectorRegistry, Counter, Gauge, Histogram, Info, generate_latest


class MetricsCollector:
    """Centralized metrics collector for services.

    Each collector owns its registry unless one is passed in, so several
    collectors (one per test, for instance) never clash on metric names.
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
            ["method", "endpoint", "status_code"],
            registry=self.registry
        )

        self._metrics["http_request_duration_seconds"] = Histogram(
            "http_request_duration_seconds",
            "HTTP request duration in seconds",
            ["method", "endpoint"],
            registry=self.registry
        )

        # Health check metrics
        self._metrics["health_check_total"] = Counter(
            "health_check_total",
            "Total health check requests",
            ["status"],
            registry=self.registry
        )

        # JWKS metrics
        self._metrics["jwks_refresh_total"] = Counter(
            "jwks_refresh_total",
            "JWKS refresh attempts",
            ["jwks_url", "outcome"],
            registry=self.registry
        )

        self._metrics["jwks_refresh_duration_seconds"] = Histogram(
            "jwks_refresh_duration_seconds",
            "JWKS fetch duration in seconds",
            ["jwks_url"],
            registry=self.registry
        )

        self._metrics["jwks_cached_keys"] = Gauge(
            "jwks_cached_keys",
            "Number of signing keys currently cached",
            ["jwks_url"],
            registry=self.registry
        )

        # Authentication metrics
        self._metrics["authentication_total"] = Counter(
            "authentication_total",
            "Bearer authentication outcomes",
            ["middleware", "outcome"],
            registry=self.registry
        )

    def record_http_request(self, method: str, endpoint: str, status_code: int, duration: float):
        """Record HTTP request metrics."""
        self._metrics["http_requests_total"].labels(
            method=method,
            endpoint=endpoint,
            status_code=str(status_code)
        ).inc()

        self._metrics["http_request_duration_seconds"].labels(
            method=method,
            endpoint=endpoint
        ).observe(duration)

    def record_health_check(self, status: str):
        """Record health check metrics."""
        self._metrics["health_check_total"].labels(status=status).inc()

    def record_jwks_refresh(self, jwks_url: str, outcome: str, duration: float):
        """Record a JWKS refresh attempt."""
        self._metrics["jwks_refresh_total"].labels(jwks_url=jwks_url, outcome=outcome).inc()
        self._metrics["jwks_refresh_duration_seconds"].labels(jwks_url=jwks_url).observe(duration)

    def set_jwks_cached_keys(self, jwks_url: str, count: int):
        """Set the number of cached keys for a JWKS endpoint."""
        self._metrics["jwks_cached_keys"].labels(jwks_url=jwks_url).set(count)

    def record_authentication(self, middleware: str, outcome: str):
        """Record a bearer authentication outcome."""
        self._metrics["authentication_total"].labels(middleware=middleware, outcome=outcome).inc()

    def render(self) -> bytes:
        """Render the registry in Prometheus text format."""
        return generate_latest(self.registry)

