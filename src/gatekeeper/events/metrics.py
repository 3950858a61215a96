"""Prometheus metrics for gatekeeper observability.

Metrics Defined:
- gatekeeper_webhook_deliveries_total: Counter of deliveries by result/reason
- gatekeeper_webhook_validation_duration_seconds: Histogram of validation time
- gatekeeper_token_cache_lookups_total: Counter of cache hits and misses
- gatekeeper_token_exchanges_total: Counter of token exchanges by result
- gatekeeper_token_invalidations_total: Counter of cache invalidations
- gatekeeper_auth_failures_total: Counter of downstream auth failures

Metrics are exposed at the `/metrics` endpoint in Prometheus format.
"""

from typing import Optional

from prometheus_client import (
    REGISTRY,
    CollectorRegistry,
    Counter,
    Histogram,
    generate_latest,
)


# Validation is CPU-bound hashing plus one body read; sub-second buckets
DEFAULT_DURATION_BUCKETS = (
    0.001,
    0.005,
    0.01,
    0.025,
    0.05,
    0.1,
    0.25,
    0.5,
    1.0,
    2.5,
)


class GatekeeperMetrics:
    """Container for all gatekeeper Prometheus metrics.

    Supports custom registries so tests do not collide on the default one.

    Attributes:
        registry: The Prometheus registry for these metrics.
        webhook_deliveries_total: Deliveries by result ("accepted" or
            "rejected") and reason ("none" when accepted).
        webhook_validation_duration_seconds: Time spent validating.
        token_cache_lookups_total: Cache lookups by result ("hit"/"miss").
        token_exchanges_total: Exchanges by result ("success"/"failure").
        token_invalidations_total: Invalidations by scope ("single"/"all").
        auth_failures_total: Authentication failures seen by the executor.

    Example:
        >>> metrics = GatekeeperMetrics(registry=CollectorRegistry())
        >>> metrics.record_delivery(None)
        >>> metrics.record_token_lookup(hit=True)
    """

    def __init__(self, registry: Optional[CollectorRegistry] = None):
        """Initialize gatekeeper metrics.

        Args:
            registry: Optional Prometheus registry. If None, uses the
                      default REGISTRY. Pass a custom registry for testing.
        """
        self.registry = registry or REGISTRY

        self.webhook_deliveries_total = Counter(
            "gatekeeper_webhook_deliveries_total",
            "Total number of webhook deliveries by validation outcome",
            labelnames=["result", "reason"],
            registry=self.registry,
        )

        self.webhook_validation_duration_seconds = Histogram(
            "gatekeeper_webhook_validation_duration_seconds",
            "Time spent validating webhook deliveries in seconds",
            buckets=DEFAULT_DURATION_BUCKETS,
            registry=self.registry,
        )

        self.token_cache_lookups_total = Counter(
            "gatekeeper_token_cache_lookups_total",
            "Installation token cache lookups",
            labelnames=["result"],
            registry=self.registry,
        )

        self.token_exchanges_total = Counter(
            "gatekeeper_token_exchanges_total",
            "Installation token exchanges with the platform",
            labelnames=["result"],
            registry=self.registry,
        )

        self.token_invalidations_total = Counter(
            "gatekeeper_token_invalidations_total",
            "Installation token cache invalidations",
            labelnames=["scope"],
            registry=self.registry,
        )

        self.auth_failures_total = Counter(
            "gatekeeper_auth_failures_total",
            "Downstream API calls rejected for authentication reasons",
            registry=self.registry,
        )

    def record_delivery(self, reason: Optional[object]) -> None:
        """Record a validation outcome.

        Args:
            reason: The RejectionReason, or None for an accepted delivery.
        """
        if reason is None:
            self.webhook_deliveries_total.labels(result="accepted", reason="none").inc()
            return
        label = getattr(reason, "value", str(reason))
        self.webhook_deliveries_total.labels(result="rejected", reason=label).inc()

    def record_validation_duration(self, duration_seconds: float) -> None:
        self.webhook_validation_duration_seconds.observe(max(0.0, duration_seconds))

    def record_token_lookup(self, hit: bool) -> None:
        self.token_cache_lookups_total.labels(result="hit" if hit else "miss").inc()

    def record_token_exchange(self, success: bool) -> None:
        result = "success" if success else "failure"
        self.token_exchanges_total.labels(result=result).inc()

    def record_invalidation(self, all_entries: bool) -> None:
        scope = "all" if all_entries else "single"
        self.token_invalidations_total.labels(scope=scope).inc()

    def record_auth_failure(self) -> None:
        self.auth_failures_total.inc()


# Global metrics instance for the default registry
_default_metrics: Optional[GatekeeperMetrics] = None


def get_metrics(registry: Optional[CollectorRegistry] = None) -> GatekeeperMetrics:
    """Get or create the gatekeeper metrics instance.

    Args:
        registry: Optional Prometheus registry. If None, returns the
                  global metrics instance for the default registry.

    Returns:
        GatekeeperMetrics: The metrics instance.
    """
    global _default_metrics

    if registry is not None:
        return GatekeeperMetrics(registry=registry)

    if _default_metrics is None:
        _default_metrics = GatekeeperMetrics()

    return _default_metrics


def generate_metrics_output(registry: Optional[CollectorRegistry] = None) -> bytes:
    """Generate Prometheus metrics output for the /metrics endpoint.

    Args:
        registry: Optional Prometheus registry. If None, uses the
                  default REGISTRY.

    Returns:
        bytes: Prometheus metrics in text format.
    """
    target_registry = registry or REGISTRY
    return generate_latest(target_registry)
