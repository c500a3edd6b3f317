"""
Metrics and observability components.

Internal metrics collection and Prometheus exposition.
"""

from relay_gateway.components.metrics.collector import (
    MetricsCollector,
    ConnectionMetrics,
    MessageMetrics,
    DeliveryMetrics,
)
from relay_gateway.components.metrics.prometheus import (
    PrometheusFormatter,
    generate_prometheus_metrics,
)

__all__ = [
    # Metrics collector
    "MetricsCollector",
    "ConnectionMetrics",
    "MessageMetrics",
    "DeliveryMetrics",
    # Prometheus
    "PrometheusFormatter",
    "generate_prometheus_metrics",
]
