"""
Prometheus Metrics Export for the Signal Relay.

Formats internal metrics in Prometheus exposition format.
No external dependencies required.
"""

from __future__ import annotations

import time
from enum import Enum
from typing import Any, TYPE_CHECKING

if TYPE_CHECKING:
    from relay_gateway.connection_manager import RelayManager


class MetricType(str, Enum):
    """Prometheus metric types."""

    COUNTER = "counter"
    GAUGE = "gauge"


# (stats source, key, metric suffix, help text, type)
# source "stats" reads the manager stats, "metrics" the collector snapshot,
# "heartbeat" the monitor stats.
_SIMPLE_METRICS: list[tuple[str, str, str, str, MetricType]] = [
    # Connection gauges
    ("stats", "total_connections", "peers_connected", "Current number of registered peers", MetricType.GAUGE),
    ("stats", "max_connections", "peers_max", "Maximum number of registered peers", MetricType.GAUGE),
    ("stats", "utilization_percent", "peers_utilization_percent", "Registry utilization percentage", MetricType.GAUGE),
    # Connection counters
    ("metrics", "connections_admitted", "connections_admitted_total", "Peers admitted and announced", MetricType.COUNTER),
    ("metrics", "connections_accept_failures", "connections_accept_failures_total", "Handshakes that failed after admission", MetricType.COUNTER),
    ("metrics", "connections_disconnected", "connections_disconnected_total", "Peers torn down for any reason", MetricType.COUNTER),
    ("metrics", "connections_evicted", "connections_evicted_total", "Peers evicted for heartbeat timeout", MetricType.COUNTER),
    ("metrics", "connections_transport_errors", "connections_transport_errors_total", "Receive loops ended by a transport error", MetricType.COUNTER),
    # Message counters
    ("metrics", "messages_relayed", "messages_relayed_total", "Peer messages routed", MetricType.COUNTER),
    ("metrics", "messages_unicast", "messages_unicast_total", "Peer messages delivered by unicast", MetricType.COUNTER),
    ("metrics", "messages_broadcast", "messages_broadcast_total", "Peer messages delivered by broadcast", MetricType.COUNTER),
    ("metrics", "messages_heartbeats", "messages_heartbeats_total", "Heartbeat frames absorbed", MetricType.COUNTER),
    ("metrics", "messages_oversized", "messages_oversized_total", "Frames over the size limit", MetricType.COUNTER),
    # Delivery counters
    ("metrics", "deliveries_sent", "deliveries_sent_total", "Frames sent to peers", MetricType.COUNTER),
    ("metrics", "deliveries_failed", "deliveries_failed_total", "Frames that could not be sent", MetricType.COUNTER),
    ("metrics", "deliveries_probes_sent", "probes_sent_total", "Liveness probes sent", MetricType.COUNTER),
    # Heartbeat gauges
    ("heartbeat", "interval_seconds", "heartbeat_interval_seconds", "Seconds between liveness sweeps", MetricType.GAUGE),
    ("heartbeat", "timeout_seconds", "heartbeat_timeout_seconds", "Heartbeat timeout", MetricType.GAUGE),
    ("heartbeat", "oldest_heartbeat_age", "heartbeat_oldest_age_seconds", "Oldest heartbeat age in seconds", MetricType.GAUGE),
    ("heartbeat", "cycles", "heartbeat_sweeps_total", "Liveness sweeps run", MetricType.COUNTER),
]


class PrometheusFormatter:
    """
    Formats metrics in Prometheus text exposition format.

    Reference: https://prometheus.io/docs/instrumenting/exposition_formats/

    Usage:
        formatter = PrometheusFormatter()
        output = formatter.format_all_metrics(manager.get_stats())
    """

    def __init__(self, prefix: str = "signal_relay"):
        self._prefix = prefix

    def name(self, suffix: str) -> str:
        return f"{self._prefix}_{suffix}"

    def format_metric(
        self,
        name: str,
        value: float | int,
        help_text: str,
        metric_type: MetricType,
        labels: dict[str, str] | None = None,
    ) -> str:
        """
        Format a single metric in Prometheus format.

        Args:
            name: Metric name.
            value: Metric value.
            help_text: Help text description.
            metric_type: Prometheus metric type.
            labels: Optional label key-value pairs.

        Returns:
            Prometheus-formatted metric string.
        """
        lines = [
            f"# HELP {name} {help_text}",
            f"# TYPE {name} {metric_type.value}",
        ]
        lines.append(f"{name}{self._labels(labels)} {value}")
        return "\n".join(lines)

    def format_labeled(
        self,
        name: str,
        help_text: str,
        metric_type: MetricType,
        samples: list[tuple[dict[str, str], float | int]],
    ) -> str:
        """Format one metric family with several labeled samples."""
        lines = [
            f"# HELP {name} {help_text}",
            f"# TYPE {name} {metric_type.value}",
        ]
        for labels, value in samples:
            lines.append(f"{name}{self._labels(labels)} {value}")
        return "\n".join(lines)

    @staticmethod
    def _labels(labels: dict[str, str] | None) -> str:
        if not labels:
            return ""
        label_str = ",".join(f'{k}="{v}"' for k, v in labels.items())
        return f"{{{label_str}}}"

    def format_all_metrics(self, stats: dict[str, Any]) -> str:
        """
        Format all metrics from RelayManager stats.

        Args:
            stats: Stats dictionary from RelayManager.get_stats().

        Returns:
            Complete Prometheus exposition format string.
        """
        sources = {
            "stats": stats,
            "metrics": stats.get("metrics", {}),
            "heartbeat": stats.get("heartbeat_stats", {}),
        }
        metrics = sources["metrics"]
        lines: list[str] = []

        for source, key, suffix, help_text, metric_type in _SIMPLE_METRICS:
            lines.append(self.format_metric(
                self.name(suffix),
                sources[source].get(key, 0),
                help_text,
                metric_type,
            ))

        # Rejections by reason
        lines.append(self.format_labeled(
            self.name("connections_rejected_total"),
            "Rejected connections by reason",
            MetricType.COUNTER,
            [
                ({"reason": "capacity"}, metrics.get("connections_rejected_capacity", 0)),
                ({"reason": "shutdown"}, metrics.get("connections_rejected_shutdown", 0)),
            ],
        ))

        # Dropped frames by validation failure kind
        invalid_by_kind = metrics.get("messages_invalid_by_kind", {})
        lines.append(self.format_labeled(
            self.name("messages_invalid_total"),
            "Dropped invalid frames by kind",
            MetricType.COUNTER,
            [({"kind": kind}, count) for kind, count in sorted(invalid_by_kind.items())]
            or [({"kind": "none"}, 0)],
        ))

        lines.append(self.format_metric(
            self.name("shutting_down"),
            int(bool(stats.get("shutting_down", False))),
            "1 while the relay is shutting down",
            MetricType.GAUGE,
        ))

        # Timestamp
        lines.append(self.format_metric(
            self.name("scrape_timestamp"),
            int(time.time()),
            "Timestamp of metrics scrape",
            MetricType.GAUGE,
        ))

        return "\n".join(lines) + "\n"


def generate_prometheus_metrics(manager: "RelayManager") -> str:
    """
    Generate Prometheus metrics from a RelayManager.

    Args:
        manager: RelayManager instance.

    Returns:
        Prometheus exposition format string.
    """
    return PrometheusFormatter().format_all_metrics(manager.get_stats())
