"""
Metrics and observability components.
"""

from chat_gateway.components.metrics.collector import (
    MetricsCollector,
    DeliveryMetrics,
    ConnectionMetrics,
    CallMetrics,
    CommandMetrics,
)

__all__ = [
    "MetricsCollector",
    "DeliveryMetrics",
    "ConnectionMetrics",
    "CallMetrics",
    "CommandMetrics",
]
