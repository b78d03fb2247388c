"""
Metrics Collector for the chat gateway.

Centralizes counters for connections, deliveries, signaling and calls.
Everything runs on one event loop, so plain increments are atomic between
awaits.
"""

from __future__ import annotations

from dataclasses import dataclass, asdict
from typing import Any


@dataclass
class DeliveryMetrics:
    """Metrics for outbound event delivery."""
    sent: int = 0
    failed: int = 0
    broadcasts: int = 0
    room_fanouts: int = 0


@dataclass
class ConnectionMetrics:
    """Metrics for connection management."""
    accepted: int = 0
    rejected_limit: int = 0
    rejected_auth: int = 0
    rejected_origin: int = 0
    rejected_rate_limit: int = 0
    superseded: int = 0
    timeouts: int = 0


@dataclass
class CallMetrics:
    """Metrics for the call state machine."""
    initiated: int = 0
    failed: int = 0
    offline: int = 0
    accepted: int = 0
    rejected: int = 0
    connected: int = 0
    ended: int = 0
    ring_timeouts: int = 0
    swept: int = 0


@dataclass
class CommandMetrics:
    """Metrics for inbound command processing."""
    processed: int = 0
    invalid: int = 0
    signals_relayed: int = 0
    signals_dropped: int = 0


class MetricsCollector:
    """
    Metrics collector for the chat gateway.

    Usage:
        metrics = MetricsCollector()
        metrics.increment("calls", "initiated")
        stats = metrics.get_snapshot()
    """

    def __init__(self) -> None:
        self._delivery = DeliveryMetrics()
        self._connections = ConnectionMetrics()
        self._calls = CallMetrics()
        self._commands = CommandMetrics()
        self._custom: dict[str, int] = {}

    def _group(self, category: str) -> Any:
        groups = {
            "delivery": self._delivery,
            "connections": self._connections,
            "calls": self._calls,
            "commands": self._commands,
        }
        try:
            return groups[category]
        except KeyError:
            raise ValueError(f"Unknown metrics category: {category}") from None

    def increment(self, category: str, name: str, count: int = 1) -> None:
        """Increment ``category.name`` by ``count``."""
        group = self._group(category)
        if not hasattr(group, name):
            raise ValueError(f"Unknown metric {category}.{name}")
        setattr(group, name, getattr(group, name) + count)

    def increment_custom(self, name: str, count: int = 1) -> None:
        self._custom[name] = self._custom.get(name, 0) + count

    def get_snapshot(self) -> dict[str, Any]:
        """
        Get a snapshot of all metrics.

        Metric names follow the pattern ``{category}_{metric}``.
        """
        snapshot: dict[str, Any] = {}
        for category in ("delivery", "connections", "calls", "commands"):
            for name, value in asdict(self._group(category)).items():
                snapshot[f"{category}_{name}"] = value
        snapshot.update(self._custom)
        return snapshot

    def reset(self) -> dict[str, Any]:
        """Reset all metrics and return the previous values."""
        snapshot = self.get_snapshot()
        self._delivery = DeliveryMetrics()
        self._connections = ConnectionMetrics()
        self._calls = CallMetrics()
        self._commands = CommandMetrics()
        self._custom.clear()
        return snapshot
