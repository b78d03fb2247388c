"""
Infrastructure helpers shared by the gateway.
"""

from shared.infrastructure.correlation import (
    CorrelationIdFilter,
    correlation_scope,
    get_correlation_id,
)

__all__ = [
    "CorrelationIdFilter",
    "correlation_scope",
    "get_correlation_id",
]
