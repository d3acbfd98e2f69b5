"""Operation metrics for asset-timeline.

Example:
    >>> from src.metrics import MetricsCollector
    >>> metrics = MetricsCollector()
    >>> metrics.record_operation("undo", 2.5, success=True)
    >>> metrics.get_operation_metrics("undo").total
    1

Features:
    - ``MetricsSink`` protocol accepted by SessionStore
    - Bounded, time-pruned in-memory operation log
    - Success/error rates and mean/p95/p99 latency per operation
"""

from .lib import (
    MetricsCollector,
    MetricsSink,
    MetricsSnapshot,
    OperationMetrics,
    OperationRecord,
)

__all__ = [
    "MetricsSink",
    "MetricsCollector",
    "MetricsSnapshot",
    "OperationMetrics",
    "OperationRecord",
]
