"""In-process operation metrics for asset-timeline.

The state engine reports every timed operation to a ``MetricsSink``. The
bundled ``MetricsCollector`` keeps a bounded in-memory log and aggregates
it on demand (success/error rates, mean/p95/p99 latency via numpy).
"""

import logging
import threading
import time
from collections import Counter
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from typing import Any, Protocol, runtime_checkable

import numpy as np

from src.config import EnvVar, get_environment

logger = logging.getLogger(__name__)

RECENT_OPERATIONS = 50


@runtime_checkable
class MetricsSink(Protocol):
    """Receiver of operation measurements."""

    def record_operation(
        self,
        name: str,
        duration_ms: float,
        success: bool,
        error_type: str | None = None,
        session_id: str | None = None,
    ) -> None:
        """Record one timed operation."""
        ...

    def record_session_created(self, session_id: str) -> None:
        """Record that a session was created."""
        ...

    def record_session_closed(self, session_id: str) -> None:
        """Record that a session was closed or deleted."""
        ...


# =============================================================================
# Records
# =============================================================================


@dataclass
class OperationRecord:
    """One measured operation."""

    name: str
    duration_ms: float
    success: bool
    error_type: str | None = None
    session_id: str | None = None
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "duration_ms": self.duration_ms,
            "success": self.success,
            "error_type": self.error_type,
            "session_id": self.session_id,
            "timestamp": self.timestamp.isoformat(),
        }


@dataclass
class OperationMetrics:
    """Aggregate of all records of one operation name."""

    total: int = 0
    successful: int = 0
    failed: int = 0
    success_rate: float = 0.0
    error_rate: float = 0.0
    mean_latency_ms: float = 0.0
    p95_latency_ms: float = 0.0
    p99_latency_ms: float = 0.0
    errors_by_type: dict[str, int] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "total": self.total,
            "successful": self.successful,
            "failed": self.failed,
            "success_rate": self.success_rate,
            "error_rate": self.error_rate,
            "mean_latency_ms": self.mean_latency_ms,
            "p95_latency_ms": self.p95_latency_ms,
            "p99_latency_ms": self.p99_latency_ms,
            "errors_by_type": dict(self.errors_by_type),
        }


@dataclass
class MetricsSnapshot:
    """Point-in-time view of the collector."""

    timestamp: datetime
    active_sessions: int
    sessions_created: int
    sessions_closed: int
    operations: dict[str, OperationMetrics]
    recent_operations: list[OperationRecord]
    uptime_seconds: float

    def to_dict(self) -> dict[str, Any]:
        return {
            "timestamp": self.timestamp.isoformat(),
            "active_sessions": self.active_sessions,
            "sessions_created": self.sessions_created,
            "sessions_closed": self.sessions_closed,
            "operations": {name: m.to_dict() for name, m in self.operations.items()},
            "recent_operations": [op.to_dict() for op in self.recent_operations],
            "uptime_seconds": self.uptime_seconds,
        }


# =============================================================================
# Collector
# =============================================================================


class MetricsCollector:
    """Bounded in-memory metrics sink.

    Records older than the retention window are pruned whenever the log
    exceeds ``max_operations``; if it is still too long afterwards, the
    oldest records are dropped.

    Args:
        max_operations: Log size that triggers pruning
            (default ASSET_METRICS_MAX_OPERATIONS).
        retention_hours: Record lifetime (default ASSET_METRICS_RETENTION_HOURS).
    """

    def __init__(
        self,
        max_operations: int | None = None,
        retention_hours: int | None = None,
    ):
        self._max_operations = max(
            1, get_environment(EnvVar.ASSET_METRICS_MAX_OPERATIONS, override=max_operations)
        )
        self._retention = timedelta(
            hours=get_environment(EnvVar.ASSET_METRICS_RETENTION_HOURS, override=retention_hours)
        )
        self._lock = threading.Lock()
        self._operations: list[OperationRecord] = []
        self._active_sessions: dict[str, int] = {}
        self._sessions_created = 0
        self._sessions_closed = 0
        self._started = time.monotonic()

    # =========================================================================
    # Sink interface
    # =========================================================================

    def record_operation(
        self,
        name: str,
        duration_ms: float,
        success: bool,
        error_type: str | None = None,
        session_id: str | None = None,
    ) -> None:
        record = OperationRecord(
            name=name,
            duration_ms=float(duration_ms),
            success=success,
            error_type=error_type,
            session_id=session_id,
        )
        with self._lock:
            self._operations.append(record)
            if session_id in self._active_sessions:
                self._active_sessions[session_id] += 1
            if len(self._operations) > self._max_operations:
                self._prune()

        if not success and error_type:
            logger.warning(
                f"Operation {name} failed with {error_type} after {duration_ms:.1f}ms"
            )

    def record_session_created(self, session_id: str) -> None:
        with self._lock:
            self._active_sessions[session_id] = 0
            self._sessions_created += 1

    def record_session_closed(self, session_id: str) -> None:
        with self._lock:
            operation_count = self._active_sessions.pop(session_id, None)
            if operation_count is None:
                return
            self._sessions_closed += 1
        logger.debug(f"Session {session_id} closed after {operation_count} operations")

    # =========================================================================
    # Aggregation
    # =========================================================================

    @property
    def active_session_count(self) -> int:
        with self._lock:
            return len(self._active_sessions)

    def get_operation_metrics(self, name: str) -> OperationMetrics:
        """Aggregate every record of one operation name."""
        with self._lock:
            records = [op for op in self._operations if op.name == name]
        return _aggregate(records)

    def get_all_operation_metrics(self) -> dict[str, OperationMetrics]:
        """Aggregate per operation name."""
        with self._lock:
            records = list(self._operations)
        grouped: dict[str, list[OperationRecord]] = {}
        for record in records:
            grouped.setdefault(record.name, []).append(record)
        return {name: _aggregate(group) for name, group in grouped.items()}

    def get_snapshot(self) -> MetricsSnapshot:
        operations = self.get_all_operation_metrics()
        with self._lock:
            return MetricsSnapshot(
                timestamp=datetime.now(UTC),
                active_sessions=len(self._active_sessions),
                sessions_created=self._sessions_created,
                sessions_closed=self._sessions_closed,
                operations=operations,
                recent_operations=self._operations[-RECENT_OPERATIONS:],
                uptime_seconds=time.monotonic() - self._started,
            )

    def get_summary(self) -> str:
        """Human-readable multi-line summary."""
        snapshot = self.get_snapshot()
        lines = [
            "=== Asset Timeline Metrics ===",
            f"Uptime: {round(snapshot.uptime_seconds / 60)} minutes",
            f"Active Sessions: {snapshot.active_sessions}",
            f"Sessions Created: {snapshot.sessions_created}",
            f"Sessions Closed: {snapshot.sessions_closed}",
            "",
            "Operations:",
        ]
        for name, metrics in snapshot.operations.items():
            lines.append(f"  {name}:")
            lines.append(f"    Total: {metrics.total}")
            lines.append(f"    Success Rate: {metrics.success_rate * 100:.1f}%")
            lines.append(f"    Error Rate: {metrics.error_rate * 100:.1f}%")
            lines.append(f"    Mean Latency: {metrics.mean_latency_ms:.1f}ms")
            lines.append(f"    P95 Latency: {metrics.p95_latency_ms:.1f}ms")
            lines.append(f"    P99 Latency: {metrics.p99_latency_ms:.1f}ms")
            if metrics.errors_by_type:
                lines.append("    Errors by Type:")
                for error_type, count in metrics.errors_by_type.items():
                    lines.append(f"      {error_type}: {count}")
        return "\n".join(lines)

    def reset(self) -> None:
        with self._lock:
            self._operations.clear()
            self._active_sessions.clear()
            self._sessions_created = 0
            self._sessions_closed = 0
            self._started = time.monotonic()
        logger.info("Metrics reset")

    def __len__(self) -> int:
        with self._lock:
            return len(self._operations)

    def _prune(self) -> None:
        # Caller holds the lock.
        cutoff = datetime.now(UTC) - self._retention
        before = len(self._operations)
        kept = [op for op in self._operations if op.timestamp > cutoff]
        if len(kept) > self._max_operations:
            kept = kept[-self._max_operations :]
        self._operations = kept
        logger.debug(f"Pruned {before - len(kept)} operation records, {len(kept)} remain")


def _aggregate(records: list[OperationRecord]) -> OperationMetrics:
    if not records:
        return OperationMetrics()

    latencies = np.array([op.duration_ms for op in records], dtype=float)
    successful = sum(1 for op in records if op.success)
    failed = len(records) - successful
    errors = Counter(op.error_type for op in records if not op.success and op.error_type)

    return OperationMetrics(
        total=len(records),
        successful=successful,
        failed=failed,
        success_rate=successful / len(records),
        error_rate=failed / len(records),
        mean_latency_ms=float(np.mean(latencies)),
        p95_latency_ms=float(np.percentile(latencies, 95)),
        p99_latency_ms=float(np.percentile(latencies, 99)),
        errors_by_type=dict(errors),
    )


__all__ = [
    "MetricsSink",
    "OperationRecord",
    "OperationMetrics",
    "MetricsSnapshot",
    "MetricsCollector",
]
