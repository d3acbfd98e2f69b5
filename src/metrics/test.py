"""Tests for the metrics collector."""

import threading
from datetime import UTC, datetime, timedelta

import pytest

from .lib import MetricsCollector, MetricsSink


@pytest.fixture
def collector():
    """Collector with a small log."""
    return MetricsCollector(max_operations=5, retention_hours=1)


class TestMetricsCollector:
    """Tests for recording and aggregation."""

    @pytest.mark.unit
    def test_implements_sink(self, collector):
        """Collector satisfies the sink protocol."""
        assert isinstance(collector, MetricsSink)

    @pytest.mark.unit
    def test_empty_metrics(self, collector):
        """Unknown operation aggregates to zeros."""
        metrics = collector.get_operation_metrics("nothing")
        assert metrics.total == 0
        assert metrics.p95_latency_ms == 0.0

    @pytest.mark.unit
    def test_rates_and_errors(self):
        """Success and error rates and error types are aggregated."""
        collector = MetricsCollector(max_operations=100)
        collector.record_operation("save", 10, success=True)
        collector.record_operation("save", 20, success=True)
        collector.record_operation("save", 30, success=False, error_type="StorageError")
        collector.record_operation("save", 40, success=False, error_type="StorageError")

        metrics = collector.get_operation_metrics("save")
        assert metrics.total == 4
        assert metrics.successful == 2
        assert metrics.success_rate == pytest.approx(0.5)
        assert metrics.error_rate == pytest.approx(0.5)
        assert metrics.mean_latency_ms == pytest.approx(25.0)
        assert metrics.errors_by_type == {"StorageError": 2}

    @pytest.mark.unit
    def test_percentiles(self):
        """p95/p99 follow the latency distribution."""
        collector = MetricsCollector(max_operations=200)
        for latency in range(1, 101):
            collector.record_operation("undo", latency, success=True)
        metrics = collector.get_operation_metrics("undo")
        assert metrics.p95_latency_ms == pytest.approx(95.05)
        assert metrics.p99_latency_ms == pytest.approx(99.01)

    @pytest.mark.unit
    def test_log_is_bounded(self, collector):
        """The log never grows past max_operations."""
        for _ in range(12):
            collector.record_operation("redo", 1, success=True)
        assert len(collector) == 5

    @pytest.mark.unit
    def test_old_records_pruned(self, collector):
        """Records past retention are dropped when pruning runs."""
        for _ in range(5):
            collector.record_operation("redo", 1, success=True)
        stale = datetime.now(UTC) - timedelta(hours=2)
        for record in collector.get_snapshot().recent_operations:
            record.timestamp = stale
        collector.record_operation("redo", 1, success=True)
        assert len(collector) == 1

    @pytest.mark.unit
    def test_session_lifecycle(self, collector):
        """Created and closed sessions are counted."""
        collector.record_session_created("a")
        collector.record_session_created("b")
        collector.record_session_closed("a")
        collector.record_session_closed("unknown")
        snapshot = collector.get_snapshot()
        assert snapshot.active_sessions == 1
        assert snapshot.sessions_created == 2
        assert snapshot.sessions_closed == 1
        assert collector.active_session_count == 1

    @pytest.mark.unit
    def test_concurrent_recording(self):
        """Counts stay exact when several threads record at once."""
        collector = MetricsCollector(max_operations=1000)
        seen: list[tuple[int, int]] = []

        def worker(session_id: str):
            collector.record_session_created(session_id)
            for _ in range(50):
                collector.record_operation("add_iteration", 1.0, True, session_id=session_id)
                seen.append((collector.active_session_count, len(collector)))

        threads = [threading.Thread(target=worker, args=(f"s{i}",)) for i in range(4)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert collector.active_session_count == 4
        assert len(collector) == 200
        assert all(1 <= active <= 4 and 1 <= size <= 200 for active, size in seen)

    @pytest.mark.unit
    def test_snapshot_to_dict(self, collector):
        """Snapshot serializes per-operation aggregates."""
        collector.record_operation("rollback", 3, success=True, session_id="s")
        data = collector.get_snapshot().to_dict()
        assert data["operations"]["rollback"]["total"] == 1
        assert data["recent_operations"][0]["session_id"] == "s"

    @pytest.mark.unit
    def test_summary(self, collector):
        """Summary lists each operation and its errors."""
        collector.record_operation("load", 5, success=False, error_type="CorruptRecordError")
        summary = collector.get_summary()
        assert "load:" in summary
        assert "CorruptRecordError: 1" in summary

    @pytest.mark.unit
    def test_reset(self, collector):
        """Reset clears records and counters."""
        collector.record_session_created("a")
        collector.record_operation("load", 5, success=True)
        collector.reset()
        assert len(collector) == 0
        assert collector.get_snapshot().sessions_created == 0

    @pytest.mark.unit
    def test_env_defaults(self, monkeypatch):
        """Limits come from the environment when not passed."""
        monkeypatch.setenv("ASSET_METRICS_MAX_OPERATIONS", "3")
        collector = MetricsCollector()
        for _ in range(7):
            collector.record_operation("x", 1, success=True)
        assert len(collector) == 3
