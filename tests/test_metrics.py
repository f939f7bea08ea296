"""
Tests for the pipeline telemetry collector.
"""

import pytest

from volradar.metrics import LatencyTracker, MetricsCollector, RateTracker


class FakeClock:
    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


class TestRateTracker:
    def test_rate_covers_trailing_window(self):
        clock = FakeClock()
        tracker = RateTracker(window_s=10.0, clock=clock)
        for _ in range(20):
            tracker.record()

        assert tracker.get_stats().rate_per_second == pytest.approx(2.0)

        clock.now += 10.0
        stats = tracker.get_stats()
        assert stats.rate_per_second == 0.0
        assert stats.total_count == 20


class TestLatencyTracker:
    def test_percentiles(self):
        tracker = LatencyTracker()
        for ms in range(1, 101):
            tracker.record(float(ms))

        stats = tracker.get_stats()
        assert stats.count == 100
        assert stats.mean_ms == pytest.approx(50.5)
        assert stats.max_ms == 100.0
        assert stats.p50_ms == 50.0
        assert stats.p95_ms == 95.0

    def test_empty(self):
        stats = LatencyTracker().get_stats()
        assert stats.count == 0
        assert stats.mean_ms == 0.0


class TestMetricsCollector:
    def test_summary_groups_alert_counters(self):
        metrics = MetricsCollector()
        metrics.increment("alerts.volume_breakout")
        metrics.increment("alerts.volume_breakout")
        metrics.increment("alerts.vpt_alert")
        metrics.increment("failovers")
        metrics.record_event("frames", 3)
        with metrics.time("kline_handler"):
            pass

        summary = metrics.get_summary()
        assert summary["alerts"] == {"volume_breakout": 2, "vpt_alert": 1}
        assert summary["frames"]["total"] == 3
        assert summary["connection"] == {"reconnections": 0, "failovers": 1}
        assert metrics.get_latency_stats("kline_handler").count == 1

    def test_unknown_names(self):
        metrics = MetricsCollector()
        assert metrics.get_counter("missing") == 0
        assert metrics.get_latency_stats("missing") is None
        assert metrics.get_rate_stats("missing") is None

    def test_reset(self):
        metrics = MetricsCollector()
        metrics.increment("notifications")
        metrics.record_event("frames")
        metrics.reset()
        assert metrics.get_counter("notifications") == 0
        assert metrics.get_rate_stats("frames") is None
