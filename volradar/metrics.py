"""
Pipeline telemetry.

Counters (parse errors, reconnections, failovers, alerts.<kind>,
notifications), a sliding-window frame rate and handler latency percentiles.
The multiplexer and the pipeline write here; ``get_status`` reads a summary.
"""

import threading
import time
from collections import deque
from dataclasses import dataclass, field
from typing import Any, Deque, Dict, Optional


@dataclass
class LatencyStats:
    """Latency of one operation in milliseconds."""
    count: int = 0
    total_ms: float = 0.0
    max_ms: float = 0.0
    p50_ms: float = 0.0
    p95_ms: float = 0.0

    @property
    def mean_ms(self) -> float:
        return self.total_ms / self.count if self.count else 0.0


@dataclass
class RateStats:
    total_count: int = 0
    rate_per_second: float = 0.0


class LatencyTracker:
    """Running totals plus a bounded sample window for percentiles."""

    def __init__(self, window_size: int = 500):
        self._recent: Deque[float] = deque(maxlen=window_size)
        self._count = 0
        self._total_ms = 0.0
        self._max_ms = 0.0
        self._lock = threading.Lock()

    def record(self, latency_ms: float) -> None:
        with self._lock:
            self._recent.append(latency_ms)
            self._count += 1
            self._total_ms += latency_ms
            if latency_ms > self._max_ms:
                self._max_ms = latency_ms

    def get_stats(self) -> LatencyStats:
        with self._lock:
            ordered = sorted(self._recent)
            count, total, peak = self._count, self._total_ms, self._max_ms

        stats = LatencyStats(count=count, total_ms=total, max_ms=peak)
        if ordered:
            last = len(ordered) - 1
            stats.p50_ms = ordered[last // 2]
            stats.p95_ms = ordered[min(round(last * 0.95), last)]
        return stats


class RateTracker:
    """Events per second over the trailing ``window_s`` seconds."""

    def __init__(self, window_s: float = 10.0, clock=time.monotonic):
        self._window_s = window_s
        self._clock = clock
        self._events: Deque[tuple] = deque()
        self._total = 0
        self._lock = threading.Lock()

    def _trim(self, now: float) -> None:
        horizon = now - self._window_s
        while self._events and self._events[0][0] <= horizon:
            self._events.popleft()

    def record(self, count: int = 1) -> None:
        now = self._clock()
        with self._lock:
            self._events.append((now, count))
            self._total += count
            self._trim(now)

    def get_stats(self) -> RateStats:
        now = self._clock()
        with self._lock:
            self._trim(now)
            in_window = sum(n for _, n in self._events)
            return RateStats(total_count=self._total, rate_per_second=in_window / self._window_s)


class Timer:
    """``with collector.time("op"):`` records the block's wall time."""

    def __init__(self, tracker: LatencyTracker):
        self._tracker = tracker
        self._started = 0.0

    def __enter__(self) -> "Timer":
        self._started = time.perf_counter()
        return self

    def __exit__(self, *exc) -> None:
        self._tracker.record((time.perf_counter() - self._started) * 1000)


@dataclass
class PipelineMetrics:
    """Point-in-time view of the pipeline counters."""
    timestamp_ms: int
    frames_per_second: float = 0.0
    total_frames: int = 0
    parse_errors: int = 0
    reconnections: int = 0
    failovers: int = 0
    alerts: Dict[str, int] = field(default_factory=dict)
    notifications: int = 0
    kline_latency: LatencyStats = field(default_factory=LatencyStats)


class MetricsCollector:
    """
    Shared sink for stream and detector telemetry.

    Usage:
        metrics = MetricsCollector()

        with metrics.time("kline_handler"):
            handle(frame)

        metrics.record_event("frames")
        metrics.increment("alerts.volume_breakout")
    """

    def __init__(self):
        self._latencies: Dict[str, LatencyTracker] = {}
        self._rates: Dict[str, RateTracker] = {}
        self._counters: Dict[str, int] = {}
        self._lock = threading.Lock()
        self._started = time.time()

    def _latency(self, operation: str) -> LatencyTracker:
        with self._lock:
            return self._latencies.setdefault(operation, LatencyTracker())

    def time(self, operation: str) -> Timer:
        return Timer(self._latency(operation))

    def record_event(self, event_type: str, count: int = 1) -> None:
        with self._lock:
            tracker = self._rates.setdefault(event_type, RateTracker())
        tracker.record(count)

    def increment(self, counter: str, amount: int = 1) -> None:
        with self._lock:
            self._counters[counter] = self._counters.get(counter, 0) + amount

    def get_counter(self, name: str) -> int:
        with self._lock:
            return self._counters.get(name, 0)

    def get_latency_stats(self, operation: str) -> Optional[LatencyStats]:
        tracker = self._latencies.get(operation)
        return tracker.get_stats() if tracker else None

    def get_rate_stats(self, event_type: str) -> Optional[RateStats]:
        tracker = self._rates.get(event_type)
        return tracker.get_stats() if tracker else None

    def get_snapshot(self) -> PipelineMetrics:
        frames = self.get_rate_stats("frames") or RateStats()
        with self._lock:
            counters = dict(self._counters)
        return PipelineMetrics(
            timestamp_ms=int(time.time() * 1000),
            frames_per_second=frames.rate_per_second,
            total_frames=frames.total_count,
            parse_errors=counters.get("parse_errors", 0),
            reconnections=counters.get("reconnections", 0),
            failovers=counters.get("failovers", 0),
            alerts={k.split(".", 1)[1]: v for k, v in counters.items() if k.startswith("alerts.")},
            notifications=counters.get("notifications", 0),
            kline_latency=self.get_latency_stats("kline_handler") or LatencyStats(),
        )

    def get_summary(self) -> Dict[str, Any]:
        """Rounded, JSON-friendly view for status output."""
        snap = self.get_snapshot()
        latency = snap.kline_latency
        return {
            "uptime_s": round(time.time() - self._started, 1),
            "frames": {
                "per_second": round(snap.frames_per_second, 2),
                "total": snap.total_frames,
                "parse_errors": snap.parse_errors,
            },
            "kline_handler_ms": {
                "mean": round(latency.mean_ms, 3),
                "p50": round(latency.p50_ms, 3),
                "p95": round(latency.p95_ms, 3),
                "max": round(latency.max_ms, 3),
            },
            "alerts": snap.alerts,
            "notifications": snap.notifications,
            "connection": {"reconnections": snap.reconnections, "failovers": snap.failovers},
        }

    def reset(self) -> None:
        with self._lock:
            self._latencies.clear()
            self._rates.clear()
            self._counters.clear()
        self._started = time.time()
