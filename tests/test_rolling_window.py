"""
Tests for the per-symbol rolling sample windows.
"""

import math

import pytest

from volradar.detectors.rolling_window import RollingWindowStore, SampleWindow


class TestSampleWindow:
    """Tests for the fixed-capacity FIFO with running sum."""

    def test_mean_of_partial_window(self):
        window = SampleWindow(5)
        for v in (1.0, 2.0, 3.0):
            window.append(v)
        assert len(window) == 3
        assert window.mean == pytest.approx(2.0)

    def test_full_window_evicts_oldest(self):
        window = SampleWindow(3)
        for v in (1.0, 2.0, 3.0, 10.0):
            window.append(v)
        assert list(window) == [2.0, 3.0, 10.0]
        assert window.sum == pytest.approx(15.0)

    def test_empty_window(self):
        window = SampleWindow(3)
        assert window.mean == 0.0
        assert window.newest() is None
        assert window.last(2) == []

    def test_running_sum_matches_exact_sum_after_recalc(self):
        window = SampleWindow(7)
        for i in range(SampleWindow.RECALC_INTERVAL + 13):
            window.append(0.1 * (i % 11))
        assert window.sum == pytest.approx(math.fsum(window), abs=1e-9)

    def test_resized_keeps_newest(self):
        window = SampleWindow(5)
        for v in range(5):
            window.append(float(v))
        smaller = window.resized(2)
        assert list(smaller) == [3.0, 4.0]
        assert smaller.sum == pytest.approx(7.0)

    def test_invalid_capacity(self):
        with pytest.raises(ValueError):
            SampleWindow(0)


class TestRollingWindowStore:
    """Tests for the per-symbol store."""

    def test_average_requires_min_samples(self):
        store = RollingWindowStore(capacity=10, min_samples=3)
        store.push("BTCUSDT", 100)
        store.push("BTCUSDT", 200)
        assert store.average("BTCUSDT") is None

        store.push("BTCUSDT", 300)
        assert store.average("BTCUSDT") == pytest.approx(200.0)

    def test_unknown_symbol(self):
        store = RollingWindowStore(capacity=10)
        assert store.average("NOPE") is None
        assert store.values("NOPE") == []
        assert store.count("NOPE") == 0
        assert "NOPE" not in store

    def test_symbols_are_independent(self):
        store = RollingWindowStore(capacity=3)
        store.push("BTCUSDT", 1)
        store.push("ETHUSDT", 100)
        assert store.values("BTCUSDT") == [1.0]
        assert store.values("ETHUSDT") == [100.0]
        assert sorted(store.symbols()) == ["BTCUSDT", "ETHUSDT"]
        assert len(store) == 2

    def test_capacity_bounds_window(self):
        store = RollingWindowStore(capacity=3)
        for v in range(10):
            store.push("BTCUSDT", v)
        assert store.values("BTCUSDT") == [7.0, 8.0, 9.0]
        assert store.average("BTCUSDT") == pytest.approx(8.0)

    @pytest.mark.parametrize("bad", [float("nan"), float("inf"), float("-inf"), None, "abc"])
    def test_non_finite_values_rejected(self, bad):
        store = RollingWindowStore(capacity=3)
        store.push("BTCUSDT", 5)
        assert store.push("BTCUSDT", bad) is False
        assert store.values("BTCUSDT") == [5.0]

    def test_last(self):
        store = RollingWindowStore(capacity=5)
        for v in (1, 2, 3):
            store.push("BTCUSDT", v)
        assert store.last("BTCUSDT") == [3.0]
        assert store.last("BTCUSDT", 2) == [2.0, 3.0]
        assert store.last("BTCUSDT", 10) == [1.0, 2.0, 3.0]

    def test_resize_keeps_newest_and_updates_floor(self):
        store = RollingWindowStore(capacity=5, min_samples=2)
        for v in range(5):
            store.push("BTCUSDT", v)
        store.resize(3, min_samples=4)
        assert store.capacity == 3
        assert store.values("BTCUSDT") == [2.0, 3.0, 4.0]
        assert store.average("BTCUSDT") is None

    def test_clear(self):
        store = RollingWindowStore(capacity=5)
        store.push("BTCUSDT", 1)
        store.push("ETHUSDT", 1)
        store.clear("BTCUSDT")
        assert store.symbols() == ["ETHUSDT"]
        store.clear()
        assert len(store) == 0
