"""
Tests for the bounded, deduplicated alert ledger.
"""

import pytest

from conftest import BASE_MS
from volradar.detectors.alerts import (
    Alert,
    AlertKind,
    BreakoutType,
    Strength,
    Trend,
    VolumeBreakout,
    VolumeSpike,
    VPTAlert,
    display_symbol,
)
from volradar.detectors.ledger import AlertLedger


def spike(symbol: str, ts: int, alert_id: str = None) -> VolumeSpike:
    return VolumeSpike(
        id=alert_id or f"{symbol}-{ts}",
        symbol=symbol,
        price=100.0,
        price_change=1.5,
        timestamp_ms=ts,
        current_volume=130_000,
        previous_volume=100_000,
        volume_change=30.0,
    )


class TestAlerts:
    """Tests for the alert records themselves."""

    def test_display_symbol(self):
        assert display_symbol("BTCUSDT") == "BTC"
        assert spike("ETHUSDT", BASE_MS).display == "ETH"

    def test_minute_bucket(self):
        assert spike("BTCUSDT", BASE_MS + 59_999).minute_bucket == BASE_MS // 60_000

    def test_to_dict_flattens_enums(self):
        alert = VolumeBreakout(
            id="x",
            symbol="BTCUSDT",
            price=1.0,
            price_change=1.0,
            timestamp_ms=BASE_MS,
            current_volume=10.0,
            average_volume=2.0,
            volume_ratio=5.0,
            breakout_type=BreakoutType.SURGE,
        )
        data = alert.to_dict()
        assert data["breakout_type"] == "surge"
        assert data["kind"] == "volume_breakout"
        assert data["display"] == "BTC"

    def test_vpt_classification(self):
        alert = VPTAlert(
            id="x",
            symbol="BTCUSDT",
            price=1.0,
            price_change=-2.0,
            timestamp_ms=BASE_MS,
            volume=1.0,
            vpt_value=-5.0,
            vpt_change=-8.0,
            trend=Trend.BEARISH,
            strength=Strength.EXTREME,
        )
        assert alert.kind is AlertKind.VPT_ALERT
        assert alert.classification == "extreme bearish"

    def test_spike_classification(self):
        assert spike("BTCUSDT", BASE_MS).classification == "spike"

    def test_base_alert_is_abstract(self):
        with pytest.raises(TypeError):
            Alert(id="x", symbol="BTCUSDT", price=1.0, price_change=0.0, timestamp_ms=BASE_MS)


class TestLedger:
    """Ordering, dedup, bounding and pruning."""

    def test_most_recent_first(self):
        ledger = AlertLedger(10, 60_000)
        ledger.insert(spike("BTCUSDT", BASE_MS))
        ledger.insert(spike("ETHUSDT", BASE_MS + 1))
        assert [a.symbol for a in ledger] == ["ETHUSDT", "BTCUSDT"]
        assert ledger.latest().symbol == "ETHUSDT"

    def test_duplicate_same_symbol_same_minute(self):
        ledger = AlertLedger(10, 60_000)
        assert ledger.insert(spike("BTCUSDT", BASE_MS, "a")) is True
        assert ledger.insert(spike("BTCUSDT", BASE_MS + 30_000, "b")) is False
        assert len(ledger) == 1
        assert ledger.latest().id == "a"

    def test_same_minute_other_symbol_allowed(self):
        ledger = AlertLedger(10, 60_000)
        assert ledger.insert(spike("BTCUSDT", BASE_MS))
        assert ledger.insert(spike("ETHUSDT", BASE_MS))

    def test_next_minute_allowed(self):
        ledger = AlertLedger(10, 60_000)
        assert ledger.insert(spike("BTCUSDT", BASE_MS + 59_999))
        assert ledger.insert(spike("BTCUSDT", BASE_MS + 60_000))

    def test_bounded(self):
        ledger = AlertLedger(3, 60_000)
        for i in range(5):
            ledger.insert(spike("BTCUSDT", BASE_MS + i * 60_000))
        assert len(ledger) == 3
        assert [a.timestamp_ms for a in ledger] == [
            BASE_MS + 4 * 60_000,
            BASE_MS + 3 * 60_000,
            BASE_MS + 2 * 60_000,
        ]

    def test_prune_removes_entries_at_or_before_cutoff(self):
        ledger = AlertLedger(10, 60_000)
        ledger.insert(spike("BTCUSDT", BASE_MS))
        ledger.insert(spike("ETHUSDT", BASE_MS + 1))
        ledger.insert(spike("SOLUSDT", BASE_MS + 2))

        removed = ledger.prune(BASE_MS + 60_001)
        assert removed == 2
        assert [a.symbol for a in ledger] == ["SOLUSDT"]

    def test_prune_override_retention(self):
        ledger = AlertLedger(10, 60_000)
        ledger.insert(spike("BTCUSDT", BASE_MS))
        assert ledger.prune(BASE_MS + 1000, retention_ms=500) == 1
        assert len(ledger) == 0

    def test_prune_then_reinsert(self):
        ledger = AlertLedger(10, 60_000)
        ledger.insert(spike("BTCUSDT", BASE_MS))
        ledger.prune(BASE_MS + 10 * 60_000)
        assert ledger.insert(spike("BTCUSDT", BASE_MS)) is True

    def test_for_symbol_and_snapshot(self):
        ledger = AlertLedger(10, 60_000)
        ledger.insert(spike("BTCUSDT", BASE_MS))
        ledger.insert(spike("ETHUSDT", BASE_MS))
        ledger.insert(spike("BTCUSDT", BASE_MS + 60_000))

        assert len(ledger.for_symbol("BTCUSDT")) == 2
        snap = ledger.snapshot()
        ledger.clear()
        assert len(snap) == 3
        assert len(ledger) == 0
