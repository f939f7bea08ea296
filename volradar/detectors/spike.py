"""
Minute Spike Detector

Compares each minute's running volume against the previous minute. Candle
updates within the same minute overwrite that minute's snapshot, so a spike
can fire as soon as the current minute outgrows the last one.
"""

import logging
from dataclasses import dataclass
from typing import Dict, List, Optional

from ..config import ConfigStore, MinuteSpikeConfig
from .alerts import MINUTE_MS, VolumeSpike, make_alert_id
from .base import Detector, all_finite

logger = logging.getLogger(__name__)

# Reported when the previous minute traded nothing
ZERO_BASE_CHANGE = 1000.0


@dataclass(slots=True)
class MinuteSnapshot:
    minute_start: int
    volume: float
    price: float
    timestamp_ms: int


def volume_change_pct(current: float, previous: float) -> float:
    if previous == 0:
        return ZERO_BASE_CHANGE
    return (current - previous) / previous * 100


class MinuteSpikeDetector(Detector[MinuteSpikeConfig, VolumeSpike]):
    """Minute-over-minute volume spike detector. Has no cooldown; its ledger dedups."""

    CONFIG_CLASS = MinuteSpikeConfig
    LEDGER_SIZE = 50
    RETENTION_MS = 5 * 60_000
    NAME = "minute_spike"

    def __init__(
        self,
        config: Optional[MinuteSpikeConfig] = None,
        store: Optional[ConfigStore] = None,
    ):
        super().__init__(config, store)
        self._history: Dict[str, List[MinuteSnapshot]] = {}

    def history(self, symbol: str) -> List[MinuteSnapshot]:
        return list(self._history.get(symbol, []))

    def _update_history(
        self, symbol: str, volume: float, price: float, timestamp_ms: int
    ) -> List[MinuteSnapshot]:
        minute_start = timestamp_ms // MINUTE_MS * MINUTE_MS
        history = self._history.get(symbol, [])

        for snapshot in history:
            if snapshot.minute_start == minute_start:
                snapshot.volume = volume
                snapshot.price = price
                snapshot.timestamp_ms = timestamp_ms
                break
        else:
            history.append(MinuteSnapshot(minute_start, volume, price, timestamp_ms))

        cutoff = timestamp_ms - self._config.history_minutes * MINUTE_MS
        history = sorted(
            (s for s in history if s.timestamp_ms > cutoff), key=lambda s: s.minute_start
        )
        self._history[symbol] = history
        return history

    def process(
        self, symbol: str, volume: float, price: float, timestamp_ms: int
    ) -> Optional[VolumeSpike]:
        """
        Record the running volume of the current minute and check for a spike.

        Returns:
            VolumeSpike or None
        """
        cfg = self._config
        if not cfg.enabled:
            return None
        if not all_finite(volume, price):
            logger.debug(f"Skipping non-finite spike sample for {symbol}")
            return None

        history = self._update_history(symbol, volume, price, timestamp_ms)
        minute_start = timestamp_ms // MINUTE_MS * MINUTE_MS
        index = next(i for i, s in enumerate(history) if s.minute_start == minute_start)
        if index == 0 or volume <= 0:
            return None

        previous = history[index - 1]
        change = volume_change_pct(volume, previous.volume)
        if change < cfg.spike_threshold or volume < cfg.min_volume:
            return None

        price_change = (price - previous.price) / previous.price * 100 if previous.price > 0 else 0.0
        if abs(price_change) < cfg.min_price_change:
            return None

        return VolumeSpike(
            id=make_alert_id(symbol, timestamp_ms),
            symbol=symbol,
            price=price,
            price_change=price_change,
            timestamp_ms=timestamp_ms,
            current_volume=volume,
            previous_volume=previous.volume,
            volume_change=change,
        )

    def reset(self, symbol: Optional[str] = None) -> None:
        super().reset(symbol)
        if symbol is None:
            self._history.clear()
        else:
            self._history.pop(symbol, None)
