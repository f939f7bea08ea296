"""
Volume Breakout Detector

Flags a candle whose volume is a multiple of the symbol's rolling average.

Classification by volume ratio:
    >= explosion (10x)  EXPLOSION
    >= surge (5x)       SURGE
    >= spike (2x)       SPIKE

A breakout fires only when the candle also clears the absolute volume floor
and the minimum price move, and the symbol is out of cooldown.
"""

import logging
from typing import Optional

from ..config import ConfigStore, VolumeBreakoutConfig
from .alerts import BreakoutType, VolumeBreakout, make_alert_id
from .base import Detector, all_finite
from .rolling_window import RollingWindowStore

logger = logging.getLogger(__name__)


class VolumeBreakoutDetector(Detector[VolumeBreakoutConfig, VolumeBreakout]):
    """
    Ratio-to-average volume anomaly classifier.

    Usage:
        detector = VolumeBreakoutDetector()
        alert = detector.process("BTCUSDT", volume, close, change_pct, start_ms)
        if alert and detector.ledger.insert(alert):
            ...
    """

    CONFIG_CLASS = VolumeBreakoutConfig
    LEDGER_SIZE = 30
    RETENTION_MS = 10 * 60_000
    NAME = "volume_breakout"

    def __init__(
        self,
        config: Optional[VolumeBreakoutConfig] = None,
        store: Optional[ConfigStore] = None,
    ):
        super().__init__(config, store)
        self._volumes = RollingWindowStore(
            self._config.lookback_period, min_samples=self._config.min_samples
        )

    @property
    def windows(self) -> RollingWindowStore:
        return self._volumes

    def _config_changed(self) -> None:
        self._volumes.resize(self._config.lookback_period, self._config.min_samples)

    def classify(self, ratio: float) -> Optional[BreakoutType]:
        cfg = self._config
        if ratio >= cfg.explosion_threshold:
            return BreakoutType.EXPLOSION
        if ratio >= cfg.surge_threshold:
            return BreakoutType.SURGE
        if ratio >= cfg.spike_threshold:
            return BreakoutType.SPIKE
        return None

    def process(
        self,
        symbol: str,
        current_volume: float,
        price: float,
        price_change: float,
        timestamp_ms: int,
    ) -> Optional[VolumeBreakout]:
        """
        Feed one volume sample and return a breakout if one fires.

        Args:
            symbol: Trading pair
            current_volume: Candle volume
            price: Latest price
            price_change: Price move of the candle, in percent
            timestamp_ms: Candle start time

        Returns:
            VolumeBreakout or None
        """
        cfg = self._config
        if not cfg.enabled or self.in_cooldown(symbol, timestamp_ms):
            return None

        if not all_finite(current_volume, price, price_change):
            logger.debug(f"Skipping non-finite breakout sample for {symbol}")
            return None

        self._volumes.push(symbol, current_volume)
        average = self._volumes.average(symbol)
        if average is None or average == 0:
            return None

        ratio = current_volume / average
        breakout_type = self.classify(ratio)
        if (
            breakout_type is None
            or current_volume < cfg.min_volume_filter
            or abs(price_change) < cfg.min_price_change
        ):
            return None

        self._mark_fired(symbol, timestamp_ms)
        alert = VolumeBreakout(
            id=make_alert_id(symbol, timestamp_ms),
            symbol=symbol,
            price=price,
            price_change=price_change,
            timestamp_ms=timestamp_ms,
            current_volume=current_volume,
            average_volume=average,
            volume_ratio=ratio,
            breakout_type=breakout_type,
        )
        logger.info(
            f"{breakout_type.value.upper()} {symbol}: {ratio:.2f}x average volume "
            f"({current_volume:,.0f} vs {average:,.0f}), price {price_change:+.2f}%"
        )
        return alert

    def reset(self, symbol: Optional[str] = None) -> None:
        super().reset(symbol)
        self._volumes.clear(symbol)
