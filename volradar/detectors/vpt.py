"""
Volume-Price-Trend Detector

VPT weights each price move by the volume that carried it:

    vpt = (close - prev_close) / prev_close * volume

A sharp change in VPT from one sample to the next, together with a real price
move on real volume, marks volume confirming (or fighting) the trend.
"""

import logging
from typing import Optional

from ..config import ConfigStore, VPTConfig
from .alerts import Strength, Trend, VPTAlert, make_alert_id
from .base import Detector, all_finite
from .rolling_window import RollingWindowStore

logger = logging.getLogger(__name__)

VPT_CHANGE_LIMIT = 1000.0


def compute_vpt(current_price: float, previous_price: float, volume: float) -> float:
    if previous_price == 0:
        return 0.0
    return (current_price - previous_price) / previous_price * volume


def compute_vpt_change(current: float, previous: float) -> float:
    """Percent change in VPT, clamped to +/-1000. Zero when there is no prior VPT."""
    if previous == 0:
        return 0.0
    change = (current - previous) / max(abs(previous), 1.0) * 100
    return max(-VPT_CHANGE_LIMIT, min(VPT_CHANGE_LIMIT, change))


class VolumeTrendDetector(Detector[VPTConfig, VPTAlert]):
    """Volume-price-trend divergence classifier."""

    CONFIG_CLASS = VPTConfig
    LEDGER_SIZE = 25
    RETENTION_MS = 15 * 60_000
    NAME = "vpt"

    def __init__(self, config: Optional[VPTConfig] = None, store: Optional[ConfigStore] = None):
        super().__init__(config, store)
        self._vpt = RollingWindowStore(self._config.lookback_period, min_samples=2)

    @property
    def windows(self) -> RollingWindowStore:
        return self._vpt

    def _config_changed(self) -> None:
        self._vpt.resize(self._config.lookback_period)

    def classify_trend(self, vpt_change: float, price_change: float) -> Trend:
        if vpt_change > 0 and price_change > 0:
            return Trend.BULLISH
        if vpt_change < 0 and price_change < 0:
            return Trend.BEARISH
        return Trend.NEUTRAL

    def classify_strength(self, vpt_change: float) -> Strength:
        magnitude = abs(vpt_change)
        if magnitude >= self._config.extreme_threshold:
            return Strength.EXTREME
        if magnitude >= self._config.strong_threshold:
            return Strength.STRONG
        if magnitude >= self._config.min_vpt_change:
            return Strength.MODERATE
        return Strength.WEAK

    def process(
        self,
        symbol: str,
        current_price: float,
        previous_price: float,
        volume: float,
        timestamp_ms: int,
    ) -> Optional[VPTAlert]:
        """
        Feed one price/volume sample and return a VPT alert if one fires.

        Returns:
            VPTAlert or None
        """
        cfg = self._config
        if not cfg.enabled or self.in_cooldown(symbol, timestamp_ms):
            return None

        if not all_finite(current_price, previous_price, volume):
            logger.debug(f"Skipping non-finite VPT sample for {symbol}")
            return None

        vpt = compute_vpt(current_price, previous_price, volume)
        self._vpt.push(symbol, vpt)

        history = self._vpt.last(symbol, 2)
        if len(history) < 2:
            return None
        previous_vpt = history[0]

        vpt_change = compute_vpt_change(vpt, previous_vpt)
        price_change = (
            (current_price - previous_price) / previous_price * 100 if previous_price else 0.0
        )

        if (
            abs(price_change) < cfg.min_price_change
            or volume < cfg.min_volume_filter
            or abs(vpt_change) < cfg.min_vpt_change
        ):
            return None

        trend = self.classify_trend(vpt_change, price_change)
        strength = self.classify_strength(vpt_change)

        self._mark_fired(symbol, timestamp_ms)
        logger.info(
            f"VPT {strength.value} {trend.value} {symbol}: "
            f"vpt {vpt:,.0f} ({vpt_change:+.2f}%), price {price_change:+.2f}%"
        )
        return VPTAlert(
            id=make_alert_id(symbol, timestamp_ms),
            symbol=symbol,
            price=current_price,
            price_change=price_change,
            timestamp_ms=timestamp_ms,
            volume=volume,
            vpt_value=vpt,
            vpt_change=vpt_change,
            trend=trend,
            strength=strength,
        )

    def reset(self, symbol: Optional[str] = None) -> None:
        super().reset(symbol)
        self._vpt.clear(symbol)
