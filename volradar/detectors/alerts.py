"""
Alert records produced by the detectors.

Alerts are immutable. Two alerts are duplicates when they share a symbol and
a minute bucket, which is what the ledgers key on.
"""

import uuid
from abc import ABC, abstractmethod
from dataclasses import asdict, dataclass
from enum import Enum
from typing import Any, ClassVar, Dict

MINUTE_MS = 60_000


class AlertKind(Enum):
    """Which detector produced an alert."""

    VOLUME_SPIKE = "volume_spike"
    VOLUME_BREAKOUT = "volume_breakout"
    VPT_ALERT = "vpt_alert"


class BreakoutType(Enum):
    """Severity of a volume breakout, by ratio to the rolling average."""

    SPIKE = "spike"
    SURGE = "surge"
    EXPLOSION = "explosion"


class Trend(Enum):
    BULLISH = "bullish"
    BEARISH = "bearish"
    NEUTRAL = "neutral"


class Strength(Enum):
    WEAK = "weak"
    MODERATE = "moderate"
    STRONG = "strong"
    EXTREME = "extreme"


def display_symbol(symbol: str) -> str:
    """Short display name: BTCUSDT -> BTC."""
    return symbol.replace("USDT", "")


def make_alert_id(symbol: str, timestamp_ms: int) -> str:
    return f"{symbol}-{timestamp_ms}-{uuid.uuid4().hex[:9]}"


@dataclass(frozen=True)
class Alert(ABC):
    """Fields shared by every alert."""

    KIND: ClassVar[AlertKind]

    id: str
    symbol: str
    price: float
    price_change: float  # percent
    timestamp_ms: int

    @property
    def kind(self) -> AlertKind:
        return self.KIND

    @property
    def display(self) -> str:
        return display_symbol(self.symbol)

    @property
    def minute_bucket(self) -> int:
        return self.timestamp_ms // MINUTE_MS

    @property
    @abstractmethod
    def classification(self) -> str:
        """Short severity label shown in alert lines."""

    def is_duplicate_of(self, other: "Alert") -> bool:
        return self.symbol == other.symbol and self.minute_bucket == other.minute_bucket

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        for key, value in data.items():
            if isinstance(value, Enum):
                data[key] = value.value
        data["kind"] = self.kind.value
        data["display"] = self.display
        return data


@dataclass(frozen=True)
class VolumeBreakout(Alert):
    KIND: ClassVar[AlertKind] = AlertKind.VOLUME_BREAKOUT

    current_volume: float
    average_volume: float
    volume_ratio: float
    breakout_type: BreakoutType

    @property
    def classification(self) -> str:
        return self.breakout_type.value


@dataclass(frozen=True)
class VPTAlert(Alert):
    KIND: ClassVar[AlertKind] = AlertKind.VPT_ALERT

    volume: float
    vpt_value: float
    vpt_change: float  # percent, clamped to +/-1000
    trend: Trend
    strength: Strength

    @property
    def classification(self) -> str:
        return f"{self.strength.value} {self.trend.value}"


@dataclass(frozen=True)
class VolumeSpike(Alert):
    KIND: ClassVar[AlertKind] = AlertKind.VOLUME_SPIKE

    current_volume: float
    previous_volume: float
    volume_change: float  # percent

    @property
    def classification(self) -> str:
        return "spike"
