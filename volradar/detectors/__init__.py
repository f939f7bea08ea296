"""
Per-symbol anomaly detectors.

- VolumeBreakoutDetector: volume as a multiple of its rolling average
- VolumeTrendDetector: volume-price-trend swings
- MinuteSpikeDetector: minute-over-minute volume growth

Each detector owns its windows, cooldown map and AlertLedger.
"""

from .alerts import (
    Alert,
    AlertKind,
    BreakoutType,
    Strength,
    Trend,
    VolumeBreakout,
    VolumeSpike,
    VPTAlert,
)
from .breakout import VolumeBreakoutDetector
from .ledger import AlertLedger
from .rolling_window import RollingWindowStore, SampleWindow
from .spike import MinuteSpikeDetector
from .vpt import VolumeTrendDetector

__all__ = [
    "Alert",
    "AlertKind",
    "AlertLedger",
    "BreakoutType",
    "MinuteSpikeDetector",
    "RollingWindowStore",
    "SampleWindow",
    "Strength",
    "Trend",
    "VolumeBreakout",
    "VolumeBreakoutDetector",
    "VolumeSpike",
    "VolumeTrendDetector",
    "VPTAlert",
]
