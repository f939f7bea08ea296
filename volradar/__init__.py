"""
volradar - streaming volume anomaly detection for Bybit linear perpetuals.

One websocket carries kline and ticker topics for every watched symbol. The
StreamMultiplexer fans frames out by topic; per-symbol detectors turn candle
updates into deduplicated alerts; a NotificationGate decides which alerts
are worth a notification.

Usage:
    from volradar import AlertPipeline, PipelineConfig

    pipeline = AlertPipeline(PipelineConfig(symbols=["BTCUSDT"]))
    pipeline.on_alert(print)
    async with pipeline:
        ...
"""

from .config import (
    JsonFileStore,
    MemoryStore,
    MinuteSpikeConfig,
    MultiplexerConfig,
    NotificationSettings,
    PipelineConfig,
    VolumeBreakoutConfig,
    VPTConfig,
)
from .detectors import (
    Alert,
    AlertKind,
    AlertLedger,
    BreakoutType,
    MinuteSpikeDetector,
    RollingWindowStore,
    Strength,
    Trend,
    VolumeBreakout,
    VolumeBreakoutDetector,
    VolumeSpike,
    VolumeTrendDetector,
    VPTAlert,
)
from .notifications import (
    CallbackNotifier,
    LogNotifier,
    NotificationEvent,
    NotificationGate,
    Notifier,
)
from .pipeline import AlertPipeline
from .stream import ConnectionState, StreamMultiplexer

__version__ = "0.1.0"

__all__ = [
    "Alert",
    "AlertKind",
    "AlertLedger",
    "AlertPipeline",
    "BreakoutType",
    "CallbackNotifier",
    "ConnectionState",
    "JsonFileStore",
    "LogNotifier",
    "MemoryStore",
    "MinuteSpikeConfig",
    "MinuteSpikeDetector",
    "MultiplexerConfig",
    "NotificationEvent",
    "NotificationGate",
    "NotificationSettings",
    "Notifier",
    "PipelineConfig",
    "RollingWindowStore",
    "Strength",
    "StreamMultiplexer",
    "Trend",
    "VolumeBreakout",
    "VolumeBreakoutConfig",
    "VolumeBreakoutDetector",
    "VolumeSpike",
    "VolumeTrendDetector",
    "VPTAlert",
    "VPTConfig",
]
