"""
Configuration for the volradar pipeline.

Detector and notification settings are plain dataclasses with defaults. The
user-tunable ones are persisted as JSON documents through a ConfigStore, one
document per key, so changes survive restarts. Persistence is best effort:
a store that cannot be read or written is logged and the in-memory values
stay authoritative.
"""

import json
import logging
import math
import os
from abc import ABC, abstractmethod
from dataclasses import asdict, dataclass, field, fields
from typing import Any, ClassVar, Dict, List, Optional, Tuple, Type, TypeVar

logger = logging.getLogger(__name__)

C = TypeVar("C", bound="PersistedConfig")

DEFAULT_ENDPOINTS: Tuple[str, ...] = (
    "wss://stream.bybit.com/v5/public/linear",
    "wss://stream-testnet.bybit.com/v5/public/linear",
)

# Abnormal closure, protocol error, unsupported data
FAILOVER_CLOSE_CODES = frozenset({1006, 1002, 1003})

ENV_STATE_DIR = "VOLRADAR_STATE_DIR"


def default_state_dir() -> str:
    return os.path.expanduser(os.getenv(ENV_STATE_DIR, "~/.volradar"))


# =============================================================================
# STORES
# =============================================================================


class ConfigStore(ABC):
    """Key/value store for JSON documents."""

    @abstractmethod
    def load(self, key: str) -> Optional[Dict[str, Any]]:
        """Return the stored document, or None if absent or unreadable."""

    @abstractmethod
    def save(self, key: str, value: Dict[str, Any]) -> bool:
        """Store a document. Returns False if it could not be written."""


class MemoryStore(ConfigStore):
    """In-process store. Values are JSON round-tripped like the file store."""

    def __init__(self, initial: Optional[Dict[str, Dict[str, Any]]] = None):
        self._data: Dict[str, str] = {}
        for key, value in (initial or {}).items():
            self.save(key, value)

    def load(self, key: str) -> Optional[Dict[str, Any]]:
        raw = self._data.get(key)
        if raw is None:
            return None
        return json.loads(raw)

    def save(self, key: str, value: Dict[str, Any]) -> bool:
        try:
            self._data[key] = json.dumps(value)
        except (TypeError, ValueError) as exc:
            logger.warning(f"Cannot serialize {key}: {exc}")
            return False
        return True

    def keys(self) -> List[str]:
        return sorted(self._data)


class JsonFileStore(ConfigStore):
    """Stores each key as ``<directory>/<key>.json``."""

    def __init__(self, directory: Optional[str] = None):
        self.directory = os.path.expanduser(directory) if directory else default_state_dir()

    def path_for(self, key: str) -> str:
        return os.path.join(self.directory, f"{key}.json")

    def load(self, key: str) -> Optional[Dict[str, Any]]:
        path = self.path_for(key)
        if not os.path.exists(path):
            return None
        try:
            with open(path, "r", encoding="utf-8") as handle:
                payload = json.load(handle)
        except (OSError, ValueError) as exc:
            logger.warning(f"Failed to load {path}: {exc}")
            return None
        if not isinstance(payload, dict):
            logger.warning(f"Ignoring {path}: expected an object, got {type(payload).__name__}")
            return None
        return payload

    def save(self, key: str, value: Dict[str, Any]) -> bool:
        path = self.path_for(key)
        try:
            os.makedirs(self.directory, exist_ok=True)
            with open(path, "w", encoding="utf-8") as handle:
                json.dump(value, handle, indent=2)
        except (OSError, TypeError, ValueError) as exc:
            logger.warning(f"Failed to persist {path}: {exc}")
            return False
        return True


# =============================================================================
# PERSISTED CONFIGS
# =============================================================================


def _coerce(name: str, default: Any, value: Any, minimum: float = 0) -> Any:
    """
    Coerce a stored value to the type of the field default.

    Numbers must be finite and at least ``minimum`` after coercion.
    """
    if isinstance(default, bool):
        if isinstance(value, bool):
            return value
        raise TypeError(f"{name} expects a bool")
    if isinstance(default, (int, float)):
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            raise TypeError(f"{name} expects a number")
        if not math.isfinite(value):
            raise ValueError(f"{name} must be finite")
        value = type(default)(value)
        if value < minimum:
            raise ValueError(f"{name} must be >= {minimum}")
        return value
    return value


class PersistedConfig:
    """
    Mixin for dataclass configs stored under ``STORE_KEY``.

    Numeric fields are non-negative; ``MINIMUMS`` raises the floor for
    fields that size windows or histories.
    """

    STORE_KEY: ClassVar[str] = ""
    MINIMUMS: ClassVar[Dict[str, float]] = {}

    @classmethod
    def from_dict(cls: Type[C], data: Optional[Dict[str, Any]]) -> C:
        """Build from a stored document, keeping defaults for unknown or bad fields."""
        config = cls()
        if not data:
            return config
        return config.merged(data)

    def merged(self: C, changes: Dict[str, Any]) -> C:
        """Return a copy with ``changes`` applied. Invalid values are skipped."""
        values = self.to_dict()
        known = {f.name for f in fields(self)}
        for key, value in changes.items():
            if key not in known:
                logger.debug(f"{type(self).__name__}: ignoring unknown field {key!r}")
                continue
            try:
                values[key] = _coerce(key, values[key], value, self.MINIMUMS.get(key, 0))
            except (TypeError, ValueError) as exc:
                logger.warning(f"{type(self).__name__}: ignoring {key}={value!r} ({exc})")
        return type(self)(**values)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def load(cls: Type[C], store: Optional[ConfigStore]) -> C:
        if store is None:
            return cls()
        return cls.from_dict(store.load(cls.STORE_KEY))

    def save(self, store: Optional[ConfigStore]) -> bool:
        if store is None:
            return False
        return store.save(self.STORE_KEY, self.to_dict())


@dataclass
class VolumeBreakoutConfig(PersistedConfig):
    """Thresholds for the ratio-to-average volume breakout detector."""

    STORE_KEY: ClassVar[str] = "volume-breakout-config"
    MINIMUMS: ClassVar[Dict[str, float]] = {"lookback_period": 1, "min_samples": 1}

    enabled: bool = True
    lookback_period: int = 60
    min_samples: int = 10
    spike_threshold: float = 2.0
    surge_threshold: float = 5.0
    explosion_threshold: float = 10.0
    min_volume_filter: float = 50_000.0
    min_price_change: float = 0.5  # percent
    cooldown_ms: int = 300_000


@dataclass
class VPTConfig(PersistedConfig):
    """Thresholds for the volume-price-trend detector."""

    STORE_KEY: ClassVar[str] = "vpt-config"
    MINIMUMS: ClassVar[Dict[str, float]] = {"lookback_period": 1}

    enabled: bool = True
    lookback_period: int = 20
    min_volume_filter: float = 100_000.0
    min_price_change: float = 0.5  # percent
    min_vpt_change: float = 1.0  # percent
    strong_threshold: float = 2.0
    extreme_threshold: float = 5.0
    cooldown_ms: int = 300_000


@dataclass
class MinuteSpikeConfig(PersistedConfig):
    """Thresholds for the minute-over-minute volume spike detector."""

    STORE_KEY: ClassVar[str] = "minute-spike-config"
    MINIMUMS: ClassVar[Dict[str, float]] = {"history_minutes": 2}

    enabled: bool = True
    spike_threshold: float = 20.0  # percent
    min_volume: float = 100_000.0
    min_price_change: float = 1.0  # percent
    history_minutes: int = 10


@dataclass
class NotificationSettings(PersistedConfig):
    """User-facing notification thresholds."""

    STORE_KEY: ClassVar[str] = "notification-settings"

    enabled: bool = True
    volume_spike_threshold: float = 20.0  # percent
    price_change_threshold: float = 1.0  # percent
    min_volume: float = 100_000.0
    sound_enabled: bool = True


# =============================================================================
# RUNTIME CONFIGS
# =============================================================================


@dataclass
class MultiplexerConfig:
    """Connection behaviour of the stream multiplexer."""

    endpoints: Tuple[str, ...] = DEFAULT_ENDPOINTS
    heartbeat_interval_s: float = 20.0
    reconnect_delay_s: float = 3.0
    connect_timeout_s: float = 10.0
    receive_timeout_s: float = 60.0
    failover_close_codes: frozenset = FAILOVER_CLOSE_CODES

    def __post_init__(self):
        self.endpoints = tuple(self.endpoints)
        if not self.endpoints:
            raise ValueError("At least one endpoint is required")
        if self.reconnect_delay_s < 0:
            raise ValueError("reconnect_delay_s must be >= 0")


@dataclass
class PipelineConfig:
    """Configuration for the alert pipeline."""

    symbols: List[str] = field(default_factory=list)
    kline_interval: str = "1"

    multiplexer: MultiplexerConfig = field(default_factory=MultiplexerConfig)

    # Only feed closed candles to the detectors
    confirmed_only: bool = False

    # Ledger maintenance
    prune_interval_s: float = 60.0

    # Minute spikes are recorded but not offered for notification by default
    notify_spikes: bool = False

    subscribe_tickers: bool = True
    candle_history: int = 1000

    # Persisted settings location; None keeps everything in memory
    state_dir: Optional[str] = None

    def __post_init__(self):
        self.symbols = [normalize_symbol(s) for s in self.symbols]


def normalize_symbol(symbol: str) -> str:
    """Normalize symbol format (btc/usdt -> BTCUSDT)."""
    return symbol.upper().replace("/", "").replace("-", "").replace("_", "")
