"""
Shared plumbing for the per-symbol detectors.
"""

import logging
import math
from dataclasses import replace
from typing import Dict, Generic, Optional, Type, TypeVar

from ..config import ConfigStore, PersistedConfig
from .alerts import Alert
from .ledger import AlertLedger

logger = logging.getLogger(__name__)

C = TypeVar("C", bound=PersistedConfig)
A = TypeVar("A", bound=Alert)


def all_finite(*values: float) -> bool:
    try:
        return all(math.isfinite(v) for v in values)
    except TypeError:
        return False


class Detector(Generic[C, A]):
    """
    Base class owning a config, a cooldown map and an alert ledger.

    Subclasses set ``CONFIG_CLASS``, ``LEDGER_SIZE`` and ``RETENTION_MS`` and
    implement ``process``.
    """

    CONFIG_CLASS: Type[PersistedConfig]
    LEDGER_SIZE: int = 30
    RETENTION_MS: int = 10 * 60_000
    NAME: str = "detector"

    def __init__(self, config: Optional[C] = None, store: Optional[ConfigStore] = None):
        self._store = store
        self._config: C = config if config is not None else self.CONFIG_CLASS.load(store)
        self._last_fired: Dict[str, int] = {}
        self.ledger: AlertLedger[A] = AlertLedger(self.LEDGER_SIZE, self.RETENTION_MS, name=self.NAME)

    @property
    def config(self) -> C:
        return self._config

    @property
    def enabled(self) -> bool:
        return self._config.enabled

    def get_config(self) -> C:
        """Copy of the current config."""
        return replace(self._config)

    def update_config(self, **changes) -> C:
        """Merge ``changes`` into the config and persist it."""
        self._config = self._config.merged(changes)
        self._config.save(self._store)
        self._config_changed()
        logger.info(f"{self.NAME} config updated: {changes}")
        return self.get_config()

    def _config_changed(self) -> None:
        """Hook for subclasses that size state from the config."""

    # === Cooldown ===

    @property
    def cooldown_ms(self) -> int:
        return getattr(self._config, "cooldown_ms", 0)

    def in_cooldown(self, symbol: str, now_ms: int) -> bool:
        last = self._last_fired.get(symbol)
        if last is None:
            return False
        return now_ms - last < self.cooldown_ms

    def last_fired(self, symbol: str) -> Optional[int]:
        return self._last_fired.get(symbol)

    def _mark_fired(self, symbol: str, timestamp_ms: int) -> None:
        self._last_fired[symbol] = timestamp_ms

    def reset(self, symbol: Optional[str] = None) -> None:
        """Forget per-symbol state."""
        if symbol is None:
            self._last_fired.clear()
        else:
            self._last_fired.pop(symbol, None)
