"""
Bounded, deduplicated, time-pruned alert history.
"""

import logging
from typing import Generic, Iterator, List, Optional, TypeVar

from .alerts import Alert

logger = logging.getLogger(__name__)

A = TypeVar("A", bound=Alert)


class AlertLedger(Generic[A]):
    """
    Most-recent-first list of alerts.

    - At most one alert per symbol per minute bucket
    - Never more than ``max_entries``; the oldest fall off the end
    - Entries older than ``retention_ms`` are removed by ``prune``, which the
      owner calls on its own schedule
    """

    def __init__(self, max_entries: int, retention_ms: int, name: str = "alerts"):
        if max_entries <= 0:
            raise ValueError("max_entries must be positive")
        self.name = name
        self.max_entries = max_entries
        self.retention_ms = retention_ms
        self._entries: List[A] = []

    def insert(self, alert: A) -> bool:
        """
        Prepend ``alert`` unless a duplicate is already recorded.

        Returns:
            True if the alert was added
        """
        for existing in self._entries:
            if existing.is_duplicate_of(alert):
                logger.debug(
                    f"{self.name}: dropping duplicate {alert.symbol} "
                    f"for minute {alert.minute_bucket}"
                )
                return False

        self._entries.insert(0, alert)
        if len(self._entries) > self.max_entries:
            del self._entries[self.max_entries:]
        return True

    def prune(self, now_ms: int, retention_ms: Optional[int] = None) -> int:
        """
        Drop entries at or before ``now_ms - retention``.

        Returns:
            Number of entries removed
        """
        retention = self.retention_ms if retention_ms is None else retention_ms
        cutoff = now_ms - retention
        kept = [a for a in self._entries if a.timestamp_ms > cutoff]
        removed = len(self._entries) - len(kept)
        if removed:
            self._entries = kept
            logger.debug(f"{self.name}: pruned {removed} alerts older than {cutoff}")
        return removed

    def latest(self) -> Optional[A]:
        return self._entries[0] if self._entries else None

    def for_symbol(self, symbol: str) -> List[A]:
        return [a for a in self._entries if a.symbol == symbol]

    def snapshot(self) -> List[A]:
        return list(self._entries)

    def clear(self) -> None:
        self._entries.clear()

    def __iter__(self) -> Iterator[A]:
        return iter(list(self._entries))

    def __len__(self) -> int:
        return len(self._entries)
