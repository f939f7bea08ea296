"""
Bounded per-symbol sample windows.

Each symbol gets a fixed-capacity FIFO of floats with a running sum, so the
mean is O(1) on every push. Floating-point drift from the add/subtract pairs
is corrected by recomputing the sum from scratch periodically.
"""

import math
from collections import deque
from typing import Dict, Iterator, List, Optional


class SampleWindow:
    """
    Fixed-capacity FIFO with a running sum.

    Appending to a full window evicts the oldest sample.
    """

    __slots__ = ("_samples", "_sum", "_ops")

    RECALC_INTERVAL = 10_000

    def __init__(self, maxlen: int):
        if maxlen <= 0:
            raise ValueError("maxlen must be positive")
        self._samples: deque = deque(maxlen=maxlen)
        self._sum = 0.0
        self._ops = 0

    @property
    def maxlen(self) -> int:
        return self._samples.maxlen

    def append(self, value: float) -> None:
        if len(self._samples) == self._samples.maxlen:
            self._sum -= self._samples[0]
        self._samples.append(value)
        self._sum += value

        self._ops += 1
        if self._ops >= self.RECALC_INTERVAL:
            self._sum = math.fsum(self._samples)
            self._ops = 0

    @property
    def sum(self) -> float:
        return self._sum

    @property
    def mean(self) -> float:
        n = len(self._samples)
        return self._sum / n if n > 0 else 0.0

    def newest(self) -> Optional[float]:
        return self._samples[-1] if self._samples else None

    def last(self, n: int) -> List[float]:
        """Last n samples, oldest first."""
        if n <= 0:
            return []
        return list(self._samples)[-n:]

    def resized(self, maxlen: int) -> "SampleWindow":
        """Copy keeping the newest ``maxlen`` samples."""
        window = SampleWindow(maxlen)
        for value in list(self._samples)[-maxlen:]:
            window.append(value)
        return window

    def __len__(self) -> int:
        return len(self._samples)

    def __iter__(self) -> Iterator[float]:
        return iter(self._samples)

    def clear(self) -> None:
        self._samples.clear()
        self._sum = 0.0
        self._ops = 0


class RollingWindowStore:
    """
    Per-symbol rolling windows sharing one capacity and sample floor.

    Usage:
        store = RollingWindowStore(capacity=60, min_samples=10)
        store.push("BTCUSDT", 1250.0)
        avg = store.average("BTCUSDT")  # None until 10 samples exist
    """

    def __init__(self, capacity: int, min_samples: int = 1):
        if capacity <= 0:
            raise ValueError("capacity must be positive")
        self._capacity = capacity
        self._min_samples = max(1, min_samples)
        self._windows: Dict[str, SampleWindow] = {}

    @property
    def capacity(self) -> int:
        return self._capacity

    @property
    def min_samples(self) -> int:
        return self._min_samples

    def push(self, symbol: str, value: float) -> bool:
        """
        Append a sample for ``symbol``.

        Non-finite values are rejected and leave the window untouched.

        Returns:
            True if the sample was stored
        """
        try:
            value = float(value)
        except (TypeError, ValueError):
            return False
        if not math.isfinite(value):
            return False

        window = self._windows.get(symbol)
        if window is None:
            window = SampleWindow(self._capacity)
            self._windows[symbol] = window
        window.append(value)
        return True

    def average(self, symbol: str) -> Optional[float]:
        """Mean of the window, or None while below the sample floor."""
        window = self._windows.get(symbol)
        if window is None or len(window) < self._min_samples:
            return None
        return window.mean

    def values(self, symbol: str) -> List[float]:
        """All samples for ``symbol``, oldest first."""
        window = self._windows.get(symbol)
        return list(window) if window else []

    def last(self, symbol: str, n: int = 1) -> List[float]:
        window = self._windows.get(symbol)
        return window.last(n) if window else []

    def count(self, symbol: str) -> int:
        window = self._windows.get(symbol)
        return len(window) if window else 0

    def symbols(self) -> List[str]:
        return list(self._windows)

    def resize(self, capacity: int, min_samples: Optional[int] = None) -> None:
        """Change capacity, keeping the newest samples of every window."""
        if capacity <= 0:
            raise ValueError("capacity must be positive")
        if min_samples is not None:
            self._min_samples = max(1, min_samples)
        if capacity == self._capacity:
            return
        self._capacity = capacity
        self._windows = {s: w.resized(capacity) for s, w in self._windows.items()}

    def clear(self, symbol: Optional[str] = None) -> None:
        if symbol is None:
            self._windows.clear()
        else:
            self._windows.pop(symbol, None)

    def __contains__(self, symbol: str) -> bool:
        return symbol in self._windows

    def __len__(self) -> int:
        return len(self._windows)
