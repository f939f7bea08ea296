"""
Market data state outside the detectors.

- CandleSeries: per-symbol candle history, upserted by bucket start time
- Reference open: the 08:00 UTC+8 session open and a date-keyed price cache
- Watchlist: latest ticker fields per symbol, ranked by move since the open
"""

import asyncio
import bisect
import logging
import math
from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Awaitable, Callable, Dict, Iterable, List, Optional, Union

import pytz

from .config import ConfigStore
from .stream.frames import KlineBar, TickerUpdate

logger = logging.getLogger(__name__)

SESSION_TZ = pytz.FixedOffset(8 * 60)
MARKET_OPEN_KEY = "market-open"

INTERVAL_MS: Dict[str, int] = {
    "1": 60_000,
    "5": 5 * 60_000,
    "15": 15 * 60_000,
    "30": 30 * 60_000,
    "60": 60 * 60_000,
    "120": 120 * 60_000,
    "240": 240 * 60_000,
    "D": 24 * 60 * 60_000,
}


# =============================================================================
# CANDLES
# =============================================================================


@dataclass(slots=True)
class Candle:
    time: int  # bucket start, ms
    open: float
    high: float
    low: float
    close: float
    volume: float = 0.0

    @classmethod
    def from_bar(cls, bar: KlineBar) -> "Candle":
        return cls(bar.start, bar.open, bar.high, bar.low, bar.close, bar.volume)


class CandleSeries:
    """
    Time-ordered candles where a later update for the same bucket replaces
    the earlier one in place.
    """

    def __init__(self, max_candles: int = 1000):
        self.max_candles = max_candles
        self._candles: List[Candle] = []
        self._times: List[int] = []

    def upsert(self, candle: Candle) -> bool:
        """
        Insert or replace by ``candle.time``.

        Returns:
            True if a new bucket was added
        """
        if self._times and candle.time == self._times[-1]:
            self._candles[-1] = candle
            return False

        if not self._times or candle.time > self._times[-1]:
            self._candles.append(candle)
            self._times.append(candle.time)
        else:
            index = bisect.bisect_left(self._times, candle.time)
            if index < len(self._times) and self._times[index] == candle.time:
                self._candles[index] = candle
                return False
            self._candles.insert(index, candle)
            self._times.insert(index, candle.time)

        overflow = len(self._candles) - self.max_candles
        if overflow > 0:
            del self._candles[:overflow]
            del self._times[:overflow]
        return True

    def merge(self, candles: Iterable[Candle]) -> int:
        """Upsert many candles (e.g. a backfill). Returns how many were new."""
        return sum(1 for c in candles if self.upsert(c))

    def latest(self) -> Optional[Candle]:
        return self._candles[-1] if self._candles else None

    def get(self, time_ms: int) -> Optional[Candle]:
        index = bisect.bisect_left(self._times, time_ms)
        if index < len(self._times) and self._times[index] == time_ms:
            return self._candles[index]
        return None

    def before(self, time_ms: int) -> Optional[Candle]:
        """The newest candle that starts strictly before ``time_ms``."""
        index = bisect.bisect_left(self._times, time_ms)
        return self._candles[index - 1] if index > 0 else None

    def to_list(self) -> List[Candle]:
        return list(self._candles)

    def __len__(self) -> int:
        return len(self._candles)


# =============================================================================
# REFERENCE OPEN
# =============================================================================


def _as_utc(now: Union[None, int, float, datetime]) -> datetime:
    if now is None:
        return datetime.now(pytz.utc)
    if isinstance(now, datetime):
        return pytz.utc.localize(now) if now.tzinfo is None else now.astimezone(pytz.utc)
    return datetime.fromtimestamp(now / 1000, tz=pytz.utc)


def session_date(now: Union[None, int, float, datetime] = None) -> str:
    """Calendar date (YYYY-MM-DD) in UTC+8."""
    return _as_utc(now).astimezone(SESSION_TZ).date().isoformat()


def reference_open_time(now: Union[None, int, float, datetime] = None) -> int:
    """
    The session open for ``now`` in epoch ms: 00:00 UTC of the current UTC+8
    date, i.e. 08:00 in UTC+8.
    """
    local_date = _as_utc(now).astimezone(SESSION_TZ).date()
    midnight = pytz.utc.localize(datetime(local_date.year, local_date.month, local_date.day))
    return int(midnight.timestamp() * 1000)


OpenPriceFetcher = Callable[[str, int], Awaitable[Optional[float]]]


class MarketOpenCache:
    """
    Session open prices, cached per UTC+8 date and persisted under
    ``market-open``. A new date invalidates the cache.
    """

    def __init__(self, store: Optional[ConfigStore] = None):
        self._store = store
        self._date: Optional[str] = None
        self._prices: Dict[str, float] = {}
        self._load()

    def _load(self) -> None:
        if self._store is None:
            return
        payload = self._store.load(MARKET_OPEN_KEY)
        if not payload:
            return
        prices = payload.get("prices")
        if not isinstance(payload.get("date"), str) or not isinstance(prices, dict):
            logger.warning("Ignoring malformed market-open cache")
            return
        self._date = payload["date"]
        self._prices = {
            s: float(p) for s, p in prices.items() if isinstance(p, (int, float)) and p > 0
        }

    def _save(self) -> None:
        if self._store is not None:
            self._store.save(MARKET_OPEN_KEY, {"date": self._date, "prices": self._prices})

    @property
    def date(self) -> Optional[str]:
        return self._date

    def is_current(self, now: Union[None, int, float, datetime] = None) -> bool:
        return self._date == session_date(now)

    def prices(self) -> Dict[str, float]:
        return dict(self._prices)

    def get(self, symbol: str) -> Optional[float]:
        return self._prices.get(symbol)

    def set(self, symbol: str, price: float, now: Union[None, int, float, datetime] = None) -> None:
        today = session_date(now)
        if self._date != today:
            self._date = today
            self._prices = {}
        self._prices[symbol] = price
        self._save()

    async def refresh(
        self,
        symbols: Iterable[str],
        fetch_open: OpenPriceFetcher,
        now: Union[None, int, float, datetime] = None,
        pause_s: float = 0.1,
    ) -> Dict[str, float]:
        """
        Make sure every symbol has an open price for the current session.

        Cached prices for today are kept; missing ones are fetched one symbol
        at a time with a short pause between requests.
        """
        today = session_date(now)
        if self._date != today:
            logger.info(f"Market open cache is for {self._date}; starting {today}")
            self._date = today
            self._prices = {}

        missing = [s for s in symbols if s not in self._prices]
        if not missing:
            return self.prices()

        start = reference_open_time(now)
        for i, symbol in enumerate(missing):
            try:
                price = await fetch_open(symbol, start)
            except Exception as e:
                logger.warning(f"Failed to fetch market open for {symbol}: {e}")
                price = None
            if price is not None and math.isfinite(price) and price > 0:
                self._prices[symbol] = price
            if pause_s and i < len(missing) - 1:
                await asyncio.sleep(pause_s)

        self._save()
        return self.prices()

    def change_from_open(self, symbol: str, price: float) -> Optional[float]:
        """Percent move of ``price`` from the session open, if known."""
        open_price = self._prices.get(symbol)
        if not open_price:
            return None
        return (price - open_price) / open_price * 100

    def reset(self) -> None:
        self._date = None
        self._prices = {}
        self._save()


# =============================================================================
# WATCHLIST
# =============================================================================


@dataclass
class TickerState:
    symbol: str
    last_price: Optional[float] = None
    price_24h_pcnt: Optional[float] = None
    high_price_24h: Optional[float] = None
    low_price_24h: Optional[float] = None
    volume_24h: Optional[float] = None
    updated_ms: int = 0


@dataclass
class WatchlistEntry:
    symbol: str
    last_price: Optional[float]
    change_from_open: Optional[float]
    ticker: TickerState = field(repr=False, default=None)


class Watchlist:
    """Latest ticker state per symbol. Delta updates only overwrite the fields they carry."""

    def __init__(self):
        self._tickers: Dict[str, TickerState] = {}

    def update(self, update: TickerUpdate, timestamp_ms: int = 0) -> TickerState:
        state = self._tickers.get(update.symbol) or TickerState(update.symbol)
        changes = {
            name: getattr(update, name)
            for name in ("last_price", "price_24h_pcnt", "high_price_24h", "low_price_24h", "volume_24h")
            if getattr(update, name) is not None
        }
        state = replace(state, updated_ms=timestamp_ms or state.updated_ms, **changes)
        self._tickers[update.symbol] = state
        return state

    def get(self, symbol: str) -> Optional[TickerState]:
        return self._tickers.get(symbol)

    def ranked(self, opens: Optional[MarketOpenCache] = None) -> List[WatchlistEntry]:
        """Entries sorted by change from the session open, biggest gainers first."""
        entries = []
        for state in self._tickers.values():
            change = None
            if opens is not None and state.last_price is not None:
                change = opens.change_from_open(state.symbol, state.last_price)
            entries.append(WatchlistEntry(state.symbol, state.last_price, change, state))
        entries.sort(key=lambda e: (e.change_from_open is None, -(e.change_from_open or 0.0)))
        return entries

    def __len__(self) -> int:
        return len(self._tickers)
