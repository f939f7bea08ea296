"""
Alert Pipeline

Wires together:
- StreamMultiplexer (kline + ticker topics per symbol)
- Detectors (breakout, VPT, minute spike), each with its own ledger
- NotificationGate
- Candle history, watchlist and the session-open cache

```
kline.1.SYM ──> candle upsert ──┬─> VolumeBreakoutDetector ─┐
                                ├─> VolumeTrendDetector ────┼─> ledger.insert ─> on_alert
                                └─> MinuteSpikeDetector ────┘        │
                                                                     └─> NotificationGate
tickers.SYM ──> Watchlist
```
"""

import asyncio
import logging
import time
from typing import Any, Callable, Dict, List, Optional, Tuple

from .config import ConfigStore, JsonFileStore, MemoryStore, PipelineConfig, normalize_symbol
from .detectors import (
    Alert,
    AlertLedger,
    MinuteSpikeDetector,
    VolumeBreakoutDetector,
    VolumeTrendDetector,
)
from .detectors.base import Detector
from .detectors.vpt import compute_vpt
from .market import INTERVAL_MS, Candle, CandleSeries, MarketOpenCache, Watchlist
from .metrics import MetricsCollector
from .notifications import Notifier, NotificationGate, event_from_alert, now_ms
from .stream.frames import KlineBar, KlineFrame, TickerFrame, kline_topic, ticker_topic
from .stream.multiplexer import StreamMultiplexer

logger = logging.getLogger(__name__)

AlertCallback = Callable[[Alert], Any]


class AlertPipeline:
    """
    Streaming volume anomaly pipeline for a set of symbols.

    Usage:
        pipeline = AlertPipeline(PipelineConfig(symbols=["BTCUSDT", "ETHUSDT"]))

        @pipeline.on_alert
        def show(alert):
            print(alert.symbol, alert.classification)

        async with pipeline:
            await asyncio.sleep(3600)
    """

    def __init__(
        self,
        config: Optional[PipelineConfig] = None,
        multiplexer: Optional[StreamMultiplexer] = None,
        notifier: Optional[Notifier] = None,
        store: Optional[ConfigStore] = None,
        metrics: Optional[MetricsCollector] = None,
        clock: Callable[[], int] = now_ms,
    ):
        self.config = config or PipelineConfig()
        if store is None:
            store = JsonFileStore(self.config.state_dir) if self.config.state_dir else MemoryStore()
        self.store = store
        self.metrics = metrics or MetricsCollector()
        self._clock = clock

        self.multiplexer = multiplexer or StreamMultiplexer(
            self.config.multiplexer, metrics=self.metrics
        )

        self.breakouts = VolumeBreakoutDetector(store=self.store)
        self.vpt = VolumeTrendDetector(store=self.store)
        self.spikes = MinuteSpikeDetector(store=self.store)
        self.gate = NotificationGate(notifier, store=self.store, clock=clock)

        self.candles: Dict[str, CandleSeries] = {}
        self.watchlist = Watchlist()
        self.market_open = MarketOpenCache(self.store)

        self._subscriptions: Dict[str, Callable[[], None]] = {}
        self._on_alert_callbacks: List[AlertCallback] = []

        self._prune_task: Optional[asyncio.Task] = None
        self._running = False

    # === Properties ===

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def symbols(self) -> List[str]:
        return list(self._subscriptions)

    @property
    def detectors(self) -> Tuple[Detector, ...]:
        return (self.breakouts, self.vpt, self.spikes)

    @property
    def ledgers(self) -> Dict[str, AlertLedger]:
        return {d.NAME: d.ledger for d in self.detectors}

    # === Callback Registration ===

    def on_alert(self, callback: AlertCallback) -> AlertCallback:
        """Register a callback for every newly recorded alert. Usable as a decorator."""
        self._on_alert_callbacks.append(callback)
        return callback

    # === Symbols ===

    def add_symbol(self, symbol: str) -> None:
        """Subscribe to the kline (and ticker) topics of ``symbol``."""
        symbol = normalize_symbol(symbol)
        if symbol in self._subscriptions:
            return

        unsubscribers = [
            self.multiplexer.subscribe(
                kline_topic(symbol, self.config.kline_interval), self.handle_kline
            )
        ]
        if self.config.subscribe_tickers:
            unsubscribers.append(
                self.multiplexer.subscribe(ticker_topic(symbol), self.handle_ticker)
            )

        def unsubscribe() -> None:
            for fn in unsubscribers:
                fn()

        self._subscriptions[symbol] = unsubscribe
        logger.info(f"Watching {symbol}")

    def remove_symbol(self, symbol: str) -> None:
        symbol = normalize_symbol(symbol)
        unsubscribe = self._subscriptions.pop(symbol, None)
        if unsubscribe is None:
            return
        unsubscribe()
        for detector in self.detectors:
            detector.reset(symbol)
        self.candles.pop(symbol, None)
        logger.info(f"Stopped watching {symbol}")

    # === Stream Handlers ===

    async def handle_kline(self, frame: KlineFrame) -> None:
        symbol = frame.symbol
        with self.metrics.time("kline_handler"):
            alerts = [alert for bar in frame.bars for alert in self.process_bar(symbol, bar)]
        for alert in alerts:
            await self._notify_callbacks(alert)

    def handle_ticker(self, frame: TickerFrame) -> None:
        self.watchlist.update(frame.update, frame.ts or 0)

    def _series(self, symbol: str) -> CandleSeries:
        series = self.candles.get(symbol)
        if series is None:
            series = self.candles[symbol] = CandleSeries(self.config.candle_history)
        return series

    def process_bar(self, symbol: str, bar: KlineBar) -> List[Alert]:
        """
        Run one candle update through every detector.

        Returns:
            Alerts that were newly recorded in their ledgers
        """
        series = self._series(symbol)
        series.upsert(Candle.from_bar(bar))

        if self.config.confirmed_only and not bar.confirm:
            return []

        previous = series.before(bar.start)
        previous_close = previous.close if previous else bar.close

        candidates = (
            (self.breakouts, self.breakouts.process(
                symbol, bar.volume, bar.close, bar.body_change_pct, bar.start
            )),
            (self.vpt, self.vpt.process(symbol, bar.close, previous_close, bar.volume, bar.start)),
            (self.spikes, self.spikes.process(symbol, bar.volume, bar.close, bar.start)),
        )
        return [alert for detector, alert in candidates if alert and self._record(detector, alert)]

    def _record(self, detector: Detector, alert: Alert) -> bool:
        if not detector.ledger.insert(alert):
            return False
        self.metrics.increment(f"alerts.{alert.kind.value}")

        event = event_from_alert(alert, include_spikes=self.config.notify_spikes)
        if event is not None and self.gate.notify(event):
            self.metrics.increment("notifications")
        return True

    async def _notify_callbacks(self, alert: Alert) -> None:
        for callback in self._on_alert_callbacks:
            try:
                result = callback(alert)
                if asyncio.iscoroutine(result):
                    await result
            except Exception as e:
                logger.error(f"Alert callback error: {e}")

    # === Retention ===

    def prune(self, now: Optional[int] = None) -> int:
        """Apply each ledger's retention. Returns the number of alerts removed."""
        now = self._clock() if now is None else now
        return sum(ledger.prune(now) for ledger in self.ledgers.values())

    async def _prune_loop(self) -> None:
        interval = self.config.prune_interval_s
        while self._running:
            await asyncio.sleep(interval)
            try:
                removed = self.prune()
                if removed:
                    logger.debug(f"Pruned {removed} expired alerts")
            except Exception as e:
                logger.error(f"Prune error: {e}")

    # === History ===

    def seed_history(self, symbol: str, candles: List[Candle]) -> None:
        """
        Load backfilled candles: fills the candle series and pre-warms the
        volume and VPT windows without firing alerts.
        """
        symbol = normalize_symbol(symbol)
        if not candles:
            return
        candles = sorted(candles, key=lambda c: c.time)
        series = self._series(symbol)
        before = series.before(candles[0].time)
        series.merge(candles)

        previous = before.close if before else None
        for candle in candles:
            self.breakouts.windows.push(symbol, candle.volume)
            if previous is not None:
                self.vpt.windows.push(symbol, compute_vpt(candle.close, previous, candle.volume))
            previous = candle.close
        logger.info(f"Seeded {symbol} with {len(candles)} historical candles")

    async def backfill(self, client, minutes: int) -> int:
        """Fetch and seed recent history for every symbol. Returns candles loaded."""
        interval_ms = INTERVAL_MS.get(self.config.kline_interval, 60_000)
        end = self._clock()
        start = end - minutes * 60_000
        # The newest row is the still-open candle
        end -= interval_ms
        loaded = 0
        for symbol in self.symbols or self.config.symbols:
            candles = await client.fetch_historical(symbol, self.config.kline_interval, start, end)
            self.seed_history(symbol, candles)
            loaded += len(candles)
        return loaded

    async def refresh_market_open(self, client) -> Dict[str, float]:
        symbols = self.symbols or self.config.symbols
        return await self.market_open.refresh(symbols, client.fetch_open_price, now=self._clock())

    # === Lifecycle ===

    async def start(self) -> None:
        if self._running:
            return
        self._running = True
        for symbol in self.config.symbols:
            self.add_symbol(symbol)

        logger.info(f"Starting alert pipeline for {len(self._subscriptions)} symbols")
        await self.multiplexer.start()
        self._prune_task = asyncio.create_task(self._prune_loop())

    async def stop(self) -> None:
        self._running = False
        logger.info("Stopping alert pipeline")

        if self._prune_task:
            self._prune_task.cancel()
            try:
                await self._prune_task
            except asyncio.CancelledError:
                pass
            self._prune_task = None

        await self.multiplexer.stop()

    async def __aenter__(self):
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.stop()

    # === Status ===

    def get_status(self) -> Dict[str, Any]:
        stats = self.multiplexer.stats
        return {
            "running": self._running,
            "timestamp_ms": int(time.time() * 1000),
            "connection": self.multiplexer.state.value,
            "endpoint": self.multiplexer.current_endpoint,
            "symbols": self.symbols,
            "topics": len(self.multiplexer.topics),
            "stream": {
                "messages": stats.messages_received,
                "reconnects": stats.reconnect_count,
                "failovers": stats.failover_count,
                "parse_errors": stats.parse_errors,
            },
            "ledgers": {name: len(ledger) for name, ledger in self.ledgers.items()},
            "notifications": {
                "enabled": self.gate.get_settings().enabled,
                "dispatched": self.gate.stats.dispatched,
                "suppressed": self.gate.stats.suppressed,
            },
            "metrics": self.metrics.get_summary(),
        }
