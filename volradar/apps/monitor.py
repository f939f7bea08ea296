#!/usr/bin/env python3
"""
Live volume anomaly monitor.

Usage:
    volradar BTCUSDT ETHUSDT SOLUSDT
    volradar BTCUSDT --backfill 60 --status 30
    volradar BTCUSDT --endpoint wss://stream-testnet.bybit.com/v5/public/linear
"""

import argparse
import asyncio
import logging
from typing import List, Optional

from ..config import DEFAULT_ENDPOINTS, MultiplexerConfig, PipelineConfig, default_state_dir
from ..display.colors import Colors
from ..display.printers import print_alert, print_market_open, print_status
from ..logging_config import log_exception, setup_logging
from ..notifications import LogNotifier
from ..pipeline import AlertPipeline
from ..rest import BybitRestClient

DEFAULT_SYMBOLS = ["BTCUSDT", "ETHUSDT", "SOLUSDT"]

logger = logging.getLogger(__name__)


async def run_monitor(
    config: PipelineConfig,
    quiet: bool = False,
    backfill_minutes: int = 0,
    status_interval: float = 0,
    market_open: bool = True,
) -> None:
    """Run the pipeline until interrupted."""
    pipeline = AlertPipeline(config, notifier=LogNotifier())
    if not quiet:
        pipeline.on_alert(print_alert)

    if backfill_minutes > 0 or market_open:
        async with BybitRestClient() as client:
            if backfill_minutes > 0:
                loaded = await pipeline.backfill(client, backfill_minutes)
                print(f"{Colors.DIM}Backfilled {loaded} candles{Colors.RESET}")
            if market_open:
                await pipeline.refresh_market_open(client)
                if not quiet:
                    print_market_open(pipeline.market_open)

    print(f"{Colors.DIM}Connecting to {config.multiplexer.endpoints[0]}...{Colors.RESET}")
    async with pipeline:
        if await pipeline.multiplexer.wait_connected(timeout=15):
            print(f"{Colors.GREEN}Connected! Watching {', '.join(pipeline.symbols)}{Colors.RESET}\n")
        else:
            print(f"{Colors.YELLOW}Still connecting; alerts will appear once the stream is up{Colors.RESET}")

        while True:
            if status_interval > 0:
                await asyncio.sleep(status_interval)
                if not quiet:
                    print_status(pipeline.get_status(), pipeline.watchlist.ranked(pipeline.market_open))
            else:
                await asyncio.sleep(3600)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Stream volume breakouts, VPT swings and minute spikes")
    parser.add_argument(
        "symbols", nargs="*", default=DEFAULT_SYMBOLS, help="Symbols to watch (default: BTC, ETH, SOL)"
    )
    parser.add_argument("--interval", default="1", help="Kline interval (default: 1)")
    parser.add_argument(
        "--endpoint",
        action="append",
        dest="endpoints",
        help="Websocket endpoint; repeat for failover order (default: mainnet, testnet)",
    )
    parser.add_argument(
        "--state-dir",
        default=None,
        help=f"Directory for persisted settings (default: {default_state_dir()})",
    )
    parser.add_argument(
        "--confirmed-only", action="store_true", help="Only evaluate closed candles"
    )
    parser.add_argument(
        "--notify-spikes", action="store_true", help="Also notify on minute volume spikes"
    )
    parser.add_argument(
        "--backfill", type=int, default=0, metavar="MINUTES", help="Warm detectors from REST history"
    )
    parser.add_argument(
        "--no-market-open", action="store_true", help="Skip the session open price lookup"
    )
    parser.add_argument(
        "--status", type=float, default=0, metavar="SECONDS", help="Print status every N seconds"
    )
    parser.add_argument("--quiet", "-q", action="store_true", help="Only log notifications")
    parser.add_argument("--log-level", default=None, help="DEBUG, INFO, WARNING, ERROR")
    parser.add_argument("--log-file", default=None, help="Also log to this file")
    return parser


def main(argv: Optional[List[str]] = None) -> None:
    args = build_parser().parse_args(argv)
    setup_logging(level=args.log_level, log_file=args.log_file)

    config = PipelineConfig(
        symbols=args.symbols,
        kline_interval=args.interval,
        multiplexer=MultiplexerConfig(endpoints=tuple(args.endpoints or DEFAULT_ENDPOINTS)),
        confirmed_only=args.confirmed_only,
        notify_spikes=args.notify_spikes,
        state_dir=args.state_dir or default_state_dir(),
    )

    try:
        asyncio.run(
            run_monitor(
                config,
                quiet=args.quiet,
                backfill_minutes=args.backfill,
                status_interval=args.status,
                market_open=not args.no_market_open,
            )
        )
    except KeyboardInterrupt:
        print(f"\n{Colors.YELLOW}Shutting down...{Colors.RESET}")
    except Exception as e:
        log_exception(logger, e, "Monitor stopped on error")
        raise


if __name__ == "__main__":
    main()
