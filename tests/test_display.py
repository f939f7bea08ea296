"""
Tests for console formatting, logging setup and the monitor CLI parser.
"""

import logging

from conftest import BASE_MS
from volradar.apps.monitor import DEFAULT_SYMBOLS, build_parser
from volradar.detectors.alerts import BreakoutType, VolumeBreakout
from volradar.display.colors import Colors, direction_color
from volradar.display.printers import format_alert, format_watchlist, print_status
from volradar.logging_config import ColoredFormatter, setup_logging
from volradar.market import WatchlistEntry


class TestPrinters:
    def test_direction_color(self):
        assert direction_color(1.0) == Colors.GREEN
        assert direction_color(-1.0) == Colors.RED
        assert direction_color(0.0) == Colors.DIM

    def test_format_alert(self):
        alert = VolumeBreakout(
            id="x",
            symbol="BTCUSDT",
            price=43000.0,
            price_change=-1.25,
            timestamp_ms=BASE_MS,
            current_volume=2_500_000,
            average_volume=250_000,
            volume_ratio=10.0,
            breakout_type=BreakoutType.EXPLOSION,
        )
        line = format_alert(alert)
        assert "EXPLOSION" in line
        assert "BTC" in line
        assert "-1.25%" in line
        assert "10.0x avg" in line
        assert Colors.MAGENTA in line

    def test_format_watchlist(self):
        lines = format_watchlist(
            [WatchlistEntry("ETHUSDT", 2500.0, 3.5), WatchlistEntry("SOLUSDT", None, None)]
        )
        assert "+3.50%" in lines[0]
        assert "n/a" in lines[1]

    def test_print_status(self, capsys):
        status = {
            "connection": "connected",
            "endpoint": "wss://primary.test",
            "stream": {"messages": 1234, "reconnects": 2},
            "ledgers": {"vpt": 1},
        }
        print_status(status)
        out = capsys.readouterr().out
        assert "1,234 msgs" in out
        assert "vpt=1" in out


class TestLogging:
    def test_setup_logging_writes_file(self, tmp_path):
        log_file = tmp_path / "logs" / "volradar.log"
        logger = setup_logging(name="volradar-test", level="debug", log_file=str(log_file), console=False)
        logger.debug("hello file")
        for handler in logger.handlers:
            handler.flush()

        assert logger.level == logging.DEBUG
        assert "hello file" in log_file.read_text()
        assert logger.propagate is False

    def test_env_level(self, monkeypatch):
        monkeypatch.setenv("VOLRADAR_LOG_LEVEL", "WARNING")
        logger = setup_logging(name="volradar-test-env", console=True)
        assert logger.level == logging.WARNING
        assert isinstance(logger.handlers[0].formatter, ColoredFormatter)

    def test_colored_formatter_restores_levelname(self):
        record = logging.LogRecord("x", logging.ERROR, __file__, 1, "msg", None, None)
        output = ColoredFormatter("%(levelname)s %(message)s").format(record)
        assert "\033[31m" in output
        assert record.levelname == "ERROR"


class TestParser:
    def test_defaults(self):
        args = build_parser().parse_args([])
        assert args.symbols == DEFAULT_SYMBOLS
        assert args.endpoints is None
        assert args.backfill == 0

    def test_endpoint_order(self):
        args = build_parser().parse_args(
            ["btcusdt", "--endpoint", "wss://a", "--endpoint", "wss://b", "--confirmed-only"]
        )
        assert args.symbols == ["btcusdt"]
        assert args.endpoints == ["wss://a", "wss://b"]
        assert args.confirmed_only is True
