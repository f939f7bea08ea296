"""Console output for the monitor app."""

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from ..detectors.alerts import Alert, BreakoutType, Strength, VolumeBreakout, VolumeSpike, VPTAlert
from ..market import MarketOpenCache, WatchlistEntry
from ..notifications import format_volume
from .colors import Colors, direction_color

SEVERITY_COLORS = {
    BreakoutType.EXPLOSION.value: Colors.MAGENTA,
    BreakoutType.SURGE.value: Colors.RED,
    Strength.EXTREME.value: Colors.MAGENTA,
    Strength.STRONG.value: Colors.RED,
}


def _clock(timestamp_ms: int) -> str:
    return datetime.fromtimestamp(timestamp_ms / 1000, tz=timezone.utc).strftime("%H:%M:%S")


def format_alert(alert: Alert) -> str:
    """One line per alert."""
    if isinstance(alert, VolumeBreakout):
        detail = f"{alert.volume_ratio:.1f}x avg, vol {format_volume(alert.current_volume)}"
        severity = alert.breakout_type.value
    elif isinstance(alert, VPTAlert):
        detail = f"VPT {alert.vpt_change:+.1f}%, vol {format_volume(alert.volume)}"
        severity = alert.strength.value
    elif isinstance(alert, VolumeSpike):
        detail = f"vol {alert.volume_change:+.0f}% m/m, {format_volume(alert.current_volume)}"
        severity = "spike"
    else:
        detail, severity = "", alert.classification

    color = SEVERITY_COLORS.get(severity, Colors.YELLOW)
    change_color = direction_color(alert.price_change)
    return (
        f"{Colors.DIM}{_clock(alert.timestamp_ms)}{Colors.RESET} "
        f"{color}{alert.classification.upper():<18}{Colors.RESET} "
        f"{Colors.BOLD}{alert.display:<8}{Colors.RESET} "
        f"${alert.price:<12.4f} "
        f"{change_color}{alert.price_change:+6.2f}%{Colors.RESET}  {detail}"
    )


def print_alert(alert: Alert) -> None:
    print(format_alert(alert))


def format_watchlist(entries: List[WatchlistEntry], limit: int = 10) -> List[str]:
    lines = []
    for entry in entries[:limit]:
        change = entry.change_from_open
        change_text = "   n/a" if change is None else f"{change:+6.2f}%"
        color = direction_color(change or 0.0)
        price = "-" if entry.last_price is None else f"{entry.last_price:.4f}"
        lines.append(f"  {entry.symbol:<14} {price:>14} {color}{change_text}{Colors.RESET}")
    return lines


def print_status(status: Dict[str, Any], watchlist: Optional[List[WatchlistEntry]] = None) -> None:
    connection = status["connection"]
    color = Colors.GREEN if connection == "connected" else Colors.YELLOW
    ledgers = ", ".join(f"{k}={v}" for k, v in status["ledgers"].items())
    stream = status["stream"]
    print(
        f"{Colors.CYAN}[status]{Colors.RESET} {color}{connection}{Colors.RESET} "
        f"{Colors.DIM}{status['endpoint']}{Colors.RESET} | "
        f"{stream['messages']:,} msgs, {stream['reconnects']} reconnects | {ledgers}"
    )
    if watchlist:
        for line in format_watchlist(watchlist):
            print(line)


def print_market_open(cache: MarketOpenCache) -> None:
    prices = cache.prices()
    if not prices:
        print(f"{Colors.DIM}No session open prices available{Colors.RESET}")
        return
    print(f"{Colors.DIM}Session open ({cache.date}): {len(prices)} symbols{Colors.RESET}")
