"""
Notification gate.

Decides whether an alert is worth interrupting someone for, and rate limits
those interruptions per symbol. Delivery is delegated to a Notifier; the
gate only owns its settings and its cooldown map.

Gating rule (all must hold):
    1. Notifications enabled
    2. Notifier reports permission granted
    3. Cooldown elapsed for the symbol (30s)
    4. |volume change| >= volume_spike_threshold (VPT events: >= 1.0)
    5. |price change| >= price_change_threshold (VPT events: >= 1.0)
    6. volume >= min_volume
"""

import logging
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field, replace
from typing import Any, Callable, Dict, Optional

from .config import ConfigStore, NotificationSettings
from .detectors.alerts import (
    Alert,
    AlertKind,
    BreakoutType,
    Strength,
    VolumeBreakout,
    VolumeSpike,
    VPTAlert,
    display_symbol,
)

logger = logging.getLogger(__name__)

DEFAULT_COOLDOWN_MS = 30_000

# Fixed tests for VPT events, whose change figure is already normalized
VPT_VOLUME_CHANGE_MIN = 1.0
VPT_PRICE_CHANGE_MIN = 1.0

# Alerts below this price move are never offered to the gate
ELIGIBLE_PRICE_CHANGE = 1.0

CHANGE_DISPLAY_LIMIT = 1000.0


def now_ms() -> int:
    return int(time.time() * 1000)


@dataclass(frozen=True)
class NotificationEvent:
    """What the gate evaluates. Built from an alert by ``event_from_alert``."""

    symbol: str
    price: float
    price_change: float  # percent
    volume: float
    volume_change: float  # percent
    timestamp_ms: int
    kind: AlertKind = AlertKind.VOLUME_SPIKE

    @property
    def display(self) -> str:
        return display_symbol(self.symbol)


@dataclass(frozen=True)
class Notification:
    """A rendered notification, ready for a Notifier."""

    symbol: str
    title: str
    body: str
    tag: str
    silent: bool = False
    options: Dict[str, Any] = field(default_factory=dict)


class Notifier(ABC):
    """Delivers notifications to a person."""

    def permission_granted(self) -> bool:
        return True

    @abstractmethod
    def present(self, notification: Notification) -> Any:
        """Show the notification. May raise; the gate logs and carries on."""


class LogNotifier(Notifier):
    """Writes notifications to the log."""

    def __init__(self, log: Optional[logging.Logger] = None, level: int = logging.WARNING):
        self._log = log or logging.getLogger("volradar.alerts")
        self._level = level

    def present(self, notification: Notification) -> None:
        body = notification.body.replace("\n", " | ")
        self._log.log(self._level, f"{notification.title} {body}")


class CallbackNotifier(Notifier):
    """Hands notifications to a callable, e.g. a desktop bridge or a test spy."""

    def __init__(self, callback: Callable[[Notification], Any], granted: bool = True):
        self._callback = callback
        self.granted = granted

    def permission_granted(self) -> bool:
        return self.granted

    def present(self, notification: Notification) -> Any:
        return self._callback(notification)


# =============================================================================
# FORMATTING
# =============================================================================


def format_volume(volume: float) -> str:
    """1234567 -> 1.2M"""
    if volume >= 1e9:
        return f"{volume / 1e9:.1f}B"
    if volume >= 1e6:
        return f"{volume / 1e6:.1f}M"
    if volume >= 1e3:
        return f"{volume / 1e3:.1f}K"
    return f"{volume:.0f}"


def _clamp(value: float, limit: float = CHANGE_DISPLAY_LIMIT) -> float:
    return max(-limit, min(limit, value))


def format_notification(event: NotificationEvent, settings: NotificationSettings) -> Notification:
    price_icon = "📈" if event.price_change >= 0 else "📉"
    kind_icon = {
        AlertKind.VOLUME_BREAKOUT: "💥",
        AlertKind.VPT_ALERT: "📈",
    }.get(event.kind, "📊")

    price_change = _clamp(event.price_change)
    volume_change = _clamp(event.volume_change)
    body = (
        f"Price: ${event.price:.2f} ({price_change:+.2f}%)\n"
        f"Volume: {format_volume(event.volume)} ({volume_change:+.0f}%)"
    )
    return Notification(
        symbol=event.symbol,
        title=f"{price_icon} {event.display} {kind_icon}",
        body=body,
        tag=f"volume-spike-{event.symbol}",
        silent=not settings.sound_enabled,
        options={"kind": event.kind.value, "timestamp_ms": event.timestamp_ms},
    )


# =============================================================================
# ELIGIBILITY
# =============================================================================


def event_from_alert(alert: Alert, include_spikes: bool = False) -> Optional[NotificationEvent]:
    """
    Convert an alert into a gate event, or None if the alert is not notifiable.

    - Breakouts: only SURGE/EXPLOSION with |price change| >= 1%; volume change is ratio * 100
    - VPT: only STRONG/EXTREME with |price change| >= 1%; volume change is the VPT change
    - Minute spikes: only when ``include_spikes`` is set
    """
    if isinstance(alert, VolumeBreakout):
        if alert.breakout_type not in (BreakoutType.SURGE, BreakoutType.EXPLOSION):
            return None
        if abs(alert.price_change) < ELIGIBLE_PRICE_CHANGE:
            return None
        volume, volume_change = alert.current_volume, alert.volume_ratio * 100
    elif isinstance(alert, VPTAlert):
        if alert.strength not in (Strength.STRONG, Strength.EXTREME):
            return None
        if abs(alert.price_change) < ELIGIBLE_PRICE_CHANGE:
            return None
        volume, volume_change = alert.volume, alert.vpt_change
    elif isinstance(alert, VolumeSpike):
        if not include_spikes:
            return None
        volume, volume_change = alert.current_volume, alert.volume_change
    else:
        return None

    return NotificationEvent(
        symbol=alert.symbol,
        price=alert.price,
        price_change=alert.price_change,
        volume=volume,
        volume_change=volume_change,
        timestamp_ms=alert.timestamp_ms,
        kind=alert.kind,
    )


# =============================================================================
# GATE
# =============================================================================


@dataclass
class GateStats:
    dispatched: int = 0
    suppressed: int = 0
    failed: int = 0


class NotificationGate:
    """
    Threshold and cooldown gate in front of a Notifier.

    Usage:
        gate = NotificationGate(LogNotifier(), store=JsonFileStore())
        gate.notify(event)
    """

    def __init__(
        self,
        notifier: Optional[Notifier] = None,
        settings: Optional[NotificationSettings] = None,
        store: Optional[ConfigStore] = None,
        cooldown_ms: int = DEFAULT_COOLDOWN_MS,
        clock: Callable[[], int] = now_ms,
    ):
        self._notifier = notifier or LogNotifier()
        self._store = store
        self._settings = settings if settings is not None else NotificationSettings.load(store)
        self._cooldown_ms = cooldown_ms
        self._clock = clock
        self._last_notified: Dict[str, int] = {}
        self.stats = GateStats()

    @property
    def cooldown_ms(self) -> int:
        return self._cooldown_ms

    @property
    def notifier(self) -> Notifier:
        return self._notifier

    # === Settings ===

    def get_settings(self) -> NotificationSettings:
        return replace(self._settings)

    def update_settings(self, **changes) -> NotificationSettings:
        self._settings = self._settings.merged(changes)
        self._settings.save(self._store)
        return self.get_settings()

    def enable(self) -> bool:
        """Enable notifications if the notifier has permission."""
        if not self._notifier.permission_granted():
            logger.warning("Notifier has no permission; notifications stay disabled")
            return False
        self.update_settings(enabled=True)
        return True

    def disable(self) -> None:
        self.update_settings(enabled=False)

    # === Decision ===

    def in_cooldown(self, symbol: str, now: Optional[int] = None) -> bool:
        last = self._last_notified.get(symbol)
        if last is None:
            return False
        now = self._clock() if now is None else now
        return now - last < self._cooldown_ms

    def should_notify(self, event: NotificationEvent, now: Optional[int] = None) -> bool:
        settings = self._settings
        if not settings.enabled or not self._notifier.permission_granted():
            return False
        if self.in_cooldown(event.symbol, now):
            return False

        if event.kind is AlertKind.VPT_ALERT:
            volume_ok = abs(event.volume_change) >= VPT_VOLUME_CHANGE_MIN
            price_ok = abs(event.price_change) >= VPT_PRICE_CHANGE_MIN
        else:
            volume_ok = abs(event.volume_change) >= settings.volume_spike_threshold
            price_ok = abs(event.price_change) >= settings.price_change_threshold

        return volume_ok and price_ok and event.volume >= settings.min_volume

    def dispatch(self, event: NotificationEvent) -> bool:
        """Render and present ``event``. Notifier failures are logged, not raised."""
        notification = format_notification(event, self._settings)
        try:
            self._notifier.present(notification)
        except Exception as e:
            self.stats.failed += 1
            logger.warning(f"Failed to present notification for {event.symbol}: {e}")
            return False
        self.stats.dispatched += 1
        return True

    def notify(self, event: NotificationEvent, now: Optional[int] = None) -> bool:
        """
        Gate, stamp the cooldown, then dispatch.

        Returns:
            True if a notification was presented
        """
        now = self._clock() if now is None else now
        if not self.should_notify(event, now):
            self.stats.suppressed += 1
            return False
        self._last_notified[event.symbol] = now
        return self.dispatch(event)

    def reset_cooldowns(self) -> None:
        self._last_notified.clear()
