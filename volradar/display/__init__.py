"""Terminal display helpers."""

from .colors import Colors
from .printers import format_alert, print_alert, print_status

__all__ = ["Colors", "format_alert", "print_alert", "print_status"]
