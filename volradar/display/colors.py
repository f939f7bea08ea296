"""ANSI color codes for terminal output."""


class Colors:
    """ANSI escape codes for terminal coloring."""

    RESET = "\033[0m"
    BOLD = "\033[1m"
    DIM = "\033[2m"

    RED = "\033[91m"
    GREEN = "\033[92m"
    YELLOW = "\033[93m"
    MAGENTA = "\033[95m"
    CYAN = "\033[96m"


def direction_color(change: float) -> str:
    if change > 0:
        return Colors.GREEN
    if change < 0:
        return Colors.RED
    return Colors.DIM
