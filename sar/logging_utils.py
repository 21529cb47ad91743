"""
Logging: colored one-line messages for the CLI, and standard logging setup
for the router process.
"""
import logging
import os
import sys
from typing import Optional


# ANSI color codes
class Colors:
    RESET = "\033[0m"
    BOLD = "\033[1m"
    RED = "\033[31m"
    GREEN = "\033[32m"
    YELLOW = "\033[33m"
    BLUE = "\033[34m"
    MAGENTA = "\033[35m"


SERVER_LOG_FORMAT = "%(asctime)s sar[%(process)d]: %(levelname)s %(message)s"


def _should_use_colors() -> bool:
    """Determine if colors should be used."""
    if os.environ.get("NO_COLOR"):
        return False

    if os.environ.get("TERM", "") == "dumb":
        return False

    if os.environ.get("FORCE_COLOR") == "1":
        return True

    return sys.stderr.isatty()


def _colorize(text: str, color: str, bold: bool = False) -> str:
    """Apply color to text if colors are enabled."""
    if not _should_use_colors():
        return text

    bold_code = Colors.BOLD if bold else ""
    return f"{bold_code}{color}{text}{Colors.RESET}"


def log_error(message: str) -> None:
    """Log an error message in red."""
    colored = _colorize("ERROR:", Colors.RED, bold=True)
    msg = _colorize(message, Colors.RED)
    print(f"{colored} {msg}", file=sys.stderr, flush=True)


def log_warn(message: str) -> None:
    """Log a warning message in yellow."""
    colored = _colorize("WARNING:", Colors.YELLOW, bold=True)
    msg = _colorize(message, Colors.YELLOW)
    print(f"{colored} {msg}", file=sys.stderr, flush=True)


def log_info(message: str) -> None:
    """Log an info message in blue."""
    colored = _colorize("INFO:", Colors.BLUE, bold=True)
    msg = _colorize(message, Colors.BLUE)
    clean_msg = msg.replace('\r', '').rstrip()
    print(f"{colored} {clean_msg}", file=sys.stderr, flush=True)


def log_success(message: str) -> None:
    """Log a success message in green."""
    checkmark = _colorize("✓", Colors.GREEN, bold=True)
    msg = _colorize(message, Colors.GREEN)
    clean_msg = msg.replace('\r', '').rstrip()
    print(f"{checkmark} {clean_msg}", file=sys.stderr, flush=True)


def log_debug(message: str) -> None:
    """Log a debug message in magenta (only if DEBUG=1)."""
    if os.environ.get("DEBUG") != "1":
        return
    colored = _colorize("DEBUG:", Colors.MAGENTA, bold=True)
    msg = _colorize(message, Colors.MAGENTA)
    clean_msg = msg.replace('\r', '').rstrip()
    print(f"{colored} {clean_msg}", file=sys.stderr, flush=True)


def setup_logging(level: int = logging.INFO, log_file: Optional[str] = None) -> None:
    """
    Configure the root logger for the router process.

    Args:
        level: Logging level
        log_file: Append to this file instead of writing to stderr
    """
    log = logging.getLogger()
    log.setLevel(level)

    if log_file:
        handler = logging.FileHandler(log_file)
    else:
        handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(logging.Formatter(fmt=SERVER_LOG_FORMAT))
    log.addHandler(handler)
