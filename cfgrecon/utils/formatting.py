from __future__ import annotations
import sys


if sys.platform == "win32":
    import colorama  # pylint:disable=import-error


ansi_color_enabled: bool = False

_ANSI_CODES = {
    "red": "31m",
    "green": "32m",
    "yellow": "33m",
    "blue": "34m",
    "magenta": "35m",
    "cyan": "36m",
    "gray": "90m",
    "bright_red": "91m",
}


def setup_terminal():
    """
    Enable colorized log output when both stdout and stderr are TTYs. On Windows the console is wrapped by colorama
    first.
    """
    isatty = (
        hasattr(sys.stdout, "isatty") and sys.stdout.isatty() and hasattr(sys.stderr, "isatty") and sys.stderr.isatty()
    )
    if sys.platform == "win32" and isatty:
        if not isinstance(sys.stdout, colorama.ansitowin32.StreamWrapper):
            colorama.init()

    global ansi_color_enabled  # pylint:disable=global-statement
    ansi_color_enabled = isatty


def ansi_color(s: str, color: str | None) -> str:
    """
    Wrap `s` in the ANSI escape sequence for `color`. Whether the terminal honors it is the caller's concern.
    """
    if color is None:
        return s
    return "\u001b[" + _ANSI_CODES[color] + s + "\u001b[0m"


def fmt_addr(addr: int | None) -> str:
    if addr is None:
        return "END"
    return f"{addr:#x}"
