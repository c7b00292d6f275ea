import logging
import time
from pathlib import Path

from rich.console import Console
from rich.markup import escape
from typing_extensions import override

# legacy_windows=False keeps UTF-8 output working on Windows terminals
console = Console(legacy_windows=False)

_LEVEL_COLORS: dict[int, str] = {
    logging.ERROR: "red",
    logging.WARNING: "yellow",
    logging.DEBUG: "dim",
}


def _timestamp() -> str:
    now = time.time()
    return time.strftime("%H:%M:%S", time.localtime(now)) + f".{int(now % 1 * 1000):03d}"


def print_with_prefix(prefix: str, text: str, color: str, width: int = 10) -> None:
    """Print each line of text behind a timestamp and a colored prefix.

    Args:
        prefix: Component name shown in front of every line
        text: The message, possibly spanning several lines
        color: Rich color for the prefix
        width: Column the prefix is padded to
    """
    stamp = _timestamp()
    padded_prefix = escape(prefix).ljust(width)
    for line in text.split("\n"):
        console.print(
            f"[dim]{stamp}[/dim] | [{color}]{padded_prefix}[/] | {escape(line)}",
            highlight=False,
        )


class PrefixedLogHandler(logging.Handler):
    """Logging handler rendering records through print_with_prefix.

    Warnings and errors take over the prefix color so they stand out from
    the component's own color.
    """

    def __init__(self, prefix: str, color: str, width: int = 10):
        super().__init__()
        self.prefix: str = prefix
        self.color: str = color
        self.width: int = width

    @override
    def emit(self, record: logging.LogRecord) -> None:
        try:
            msg = self.format(record)
            color = self.color
            for level in (logging.ERROR, logging.WARNING):
                if record.levelno >= level:
                    color = _LEVEL_COLORS[level]
                    break
            else:
                if record.levelno <= logging.DEBUG:
                    color = _LEVEL_COLORS[logging.DEBUG]
            print_with_prefix(self.prefix, msg, color, width=self.width)
        except Exception:
            self.handleError(record)


def ensure_dir(path: Path) -> None:
    path.mkdir(parents=True, exist_ok=True)
