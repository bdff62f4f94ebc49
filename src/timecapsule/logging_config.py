"""Console logging for the capsule server and CLI.

Messages carry a bracketed tag naming the part of the system that wrote
them (``[GATE] Capsule ... claimed``). On a terminal the level and the tag
are coloured; anywhere else the output stays plain text.
"""

import copy
import logging
import re
import sys
from typing import TextIO

RESET = "\033[0m"
BOLD = "\033[1m"

LEVEL_COLORS = {
    logging.DEBUG: "\033[36m",
    logging.INFO: "\033[32m",
    logging.WARNING: "\033[33m",
    logging.ERROR: "\033[31m",
    logging.CRITICAL: "\033[35m",
}

TAG_COLORS = {
    "CAPSULE": "\033[96m",
    "GATE": "\033[95m",
    "SERVER": "\033[94m",
    "DB": "\033[97m",
    "AUTH": "\033[93m",
    "CLIENT": "\033[90m",
}

QUIET_LOGGERS = ("httpx", "httpcore", "aiosqlite")

_TAG = re.compile(r"\[([A-Z]+)\]")


def _color_tag(match: re.Match) -> str:
    color = TAG_COLORS.get(match.group(1))
    if color is None:
        return match.group(0)
    return f"{color}{BOLD}{match.group(0)}{RESET}"


class ColoredFormatter(logging.Formatter):
    """Colours the level name and known ``[TAG]`` markers.

    Formats a copy of the record, so other handlers see it unchanged.
    """

    def __init__(self, fmt: str | None = None, datefmt: str | None = None, use_color: bool = True):
        super().__init__(fmt=fmt, datefmt=datefmt)
        self.use_color = use_color

    def format(self, record: logging.LogRecord) -> str:
        if not self.use_color:
            return super().format(record)

        shown = copy.copy(record)
        shown.levelname = f"{LEVEL_COLORS.get(record.levelno, '')}{record.levelname:<7}{RESET}"
        shown.msg = _TAG.sub(_color_tag, record.getMessage())
        shown.args = None
        return super().format(shown)


def setup_colored_logging(
    verbose: bool = False,
    stream: TextIO | None = None,
    use_color: bool | None = None,
) -> logging.Handler:
    """Send all logging to one console handler.

    Replaces any handlers already on the root logger. Colour defaults to
    on when the stream is a terminal.

    Args:
        verbose: DEBUG instead of INFO.
        stream: Destination, stdout by default.
        use_color: Force colour on or off.

    Returns:
        The installed handler.
    """
    stream = stream or sys.stdout
    if use_color is None:
        use_color = stream.isatty()

    handler = logging.StreamHandler(stream)
    handler.setFormatter(
        ColoredFormatter("%(asctime)s %(levelname)s %(message)s", datefmt="%H:%M:%S", use_color=use_color)
    )

    root = logging.getLogger()
    for existing in root.handlers[:]:
        root.removeHandler(existing)
    root.addHandler(handler)
    root.setLevel(logging.DEBUG if verbose else logging.INFO)

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
    return handler
