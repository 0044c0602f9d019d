import logging
import re
import sys
from pathlib import Path
from typing import Union

logger = logging.getLogger("kv-recovery")

TIMESTAMP_LENGTH = len("YYMMDDHH")
_TIMESTAMP_RE = re.compile(r"^[0-9]{%d}$" % TIMESTAMP_LENGTH)


def is_valid_timestamp(value: str) -> bool:
    """Return True for a coarse YYMMDDHH bucket key."""
    return bool(value) and _TIMESTAMP_RE.match(value) is not None


def configure_logging(debug: bool = False) -> logging.Logger:
    """Attach a single stdout handler to the package logger.

    The handler is app-managed: existing handlers are cleared and the logger
    does not propagate, so repeated CLI invocations in one process never
    duplicate output.
    """
    logger.setLevel(logging.DEBUG if debug else logging.INFO)
    logger.propagate = False
    logger.handlers.clear()

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(logging.DEBUG if debug else logging.INFO)
    formatter = logging.Formatter(
        '%(asctime)s - [%(name)s] - %(levelname)s - %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    )
    console_handler.setFormatter(formatter)
    logger.addHandler(console_handler)
    return logger


def make_dir(path: Union[str, Path]) -> Path:
    """Create a directory (and parents) if it does not exist yet."""
    path = Path(path)
    path.mkdir(parents=True, exist_ok=True)
    return path
