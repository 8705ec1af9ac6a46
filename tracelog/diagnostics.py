"""
Diagnostic sink for tracelog.

Delivery is best effort: failures are reported through the "tracelog" logger
and, optionally, an observer callback. Nothing here raises.
"""

import logging
import os
from collections.abc import Callable, Sequence

from .errors import LogError

logger = logging.getLogger("tracelog")

FailureObserver = Callable[[list[dict], LogError], None]

LOG_FORMAT = "[tracelog] %(levelname)s %(name)s - %(message)s"


class ConsoleHandler(logging.StreamHandler):
    """Console handler installed by setup_logging; added at most once."""


def setup_logging(level: int = logging.DEBUG, force: bool = False) -> logging.Logger:
    """
    Attach a console handler to the package logger.

    Only done when TRACE_DEBUG is set, unless force is True. The root logger
    is never touched.

    Returns:
        The package logger
    """
    if not (force or os.environ.get("TRACE_DEBUG")):
        return logger

    if not any(isinstance(h, ConsoleHandler) for h in logger.handlers):
        handler = ConsoleHandler()
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        logger.addHandler(handler)

    logger.setLevel(level)
    return logger


def notify_failure(
    observer: FailureObserver | None,
    records: Sequence[dict],
    error: LogError,
):
    """Hand undeliverable records to the observer, if any."""
    if observer is None or not records:
        return

    try:
        observer(list(records), error)
    except Exception as e:
        logger.warning(f"Delivery failure observer error: {e}")
