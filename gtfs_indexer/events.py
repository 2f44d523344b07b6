"""Progress events emitted while indexing and publishing a feed."""

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass

logger = logging.getLogger(__name__)

INFO = "info"
DEBUG = "debug"
ERROR = "error"

_LOG_LEVELS = {
    INFO: logging.INFO,
    DEBUG: logging.DEBUG,
    ERROR: logging.ERROR,
}


@dataclass(frozen=True)
class ProgressEvent:
    """A single timestamped progress message."""

    level: str
    message: str
    timestamp: float

    def to_dict(self) -> dict[str, object]:
        return {"level": self.level, "message": self.message, "timestamp": self.timestamp}


ProgressSink = Callable[[ProgressEvent], None]


def null_sink(event: ProgressEvent) -> None:
    """Discard the event."""


def logging_sink(event: ProgressEvent) -> None:
    """Forward the event to the module logger."""
    logger.log(_LOG_LEVELS.get(event.level, logging.INFO), event.message)


def emit(sink: ProgressSink | None, level: str, message: str) -> None:
    """
    Deliver a progress event to ``sink``.

    A failing sink is logged and otherwise ignored.
    """
    if sink is None:
        return
    if level not in _LOG_LEVELS:
        raise ValueError(f"Unknown progress level: {level}")

    event = ProgressEvent(level=level, message=message, timestamp=time.time())
    try:
        sink(event)
    except Exception:
        logger.exception(f"Progress sink failed on event: {message}")
