"""
Progress reporting for long-running assessment runs.

The pipeline reports batch progress and per-student warnings through a
ProgressReporter passed in by the host. The default implementation writes
to the standard logger.
"""

import logging
from typing import Any, Protocol

logger = logging.getLogger(__name__)


class ProgressReporter(Protocol):
    """Sink for progress messages and user-visible warnings."""

    def update(self, message: str) -> None:
        """Replace the current progress message."""
        ...

    def log_error(self, message: str, details: Any = None) -> None:
        """Record an error that does not stop the run."""
        ...

    def notify(self, message: str) -> None:
        """Surface a short warning to the person running the assessment."""
        ...


class LoggingProgressReporter:
    """ProgressReporter that only logs."""

    def __init__(self) -> None:
        self.current_message = ""
        self.errors: list[str] = []

    def update(self, message: str) -> None:
        self.current_message = message
        logger.info(message)

    def log_error(self, message: str, details: Any = None) -> None:
        self.errors.append(message)
        if details is not None:
            logger.error("%s | details: %s", message, details)
        else:
            logger.error(message)

    def notify(self, message: str) -> None:
        logger.warning(message)
