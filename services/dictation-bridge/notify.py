"""User-visible notifications (toasts and blocking prompts)."""

import logging
from enum import Enum
from typing import Protocol

logger = logging.getLogger(__name__)


class Severity(str, Enum):
    SUCCESS = "success"
    ERROR = "error"
    INFO = "info"


class Notifier(Protocol):
    def notify(self, message: str, severity: Severity = Severity.INFO) -> None:
        """Show a transient toast."""

    def prompt(self, message: str) -> None:
        """Show a blocking prompt the user must acknowledge."""


class LoggingNotifier:
    """Notifier for headless deployments: every notification becomes a log line."""

    def notify(self, message: str, severity: Severity = Severity.INFO) -> None:
        level = logging.ERROR if severity == Severity.ERROR else logging.INFO
        logger.log(level, "[%s] %s", severity.value, message)

    def prompt(self, message: str) -> None:
        logger.error("[prompt] %s", message)
