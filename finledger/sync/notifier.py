"""
User-facing notifications.

The coordinator reports background failures through a Notifier because
nothing is awaiting the command that caused them.
"""

from abc import ABC, abstractmethod

import structlog


class Notifier(ABC):
    """Where background errors and warnings are surfaced."""

    @abstractmethod
    def error(self, message: str) -> None:
        pass

    @abstractmethod
    def warning(self, message: str) -> None:
        pass


class LogNotifier(Notifier):
    """Writes notifications to the structured log."""

    def __init__(self):
        self._logger = structlog.get_logger("finledger.notifier")

    def error(self, message: str) -> None:
        self._logger.error("user_notification", message=message)

    def warning(self, message: str) -> None:
        self._logger.warning("user_notification", message=message)
