# voice_chat/notifications.py
"""
User-visible notices (toasts) raised by the conversation runtime
"""

import logging
from abc import ABC, abstractmethod

logger = logging.getLogger(__name__)

INFO = "info"
WARNING = "warning"
ERROR = "error"


class Notifier(ABC):
    """Fire-and-forget notification collaborator"""

    @abstractmethod
    def notify(self, kind: str, title: str, message: str) -> None:
        pass


class LogNotifier(Notifier):
    """Routes notices to the log"""

    LEVELS = {INFO: logging.INFO, WARNING: logging.WARNING, ERROR: logging.ERROR}

    def notify(self, kind: str, title: str, message: str) -> None:
        logger.log(self.LEVELS.get(kind, logging.INFO), f"[{title}] {message}")


class ConsoleNotifier(Notifier):
    """Prints notices for the command-line host"""

    ICONS = {INFO: "ℹ️", WARNING: "⚠️", ERROR: "❌"}

    def notify(self, kind: str, title: str, message: str) -> None:
        print(f"{self.ICONS.get(kind, '•')}  {title}: {message}")
