"""
One-way notification sinks used by the backup engine.

The chat and dashboard layers own delivery; the engine only hands them text.
"""

import logging
from typing import Callable

logger = logging.getLogger(__name__)


class Notifier:
    """Base notifier. Subclasses deliver ``message`` somewhere."""

    def notify(self, message: str):
        raise NotImplementedError


class LogNotifier(Notifier):
    """Writes notifications to the application log."""

    def notify(self, message: str):
        logger.info(f"Notification: {message}")


class CallbackNotifier(Notifier):
    """Forwards notifications to a callable, e.g. a chat channel sender."""

    def __init__(self, callback: Callable[[str], None]):
        self.callback = callback

    def notify(self, message: str):
        self.callback(message)
