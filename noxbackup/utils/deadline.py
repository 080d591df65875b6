"""
Per-stage deadlines for backup and restore operations.
"""

import time
from typing import Optional


class BackupTimeoutError(Exception):
    """Raised when a stage exceeds its deadline."""
    pass


class StageDeadline:
    """
    Deadline for a single pipeline stage.

    A timeout of None never expires. ``check`` is passed to long loops as a
    cancellation check; ``remaining`` bounds external command timeouts.
    """

    def __init__(self, stage: str, timeout: Optional[float] = None):
        self.stage = stage
        self.timeout = timeout
        self._started = time.monotonic()

    def remaining(self) -> Optional[float]:
        if self.timeout is None:
            return None
        return max(0.0, self.timeout - (time.monotonic() - self._started))

    @property
    def expired(self) -> bool:
        remaining = self.remaining()
        return remaining is not None and remaining <= 0

    def check(self):
        if self.expired:
            raise BackupTimeoutError(
                f"Stage '{self.stage}' exceeded its deadline of {self.timeout}s"
            )
