"""
Retention policy enforcement for backups.

Keeps the newest N backup units of a configuration and deletes the rest.
"""

import logging
import os
from datetime import datetime, timezone
from typing import Dict, List

from .storage import LocalStorage, StorageError

logger = logging.getLogger(__name__)


class RetentionManager:
    """
    Enforces "keep last N backups" per configuration.

    A retention of 0 or less means unlimited.
    """

    def __init__(self, storage: LocalStorage):
        """
        Initialize retention manager.

        Args:
            storage: Backup root handler
        """
        self.storage = storage
        self.logs = []

    def cleanup(self, config_id: str, retention: int) -> List[str]:
        """
        Delete the oldest backup units of a configuration beyond ``retention``.

        Units are ordered by modification time, newest first; units with equal
        times are ordered by name, whose timestamp suffix sorts chronologically.

        Args:
            config_id: Configuration id
            retention: Number of units to keep

        Returns:
            Paths of deleted units

        Raises:
            StorageError: If the backup root cannot be listed
        """
        if retention <= 0:
            return []

        backups = self.storage.list_backups(config_id)
        if len(backups) <= retention:
            return []

        mtimes: Dict[str, float] = {}
        for path in backups:
            try:
                mtimes[path] = os.stat(path).st_mtime
            except OSError:
                # Vanished between listing and stat; oldest possible
                mtimes[path] = 0.0

        backups.sort(key=lambda p: (mtimes[p], os.path.basename(p)), reverse=True)

        deleted = []
        for path in backups[retention:]:
            try:
                self.storage.delete(path)
                deleted.append(path)
                self._log(f"Deleted old backup {os.path.basename(path)}")
            except StorageError as e:
                self._log(f"Failed to delete old backup {os.path.basename(path)}: {e}")

        return deleted

    def _log(self, message: str):
        """
        Add a log message with timestamp.

        Args:
            message: Log message
        """
        timestamp = datetime.now(timezone.utc).strftime('%Y-%m-%d %H:%M:%S UTC')
        self.logs.append(f"[{timestamp}] {message}")
        logger.info(message, extra={'event': 'BACKUP_CLEANUP'})
