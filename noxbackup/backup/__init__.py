"""
Backup and disaster recovery engine.

This module handles the core backup functionality including:
- Configuration registry
- Source acquisition (paths and database export)
- Encryption, remote sync and validation
- Retention policy enforcement
- Restore and test-restore
"""

from .config_store import BackupConfiguration, ConfigStore
from .engine import DisasterRecovery
from .executor import BackupExecutor
from .restore import RestoreManager
from .results import BackupResult, RestoreResult, ValidationResult
from .retention import RetentionManager
from .storage import LocalStorage

__all__ = [
    'BackupConfiguration',
    'ConfigStore',
    'DisasterRecovery',
    'BackupExecutor',
    'RestoreManager',
    'BackupResult',
    'RestoreResult',
    'ValidationResult',
    'RetentionManager',
    'LocalStorage',
]
