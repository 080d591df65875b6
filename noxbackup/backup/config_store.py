"""
Backup configurations and the in-memory store that holds them.

The store is the runtime source of truth. Durable storage, when enabled, is
a write-through layer handled by the engine (see noxbackup.persistence).
"""

import copy
import threading
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

DATABASE_SOURCE = 'DATABASE'


class ConfigurationError(Exception):
    """Raised when a backup configuration is missing or has invalid fields."""
    pass


class ConfigurationNotFoundError(Exception):
    """Raised when an unknown configuration id is referenced."""
    pass


class PersistenceError(Exception):
    """Raised when a configuration change cannot be written to durable storage."""
    pass


def _parse_bool(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in ('true', '1', 'yes', 'on')
    return bool(value)


@dataclass
class BackupConfiguration:
    """
    Policy describing what to back up, how often, and with what protections.

    ``source`` entries are filesystem paths or the DATABASE token, which runs
    the database export script into the backup unit.
    """

    id: str
    name: str = ''
    source: List[str] = field(default_factory=list)
    destination: str = ''
    schedule: Optional[str] = None
    retention: int = 0
    encrypt: bool = False
    remote_sync: bool = False
    remote_path: Optional[str] = None
    validate: bool = False

    def __post_init__(self):
        if not self.name:
            self.name = self.id

    def validate_fields(self):
        """
        Check required fields and field types.

        Raises:
            ConfigurationError: If the configuration is unusable
        """
        if not self.id or not isinstance(self.id, str):
            raise ConfigurationError("Invalid backup configuration: missing required field 'id'")

        if self.id in ('.', '..') or '/' in self.id or '\\' in self.id:
            raise ConfigurationError(f"Invalid backup configuration id: {self.id!r}")

        if not self.source:
            raise ConfigurationError("Invalid backup configuration: missing required field 'source'")

        if not all(isinstance(s, str) and s.strip() for s in self.source):
            raise ConfigurationError("Invalid backup configuration: source entries must be non-empty strings")

        if not self.destination:
            raise ConfigurationError("Invalid backup configuration: missing required field 'destination'")

        if isinstance(self.retention, bool) or not isinstance(self.retention, int):
            raise ConfigurationError("Invalid backup configuration: retention must be an integer")

        if self.remote_sync and not self.remote_path:
            raise ConfigurationError("Invalid backup configuration: remotePath is required when remoteSync is enabled")

    @property
    def is_unlimited(self) -> bool:
        return self.retention <= 0

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'BackupConfiguration':
        """
        Build a configuration from its JSON shape.

        Accepts both camelCase (``remoteSync``) and snake_case keys.

        Raises:
            ConfigurationError: If the payload is not a mapping or retention is not numeric
        """
        if not isinstance(data, dict):
            raise ConfigurationError("Backup configuration must be an object")

        source = data.get('source') or []
        if isinstance(source, str):
            source = [s.strip() for s in source.split(',') if s.strip()]

        retention = data.get('retention', 0)
        try:
            retention = int(retention) if retention is not None else 0
        except (TypeError, ValueError):
            raise ConfigurationError(f"Invalid retention value: {retention!r}")

        return cls(
            id=data.get('id') or '',
            name=data.get('name') or '',
            source=list(source),
            destination=data.get('destination') or '',
            schedule=data.get('schedule') or None,
            retention=retention,
            encrypt=_parse_bool(data.get('encrypt', False)),
            remote_sync=_parse_bool(data.get('remoteSync', data.get('remote_sync', False))),
            remote_path=data.get('remotePath', data.get('remote_path')) or None,
            validate=_parse_bool(data.get('validate', False)),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'name': self.name,
            'source': list(self.source),
            'destination': self.destination,
            'schedule': self.schedule,
            'retention': self.retention,
            'encrypt': self.encrypt,
            'remoteSync': self.remote_sync,
            'remotePath': self.remote_path,
            'validate': self.validate,
        }


class ConfigStore:
    """
    Thread-safe registry of backup configurations keyed by id.

    Values handed out are copies; mutating them never changes the store.
    """

    def __init__(self):
        self._configs: Dict[str, BackupConfiguration] = {}
        self._lock = threading.RLock()

    def get(self, config_id: str) -> BackupConfiguration:
        """
        Raises:
            ConfigurationNotFoundError: If the id is unknown
        """
        with self._lock:
            config = self._configs.get(config_id)
            if config is None:
                raise ConfigurationNotFoundError(f"Backup configuration {config_id} not found")
            return copy.deepcopy(config)

    def put(self, config: BackupConfiguration) -> bool:
        """
        Store a configuration, replacing any with the same id.

        Returns:
            True if an existing configuration was replaced
        """
        config.validate_fields()
        with self._lock:
            replaced = config.id in self._configs
            self._configs[config.id] = copy.deepcopy(config)
            return replaced

    def delete(self, config_id: str) -> BackupConfiguration:
        """
        Remove a configuration.

        Returns:
            The removed configuration

        Raises:
            ConfigurationNotFoundError: If the id is unknown
        """
        with self._lock:
            config = self._configs.pop(config_id, None)
            if config is None:
                raise ConfigurationNotFoundError(f"Backup configuration {config_id} not found")
            return config

    def list(self) -> List[BackupConfiguration]:
        with self._lock:
            return [copy.deepcopy(c) for c in self._configs.values()]

    def __contains__(self, config_id: str) -> bool:
        with self._lock:
            return config_id in self._configs

    def __len__(self) -> int:
        with self._lock:
            return len(self._configs)
