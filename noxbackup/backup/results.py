"""
Result records produced by backup, validation and restore operations.

Records are frozen once built. ``to_dict`` emits the camelCase JSON shape
used by the API and chat layers.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple


@dataclass(frozen=True)
class ValidationResult:
    """Outcome of a read-access check over a backup unit."""

    success: bool
    tested_files: int
    passed_files: int
    failed_files: Tuple[str, ...] = ()
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        data = {
            'success': self.success,
            'testedFiles': self.tested_files,
            'passedFiles': self.passed_files,
            'failedFiles': list(self.failed_files),
        }
        if self.error is not None:
            data['error'] = self.error
        return data


@dataclass(frozen=True)
class BackupResult:
    """Outcome of one ``run_backup`` attempt."""

    id: str
    timestamp: str
    success: bool
    files: Tuple[str, ...] = ()
    size: int = 0
    duration: float = 0.0
    error: Optional[str] = None
    validation_result: Optional[ValidationResult] = None
    backup_path: Optional[str] = None
    failed_stage: Optional[str] = None
    warnings: Tuple[str, ...] = ()
    logs: Tuple[str, ...] = field(default=(), compare=False, repr=False)

    def to_dict(self) -> Dict[str, Any]:
        data = {
            'id': self.id,
            'timestamp': self.timestamp,
            'success': self.success,
            'files': list(self.files),
            'size': self.size,
            'duration': self.duration,
            'backupPath': self.backup_path,
            'warnings': list(self.warnings),
        }
        if self.error is not None:
            data['error'] = self.error
            data['failedStage'] = self.failed_stage
        if self.validation_result is not None:
            data['validationResult'] = self.validation_result.to_dict()
        return data


@dataclass(frozen=True)
class RestoreResult:
    """Outcome of a restore or test-restore."""

    id: str
    timestamp: str
    success: bool
    files: Tuple[str, ...] = ()
    duration: float = 0.0
    error: Optional[str] = None
    target_path: Optional[str] = None
    validation_result: Optional[ValidationResult] = None

    def to_dict(self) -> Dict[str, Any]:
        data = {
            'id': self.id,
            'timestamp': self.timestamp,
            'success': self.success,
            'files': list(self.files),
            'duration': self.duration,
            'targetPath': self.target_path,
        }
        if self.error is not None:
            data['error'] = self.error
        if self.validation_result is not None:
            data['validationResult'] = self.validation_result.to_dict()
        return data


def as_tuple(items: Optional[List[str]]) -> Tuple[str, ...]:
    return tuple(items or ())
