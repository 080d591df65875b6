"""
Read-access integrity check for backup units.

This is a smoke test: it proves every file can be opened and read, not that
its content matches the source.
"""

import logging
from pathlib import Path

from .results import ValidationResult

logger = logging.getLogger(__name__)


class BackupValidator:
    """Checks that every regular file in a backup unit is readable."""

    def validate(self, backup_dir) -> ValidationResult:
        """
        Validate a backup unit.

        Args:
            backup_dir: Backup unit directory

        Returns:
            ValidationResult; ``success`` is True iff no file failed
        """
        root = Path(backup_dir)
        if not root.is_dir():
            return ValidationResult(
                success=False,
                tested_files=0,
                passed_files=0,
                error=f"Backup directory not found: {backup_dir}",
            )

        tested = 0
        failed = []
        for file_path in sorted(root.rglob('*')):
            if not file_path.is_file():
                continue
            tested += 1
            if not self._check_readable(file_path):
                failed.append(file_path.relative_to(root).as_posix())

        if failed:
            logger.warning(f"Validation of {root.name}: {len(failed)} of {tested} files unreadable")

        return ValidationResult(
            success=not failed,
            tested_files=tested,
            passed_files=tested - len(failed),
            failed_files=tuple(failed),
        )

    def _check_readable(self, path: Path) -> bool:
        try:
            with open(path, 'rb') as f:
                f.read(1)
            return True
        except OSError:
            return False
