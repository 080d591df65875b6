"""
Restore backup units into a target directory.

The backup unit is copied first and ``.enc`` members are decrypted inside the
target, so restoring never modifies the unit itself.
"""

import logging
import shutil
import tempfile
import time
from datetime import datetime, timezone
from pathlib import Path
from typing import List, Optional

from noxbackup.utils.crypto import ENCRYPTED_SUFFIX, EncryptionError, FileCipher, is_encrypted
from noxbackup.utils.deadline import BackupTimeoutError, StageDeadline
from .results import RestoreResult
from .validation import BackupValidator

logger = logging.getLogger(__name__)


class RestoreError(Exception):
    """Raised when a backup unit cannot be restored."""
    pass


def _utc_iso(moment: datetime) -> str:
    return moment.isoformat(timespec='milliseconds').replace('+00:00', 'Z')


class RestoreManager:
    """
    Restores backup units and verifies they are restorable.
    """

    def __init__(self, cipher: Optional[FileCipher] = None, temp_dir: Optional[str] = None,
                 validator: Optional[BackupValidator] = None, stage_timeout: Optional[float] = None):
        """
        Args:
            cipher: Process-wide file cipher (None when no key is configured)
            temp_dir: Parent directory for test-restore targets (None = system temp)
            validator: Validator run over test-restore targets
            stage_timeout: Deadline for each restore stage in seconds
        """
        self.cipher = cipher
        self.temp_dir = temp_dir
        self.validator = validator or BackupValidator()
        self.stage_timeout = stage_timeout

    def restore(self, backup_dir, target_dir) -> RestoreResult:
        """
        Restore a backup unit into ``target_dir``.

        Never raises; failures are reported in the result.
        """
        started = time.monotonic()
        timestamp = _utc_iso(datetime.now(timezone.utc))
        backup_path = Path(backup_dir)

        try:
            files = self._restore(backup_path, Path(target_dir))
        except (RestoreError, EncryptionError, BackupTimeoutError, OSError, shutil.Error) as e:
            logger.error(f"Restoration from {backup_path} failed: {e}", extra={'event': 'RESTORE_ERROR'})
            return RestoreResult(
                id=backup_path.name,
                timestamp=timestamp,
                success=False,
                duration=time.monotonic() - started,
                error=str(e),
                target_path=str(target_dir),
            )

        logger.info(
            f"Completed restoration from {backup_path} to {target_dir}: {len(files)} files",
            extra={'event': 'RESTORE_COMPLETE'},
        )
        return RestoreResult(
            id=backup_path.name,
            timestamp=timestamp,
            success=True,
            files=tuple(files),
            duration=time.monotonic() - started,
            target_path=str(target_dir),
        )

    def test_restore(self, backup_dir) -> RestoreResult:
        """
        Restore into a disposable directory, validate it, and remove it.

        The temporary target is deleted whether or not the restore succeeds.
        """
        backup_path = Path(backup_dir)
        if not backup_path.is_dir():
            return RestoreResult(
                id=backup_path.name,
                timestamp=_utc_iso(datetime.now(timezone.utc)),
                success=False,
                error=f"Backup path {backup_dir} not found",
            )

        if self.temp_dir:
            Path(self.temp_dir).mkdir(parents=True, exist_ok=True)
        temp_target = tempfile.mkdtemp(prefix='noxbackup-restore-test-', dir=self.temp_dir)

        try:
            result = self.restore(backup_path, temp_target)
            if not result.success:
                return result

            validation = self.validator.validate(temp_target)
            if not validation.success:
                failed = ', '.join(validation.failed_files) or validation.error
                return RestoreResult(
                    id=result.id,
                    timestamp=result.timestamp,
                    success=False,
                    files=result.files,
                    duration=result.duration,
                    error=f"Restored files failed validation: {failed}",
                    target_path=temp_target,
                    validation_result=validation,
                )

            return RestoreResult(
                id=result.id,
                timestamp=result.timestamp,
                success=True,
                files=result.files,
                duration=result.duration,
                target_path=temp_target,
                validation_result=validation,
            )
        finally:
            shutil.rmtree(temp_target, ignore_errors=True)

    def _restore(self, backup_path: Path, target_path: Path) -> List[str]:
        if not backup_path.is_dir():
            raise RestoreError(f"Backup path {backup_path} not found")

        encrypted = is_encrypted(backup_path)
        if encrypted and self.cipher is None:
            raise RestoreError("Backup is encrypted but no encryption key is configured")

        logger.info(f"Starting restoration from {backup_path} to {target_path}", extra={'event': 'RESTORE_START'})

        copy_deadline = StageDeadline('restore_copy', self.stage_timeout)
        target_path.mkdir(parents=True, exist_ok=True)

        restored = []
        for entry in sorted(backup_path.iterdir()):
            copy_deadline.check()
            dest = target_path / entry.name
            if entry.is_dir():
                shutil.copytree(entry, dest, dirs_exist_ok=True)
            else:
                shutil.copy2(entry, dest)
            restored.append(entry.name)

        if encrypted:
            decrypt_deadline = StageDeadline('restore_decrypt', self.stage_timeout)
            decrypted = []
            for name in restored:
                member = target_path / name
                if name.endswith(ENCRYPTED_SUFFIX) and member.is_file():
                    decrypt_deadline.check()
                    name = self.cipher.decrypt_file(member).name
                decrypted.append(name)
            restored = decrypted

        return restored
