"""
Backup executor - orchestrates a single backup run.

Workflow:
1. Create the timestamped backup unit directory
2. Copy every source into it (missing sources are skipped with a warning)
3. Encrypt top-level files (if configured)
4. Push the unit to remote storage (if configured)
5. Validate the unit (if configured)
6. Delete the oldest units beyond the retention count
7. Return a BackupResult

Stages run strictly in this order. A failure during copy or encrypt, or any
deadline expiry, removes the partial unit. A remote sync failure is reported
but validation and retention still run on the local unit.
"""

import logging
import threading
import time
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

from noxbackup.utils.command import CommandRunner
from noxbackup.utils.crypto import EncryptionError, FileCipher
from noxbackup.utils.deadline import BackupTimeoutError, StageDeadline
from .config_store import BackupConfiguration
from .results import BackupResult, as_tuple
from .retention import RetentionManager
from .sources import SourceMissingWarning, create_source
from .storage import LocalStorage, RemoteSyncError, StorageError, create_remote_sync, remote_destination
from .validation import BackupValidator

logger = logging.getLogger(__name__)

# Stages whose failure leaves an unusable unit behind
DISCARD_ON_FAILURE = ('copy', 'encrypt')


class ConcurrentRunError(Exception):
    """Raised when a configuration already has a backup in progress."""
    pass


def utc_iso(moment: datetime) -> str:
    return moment.isoformat(timespec='milliseconds').replace('+00:00', 'Z')


def failed_result(config_id: str, stage: str, error: str, started: Optional[float] = None) -> BackupResult:
    """BackupResult for a run rejected before any stage started."""
    return BackupResult(
        id=config_id,
        timestamp=utc_iso(datetime.now(timezone.utc)),
        success=False,
        duration=(time.monotonic() - started) if started is not None else 0.0,
        error=error,
        failed_stage=stage,
    )


class RunGuard:
    """
    Tracks configuration ids with a backup in flight.

    Scheduled ticks and manual triggers share one guard, so a second run of
    the same id is rejected instead of racing on the same unit.
    """

    def __init__(self):
        self._in_flight = set()
        self._lock = threading.Lock()

    @contextmanager
    def hold(self, config_id: str):
        """
        Raises:
            ConcurrentRunError: If ``config_id`` is already running
        """
        with self._lock:
            if config_id in self._in_flight:
                raise ConcurrentRunError(f"Backup {config_id} is already running")
            self._in_flight.add(config_id)
        try:
            yield
        finally:
            with self._lock:
                self._in_flight.discard(config_id)

    def is_running(self, config_id: str) -> bool:
        with self._lock:
            return config_id in self._in_flight


class BackupExecutor:
    """
    Orchestrates one backup run for a configuration.
    """

    def __init__(
        self,
        config: BackupConfiguration,
        storage: LocalStorage,
        cipher: Optional[FileCipher] = None,
        runner: Optional[CommandRunner] = None,
        backup_script: Optional[str] = None,
        remote_sync_tool: str = 'rclone',
        aws_region: str = 'us-east-1',
        validator: Optional[BackupValidator] = None,
        retention_manager: Optional[RetentionManager] = None,
        stage_timeout: Optional[float] = None,
    ):
        """
        Initialize backup executor.

        Args:
            config: Configuration to run
            storage: Backup root handler
            cipher: Process-wide file cipher (None when no key is configured)
            runner: Command runner for export scripts and rclone
            backup_script: Database export script for the DATABASE source
            remote_sync_tool: rclone binary
            aws_region: Region for s3:// remotes
            validator: Validator for the validate stage
            retention_manager: Retention handler for the cleanup stage
            stage_timeout: Deadline for each stage in seconds
        """
        self.config = config
        self.storage = storage
        self.cipher = cipher
        self.runner = runner or CommandRunner()
        self.backup_script = backup_script
        self.remote_sync_tool = remote_sync_tool
        self.aws_region = aws_region
        self.validator = validator or BackupValidator()
        self.retention_manager = retention_manager or RetentionManager(storage)
        self.stage_timeout = stage_timeout

        self.stage = None
        self.backup_path: Optional[Path] = None
        self.files = []
        self.size = 0
        self.warnings = []
        self.validation_result = None
        self.remote_error = None
        self.logs = []

    def execute(self) -> BackupResult:
        """
        Execute the backup run.

        Returns:
            BackupResult; never raises
        """
        started = time.monotonic()
        started_at = datetime.now(timezone.utc)
        error = None
        failed_stage = None

        self._log(f"Starting backup {self.config.name} ({self.config.id})", event='BACKUP_START')

        try:
            self._execute_workflow(started_at)

        except BackupTimeoutError as e:
            failed_stage = 'timeout'
            error = str(e)
            self._discard_partial_backup()

        except Exception as e:
            failed_stage = self.stage
            error = str(e)
            if self.stage in DISCARD_ON_FAILURE:
                self._discard_partial_backup()

        if error is None and self.remote_error is not None:
            failed_stage = 'remote_sync'
            error = self.remote_error

        duration = time.monotonic() - started

        if error is None:
            self._log(
                f"Completed backup {self.config.name} ({self.config.id}): "
                f"{len(self.files)} files, {self.size} bytes",
                event='BACKUP_COMPLETE',
            )
        else:
            self._log(
                f"Backup {self.config.name} ({self.config.id}) failed: {error}",
                level=logging.ERROR,
                event='BACKUP_ERROR',
            )

        return BackupResult(
            id=self.config.id,
            timestamp=utc_iso(started_at),
            success=error is None,
            files=as_tuple(self.files),
            size=self.size,
            duration=duration,
            error=error,
            validation_result=self.validation_result,
            backup_path=str(self.backup_path) if self.backup_path else None,
            failed_stage=failed_stage,
            warnings=as_tuple(self.warnings),
            logs=as_tuple(self.logs),
        )

    def _execute_workflow(self, started_at: datetime):
        """Execute the backup stages in order."""
        # Step 1-2: Create the unit and copy sources
        self.stage = 'copy'
        deadline = self._deadline('copy')
        self.backup_path = self.storage.create_backup_dir(self.config.id, started_at)
        self._log(f"Backup directory: {self.backup_path.name}")
        self._copy_sources(deadline)
        self._log(f"Copied {len(self.files)} items ({self.size} bytes)")

        # Step 3: Encrypt
        if self.config.encrypt:
            self.stage = 'encrypt'
            self._encrypt(self._deadline('encrypt'))

        # Step 4: Remote sync
        if self.config.remote_sync:
            self.stage = 'remote_sync'
            self._sync_to_remote(self._deadline('remote_sync'))

        # Step 5: Validate
        if self.config.validate:
            self.stage = 'validate'
            deadline = self._deadline('validate')
            self.validation_result = self.validator.validate(self.backup_path)
            deadline.check()
            self._log(
                f"Validated backup {self.config.name} ({self.config.id}): "
                f"{'PASS' if self.validation_result.success else 'FAIL'}",
                event='BACKUP_VALIDATE',
            )

        # Step 6: Retention
        self.stage = 'retention'
        self._cleanup_old_backups()

    def _copy_sources(self, deadline: StageDeadline):
        for specifier in self.config.source:
            source = create_source(specifier, runner=self.runner, backup_script=self.backup_script)
            try:
                items = source.acquire(
                    self.backup_path,
                    timeout=deadline.remaining(),
                    cancellation_check=deadline.check,
                )
            except SourceMissingWarning as e:
                self.warnings.append(str(e))
                self._log(str(e), level=logging.WARNING, event='WARNING')
                continue

            for item in items:
                self.files.append(item.name)
                self.size += item.size

        deadline.check()

    def _encrypt(self, deadline: StageDeadline):
        if self.cipher is None:
            raise EncryptionError("Encryption requested but no encryption key is configured")

        try:
            encrypted = self.cipher.encrypt_directory(self.backup_path, cancellation_check=deadline.check)
        except EncryptionError as e:
            raise EncryptionError(f"Failed to encrypt backup: {e}")

        self._log(
            f"Encrypted backup {self.config.name} ({self.config.id}): {len(encrypted)} files",
            event='BACKUP_ENCRYPT',
        )

    def _sync_to_remote(self, deadline: StageDeadline):
        destination = remote_destination(self.config.remote_path, str(self.backup_path))
        try:
            remote = create_remote_sync(
                self.config.remote_path,
                runner=self.runner,
                tool=self.remote_sync_tool,
                region=self.aws_region,
            )
            remote.sync(
                str(self.backup_path),
                destination,
                timeout=deadline.remaining(),
                cancellation_check=deadline.check,
            )
        except RemoteSyncError as e:
            # Local unit is intact; keep going with validation and retention
            self.remote_error = str(e)
            self._log(str(e), level=logging.ERROR, event='BACKUP_ERROR')
            return

        self._log(
            f"Synced backup {self.config.name} ({self.config.id}) to {destination}",
            event='BACKUP_SYNC',
        )

    def _cleanup_old_backups(self):
        seen = len(self.retention_manager.logs)
        try:
            self.retention_manager.cleanup(self.config.id, self.config.retention)
        except (StorageError, OSError) as e:
            self._log(f"Failed to clean up old backups: {e}", level=logging.ERROR, event='ERROR')
        finally:
            self.logs.extend(self.retention_manager.logs[seen:])

    def _discard_partial_backup(self):
        """Remove a partially written backup unit."""
        if self.backup_path is None or not self.backup_path.exists():
            return
        try:
            self.storage.delete(str(self.backup_path))
            self._log(f"Removed partial backup {self.backup_path.name}", level=logging.WARNING)
        except StorageError as e:
            self._log(f"Warning: Failed to remove partial backup: {e}", level=logging.WARNING)
        self.backup_path = None

    def _deadline(self, stage: str) -> StageDeadline:
        return StageDeadline(stage, self.stage_timeout)

    def _log(self, message: str, level: int = logging.INFO, event: Optional[str] = None):
        """
        Add a log message with timestamp.

        Args:
            message: Log message
            level: logging level
            event: Event type attached to the log record
        """
        timestamp = datetime.now(timezone.utc).strftime('%Y-%m-%d %H:%M:%S UTC')
        self.logs.append(f"[{timestamp}] {message}")
        logger.log(level, message, extra={'event': event} if event else None)
