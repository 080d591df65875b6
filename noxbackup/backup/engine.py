"""
Disaster recovery engine.

Single entry point for the chat command layer and the API: registers backup
configurations (installing their cron jobs), runs backups, lists backup
units, and restores them. Every run/restore call returns a result object;
failures never escape as exceptions.
"""

import logging
import time
from typing import Any, Dict, List, Optional, Union

from noxbackup.notifier import LogNotifier, Notifier
from noxbackup.scheduler import ScheduledJob, parse_cron
from noxbackup.utils.command import CommandRunner
from noxbackup.utils.crypto import FileCipher
from noxbackup.utils.formatting import format_backup_summary, format_size
from .config_store import (
    BackupConfiguration,
    ConfigStore,
    ConfigurationError,
    ConfigurationNotFoundError,
    PersistenceError,
)
from .executor import BackupExecutor, ConcurrentRunError, RunGuard, failed_result
from .restore import RestoreManager
from .results import BackupResult, RestoreResult
from .storage import LocalStorage, StorageError

logger = logging.getLogger(__name__)


class DisasterRecovery:
    """
    Backup and disaster recovery engine.

    One instance per process. The encryption key, backup root and scheduler
    are shared by all configurations.
    """

    def __init__(
        self,
        backup_dir: str,
        temp_dir: Optional[str] = None,
        encryption_key: Optional[str] = None,
        key_derivation: str = 'legacy',
        backup_script: Optional[str] = None,
        remote_sync_tool: str = 'rclone',
        aws_region: str = 'us-east-1',
        stage_timeout: Optional[float] = None,
        scheduler=None,
        notifier: Optional[Notifier] = None,
        persistence=None,
        runner: Optional[CommandRunner] = None,
    ):
        """
        Args:
            backup_dir: Backup root
            temp_dir: Parent directory for test-restore targets
            encryption_key: Process-wide passphrase (None disables encryption)
            key_derivation: 'legacy' or 'pbkdf2'
            backup_script: Database export script for the DATABASE source
            remote_sync_tool: rclone binary
            aws_region: Region for s3:// remotes
            stage_timeout: Deadline for each stage in seconds
            scheduler: BackupScheduler (None = manual runs only)
            notifier: Notification sink (defaults to the log)
            persistence: Write-through configuration persistence
            runner: Command runner for external tools
        """
        self.storage = LocalStorage(backup_dir)
        self.temp_dir = temp_dir
        self.backup_script = backup_script
        self.remote_sync_tool = remote_sync_tool
        self.aws_region = aws_region
        self.stage_timeout = stage_timeout
        self.scheduler = scheduler
        self.notifier = notifier or LogNotifier()
        self.persistence = persistence
        self.runner = runner or CommandRunner()

        self.cipher = None
        if encryption_key:
            self.cipher = FileCipher.from_passphrase(
                encryption_key, key_derivation, backup_root=self.storage.base_path
            )

        self.configs = ConfigStore()
        self.guard = RunGuard()
        self._jobs: Dict[str, ScheduledJob] = {}

    @classmethod
    def from_config(cls, config: Dict[str, Any], **kwargs) -> 'DisasterRecovery':
        """Build an engine from a Flask config mapping."""
        return cls(
            backup_dir=config['BACKUP_DIR'],
            temp_dir=config.get('TEMP_DIR'),
            encryption_key=config.get('ENCRYPTION_KEY'),
            key_derivation=config.get('KEY_DERIVATION', 'legacy'),
            backup_script=config.get('BACKUP_SCRIPT'),
            remote_sync_tool=config.get('REMOTE_SYNC_TOOL', 'rclone'),
            aws_region=config.get('AWS_REGION', 'us-east-1'),
            stage_timeout=config.get('STAGE_TIMEOUT'),
            **kwargs
        )

    @property
    def backup_dir(self) -> str:
        return str(self.storage.base_path)

    # Configuration management

    def register(self, config: Union[BackupConfiguration, Dict[str, Any]], persist: bool = True) -> bool:
        """
        Add or replace a configuration and (re)install its cron job.

        Args:
            config: Configuration or its JSON shape
            persist: Write through to persistence (False when loading from it)

        Returns:
            True if an existing configuration was updated

        Raises:
            ConfigurationError: If the configuration is invalid; nothing changes
            PersistenceError: If the durable write fails; nothing changes
        """
        if isinstance(config, dict):
            config = BackupConfiguration.from_dict(config)

        config.validate_fields()
        if config.schedule:
            try:
                parse_cron(config.schedule)
            except ValueError as e:
                raise ConfigurationError(f"Invalid schedule {config.schedule!r}: {e}")

        if persist and self.persistence is not None:
            self.persistence.save(config)

        self._unschedule(config.id)
        updated = self.configs.put(config)
        if config.schedule:
            self._schedule(config)

        action = 'updated' if updated else 'added'
        logger.info(f"Backup configuration {config.id} {action}", extra={'event': 'BACKUP_CONFIG'})
        self._notify(f"Backup configuration **{config.name}** ({config.id}) has been {action}.")
        return updated

    def deregister(self, config_id: str) -> BackupConfiguration:
        """
        Remove a configuration and stop its cron job.

        Raises:
            ConfigurationNotFoundError: If the id is unknown
            PersistenceError: If the durable delete fails; nothing changes
        """
        self.configs.get(config_id)
        if self.persistence is not None:
            self.persistence.delete(config_id)

        config = self.configs.delete(config_id)
        self._unschedule(config_id)

        logger.info(f"Backup configuration {config_id} removed", extra={'event': 'BACKUP_CONFIG'})
        self._notify(f"Backup configuration **{config.name}** ({config_id}) has been removed.")
        return config

    def add_or_update_config(self, config: Union[BackupConfiguration, Dict[str, Any]]) -> bool:
        """Register a configuration; False (and a notification) if it is rejected."""
        config_id = config.get('id') if isinstance(config, dict) else config.id
        try:
            self.register(config)
            return True
        except (ConfigurationError, PersistenceError) as e:
            logger.error(f"Failed to add backup configuration {config_id}: {e}")
            self._notify(f"Failed to add backup configuration {config_id}: {e}")
            return False

    def remove_config(self, config_id: str) -> bool:
        try:
            self.deregister(config_id)
            return True
        except (ConfigurationNotFoundError, PersistenceError) as e:
            logger.error(f"Failed to remove backup configuration {config_id}: {e}")
            self._notify(f"Failed to remove backup configuration {config_id}: {e}")
            return False

    def list_configs(self) -> List[BackupConfiguration]:
        return self.configs.list()

    def get_config(self, config_id: str) -> BackupConfiguration:
        return self.configs.get(config_id)

    def load_persisted_configs(self) -> int:
        """
        Re-register every persisted configuration.

        Returns:
            Number of configurations loaded
        """
        if self.persistence is None:
            return 0

        loaded = 0
        for config in self.persistence.load_all():
            try:
                self.register(config, persist=False)
                loaded += 1
            except ConfigurationError as e:
                logger.error(f"Skipping persisted backup configuration {config.id}: {e}")
        logger.info(f"Loaded {loaded} persisted backup configurations")
        return loaded

    # Backups

    def run_backup(self, config_id: str) -> BackupResult:
        """
        Run one backup of a configuration.

        Returns:
            BackupResult; never raises
        """
        started = time.monotonic()

        try:
            config = self.configs.get(config_id)
        except ConfigurationNotFoundError as e:
            result = failed_result(config_id, 'lookup', str(e), started)
            logger.error(f"Backup {config_id} failed: {e}", extra={'event': 'BACKUP_ERROR'})
            self._notify(f"Backup **{config_id}** failed: {e}")
            return result

        try:
            with self.guard.hold(config_id):
                self._notify(f"Starting backup **{config.name}** ({config_id})...")
                result = self._executor(config).execute()
        except ConcurrentRunError as e:
            logger.warning(str(e), extra={'event': 'BACKUP_ERROR'})
            self._notify(f"Backup **{config.name}** skipped: {e}")
            return failed_result(config_id, 'concurrency', str(e), started)
        except Exception as e:
            logger.exception(f"Unexpected error in backup {config_id}")
            result = failed_result(config_id, 'unknown', str(e), started)

        if result.success:
            self._notify(format_backup_summary(result))
        else:
            self._notify(f"Backup **{config.name}** failed: {result.error}")
        return result

    def is_running(self, config_id: str) -> bool:
        return self.guard.is_running(config_id)

    def list_backups(self, config_id: Optional[str] = None) -> List[str]:
        """
        List backup unit paths, optionally for one configuration.

        Raises:
            StorageError: If the backup root cannot be read
        """
        try:
            return self.storage.list_backups(config_id)
        except StorageError as e:
            logger.error(f"Failed to list backups: {e}")
            raise

    # Restore

    def restore_from_backup(self, backup_path: str, target_path: str) -> RestoreResult:
        """
        Restore a backup unit (absolute path or name under the backup root).
        """
        source = self.storage.resolve(backup_path)
        self._notify("Starting restoration from backup...")

        result = self._restore_manager().restore(source, target_path)

        if result.success:
            self._notify(
                f"Restoration completed successfully:\n"
                f"- Files: {len(result.files)}\n"
                f"- Duration: {result.duration:.2f}s"
            )
        else:
            self._notify(f"Restoration failed: {result.error}")
        return result

    def test_restore(self, backup_path: str) -> RestoreResult:
        """Verify a backup unit restores cleanly without keeping the restored files."""
        source = self.storage.resolve(backup_path)
        result = self._restore_manager().test_restore(source)

        outcome = 'passed' if result.success else 'failed'
        logger.info(f"Test restoration from {source} {outcome}", extra={'event': 'RESTORE_TEST'})
        self._notify(f"Test restoration from {source.name} {outcome}")
        return result

    def shutdown(self):
        """Stop every cron job installed by this engine."""
        for config_id in list(self._jobs):
            self._unschedule(config_id)

    # Internals

    def _executor(self, config: BackupConfiguration) -> BackupExecutor:
        return BackupExecutor(
            config,
            self.storage,
            cipher=self.cipher,
            runner=self.runner,
            backup_script=self.backup_script,
            remote_sync_tool=self.remote_sync_tool,
            aws_region=self.aws_region,
            stage_timeout=self.stage_timeout,
        )

    def _restore_manager(self) -> RestoreManager:
        return RestoreManager(cipher=self.cipher, temp_dir=self.temp_dir, stage_timeout=self.stage_timeout)

    def _schedule(self, config: BackupConfiguration):
        if self.scheduler is None:
            logger.info(f"Scheduler not running in this process; {config.id} is manual-only here")
            return

        config_id = config.id
        self._jobs[config_id] = self.scheduler.schedule(
            f"backup_{config_id}",
            config.schedule,
            lambda: self._scheduled_run(config_id),
            name=f"Backup: {config.name}",
        )

    def _unschedule(self, config_id: str):
        job = self._jobs.pop(config_id, None)
        if job is not None:
            job.stop()

    def _scheduled_run(self, config_id: str):
        """Scheduler callback; logs the outcome of a cron-triggered run."""
        result = self.run_backup(config_id)
        if result.success:
            logger.info(
                f"Scheduled backup {config_id} completed: {len(result.files)} files, "
                f"{format_size(result.size)}"
            )
        else:
            logger.error(f"Scheduled backup {config_id} failed: {result.error}")

    def _notify(self, message: str):
        try:
            self.notifier.notify(message)
        except Exception as e:
            logger.error(f"Failed to send notification: {e}")
