"""
Storage handlers for backup units.

Supports:
- LocalStorage: the backup root holding ``<id>_<timestamp>`` directories
- RcloneRemote: one-way push of a unit through rclone
- S3Remote: one-way push of a unit to an ``s3://bucket/prefix`` location
"""

import logging
import os
import re
import shutil
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, List, Optional

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from noxbackup.utils.command import CommandError, CommandRunner

logger = logging.getLogger(__name__)

# <id>_YYYY-MM-DDTHH-MM-SS[.ffffff]Z
TIMESTAMP_PATTERN = r'\d{4}-\d{2}-\d{2}T\d{2}-\d{2}-\d{2}(?:\.\d+)?Z'


class StorageError(Exception):
    """Raised when a local storage operation fails."""
    pass


class RemoteSyncError(Exception):
    """Raised when pushing a backup unit to remote storage fails."""
    pass


def format_backup_timestamp(moment: datetime) -> str:
    """ISO-8601 UTC timestamp with colons replaced by dashes."""
    moment = moment.astimezone(timezone.utc)
    return moment.strftime('%Y-%m-%dT%H-%M-%S.') + f"{moment.microsecond:06d}Z"


def generate_backup_name(config_id: str, moment: datetime) -> str:
    """
    Generate the directory name of a backup unit.

    Format: {config_id}_{YYYY-MM-DDTHH-MM-SS.ffffffZ}
    """
    return f"{config_id}_{format_backup_timestamp(moment)}"


class LocalStorage:
    """
    Handler for the local backup root.

    Every run owns exactly one directory under the root, named by
    ``generate_backup_name``.
    """

    def __init__(self, base_path: str):
        """
        Initialize local storage handler.

        Args:
            base_path: Backup root directory
        """
        self.base_path = Path(base_path)

        try:
            self.base_path.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise StorageError(f"Failed to create backup directory {self.base_path}: {e}")

    def create_backup_dir(self, config_id: str, moment: datetime) -> Path:
        """
        Create a fresh backup unit directory.

        Raises:
            StorageError: If the directory exists already or cannot be created
        """
        path = self.base_path / generate_backup_name(config_id, moment)
        try:
            path.mkdir(parents=True, exist_ok=False)
        except FileExistsError:
            raise StorageError(f"Backup directory already exists: {path.name}")
        except OSError as e:
            raise StorageError(f"Failed to create backup directory {path.name}: {e}")
        return path

    def list_backups(self, config_id: Optional[str] = None) -> List[str]:
        """
        List backup unit directories, sorted by name.

        Args:
            config_id: Only return units of this configuration

        Returns:
            Absolute paths of backup units

        Raises:
            StorageError: If the backup root cannot be read
        """
        if not self.base_path.exists():
            return []

        matcher = None
        if config_id is not None:
            matcher = re.compile(rf'^{re.escape(config_id)}_{TIMESTAMP_PATTERN}$')

        try:
            entries = sorted(os.listdir(self.base_path))
        except OSError as e:
            raise StorageError(f"Failed to list backups: {e}")

        backups = []
        for name in entries:
            if name.startswith('.'):
                continue
            path = self.base_path / name
            if not path.is_dir():
                continue
            if matcher is not None and not matcher.match(name):
                continue
            backups.append(str(path))
        return backups

    def resolve(self, backup: str) -> Path:
        """Resolve a unit name (or absolute path) to a path."""
        path = Path(backup)
        if path.is_absolute():
            return path
        return self.base_path / path

    def delete(self, path: str):
        """
        Recursively delete a backup unit.

        Raises:
            StorageError: If deletion fails
        """
        try:
            shutil.rmtree(path)
        except FileNotFoundError:
            pass
        except OSError as e:
            raise StorageError(f"Failed to delete backup {path}: {e}")


def remote_destination(remote_base: str, local_dir: str) -> str:
    """``remote_base/<basename(local_dir)>``"""
    return f"{remote_base.rstrip('/')}/{os.path.basename(str(local_dir).rstrip(os.sep))}"


class RcloneRemote:
    """
    Push backup units with rclone (``rclone sync <local> <remote>``).
    """

    def __init__(self, runner: Optional[CommandRunner] = None, binary: str = 'rclone'):
        self.runner = runner or CommandRunner()
        self.binary = binary

    def sync(self, local_dir: str, destination: str, timeout: Optional[float] = None,
             cancellation_check: Optional[Callable[[], None]] = None):
        """
        Synchronize a local directory to a remote destination.

        Raises:
            RemoteSyncError: If the tool is missing or exits non-zero
        """
        if cancellation_check:
            cancellation_check()

        try:
            result = self.runner.run([self.binary, 'sync', str(local_dir), destination], timeout=timeout)
        except CommandError as e:
            raise RemoteSyncError(f"Failed to sync backup to remote storage: {e}")

        if not result.ok:
            raise RemoteSyncError(
                f"Failed to sync backup to remote storage ({self.binary} exited "
                f"with {result.exit_code}): {result.diagnostic()}"
            )


class S3Remote:
    """
    Push backup units to S3.

    Object keys: {prefix}/{unit name}/{relative path}
    """

    def __init__(self, bucket_name: str, prefix: str = '', region: str = 'us-east-1'):
        self.bucket_name = bucket_name
        self.prefix = prefix.strip('/')
        self.region = region

        try:
            self.s3_client = boto3.client('s3', region_name=region)
        except Exception as e:
            raise RemoteSyncError(f"Failed to initialize S3 client: {e}")

    @classmethod
    def from_url(cls, url: str, region: str = 'us-east-1') -> 'S3Remote':
        """Build from ``s3://bucket[/prefix]``."""
        if not url.startswith('s3://'):
            raise RemoteSyncError(f"Not an S3 location: {url}")
        bucket, _, prefix = url[len('s3://'):].partition('/')
        if not bucket:
            raise RemoteSyncError(f"S3 location has no bucket: {url}")
        return cls(bucket, prefix, region)

    def sync(self, local_dir: str, destination: str, timeout: Optional[float] = None,
             cancellation_check: Optional[Callable[[], None]] = None) -> List[str]:
        """
        Upload every file of a backup unit.

        Args:
            local_dir: Backup unit directory
            destination: s3:// destination (bucket must match this remote)
            timeout: Unused; deadlines are enforced through cancellation_check
            cancellation_check: Called before each upload; may raise to abort

        Returns:
            Uploaded object keys

        Raises:
            RemoteSyncError: If an upload fails
        """
        local_root = Path(local_dir)
        if not local_root.is_dir():
            raise RemoteSyncError(f"Local backup not found: {local_dir}")

        key_base = '/'.join(p for p in (self.prefix, local_root.name) if p)
        uploaded = []

        try:
            for file_path in sorted(local_root.rglob('*')):
                if not file_path.is_file():
                    continue
                if cancellation_check:
                    cancellation_check()

                key = f"{key_base}/{file_path.relative_to(local_root).as_posix()}"
                with open(file_path, 'rb') as f:
                    self.s3_client.put_object(Bucket=self.bucket_name, Key=key, Body=f)
                uploaded.append(key)

        except ClientError as e:
            error_code = e.response.get('Error', {}).get('Code', 'Unknown')
            raise RemoteSyncError(f"S3 upload failed ({error_code}): {e}")
        except BotoCoreError as e:
            raise RemoteSyncError(f"S3 upload failed: {e}")
        except OSError as e:
            raise RemoteSyncError(f"Failed to read backup file for upload: {e}")

        logger.info(f"Uploaded {len(uploaded)} objects to s3://{self.bucket_name}/{key_base}")
        return uploaded


def create_remote_sync(remote_path: str, runner: Optional[CommandRunner] = None,
                       tool: str = 'rclone', region: str = 'us-east-1'):
    """
    Factory function to create the remote sync backend for a remote path.

    Args:
        remote_path: ``s3://bucket/prefix`` or any rclone remote (``remote:path``)
        runner: Command runner for rclone
        tool: rclone binary name or path
        region: AWS region for S3 remotes

    Returns:
        S3Remote or RcloneRemote instance
    """
    if remote_path.startswith('s3://'):
        return S3Remote.from_url(remote_path, region=region)
    return RcloneRemote(runner=runner, binary=tool)
