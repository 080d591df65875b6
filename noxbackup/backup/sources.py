"""
Source handlers for backup operations.

Supports:
- LocalSource: copy a file or directory tree into the backup unit
- DatabaseSource: run the database export script with the unit as its target
"""

import logging
import os
import shutil
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, List, Optional

from noxbackup.utils.command import CommandError, CommandRunner
from .config_store import DATABASE_SOURCE

logger = logging.getLogger(__name__)


class SourceError(Exception):
    """Raised when source acquisition fails."""
    pass


class SourceMissingWarning(UserWarning):
    """Raised by a source that does not exist; the run skips it and continues."""
    pass


@dataclass(frozen=True)
class AcquiredItem:
    """A top-level entry placed into the backup unit."""
    name: str
    size: int


def path_size(path: Path) -> int:
    """Size of a file, or the total size of all files under a directory."""
    if path.is_file():
        return path.stat().st_size
    total = 0
    for root, _dirs, files in os.walk(path):
        for name in files:
            try:
                total += os.path.getsize(os.path.join(root, name))
            except OSError:
                pass
    return total


class LocalSource:
    """
    Handler for local filesystem sources.

    Copies a file or a directory tree into the backup unit, keeping its
    basename and structure.
    """

    def __init__(self, path: str):
        self.path = path

    def acquire(self, backup_dir: Path, timeout: Optional[float] = None,
                cancellation_check: Optional[Callable[[], None]] = None) -> List[AcquiredItem]:
        """
        Copy the source into the backup unit.

        Args:
            backup_dir: Backup unit directory
            timeout: Unused for local copies
            cancellation_check: Called before copying; may raise to abort

        Returns:
            Single-item list describing the copied entry

        Raises:
            SourceMissingWarning: If the path does not exist
            SourceError: If the copy fails
        """
        source_path = Path(self.path).expanduser().resolve()

        if not source_path.exists():
            raise SourceMissingWarning(f"Source path {source_path} does not exist, skipping")

        dest_path = Path(backup_dir) / source_path.name
        if dest_path.exists():
            raise SourceError(f"Duplicate source name in backup: {source_path.name}")

        if cancellation_check:
            cancellation_check()

        try:
            if source_path.is_dir():
                shutil.copytree(source_path, dest_path, symlinks=False)
            elif source_path.is_file():
                shutil.copy2(source_path, dest_path)
            else:
                raise SourceError(f"Unsupported path type: {self.path}")
        except PermissionError as e:
            raise SourceError(f"Permission denied accessing {self.path}: {e}")
        except (OSError, shutil.Error) as e:
            raise SourceError(f"Failed to copy {self.path}: {e}")

        return [AcquiredItem(name=dest_path.name, size=path_size(dest_path))]


class DatabaseSource:
    """
    Handler for the DATABASE token.

    Runs ``bash <script> <backup_dir>``; every entry the script adds to the
    backup unit becomes part of the backup.
    """

    def __init__(self, script: Optional[str], runner: Optional[CommandRunner] = None):
        self.script = script
        self.runner = runner or CommandRunner()

    def acquire(self, backup_dir: Path, timeout: Optional[float] = None,
                cancellation_check: Optional[Callable[[], None]] = None) -> List[AcquiredItem]:
        """
        Run the export script into the backup unit.

        Raises:
            SourceMissingWarning: If no export script is configured or present
            SourceError: If the script fails
        """
        if not self.script or not os.path.isfile(self.script):
            raise SourceMissingWarning(f"Database export script {self.script} not found, skipping DATABASE source")

        if cancellation_check:
            cancellation_check()

        backup_dir = Path(backup_dir)
        before = set(os.listdir(backup_dir))

        try:
            result = self.runner.run(['bash', self.script, str(backup_dir)], timeout=timeout)
        except CommandError as e:
            raise SourceError(f"Database export failed: {e}")

        if not result.ok:
            raise SourceError(
                f"Database export exited with {result.exit_code}: {result.diagnostic()}"
            )

        produced = sorted(set(os.listdir(backup_dir)) - before)
        logger.info(f"Database export produced {len(produced)} entries")
        return [AcquiredItem(name=name, size=path_size(backup_dir / name)) for name in produced]


def create_source(specifier: str, runner: Optional[CommandRunner] = None,
                  backup_script: Optional[str] = None):
    """
    Factory function to create the handler for a source specifier.

    Args:
        specifier: Filesystem path or the DATABASE token
        runner: Command runner for the export script
        backup_script: Path to the database export script

    Returns:
        LocalSource or DatabaseSource instance
    """
    if specifier == DATABASE_SOURCE:
        return DatabaseSource(backup_script, runner)
    return LocalSource(specifier)
