"""
Command adapter for external tools (database export scripts, rclone).

Commands are passed as argument lists and never through a shell, so paths
containing quotes or spaces cannot change the command being run.
"""

import logging
import subprocess
from dataclasses import dataclass
from typing import List, Optional

from noxbackup.utils.deadline import BackupTimeoutError

logger = logging.getLogger(__name__)


class CommandError(Exception):
    """Raised when an external command cannot be started."""
    pass


@dataclass(frozen=True)
class CommandResult:
    """Captured outcome of an external command."""
    args: List[str]
    stdout: str
    stderr: str
    exit_code: int

    @property
    def ok(self) -> bool:
        return self.exit_code == 0

    def diagnostic(self) -> str:
        """Best available diagnostic text (stderr, else stdout)."""
        return (self.stderr or self.stdout).strip()


class CommandRunner:
    """Runs external commands and captures their output."""

    def run(self, args: List[str], timeout: Optional[float] = None,
            cwd: Optional[str] = None) -> CommandResult:
        """
        Run a command to completion.

        Args:
            args: Program and arguments
            timeout: Seconds before the command is killed (None = no limit)
            cwd: Working directory

        Returns:
            CommandResult with stdout, stderr and exit code

        Raises:
            CommandError: If the program cannot be executed
            BackupTimeoutError: If the timeout expires
        """
        logger.debug(f"Running command: {args}")

        try:
            completed = subprocess.run(
                args,
                capture_output=True,
                text=True,
                timeout=timeout,
                cwd=cwd,
            )
        except subprocess.TimeoutExpired:
            raise BackupTimeoutError(f"Command {args[0]} timed out after {timeout:.0f}s")
        except FileNotFoundError as e:
            raise CommandError(f"Command not found: {args[0]} ({e})")
        except OSError as e:
            raise CommandError(f"Failed to run {args[0]}: {e}")

        if completed.stdout:
            logger.debug(f"STDOUT: {completed.stdout.strip()}")
        if completed.stderr:
            logger.debug(f"STDERR: {completed.stderr.strip()}")

        return CommandResult(
            args=list(args),
            stdout=completed.stdout or '',
            stderr=completed.stderr or '',
            exit_code=completed.returncode,
        )
