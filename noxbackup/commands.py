"""
Chat command handler for ``backup`` commands.

Turns the argument list of a chat message into engine calls and returns the
messages to post back to the channel, in order.
"""

import logging
import os
from typing import List, Optional

from noxbackup.backup.storage import StorageError
from noxbackup.utils.formatting import format_backup_summary, format_config_listing

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_ID = 'default'
DEFAULT_SOURCE = './data'
DEFAULT_SCHEDULE = '0 0 * * *'  # Daily at midnight
DEFAULT_RETENTION = 7


def _help_text(prefix: str) -> str:
    return (
        "**Backup Management Commands**:\n"
        f"- `{prefix}backup list [config_id]`: List available backups\n"
        f"- `{prefix}backup run [config_id]`: Run a backup using the specified configuration\n"
        f"- `{prefix}backup restore <backup_path> [target_path]`: Restore from a backup\n"
        f"- `{prefix}backup test <backup_path>`: Test a backup's integrity\n"
        f"- `{prefix}backup configs`: List all backup configurations\n"
        f"- `{prefix}backup add|update <id> [name] [sources] [destination] [schedule] "
        f"[retention] [encrypt] [remote_sync] [remote_path]`: Add or update a configuration\n"
        f"- `{prefix}backup remove <id>`: Remove a configuration"
    )


def _arg(args: List[str], index: int) -> Optional[str]:
    return args[index] if len(args) > index and args[index] != '' else None


def _flag(value: Optional[str]) -> bool:
    return value is not None and value.lower() == 'true'


def build_config_from_args(args: List[str], backup_dir: str) -> dict:
    """
    Build a configuration payload from ``add``/``update`` arguments.

    Args:
        args: ``[id, name, sources, destination, schedule, retention, encrypt, remote_sync, remote_path]``
        backup_dir: Default destination

    Raises:
        ValueError: If retention is not a number
    """
    config_id = args[0]
    sources = _arg(args, 2)
    return {
        'id': config_id,
        'name': _arg(args, 1) or config_id,
        'source': sources.split(',') if sources else [DEFAULT_SOURCE],
        'destination': _arg(args, 3) or backup_dir,
        'schedule': _arg(args, 4) or DEFAULT_SCHEDULE,
        'retention': int(_arg(args, 5) or DEFAULT_RETENTION),
        'encrypt': _flag(_arg(args, 6)),
        'remoteSync': _flag(_arg(args, 7)),
        'remotePath': _arg(args, 8),
        'validate': True,
    }


def handle_backup_command(engine, args: List[str], prefix: str = '!') -> List[str]:
    """
    Handle a ``backup`` chat command.

    Args:
        engine: DisasterRecovery instance
        args: Arguments after ``backup``
        prefix: Command prefix shown in the help text

    Returns:
        Messages to post, in order
    """
    messages = []
    try:
        _dispatch(engine, args, prefix, messages)
    except Exception as e:
        logger.exception("Error handling backup command")
        messages.append(f"Error executing backup command: {e}")
    return messages


def _dispatch(engine, args: List[str], prefix: str, messages: List[str]):
    if not args:
        messages.append("Initiating manual backup process...")
        messages.append(format_backup_summary(engine.run_backup(DEFAULT_CONFIG_ID)))
        return

    subcommand = args[0].lower()

    if subcommand == 'list':
        config_id = _arg(args, 1)
        suffix = f" for configuration {config_id}" if config_id else ''
        try:
            backups = engine.list_backups(config_id)
        except StorageError as e:
            messages.append(f"Failed to list backups: {e}")
            return
        if not backups:
            messages.append(f"No backups found{suffix}.")
        else:
            names = '\n'.join(f"- {os.path.basename(b)}" for b in backups)
            messages.append(f"Available backups{suffix}:\n{names}")

    elif subcommand == 'run':
        config_id = _arg(args, 1) or DEFAULT_CONFIG_ID
        messages.append(f"Starting backup {config_id}...")
        messages.append(format_backup_summary(engine.run_backup(config_id)))

    elif subcommand == 'restore':
        backup_name = _arg(args, 1)
        if not backup_name:
            messages.append("Please specify a backup path.")
            return
        target = _arg(args, 2) or os.getcwd()
        messages.append(f"Starting restoration from {backup_name} to {target}...")
        result = engine.restore_from_backup(backup_name, target)
        if result.success:
            messages.append(f"Restoration completed successfully. Restored {len(result.files)} files.")
        else:
            messages.append(f"Restoration failed: {result.error}")

    elif subcommand == 'test':
        backup_name = _arg(args, 1)
        if not backup_name:
            messages.append("Please specify a backup path to test.")
            return
        messages.append(f"Testing backup {backup_name}...")
        result = engine.test_restore(backup_name)
        if result.success:
            messages.append(f"Test restoration passed. All {len(result.files)} files are valid.")
        else:
            messages.append(f"Test restoration failed: {result.error}")

    elif subcommand == 'configs':
        messages.append(format_config_listing(engine.list_configs()))

    elif subcommand in ('add', 'update'):
        config_id = _arg(args, 1)
        if not config_id:
            messages.append("Please specify a configuration ID.")
            return
        try:
            config = build_config_from_args(args[1:], engine.backup_dir)
        except ValueError:
            messages.append(f"Invalid retention value: {args[6]}")
            return
        if engine.add_or_update_config(config):
            messages.append(f"Backup configuration {config_id} added/updated successfully.")
        else:
            messages.append(f"Failed to add/update backup configuration {config_id}.")

    elif subcommand == 'remove':
        config_id = _arg(args, 1)
        if not config_id:
            messages.append("Please specify a configuration ID to remove.")
            return
        if engine.remove_config(config_id):
            messages.append(f"Backup configuration {config_id} removed successfully.")
        else:
            messages.append(f"Failed to remove backup configuration {config_id}.")

    else:
        messages.append(_help_text(prefix))
