"""
Human-readable text for notifications and chat replies.
"""

from typing import Iterable

SIZE_UNITS = ['B', 'KB', 'MB', 'GB', 'TB']
MAX_LISTED_FAILURES = 5


def format_size(size: float) -> str:
    """
    Format a byte count, e.g. ``1536`` -> ``'1.50 KB'``.

    Args:
        size: Size in bytes

    Returns:
        Size with two decimals and the largest fitting unit
    """
    value = float(size)
    unit_index = 0
    while value >= 1024 and unit_index < len(SIZE_UNITS) - 1:
        value /= 1024
        unit_index += 1
    return f"{value:.2f} {SIZE_UNITS[unit_index]}"


def format_backup_summary(result) -> str:
    """Multi-line status text for a BackupResult."""
    title = f"Backup {'Completed' if result.success else 'Failed'}: {result.id}"
    lines = [
        title,
        f"- Status: {'Success' if result.success else 'Failed'}",
        f"- Files: {len(result.files)}",
        f"- Size: {format_size(result.size)}",
        f"- Duration: {result.duration:.2f}s",
    ]

    if result.error:
        lines.append(f"- Error: {result.error}")

    validation = result.validation_result
    if validation is not None:
        lines.append(
            f"- Validation: {'Passed' if validation.success else 'Failed'} "
            f"({validation.passed_files}/{validation.tested_files} files)"
        )
        failed = validation.failed_files
        if failed:
            shown = ', '.join(failed[:MAX_LISTED_FAILURES])
            extra = len(failed) - MAX_LISTED_FAILURES
            if extra > 0:
                shown += f" ...and {extra} more"
            lines.append(f"- Failed files: {shown}")

    for warning in result.warnings:
        lines.append(f"- Warning: {warning}")

    return '\n'.join(lines)


def format_config_listing(configs: Iterable) -> str:
    configs = list(configs)
    if not configs:
        return "No backup configurations found."

    lines = ["Backup configurations:"]
    for config in configs:
        lines.append(f"- **{config.name}** ({config.id})")
        lines.append(f"  Sources: {', '.join(config.source)}")
        lines.append(f"  Schedule: {config.schedule or 'manual only'}")
        retention = f"{config.retention} backups" if config.retention > 0 else "unlimited"
        lines.append(f"  Retention: {retention}")
    return '\n'.join(lines)
