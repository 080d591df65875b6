"""
Unit tests for retention policy management (noxbackup/backup/retention.py).

Tests RetentionManager for keeping the newest N backup units.
"""

import os
from datetime import datetime, timedelta, timezone
from unittest.mock import patch

import pytest

from noxbackup.backup.retention import RetentionManager
from noxbackup.backup.storage import LocalStorage, StorageError

BASE = datetime(2024, 1, 1, tzinfo=timezone.utc)


def make_units(storage, config_id, count):
    """Create ``count`` units whose mtimes increase with their names."""
    units = []
    for i in range(count):
        path = storage.create_backup_dir(config_id, BASE + timedelta(hours=i))
        mtime = 1700000000 + i * 60
        os.utime(path, (mtime, mtime))
        units.append(str(path))
    return units


@pytest.fixture
def storage(tmp_path):
    return LocalStorage(str(tmp_path / 'backups'))


class TestRetentionManager:
    """Test RetentionManager cleanup."""

    def test_initialization(self, storage):
        manager = RetentionManager(storage)

        assert manager.logs == []

    def test_keeps_newest(self, storage):
        units = make_units(storage, 'db', 5)

        deleted = RetentionManager(storage).cleanup('db', 2)

        assert sorted(deleted) == sorted(units[:3])
        assert storage.list_backups('db') == units[3:]

    def test_orders_by_mtime_not_name(self, storage):
        """Test the newest units by modification time survive."""
        units = make_units(storage, 'db', 3)
        # Oldest name becomes the most recently modified
        os.utime(units[0], (1800000000, 1800000000))

        RetentionManager(storage).cleanup('db', 1)

        assert storage.list_backups('db') == [units[0]]

    def test_equal_mtimes_use_name(self, storage):
        units = make_units(storage, 'db', 3)
        for path in units:
            os.utime(path, (1700000000, 1700000000))

        RetentionManager(storage).cleanup('db', 2)

        assert storage.list_backups('db') == units[1:]

    @pytest.mark.parametrize('retention', [0, -1])
    def test_unlimited(self, storage, retention):
        """Test retention <= 0 deletes nothing."""
        make_units(storage, 'db', 4)

        assert RetentionManager(storage).cleanup('db', retention) == []
        assert len(storage.list_backups('db')) == 4

    def test_under_limit(self, storage):
        make_units(storage, 'db', 2)

        assert RetentionManager(storage).cleanup('db', 5) == []

    def test_other_configurations_untouched(self, storage):
        """Test cleanup of 'db' never touches 'db_extra' or 'web' units."""
        make_units(storage, 'db', 3)
        extra = make_units(storage, 'db_extra', 3)
        web = make_units(storage, 'web', 2)

        RetentionManager(storage).cleanup('db', 1)

        assert len(storage.list_backups('db')) == 1
        assert storage.list_backups('db_extra') == extra
        assert storage.list_backups('web') == web

    @pytest.mark.parametrize('retention', [1, 2, 3])
    def test_never_more_than_retention(self, storage, retention):
        """Test repeated cleanups keep the count at or below retention."""
        manager = RetentionManager(storage)
        for i in range(6):
            path = storage.create_backup_dir('db', BASE + timedelta(minutes=i))
            os.utime(path, (1700000000 + i, 1700000000 + i))
            manager.cleanup('db', retention)

            assert len(storage.list_backups('db')) <= retention

    def test_delete_failure_logged(self, storage):
        """Test a unit that cannot be deleted is logged and skipped."""
        make_units(storage, 'db', 3)
        manager = RetentionManager(storage)

        with patch.object(storage, 'delete', side_effect=StorageError('read-only filesystem')):
            deleted = manager.cleanup('db', 1)

        assert deleted == []
        assert len(manager.logs) == 2
        assert 'read-only filesystem' in manager.logs[0]

    def test_logs_deletions(self, storage):
        make_units(storage, 'db', 2)
        manager = RetentionManager(storage)

        manager.cleanup('db', 1)

        assert len(manager.logs) == 1
        assert 'Deleted old backup db_' in manager.logs[0]
        assert manager.logs[0].startswith('[')
