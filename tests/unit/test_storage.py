"""
Unit tests for storage handlers (noxbackup/backup/storage.py).

Tests LocalStorage, the rclone remote and the S3 remote.
"""

import os
from datetime import datetime, timedelta, timezone
from pathlib import Path
from unittest.mock import patch

import pytest
from botocore.exceptions import ClientError

from noxbackup.backup.storage import (
    LocalStorage,
    RcloneRemote,
    S3Remote,
    StorageError,
    RemoteSyncError,
    create_remote_sync,
    generate_backup_name,
    remote_destination,
)
from noxbackup.utils.command import CommandError, CommandResult

MOMENT = datetime(2024, 1, 15, 12, 30, 45, 123456, tzinfo=timezone.utc)


class TestBackupNaming:
    """Test backup unit naming."""

    def test_generate_backup_name(self):
        assert generate_backup_name('db', MOMENT) == 'db_2024-01-15T12-30-45.123456Z'

    def test_name_has_no_colons(self):
        assert ':' not in generate_backup_name('db', MOMENT)

    def test_name_converted_to_utc(self):
        local = MOMENT.astimezone(timezone(timedelta(hours=2)))

        assert generate_backup_name('db', local) == 'db_2024-01-15T12-30-45.123456Z'


class TestLocalStorage:
    """Test LocalStorage for the backup root."""

    def test_creates_root(self, tmp_path):
        storage = LocalStorage(str(tmp_path / 'new' / 'root'))

        assert storage.base_path.is_dir()

    def test_create_backup_dir(self, tmp_path):
        storage = LocalStorage(str(tmp_path))

        path = storage.create_backup_dir('db', MOMENT)

        assert path.is_dir()
        assert path.name == 'db_2024-01-15T12-30-45.123456Z'

    def test_create_backup_dir_never_reuses(self, tmp_path):
        """Test an existing unit directory is never reused."""
        storage = LocalStorage(str(tmp_path))
        storage.create_backup_dir('db', MOMENT)

        with pytest.raises(StorageError, match='already exists'):
            storage.create_backup_dir('db', MOMENT)

    def test_list_backups_filters_by_id(self, tmp_path):
        """Test id 'db' does not match units of id 'db_extra'."""
        storage = LocalStorage(str(tmp_path))
        db_unit = storage.create_backup_dir('db', MOMENT)
        storage.create_backup_dir('db_extra', MOMENT)
        storage.create_backup_dir('web', MOMENT)

        assert storage.list_backups('db') == [str(db_unit)]
        assert len(storage.list_backups('db_extra')) == 1
        assert len(storage.list_backups()) == 3

    def test_list_backups_ignores_hidden_and_files(self, tmp_path):
        storage = LocalStorage(str(tmp_path))
        storage.create_backup_dir('db', MOMENT)
        (tmp_path / '.kdf_salt').write_bytes(b'x' * 16)
        (tmp_path / '.cache').mkdir()
        (tmp_path / 'stray.txt').write_text('x')

        assert [os.path.basename(p) for p in storage.list_backups()] == ['db_2024-01-15T12-30-45.123456Z']

    def test_list_backups_sorted(self, tmp_path):
        storage = LocalStorage(str(tmp_path))
        later = storage.create_backup_dir('db', datetime(2024, 2, 1, tzinfo=timezone.utc))
        earlier = storage.create_backup_dir('db', datetime(2024, 1, 1, tzinfo=timezone.utc))

        assert storage.list_backups('db') == [str(earlier), str(later)]

    def test_resolve(self, tmp_path):
        storage = LocalStorage(str(tmp_path))

        assert storage.resolve('db_x') == tmp_path / 'db_x'
        assert storage.resolve('/abs/path') == Path('/abs/path')

    def test_delete(self, tmp_path):
        storage = LocalStorage(str(tmp_path))
        unit = storage.create_backup_dir('db', MOMENT)
        (unit / 'nested').mkdir()
        (unit / 'nested' / 'file.txt').write_text('x')

        storage.delete(str(unit))

        assert not unit.exists()

    def test_delete_missing_is_noop(self, tmp_path):
        LocalStorage(str(tmp_path)).delete(str(tmp_path / 'missing'))


class TestRemoteDestination:
    """Test remote destination paths."""

    def test_appends_unit_name(self):
        assert remote_destination('b2:noxhime/backups/', '/data/backups/db_ts') == 'b2:noxhime/backups/db_ts'

    def test_trailing_separator_on_local(self):
        assert remote_destination('remote:', '/data/backups/db_ts/') == 'remote:/db_ts'


class TestRcloneRemote:
    """Test the rclone remote sync backend."""

    def test_sync_runs_rclone(self, make_runner, tmp_path):
        runner = make_runner()
        remote = RcloneRemote(runner=runner)

        remote.sync(str(tmp_path), 'b2:bucket/db_ts')

        assert runner.calls == [['rclone', 'sync', str(tmp_path), 'b2:bucket/db_ts']]

    def test_sync_custom_binary(self, make_runner, tmp_path):
        runner = make_runner()

        RcloneRemote(runner=runner, binary='/usr/local/bin/rclone').sync(str(tmp_path), 'r:p')

        assert runner.calls[0][0] == '/usr/local/bin/rclone'

    def test_sync_nonzero_exit(self, make_runner, tmp_path):
        """Test a failing rclone reports its stderr."""
        runner = make_runner(handler=lambda args: CommandResult(args, '', 'Failed to create file system', 1))

        with pytest.raises(RemoteSyncError, match='exited with 1: Failed to create file system'):
            RcloneRemote(runner=runner).sync(str(tmp_path), 'bad:remote')

    def test_sync_missing_binary(self, make_runner, tmp_path):
        def handler(args):
            raise CommandError('Command not found: rclone')

        with pytest.raises(RemoteSyncError, match='Command not found'):
            RcloneRemote(runner=make_runner(handler=handler)).sync(str(tmp_path), 'r:p')


class TestS3Remote:
    """Test the S3 remote sync backend."""

    def test_from_url(self, mock_s3):
        remote = S3Remote.from_url('s3://test-bucket/noxhime/backups')

        assert remote.bucket_name == 'test-bucket'
        assert remote.prefix == 'noxhime/backups'

    def test_from_url_requires_bucket(self, mock_s3):
        with pytest.raises(RemoteSyncError):
            S3Remote.from_url('s3:///prefix')

    def test_sync_uploads_tree(self, mock_s3, tmp_path):
        """Test every file is uploaded under prefix/unit/relative path."""
        unit = tmp_path / 'db_2024-01-15T12-30-45.123456Z'
        (unit / 'logs').mkdir(parents=True)
        (unit / 'dump.sql.enc').write_bytes(b'cipher')
        (unit / 'logs' / 'app.log').write_text('log line')

        remote = S3Remote.from_url('s3://test-bucket/backups')
        keys = remote.sync(str(unit), 's3://test-bucket/backups/' + unit.name)

        assert keys == [
            f'backups/{unit.name}/dump.sql.enc',
            f'backups/{unit.name}/logs/app.log',
        ]
        body = mock_s3.Object('test-bucket', f'backups/{unit.name}/logs/app.log').get()['Body'].read()
        assert body == b'log line'

    def test_sync_missing_bucket(self, mock_s3, tmp_path):
        """Test upload errors become RemoteSyncError."""
        unit = tmp_path / 'unit'
        unit.mkdir()
        (unit / 'file.txt').write_text('x')

        remote = S3Remote.from_url('s3://no-such-bucket')

        with pytest.raises(RemoteSyncError, match='NoSuchBucket'):
            remote.sync(str(unit), 's3://no-such-bucket/unit')

    def test_sync_missing_local_dir(self, mock_s3, tmp_path):
        remote = S3Remote.from_url('s3://test-bucket')

        with pytest.raises(RemoteSyncError, match='Local backup not found'):
            remote.sync(str(tmp_path / 'missing'), 's3://test-bucket/missing')

    def test_client_error_code_in_message(self, tmp_path):
        """Test the S3 error code is included in the message."""
        unit = tmp_path / 'unit'
        unit.mkdir()
        (unit / 'file.txt').write_text('x')

        with patch('noxbackup.backup.storage.boto3.client') as mock_client:
            mock_client.return_value.put_object.side_effect = ClientError(
                {'Error': {'Code': 'AccessDenied', 'Message': 'denied'}}, 'PutObject'
            )
            remote = S3Remote('bucket')

            with pytest.raises(RemoteSyncError, match='AccessDenied'):
                remote.sync(str(unit), 's3://bucket/unit')


class TestCreateRemoteSync:
    """Test the remote sync factory."""

    def test_s3_location(self, mock_s3):
        assert isinstance(create_remote_sync('s3://test-bucket/prefix'), S3Remote)

    def test_rclone_location(self, make_runner):
        runner = make_runner()
        remote = create_remote_sync('b2:bucket', runner=runner, tool='rclone-beta')

        assert isinstance(remote, RcloneRemote)
        assert remote.binary == 'rclone-beta'
        assert remote.runner is runner
