"""
Shared pytest fixtures for noxbackup tests.

This module provides fixtures for:
- Flask app and test client with per-test directories
- Standalone DisasterRecovery engines
- A fake command runner standing in for bash and rclone
- Mock fixtures for external services (S3)
- Temporary file fixtures
"""

from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest
import boto3
from moto import mock_aws

from noxbackup import create_app, db as _db
from noxbackup.backup.engine import DisasterRecovery
from noxbackup.notifier import CallbackNotifier
from noxbackup.utils.command import CommandResult


class FakeRunner:
    """
    Command runner double.

    Records every call. ``bash <script> <dir>`` writes ``dump.sql`` into
    ``<dir>`` unless a handler is installed; every other command succeeds
    with no output.
    """

    def __init__(self, handler=None):
        self.calls = []
        self.handler = handler

    def run(self, args, timeout=None, cwd=None):
        self.calls.append(list(args))
        if self.handler is not None:
            return self.handler(args)
        if args[0] == 'bash':
            Path(args[2], 'dump.sql').write_text('CREATE TABLE events (id INTEGER);')
        return CommandResult(args=list(args), stdout='', stderr='', exit_code=0)


@pytest.fixture
def fake_runner():
    return FakeRunner()


@pytest.fixture
def make_runner():
    """The FakeRunner class, for tests that need a custom handler."""
    return FakeRunner


@pytest.fixture
def backup_script(tmp_path):
    """Database export script path (contents are never executed by tests)."""
    script = tmp_path / 'scripts' / 'backup.sh'
    script.parent.mkdir()
    script.write_text('#!/bin/bash\nsqlite3 data/noxhime.db .dump > "$1/dump.sql"\n')
    return script


@pytest.fixture
def notifications():
    """List that collects notifier messages."""
    return []


@pytest.fixture
def make_engine(tmp_path, fake_runner, backup_script, notifications):
    """
    Factory for standalone engines rooted in tmp_path.

    Keyword arguments override the DisasterRecovery constructor defaults.
    """
    def _make(**kwargs):
        options = {
            'backup_dir': str(tmp_path / 'backups'),
            'temp_dir': str(tmp_path / 'temp'),
            'backup_script': str(backup_script),
            'runner': fake_runner,
            'notifier': CallbackNotifier(notifications.append),
        }
        options.update(kwargs)
        return DisasterRecovery(**options)

    return _make


@pytest.fixture
def engine(make_engine):
    return make_engine()


@pytest.fixture
def encrypted_engine(make_engine):
    return make_engine(encryption_key='correct horse battery staple')


@pytest.fixture
def source_files(tmp_path):
    """
    Create source data for backups.

    Creates:
    - src/app.conf
    - src/notes.txt
    - src/data/events.log
    - src/data/nested/state.json
    """
    src = tmp_path / 'src'
    (src / 'data' / 'nested').mkdir(parents=True)
    (src / 'app.conf').write_text('port = 8080\n')
    (src / 'notes.txt').write_text('remember the milk')
    (src / 'data' / 'events.log').write_bytes(b'\x00\x01binary\xff' * 100)
    (src / 'data' / 'nested' / 'state.json').write_text('{"ok": true}')
    return src


@pytest.fixture
def temp_files(tmp_path):
    """
    Create temporary test files and directories.

    Creates:
    - test_file1.txt
    - test_file2.log
    - nested/test_file3.txt
    """
    base = tmp_path / 'files'
    base.mkdir()
    (base / 'test_file1.txt').write_text('Test content 1')
    (base / 'test_file2.log').write_text('Test log content')

    nested_dir = base / 'nested'
    nested_dir.mkdir()
    (nested_dir / 'test_file3.txt').write_text('Nested test content')

    return base


@pytest.fixture(scope='function')
def app(tmp_path):
    """
    Create Flask app with test configuration.

    Uses in-memory SQLite and per-test backup/temp/log directories.
    The scheduler is disabled by TestingConfig.
    """
    app = create_app('testing', test_config={
        'BACKUP_DIR': str(tmp_path / 'app' / 'backups'),
        'TEMP_DIR': str(tmp_path / 'app' / 'temp'),
        'LOG_DIR': str(tmp_path / 'app' / 'logs'),
        'PERSIST_CONFIGS': True,
    })

    yield app

    with app.app_context():
        _db.session.remove()
        _db.drop_all()


@pytest.fixture(scope='function')
def client(app):
    """Flask test client for making HTTP requests."""
    return app.test_client()


@pytest.fixture(scope='function')
def app_engine(app):
    """The engine installed by create_app."""
    return app.extensions['noxbackup']


@pytest.fixture
def aws_credentials(monkeypatch):
    """Fake AWS credentials so boto3 never looks for real ones."""
    monkeypatch.setenv('AWS_ACCESS_KEY_ID', 'testing')
    monkeypatch.setenv('AWS_SECRET_ACCESS_KEY', 'testing')
    monkeypatch.setenv('AWS_DEFAULT_REGION', 'us-east-1')


@pytest.fixture
def mock_s3(aws_credentials):
    """
    Mock AWS S3 service using moto.

    Creates a test bucket 'test-bucket' in us-east-1 region.
    """
    with mock_aws():
        s3 = boto3.resource('s3', region_name='us-east-1')
        s3.create_bucket(Bucket='test-bucket')
        yield s3


@pytest.fixture(scope='function')
def mock_scheduler():
    """
    Mock APScheduler for testing scheduler functionality.
    """
    with patch('noxbackup.scheduler.BackgroundScheduler') as mock_sched:
        scheduler_instance = MagicMock()
        mock_sched.return_value = scheduler_instance

        scheduler_instance.running = False
        scheduler_instance.get_jobs.return_value = []

        yield scheduler_instance
