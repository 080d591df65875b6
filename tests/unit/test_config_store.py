"""
Unit tests for backup configurations (noxbackup/backup/config_store.py).
"""

import pytest

from noxbackup.backup.config_store import (
    BackupConfiguration,
    ConfigStore,
    ConfigurationError,
    ConfigurationNotFoundError,
)


def make_config(**overrides):
    data = {
        'id': 'web',
        'name': 'Web data',
        'source': ['/srv/web'],
        'destination': '/backups',
        'schedule': '0 2 * * *',
        'retention': 3,
    }
    data.update(overrides)
    return BackupConfiguration(**data)


class TestBackupConfiguration:
    """Test configuration parsing and field validation."""

    def test_from_dict_camel_case(self):
        """Test the JSON shape with camelCase keys."""
        config = BackupConfiguration.from_dict({
            'id': 'db',
            'name': 'Database',
            'source': ['DATABASE'],
            'destination': '/backups',
            'schedule': '0 0 * * *',
            'retention': 2,
            'encrypt': True,
            'remoteSync': True,
            'remotePath': 'b2:noxhime',
            'validate': True,
        })

        assert config.id == 'db'
        assert config.source == ['DATABASE']
        assert config.remote_sync is True
        assert config.remote_path == 'b2:noxhime'
        assert config.validate is True

    def test_from_dict_snake_case_and_csv_source(self):
        """Test snake_case keys and comma separated sources."""
        config = BackupConfiguration.from_dict({
            'id': 'files',
            'source': './data, ./logs',
            'destination': '/backups',
            'remote_sync': 'true',
            'remote_path': 'remote:path',
            'retention': '5',
        })

        assert config.source == ['./data', './logs']
        assert config.remote_sync is True
        assert config.retention == 5

    def test_from_dict_defaults(self):
        """Test name defaults to id and an empty schedule means manual-only."""
        config = BackupConfiguration.from_dict({
            'id': 'manual',
            'source': ['/a'],
            'destination': '/b',
            'schedule': '',
        })

        assert config.name == 'manual'
        assert config.schedule is None
        assert config.retention == 0
        assert config.is_unlimited

    def test_from_dict_rejects_non_mapping(self):
        with pytest.raises(ConfigurationError):
            BackupConfiguration.from_dict(['not', 'a', 'dict'])

    def test_from_dict_rejects_bad_retention(self):
        with pytest.raises(ConfigurationError, match='retention'):
            BackupConfiguration.from_dict({'id': 'x', 'source': ['/a'], 'destination': '/b', 'retention': 'lots'})

    def test_to_dict_round_trip(self):
        """Test to_dict emits the camelCase shape from_dict accepts."""
        config = make_config(remote_sync=True, remote_path='r:p')

        data = config.to_dict()

        assert data['remoteSync'] is True
        assert data['remotePath'] == 'r:p'
        assert BackupConfiguration.from_dict(data) == config

    @pytest.mark.parametrize('overrides, message', [
        ({'id': ''}, "'id'"),
        ({'source': []}, "'source'"),
        ({'destination': ''}, "'destination'"),
        ({'source': ['/a', '  ']}, 'non-empty strings'),
        ({'retention': True}, 'integer'),
        ({'remote_sync': True, 'remote_path': None}, 'remotePath'),
    ])
    def test_validate_fields_rejects(self, overrides, message):
        """Test invalid fields raise ConfigurationError."""
        with pytest.raises(ConfigurationError, match=message):
            make_config(**overrides).validate_fields()

    @pytest.mark.parametrize('config_id', ['../etc', 'a/b', 'a\\b', '.', '..'])
    def test_validate_fields_rejects_path_ids(self, config_id):
        """Test ids that would escape the backup root are rejected."""
        with pytest.raises(ConfigurationError, match='id'):
            make_config(id=config_id).validate_fields()

    def test_validate_fields_accepts_valid(self):
        make_config().validate_fields()


class TestConfigStore:
    """Test the in-memory configuration registry."""

    def test_put_and_get(self):
        store = ConfigStore()

        replaced = store.put(make_config())

        assert replaced is False
        assert store.get('web').name == 'Web data'
        assert 'web' in store
        assert len(store) == 1

    def test_put_replaces(self):
        store = ConfigStore()
        store.put(make_config())

        replaced = store.put(make_config(name='Renamed'))

        assert replaced is True
        assert store.get('web').name == 'Renamed'
        assert len(store) == 1

    def test_put_rejects_invalid(self):
        """Test an invalid configuration never enters the store."""
        store = ConfigStore()

        with pytest.raises(ConfigurationError):
            store.put(make_config(destination=''))

        assert 'web' not in store

    def test_get_unknown(self):
        with pytest.raises(ConfigurationNotFoundError, match='Backup configuration nope not found'):
            ConfigStore().get('nope')

    def test_delete(self):
        store = ConfigStore()
        store.put(make_config())

        removed = store.delete('web')

        assert removed.id == 'web'
        assert 'web' not in store
        with pytest.raises(ConfigurationNotFoundError):
            store.delete('web')

    def test_values_are_copies(self):
        """Test mutating returned configurations does not change the store."""
        store = ConfigStore()
        config = make_config()
        store.put(config)

        config.source.append('/mutated')
        fetched = store.get('web')
        fetched.source.append('/also-mutated')
        store.list()[0].name = 'changed'

        stored = store.get('web')
        assert stored.source == ['/srv/web']
        assert stored.name == 'Web data'
