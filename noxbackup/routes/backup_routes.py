"""
Backup API routes - configuration CRUD, manual runs, listing and restore.
"""

import os

from flask import Blueprint, current_app, jsonify, request

from noxbackup.backup.config_store import (
    BackupConfiguration,
    ConfigurationError,
    ConfigurationNotFoundError,
    PersistenceError,
)
from noxbackup.backup.storage import StorageError


bp = Blueprint('backups', __name__, url_prefix='/api')

# failed_stage -> HTTP status for failed runs
RUN_FAILURE_STATUS = {
    'lookup': 404,
    'concurrency': 409,
}

# snake_case keys accepted by BackupConfiguration.from_dict
FIELD_ALIASES = {
    'remote_sync': 'remoteSync',
    'remote_path': 'remotePath',
}


def _engine():
    return current_app.extensions['noxbackup']


@bp.route('/configs', methods=['GET'])
def list_configs():
    """
    Get list of all backup configurations.

    Returns:
        JSON array of configurations
    """
    return jsonify([config.to_dict() for config in _engine().list_configs()])


@bp.route('/configs', methods=['POST'])
def create_config():
    """
    Add or replace a backup configuration.

    Request body: configuration JSON (id, name, source, destination, schedule,
    retention, encrypt, remoteSync, remotePath, validate)

    Returns:
        JSON with the stored configuration; 201 when new, 200 when replaced
    """
    data = request.get_json(silent=True)

    try:
        config = BackupConfiguration.from_dict(data)
        updated = _engine().register(config)
    except ConfigurationError as e:
        return jsonify({'error': str(e)}), 400
    except PersistenceError as e:
        return jsonify({'error': str(e)}), 500

    return jsonify(config.to_dict()), 200 if updated else 201


@bp.route('/configs/<config_id>', methods=['GET'])
def get_config(config_id):
    try:
        config = _engine().get_config(config_id)
    except ConfigurationNotFoundError as e:
        return jsonify({'error': str(e)}), 404
    return jsonify(config.to_dict())


@bp.route('/configs/<config_id>', methods=['PUT'])
def update_config(config_id):
    """
    Update an existing backup configuration.

    Args:
        config_id: Configuration id (the body's id is ignored)

    Returns:
        JSON with the updated configuration
    """
    engine = _engine()
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        return jsonify({'error': 'Backup configuration must be an object'}), 400

    try:
        current = engine.get_config(config_id)
    except ConfigurationNotFoundError as e:
        return jsonify({'error': str(e)}), 404

    merged = current.to_dict()
    merged.update({FIELD_ALIASES.get(key, key): value for key, value in data.items()})
    merged['id'] = config_id

    try:
        config = BackupConfiguration.from_dict(merged)
        engine.register(config)
    except ConfigurationError as e:
        return jsonify({'error': str(e)}), 400
    except PersistenceError as e:
        return jsonify({'error': str(e)}), 500

    return jsonify(config.to_dict())


@bp.route('/configs/<config_id>', methods=['DELETE'])
def delete_config(config_id):
    try:
        _engine().deregister(config_id)
    except ConfigurationNotFoundError as e:
        return jsonify({'error': str(e)}), 404
    except PersistenceError as e:
        return jsonify({'error': str(e)}), 500
    return jsonify({'message': f'Backup configuration {config_id} removed'})


@bp.route('/configs/<config_id>/run', methods=['POST'])
def run_backup(config_id):
    """
    Run a backup now.

    Returns:
        BackupResult JSON; 404 unknown id, 409 already running, 500 other failure
    """
    result = _engine().run_backup(config_id)

    if result.success:
        return jsonify(result.to_dict())
    return jsonify(result.to_dict()), RUN_FAILURE_STATUS.get(result.failed_stage, 500)


@bp.route('/backups', methods=['GET'])
def list_backups():
    """
    List backup units.

    Query parameters:
        - config_id: Only units of this configuration (optional)

    Returns:
        JSON array of {name, path}
    """
    config_id = request.args.get('config_id') or None

    try:
        backups = _engine().list_backups(config_id)
    except StorageError as e:
        return jsonify({'error': str(e)}), 500

    return jsonify([{'name': os.path.basename(path), 'path': path} for path in backups])


@bp.route('/backups/restore', methods=['POST'])
def restore_backup():
    """
    Restore a backup unit.

    Request body:
        - backup: Unit name under the backup root, or an absolute path (required)
        - target: Restore target directory (required)

    Returns:
        RestoreResult JSON; 500 if the restore failed
    """
    data = request.get_json(silent=True) or {}

    if not data.get('backup'):
        return jsonify({'error': 'Backup path is required'}), 400
    if not data.get('target'):
        return jsonify({'error': 'Target path is required'}), 400

    result = _engine().restore_from_backup(data['backup'], data['target'])
    return jsonify(result.to_dict()), 200 if result.success else 500


@bp.route('/backups/test', methods=['POST'])
def test_restore():
    """
    Test-restore a backup unit into a disposable directory.

    Request body:
        - backup: Unit name under the backup root, or an absolute path (required)
    """
    data = request.get_json(silent=True) or {}

    if not data.get('backup'):
        return jsonify({'error': 'Backup path is required'}), 400

    result = _engine().test_restore(data['backup'])
    return jsonify(result.to_dict()), 200 if result.success else 500
