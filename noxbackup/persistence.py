"""
Write-through persistence of backup configurations.

The engine's in-memory store stays authoritative at runtime; this layer only
mirrors register/deregister calls into the database and replays them at
startup.
"""

import logging
from typing import List

from sqlalchemy import inspect
from sqlalchemy.exc import OperationalError, SQLAlchemyError

from noxbackup import db
from noxbackup.backup.config_store import BackupConfiguration, PersistenceError
from noxbackup.models import BackupConfigRecord

logger = logging.getLogger(__name__)


def init_database_schema(app):
    """
    Create the configuration table if it does not exist.

    Safe to call from several Gunicorn workers at once.
    """
    with app.app_context():
        if BackupConfigRecord.__tablename__ in inspect(db.engine).get_table_names():
            return

        logger.info("No tables found - creating initial database schema")
        try:
            db.create_all()
            logger.info("Database schema created successfully")
        except OperationalError as e:
            # Another worker created it first
            logger.warning(f"Database schema creation skipped: {e}")


class SQLAlchemyConfigPersistence:
    """Persists configurations in the ``backup_configurations`` table."""

    def __init__(self, app):
        self.app = app

    def load_all(self) -> List[BackupConfiguration]:
        with self.app.app_context():
            records = BackupConfigRecord.query.order_by(BackupConfigRecord.created_at).all()
            return [record.to_configuration() for record in records]

    def save(self, config: BackupConfiguration):
        """
        Raises:
            PersistenceError: If the database write fails; the session is rolled back
        """
        with self.app.app_context():
            try:
                record = db.session.get(BackupConfigRecord, config.id)
                if record is None:
                    record = BackupConfigRecord(id=config.id)
                    db.session.add(record)
                record.update_from(config)
                db.session.commit()
            except SQLAlchemyError as e:
                db.session.rollback()
                raise PersistenceError(f"Failed to persist backup configuration {config.id}: {e}")
            logger.debug(f"Persisted backup configuration {config.id}")

    def delete(self, config_id: str):
        with self.app.app_context():
            try:
                record = db.session.get(BackupConfigRecord, config_id)
                if record is None:
                    return
                db.session.delete(record)
                db.session.commit()
            except SQLAlchemyError as e:
                db.session.rollback()
                raise PersistenceError(f"Failed to delete persisted backup configuration {config_id}: {e}")
            logger.debug(f"Deleted persisted backup configuration {config_id}")
