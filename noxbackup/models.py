import json
from datetime import datetime, timezone

from noxbackup import db
from noxbackup.backup.config_store import BackupConfiguration


def _utcnow():
    return datetime.now(timezone.utc).replace(tzinfo=None)


class BackupConfigRecord(db.Model):
    """Persisted backup configuration"""
    __tablename__ = 'backup_configurations'

    id = db.Column(db.String(255), primary_key=True)
    name = db.Column(db.String(255), nullable=False)
    source = db.Column(db.Text, nullable=False)  # JSON list of specifiers
    destination = db.Column(db.String(1024), nullable=False)
    schedule = db.Column(db.String(100))  # Cron expression (null = manual only)
    retention = db.Column(db.Integer, default=0, nullable=False)
    encrypt = db.Column(db.Boolean, default=False, nullable=False)
    remote_sync = db.Column(db.Boolean, default=False, nullable=False)
    remote_path = db.Column(db.String(1024))
    validate = db.Column(db.Boolean, default=False, nullable=False)
    created_at = db.Column(db.DateTime, default=_utcnow, nullable=False)
    updated_at = db.Column(db.DateTime, default=_utcnow, onupdate=_utcnow, nullable=False)

    def update_from(self, config: BackupConfiguration):
        self.name = config.name
        self.source = json.dumps(list(config.source))
        self.destination = config.destination
        self.schedule = config.schedule
        self.retention = config.retention
        self.encrypt = config.encrypt
        self.remote_sync = config.remote_sync
        self.remote_path = config.remote_path
        self.validate = config.validate

    def to_configuration(self) -> BackupConfiguration:
        return BackupConfiguration(
            id=self.id,
            name=self.name,
            source=json.loads(self.source),
            destination=self.destination,
            schedule=self.schedule,
            retention=self.retention,
            encrypt=self.encrypt,
            remote_sync=self.remote_sync,
            remote_path=self.remote_path,
            validate=self.validate,
        )

    def __repr__(self):
        return f'<BackupConfigRecord {self.id} schedule={self.schedule}>'
