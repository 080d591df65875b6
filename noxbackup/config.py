import os


def _env_int(name, default=None):
    value = os.environ.get(name)
    if value is None or value == '':
        return default
    return int(value)


class Config:
    """Base configuration"""

    # Data directories
    DATA_DIR = os.environ.get('DATA_DIR') or '/data'
    BACKUP_DIR = os.environ.get('BACKUP_DIR') or os.path.join(DATA_DIR, 'backups')
    TEMP_DIR = os.environ.get('TEMP_DIR') or os.path.join(DATA_DIR, 'temp')
    LOG_DIR = os.environ.get('LOG_DIR') or os.path.join(DATA_DIR, 'logs')

    # Database (backup configuration persistence)
    SQLALCHEMY_DATABASE_URI = os.environ.get('DATABASE_URL') or 'sqlite:////data/noxbackup.db'
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    PERSIST_CONFIGS = os.environ.get('PERSIST_CONFIGS', 'true').lower() == 'true'

    # Encryption
    # A single process-wide passphrase; backups with encrypt=true fail without it
    ENCRYPTION_KEY = os.environ.get('ENCRYPTION_KEY')
    KEY_DERIVATION = os.environ.get('KEY_DERIVATION', 'legacy')  # legacy or pbkdf2

    # External tools
    BACKUP_SCRIPT = os.environ.get('BACKUP_SCRIPT') or os.path.join(os.getcwd(), 'scripts', 'backup.sh')
    REMOTE_SYNC_TOOL = os.environ.get('REMOTE_SYNC_TOOL') or 'rclone'
    AWS_REGION = os.environ.get('AWS_REGION') or 'us-east-1'

    # Per-stage deadline in seconds (None = no deadline)
    STAGE_TIMEOUT = _env_int('STAGE_TIMEOUT')

    # Scheduler
    SCHEDULER_ENABLED = True
    SCHEDULER_TIMEZONE = 'UTC'


class DevelopmentConfig(Config):
    """Development configuration"""
    DEBUG = True

    # Use local data directory for development
    BASE_DIR = os.path.abspath(os.path.dirname(os.path.dirname(__file__)))
    DATA_DIR = os.path.join(BASE_DIR, 'data')
    SQLALCHEMY_DATABASE_URI = f'sqlite:///{os.path.join(DATA_DIR, "noxbackup.db")}'
    BACKUP_DIR = os.path.join(DATA_DIR, 'backups')
    TEMP_DIR = os.path.join(DATA_DIR, 'temp')
    LOG_DIR = os.path.join(DATA_DIR, 'logs')


class ProductionConfig(Config):
    """Production configuration"""
    DEBUG = False


class TestingConfig(Config):
    """Testing configuration - paths are overridden per test"""
    TESTING = True
    DEBUG = False
    SQLALCHEMY_DATABASE_URI = 'sqlite:///:memory:'
    SCHEDULER_ENABLED = False
    ENCRYPTION_KEY = None
    STAGE_TIMEOUT = None


# Configuration dictionary
config = {
    'development': DevelopmentConfig,
    'production': ProductionConfig,
    'testing': TestingConfig,
    'default': ProductionConfig
}
