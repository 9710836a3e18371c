import os
import tempfile


def _env_float(name, default):
    value = os.environ.get(name)
    return float(value) if value else default


def _env_int(name, default):
    value = os.environ.get(name)
    return int(value) if value else default


class Config:
    """Base configuration"""

    # Data directory (database, logs, temp files)
    DATA_DIR = os.environ.get('BACKWATCH_DATA_DIR') or os.path.join(
        os.path.expanduser('~'), '.config', 'backwatch'
    )

    # Database
    SQLALCHEMY_DATABASE_URI = os.environ.get('DATABASE_URL') or f'sqlite:///{os.path.join(DATA_DIR, "backwatch.db")}'
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Filesystem layout
    BACKUP_DESTINATION = os.environ.get('BACKUP_DESTINATION') or os.path.join(DATA_DIR, 'backups')
    TEMP_DIR = os.environ.get('TEMP_DIR') or os.path.join(DATA_DIR, 'temp')
    LOG_DIR = os.environ.get('LOG_DIR') or os.path.join(DATA_DIR, 'logs')

    # Per-backup JSON metadata from earlier versions, imported on startup
    LEGACY_BACKUP_INFO_DIR = os.environ.get('LEGACY_BACKUP_INFO_DIR')

    # External tools
    RSYNC_BINARY = os.environ.get('RSYNC_BINARY') or 'rsync'
    RSYNC_TIMEOUT = _env_int('RSYNC_TIMEOUT', 3600)  # seconds, per rsync run
    NOTIFIER_BACKEND = os.environ.get('NOTIFIER_BACKEND') or 'auto'  # auto, inotifywait, fswatch, watchdog

    # Watcher timings (seconds)
    WATCH_WAIT_AFTER_CHANGES = _env_float('WATCH_WAIT_AFTER_CHANGES', 5.0)
    WATCH_MIN_BACKUP_INTERVAL = _env_float('WATCH_MIN_BACKUP_INTERVAL', 10.0)

    # Scheduler
    SCHEDULER_TIMEZONE = 'UTC'
    RETENTION_CLEANUP_HOUR = _env_int('RETENTION_CLEANUP_HOUR', 2)


class DevelopmentConfig(Config):
    """Development configuration"""
    DEBUG = True
    SQLALCHEMY_ECHO = True

    # Use local data directory for development
    BASE_DIR = os.path.abspath(os.path.dirname(os.path.dirname(__file__)))
    DATA_DIR = os.path.join(BASE_DIR, 'data')
    SQLALCHEMY_DATABASE_URI = f'sqlite:///{os.path.join(DATA_DIR, "backwatch.db")}'
    BACKUP_DESTINATION = os.path.join(DATA_DIR, 'backups')
    TEMP_DIR = os.path.join(DATA_DIR, 'temp')
    LOG_DIR = os.path.join(DATA_DIR, 'logs')


class TestingConfig(Config):
    """Testing configuration"""
    TESTING = True
    DEBUG = False

    DATA_DIR = os.path.join(tempfile.gettempdir(), 'backwatch-tests')
    SQLALCHEMY_DATABASE_URI = 'sqlite:///:memory:'
    BACKUP_DESTINATION = os.path.join(DATA_DIR, 'backups')
    TEMP_DIR = os.path.join(DATA_DIR, 'temp')
    LOG_DIR = os.path.join(DATA_DIR, 'logs')

    WATCH_WAIT_AFTER_CHANGES = 0.05
    WATCH_MIN_BACKUP_INTERVAL = 0.1


class ProductionConfig(Config):
    """Production configuration"""
    DEBUG = False
    SQLALCHEMY_ECHO = False


# Configuration dictionary
config = {
    'development': DevelopmentConfig,
    'testing': TestingConfig,
    'production': ProductionConfig,
    'default': ProductionConfig
}
