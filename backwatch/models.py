import json
from datetime import datetime
from backwatch import db


class BackupConfig(db.Model):
    """Configuration of a directory to back up (and optionally watch)"""
    __tablename__ = 'backup_configs'

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(100), unique=True, nullable=False)
    source_path = db.Column(db.String(1024), nullable=False)
    compression = db.Column(db.Boolean, default=False, nullable=False)
    incremental = db.Column(db.Boolean, default=True, nullable=False)
    exclude_dirs = db.Column(db.Text, default='[]', nullable=False)  # JSON list of glob patterns
    exclude_files = db.Column(db.Text, default='[]', nullable=False)  # JSON list of glob patterns
    interval_minutes = db.Column(db.Integer, default=0, nullable=False)  # 0 = no periodic backup
    enabled = db.Column(db.Boolean, default=True, nullable=False)
    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    @property
    def exclude_dir_patterns(self):
        return json.loads(self.exclude_dirs or '[]')

    @property
    def exclude_file_patterns(self):
        return json.loads(self.exclude_files or '[]')

    def to_dict(self):
        return {
            'id': self.id,
            'name': self.name,
            'source_path': self.source_path,
            'compression': self.compression,
            'incremental': self.incremental,
            'exclude_dirs': self.exclude_dir_patterns,
            'exclude_files': self.exclude_file_patterns,
            'interval_minutes': self.interval_minutes,
            'enabled': self.enabled,
            'created_at': self.created_at.isoformat() if self.created_at else None,
            'updated_at': self.updated_at.isoformat() if self.updated_at else None
        }

    def __repr__(self):
        return f'<BackupConfig {self.name} path={self.source_path} enabled={self.enabled}>'


class BackupRecord(db.Model):
    """A completed backup, grouped by its logical name"""
    __tablename__ = 'backup_records'

    id = db.Column(db.String(160), primary_key=True)  # {safe_name}_{YYYYmmdd_HHMMSS}_{hash}
    name = db.Column(db.String(100), nullable=False, index=True)
    source_path = db.Column(db.String(1024), nullable=False)
    backup_path = db.Column(db.String(1024), nullable=False)  # directory, or archive when compressed
    created_at = db.Column(db.DateTime, default=datetime.now, nullable=False)
    size_bytes = db.Column(db.BigInteger, default=0, nullable=False)
    is_incremental = db.Column(db.Boolean, default=False, nullable=False)
    compression = db.Column(db.Boolean, default=False, nullable=False)

    def to_dict(self):
        return {
            'id': self.id,
            'name': self.name,
            'source_path': self.source_path,
            'backup_path': self.backup_path,
            'created_at': self.created_at.isoformat(),
            'size_bytes': self.size_bytes,
            'size_mb': round(self.size_bytes / 1024 / 1024, 2) if self.size_bytes else 0,
            'is_incremental': self.is_incremental,
            'compression': self.compression
        }

    def __repr__(self):
        return f'<BackupRecord {self.id} name={self.name}>'


class RetentionSettings(db.Model):
    """Tiered retention policy (single row)"""
    __tablename__ = 'retention_settings'

    id = db.Column(db.Integer, primary_key=True)
    keep_daily = db.Column(db.Integer, default=7, nullable=False)
    keep_weekly = db.Column(db.Integer, default=4, nullable=False)
    keep_monthly = db.Column(db.Integer, default=3, nullable=False)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    def to_policy(self):
        from backwatch.backup.retention import RetentionPolicy
        return RetentionPolicy(
            keep_daily=self.keep_daily,
            keep_weekly=self.keep_weekly,
            keep_monthly=self.keep_monthly
        )

    def __repr__(self):
        return f'<RetentionSettings daily={self.keep_daily} weekly={self.keep_weekly} monthly={self.keep_monthly}>'
