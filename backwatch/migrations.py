"""
Database migrations for backwatch.

Simple migration system to handle schema changes without requiring Alembic.
"""

import os
import re
import json
import logging
from datetime import datetime
from sqlalchemy import text, inspect
from backwatch import db

logger = logging.getLogger(__name__)


# Columns added after the first release: (table, column, DDL type)
COLUMN_MIGRATIONS = [
    ('backup_configs', 'interval_minutes', 'INTEGER NOT NULL DEFAULT 0'),
    ('backup_configs', 'incremental', 'BOOLEAN NOT NULL DEFAULT 1'),
    ('backup_records', 'is_incremental', 'BOOLEAN NOT NULL DEFAULT 0'),
    ('backup_records', 'compression', 'BOOLEAN NOT NULL DEFAULT 0'),
]


def init_database_schema(app):
    """
    Initialize database schema and run migrations.

    Creates tables if they don't exist, runs any necessary migrations and
    seeds the default retention policy. Safe to call from several workers.
    """
    with app.app_context():
        inspector = inspect(db.engine)
        existing_tables = inspector.get_table_names()

        # If no tables exist, create them all
        if not existing_tables:
            logger.info("No tables found - creating initial database schema")
            try:
                db.create_all()
                logger.info("Database schema created successfully")
            except Exception as e:
                # If another worker beat us to it, that's okay
                logger.error(f"Failed to create database schema: {e}")
        else:
            # Tables exist - run migrations
            run_migrations(app, inspector)

        seed_retention_settings()

        legacy_dir = app.config.get('LEGACY_BACKUP_INFO_DIR')
        if legacy_dir and os.path.isdir(legacy_dir):
            import_legacy_backup_info(legacy_dir)


def run_migrations(app, inspector=None):
    """
    Run all necessary database migrations.

    Creates tables added since the database was first created, then adds
    missing columns listed in COLUMN_MIGRATIONS.
    """
    if inspector is None:
        inspector = inspect(db.engine)

    # Migration 1: create tables that don't exist yet (create_all skips existing ones)
    known_tables = set(inspector.get_table_names())
    missing_tables = set(db.metadata.tables) - known_tables
    if missing_tables:
        logger.info(f"Running migration: Creating missing tables {sorted(missing_tables)}")
        db.create_all()

    # Migration 2: additive column changes
    for table, column, ddl in COLUMN_MIGRATIONS:
        if table not in known_tables:
            continue

        columns = [col['name'] for col in inspector.get_columns(table)]
        if column in columns:
            continue

        logger.info(f"Running migration: Adding {column} column to {table} table")
        try:
            db.session.execute(text(f"ALTER TABLE {table} ADD COLUMN {column} {ddl}"))
            db.session.commit()
            logger.info(f"Successfully added {column} column")
        except Exception as e:
            logger.error(f"Failed to add {column} column: {e}")
            db.session.rollback()


def seed_retention_settings():
    """Create the retention settings row with defaults (7 daily, 4 weekly, 3 monthly)."""
    from backwatch.models import RetentionSettings

    if RetentionSettings.query.first() is not None:
        return

    try:
        db.session.add(RetentionSettings(keep_daily=7, keep_weekly=4, keep_monthly=3))
        db.session.commit()
        logger.info("Seeded default retention policy (daily=7, weekly=4, monthly=3)")
    except Exception as e:
        logger.error(f"Failed to seed retention settings: {e}")
        db.session.rollback()


def import_legacy_backup_info(info_dir):
    """
    Import backup metadata written as one JSON file per backup.

    Each ``<id>.json`` file holds ``id``, ``name``, ``sourcePath``,
    ``backupPath``, ``time`` (ISO 8601), ``size``, ``isIncremental`` and
    ``compression``. Records already present are skipped.

    Returns:
        Number of records imported
    """
    from backwatch.models import BackupRecord

    imported = 0
    skipped = 0

    for filename in sorted(os.listdir(info_dir)):
        if not filename.endswith('.json'):
            continue

        path = os.path.join(info_dir, filename)
        try:
            with open(path, 'r') as f:
                info = json.load(f)

            if db.session.get(BackupRecord, info['id']) is not None:
                skipped += 1
                continue

            db.session.add(BackupRecord(
                id=info['id'],
                name=info['name'],
                source_path=info.get('sourcePath', ''),
                backup_path=info.get('backupPath', ''),
                created_at=_parse_legacy_time(info['time']),
                size_bytes=info.get('size', 0),
                is_incremental=info.get('isIncremental', False),
                compression=info.get('compression', False)
            ))
            imported += 1

        except (OSError, ValueError, KeyError) as e:
            logger.error(f"Failed to import legacy backup metadata {filename}: {e}")
            skipped += 1

    try:
        db.session.commit()
        logger.info(f"Legacy metadata import complete: {imported} imported, {skipped} skipped")
    except Exception as e:
        logger.error(f"Failed to commit legacy metadata import: {e}")
        db.session.rollback()
        return 0

    return imported


def _parse_legacy_time(value):
    """Parse an RFC 3339 timestamp into a naive local datetime."""
    # Exactly six fraction digits (e.g. 2024-01-02T10:00:00.123456789+01:00)
    if '.' in value:
        head, tail = value.split('.', 1)
        digits, zone = re.match(r'(\d*)(.*)', tail).groups()
        value = f"{head}.{digits[:6].ljust(6, '0')}{zone}"

    parsed = datetime.fromisoformat(value.replace('Z', '+00:00'))
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone().replace(tzinfo=None)
    return parsed
