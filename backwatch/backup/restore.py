"""
Restore a backup into a directory.
"""

import os
import shutil
import tempfile
import logging
from typing import Optional

from .rsync import RsyncWrapper, SyncError
from .compression import extract_archive, CompressionError
from .store import RecordStore, RecordNotFound

logger = logging.getLogger(__name__)


class RestoreError(Exception):
    """Raised when a restore fails."""
    pass


def restore_backup(
    record_id: str,
    target_path: Optional[str] = None,
    store: Optional[RecordStore] = None,
    rsync: Optional[RsyncWrapper] = None,
    temp_dir: Optional[str] = None
) -> str:
    """
    Restore a backup.

    Args:
        record_id: Backup record id
        target_path: Directory to restore into (default: the original source path)
        store: Record store
        rsync: rsync wrapper
        temp_dir: Where compressed backups are extracted before copying

    Returns:
        The directory that was restored into

    Raises:
        RestoreError: If the record or its data is missing, or copying fails
    """
    store = store or RecordStore()
    rsync = rsync or RsyncWrapper()

    try:
        record = store.get(record_id)
    except RecordNotFound as e:
        raise RestoreError(str(e)) from e

    target_path = target_path or record.source_path
    os.makedirs(target_path, exist_ok=True)

    logger.info(f"Restoring '{record.name}' ({record.created_at:%Y-%m-%d %H:%M:%S}) to {target_path}")

    extract_dir = None
    try:
        backup_dir = record.backup_path
        if record.compression:
            extract_dir = tempfile.mkdtemp(prefix=f"restore_{record.id}_", dir=temp_dir)
            backup_dir = extract_archive(record.backup_path, extract_dir)
        elif not os.path.isdir(backup_dir):
            raise RestoreError(f"Backup directory not found: {backup_dir}")

        rsync.restore_tree(backup_dir, target_path)

    except (SyncError, CompressionError) as e:
        raise RestoreError(f"Restore of {record_id} failed: {e}") from e
    finally:
        if extract_dir:
            shutil.rmtree(extract_dir, ignore_errors=True)

    logger.info(f"Restore of {record_id} completed")
    return target_path
