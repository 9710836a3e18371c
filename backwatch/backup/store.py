"""
Backup record store.

Durable id -> BackupRecord mapping backed by the application database.
Deleting a record also removes its backup directory or archive from disk.
"""

import os
import shutil
import logging
from typing import List, Optional

from backwatch import db
from backwatch.models import BackupRecord

logger = logging.getLogger(__name__)


class StoreError(Exception):
    """Raised when a record store operation fails."""
    pass


class RecordNotFound(StoreError):
    """Raised when a record id does not exist (or no longer exists)."""
    pass


class RecordStore:
    """
    Access to BackupRecord rows and the backup data they point to.

    Every method commits its own unit of work so it can be used from
    background threads that run inside their own app context.
    """

    def __init__(self, session=None):
        self.session = session or db.session

    def save(self, record: BackupRecord) -> BackupRecord:
        """
        Persist a new or updated record.

        Raises:
            StoreError: If the record cannot be written
        """
        try:
            self.session.add(record)
            self.session.commit()
        except Exception as e:
            self.session.rollback()
            raise StoreError(f"Failed to save backup record {record.id}: {e}") from e

        logger.info(f"Saved backup record {record.id} ({record.backup_path})")
        return record

    def get(self, record_id: str) -> BackupRecord:
        """
        Get a record by id.

        Raises:
            RecordNotFound: If no record has this id
        """
        record = self.session.get(BackupRecord, record_id)
        if record is None:
            raise RecordNotFound(f"Backup record not found: {record_id}")
        return record

    def list_by_name(self, name: str) -> List[BackupRecord]:
        """List every record for a logical backup name, oldest first."""
        return (
            BackupRecord.query
            .filter_by(name=name)
            .order_by(BackupRecord.created_at.asc())
            .all()
        )

    def list_all(self) -> List[BackupRecord]:
        """List every record, newest first."""
        return BackupRecord.query.order_by(BackupRecord.created_at.desc()).all()

    def names(self) -> List[str]:
        """Distinct logical backup names that have at least one record."""
        rows = self.session.query(BackupRecord.name).distinct().order_by(BackupRecord.name).all()
        return [row[0] for row in rows]

    def latest_for_name(self, name: str) -> Optional[BackupRecord]:
        """Most recent record for a name, or None."""
        return (
            BackupRecord.query
            .filter_by(name=name)
            .order_by(BackupRecord.created_at.desc())
            .first()
        )

    def delete_by_id(self, record_id: str):
        """
        Delete a record and its backup data.

        Args:
            record_id: Id of the record to delete

        Raises:
            RecordNotFound: If the record is already gone
            StoreError: If the backup data or the row cannot be removed
        """
        record = self.get(record_id)

        self._remove_backup_data(record.backup_path)

        try:
            self.session.delete(record)
            self.session.commit()
        except Exception as e:
            self.session.rollback()
            raise StoreError(f"Failed to delete backup record {record_id}: {e}") from e

        logger.info(f"Deleted backup record {record_id}")

    def _remove_backup_data(self, backup_path: str):
        """Remove a backup directory or archive file; a missing path is not an error."""
        if not backup_path or not os.path.lexists(backup_path):
            logger.warning(f"Backup data already missing: {backup_path}")
            return

        try:
            if os.path.isdir(backup_path) and not os.path.islink(backup_path):
                shutil.rmtree(backup_path)
            else:
                os.remove(backup_path)
        except FileNotFoundError:
            logger.warning(f"Backup data removed concurrently: {backup_path}")
        except PermissionError as e:
            raise StoreError(f"Permission denied deleting {backup_path}: {e}") from e
        except OSError as e:
            raise StoreError(f"Failed to delete backup data {backup_path}: {e}") from e
