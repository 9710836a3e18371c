"""
Backup executor - performs one complete backup run.

Workflow:
1. Generate a backup id and create its destination directory
2. Find the previous backup of the same name (incremental runs)
3. Copy the source tree with rsync (--link-dest against the previous backup)
4. Pack the result into an archive (if compression is enabled)
5. Save the BackupRecord
6. Start the retention sweep for the name in the background
"""

import os
import shutil
import hashlib
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional

from flask import current_app

from backwatch.models import BackupConfig, BackupRecord
from .rsync import RsyncWrapper, SyncError
from .compression import create_archive, get_path_size, CompressionError
from .store import RecordStore, StoreError
from .retention import cleanup_in_background

logger = logging.getLogger(__name__)


class BackupError(Exception):
    """Raised when a backup run fails."""
    pass


@dataclass
class BackupOptions:
    compression: bool = False
    incremental: bool = True
    exclude_dirs: List[str] = field(default_factory=list)
    exclude_files: List[str] = field(default_factory=list)

    @classmethod
    def from_config(cls, config: BackupConfig) -> 'BackupOptions':
        return cls(
            compression=config.compression,
            incremental=config.incremental,
            exclude_dirs=config.exclude_dir_patterns,
            exclude_files=config.exclude_file_patterns
        )


def generate_backup_id(name: str, now: Optional[datetime] = None) -> str:
    """
    Generate a unique backup id.

    Format: {safe_name}_{YYYYmmdd_HHMMSS}_{6 hex chars}
    """
    now = now or datetime.now()
    timestamp = now.strftime('%Y%m%d_%H%M%S')

    # Random-ish suffix so two backups in the same second don't collide
    digest = hashlib.sha256(f"{name}{timestamp}{time.time_ns()}".encode()).hexdigest()[:6]

    # Sanitize name (replace spaces and special chars with underscores)
    safe_name = "".join(
        c if c.isascii() and (c.isalnum() or c in ('-', '_')) else '_'
        for c in name
    )

    return f"{safe_name}_{timestamp}_{digest}"


class BackupExecutor:
    """
    Runs one backup of a source directory under a logical name.
    """

    def __init__(
        self,
        source_path: str,
        name: str,
        options: BackupOptions,
        destination_root: str,
        store: Optional[RecordStore] = None,
        rsync: Optional[RsyncWrapper] = None
    ):
        """
        Initialize backup executor.

        Args:
            source_path: Directory to back up
            name: Logical backup name (groups records for retention)
            options: Compression / incremental / exclusion options
            destination_root: Directory holding all backups
            store: Record store (defaults to the database-backed store)
            rsync: rsync wrapper (defaults to the `rsync` on PATH)
        """
        self.source_path = source_path
        self.name = name
        self.options = options
        self.destination_root = destination_root
        self.store = store or RecordStore()
        self.rsync = rsync or RsyncWrapper()
        self.dest_path = None
        self.archive_path = None
        self.logs = []

    def execute(self) -> BackupRecord:
        """
        Execute the backup.

        Returns:
            The saved BackupRecord

        Raises:
            BackupError: If any step fails (partial output is removed)
        """
        self._log(f"Starting backup '{self.name}' of {self.source_path}")

        try:
            record = self._execute_workflow()
        except (SyncError, CompressionError, StoreError, OSError) as e:
            self._log(f"Backup failed: {e}", level=logging.ERROR)
            self._cleanup_partial()
            raise BackupError(f"Backup '{self.name}' failed: {e}") from e

        self._log(f"Backup completed successfully ({_format_size(record.size_bytes)})")
        return record

    def _execute_workflow(self) -> BackupRecord:
        """Execute the main backup workflow steps."""
        started_at = datetime.now()
        backup_id = generate_backup_id(self.name, started_at)

        # Step 1: Create destination directory
        self.dest_path = os.path.join(self.destination_root, backup_id)
        os.makedirs(self.dest_path)
        self._log(f"Destination: {self.dest_path}")

        # Step 2: Find the previous backup for hard-linking
        link_dest = self._find_link_dest() if self.options.incremental else None
        if self.options.incremental and link_dest is None:
            self._log("No previous uncompressed backup found, creating a full backup")

        # Step 3: Copy the tree
        self.rsync.backup(
            self.source_path,
            self.dest_path,
            exclude_dirs=self.options.exclude_dirs,
            exclude_files=self.options.exclude_files,
            link_dest=link_dest
        )
        size = get_path_size(self.dest_path)
        final_path = self.dest_path

        # Step 4: Pack into an archive
        if self.options.compression:
            self._log("Compressing backup")
            self.archive_path = create_archive(self.dest_path, self.dest_path, 'tar.gz')
            shutil.rmtree(self.dest_path, ignore_errors=True)
            size = get_path_size(self.archive_path)
            final_path = self.archive_path

        # Step 5: Save the record
        record = BackupRecord(
            id=backup_id,
            name=self.name,
            source_path=self.source_path,
            backup_path=final_path,
            created_at=started_at,
            size_bytes=size,
            is_incremental=link_dest is not None,
            compression=self.options.compression
        )
        return self.store.save(record)

    def _find_link_dest(self) -> Optional[str]:
        """Previous backup directory usable as --link-dest (archives can't be linked against)."""
        previous = self.store.latest_for_name(self.name)
        if previous is None or previous.compression or not os.path.isdir(previous.backup_path):
            return None
        self._log(f"Incremental backup based on {previous.id}")
        return previous.backup_path

    def _cleanup_partial(self):
        """Remove a half-written destination directory or archive."""
        for path in (self.dest_path, self.archive_path):
            if not path or not os.path.exists(path):
                continue
            try:
                if os.path.isdir(path):
                    shutil.rmtree(path)
                else:
                    os.remove(path)
                self._log(f"Removed partial backup {path}")
            except OSError as e:
                self._log(f"Warning: Failed to remove partial backup {path}: {e}", level=logging.WARNING)

    def _log(self, message: str, level: int = logging.INFO):
        timestamp = datetime.utcnow().strftime('%Y-%m-%d %H:%M:%S UTC')
        self.logs.append(f"[{timestamp}] {message}")
        logger.log(level, message)


def _format_size(size: int) -> str:
    for unit, factor in (('GB', 1024 ** 3), ('MB', 1024 ** 2), ('KB', 1024)):
        if size >= factor:
            return f"{size / factor:.1f} {unit}"
    return f"{size} B"


def run_backup(source_path: str, name: str, options: Optional[BackupOptions] = None) -> BackupRecord:
    """
    Perform one backup and start the retention sweep for its name.

    Must run inside an app context. The sweep runs on a background thread and
    never affects the outcome of the backup.

    Raises:
        BackupError: If the backup fails
    """
    app = current_app._get_current_object()

    executor = BackupExecutor(
        source_path,
        name,
        options or BackupOptions(),
        app.config['BACKUP_DESTINATION'],
        rsync=RsyncWrapper(app.config['RSYNC_BINARY'], app.config['RSYNC_TIMEOUT'])
    )
    record = executor.execute()

    cleanup_in_background(app, name)
    return record


def execute_backup_config(config_id: int, allow_disabled: bool = False) -> BackupRecord:
    """
    Run a backup for a stored BackupConfig.

    Raises:
        ValueError: If config not found, or if disabled and not allowed
        BackupError: If the backup fails
    """
    from backwatch import db

    config = db.session.get(BackupConfig, config_id)

    if not config:
        raise ValueError(f"Backup config not found: {config_id}")

    if not config.enabled and not allow_disabled:
        raise ValueError(f"Backup config is disabled: {config.name}")

    return run_backup(config.source_path, config.name, BackupOptions.from_config(config))


def execute_backup_by_name(name: str) -> BackupRecord:
    """
    Run a backup for a stored BackupConfig by name.

    Raises:
        ValueError: If config not found
        BackupError: If the backup fails
    """
    config = BackupConfig.query.filter_by(name=name).first()

    if not config:
        raise ValueError(f"Backup config not found: {name}")

    return run_backup(config.source_path, config.name, BackupOptions.from_config(config))


def make_backup_trigger(app, options: BackupOptions):
    """
    Build the callable a Watcher uses to run backups from its worker thread.

    The returned function takes the WatchSession and raises BackupError on failure.
    """
    def trigger(session):
        with app.app_context():
            return run_backup(session.source_path, session.name, options)

    return trigger
