"""
rsync wrapper.

All byte copying is delegated to the external ``rsync`` binary; this module
only builds its command line, runs it and maps failures to SyncError.
"""

import os
import shutil
import logging
import subprocess
from typing import List, Optional

logger = logging.getLogger(__name__)


class SyncError(Exception):
    """Raised when rsync is unavailable or a transfer fails."""
    pass


class RsyncWrapper:
    """
    Runs rsync for backups and restores.

    Backups are made with ``-a --delete`` into a fresh destination directory;
    incremental backups hard-link unchanged files against the previous backup
    with ``--link-dest``.
    """

    def __init__(self, binary: str = 'rsync', timeout: Optional[int] = None):
        """
        Initialize rsync wrapper.

        Args:
            binary: rsync executable name or path
            timeout: Max seconds for one rsync run (None = no limit)
        """
        self.binary = binary
        self.timeout = timeout

    def is_available(self) -> bool:
        return shutil.which(self.binary) is not None

    def ensure_available(self):
        if not self.is_available():
            raise SyncError(f"rsync not found (looked for '{self.binary}'). Install rsync to run backups.")

    def build_backup_args(
        self,
        source: str,
        destination: str,
        exclude_dirs: Optional[List[str]] = None,
        exclude_files: Optional[List[str]] = None,
        link_dest: Optional[str] = None
    ) -> List[str]:
        """
        Build the rsync command line for a backup.

        Args:
            source: Directory to back up
            destination: Directory receiving the copy
            exclude_dirs: Directory patterns to skip
            exclude_files: File patterns to skip
            link_dest: Previous backup directory to hard-link unchanged files against

        Returns:
            Argument list, binary first
        """
        args = [self.binary, '-a', '--delete']

        for pattern in exclude_dirs or []:
            args.append(f"--exclude={pattern.rstrip('/')}/")
        for pattern in exclude_files or []:
            args.append(f"--exclude={pattern}")

        if link_dest:
            args.append(f"--link-dest={os.path.abspath(link_dest)}")

        # Trailing slash: copy the directory contents, not the directory itself
        args.append(source.rstrip('/') + '/')
        args.append(destination.rstrip('/') + '/')
        return args

    def backup(
        self,
        source: str,
        destination: str,
        exclude_dirs: Optional[List[str]] = None,
        exclude_files: Optional[List[str]] = None,
        link_dest: Optional[str] = None
    ):
        """
        Copy a directory tree into a backup destination.

        Raises:
            SyncError: If the source is missing, rsync is unavailable or fails
        """
        if not os.path.isdir(source):
            raise SyncError(f"Source directory does not exist: {source}")

        self.ensure_available()

        if link_dest:
            logger.info(f"Incremental rsync based on {link_dest}")

        args = self.build_backup_args(source, destination, exclude_dirs, exclude_files, link_dest)
        self._run(args)

    def restore_tree(self, source: str, target: str):
        """
        Copy a backup tree back into a target directory.

        Unlike backups, restores never delete files that exist only in the target.

        Raises:
            SyncError: If rsync is unavailable or fails
        """
        if not os.path.isdir(source):
            raise SyncError(f"Backup directory does not exist: {source}")

        self.ensure_available()

        args = [self.binary, '-a', source.rstrip('/') + '/', target.rstrip('/') + '/']
        self._run(args)

    def _run(self, args: List[str]):
        logger.debug(f"Running: {' '.join(args)}")

        try:
            result = subprocess.run(
                args,
                capture_output=True,
                text=True,
                timeout=self.timeout
            )
        except subprocess.TimeoutExpired as e:
            raise SyncError(f"rsync timed out after {self.timeout} seconds") from e
        except OSError as e:
            raise SyncError(f"Failed to start rsync: {e}") from e

        if result.returncode != 0:
            stderr = (result.stderr or '').strip()
            raise SyncError(f"rsync failed with exit code {result.returncode}: {stderr}")

        logger.info("rsync completed successfully")
