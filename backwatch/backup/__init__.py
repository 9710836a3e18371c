"""
Backup module for backwatch.

This module handles the core backup functionality including:
- Copying source trees with rsync
- Compression of finished backups
- The backup record store
- Execution of single backup runs
- Tiered retention policy enforcement
- Restores
"""

from .executor import BackupExecutor, BackupOptions, BackupError, run_backup
from .rsync import RsyncWrapper, SyncError
from .compression import create_archive, extract_archive, CompressionError
from .store import RecordStore, StoreError, RecordNotFound
from .retention import RetentionManager, RetentionPolicy, plan_retention
from .restore import restore_backup, RestoreError

__all__ = [
    'BackupExecutor',
    'BackupOptions',
    'BackupError',
    'run_backup',
    'RsyncWrapper',
    'SyncError',
    'create_archive',
    'extract_archive',
    'CompressionError',
    'RecordStore',
    'StoreError',
    'RecordNotFound',
    'RetentionManager',
    'RetentionPolicy',
    'plan_retention',
    'restore_backup',
    'RestoreError'
]
