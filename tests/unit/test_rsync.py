"""
Unit tests for the rsync wrapper (backwatch/backup/rsync.py).

subprocess.run and shutil.which are patched; no rsync binary is needed.
"""

import subprocess
from unittest.mock import MagicMock, patch

import pytest

from backwatch.backup.rsync import RsyncWrapper, SyncError


class TestBuildBackupArgs:
    """Test rsync command lines."""

    def test_full_backup(self):
        """Test a plain backup copies directory contents with -a --delete."""
        args = RsyncWrapper().build_backup_args('/data/docs', '/backups/docs_1')

        assert args == ['rsync', '-a', '--delete', '/data/docs/', '/backups/docs_1/']

    def test_excludes(self):
        """Test directory patterns get a trailing slash and file patterns don't."""
        args = RsyncWrapper().build_backup_args(
            '/data/docs/', '/backups/docs_1',
            exclude_dirs=['node_modules', 'build/'],
            exclude_files=['*.tmp']
        )

        assert '--exclude=node_modules/' in args
        assert '--exclude=build/' in args
        assert '--exclude=*.tmp' in args
        assert args[-2] == '/data/docs/'

    def test_link_dest_is_absolute(self, tmp_path, monkeypatch):
        """Test --link-dest is passed as an absolute path."""
        monkeypatch.chdir(tmp_path)

        args = RsyncWrapper().build_backup_args('/data/docs', '/backups/docs_2', link_dest='docs_1')

        assert f'--link-dest={tmp_path}/docs_1' in args

    def test_custom_binary(self):
        """Test the configured binary is used."""
        assert RsyncWrapper('/opt/bin/rsync').build_backup_args('/a', '/b')[0] == '/opt/bin/rsync'


class TestBackup:
    """Test running rsync."""

    @patch('backwatch.backup.rsync.shutil.which', return_value='/usr/bin/rsync')
    @patch('backwatch.backup.rsync.subprocess.run')
    def test_backup_success(self, mock_run, mock_which, source_dir, tmp_path):
        """Test a successful run passes the timeout through."""
        mock_run.return_value = MagicMock(returncode=0, stderr='')

        RsyncWrapper(timeout=60).backup(str(source_dir), str(tmp_path / 'dest'))

        assert mock_run.call_args.kwargs['timeout'] == 60
        assert mock_run.call_args.args[0][0] == 'rsync'

    @patch('backwatch.backup.rsync.shutil.which', return_value='/usr/bin/rsync')
    @patch('backwatch.backup.rsync.subprocess.run')
    def test_nonzero_exit(self, mock_run, mock_which, source_dir, tmp_path):
        """Test a failing rsync raises SyncError with its stderr."""
        mock_run.return_value = MagicMock(returncode=23, stderr='rsync: some files could not be transferred\n')

        with pytest.raises(SyncError, match='exit code 23: rsync: some files'):
            RsyncWrapper().backup(str(source_dir), str(tmp_path / 'dest'))

    @patch('backwatch.backup.rsync.shutil.which', return_value='/usr/bin/rsync')
    @patch('backwatch.backup.rsync.subprocess.run', side_effect=subprocess.TimeoutExpired('rsync', 5))
    def test_timeout(self, mock_run, mock_which, source_dir, tmp_path):
        """Test timeouts are reported as SyncError."""
        with pytest.raises(SyncError, match='timed out after 5 seconds'):
            RsyncWrapper(timeout=5).backup(str(source_dir), str(tmp_path / 'dest'))

    @patch('backwatch.backup.rsync.shutil.which', return_value=None)
    def test_rsync_missing(self, mock_which, source_dir, tmp_path):
        """Test a missing rsync binary is reported before running."""
        with pytest.raises(SyncError, match='rsync not found'):
            RsyncWrapper().backup(str(source_dir), str(tmp_path / 'dest'))

    def test_missing_source(self, tmp_path):
        """Test a missing source directory raises SyncError."""
        with pytest.raises(SyncError, match='Source directory does not exist'):
            RsyncWrapper().backup(str(tmp_path / 'missing'), str(tmp_path / 'dest'))


class TestRestoreTree:
    """Test copying a backup back."""

    @patch('backwatch.backup.rsync.shutil.which', return_value='/usr/bin/rsync')
    @patch('backwatch.backup.rsync.subprocess.run')
    def test_restore_never_deletes(self, mock_run, mock_which, source_dir, tmp_path):
        """Test restores don't pass --delete."""
        mock_run.return_value = MagicMock(returncode=0, stderr='')

        RsyncWrapper().restore_tree(str(source_dir), str(tmp_path / 'target'))

        args = mock_run.call_args.args[0]
        assert '--delete' not in args
        assert args == ['rsync', '-a', f'{source_dir}/', f'{tmp_path}/target/']

    def test_missing_backup(self, tmp_path):
        """Test restoring from a missing directory raises SyncError."""
        with pytest.raises(SyncError, match='Backup directory does not exist'):
            RsyncWrapper().restore_tree(str(tmp_path / 'missing'), str(tmp_path / 'target'))
