"""
Unit tests for scheduler (backwatch/scheduler.py).

Tests APScheduler configuration and job scheduling.
"""

from datetime import datetime, timedelta
from unittest.mock import MagicMock, patch

import pytest
from apscheduler.jobstores.memory import MemoryJobStore

from backwatch import scheduler as scheduler_module
from backwatch.backup.executor import BackupError


class TestSchedulerInitialization:
    """Test scheduler initialization."""

    def teardown_method(self):
        """Clean up after each test."""
        scheduler_module.scheduler = None
        scheduler_module.flask_app = None

    @patch('backwatch.scheduler.BackgroundScheduler')
    def test_init_scheduler(self, mock_scheduler_class, app):
        """Test scheduler initialization."""
        mock_scheduler = MagicMock()
        mock_scheduler_class.return_value = mock_scheduler

        result = scheduler_module.init_scheduler(app)

        assert result == mock_scheduler
        assert scheduler_module.scheduler == mock_scheduler
        assert scheduler_module.flask_app == app

        call_kwargs = mock_scheduler_class.call_args[1]
        assert call_kwargs['timezone'] == 'UTC'
        assert call_kwargs['job_defaults']['coalesce'] is True
        assert call_kwargs['job_defaults']['max_instances'] == 1

        # Daily retention sweep
        add_kwargs = mock_scheduler.add_job.call_args[1]
        assert add_kwargs['id'] == 'retention_cleanup'
        assert add_kwargs['func'] is scheduler_module._enforce_retention_wrapper

    @patch('backwatch.scheduler.BackgroundScheduler')
    def test_init_scheduler_only_once(self, mock_scheduler_class, app):
        """Test scheduler is only initialized once."""
        mock_scheduler_class.return_value = MagicMock()

        result1 = scheduler_module.init_scheduler(app)
        result2 = scheduler_module.init_scheduler(app)

        assert result1 == result2
        mock_scheduler_class.assert_called_once()


class TestSchedulerLifecycle:
    """Test scheduler start/stop operations."""

    def setup_method(self):
        """Set up before each test."""
        self.mock_scheduler = MagicMock()
        self.mock_scheduler.running = False
        self.mock_scheduler.state = 0
        scheduler_module.scheduler = self.mock_scheduler

    def teardown_method(self):
        """Clean up after each test."""
        scheduler_module.scheduler = None
        scheduler_module.flask_app = None

    def test_start_scheduler(self):
        """Test starting the scheduler."""
        self.mock_scheduler.get_jobs.return_value = []

        scheduler_module.start_scheduler()

        self.mock_scheduler.start.assert_called_once()

    def test_start_scheduler_not_initialized(self):
        """Test starting scheduler before initialization raises error."""
        scheduler_module.scheduler = None

        with pytest.raises(RuntimeError, match="not initialized"):
            scheduler_module.start_scheduler()

    def test_start_scheduler_already_running(self):
        """Test starting scheduler when already running."""
        self.mock_scheduler.running = True

        scheduler_module.start_scheduler()

        self.mock_scheduler.start.assert_not_called()

    def test_stop_scheduler(self):
        """Test stopping the scheduler."""
        self.mock_scheduler.running = True

        scheduler_module.stop_scheduler()

        self.mock_scheduler.shutdown.assert_called_once()

    def test_stop_scheduler_not_running(self):
        """Test stopping scheduler when not running."""
        scheduler_module.stop_scheduler()

        self.mock_scheduler.shutdown.assert_not_called()


class TestSyncBackupJobs:
    """Test syncing periodic backups with a real (paused) scheduler."""

    @pytest.fixture(autouse=True)
    def paused_scheduler(self, app):
        scheduler = scheduler_module.init_scheduler(app, jobstore=MemoryJobStore())
        scheduler.start(paused=True)
        yield scheduler
        scheduler_module.reset_scheduler()

    def _backup_job_ids(self, scheduler):
        return sorted(job.id for job in scheduler.get_jobs() if job.id.startswith('backup_'))

    def test_sync_backup_jobs_not_initialized(self):
        """Test syncing when scheduler not initialized raises error."""
        scheduler_module.reset_scheduler()

        with pytest.raises(RuntimeError, match="not initialized"):
            scheduler_module.sync_backup_jobs()

    def test_adds_interval_job(self, paused_scheduler, db, backup_config):
        """Test enabled configs with an interval get a job."""
        backup_config.interval_minutes = 30
        db.session.commit()

        scheduler_module.sync_backup_jobs()

        job = paused_scheduler.get_job(f'backup_{backup_config.id}')
        assert job.name == 'Backup: docs'
        assert job.trigger.interval == timedelta(minutes=30)
        assert job.args == (backup_config.id,)

    def test_no_job_without_interval(self, paused_scheduler, backup_config):
        """Test configs with interval 0 are only backed up on demand."""
        scheduler_module.sync_backup_jobs()

        assert self._backup_job_ids(paused_scheduler) == []

    def test_updates_changed_interval(self, paused_scheduler, db, backup_config):
        """Test an interval change reschedules the existing job."""
        backup_config.interval_minutes = 30
        db.session.commit()
        scheduler_module.sync_backup_jobs()

        backup_config.interval_minutes = 60
        db.session.commit()
        scheduler_module.sync_backup_jobs()

        job = paused_scheduler.get_job(f'backup_{backup_config.id}')
        assert job.trigger.interval == timedelta(minutes=60)

    def test_removes_disabled_job(self, paused_scheduler, db, backup_config):
        """Test disabling a config removes its job."""
        backup_config.interval_minutes = 30
        db.session.commit()
        scheduler_module.sync_backup_jobs()

        backup_config.enabled = False
        db.session.commit()
        scheduler_module.sync_backup_jobs()

        assert self._backup_job_ids(paused_scheduler) == []

    def test_removes_orphaned_job(self, paused_scheduler, db, backup_config):
        """Test jobs for deleted configs are removed."""
        backup_config.interval_minutes = 30
        db.session.commit()
        scheduler_module.sync_backup_jobs()

        db.session.delete(backup_config)
        db.session.commit()
        scheduler_module.sync_backup_jobs()

        assert self._backup_job_ids(paused_scheduler) == []

    def test_cleans_old_manual_jobs(self, paused_scheduler, backup_config):
        """Test syncing removes old manual trigger jobs."""
        scheduler_module.trigger_backup_now(backup_config.id)

        scheduler_module.sync_backup_jobs()

        assert not [job for job in paused_scheduler.get_jobs() if job.id.startswith('manual_')]

    def test_retention_job_kept(self, paused_scheduler, db):
        """Test syncing never touches the retention job."""
        scheduler_module.sync_backup_jobs()

        assert paused_scheduler.get_job('retention_cleanup') is not None


class TestManualTrigger:
    """Test manual backup triggering."""

    def setup_method(self):
        """Set up before each test."""
        self.mock_scheduler = MagicMock()
        scheduler_module.scheduler = self.mock_scheduler

    def teardown_method(self):
        """Clean up after each test."""
        scheduler_module.scheduler = None
        scheduler_module.flask_app = None

    def test_trigger_backup_now(self, backup_config):
        """Test manually triggering a backup."""
        scheduler_module.trigger_backup_now(backup_config.id)

        self.mock_scheduler.add_job.assert_called_once()
        call_args = self.mock_scheduler.add_job.call_args
        assert call_args[1]['args'] == [backup_config.id, True]
        assert call_args[1]['id'].startswith(f'manual_{backup_config.id}_')
        assert call_args[1]['name'] == 'Manual: docs'

    def test_trigger_backup_now_not_initialized(self, backup_config):
        """Test triggering backup when scheduler not initialized."""
        scheduler_module.scheduler = None

        with pytest.raises(RuntimeError, match="not initialized"):
            scheduler_module.trigger_backup_now(backup_config.id)

    def test_trigger_backup_now_config_not_found(self, db):
        """Test triggering a non-existent config."""
        with pytest.raises(ValueError, match="not found"):
            scheduler_module.trigger_backup_now(99999)


class TestSchedulerQueries:
    """Test scheduler query functions."""

    def setup_method(self):
        """Set up before each test."""
        self.mock_scheduler = MagicMock()
        scheduler_module.scheduler = self.mock_scheduler

    def teardown_method(self):
        """Clean up after each test."""
        scheduler_module.scheduler = None

    def test_get_scheduled_jobs(self):
        """Test getting list of scheduled jobs."""
        mock_job1 = MagicMock()
        mock_job1.id = 'backup_1'
        mock_job1.name = 'Backup: docs'
        mock_job1.next_run_time = datetime(2024, 1, 1, 2, 0, 0)
        mock_job1.trigger = 'interval[0:30:00]'

        mock_job2 = MagicMock(spec=['id', 'name', 'trigger'])
        mock_job2.id = 'manual_1_1704074400'
        mock_job2.name = 'Manual: docs'
        mock_job2.trigger = 'date'

        self.mock_scheduler.get_jobs.return_value = [mock_job1, mock_job2]

        result = scheduler_module.get_scheduled_jobs()

        assert len(result) == 2
        assert result[0]['next_run'] == '2024-01-01T02:00:00'
        assert result[1]['next_run'] is None

    def test_get_scheduled_jobs_not_initialized(self):
        """Test getting jobs when scheduler not initialized."""
        scheduler_module.scheduler = None

        assert scheduler_module.get_scheduled_jobs() == []

    def test_is_scheduler_running(self):
        """Test scheduler running check."""
        self.mock_scheduler.running = True
        assert scheduler_module.is_scheduler_running() is True

        self.mock_scheduler.running = False
        assert scheduler_module.is_scheduler_running() is False

        scheduler_module.scheduler = None
        assert scheduler_module.is_scheduler_running() is False


class TestWrappers:
    """Test the functions run on scheduler threads."""

    def teardown_method(self):
        """Clean up after each test."""
        scheduler_module.flask_app = None

    @patch('backwatch.scheduler.execute_backup_config')
    def test_execute_backup_wrapper_success(self, mock_execute, app):
        """Test wrapper runs the backup inside an app context."""
        scheduler_module.flask_app = app
        mock_execute.return_value = MagicMock(id='docs_20240101_020000_abc123')

        scheduler_module._execute_backup_wrapper(123, allow_disabled=True)

        mock_execute.assert_called_once_with(123, allow_disabled=True)

    @patch('backwatch.scheduler.execute_backup_config')
    def test_execute_backup_wrapper_failure(self, mock_execute, app):
        """Test a failed backup is logged, not raised into the scheduler."""
        scheduler_module.flask_app = app
        mock_execute.side_effect = BackupError("Backup 'docs' failed: rsync not found")

        scheduler_module._execute_backup_wrapper(123)

    @patch('backwatch.scheduler.enforce_retention_policies')
    def test_enforce_retention_wrapper(self, mock_enforce, app):
        """Test the daily sweep runs and errors never escape."""
        scheduler_module.flask_app = app
        mock_enforce.return_value = {'names_processed': 2, 'deleted': 3, 'errors': []}

        scheduler_module._enforce_retention_wrapper()
        mock_enforce.assert_called_once_with()

        mock_enforce.side_effect = RuntimeError('database is locked')
        scheduler_module._enforce_retention_wrapper()
