"""
APScheduler configuration and job scheduling for backwatch.

Manages:
- Periodic backups (one interval job per enabled config with interval_minutes > 0)
- Daily retention policy enforcement
- Manual "run now" triggers
"""

import logging
from datetime import datetime, timedelta, timezone
from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.date import DateTrigger
from apscheduler.triggers.interval import IntervalTrigger
from apscheduler.jobstores.sqlalchemy import SQLAlchemyJobStore
from apscheduler.jobstores.base import JobLookupError
from apscheduler.executors.pool import ThreadPoolExecutor

from backwatch import db
from backwatch.models import BackupConfig
from backwatch.backup.executor import execute_backup_config
from backwatch.backup.retention import enforce_retention_policies

logger = logging.getLogger(__name__)

# Global scheduler instance and Flask app reference
scheduler = None
flask_app = None


def init_scheduler(app, jobstore=None):
    """
    Initialize and configure APScheduler.

    Args:
        app: Flask app instance
        jobstore: Job store to use (default: SQLAlchemyJobStore on the app database)
    """
    global scheduler, flask_app

    if scheduler is not None:
        return scheduler

    # Store Flask app reference for use in background threads
    flask_app = app

    jobstores = {
        'default': jobstore or SQLAlchemyJobStore(url=app.config['SQLALCHEMY_DATABASE_URI'])
    }

    executors = {
        'default': ThreadPoolExecutor(max_workers=3)
    }

    job_defaults = {
        'coalesce': True,  # Combine multiple pending instances into one
        'max_instances': 1,  # Only one instance of a job at a time
        'misfire_grace_time': 300  # 5 minutes grace period for misfires
    }

    timezone_name = app.config.get('SCHEDULER_TIMEZONE', 'UTC')
    scheduler = BackgroundScheduler(
        jobstores=jobstores,
        executors=executors,
        job_defaults=job_defaults,
        timezone=timezone_name
    )

    # Retention sweep over every backup name, once a day
    scheduler.add_job(
        func=_enforce_retention_wrapper,
        trigger=CronTrigger(hour=app.config.get('RETENTION_CLEANUP_HOUR', 2), minute=0, timezone=timezone_name),
        id='retention_cleanup',
        name='Daily Retention Cleanup',
        replace_existing=True
    )

    return scheduler


def start_scheduler():
    """
    Start the APScheduler.

    Should be called after Flask app is initialized.
    """
    if scheduler is None:
        raise RuntimeError("Scheduler not initialized. Call init_scheduler() first.")

    if scheduler.running:
        logger.info(f"Scheduler already running (state={scheduler.state})")
        return

    scheduler.start()
    logger.info("APScheduler started")

    jobs = scheduler.get_jobs()
    if jobs:
        logger.info(f"Loaded {len(jobs)} scheduled jobs:")
        for job in jobs:
            next_run = _format_next_run(job) or 'N/A'
            logger.info(f"  - {job.id}: {job.name} (next run: {next_run})")
    else:
        logger.info("No scheduled jobs loaded")


def stop_scheduler():
    """Stop the APScheduler."""
    if scheduler and scheduler.running:
        scheduler.shutdown()
        logger.info("APScheduler stopped")


def reset_scheduler():
    """Shut down and forget the scheduler (used between tests)."""
    global scheduler, flask_app

    if scheduler is not None and scheduler.running:
        scheduler.shutdown(wait=False)
    scheduler = None
    flask_app = None


def _job_id(config_id: int) -> str:
    return f"backup_{config_id}"


def sync_backup_jobs():
    """
    Synchronize periodic backups from the database to the scheduler.

    This function should be called:
    - After app startup
    - After creating/updating/deleting backup configs
    """
    if scheduler is None:
        raise RuntimeError("Scheduler not initialized")

    # One-time jobs from earlier "run now" requests have already run or missed their window
    for job in scheduler.get_jobs():
        if job.id.startswith('manual_'):
            try:
                scheduler.remove_job(job.id)
                logger.info(f"Cleaned up old manual job: {job.id}")
            except JobLookupError:
                pass

    scheduled_job_ids = {job.id for job in scheduler.get_jobs() if job.id.startswith('backup_')}

    for config in BackupConfig.query.all():
        job_id = _job_id(config.id)

        if config.enabled and config.interval_minutes and config.interval_minutes > 0:
            if job_id in scheduled_job_ids:
                _update_scheduled_job(config)
                scheduled_job_ids.remove(job_id)
            else:
                _add_scheduled_job(config)
        elif job_id in scheduled_job_ids:
            _remove_scheduled_job(config.id)
            scheduled_job_ids.remove(job_id)

    # Jobs left over from configs that no longer exist
    for leftover_id in scheduled_job_ids:
        try:
            scheduler.remove_job(leftover_id)
            logger.info(f"Removed orphaned scheduled job: {leftover_id}")
        except JobLookupError:
            pass


def _add_scheduled_job(config: BackupConfig):
    """
    Add a periodic backup to the scheduler.

    Args:
        config: BackupConfig instance
    """
    scheduler.add_job(
        func=_execute_backup_wrapper,
        args=[config.id],
        trigger=IntervalTrigger(minutes=config.interval_minutes),
        id=_job_id(config.id),
        name=f"Backup: {config.name}",
        replace_existing=True
    )
    logger.info(f"Scheduled backup '{config.name}' every {config.interval_minutes} minutes")


def _update_scheduled_job(config: BackupConfig):
    """
    Update a periodic backup's interval and name.

    Args:
        config: BackupConfig instance
    """
    job = scheduler.get_job(_job_id(config.id))
    if job is None:
        _add_scheduled_job(config)
        return

    job.modify(name=f"Backup: {config.name}")
    if getattr(job.trigger, 'interval', None) != timedelta(minutes=config.interval_minutes):
        job.reschedule(trigger=IntervalTrigger(minutes=config.interval_minutes))
        logger.info(f"Updated scheduled backup '{config.name}' to every {config.interval_minutes} minutes")


def _remove_scheduled_job(config_id: int):
    """
    Remove a periodic backup from the scheduler.

    Args:
        config_id: BackupConfig ID
    """
    try:
        scheduler.remove_job(_job_id(config_id))
        logger.info(f"Removed scheduled backup for config ID: {config_id}")
    except JobLookupError:
        logger.warning(f"No scheduled backup to remove for config ID: {config_id}")


def _execute_backup_wrapper(config_id: int, allow_disabled: bool = False):
    """
    Run a backup from a scheduler thread.

    Args:
        config_id: BackupConfig ID to back up
        allow_disabled: If True, back up disabled configs too (manual triggers)
    """
    with flask_app.app_context():
        try:
            logger.info(f"Scheduler executing backup for config ID: {config_id} (allow_disabled={allow_disabled})")
            record = execute_backup_config(config_id, allow_disabled=allow_disabled)
            logger.info(f"Scheduled backup {record.id} completed")
        except Exception as e:
            logger.error(f"Scheduled backup for config {config_id} failed: {e}")


def _enforce_retention_wrapper():
    """Run the retention sweep from a scheduler thread."""
    with flask_app.app_context():
        try:
            summary = enforce_retention_policies()
            logger.info(
                f"Retention sweep finished: {summary['names_processed']} names, "
                f"{summary['deleted']} deleted, {len(summary['errors'])} errors"
            )
        except Exception as e:
            logger.error(f"Retention sweep failed: {e}")


def trigger_backup_now(config_id: int):
    """
    Manually trigger a backup immediately.

    Args:
        config_id: BackupConfig ID to back up

    Raises:
        ValueError: If config not found
        RuntimeError: If the scheduler is not initialized
    """
    if scheduler is None:
        raise RuntimeError("Scheduler not initialized")

    config = db.session.get(BackupConfig, config_id)
    if not config:
        raise ValueError(f"Backup config not found: {config_id}")

    # 1 second delay so the job store commit lands before the run
    now = datetime.now(timezone.utc)
    scheduler.add_job(
        func=_execute_backup_wrapper,
        args=[config_id, True],  # True = allow_disabled for manual triggers
        trigger=DateTrigger(run_date=now + timedelta(seconds=1)),
        id=f"manual_{config_id}_{int(now.timestamp())}",
        name=f"Manual: {config.name}",
        replace_existing=True
    )

    logger.info(f"Manually triggered backup: {config.name}")


def get_scheduled_jobs() -> list:
    """
    Get list of all scheduled jobs.

    Returns:
        List of dicts with job information
    """
    if scheduler is None:
        return []

    return [
        {
            'id': job.id,
            'name': job.name,
            'next_run': _format_next_run(job),
            'trigger': str(job.trigger)
        }
        for job in scheduler.get_jobs()
    ]


def is_scheduler_running() -> bool:
    return scheduler is not None and scheduler.running


def _format_next_run(job):
    # Jobs added before the scheduler starts have no next_run_time yet
    next_run = getattr(job, 'next_run_time', None)
    return next_run.isoformat() if next_run else None
