"""
Tiered retention policy enforcement for backups.

Grandfather-father-son pruning: the records of one backup name are reduced
to one per day, the daily survivors to one per ISO week, and the weekly
survivors to one per month. Each tier keeps only its most recent N buckets.
A record kept by any tier survives; everything else is deleted.
"""

import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import List, Dict, Any, Optional

from .store import RecordStore, RecordNotFound, StoreError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RetentionPolicy:
    """How many daily, weekly and monthly buckets to keep. 0 keeps nothing."""
    keep_daily: int = 7
    keep_weekly: int = 4
    keep_monthly: int = 3

    def __post_init__(self):
        for tier in ('keep_daily', 'keep_weekly', 'keep_monthly'):
            if getattr(self, tier) < 0:
                raise ValueError(f"{tier} must be >= 0")


class RetentionInterval(Enum):
    DAILY = 'daily'
    WEEKLY = 'weekly'
    MONTHLY = 'monthly'

    def bucket(self, moment: datetime):
        """Calendar bucket a timestamp falls into for this interval."""
        if self is RetentionInterval.DAILY:
            return moment.year, moment.timetuple().tm_yday
        if self is RetentionInterval.WEEKLY:
            iso = moment.isocalendar()
            return iso[0], iso[1]
        return moment.year, moment.month


@dataclass
class RetentionPlan:
    """Outcome of applying a policy to one backup name."""
    keep: list = field(default_factory=list)
    delete: list = field(default_factory=list)


def select_by_interval(records: list, keep: int, interval: RetentionInterval) -> list:
    """
    Keep the earliest record of each bucket, limited to the most recent `keep` buckets.

    Args:
        records: Records sorted by created_at, oldest first
        keep: Number of buckets to keep (<= 0 keeps nothing)
        interval: Bucket size

    Returns:
        Surviving records, oldest first
    """
    if keep <= 0:
        return []

    kept = []
    last_bucket = None

    for record in records:
        bucket = interval.bucket(record.created_at)
        if not kept or bucket != last_bucket:
            kept.append(record)
            last_bucket = bucket

    if len(kept) > keep:
        logger.debug(f"Dropping {len(kept) - keep} excess {interval.value} backups")
        return kept[-keep:]

    return kept


def plan_retention(records: list, policy: RetentionPolicy) -> RetentionPlan:
    """
    Split the records of one backup name into kept and deleted.

    Args:
        records: Records of a single name, in any order
        policy: Retention policy to apply

    Returns:
        RetentionPlan with both lists ordered oldest first
    """
    ordered = sorted(records, key=lambda r: r.created_at)

    daily = select_by_interval(ordered, policy.keep_daily, RetentionInterval.DAILY)
    weekly = select_by_interval(daily, policy.keep_weekly, RetentionInterval.WEEKLY)
    monthly = select_by_interval(weekly, policy.keep_monthly, RetentionInterval.MONTHLY)

    kept_ids = {r.id for r in daily} | {r.id for r in weekly} | {r.id for r in monthly}

    plan = RetentionPlan()
    for record in ordered:
        if record.id in kept_ids:
            plan.keep.append(record)
        else:
            plan.delete.append(record)
    return plan


class RetentionManager:
    """
    Applies a retention policy to the records of a backup name.

    Deletion is best effort: a failed delete is logged and the sweep moves on.
    """

    def __init__(self, store: Optional[RecordStore] = None):
        """
        Initialize retention manager.

        Args:
            store: Record store (defaults to the database-backed store)
        """
        self.store = store or RecordStore()
        self.logs = []

    def cleanup_for_name(self, name: str, policy: RetentionPolicy) -> Dict[str, Any]:
        """
        Enforce the policy for one backup name.

        Args:
            name: Logical backup name
            policy: Policy to apply

        Returns:
            Dict with summary: {'name': str, 'kept': int, 'deleted': int, 'errors': List[str]}
        """
        self._log(f"Starting retention cleanup for '{name}'")

        summary = {'name': name, 'kept': 0, 'deleted': 0, 'errors': []}

        records = self.store.list_by_name(name)
        if not records:
            self._log(f"No backups found for '{name}'")
            return summary

        plan = plan_retention(records, policy)
        summary['kept'] = len(plan.keep)

        for record in plan.delete:
            record_id = record.id
            try:
                self.store.delete_by_id(record_id)
                summary['deleted'] += 1
                self._log(f"Deleted backup {record_id} (retention policy)")
            except RecordNotFound:
                self._log(f"Backup {record_id} already deleted")
            except StoreError as e:
                error_msg = f"Failed to delete backup {record_id}: {e}"
                self._log(error_msg, level=logging.ERROR)
                summary['errors'].append(error_msg)

        self._log(
            f"Retention cleanup for '{name}' complete. "
            f"Kept: {summary['kept']}, Deleted: {summary['deleted']}, Errors: {len(summary['errors'])}"
        )
        return summary

    def enforce_all(self, policy: RetentionPolicy) -> Dict[str, Any]:
        """
        Enforce the policy for every backup name in the store.

        Returns:
            Dict with summary: {'names_processed', 'deleted', 'errors', 'logs'}
        """
        summary = {'names_processed': 0, 'deleted': 0, 'errors': []}

        for name in self.store.names():
            result = self.cleanup_for_name(name, policy)
            summary['names_processed'] += 1
            summary['deleted'] += result['deleted']
            summary['errors'].extend(result['errors'])

        summary['logs'] = self.logs
        return summary

    def _log(self, message: str, level: int = logging.INFO):
        timestamp = datetime.utcnow().strftime('%Y-%m-%d %H:%M:%S UTC')
        self.logs.append(f"[{timestamp}] {message}")
        logger.log(level, message)


def load_retention_policy() -> RetentionPolicy:
    """Read the persisted policy, falling back to the defaults. Needs an app context."""
    from backwatch.models import RetentionSettings

    settings = RetentionSettings.query.first()
    if settings is None:
        return RetentionPolicy()
    return settings.to_policy()


def cleanup_in_background(app, name: str, policy: Optional[RetentionPolicy] = None) -> threading.Thread:
    """
    Run retention for a name on a background thread and return immediately.

    The persisted policy is read at sweep time when none is given.
    Errors are logged, never raised to the caller.
    """
    def _run():
        with app.app_context():
            try:
                RetentionManager().cleanup_for_name(name, policy or load_retention_policy())
            except Exception:
                logger.exception(f"Retention cleanup for '{name}' failed")

    thread = threading.Thread(target=_run, name=f"retention-{name}", daemon=True)
    thread.start()
    return thread


def enforce_retention_policies() -> Dict[str, Any]:
    """
    Enforce the persisted retention policy for all backup names.

    Called daily by the scheduler, inside an app context.
    """
    manager = RetentionManager()
    return manager.enforce_all(load_retention_policy())
