"""
Backup record routes - list, inspect, delete, prune and restore backups.
"""

import logging
from flask import Blueprint, jsonify, request, current_app

from backwatch.models import BackupRecord
from backwatch.backup.store import RecordStore, RecordNotFound, StoreError
from backwatch.backup.retention import RetentionManager, RetentionPolicy, load_retention_policy
from backwatch.backup.restore import restore_backup, RestoreError
from backwatch.backup.rsync import RsyncWrapper
from backwatch.utils.validation import validate_name, validate_source_path


bp = Blueprint('backups', __name__, url_prefix='/api/backups')
logger = logging.getLogger(__name__)


@bp.route('/', methods=['GET'])
def list_backups():
    """
    Get backup records with filtering and pagination.

    Query params:
        - name: Filter by backup name
        - limit: Max number of records (default: 50, max: 200)
        - offset: Number of records to skip (default: 0)

    Returns:
        JSON with records (newest first) and metadata
    """
    name_filter = request.args.get('name')
    limit = request.args.get('limit', 50, type=int)
    offset = request.args.get('offset', 0, type=int)

    if limit > 200:
        limit = 200
    if offset < 0:
        offset = 0

    query = BackupRecord.query
    if name_filter:
        query = query.filter(BackupRecord.name == name_filter)

    total_count = query.count()

    records = query.order_by(BackupRecord.created_at.desc()).limit(limit).offset(offset).all()

    return jsonify({
        'records': [record.to_dict() for record in records],
        'total': total_count,
        'limit': limit,
        'offset': offset
    })


@bp.route('/<record_id>', methods=['GET'])
def get_backup(record_id):
    """
    Get a single backup record.

    Args:
        record_id: Backup record id

    Returns:
        JSON with record details
    """
    try:
        record = RecordStore().get(record_id)
    except RecordNotFound as e:
        return jsonify({'error': str(e)}), 404

    return jsonify(record.to_dict())


@bp.route('/<record_id>', methods=['DELETE'])
def delete_backup(record_id):
    """
    Delete a backup record and its data on disk.

    Args:
        record_id: Backup record id

    Returns:
        JSON with success message
    """
    try:
        RecordStore().delete_by_id(record_id)
    except RecordNotFound as e:
        return jsonify({'error': str(e)}), 404
    except StoreError as e:
        logger.error(f"Failed to delete backup {record_id}: {e}")
        return jsonify({'error': str(e)}), 500

    return jsonify({'message': 'Backup deleted successfully'})


@bp.route('/cleanup', methods=['POST'])
def cleanup_backups():
    """
    Apply the retention policy to one backup name now.

    Request body:
        - name: Backup name (required)
        - keep_daily / keep_weekly / keep_monthly: Override the stored policy (optional)

    Returns:
        JSON with the cleanup summary
    """
    data = request.get_json(silent=True) or {}

    name = data.get('name')
    error = validate_name(name)
    if error:
        return jsonify({'error': error}), 400

    policy = load_retention_policy()
    overrides = {k: data[k] for k in ('keep_daily', 'keep_weekly', 'keep_monthly') if k in data}
    if overrides:
        for key, value in overrides.items():
            if not isinstance(value, int) or isinstance(value, bool) or value < 0:
                return jsonify({'error': f'{key} must be an integer >= 0'}), 400
        policy = RetentionPolicy(
            keep_daily=overrides.get('keep_daily', policy.keep_daily),
            keep_weekly=overrides.get('keep_weekly', policy.keep_weekly),
            keep_monthly=overrides.get('keep_monthly', policy.keep_monthly)
        )

    manager = RetentionManager()
    summary = manager.cleanup_for_name(name, policy)
    summary['logs'] = manager.logs

    return jsonify(summary)


@bp.route('/<record_id>/restore', methods=['POST'])
def restore(record_id):
    """
    Restore a backup into a directory.

    Args:
        record_id: Backup record id

    Request body:
        - target_path: Directory to restore into (default: the backup's source path)

    Returns:
        JSON with the directory restored into
    """
    data = request.get_json(silent=True) or {}

    target_path = data.get('target_path')
    if target_path:
        error = validate_source_path(target_path, must_exist=False)
        if error:
            return jsonify({'error': error}), 400

    try:
        RecordStore().get(record_id)
    except RecordNotFound as e:
        return jsonify({'error': str(e)}), 404

    rsync = RsyncWrapper(current_app.config['RSYNC_BINARY'], current_app.config['RSYNC_TIMEOUT'])
    try:
        restored_to = restore_backup(
            record_id,
            target_path=target_path,
            rsync=rsync,
            temp_dir=current_app.config['TEMP_DIR']
        )
    except RestoreError as e:
        logger.error(f"Restore of {record_id} failed: {e}")
        return jsonify({'error': str(e)}), 500

    return jsonify({
        'message': 'Backup restored successfully',
        'target_path': restored_to
    })
