"""
Backup config routes - CRUD operations and backup execution.
"""

import json
import logging
from flask import Blueprint, jsonify, request

from backwatch import db
from backwatch.models import BackupConfig, BackupRecord
from backwatch.scheduler import sync_backup_jobs, trigger_backup_now, is_scheduler_running
from backwatch.utils.validation import validate_name, validate_source_path, validate_exclude_patterns


bp = Blueprint('configs', __name__, url_prefix='/api/configs')
logger = logging.getLogger(__name__)


def _sync_scheduler():
    """Reconcile periodic backups when this process runs the scheduler."""
    if is_scheduler_running():
        sync_backup_jobs()


def _validate_interval(value):
    if not isinstance(value, int) or isinstance(value, bool) or value < 0:
        return 'interval_minutes must be an integer >= 0'
    return ''


@bp.route('/', methods=['GET'])
def list_configs():
    """
    Get list of all backup configs.

    Returns:
        JSON array of backup configs
    """
    configs = BackupConfig.query.order_by(BackupConfig.created_at.desc()).all()
    return jsonify([config.to_dict() for config in configs])


@bp.route('/<int:config_id>', methods=['GET'])
def get_config(config_id):
    """
    Get a single backup config by ID.

    Args:
        config_id: Backup config ID

    Returns:
        JSON with config details and its latest backup
    """
    config = BackupConfig.query.get_or_404(config_id)

    latest = BackupRecord.query.filter_by(name=config.name).order_by(
        BackupRecord.created_at.desc()
    ).first()

    data = config.to_dict()
    data['latest_backup'] = latest.to_dict() if latest else None
    return jsonify(data)


@bp.route('/', methods=['POST'])
def create_config():
    """
    Create a new backup config.

    Request body:
        - name: Backup name (required, [A-Za-z0-9_-])
        - source_path: Directory to back up (required, must exist)
        - compression: Archive finished backups as tar.gz (default: false)
        - incremental: Hard-link unchanged files against the previous backup (default: true)
        - exclude_dirs: Directory glob patterns (optional)
        - exclude_files: File glob patterns (optional)
        - interval_minutes: Periodic backup interval, 0 = none (default: 0)
        - enabled: Enable periodic backups (default: true)

    Returns:
        JSON with created config details
    """
    data = request.get_json(silent=True) or {}

    error = (
        validate_name(data.get('name'))
        or validate_source_path(data.get('source_path'))
        or validate_exclude_patterns(data.get('exclude_dirs'))
        or validate_exclude_patterns(data.get('exclude_files'))
        or _validate_interval(data.get('interval_minutes', 0))
    )
    if error:
        return jsonify({'error': error}), 400

    if BackupConfig.query.filter_by(name=data['name']).first():
        return jsonify({'error': 'Backup name already exists'}), 400

    config = BackupConfig(
        name=data['name'],
        source_path=data['source_path'],
        compression=bool(data.get('compression', False)),
        incremental=bool(data.get('incremental', True)),
        exclude_dirs=json.dumps(data.get('exclude_dirs') or []),
        exclude_files=json.dumps(data.get('exclude_files') or []),
        interval_minutes=data.get('interval_minutes', 0),
        enabled=bool(data.get('enabled', True))
    )

    db.session.add(config)
    db.session.commit()

    _sync_scheduler()

    logger.info(f"Created backup config '{config.name}' for {config.source_path}")
    return jsonify({
        'id': config.id,
        'message': 'Backup config created successfully'
    }), 201


@bp.route('/<int:config_id>', methods=['PUT'])
def update_config(config_id):
    """
    Update an existing backup config.

    Args:
        config_id: Backup config ID

    Request body: Same as create_config (all fields optional)

    Returns:
        JSON with success message
    """
    config = BackupConfig.query.get_or_404(config_id)
    data = request.get_json(silent=True) or {}

    if 'name' in data and data['name'] != config.name:
        error = validate_name(data['name'])
        if error:
            return jsonify({'error': error}), 400
        if BackupConfig.query.filter_by(name=data['name']).first():
            return jsonify({'error': 'Backup name already exists'}), 400
        config.name = data['name']

    if 'source_path' in data:
        error = validate_source_path(data['source_path'])
        if error:
            return jsonify({'error': error}), 400
        config.source_path = data['source_path']

    for field in ('exclude_dirs', 'exclude_files'):
        if field in data:
            error = validate_exclude_patterns(data[field])
            if error:
                return jsonify({'error': error}), 400
            setattr(config, field, json.dumps(data[field] or []))

    if 'interval_minutes' in data:
        error = _validate_interval(data['interval_minutes'])
        if error:
            return jsonify({'error': error}), 400
        config.interval_minutes = data['interval_minutes']

    for field in ('compression', 'incremental', 'enabled'):
        if field in data:
            setattr(config, field, bool(data[field]))

    db.session.commit()

    _sync_scheduler()

    return jsonify({'message': 'Backup config updated successfully'})


@bp.route('/<int:config_id>', methods=['DELETE'])
def delete_config(config_id):
    """
    Delete a backup config. Its existing backups are kept.

    Args:
        config_id: Backup config ID

    Returns:
        JSON with success message
    """
    config = BackupConfig.query.get_or_404(config_id)

    db.session.delete(config)
    db.session.commit()

    _sync_scheduler()

    return jsonify({'message': 'Backup config deleted successfully'})


@bp.route('/<int:config_id>/toggle', methods=['POST'])
def toggle_config(config_id):
    """
    Toggle a config's enabled status.

    Args:
        config_id: Backup config ID

    Returns:
        JSON with new enabled status
    """
    config = BackupConfig.query.get_or_404(config_id)

    config.enabled = not config.enabled
    db.session.commit()

    _sync_scheduler()

    return jsonify({
        'enabled': config.enabled,
        'message': f"Backup config {'enabled' if config.enabled else 'disabled'} successfully"
    })


@bp.route('/<int:config_id>/run', methods=['POST'])
def run_config_now(config_id):
    """
    Queue a backup of this config for immediate execution.

    Args:
        config_id: Backup config ID

    Returns:
        JSON with success message
    """
    config = BackupConfig.query.get_or_404(config_id)

    try:
        trigger_backup_now(config_id)
    except RuntimeError as e:
        return jsonify({'error': str(e)}), 503
    except ValueError as e:
        return jsonify({'error': str(e)}), 404

    return jsonify({
        'message': f"Backup '{config.name}' has been queued for immediate execution"
    })


@bp.route('/<int:config_id>/records', methods=['GET'])
def get_config_records(config_id):
    """
    Get backup records for a specific config.

    Args:
        config_id: Backup config ID

    Query params:
        - limit: Max number of records (default: 50, max: 200)

    Returns:
        JSON array of backup records, newest first
    """
    config = BackupConfig.query.get_or_404(config_id)

    limit = request.args.get('limit', 50, type=int)
    if limit > 200:
        limit = 200

    records = BackupRecord.query.filter_by(name=config.name).order_by(
        BackupRecord.created_at.desc()
    ).limit(limit).all()

    return jsonify([record.to_dict() for record in records])
