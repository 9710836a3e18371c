"""
Settings routes - retention policy management.
"""

import logging
from flask import Blueprint, jsonify, request

from backwatch import db
from backwatch.models import RetentionSettings


bp = Blueprint('settings', __name__, url_prefix='/api/settings')
logger = logging.getLogger(__name__)

RETENTION_FIELDS = ('keep_daily', 'keep_weekly', 'keep_monthly')


@bp.route('/retention', methods=['GET'])
def get_retention_settings():
    """
    Get the retention policy applied after every backup and by the daily sweep.

    Returns:
        JSON with keep_daily, keep_weekly and keep_monthly
    """
    settings = RetentionSettings.query.first()

    if not settings:
        settings = RetentionSettings()

    return jsonify({
        'keep_daily': settings.keep_daily if settings.keep_daily is not None else 7,
        'keep_weekly': settings.keep_weekly if settings.keep_weekly is not None else 4,
        'keep_monthly': settings.keep_monthly if settings.keep_monthly is not None else 3,
        'updated_at': settings.updated_at.isoformat() if settings.updated_at else None
    })


@bp.route('/retention', methods=['PUT'])
def update_retention_settings():
    """
    Update the retention policy.

    Request body:
        - keep_daily: Daily buckets to keep (integer >= 0, optional)
        - keep_weekly: Weekly buckets to keep (integer >= 0, optional)
        - keep_monthly: Monthly buckets to keep (integer >= 0, optional)

    Returns:
        JSON with success message
    """
    data = request.get_json(silent=True) or {}

    for field in RETENTION_FIELDS:
        if field not in data:
            continue
        value = data[field]
        if not isinstance(value, int) or isinstance(value, bool) or value < 0:
            return jsonify({'error': f'{field} must be an integer >= 0'}), 400

    settings = RetentionSettings.query.first()
    if not settings:
        settings = RetentionSettings()
        db.session.add(settings)

    for field in RETENTION_FIELDS:
        if field in data:
            setattr(settings, field, data[field])

    db.session.commit()

    logger.info(
        f"Retention policy updated: daily={settings.keep_daily} "
        f"weekly={settings.keep_weekly} monthly={settings.keep_monthly}"
    )
    return jsonify({'message': 'Retention settings updated successfully'})
