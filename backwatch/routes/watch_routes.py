"""
Watch routes - start and stop background directory watches.
"""

import logging
from flask import Blueprint, jsonify, current_app

from backwatch.models import BackupConfig
from backwatch.watch.notifier import NotifierUnavailable
from backwatch.watch.supervisor import get_watch_registry
from backwatch.watch.watcher import WatchError


bp = Blueprint('watch', __name__, url_prefix='/api/watch')
logger = logging.getLogger(__name__)


@bp.route('/', methods=['GET'])
def list_watches():
    """
    Get the active watches.

    Returns:
        JSON array of watch sessions
    """
    registry = get_watch_registry(current_app)
    return jsonify(registry.active())


@bp.route('/<int:config_id>/start', methods=['POST'])
def start_watch(config_id):
    """
    Start watching a config's source directory.

    A backup runs right away, then after every burst of changes.

    Args:
        config_id: Backup config ID

    Returns:
        JSON with success message
    """
    config = BackupConfig.query.get_or_404(config_id)
    registry = get_watch_registry(current_app)

    try:
        registry.start(config)
    except NotifierUnavailable as e:
        return jsonify({'error': str(e)}), 503
    except WatchError as e:
        return jsonify({'error': str(e)}), 409

    return jsonify({'message': f"Watching '{config.source_path}' for backup '{config.name}'"}), 202


@bp.route('/<int:config_id>/stop', methods=['POST'])
def stop_watch(config_id):
    """
    Stop watching a config's source directory.

    Args:
        config_id: Backup config ID

    Returns:
        JSON with success message
    """
    config = BackupConfig.query.get_or_404(config_id)
    registry = get_watch_registry(current_app)

    if not registry.stop(config.name):
        return jsonify({'error': f"Backup '{config.name}' is not being watched"}), 404

    return jsonify({'message': f"Stopped watching backup '{config.name}'"})
