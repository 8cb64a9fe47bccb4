"""
Bulk plugin management routes.
"""
from flask import request, jsonify, current_app
from . import bp
from ..auth.decorators import admin_required
from .installer_interface import (
    process_plugins, rollback_batch, list_batches, cleanup_expired,
    get_activity_log, clear_activity_log, get_settings, update_settings
)
from bulk_installer.utils.batch_manifest_store import BatchManifestStore


def _actor_id() -> str:
    return request.headers.get('X-Actor-Id', '0')


def _run_batch(dry_run: bool):
    data = request.get_json(silent=True)
    if data is None:
        return jsonify({"success": False, "error": "Request body is required"}), 400

    result = process_plugins(data, dry_run=dry_run, actor_id=_actor_id())

    if not result['success']:
        current_app.logger.warning(f'Rejected plugin batch: {result["error"]}')
        return jsonify(result), 400

    summary = result['summary']
    current_app.logger.info(
        f'Batch {result["batch_id"]}: {summary["installed"]} installed, {summary["updated"]} updated, '
        f'{summary["failed"]} failed'
    )
    return jsonify(result), 200


@bp.route('/api/plugins/process', methods=['POST'])
@admin_required
def process_batch():
    """Install/update a batch of plugins."""
    try:
        return _run_batch(dry_run=False)
    except Exception as e:
        current_app.logger.error(f'Exception processing plugin batch: {str(e)}')
        return jsonify({"success": False, "error": f"Internal server error: {str(e)}"}), 500


@bp.route('/api/plugins/dry-run', methods=['POST'])
@admin_required
def dry_run_batch():
    """Simulate a batch without changing anything."""
    try:
        return _run_batch(dry_run=True)
    except Exception as e:
        current_app.logger.error(f'Exception in plugin dry run: {str(e)}')
        return jsonify({"success": False, "error": f"Internal server error: {str(e)}"}), 500


@bp.route('/api/plugins/rollback/<batch_id>', methods=['POST'])
@admin_required
def rollback(batch_id):
    """Roll back a recorded batch."""
    try:
        current_app.logger.info(f'Starting rollback of batch: {batch_id}')

        result = rollback_batch(batch_id)

        if result['success']:
            current_app.logger.info(f'Successfully rolled back batch: {batch_id}')
            return jsonify(result), 200
        if result['failures'] == [BatchManifestStore.MSG_MANIFEST_NOT_FOUND]:
            return jsonify(result), 404

        current_app.logger.error(f'Rollback of batch {batch_id} completed with errors: {result["error"]}')
        return jsonify(result), 400

    except Exception as e:
        current_app.logger.error(f'Exception rolling back batch {batch_id}: {str(e)}')
        return jsonify({"success": False, "error": f"Internal server error: {str(e)}"}), 500


@bp.route('/api/plugins/batches', methods=['GET'])
@admin_required
def batches():
    """List batches that can still be rolled back."""
    try:
        return jsonify(list_batches()), 200
    except Exception as e:
        current_app.logger.error(f'Exception listing batches: {str(e)}')
        return jsonify({"success": False, "error": f"Internal server error: {str(e)}"}), 500


@bp.route('/api/plugins/cleanup', methods=['POST'])
@admin_required
def cleanup():
    """Remove expired batches and their backups."""
    try:
        return jsonify(cleanup_expired()), 200
    except Exception as e:
        current_app.logger.error(f'Exception cleaning up expired batches: {str(e)}')
        return jsonify({"success": False, "error": f"Internal server error: {str(e)}"}), 500


@bp.route('/api/plugins/log', methods=['GET'])
@admin_required
def activity_log():
    """Return activity log entries, newest first."""
    try:
        try:
            limit = int(request.args.get('limit', 50))
            offset = int(request.args.get('offset', 0))
        except ValueError:
            return jsonify({"success": False, "error": "limit and offset must be integers"}), 400

        return jsonify(get_activity_log(limit, offset)), 200
    except Exception as e:
        current_app.logger.error(f'Exception reading activity log: {str(e)}')
        return jsonify({"success": False, "error": f"Internal server error: {str(e)}"}), 500


@bp.route('/api/plugins/log', methods=['DELETE'])
@admin_required
def delete_activity_log():
    """Clear the activity log."""
    try:
        return jsonify(clear_activity_log()), 200
    except Exception as e:
        current_app.logger.error(f'Exception clearing activity log: {str(e)}')
        return jsonify({"success": False, "error": f"Internal server error: {str(e)}"}), 500


@bp.route('/api/plugins/settings', methods=['GET', 'PUT'])
@admin_required
def settings():
    """Read or update installer settings."""
    try:
        if request.method == 'GET':
            return jsonify(get_settings()), 200

        data = request.get_json(silent=True)
        if not isinstance(data, dict):
            return jsonify({"success": False, "error": "Request body must be a JSON object"}), 400

        result = update_settings(data)
        return jsonify(result), 200 if result['success'] else 400

    except Exception as e:
        current_app.logger.error(f'Exception updating settings: {str(e)}')
        return jsonify({"success": False, "error": f"Internal server error: {str(e)}"}), 500
