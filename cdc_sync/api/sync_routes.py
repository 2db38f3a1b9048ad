"""
Sync API Blueprint
Provides REST endpoints for submitting, retrying and tracking table syncs.
"""

from flask import Blueprint, jsonify, request

from cdc_sync.api.responses import error_response, get_task_manager
from cdc_sync.domain import SyncRequest
from cdc_sync.errors import ValidationError
from cdc_sync.utils.logger import get_logger

logger = get_logger(__name__)

sync_bp = Blueprint('sync', __name__, url_prefix='/api/sync')


@sync_bp.route('/single', methods=['POST'])
def submit_single():
    """
    Submit one table sync.

    Body:
        SyncRequest JSON object

    Returns:
        JSON with the new task id
    """
    try:
        sync_request = SyncRequest.from_dict(request.get_json(silent=True))
        task_id = get_task_manager().submit(sync_request)

        logger.info(f"Sync submitted via API: task {task_id}")
        return jsonify({
            'success': True,
            'task_id': task_id
        }), 202

    except Exception as e:
        return error_response(e, "Sync submission")


@sync_bp.route('/batch', methods=['POST'])
def submit_batch():
    """
    Submit several table syncs sharing one engine triple.

    Body:
        JSON list of SyncRequest objects, or ``{"requests": [...]}``

    Returns:
        JSON with the new task ids in request order
    """
    try:
        payload = request.get_json(silent=True)
        if isinstance(payload, dict):
            payload = payload.get('requests')
        if not isinstance(payload, list):
            raise ValidationError("Batch body must be a list of sync requests")

        requests = [SyncRequest.from_dict(item) for item in payload]
        task_ids = get_task_manager().submit_batch(requests)

        logger.info(f"Batch submitted via API: {len(task_ids)} tasks")
        return jsonify({
            'success': True,
            'task_ids': task_ids
        }), 202

    except Exception as e:
        return error_response(e, "Batch submission")


@sync_bp.route('/progress/<int:task_id>', methods=['GET'])
def get_progress(task_id: int):
    """Get step progress of a task."""
    try:
        progress = get_task_manager().get_progress(task_id)
        return jsonify({
            'success': True,
            'progress': progress.to_dict()
        })

    except Exception as e:
        return error_response(e, f"Progress lookup for task {task_id}")


@sync_bp.route('/retry/<int:task_id>', methods=['POST'])
def retry_task(task_id: int):
    """
    Resubmit a failed task.

    Returns:
        JSON with the id of the new task
    """
    try:
        new_id = get_task_manager().retry(task_id)
        return jsonify({
            'success': True,
            'task_id': new_id,
            'retried_from': task_id
        }), 202

    except Exception as e:
        return error_response(e, f"Retry of task {task_id}")
