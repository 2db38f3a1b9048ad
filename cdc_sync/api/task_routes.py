"""
Task API Blueprint
Provides REST endpoints for task history, details, logs and cancellation.
"""

from flask import Blueprint, current_app, jsonify, request

from cdc_sync.api.responses import error_response, get_task_manager
from cdc_sync.domain import TaskStatus
from cdc_sync.errors import ValidationError
from cdc_sync.utils.logger import get_logger

logger = get_logger(__name__)

tasks_bp = Blueprint('tasks', __name__, url_prefix='/api/tasks')


def _int_arg(name: str, default: int) -> int:
    raw = request.args.get(name)
    if raw is None or raw == '':
        return default
    try:
        return int(raw)
    except ValueError:
        raise ValidationError(f"Query parameter {name} must be an integer")


@tasks_bp.route('/history', methods=['GET'])
def get_history():
    """
    List tasks, newest first.

    Query params:
        status: Only tasks in this status
        limit: Page size (default 50, capped at 500)
        offset: Rows to skip (default 0)

    Returns:
        JSON with tasks and the total matching count
    """
    try:
        api_config = current_app.config.get('API_SETTINGS', {})
        default_limit = int(api_config.get('history_default_limit', 50))
        max_limit = int(api_config.get('history_max_limit', 500))

        status = request.args.get('status')
        status = TaskStatus.parse(status) if status else None
        limit = min(_int_arg('limit', default_limit), max_limit)
        offset = _int_arg('offset', 0)

        tasks, total = get_task_manager().list_tasks(status=status, limit=limit, offset=offset)

        return jsonify({
            'success': True,
            'tasks': [task.to_dict() for task in tasks],
            'total': total,
            'limit': limit,
            'offset': offset
        })

    except Exception as e:
        return error_response(e, "Task history lookup")


@tasks_bp.route('/<int:task_id>', methods=['GET'])
def get_task(task_id: int):
    try:
        task = get_task_manager().get_task(task_id)
        return jsonify({
            'success': True,
            'task': task.to_dict()
        })

    except Exception as e:
        return error_response(e, f"Lookup of task {task_id}")


@tasks_bp.route('/<int:task_id>/logs', methods=['GET'])
def get_task_logs(task_id: int):
    try:
        logs = get_task_manager().get_task_logs(task_id)
        return jsonify({
            'success': True,
            'logs': [entry.to_dict() for entry in logs]
        })

    except Exception as e:
        return error_response(e, f"Log lookup for task {task_id}")


@tasks_bp.route('/<int:task_id>/cancel', methods=['POST'])
def cancel_task(task_id: int):
    """
    Request cancellation of a pending or running task.

    The statement in flight finishes; the task stops before its next step.
    """
    try:
        task = get_task_manager().cancel(task_id)

        logger.info(f"Cancel requested via API: task {task_id}")
        return jsonify({
            'success': True,
            'status': task.status.value
        })

    except Exception as e:
        return error_response(e, f"Cancel of task {task_id}")
