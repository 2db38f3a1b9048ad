"""
API Response Helpers
Shared JSON envelopes for the sync and task blueprints.
"""

from flask import current_app, jsonify

from cdc_sync.errors import SyncError
from cdc_sync.utils.logger import get_logger

logger = get_logger(__name__)


def get_task_manager():
    """Task manager bound to the running app."""
    return current_app.config['TASK_MANAGER']


def error_response(error: Exception, action: str):
    """
    Map an exception to a JSON error response.

    SyncError subclasses carry their own status code; anything else is a 500.
    """
    if isinstance(error, SyncError):
        logger.warning(f"{action} rejected: {error.message}")
        return jsonify({
            'success': False,
            'error': error.message
        }), error.http_status

    logger.exception(f"{action} failed: {error}")
    return jsonify({
        'success': False,
        'error': str(error)
    }), 500
