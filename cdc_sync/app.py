"""
Flask Application Factory
Main entry point for the CDC sync web API.
"""

import os
from datetime import datetime, timezone

from flask import Flask, jsonify
from flask_cors import CORS

from cdc_sync.clients.database_client import default_client_factory
from cdc_sync.clients.metadata_service import MetadataService
from cdc_sync.config_manager import ConfigManager
from cdc_sync.database.connection import DatabaseConnection, get_db
from cdc_sync.database.queries import ConnectionConfigRepository
from cdc_sync.database.store import TaskStore
from cdc_sync.sync.sync_engine import SyncEngine
from cdc_sync.sync.task_manager import SchedulerRunner, TaskManager
from cdc_sync.utils.logger import get_logger, setup_logging


def build_task_manager(db: DatabaseConnection = None) -> TaskManager:
    """
    Wire the default task manager: SQL task store, live engine clients and
    an APScheduler worker pool.

    Args:
        db: Task store connection; the process-wide one when omitted

    Returns:
        Ready TaskManager
    """
    config = ConfigManager()
    db = db or get_db()
    db.create_all()

    store = TaskStore(db)
    engine = SyncEngine(
        store=store,
        config_resolver=ConnectionConfigRepository(db),
        metadata_service=MetadataService(default_client_factory),
        client_factory=default_client_factory,
        settings=config.get_sync_config()
    )
    runner = SchedulerRunner(max_workers=config.get_executor_config()['max_workers'])
    return TaskManager(store, engine, runner)


def create_app(task_manager: TaskManager = None) -> Flask:
    """
    Application factory for Flask app.

    Args:
        task_manager: Injected manager; the default wiring is built when omitted

    Returns:
        Configured Flask application
    """
    # Setup logging first
    setup_logging()
    logger = get_logger(__name__)

    app = Flask(__name__)

    # Load configuration
    config = ConfigManager()

    app.json.sort_keys = False
    app.config['API_SETTINGS'] = config.get_api_config()
    app.config['TASK_MANAGER'] = task_manager or build_task_manager()

    # Enable CORS
    CORS(app)

    # Register blueprints
    from cdc_sync.api.sync_routes import sync_bp
    from cdc_sync.api.task_routes import tasks_bp

    app.register_blueprint(sync_bp)
    app.register_blueprint(tasks_bp)

    # Health check endpoint
    @app.route('/health', methods=['GET'])
    def health_check():
        """Health check endpoint."""
        db = app.config['TASK_MANAGER'].store.db
        db_healthy = db.check_connection()

        return jsonify({
            'status': 'healthy' if db_healthy else 'degraded',
            'timestamp': datetime.now(timezone.utc).isoformat(),
            'database': 'connected' if db_healthy else 'disconnected'
        })

    # Root endpoint
    @app.route('/', methods=['GET'])
    def root():
        """Root endpoint with API info."""
        return jsonify({
            'name': 'CDC Sync API',
            'version': '1.0.0',
            'endpoints': {
                '/health': 'Health check',
                '/api/sync/single': 'Submit one table sync (POST)',
                '/api/sync/batch': 'Submit a batch of table syncs (POST)',
                '/api/sync/progress/<task_id>': 'Task progress (GET)',
                '/api/sync/retry/<task_id>': 'Retry a failed task (POST)',
                '/api/tasks/history': 'Task history (GET)',
                '/api/tasks/<task_id>': 'Task details (GET)',
                '/api/tasks/<task_id>/logs': 'Task logs (GET)',
                '/api/tasks/<task_id>/cancel': 'Cancel a task (POST)'
            }
        })

    # Error handlers
    @app.errorhandler(404)
    def not_found(error):
        return jsonify({
            'success': False,
            'error': 'Not found'
        }), 404

    @app.errorhandler(405)
    def method_not_allowed(error):
        return jsonify({
            'success': False,
            'error': 'Method not allowed'
        }), 405

    @app.errorhandler(500)
    def internal_error(error):
        return jsonify({
            'success': False,
            'error': 'Internal server error'
        }), 500

    logger.info("Flask application created")

    return app


if __name__ == '__main__':
    # Development server
    api_config = ConfigManager().get_api_config()
    app = create_app()

    try:
        app.run(
            host=api_config['host'],
            port=api_config['port'],
            debug=os.getenv('FLASK_DEBUG', 'false').lower() == 'true'
        )
    except (KeyboardInterrupt, SystemExit):
        app.config['TASK_MANAGER'].shutdown(wait=False)
