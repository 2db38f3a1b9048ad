"""
Sync Engine Module
Executes the generated step sequence for one task and records its outcome.

The engine never rolls back: statements that already succeeded stay applied,
and a failed task reports exactly how far it got.
"""

from typing import Dict, List, Optional

from cdc_sync.clients.database_client import ClientFactory, DatabaseClient, default_client_factory
from cdc_sync.clients.metadata_service import MetadataService
from cdc_sync.database.queries import ConnectionConfigRepository
from cdc_sync.database.store import LOG_ERROR, LOG_INFO, LOG_WARNING, TaskStore
from cdc_sync.domain import EngineRole, Step, SyncRequest, TaskStatus
from cdc_sync.errors import InvalidTransitionError, StatementExecutionError, SyncError
from cdc_sync.sync.cancellation import CancellationToken, TaskCancelled
from cdc_sync.sync.ddl_generator import DDLGenerator
from cdc_sync.utils.logger import get_logger

logger = get_logger(__name__)


class SyncEngine:
    """Runs one sync task from Pending to a terminal status."""

    def __init__(
        self,
        store: TaskStore,
        config_resolver: ConnectionConfigRepository,
        metadata_service: MetadataService,
        client_factory: ClientFactory = default_client_factory,
        settings: Optional[Dict] = None
    ):
        """
        Initialize engine.

        Args:
            store: Task store
            config_resolver: Anything with ``resolve(config_id, role)``
            metadata_service: Source schema reader
            client_factory: Opens a DatabaseClient for a connection config
            settings: ``sync`` config section passed to the DDL generator
        """
        self.store = store
        self.config_resolver = config_resolver
        self.metadata_service = metadata_service
        self.client_factory = client_factory
        self.settings = settings

    def run(self, task_id: int, request: SyncRequest, token: CancellationToken) -> TaskStatus:
        """
        Execute a task to completion.

        Args:
            task_id: Pending task to run
            request: Request the task was created from
            token: Checked before every step, together with the stored cancel flag

        Returns:
            Terminal status reached
        """
        task = self.store.get_task(task_id)
        if task.status.is_terminal:
            # Finished elsewhere, e.g. cancelled by another worker while queued
            logger.info(f"Task {task_id} already {task.status.value}; not running")
            return task.status

        try:
            self._check_cancelled(task_id, token, "start")
        except TaskCancelled as e:
            self.store.add_log(task_id, LOG_WARNING, e.message)
            self.store.transition(task_id, TaskStatus.CANCELLED)
            logger.info(f"Task {task_id} cancelled before start")
            return TaskStatus.CANCELLED

        clients: Dict[EngineRole, DatabaseClient] = {}
        try:
            self.store.transition(task_id, TaskStatus.RUNNING)
            logger.info(f"Task {task_id} running: {request.task_name}")

            try:
                steps = self._prepare(task_id, request, clients)
            except SyncError as e:
                logger.error(f"Task {task_id} failed before execution: {e.message}")
                self.store.add_log(task_id, LOG_ERROR, e.message)
                self.store.transition(task_id, TaskStatus.FAILED, e.message)
                return TaskStatus.FAILED

            return self._execute(task_id, steps, clients, token)

        except Exception as e:
            logger.exception(f"Task {task_id} crashed: {e}")
            self._fail_unexpected(task_id, e)
            return TaskStatus.FAILED

        finally:
            for role, client in clients.items():
                try:
                    client.close()
                except Exception as e:
                    logger.warning(f"Failed to close {role.value} client for task {task_id}: {e}")

    # ========================================
    # Phases
    # ========================================

    def _prepare(
        self,
        task_id: int,
        request: SyncRequest,
        clients: Dict[EngineRole, DatabaseClient]
    ) -> List[Step]:
        """Resolve configs, read schema, generate statements and open clients."""
        source = self.config_resolver.resolve(request.source_config_id, EngineRole.SOURCE)
        intermediate = self.config_resolver.resolve(request.intermediate_config_id, EngineRole.INTERMEDIATE)
        warehouse = self.config_resolver.resolve(request.warehouse_config_id, EngineRole.WAREHOUSE)

        schema = self.metadata_service.get_table_schema(
            source, request.source_database, request.source_table
        )

        generator = DDLGenerator(source, warehouse, self.settings)
        steps = generator.generate(schema, request)
        self.store.set_total_steps(task_id, len(steps))
        logger.info(f"Task {task_id}: generated {len(steps)} steps")

        clients[EngineRole.INTERMEDIATE] = self.client_factory(intermediate)
        clients[EngineRole.WAREHOUSE] = self.client_factory(warehouse)
        return steps

    def _execute(
        self,
        task_id: int,
        steps: List[Step],
        clients: Dict[EngineRole, DatabaseClient],
        token: CancellationToken
    ) -> TaskStatus:
        total = len(steps)
        for index, step in enumerate(steps):
            try:
                self._check_cancelled(task_id, token, f"step {step.step_name}")
            except TaskCancelled as e:
                self.store.add_log(task_id, LOG_WARNING, e.message)
                self.store.transition(task_id, TaskStatus.CANCELLED)
                logger.info(f"Task {task_id} cancelled before step {index + 1}/{total}")
                return TaskStatus.CANCELLED

            client = clients[step.target_engine]
            logger.debug(f"Task {task_id} step {index + 1}/{total} {step.step_name}: {step.log_text}")
            try:
                if step.guard is not None and not client.fetch_all(step.guard.query, step.guard.bind()):
                    logger.info(f"Task {task_id} step {step.step_name} skipped: {step.guard.reason}")
                    self.store.record_step(
                        task_id, index, step.step_name, LOG_INFO,
                        f"{step.step_name}: skipped, {step.guard.reason}"
                    )
                    continue
                client.execute(step.statement_text)
            except SyncError as e:
                raw = e.raw_error if isinstance(e, StatementExecutionError) else e.message
                logger.error(f"Task {task_id} step {step.step_name} failed: {raw}")
                self.store.record_step(task_id, index, step.step_name, LOG_ERROR, f"{step.step_name}: {raw}")
                self.store.transition(task_id, TaskStatus.FAILED, raw)
                return TaskStatus.FAILED

            self.store.record_step(task_id, index, step.step_name, LOG_INFO, f"{step.step_name}: OK")

        self.store.transition(task_id, TaskStatus.COMPLETED)
        logger.info(f"Task {task_id} completed ({total} steps)")
        return TaskStatus.COMPLETED

    def _check_cancelled(self, task_id: int, token: CancellationToken, where: str) -> None:
        """Trip the token when a cancel was stored by another process, then check it."""
        if not token.cancelled and self.store.is_cancel_requested(task_id):
            token.cancel()
        token.raise_if_cancelled(where)

    def _fail_unexpected(self, task_id: int, error: Exception) -> None:
        message = f"Unexpected error: {error}"
        try:
            self.store.add_log(task_id, LOG_ERROR, message)
            self.store.transition(task_id, TaskStatus.FAILED, message)
        except InvalidTransitionError:
            logger.warning(f"Task {task_id} already finished; unexpected error not recorded")
