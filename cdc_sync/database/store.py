"""
Task Store Module
Persists sync tasks and their logs, serializing writes per task id.
"""

import threading
from contextlib import contextmanager
from typing import Generator, List, Optional, Tuple

from sqlalchemy import desc, func
from sqlalchemy.orm import Session

from cdc_sync.database.connection import DatabaseConnection
from cdc_sync.database.models import SyncTaskRecord, TaskLogRecord, utc_now
from cdc_sync.domain import (
    TASK_TRANSITIONS, SyncOptions, SyncRequest, SyncTask, TaskLogEntry, TaskStatus
)
from cdc_sync.errors import (
    InvalidTransitionError, NotCancellableError, NotFoundError, OptionsDecodeError
)
from cdc_sync.utils.logger import get_logger

logger = get_logger(__name__)

ERROR_MESSAGE_LIMIT = 1000
LOCK_STRIPES = 64

LOG_INFO = 'info'
LOG_WARNING = 'warning'
LOG_ERROR = 'error'


class TaskStore:
    """
    Explicit store object for task and log records.

    Every mutation of one task row runs under that task's lock, so a
    step-completion write and a concurrent cancel request cannot overwrite
    each other. Locks are striped by task id: the set stays fixed however
    many tasks the process sees, and consecutive ids never share a lock.
    """

    def __init__(self, db: DatabaseConnection, lock_stripes: int = LOCK_STRIPES):
        """Initialize with a task store connection."""
        self.db = db
        self._locks = tuple(threading.Lock() for _ in range(lock_stripes))

    def _lock_for(self, task_id: int) -> threading.Lock:
        return self._locks[task_id % len(self._locks)]

    @contextmanager
    def task_lock(self, task_id: int) -> Generator[None, None, None]:
        """Hold the write lock of one task."""
        with self._lock_for(task_id):
            yield

    # ========================================
    # Writes
    # ========================================

    def create_task(self, request: SyncRequest) -> SyncTask:
        """
        Persist a new pending task for a request.

        Args:
            request: Sync request

        Returns:
            Created task with its store-assigned id
        """
        record = SyncTaskRecord(
            task_name=request.task_name,
            source_config_id=request.source_config_id,
            intermediate_config_id=request.intermediate_config_id,
            warehouse_config_id=request.warehouse_config_id,
            source_database=request.source_database,
            source_table=request.source_table,
            target_database=request.target_database,
            target_table=request.target_table,
            status=TaskStatus.PENDING.value,
            options=request.options.to_json(),
            started_at=utc_now(),
            cancel_requested=False
        )
        with self.db.session_scope() as session:
            session.add(record)
            session.flush()
            task = self._to_task(record)

        logger.info(f"Created sync task {task.id}: {task.name}")
        return task

    def transition(
        self,
        task_id: int,
        status: TaskStatus,
        error_message: Optional[str] = None
    ) -> SyncTask:
        """
        Move a task along the state machine.

        Args:
            task_id: Task ID
            status: Target status
            error_message: Stored on the task when given

        Returns:
            Updated task

        Raises:
            NotFoundError: Unknown task
            InvalidTransitionError: Edge not allowed from the current status
        """
        with self.task_lock(task_id):
            with self.db.session_scope() as session:
                record = self._load(session, task_id)
                current = TaskStatus.parse(record.status)
                if status not in TASK_TRANSITIONS[current]:
                    raise InvalidTransitionError(
                        f"Task {task_id} cannot move from {current.value} to {status.value}"
                    )

                record.status = status.value
                if status.is_terminal:
                    record.completed_at = utc_now()
                if error_message is not None:
                    record.error_message = error_message[:ERROR_MESSAGE_LIMIT]
                task = self._to_task(record)

        logger.info(f"Task {task_id}: {current.value} -> {status.value}")
        return task

    def request_cancel(self, task_id: int) -> SyncTask:
        """
        Flag a pending or running task for cancellation.

        Raises:
            NotFoundError: Unknown task
            NotCancellableError: Task already finished
        """
        with self.task_lock(task_id):
            with self.db.session_scope() as session:
                record = self._load(session, task_id)
                current = TaskStatus.parse(record.status)
                if current not in (TaskStatus.PENDING, TaskStatus.RUNNING):
                    raise NotCancellableError(f"Task {task_id} is {current.value} and cannot be cancelled")
                record.cancel_requested = True
                return self._to_task(record)

    def set_total_steps(self, task_id: int, total_steps: int) -> None:
        with self.task_lock(task_id):
            with self.db.session_scope() as session:
                record = self._load_mutable(session, task_id)
                record.total_steps = total_steps

    def record_step(
        self,
        task_id: int,
        index: int,
        step_name: str,
        level: str,
        message: str
    ) -> None:
        """
        Append the outcome of one step and advance the progress pointer.

        Log line and progress update commit in one transaction.
        """
        with self.task_lock(task_id):
            with self.db.session_scope() as session:
                record = self._load_mutable(session, task_id)
                record.current_step_index = index
                record.current_step = step_name
                session.add(TaskLogRecord(
                    task_id=task_id,
                    log_level=level,
                    message=message,
                    created_at=utc_now()
                ))

    def add_log(self, task_id: int, level: str, message: str) -> None:
        """Append a log line to a task."""
        with self.task_lock(task_id):
            with self.db.session_scope() as session:
                self._load(session, task_id)
                session.add(TaskLogRecord(
                    task_id=task_id,
                    log_level=level,
                    message=message,
                    created_at=utc_now()
                ))

    # ========================================
    # Reads
    # ========================================

    def get_task(self, task_id: int) -> SyncTask:
        """
        Get a task by id.

        Raises:
            NotFoundError: Unknown task
        """
        with self.db.session_scope() as session:
            return self._to_task(self._load(session, task_id))

    def is_cancel_requested(self, task_id: int) -> bool:
        """Stored cancel flag; set by whichever process handled the cancel."""
        with self.db.session_scope() as session:
            return bool(self._load(session, task_id).cancel_requested)

    def exists(self, task_id: int) -> bool:
        with self.db.session_scope() as session:
            return session.get(SyncTaskRecord, task_id) is not None

    def get_logs(self, task_id: int) -> List[TaskLogEntry]:
        """
        Get all log lines of a task in creation order.

        Raises:
            NotFoundError: Unknown task
        """
        with self.db.session_scope() as session:
            self._load(session, task_id)
            rows = (
                session.query(TaskLogRecord)
                .filter(TaskLogRecord.task_id == task_id)
                .order_by(TaskLogRecord.created_at, TaskLogRecord.id)
                .all()
            )
            return [
                TaskLogEntry(
                    id=row.id,
                    task_id=row.task_id,
                    level=row.log_level,
                    message=row.message,
                    created_at=row.created_at
                )
                for row in rows
            ]

    def list_tasks(
        self,
        status: Optional[TaskStatus] = None,
        limit: int = 50,
        offset: int = 0
    ) -> Tuple[List[SyncTask], int]:
        """
        Page through tasks, newest first.

        Args:
            status: Only tasks in this status
            limit: Page size
            offset: Rows to skip

        Returns:
            Tuple of (tasks, total matching count)
        """
        with self.db.session_scope() as session:
            query = session.query(SyncTaskRecord)
            if status is not None:
                query = query.filter(SyncTaskRecord.status == status.value)

            total = query.with_entities(func.count(SyncTaskRecord.id)).scalar() or 0
            rows = (
                query.order_by(desc(SyncTaskRecord.started_at), desc(SyncTaskRecord.id))
                .limit(limit)
                .offset(offset)
                .all()
            )
            return [self._to_task(row) for row in rows], total

    # ========================================
    # Helpers
    # ========================================

    def _load(self, session: Session, task_id: int) -> SyncTaskRecord:
        record = session.get(SyncTaskRecord, task_id)
        if record is None:
            raise NotFoundError(f"Task {task_id} not found")
        return record

    def _load_mutable(self, session: Session, task_id: int) -> SyncTaskRecord:
        record = self._load(session, task_id)
        if TaskStatus.parse(record.status).is_terminal:
            raise InvalidTransitionError(f"Task {task_id} is {record.status} and can no longer change")
        return record

    def _to_task(self, record: SyncTaskRecord) -> SyncTask:
        try:
            options = SyncOptions.from_json(record.options)
        except OptionsDecodeError as e:
            logger.warning(f"Task {record.id} has unreadable options: {e.message}")
            options = None

        return SyncTask(
            id=record.id,
            name=record.task_name,
            source_config_id=record.source_config_id,
            intermediate_config_id=record.intermediate_config_id,
            warehouse_config_id=record.warehouse_config_id,
            source_database=record.source_database,
            source_table=record.source_table,
            target_database=record.target_database,
            target_table=record.target_table,
            options=options,
            status=TaskStatus.parse(record.status),
            started_at=record.started_at,
            completed_at=record.completed_at,
            error_message=record.error_message,
            current_step=record.current_step,
            current_step_index=record.current_step_index,
            total_steps=record.total_steps,
            cancel_requested=bool(record.cancel_requested)
        )
