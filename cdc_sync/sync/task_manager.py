"""
Task Manager Module
Submits sync tasks to background workers and serves cancel, retry and status queries.
"""

import threading
import time
from typing import Callable, Dict, List, Optional, Sequence, Tuple

from apscheduler.executors.pool import ThreadPoolExecutor
from apscheduler.schedulers.background import BackgroundScheduler

from cdc_sync.database.store import LOG_WARNING, TaskStore
from cdc_sync.domain import SyncProgress, SyncRequest, SyncTask, TaskLogEntry, TaskStatus
from cdc_sync.errors import InvalidTransitionError, NotRetryableError, ValidationError
from cdc_sync.sync.cancellation import CancellationToken
from cdc_sync.sync.sync_engine import SyncEngine
from cdc_sync.utils.logger import get_logger

logger = get_logger(__name__)

DEFAULT_MAX_WORKERS = 4
DEFAULT_POLL_INTERVAL = 1.0


class SchedulerRunner:
    """Runs submitted tasks as one-off jobs on an APScheduler thread pool."""

    def __init__(self, max_workers: int = DEFAULT_MAX_WORKERS):
        self.scheduler = BackgroundScheduler(
            executors={'default': ThreadPoolExecutor(max_workers)},
            job_defaults={'coalesce': False, 'max_instances': 1}
        )
        self.scheduler.start()
        logger.info(f"Task runner started with {max_workers} workers")

    def dispatch(self, job_id: str, func: Callable, *args) -> None:
        # No trigger: the job fires once, immediately
        self.scheduler.add_job(func, args=args, id=job_id, misfire_grace_time=None)

    def shutdown(self, wait: bool = True) -> None:
        if self.scheduler.running:
            self.scheduler.shutdown(wait=wait)
            logger.info("Task runner stopped")


class TaskManager:
    """
    Front door for sync tasks.

    Keeps one CancellationToken per task that is queued or running in this
    process; the persisted ``cancel_requested`` flag is the durable record.
    """

    def __init__(self, store: TaskStore, engine: SyncEngine, runner):
        """
        Initialize manager.

        Args:
            store: Task store
            engine: Executes one task
            runner: Anything with ``dispatch(job_id, func, *args)``
        """
        self.store = store
        self.engine = engine
        self.runner = runner
        self._tokens: Dict[int, CancellationToken] = {}
        self._tokens_lock = threading.Lock()

    # ========================================
    # Submission
    # ========================================

    def submit(self, request: SyncRequest) -> int:
        """
        Persist a pending task and hand it to the runner.

        Returns:
            Task id; execution continues in the background
        """
        task = self.store.create_task(request)
        token = CancellationToken()
        with self._tokens_lock:
            self._tokens[task.id] = token

        try:
            self.runner.dispatch(f"sync-task-{task.id}", self._run, task.id, request, token)
        except Exception as e:
            logger.error(f"Failed to dispatch task {task.id}: {e}")
            self._forget(task.id)
            self.store.transition(task.id, TaskStatus.FAILED, f"Dispatch failed: {e}")
            raise

        logger.info(f"Submitted task {task.id}: {task.name}")
        return task.id

    def submit_batch(self, requests: Sequence[SyncRequest]) -> List[int]:
        """
        Submit several independent tasks that share one engine triple.

        Raises:
            ValidationError: Empty batch, or requests using different config ids
        """
        if not requests:
            raise ValidationError("Batch must contain at least one request")

        config_ids = requests[0].config_ids
        for request in requests[1:]:
            if request.config_ids != config_ids:
                raise ValidationError("All batch requests must use the same source, intermediate and warehouse configs")

        return [self.submit(request) for request in requests]

    def _run(self, task_id: int, request: SyncRequest, token: CancellationToken) -> TaskStatus:
        try:
            return self.engine.run(task_id, request, token)
        finally:
            self._forget(task_id)

    def _forget(self, task_id: int) -> None:
        with self._tokens_lock:
            self._tokens.pop(task_id, None)

    # ========================================
    # Control
    # ========================================

    def cancel(self, task_id: int) -> SyncTask:
        """
        Request cancellation of a pending or running task.

        The running step is never interrupted; the task stops before its next step.

        Raises:
            NotFoundError: Unknown task
            NotCancellableError: Task already finished
        """
        task = self.store.request_cancel(task_id)
        with self._tokens_lock:
            token = self._tokens.get(task_id)

        if token is not None:
            token.cancel()
            logger.info(f"Cancellation requested for task {task_id}")
            return self.store.get_task(task_id)

        if task.status is TaskStatus.PENDING:
            # No worker will ever pick this task up in this process
            try:
                self.store.add_log(task_id, LOG_WARNING, "Cancelled before start")
                return self.store.transition(task_id, TaskStatus.CANCELLED)
            except InvalidTransitionError:
                return self.store.get_task(task_id)

        return task

    def retry(self, task_id: int) -> int:
        """
        Resubmit a failed task as a new task.

        Returns:
            Id of the new task

        Raises:
            NotFoundError: Unknown task
            NotRetryableError: Task is not Failed or its options are unreadable
        """
        task = self.store.get_task(task_id)
        if task.status is not TaskStatus.FAILED:
            raise NotRetryableError(f"Task {task_id} is {task.status.value}; only failed tasks can be retried")

        new_id = self.submit(task.to_request())
        logger.info(f"Task {task_id} retried as task {new_id}")
        return new_id

    # ========================================
    # Queries
    # ========================================

    def get_task(self, task_id: int) -> SyncTask:
        return self.store.get_task(task_id)

    def get_progress(self, task_id: int) -> SyncProgress:
        return SyncProgress.from_task(self.store.get_task(task_id))

    def get_task_logs(self, task_id: int) -> List[TaskLogEntry]:
        return self.store.get_logs(task_id)

    def list_tasks(
        self,
        status: Optional[TaskStatus] = None,
        limit: int = 50,
        offset: int = 0
    ) -> Tuple[List[SyncTask], int]:
        """
        Page through task history, newest first.

        Raises:
            ValidationError: Non-positive limit or negative offset
        """
        if limit < 1:
            raise ValidationError("limit must be at least 1")
        if offset < 0:
            raise ValidationError("offset must not be negative")
        return self.store.list_tasks(status=status, limit=limit, offset=offset)

    def wait(
        self,
        task_id: int,
        timeout: Optional[float] = None,
        poll_interval: float = DEFAULT_POLL_INTERVAL
    ) -> SyncTask:
        """
        Block until a task reaches a terminal status or the timeout passes.

        Returns:
            Latest task state, terminal unless the timeout expired
        """
        deadline = None if timeout is None else time.monotonic() + timeout
        while True:
            task = self.store.get_task(task_id)
            if task.status.is_terminal:
                return task
            if deadline is not None and time.monotonic() >= deadline:
                return task
            time.sleep(poll_interval)

    def shutdown(self, wait: bool = True) -> None:
        shutdown = getattr(self.runner, 'shutdown', None)
        if shutdown is not None:
            shutdown(wait=wait)
