# src/wizard_tasks/runtime/dispatcher.py

from __future__ import annotations

import logging
import threading

from ..errors import ValidationError
from ..messaging.broker import MessageBroker
from ..messaging.messages import ExecuteTask
from ..tasks.handlers import ExecutionMode, HandlerSpec
from ..tasks.task_models import Task
from .executor import TaskExecutor
from .worker import ParallelWorker

logger = logging.getLogger(__name__)


class ExecutionDispatcher:
    """
    Routes a submitted task to where it runs.

    - PARALLEL routes spawn a ParallelWorker for this task alone.
    - BACKGROUND routes post execute_task to the background context. If no context
      is listening the record simply stays queued for the next wake.
    """

    def __init__(self, executor: TaskExecutor, broker: MessageBroker) -> None:
        self._executor = executor
        self._broker = broker
        self._lock = threading.Lock()
        self._workers: dict[str, ParallelWorker] = {}

    def validate(self, task: Task) -> HandlerSpec:
        if not task.id or not str(task.id).strip():
            raise ValidationError("id is required")
        if not task.type or not str(task.type).strip():
            raise ValidationError("type is required")
        if not isinstance(task.data, dict):
            raise ValidationError("data must be a mapping")
        spec = self._executor.handler_for(task.type)
        spec.validate(task.data)
        return spec

    def submit(self, task: Task) -> ExecutionMode:
        spec = self.validate(task)

        if spec.mode == ExecutionMode.PARALLEL:
            worker = ParallelWorker(self._executor, task, spec)
            with self._lock:
                self._reap()
                self._workers[task.id] = worker
            worker.start()
            logger.info("Dispatched task %s (%s) to a parallel worker", task.id, task.type)
        else:
            posted = self._broker.post(ExecuteTask(task=task))
            logger.info(
                "Dispatched task %s (%s) to the background context (posted=%s)",
                task.id,
                task.type,
                posted,
            )
        return spec.mode

    def cancel(self, task_id: str) -> Task:
        """Cancel in this process when no background context is listening."""
        return self._executor.cancel(task_id)

    def _reap(self) -> None:
        for task_id in [tid for tid, w in self._workers.items() if not w.is_alive()]:
            del self._workers[task_id]

    def active_workers(self) -> list[str]:
        with self._lock:
            self._reap()
            return list(self._workers)

    def join_workers(self, timeout: float | None = None) -> None:
        with self._lock:
            workers = list(self._workers.values())
        for w in workers:
            w.join(timeout)
