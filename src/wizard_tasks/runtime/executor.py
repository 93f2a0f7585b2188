# src/wizard_tasks/runtime/executor.py

"""
Applies state-machine transitions to stored tasks and runs handlers.

Every write goes through TaskStore.put_if_status(), so:
- only one context can claim a queued task (queued -> running is a compare-and-swap),
- a result that arrives after the task was cancelled is discarded (the completion
  only lands if the record is still running),
- progress never moves a terminal task.
"""

from __future__ import annotations

import copy
import logging
from collections.abc import Callable
from typing import assert_never

from ..core.ports import ModelInvoker, SourceSyncClient, TaskRepo
from ..errors import TaskNotFound, UnknownTaskType
from ..messaging.messages import Report, TaskComplete, TaskFailed, TaskProgress
from ..messaging.notifier import TaskNotifier
from ..tasks import state_machine as sm
from ..tasks.handlers import HandlerContext, HandlerSpec
from ..tasks.task_models import INTERRUPTED, Task, TaskStatus

logger = logging.getLogger(__name__)


def error_text(exc: BaseException) -> str:
    return str(exc).strip() or exc.__class__.__name__


class TaskExecutor:
    def __init__(
        self,
        store: TaskRepo,
        notifier: TaskNotifier,
        handlers: dict[str, HandlerSpec],
        model: ModelInvoker,
        *,
        default_model: str,
        source_sync: SourceSyncClient | None = None,
    ) -> None:
        self._store = store
        self._notifier = notifier
        self._handlers = handlers
        self._model = model
        self._default_model = default_model
        self._source_sync = source_sync

    @property
    def store(self) -> TaskRepo:
        return self._store

    @property
    def handlers(self) -> dict[str, HandlerSpec]:
        return self._handlers

    def handler_for(self, task_type: str) -> HandlerSpec:
        spec = self._handlers.get(task_type)
        if spec is None:
            raise UnknownTaskType(task_type)
        return spec

    def handler_context(self, report_progress: Callable[[int], None]) -> HandlerContext:
        return HandlerContext(
            model=self._model,
            credentials=self._store,
            default_model=self._default_model,
            report_progress=report_progress,
            source_sync=self._source_sync,
        )

    # ---- transitions ----

    def claim(self, task_id: str) -> Task | None:
        """queued -> running, atomically. None if someone else got there first."""
        current = self._store.get(task_id)
        if current.status != TaskStatus.QUEUED:
            return None
        started = sm.start(current)
        if not self._store.put_if_status(started, expected=sm.START_FROM):
            logger.info("Task %s already claimed elsewhere", task_id)
            return None
        logger.info("Task %s -> running (%s)", task_id, started.type)
        self._notifier.updated(started)
        return started

    def progress(self, task_id: str, value: int) -> bool:
        current = self._store.get(task_id)
        if current.status != TaskStatus.RUNNING:
            return False
        nxt = sm.report_progress(current, value)
        if nxt.progress == current.progress:
            return False
        if not self._store.put_if_status(nxt, expected=sm.PROGRESS_FROM):
            return False
        self._notifier.progressed(nxt)
        return True

    def complete(self, task_id: str, result: object) -> bool:
        current = self._store.get(task_id)
        if current.status != TaskStatus.RUNNING:
            logger.info("Discarding result for task %s (status=%s)", task_id, current.status.value)
            return False
        done = sm.succeed(current, result)
        if not self._store.put_if_status(done, expected=sm.SUCCEED_FROM):
            logger.info("Discarding result for task %s (status changed)", task_id)
            return False
        logger.info("Task %s -> completed", task_id)
        self._notifier.finished(done)
        return True

    def fail(self, task_id: str, error: str) -> bool:
        current = self._store.get(task_id)
        if current.status != TaskStatus.RUNNING:
            logger.info("Discarding error for task %s (status=%s): %s", task_id, current.status.value, error)
            return False
        failed = sm.fail(current, error)
        if not self._store.put_if_status(failed, expected=sm.FAIL_FROM):
            return False
        logger.warning("Task %s -> failed: %s", task_id, failed.error)
        self._notifier.finished(failed)
        return True

    def cancel(self, task_id: str) -> Task:
        """
        Mark a queued/running task failed with the cancellation sentinel.

        Advisory only: an in-flight remote call keeps going, its result is discarded by complete().
        Raises TaskNotFound for unknown ids; terminal tasks are returned unchanged.
        """
        current = self._store.get(task_id)
        if current.status.is_terminal:
            logger.info("Cancel ignored for task %s (already %s)", task_id, current.status.value)
            return current
        cancelled = sm.cancel(current)
        if not self._store.put_if_status(cancelled, expected=sm.CANCEL_FROM):
            # Finished between our read and write.
            return self._store.get(task_id)
        logger.info("Task %s cancelled by user", task_id)
        self._notifier.finished(cancelled)
        return cancelled

    def interrupt(self, task: Task) -> bool:
        """Fail a running record whose execution context is gone."""
        return self.fail(task.id, INTERRUPTED)

    def apply(self, report: Report) -> bool:
        if isinstance(report, TaskProgress):
            return self.progress(report.task_id, report.progress)
        if isinstance(report, TaskComplete):
            return self.complete(report.task_id, report.result)
        if isinstance(report, TaskFailed):
            return self.fail(report.task_id, report.error)
        assert_never(report)

    # ---- execution ----

    def run_claimed(self, task: Task) -> None:
        """
        Run a task this context has claimed, inline.

        Always leaves the record terminal unless the store itself is down.
        """
        try:
            spec = self.handler_for(task.type)
            spec.validate(task.data)
            result = spec.run(
                copy.deepcopy(task),
                self.handler_context(lambda p: self._safe_progress(task.id, p)),
            )
        except Exception as e:
            logger.info("Task %s handler raised %s", task.id, e.__class__.__name__)
            self._finish_safely(task.id, lambda: self.fail(task.id, error_text(e)))
            return
        self._finish_safely(task.id, lambda: self.complete(task.id, result))

    def execute(self, task_id: str) -> bool:
        """Claim and run. Returns False if the task was not claimable."""
        try:
            claimed = self.claim(task_id)
        except TaskNotFound:
            logger.warning("Task %s disappeared before it could run", task_id)
            return False
        if claimed is None:
            return False
        self.run_claimed(claimed)
        return True

    def _safe_progress(self, task_id: str, value: int) -> None:
        try:
            self.progress(task_id, value)
        except Exception:
            logger.exception("progress update failed task_id=%s", task_id)

    @staticmethod
    def _finish_safely(task_id: str, write: Callable[[], bool]) -> None:
        try:
            write()
        except Exception:
            # The record stays running; the next wake's reconciliation fails it.
            logger.exception("Could not persist outcome for task %s", task_id)
