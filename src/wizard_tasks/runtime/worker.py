# src/wizard_tasks/runtime/worker.py

"""
Per-task parallel worker.

One worker thread per task, no pooling. The worker gets a deep copy of the task
and talks to the rest of the process only through its outbox queue; a relay
thread applies those reports to the store and exits once the terminal report
has been handled.
"""

from __future__ import annotations

import copy
import logging
import queue
import threading

from ..messaging.messages import Report, TaskComplete, TaskFailed, TaskProgress
from ..tasks.handlers import HandlerSpec
from ..tasks.task_models import Task
from .executor import TaskExecutor, error_text

logger = logging.getLogger(__name__)


def _work(task: Task, spec: HandlerSpec, executor: TaskExecutor, outbox: queue.Queue[Report]) -> None:
    def report_progress(value: int) -> None:
        outbox.put(TaskProgress(task_id=task.id, progress=int(value)))

    try:
        spec.validate(task.data)
        result = spec.run(task, executor.handler_context(report_progress))
    except Exception as e:
        logger.info("Worker task %s raised %s", task.id, e.__class__.__name__)
        outbox.put(TaskFailed(task_id=task.id, error=error_text(e)))
        return
    except BaseException as e:
        # The relay waits for a terminal report; send one before the thread unwinds.
        outbox.put(TaskFailed(task_id=task.id, error=error_text(e)))
        raise
    outbox.put(TaskComplete(task_id=task.id, result=result))


class ParallelWorker:
    def __init__(self, executor: TaskExecutor, task: Task, spec: HandlerSpec) -> None:
        self._executor = executor
        self._task_id = task.id
        self._spec = spec
        self._outbox: queue.Queue[Report] = queue.Queue()
        self._relay = threading.Thread(
            target=self._run,
            name=f"task-relay-{task.id[:8]}",
            daemon=True,
        )

    @property
    def task_id(self) -> str:
        return self._task_id

    def start(self) -> None:
        self._relay.start()

    def join(self, timeout: float | None = None) -> None:
        self._relay.join(timeout)

    def is_alive(self) -> bool:
        return self._relay.is_alive()

    def _run(self) -> None:
        try:
            claimed = self._executor.claim(self._task_id)
        except Exception:
            logger.exception("claim failed task_id=%s", self._task_id)
            return
        if claimed is None:
            return

        worker = threading.Thread(
            target=_work,
            args=(copy.deepcopy(claimed), self._spec, self._executor, self._outbox),
            name=f"task-worker-{self._task_id[:8]}",
            daemon=True,
        )
        worker.start()
        logger.debug("Worker started task_id=%s", self._task_id)

        while True:
            report = self._outbox.get()
            try:
                self._executor.apply(report)
            except Exception:
                logger.exception("apply(%s) failed task_id=%s", report.type, self._task_id)
            if isinstance(report, (TaskComplete, TaskFailed)):
                break

        worker.join()
        logger.debug("Worker torn down task_id=%s", self._task_id)
