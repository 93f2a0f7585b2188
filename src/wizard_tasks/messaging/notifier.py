# src/wizard_tasks/messaging/notifier.py

from __future__ import annotations

import logging

from ..tasks.task_models import Task, TaskStatus
from .broker import MessageBroker
from .messages import Message, TaskComplete, TaskFailed, TaskProgress, TaskUpdate

logger = logging.getLogger(__name__)


class TaskNotifier:
    """
    Fans task mutations out to UI subscribers through the broker.

    Call the method matching the mutation right after it was persisted.
    """

    def __init__(self, broker: MessageBroker) -> None:
        self._broker = broker

    def _send(self, message: Message) -> None:
        n = self._broker.broadcast(message)
        logger.debug("Notified %d client(s): %s", n, message.type)

    def updated(self, task: Task) -> None:
        self._send(TaskUpdate(task=task))

    def progressed(self, task: Task) -> None:
        self._send(TaskProgress(task_id=task.id, progress=task.progress))

    def finished(self, task: Task) -> None:
        """Send the full record, then the terminal event for the record's status."""
        self._send(TaskUpdate(task=task))
        if task.status == TaskStatus.COMPLETED:
            self._send(TaskComplete(task_id=task.id, result=task.result))
        elif task.status == TaskStatus.FAILED:
            self._send(TaskFailed(task_id=task.id, error=task.error or ""))
