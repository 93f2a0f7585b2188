# src/wizard_tasks/core/service.py

"""
TaskService: the one object the UI talks to.

Constructed once per process in the composition root with its collaborators
injected, and passed around by handle.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import Any

from ..errors import ValidationError
from ..messaging.broker import ClientHandle, MessageBroker
from ..messaging.messages import CancelTask, Message, message_task_id
from ..messaging.notifier import TaskNotifier
from ..runtime.background import SYNC_TAG
from ..runtime.dispatcher import ExecutionDispatcher
from ..tasks import state_machine as sm
from ..tasks.task_models import Task, TaskDraft, TaskStatus
from .ports import TaskRepo

logger = logging.getLogger(__name__)

TaskEventCallback = Callable[[Message], None]


class TaskService:
    def __init__(
        self,
        store: TaskRepo,
        dispatcher: ExecutionDispatcher,
        broker: MessageBroker,
        notifier: TaskNotifier,
        *,
        request_sync: Callable[[str], None] | None = None,
    ) -> None:
        self._store = store
        self._dispatcher = dispatcher
        self._broker = broker
        self._notifier = notifier
        self._request_sync = request_sync

    # ---- submission ----

    def submit(self, task_type: str, data: dict[str, Any] | None = None, *, task_id: str | None = None) -> str:
        """Persist a queued task, announce it and hand it to the dispatcher. Returns the id."""
        return self.submit_draft(TaskDraft(type=task_type, data=data if data is not None else {}, id=task_id))

    def submit_draft(self, draft: TaskDraft) -> str:
        task = sm.submit(draft)
        # Validate the route before anything is persisted.
        self._dispatcher.validate(task)
        if self._store.exists(task.id):
            raise ValidationError(f"Task id already used: {task.id}")

        self._store.put(task)
        logger.info("Task queued: %s (%s)", task.id, task.type)
        self._notifier.updated(task)

        self._dispatcher.submit(task)
        return task.id

    def cancel(self, task_id: str) -> None:
        """
        Ask the background context to cancel. Without one, cancel in place.

        Raises TaskNotFound for unknown ids.
        """
        self._store.get(task_id)
        if not self._broker.post(CancelTask(task_id=task_id)):
            self._dispatcher.cancel(task_id)

    def request_sync(self) -> bool:
        """Ask the background context to pick up queued work now."""
        if self._request_sync is None:
            return False
        self._request_sync(SYNC_TAG)
        return True

    # ---- events ----

    def on_task_event(self, callback: TaskEventCallback, *, task_id: str | None = None) -> ClientHandle:
        """
        Subscribe to task messages (optionally for one task only).

        The returned handle is callable: calling it unsubscribes.
        """
        if task_id is None:
            return self._broker.connect(callback)

        def filtered(message: Message) -> None:
            if message_task_id(message) == task_id:
                callback(message)

        return self._broker.connect(filtered)

    # ---- queries ----

    def get_task(self, task_id: str) -> Task:
        return self._store.get(task_id)

    def list_tasks(self) -> list[Task]:
        return self._store.get_all()

    def active_tasks(self) -> list[Task]:
        return self._store.list_by_status(TaskStatus.QUEUED, TaskStatus.RUNNING)

    # ---- deletion (explicit user action only) ----

    def delete_task(self, task_id: str) -> bool:
        current = self._store.get(task_id)
        if not current.status.is_terminal:
            raise ValidationError(f"Task {task_id} is {current.status.value}; cancel it first")
        return self._store.delete(task_id)

    def clear_finished(self) -> int:
        removed = 0
        for task in self._store.list_by_status(TaskStatus.COMPLETED, TaskStatus.FAILED):
            if self._store.delete(task.id):
                removed += 1
        logger.info("Cleared %d finished task(s)", removed)
        return removed

    # ---- credentials ----

    def save_credential(self, provider: str, secret: str) -> None:
        self._store.save_credential(provider, secret)
