# src/wizard_tasks/tasks/state_machine.py

"""
Task state machine.

Pure functions: each takes a Task and returns the next Task (a copy), or raises
InvalidTransition. Persisting the result is the caller's job; callers pair every
transition with TaskStore.put_if_status(next, expected=ALLOWED_FROM[...]) so the
check and the write happen atomically in the store.

    queued --start--> running --succeed--> completed
       |                 |
       +----cancel-------+----fail/cancel--> failed
"""

from __future__ import annotations

import time
from dataclasses import replace
from typing import Any

from ..errors import InvalidTransition, ValidationError
from .task_models import CANCELLED_BY_USER, Task, TaskDraft, TaskStatus, new_task_id

# Statuses each transition may start from.
START_FROM = frozenset({TaskStatus.QUEUED})
PROGRESS_FROM = frozenset({TaskStatus.RUNNING})
SUCCEED_FROM = frozenset({TaskStatus.RUNNING})
FAIL_FROM = frozenset({TaskStatus.RUNNING})
CANCEL_FROM = frozenset({TaskStatus.QUEUED, TaskStatus.RUNNING})


def _require(task: Task, allowed: frozenset[TaskStatus], action: str) -> None:
    if task.status not in allowed:
        raise InvalidTransition(f"Cannot {action} task {task.id} in status {task.status.value}")


def submit(draft: TaskDraft, *, now: float | None = None) -> Task:
    if not draft.type or not str(draft.type).strip():
        raise ValidationError("type is required")
    if not isinstance(draft.data, dict):
        raise ValidationError("data must be a mapping")
    task_id = (draft.id or "").strip() or new_task_id()
    return Task(
        id=task_id,
        type=str(draft.type).strip(),
        data=dict(draft.data),
        created_at=time.time() if now is None else now,
        status=TaskStatus.QUEUED,
        progress=0,
    )


def start(task: Task, *, now: float | None = None) -> Task:
    _require(task, START_FROM, "start")
    return replace(
        task,
        status=TaskStatus.RUNNING,
        started_at=time.time() if now is None else now,
    )


def report_progress(task: Task, progress: int) -> Task:
    """Progress only moves forward while running; values are clamped to 0..100."""
    _require(task, PROGRESS_FROM, "report progress for")
    value = max(0, min(100, int(progress)))
    return replace(task, progress=max(task.progress, value))


def succeed(task: Task, result: Any, *, now: float | None = None) -> Task:
    _require(task, SUCCEED_FROM, "complete")
    return replace(
        task,
        status=TaskStatus.COMPLETED,
        progress=100,
        result=result,
        error=None,
        completed_at=time.time() if now is None else now,
    )


def fail(task: Task, error: str, *, now: float | None = None) -> Task:
    _require(task, FAIL_FROM, "fail")
    return _failed(task, error, now)


def cancel(task: Task, *, now: float | None = None) -> Task:
    _require(task, CANCEL_FROM, "cancel")
    return _failed(task, CANCELLED_BY_USER, now)


def _failed(task: Task, error: str, now: float | None) -> Task:
    message = (error or "").strip() or "Unknown error"
    return replace(
        task,
        status=TaskStatus.FAILED,
        result=None,
        error=message,
        completed_at=time.time() if now is None else now,
    )
