# src/wizard_tasks/messaging/messages.py

"""
Messages exchanged between execution contexts and UI clients.

A closed set of frozen dataclasses (the Message union). On the wire each one is a
dict with a "type" discriminator; message_from_dict() is the only way back in.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, ClassVar, Union

from ..errors import ValidationError
from ..tasks.task_models import Task


@dataclass(slots=True, frozen=True)
class ExecuteTask:
    type: ClassVar[str] = "execute_task"
    task: Task

    def to_dict(self) -> dict[str, Any]:
        return {"type": self.type, "task": self.task.to_dict()}


@dataclass(slots=True, frozen=True)
class CancelTask:
    type: ClassVar[str] = "cancel_task"
    task_id: str

    def to_dict(self) -> dict[str, Any]:
        return {"type": self.type, "taskId": self.task_id}


@dataclass(slots=True, frozen=True)
class TaskUpdate:
    type: ClassVar[str] = "task_update"
    task: Task

    def to_dict(self) -> dict[str, Any]:
        return {"type": self.type, "task": self.task.to_dict()}


@dataclass(slots=True, frozen=True)
class TaskComplete:
    type: ClassVar[str] = "task_complete"
    task_id: str
    result: Any

    def to_dict(self) -> dict[str, Any]:
        return {"type": self.type, "taskId": self.task_id, "result": self.result}


@dataclass(slots=True, frozen=True)
class TaskFailed:
    type: ClassVar[str] = "task_error"
    task_id: str
    error: str

    def to_dict(self) -> dict[str, Any]:
        return {"type": self.type, "taskId": self.task_id, "error": self.error}


@dataclass(slots=True, frozen=True)
class TaskProgress:
    type: ClassVar[str] = "task_progress"
    task_id: str
    progress: int

    def to_dict(self) -> dict[str, Any]:
        return {"type": self.type, "taskId": self.task_id, "progress": self.progress}


Message = Union[ExecuteTask, CancelTask, TaskUpdate, TaskComplete, TaskFailed, TaskProgress]

# Messages a context receives vs. messages it reports back.
Command = Union[ExecuteTask, CancelTask]
Report = Union[TaskComplete, TaskFailed, TaskProgress]


def _task_id(raw: dict[str, Any]) -> str:
    task_id = raw.get("taskId")
    if not isinstance(task_id, str) or not task_id:
        raise ValidationError(f"{raw.get('type')} message requires taskId")
    return task_id


def _task(raw: dict[str, Any]) -> Task:
    task = raw.get("task")
    if not isinstance(task, dict):
        raise ValidationError(f"{raw.get('type')} message requires a task object")
    try:
        return Task.from_dict(task)
    except (KeyError, TypeError, ValueError) as e:
        raise ValidationError(f"Invalid task in {raw.get('type')} message: {e}") from e


def message_from_dict(raw: dict[str, Any]) -> Message:
    kind = raw.get("type") if isinstance(raw, dict) else None

    if kind == ExecuteTask.type:
        return ExecuteTask(task=_task(raw))
    if kind == CancelTask.type:
        return CancelTask(task_id=_task_id(raw))
    if kind == TaskUpdate.type:
        return TaskUpdate(task=_task(raw))
    if kind == TaskComplete.type:
        return TaskComplete(task_id=_task_id(raw), result=raw.get("result"))
    if kind == TaskFailed.type:
        return TaskFailed(task_id=_task_id(raw), error=str(raw.get("error") or ""))
    if kind == TaskProgress.type:
        try:
            progress = int(raw.get("progress", 0))
        except (TypeError, ValueError) as e:
            raise ValidationError(f"Invalid progress value: {raw.get('progress')!r}") from e
        return TaskProgress(task_id=_task_id(raw), progress=progress)

    raise ValidationError(f"Unknown message type: {kind!r}")


def message_task_id(message: Message) -> str:
    if isinstance(message, (ExecuteTask, TaskUpdate)):
        return message.task.id
    return message.task_id
