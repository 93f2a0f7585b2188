# src/wizard_tasks/tasks/task_models.py

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any


class TaskStatus(StrEnum):
    """
    Task lifecycle status.

    queued -> running -> completed | failed. Terminal states never change again;
    retrying the same work means submitting a new task with a new id.
    """

    QUEUED = "queued"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (TaskStatus.COMPLETED, TaskStatus.FAILED)

    @classmethod
    def from_db(cls, raw: str | None) -> TaskStatus:
        if not raw:
            return cls.QUEUED
        try:
            return cls(raw)
        except ValueError:
            # An unreadable status is never resurrected as runnable work.
            return cls.FAILED


class TaskType(StrEnum):
    """Known task types. The type column stays an open string; these are the routed ones."""

    CODE_GENERATION = "code_generation"
    ANALYSIS = "analysis"
    SOURCE_SYNC = "source_sync"


CANCELLED_BY_USER = "Cancelled by user"
INTERRUPTED = "Interrupted: execution context stopped"
UNREADABLE_STATUS = "Stored status could not be read"


def new_task_id() -> str:
    return uuid.uuid4().hex


def load_status(raw_status: str | None, raw_error: str | None) -> tuple[TaskStatus, str | None]:
    """Status and error for a stored record; a failed record always carries an error."""
    status = TaskStatus.from_db(raw_status)
    if status == TaskStatus.FAILED and not (raw_error or "").strip():
        if raw_status == TaskStatus.FAILED.value:
            return status, "Unknown error"
        return status, f"{UNREADABLE_STATUS}: {raw_status!r}"
    return status, raw_error


@dataclass(slots=True)
class Task:
    id: str
    type: str
    data: dict[str, Any]
    created_at: float

    status: TaskStatus = TaskStatus.QUEUED
    progress: int = 0
    result: Any = None
    error: str | None = None
    started_at: float | None = None
    completed_at: float | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "type": self.type,
            "data": self.data,
            "status": self.status.value,
            "progress": self.progress,
            "result": self.result,
            "error": self.error,
            "created_at": self.created_at,
            "started_at": self.started_at,
            "completed_at": self.completed_at,
        }

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> Task:
        status, error = load_status(raw.get("status"), raw.get("error"))
        return cls(
            id=str(raw["id"]),
            type=str(raw["type"]),
            data=dict(raw.get("data") or {}),
            created_at=float(raw.get("created_at") or 0.0),
            status=status,
            progress=int(raw.get("progress") or 0),
            result=raw.get("result"),
            error=error,
            started_at=raw.get("started_at"),
            completed_at=raw.get("completed_at"),
        )


@dataclass(slots=True, frozen=True)
class TaskDraft:
    """What a UI submits: everything but the lifecycle fields."""

    type: str
    data: dict[str, Any] = field(default_factory=dict)
    id: str | None = None
