# src/wizard_tasks/errors.py

"""Error taxonomy shared by the store, the parser, the handlers and the runtime."""

from __future__ import annotations


class TaskSystemError(Exception):
    """Base class for every error raised by the task subsystem."""


class ValidationError(TaskSystemError):
    pass


class StorageUnavailable(TaskSystemError):
    pass


class UnknownTaskType(TaskSystemError):
    def __init__(self, task_type: str) -> None:
        super().__init__(f"Unknown task type: {task_type}")
        self.task_type = task_type


class TaskNotFound(TaskSystemError):
    def __init__(self, task_id: str) -> None:
        super().__init__(f"Task not found: {task_id}")
        self.task_id = task_id


class InvalidTransition(TaskSystemError):
    pass


class ProviderError(TaskSystemError):
    """
    Remote collaborator failure (model provider, source sync).

    status_text carries the upstream status line when there is one, so it ends up
    in the task's error string for the user.
    """

    def __init__(self, message: str, *, status_text: str | None = None) -> None:
        super().__init__(message)
        self.status_text = status_text

    def __str__(self) -> str:
        base = super().__str__()
        if self.status_text:
            return f"{base} ({self.status_text})"
        return base


class ResponseParseError(TaskSystemError):
    # True when the text looks cut off by a length limit (retriable with a shorter prompt).
    truncated: bool = False


class TruncatedString(ResponseParseError):
    truncated = True


class UnbalancedBraces(ResponseParseError):
    truncated = True


class MalformedJSON(ResponseParseError):
    truncated = False
