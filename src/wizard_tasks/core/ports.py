# src/wizard_tasks/core/ports.py

from __future__ import annotations

"""
Ports (interfaces) used by the core.

The runtime depends on Protocols instead of concrete implementations.
This keeps model providers, source-control clients and storage swappable and makes
testing easier.
"""

from typing import Any, Iterable, Protocol


class ModelInvoker(Protocol):
    """Opaque remote model call. Auth/headers live entirely in the implementation."""

    def invoke_model(self, model_id: str, prompt: str) -> str: ...


class CredentialSource(Protocol):
    def get_credential(self, provider: str) -> str | None: ...


class SourceSyncClient(Protocol):
    """
    Pushes generated files to a source-control remote.

    Only the invocation contract matters here; protocol details belong to the client.
    Raises ProviderError on failure.
    """

    def sync_files(
            self,
            *,
            token: str,
            owner: str,
            repo: str,
            files: dict[str, str],
            commit_message: str,
    ) -> dict[str, Any]: ...


class TaskRepo(Protocol):
    def open(self) -> None: ...
    def put(self, task: Any) -> None: ...
    def put_if_status(self, task: Any, *, expected: Iterable[Any]) -> bool: ...
    def get(self, task_id: str) -> Any: ...
    def exists(self, task_id: str) -> bool: ...
    def get_all(self) -> list[Any]: ...
    def list_by_status(self, *statuses: Any, limit: int | None = None) -> list[Any]: ...
    def delete(self, task_id: str) -> bool: ...
    def get_credential(self, provider: str) -> str | None: ...
    def save_credential(self, provider: str, secret: str) -> None: ...
