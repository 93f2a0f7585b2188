# src/wizard_tasks/core/state.py

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from ..messaging.broker import MessageBroker
from ..messaging.notifier import TaskNotifier
from ..runtime.background import BackgroundHost
from ..runtime.dispatcher import ExecutionDispatcher
from ..runtime.executor import TaskExecutor
from ..tasks.task_store import TaskStore
from .ports import ModelInvoker
from .service import TaskService


@dataclass
class AppState:
    """Everything the composition root wires together, held by one handle."""

    # Store Settings on the state for easy access in other modules later.
    settings: Any

    store: TaskStore
    model: ModelInvoker
    broker: MessageBroker
    notifier: TaskNotifier
    executor: TaskExecutor
    dispatcher: ExecutionDispatcher
    host: BackgroundHost
    service: TaskService

    offline: bool = False
