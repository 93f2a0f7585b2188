# src/wizard_tasks/cli/bootstrap.py

"""
CLI bootstrap helpers.

This module is the "composition root":
- loads settings once,
- ensures local (gitignored) directories exist,
- wires the store, broker, notifier, executor, dispatcher, background host and
  TaskService into one AppState.
"""

from __future__ import annotations

import logging

from ..config import get_settings
from ..core.ports import ModelInvoker, SourceSyncClient
from ..core.service import TaskService
from ..core.state import AppState
from ..llm.client import OpenRouterModelClient
from ..llm.offline import OfflineModelClient
from ..messaging.broker import MessageBroker
from ..messaging.notifier import TaskNotifier
from ..runtime.background import BackgroundContext, BackgroundHost
from ..runtime.dispatcher import ExecutionDispatcher
from ..runtime.executor import TaskExecutor
from ..tasks.handlers import default_handlers
from ..tasks.task_store import TaskStore

logger = logging.getLogger(__name__)


def _ensure_local_dirs(settings) -> None:
    settings.data_dir.mkdir(parents=True, exist_ok=True)
    settings.tasks_db_path.parent.mkdir(parents=True, exist_ok=True)


def _has_model_key(settings, store: TaskStore) -> bool:
    if getattr(settings, "openrouter_api_key", None):
        return True
    return bool(store.get_credential("openrouter"))


def create_initial_state(
    *,
    settings=None,
    model: ModelInvoker | None = None,
    source_sync: SourceSyncClient | None = None,
) -> AppState:
    """
    Create AppState from the provided settings.

    Keeping settings (and the model) injectable makes the app easier to test and
    avoids hidden global config reads. If settings is None, falls back to get_settings().
    The background host is created but not started.
    """
    if settings is None:
        settings = get_settings()

    _ensure_local_dirs(settings)

    store = TaskStore(settings.tasks_db_path)
    store.open()

    offline = False
    if model is None:
        if _has_model_key(settings, store):
            model = OpenRouterModelClient(settings, credentials=store)
        else:
            # Fallback for demos / local runs without external services.
            logger.warning("No model provider key configured; using the offline demo model.")
            model = OfflineModelClient()
            offline = True

    broker = MessageBroker()
    notifier = TaskNotifier(broker)
    executor = TaskExecutor(
        store,
        notifier,
        default_handlers(),
        model,
        default_model=settings.default_model,
        source_sync=source_sync,
    )
    dispatcher = ExecutionDispatcher(executor, broker)

    def make_context() -> BackgroundContext:
        return BackgroundContext(
            executor,
            broker,
            stale_after_seconds=settings.stale_running_seconds,
            running_elsewhere=dispatcher.active_workers,
        )

    host = BackgroundHost(
        make_context,
        broker,
        periodic_interval_seconds=settings.periodic_sync_seconds or None,
    )
    service = TaskService(store, dispatcher, broker, notifier, request_sync=host.sync)

    return AppState(
        settings=settings,
        store=store,
        model=model,
        broker=broker,
        notifier=notifier,
        executor=executor,
        dispatcher=dispatcher,
        host=host,
        service=service,
        offline=offline,
    )


def start_background(state: AppState) -> None:
    """Start the host and queue a sync wake so leftovers from a previous run resume."""
    state.host.start()
    state.host.sync()


def shutdown(state: AppState, *, timeout: float = 10.0) -> None:
    """Best-effort shutdown (no exceptions should escape)."""
    try:
        state.host.stop(timeout=timeout)
    except Exception:
        logger.exception("Background host stop failed.")
    try:
        state.dispatcher.join_workers(timeout=timeout)
    except Exception:
        logger.exception("Worker join failed.")
    state.store.close()
