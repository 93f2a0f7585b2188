# src/wizard_tasks/runtime/background.py

"""
Background execution context and the host that drives it.

The host owns the lifecycle: it creates the context (install -> activate), delivers
wake signals and messages one at a time, and may suspend/destroy the context at any
moment. The context therefore keeps nothing it cannot rebuild: every wake re-reads
the store.

Wake tags:
- "sync-tasks"    explicit sync request
- "process-tasks" optional periodic wake
"""

from __future__ import annotations

import itertools
import logging
import queue
import threading
import time
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from enum import StrEnum
from typing import assert_never

from ..messaging.broker import MessageBroker
from ..messaging.messages import (
    CancelTask,
    ExecuteTask,
    Message,
    TaskComplete,
    TaskFailed,
    TaskProgress,
    TaskUpdate,
)
from ..tasks.task_models import Task, TaskStatus
from .executor import TaskExecutor

logger = logging.getLogger(__name__)

SYNC_TAG = "sync-tasks"
PERIODIC_TAG = "process-tasks"


class ContextState(StrEnum):
    INSTALLING = "installing"
    ACTIVATING = "activating"
    ACTIVE = "active"
    REDUNDANT = "redundant"


class BackgroundContext:
    _names = itertools.count(1)

    def __init__(
        self,
        executor: TaskExecutor,
        broker: MessageBroker,
        *,
        stale_after_seconds: float = 900.0,
        running_elsewhere: Callable[[], Iterable[str]] | None = None,
    ) -> None:
        self._executor = executor
        self._broker = broker
        self._store = executor.store
        self._stale_after = max(1.0, float(stale_after_seconds))
        # Ids running outside this context (parallel workers); reconcile leaves them alone.
        self._running_elsewhere = running_elsewhere
        self.name = f"background-{next(self._names)}"
        self.state = ContextState.INSTALLING

        # Disposable: lost whenever the host destroys this context.
        self._lock = threading.Lock()
        self._in_flight: set[str] = set()
        self._threads: list[threading.Thread] = []

    # ---- lifecycle hooks ----

    def install(self) -> None:
        self.state = ContextState.INSTALLING
        logger.info("Context %s installing", self.name)

    def activate(self) -> None:
        self.state = ContextState.ACTIVATING
        # Take over clients right away so none is left without updates.
        self._broker.claim(self.name)
        self.state = ContextState.ACTIVE
        logger.info("Context %s active", self.name)

    def destroy(self) -> None:
        self.state = ContextState.REDUNDANT
        self._broker.release(self.name)
        logger.info("Context %s destroyed", self.name)

    def on_sync(self, tag: str) -> int:
        if tag != SYNC_TAG:
            logger.debug("Ignoring sync tag %r", tag)
            return 0
        return self.process_pending()

    def on_periodic_sync(self, tag: str) -> int:
        if tag != PERIODIC_TAG:
            logger.debug("Ignoring periodic sync tag %r", tag)
            return 0
        return self.process_pending()

    def on_message(self, message: Message) -> None:
        if isinstance(message, ExecuteTask):
            self.execute_now(message.task)
        elif isinstance(message, CancelTask):
            self.cancel_task(message.task_id)
        elif isinstance(message, (TaskUpdate, TaskComplete, TaskFailed, TaskProgress)):
            # Outbound kinds; a context has nothing to do with them.
            logger.debug("Context %s ignoring %s", self.name, message.type)
        else:
            assert_never(message)

    # ---- work ----

    def process_pending(self) -> int:
        """Reconcile, then run every queued task, strictly one after another."""
        self.reconcile()
        pending = self._store.list_by_status(TaskStatus.QUEUED)
        logger.info("Context %s: processing %d pending task(s)", self.name, len(pending))

        ran = 0
        for task in pending:
            if self._run(task.id):
                ran += 1
        return ran

    def reconcile(self, *, now: float | None = None) -> int:
        """Fail running records that nobody is executing any more."""
        now = time.time() if now is None else now
        with self._lock:
            in_flight = set(self._in_flight)
        if self._running_elsewhere is not None:
            in_flight.update(self._running_elsewhere())

        fixed = 0
        for task in self._store.list_by_status(TaskStatus.RUNNING):
            if task.id in in_flight:
                continue
            started = task.started_at or task.created_at
            if now - started < self._stale_after:
                continue
            try:
                if self._executor.interrupt(task):
                    fixed += 1
            except Exception:
                logger.exception("reconcile failed task_id=%s", task.id)
        if fixed:
            logger.warning("Context %s: failed %d stale running task(s)", self.name, fixed)
        return fixed

    def execute_now(self, task: Task) -> threading.Thread:
        """Start a task immediately on its own thread, outside any wake cycle."""
        if not self._store.exists(task.id):
            self._store.put(task)

        t = threading.Thread(
            target=self._run,
            args=(task.id,),
            name=f"task-run-{task.id[:8]}",
            daemon=True,
        )
        with self._lock:
            self._threads = [th for th in self._threads if th.is_alive()]
            self._threads.append(t)
        t.start()
        return t

    def cancel_task(self, task_id: str) -> Task:
        return self._executor.cancel(task_id)

    def join(self, timeout: float | None = None) -> None:
        with self._lock:
            threads = list(self._threads)
        for t in threads:
            t.join(timeout)

    def _run(self, task_id: str) -> bool:
        with self._lock:
            if task_id in self._in_flight:
                return False
            self._in_flight.add(task_id)
        try:
            return self._executor.execute(task_id)
        except Exception:
            logger.exception("execute failed task_id=%s", task_id)
            return False
        finally:
            with self._lock:
                self._in_flight.discard(task_id)


# ---- host ----


@dataclass(slots=True, frozen=True)
class _Wake:
    tag: str


@dataclass(slots=True, frozen=True)
class _Deliver:
    message: Message


class _Suspend:
    pass


class _Stop:
    pass


_HostEvent = _Wake | _Deliver | _Suspend | _Stop


class BackgroundHost:
    """
    Stand-in for the host platform: owns the context's lifetime and event delivery.

    Events are handled one at a time on the host thread. The context is created on
    demand, so an event after suspend() lands in a fresh context with empty memory.
    """

    def __init__(
        self,
        context_factory: Callable[[], BackgroundContext],
        broker: MessageBroker,
        *,
        periodic_interval_seconds: float | None = None,
    ) -> None:
        self._factory = context_factory
        self._broker = broker
        self._interval = (
            max(0.5, float(periodic_interval_seconds)) if periodic_interval_seconds else None
        )
        self._inbox: queue.Queue[_HostEvent] = queue.Queue()
        self._thread: threading.Thread | None = None
        self._context: BackgroundContext | None = None

    @property
    def context(self) -> BackgroundContext | None:
        return self._context

    def start(self) -> None:
        if self._thread is not None and self._thread.is_alive():
            return
        self._broker.bind_context(self.post_message)
        self._thread = threading.Thread(target=self._loop, name="background-host", daemon=True)
        self._thread.start()
        logger.info("Background host started (periodic=%s)", self._interval)

    def stop(self, timeout: float = 10.0) -> None:
        self._broker.bind_context(None)
        if self._thread is None:
            return
        self._inbox.put(_Stop())
        self._thread.join(timeout)
        self._thread = None

    # ---- triggers ----

    def post_message(self, message: Message) -> None:
        self._inbox.put(_Deliver(message))

    def sync(self, tag: str = SYNC_TAG) -> None:
        self._inbox.put(_Wake(tag))

    def suspend(self) -> None:
        self._inbox.put(_Suspend())

    def wait_idle(self, timeout: float | None = None) -> bool:
        """Block until every event posted so far has been handled (tests, shutdown)."""
        done = threading.Event()

        def waiter() -> None:
            self._inbox.join()
            done.set()

        threading.Thread(target=waiter, daemon=True).start()
        return done.wait(timeout)

    # ---- loop ----

    def _ensure_context(self) -> BackgroundContext:
        if self._context is None:
            ctx = self._factory()
            ctx.install()
            ctx.activate()
            self._context = ctx
        return self._context

    def _loop(self) -> None:
        next_periodic = time.monotonic() + self._interval if self._interval else None
        while True:
            timeout = None
            if next_periodic is not None:
                timeout = max(0.0, next_periodic - time.monotonic())
            try:
                event = self._inbox.get(timeout=timeout)
            except queue.Empty:
                self._periodic_wake()
                next_periodic = time.monotonic() + (self._interval or 0.0)
                continue

            try:
                if isinstance(event, _Stop):
                    self._drop_context()
                    return
                self._handle(event)
            except Exception:
                logger.exception("Background host failed handling %s", event.__class__.__name__)
            finally:
                self._inbox.task_done()

    def _periodic_wake(self) -> None:
        try:
            self._ensure_context().on_periodic_sync(PERIODIC_TAG)
        except Exception:
            logger.exception("Periodic wake failed")

    def _handle(self, event: _HostEvent) -> None:
        if isinstance(event, _Suspend):
            self._drop_context()
        elif isinstance(event, _Wake):
            self._ensure_context().on_sync(event.tag)
        elif isinstance(event, _Deliver):
            self._ensure_context().on_message(event.message)
        elif isinstance(event, _Stop):
            self._drop_context()
        else:
            assert_never(event)

    def _drop_context(self) -> None:
        if self._context is None:
            return
        self._context.destroy()
        self._context = None
