# tests/test_dispatcher.py

from __future__ import annotations

import threading

import pytest

from wizard_tasks.errors import UnknownTaskType, ValidationError
from wizard_tasks.messaging.broker import MessageBroker
from wizard_tasks.messaging.notifier import TaskNotifier
from wizard_tasks.runtime.dispatcher import ExecutionDispatcher
from wizard_tasks.runtime.executor import TaskExecutor
from wizard_tasks.tasks import state_machine as sm
from wizard_tasks.tasks.handlers import ExecutionMode, HandlerContext, HandlerSpec, default_handlers
from wizard_tasks.tasks.task_models import CANCELLED_BY_USER, Task, TaskDraft, TaskStatus
from wizard_tasks.tasks.task_store import TaskStore

from .fakes import FakeModel, RecordingClient, wait_for

PLAN = '{"steps": ["design", "build"], "files": ["login.tsx"], "complexity": "low"}'


def _wire(store: TaskStore, model) -> tuple[ExecutionDispatcher, TaskExecutor, MessageBroker]:
    broker = MessageBroker()
    executor = TaskExecutor(store, TaskNotifier(broker), default_handlers(), model, default_model="test-model")
    return ExecutionDispatcher(executor, broker), executor, broker


def _queued(store: TaskStore, task_type: str, data: dict, task_id: str = "t1") -> Task:
    task = sm.submit(TaskDraft(type=task_type, data=data, id=task_id))
    store.put(task)
    return task


def test_parallel_route_runs_analysis_on_a_worker(store: TaskStore) -> None:
    dispatcher, _executor, broker = _wire(store, FakeModel(PLAN))
    client = RecordingClient()
    broker.connect(client)

    task = _queued(store, "analysis", {"task": "Build login"})
    assert dispatcher.submit(task) == ExecutionMode.PARALLEL
    dispatcher.join_workers(timeout=5.0)

    done = store.get("t1")
    assert done.status == TaskStatus.COMPLETED
    assert done.progress == 100
    assert done.result == {"steps": ["design", "build"], "files": ["login.tsx"], "complexity": "low"}
    assert client.types() == [
        "task_update",
        "task_progress",
        "task_progress",
        "task_update",
        "task_complete",
    ]
    assert dispatcher.active_workers() == []


def test_parallel_failure_is_recorded(store: TaskStore) -> None:
    dispatcher, _executor, _broker = _wire(store, FakeModel('{"steps": ["cut off'))
    dispatcher.submit(_queued(store, "analysis", {"task": "x"}))
    dispatcher.join_workers(timeout=5.0)

    failed = store.get("t1")
    assert failed.status == TaskStatus.FAILED
    assert "truncated" in (failed.error or "")


def test_background_route_posts_execute_task(store: TaskStore) -> None:
    dispatcher, _executor, broker = _wire(store, FakeModel())
    inbox: list = []
    broker.bind_context(inbox.append)

    task = _queued(store, "code_generation", {"prompt": "x"})
    assert dispatcher.submit(task) == ExecutionMode.BACKGROUND
    assert [m.type for m in inbox] == ["execute_task"]
    assert inbox[0].task.id == "t1"
    assert store.get("t1").status == TaskStatus.QUEUED


def test_background_route_without_context_stays_queued(store: TaskStore) -> None:
    dispatcher, _executor, _broker = _wire(store, FakeModel())
    dispatcher.submit(_queued(store, "code_generation", {"prompt": "x"}))
    assert store.get("t1").status == TaskStatus.QUEUED


def test_validation(store: TaskStore) -> None:
    dispatcher, _executor, _broker = _wire(store, FakeModel())
    with pytest.raises(UnknownTaskType):
        dispatcher.validate(sm.submit(TaskDraft(type="deploy", data={})))
    with pytest.raises(ValidationError):
        dispatcher.validate(sm.submit(TaskDraft(type="analysis", data={})))


def test_claim_is_exclusive(store: TaskStore) -> None:
    _dispatcher, executor, _broker = _wire(store, FakeModel())
    _queued(store, "code_generation", {"prompt": "x"})

    winners: list[Task] = []
    barrier = threading.Barrier(8)

    def contender() -> None:
        barrier.wait()
        claimed = executor.claim("t1")
        if claimed is not None:
            winners.append(claimed)

    threads = [threading.Thread(target=contender) for _ in range(8)]
    for t in threads:
        t.start()
    for t in threads:
        t.join(5.0)

    assert len(winners) == 1
    assert store.get("t1").status == TaskStatus.RUNNING


def test_late_parallel_result_is_discarded_after_cancel(store: TaskStore) -> None:
    model = FakeModel(PLAN)
    model.gate = threading.Event()
    dispatcher, executor, _broker = _wire(store, model)

    dispatcher.submit(_queued(store, "analysis", {"task": "x"}))
    assert wait_for(lambda: store.get("t1").status == TaskStatus.RUNNING)
    assert model.entered.wait(5.0)

    dispatcher.cancel("t1")
    cancelled = store.get("t1")
    model.gate.set()
    dispatcher.join_workers(timeout=5.0)

    final = store.get("t1")
    assert final.status == TaskStatus.FAILED
    assert final.error == CANCELLED_BY_USER
    assert final.result is None
    assert final.completed_at == cancelled.completed_at
    assert executor.cancel("t1") == final


def test_progress_never_moves_a_terminal_task(store: TaskStore) -> None:
    _dispatcher, executor, _broker = _wire(store, FakeModel())
    _queued(store, "code_generation", {"prompt": "x"})
    executor.claim("t1")
    executor.fail("t1", "boom")

    assert executor.progress("t1", 90) is False
    assert executor.complete("t1", {"code": "late"}) is False
    assert store.get("t1").error == "boom"


def test_worker_that_exits_still_finishes_the_task(store: TaskStore) -> None:
    def bail_out(task: Task, ctx: HandlerContext) -> dict:
        ctx.report_progress(10)
        raise SystemExit(3)

    handlers = {"analysis": HandlerSpec(run=bail_out, mode=ExecutionMode.PARALLEL, required=("task",))}
    broker = MessageBroker()
    executor = TaskExecutor(store, TaskNotifier(broker), handlers, FakeModel(), default_model="test-model")
    dispatcher = ExecutionDispatcher(executor, broker)

    dispatcher.submit(_queued(store, "analysis", {"task": "x"}))
    dispatcher.join_workers(timeout=5.0)

    assert dispatcher.active_workers() == []
    failed = store.get("t1")
    assert failed.status == TaskStatus.FAILED
    assert failed.error == "3"
