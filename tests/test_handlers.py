# tests/test_handlers.py

from __future__ import annotations

import json

import pytest

from wizard_tasks.errors import MalformedJSON, ProviderError, TruncatedString, ValidationError
from wizard_tasks.tasks import state_machine as sm
from wizard_tasks.tasks.handlers import (
    ExecutionMode,
    HandlerContext,
    default_handlers,
    extract_code,
    run_analysis,
    run_code_generation,
    run_source_sync,
)
from wizard_tasks.tasks.task_models import Task, TaskDraft
from wizard_tasks.tasks.task_store import TaskStore

from .fakes import FakeModel, FakeSourceSync


def _task(task_type: str, data: dict) -> Task:
    return sm.start(sm.submit(TaskDraft(type=task_type, data=data, id="t1")))


def _ctx(model, store: TaskStore, progress: list[int], source_sync=None) -> HandlerContext:
    return HandlerContext(
        model=model,
        credentials=store,
        default_model="test-model",
        report_progress=progress.append,
        source_sync=source_sync,
    )


def test_routes() -> None:
    handlers = default_handlers()
    assert handlers["code_generation"].mode == ExecutionMode.BACKGROUND
    assert handlers["analysis"].mode == ExecutionMode.PARALLEL
    assert handlers["source_sync"].mode == ExecutionMode.BACKGROUND


def test_required_fields() -> None:
    spec = default_handlers()["source_sync"]
    with pytest.raises(ValidationError) as ei:
        spec.validate({"owner": "me", "repo": " "})
    assert "repo" in str(ei.value) and "files" in str(ei.value)


def test_extract_code_takes_first_fence() -> None:
    assert extract_code("a\n```ts\nconst x = 1;\n```\n```py\nx = 2\n```") == ("const x = 1;", "ts")
    assert extract_code("```\nplain\n```") == ("plain", None)
    assert extract_code("  just code  ") == ("just code", None)


def test_code_generation(store: TaskStore) -> None:
    model = FakeModel()
    progress: list[int] = []
    result = run_code_generation(
        _task("code_generation", {"prompt": "Add a button", "context": "React 18"}),
        _ctx(model, store, progress),
    )

    assert result == {
        "code": "export const Button = () => <button>Click</button>;",
        "language": "tsx",
        "model": "test-model",
    }
    assert progress == [25, 75]
    model_id, prompt = model.calls[0]
    assert model_id == "test-model"
    assert "Add a button" in prompt and "React 18" in prompt


def test_code_generation_honours_model_override(store: TaskStore) -> None:
    model = FakeModel()
    run_code_generation(_task("code_generation", {"prompt": "x", "model": "other/model"}), _ctx(model, store, []))
    assert model.calls[0][0] == "other/model"


def test_code_generation_empty_reply_fails(store: TaskStore) -> None:
    with pytest.raises(ProviderError):
        run_code_generation(_task("code_generation", {"prompt": "x"}), _ctx(FakeModel("  "), store, []))


def test_analysis_normalises_plan(store: TaskStore) -> None:
    reply = "Plan:\n" + json.dumps({"steps": ["a", 2], "files": ["x.ts"], "complexity": "HUGE"})
    progress: list[int] = []
    result = run_analysis(_task("analysis", {"task": "Build login"}), _ctx(FakeModel(reply), store, progress))

    assert result == {"steps": ["a", "2"], "files": ["x.ts"], "complexity": "medium"}
    assert progress == [30, 80]


def test_analysis_reports_truncation(store: TaskStore) -> None:
    with pytest.raises(TruncatedString):
        run_analysis(_task("analysis", {"task": "x"}), _ctx(FakeModel('{"steps": ["a'), store, []))


def test_analysis_requires_steps_array(store: TaskStore) -> None:
    with pytest.raises(MalformedJSON):
        run_analysis(_task("analysis", {"task": "x"}), _ctx(FakeModel('{"steps": "a"}'), store, []))


def test_source_sync_uses_stored_credential(store: TaskStore) -> None:
    store.save_credential("github", "gh-token")
    sync = FakeSourceSync()
    progress: list[int] = []
    task = _task("source_sync", {"owner": "me", "repo": "app", "files": {"src/a.ts": "x"}})

    result = run_source_sync(task, _ctx(FakeModel(), store, progress, source_sync=sync))

    assert result == {"commit": "abc123", "files": ["src/a.ts"]}
    assert sync.calls[0]["token"] == "gh-token"
    assert sync.calls[0]["commit_message"] == "Update files"
    assert progress == [20]


def test_source_sync_without_credential_fails(store: TaskStore) -> None:
    task = _task("source_sync", {"owner": "me", "repo": "app", "files": {"a": "b"}})
    with pytest.raises(ProviderError):
        run_source_sync(task, _ctx(FakeModel(), store, [], source_sync=FakeSourceSync()))


def test_source_sync_rejects_non_text_files(store: TaskStore) -> None:
    task = _task("source_sync", {"owner": "me", "repo": "app", "files": {"a": 1}})
    with pytest.raises(ValidationError):
        run_source_sync(task, _ctx(FakeModel(), store, [], source_sync=FakeSourceSync()))
