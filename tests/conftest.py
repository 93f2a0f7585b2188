# tests/conftest.py

from __future__ import annotations

from pathlib import Path
from types import SimpleNamespace

import pytest

from wizard_tasks.cli.bootstrap import create_initial_state, shutdown
from wizard_tasks.core.state import AppState
from wizard_tasks.tasks.task_store import TaskStore

from .fakes import FakeModel


@pytest.fixture()
def settings(tmp_path: Path) -> SimpleNamespace:
    """
    Minimal settings object compatible with the composition root.

    We intentionally use a SimpleNamespace rather than importing real config,
    to keep unit tests isolated and deterministic.
    """
    return SimpleNamespace(
        app_name="wizard-tasks-test",
        data_dir=tmp_path,
        tasks_db_path=tmp_path / "tasks.sqlite3",
        openrouter_api_key=None,
        openrouter_base_url="https://openrouter.invalid/api/v1",
        default_model="test-model",
        extra_headers={},
        llm_connect_timeout_seconds=1.0,
        llm_read_timeout_seconds=1.0,
        # No periodic wake in tests unless a test asks for one.
        periodic_sync_seconds=0,
        stale_running_seconds=900.0,
    )


@pytest.fixture()
def store(tmp_path: Path) -> TaskStore:
    s = TaskStore(tmp_path / "store.sqlite3")
    s.open()
    return s


@pytest.fixture()
def model() -> FakeModel:
    return FakeModel()


@pytest.fixture()
def app(settings: SimpleNamespace, model: FakeModel):
    """
    AppState wired with a deterministic model.

    NOTE: We keep the real SQLite store here because its conditional writes are
    part of what we want to test.
    """
    state: AppState = create_initial_state(settings=settings, model=model)
    yield state
    shutdown(state, timeout=5.0)
