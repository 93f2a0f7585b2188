# tests/test_config_logging.py

from __future__ import annotations

import logging
from pathlib import Path

import pytest

from wizard_tasks.config import Settings
from wizard_tasks.logging_setup import _ConsoleNoiseFilter, setup_logging


def _record(name: str, level: int, thread: str = "MainThread") -> logging.LogRecord:
    record = logging.LogRecord(name, level, __file__, 1, "msg", None, None)
    record.threadName = thread
    return record


def test_console_filter() -> None:
    f = _ConsoleNoiseFilter()
    assert f.filter(_record("wizard_tasks.core.service", logging.INFO))
    assert f.filter(_record("wizard_tasks.runtime.background", logging.INFO, "background-host"))
    assert not f.filter(_record("wizard_tasks.runtime.executor", logging.INFO, "task-relay-abc12345"))
    assert not f.filter(_record("wizard_tasks.runtime.executor", logging.INFO, "task-run-abc12345"))
    assert f.filter(_record("wizard_tasks.runtime.executor", logging.WARNING, "task-worker-abc12345"))
    assert not f.filter(_record("httpx", logging.WARNING))
    assert f.filter(_record("openai", logging.ERROR))


def test_settings_from_env(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    monkeypatch.setenv("WIZARD_DATA_DIR", str(tmp_path))
    monkeypatch.setenv("WIZARD_PERIODIC_SYNC_SECONDS", "0")
    monkeypatch.setenv("WIZARD_STALE_RUNNING_SECONDS", "not-a-number")
    monkeypatch.setenv("WIZARD_CONSOLE_ENABLED", "no")
    monkeypatch.delenv("WIZARD_TASKS_DB_PATH", raising=False)
    monkeypatch.delenv("WIZARD_OPENROUTER_API_KEY", raising=False)
    monkeypatch.setenv("OPENROUTER_API_KEY", "sk-plain")

    s = Settings.from_env()
    assert s.tasks_db_path == tmp_path / "tasks.sqlite3"
    assert s.periodic_sync_seconds == 0.0
    assert s.stale_running_seconds == 900.0
    assert s.console_enabled is False
    assert s.openrouter_api_key == "sk-plain"


def test_setup_logging_writes_the_file_log(tmp_path: Path) -> None:
    root = logging.getLogger()
    saved = list(root.handlers), root.level
    try:
        log_file = setup_logging(log_dir=tmp_path, console_level=logging.WARNING)
        logging.getLogger("wizard_tasks.test").debug("hello file")
        for h in root.handlers:
            h.flush()
        assert log_file == tmp_path / "wizard.log"
        assert "hello file" in log_file.read_text("utf-8")
    finally:
        for h in list(root.handlers):
            root.removeHandler(h)
            h.close()
        for h in saved[0]:
            root.addHandler(h)
        root.setLevel(saved[1])
        logging.captureWarnings(False)
