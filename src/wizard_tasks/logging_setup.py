# src/wizard_tasks/logging_setup.py

from __future__ import annotations

import logging
import sys
from pathlib import Path

# Thread name prefixes of per-task threads (see runtime.worker and runtime.background).
_TASK_THREAD_PREFIXES = ("task-worker-", "task-relay-", "task-run-")

_QUIET_LIBRARIES = ("httpx", "httpcore", "openai")


class _ConsoleNoiseFilter(logging.Filter):
    """
    Keep the console readable while tasks run in the background.

    Task threads log every claim/progress/finish step; on the console only their
    warnings show up (the file log keeps everything). Records from other packages
    need ERROR+.
    """

    def __init__(self, package: str = "wizard_tasks", task_level: int = logging.WARNING) -> None:
        super().__init__()
        self._package = package
        self._task_level = task_level

    def filter(self, record: logging.LogRecord) -> bool:
        if not record.name.startswith(self._package + "."):
            return record.levelno >= logging.ERROR
        if str(record.threadName).startswith(_TASK_THREAD_PREFIXES):
            return record.levelno >= self._task_level
        return True


def setup_logging(
    *,
    log_dir: str | Path = ".local/wizard",
    console_level: int = logging.INFO,
    file_level: int = logging.DEBUG,
    log_file_name: str = "wizard.log",
) -> Path:
    """
    Console handler (filtered) + file handler (everything at file_level).

    Call once from the entry point, before the first task is submitted.
    Returns the log file path.
    """
    log_dir = Path(log_dir)
    log_dir.mkdir(parents=True, exist_ok=True)
    log_file = log_dir / log_file_name

    root = logging.getLogger()
    root.setLevel(logging.DEBUG)
    for h in list(root.handlers):
        root.removeHandler(h)

    # threadName tells which task thread wrote the line.
    fmt = logging.Formatter(
        fmt="%(asctime)s.%(msecs)03d %(levelname)s [%(threadName)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    console = logging.StreamHandler(sys.stderr)
    console.setLevel(console_level)
    console.setFormatter(fmt)
    console.addFilter(_ConsoleNoiseFilter())
    root.addHandler(console)

    file_handler = logging.FileHandler(str(log_file), encoding="utf-8")
    file_handler.setLevel(file_level)
    file_handler.setFormatter(fmt)
    root.addHandler(file_handler)

    logging.captureWarnings(True)
    for name in _QUIET_LIBRARIES:
        logging.getLogger(name).setLevel(logging.WARNING)

    return log_file
