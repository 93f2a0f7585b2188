# src/wizard_tasks/cli/commands.py

from __future__ import annotations

import inspect
import json
import logging
from collections.abc import Callable
from datetime import datetime
from typing import cast

from ..core.state import AppState
from ..errors import TaskSystemError
from ..tasks.task_models import Task, TaskType

CommandEmitter = Callable[[str], None]
CommandHandler2 = Callable[[AppState, list[str]], str]
CommandHandler3 = Callable[[AppState, list[str], CommandEmitter | None], str]
CommandHandler = CommandHandler2 | CommandHandler3

logger = logging.getLogger(__name__)


class CommandRegistry:
    """Simple slash-command registry used by the console (/help, /submit, ...)."""

    def __init__(self) -> None:
        self._handlers: dict[str, CommandHandler] = {}
        self._help: dict[str, str] = {}

    def register(
        self,
        name: str,
        handler: CommandHandler,
        help_text: str,
        aliases: list[str] | None = None,
    ) -> None:
        aliases = aliases or []
        key = name.lower()
        self._handlers[key] = handler
        self._help[key] = help_text
        for alias in aliases:
            self._handlers[alias.lower()] = handler

    def handle(
        self,
        state: AppState,
        line: str,
        emit: CommandEmitter | None = None,
    ) -> str | None:
        """
        Handle a string like "/command args".
        Returns a reply string or None if not a command.
        """
        if not line.startswith("/"):
            return None

        parts = line[1:].split()
        if not parts:
            return "Empty command. Use /help to list available commands."

        name = parts[0].lower()
        args = parts[1:]

        handler = self._handlers.get(name)
        if not handler:
            return f"Unknown command: /{name}. Use /help to list available commands."

        try:
            nparams = len(inspect.signature(handler).parameters)
        except (TypeError, ValueError):
            nparams = 3

        try:
            if nparams >= 3:
                return cast(CommandHandler3, handler)(state, args, emit)
            return cast(CommandHandler2, handler)(state, args)
        except TaskSystemError as e:
            # Expected user-facing failures (unknown id, validation, ...).
            return f"Error: {e}"

    def build_help(self) -> str:
        lines = ["Available commands:"]
        for name, help_text in self._help.items():
            lines.append(f"  /{name} - {help_text}")
        return "\n".join(lines)


registry = CommandRegistry()


def _ts(ts: float | None) -> str:
    if not ts:
        return "-"
    return datetime.fromtimestamp(ts).astimezone().strftime("%Y-%m-%d %H:%M:%S")


def format_task_line(task: Task) -> str:
    line = f"{task.id[:12]}  {task.type:<16} {task.status.value:<9} {task.progress:>3}%  {_ts(task.created_at)}"
    if task.error:
        line += f"  error: {task.error}"
    return line


def cmd_help(state: AppState, args: list[str]) -> str:
    return registry.build_help()


def cmd_status(state: AppState, args: list[str]) -> str:
    active = state.service.active_tasks()
    ctx = state.host.context
    return (
        "Status:\n"
        f"  Model: {'offline demo' if state.offline else state.settings.default_model}\n"
        f"  Store: {state.store.db_path}\n"
        f"  Background context: {ctx.state.value if ctx else 'not running'}\n"
        f"  Active tasks: {len(active)}\n"
        f"  Parallel workers: {len(state.dispatcher.active_workers())}"
    )


def cmd_submit(state: AppState, args: list[str], emit: CommandEmitter | None = None) -> str:
    """
    /submit code <prompt...>      -> code_generation
    /submit analyze <task...>     -> analysis
    /submit <type> <json-data>    -> any routed type
    """
    if len(args) < 2:
        return "Usage: /submit code <prompt> | /submit analyze <task> | /submit <type> <json>"

    kind, rest = args[0].lower(), " ".join(args[1:])
    if kind in ("code", TaskType.CODE_GENERATION.value):
        task_id = state.service.submit(TaskType.CODE_GENERATION.value, {"prompt": rest})
    elif kind in ("analyze", "analysis"):
        task_id = state.service.submit(TaskType.ANALYSIS.value, {"task": rest})
    else:
        try:
            data = json.loads(rest)
        except ValueError:
            return "Data for a custom task type must be a JSON object."
        if not isinstance(data, dict):
            return "Data for a custom task type must be a JSON object."
        task_id = state.service.submit(kind, data)

    if emit:
        emit(f"[TASK] queued {task_id}")
    return f"Submitted task {task_id}."


def cmd_list(state: AppState, args: list[str]) -> str:
    tasks = state.service.list_tasks()
    if not tasks:
        return "No tasks."
    return "\n".join(["Tasks (newest first):", *(format_task_line(t) for t in tasks)])


def _resolve_id(state: AppState, prefix: str) -> str:
    matches = [t.id for t in state.service.list_tasks() if t.id.startswith(prefix)]
    return matches[0] if len(matches) == 1 else prefix


def cmd_show(state: AppState, args: list[str]) -> str:
    if not args:
        return "Usage: /show <task-id>"
    task = state.service.get_task(_resolve_id(state, args[0]))
    return json.dumps(task.to_dict(), ensure_ascii=False, indent=2)


def cmd_cancel(state: AppState, args: list[str]) -> str:
    if not args:
        return "Usage: /cancel <task-id>"
    task_id = _resolve_id(state, args[0])
    state.service.cancel(task_id)
    return f"Cancellation requested for {task_id}."


def cmd_delete(state: AppState, args: list[str]) -> str:
    if not args:
        return "Usage: /delete <task-id>"
    task_id = _resolve_id(state, args[0])
    if state.service.delete_task(task_id):
        return f"Deleted {task_id}."
    return f"Nothing deleted for {task_id}."


def cmd_clear(state: AppState, args: list[str]) -> str:
    n = state.service.clear_finished()
    return f"Cleared {n} finished task(s)."


def cmd_key(state: AppState, args: list[str]) -> str:
    """/key <provider> <secret> -> store a provider credential (overwrites)."""
    if len(args) != 2:
        return "Usage: /key <provider> <secret>"
    state.service.save_credential(args[0].lower(), args[1])
    return f"Saved credential for {args[0].lower()}."


def cmd_sync(state: AppState, args: list[str]) -> str:
    if state.service.request_sync():
        return "Sync requested."
    return "No background context available."


registry.register("help", cmd_help, help_text="Show available commands.", aliases=["h", "?"])
registry.register("status", cmd_status, help_text="Show model, store and background context status.")
registry.register("submit", cmd_submit, help_text="Queue a task: /submit code <prompt> | analyze <task>.")
registry.register("list", cmd_list, help_text="List tasks.", aliases=["ls"])
registry.register("show", cmd_show, help_text="Show one task as JSON: /show <id>.")
registry.register("cancel", cmd_cancel, help_text="Cancel a queued/running task: /cancel <id>.")
registry.register("delete", cmd_delete, help_text="Delete a finished task: /delete <id>.", aliases=["rm"])
registry.register("clear", cmd_clear, help_text="Delete all finished tasks.")
registry.register("key", cmd_key, help_text="Save a provider credential: /key <provider> <secret>.")
registry.register("sync", cmd_sync, help_text="Wake the background context to run queued tasks.")
