# src/wizard_tasks/cli/main.py

"""
CLI entrypoint.

Initializes logging, builds AppState, starts the background host, then runs the
console REPL in the main thread (or just waits when the console is disabled).
Task events are printed as they arrive, whichever context produced them.
"""

from __future__ import annotations

import logging
import signal
import threading
from datetime import datetime

from ..config import get_settings
from ..core.state import AppState
from ..logging_setup import setup_logging
from ..messaging.messages import (
    Message,
    TaskComplete,
    TaskFailed,
    TaskProgress,
    TaskUpdate,
)
from .bootstrap import create_initial_state, shutdown, start_background
from .commands import registry as command_registry

logger = logging.getLogger(__name__)


def _ts_local() -> str:
    return datetime.now().astimezone().strftime("%Y-%m-%d %H:%M:%S")


def _print_ts(text: str) -> None:
    print(f"[{_ts_local()}] {text}", flush=True)


def describe_event(message: Message) -> str | None:
    if isinstance(message, TaskUpdate):
        return f"[TASK] {message.task.id[:12]} {message.task.status.value}"
    if isinstance(message, TaskProgress):
        return f"[TASK] {message.task_id[:12]} {message.progress}%"
    if isinstance(message, TaskComplete):
        return f"[TASK] {message.task_id[:12]} done. Use /show {message.task_id[:12]} for the result."
    if isinstance(message, TaskFailed):
        return f"[TASK] {message.task_id[:12]} failed: {message.error}"
    return None


def run_console_loop(state: AppState) -> None:
    logger.info("Console started.")
    _print_ts("[CONSOLE] Use /help for commands. Use /exit to quit.\n")

    def on_event(message: Message) -> None:
        line = describe_event(message)
        if line:
            _print_ts(line)

    unsubscribe = state.service.on_task_event(on_event)
    try:
        while True:
            try:
                user_input = input(">>> ").strip()
            except EOFError:
                logger.info("Console EOF received, exiting.")
                break
            except KeyboardInterrupt:
                logger.info("Console KeyboardInterrupt, exiting.")
                print()
                break

            if not user_input:
                continue

            if user_input.lower() in ("/exit", "/quit"):
                logger.info("Console exit command received.")
                break

            try:
                reply = command_registry.handle(state, user_input, emit=_print_ts)
            except Exception:
                logger.exception("Command handler crashed.")
                reply = "Internal error while handling a command."

            if reply is None:
                reply = "Not a command. Try /submit code <prompt> or /help."
            _print_ts(reply)
    finally:
        unsubscribe()

    logger.info("Console finished.")


def main() -> None:
    settings = get_settings()

    level_name = str(getattr(settings, "log_level", "INFO")).upper()
    console_level = getattr(logging, level_name, logging.INFO)
    setup_logging(log_dir=settings.data_dir, console_level=console_level)

    logger.info("Starting %s...", settings.app_name)

    # IMPORTANT: reuse same settings object
    state = create_initial_state(settings=settings)
    start_background(state)

    stop_main = threading.Event()

    def _handle_signal(signum, _frame) -> None:
        logger.info("Signal %s received, shutting down...", signum)
        stop_main.set()

    try:
        signal.signal(signal.SIGTERM, _handle_signal)
        if not settings.console_enabled:
            signal.signal(signal.SIGINT, _handle_signal)
    except ValueError:
        # Not in the main thread (embedded use).
        pass

    try:
        if settings.console_enabled:
            run_console_loop(state)
        else:
            logger.info("Console disabled. Running the background context only. Press Ctrl+C to stop.")
            stop_main.wait()
    finally:
        shutdown(state)
        logger.info("Bye.")


if __name__ == "__main__":
    main()
