# src/wizard_tasks/tasks/handlers.py

"""
Per-type task handlers.

A handler receives a private copy of the task plus a HandlerContext and returns the
result payload, or raises. It never touches the store: progress goes through
ctx.report_progress and the caller persists the outcome.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from enum import StrEnum
from typing import Any

from ..core.ports import CredentialSource, ModelInvoker, SourceSyncClient
from ..errors import MalformedJSON, ProviderError, ValidationError
from .response_parser import extract_json
from .task_models import Task, TaskType

logger = logging.getLogger(__name__)

SOURCE_SYNC_PROVIDER = "github"

_FENCE_RE = re.compile(r"```([\w+#.-]*)[ \t]*\r?\n(.*?)```", re.DOTALL)


class ExecutionMode(StrEnum):
    # CPU-bound / parse-heavy work: a fresh worker thread per task.
    PARALLEL = "parallel"
    # Work that must outlive the UI: handed to the background context.
    BACKGROUND = "background"


@dataclass(slots=True)
class HandlerContext:
    model: ModelInvoker
    credentials: CredentialSource
    default_model: str
    report_progress: Callable[[int], None]
    source_sync: SourceSyncClient | None = None


TaskHandler = Callable[[Task, HandlerContext], Any]


@dataclass(slots=True, frozen=True)
class HandlerSpec:
    run: TaskHandler
    mode: ExecutionMode
    required: tuple[str, ...] = ()

    def validate(self, data: Mapping[str, Any]) -> None:
        missing = [k for k in self.required if _is_blank(data.get(k))]
        if missing:
            raise ValidationError(f"Missing required field(s) in data: {', '.join(missing)}")


def _is_blank(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, str):
        return not value.strip()
    if isinstance(value, (list, dict, tuple)):
        return len(value) == 0
    return False


# ---- code generation ----


def build_code_prompt(prompt: str, context: str | None = None) -> str:
    ctx = f"\n\nContext:\n{context}" if context else ""
    return (
        "You are an expert autonomous coding agent. "
        f"Generate production-ready code based on this task:\n\n{prompt}{ctx}\n\n"
        "Provide complete, working code with proper error handling, types, and best practices."
    )


def extract_code(text: str) -> tuple[str, str | None]:
    """First fenced block (code, language); the whole text when there is no fence."""
    m = _FENCE_RE.search(text or "")
    if m:
        return m.group(2).strip("\n"), (m.group(1) or None)
    return (text or "").strip(), None


def run_code_generation(task: Task, ctx: HandlerContext) -> dict[str, Any]:
    data = task.data
    model_id = str(data.get("model") or ctx.default_model)

    ctx.report_progress(25)
    text = ctx.model.invoke_model(model_id, build_code_prompt(str(data["prompt"]), data.get("context")))
    ctx.report_progress(75)

    code, language = extract_code(text)
    if not code:
        raise ProviderError(f"Model {model_id} returned no code")
    return {"code": code, "language": language, "model": model_id}


# ---- analysis ----


def build_analysis_prompt(description: str) -> str:
    return (
        "Analyze this coding task and break it down into steps. "
        "Return ONLY a JSON object with this structure:\n"
        "{\n"
        '  "steps": ["step 1", "step 2", ...],\n'
        '  "files": ["file1.tsx", "file2.ts", ...],\n'
        '  "complexity": "low|medium|high"\n'
        "}\n\n"
        f"Task: {description}"
    )


def run_analysis(task: Task, ctx: HandlerContext) -> dict[str, Any]:
    model_id = str(task.data.get("model") or ctx.default_model)

    ctx.report_progress(30)
    text = ctx.model.invoke_model(model_id, build_analysis_prompt(str(task.data["task"])))
    ctx.report_progress(80)

    plan = extract_json(text)
    steps = plan.get("steps")
    files = plan.get("files", [])
    if not isinstance(steps, list) or not isinstance(files, list):
        raise MalformedJSON("Analysis JSON must contain 'steps' and 'files' arrays")

    complexity = str(plan.get("complexity") or "medium").lower()
    if complexity not in ("low", "medium", "high"):
        complexity = "medium"

    return {
        "steps": [str(s) for s in steps],
        "files": [str(f) for f in files],
        "complexity": complexity,
    }


# ---- source sync ----


def run_source_sync(task: Task, ctx: HandlerContext) -> dict[str, Any]:
    data = task.data
    files = data["files"]
    if not isinstance(files, dict) or not all(isinstance(k, str) and isinstance(v, str) for k, v in files.items()):
        raise ValidationError("source_sync data.files must map file paths to contents")

    if ctx.source_sync is None:
        raise ProviderError("Source sync is not configured")

    token = ctx.credentials.get_credential(SOURCE_SYNC_PROVIDER)
    if not token:
        raise ProviderError(f"No credential configured for provider '{SOURCE_SYNC_PROVIDER}'")

    ctx.report_progress(20)
    result = ctx.source_sync.sync_files(
        token=token,
        owner=str(data["owner"]),
        repo=str(data["repo"]),
        files=files,
        commit_message=str(data.get("commit_message") or "Update files"),
    )
    logger.info("Source sync pushed %d file(s) to %s/%s", len(files), data["owner"], data["repo"])
    return dict(result or {})


def default_handlers() -> dict[str, HandlerSpec]:
    return {
        TaskType.CODE_GENERATION.value: HandlerSpec(
            run=run_code_generation, mode=ExecutionMode.BACKGROUND, required=("prompt",)
        ),
        TaskType.ANALYSIS.value: HandlerSpec(
            run=run_analysis, mode=ExecutionMode.PARALLEL, required=("task",)
        ),
        TaskType.SOURCE_SYNC.value: HandlerSpec(
            run=run_source_sync, mode=ExecutionMode.BACKGROUND, required=("owner", "repo", "files")
        ),
    }
