# src/wizard_tasks/llm/offline.py

from __future__ import annotations

import json


class OfflineModelClient:
    """
    Offline deterministic model used for demos when no provider is configured.

    Behavior:
    - Analysis prompts ("Return ONLY a JSON object") -> a small JSON plan
    - Anything else -> a fenced code block echoing the task
    """

    def invoke_model(self, model_id: str, prompt: str) -> str:
        text = prompt or ""

        if "Return ONLY a JSON object" in text:
            task = text.rsplit("Task:", 1)[-1].strip() or "task"
            plan = {
                "steps": [f"Understand: {task}", "Implement the change", "Add tests"],
                "files": [],
                "complexity": "low",
            }
            return "Offline demo plan:\n" + json.dumps(plan)

        first_line = text.split("Generate production-ready code based on this task:", 1)[-1].strip()
        first_line = (first_line.splitlines() or ["task"])[0]
        return (
            "Offline demo mode: no model provider is configured.\n\n"
            "```python\n"
            f"# Offline stub for: {first_line}\n"
            "def main() -> None:\n"
            "    raise NotImplementedError\n"
            "```\n"
        )
