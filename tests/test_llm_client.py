# tests/test_llm_client.py

from __future__ import annotations

from types import SimpleNamespace

import httpx
import openai
import pytest

from wizard_tasks.errors import ProviderError
from wizard_tasks.llm.client import OpenRouterModelClient, to_provider_error
from wizard_tasks.llm.offline import OfflineModelClient
from wizard_tasks.tasks.handlers import build_analysis_prompt, build_code_prompt
from wizard_tasks.tasks.response_parser import extract_json
from wizard_tasks.tasks.task_store import TaskStore


def _status_error(cls, code: int) -> Exception:
    request = httpx.Request("POST", "https://openrouter.invalid/api/v1/chat/completions")
    response = httpx.Response(code, request=request)
    return cls("upstream said no", response=response, body=None)


def test_rate_limit_keeps_status_text() -> None:
    err = to_provider_error(_status_error(openai.RateLimitError, 429), "m")
    assert isinstance(err, ProviderError)
    assert err.status_text == "429 Too Many Requests"
    assert str(err).endswith("(429 Too Many Requests)")


def test_auth_and_not_found_are_distinguished() -> None:
    auth = to_provider_error(_status_error(openai.AuthenticationError, 401), "m")
    assert "authentication" in str(auth)
    assert auth.status_text == "401 Unauthorized"

    missing = to_provider_error(_status_error(openai.NotFoundError, 404), "vendor/model")
    assert "vendor/model" in str(missing)


def test_timeouts_map_to_network_error() -> None:
    err = to_provider_error(httpx.ReadTimeout("slow"), "m")
    assert "network/timeout" in str(err)
    assert err.status_text is None


def test_missing_key_raises_provider_error(settings: SimpleNamespace, store: TaskStore) -> None:
    client = OpenRouterModelClient(settings, credentials=store)
    with pytest.raises(ProviderError) as ei:
        client.invoke_model("m", "hello")
    assert "API key" in str(ei.value)


def test_blank_base_url_is_a_config_error(settings: SimpleNamespace) -> None:
    settings.openrouter_base_url = "  "
    with pytest.raises(RuntimeError):
        OpenRouterModelClient(settings)


def test_offline_model_answers_both_prompt_kinds() -> None:
    model = OfflineModelClient()

    plan = extract_json(model.invoke_model("offline", build_analysis_prompt("Build login")))
    assert plan["complexity"] == "low"
    assert "Build login" in plan["steps"][0]

    code = model.invoke_model("offline", build_code_prompt("Add a button"))
    assert "```python" in code
    assert "# Offline stub for: Add a button" in code
