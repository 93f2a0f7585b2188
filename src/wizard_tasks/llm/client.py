# src/wizard_tasks/llm/client.py

from __future__ import annotations

import logging
import threading
import time
from typing import Any

import httpx
import openai
from openai import OpenAI

from ..core.ports import CredentialSource
from ..errors import ProviderError

logger = logging.getLogger(__name__)

MODEL_PROVIDER = "openrouter"


def _is_auth_error(exc: Exception) -> bool:
    if isinstance(exc, (openai.AuthenticationError, openai.PermissionDeniedError)):
        return True
    return exc.__class__.__name__ in {"UnauthorizedError"}


def _is_rate_limit_error(exc: Exception) -> bool:
    if isinstance(exc, openai.RateLimitError):
        return True
    return exc.__class__.__name__ in {"TooManyRequestsError"}


def _is_connection_error(exc: Exception) -> bool:
    if isinstance(exc, (openai.APIConnectionError, httpx.TimeoutException)):
        return True
    return exc.__class__.__name__ in {"Timeout", "ConnectTimeout", "ReadTimeout", "WriteTimeout"}


def _is_not_found_error(exc: Exception) -> bool:
    return isinstance(exc, openai.NotFoundError)


def _status_text(exc: Exception) -> str | None:
    """'<code> <reason>' from an HTTP status error, when the SDK gives us one."""
    code = getattr(exc, "status_code", None)
    if code is None:
        return None
    response = getattr(exc, "response", None)
    reason = getattr(response, "reason_phrase", "") if response is not None else ""
    return f"{code} {reason}".strip()


def to_provider_error(exc: Exception, model_id: str) -> ProviderError:
    status = _status_text(exc)
    if _is_auth_error(exc):
        return ProviderError("Model provider authentication failed; check the API key", status_text=status)
    if _is_not_found_error(exc):
        return ProviderError(f"Model not available: {model_id}", status_text=status)
    if _is_rate_limit_error(exc):
        return ProviderError("Model provider is rate-limited; try again later", status_text=status)
    if _is_connection_error(exc):
        return ProviderError("Model provider network/timeout error", status_text=status)
    return ProviderError(f"API error: {exc.__class__.__name__}", status_text=status)


class OpenRouterModelClient:
    """
    invoke_model() over an OpenAI-compatible chat completions endpoint.

    - The API key is looked up per call: first the credential store (provider
      "openrouter"), then settings. A changed key gets a fresh SDK client.
    - SDK retries are disabled; nothing in the task system retries automatically.
    """

    def __init__(self, settings: Any, credentials: CredentialSource | None = None) -> None:
        self._settings = settings
        self._credentials = credentials
        self._lock = threading.Lock()
        self._client: OpenAI | None = None
        self._client_key: str | None = None

        base_url = str(getattr(settings, "openrouter_base_url", "") or "")
        if not base_url.strip():
            raise RuntimeError("LLM base URL is not set. Set WIZARD_OPENROUTER_BASE_URL in your .env.")
        self._base_url = base_url

    def _api_key(self) -> str:
        key = None
        if self._credentials is not None:
            key = self._credentials.get_credential(MODEL_PROVIDER)
        if not key:
            key = getattr(self._settings, "openrouter_api_key", None)
        if not key or not str(key).strip():
            raise ProviderError("Model provider API key not configured")
        return str(key).strip()

    def _get_client(self) -> OpenAI:
        key = self._api_key()
        with self._lock:
            if self._client is not None and self._client_key == key:
                return self._client

            connect_s = float(getattr(self._settings, "llm_connect_timeout_seconds", 5.0))
            read_s = float(getattr(self._settings, "llm_read_timeout_seconds", 120.0))
            self._client = OpenAI(
                base_url=self._base_url,
                api_key=key,
                timeout=httpx.Timeout(connect=connect_s, read=read_s, write=10.0, pool=connect_s),
                max_retries=0,
            )
            self._client_key = key
            return self._client

    def invoke_model(self, model_id: str, prompt: str) -> str:
        model_id = (model_id or "").strip() or str(getattr(self._settings, "default_model", ""))
        if not model_id:
            raise ProviderError("No model id given and no default model configured")

        client = self._get_client()
        headers = dict(getattr(self._settings, "extra_headers", {}) or {})

        logger.info("LLM: invoking model=%s prompt_chars=%d", model_id, len(prompt))
        t0 = time.monotonic()
        try:
            completion = client.chat.completions.create(
                model=model_id,
                messages=[{"role": "user", "content": prompt}],
                extra_headers=headers or None,
            )
        except openai.OpenAIError as e:
            logger.info("LLM: error on model=%s (%s)", model_id, e.__class__.__name__)
            raise to_provider_error(e, model_id) from e
        except httpx.HTTPError as e:
            raise to_provider_error(e, model_id) from e

        try:
            choice0 = completion.choices[0]
            text = choice0.message.content or ""
            finish_reason = getattr(choice0, "finish_reason", None)
        except (AttributeError, IndexError) as e:
            raise ProviderError(f"Model {model_id} returned an empty response") from e

        if finish_reason == "length":
            # Output hit the token limit; the response parser reports it precisely.
            logger.info("LLM: model=%s stopped at length limit", model_id)

        logger.info("LLM: model=%s answered in %.2fs (%d chars)", model_id, time.monotonic() - t0, len(text))
        if not text.strip():
            raise ProviderError(f"Model returned no content: {model_id}")
        return text
