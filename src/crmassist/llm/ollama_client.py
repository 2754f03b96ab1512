"""Ollama chat transport for local models.

One HTTP attempt per call. Failures are classified for the caller's retry
policy: connection errors, timeouts and 5xx responses raise
``LLMTransientError``; anything else raises ``LLMUnavailableError``.

Environment variables:
- CRM_OLLAMA_BASE_URL: Ollama server (default http://localhost:11434)
- CRM_OLLAMA_NUM_CTX: Context window passed as ``options.num_ctx``
"""

import logging
import os

import requests

from crmassist.errors import LLMTransientError, LLMUnavailableError

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "http://localhost:11434"


def build_payload(
    messages: list[dict[str, str]],
    model: str,
    temperature: float,
    max_tokens: int | None,
) -> dict:
    options = {
        "temperature": temperature,
        "num_ctx": int(os.environ.get("CRM_OLLAMA_NUM_CTX", "8192")),
    }
    if max_tokens is not None:
        options["num_predict"] = max_tokens
    return {"model": model, "messages": messages, "stream": False, "options": options}


def ollama_chat(
    messages: list[dict[str, str]],
    *,
    model: str,
    temperature: float = 0.0,
    max_tokens: int | None = None,
    timeout: int = 30,
) -> str:
    """Send one chat request to Ollama and return the reply text.

    Raises:
        LLMTransientError: Server unreachable, timed out, or returned 5xx
        LLMUnavailableError: Any other HTTP error or an unexpected body
    """
    base_url = os.environ.get("CRM_OLLAMA_BASE_URL", DEFAULT_BASE_URL).rstrip("/")
    payload = build_payload(messages, model, temperature, max_tokens)
    details = {"provider": "ollama", "model": model}

    try:
        response = requests.post(f"{base_url}/api/chat", json=payload, timeout=timeout)
    except requests.exceptions.ConnectionError as e:
        raise LLMTransientError(
            f"Cannot connect to Ollama at {base_url}. Is 'ollama serve' running?", details=details
        ) from e
    except requests.exceptions.Timeout as e:
        raise LLMTransientError(f"Ollama timed out after {timeout}s (model: {model})", details=details) from e

    if response.status_code >= 500:
        logger.warning("[ollama] %s returned %d", model, response.status_code)
        raise LLMTransientError(f"Ollama server error ({response.status_code})", details=details)
    try:
        response.raise_for_status()
    except requests.exceptions.HTTPError as e:
        raise LLMUnavailableError(f"Ollama API error ({response.status_code}): {response.text}", details=details) from e

    body = response.json()
    content = (body.get("message") or {}).get("content") if isinstance(body, dict) else None
    if content is None:
        raise LLMUnavailableError(f"Unexpected Ollama response format: {str(body)[:200]}", details=details)
    return content
