"""LLM router for dispatching to the right model per role.

Roles:
- classifier: COACH vs QUERY routing (small, deterministic)
- narrator: grounded phrasing of query results
- coach: advisory sales-coaching prose

Supported providers:
- ollama: Local models via Ollama (default)
- anthropic: Claude models via Anthropic API
- openai: GPT models via OpenAI API

Environment variables:
- CRM_LLM_PROVIDER: Provider to use (ollama, anthropic, openai)
- CRM_ANTHROPIC_API_KEY: Anthropic API key
- CRM_OPENAI_API_KEY: OpenAI API key
- CRM_CLASSIFIER_MODEL / CRM_NARRATOR_MODEL / CRM_COACH_MODEL: Model per role
- CRM_<ROLE>_TEMPERATURE: Sampling temperature per role
"""

import importlib
import importlib.util
import logging
import os
from typing import Any

from crmassist.llm.ollama_client import ollama_chat

logger = logging.getLogger(__name__)

ROLES = ("classifier", "narrator", "coach")

# Default models per provider
DEFAULT_MODELS = {
    "ollama": {
        "classifier": "qwen2.5:7b-instruct",
        "narrator": "llama3.1:8b",
        "coach": "llama3.1:8b",
    },
    "anthropic": {
        "classifier": "claude-3-5-haiku-20241022",
        "narrator": "claude-3-5-haiku-20241022",
        "coach": "claude-3-5-sonnet-20241022",
    },
    "openai": {
        "classifier": "gpt-4o-mini",
        "narrator": "gpt-4o-mini",
        "coach": "gpt-4o",
    },
}

DEFAULT_TEMPERATURES = {
    "classifier": "0",
    "narrator": "0.2",
    "coach": "0.7",
}


def _call_anthropic(
    messages: list[dict[str, str]],
    model: str,
    temperature: float,
    max_tokens: int | None,
    timeout: int,
) -> str:
    """Call Anthropic API (Claude models)."""
    try:
        import anthropic
    except ImportError:
        raise ImportError(
            "anthropic package not installed. "
            "Install with: pip install anthropic"
        ) from None

    api_key = os.environ.get("CRM_ANTHROPIC_API_KEY") or os.environ.get("ANTHROPIC_API_KEY")
    if not api_key:
        raise ValueError(
            "Anthropic API key not found. "
            "Set CRM_ANTHROPIC_API_KEY or ANTHROPIC_API_KEY environment variable."
        )

    client = anthropic.Anthropic(api_key=api_key, timeout=timeout)

    system_content = None
    api_messages = []
    for msg in messages:
        if msg["role"] == "system":
            system_content = msg["content"]
        else:
            api_messages.append(msg)

    response = client.messages.create(
        model=model,
        max_tokens=max_tokens or 4096,
        temperature=temperature,
        system=system_content or "You are a helpful CRM assistant.",
        messages=api_messages,
    )
    return response.content[0].text


def _call_openai(
    messages: list[dict[str, str]],
    model: str,
    temperature: float,
    max_tokens: int | None,
    timeout: int,
) -> str:
    """Call OpenAI API (GPT models)."""
    try:
        openai_module = importlib.import_module("openai")
    except ImportError:
        raise ImportError(
            "openai package not installed. "
            "Install with: pip install openai"
        ) from None

    api_key = os.environ.get("CRM_OPENAI_API_KEY") or os.environ.get("OPENAI_API_KEY")
    if not api_key:
        raise ValueError(
            "OpenAI API key not found. "
            "Set CRM_OPENAI_API_KEY or OPENAI_API_KEY environment variable."
        )

    client = openai_module.OpenAI(api_key=api_key, timeout=timeout)
    response = client.chat.completions.create(
        model=model,
        messages=messages,
        temperature=temperature,
        max_tokens=max_tokens or 4096,
    )
    return response.choices[0].message.content or ""


def resolve_model(role: str, provider: str) -> str:
    default_model = DEFAULT_MODELS.get(provider, DEFAULT_MODELS["ollama"])[role]
    return os.environ.get(f"CRM_{role.upper()}_MODEL", default_model)


def call_llm(
    messages: list[dict[str, str]],
    *,
    role: str = "narrator",
    max_tokens: int | None = None,
    timeout: int = 60,
    provider: str | None = None,
    model: str | None = None,
    temperature_override: float | None = None,
) -> str:
    """Route an LLM call to the model configured for ``role``.

    Args:
        messages: List of message dicts with 'role' and 'content'
        role: One of 'classifier', 'narrator', 'coach'
        max_tokens: Maximum tokens in response (optional)
        timeout: Request timeout in seconds
        provider: Provider override (default: CRM_LLM_PROVIDER or ollama)
        model: Model override
        temperature_override: Temperature override

    Returns:
        Response text content

    Raises:
        ValueError: If role or provider is invalid
        LLMUnavailableError: If the Ollama call fails (``LLMTransientError`` when retryable)
    """
    if role not in ROLES:
        raise ValueError(f"Invalid role: {role}. Must be one of {', '.join(ROLES)}")

    resolved_provider = (provider or os.environ.get("CRM_LLM_PROVIDER", "ollama")).lower()
    role_model = model or resolve_model(role, resolved_provider)
    temperature = float(os.environ.get(f"CRM_{role.upper()}_TEMPERATURE", DEFAULT_TEMPERATURES[role]))
    if temperature_override is not None:
        temperature = temperature_override

    logger.debug("[llm] role=%s provider=%s model=%s", role, resolved_provider, role_model)

    if resolved_provider == "anthropic":
        return _call_anthropic(messages, role_model, temperature, max_tokens, timeout)
    elif resolved_provider == "openai":
        return _call_openai(messages, role_model, temperature, max_tokens, timeout)
    elif resolved_provider == "ollama":
        return ollama_chat(
            messages,
            model=role_model,
            temperature=temperature,
            max_tokens=max_tokens,
            timeout=timeout,
        )
    raise ValueError(
        f"Unsupported LLM provider: {resolved_provider}. "
        "Supported: ollama, anthropic, openai"
    )


def _has_module(module_name: str) -> bool:
    """Return True when a module is installed in the current environment."""
    return importlib.util.find_spec(module_name) is not None


def get_available_providers() -> list[str]:
    """Providers usable right now, based on installed packages and API keys."""
    available = ["ollama"]

    if _has_module("anthropic") and (
        os.environ.get("CRM_ANTHROPIC_API_KEY") or os.environ.get("ANTHROPIC_API_KEY")
    ):
        available.append("anthropic")

    if _has_module("openai") and (
        os.environ.get("CRM_OPENAI_API_KEY") or os.environ.get("OPENAI_API_KEY")
    ):
        available.append("openai")

    return available


def get_current_config() -> dict[str, Any]:
    """Current provider, per-role models and available providers."""
    provider = os.environ.get("CRM_LLM_PROVIDER", "ollama").lower()
    return {
        "provider": provider,
        "models": {role: resolve_model(role, provider) for role in ROLES},
        "available_providers": get_available_providers(),
    }
