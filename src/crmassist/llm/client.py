"""Language-model collaborator used by the router and orchestrator.

``LLMClient`` hides provider routing behind two calls: ``complete`` for free
text and ``complete_json`` for best-effort structured output. Every failure
surfaces as ``LLMUnavailableError`` so callers have one thing to catch.

Transient failures (``LLMTransientError``: unreachable, timed out, 5xx) are
retried with exponential backoff, whatever the provider.
"""

import json
import logging
import re
import time
from typing import Any

from crmassist.errors import LLMTransientError, LLMUnavailableError
from crmassist.llm.router import call_llm

logger = logging.getLogger(__name__)

_JSON_OBJECT = re.compile(r"\{.*\}", re.DOTALL)


def parse_json_response(response: str) -> dict[str, Any]:
    """Parse a JSON object from model output, tolerating common noise.

    Strips markdown fences, then tries the whole text, then the outermost
    ``{...}`` span.

    Raises:
        ValueError: If no JSON object can be recovered
    """
    text = (response or "").strip()
    if text.startswith("```"):
        lines = text.split("\n")
        start_idx = 1
        end_idx = len(lines)
        for i, line in enumerate(lines[1:], start=1):
            if line.strip().startswith("```"):
                end_idx = i
                break
        text = "\n".join(lines[start_idx:end_idx]).strip()

    try:
        parsed = json.loads(text)
    except json.JSONDecodeError:
        match = _JSON_OBJECT.search(text)
        if not match:
            raise ValueError(f"No JSON object in model output: {text[:200]}") from None
        try:
            parsed = json.loads(match.group(0))
        except json.JSONDecodeError as e:
            raise ValueError(f"Malformed JSON in model output: {e}") from e

    if not isinstance(parsed, dict):
        raise ValueError(f"Expected a JSON object, got {type(parsed).__name__}")
    return parsed


def _backoff(attempt: int) -> None:
    # 0.5s, 1s, 2s
    time.sleep(0.5 * (2 ** attempt))


class LLMClient:
    """Text-completion client bound to a provider, timeout and retry budget."""

    def __init__(
        self,
        provider: str | None = None,
        *,
        timeout: int = 60,
        max_tokens: int | None = None,
        max_retries: int = 2,
    ):
        self.provider = provider
        self.timeout = timeout
        self.max_tokens = max_tokens
        self.max_retries = max(0, max_retries)

    def _call(self, messages: list[dict[str, str]], role: str) -> str:
        for attempt in range(self.max_retries + 1):
            try:
                return call_llm(
                    messages,
                    role=role,
                    max_tokens=self.max_tokens,
                    timeout=self.timeout,
                    provider=self.provider,
                )
            except LLMTransientError as e:
                if attempt >= self.max_retries:
                    raise
                logger.warning("[llm] %s attempt %d failed, retrying: %s", role, attempt + 1, e)
                _backoff(attempt)

    def complete(self, system: str, prompt: str, *, role: str = "narrator") -> str:
        """Return the model's free-text reply.

        Raises:
            LLMUnavailableError: On any provider, network or empty-reply failure
        """
        messages = [
            {"role": "system", "content": system},
            {"role": "user", "content": prompt},
        ]
        try:
            text = self._call(messages, role)
        except LLMUnavailableError as e:
            e.role = role
            raise
        except (ValueError, ConnectionError, ImportError) as e:
            raise LLMUnavailableError(str(e), role=role) from e
        if not text or not text.strip():
            raise LLMUnavailableError("Empty model response", role=role)
        return text.strip()

    def complete_json(self, system: str, prompt: str, *, role: str = "classifier") -> dict[str, Any]:
        """Return the model's reply parsed as a JSON object.

        The object is untyped; callers validate every field they read.

        Raises:
            LLMUnavailableError: If the call fails or no JSON object is found
        """
        text = self.complete(system, prompt, role=role)
        try:
            return parse_json_response(text)
        except ValueError as e:
            logger.warning("[llm] %s returned unparseable JSON: %s", role, e)
            raise LLMUnavailableError(str(e), role=role) from e
