"""Tests for the LLM client, provider router and Ollama wrapper.

No network: provider calls and HTTP requests are monkeypatched.
"""

from unittest.mock import MagicMock

import pytest
import requests

from crmassist.errors import LLMTransientError, LLMUnavailableError
from crmassist.llm import client as llm_client
from crmassist.llm import ollama_client
from crmassist.llm.client import LLMClient, parse_json_response
from crmassist.llm.router import DEFAULT_MODELS, call_llm, get_current_config, resolve_model


# ============================================================================
# JSON parsing
# ============================================================================

class TestParseJsonResponse:

    def test_plain_object(self):
        assert parse_json_response('{"mode": "QUERY", "confidence": 0.9}') == {"mode": "QUERY", "confidence": 0.9}

    def test_fenced_object(self):
        text = '```json\n{"mode": "COACH"}\n```'
        assert parse_json_response(text) == {"mode": "COACH"}

    def test_object_inside_prose(self):
        text = 'Sure! Here you go: {"mode": "QUERY", "reason": "data"} Hope that helps.'
        assert parse_json_response(text)["reason"] == "data"

    def test_no_object(self):
        with pytest.raises(ValueError):
            parse_json_response("I think this is a query.")

    def test_non_object_json(self):
        with pytest.raises(ValueError):
            parse_json_response("[1, 2, 3]")


# ============================================================================
# LLMClient
# ============================================================================

class TestLLMClient:

    def test_complete_passes_role_and_messages(self, monkeypatch):
        seen = {}

        def fake_call(messages, **kwargs):
            seen["messages"] = messages
            seen.update(kwargs)
            return "  answer text \n"

        monkeypatch.setattr("crmassist.llm.client.call_llm", fake_call)
        client = LLMClient("ollama", timeout=5)
        assert client.complete("sys", "prompt", role="coach") == "answer text"
        assert seen["role"] == "coach"
        assert seen["provider"] == "ollama"
        assert seen["timeout"] == 5
        assert seen["messages"][0] == {"role": "system", "content": "sys"}

    @pytest.mark.parametrize("error", [ValueError("bad"), ConnectionError("down"), ImportError("no sdk")])
    def test_provider_errors_wrapped(self, monkeypatch, error):
        monkeypatch.setattr("crmassist.llm.client.call_llm", MagicMock(side_effect=error))
        with pytest.raises(LLMUnavailableError) as exc_info:
            LLMClient().complete("sys", "prompt")
        assert exc_info.value.role == "narrator"

    def test_empty_reply_is_unavailable(self, monkeypatch):
        monkeypatch.setattr("crmassist.llm.client.call_llm", MagicMock(return_value="   "))
        with pytest.raises(LLMUnavailableError):
            LLMClient().complete("sys", "prompt")

    def test_complete_json(self, monkeypatch):
        monkeypatch.setattr(
            "crmassist.llm.client.call_llm",
            MagicMock(return_value='{"mode": "COACH", "confidence": 0.8}'),
        )
        assert LLMClient().complete_json("sys", "prompt")["mode"] == "COACH"

    def test_complete_json_unparseable(self, monkeypatch):
        monkeypatch.setattr("crmassist.llm.client.call_llm", MagicMock(return_value="no json here"))
        with pytest.raises(LLMUnavailableError):
            LLMClient().complete_json("sys", "prompt")


# ============================================================================
# Router
# ============================================================================

class TestRouter:

    def test_invalid_role(self):
        with pytest.raises(ValueError, match="Invalid role"):
            call_llm([], role="poet")

    def test_invalid_provider(self):
        with pytest.raises(ValueError, match="Unsupported LLM provider"):
            call_llm([], role="narrator", provider="carrier-pigeon")

    def test_ollama_dispatch_uses_role_model_and_temperature(self, monkeypatch):
        monkeypatch.delenv("CRM_CLASSIFIER_MODEL", raising=False)
        monkeypatch.delenv("CRM_CLASSIFIER_TEMPERATURE", raising=False)
        fake = MagicMock(return_value="ok")
        monkeypatch.setattr("crmassist.llm.router.ollama_chat", fake)

        assert call_llm([{"role": "user", "content": "hi"}], role="classifier", provider="ollama") == "ok"
        kwargs = fake.call_args.kwargs
        assert kwargs["model"] == DEFAULT_MODELS["ollama"]["classifier"]
        assert kwargs["temperature"] == 0.0

    def test_model_env_override(self, monkeypatch):
        monkeypatch.setenv("CRM_COACH_MODEL", "mistral:7b")
        assert resolve_model("coach", "ollama") == "mistral:7b"

    def test_missing_api_key(self, monkeypatch):
        pytest.importorskip("anthropic")
        monkeypatch.delenv("CRM_ANTHROPIC_API_KEY", raising=False)
        monkeypatch.delenv("ANTHROPIC_API_KEY", raising=False)
        with pytest.raises(ValueError, match="API key not found"):
            call_llm([], role="narrator", provider="anthropic")

    def test_current_config(self, monkeypatch):
        monkeypatch.setenv("CRM_LLM_PROVIDER", "ollama")
        config = get_current_config()
        assert config["provider"] == "ollama"
        assert set(config["models"]) == {"classifier", "narrator", "coach"}
        assert "ollama" in config["available_providers"]


# ============================================================================
# Ollama wrapper
# ============================================================================

def _response(status: int = 200, body: dict | None = None) -> MagicMock:
    response = MagicMock()
    response.status_code = status
    response.text = "error body"
    response.json.return_value = body or {"message": {"role": "assistant", "content": "hello"}}
    if status >= 400:
        response.raise_for_status.side_effect = requests.exceptions.HTTPError(f"{status}")
    return response


class TestOllamaChat:
    """One attempt per call; failures classified for the retry policy."""

    def test_success(self, monkeypatch):
        monkeypatch.setenv("CRM_OLLAMA_BASE_URL", "http://ollama.internal:11434/")
        post = MagicMock(return_value=_response())
        monkeypatch.setattr(ollama_client.requests, "post", post)
        assert ollama_client.ollama_chat([], model="llama3.1:8b", max_tokens=64) == "hello"
        assert post.call_args.args[0] == "http://ollama.internal:11434/api/chat"
        payload = post.call_args.kwargs["json"]
        assert payload["stream"] is False
        assert payload["options"]["num_predict"] == 64

    def test_num_ctx_from_env(self, monkeypatch):
        monkeypatch.setenv("CRM_OLLAMA_NUM_CTX", "4096")
        payload = ollama_client.build_payload([], "m", 0.2, None)
        assert payload["options"] == {"temperature": 0.2, "num_ctx": 4096}

    def test_connection_error_is_transient(self, monkeypatch):
        post = MagicMock(side_effect=requests.exceptions.ConnectionError("refused"))
        monkeypatch.setattr(ollama_client.requests, "post", post)
        with pytest.raises(LLMTransientError, match="Cannot connect to Ollama"):
            ollama_client.ollama_chat([], model="m")
        assert post.call_count == 1

    def test_timeout_is_transient(self, monkeypatch):
        post = MagicMock(side_effect=requests.exceptions.Timeout("slow"))
        monkeypatch.setattr(ollama_client.requests, "post", post)
        with pytest.raises(LLMTransientError, match="timed out after 1s"):
            ollama_client.ollama_chat([], model="m", timeout=1)

    def test_server_error_is_transient(self, monkeypatch):
        monkeypatch.setattr(ollama_client.requests, "post", MagicMock(return_value=_response(503)))
        with pytest.raises(LLMTransientError, match="503"):
            ollama_client.ollama_chat([], model="m")

    def test_client_error_is_not_transient(self, monkeypatch):
        monkeypatch.setattr(ollama_client.requests, "post", MagicMock(return_value=_response(404)))
        with pytest.raises(LLMUnavailableError, match="Ollama API error \\(404\\)") as exc_info:
            ollama_client.ollama_chat([], model="m")
        assert not isinstance(exc_info.value, LLMTransientError)
        assert exc_info.value.details == {"provider": "ollama", "model": "m"}

    def test_unexpected_body(self, monkeypatch):
        monkeypatch.setattr(ollama_client.requests, "post", MagicMock(return_value=_response(body={"done": True})))
        with pytest.raises(LLMUnavailableError, match="Unexpected Ollama response format"):
            ollama_client.ollama_chat([], model="m")


class TestRetries:
    """LLMClient retries transient failures from any provider."""

    @pytest.fixture(autouse=True)
    def no_sleep(self, monkeypatch):
        delays = []
        monkeypatch.setattr(llm_client, "_backoff", delays.append)
        return delays

    def test_transient_failure_retried(self, monkeypatch, no_sleep):
        call = MagicMock(side_effect=[LLMTransientError("503"), "recovered"])
        monkeypatch.setattr("crmassist.llm.client.call_llm", call)
        assert LLMClient(max_retries=2).complete("sys", "prompt") == "recovered"
        assert call.call_count == 2
        assert no_sleep == [0]

    def test_retries_exhausted(self, monkeypatch, no_sleep):
        call = MagicMock(side_effect=LLMTransientError("down"))
        monkeypatch.setattr("crmassist.llm.client.call_llm", call)
        with pytest.raises(LLMTransientError) as exc_info:
            LLMClient(max_retries=2).complete("sys", "prompt", role="coach")
        assert call.call_count == 3
        assert no_sleep == [0, 1]
        assert exc_info.value.role == "coach"

    def test_permanent_failure_not_retried(self, monkeypatch, no_sleep):
        call = MagicMock(side_effect=LLMUnavailableError("404"))
        monkeypatch.setattr("crmassist.llm.client.call_llm", call)
        with pytest.raises(LLMUnavailableError):
            LLMClient(max_retries=2).complete("sys", "prompt")
        assert call.call_count == 1
        assert no_sleep == []

    def test_zero_retries(self, monkeypatch, no_sleep):
        call = MagicMock(side_effect=LLMTransientError("down"))
        monkeypatch.setattr("crmassist.llm.client.call_llm", call)
        with pytest.raises(LLMUnavailableError):
            LLMClient(max_retries=0).complete("sys", "prompt")
        assert call.call_count == 1
