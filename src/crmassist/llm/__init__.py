"""Language-model access: provider routing and the engine-facing client."""

from crmassist.llm.client import LLMClient, parse_json_response
from crmassist.llm.router import call_llm

__all__ = ["LLMClient", "call_llm", "parse_json_response"]
