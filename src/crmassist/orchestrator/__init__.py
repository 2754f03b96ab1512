"""Conversation routing and answer orchestration."""

from crmassist.orchestrator.engine import AskEngine, AskResponse
from crmassist.orchestrator.routing import RouteDecision, route_conversation

__all__ = ["AskEngine", "AskResponse", "RouteDecision", "route_conversation"]
