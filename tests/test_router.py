"""Tests for COACH vs QUERY routing."""

from unittest.mock import patch

import pytest

from crmassist.config import EngineConfig
from crmassist.errors import LLMUnavailableError
from crmassist.llm.client import parse_json_response
from crmassist.memory.conversation import ConversationTurn
from crmassist.orchestrator.routing import (
    COACH,
    QUERY,
    classify_with_heuristics,
    classify_with_model,
    history_bias,
    route_conversation,
)

from conftest import FakeLLM

DATA_QUESTION = "How many contacts do I have?"
COACH_QUESTION = "How can I improve my follow-up strategy?"


def _turn(content: str, mode: str | None = None, role: str = "user") -> ConversationTurn:
    return ConversationTurn(role=role, content=content, mode=mode)


# ============================================================================
# History bias
# ============================================================================

class TestHistoryBias:

    def test_query_bias_is_positive(self):
        assert history_bias(QUERY) == pytest.approx(0.3)

    def test_coach_bias_is_negative(self):
        assert history_bias(COACH) == pytest.approx(-0.3)

    def test_no_history_no_bias(self):
        assert history_bias(None) == 0.0

    def test_magnitude_is_configurable(self):
        assert history_bias(QUERY, 0.5) == pytest.approx(0.5)


# ============================================================================
# Heuristic classifier
# ============================================================================

class TestHeuristics:

    def test_data_question_is_query(self):
        decision = classify_with_heuristics(DATA_QUESTION)
        assert decision.mode == QUERY
        assert decision.confidence == pytest.approx(0.9)
        assert "question word detected" in decision.reason

    def test_advice_question_is_coach(self):
        decision = classify_with_heuristics(COACH_QUESTION)
        assert decision.mode == COACH
        assert 0.5 < decision.confidence <= 0.9

    def test_tie_defaults_to_query(self):
        decision = classify_with_heuristics("hello there")
        assert decision.mode == QUERY
        assert decision.confidence == pytest.approx(0.4)

    def test_previous_coach_turn_biases_follow_up(self):
        decision = classify_with_heuristics("ok, and then?", [_turn("give advice", mode=COACH)])
        assert decision.mode == COACH
        assert "influenced by conversation history" in decision.reason

    def test_mode_inferred_from_untagged_history(self):
        decision = classify_with_heuristics("ok, and then?", [_turn("show me my leads")])
        assert decision.mode == QUERY


# ============================================================================
# Model classifier
# ============================================================================

class TestModelClassifier:

    def test_valid_output(self):
        llm = FakeLLM(route={"mode": "COACH", "confidence": 0.82, "reason": "asks for tips"})
        decision = classify_with_model(llm, COACH_QUESTION)
        assert decision.mode == COACH
        assert decision.confidence == pytest.approx(0.82)
        assert decision.reason == "asks for tips"
        assert llm.calls[0]["role"] == "classifier"

    def test_malformed_fields_fall_back(self):
        llm = FakeLLM(route={"mode": "banana", "confidence": "high"})
        decision = classify_with_model(llm, DATA_QUESTION)
        assert decision.mode == QUERY
        assert decision.confidence == pytest.approx(0.5)
        assert decision.reason == "Classified by AI"

    def test_confidence_clamped(self):
        assert classify_with_model(FakeLLM(route={"mode": "query", "confidence": 7}), "x").confidence == 1.0
        assert classify_with_model(FakeLLM(route={"mode": "QUERY", "confidence": -2}), "x").confidence == 0.0

    @pytest.mark.parametrize("value", [float("nan"), float("inf"), float("-inf")])
    def test_non_finite_confidence_is_neutral(self, value):
        decision = classify_with_model(FakeLLM(route={"mode": "COACH", "confidence": value}), COACH_QUESTION)
        assert decision.mode == COACH
        assert decision.confidence == pytest.approx(0.5)

    def test_nan_literal_from_model_text_is_neutral(self):
        """json.loads accepts a bare NaN token; the classifier must not trust it."""
        llm = FakeLLM(route=parse_json_response('{"mode": "COACH", "confidence": NaN}'))
        assert classify_with_model(llm, COACH_QUESTION).confidence == pytest.approx(0.5)

    def test_history_included_in_prompt(self):
        llm = FakeLLM()
        classify_with_model(llm, "and today?", [_turn("show my follow-ups")])
        assert "User: show my follow-ups" in llm.calls[0]["prompt"]


# ============================================================================
# Merge policy
# ============================================================================

class TestRouteConversation:

    def test_high_confidence_model_wins(self):
        llm = FakeLLM(route={"mode": "COACH", "confidence": 0.8, "reason": "advice"})
        decision = route_conversation(DATA_QUESTION, "u1", [], llm)
        assert decision.mode == COACH
        assert decision.source == "model"

    def test_medium_confidence_agreement_boosts(self):
        llm = FakeLLM(route={"mode": "QUERY", "confidence": 0.6, "reason": "data"})
        decision = route_conversation(DATA_QUESTION, "u1", [], llm)
        assert decision.mode == QUERY
        assert decision.confidence == pytest.approx(0.7)
        assert decision.reason == "data (confirmed by heuristics)"
        assert decision.suggested_mode is None

    def test_agreement_boost_is_capped(self):
        config = EngineConfig(high_confidence=0.99, agreement_boost=0.5)
        llm = FakeLLM(route={"mode": "QUERY", "confidence": 0.9})
        decision = route_conversation(DATA_QUESTION, "u1", [], llm, config)
        assert decision.confidence == pytest.approx(0.95)

    def test_medium_confidence_disagreement_uses_heuristics(self):
        llm = FakeLLM(route={"mode": "COACH", "confidence": 0.6})
        decision = route_conversation(DATA_QUESTION, "u1", [], llm)
        assert decision.mode == QUERY
        assert decision.confidence == pytest.approx(0.6)
        assert decision.suggested_mode == COACH

    def test_low_confidence_uses_heuristics_with_suggestion(self):
        llm = FakeLLM(route={"mode": "COACH", "confidence": 0.3})
        decision = route_conversation(DATA_QUESTION, "u1", [], llm)
        assert decision.mode == QUERY
        assert decision.confidence == pytest.approx(0.9)
        assert decision.suggested_mode == COACH

    def test_model_failure_falls_back_to_heuristics(self):
        llm = FakeLLM(route=LLMUnavailableError("timeout"))
        decision = route_conversation(COACH_QUESTION, "u1", [], llm)
        assert decision.mode == COACH
        assert decision.confidence > 0
        assert decision.source == "heuristic"

    def test_unexpected_model_exception_falls_back(self):
        llm = FakeLLM(route=RuntimeError("boom"))
        decision = route_conversation(DATA_QUESTION, "u1", [], llm)
        assert decision.mode in (COACH, QUERY)
        assert decision.confidence > 0

    def test_everything_failing_defaults_to_query(self):
        llm = FakeLLM(route=LLMUnavailableError("down"))
        with patch(
            "crmassist.orchestrator.routing.classify_with_heuristics",
            side_effect=RuntimeError("broken"),
        ):
            decision = route_conversation(DATA_QUESTION, "u1", [], llm)
        assert decision.mode == QUERY
        assert decision.confidence == pytest.approx(0.3)
        assert decision.source == "fallback"

    def test_without_classifier_uses_heuristics(self):
        decision = route_conversation(COACH_QUESTION, "u1", [], None)
        assert decision.mode == COACH

    def test_thresholds_from_config(self):
        config = EngineConfig(high_confidence=0.95)
        llm = FakeLLM(route={"mode": "COACH", "confidence": 0.9})
        decision = route_conversation(DATA_QUESTION, "u1", [], llm, config)
        assert decision.mode == QUERY
        assert decision.suggested_mode == COACH
