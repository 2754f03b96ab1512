"""COACH vs QUERY routing.

Two classifiers are blended:

- the model classifier (``classify_with_model``) returns mode, confidence and
  reason as untyped JSON, validated field by field;
- the heuristic classifier (``classify_with_heuristics``) scores keyword hits,
  adds a point for a leading question word and applies ``history_bias``.

Merge policy (thresholds from ``EngineConfig``):

- model confidence >= high: model decision
- medium <= confidence < high: agree -> model mode, boosted confidence;
  disagree -> heuristic mode at a fixed confidence, model mode suggested
- confidence < medium: heuristic decision, model mode suggested
- model failure: heuristic decision
- heuristic failure too: QUERY at the fallback confidence
"""

import logging
import math
from typing import Any, Literal

from pydantic import BaseModel, Field

from crmassist.config import EngineConfig
from crmassist.memory.conversation import ConversationTurn
from crmassist.orchestrator.prompts import CLASSIFIER_SYSTEM_PROMPT, build_classifier_prompt

logger = logging.getLogger(__name__)

COACH = "COACH"
QUERY = "QUERY"
MODES = (COACH, QUERY)

QUERY_KEYWORDS = (
    "how many", "how much", "count", "total", "sum", "average",
    "show me", "list", "display", "find", "search", "get",
    "what is", "what are", "which", "when did", "where is",
    "tell me about", "give me", "show", "see", "view",
    "quotation", "quote", "contact", "account", "activity", "lead",
    "performance", "statistics", "data", "report", "analytics",
)

COACH_KEYWORDS = (
    "how can i", "how should i", "what should i", "what can i",
    "help me", "advice", "suggest", "recommend", "tip", "tips",
    "improve", "better", "strategy", "strategic", "guidance",
    "coach", "mentor", "learn", "understand", "explain",
    "next step", "what to do", "how to", "best practice",
    "encourage", "motivate", "support",
)

QUESTION_WORDS = ("what", "when", "where", "who", "which", "how many", "how much")


class RouteDecision(BaseModel):
    """Mode chosen for one turn."""

    mode: Literal["COACH", "QUERY"]
    confidence: float = Field(ge=0.0, le=1.0)
    reason: str
    suggested_mode: Literal["COACH", "QUERY"] | None = None
    source: Literal["model", "heuristic", "blended", "fallback"] = "heuristic"


def _keyword_hits(text: str, keywords: tuple[str, ...]) -> int:
    return sum(1 for kw in keywords if kw in text)


def history_bias(prev_mode: str | None, magnitude: float = 0.3) -> float:
    """Score delta toward the previous turn's mode.

    Positive favours QUERY, negative favours COACH, zero without history.
    """
    if prev_mode == QUERY:
        return magnitude
    if prev_mode == COACH:
        return -magnitude
    return 0.0


def previous_mode(history: list[ConversationTurn]) -> str | None:
    """Mode of the last turn, inferred from its wording when not recorded."""
    if not history:
        return None
    last = history[-1]
    if last.mode in MODES:
        return last.mode
    text = last.content.lower()
    if _keyword_hits(text, QUERY_KEYWORDS):
        return QUERY
    if _keyword_hits(text, COACH_KEYWORDS):
        return COACH
    return None


def classify_with_heuristics(
    message: str,
    history: list[ConversationTurn] | None = None,
    *,
    bias_magnitude: float = 0.3,
) -> RouteDecision:
    """Keyword scoring with question-word boost and history bias."""
    text = message.lower().strip()
    query_hits = _keyword_hits(text, QUERY_KEYWORDS)
    coach_hits = _keyword_hits(text, COACH_KEYWORDS)
    has_question_word = any(text.startswith(w) for w in QUESTION_WORDS)
    bias = history_bias(previous_mode(history or []), bias_magnitude)

    query_score = query_hits + (1 if has_question_word else 0) + bias
    coach_score = coach_hits - bias
    total = query_score + coach_score

    if query_score > coach_score:
        mode = QUERY
        confidence = min(0.9, 0.5 + (query_score / max(1, total)) * 0.4) if total > 0 else 0.5
        reason = f"Detected query patterns: {query_hits} query keywords"
        if has_question_word:
            reason += ", question word detected"
    elif coach_score > query_score:
        mode = COACH
        confidence = min(0.9, 0.5 + (coach_score / max(1, total)) * 0.4) if total > 0 else 0.5
        reason = f"Detected coaching patterns: {coach_hits} coach keywords"
    else:
        mode = QUERY
        confidence = 0.4
        reason = "Ambiguous message, defaulting to QUERY mode"

    if bias:
        reason += " (influenced by conversation history)"

    return RouteDecision(mode=mode, confidence=confidence, reason=reason, source="heuristic")


def _validate_model_output(payload: dict[str, Any]) -> RouteDecision:
    mode = payload.get("mode")
    if not isinstance(mode, str) or mode.upper() not in MODES:
        mode = QUERY
    confidence = payload.get("confidence")
    if isinstance(confidence, bool) or not isinstance(confidence, (int, float)):
        confidence = 0.5
    elif not math.isfinite(confidence):
        confidence = 0.5
    reason = payload.get("reason")
    if not isinstance(reason, str) or not reason.strip():
        reason = "Classified by AI"
    return RouteDecision(
        mode=mode.upper(),
        confidence=max(0.0, min(1.0, float(confidence))),
        reason=reason.strip(),
        source="model",
    )


def classify_with_model(classifier, message: str, history: list[ConversationTurn] | None = None) -> RouteDecision:
    """Ask the model for a routing decision.

    Args:
        classifier: Object with ``complete_json(system, prompt, role=...)``
        message: The user's message
        history: Recent turns, oldest first

    Raises:
        LLMUnavailableError: If the model call or JSON parsing fails
    """
    payload = classifier.complete_json(
        CLASSIFIER_SYSTEM_PROMPT,
        build_classifier_prompt(message, history or []),
        role="classifier",
    )
    return _validate_model_output(payload)


def _merge(model: RouteDecision, heuristic: RouteDecision, config: EngineConfig) -> RouteDecision:
    if model.confidence >= config.medium_confidence:
        if model.mode == heuristic.mode:
            return RouteDecision(
                mode=model.mode,
                confidence=min(config.agreement_cap, model.confidence + config.agreement_boost),
                reason=f"{model.reason} (confirmed by heuristics)",
                source="blended",
            )
        return RouteDecision(
            mode=heuristic.mode,
            confidence=config.disagreement_confidence,
            reason=f"Model and heuristics disagree; using heuristics: {heuristic.reason}",
            suggested_mode=model.mode,
            source="blended",
        )
    return heuristic.model_copy(update={"suggested_mode": model.mode})


def route_conversation(
    message: str,
    user_id: str,
    history: list[ConversationTurn] | None = None,
    classifier=None,
    config: EngineConfig | None = None,
) -> RouteDecision:
    """Decide COACH or QUERY for one message. Never raises.

    Args:
        message: The user's message
        user_id: Caller identity, for logging
        history: Recent turns, oldest first
        classifier: Optional model client; ``None`` means heuristics only
        config: Thresholds and bias magnitudes

    Returns:
        A valid RouteDecision
    """
    config = config or EngineConfig()
    history = history or []

    model_decision = None
    if classifier is not None:
        try:
            model_decision = classify_with_model(classifier, message, history)
        except Exception as e:
            logger.warning("[router] model classifier failed for %s, using heuristics: %s", user_id, e)

    if model_decision is not None and model_decision.confidence >= config.high_confidence:
        logger.info("[router] %s -> %s (model, %.2f)", user_id, model_decision.mode, model_decision.confidence)
        return model_decision

    try:
        heuristic = classify_with_heuristics(message, history, bias_magnitude=config.history_bias)
        decision = heuristic if model_decision is None else _merge(model_decision, heuristic, config)
    except Exception as e:
        logger.error("[router] heuristic classifier failed for %s: %s", user_id, e)
        return RouteDecision(
            mode=QUERY,
            confidence=config.fallback_confidence,
            reason="Routing failed, defaulting to QUERY mode",
            source="fallback",
        )

    logger.info("[router] %s -> %s (%s, %.2f)", user_id, decision.mode, decision.source, decision.confidence)
    return decision
