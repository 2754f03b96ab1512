"""Answer orchestrator: the single ``ask`` operation.

Per turn:
    cache lookup -> load memory -> route -> QUERY path | COACH path -> persist turns -> cache

Cache hits skip routing but are still written to memory. Every step is
recorded on the injected ``OperationMonitor``.

QUERY path: parse intent -> scoped query -> format rows -> model phrases the
answer from the formatted context -> grounding check.
COACH path: caller statistics -> model writes advice.

``ask`` never raises. Datastore failures come back as a safe message with
empty data; model failures as a generic answer with confidence 0.
"""

import logging
import time
from datetime import datetime
from typing import Any, Callable, Literal

from pydantic import BaseModel, Field

from crmassist.config import EngineConfig
from crmassist.errors import CRMAssistError, LLMUnavailableError
from crmassist.execution.executor import QueryExecutor, normalize_role
from crmassist.execution.results import UNKNOWN_SUGGESTIONS
from crmassist.explain.formatter import format_for_model
from crmassist.explain.grounding import UNGROUNDED_CONFIDENCE_PENALTY, check_grounding
from crmassist.llm.client import LLMClient
from crmassist.memory.cache import AnswerCache
from crmassist.memory.conversation import ConversationMemory, ConversationTurn
from crmassist.memory.monitor import OperationMonitor
from crmassist.orchestrator.prompts import build_system_prompt, build_user_prompt
from crmassist.orchestrator.routing import COACH, QUERY, RouteDecision, classify_with_heuristics, route_conversation
from crmassist.planning.intent import parse_intent
from crmassist.store.builder import CRMStore
from crmassist.store.schema import QUOTATION_TABLES

logger = logging.getLogger(__name__)

ERROR_ANSWER = (
    "I encountered an error while processing your question. "
    "Please try rephrasing it or ask something else."
)
EMPTY_QUESTION_ANSWER = "Please ask a question about your CRM data or ask for coaching advice."
NO_STATS_CONTEXT = "No activity statistics are available for this user yet."

ANSWER_CONFIDENCE = 0.9
EMPTY_RESULT_CONFIDENCE = 0.7
COACH_CONFIDENCE = 0.8
UNKNOWN_CONFIDENCE = 0.2


class AskResponse(BaseModel):
    """Answer returned to the web layer."""

    answer: str
    data: list[dict[str, Any]] = Field(default_factory=list)
    sql_or_query_descriptor: str | None = None
    confidence: float = Field(ge=0.0, le=1.0)
    sources: list[str] = Field(default_factory=list)
    mode: Literal["COACH", "QUERY"] = QUERY
    route: RouteDecision | None = None
    cached: bool = False


class AskEngine:
    """Route, answer, remember and cache questions from CRM users.

    Usage:
        engine = AskEngine(CRMStore("./data/crm.duckdb"))
        response = engine.ask("How many contacts do I have?", "Sales_Shweta", "employee")
    """

    def __init__(
        self,
        store: CRMStore,
        llm: Any = None,
        config: EngineConfig | None = None,
        *,
        memory: ConversationMemory | None = None,
        cache: AnswerCache | None = None,
        monitor: OperationMonitor | None = None,
        clock: Callable[[], datetime] | None = None,
    ):
        self.config = config or EngineConfig()
        self.clock = clock or datetime.now
        self.store = store
        if llm is None:
            llm = LLMClient(
                self.config.llm_provider,
                timeout=self.config.llm_timeout,
                max_retries=self.config.llm_max_retries,
            )
        self.llm = llm
        if memory is None:
            memory = ConversationMemory(self.config.memory_max_turns, clock=self.clock)
        if cache is None:
            cache = AnswerCache(self.config.cache_ttl_seconds, self.config.cache_max_entries)
        if monitor is None:
            monitor = OperationMonitor(self.config.monitor_max_records, clock=self.clock)
        self.memory = memory
        self.cache = cache
        self.monitor = monitor
        self.executor = QueryExecutor(store, self.config, clock=self.clock)

    def ask(
        self,
        question: str,
        caller_id: str,
        role: str,
        history: list[ConversationTurn | dict] | None = None,
    ) -> AskResponse:
        """Answer one question for one caller.

        Args:
            question: Free-text question
            caller_id: Caller identity; scopes data, memory and cache
            role: ``admin`` or ``employee``
            history: Prior turns to use instead of stored memory

        Returns:
            AskResponse; cache hits are returned with ``cached=True``
        """
        question = (question or "").strip()
        if not question:
            return AskResponse(answer=EMPTY_QUESTION_ANSWER, confidence=0.0)

        started = time.perf_counter()
        role = normalize_role(role)
        hit = self.cache.get(caller_id, role, question)
        if hit is not None:
            logger.info("[engine] cache hit for %s", caller_id)
            self.monitor.log_cache(caller_id, True, _elapsed_ms(started))
            self._remember(caller_id, question, hit)
            return hit.model_copy(update={"cached": True})
        self.monitor.log_cache(caller_id, False)

        cacheable = False
        try:
            turns = self._load_history(caller_id, history)
            decision = route_conversation(question, caller_id, turns, self.llm, self.config)
            if decision.mode == COACH:
                response, cacheable = self._coach(question, caller_id, role, turns, decision)
            else:
                response, cacheable = self._query(question, caller_id, role, turns, decision)
        except Exception as e:
            logger.exception("[engine] unexpected failure for %s: %s", caller_id, e)
            self.monitor.log_error(caller_id, "ask", e, _elapsed_ms(started))
            response = AskResponse(answer=ERROR_ANSWER, confidence=0.0)

        if response.answer != ERROR_ANSWER:
            self.monitor.log_response(
                caller_id, response.mode, response.confidence, response.answer, _elapsed_ms(started)
            )
        self._remember(caller_id, question, response)
        if cacheable:
            self.cache.put(caller_id, role, question, response)
        return response

    def preview(self, question: str, caller_id: str, role: str) -> dict[str, Any]:
        """Parsed intent, heuristic route and query descriptor, without reads or model calls."""
        intent = parse_intent(question, now=self.clock())
        route = classify_with_heuristics(
            question, self.memory.recent(caller_id, self.config.history_window),
            bias_magnitude=self.config.history_bias,
        )
        return {
            "intent": intent.model_dump(mode="json"),
            "route": route.model_dump(),
            "last_mode": self.memory.last_mode(caller_id),
            "sql_or_query_descriptor": self.executor.describe(intent, role),
        }

    def forget(self, caller_id: str) -> dict[str, int]:
        """Drop a caller's conversation memory and cached answers."""
        turns = len(self.memory.recent(caller_id))
        self.memory.clear(caller_id)
        answers = self.cache.invalidate_user(caller_id)
        logger.info("[engine] forgot %s: %d turns, %d cached answers", caller_id, turns, answers)
        return {"turns": turns, "cached_answers": answers}

    def _remember(self, caller_id: str, question: str, response: AskResponse) -> None:
        self.memory.record(caller_id, "user", question, response.mode)
        self.memory.record(caller_id, "assistant", response.answer, response.mode)

    # ------------------------------------------------------------------
    # Paths
    # ------------------------------------------------------------------

    def _load_history(self, caller_id: str, history: list | None) -> list[ConversationTurn]:
        if history is None:
            return self.memory.recent(caller_id, self.config.history_window)
        turns = [t if isinstance(t, ConversationTurn) else ConversationTurn.model_validate(t) for t in history]
        return turns[-self.config.history_window:]

    def _query(
        self,
        question: str,
        caller_id: str,
        role: str,
        turns: list[ConversationTurn],
        decision: RouteDecision,
    ) -> tuple[AskResponse, bool]:
        started = time.perf_counter()
        intent = parse_intent(question, now=self.clock())
        self.monitor.log_intent(
            caller_id, question, intent.entity.value, intent.operation.value,
            decision.confidence, _elapsed_ms(started),
        )

        started = time.perf_counter()
        result = self.executor.execute(intent, role, caller_id)
        descriptor = result.descriptor or self.executor.describe(intent, role)
        if not intent.is_unknown:
            self.monitor.log_query(
                caller_id, intent.entity.value, descriptor, _elapsed_ms(started), len(result.rows),
                error=None if result.success else result.formatted,
            )

        if intent.is_unknown:
            suggestions = "\n".join(f"- {s}" for s in UNKNOWN_SUGGESTIONS)
            answer = f"{result.formatted}\n\nFor example:\n{suggestions}"
            response = AskResponse(
                answer=answer,
                sql_or_query_descriptor=descriptor,
                confidence=UNKNOWN_CONFIDENCE,
                mode=QUERY,
                route=decision,
            )
            return response, True

        if not result.success:
            response = AskResponse(
                answer=result.formatted,
                sql_or_query_descriptor=descriptor,
                confidence=0.0,
                sources=result.sources,
                mode=QUERY,
                route=decision,
            )
            return response, False

        context = f"{result.formatted}\n\n{format_for_model(result.rows, question, intent)}"
        logger.debug("[engine] query context for %s:\n%s", caller_id, context)
        try:
            answer = self.llm.complete(
                build_system_prompt(QUERY, caller_id, role),
                build_user_prompt(question, context, QUERY, turns, self.config.history_window),
                role="narrator",
            )
        except Exception as e:
            return self._model_failure(caller_id, e, decision, descriptor), False

        report = check_grounding(answer, context)
        confidence = ANSWER_CONFIDENCE if result.rows else EMPTY_RESULT_CONFIDENCE
        if not report.grounded:
            confidence = max(0.0, confidence - UNGROUNDED_CONFIDENCE_PENALTY)

        response = AskResponse(
            answer=report.answer,
            data=result.rows,
            sql_or_query_descriptor=descriptor,
            confidence=confidence,
            sources=result.sources,
            mode=QUERY,
            route=decision,
        )
        return response, True

    def _coach(
        self,
        question: str,
        caller_id: str,
        role: str,
        turns: list[ConversationTurn],
        decision: RouteDecision,
    ) -> tuple[AskResponse, bool]:
        try:
            stats = self.executor.user_stats(role, caller_id)
        except CRMAssistError as e:
            logger.warning("[engine] user stats unavailable for %s: %s", caller_id, e)
            stats = {}

        context = format_for_model([stats], question) if stats else NO_STATS_CONTEXT
        try:
            answer = self.llm.complete(
                build_system_prompt(COACH, caller_id, role, stats),
                build_user_prompt(question, context, COACH, turns, self.config.history_window),
                role="coach",
            )
        except Exception as e:
            return self._model_failure(caller_id, e, decision, None), False

        sources = ["sub_accounts", "activities", *QUOTATION_TABLES] if stats else []
        response = AskResponse(
            answer=answer,
            confidence=COACH_CONFIDENCE,
            sources=sources,
            mode=COACH,
            route=decision,
        )
        return response, True

    def _model_failure(
        self, caller_id: str, error: Exception, decision: RouteDecision, descriptor: str | None
    ) -> AskResponse:
        if isinstance(error, LLMUnavailableError):
            logger.warning("[engine] model unavailable for %s: %s", caller_id, error)
        else:
            logger.exception("[engine] model call failed for %s", caller_id)
        self.monitor.log_error(caller_id, decision.mode.lower(), error)
        return AskResponse(
            answer=ERROR_ANSWER,
            sql_or_query_descriptor=descriptor,
            confidence=0.0,
            mode=decision.mode,
            route=decision,
        )


def _elapsed_ms(started: float) -> float:
    return round((time.perf_counter() - started) * 1000, 3)
