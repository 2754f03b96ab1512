"""Tests for the ask orchestrator: paths, caching, memory and failure handling."""

import pytest

from crmassist.execution.results import DATASTORE_FAILURE_MESSAGE, UNKNOWN_MESSAGE
from crmassist.explain.grounding import VERIFICATION_NOTE
from crmassist.memory.monitor import OperationMonitor
from crmassist.orchestrator.engine import (
    EMPTY_QUESTION_ANSWER,
    ERROR_ANSWER,
    AskEngine,
    AskResponse,
)

from conftest import FakeLLM, fixed_clock

COUNT_QUESTION = "How many contacts do I have?"
COACH_ROUTE = {"mode": "COACH", "confidence": 0.9, "reason": "asks for advice"}


@pytest.fixture()
def engine(store, fake_llm, config):
    return AskEngine(store, fake_llm, config, clock=fixed_clock)


# ============================================================================
# QUERY path
# ============================================================================

class TestQueryPath:

    def test_count_question(self, engine, fake_llm):
        response = engine.ask(COUNT_QUESTION, "Sales_Shweta", "employee")
        assert isinstance(response, AskResponse)
        assert response.mode == "QUERY"
        assert response.answer == "Here is what I found."
        assert response.confidence == pytest.approx(0.9)
        assert len(response.data) == 3
        assert "contacts" in response.sources
        assert "FROM contacts" in response.sql_or_query_descriptor
        assert response.route.source == "model"
        assert not response.cached

    def test_narrator_sees_formatted_results(self, engine, fake_llm):
        engine.ask(COUNT_QUESTION, "Sales_Shweta", "employee")
        call = fake_llm.calls_for("narrator")[0]
        assert "You have 3 contacts." in call["prompt"]
        assert "Question: How many contacts do I have?" in call["prompt"]
        assert "Sales_Shweta" in call["system"]

    def test_grounded_numbers_keep_confidence(self, store, config):
        llm = FakeLLM(answer="You have **3** contacts.")
        response = AskEngine(store, llm, config, clock=fixed_clock).ask(COUNT_QUESTION, "Sales_Shweta", "employee")
        assert response.answer == "You have **3** contacts."
        assert response.confidence == pytest.approx(0.9)

    def test_invented_numbers_lower_confidence(self, store, config):
        llm = FakeLLM(answer="You have 7 contacts.")
        response = AskEngine(store, llm, config, clock=fixed_clock).ask(COUNT_QUESTION, "Sales_Shweta", "employee")
        assert response.answer.startswith(VERIFICATION_NOTE)
        assert response.confidence == pytest.approx(0.6)

    def test_employee_data_scoped(self, engine):
        response = engine.ask("list contacts", "Sales_Ravi", "employee")
        assert [row["name"] for row in response.data] == ["Vikram Rao"]

    def test_unknown_question_skips_store_and_model(self, engine, fake_llm, store):
        before = store.reads
        response = engine.ask("What's the weather like?", "Sales_Shweta", "employee")
        assert store.reads == before
        assert response.answer.startswith(UNKNOWN_MESSAGE)
        assert "For example:" in response.answer
        assert response.confidence == pytest.approx(0.2)
        assert response.data == []
        assert fake_llm.calls_for("narrator") == []

    def test_datastore_failure_is_safe(self, writable_store, fake_llm, config):
        writable_store.execute_script("DROP TABLE leads")
        engine = AskEngine(writable_store, fake_llm, config, clock=fixed_clock)
        response = engine.ask("show leads", "admin1", "admin")
        assert response.answer == DATASTORE_FAILURE_MESSAGE
        assert response.confidence == 0.0
        assert response.data == []
        assert fake_llm.calls_for("narrator") == []
        assert len(engine.cache) == 0


# ============================================================================
# COACH path
# ============================================================================

class TestCoachPath:

    def test_coaching_answer_uses_caller_stats(self, store, config):
        llm = FakeLLM(route=COACH_ROUTE, answer="## Next steps\n- Call Acme Mumbai Office")
        engine = AskEngine(store, llm, config, clock=fixed_clock)
        response = engine.ask("How can I improve my follow-up strategy?", "Sales_Shweta", "employee")
        assert response.mode == "COACH"
        assert response.confidence == pytest.approx(0.8)
        assert response.data == []
        assert "sub_accounts" in response.sources

        call = llm.calls_for("coach")[0]
        assert "Recent Activity" in call["system"]
        assert "total_sub_accounts" in call["system"]
        assert "How can I improve my follow-up strategy?" in call["prompt"]

    def test_coach_answers_are_not_grounding_checked(self, store, config):
        llm = FakeLLM(route=COACH_ROUTE, answer="Aim for 12 calls a week.")
        response = AskEngine(store, llm, config, clock=fixed_clock).ask("Give me tips", "Sales_Shweta", "employee")
        assert response.answer == "Aim for 12 calls a week."


# ============================================================================
# Model failures
# ============================================================================

class TestModelFailure:

    def test_unavailable_model_gives_generic_answer(self, store, unavailable_llm, config):
        engine = AskEngine(store, unavailable_llm, config, clock=fixed_clock)
        response = engine.ask(COUNT_QUESTION, "Sales_Shweta", "employee")
        assert response.answer == ERROR_ANSWER
        assert response.confidence == 0.0
        assert response.data == []
        assert response.route.source == "heuristic"

    def test_failures_are_not_cached(self, store, unavailable_llm, config):
        engine = AskEngine(store, unavailable_llm, config, clock=fixed_clock)
        engine.ask(COUNT_QUESTION, "Sales_Shweta", "employee")
        second = engine.ask(COUNT_QUESTION, "Sales_Shweta", "employee")
        assert not second.cached
        assert len(engine.cache) == 0

    def test_coach_model_failure(self, store, config):
        llm = FakeLLM(route=COACH_ROUTE, answer=RuntimeError("boom"))
        response = AskEngine(store, llm, config, clock=fixed_clock).ask("Give me tips", "Sales_Shweta", "employee")
        assert response.answer == ERROR_ANSWER
        assert response.mode == "COACH"
        assert response.confidence == 0.0


# ============================================================================
# Cache and memory
# ============================================================================

class TestCacheAndMemory:

    def test_repeat_question_served_from_cache(self, engine, fake_llm, store):
        first = engine.ask(COUNT_QUESTION, "Sales_Shweta", "employee")
        calls, reads = len(fake_llm.calls), store.reads

        second = engine.ask("how many contacts do i have", "Sales_Shweta", "employee")
        assert second.cached
        assert second.answer == first.answer
        assert second.data == first.data
        assert len(fake_llm.calls) == calls
        assert store.reads == reads

        turns = engine.memory.recent("Sales_Shweta")
        assert len(turns) == 4
        assert [t.role for t in turns[2:]] == ["user", "assistant"]
        assert turns[3].content == first.answer

    def test_cache_is_per_caller(self, engine):
        engine.ask(COUNT_QUESTION, "Sales_Shweta", "employee")
        other = engine.ask(COUNT_QUESTION, "Sales_Ravi", "employee")
        assert not other.cached
        assert len(other.data) == 1

    def test_cache_is_per_role(self, engine):
        """An admin answer under a caller id is never replayed to that id as employee."""
        admin = engine.ask("list contacts", "Sales_Shweta", "admin")
        assert len(admin.data) == 4

        employee = engine.ask("list contacts", "Sales_Shweta", "employee")
        assert not employee.cached
        assert {row["name"] for row in employee.data} == {"Ram Kumar", "Priya Shah", "Meera Iyer"}

    def test_role_spelling_shares_cache_entry(self, engine):
        engine.ask(COUNT_QUESTION, "Sales_Shweta", "Employee")
        assert engine.ask(COUNT_QUESTION, "Sales_Shweta", "employee").cached

    def test_forget_drops_memory_and_cache(self, engine):
        engine.ask(COUNT_QUESTION, "Sales_Shweta", "employee")
        engine.ask(COUNT_QUESTION, "Sales_Ravi", "employee")

        assert engine.forget("Sales_Shweta") == {"turns": 2, "cached_answers": 1}
        assert engine.memory.recent("Sales_Shweta") == []
        assert not engine.ask(COUNT_QUESTION, "Sales_Shweta", "employee").cached
        assert engine.ask(COUNT_QUESTION, "Sales_Ravi", "employee").cached

    def test_unknown_answers_are_cached(self, engine):
        engine.ask("What's the weather like?", "Sales_Shweta", "employee")
        assert engine.ask("What's the weather like?", "Sales_Shweta", "employee").cached

    def test_turns_recorded(self, engine):
        engine.ask(COUNT_QUESTION, "Sales_Shweta", "employee")
        turns = engine.memory.recent("Sales_Shweta")
        assert [t.role for t in turns] == ["user", "assistant"]
        assert turns[0].content == COUNT_QUESTION
        assert turns[1].mode == "QUERY"

    def test_stored_history_reaches_classifier(self, engine, fake_llm):
        engine.ask(COUNT_QUESTION, "Sales_Shweta", "employee")
        engine.ask("list my leads", "Sales_Shweta", "employee")
        prompt = fake_llm.calls_for("classifier")[-1]["prompt"]
        assert f"User: {COUNT_QUESTION}" in prompt

    def test_explicit_history_overrides_memory(self, engine, fake_llm):
        history = [{"role": "user", "content": "give me advice on Globex", "mode": "COACH"}]
        engine.ask(COUNT_QUESTION, "Sales_Shweta", "employee", history=history)
        prompt = fake_llm.calls_for("classifier")[0]["prompt"]
        assert "User: give me advice on Globex" in prompt

    def test_empty_question(self, engine, fake_llm):
        response = engine.ask("   ", "Sales_Shweta", "employee")
        assert response.answer == EMPTY_QUESTION_ANSWER
        assert response.confidence == 0.0
        assert fake_llm.calls == []
        assert len(engine.memory) == 0


# ============================================================================
# Preview
# ============================================================================

class TestPreview:

    def test_preview_reads_nothing(self, engine, fake_llm, store):
        before = store.reads
        preview = engine.preview("Show me contacts for Acme Corp", "Sales_Shweta", "employee")
        assert store.reads == before
        assert fake_llm.calls == []
        assert preview["intent"]["entity"] == "contacts"
        assert preview["route"]["mode"] == "QUERY"
        assert "scoped to caller" in preview["sql_or_query_descriptor"]
        assert preview["last_mode"] is None

    def test_preview_reports_last_mode(self, store, config):
        llm = FakeLLM(route=COACH_ROUTE, answer="Plan two site visits.")
        engine = AskEngine(store, llm, config, clock=fixed_clock)
        engine.ask("Give me tips", "Sales_Shweta", "employee")
        assert engine.preview("and then?", "Sales_Shweta", "employee")["last_mode"] == "COACH"


# ============================================================================
# Operation monitor
# ============================================================================

class TestMonitoring:

    def test_query_turn_records_each_step(self, engine):
        engine.ask(COUNT_QUESTION, "Sales_Shweta", "employee")
        ops = [r.operation for r in engine.monitor.records()]
        assert ops == ["cache_miss", "intent", "query", "response"]

        intent = engine.monitor.records("intent")[0]
        assert intent.entity == "contacts"
        assert intent.confidence == pytest.approx(0.9)
        query = engine.monitor.records("query")[0]
        assert query.row_count == 3
        assert query.success
        assert query.duration_ms >= 0

    def test_cache_hit_recorded(self, engine):
        engine.ask(COUNT_QUESTION, "Sales_Shweta", "employee")
        engine.ask(COUNT_QUESTION, "Sales_Shweta", "employee")
        summary = engine.monitor.summary()
        assert summary["operations"]["cache_hit"] == 1
        assert summary["operations"]["cache_miss"] == 1
        assert summary["cache_hit_rate"] == pytest.approx(50.0)

    def test_model_failure_recorded_as_error(self, store, unavailable_llm, config):
        engine = AskEngine(store, unavailable_llm, config, clock=fixed_clock)
        engine.ask(COUNT_QUESTION, "Sales_Shweta", "employee")
        errors = engine.monitor.records("error")
        assert len(errors) == 1
        assert errors[0].metadata["stage"] == "query"
        assert engine.monitor.records("response") == []
        assert engine.monitor.error_rate() > 0

    def test_datastore_failure_recorded_on_query(self, writable_store, fake_llm, config):
        writable_store.execute_script("DROP TABLE leads")
        engine = AskEngine(writable_store, fake_llm, config, clock=fixed_clock)
        engine.ask("show leads", "admin1", "admin")
        query = engine.monitor.records("query")[0]
        assert not query.success
        assert query.detail == DATASTORE_FAILURE_MESSAGE

    def test_injected_monitor_is_used(self, store, fake_llm, config):
        monitor = OperationMonitor(max_records=2)
        engine = AskEngine(store, fake_llm, config, clock=fixed_clock, monitor=monitor)
        engine.ask(COUNT_QUESTION, "Sales_Shweta", "employee")
        assert engine.monitor is monitor
        assert [r.operation for r in monitor.records()] == ["query", "response"]
