"""Shared test fixtures for the crmassist test suite.

* ``crm_db``     -- DuckDB file with the CRM schema and the demo dataset,
                    dated relative to ``FIXED_NOW``
* ``store``      -- read-only ``CRMStore`` over ``crm_db``
* ``executor``   -- ``QueryExecutor`` pinned to ``FIXED_NOW``
* ``fake_llm``   -- scripted language-model client, no network

Demo data (owners in brackets):

    accounts:      Acme Corp (1), Globex Infra (2)
    sub_accounts:  Acme Pune Plant [Sales_Shweta], Acme Mumbai Office [Sales_Ravi],
                   Globex Highways [Sales_Shweta]
    contacts:      Ram Kumar (follow-up yesterday), Priya Shah (today)  -> Acme Pune Plant
                   Vikram Rao (tomorrow)                                -> Acme Mumbai Office
                   Meera Iyer (no follow-up)                            -> Globex Highways
    activities:    2 by Sales_Shweta, 1 by Sales_Ravi
    quotations:    mbcb + signages by Sales_Shweta, paint by Sales_Ravi
"""

from __future__ import annotations

import tempfile
from datetime import datetime
from pathlib import Path
from typing import Any

import duckdb
import pytest

from crmassist.config import EngineConfig
from crmassist.errors import LLMUnavailableError
from crmassist.execution.executor import QueryExecutor
from crmassist.store.builder import CRMStore
from crmassist.store.schema import create_schema, seed_demo

FIXED_NOW = datetime(2026, 10, 17, 10, 30, 0)


def fixed_clock() -> datetime:
    return FIXED_NOW


# ---------------------------------------------------------------------------
# Fake language model
# ---------------------------------------------------------------------------

class FakeLLM:
    """Scripted stand-in for ``LLMClient``.

    Args:
        route: JSON returned to the classifier, or an exception to raise
        answer: Text returned for narrator/coach calls, a callable taking the
            prompt, or an exception to raise
    """

    def __init__(self, route: Any = None, answer: Any = "Here is what I found."):
        self.route = route if route is not None else {"mode": "QUERY", "confidence": 0.9, "reason": "data request"}
        self.answer = answer
        self.calls: list[dict[str, str]] = []

    def complete(self, system: str, prompt: str, *, role: str = "narrator") -> str:
        self.calls.append({"role": role, "system": system, "prompt": prompt})
        if isinstance(self.answer, Exception):
            raise self.answer
        if callable(self.answer):
            return self.answer(prompt)
        return self.answer

    def complete_json(self, system: str, prompt: str, *, role: str = "classifier") -> dict[str, Any]:
        self.calls.append({"role": role, "system": system, "prompt": prompt})
        if isinstance(self.route, Exception):
            raise self.route
        return dict(self.route)

    def calls_for(self, role: str) -> list[dict[str, str]]:
        return [c for c in self.calls if c["role"] == role]


@pytest.fixture()
def fake_llm():
    return FakeLLM()


@pytest.fixture()
def unavailable_llm():
    """Model that fails every call."""
    error = LLMUnavailableError("connection refused", role="narrator")
    return FakeLLM(route=error, answer=error)


# ---------------------------------------------------------------------------
# Database fixtures
# ---------------------------------------------------------------------------

def _new_db_path() -> Path:
    with tempfile.NamedTemporaryFile(suffix=".duckdb", delete=False) as f:
        db_path = Path(f.name)
    db_path.unlink()
    return db_path


@pytest.fixture()
def crm_db():
    """DuckDB file with schema and demo rows."""
    db_path = _new_db_path()
    conn = duckdb.connect(str(db_path))
    create_schema(conn)
    seed_demo(conn, now=FIXED_NOW)
    conn.close()

    yield db_path

    db_path.unlink(missing_ok=True)


@pytest.fixture()
def writable_store(crm_db):
    """Store whose tables tests may drop to simulate datastore failures."""
    store = CRMStore(str(crm_db))
    yield store
    store.close()


@pytest.fixture()
def store(crm_db):
    store = CRMStore(str(crm_db), read_only=True)
    yield store
    store.close()


@pytest.fixture()
def config():
    return EngineConfig()


@pytest.fixture()
def executor(store, config):
    return QueryExecutor(store, config, clock=fixed_clock)
