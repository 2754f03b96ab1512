"""Engine configuration loaded from environment variables.

Every tunable constant of the engine lives here so it can be changed per
deployment without code edits. Values are read once, when
``EngineConfig.from_env()`` is called.

Environment variables:
- CRM_DB_PATH: DuckDB file holding the CRM tables
- CRM_LLM_PROVIDER: Provider used by the LLM router (ollama, anthropic, openai)
- CRM_LLM_TIMEOUT / CRM_LLM_MAX_RETRIES: Per-call timeout and retries of transient failures
- CRM_CACHE_TTL_SECONDS / CRM_CACHE_MAX_ENTRIES: Answer cache bounds
- CRM_MEMORY_MAX_TURNS: Turns kept per user in conversation memory
- CRM_MONITOR_MAX_RECORDS: Operations kept by the in-process monitor
- CRM_HIGH_CONFIDENCE / CRM_MEDIUM_CONFIDENCE: Router merge thresholds
- CRM_HISTORY_BIAS / CRM_AGREEMENT_BOOST: Router score adjustments
- CRM_SILENT_DAYS / CRM_SLIPPING_THRESHOLD: Account insight cutoffs
- CRM_LOG_LEVEL: Logging level for the API server and CLI
"""

import os
from dataclasses import dataclass, fields


@dataclass
class EngineConfig:
    """Configuration for the query and coaching engine."""

    # Storage
    db_path: str = "./data/crm.duckdb"

    # LLM
    llm_provider: str | None = None  # None defers to CRM_LLM_PROVIDER inside the router
    llm_timeout: int = 60
    llm_max_retries: int = 2

    # Result bounds
    result_limit: int = 50
    fanout_limit: int = 20
    fanout_workers: int = 3

    # Answer cache
    cache_ttl_seconds: float = 300.0
    cache_max_entries: int = 500

    # Conversation memory
    memory_max_turns: int = 10
    history_window: int = 5

    # Operation monitor
    monitor_max_records: int = 1000

    # Conversation router
    high_confidence: float = 0.7
    medium_confidence: float = 0.5
    history_bias: float = 0.3
    agreement_boost: float = 0.1
    agreement_cap: float = 0.95
    disagreement_confidence: float = 0.6
    fallback_confidence: float = 0.3

    # Account insights
    silent_days: int = 30
    slipping_threshold: float = 40.0
    stats_window_days: int = 30

    log_level: str = "INFO"

    @classmethod
    def from_env(cls, **overrides) -> "EngineConfig":
        """Build a config from ``CRM_*`` environment variables.

        Each dataclass field ``foo_bar`` maps to ``CRM_FOO_BAR``. Unset
        variables keep their defaults; keyword overrides win over both.
        """
        values = {}
        for f in fields(cls):
            raw = os.environ.get(f"CRM_{f.name.upper()}")
            if raw is None or raw == "":
                continue
            if f.type in (int, "int"):
                values[f.name] = int(raw)
            elif f.type in (float, "float"):
                values[f.name] = float(raw)
            else:
                values[f.name] = raw
        values.update(overrides)
        return cls(**values)
